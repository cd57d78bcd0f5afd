# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0

import functools
import time
from typing import Any, Protocol

import psutil
from ducktape.mark._mark import Mark
from ducktape.mark.resource import ClusterUseMetadata
from ducktape.tests.test import TestContext

from rackcheck.services.kafka_cluster import ExternalKafkaCluster


def cluster(**kwargs: Any):
    """
    Drop-in replacement for Ducktape `cluster` for tests that run against an
    ExternalKafkaCluster.

    The brokers are not ducktape services, so nothing would otherwise record
    what the cluster looked like when a test failed: on failure the broker
    and rack metadata is logged. These go into a decorator rather than
    setUp/tearDown methods so that a failing metadata dump never hides the
    original test failure.
    """
    def log_local_load(test_name, logger, t_initial):
        """
        Log indicators of system load on the machine running ducktape tests.
        Slow or flaky client timeouts are often the load generator's fault
        rather than the brokers'.
        """
        load = psutil.getloadavg()
        memory = psutil.virtual_memory()
        runtime = time.time() - t_initial

        logger.info(f"{test_name} took {runtime:.1f}s")
        logger.info(f"Load average after {test_name}: {load}")
        logger.info(f"Memory after {test_name}: {memory}")

    def log_cluster_metadata(test):
        try:
            for b in test.client.brokers().values():
                test.kafka.logger.info(
                    f"Broker {b.id}: host={b.host}, port={b.port}, rack={b.rack}"
                )
            test.kafka.logger.info(
                f"Expected racks: {test.kafka.expected_racks}")
        except Exception as e:
            test.kafka.logger.warning(f"Unable to fetch broker metadata: {e}")

    def cluster_use_metadata_adder(f):
        Mark.mark(f, ClusterUseMetadata(**kwargs))

        class HasKafka(Protocol):
            kafka: ExternalKafkaCluster
            test_context: TestContext

        @functools.wraps(f)
        def wrapped(self: HasKafka, *args: Any, **kwargs: Any):
            # This decorator will only work on test classes that have an
            # ExternalKafkaCluster, such as ExternalClusterTest subclasses
            assert hasattr(self, 'kafka')

            t_initial = time.time()
            try:
                r = f(self, *args, **kwargs)
            except Exception:
                log_local_load(self.test_context.test_name, self.kafka.logger,
                               t_initial)
                self.kafka.logger.exception(
                    f"Test failed, dumping metadata of {self.kafka.who_am_i()}..."
                )
                log_cluster_metadata(self)
                raise
            else:
                log_local_load(self.test_context.test_name, self.kafka.logger,
                               t_initial)
                return r

        # Propagate ducktape markers (e.g. parameterize) to our function
        # wrapper
        wrapped.marks = f.marks
        wrapped.mark_names = f.mark_names

        return wrapped

    return cluster_use_metadata_adder
