# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0

from logging import Logger
from typing import Any, Mapping

from ducktape.tests.test import TestContext

from rackcheck.services.kafka_types import KafkaClientSecurity, PLAINTEXT_SECURITY
from rackcheck.utils.rack_placement import RackTopology

DEFAULT_BROKERS = ["localhost:9092", "localhost:9093", "localhost:9094"]
DEFAULT_RACKS = {1: "rack-a", 2: "rack-b", 3: "rack-c"}
DEFAULT_MIN_INSYNC_REPLICAS = 2
DEFAULT_REQUEST_TIMEOUT_SEC = 60
DEFAULT_PROPAGATION_TIMEOUT_SEC = 30


class ClusterConfigError(RuntimeError):
    pass


def _positive_int(config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ClusterConfigError(f"{key} must be an integer, got {value!r}")
    if value < 1:
        raise ClusterConfigError(f"{key} must be positive, got {value}")
    return value


class ExternalKafkaCluster:
    """
    A Kafka API cluster that was started outside of ducktape. Nothing is
    provisioned or torn down here: the service carries the connection
    settings and the rack layout the cluster is expected to have.

    Configured through the `kafka_cluster` key of the ducktape globals, see
    config/globals.json.
    """
    GLOBAL_KAFKA_CLUSTER = "kafka_cluster"

    def __init__(self,
                 logger: Logger,
                 *,
                 brokers: list[str] | None = None,
                 racks: Mapping[int, str] | None = None,
                 min_insync_replicas: int = DEFAULT_MIN_INSYNC_REPLICAS,
                 request_timeout_sec: int = DEFAULT_REQUEST_TIMEOUT_SEC,
                 propagation_timeout_sec: int = DEFAULT_PROPAGATION_TIMEOUT_SEC,
                 security: KafkaClientSecurity = PLAINTEXT_SECURITY):
        self.logger = logger
        self._brokers = list(brokers or DEFAULT_BROKERS)
        self._racks = dict(DEFAULT_RACKS if racks is None else racks)
        self._min_insync_replicas = min_insync_replicas
        self._request_timeout_sec = request_timeout_sec
        self._propagation_timeout_sec = propagation_timeout_sec
        self._security = security

    @classmethod
    def from_config(cls, logger: Logger,
                    config: Mapping[str, Any]) -> "ExternalKafkaCluster":
        brokers = config.get('brokers', DEFAULT_BROKERS)
        if isinstance(brokers, str):
            brokers = [b.strip() for b in brokers.split(',')]
        brokers = [b for b in brokers if b]
        if not brokers:
            raise ClusterConfigError("at least one broker address is required")

        racks = DEFAULT_RACKS
        if 'racks' in config:
            try:
                racks = {
                    int(node_id): str(rack)
                    for node_id, rack in config['racks'].items()
                }
            except (AttributeError, ValueError):
                raise ClusterConfigError(
                    f"racks must map integer broker ids to rack names, got {config['racks']!r}"
                )

        return cls(logger,
                   brokers=brokers,
                   racks=racks,
                   min_insync_replicas=_positive_int(
                       config, 'min_insync_replicas',
                       DEFAULT_MIN_INSYNC_REPLICAS),
                   request_timeout_sec=_positive_int(
                       config, 'request_timeout_sec',
                       DEFAULT_REQUEST_TIMEOUT_SEC),
                   propagation_timeout_sec=_positive_int(
                       config, 'propagation_timeout_sec',
                       DEFAULT_PROPAGATION_TIMEOUT_SEC),
                   security=KafkaClientSecurity.from_config(
                       config.get('sasl'), bool(config.get('tls', False))))

    def who_am_i(self):
        return f"ExternalKafkaCluster({self.brokers()})"

    def brokers(self) -> str:
        return ",".join(self._brokers)

    def brokers_list(self) -> list[str]:
        return list(self._brokers)

    def kafka_client_security(self) -> KafkaClientSecurity:
        return self._security

    @property
    def expected_racks(self) -> dict[int, str]:
        return dict(self._racks)

    @property
    def expected_topology(self) -> RackTopology:
        return RackTopology(self._racks)

    @property
    def min_insync_replicas(self) -> int:
        return self._min_insync_replicas

    @property
    def request_timeout_sec(self) -> int:
        return self._request_timeout_sec

    @property
    def propagation_timeout_sec(self) -> int:
        return self._propagation_timeout_sec


def make_external_kafka_cluster(context: TestContext) -> ExternalKafkaCluster:
    config = context.globals.get(ExternalKafkaCluster.GLOBAL_KAFKA_CLUSTER) or {}
    cluster = ExternalKafkaCluster.from_config(context.logger, config)
    cluster.logger.info(
        f"Using {cluster.who_am_i()} with racks {cluster.expected_racks}, "
        f"security {cluster.kafka_client_security()}")
    return cluster
