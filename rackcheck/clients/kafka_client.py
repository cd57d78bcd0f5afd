# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0
from __future__ import annotations

from typing import Any, Sequence

from rackcheck.clients.types import BrokerDescription, ConsumedRecord, ProducedRecord, TopicDescription, TopicSpec
from rackcheck.services.kafka_types import KafkaServiceForClients
from rackcheck.util import topic_is_ready, wait_until_result
from rackcheck.utils.rack_placement import Broker, PartitionAssignment, RackTopology

Record = tuple[bytes | None, bytes]


class KafkaClient:
    """
    Metadata, topic and record operations the rack awareness scenarios need
    from a client library. Subclasses wrap one library each; the snapshot
    conversions into verifier inputs live here so that both libraries are
    checked by exactly the same code.
    """
    def __init__(self, cluster: KafkaServiceForClients):
        self._cluster = cluster

    @property
    def logger(self):
        return self._cluster.logger

    def brokers(self) -> dict[int, BrokerDescription]:
        raise NotImplementedError

    def describe_topic(self, topic: str) -> TopicDescription:
        raise NotImplementedError

    def create_topic(self, spec: TopicSpec):
        raise NotImplementedError

    def delete_topic(self, name: str):
        raise NotImplementedError

    def produce(self, topic: str, records: Sequence[Record],
                **config: Any) -> list[ProducedRecord]:
        raise NotImplementedError

    def consume(self,
                topic: str,
                group: str,
                count: int,
                timeout_sec: int = 30,
                rack: str | None = None) -> list[ConsumedRecord]:
        raise NotImplementedError

    def rack_topology(self) -> RackTopology:
        return RackTopology.from_brokers(
            Broker(id=b.id, rack=b.rack, host=b.host, port=b.port)
            for b in self.brokers().values())

    def partition_assignments(self, topic: str) -> list[PartitionAssignment]:
        return assignments_of(self.describe_topic(topic))

    def create_topic_and_wait(self, spec: TopicSpec) -> TopicDescription:
        """
        Create the topic and poll metadata until every partition has a leader
        and a full replica set.
        """
        self.create_topic(spec)

        def ready():
            try:
                description = self.describe_topic(spec.name)
            except Exception as e:
                self.logger.debug(f"topic {spec.name} not described yet: {e}")
                return False
            return topic_is_ready(description, spec), description

        return wait_until_result(
            ready,
            timeout_sec=self._cluster.propagation_timeout_sec,
            backoff_sec=1,
            err_msg=
            f"topic {spec.name} did not get leaders for all {spec.partition_count} partitions"
        )

    def delete_topic_quietly(self, name: str):
        try:
            self.delete_topic(name)
        except Exception as e:
            self.logger.warning(f"Failed to delete topic {name}: {e}")


def assignments_of(description: TopicDescription) -> list[PartitionAssignment]:
    return [
        PartitionAssignment(topic=description.name,
                            partition=p.id,
                            replicas=p.replicas,
                            isr=p.isr,
                            leader=p.leader)
        for p in sorted(description.partitions, key=lambda p: p.id)
    ]
