# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0
import time
from typing import Any, Sequence

from kafka import KafkaAdminClient, KafkaConsumer, KafkaProducer
from kafka.admin import NewTopic
from kafka.errors import KafkaError, for_code

from rackcheck.clients.kafka_client import KafkaClient, Record
from rackcheck.clients.types import BrokerDescription, ConsumedRecord, PartitionDescription, ProducedRecord, TopicDescription, TopicSpec


class KafkaPython(KafkaClient):
    """
    https://github.com/dpkp/kafka-python

    kafka-python has no notion of a client rack, so consume() ignores it.
    """
    def brokers(self) -> dict[int, BrokerDescription]:
        admin = self.get_admin()
        try:
            cluster = admin.describe_cluster()
        finally:
            admin.close()
        brokers = {}
        for b in cluster['brokers']:
            node_id = _field(b, 'broker_id', 'node_id')
            brokers[node_id] = BrokerDescription(id=node_id,
                                                 host=b['host'],
                                                 port=b['port'],
                                                 rack=b.get('rack') or None)
        return brokers

    def describe_topic(self, topic: str) -> TopicDescription:
        admin = self.get_admin()
        try:
            topics = admin.describe_topics([topic])
        finally:
            admin.close()

        assert len(topics) == 1, f"Received {len(topics)} topics expected 1: {topics}"
        md = topics[0]
        if md['error_code'] != 0:
            raise for_code(md['error_code'])(f"describing {topic}")
        return TopicDescription(
            name=_field(md, 'name', 'topic'),
            partitions=[
                PartitionDescription(
                    id=_field(p, 'partition_index', 'partition'),
                    leader=_field(p, 'leader_id', 'leader'),
                    replicas=list(_field(p, 'replica_nodes', 'replicas')),
                    isr=list(_field(p, 'isr_nodes', 'isr')))
                for p in md['partitions']
            ])

    def create_topic(self, spec: TopicSpec):
        admin = self.get_admin()
        try:
            admin.create_topics([
                NewTopic(name=spec.name,
                         num_partitions=spec.partition_count,
                         replication_factor=spec.replication_factor,
                         topic_configs=spec.configs())
            ],
                                timeout_ms=self._timeout_ms())
            self.logger.debug(f"topic {spec.name} created")
        finally:
            admin.close()

    def delete_topic(self, name: str):
        admin = self.get_admin()
        try:
            admin.delete_topics([name], timeout_ms=self._timeout_ms())
            self.logger.debug(f"topic {name} deleted")
        finally:
            admin.close()

    def produce(self, topic: str, records: Sequence[Record],
                **config: Any) -> list[ProducedRecord]:
        """
        Produce records and wait for every acknowledgement. Extra keyword
        arguments are passed to KafkaProducer.
        """
        producer = self.get_producer(config)
        try:
            futures = [
                producer.send(topic, key=key, value=value)
                for key, value in records
            ]
            producer.flush(timeout=self._cluster.request_timeout_sec)
            delivered = []
            for f in futures:
                md = f.get(timeout=self._cluster.request_timeout_sec)
                delivered.append(ProducedRecord(md.partition, md.offset))
            return delivered
        finally:
            producer.close()

    def consume(self,
                topic: str,
                group: str,
                count: int,
                timeout_sec: int = 30,
                rack: str | None = None) -> list[ConsumedRecord]:
        if rack:
            self.logger.debug(
                f"kafka-python cannot fetch from rack {rack}, ignoring")
        consumer = self.get_consumer(topic,
                                     group_id=group,
                                     auto_offset_reset='earliest')
        consumed: list[ConsumedRecord] = []
        deadline = time.time() + timeout_sec
        try:
            while len(consumed) < count and time.time() < deadline:
                batches = consumer.poll(timeout_ms=2000)
                for records in batches.values():
                    for r in records:
                        self.logger.debug(
                            f"consumed {topic}/{r.partition}@{r.offset}: {r.value}"
                        )
                        consumed.append(
                            ConsumedRecord(r.partition, r.offset, r.key,
                                           r.value))
        except KafkaError as e:
            self.logger.warning(f"consumer for {topic} failed: {e}")
            raise
        finally:
            consumer.close()
        return consumed

    def get_admin(self):
        return KafkaAdminClient(**self._get_config())

    def get_producer(self, extra_config: dict[str, Any] = {}):
        conf = self._get_config()
        conf.update(extra_config)
        self.logger.debug(f"{conf}")
        return KafkaProducer(**conf)

    def get_consumer(self, *topics: str, **extra_config: Any):
        conf = self._get_config()
        conf.update(extra_config)
        self.logger.debug(f"{conf}")
        return KafkaConsumer(*topics, **conf)

    def _timeout_ms(self):
        return self._cluster.request_timeout_sec * 1000

    def _get_config(self) -> dict[str, Any]:
        conf: dict[str, Any] = {
            'bootstrap_servers': self._cluster.brokers_list(),
            'request_timeout_ms': self._timeout_ms(),
        }
        conf.update(self._cluster.kafka_client_security().to_dict())
        return conf


def _field(md: dict[str, Any], name: str, legacy: str) -> Any:
    """
    kafka-python 3 renamed the metadata fields to the names of the protocol
    schema, 2.x clients still use the short ones.
    """
    return md[name] if name in md else md[legacy]
