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

from confluent_kafka import Consumer, KafkaException, Producer
from confluent_kafka.admin import AdminClient, NewTopic

from rackcheck.clients.kafka_client import KafkaClient, Record
from rackcheck.clients.types import BrokerDescription, ConsumedRecord, PartitionDescription, ProducedRecord, TopicDescription, TopicSpec


class PythonLibrdkafka(KafkaClient):
    """
    https://github.com/confluentinc/confluent-kafka-python
    """
    def brokers(self) -> dict[int, BrokerDescription]:
        # list_topics() broker metadata carries no rack, DescribeCluster does
        client = self.get_client()
        cluster = client.describe_cluster(
            request_timeout=self._cluster.request_timeout_sec).result()
        return {
            n.id: BrokerDescription(id=n.id,
                                    host=n.host,
                                    port=n.port,
                                    rack=n.rack or None)
            for n in cluster.nodes
        }

    def topics(self, topic: str | None = None):
        client = self.get_client()
        return client.list_topics(
            topic=topic, timeout=self._cluster.request_timeout_sec).topics

    def describe_topic(self, topic: str) -> TopicDescription:
        md = self.topics(topic)[topic]
        if md.error is not None:
            raise KafkaException(md.error)
        return TopicDescription(name=md.topic,
                                partitions=[
                                    PartitionDescription(id=p.id,
                                                         leader=p.leader,
                                                         replicas=list(
                                                             p.replicas),
                                                         isr=list(p.isrs))
                                    for p in md.partitions.values()
                                ])

    def create_topic(self, spec: TopicSpec):
        topics = [
            NewTopic(spec.name,
                     num_partitions=spec.partition_count,
                     replication_factor=spec.replication_factor,
                     config=spec.configs())
        ]
        client = self.get_client()
        res = client.create_topics(
            topics, request_timeout=self._cluster.request_timeout_sec)
        for topic, fut in res.items():
            try:
                fut.result()
                self.logger.debug(f"topic {topic} created")
            except Exception as e:
                self.logger.debug(f"topic {topic} creation failed: {e}")
                raise

    def delete_topic(self, name: str):
        client = self.get_client()
        res = client.delete_topics(
            [name], request_timeout=self._cluster.request_timeout_sec)
        for topic, fut in res.items():
            fut.result()
            self.logger.debug(f"topic {topic} deleted")

    def produce(self, topic: str, records: Sequence[Record],
                **config: Any) -> list[ProducedRecord]:
        """
        Produce records synchronously and return where each one landed.
        Extra keyword arguments are librdkafka producer properties with
        underscores in place of dots, e.g. enable_idempotence=True.
        """
        producer = self.get_producer(config)
        delivered: list[ProducedRecord] = []
        errors: list[Any] = []

        def on_delivery(err, msg):
            if err is not None:
                errors.append(err)
            else:
                delivered.append(ProducedRecord(msg.partition(),
                                                msg.offset()))

        for key, value in records:
            producer.produce(topic, key=key, value=value, on_delivery=on_delivery)
            producer.poll(0)
        remaining = producer.flush(self._cluster.request_timeout_sec)

        if errors:
            raise KafkaException(errors[0])
        if remaining:
            raise RuntimeError(
                f"{remaining} records to {topic} were not delivered")
        return delivered

    def produce_transactionally(self, topic: str, records: Sequence[Record],
                                transactional_id: str,
                                **config: Any) -> list[ProducedRecord]:
        """Produce records within a single committed transaction."""
        timeout = self._cluster.request_timeout_sec
        producer = self.get_producer(
            dict(config, transactional_id=transactional_id))
        delivered: list[ProducedRecord] = []

        def on_delivery(err, msg):
            if err is None:
                delivered.append(ProducedRecord(msg.partition(),
                                                msg.offset()))

        producer.init_transactions(timeout)
        producer.begin_transaction()
        try:
            for key, value in records:
                producer.produce(topic,
                                 key=key,
                                 value=value,
                                 on_delivery=on_delivery)
            producer.commit_transaction(timeout)
        except KafkaException:
            self.logger.exception(
                f"transaction {transactional_id} failed, aborting")
            producer.abort_transaction(timeout)
            raise
        return delivered

    def consume(self,
                topic: str,
                group: str,
                count: int,
                timeout_sec: int = 30,
                rack: str | None = None) -> list[ConsumedRecord]:
        extra_config = {
            'group.id': group,
            'auto.offset.reset': 'earliest',
        }
        if rack:
            extra_config['client.rack'] = rack
        consumer = self.get_consumer(extra_config)
        consumed: list[ConsumedRecord] = []
        deadline = time.time() + timeout_sec
        try:
            consumer.subscribe([topic])
            while len(consumed) < count and time.time() < deadline:
                msg = consumer.poll(1.0)
                if msg is None:
                    continue
                if msg.error():
                    self.logger.debug(f"fetch error on {topic}: {msg.error()}")
                    continue
                self.logger.debug(
                    f"consumed {topic}/{msg.partition()}@{msg.offset()}: {msg.value()}"
                )
                consumed.append(
                    ConsumedRecord(msg.partition(), msg.offset(), msg.key(),
                                   msg.value()))
        finally:
            consumer.close()
        return consumed

    def rebalance(self,
                  topic: str,
                  group: str,
                  members: int = 2,
                  timeout_sec: int = 60) -> list[set[int]]:
        """
        Join `members` consumers to one group, one after another, and poll
        them until their assignments cover every partition of the topic.
        Returns the partitions assigned to each member.
        """
        partition_count = len(self.describe_topic(topic).partitions)
        assignments: list[set[int]] = [set() for _ in range(members)]
        consumers: list[Consumer] = []

        def callbacks_for(idx: int):
            def on_assign(consumer, partitions):
                assignments[idx] = {p.partition for p in partitions}
                self.logger.info(
                    f"member {idx} of {group} assigned {sorted(assignments[idx])}"
                )

            def on_revoke(consumer, partitions):
                assignments[idx] = set()

            return on_assign, on_revoke

        deadline = time.time() + timeout_sec
        try:
            for idx in range(members):
                consumer = self.get_consumer({
                    'group.id': group,
                    'auto.offset.reset': 'earliest',
                })
                on_assign, on_revoke = callbacks_for(idx)
                consumer.subscribe([topic],
                                   on_assign=on_assign,
                                   on_revoke=on_revoke)
                consumers.append(consumer)

            def settled():
                covered = set().union(*assignments)
                return all(assignments) and len(covered) == partition_count

            while not settled() and time.time() < deadline:
                for consumer in consumers:
                    consumer.poll(0.5)
        finally:
            for consumer in consumers:
                consumer.close()
        return assignments

    def get_client(self):
        return AdminClient(self._get_config())

    def get_producer(self, extra_config: dict[str, Any] = {}):
        producer_conf = self._get_config()
        producer_conf.update({
            k.replace('_', '.'): v
            for k, v in extra_config.items()
        })
        self.logger.debug(f"{producer_conf}")
        return Producer(producer_conf)

    def get_consumer(self, extra_config: dict[str, Any] = {}):
        conf = self._get_config()
        conf.update(extra_config)
        self.logger.debug(f"{conf}")
        return Consumer(conf)

    def _get_config(self) -> dict[str, Any]:
        conf: dict[str, Any] = {
            'bootstrap.servers': self._cluster.brokers(),
        }
        conf.update(self._cluster.kafka_client_security().librdkafka_config())
        # log as debug to eliminate log spamming
        # when creating a lot of producers
        self.logger.debug(conf)
        return conf
