# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0

import logging
from concurrent.futures import Future
from types import SimpleNamespace

import pytest
from confluent_kafka import KafkaError as LibrdkafkaError
from confluent_kafka import KafkaException, Node
from confluent_kafka.admin import ClusterMetadata, PartitionMetadata, TopicMetadata
from kafka.errors import KafkaError

from ..kafka_python import KafkaPython
from ..python_librdkafka import PythonLibrdkafka
from ...utils.rack_placement import RackTopology, failures, verify_topic

RACKS = {1: "rack-a", 2: "rack-b", 3: "rack-c"}
EXPECTED_TOPOLOGY = RackTopology(RACKS)


def fake_cluster():
    return SimpleNamespace(logger=logging.getLogger(__name__),
                           request_timeout_sec=5,
                           propagation_timeout_sec=5)


def replicas_of(partition):
    return [(partition + j) % 3 + 1 for j in range(3)]


class FakeLibrdkafkaAdmin:
    """Answers DescribeCluster and Metadata with confluent-kafka model objects."""
    def __init__(self, partition_count, error=None):
        self.nodes = [
            Node(id, f"kafka-{id}", 9091 + id, rack)
            for id, rack in RACKS.items()
        ]
        self.partition_count = partition_count
        self.error = error

    def describe_cluster(self, request_timeout=None):
        f = Future()
        f.set_result(SimpleNamespace(controller=self.nodes[0],
                                     nodes=self.nodes))
        return f

    def list_topics(self, topic=None, timeout=None):
        md = TopicMetadata()
        md.topic = topic
        md.error = self.error
        for i in reversed(range(self.partition_count)):
            p = PartitionMetadata()
            p.id = i
            p.replicas = replicas_of(i)
            p.leader = p.replicas[0]
            p.isrs = p.replicas[:2]
            md.partitions[i] = p
        cluster = ClusterMetadata()
        cluster.topics[topic] = md
        return cluster


class LibrdkafkaWithAdmin(PythonLibrdkafka):
    def __init__(self, admin):
        super().__init__(fake_cluster())
        self.admin = admin

    def get_client(self):
        return self.admin


# describe_cluster() and describe_topics() output as returned by kafka-python
# 3.x, which names fields after the protocol schema
KAFKA_PYTHON_3_BROKER = ('broker_id', 'host', 'port', 'rack')
KAFKA_PYTHON_3_TOPIC = ('name', 'partition_index', 'leader_id',
                        'replica_nodes', 'isr_nodes')
# and as returned by 2.x
KAFKA_PYTHON_2_BROKER = ('node_id', 'host', 'port', 'rack')
KAFKA_PYTHON_2_TOPIC = ('topic', 'partition', 'leader', 'replicas', 'isr')


class FakeKafkaPythonAdmin:
    def __init__(self, partition_count, broker_keys, topic_keys,
                 error_code=0):
        self.partition_count = partition_count
        self.broker_keys = broker_keys
        self.topic_keys = topic_keys
        self.error_code = error_code
        self.closed = 0

    def describe_cluster(self):
        node_id, host, port, rack = self.broker_keys
        return {
            'cluster_id': "rackcheck",
            'controller_id': 1,
            'brokers': [{
                node_id: id,
                host: f"kafka-{id}",
                port: 9091 + id,
                rack: r
            } for id, r in RACKS.items()]
        }

    def describe_topics(self, topics):
        name, partition, leader, replicas, isr = self.topic_keys
        return [{
            'error_code':
            self.error_code,
            name:
            topic,
            'is_internal':
            False,
            'partitions': [{
                'error_code': 0,
                partition: i,
                leader: replicas_of(i)[0],
                replicas: replicas_of(i),
                isr: replicas_of(i)[:2],
                'offline_replicas': [],
            } for i in reversed(range(self.partition_count))]
        } for topic in topics]

    def close(self):
        self.closed += 1


class KafkaPythonWithAdmin(KafkaPython):
    def __init__(self, admin):
        super().__init__(fake_cluster())
        self.admin = admin

    def get_admin(self):
        return self.admin


def check_snapshot(client, partition_count):
    topology = client.rack_topology()
    assert topology == EXPECTED_TOPOLOGY

    brokers = client.brokers()
    assert brokers[2].host == "kafka-2"
    assert brokers[2].port == 9093
    assert brokers[2].rack == "rack-b"

    assignments = client.partition_assignments("rack-topic")
    assert [a.partition for a in assignments] == list(range(partition_count))
    assert all(a.topic == "rack-topic" for a in assignments)
    assert assignments[1].replicas == (2, 3, 1)
    assert assignments[1].leader == 2
    assert assignments[1].isr == frozenset({2, 3})

    assert failures(verify_topic(topology, assignments, 3, 2)) == []


def test_librdkafka_metadata():
    check_snapshot(LibrdkafkaWithAdmin(FakeLibrdkafkaAdmin(6)), 6)


def test_librdkafka_topic_error():
    client = LibrdkafkaWithAdmin(
        FakeLibrdkafkaAdmin(0,
                            error=LibrdkafkaError(
                                LibrdkafkaError.UNKNOWN_TOPIC_OR_PART)))
    with pytest.raises(KafkaException):
        client.describe_topic("rack-topic")


def test_librdkafka_rackless_broker():
    admin = FakeLibrdkafkaAdmin(1)
    admin.nodes.append(Node(4, "kafka-4", 9095))
    topology = LibrdkafkaWithAdmin(admin).rack_topology()
    assert topology.rackless == {4}
    assert topology.rack_count == 3


@pytest.mark.parametrize("broker_keys,topic_keys", [
    (KAFKA_PYTHON_3_BROKER, KAFKA_PYTHON_3_TOPIC),
    (KAFKA_PYTHON_2_BROKER, KAFKA_PYTHON_2_TOPIC),
])
def test_kafka_python_metadata(broker_keys, topic_keys):
    admin = FakeKafkaPythonAdmin(6, broker_keys, topic_keys)
    check_snapshot(KafkaPythonWithAdmin(admin), 6)
    assert admin.closed == 3


def test_kafka_python_topic_error():
    admin = FakeKafkaPythonAdmin(0,
                                 KAFKA_PYTHON_3_BROKER,
                                 KAFKA_PYTHON_3_TOPIC,
                                 error_code=3)
    with pytest.raises(KafkaError):
        KafkaPythonWithAdmin(admin).describe_topic("rack-topic")
    assert admin.closed == 1
