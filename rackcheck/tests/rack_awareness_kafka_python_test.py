# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0

import time
from collections import Counter

from rackcheck.clients.kafka_python import KafkaPython
from rackcheck.services.cluster import cluster
from rackcheck.tests.external_cluster import ExternalClusterTest, make_records
from rackcheck.utils.rack_placement import check_leader_distribution, check_replica_rack_diversity, check_topology_completeness


class RackAwarenessKafkaPythonTest(ExternalClusterTest):
    """
    The same three rack cluster, this time through the pure python
    kafka-python client.
    """
    client_type = KafkaPython

    @cluster(num_nodes=0)
    def test_brokers_accessible(self):
        brokers = self.client.brokers()
        self.logger.info(f"Found {len(brokers)} brokers")
        for b in brokers.values():
            self.logger.info(
                f"Broker ID: {b.id}, Host: {b.host}, Port: {b.port}, Rack: {b.rack}"
            )

        assert len(brokers) >= len(
            self.kafka.expected_racks
        ), f"Should have at least {len(self.kafka.expected_racks)} brokers, found {len(brokers)}"

    @cluster(num_nodes=0)
    def test_rack_configuration(self):
        topology = self.topology()
        brokers_per_rack = Counter(
            topology.rack_of(b) for b in topology.broker_ids)
        for rack, count in sorted(brokers_per_rack.items()):
            self.logger.info(f"Rack '{rack}' has {count} broker(s)")

        expected = self.kafka.expected_topology
        assert topology.racks == expected.racks, f"Should have racks {sorted(expected.racks)}, found {sorted(topology.racks)}"
        misplaced = {
            b: topology.rack_of(b)
            for b in expected.broker_ids
            if topology.rack_of(b) != expected.rack_of(b)
        }
        assert not misplaced, f"Brokers not in their configured racks: {misplaced}, expected {expected}"
        self.assert_placement([
            check_topology_completeness(topology,
                                        self.kafka.expected_racks.keys())
        ])

    @cluster(num_nodes=0)
    def test_topic_replica_distribution(self):
        spec = self.create_topic("kafka-python-rack-dist", partition_count=6)
        topology = self.topology()

        self.assert_placement(
            check_replica_rack_diversity(topology, a, spec.replication_factor)
            for a in self.assignments(spec, topology))

    @cluster(num_nodes=0)
    def test_producer_messages(self):
        spec = self.create_topic("kafka-python-producer", partition_count=3)

        records = make_records(10)
        delivered = self.client.produce(spec.name, records)
        self.logger.info(f"Successfully produced {len(delivered)} messages")

        assert len(delivered) == len(records)

    @cluster(num_nodes=0)
    def test_consumer_messages(self):
        spec = self.create_topic("kafka-python-consumer", partition_count=3)
        records = [(None, f"message-{i}".encode()) for i in range(20)]
        self.client.produce(spec.name, records)

        consumed = self.client.consume(spec.name,
                                       f"{spec.name}-group-{int(time.time())}",
                                       count=len(records),
                                       timeout_sec=15)
        for c in consumed:
            self.logger.info(
                f"Consumed message from partition {c.partition}: {c.value}")

        assert len(consumed) == len(
            records), f"Should consume all {len(records)} messages"

    @cluster(num_nodes=0)
    def test_leader_distribution(self):
        spec = self.create_topic("kafka-python-leaders", partition_count=9)
        topology = self.topology()
        assignments = self.assignments(spec, topology)
        for a in assignments:
            self.logger.info(
                f"Partition {a.partition} leader is broker {a.effective_leader} "
                f"in rack {topology.rack_of(a.effective_leader)}")

        report = check_leader_distribution(topology, assignments,
                                           topology.rack_count)
        for rack, count in report.leaders_per_rack:
            self.logger.info(f"Rack {rack} has {count} leaders")
        self.assert_placement([report])

    @cluster(num_nodes=0)
    def test_high_partition_count(self):
        spec = self.create_topic("kafka-python-high-part", partition_count=30)
        topology = self.topology()

        reports = [
            check_replica_rack_diversity(topology, a, spec.replication_factor)
            for a in self.assignments(spec, topology)
        ]
        well_distributed = sum(1 for r in reports if r.passed)
        self.logger.info(
            f"Partitions well-distributed across racks: {well_distributed}/{spec.partition_count}"
        )
        self.assert_placement(reports)

    @cluster(num_nodes=0)
    def test_single_partition(self):
        spec = self.create_topic("kafka-python-single-part",
                                 partition_count=1)

        reports = self.verify_topic(spec)
        diversity = [r for r in reports if r.check == "replica_rack_diversity"]
        assert len(diversity) == 1, "Should have exactly 1 partition"
        self.logger.info(
            f"Single partition racks: {sorted(diversity[0].racks)}")

        self.assert_placement(reports)
