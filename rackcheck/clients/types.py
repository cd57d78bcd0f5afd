# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0
import random
import string
import typing

# pyright: strict


class TopicSpec:
    """
    A topic specification.

    It is often the case that in a test the name of a topic does not matter. To
    simplify for this case, a random name is generated if none is provided. The
    prefix keeps topics created by one scenario recognisable in broker logs.
    """
    PROPERTY_MIN_INSYNC_REPLICAS = "min.insync.replicas"

    def __init__(self,
                 *,
                 name: str | None = None,
                 prefix: str = "topic",
                 partition_count: int = 1,
                 replication_factor: int = 3,
                 min_insync_replicas: int | None = None):
        self.name = name or f"{prefix}-{self._random_topic_suffix()}"
        self.partition_count = partition_count
        self.replication_factor = replication_factor
        self.min_insync_replicas = min_insync_replicas

    def configs(self) -> dict[str, str]:
        configs: dict[str, str] = {}
        if self.min_insync_replicas is not None:
            configs[self.PROPERTY_MIN_INSYNC_REPLICAS] = str(
                self.min_insync_replicas)
        return configs

    def __str__(self):
        return self.name

    def __repr__(self):
        return f"TopicSpec({self.name}, partitions={self.partition_count}, rf={self.replication_factor})"

    def __eq__(self, other: object):
        if not isinstance(other, TopicSpec):
            return False
        return self.name == other.name and \
                self.partition_count == other.partition_count and \
                self.replication_factor == other.replication_factor

    def _random_topic_suffix(self, size: int = 10):
        return "".join(
            random.choice(string.ascii_lowercase) for _ in range(size))


class BrokerDescription(typing.NamedTuple):
    id: int
    host: str
    port: int
    rack: str | None


class PartitionDescription(typing.NamedTuple):
    id: int
    leader: int
    replicas: typing.List[int]
    isr: typing.List[int]


class TopicDescription(typing.NamedTuple):
    name: str
    partitions: typing.List[PartitionDescription]


class ProducedRecord(typing.NamedTuple):
    partition: int
    offset: int


class ConsumedRecord(typing.NamedTuple):
    partition: int
    offset: int
    key: bytes | None
    value: bytes | None
