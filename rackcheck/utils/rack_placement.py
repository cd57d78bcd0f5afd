# Copyright 2024 Redpanda Data, Inc.
#
# Use of this software is governed by the Business Source License
# included in the file licenses/BSL.md
#
# As of the Change Date specified in that file, in accordance with
# the Business Source License, use of this software will be governed
# by the Apache License, Version 2.0
"""
Rack placement verification.

Computes the rack diversity a partition assignment should have for a given
broker to rack topology and compares it with what the brokers report. Every
check is a pure function of its arguments and returns a VerificationReport;
failing placements are never raised, so a caller can check a whole topic and
collect every failure before deciding whether the scenario failed.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Sequence

# pyright: strict


class PlacementFault(str, Enum):
    """
    Conditions a placement check reports. UNKNOWN_BROKER is fatal only in
    check_topology_completeness, every other check carries it as an annotation.
    """
    UNKNOWN_BROKER = "UnknownBroker"
    INSUFFICIENT_RACK_DIVERSITY = "InsufficientRackDiversity"
    DURABILITY_FLOOR_VIOLATION = "DurabilityFloorViolation"
    LEADER_IMBALANCE = "LeaderImbalance"
    LEADER_STARVATION = "LeaderStarvation"
    REPLICA_COUNT_MISMATCH = "ReplicaCountMismatch"

    def __str__(self):
        return self.value


class PlacementError(AssertionError):
    """Raised by assert_placement when at least one report failed."""
    def __init__(self, failed: Sequence["VerificationReport"]):
        self.failed = list(failed)
        lines = "\n".join(f"  {r}" for r in self.failed)
        super().__init__(
            f"{len(self.failed)} rack placement check(s) failed:\n{lines}")


@dataclass(frozen=True)
class Broker:
    id: int
    rack: str | None = None
    host: str | None = None
    port: int | None = None


class RackTopology:
    """
    Broker id to rack label mapping taken from one metadata snapshot.

    Brokers that were reported without a rack label are known to the cluster
    but have no rack mapping: they never resolve and never count towards rack
    diversity. They are remembered so that completeness failures can tell a
    rack-unaware broker apart from one missing from the metadata.
    """
    def __init__(self, racks: Mapping[int, str], rackless: Iterable[int] = ()):
        self._racks = dict(racks)
        self._rackless = frozenset(rackless) - self._racks.keys()

    @classmethod
    def from_brokers(cls, brokers: Iterable[Broker]) -> "RackTopology":
        racks: dict[int, str] = {}
        rackless: list[int] = []
        for b in brokers:
            if b.rack:
                racks[b.id] = b.rack
            else:
                rackless.append(b.id)
        return cls(racks, rackless)

    def rack_of(self, broker_id: int) -> str | None:
        return self._racks.get(broker_id)

    def __contains__(self, broker_id: object) -> bool:
        return broker_id in self._racks

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RackTopology):
            return False
        return self._racks == other._racks and self._rackless == other._rackless

    def __repr__(self):
        return f"RackTopology({self._racks}, rackless={sorted(self._rackless)})"

    @property
    def broker_ids(self) -> frozenset[int]:
        return frozenset(self._racks)

    @property
    def rackless(self) -> frozenset[int]:
        return self._rackless

    @property
    def racks(self) -> frozenset[str]:
        return frozenset(self._racks.values())

    @property
    def rack_count(self) -> int:
        return len(self.racks)


@dataclass(frozen=True)
class PartitionAssignment:
    """
    Replica placement of a single partition. The leader is replicas[0]
    unless the metadata names one explicitly.
    """
    topic: str
    partition: int
    replicas: tuple[int, ...]
    isr: frozenset[int] = frozenset()
    leader: int | None = None

    def __post_init__(self):
        # accept lists and sets straight from client metadata
        object.__setattr__(self, 'replicas', tuple(self.replicas))
        object.__setattr__(self, 'isr', frozenset(self.isr))

    @property
    def effective_leader(self) -> int:
        if self.leader is not None:
            return self.leader
        if not self.replicas:
            raise ValueError(
                f"{self.topic}/{self.partition} has neither a leader nor replicas"
            )
        return self.replicas[0]


@dataclass(frozen=True)
class VerificationReport:
    check: str
    topic: str | None
    partition: int | None
    passed: bool
    racks: frozenset[str] = frozenset()
    expected_racks: int | None = None
    unresolved: tuple[int, ...] = ()
    faults: tuple[PlacementFault, ...] = ()
    annotations: tuple[PlacementFault, ...] = ()
    reason: str | None = None
    shortfall: int = 0
    offending: tuple[int, ...] = ()
    leaders_per_rack: tuple[tuple[str, int], ...] = ()
    leader_band: tuple[int, int] | None = None

    @property
    def distinct_racks(self) -> int:
        return len(self.racks)

    def __bool__(self):
        return self.passed

    def __str__(self):
        where = self.topic or "<cluster>"
        if self.partition is not None:
            where = f"{where}/{self.partition}"
        if self.passed:
            s = f"{self.check} {where}: ok, racks={sorted(self.racks)}"
        else:
            faults = ",".join(str(f) for f in self.faults)
            s = f"{self.check} {where}: FAILED [{faults}] {self.reason}"
        if self.unresolved:
            s += f" (unresolved brokers: {list(self.unresolved)})"
        return s


def _unique(ids: Iterable[int]) -> tuple[int, ...]:
    return tuple(dict.fromkeys(ids))


def _resolve(topology: RackTopology,
             broker_ids: Iterable[int]) -> tuple[frozenset[str], tuple[int, ...]]:
    racks: set[str] = set()
    unresolved: list[int] = []
    for b in _unique(broker_ids):
        rack = topology.rack_of(b)
        if rack is None:
            unresolved.append(b)
        else:
            racks.add(rack)
    return frozenset(racks), tuple(unresolved)


def _colocated(topology: RackTopology,
               broker_ids: Iterable[int]) -> tuple[int, ...]:
    """Brokers placed in a rack already used by an earlier broker."""
    seen: set[str] = set()
    colocated: list[int] = []
    for b in _unique(broker_ids):
        rack = topology.rack_of(b)
        if rack is None:
            continue
        if rack in seen:
            colocated.append(b)
        seen.add(rack)
    return tuple(colocated)


def _annotations(unresolved: Sequence[int]) -> tuple[PlacementFault, ...]:
    return (PlacementFault.UNKNOWN_BROKER, ) if unresolved else ()


def check_replica_rack_diversity(topology: RackTopology,
                                 assignment: PartitionAssignment,
                                 replication_factor: int) -> VerificationReport:
    """
    The replicas of a partition must span min(replication_factor, racks)
    distinct racks. A replication factor above the number of racks caps at
    the rack count, there is no way to spread wider than the cluster.
    """
    if not assignment.replicas:
        raise ValueError(
            f"{assignment.topic}/{assignment.partition} has no replicas")
    if replication_factor < 1:
        raise ValueError(f"invalid replication factor {replication_factor}")

    racks, unresolved = _resolve(topology, assignment.replicas)
    expected = min(replication_factor, topology.rack_count)
    observed = len(racks)
    common = dict(check="replica_rack_diversity",
                  topic=assignment.topic,
                  partition=assignment.partition,
                  racks=racks,
                  expected_racks=expected,
                  unresolved=unresolved,
                  annotations=_annotations(unresolved))

    if observed == expected:
        return VerificationReport(passed=True, **common)

    replicas = list(assignment.replicas)
    if observed < expected:
        return VerificationReport(
            passed=False,
            faults=(PlacementFault.INSUFFICIENT_RACK_DIVERSITY, ),
            reason=
            f"replicas {replicas} span {observed} rack(s) {sorted(racks)}, "
            f"expected {expected}: {expected - observed} short",
            shortfall=expected - observed,
            offending=_colocated(topology, assignment.replicas) + unresolved,
            **common)

    return VerificationReport(
        passed=False,
        faults=(PlacementFault.REPLICA_COUNT_MISMATCH, ),
        reason=f"replicas {replicas} span {observed} racks but replication "
        f"factor {replication_factor} allows at most {expected}",
        offending=tuple(assignment.replicas[replication_factor:]),
        **common)


def check_isr_rack_spread(topology: RackTopology,
                          assignment: PartitionAssignment,
                          min_insync_replicas: int) -> VerificationReport:
    """
    The ISR must hold at least min_insync_replicas members, and must not
    collapse into a single rack whenever the cluster has two or more.
    """
    if min_insync_replicas < 1:
        raise ValueError(
            f"invalid min.insync.replicas {min_insync_replicas}")
    stray = assignment.isr - set(assignment.replicas)
    if stray:
        raise ValueError(
            f"{assignment.topic}/{assignment.partition} ISR members "
            f"{sorted(stray)} are not replicas {list(assignment.replicas)}")

    isr = sorted(assignment.isr)
    racks, unresolved = _resolve(topology, isr)
    expected = min(2, topology.rack_count)

    faults: list[PlacementFault] = []
    reasons: list[str] = []
    if len(isr) < min_insync_replicas:
        faults.append(PlacementFault.DURABILITY_FLOOR_VIOLATION)
        reasons.append(f"ISR {isr} has {len(isr)} member(s), "
                       f"min.insync.replicas is {min_insync_replicas}")
    if len(racks) < expected:
        faults.append(PlacementFault.INSUFFICIENT_RACK_DIVERSITY)
        reasons.append(f"ISR {isr} spans {len(racks)} rack(s) "
                       f"{sorted(racks)}, at least {expected} required")

    return VerificationReport(
        check="isr_rack_spread",
        topic=assignment.topic,
        partition=assignment.partition,
        passed=not faults,
        racks=racks,
        expected_racks=expected,
        unresolved=unresolved,
        faults=tuple(faults),
        annotations=_annotations(unresolved),
        reason="; ".join(reasons) or None,
        shortfall=max(0, expected - len(racks)),
        offending=_colocated(topology, isr) + unresolved if faults else ())


def check_leader_distribution(topology: RackTopology,
                              assignments: Iterable[PartitionAssignment],
                              rack_count: int) -> VerificationReport:
    """
    Every rack of the topology must lead floor(n / rack_count) or
    ceil(n / rack_count) of the topic's n partitions. A rack leading
    nothing while n >= rack_count is starved.
    """
    if rack_count < 1:
        raise ValueError(f"invalid rack count {rack_count}")

    assignments = list(assignments)
    n = len(assignments)
    leaders = Counter[str]()
    unresolved: list[int] = []
    for a in assignments:
        leader = a.effective_leader
        rack = topology.rack_of(leader)
        if rack is None:
            unresolved.append(leader)
        else:
            leaders[rack] += 1

    low = n // rack_count
    high = -(-n // rack_count)

    faults: list[PlacementFault] = []
    reasons: list[str] = []
    for rack in sorted(topology.racks):
        count = leaders[rack]
        if count == 0 and n >= rack_count:
            if PlacementFault.LEADER_STARVATION not in faults:
                faults.append(PlacementFault.LEADER_STARVATION)
            reasons.append(
                f"rack {rack} leads no partitions out of {n} "
                f"across {rack_count} racks")
        elif count < low or count > high:
            if PlacementFault.LEADER_IMBALANCE not in faults:
                faults.append(PlacementFault.LEADER_IMBALANCE)
            reasons.append(f"rack {rack} leads {count} partition(s), "
                           f"expected between {low} and {high}")

    unresolved_ids = _unique(unresolved)
    return VerificationReport(
        check="leader_distribution",
        topic=assignments[0].topic if assignments else None,
        partition=None,
        passed=not faults,
        racks=frozenset(leaders),
        unresolved=unresolved_ids,
        faults=tuple(faults),
        annotations=_annotations(unresolved_ids),
        reason="; ".join(reasons) or None,
        leaders_per_rack=tuple(
            (rack, leaders[rack]) for rack in sorted(topology.racks)),
        leader_band=(low, high))


def check_topology_completeness(topology: RackTopology,
                                observed_broker_ids: Iterable[int],
                                topic: str | None = None
                                ) -> VerificationReport:
    """
    Every observed broker must have a rack mapping. Run this before the other
    checks: they only annotate unresolved brokers and keep going.
    """
    observed = _unique(observed_broker_ids)
    racks, unresolved = _resolve(topology, observed)
    if not unresolved:
        return VerificationReport(check="topology_completeness",
                                  topic=topic,
                                  partition=None,
                                  passed=True,
                                  racks=racks)

    reasons: list[str] = []
    # metadata reports a partition without a leader as leader -1
    leaderless = [b for b in unresolved if b < 0]
    missing = [
        b for b in unresolved if b >= 0 and b not in topology.rackless
    ]
    rackless = [b for b in unresolved if b in topology.rackless]
    if leaderless:
        reasons.append(f"no leader elected (leader id(s) {leaderless})")
    if missing:
        reasons.append(f"broker(s) {missing} missing from metadata")
    if rackless:
        reasons.append(f"broker(s) {rackless} have no rack label")
    return VerificationReport(check="topology_completeness",
                              topic=topic,
                              partition=None,
                              passed=False,
                              racks=racks,
                              unresolved=unresolved,
                              faults=(PlacementFault.UNKNOWN_BROKER, ),
                              reason="; ".join(reasons),
                              offending=unresolved)


def referenced_brokers(
        assignments: Iterable[PartitionAssignment]) -> tuple[int, ...]:
    ids: list[int] = []
    for a in assignments:
        ids.extend(a.replicas)
        ids.extend(sorted(a.isr))
        if a.leader is not None:
            ids.append(a.leader)
    return _unique(ids)


def verify_topic(topology: RackTopology,
                 assignments: Iterable[PartitionAssignment],
                 replication_factor: int,
                 min_insync_replicas: int) -> list[VerificationReport]:
    """
    Run every check over one topic: completeness first, then replica and
    ISR placement per partition, then leader distribution. All reports are
    returned, failing or not.
    """
    assignments = sorted(assignments, key=lambda a: a.partition)
    topic = assignments[0].topic if assignments else None

    reports = [
        check_topology_completeness(topology,
                                    referenced_brokers(assignments),
                                    topic=topic)
    ]
    for a in assignments:
        reports.append(
            check_replica_rack_diversity(topology, a, replication_factor))
        reports.append(check_isr_rack_spread(topology, a,
                                             min_insync_replicas))
    reports.append(
        check_leader_distribution(topology, assignments,
                                  max(topology.rack_count, 1)))
    return reports


def failures(reports: Iterable[VerificationReport]) -> list[VerificationReport]:
    return [r for r in reports if not r.passed]


def assert_placement(reports: Iterable[VerificationReport]):
    failed = failures(reports)
    if failed:
        raise PlacementError(failed)
