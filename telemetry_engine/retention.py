"""
Tier-aware retention store.

Keeps one active unit per tier, opens a new one after each rollover and
deletes units whose inferred age exceeds the tier's maximum age.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List

from .clock import VirtualClock
from .errors import NotInitializedError, ParseError, QueryError, Result
from .interfaces import Reading, StorageBackend
from .logger import get_logger
from .tiers import Tier, TierPolicy, tier_policies, unit_id


class UnitState(Enum):
    NO_ACTIVE_UNIT = "no_active_unit"
    ACTIVE_UNIT_OPEN = "active_unit_open"
    ROTATING = "rotating"
    CLOSED = "closed"


@dataclass
class RotationReport:
    """Outcome of one rotate() pass over a tier."""
    tier: Tier
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    unparseable: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class RetentionStore:
    """Persists readings per tier and expires old retained units."""

    def __init__(self, backend: StorageBackend, clock: VirtualClock):
        self.backend = backend
        self.clock = clock
        self.states: Dict[Tier, UnitState] = {tier: UnitState.CLOSED for tier in Tier}
        self.active_units: Dict[Tier, str] = {}
        self.logger = get_logger("RetentionStore")

        # Counters for get_stats
        self.rotations = {tier: 0 for tier in Tier}
        self.deleted_units = {tier: 0 for tier in Tier}
        self.unparseable_units = {tier: 0 for tier in Tier}
        self.write_failures = 0

    @property
    def policies(self) -> Dict[Tier, TierPolicy]:
        return tier_policies(self.clock)

    @property
    def is_open(self) -> bool:
        return any(state is not UnitState.CLOSED for state in self.states.values())

    def state(self, tier: Tier) -> UnitState:
        return self.states[tier]

    def open(self) -> Result:
        if self.is_open:
            return Result.success()
        result = self.backend.open()
        if result:
            self.states = {tier: UnitState.NO_ACTIVE_UNIT for tier in Tier}
        return result

    def close(self):
        """Close every active unit and the backend. Terminal state."""
        for tier in Tier:
            if self.states[tier] is UnitState.ACTIVE_UNIT_OPEN:
                self.backend.close_unit(tier)
        self.backend.close()
        self.active_units.clear()
        self.states = {tier: UnitState.CLOSED for tier in Tier}

    def append(self, tier: Tier, reading: Reading) -> Result:
        """Write into the tier's active unit, opening one for the reading's bucket if needed."""
        state = self.states[tier]
        if state is UnitState.CLOSED:
            return Result.failure(NotInitializedError("Retention store is closed"))

        if state is not UnitState.ACTIVE_UNIT_OPEN:
            policy = self.policies[tier]
            bucket = self.clock.bucket_start(reading.timestamp, policy.rollover)
            uid = unit_id(tier, bucket, scaled=self.clock.scaled)
            opened = self.backend.open_unit(tier, uid)
            if not opened:
                self.write_failures += 1
                return opened
            self.active_units[tier] = uid
            self.states[tier] = UnitState.ACTIVE_UNIT_OPEN
            self.logger.debug(f"Opened {tier.value} unit {uid}")

        result = self.backend.append(tier, reading)
        if not result:
            self.write_failures += 1
        return result

    def roll_over(self, tier: Tier):
        """Tier boundary crossed: close the active unit so the next append opens a new one."""
        if self.states[tier] is UnitState.ACTIVE_UNIT_OPEN:
            self.backend.close_unit(tier)
            self.logger.debug(f"Closed {tier.value} unit {self.active_units.get(tier)}")
            self.active_units.pop(tier, None)
            self.states[tier] = UnitState.NO_ACTIVE_UNIT

    def rotate(self, tier: Tier) -> RotationReport:
        """
        Delete every unit of the tier whose age exceeds the tier's max age.

        Age is inferred from the unit id. Ids that do not parse are treated as
        age zero and therefore never expire; they are reported so the risk
        stays visible.
        """
        report = RotationReport(tier)
        previous = self.states[tier]
        if previous is UnitState.CLOSED:
            return report

        self.states[tier] = UnitState.ROTATING
        try:
            max_age = self.policies[tier].max_age
            now = self.clock.now()

            for uid, inferred in self.backend.list_units(tier):
                if inferred is None:
                    error = ParseError(f"Cannot infer timestamp of unit {uid}; treating as age 0")
                    self.logger.warning(str(error))
                    self.unparseable_units[tier] += 1
                    report.unparseable.append(uid)
                    age = timedelta(0)
                else:
                    age = now - inferred

                if age <= max_age:
                    report.kept.append(uid)
                    continue

                result = self.backend.delete_unit(tier, uid)
                if result:
                    report.deleted.append(uid)
                    self.deleted_units[tier] += 1
                    if self.active_units.get(tier) == uid:
                        self.active_units.pop(tier)
                        previous = UnitState.NO_ACTIVE_UNIT
                else:
                    report.failed.append(uid)
                    self.write_failures += 1
        finally:
            self.states[tier] = previous

        self.rotations[tier] += 1
        if report.deleted:
            self.logger.info(f"Rotated {tier.value}: deleted {len(report.deleted)} unit(s), kept {len(report.kept)}")
        return report

    # --- queries: backend failures degrade to the empty/zero sentinel -------

    def query_range(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> List[Reading]:
        try:
            return self.backend.query_range(start, end, tier)
        except QueryError as e:
            self.logger.error(f"Range query failed: {e}")
            return []

    def query_average(self, start: datetime, end: datetime, tier: Tier = Tier.RAW) -> float:
        try:
            return self.backend.query_average(start, end, tier)
        except QueryError as e:
            self.logger.error(f"Average query failed: {e}")
            return 0.0

    def query_recent(self, n: int, tier: Tier = Tier.RAW) -> List[Reading]:
        try:
            return self.backend.query_recent(n, tier)
        except QueryError as e:
            self.logger.error(f"Recent query failed: {e}")
            return []

    def count(self, tier: Tier = Tier.RAW) -> int:
        try:
            return self.backend.count(tier)
        except QueryError as e:
            self.logger.error(f"Count query failed: {e}")
            return 0

    def get_stats(self) -> dict:
        return {
            "states": {tier.value: state.value for tier, state in self.states.items()},
            "active_units": {tier.value: uid for tier, uid in self.active_units.items()},
            "rotations": {tier.value: n for tier, n in self.rotations.items()},
            "deleted_units": {tier.value: n for tier, n in self.deleted_units.items()},
            "unparseable_units": {tier.value: n for tier, n in self.unparseable_units.items()},
            "write_failures": self.write_failures,
            "backend": self.backend.get_stats(),
        }
