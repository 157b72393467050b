from __future__ import annotations

from sqlalchemy import text

from ..database import COUNTER_LOCK_NAME, count_counters, reset_materialized_lock, truncate_counters
from ..isolation import IsolationLevel
from ..transactions import transaction
from .base import AnomalyScenario, FoldedOutcomes, TrialOutcome


LOCK_SENTINEL = text("SELECT name FROM materialized_locks WHERE name = :name FOR UPDATE")
TOUCH_SENTINEL = text("UPDATE materialized_locks SET name = name WHERE name = :name")
COUNT_COUNTERS = text("SELECT count(name) FROM counters")
INSERT_COUNTER = text("INSERT INTO counters (name, counter) VALUES (:name, 0)")


class WriteSkewScenario(AnomalyScenario):
    """
    Each body inserts its own counter only if the table is still empty. Exactly
    one counter must exist afterwards.

    There is no row to lock while the table is empty, so without predicate locks
    both bodies can see an empty table. ``materialized_lock=True`` makes both
    bodies lock a shared sentinel row first, which serializes them at any level.
    A body aborted by a serialization conflict is retried; the abort still
    counts towards ``TrialOutcome.conflicts``.
    """

    name = "write skew"

    def __init__(
        self,
        engine,
        runner=None,
        *,
        materialized_lock: bool = False,
        names: tuple[str, str] = ("first", "second"),
        lock_name: str = COUNTER_LOCK_NAME,
    ):
        super().__init__(engine, runner)
        self.materialized_lock = materialized_lock
        self.names = names
        self.lock_name = lock_name

    @property
    def strategy(self) -> str:
        return "materialized_lock" if self.materialized_lock else "none"

    def reset(self) -> None:
        truncate_counters(self.engine)
        if self.materialized_lock:
            reset_materialized_lock(self.engine, self.lock_name)

    def insert_if_empty(self, level: IsolationLevel, name: str) -> bool:
        with transaction(self.engine, level) as tx:
            if self.materialized_lock:
                tx.execute(LOCK_SENTINEL, name=self.lock_name)
            if tx.scalar(COUNT_COUNTERS) != 0:
                return False
            tx.execute(INSERT_COUNTER, name=name)
            if self.materialized_lock:
                # new row version: snapshot readers queued on the lock abort instead of reusing a stale count
                tx.execute(TOUCH_SENTINEL, name=self.lock_name)
            return True

    def bodies(self, level):
        return [
            self.retrying(lambda name=name: self.insert_if_empty(level, name))
            for name in self.names
        ]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        count = count_counters(self.engine)
        inserted = sum(1 for value in folded.values if value)
        return self.outcome(
            level,
            anomaly=count != 1,
            detail=f"Expected exactly one counter, found {count}",
            conflicts=folded.conflicts,
            count=count,
            inserted=inserted,
        )
