from __future__ import annotations

from enum import Enum

from sqlalchemy import text

from ..database import read_counter, reset_counters
from ..isolation import IsolationLevel
from ..retry import retry_until
from ..transactions import transaction
from .base import AnomalyScenario, FoldedOutcomes, TrialOutcome


SELECT_COUNTER = text("SELECT counter FROM counters WHERE name = :name")
SELECT_COUNTER_FOR_UPDATE = text("SELECT counter FROM counters WHERE name = :name FOR UPDATE")
SET_COUNTER = text("UPDATE counters SET counter = :value WHERE name = :name")
INCREMENT = text("UPDATE counters SET counter = counter + 1 WHERE name = :name")
COMPARE_AND_SET = text(
    "UPDATE counters SET counter = :value WHERE name = :name AND counter = :expected"
)


class IncrementStrategy(str, Enum):
    NAIVE = "naive"
    ATOMIC = "atomic"
    SELECT_FOR_UPDATE = "select_for_update"
    COMPARE_AND_SET = "compare_and_set"


class LostUpdateScenario(AnomalyScenario):
    """
    Two bodies increment the same counter by one. Anything but initial + 2 means
    an update was lost.

    Serialization conflicts are retried and counted, so stricter levels end
    with both increments applied and the aborts visible in ``conflicts``.
    """

    name = "lost update"

    def __init__(
        self,
        engine,
        runner=None,
        *,
        increment: IncrementStrategy = IncrementStrategy.NAIVE,
        counter: str = "first",
        initial: int = 0,
        cas_max_attempts: int | None = None,
    ):
        super().__init__(engine, runner)
        self.increment = IncrementStrategy(increment)
        self.counter = counter
        self.initial = initial
        self.cas_max_attempts = cas_max_attempts

    @property
    def strategy(self) -> str:
        return self.increment.value

    def reset(self) -> None:
        reset_counters(self.engine, **{self.counter: self.initial})

    def read_modify_write(self, level: IsolationLevel, *, lock: bool) -> None:
        with transaction(self.engine, level) as tx:
            select = SELECT_COUNTER_FOR_UPDATE if lock else SELECT_COUNTER
            counter = tx.scalar(select, name=self.counter)
            tx.execute(SET_COUNTER, value=counter + 1, name=self.counter)

    def atomic_increment(self, level: IsolationLevel) -> None:
        with transaction(self.engine, level) as tx:
            tx.execute(INCREMENT, name=self.counter)

    def compare_and_set_once(self, level: IsolationLevel) -> bool:
        with transaction(self.engine, level) as tx:
            counter = tx.scalar(SELECT_COUNTER, name=self.counter)
            result = tx.execute(
                COMPARE_AND_SET, value=counter + 1, name=self.counter, expected=counter
            )
            if result.rowcount == 0:
                tx.rollback()
                return False
            return True

    def compare_and_set(self, level: IsolationLevel) -> None:
        retry_until(
            lambda: self.compare_and_set_once(level),
            bool,
            max_attempts=self.cas_max_attempts,
        )

    def increment_once(self, level: IsolationLevel) -> None:
        if self.increment is IncrementStrategy.NAIVE:
            self.read_modify_write(level, lock=False)
        elif self.increment is IncrementStrategy.SELECT_FOR_UPDATE:
            self.read_modify_write(level, lock=True)
        elif self.increment is IncrementStrategy.ATOMIC:
            self.atomic_increment(level)
        else:
            self.compare_and_set(level)

    def bodies(self, level):
        body = self.retrying(lambda: self.increment_once(level))
        return [body, body]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        final = read_counter(self.engine, self.counter)
        expected = self.initial + 2
        return self.outcome(
            level,
            anomaly=final != expected,
            detail=f"Counter is {final}, expected {expected} after two increments",
            conflicts=folded.conflicts,
            final=final,
        )
