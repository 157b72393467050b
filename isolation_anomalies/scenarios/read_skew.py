from __future__ import annotations

from sqlalchemy import text

from ..database import reset_counters
from ..isolation import IsolationLevel
from ..transactions import run_script, transaction
from .base import AnomalyScenario, FoldedOutcomes, TrialOutcome


SET_COUNTER = text("UPDATE counters SET counter = :value WHERE name = :name")
SELECT_COUNTER = text("SELECT counter FROM counters WHERE name = :name")


class ReadSkewScenario(AnomalyScenario):
    """
    Multi-object read skew: the writer moves both counters to a new equal value,
    the reader reads one then the other inside a single transaction.
    """

    name = "read skew"
    expected_conflicts = True

    def __init__(self, engine, runner=None, *, value: int = 1):
        super().__init__(engine, runner)
        self.value = value

    def reset(self) -> None:
        reset_counters(self.engine, first=0, second=0)

    def set_both(self, level: IsolationLevel) -> None:
        run_script(
            self.engine,
            level,
            [
                SET_COUNTER.bindparams(value=self.value, name="first"),
                SET_COUNTER.bindparams(value=self.value, name="second"),
            ],
        )

    def read_both(self, level: IsolationLevel) -> tuple[int, int]:
        with transaction(self.engine, level) as tx:
            first = tx.scalar(SELECT_COUNTER, name="first")
            second = tx.scalar(SELECT_COUNTER, name="second")
        return first, second

    def bodies(self, level):
        return [lambda: self.set_both(level), lambda: self.read_both(level)]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        read = folded.values[1]
        if read is None:
            return self.outcome(
                level, anomaly=False, detail="Reader aborted by the engine", conflicts=folded.conflicts
            )
        first, second = read
        return self.outcome(
            level,
            anomaly=first != second,
            detail=f"Counters not equal. First: {first}, Second: {second}",
            conflicts=folded.conflicts,
            first=first,
            second=second,
        )


class RepeatedReadSkewScenario(AnomalyScenario):
    """Single-object read skew: the reader reads the same counter twice while the writer updates it."""

    name = "repeated read skew"
    expected_conflicts = True

    def __init__(self, engine, runner=None, *, value: int = 1, counter: str = "first"):
        super().__init__(engine, runner)
        self.value = value
        self.counter = counter

    def reset(self) -> None:
        reset_counters(self.engine, first=0, second=0)

    def set_counter(self, level: IsolationLevel) -> None:
        run_script(self.engine, level, [SET_COUNTER.bindparams(value=self.value, name=self.counter)])

    def read_twice(self, level: IsolationLevel) -> tuple[int, int]:
        with transaction(self.engine, level) as tx:
            first_read = tx.scalar(SELECT_COUNTER, name=self.counter)
            second_read = tx.scalar(SELECT_COUNTER, name=self.counter)
        return first_read, second_read

    def bodies(self, level):
        return [lambda: self.set_counter(level), lambda: self.read_twice(level)]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        read = folded.values[1]
        if read is None:
            return self.outcome(
                level, anomaly=False, detail="Reader aborted by the engine", conflicts=folded.conflicts
            )
        first_read, second_read = read
        return self.outcome(
            level,
            anomaly=first_read != second_read,
            detail=f"Reads not equal. First: {first_read}, Second: {second_read}",
            conflicts=folded.conflicts,
            first=first_read,
            second=second_read,
        )
