from __future__ import annotations

from sqlalchemy import text

from ..database import read_counter, reset_counters
from ..isolation import IsolationLevel
from ..transactions import run_script
from .base import AnomalyScenario, FoldedOutcomes, TrialOutcome


SET_COUNTER = text("UPDATE counters SET counter = :value WHERE name = :name")


class DirtyWriteScenario(AnomalyScenario):
    """
    Two writers each set both counters to their own value and commit. Once both
    are done the counters must hold the same value. Under snapshot isolation the
    engine may abort one writer instead, which is fine.
    """

    name = "dirty write"
    expected_conflicts = True

    def __init__(self, engine, runner=None, *, values: tuple[int, int] = (1, 2)):
        super().__init__(engine, runner)
        self.values = values

    def reset(self) -> None:
        reset_counters(self.engine, first=0, second=0)

    def set_values(self, level: IsolationLevel, value: int) -> int:
        run_script(
            self.engine,
            level,
            [
                SET_COUNTER.bindparams(value=value, name="first"),
                SET_COUNTER.bindparams(value=value, name="second"),
            ],
        )
        return value

    def bodies(self, level):
        return [lambda value=value: self.set_values(level, value) for value in self.values]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        first = read_counter(self.engine, "first")
        second = read_counter(self.engine, "second")
        return self.outcome(
            level,
            anomaly=first != second,
            detail=f"Counters not equal. First: {first}, Second: {second}",
            conflicts=folded.conflicts,
            first=first,
            second=second,
        )
