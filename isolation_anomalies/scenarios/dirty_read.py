from __future__ import annotations

from sqlalchemy import text

from ..database import reset_counters
from ..isolation import IsolationLevel
from ..transactions import run_script, transaction
from .base import AnomalyScenario, FoldedOutcomes, TrialOutcome


INCREMENT = text("UPDATE counters SET counter = counter + 1 WHERE name = :name")
SELECT_COUNTER = text("SELECT counter FROM counters WHERE name = :name")


class DirtyReadScenario(AnomalyScenario):
    """
    Writer increments a counter and rolls back; reader reads the counter at the
    level under test. Any value other than the seeded one is uncommitted data.
    """

    name = "dirty read"

    def __init__(self, engine, runner=None, *, counter: str = "first", initial: int = 10):
        super().__init__(engine, runner)
        self.counter = counter
        self.initial = initial

    def reset(self) -> None:
        reset_counters(self.engine, **{self.counter: self.initial})

    def increment_and_rollback(self) -> None:
        run_script(
            self.engine,
            None,
            [INCREMENT.bindparams(name=self.counter)],
            finish="ROLLBACK",
        )

    def read(self, level: IsolationLevel) -> int:
        with transaction(self.engine, level) as tx:
            return tx.scalar(SELECT_COUNTER, name=self.counter)

    def bodies(self, level):
        return [self.increment_and_rollback, lambda: self.read(level)]

    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        _, observed = folded.values
        return self.outcome(
            level,
            anomaly=observed != self.initial,
            detail=f"Read {observed}, committed value is {self.initial}",
            read=observed,
        )
