from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from sqlalchemy.engine import Engine

from ..errors import SerializationConflictError, StatementError
from ..isolation import IsolationLevel
from ..retry import retry_on_conflict
from ..runner import BodyOutcome, ScenarioRunner


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TrialOutcome:
    scenario: str
    level: IsolationLevel
    anomaly: bool
    detail: str
    observed: dict[str, Any] = field(default_factory=dict)
    conflicts: int = 0
    strategy: str | None = None
    # statement error that failed this trial without a verdict
    error: StatementError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def assert_consistent(self) -> None:
        assert not self.failed, self.detail
        assert not self.anomaly, self.detail


@dataclass(slots=True)
class Retried:
    """Value of a body that ran under ``retry_on_conflict``, with the conflicts it absorbed."""

    value: Any
    conflicts: int = 0


@dataclass(slots=True)
class FoldedOutcomes:
    values: list[Any]
    conflicts: int


class AnomalyScenario(ABC):
    """reset state -> run bodies concurrently -> check the final/observed state."""

    name: str = "anomaly"
    # engine aborts that belong to the scenario's expected behaviour
    expected_conflicts: bool = False

    def __init__(self, engine: Engine, runner: ScenarioRunner | None = None):
        self.engine = engine
        self.runner = runner or ScenarioRunner(engine)

    @property
    def strategy(self) -> str | None:
        return None

    @abstractmethod
    def reset(self) -> None:
        ...

    @abstractmethod
    def bodies(self, level: IsolationLevel) -> Sequence[Callable[[], Any]]:
        ...

    @abstractmethod
    def check(self, level: IsolationLevel, folded: FoldedOutcomes) -> TrialOutcome:
        ...

    def trial(self, level: IsolationLevel) -> TrialOutcome:
        self.reset()
        outcomes = self.runner.run(*self.bodies(level), raise_errors=False)
        return self.check(level, self._fold(outcomes))

    def retrying(self, fn: Callable[[], Any]) -> Callable[[], Retried]:
        """Wrap ``fn`` so engine aborts are retried and still counted as conflicts."""

        def body() -> Retried:
            conflicts: list[SerializationConflictError] = []
            value = retry_on_conflict(fn, on_conflict=conflicts.append)
            return Retried(value=value, conflicts=len(conflicts))

        return body

    def _fold(self, outcomes: list[BodyOutcome]) -> FoldedOutcomes:
        values: list[Any] = []
        conflicts = 0
        unexpected: list[BodyOutcome] = []
        for outcome in outcomes:
            if outcome.error is None:
                if isinstance(outcome.value, Retried):
                    values.append(outcome.value.value)
                    conflicts += outcome.value.conflicts
                else:
                    values.append(outcome.value)
            elif self.expected_conflicts and isinstance(outcome.error, SerializationConflictError):
                logger.debug("%s: body %d aborted by the engine: %s", self.name, outcome.index, outcome.error)
                values.append(None)
                conflicts += 1
            else:
                unexpected.append(outcome)
        if unexpected:
            for outcome in unexpected[1:]:
                logger.debug("%s: body %d also failed: %r", self.name, outcome.index, outcome.error)
            raise unexpected[0].error
        return FoldedOutcomes(values=values, conflicts=conflicts)

    def outcome(
        self,
        level: IsolationLevel,
        *,
        anomaly: bool,
        detail: str,
        conflicts: int = 0,
        **observed: Any,
    ) -> TrialOutcome:
        return TrialOutcome(
            scenario=self.name,
            level=level,
            anomaly=anomaly,
            detail=detail,
            observed=observed,
            conflicts=conflicts,
            strategy=self.strategy,
        )

    def failed_outcome(self, level: IsolationLevel, error: StatementError) -> TrialOutcome:
        return TrialOutcome(
            scenario=self.name,
            level=level,
            anomaly=False,
            detail=f"trial failed: {error!r}",
            strategy=self.strategy,
            error=error,
        )
