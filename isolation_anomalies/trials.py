from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .errors import StatementError
from .isolation import IsolationLevel
from .scenarios.base import AnomalyScenario, TrialOutcome


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TrialReport:
    scenario: str
    level: IsolationLevel
    strategy: str | None = None
    outcomes: list[TrialOutcome] = field(default_factory=list)

    @property
    def trials(self) -> int:
        return len(self.outcomes)

    @property
    def anomalies(self) -> list[TrialOutcome]:
        return [o for o in self.outcomes if o.anomaly]

    @property
    def anomaly_count(self) -> int:
        return len(self.anomalies)

    @property
    def failures(self) -> list[TrialOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def conflict_count(self) -> int:
        return sum(o.conflicts for o in self.outcomes)

    @property
    def observed(self) -> bool:
        return self.anomaly_count > 0

    @property
    def clean(self) -> bool:
        return self.anomaly_count == 0 and not self.failures

    def summary(self) -> str:
        label = self.scenario if self.strategy is None else f"{self.scenario} ({self.strategy})"
        return (
            f"{label} at {self.level}: {self.anomaly_count}/{self.trials} trials anomalous, "
            f"{self.conflict_count} conflicts"
            + (f", {len(self.failures)} failed" if self.failures else "")
        )

    def assert_clean(self) -> None:
        bad = self.anomalies or self.failures
        first = bad[0].detail if bad else ""
        assert self.clean, f"{self.summary()}; first: {first}"

    def assert_observed(self) -> None:
        assert self.observed, f"{self.summary()}; anomaly never reproduced"


def repeat_trials(scenario: AnomalyScenario, level: IsolationLevel, count: int) -> TrialReport:
    """Run ``count`` independent trials of ``scenario``.

    Every trial resets the shared state first. A statement error nobody expected
    fails only its own trial. Harness errors propagate and stop the remaining
    trials; they are never folded into the report.
    """
    if count < 1:
        raise ValueError("count must be ge 1")
    report = TrialReport(scenario=scenario.name, level=level, strategy=scenario.strategy)
    for number in range(1, count + 1):
        try:
            outcome = scenario.trial(level)
        except StatementError as e:
            logger.warning("trial %d failed: %r", number, e)
            outcome = scenario.failed_outcome(level, e)
        if outcome.anomaly:
            logger.debug("trial %d: %s", number, outcome.detail)
        report.outcomes.append(outcome)
    logger.info(report.summary())
    return report
