from __future__ import annotations

import logging
import threading
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, SingletonThreadPool, StaticPool

from .errors import PoolCapacityError


logger = logging.getLogger(__name__)

T = TypeVar("T")

# generous upper bound for bodies to reach the start line
START_TIMEOUT = 30.0


@dataclass(slots=True)
class BodyOutcome(Generic[T]):
    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value


def pool_capacity(engine: Engine) -> int | None:
    """How many connections the engine can hand out at once. None means unbounded."""
    pool = engine.pool
    if isinstance(pool, (StaticPool, SingletonThreadPool)):
        return 1
    if isinstance(pool, QueuePool):
        # QueuePool has no public accessor for its configured max_overflow;
        # overflow() is the current count, not the limit
        overflow = pool._max_overflow
        if overflow < 0:
            return None
        return pool.size() + overflow
    return None


class ScenarioRunner:
    """Runs unit-of-work closures concurrently and returns once every one of them has ended."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def check_capacity(self, count: int) -> None:
        capacity = pool_capacity(self.engine)
        if capacity is not None and capacity < count:
            raise PoolCapacityError(
                f"{count} concurrent bodies need {count} live connections, "
                f"pool {type(self.engine.pool).__name__} holds {capacity}"
            )

    def run(self, *bodies: Callable[[], Any], raise_errors: bool = True) -> list[BodyOutcome]:
        if not bodies:
            return []
        self.check_capacity(len(bodies))
        start_line = threading.Barrier(len(bodies))

        def released(body: Callable[[], Any]) -> Callable[[], Any]:
            def call() -> Any:
                start_line.wait(timeout=START_TIMEOUT)
                return body()

            return call

        with ThreadPoolExecutor(max_workers=len(bodies), thread_name_prefix="body") as executor:
            futures = [executor.submit(released(body)) for body in bodies]
            wait(futures, return_when=ALL_COMPLETED)

        outcomes: list[BodyOutcome] = []
        for index, future in enumerate(futures):
            error = future.exception()
            if error is not None:
                logger.debug("body %d failed: %r", index, error)
                outcomes.append(BodyOutcome(index=index, error=error))
            else:
                outcomes.append(BodyOutcome(index=index, value=future.result()))

        if raise_errors:
            for outcome in outcomes:
                if outcome.error is not None:
                    raise outcome.error
        return outcomes


def run_concurrently(engine: Engine, *bodies: Callable[[], Any]) -> list[Any]:
    """Run ``bodies`` in parallel, re-raising the first failure once all of them are done."""
    return [outcome.value for outcome in ScenarioRunner(engine).run(*bodies)]
