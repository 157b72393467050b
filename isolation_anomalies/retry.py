from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_never,
)

from .errors import RetryExhaustedError, SerializationConflictError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _stop(max_attempts: int | None):
    return stop_never if max_attempts is None else stop_after_attempt(max_attempts)


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    reason = outcome.exception() if outcome is not None and outcome.failed else "rejected result"
    logger.debug(
        "retrying %s (attempt %d): %s",
        getattr(retry_state.fn, "__name__", retry_state.fn),
        retry_state.attempt_number,
        reason,
    )


def retry_until(
    fn: Callable[[], T],
    accept: Callable[[T], bool],
    *,
    max_attempts: int | None = None,
) -> T:
    """Call ``fn`` until ``accept(result)`` holds. Unbounded unless ``max_attempts`` is given."""
    retrying = Retrying(
        retry=retry_if_result(lambda result: not accept(result)),
        stop=_stop(max_attempts),
        before_sleep=_log_retry,
    )
    try:
        return retrying(fn)
    except RetryError as e:
        attempts = e.last_attempt.attempt_number
        raise RetryExhaustedError(f"result not accepted after {attempts} attempts", attempts) from e


def retry_on_conflict(
    fn: Callable[[], T],
    *,
    max_attempts: int | None = None,
    on_conflict: Callable[[SerializationConflictError], None] | None = None,
) -> T:
    """Re-run ``fn`` while the engine aborts it with a serialization conflict.

    ``on_conflict`` sees every conflict that is retried. A conflict re-raised
    after the last bounded attempt is not passed to it.
    """

    def before_sleep(retry_state: RetryCallState) -> None:
        _log_retry(retry_state)
        if on_conflict is not None:
            on_conflict(retry_state.outcome.exception())

    retrying = Retrying(
        retry=retry_if_exception_type(SerializationConflictError),
        stop=_stop(max_attempts),
        before_sleep=before_sleep,
        reraise=True,
    )
    return retrying(fn)
