from __future__ import annotations


class HarnessError(Exception):
    """Harness-level failure. Aborts the whole run instead of failing one trial."""


class TransactionConnectionError(HarnessError):
    def __init__(self, message: str, code: str | int | None = None):
        self.code = code
        super().__init__(message)


class TransactionStateError(HarnessError):
    """A finished transaction was used again (double commit, execute after rollback, ...)."""


class PoolCapacityError(HarnessError):
    pass


class UnsupportedEngineError(HarnessError):
    pass


class UnsupportedIsolationLevelError(HarnessError):
    pass


class RetryExhaustedError(HarnessError):
    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class StatementError(Exception):
    """Malformed SQL or a constraint violation reported by the engine."""

    def __init__(self, message: str, code: str | int | None = None):
        self.code = code
        super().__init__(message)


class SerializationConflictError(StatementError):
    """The engine aborted the transaction to keep its isolation guarantees."""
