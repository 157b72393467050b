from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import (
    ArgumentError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.sql.elements import TextClause

from .errors import (
    SerializationConflictError,
    StatementError,
    TransactionConnectionError,
    TransactionStateError,
)
from .isolation import IsolationLevel, dialect_for, transaction_script


logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
POSTGRES_CONFLICT_STATES = frozenset({"40001", "40P01"})
# ER_LOCK_DEADLOCK, ER_LOCK_WAIT_TIMEOUT
MYSQL_CONFLICT_CODES = frozenset({1213, 1205})


def _error_code(orig: BaseException | None) -> str | int | None:
    if orig is None:
        return None
    pgcode = getattr(orig, "pgcode", None)
    if pgcode:
        return pgcode
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def is_conflict_code(code: str | int | None) -> bool:
    return code in POSTGRES_CONFLICT_STATES or code in MYSQL_CONFLICT_CODES


def classify_error(exc: Exception) -> Exception:
    """Translate a SQLAlchemy or driver exception into the harness taxonomy."""
    if isinstance(exc, (StatementError, TransactionConnectionError)):
        return exc
    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    code = _error_code(orig)
    message = str(orig if orig is not None else exc)

    if is_conflict_code(code):
        return SerializationConflictError(message, code)
    if isinstance(exc, (ArgumentError, PoolTimeoutError)):
        return TransactionConnectionError(message, code)
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransactionConnectionError(message, code)
    if isinstance(exc, IntegrityError):
        return StatementError(message, code)
    if isinstance(exc, InterfaceError):
        return TransactionConnectionError(message, code)
    return StatementError(message, code)


@dataclass(slots=True)
class StatementResult:
    rowcount: int
    rows: list[tuple] = field(default_factory=list)

    def scalar(self) -> Any:
        if len(self.rows) != 1:
            raise StatementError(f"expected exactly one row, got {len(self.rows)}")
        row = self.rows[0]
        if len(row) != 1:
            raise StatementError(f"expected exactly one column, got {len(row)}")
        return row[0]


class Transaction:
    def __init__(self, connection: Connection, level: IsolationLevel):
        self.level = level
        self._connection: Connection | None = connection
        self._transaction = connection.begin()

    @property
    def closed(self) -> bool:
        return self._connection is None

    def _live_connection(self) -> Connection:
        if self._connection is None:
            raise TransactionStateError("transaction already committed or rolled back")
        return self._connection

    def execute(self, statement: TextClause | str, **params: Any) -> StatementResult:
        connection = self._live_connection()
        if isinstance(statement, str):
            statement = text(statement)
        try:
            result = connection.execute(statement, params)
            if result.returns_rows:
                rows = [tuple(row) for row in result.all()]
                return StatementResult(rowcount=len(rows), rows=rows)
            return StatementResult(rowcount=result.rowcount)
        except SQLAlchemyError as e:
            raise classify_error(e) from e

    def scalar(self, statement: TextClause | str, **params: Any) -> Any:
        return self.execute(statement, **params).scalar()

    def commit(self) -> None:
        connection = self._live_connection()
        try:
            self._transaction.commit()
            logger.debug("COMMIT (%s)", self.level)
        except SQLAlchemyError as e:
            raise classify_error(e) from e
        finally:
            self._release(connection)

    def rollback(self) -> None:
        connection = self._live_connection()
        try:
            self._transaction.rollback()
            logger.debug("ROLLBACK (%s)", self.level)
        except SQLAlchemyError as e:
            raise classify_error(e) from e
        finally:
            self._release(connection)

    def _release(self, connection: Connection) -> None:
        self._connection = None
        connection.close()


def _connect_error(exc: SQLAlchemyError) -> TransactionConnectionError:
    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    return TransactionConnectionError(f"cannot connect: {orig}", _error_code(orig))


def begin(engine: Engine, level: IsolationLevel) -> Transaction:
    try:
        connection = engine.connect()
    except SQLAlchemyError as e:
        raise _connect_error(e) from e
    try:
        connection.execution_options(isolation_level=level.option)
        tx = Transaction(connection, level)
    except (ArgumentError, DBAPIError) as e:
        connection.close()
        raise TransactionConnectionError(
            f"{engine.dialect.name} rejected isolation level {level}: {e}"
        ) from e
    logger.debug("BEGIN (%s)", level)
    return tx


@contextmanager
def transaction(engine: Engine, level: IsolationLevel) -> Iterator[Transaction]:
    """Commit on normal exit, roll back on any exception, release the connection either way."""
    tx = begin(engine, level)
    try:
        yield tx
    except BaseException:
        if not tx.closed:
            try:
                tx.rollback()
            except Exception:
                logger.warning("rollback after a failed body failed", exc_info=True)
        raise
    if not tx.closed:
        tx.commit()


def run_script(
    engine: Engine,
    level: IsolationLevel | None,
    statements: Sequence[TextClause | str],
    finish: str = "COMMIT",
) -> None:
    """Send ``BEGIN; ...; COMMIT;`` to the engine as a single multi-statement round trip."""
    script = transaction_script(engine.dialect, level, statements, finish)
    engine_dialect = dialect_for(engine.dialect.name)
    try:
        connection = engine.connect()
    except SQLAlchemyError as e:
        raise _connect_error(e) from e

    with connection:
        # the script carries its own BEGIN/COMMIT
        connection.execution_options(isolation_level="AUTOCOMMIT")
        dbapi_connection = connection.connection.dbapi_connection
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(script)
            if engine_dialect.multi_result_sets:
                while cursor.nextset():
                    pass
        except engine.dialect.loaded_dbapi.Error as e:
            error = _classify_driver_error(e, engine.dialect.is_disconnect(e, dbapi_connection, cursor))
            # never hand a connection stuck inside BEGIN back to the pool
            connection.invalidate(e)
            raise error from e
        finally:
            if not connection.invalidated:
                cursor.close()
    logger.debug("script (%s, %s) done", level, finish)


def _classify_driver_error(orig: Exception, disconnected: bool) -> Exception:
    code = _error_code(orig)
    if is_conflict_code(code):
        return SerializationConflictError(str(orig), code)
    if disconnected:
        return TransactionConnectionError(str(orig), code)
    return StatementError(str(orig), code)
