"""
Isolation-level vocabulary.

Every level has two spellings that must mean the same thing to a given engine:

- the structured value handed to SQLAlchemy when a transaction is begun
  programmatically (``Connection.execution_options(isolation_level=...)``);
- the in-session statement text used when setup, body and commit travel to the
  engine as one multi-statement round trip.

MySQL applies ``SET TRANSACTION ISOLATION LEVEL`` to the next transaction, so the
statement goes in front of ``BEGIN``. PostgreSQL ignores ``SET TRANSACTION``
outside a transaction block, so the level is declared by ``BEGIN`` itself.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import TextClause

from .errors import UnsupportedEngineError, UnsupportedIsolationLevelError


class IsolationLevel(str, Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"

    @property
    def option(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


ALL_LEVELS = frozenset(IsolationLevel)


@dataclass(frozen=True, slots=True)
class EngineDialect:
    name: str
    levels: frozenset[IsolationLevel]
    level_in_begin: bool
    multi_result_sets: bool

    def supports(self, level: IsolationLevel) -> bool:
        return level in self.levels

    def begin_statements(self, level: IsolationLevel | None) -> list[str]:
        if level is None:
            return ["BEGIN"]
        if not self.supports(level):
            raise UnsupportedIsolationLevelError(f"{self.name} does not support {level}")
        if self.level_in_begin:
            return [f"BEGIN TRANSACTION ISOLATION LEVEL {level}"]
        return [set_isolation_statement(level), "BEGIN"]


POSTGRESQL = EngineDialect(
    name="postgresql",
    # READ UNCOMMITTED is accepted and behaves as READ COMMITTED
    levels=ALL_LEVELS,
    level_in_begin=True,
    multi_result_sets=False,
)

MYSQL = EngineDialect(
    name="mysql",
    levels=ALL_LEVELS,
    level_in_begin=False,
    multi_result_sets=True,
)

DIALECTS = {d.name: d for d in (POSTGRESQL, MYSQL)}


def dialect_for(name: str) -> EngineDialect:
    try:
        return DIALECTS[name]
    except KeyError:
        raise UnsupportedEngineError(f"No isolation vocabulary for engine {name!r}") from None


def set_isolation_statement(level: IsolationLevel) -> str:
    return f"SET TRANSACTION ISOLATION LEVEL {level}"


def render_statement(statement: TextClause | str, sql_dialect: Dialect) -> str:
    if isinstance(statement, str):
        return statement
    compiled = statement.compile(dialect=sql_dialect, compile_kwargs={"literal_binds": True})
    return str(compiled)


def transaction_script(
    sql_dialect: Dialect,
    level: IsolationLevel | None,
    statements: Iterable[TextClause | str],
    finish: str = "COMMIT",
) -> str:
    """Render ``[SET ...;] BEGIN; <statements>; COMMIT|ROLLBACK;`` for one round trip.

    Bound parameters of ``text()`` statements are rendered with the engine's own
    literal quoting.
    """
    finish = finish.upper()
    if finish not in ("COMMIT", "ROLLBACK"):
        raise ValueError(f"finish must be COMMIT or ROLLBACK, got {finish!r}")
    engine_dialect = dialect_for(sql_dialect.name)
    parts = engine_dialect.begin_statements(level)
    parts.extend(render_statement(s, sql_dialect).strip().rstrip(";") for s in statements)
    parts.append(finish)
    return ";\n".join(parts) + ";"
