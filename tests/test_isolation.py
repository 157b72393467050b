from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import mysql, postgresql, sqlite

from isolation_anomalies.errors import UnsupportedEngineError, UnsupportedIsolationLevelError
from isolation_anomalies.isolation import (
	EngineDialect,
	IsolationLevel,
	dialect_for,
	set_isolation_statement,
	transaction_script,
)


SET_COUNTER = text("UPDATE counters SET counter = :value WHERE name = :name")


def test_structured_option_matches_sql_spelling() -> None:
	assert IsolationLevel.READ_UNCOMMITTED.option == "READ UNCOMMITTED"
	assert IsolationLevel.READ_COMMITTED.option == "READ COMMITTED"
	assert IsolationLevel.REPEATABLE_READ.option == "REPEATABLE READ"
	assert IsolationLevel.SERIALIZABLE.option == "SERIALIZABLE"
	assert set_isolation_statement(IsolationLevel.REPEATABLE_READ) == (
		"SET TRANSACTION ISOLATION LEVEL REPEATABLE READ"
	)


def test_every_level_supported_by_both_engines() -> None:
	for name in ("postgresql", "mysql"):
		engine_dialect = dialect_for(name)
		assert all(engine_dialect.supports(level) for level in IsolationLevel)


def test_unknown_engine_fails_fast() -> None:
	with pytest.raises(UnsupportedEngineError):
		dialect_for("sqlite")
	with pytest.raises(UnsupportedEngineError):
		transaction_script(sqlite.dialect(), IsolationLevel.SERIALIZABLE, ["SELECT 1"])


def test_postgres_declares_level_at_begin() -> None:
	script = transaction_script(
		postgresql.dialect(),
		IsolationLevel.READ_COMMITTED,
		[SET_COUNTER.bindparams(value=1, name="first")],
	)
	assert script == (
		"BEGIN TRANSACTION ISOLATION LEVEL READ COMMITTED;\n"
		"UPDATE counters SET counter = 1 WHERE name = 'first';\n"
		"COMMIT;"
	)


def test_mysql_sets_level_before_begin() -> None:
	script = transaction_script(
		mysql.dialect(),
		IsolationLevel.SERIALIZABLE,
		[
			SET_COUNTER.bindparams(value=2, name="first"),
			SET_COUNTER.bindparams(value=2, name="second"),
		],
		finish="rollback",
	)
	assert script.splitlines() == [
		"SET TRANSACTION ISOLATION LEVEL SERIALIZABLE;",
		"BEGIN;",
		"UPDATE counters SET counter = 2 WHERE name = 'first';",
		"UPDATE counters SET counter = 2 WHERE name = 'second';",
		"ROLLBACK;",
	]


def test_plain_begin_without_level() -> None:
	script = transaction_script(postgresql.dialect(), None, ["SELECT 1;"])
	assert script == "BEGIN;\nSELECT 1;\nCOMMIT;"


def test_bound_values_are_quoted_by_the_engine_dialect() -> None:
	script = transaction_script(
		postgresql.dialect(),
		None,
		[SET_COUNTER.bindparams(value=3, name="o'brien; DROP TABLE counters")],
	)
	assert "name = 'o''brien; DROP TABLE counters'" in script


def test_finish_must_be_commit_or_rollback() -> None:
	with pytest.raises(ValueError):
		transaction_script(postgresql.dialect(), None, ["SELECT 1"], finish="END")


def test_level_outside_engine_vocabulary_is_rejected() -> None:
	serializable_only = EngineDialect(
		name="postgresql",
		levels=frozenset({IsolationLevel.SERIALIZABLE}),
		level_in_begin=True,
		multi_result_sets=False,
	)
	assert serializable_only.begin_statements(IsolationLevel.SERIALIZABLE) == [
		"BEGIN TRANSACTION ISOLATION LEVEL SERIALIZABLE"
	]
	with pytest.raises(UnsupportedIsolationLevelError):
		serializable_only.begin_statements(IsolationLevel.READ_COMMITTED)
