from __future__ import annotations

from typing import Iterator

import pytest
from sqlalchemy.engine import Engine

from isolation_anomalies.database import init_db, make_engine


@pytest.fixture()
def sqlite_engine(tmp_path) -> Iterator[Engine]:
	engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'anomalies.db'}", pool_size=4)
	init_db(engine, attempts=1)
	yield engine
	engine.dispose()
