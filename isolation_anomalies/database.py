from __future__ import annotations

import logging
import time

from sqlalchemy import Column, Integer, String, create_engine, delete, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, declarative_base

from .config import HarnessSettings
from .errors import TransactionConnectionError


logger = logging.getLogger(__name__)

Base = declarative_base()

COUNTER_LOCK_NAME = "counters"


class CounterOrm(Base):
    __tablename__ = "counters"
    name = Column(String(64), primary_key=True)
    counter = Column(Integer, nullable=False, default=0)


class MaterializedLockOrm(Base):
    __tablename__ = "materialized_locks"
    name = Column(String(64), primary_key=True)


def make_engine(url: str, *, pool_size: int = 5) -> Engine:
    connect_args = {}
    if make_url(url).get_backend_name() == "mysql":
        from pymysql.constants import CLIENT

        # SET TRANSACTION; BEGIN; ...; COMMIT; must go out as one round trip
        connect_args["client_flag"] = CLIENT.MULTI_STATEMENTS | CLIENT.FOUND_ROWS
    return create_engine(
        url,
        future=True,
        pool_size=pool_size,
        max_overflow=0,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def open_postgres(settings: HarnessSettings) -> Engine:
    return make_engine(settings.database_url, pool_size=settings.pool_size)


def open_mysql(settings: HarnessSettings) -> Engine:
    return make_engine(settings.mysql_url, pool_size=settings.pool_size)


def init_db(engine: Engine, attempts: int = 30, delay: float = 1.0) -> None:
    last_error: DBAPIError | None = None
    for attempt in range(1, attempts + 1):
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("schema ready on %s", engine.url.render_as_string(hide_password=True))
            return
        except DBAPIError as e:
            last_error = e
            logger.warning("schema init attempt %d/%d failed: %s", attempt, attempts, e.orig)
            if attempt < attempts:
                time.sleep(delay)
    raise TransactionConnectionError(
        f"Could not initialise schema after {attempts} attempts"
    ) from last_error


def truncate_counters(engine: Engine) -> None:
    with Session(engine) as session, session.begin():
        session.execute(delete(CounterOrm))


def reset_counters(engine: Engine, **values: int) -> None:
    """Leave exactly the given counters in the table, e.g. reset_counters(engine, first=0, second=0)."""
    with Session(engine) as session, session.begin():
        session.execute(delete(CounterOrm))
        session.add_all(CounterOrm(name=name, counter=value) for name, value in values.items())


def reset_materialized_lock(engine: Engine, name: str = COUNTER_LOCK_NAME) -> None:
    with Session(engine) as session, session.begin():
        if session.get(MaterializedLockOrm, name) is None:
            session.add(MaterializedLockOrm(name=name))


def read_counter(engine: Engine, name: str) -> int | None:
    with Session(engine) as session:
        return session.execute(
            select(CounterOrm.counter).where(CounterOrm.name == name)
        ).scalar_one_or_none()


def count_counters(engine: Engine) -> int:
    with Session(engine) as session:
        return session.execute(select(func.count(CounterOrm.name))).scalar_one()
