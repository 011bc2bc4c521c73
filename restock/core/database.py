from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from restock.core.config import (
    DATABASE_URL,
    DB_MAX_OVERFLOW,
    DB_POOL_RECYCLE_SECONDS,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT_SECONDS,
    SQL_ECHO,
)

Base = declarative_base()


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite opens transactions lazily, which breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection):
        connection.exec_driver_sql("BEGIN")


def build_engine(database_url: str = DATABASE_URL, **engine_kwargs: Any) -> Engine:
    if database_url.startswith("sqlite"):
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(database_url, echo=SQL_ECHO, **engine_kwargs)
        _enable_sqlite_savepoints(engine)
        return engine

    engine_kwargs.setdefault("pool_pre_ping", True)
    engine_kwargs.setdefault("pool_size", DB_POOL_SIZE)
    engine_kwargs.setdefault("max_overflow", DB_MAX_OVERFLOW)
    engine_kwargs.setdefault("pool_timeout", DB_POOL_TIMEOUT_SECONDS)
    engine_kwargs.setdefault("pool_recycle", DB_POOL_RECYCLE_SECONDS)
    return create_engine(database_url, echo=SQL_ECHO, **engine_kwargs)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
