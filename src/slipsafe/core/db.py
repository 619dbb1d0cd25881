from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from slipsafe.core.config import settings


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    # Staff terminals race on the same claim row; writers wait up to 30s for the lock.
    sqlite_engine = create_engine(
        url, connect_args={"check_same_thread": False, "timeout": 30}
    )
    event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
    return sqlite_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def ping_database() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def db_session() -> Generator[Session, None, None]:
    with SessionLocal() as session:
        yield session
