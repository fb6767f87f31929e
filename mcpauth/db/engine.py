"""Async SQLAlchemy engine construction."""

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from mcpauth.core.settings import DatabaseSettings


def _is_sqlite_memory(url: str) -> bool:
    parsed = make_url(url)
    return parsed.get_backend_name() == "sqlite" and parsed.database in (
        None,
        "",
        ":memory:",
    )


def build_engine(db: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database URL.

    In-memory SQLite shares one connection so every transaction sees the
    same database; file-backed SQLite runs in WAL mode.
    """
    if _is_sqlite_memory(db.url):
        return create_async_engine(
            db.url,
            echo=db.echo,
            poolclass=StaticPool,
        )

    engine = create_async_engine(db.url, echo=db.echo)
    if make_url(db.url).get_backend_name() == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, _rec) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine
