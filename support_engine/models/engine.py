"""Helpers for configuring the SQLAlchemy engine used for schema management."""

from __future__ import annotations

import os
import uuid

from sqlalchemy import Engine, create_engine, event

from . import Base


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        database_url: Optional database URL. When ``None`` the ``DATABASE_URL``
            environment variable is used.
        **kwargs: Additional keyword arguments forwarded to
            :func:`sqlalchemy.create_engine`.
    """

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def create_schema(engine: Engine) -> None:
    """Create every support engine table that does not exist yet."""

    Base.metadata.create_all(engine)


__all__ = ["create_schema", "get_engine"]
