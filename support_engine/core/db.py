"""Database helpers for organization-scoped psycopg connections."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

import psycopg

logger = logging.getLogger(__name__)


def get_database_url() -> str:
    """Return ``DATABASE_URL`` or raise ``RuntimeError`` when unset."""

    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")
    return url


def apply_organization_settings(
    conn: psycopg.Connection, organization_id: str | UUID
) -> None:
    """Configure ``app.organization_id`` for row level security policies.

    Uses ``set_config`` with ``is_local=false`` so the value survives the
    transaction boundaries of a single request.
    """

    value = str(organization_id)
    if not value:
        raise RuntimeError("organization_id cannot be empty")
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT set_config('app.organization_id', %s, false)",
                (value,),
            )
    except Exception:  # pragma: no cover
        logger.exception("Failed to apply organization settings to connection")
        raise


@contextmanager
def transaction(database_url: str | None = None) -> Iterator[psycopg.Connection]:
    """Open a connection that commits on success and rolls back on error.

    A whole turn or webhook event runs inside one of these, so a failure
    anywhere leaves no partial writes behind.
    """

    conn = psycopg.connect(database_url or get_database_url())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
