import importlib.util
import io
import pathlib

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations

from support_engine.models import Base

MIGRATION = (
    pathlib.Path(__file__).resolve().parents[1]
    / "support_engine"
    / "migrations"
    / "001_create_support_engine_tables.py"
)
ENGINE_TABLES = (
    "chat_sessions",
    "chat_messages",
    "helpdesk_accounts",
    "helpdesk_contacts",
    "external_conversations",
)


def _load_migration():
    spec = importlib.util.spec_from_file_location("support_engine_migration_001", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _render(step: str) -> str:
    buffer = io.StringIO()
    context = MigrationContext.configure(
        dialect_name="postgresql", opts={"as_sql": True, "output_buffer": buffer}
    )
    with Operations.context(context):
        getattr(_load_migration(), step)()
    return buffer.getvalue()


def test_migration_is_the_root_revision():
    module = _load_migration()

    assert module.revision == "001_create_support_engine_tables"
    assert module.down_revision is None


@pytest.mark.parametrize("table", ENGINE_TABLES)
def test_upgrade_matches_models(table):
    sql = _render("upgrade")

    assert f"CREATE TABLE {table}" in sql
    for column in Base.metadata.tables[table].columns:
        assert column.name in sql


def test_upgrade_enforces_concurrency_keys():
    sql = _render("upgrade")

    assert "CREATE UNIQUE INDEX ix_chat_sessions_token_unique" in sql
    assert "CREATE UNIQUE INDEX ix_chat_messages_session_seq" in sql
    assert "CREATE UNIQUE INDEX ix_external_conversations_org_external_unique" in sql
    assert "status IN ('active', 'escalated', 'resolved')" in sql


def test_downgrade_drops_every_table():
    sql = _render("downgrade")

    for table in ENGINE_TABLES:
        assert f"DROP TABLE {table}" in sql
