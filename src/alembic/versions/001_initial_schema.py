"""Initial schema -- tables, indexes, package seeds, triggers and RLS.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-01
"""

from alembic import op

from assetcraft.schema_sql import (
    indexes,
    policies,
    seeds,
    tables_assets,
    tables_core,
    tables_store,
    triggers,
)

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables_core.ALL)
    _execute_all(tables_assets.ALL)
    _execute_all(tables_store.ALL)
    _execute_all(indexes.ALL)
    _execute_all(seeds.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)
    _execute_all(policies.ENABLE_ALL)
    _execute_all(policies.POLICIES_ALL)


def downgrade() -> None:
    _drop_policies()
    _drop_triggers()
    _drop_functions()
    _drop_tables()


def _drop_policies() -> None:
    for table, name in policies.POLICY_NAMES:
        op.execute(f'DROP POLICY IF EXISTS "{name}" ON {table};')


def _drop_triggers() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_user_assets_touch ON user_assets;")
    op.execute("DROP TRIGGER IF EXISTS trg_user_profiles_touch ON user_profiles;")
    op.execute(
        "DROP TRIGGER IF EXISTS trg_gemstone_transactions_immutable "
        "ON gemstone_transactions;"
    )
    op.execute(
        "DROP TRIGGER IF EXISTS trg_gemstone_transactions_delete_guard "
        "ON gemstone_transactions;"
    )
    op.execute(
        "DROP TRIGGER IF EXISTS trg_processed_webhooks_immutable "
        "ON processed_webhooks;"
    )


def _drop_functions() -> None:
    op.execute("DROP FUNCTION IF EXISTS touch_updated_at();")
    op.execute("DROP FUNCTION IF EXISTS guard_ledger_delete();")
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")


def _drop_tables() -> None:
    tables = [
        "processed_webhooks",
        "purchase_records",
        "gemstone_packages",
        "generation_history",
        "user_assets",
        "ad_rewards",
        "gemstone_transactions",
        "user_profiles",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
