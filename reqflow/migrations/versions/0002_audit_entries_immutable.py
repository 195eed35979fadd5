"""Make audit_entries append-only at the database level

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

This migration creates PostgreSQL triggers that refuse UPDATE and DELETE
on audit_entries. Other dialects rely on the ORM mapper guards.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, Sequence[str], None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Install immutability triggers."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_entry_update()
        RETURNS TRIGGER AS $trigger$
        BEGIN
            RAISE EXCEPTION 'Audit entries are immutable and cannot be updated. Record ID: %', OLD.id;
        END;
        $trigger$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_entry_delete()
        RETURNS TRIGGER AS $trigger$
        BEGIN
            RAISE EXCEPTION 'Audit entries are immutable and cannot be deleted. Record ID: %', OLD.id;
        END;
        $trigger$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER audit_entries_prevent_update
        BEFORE UPDATE ON audit_entries
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_entry_update();
    """)

    op.execute("""
        CREATE TRIGGER audit_entries_prevent_delete
        BEFORE DELETE ON audit_entries
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_entry_delete();
    """)


def downgrade() -> None:
    """Remove immutability triggers."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP TRIGGER IF EXISTS audit_entries_prevent_update ON audit_entries;")
    op.execute("DROP TRIGGER IF EXISTS audit_entries_prevent_delete ON audit_entries;")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_entry_update();")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_entry_delete();")
