"""Initial schema: requisitions, approval_steps, approval_rules, audit_entries

Revision ID: 0001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all workflow tables."""

    # --- requisitions (no FK deps) ---
    op.create_table(
        "requisitions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("submitter_id", sa.Uuid(), nullable=False),
        sa.Column("department_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("urgency_level", sa.String(20), nullable=False, server_default="MEDIUM"),
        sa.Column("business_justification", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resolved_rule", sa.JSON(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("actual_amount_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("payment_comment", sa.Text(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_requisitions"),
        sa.CheckConstraint("amount > 0", name="ck_requisitions_amount_positive"),
    )
    op.create_index("ix_requisitions_submitter_id", "requisitions", ["submitter_id"])
    op.create_index("ix_requisitions_department_id", "requisitions", ["department_id"])
    op.create_index("ix_requisitions_category", "requisitions", ["category"])
    op.create_index("ix_requisitions_status", "requisitions", ["status"])
    op.create_index("ix_requisitions_created_at", "requisitions", ["created_at"])

    # --- approval_steps (FK -> requisitions, cascade) ---
    op.create_table(
        "approval_steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("requisition_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("required_role", sa.String(20), nullable=False),
        sa.Column("assignee_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_approval_steps"),
        sa.ForeignKeyConstraint(
            ["requisition_id"],
            ["requisitions.id"],
            name="fk_approval_steps_requisition_id_requisitions",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("requisition_id", "sequence", name="uq_approval_steps_requisition_sequence"),
        sa.CheckConstraint("sequence >= 0", name="ck_approval_steps_sequence_non_negative"),
    )
    op.create_index("ix_approval_steps_requisition_id", "approval_steps", ["requisition_id"])
    op.create_index("ix_approval_steps_assignee_id", "approval_steps", ["assignee_id"])
    op.create_index("ix_approval_steps_status", "approval_steps", ["status"])

    # --- approval_rules (no FK deps; resolved, never referenced) ---
    op.create_table(
        "approval_rules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("max_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("department_id", sa.Uuid(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_approval_rules"),
        sa.UniqueConstraint("name", name="uq_approval_rules_name"),
    )
    op.create_index("ix_approval_rules_department_id", "approval_rules", ["department_id"])
    op.create_index("ix_approval_rules_is_active", "approval_rules", ["is_active"])

    # --- audit_entries (no FK: history outlives archived requisitions) ---
    op.create_table(
        "audit_entries",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("requisition_id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("field_name", sa.String(100), nullable=True),
        sa.Column("previous_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_audit_entries"),
    )
    op.create_index("ix_audit_entries_requisition_id", "audit_entries", ["requisition_id"])
    op.create_index("ix_audit_entries_actor_id", "audit_entries", ["actor_id"])
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])
    op.create_index("ix_audit_entries_created_at", "audit_entries", ["created_at"])
    op.create_index(
        "ix_audit_entries_requisition_created",
        "audit_entries",
        ["requisition_id", "created_at", "id"],
    )


def downgrade() -> None:
    """Drop all workflow tables."""
    op.drop_table("audit_entries")
    op.drop_table("approval_rules")
    op.drop_table("approval_steps")
    op.drop_table("requisitions")
