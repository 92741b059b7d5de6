"""core tenancy tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "plans"):
        op.create_table(
            "plans",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("price_monthly", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("price_quarterly", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("price_semiannual", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("price_yearly", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "tenants"):
        op.create_table(
            "tenants",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("owner_name", sa.String(length=255), nullable=True),
            sa.Column("owner_email", sa.String(length=255), nullable=True),
            sa.Column("document", sa.String(length=20), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("company_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("cached_gross_revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("plan_id", sa.String(length=36), nullable=True),
            sa.Column("subscription_status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("billing_cycle", sa.String(length=20), nullable=True),
            sa.Column("next_billing", sa.DateTime(timezone=True), nullable=True),
            sa.Column("pending_plan_id", sa.String(length=36), nullable=True),
            sa.Column("pending_billing_cycle", sa.String(length=20), nullable=True),
            sa.Column("pending_payment_url", sa.String(length=500), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
            sa.ForeignKeyConstraint(["pending_plan_id"], ["plans.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=True),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="client_user"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("external_id", sa.String(length=80), nullable=False),
            sa.Column("client_name", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("payment_method", sa.String(length=30), nullable=True),
            sa.Column("value", sa.Numeric(12, 2), nullable=False),
            sa.Column("ordered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external_id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=True),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)

    if not _index_exists(inspector, "tenants", "ix_tenants_plan_id"):
        op.create_index("ix_tenants_plan_id", "tenants", ["plan_id"], unique=False)
    if not _index_exists(inspector, "users", "ix_users_email"):
        op.create_index("ix_users_email", "users", ["email"], unique=True)
    if not _index_exists(inspector, "users", "ix_users_tenant_id"):
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"], unique=False)
    if not _index_exists(inspector, "users", "ux_users_email_lower"):
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
    if not _index_exists(inspector, "orders", "ix_orders_tenant_id"):
        op.create_index("ix_orders_tenant_id", "orders", ["tenant_id"], unique=False)
    if not _index_exists(inspector, "orders", "ix_orders_tenant_ordered_at"):
        op.create_index("ix_orders_tenant_ordered_at", "orders", ["tenant_id", "ordered_at"], unique=False)
    if not _index_exists(inspector, "audit_logs", "ix_audit_logs_tenant_id"):
        op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)
    if not _index_exists(inspector, "audit_logs", "ix_audit_logs_actor_user_id"):
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"], unique=False)
    if not _index_exists(inspector, "audit_logs", "ix_audit_logs_target_id"):
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
    if not _index_exists(inspector, "audit_logs", "ix_audit_logs_tenant_created_at"):
        op.create_index(
            "ix_audit_logs_tenant_created_at",
            "audit_logs",
            ["tenant_id", "created_at"],
            unique=False,
        )
    if not _index_exists(inspector, "audit_logs", "ix_audit_logs_tenant_action_created_at"):
        op.create_index(
            "ix_audit_logs_tenant_action_created_at",
            "audit_logs",
            ["tenant_id", "action", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in ("audit_logs", "orders", "users", "tenants", "plans"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
