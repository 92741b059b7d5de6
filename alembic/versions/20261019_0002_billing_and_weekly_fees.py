"""billing, weekly fees and webhook ledger

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 09:30:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0002"
down_revision: Union[str, None] = "20261019_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "asaas_customers"):
        op.create_table(
            "asaas_customers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("asaas_customer_id", sa.String(length=60), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "subscriptions"):
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("plan_id", sa.String(length=36), nullable=False),
            sa.Column("asaas_subscription_id", sa.String(length=60), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("value", sa.Numeric(12, 2), nullable=False),
            sa.Column("cycle", sa.String(length=20), nullable=False),
            sa.Column("next_due_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["plan_id"], ["plans.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("subscription_id", sa.String(length=36), nullable=True),
            sa.Column("asaas_payment_id", sa.String(length=60), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("value", sa.Numeric(12, 2), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "weekly_fees"):
        op.create_table(
            "weekly_fees",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.String(length=36), nullable=False),
            sa.Column("week_start", sa.Date(), nullable=False),
            sa.Column("week_end", sa.Date(), nullable=False),
            sa.Column("revenue_week", sa.Numeric(14, 2), nullable=False),
            sa.Column("percent_applied", sa.Numeric(5, 2), nullable=False),
            sa.Column("amount_due", sa.Numeric(12, 2), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("asaas_payment_id", sa.String(length=60), nullable=True),
            sa.Column("asaas_invoice_url", sa.String(length=500), nullable=True),
            sa.Column("billing_type", sa.String(length=20), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("payment_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "week_start", name="uq_weekly_fees_tenant_week_start"),
        )

    if not _table_exists(inspector, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=40), nullable=False),
            sa.Column("event_id", sa.String(length=160), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("payload_json", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="received"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event_id"),
        )

    inspector = sa.inspect(bind)

    if not _index_exists(inspector, "asaas_customers", "ix_asaas_customers_user_id"):
        op.create_index("ix_asaas_customers_user_id", "asaas_customers", ["user_id"], unique=True)
    if not _index_exists(inspector, "asaas_customers", "ix_asaas_customers_asaas_customer_id"):
        op.create_index(
            "ix_asaas_customers_asaas_customer_id",
            "asaas_customers",
            ["asaas_customer_id"],
            unique=False,
        )
    if not _index_exists(inspector, "subscriptions", "ix_subscriptions_user_id"):
        op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=False)
    if not _index_exists(inspector, "subscriptions", "ix_subscriptions_plan_id"):
        op.create_index("ix_subscriptions_plan_id", "subscriptions", ["plan_id"], unique=False)
    if not _index_exists(inspector, "subscriptions", "ix_subscriptions_asaas_subscription_id"):
        op.create_index(
            "ix_subscriptions_asaas_subscription_id",
            "subscriptions",
            ["asaas_subscription_id"],
            unique=True,
        )
    if not _index_exists(inspector, "subscriptions", "ix_subscriptions_user_status"):
        op.create_index("ix_subscriptions_user_status", "subscriptions", ["user_id", "status"], unique=False)
    if not _index_exists(inspector, "payments", "ix_payments_user_id"):
        op.create_index("ix_payments_user_id", "payments", ["user_id"], unique=False)
    if not _index_exists(inspector, "payments", "ix_payments_subscription_id"):
        op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"], unique=False)
    if not _index_exists(inspector, "payments", "ix_payments_asaas_payment_id"):
        op.create_index("ix_payments_asaas_payment_id", "payments", ["asaas_payment_id"], unique=True)
    if not _index_exists(inspector, "payments", "ix_payments_user_due_date"):
        op.create_index("ix_payments_user_due_date", "payments", ["user_id", "due_date"], unique=False)
    if not _index_exists(inspector, "weekly_fees", "ix_weekly_fees_tenant_id"):
        op.create_index("ix_weekly_fees_tenant_id", "weekly_fees", ["tenant_id"], unique=False)
    if not _index_exists(inspector, "weekly_fees", "ix_weekly_fees_asaas_payment_id"):
        op.create_index("ix_weekly_fees_asaas_payment_id", "weekly_fees", ["asaas_payment_id"], unique=True)
    if not _index_exists(inspector, "weekly_fees", "ix_weekly_fees_tenant_status"):
        op.create_index("ix_weekly_fees_tenant_status", "weekly_fees", ["tenant_id", "status"], unique=False)
    if not _index_exists(inspector, "webhook_events", "ix_webhook_events_provider"):
        op.create_index("ix_webhook_events_provider", "webhook_events", ["provider"], unique=False)
    if not _index_exists(inspector, "webhook_events", "ix_webhook_events_provider_created_at"):
        op.create_index(
            "ix_webhook_events_provider_created_at",
            "webhook_events",
            ["provider", "created_at"],
            unique=False,
        )
    if not _index_exists(inspector, "webhook_events", "ix_webhook_events_status"):
        op.create_index("ix_webhook_events_status", "webhook_events", ["status"], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in ("webhook_events", "weekly_fees", "payments", "subscriptions", "asaas_customers"):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
