"""init credit ledger schema

Revision ID: 20261019_init_credit_ledger
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_init_credit_ledger"
down_revision = None
branch_labels = None
depends_on = None


account_plan = sa.Enum("free", "pro", name="account_plan")
payment_plan_type = sa.Enum("pro", "website_credits", name="payment_plan_type")
payment_record_status = sa.Enum(
    "pending", "active", "failed", "cancelled", "expired", name="payment_record_status"
)


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("email", sa.String(320), primary_key=True),
        sa.Column("plan", account_plan, nullable=False, server_default="free"),
        sa.Column("monthly_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_monthly_reset", sa.Date),
        sa.Column("subscription_start", sa.DateTime),
        sa.Column("subscription_end", sa.DateTime),
        sa.Column(
            "is_manual_assignment", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint("monthly_credits >= 0", name="ck_accounts_monthly_nonneg"),
    )
    op.create_index("ix_accounts_plan_end", "accounts", ["plan", "subscription_end"])

    op.create_table(
        "credit_wallets",
        sa.Column("email", sa.String(320), primary_key=True),
        sa.Column("weekly_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("purchased_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("week_start_date", sa.DateTime),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.CheckConstraint("weekly_credits >= 0", name="ck_wallets_weekly_nonneg"),
        sa.CheckConstraint("purchased_credits >= 0", name="ck_wallets_purchased_nonneg"),
    )

    op.create_table(
        "payment_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("order_id", sa.String, nullable=False),
        sa.Column("payment_id", sa.String),
        sa.Column("subscription_id", sa.String),
        sa.Column("plan_type", payment_plan_type, nullable=False),
        sa.Column("package_id", sa.Integer),
        sa.Column("credits", sa.Integer),
        sa.Column("amount", sa.Integer),
        sa.Column("currency", sa.String, server_default="INR"),
        sa.Column("status", payment_record_status, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", name="uq_payment_records_order_id"),
        sa.UniqueConstraint("payment_id", name="uq_payment_records_payment_id"),
    )
    op.create_index("ix_payment_records_user_email", "payment_records", ["user_email"])
    op.create_index(
        "ix_payment_records_subscription_id", "payment_records", ["subscription_id"]
    )

    packages = op.create_table(
        "credit_packages",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("credits", sa.Integer, nullable=False),
        sa.Column("price_inr", sa.Integer, nullable=False),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    )
    op.bulk_insert(
        packages,
        [
            {"id": 1, "credits": 50, "price_inr": 99, "display_name": "Starter", "is_active": True, "sort_order": 1},
            {"id": 2, "credits": 150, "price_inr": 249, "display_name": "Builder", "is_active": True, "sort_order": 2},
            {"id": 3, "credits": 500, "price_inr": 699, "display_name": "Studio", "is_active": True, "sort_order": 3},
        ],
    )

    op.create_table(
        "usage_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("model", sa.String),
        sa.Column("operation_type", sa.String, nullable=False),
        sa.Column("credits_consumed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("credits_remaining", sa.Integer),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_usage_logs_user_email", "usage_logs", ["user_email"])
    op.create_index("ix_usage_logs_created_at", "usage_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_usage_logs_created_at", table_name="usage_logs")
    op.drop_index("ix_usage_logs_user_email", table_name="usage_logs")
    op.drop_table("usage_logs")
    op.drop_table("credit_packages")
    op.drop_index("ix_payment_records_subscription_id", table_name="payment_records")
    op.drop_index("ix_payment_records_user_email", table_name="payment_records")
    op.drop_table("payment_records")
    op.drop_table("credit_wallets")
    op.drop_index("ix_accounts_plan_end", table_name="accounts")
    op.drop_table("accounts")
    for enum in (payment_record_status, payment_plan_type, account_plan):
        enum.drop(op.get_bind(), checkfirst=True)
