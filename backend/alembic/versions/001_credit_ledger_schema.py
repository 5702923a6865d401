"""Credit ledger, generations, downloads and subscription billing schema.

Revision ID: 001_credit_ledger_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_credit_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("monthly_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("billing_interval", sa.String(), nullable=False, server_default="month"),
        sa.Column("stripe_price_id", sa.String(), nullable=True, unique=True),
        sa.Column("stripe_product_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_subscription_plans_id", "subscription_plans", ["id"], unique=False)
    op.create_index("ix_subscription_plans_slug", "subscription_plans", ["slug"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_plan_id", sa.Integer(), sa.ForeignKey("subscription_plans.id"), nullable=True),
        sa.Column("subscription_status", sa.String(), nullable=True),
        sa.Column("subscription_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("billing_cycle_anchor", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("extra_credits_used", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_stripe_customer_id", "users", ["stripe_customer_id"], unique=True)
    op.create_index("ix_users_stripe_subscription_id", "users", ["stripe_subscription_id"], unique=False)

    op.create_table(
        "credit_pricing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("credits_required", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_credit_pricing_id", "credit_pricing", ["id"], unique=False)
    op.create_index("ix_credit_pricing_action_type", "credit_pricing", ["action_type"], unique=True)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("external_ref", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_credit_transactions_id", "credit_transactions", ["id"], unique=False)
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"], unique=False)
    op.create_index("ix_credit_transactions_type", "credit_transactions", ["type"], unique=False)
    op.create_index("ix_credit_transactions_external_ref", "credit_transactions", ["external_ref"], unique=True)

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credits_recharged_this_period", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extra_credits_used_this_period", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_subscriptions_id", "user_subscriptions", ["id"], unique=False)
    op.create_index("ix_user_subscriptions_user_id", "user_subscriptions", ["user_id"], unique=False)
    op.create_index(
        "ix_user_subscriptions_stripe_subscription_id",
        "user_subscriptions",
        ["stripe_subscription_id"],
        unique=False,
    )
    op.create_index("ix_user_subscriptions_created_at", "user_subscriptions", ["created_at"], unique=False)

    op.create_table(
        "generations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tool_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="standard"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("input_data", sa.JSON(), nullable=True),
        sa.Column("output_data", sa.JSON(), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "debit_transaction_id",
            sa.Integer(),
            sa.ForeignKey("credit_transactions.id"),
            nullable=True,
        ),
        sa.Column("parent_result_id", sa.String(length=36), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_generations_user_id", "generations", ["user_id"], unique=False)
    op.create_index("ix_generations_status", "generations", ["status"], unique=False)
    op.create_index("ix_generations_parent_result_id", "generations", ["parent_result_id"], unique=False)
    op.create_index("ix_generations_created_at", "generations", ["created_at"], unique=False)

    op.create_table(
        "generation_results",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("generation_id", sa.String(length=36), sa.ForeignKey("generations.id"), nullable=False),
        sa.Column("image_path", sa.String(), nullable=False),
        sa.Column("image_url", sa.String(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False, server_default="image/png"),
        sa.Column("has_watermark", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("clean_image_data", sa.Text(), nullable=True),
        sa.Column("clean_mime_type", sa.String(), nullable=True),
        sa.Column("is_purchased", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("purchase_bucket", sa.String(), nullable=True),
        sa.Column("purchase_path", sa.String(), nullable=True),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_generation_results_generation_id", "generation_results", ["generation_id"], unique=False)

    op.create_table(
        "generation_feedback",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "generation_result_id",
            sa.String(length=36),
            sa.ForeignKey("generation_results.id"),
            nullable=False,
        ),
        sa.Column("feedback_type", sa.String(length=20), nullable=False, server_default="dislike"),
        sa.Column("feedback_text", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "generation_result_id", name="uq_generation_feedback_user_result"),
    )
    op.create_index("ix_generation_feedback_id", "generation_feedback", ["id"], unique=False)
    op.create_index("ix_generation_feedback_user_id", "generation_feedback", ["user_id"], unique=False)

    op.create_table(
        "user_daily_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("dislike_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "date", name="uq_user_daily_limits_user_date"),
    )
    op.create_index("ix_user_daily_limits_id", "user_daily_limits", ["id"], unique=False)
    op.create_index("ix_user_daily_limits_user_id", "user_daily_limits", ["user_id"], unique=False)

    op.create_table(
        "user_downloads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("generation_id", sa.String(length=36), sa.ForeignKey("generations.id"), nullable=False),
        sa.Column(
            "generation_result_id",
            sa.String(length=36),
            sa.ForeignKey("generation_results.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("image_path", sa.String(), nullable=False),
        sa.Column("credits_charged", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_downloads_id", "user_downloads", ["id"], unique=False)
    op.create_index("ix_user_downloads_user_id", "user_downloads", ["user_id"], unique=False)

    op.create_table(
        "processed_billing_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_processed_billing_events_id", "processed_billing_events", ["id"], unique=False)
    op.create_index(
        "ix_processed_billing_events_event_id",
        "processed_billing_events",
        ["event_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_table("processed_billing_events")
    op.drop_table("user_downloads")
    op.drop_table("user_daily_limits")
    op.drop_table("generation_feedback")
    op.drop_table("generation_results")
    op.drop_table("generations")
    op.drop_table("user_subscriptions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_pricing")
    op.drop_table("users")
    op.drop_table("subscription_plans")
