"""Create users, stitches, subscriptions and webhook_events.

Revision ID: 5f1c0e7a9b2d
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "5f1c0e7a9b2d"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True, index=True),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("square_customer_id", sa.String(255), nullable=True, unique=True),
        sa.Column("subscription_status", sa.String(20), nullable=False, server_default="free"),
        sa.Column("premium_access_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_used", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "stitches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, index=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("reference_number", sa.String(50), nullable=True),
        sa.Column("tier", sa.String(20), nullable=False, server_default="free"),
        sa.Column("premium_features", sa.JSON, nullable=True),
        sa.Column("gallery", sa.JSON, nullable=True),
        sa.Column("featured_image", sa.String(2000), nullable=True),
        sa.Column("thumbnail_image", sa.String(2000), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_stitches_tier_active", "stitches", ["tier", "is_active"])
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"),
                  nullable=False, unique=True, index=True),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default="free"),
        sa.Column("pending_plan_type", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="inactive", index=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_trial_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("trial_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("square_customer_id", sa.String(255), nullable=True, index=True),
        sa.Column("square_subscription_id", sa.String(255), nullable=True, unique=True, index=True),
        sa.Column("square_payment_id", sa.String(255), nullable=True),
        sa.Column("payment_method_id", sa.String(255), nullable=True),
        sa.Column("gateway_version", sa.Integer, nullable=True),
        sa.Column("amount_minor_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("subscription_id", sa.String(36), sa.ForeignKey("subscriptions.id", ondelete="SET NULL"),
                  nullable=True, index=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True, index=True),
    )
    op.create_index("ix_webhook_events_outcome", "webhook_events", ["outcome"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_outcome", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("subscriptions")
    op.drop_index("ix_stitches_tier_active", table_name="stitches")
    op.drop_table("stitches")
    op.drop_table("users")
