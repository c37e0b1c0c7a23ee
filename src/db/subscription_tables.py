"""Subscription tables — entitlement records and the webhook delivery log."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, Boolean, Text,
    ForeignKey, Index,
)

from src.db.tables import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRow(Base):
    """Entitlement record — single source of truth for premium access.

    One row per user; cancellation is a status change, rows are never deleted.
    """
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # Plan: free | premium_monthly | premium_yearly
    plan_type = Column(String(20), nullable=False, default="free")
    # Requested plan for the next renewal (never applied without a charge)
    pending_plan_type = Column(String(20), nullable=True)

    # Status: active | inactive | cancelled | past_due | pending
    status = Column(String(20), nullable=False, default="inactive", index=True)

    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Trial sub-state
    is_trial_active = Column(Boolean, nullable=False, default=False)
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)

    # Gateway linkage
    square_customer_id = Column(String(255), nullable=True, index=True)
    square_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    square_payment_id = Column(String(255), nullable=True)
    payment_method_id = Column(String(255), nullable=True)
    # Last applied gateway subscription version (stale webhook guard)
    gateway_version = Column(Integer, nullable=True)

    # Amount in minor units (cents)
    amount_minor_units = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    last_payment_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WebhookEventRow(Base):
    """Append-only log of gateway webhook deliveries, keyed by event id."""
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String(255), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False, index=True)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True)

    # Outcome: applied | ignored | untracked | stale | error
    outcome = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)

    # Raw event payload (for reconciliation)
    data = Column(JSON, nullable=True)

    processed_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_webhook_events_outcome", "outcome"),
    )
