"""User accounts, including the denormalized entitlement cache."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String

from src.db.tables import Base


class UserRow(Base):
    """User profile.

    subscription_status / premium_access_until / trial_used are a cache of the
    user's SubscriptionRow, rewritten in the same transaction as the record.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False, unique=True, index=True)
    password_hash = Column(String(256), nullable=True)  # PBKDF2-SHA256
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    square_customer_id = Column(String(255), nullable=True, unique=True)
    default_card_id = Column(String(255), nullable=True)  # Square has no default-card flag

    # Status: free | trial | premium_monthly | premium_yearly | cancelled
    subscription_status = Column(String(20), nullable=False, default="free")
    premium_access_until = Column(DateTime(timezone=True), nullable=True)
    trial_used = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
