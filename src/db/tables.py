"""SQLAlchemy ORM models for the Stitchery catalog."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class StitchRow(Base):
    """A stitch tutorial. Premium-tier stitches are gated by subscription."""
    __tablename__ = "stitches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False, index=True)
    description = Column(Text, nullable=True)
    reference_number = Column(String(50), nullable=True)

    # Tier: free | premium
    tier = Column(String(20), nullable=False, default="free")

    premium_features = Column(JSON, default=list)  # list[str]
    gallery = Column(JSON, default=list)  # list[image url]
    featured_image = Column(String(2000), nullable=True)
    thumbnail_image = Column(String(2000), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_stitches_tier_active", "tier", "is_active"),
    )
