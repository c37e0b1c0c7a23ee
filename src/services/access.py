"""
Premium Access Gate
---
Decides whether a caller may see premium content. Reads only the User cache
(subscription_status, premium_access_until) and compares against the clock at
read time, so an expired window is denied without any background sweep.

Two ways to use it from routes:
- Depends(require_premium_access): blocking, raises PremiumRequired (403) with
  enough diagnostics for the client to offer a trial or a resubscribe.
- Depends(check_subscription_status): advisory, returns a SubscriptionContext
  and lets the route decide field visibility (see apply_premium_visibility).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import get_current_user, require_user
from src.db.engine import get_session
from src.db.subscription_tables import SubscriptionRow
from src.db.user_tables import UserRow
from src.models.entitlement import (
    PlanType,
    SubscriptionStatus,
    UserStatus,
    access_from_user_cache,
    as_utc,
    entitlement_from_record,
    has_premium_access,
    utcnow,
)
from src.services.errors import PremiumRequired

PREVIEW_LENGTH = 100
PREMIUM_DESCRIPTION_SUFFIX = "... [Premium content - Subscribe to see more]"
PREMIUM_PLACEHOLDER = "Premium content - Subscribe to unlock"


@dataclass(frozen=True)
class AccessInfo:
    has_premium_access: bool
    status: str
    premium_access_until: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_premium_access": self.has_premium_access,
            "status": self.status,
            "premium_access_until": _iso(self.premium_access_until),
        }


@dataclass
class SubscriptionContext:
    """What advisory routes get: access plus a summary of the record."""
    access: AccessInfo
    is_authenticated: bool
    trial_used: bool = False
    subscription: Optional[dict[str, Any]] = None

    @property
    def has_premium_access(self) -> bool:
        return self.access.has_premium_access


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def compute_access(user: Optional[UserRow], now: Optional[datetime] = None) -> AccessInfo:
    """Pure: no reads, no writes."""
    if user is None:
        return AccessInfo(False, UserStatus.FREE.value, None)
    status = user.subscription_status or UserStatus.FREE.value
    until = as_utc(user.premium_access_until)
    return AccessInfo(
        has_premium_access=access_from_user_cache(status, until, now),
        status=status,
        premium_access_until=until,
    )


def subscription_summary(sub: Optional[SubscriptionRow], now: Optional[datetime] = None) -> dict[str, Any]:
    """Client-facing summary; no gateway identifiers."""
    if sub is None:
        return {
            "plan_type": PlanType.FREE.value,
            "status": SubscriptionStatus.INACTIVE.value,
            "has_premium_access": False,
            "current_period_end": None,
            "cancel_at_period_end": False,
        }
    return {
        "plan_type": sub.plan_type,
        "status": sub.status,
        "has_premium_access": has_premium_access(entitlement_from_record(sub), now),
        "current_period_end": _iso(sub.current_period_end),
        "cancel_at_period_end": bool(sub.cancel_at_period_end),
        "is_trial_active": bool(sub.is_trial_active),
        "trial_end": _iso(sub.trial_end),
        "pending_plan_type": sub.pending_plan_type,
    }


async def _find_subscription(session: AsyncSession, user_id: str) -> Optional[SubscriptionRow]:
    result = await session.execute(
        select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def require_premium_access(
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
) -> AccessInfo:
    """Blocking gate for premium-only endpoints."""
    access = compute_access(user)
    if access.has_premium_access:
        return access

    sub = await _find_subscription(session, user.id)
    raise PremiumRequired(data={
        "current_plan": user.subscription_status,
        "trial_used": bool(user.trial_used),
        "has_subscription": sub is not None,
        "subscription_status": sub.status if sub else "none",
    })


async def check_subscription_status(
    user: Optional[UserRow] = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionContext:
    """Advisory gate: never rejects, anonymous callers are free."""
    if user is None:
        return SubscriptionContext(access=compute_access(None), is_authenticated=False)

    sub = await _find_subscription(session, user.id)
    return SubscriptionContext(
        access=compute_access(user),
        is_authenticated=True,
        trial_used=bool(user.trial_used),
        subscription=subscription_summary(sub) if sub else None,
    )


def apply_premium_visibility(item: dict[str, Any], has_access: bool) -> dict[str, Any]:
    """Annotate a content dict with access flags and strip premium fields.

    Premium items stay listed for non-subscribers, with a description preview
    and no gallery.
    """
    is_free = (item.get("tier") or "free") == "free"
    item["is_free"] = is_free
    item["access_level"] = "free" if is_free else "premium"
    item["user_has_access"] = is_free or has_access
    item["requires_subscription"] = not is_free

    if not is_free and not has_access:
        description = item.get("description")
        item["description"] = (
            description[:PREVIEW_LENGTH] + PREMIUM_DESCRIPTION_SUFFIX
            if description else PREMIUM_PLACEHOLDER
        )
        item["premium_features"] = ["Subscribe to unlock premium features"]
        item["gallery"] = []
        item["thumbnail_image"] = item.get("featured_image")
    return item
