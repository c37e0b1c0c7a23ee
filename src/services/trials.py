"""
Free Trial Activation
---
One trial per account, ever. The trial_used flag is flipped with a
conditional UPDATE (WHERE trial_used = false), so of two concurrent attempts
only one can win; the loser sees TrialAlreadyUsed.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.subscription_tables import SubscriptionRow
from src.db.user_tables import UserRow
from src.models.entitlement import (
    PlanType,
    SubscriptionStatus,
    UserStatus,
    entitlement_from_record,
    holds_live_paid_plan,
    sync_user_cache,
    utcnow,
)
from src.services.errors import AlreadySubscribed, InvalidInput, TrialAlreadyUsed, UserNotFound

logger = logging.getLogger(__name__)


def validate_trial_days(trial_days) -> int:
    if trial_days is None:
        return settings.DEFAULT_TRIAL_DAYS
    # bool is an int subclass; True is not "1 day"
    if isinstance(trial_days, bool) or not isinstance(trial_days, int) or trial_days <= 0:
        raise InvalidInput(f"trial_days must be a positive integer, got {trial_days!r}")
    return trial_days


async def start_trial(
    session: AsyncSession,
    user_id: str,
    trial_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> tuple[UserRow, SubscriptionRow]:
    """Grant `trial_days` of premium access to a user who never had a trial.

    Raises InvalidInput, UserNotFound, TrialAlreadyUsed or AlreadySubscribed;
    on any of them nothing is written.
    """
    days = validate_trial_days(trial_days)
    now = now or utcnow()
    trial_end = now + timedelta(days=days)

    user = await session.get(UserRow, user_id)
    if user is None:
        raise UserNotFound()
    if user.trial_used:
        raise TrialAlreadyUsed()

    result = await session.execute(
        select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
    )
    sub = result.scalar_one_or_none()
    if holds_live_paid_plan(sub, now):
        raise AlreadySubscribed()

    try:
        flipped = await session.execute(
            update(UserRow)
            .where(UserRow.id == user_id, UserRow.trial_used.is_(False))
            .values(
                trial_used=True,
                subscription_status=UserStatus.TRIAL.value,
                premium_access_until=trial_end,
            )
        )
        if flipped.rowcount == 0:
            raise TrialAlreadyUsed()

        if sub is None:
            sub = SubscriptionRow(user_id=user_id)
            session.add(sub)
        sub.plan_type = PlanType.FREE.value
        sub.pending_plan_type = None
        sub.status = SubscriptionStatus.ACTIVE.value
        sub.is_trial_active = True
        sub.trial_start = now
        sub.trial_end = trial_end
        sub.cancel_at_period_end = False
        sub.updated_at = now

        sync_user_cache(user, entitlement_from_record(sub))
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.warning(f"Trial activation lost a race on the subscription record: user={user_id}")
        raise AlreadySubscribed()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Trial started: user={user_id} days={days} until={trial_end.isoformat()}")
    return user, sub
