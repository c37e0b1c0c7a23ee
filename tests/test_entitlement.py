"""Tests for entitlement states and the User cache derived from them."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from src.models.entitlement import (
    ActivePaid,
    Cancelled,
    Free,
    PastDue,
    Trialing,
    access_from_user_cache,
    as_utc,
    entitlement_from_record,
    has_premium_access,
    holds_live_paid_plan,
    sync_user_cache,
    user_cache_for,
)

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(days=10)
EARLIER = NOW - timedelta(days=10)


def _record(**fields):
    base = dict(
        plan_type="free", status="inactive", current_period_end=None,
        cancel_at_period_end=False, cancelled_at=None,
        is_trial_active=False, trial_end=None,
    )
    base.update(fields)
    return SimpleNamespace(**base)


# ── State derivation ─────────────────────────────────────────────────────────

def test_no_record_is_free():
    assert entitlement_from_record(None) == Free()


def test_inactive_record_is_free():
    assert isinstance(entitlement_from_record(_record()), Free)


def test_active_trial():
    ent = entitlement_from_record(_record(status="active", is_trial_active=True, trial_end=LATER))
    assert ent == Trialing(ends_at=LATER)


def test_active_paid():
    ent = entitlement_from_record(_record(
        plan_type="premium_monthly", status="active", current_period_end=LATER, cancel_at_period_end=True,
    ))
    assert ent == ActivePaid("premium_monthly", LATER, cancel_at_period_end=True)


def test_paid_plan_wins_over_stale_trial_flag():
    ent = entitlement_from_record(_record(
        plan_type="premium_yearly", status="active", current_period_end=LATER,
        is_trial_active=True, trial_end=LATER,
    ))
    assert isinstance(ent, ActivePaid)


def test_cancelled_paid_keeps_period_end():
    ent = entitlement_from_record(_record(
        plan_type="premium_monthly", status="cancelled", current_period_end=LATER, cancelled_at=NOW,
    ))
    assert ent == Cancelled(since=NOW, access_until=LATER)


def test_past_due():
    ent = entitlement_from_record(_record(plan_type="premium_monthly", status="past_due", current_period_end=LATER))
    assert ent == PastDue("premium_monthly", LATER)


def test_naive_datetimes_are_read_as_utc():
    naive = LATER.replace(tzinfo=None)
    ent = entitlement_from_record(_record(status="active", is_trial_active=True, trial_end=naive))
    assert ent.ends_at == LATER
    assert as_utc(None) is None


# ── Access decision ──────────────────────────────────────────────────────────

def test_access_per_state():
    assert has_premium_access(Trialing(LATER), NOW)
    assert not has_premium_access(Trialing(EARLIER), NOW)
    assert has_premium_access(ActivePaid("premium_monthly", LATER), NOW)
    assert has_premium_access(ActivePaid("premium_monthly", None), NOW)
    assert not has_premium_access(ActivePaid("premium_monthly", EARLIER), NOW)
    assert has_premium_access(Cancelled(NOW, LATER), NOW)
    assert not has_premium_access(Cancelled(NOW, None), NOW)
    assert not has_premium_access(PastDue("premium_monthly", LATER), NOW)
    assert not has_premium_access(Free(), NOW)


def test_window_end_is_exclusive():
    assert not has_premium_access(Trialing(NOW), NOW)
    assert not access_from_user_cache("trial", NOW, NOW)


def test_cache_values_per_state():
    assert user_cache_for(Trialing(LATER)) == ("trial", LATER)
    assert user_cache_for(ActivePaid("premium_yearly", LATER)) == ("premium_yearly", LATER)
    assert user_cache_for(Cancelled(NOW, LATER)) == ("cancelled", LATER)
    assert user_cache_for(PastDue("premium_monthly", LATER)) == ("free", None)
    assert user_cache_for(Free()) == ("free", None)


def test_cache_and_record_agree():
    """The User cache gives the same answer as the record it mirrors."""
    states = [
        Free(), Trialing(LATER), Trialing(EARLIER),
        ActivePaid("premium_monthly", LATER), ActivePaid("premium_monthly", EARLIER),
        Cancelled(NOW, LATER), Cancelled(NOW, EARLIER), PastDue("premium_monthly", LATER),
    ]
    for ent in states:
        status, until = user_cache_for(ent)
        assert access_from_user_cache(status, until, NOW) == has_premium_access(ent, NOW), ent


def test_sync_user_cache_writes_both_columns():
    user = SimpleNamespace(subscription_status="free", premium_access_until=None)
    sync_user_cache(user, Trialing(LATER))
    assert user.subscription_status == "trial"
    assert user.premium_access_until == LATER
    sync_user_cache(user, Free())
    assert (user.subscription_status, user.premium_access_until) == ("free", None)


def test_unknown_cache_status_has_no_access():
    assert not access_from_user_cache(None, LATER, NOW)
    assert not access_from_user_cache("free", LATER, NOW)


# ── Purchase / trial blocking ────────────────────────────────────────────────

def test_live_paid_plan_blocks_until_period_end():
    sub = _record(plan_type="premium_monthly", status="active", current_period_end=LATER)
    assert holds_live_paid_plan(sub, NOW) is True
    assert holds_live_paid_plan(sub, LATER + timedelta(seconds=1)) is False


def test_open_ended_and_pending_plans_block():
    assert holds_live_paid_plan(_record(plan_type="premium_yearly", status="active"), NOW) is True
    assert holds_live_paid_plan(_record(plan_type="premium_yearly", status="pending", current_period_end=LATER), NOW) is True


def test_non_blocking_records():
    assert holds_live_paid_plan(None, NOW) is False
    assert holds_live_paid_plan(_record(status="active", is_trial_active=True, trial_end=LATER), NOW) is False
    assert holds_live_paid_plan(_record(plan_type="premium_monthly", status="cancelled", current_period_end=LATER), NOW) is False
    assert holds_live_paid_plan(_record(plan_type="premium_monthly", status="past_due", current_period_end=LATER), NOW) is False
    assert holds_live_paid_plan(_record(plan_type="premium_monthly", status="active", current_period_end=EARLIER), NOW) is False
