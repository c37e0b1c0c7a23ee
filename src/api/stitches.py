"""Stitch catalog API — premium stitches are previewed for non-subscribers."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.db.tables import StitchRow
from src.services.access import SubscriptionContext, apply_premium_visibility, check_subscription_status

router = APIRouter(prefix="/api/v1/stitches", tags=["stitches"])


def _stitch_dict(row: StitchRow) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "reference_number": row.reference_number,
        "tier": row.tier,
        "premium_features": list(row.premium_features or []),
        "gallery": list(row.gallery or []),
        "featured_image": row.featured_image,
        "thumbnail_image": row.thumbnail_image,
    }


@router.get("")
async def list_stitches(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    tier: Optional[str] = Query(None, pattern="^(free|premium)$"),
    ctx: SubscriptionContext = Depends(check_subscription_status),
    session: AsyncSession = Depends(get_session),
):
    query = select(StitchRow).where(StitchRow.is_active.is_(True))
    if tier:
        query = query.where(StitchRow.tier == tier)
    total = (await session.execute(
        select(func.count()).select_from(query.subquery())
    )).scalar_one()
    result = await session.execute(
        query.order_by(StitchRow.name).offset((page - 1) * limit).limit(limit)
    )
    stitches = [
        apply_premium_visibility(_stitch_dict(row), ctx.has_premium_access)
        for row in result.scalars().all()
    ]
    return {
        "data": stitches,
        "pagination": {
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
            "total_items": total,
        },
        "subscription": ctx.access.to_dict(),
    }


@router.get("/{stitch_id}")
async def get_stitch(
    stitch_id: str,
    ctx: SubscriptionContext = Depends(check_subscription_status),
    session: AsyncSession = Depends(get_session),
):
    row = await session.get(StitchRow, stitch_id)
    if row is None or not row.is_active:
        raise HTTPException(404, "Stitch not found")
    stitch = apply_premium_visibility(_stitch_dict(row), ctx.has_premium_access)
    response = {"data": stitch}
    if not stitch["user_has_access"]:
        response["message"] = "This is premium content. Subscribe to unlock full access."
        response["upgrade"] = {"trial_available": ctx.is_authenticated and not ctx.trial_used}
    return response
