"""Cards on file, plus the default card the user picked among them."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import require_user
from src.db.engine import get_session
from src.db.subscription_tables import SubscriptionRow
from src.db.user_tables import UserRow
from src.models.entitlement import SubscriptionStatus
from src.services.errors import CardInUse, GatewayUnavailable
from src.services.payment_gateway import GatewayError, PaymentGateway, StoredCard, get_gateway
from src.services.subscriptions import ensure_customer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cards", tags=["cards"])


class AddCardRequest(BaseModel):
    source_id: str  # card nonce from the Square Web Payments SDK
    cardholder_name: Optional[str] = None


class UpdateCardRequest(BaseModel):
    set_as_default: bool = False


async def card_in_use(session: AsyncSession, user_id: str, card_id: str) -> bool:
    result = await session.execute(
        select(SubscriptionRow.id).where(
            SubscriptionRow.user_id == user_id,
            SubscriptionRow.payment_method_id == card_id,
            SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
        )
    )
    return result.first() is not None


async def _enabled_cards(gateway: PaymentGateway, user: UserRow) -> list[StoredCard]:
    if not user.square_customer_id:
        return []
    try:
        cards = await gateway.list_stored_cards(user.square_customer_id)
    except GatewayError as exc:
        logger.error(f"Listing cards failed: user={user.id} error={exc}")
        raise GatewayUnavailable()
    return [c for c in cards if c.enabled]


def pick_default_card(cards: list[StoredCard], default_card_id: Optional[str]) -> Optional[StoredCard]:
    """The saved default if it is still enabled, else the first enabled card."""
    for card in cards:
        if card.id == default_card_id:
            return card
    return cards[0] if cards else None


def _card_dict(card: StoredCard, default: Optional[StoredCard]) -> dict:
    return {**card.to_dict(), "is_default": default is not None and card.id == default.id}


@router.get("")
async def list_cards(
    user: UserRow = Depends(require_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    cards = await _enabled_cards(gateway, user)
    default = pick_default_card(cards, user.default_card_id)
    return {"cards": [_card_dict(c, default) for c in cards]}


@router.get("/default")
async def default_card(
    user: UserRow = Depends(require_user),
    gateway: PaymentGateway = Depends(get_gateway),
):
    default = pick_default_card(await _enabled_cards(gateway, user), user.default_card_id)
    return {"card": _card_dict(default, default) if default else None}


@router.post("", status_code=201)
async def add_card(
    req: AddCardRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    try:
        customer_id = await ensure_customer(session, gateway, user)
        card = await gateway.create_stored_card(customer_id, req.source_id, req.cardholder_name)
    except GatewayError as exc:
        logger.error(f"Saving card failed: user={user.id} error={exc}")
        raise GatewayUnavailable()
    logger.info(f"Card saved: user={user.id} card={card.id}")
    return {"card": card.to_dict()}


@router.put("/{card_id}")
async def update_card(
    card_id: str,
    req: UpdateCardRequest,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Only the default preference is editable; it is kept on our side."""
    cards = await _enabled_cards(gateway, user)
    card = next((c for c in cards if c.id == card_id), None)
    if card is None:
        raise HTTPException(404, "Card not found")

    if req.set_as_default and user.default_card_id != card_id:
        user.default_card_id = card_id
        try:
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        logger.info(f"Default card set: user={user.id} card={card_id}")

    default = pick_default_card(cards, user.default_card_id)
    return {"card": _card_dict(card, default)}


@router.delete("/{card_id}")
async def remove_card(
    card_id: str,
    user: UserRow = Depends(require_user),
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_gateway),
):
    if await card_in_use(session, user.id, card_id):
        raise CardInUse()
    if not user.square_customer_id:
        raise HTTPException(404, "Card not found")
    try:
        owned = {c.id for c in await gateway.list_stored_cards(user.square_customer_id)}
        if card_id not in owned:
            raise HTTPException(404, "Card not found")
        await gateway.disable_stored_card(card_id)
    except GatewayError as exc:
        logger.error(f"Disabling card failed: user={user.id} card={card_id} error={exc}")
        raise GatewayUnavailable()

    if user.default_card_id == card_id:
        user.default_card_id = None
        try:
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    return {"removed": card_id}
