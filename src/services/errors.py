"""Entitlement errors — raised by services, rendered by the app's error handler."""
from __future__ import annotations

from typing import Any, Optional


class EntitlementError(Exception):
    status_code = 400
    code = "entitlement_error"
    default_message = "Subscription request failed"

    def __init__(self, message: Optional[str] = None, data: Optional[dict[str, Any]] = None):
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        return body


class InvalidInput(EntitlementError):
    code = "invalid_input"
    default_message = "Invalid input"


class InvalidPlan(InvalidInput):
    code = "invalid_plan"
    default_message = "Unknown plan"


class TrialAlreadyUsed(EntitlementError):
    code = "trial_already_used"
    default_message = "Free trial already used"


class AlreadySubscribed(EntitlementError):
    code = "already_subscribed"
    default_message = "User already has an active subscription"


class DuplicateSubscription(EntitlementError):
    status_code = 409
    code = "duplicate_subscription"
    default_message = "User already has an active subscription"


class SubscriptionNotFound(EntitlementError):
    status_code = 404
    code = "subscription_not_found"
    default_message = "Subscription not found"


class UserNotFound(EntitlementError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class PaymentFailed(EntitlementError):
    """Charge declined, errored or timed out. Nothing was written."""
    status_code = 402
    code = "payment_failed"
    default_message = "Payment could not be completed"


class GatewayUnavailable(EntitlementError):
    status_code = 502
    code = "gateway_unavailable"
    default_message = "Payment provider unavailable, please retry"


class CardInUse(EntitlementError):
    status_code = 409
    code = "card_in_use"
    default_message = "Card is used by an active subscription"


class PremiumRequired(EntitlementError):
    status_code = 403
    code = "premium_required"
    default_message = "Premium subscription required to access this content"
