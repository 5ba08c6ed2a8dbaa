"""
Checkout session minting.

The user id and tier are embedded as metadata on both the Checkout Session and
the Subscription it creates. Stripe echoes that metadata back on
checkout.session.completed and customer.subscription.* events; it is the only
channel through which the webhook learns which user an event belongs to.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import stripe

from shared.errors import InvalidRequestError
from shared.logging_utils import log_external_call, mask_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutIntent:
    user_id: str
    tier: str
    session_id: str
    url: Optional[str] = None


class SessionMinter:
    """Creates Stripe Checkout sessions for a closed set of tiers."""

    def __init__(self, price_ids: dict[str, str], app_base_url: str):
        self.price_ids = dict(price_ids)
        self.app_base_url = app_base_url.rstrip("/")

    def price_for(self, tier: str) -> str:
        """Resolve a tier to its Stripe price id.

        Raises:
            InvalidRequestError: tier is not one of the configured tiers
        """
        price_id = self.price_ids.get(tier)
        if not price_id:
            choices = ", ".join(sorted(self.price_ids))
            raise InvalidRequestError(f"Invalid tier: {tier}. Choose: {choices}", code="invalid_tier")
        return price_id

    def create_session(self, user_id: str, email: str, tier: str) -> CheckoutIntent:
        """Create one Checkout Session. Not idempotent: each call creates a new session.

        Raises:
            InvalidRequestError: unknown tier
            stripe.StripeError: Stripe rejected or failed the request
        """
        price_id = self.price_for(tier)
        metadata = {"uid": user_id, "tier": tier}

        checkout_params = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "customer_email": email,
            "client_reference_id": user_id,
            "metadata": metadata,
            "subscription_data": {"metadata": dict(metadata)},
            "success_url": f"{self.app_base_url}/dashboard?success=true",
            "cancel_url": f"{self.app_base_url}/dashboard?canceled=true",
        }

        start = time.time()
        try:
            session = stripe.checkout.Session.create(**checkout_params)
        except stripe.StripeError as e:
            log_external_call(
                logger, "stripe", "checkout.Session.create", False, (time.time() - start) * 1000, error=str(e)
            )
            raise
        log_external_call(logger, "stripe", "checkout.Session.create", True, (time.time() - start) * 1000)

        logger.info(f"Created checkout session {session.id} for user {user_id} ({mask_email(email)}), tier {tier}")
        return CheckoutIntent(user_id=user_id, tier=tier, session_id=session.id, url=getattr(session, "url", None))
