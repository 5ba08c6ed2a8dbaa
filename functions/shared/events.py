"""
Event normalization.

Turns a verified Stripe webhook body into a PaymentEvent. Identity and tier
come only from metadata this service wrote when it minted the checkout
session; customer email is never used to resolve a user.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from shared.constants import PROVIDER_EVENT_TYPES, TIER_NAMES, USER_ID_METADATA_KEYS
from shared.errors import MalformedEventError

logger = logging.getLogger(__name__)


class EventType(Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    OTHER = "other"

    @classmethod
    def from_provider(cls, provider_type: str) -> "EventType":
        """Map a Stripe event type; unknown types become OTHER."""
        normalized = PROVIDER_EVENT_TYPES.get(provider_type)
        return cls(normalized) if normalized else cls.OTHER


@dataclass(frozen=True)
class PaymentEvent:
    """A provider event reduced to the fields reconciliation needs."""

    event_id: str
    type: EventType
    provider_type: str
    occurred_at: int
    user_id: Optional[str] = None
    tier: Optional[str] = None
    provider_customer_id: Optional[str] = None
    provider_status: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    raw_payload: bytes = field(default=b"", repr=False)


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _extract_user_id(obj: dict, metadata: dict) -> Optional[str]:
    for key in USER_ID_METADATA_KEYS:
        user_id = _clean_str(metadata.get(key))
        if user_id:
            return user_id
    # Set by the checkout minter alongside metadata
    return _clean_str(obj.get("client_reference_id"))


def _extract_subscription_id(obj: dict, event_type: EventType) -> Optional[str]:
    if event_type is EventType.CHECKOUT_COMPLETED:
        subscription = obj.get("subscription")
        # Expanded sessions carry the whole subscription object
        if isinstance(subscription, dict):
            subscription = subscription.get("id")
        return _clean_str(subscription)
    if event_type in (EventType.SUBSCRIPTION_UPDATED, EventType.SUBSCRIPTION_CANCELED):
        return _clean_str(obj.get("id"))
    return None


def _extract_tier(metadata: dict, event_id: str) -> Optional[str]:
    tier = _clean_str(metadata.get("tier"))
    if tier is None:
        return None
    tier = tier.lower()
    if tier not in TIER_NAMES:
        logger.warning(f"Ignoring unknown tier {tier!r} in event {event_id}")
        return None
    return tier


def normalize_event(payload: bytes) -> PaymentEvent:
    """Parse verified webhook bytes into a PaymentEvent.

    Raises:
        MalformedEventError: body is not a JSON object with id, type,
            created and data.object
    """
    try:
        envelope = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise MalformedEventError("Webhook body is not valid JSON")

    if not isinstance(envelope, dict):
        raise MalformedEventError("Webhook body must be a JSON object")

    event_id = _clean_str(envelope.get("id"))
    provider_type = _clean_str(envelope.get("type"))
    created = envelope.get("created")
    if not event_id or not provider_type:
        raise MalformedEventError("Event is missing id or type")
    # bool is an int subclass
    if not isinstance(created, int) or isinstance(created, bool):
        raise MalformedEventError("Event is missing a numeric created timestamp")

    data = envelope.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MalformedEventError("Event is missing data.object")

    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    event_type = EventType.from_provider(provider_type)
    provider_status = None
    if event_type in (EventType.SUBSCRIPTION_UPDATED, EventType.SUBSCRIPTION_CANCELED):
        provider_status = _clean_str(obj.get("status"))

    return PaymentEvent(
        event_id=event_id,
        type=event_type,
        provider_type=provider_type,
        occurred_at=created,
        user_id=_extract_user_id(obj, metadata),
        tier=_extract_tier(metadata, event_id),
        provider_customer_id=_clean_str(obj.get("customer")),
        provider_status=provider_status,
        provider_subscription_id=_extract_subscription_id(obj, event_type),
        raw_payload=payload,
    )
