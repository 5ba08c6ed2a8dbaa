"""
Entitlement reconciliation.

Applies a normalized PaymentEvent to the user's Entitlement:

1. No user id -> skipped (never guess the user).
2. Load the current record.
3. Stored last_applied_event_at strictly newer than the event -> skipped as stale.
4. Per-type transition (checkout creates and needs a subscription,
   updates/cancels need a record).
5. Compare-and-swap merge write; a lost race re-reads and re-checks.

Skips and failures are returned as ReconcileResult values so the webhook
handler can pick the exact acknowledgment for the provider.
"""

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from shared.constants import MAX_WRITE_ATTEMPTS, PROVIDER_STATUS_MAP
from shared.entitlements import Entitlement, EntitlementStore, SubscriptionStatus, Tier
from shared.errors import TransientStoreError, WriteConflictError
from shared.events import EventType, PaymentEvent

logger = logging.getLogger(__name__)


class Outcome(Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(Enum):
    MISSING_IDENTITY = "missing_identity"
    MISSING_TIER = "missing_tier"
    UNKNOWN_USER = "unknown_user"
    IGNORED_TYPE = "ignored_type"
    UNRECOGNIZED_STATUS = "unrecognized_status"
    STALE = "stale"
    NO_SUBSCRIPTION = "no_subscription"


class FailureReason(Enum):
    TRANSIENT = "transient"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: Outcome
    reason: Optional[str] = None
    entitlement: Optional[Entitlement] = None

    @classmethod
    def ok(cls, entitlement: Entitlement) -> "ReconcileResult":
        return cls(Outcome.OK, entitlement=entitlement)

    @classmethod
    def skipped(cls, reason: SkipReason) -> "ReconcileResult":
        return cls(Outcome.SKIPPED, reason=reason.value)

    @classmethod
    def failed(cls, reason: FailureReason = FailureReason.TRANSIENT) -> "ReconcileResult":
        return cls(Outcome.FAILED, reason=reason.value)


def map_provider_status(provider_status: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a Stripe subscription status onto the local enum."""
    local = PROVIDER_STATUS_MAP.get(provider_status or "")
    return SubscriptionStatus(local) if local else None


class Reconciler:
    """Applies PaymentEvents to an EntitlementStore."""

    def __init__(self, store: EntitlementStore, max_attempts: int = MAX_WRITE_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    def reconcile(self, event: PaymentEvent) -> ReconcileResult:
        if not event.user_id:
            logger.warning(f"Event {event.event_id} ({event.provider_type}) has no user id in metadata, skipping")
            return ReconcileResult.skipped(SkipReason.MISSING_IDENTITY)

        if event.type is EventType.OTHER:
            logger.info(f"Ignoring event type {event.provider_type} ({event.event_id})")
            return ReconcileResult.skipped(SkipReason.IGNORED_TYPE)

        for attempt in range(1, self.max_attempts + 1):
            try:
                current = self.store.get(event.user_id)
                decision = self._transition(event, current)
                if isinstance(decision, ReconcileResult):
                    return decision
                self.store.save(decision, current)
            except WriteConflictError:
                logger.info(
                    f"Concurrent write on entitlement {event.user_id}, "
                    f"re-evaluating event {event.event_id} (attempt {attempt}/{self.max_attempts})"
                )
                continue
            except TransientStoreError as e:
                logger.error(f"Store failure reconciling event {event.event_id}: {e}")
                return ReconcileResult.failed()

            logger.info(
                f"Entitlement {event.user_id} -> tier={decision.tier.value if decision.tier else None}, "
                f"status={decision.subscription_status.value} (event {event.event_id}, {event.type.value})"
            )
            return ReconcileResult.ok(decision)

        logger.error(f"Gave up on event {event.event_id} after {self.max_attempts} conflicting writes")
        return ReconcileResult.failed()

    def _transition(self, event: PaymentEvent, current: Optional[Entitlement]):
        """Compute the new Entitlement, or a skip result."""
        if (
            current is not None
            and current.last_applied_event_at is not None
            and current.last_applied_event_at > event.occurred_at
        ):
            logger.info(
                f"Stale event {event.event_id} for {event.user_id}: "
                f"occurred_at={event.occurred_at} < last_applied={current.last_applied_event_at}"
            )
            return ReconcileResult.skipped(SkipReason.STALE)

        match event.type:
            case EventType.CHECKOUT_COMPLETED:
                if not event.tier:
                    logger.warning(f"Checkout event {event.event_id} for {event.user_id} has no valid tier")
                    return ReconcileResult.skipped(SkipReason.MISSING_TIER)
                if not event.provider_subscription_id:
                    logger.info(
                        f"One-time payment {event.event_id} for {event.user_id} (no subscription), no tier granted"
                    )
                    return ReconcileResult.skipped(SkipReason.NO_SUBSCRIPTION)
                base = current or Entitlement(user_id=event.user_id)
                updated = dataclasses.replace(
                    base,
                    tier=Tier(event.tier),
                    subscription_status=SubscriptionStatus.ACTIVE,
                )

            case EventType.SUBSCRIPTION_UPDATED:
                if current is None:
                    logger.warning(f"Subscription update {event.event_id} for unknown user {event.user_id}")
                    return ReconcileResult.skipped(SkipReason.UNKNOWN_USER)
                status = map_provider_status(event.provider_status)
                if status is None:
                    logger.warning(
                        f"Unrecognized subscription status {event.provider_status!r} in event {event.event_id}"
                    )
                    return ReconcileResult.skipped(SkipReason.UNRECOGNIZED_STATUS)
                updated = dataclasses.replace(current, subscription_status=status)

            case EventType.SUBSCRIPTION_CANCELED:
                if current is None:
                    logger.warning(f"Subscription cancel {event.event_id} for unknown user {event.user_id}")
                    return ReconcileResult.skipped(SkipReason.UNKNOWN_USER)
                # Tier is kept for display and win-back
                updated = dataclasses.replace(current, subscription_status=SubscriptionStatus.CANCELED)

            case EventType.OTHER:
                return ReconcileResult.skipped(SkipReason.IGNORED_TYPE)

        return dataclasses.replace(
            updated,
            provider_customer_id=event.provider_customer_id or updated.provider_customer_id,
            provider_subscription_id=event.provider_subscription_id or updated.provider_subscription_id,
            last_applied_event_at=event.occurred_at,
            last_applied_event_id=event.event_id,
        )
