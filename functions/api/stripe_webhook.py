"""
Stripe Webhook Endpoint - POST /webhook

Reconciles Stripe payment-lifecycle events into per-user entitlements.
Uses Stripe signature verification instead of API key auth.

The response code is Stripe's only redelivery signal:
- 400: untrusted or unusable payload (Stripe's own policy decides what next)
- 200: processed, skipped, or duplicate (stop retrying)
- 500: transient failure (please redeliver)
"""

import base64
import binascii
import logging
import time

from shared.config import Settings, get_settings
from shared.constants import DEFAULT_WEBHOOK_TOLERANCE_SECONDS
from shared.entitlements import DynamoEntitlementStore
from shared.errors import MalformedEventError, SignatureInvalidError, TransientStoreError
from shared.events import normalize_event
from shared.idempotency import (
    STATUS_COMPLETED,
    STATUS_SKIPPED,
    AdmitResult,
    DynamoEventLedger,
    IdempotencyGuard,
)
from shared.logging_utils import (
    configure_structured_logging,
    log_api_request,
    log_webhook_outcome,
    set_request_id,
)
from shared.reconciler import Outcome, Reconciler
from shared.response_utils import error_response, success_response
from shared.signature import get_signature_header, verify_signature
from shared.types import APIGatewayEvent, LambdaResponse

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Built on first use per Lambda container
_guard = None
_reconciler = None


def get_guard(settings: Settings) -> IdempotencyGuard:
    global _guard
    if _guard is None:
        _guard = IdempotencyGuard(
            DynamoEventLedger(settings.billing_events_table),
            retention_days=settings.event_retention_days,
            lease_seconds=settings.event_claim_lease_seconds,
        )
    return _guard


def get_reconciler(settings: Settings) -> Reconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = Reconciler(DynamoEntitlementStore(settings.entitlements_table))
    return _reconciler


def reset_engine():
    """Drop the cached guard and reconciler. Used in tests for clean state."""
    global _guard, _reconciler
    _guard = None
    _reconciler = None


def _raw_body(event: APIGatewayEvent) -> bytes:
    """Return the request body exactly as API Gateway received it."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            raise MalformedEventError("Body is flagged base64 but does not decode")
    return body.encode("utf-8")


def _temporary_error() -> LambdaResponse:
    return error_response(500, "temporary_error", "Temporary error, please retry")


def process_webhook(
    payload: bytes,
    sig_header: str | None,
    webhook_secret: str,
    guard: IdempotencyGuard,
    reconciler: Reconciler,
    tolerance: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
) -> LambdaResponse:
    """Verify, normalize, deduplicate and reconcile one delivery.

    Returns:
        Lambda response dict with the acknowledgment Stripe should see
    """
    try:
        verified = verify_signature(payload, sig_header, webhook_secret, tolerance)
        payment_event = normalize_event(verified)
    except (SignatureInvalidError, MalformedEventError) as e:
        return e.to_response()

    event_id = payment_event.event_id
    logger.info(f"Processing Stripe event: {payment_event.provider_type} (id={event_id})")

    try:
        admission = guard.admit(event_id, payment_event.provider_type)
    except TransientStoreError as e:
        logger.error(f"Could not claim event {event_id}: {e}")
        return _temporary_error()

    if admission is AdmitResult.DUPLICATE:
        log_webhook_outcome(logger, event_id, payment_event.provider_type, "duplicate")
        return success_response({"received": True, "duplicate": True})

    try:
        result = reconciler.reconcile(payment_event)
    except Exception as e:
        # Unknown errors - release claim and return 500 to be safe
        guard.release(event_id)
        logger.error(f"Unexpected error reconciling {event_id}: {e}", exc_info=True)
        return error_response(500, "processing_failed", "Processing failed")

    if result.outcome is Outcome.FAILED:
        # Release so Stripe's redelivery is admitted instead of acked as duplicate
        guard.release(event_id)
        log_webhook_outcome(logger, event_id, payment_event.provider_type, "failed", result.reason, payment_event.user_id)
        return _temporary_error()

    if result.outcome is Outcome.SKIPPED:
        guard.complete(event_id, STATUS_SKIPPED, result.reason)
        log_webhook_outcome(logger, event_id, payment_event.provider_type, "skipped", result.reason, payment_event.user_id)
        return success_response({"received": True, "skipped": result.reason})

    guard.complete(event_id, STATUS_COMPLETED)
    log_webhook_outcome(logger, event_id, payment_event.provider_type, "ok", user_id=payment_event.user_id)
    return success_response({"received": True})


def handler(event, context):
    """
    Lambda handler for Stripe webhooks.

    Handles:
    - checkout.session.completed: grant tier, mark active (creates the record);
      one-time payments without a subscription are acknowledged and skipped
    - customer.subscription.updated: map subscription status
    - customer.subscription.deleted: mark canceled, keep tier
    Other event types are acknowledged and ignored.
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()

    # Raises ConfigurationError when misconfigured: never serve half-configured
    settings = get_settings()

    headers = event.get("headers") or {}
    sig_header = get_signature_header(headers)

    if not sig_header:
        logger.warning("Missing Stripe signature")
        response = error_response(400, "missing_signature", "Missing Stripe signature")
    else:
        try:
            payload = _raw_body(event)
        except MalformedEventError as e:
            response = e.to_response()
        else:
            response = process_webhook(
                payload,
                sig_header,
                settings.webhook_secret,
                get_guard(settings),
                get_reconciler(settings),
                tolerance=settings.webhook_tolerance_seconds,
            )

    log_api_request(logger, "POST", "/webhook", response["statusCode"], (time.time() - start_time) * 1000)
    return response
