"""
Create Checkout Session Endpoint - POST /create-checkout-session

Creates a Stripe Checkout session for a subscription tier. The caller's user
id and tier ride along as session metadata and come back on the webhook.
"""

import json
import logging
import re
import time

import stripe

from shared.checkout import SessionMinter
from shared.config import get_settings
from shared.constants import MAX_USER_ID_LENGTH
from shared.errors import InvalidRequestError
from shared.logging_utils import configure_structured_logging, log_api_request, set_request_id
from shared.response_utils import error_response, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

REQUIRED_FIELDS = ("email", "tier", "userId")


def _parse_request(event: dict) -> tuple[str, str, str]:
    """Validate the request body and return (user_id, email, tier).

    Raises:
        InvalidRequestError: body is not JSON or a field is missing/invalid
    """
    try:
        body = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        raise InvalidRequestError("Request body must be valid JSON", code="invalid_json")
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object", code="invalid_json")

    missing = [name for name in REQUIRED_FIELDS if not isinstance(body.get(name), str) or not body[name].strip()]
    if missing:
        raise InvalidRequestError(
            f"Missing {', '.join(missing)}",
            code="missing_fields",
            details={"missing": missing},
        )

    email = body["email"].strip()
    tier = body["tier"].strip().lower()
    user_id = body["userId"].strip()

    if not EMAIL_PATTERN.match(email):
        raise InvalidRequestError("Invalid email address", code="invalid_email")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise InvalidRequestError(
            f"userId must be at most {MAX_USER_ID_LENGTH} characters", code="invalid_user_id"
        )

    return user_id, email, tier


def handler(event, context):
    """
    Lambda handler for POST /create-checkout-session.

    Request body:
    {
        "email": "user@example.com",
        "tier": "basic" | "pro" | "elite",
        "userId": "..."
    }

    Returns:
    {
        "sessionId": "cs_...",
        "url": "https://checkout.stripe.com/..."
    }
    """
    configure_structured_logging()
    set_request_id(event)
    start_time = time.time()

    settings = get_settings()
    stripe.api_key = settings.stripe_api_key
    minter = SessionMinter(settings.price_ids, settings.app_base_url)

    user_id = None
    try:
        user_id, email, tier = _parse_request(event)
        intent = minter.create_session(user_id, email, tier)
        response = success_response({"sessionId": intent.session_id, "url": intent.url})
    except InvalidRequestError as e:
        response = e.to_response()
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating checkout session: {e}")
        response = error_response(500, "stripe_error", "Failed to create checkout session")

    log_api_request(
        logger,
        "POST",
        "/create-checkout-session",
        response["statusCode"],
        (time.time() - start_time) * 1000,
        user_id=user_id,
    )
    return response
