"""
Service configuration.

Settings are read from the environment once per Lambda container. Stripe
credentials may be supplied directly (STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
or as Secrets Manager ARNs (STRIPE_SECRET_ARN, STRIPE_WEBHOOK_SECRET_ARN).
A container with any required value missing refuses to serve: get_settings()
raises ConfigurationError and handlers let it propagate.
"""

import json
import logging
import os
from dataclasses import dataclass

from botocore.exceptions import ClientError

from shared.aws_clients import get_secretsmanager
from shared.constants import (
    DEFAULT_EVENT_CLAIM_LEASE_SECONDS,
    DEFAULT_EVENT_RETENTION_DAYS,
    DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
    TIER_NAMES,
)
from shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

_settings = None


@dataclass(frozen=True)
class Settings:
    stripe_api_key: str
    webhook_secret: str
    price_ids: dict[str, str]
    app_base_url: str
    entitlements_table: str = "entitlements-users"
    billing_events_table: str = "entitlements-billing-events"
    event_retention_days: int = DEFAULT_EVENT_RETENTION_DAYS
    event_claim_lease_seconds: int = DEFAULT_EVENT_CLAIM_LEASE_SECONDS
    webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS


def _env(name: str) -> str | None:
    # Empty strings count as unset (CDK fallback sets "" when not configured)
    return os.environ.get(name) or None


def _read_secret(secret_arn: str, json_field: str) -> str | None:
    """Read a secret value, accepting either a JSON document or a raw string."""
    try:
        response = get_secretsmanager().get_secret_value(SecretId=secret_arn)
    except ClientError as e:
        logger.error(f"Failed to retrieve secret {secret_arn}: {e}")
        return None

    secret_value = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_value)
    except json.JSONDecodeError:
        return secret_value or None
    if isinstance(secret_json, dict):
        return secret_json.get(json_field) or None
    return secret_value or None


def _resolve_secret(value_var: str, arn_var: str, json_field: str) -> str | None:
    value = _env(value_var)
    if value:
        return value
    arn = _env(arn_var)
    if arn:
        return _read_secret(arn, json_field)
    return None


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError([f"{name} (not an integer: {raw!r})"])


def load_settings() -> Settings:
    """Build Settings from the environment, failing on any missing value."""
    missing = []

    api_key = _resolve_secret("STRIPE_SECRET_KEY", "STRIPE_SECRET_ARN", "key")
    if not api_key:
        missing.append("STRIPE_SECRET_KEY")

    webhook_secret = _resolve_secret("STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET_ARN", "secret")
    if not webhook_secret:
        missing.append("STRIPE_WEBHOOK_SECRET")

    price_ids = {}
    for tier in TIER_NAMES:
        var = f"STRIPE_PRICE_ID_{tier.upper()}"
        price_id = _env(var)
        if price_id:
            price_ids[tier] = price_id
        else:
            missing.append(var)

    app_base_url = _env("APP_BASE_URL")
    if not app_base_url:
        missing.append("APP_BASE_URL")

    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        raise ConfigurationError(missing)

    return Settings(
        stripe_api_key=api_key,
        webhook_secret=webhook_secret,
        price_ids=price_ids,
        app_base_url=app_base_url.rstrip("/"),
        entitlements_table=_env("ENTITLEMENTS_TABLE") or "entitlements-users",
        billing_events_table=_env("BILLING_EVENTS_TABLE") or "entitlements-billing-events",
        event_retention_days=_int_env("EVENT_RETENTION_DAYS", DEFAULT_EVENT_RETENTION_DAYS),
        event_claim_lease_seconds=_int_env("EVENT_CLAIM_LEASE_SECONDS", DEFAULT_EVENT_CLAIM_LEASE_SECONDS),
        webhook_tolerance_seconds=_int_env("WEBHOOK_TOLERANCE_SECONDS", DEFAULT_WEBHOOK_TOLERANCE_SECONDS),
    )


def get_settings() -> Settings:
    """Return the cached Settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings():
    """Drop cached settings. Used in tests for clean state."""
    global _settings
    _settings = None
