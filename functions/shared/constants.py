"""
Shared constants for entitlement reconciliation.
"""

# Tier configuration
TIER_NAMES = ["basic", "pro", "elite"]

# Local subscription statuses
SUBSCRIPTION_STATUSES = ["none", "active", "past_due", "canceled"]

# Stripe event type -> normalized event type
PROVIDER_EVENT_TYPES = {
    "checkout.session.completed": "checkout_completed",
    "customer.subscription.updated": "subscription_updated",
    "customer.subscription.deleted": "subscription_canceled",
}

# Stripe subscription status -> local subscription status
PROVIDER_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "paused": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}

# Metadata keys carrying the caller's user id, in order of preference
USER_ID_METADATA_KEYS = ("uid", "userId")

# Webhook signature tolerance (matches Stripe's default)
DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300

# Idempotency ledger
DEFAULT_EVENT_RETENTION_DAYS = 90
DEFAULT_EVENT_CLAIM_LEASE_SECONDS = 120

# Optimistic concurrency
MAX_WRITE_ATTEMPTS = 3

# Checkout request limits
MAX_USER_ID_LENGTH = 128
