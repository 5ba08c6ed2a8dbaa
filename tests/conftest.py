"""
Shared pytest fixtures for entitlement service tests.
"""

import dataclasses
import hashlib
import hmac
import json
import os
import sys
import threading
import time

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

from shared.errors import TransientStoreError, WriteConflictError  # noqa: E402

ENTITLEMENTS_TABLE = "entitlements-users"
BILLING_EVENTS_TABLE = "entitlements-billing-events"
WEBHOOK_SECRET = "whsec_test_secret"

TEST_CONFIG = {
    "STRIPE_SECRET_KEY": "sk_test_123",
    "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "STRIPE_PRICE_ID_BASIC": "price_basic_123",
    "STRIPE_PRICE_ID_PRO": "price_pro_123",
    "STRIPE_PRICE_ID_ELITE": "price_elite_123",
    "APP_BASE_URL": "https://app.example.com",
    "ENTITLEMENTS_TABLE": ENTITLEMENTS_TABLE,
    "BILLING_EVENTS_TABLE": BILLING_EVENTS_TABLE,
}


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def service_config(monkeypatch):
    """Complete service configuration; tests delete keys to break it."""
    for name, value in TEST_CONFIG.items():
        monkeypatch.setenv(name, value)
    for name in ("STRIPE_SECRET_ARN", "STRIPE_WEBHOOK_SECRET_ARN"):
        monkeypatch.delenv(name, raising=False)
    return dict(TEST_CONFIG)


@pytest.fixture(autouse=True)
def reset_cached_state():
    """Reset AWS clients, settings and the webhook engine between tests."""
    _reset_all()
    yield
    _reset_all()


def _reset_all():
    from shared.aws_clients import reset_clients
    from shared.config import reset_settings

    import api.stripe_webhook as webhook_module

    reset_clients()
    reset_settings()
    webhook_module.reset_engine()


def create_dynamodb_tables(dynamodb):
    """Create the entitlements and billing events tables.

    Args:
        dynamodb: boto3 DynamoDB resource
    """
    # Entitlements table, one item per user
    dynamodb.create_table(
        TableName=ENTITLEMENTS_TABLE,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],  # user_id
        AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )

    # Billing events table, idempotency ledger
    dynamodb.create_table(
        TableName=BILLING_EVENTS_TABLE,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],  # event_id
        AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


@pytest.fixture
def api_gateway_event():
    """Base API Gateway event for Lambda handler tests."""
    return {
        "httpMethod": "POST",
        "headers": {},
        "pathParameters": {},
        "queryStringParameters": {},
        "body": None,
        "isBase64Encoded": False,
        "requestContext": {
            "requestId": "req-test-123",
            "identity": {"sourceIp": "127.0.0.1"},
        },
    }


# ===========================================
# Stripe payload helpers
# ===========================================


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value for `payload`."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}"
    signature = hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_stripe_event(
    event_type: str = "checkout.session.completed",
    event_id: str = "evt_123",
    created: int = 100,
    metadata: dict | None = None,
    **object_fields,
) -> dict:
    """Build a Stripe event envelope."""
    obj = {"id": "obj_123", "metadata": metadata if metadata is not None else {}}
    obj.update(object_fields)
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": obj},
    }


def checkout_completed(user_id="u1", tier="pro", event_id="evt_checkout", created=100, **fields) -> dict:
    fields.setdefault("customer", "cus_123")
    fields.setdefault("subscription", "sub_123")
    return make_stripe_event(
        "checkout.session.completed",
        event_id=event_id,
        created=created,
        metadata={"uid": user_id, "tier": tier},
        **fields,
    )


def subscription_event(
    event_type="customer.subscription.updated",
    user_id="u1",
    status="active",
    event_id="evt_sub",
    created=200,
    **fields,
) -> dict:
    fields.setdefault("customer", "cus_123")
    fields.setdefault("id", "sub_123")
    return make_stripe_event(
        event_type,
        event_id=event_id,
        created=created,
        metadata={"uid": user_id, "tier": "pro"},
        status=status,
        **fields,
    )


@pytest.fixture
def signed_webhook_event(api_gateway_event):
    """Factory: API Gateway event carrying a correctly signed Stripe payload."""

    def _build(stripe_event: dict, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict:
        payload = json.dumps(stripe_event)
        event = dict(api_gateway_event)
        event["body"] = payload
        event["headers"] = {"Stripe-Signature": sign_payload(payload, secret, timestamp)}
        return event

    return _build


# ===========================================
# In-memory stores
# ===========================================


class InMemoryEventLedger:
    """EventLedger fake with the same claim semantics as DynamoEventLedger."""

    def __init__(self):
        self.records = {}
        self.fail = False
        self._lock = threading.Lock()

    def put_if_absent(self, item: dict, now: int) -> bool:
        if self.fail:
            raise TransientStoreError("ledger unavailable")
        with self._lock:
            existing = self.records.get(item["pk"])
            if (
                existing is None
                or existing["ttl"] < now
                or (existing["status"] == "processing" and existing["lease_expires_at"] < now)
            ):
                self.records[item["pk"]] = dict(item)
                return True
            return False

    def delete(self, event_id: str) -> None:
        if self.fail:
            raise TransientStoreError("ledger unavailable")
        with self._lock:
            self.records.pop(event_id, None)

    def update_status(self, event_id, status, reason, completed_at) -> None:
        if self.fail:
            raise TransientStoreError("ledger unavailable")
        with self._lock:
            if event_id not in self.records:
                raise TransientStoreError(f"no record for {event_id}")
            self.records[event_id].update(status=status, outcome_reason=reason, completed_at=completed_at)


class InMemoryEntitlementStore:
    """EntitlementStore fake with compare-and-swap on the record version."""

    def __init__(self):
        self.records = {}
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False
        self._lock = threading.Lock()

    def get(self, user_id):
        if self.fail_reads:
            raise TransientStoreError("store unavailable")
        with self._lock:
            record = self.records.get(user_id)
            return dataclasses.replace(record) if record else None

    def save(self, entitlement, previous) -> None:
        if self.fail_writes:
            raise TransientStoreError("store unavailable")
        with self._lock:
            stored = self.records.get(entitlement.user_id)
            if previous is None:
                if stored is not None:
                    raise WriteConflictError(entitlement.user_id)
            elif stored is None or stored.version != previous.version:
                raise WriteConflictError(entitlement.user_id)
            next_version = (previous.version if previous else 0) + 1
            self.records[entitlement.user_id] = dataclasses.replace(entitlement, version=next_version)
            self.writes += 1


@pytest.fixture
def event_ledger():
    return InMemoryEventLedger()


@pytest.fixture
def entitlement_store():
    return InMemoryEntitlementStore()
