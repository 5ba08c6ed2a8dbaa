"""
Shared Type Definitions for Lambda Handlers.

Provides TypedDict definitions for API Gateway events, Lambda responses and
the DynamoDB items this service reads and writes.
"""

from decimal import Decimal
from typing import Any, Optional, TypedDict, Union


class APIGatewayEvent(TypedDict, total=False):
    """API Gateway proxy event structure."""

    httpMethod: str
    headers: dict[str, str]
    pathParameters: Optional[dict[str, str]]
    queryStringParameters: Optional[dict[str, str]]
    body: Optional[str]
    requestContext: dict[str, Any]
    resource: str
    path: str
    isBase64Encoded: bool


class LambdaResponse(TypedDict):
    """Standard Lambda response structure."""

    statusCode: int
    headers: dict[str, str]
    body: str


class EntitlementItem(TypedDict, total=False):
    """Entitlement record as stored in the entitlements table."""

    pk: str
    tier: str
    subscription_status: str
    provider_customer_id: Optional[str]
    provider_subscription_id: Optional[str]
    last_applied_event_at: Union[int, Decimal]
    last_applied_event_id: str
    version: Union[int, Decimal]
    created_at: str
    updated_at: str
    overridden_at: str


class BillingEventItem(TypedDict, total=False):
    """Idempotency ledger record as stored in the billing events table."""

    pk: str
    event_type: str
    status: str  # processing, completed, skipped
    outcome_reason: Optional[str]
    claimed_at: str
    completed_at: str
    lease_expires_at: Union[int, Decimal]
    ttl: Union[int, Decimal]
