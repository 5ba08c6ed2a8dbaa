"""
Entitlement model and DynamoDB-backed store.

One item per user in the entitlements table (hash key: pk = user id).
Writes are UpdateItem merges guarded by compare-and-swap on a per-record
version counter that every write increments; nothing here ever replaces a
whole item.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from shared.aws_clients import get_table
from shared.errors import TransientStoreError, WriteConflictError
from shared.types import EntitlementItem

logger = logging.getLogger(__name__)


class Tier(Enum):
    BASIC = "basic"
    PRO = "pro"
    ELITE = "elite"


class SubscriptionStatus(Enum):
    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


@dataclass
class Entitlement:
    user_id: str
    tier: Optional[Tier] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None
    last_applied_event_at: Optional[int] = None
    last_applied_event_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    version: int = 0

    @classmethod
    def from_item(cls, item: EntitlementItem) -> "Entitlement":
        last_applied = item.get("last_applied_event_at")
        if isinstance(last_applied, Decimal):
            last_applied = int(last_applied)
        version = item.get("version") or 0
        tier = item.get("tier")
        return cls(
            user_id=item["pk"],
            tier=Tier(tier) if tier else None,
            subscription_status=SubscriptionStatus(item.get("subscription_status") or "none"),
            provider_customer_id=item.get("provider_customer_id"),
            provider_subscription_id=item.get("provider_subscription_id"),
            last_applied_event_at=last_applied,
            last_applied_event_id=item.get("last_applied_event_id"),
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
            version=int(version),
        )


class EntitlementStore(Protocol):
    """Persistence for Entitlement records, keyed by user id."""

    def get(self, user_id: str) -> Optional[Entitlement]: ...

    def save(self, entitlement: Entitlement, previous: Optional[Entitlement]) -> None: ...


def _cas_condition(previous: Optional[Entitlement]) -> tuple[str, dict]:
    """Condition that holds only if no write landed since `previous` was read.

    Event timestamps have one-second resolution and can collide, so the
    version counter is the token, not last_applied_event_at.
    """
    if previous is None:
        return "attribute_not_exists(pk)", {}
    if not previous.version:
        # Record predates versioning (or was written outside this service)
        return "attribute_exists(pk) AND attribute_not_exists(#version)", {}
    return "#version = :expected_version", {":expected_version": previous.version}


class DynamoEntitlementStore:
    """EntitlementStore backed by the entitlements table."""

    def __init__(self, table_name: str, table=None):
        self.table_name = table_name
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_table(self.table_name)
        return self._table

    def get(self, user_id: str) -> Optional[Entitlement]:
        try:
            response = self.table.get_item(Key={"pk": user_id}, ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            raise TransientStoreError(f"Failed to read entitlement for {user_id}: {e}") from e
        item = response.get("Item")
        return Entitlement.from_item(item) if item else None

    def save(self, entitlement: Entitlement, previous: Optional[Entitlement]) -> None:
        """Merge `entitlement` into the stored record if it is unchanged since `previous` was read.

        Raises:
            WriteConflictError: a concurrent writer got there first
            TransientStoreError: DynamoDB failure
        """
        now_iso = datetime.now(timezone.utc).isoformat()
        next_version = (previous.version if previous else 0) + 1
        set_parts = [
            "subscription_status = :status",
            "last_applied_event_at = :event_at",
            "last_applied_event_id = :event_id",
            "#version = :next_version",
            "updated_at = :now",
            "created_at = if_not_exists(created_at, :now)",
        ]
        values = {
            ":status": entitlement.subscription_status.value,
            ":event_at": entitlement.last_applied_event_at,
            ":event_id": entitlement.last_applied_event_id,
            ":next_version": next_version,
            ":now": now_iso,
        }
        if entitlement.tier is not None:
            set_parts.append("tier = :tier")
            values[":tier"] = entitlement.tier.value
        if entitlement.provider_customer_id:
            set_parts.append("provider_customer_id = :customer_id")
            values[":customer_id"] = entitlement.provider_customer_id
        if entitlement.provider_subscription_id:
            set_parts.append("provider_subscription_id = :subscription_id")
            values[":subscription_id"] = entitlement.provider_subscription_id

        condition, condition_values = _cas_condition(previous)
        values.update(condition_values)

        try:
            self.table.update_item(
                Key={"pk": entitlement.user_id},
                UpdateExpression="SET " + ", ".join(set_parts),
                ConditionExpression=condition,
                ExpressionAttributeNames={"#version": "version"},
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise WriteConflictError(f"Entitlement for {entitlement.user_id} changed concurrently") from e
            raise TransientStoreError(f"Failed to write entitlement for {entitlement.user_id}: {e}") from e
        except BotoCoreError as e:
            raise TransientStoreError(f"Failed to write entitlement for {entitlement.user_id}: {e}") from e

        entitlement.updated_at = now_iso
        entitlement.version = next_version
        if previous is None:
            entitlement.created_at = now_iso
        else:
            entitlement.created_at = previous.created_at

    def override(
        self,
        user_id: str,
        tier: Optional[Tier] = None,
        subscription_status: Optional[SubscriptionStatus] = None,
    ) -> Entitlement:
        """Manually set tier and/or status, creating the record if needed.

        The ordering token is left alone, so the next provider event for the
        user reconciles normally on top of the override. The version is
        bumped, so a reconcile that read the record before the override
        re-reads instead of overwriting it.
        """
        if tier is None and subscription_status is None:
            raise ValueError("override requires a tier or a subscription status")

        now_iso = datetime.now(timezone.utc).isoformat()
        set_parts = [
            "overridden_at = :now",
            "updated_at = :now",
            "created_at = if_not_exists(created_at, :now)",
            "#version = if_not_exists(#version, :zero) + :one",
        ]
        values = {":now": now_iso, ":zero": 0, ":one": 1}
        if tier is not None:
            set_parts.append("tier = :tier")
            values[":tier"] = tier.value
        if subscription_status is not None:
            set_parts.append("subscription_status = :status")
            values[":status"] = subscription_status.value

        response = self.table.update_item(
            Key={"pk": user_id},
            UpdateExpression="SET " + ", ".join(set_parts),
            ExpressionAttributeNames={"#version": "version"},
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        logger.warning(
            f"Manual entitlement override for {user_id}: "
            f"tier={tier.value if tier else '-'}, status={subscription_status.value if subscription_status else '-'}"
        )
        return Entitlement.from_item(response["Attributes"])
