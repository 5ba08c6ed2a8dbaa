"""
Idempotency guard for webhook deliveries.

Stripe delivers at least once and commonly double-delivers within seconds.
Each event id is claimed with a single conditional write, so concurrent
deliveries of one event race on DynamoDB and exactly one of them wins.

A claim is re-admittable when:
- its retention TTL has passed (DynamoDB TTL deletion lags up to 48h), or
- it is still "processing" and its lease expired (the delivery that claimed
  it timed out before finishing).
"""

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from shared.aws_clients import get_table
from shared.constants import DEFAULT_EVENT_CLAIM_LEASE_SECONDS, DEFAULT_EVENT_RETENTION_DAYS
from shared.errors import TransientStoreError
from shared.types import BillingEventItem

logger = logging.getLogger(__name__)

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_SKIPPED = "skipped"


class AdmitResult(Enum):
    ADMITTED = "admitted"
    DUPLICATE = "duplicate"


class EventLedger(Protocol):
    """Persistence for processed-event records, keyed by event id."""

    def put_if_absent(self, item: BillingEventItem, now: int) -> bool: ...

    def delete(self, event_id: str) -> None: ...

    def update_status(self, event_id: str, status: str, reason: Optional[str], completed_at: str) -> None: ...


class DynamoEventLedger:
    """EventLedger backed by the billing events table (hash key: pk = event id)."""

    def __init__(self, table_name: str, table=None):
        self.table_name = table_name
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_table(self.table_name)
        return self._table

    def put_if_absent(self, item: BillingEventItem, now: int) -> bool:
        """Atomically write the claim unless a live record already exists.

        Returns:
            True if the claim was written, False if a live record exists
        """
        try:
            self.table.put_item(
                Item=item,
                ConditionExpression=(
                    "attribute_not_exists(pk) OR #ttl < :now "
                    "OR (#status = :processing AND lease_expires_at < :now)"
                ),
                ExpressionAttributeNames={"#ttl": "ttl", "#status": "status"},
                ExpressionAttributeValues={":now": now, ":processing": STATUS_PROCESSING},
            )
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                return False
            raise TransientStoreError(f"Failed to claim event {item.get('pk')}: {e}") from e
        except BotoCoreError as e:
            raise TransientStoreError(f"Failed to claim event {item.get('pk')}: {e}") from e

    def delete(self, event_id: str) -> None:
        try:
            self.table.delete_item(Key={"pk": event_id})
        except (ClientError, BotoCoreError) as e:
            raise TransientStoreError(f"Failed to release event {event_id}: {e}") from e

    def update_status(self, event_id: str, status: str, reason: Optional[str], completed_at: str) -> None:
        try:
            self.table.update_item(
                Key={"pk": event_id},
                UpdateExpression="SET #status = :status, outcome_reason = :reason, completed_at = :completed_at",
                ConditionExpression="attribute_exists(pk)",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":status": status,
                    ":reason": reason,
                    ":completed_at": completed_at,
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise TransientStoreError(f"Failed to update event {event_id}: {e}") from e


class IdempotencyGuard:
    """Admits each event id at most once within the retention window."""

    def __init__(
        self,
        ledger: EventLedger,
        retention_days: int = DEFAULT_EVENT_RETENTION_DAYS,
        lease_seconds: int = DEFAULT_EVENT_CLAIM_LEASE_SECONDS,
    ):
        self.ledger = ledger
        self.retention_days = retention_days
        self.lease_seconds = lease_seconds

    def admit(self, event_id: str, event_type: str = "") -> AdmitResult:
        """Claim an event id for processing.

        Raises:
            TransientStoreError: the ledger could not be reached
        """
        now = int(time.time())
        item: BillingEventItem = {
            "pk": event_id,
            "event_type": event_type,
            "status": STATUS_PROCESSING,
            "claimed_at": datetime.now(timezone.utc).isoformat(),
            "lease_expires_at": now + self.lease_seconds,
            "ttl": now + self.retention_days * 86400,
        }
        if self.ledger.put_if_absent(item, now):
            return AdmitResult.ADMITTED
        logger.info(f"Duplicate delivery of event {event_id}")
        return AdmitResult.DUPLICATE

    def release(self, event_id: str) -> bool:
        """Drop a claim after a transient failure so redelivery is admitted.

        Best-effort: an unreleased claim is still recovered once its lease
        expires.
        """
        try:
            self.ledger.delete(event_id)
            logger.info(f"Released event claim for {event_id} to allow retry")
            return True
        except TransientStoreError as e:
            logger.error(f"Failed to release event claim {event_id}: {e}")
            return False

    def complete(self, event_id: str, status: str = STATUS_COMPLETED, reason: Optional[str] = None) -> bool:
        """Record the final outcome of an admitted event (best-effort audit)."""
        try:
            self.ledger.update_status(event_id, status, reason, datetime.now(timezone.utc).isoformat())
            return True
        except TransientStoreError as e:
            logger.error(f"Failed to record outcome for event {event_id}: {e}")
            return False
