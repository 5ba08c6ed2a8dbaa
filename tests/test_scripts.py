"""
Tests for operational scripts.
"""

import os
import sys

import boto3
import pytest
from moto import mock_aws

from conftest import BILLING_EVENTS_TABLE, ENTITLEMENTS_TABLE
from shared.entitlements import DynamoEntitlementStore, Entitlement, SubscriptionStatus, Tier

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))

import create_tables  # noqa: E402
import override_entitlement  # noqa: E402


class TestCreateTables:
    """Tests for scripts/create_tables.py."""

    @mock_aws
    def test_creates_both_tables_with_ttl(self):
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        created = create_tables.create_tables(dynamodb, ENTITLEMENTS_TABLE, BILLING_EVENTS_TABLE)

        assert created == [ENTITLEMENTS_TABLE, BILLING_EVENTS_TABLE]
        ttl = dynamodb.meta.client.describe_time_to_live(TableName=BILLING_EVENTS_TABLE)
        assert ttl["TimeToLiveDescription"]["AttributeName"] == "ttl"

    @mock_aws
    def test_existing_tables_are_left_alone(self):
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_tables.create_tables(dynamodb, ENTITLEMENTS_TABLE, BILLING_EVENTS_TABLE)

        created = create_tables.create_tables(dynamodb, ENTITLEMENTS_TABLE, BILLING_EVENTS_TABLE)

        assert created == []

    def test_definitions_key_on_pk(self):
        definitions = create_tables.table_definitions("users", "events")

        assert [d["TableName"] for d in definitions] == ["users", "events"]
        for definition in definitions:
            assert definition["KeySchema"] == [{"AttributeName": "pk", "KeyType": "HASH"}]


class TestOverrideEntitlement:
    """Tests for scripts/override_entitlement.py."""

    def test_requires_tier_or_status(self):
        with pytest.raises(SystemExit):
            override_entitlement.parse_args(["--user-id", "u1"])

    def test_rejects_unknown_tier(self):
        with pytest.raises(SystemExit):
            override_entitlement.parse_args(["--user-id", "u1", "--tier", "platinum"])

    def test_dry_run_writes_nothing(self, mock_dynamodb, capsys):
        store = DynamoEntitlementStore(ENTITLEMENTS_TABLE)
        args = override_entitlement.parse_args(["--user-id", "u1", "--tier", "elite", "--dry-run"])

        assert override_entitlement.run(args, store) == 0

        assert store.get("u1") is None
        assert "Dry run" in capsys.readouterr().out

    def test_applies_override(self, mock_dynamodb):
        store = DynamoEntitlementStore(ENTITLEMENTS_TABLE)
        store.save(
            Entitlement(
                user_id="u1",
                tier=Tier.BASIC,
                subscription_status=SubscriptionStatus.PAST_DUE,
                last_applied_event_at=100,
                last_applied_event_id="evt_1",
            ),
            previous=None,
        )
        args = override_entitlement.parse_args(["--user-id", "u1", "--tier", "pro", "--status", "active"])

        assert override_entitlement.run(args, store) == 0

        stored = store.get("u1")
        assert stored.tier is Tier.PRO
        assert stored.subscription_status is SubscriptionStatus.ACTIVE
        assert stored.last_applied_event_at == 100

    def test_main_uses_entitlements_table(self, mock_dynamodb):
        assert override_entitlement.main(["--user-id", "u2", "--status", "canceled"]) == 0

        item = mock_dynamodb.Table(ENTITLEMENTS_TABLE).get_item(Key={"pk": "u2"})["Item"]
        assert item["subscription_status"] == "canceled"
