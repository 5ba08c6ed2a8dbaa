#!/usr/bin/env python3
"""
Provision the DynamoDB tables used by the entitlement service.

Creates the entitlements table (one item per user) and the billing events
table (idempotency ledger, with TTL on the `ttl` attribute). Existing tables
are left alone.

Usage:
    python scripts/create_tables.py
    ENTITLEMENTS_TABLE=staging-users python scripts/create_tables.py --region eu-west-1
"""

import argparse
import os

import boto3
from botocore.exceptions import ClientError


def table_definitions(entitlements_table: str, billing_events_table: str) -> list[dict]:
    """Key schemas for both tables."""
    return [
        {
            "TableName": entitlements_table,
            "KeySchema": [{"AttributeName": "pk", "KeyType": "HASH"}],  # user id
            "AttributeDefinitions": [{"AttributeName": "pk", "AttributeType": "S"}],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": billing_events_table,
            "KeySchema": [{"AttributeName": "pk", "KeyType": "HASH"}],  # event id
            "AttributeDefinitions": [{"AttributeName": "pk", "AttributeType": "S"}],
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]


def create_tables(dynamodb, entitlements_table: str, billing_events_table: str) -> list[str]:
    """Create missing tables and wait for them. Returns the names created."""
    created = []
    for definition in table_definitions(entitlements_table, billing_events_table):
        name = definition["TableName"]
        try:
            table = dynamodb.create_table(**definition)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                print(f"  {name}: already exists")
                continue
            raise
        table.wait_until_exists()
        created.append(name)
        print(f"  {name}: created")

    try:
        dynamodb.meta.client.update_time_to_live(
            TableName=billing_events_table,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": "ttl"},
        )
    except ClientError as e:
        # Re-enabling an enabled TTL is a ValidationException
        if e.response["Error"]["Code"] != "ValidationException":
            raise
    return created


def main():
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--region", default=os.environ.get("AWS_REGION", "us-east-1"))
    args = parser.parse_args()

    entitlements_table = os.environ.get("ENTITLEMENTS_TABLE") or "entitlements-users"
    billing_events_table = os.environ.get("BILLING_EVENTS_TABLE") or "entitlements-billing-events"

    dynamodb = boto3.resource("dynamodb", region_name=args.region)
    print(f"Provisioning tables in {args.region}")
    create_tables(dynamodb, entitlements_table, billing_events_table)
    print("Done")


if __name__ == "__main__":
    main()
