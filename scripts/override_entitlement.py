#!/usr/bin/env python3
"""
Manually override a user's entitlement.

This is the only path besides a verified, deduplicated Stripe event that may
set tier or subscription status. Use it for support cases (comped accounts,
refunds handled outside Stripe). The ordering token is not touched, so the
next Stripe event for the user still applies normally.

Usage:
    # Show what would change
    python scripts/override_entitlement.py --user-id u1 --tier elite --dry-run

    # Grant elite and mark active
    python scripts/override_entitlement.py --user-id u1 --tier elite --status active
"""

import argparse
import os
import sys

# Add functions directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../functions"))

from shared.constants import SUBSCRIPTION_STATUSES, TIER_NAMES  # noqa: E402
from shared.entitlements import DynamoEntitlementStore, SubscriptionStatus, Tier  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Manually override a user's entitlement.")
    parser.add_argument("--user-id", required=True, help="User id (entitlements table pk)")
    parser.add_argument("--tier", choices=TIER_NAMES)
    parser.add_argument("--status", choices=SUBSCRIPTION_STATUSES)
    parser.add_argument("--dry-run", action="store_true", help="Print the current record and the change only")
    args = parser.parse_args(argv)
    if not args.tier and not args.status:
        parser.error("at least one of --tier or --status is required")
    return args


def run(args, store: DynamoEntitlementStore) -> int:
    current = store.get(args.user_id)
    if current is None:
        print(f"No entitlement for {args.user_id}; one will be created")
    else:
        print(
            f"Current: tier={current.tier.value if current.tier else '-'} "
            f"status={current.subscription_status.value} "
            f"last_applied_event_at={current.last_applied_event_at}"
        )

    print(f"Override: tier={args.tier or '(unchanged)'} status={args.status or '(unchanged)'}")
    if args.dry_run:
        print("Dry run, nothing written")
        return 0

    updated = store.override(
        args.user_id,
        tier=Tier(args.tier) if args.tier else None,
        subscription_status=SubscriptionStatus(args.status) if args.status else None,
    )
    print(f"Updated: tier={updated.tier.value if updated.tier else '-'} status={updated.subscription_status.value}")
    return 0


def main(argv=None):
    args = parse_args(argv)
    store = DynamoEntitlementStore(os.environ.get("ENTITLEMENTS_TABLE") or "entitlements-users")
    return run(args, store)


if __name__ == "__main__":
    sys.exit(main())
