#!/usr/bin/env python3
"""Seed a development database with cancellation policies.

Creates the engine's DynamoDB tables if missing and stores three policies:
- standard (default): 72h 100%, 48h 75% -50, 24h 50% -100, else 0%
- flexible: 48h 100%, 24h 80% -50, 12h 50% -100, else 25% -150
- strict: 168h 100%, 72h 50% -200, else 0%

Optionally adds a sample booking so the API can be exercised locally.

Usage:
    python backend/scripts/seed_data.py --env dev
    python backend/scripts/seed_data.py --env dev --skip-tables
    python backend/scripts/seed_data.py --env dev --sample-booking
"""

import argparse
import os
import sys
from datetime import UTC, datetime, timedelta

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from refund_engine.models import CancellationPolicy, CancellationRule, EngineError
from refund_engine.services import DynamoDBService, PolicyStore
from refund_engine.services.tables import create_tables


def _rules(*brackets: tuple[int, int, int, str]) -> list[CancellationRule]:
    return [
        CancellationRule(
            rule_id=f"rule-{hours}h",
            hours_before_start=hours,
            refund_percentage=percentage,
            processing_fee=fee,
            description=description,
        )
        for hours, percentage, fee, description in brackets
    ]


def default_policies() -> list[CancellationPolicy]:
    """Policies offered to guides, with standard as the tenant default."""
    return [
        CancellationPolicy(
            policy_id="standard",
            name="Standard",
            description="Full refund up to 3 days before the tour",
            is_default=True,
            rules=_rules(
                (72, 100, 0, "Full refund 72+ hours before start"),
                (48, 75, 50, "75% refund 48-72 hours before start"),
                (24, 50, 100, "50% refund 24-48 hours before start"),
                (0, 0, 0, "No refund within 24 hours"),
            ),
        ),
        CancellationPolicy(
            policy_id="flexible",
            name="Flexible",
            description="Full refund up to 2 days before the tour",
            rules=_rules(
                (48, 100, 0, "Full refund 48+ hours before start"),
                (24, 80, 50, "80% refund 24-48 hours before start"),
                (12, 50, 100, "50% refund 12-24 hours before start"),
                (0, 25, 150, "25% refund within 12 hours"),
            ),
        ),
        CancellationPolicy(
            policy_id="strict",
            name="Strict",
            description="Full refund up to a week before the tour",
            rules=_rules(
                (168, 100, 0, "Full refund 7+ days before start"),
                (72, 50, 200, "50% refund 3-7 days before start"),
                (0, 0, 0, "No refund within 3 days"),
            ),
        ),
    ]


def seed_policies(store: PolicyStore) -> list[CancellationPolicy]:
    """Store the default policies, skipping those that already exist."""
    stored = []
    for policy in default_policies():
        if store.find_policy(policy.policy_id):
            print(f"  ○ {policy.name} already exists")
            continue
        stored.append(store.upsert_policy(policy))
        marker = " (default)" if policy.is_default else ""
        print(f"  ✓ {policy.name}{marker}")
    return stored


def seed_sample_booking(db: DynamoDBService) -> str:
    """Store a booking one week out for local testing."""
    booking = {
        "booking_id": "BKG-SAMPLE-0001",
        "service_datetime": (datetime.now(UTC) + timedelta(days=7)).isoformat(),
        "total_amount": 1848,
        "guide_id": "guide-sample",
        "customer_id": "customer-sample",
        "customer_email": "customer@example.com",
        "service_title": "Old Town Walking Tour",
        "tenant_id": "default",
    }
    db.put_item("bookings", booking)
    print(f"  ✓ Booking {booking['booking_id']} for {booking['customer_id']}")
    return booking["booking_id"]


def main() -> int:
    """Run the seed script."""
    parser = argparse.ArgumentParser(description="Seed cancellation policies")
    parser.add_argument(
        "--env",
        choices=["dev", "staging", "prod"],
        default="dev",
        help="Target environment (default: dev)",
    )
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_DEFAULT_REGION", "eu-west-1"),
        help="AWS region (default: eu-west-1 or AWS_DEFAULT_REGION env var)",
    )
    parser.add_argument(
        "--skip-tables",
        action="store_true",
        help="Do not create missing tables",
    )
    parser.add_argument(
        "--sample-booking",
        action="store_true",
        help="Also store a sample booking",
    )
    args = parser.parse_args()

    if args.env == "prod":
        confirm = input("⚠️  WARNING: You are about to modify PRODUCTION data. Type 'yes' to continue: ")
        if confirm.lower() != "yes":
            print("Aborted.")
            return 1

    os.environ["AWS_DEFAULT_REGION"] = args.region
    db = DynamoDBService(args.env)
    print(f"\n🌱 Seeding {args.env} environment (prefix: {db.name_prefix}, region: {args.region})\n")

    try:
        if not args.skip_tables:
            created = create_tables(boto3.client("dynamodb", region_name=args.region), db.name_prefix)
            for name in created:
                print(f"  ✓ Created table {name}")
            print()

        print("Seeding cancellation policies:")
        seed_policies(PolicyStore(db))

        if args.sample_booking:
            print("\nSeeding sample booking:")
            seed_sample_booking(db)
    except (ClientError, BotoCoreError, EngineError) as e:
        print(f"  ❌ Seeding failed: {e}")
        return 1

    print("\n✅ Seed completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
