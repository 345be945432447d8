"""DynamoDB table definitions used by the engine.

Names are relative; DynamoDBService prefixes them with DYNAMODB_TABLE_PREFIX.
Used by the seed script and the test suite to create tables.
"""

from typing import Any


def _table(
    key: str,
    indexes: tuple[str, ...] = (),
    ttl_attribute: str | None = None,
) -> dict[str, Any]:
    attributes = [key, *indexes]
    spec: dict[str, Any] = {
        "KeySchema": [{"AttributeName": key, "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in attributes
        ],
        "BillingMode": "PAY_PER_REQUEST",
    }
    if indexes:
        spec["GlobalSecondaryIndexes"] = [
            {
                "IndexName": f"{name}-index",
                "KeySchema": [{"AttributeName": name, "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            }
            for name in indexes
        ]
    if ttl_attribute:
        spec["ttl_attribute"] = ttl_attribute
    return spec


TABLES: dict[str, dict[str, Any]] = {
    "cancellation-policies": _table("policy_id"),
    "settings": _table("setting_key"),
    "bookings": _table("booking_id"),
    "cancellation-requests": _table("request_id", ("booking_id",)),
    "active-cancellations": _table("booking_id"),
    "refund-records": _table("refund_id", ("cancellation_request_id",)),
    "disputes": _table("dispute_id", ("booking_id",)),
    "idempotency-keys": _table("idempotency_key", ttl_attribute="expires_at"),
    "notifications": _table("notification_id"),
}


def create_tables(client: Any, prefix: str) -> list[str]:
    """Create every engine table that does not exist yet.

    Args:
        client: boto3 DynamoDB client
        prefix: Table name prefix, e.g. "refunds-dev"

    Returns:
        Names of the tables created
    """
    existing = set(client.list_tables().get("TableNames", []))
    created = []
    for name, spec in TABLES.items():
        table_name = f"{prefix}-{name}"
        if table_name in existing:
            continue
        definition = {k: v for k, v in spec.items() if k != "ttl_attribute"}
        client.create_table(TableName=table_name, **definition)
        client.get_waiter("table_exists").wait(TableName=table_name)
        if "ttl_attribute" in spec:
            client.update_time_to_live(
                TableName=table_name,
                TimeToLiveSpecification={
                    "AttributeName": spec["ttl_attribute"],
                    "Enabled": True,
                },
            )
        created.append(table_name)
    return created
