"""Idempotency key store for retry-safe commands.

A command's key is written in the same transaction as the command's effects,
so a retried command either finds the key (and returns the stored outcome) or
applies its effects exactly once. Each key is bound to the entity the command
targeted; reusing it against another entity is rejected.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from refund_engine.models.errors import ErrorCode, ValidationError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

# Keys are kept for a week; DynamoDB TTL removes them afterwards
IDEMPOTENCY_TTL_SECONDS = 7 * 24 * 3600


class IdempotencyStore:
    """Records which resource a (command, idempotency key) pair produced."""

    TABLE = "idempotency-keys"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    @staticmethod
    def _key(command: str, idempotency_key: str) -> str:
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationError(
                ErrorCode.IDEMPOTENCY_KEY_REQUIRED, details={"command": command}
            )
        return f"{command}#{idempotency_key.strip()}"

    def lookup(self, command: str, idempotency_key: str, target_id: str) -> str | None:
        """Return the resource id stored for this key, if the command already ran.

        Raises:
            ValidationError: If the key was claimed by the command on another target
        """
        item = self.db.get_item(
            self.TABLE, {"idempotency_key": self._key(command, idempotency_key)}
        )
        if not item:
            return None
        if item.get("target_id", item["resource_id"]) != target_id:
            raise ValidationError(
                ErrorCode.IDEMPOTENCY_KEY_REUSED,
                details={
                    "command": command,
                    "target_id": target_id,
                    "claimed_by": item.get("target_id", item["resource_id"]),
                },
            )
        return item["resource_id"]

    def _item(
        self, command: str, idempotency_key: str, resource_id: str, target_id: str | None
    ) -> dict[str, Any]:
        now = dt.datetime.now(dt.UTC)
        return {
            "idempotency_key": self._key(command, idempotency_key),
            "command": command,
            "target_id": target_id or resource_id,
            "resource_id": resource_id,
            "created_at": now.isoformat(),
            "expires_at": int(now.timestamp()) + IDEMPOTENCY_TTL_SECONDS,
        }

    def put_op(
        self,
        command: str,
        idempotency_key: str,
        resource_id: str,
        target_id: str | None = None,
    ) -> dict[str, Any]:
        """Build the transaction entry that claims this key.

        target_id defaults to resource_id for commands acting on the entity they return.
        """
        return self.db.put_op(
            self.TABLE,
            self._item(command, idempotency_key, resource_id, target_id),
            condition_expression="attribute_not_exists(idempotency_key)",
        )
