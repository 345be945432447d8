"""Policy store for cancellation policies.

Rules are validated and sorted by ``hours_before_start`` descending when a
policy is written, so readers can scan them linearly. Each tenant has at most
one default policy, tracked by a pointer item in the settings table and
switched in a single transaction.
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr

from refund_engine.models import (
    Booking,
    CancellationPolicy,
    ConcurrencyConflictError,
    ErrorCode,
    NotFoundError,
    PolicyResolutionError,
    ValidationError,
)
from refund_engine.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)


def validate_rules(policy: CancellationPolicy) -> None:
    """Check the rule set as a whole; field ranges are enforced by CancellationRule.

    Raises:
        ValidationError: On an empty rule set or duplicate thresholds
    """
    if not policy.rules:
        raise ValidationError(
            ErrorCode.INVALID_RULE,
            details={"policy_id": policy.policy_id, "reason": "policy has no rules"},
        )

    seen: set[int] = set()
    for rule in policy.rules:
        if rule.hours_before_start in seen:
            raise ValidationError(
                ErrorCode.INVALID_RULE,
                details={
                    "rule_id": rule.rule_id,
                    "reason": f"duplicate threshold {rule.hours_before_start}",
                },
            )
        seen.add(rule.hours_before_start)


class PolicyStore:
    """Persistence for cancellation policies."""

    POLICIES_TABLE = "cancellation-policies"
    SETTINGS_TABLE = "settings"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    @staticmethod
    def _default_pointer_key(tenant_id: str) -> str:
        return f"default_policy#{tenant_id}"

    def find_policy(self, policy_id: str) -> CancellationPolicy | None:
        item = self.db.get_item(self.POLICIES_TABLE, {"policy_id": policy_id})
        return CancellationPolicy.model_validate(item) if item else None

    def get_policy(self, policy_id: str) -> CancellationPolicy:
        """Get a policy by ID.

        Raises:
            NotFoundError: If the policy does not exist
        """
        policy = self.find_policy(policy_id)
        if policy is None:
            raise NotFoundError(
                ErrorCode.POLICY_NOT_FOUND, details={"policy_id": policy_id}
            )
        return policy

    def list_policies(self, tenant_id: str | None = None) -> list[CancellationPolicy]:
        """List policies, optionally for one tenant, ordered by name."""
        filter_expression = Attr("tenant_id").eq(tenant_id) if tenant_id else None
        items = self.db.scan(self.POLICIES_TABLE, filter_expression=filter_expression)
        policies = [CancellationPolicy.model_validate(item) for item in items]
        return sorted(policies, key=lambda p: p.name)

    def _get_default_pointer(self, tenant_id: str) -> dict[str, Any] | None:
        return self.db.get_item(
            self.SETTINGS_TABLE, {"setting_key": self._default_pointer_key(tenant_id)}
        )

    def get_default_policy(self, tenant_id: str = "default") -> CancellationPolicy | None:
        pointer = self._get_default_pointer(tenant_id)
        if not pointer:
            return None
        return self.find_policy(pointer["policy_id"])

    def resolve_policy_for_booking(self, booking: Booking) -> CancellationPolicy:
        """Find the policy that governs a booking.

        The booking's own policy wins; otherwise the tenant default applies.

        Raises:
            PolicyResolutionError: If no policy can be determined
        """
        if booking.policy_id:
            policy = self.find_policy(booking.policy_id)
            if policy is None:
                raise PolicyResolutionError(
                    ErrorCode.NO_POLICY_RESOLVABLE,
                    details={"booking_id": booking.booking_id, "policy_id": booking.policy_id},
                )
            return policy

        policy = self.get_default_policy(booking.tenant_id)
        if policy is None:
            raise PolicyResolutionError(
                ErrorCode.NO_POLICY_RESOLVABLE,
                details={"booking_id": booking.booking_id, "tenant_id": booking.tenant_id},
            )
        return policy

    def upsert_policy(self, policy: CancellationPolicy) -> CancellationPolicy:
        """Create or replace a policy.

        ``policy.version`` must match the stored version (0 for a new policy).
        Setting ``is_default`` clears the tenant's previous default in the
        same transaction.

        Raises:
            ValidationError: If the rules are invalid
            ConcurrencyConflictError: If the policy or the tenant default
                changed concurrently
        """
        validate_rules(policy)

        now = dt.datetime.now(dt.UTC)
        existing = self.find_policy(policy.policy_id)
        expected_version = existing.version if existing else 0
        if policy.version != expected_version:
            raise ConcurrencyConflictError(
                ErrorCode.VERSION_CONFLICT,
                details={
                    "policy_id": policy.policy_id,
                    "expected_version": str(expected_version),
                    "received_version": str(policy.version),
                },
            )

        stored = policy.model_copy(
            update={
                "rules": sorted(
                    policy.rules, key=lambda r: r.hours_before_start, reverse=True
                ),
                "created_at": existing.created_at if existing and existing.created_at else now,
                "updated_at": now,
                "version": expected_version + 1,
            }
        )

        if existing:
            put = self.db.put_op(
                self.POLICIES_TABLE,
                self._policy_to_item(stored),
                condition_expression="version = :expected",
                expression_attribute_values={":expected": expected_version},
            )
        else:
            put = self.db.put_op(
                self.POLICIES_TABLE,
                self._policy_to_item(stored),
                condition_expression="attribute_not_exists(policy_id)",
            )
        ops = [put, *self._default_pointer_ops(stored)]

        if not self.db.transact_write(ops):
            raise ConcurrencyConflictError(
                ErrorCode.VERSION_CONFLICT, details={"policy_id": policy.policy_id}
            )

        logger.info(
            "Stored cancellation policy %s (version %d, default=%s)",
            stored.policy_id,
            stored.version,
            stored.is_default,
        )
        return stored

    def _default_pointer_ops(self, policy: CancellationPolicy) -> list[dict[str, Any]]:
        """Transaction entries that keep the tenant default pointer consistent."""
        pointer_key = self._default_pointer_key(policy.tenant_id)
        pointer = self._get_default_pointer(policy.tenant_id)
        current_default = pointer["policy_id"] if pointer else None

        if policy.is_default:
            if current_default == policy.policy_id:
                return []

            pointer_item = {
                "setting_key": pointer_key,
                "policy_id": policy.policy_id,
                "updated_at": dt.datetime.now(dt.UTC).isoformat(),
            }
            if current_default is None:
                return [
                    self.db.put_op(
                        self.SETTINGS_TABLE,
                        pointer_item,
                        condition_expression="attribute_not_exists(setting_key)",
                    )
                ]
            return [
                self.db.put_op(
                    self.SETTINGS_TABLE,
                    pointer_item,
                    condition_expression="policy_id = :previous",
                    expression_attribute_values={":previous": current_default},
                ),
                self.db.update_op(
                    self.POLICIES_TABLE,
                    {"policy_id": current_default},
                    "SET is_default = :false",
                    {":false": False},
                    condition_expression="attribute_exists(policy_id)",
                ),
            ]

        if current_default == policy.policy_id:
            return [
                self.db.delete_op(
                    self.SETTINGS_TABLE,
                    {"setting_key": pointer_key},
                    condition_expression="policy_id = :me",
                    expression_attribute_values={":me": policy.policy_id},
                )
            ]
        return []

    def _policy_to_item(self, policy: CancellationPolicy) -> dict[str, Any]:
        """Convert CancellationPolicy to a DynamoDB item."""
        return policy.model_dump(mode="json", exclude_none=True)
