"""Refund calculator for cancellation policies.

Selects the refund bracket a cancellation qualifies for and computes the
payable amount:

- Rules are consulted in descending ``hours_before_start`` order (the store
  guarantees that order, so no sorting happens here).
- The first rule with ``hours_before_start <= hours_until_service`` applies:
  the most generous bracket the customer still qualifies for.
- If none qualifies, the rule with the smallest threshold applies. That is
  not necessarily the most punitive rule; the snapshot records the fallback.

refund_amount = total_amount * percentage // 100
final_refund_amount = max(0, refund_amount - processing_fee)
"""

import datetime as dt

from refund_engine.models import (
    AppliedPolicy,
    CancellationPolicy,
    CancellationRule,
    ErrorCode,
    PolicyResolutionError,
    RefundCalculation,
    ValidationError,
)

SECONDS_PER_HOUR = 3600


def hours_between(service_time: dt.datetime, cancellation_time: dt.datetime) -> float:
    """Hours from cancellation to service start; negative once the service began."""
    return (service_time - cancellation_time).total_seconds() / SECONDS_PER_HOUR


def select_rule(
    rules: list[CancellationRule], hours_until_service: float
) -> tuple[CancellationRule, bool]:
    """Pick the applicable rule from rules sorted by threshold descending.

    Returns:
        Tuple of (rule, fallback_applied)

    Raises:
        PolicyResolutionError: If there are no rules at all
    """
    if not rules:
        raise PolicyResolutionError(ErrorCode.NO_RULE_DETERMINABLE)

    for rule in rules:
        if rule.hours_before_start <= hours_until_service:
            return rule, False

    return rules[-1], True


class RefundCalculator:
    """Pure refund calculation over a cancellation policy.

    Holds no state, so one instance can be shared across threads.
    """

    def calculate(
        self,
        policy: CancellationPolicy,
        booking_amount: int,
        service_time: dt.datetime,
        cancellation_time: dt.datetime,
        calculated_at: dt.datetime | None = None,
    ) -> RefundCalculation:
        """Calculate the refund for a cancellation.

        Args:
            policy: Policy whose rules are sorted by hours_before_start descending
            booking_amount: Amount paid, must be positive
            service_time: Service start (timezone-aware)
            cancellation_time: When the cancellation is made (timezone-aware)
            calculated_at: Snapshot timestamp, defaults to now

        Returns:
            RefundCalculation snapshot

        Raises:
            ValidationError: If booking_amount is not positive
            PolicyResolutionError: If the policy has no rules
        """
        if booking_amount <= 0:
            raise ValidationError(
                ErrorCode.INVALID_AMOUNT,
                details={"booking_amount": str(booking_amount)},
            )

        hours_until_service = hours_between(service_time, cancellation_time)
        rule, fallback_applied = select_rule(policy.rules, hours_until_service)

        refund_amount = (booking_amount * rule.refund_percentage) // 100
        final_refund_amount = max(0, refund_amount - rule.processing_fee)

        return RefundCalculation(
            total_amount=booking_amount,
            refund_percentage=rule.refund_percentage,
            refund_amount=refund_amount,
            processing_fee=rule.processing_fee,
            final_refund_amount=final_refund_amount,
            hours_until_service=hours_until_service,
            fallback_applied=fallback_applied,
            calculated_at=calculated_at or dt.datetime.now(dt.UTC),
            policy_applied=AppliedPolicy(
                policy_id=policy.policy_id,
                policy_name=policy.name,
                rule_applied=rule,
            ),
        )

    def describe_policy(self, policy: CancellationPolicy) -> str:
        """Get a human-readable description of a policy's brackets."""
        lines = [f"Cancellation Policy: {policy.name}"]
        for rule in policy.rules:
            if rule.hours_before_start > 0:
                window = f"{rule.hours_before_start}+ hours before start"
            else:
                window = "Any time before start"
            line = f"• {window}: {rule.refund_percentage}% refund"
            if rule.processing_fee > 0:
                line += f" (processing fee {rule.processing_fee})"
            lines.append(line)
        return "\n".join(lines)
