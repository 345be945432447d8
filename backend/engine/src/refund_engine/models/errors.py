"""Standard error codes and exceptions for the refund engine.

Every failure raised by a service carries an ErrorCode. The code selects a
human-readable message and a recovery hint, and the API layer maps it to an
HTTP status.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Error codes returned by engine operations."""

    # Validation (ERR_VAL_*)
    INVALID_REASON = "ERR_VAL_001"
    CUSTOM_REASON_REQUIRED = "ERR_VAL_002"
    INVALID_RULE = "ERR_VAL_003"
    INVALID_AMOUNT = "ERR_VAL_004"
    INVALID_EVIDENCE = "ERR_VAL_005"
    TRANSACTION_ID_REQUIRED = "ERR_VAL_006"
    INVALID_RESOLUTION = "ERR_VAL_007"
    IDEMPOTENCY_KEY_REQUIRED = "ERR_VAL_008"
    INVALID_MESSAGE = "ERR_VAL_009"
    IDEMPOTENCY_KEY_REUSED = "ERR_VAL_010"

    # Lookup (ERR_NF_*)
    BOOKING_NOT_FOUND = "ERR_NF_001"
    POLICY_NOT_FOUND = "ERR_NF_002"
    REQUEST_NOT_FOUND = "ERR_NF_003"
    REFUND_NOT_FOUND = "ERR_NF_004"
    DISPUTE_NOT_FOUND = "ERR_NF_005"

    # Policy resolution
    NO_POLICY_RESOLVABLE = "ERR_POL_001"
    NO_RULE_DETERMINABLE = "ERR_POL_002"

    # State machine
    INVALID_STATE_TRANSITION = "ERR_STATE_001"
    ALREADY_RESOLVED = "ERR_STATE_002"

    # Concurrency
    VERSION_CONFLICT = "ERR_CONC_001"
    ACTIVE_REQUEST_EXISTS = "ERR_CONC_002"

    # Collaborators
    GATEWAY_FAILURE = "ERR_GW_001"

    # Authorization
    FORBIDDEN = "ERR_AUTH_001"


# Human-readable error messages
ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_REASON: "Unknown cancellation reason",
    ErrorCode.CUSTOM_REASON_REQUIRED: "A custom reason is required when the reason is OTHER",
    ErrorCode.INVALID_RULE: "Cancellation policy rules are invalid",
    ErrorCode.INVALID_AMOUNT: "Amount is invalid",
    ErrorCode.INVALID_EVIDENCE: "Evidence title and content must not be empty",
    ErrorCode.TRANSACTION_ID_REQUIRED: "An external transaction id is required to complete a refund",
    ErrorCode.INVALID_RESOLUTION: "Dispute resolution is invalid",
    ErrorCode.IDEMPOTENCY_KEY_REQUIRED: "An idempotency key is required for this command",
    ErrorCode.INVALID_MESSAGE: "Message must not be empty",
    ErrorCode.IDEMPOTENCY_KEY_REUSED: "Idempotency key was already used for a different target",
    ErrorCode.BOOKING_NOT_FOUND: "Booking not found",
    ErrorCode.POLICY_NOT_FOUND: "Cancellation policy not found",
    ErrorCode.REQUEST_NOT_FOUND: "Cancellation request not found",
    ErrorCode.REFUND_NOT_FOUND: "Refund record not found",
    ErrorCode.DISPUTE_NOT_FOUND: "Dispute case not found",
    ErrorCode.NO_POLICY_RESOLVABLE: "No cancellation policy applies to this booking",
    ErrorCode.NO_RULE_DETERMINABLE: "The cancellation policy has no rules",
    ErrorCode.INVALID_STATE_TRANSITION: "Action is not allowed in the current state",
    ErrorCode.ALREADY_RESOLVED: "Dispute has already been resolved",
    ErrorCode.VERSION_CONFLICT: "Record was modified concurrently",
    ErrorCode.ACTIVE_REQUEST_EXISTS: "Booking already has an active cancellation request",
    ErrorCode.GATEWAY_FAILURE: "Payment gateway reported a failure",
    ErrorCode.FORBIDDEN: "Actor is not allowed to perform this action",
}

# Recovery suggestions for callers
ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.INVALID_REASON: "Use one of the supported cancellation reasons",
    ErrorCode.CUSTOM_REASON_REQUIRED: "Describe the reason in custom_reason",
    ErrorCode.INVALID_RULE: "Fix the rule percentages, fees and thresholds and save again",
    ErrorCode.INVALID_AMOUNT: "Provide a positive amount within the booking total",
    ErrorCode.INVALID_EVIDENCE: "Provide a title and content for the evidence",
    ErrorCode.TRANSACTION_ID_REQUIRED: "Wait for the payment gateway confirmation",
    ErrorCode.INVALID_RESOLUTION: "Check the resolution type and amount",
    ErrorCode.IDEMPOTENCY_KEY_REQUIRED: "Send an Idempotency-Key with the command",
    ErrorCode.INVALID_MESSAGE: "Write a message before sending",
    ErrorCode.IDEMPOTENCY_KEY_REUSED: "Use a fresh Idempotency-Key for each command",
    ErrorCode.BOOKING_NOT_FOUND: "Verify the booking id",
    ErrorCode.POLICY_NOT_FOUND: "Verify the policy id",
    ErrorCode.REQUEST_NOT_FOUND: "Verify the cancellation request id",
    ErrorCode.REFUND_NOT_FOUND: "Verify the refund id",
    ErrorCode.DISPUTE_NOT_FOUND: "Verify the dispute id",
    ErrorCode.NO_POLICY_RESOLVABLE: "Configure a default cancellation policy",
    ErrorCode.NO_RULE_DETERMINABLE: "Add at least one rule to the policy",
    ErrorCode.INVALID_STATE_TRANSITION: "Reload the record and check its status",
    ErrorCode.ALREADY_RESOLVED: "Reload the dispute to see the existing resolution",
    ErrorCode.VERSION_CONFLICT: "Reload the record and retry",
    ErrorCode.ACTIVE_REQUEST_EXISTS: "Wait for the pending request to be processed",
    ErrorCode.GATEWAY_FAILURE: "Inspect the refund error and retry the refund",
    ErrorCode.FORBIDDEN: "Ask an administrator to perform this action",
}


class ErrorResponse(BaseModel):
    """Structured failure returned to the original actor."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, Any]] = None


class EngineError(Exception):
    """Base exception raised by engine operations."""

    default_code: ErrorCode = ErrorCode.INVALID_STATE_TRANSITION

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse."""
        return ErrorResponse(
            error_code=self.code,
            message=self.message,
            recovery=self.recovery,
            details=self.details,
        )


class ValidationError(EngineError):
    """Bad reason, percentage, fee or amount."""

    default_code = ErrorCode.INVALID_AMOUNT


class NotFoundError(EngineError):
    """Referenced record does not exist."""

    default_code = ErrorCode.REQUEST_NOT_FOUND


class PolicyResolutionError(EngineError):
    """No policy, or no rule, could be determined."""

    default_code = ErrorCode.NO_POLICY_RESOLVABLE


class InvalidStateTransitionError(EngineError):
    """Action attempted from the wrong state."""

    default_code = ErrorCode.INVALID_STATE_TRANSITION


class AlreadyResolvedError(EngineError):
    """Dispute resolution was attempted twice."""

    default_code = ErrorCode.ALREADY_RESOLVED


class ConcurrencyConflictError(EngineError):
    """Version mismatch or uniqueness violation on mutation."""

    default_code = ErrorCode.VERSION_CONFLICT


class GatewayError(EngineError):
    """Failure reported by the payment gateway.

    Carries the gateway's own code, message and details so they can be stored
    on the refund record.
    """

    default_code = ErrorCode.GATEWAY_FAILURE

    def __init__(
        self,
        gateway_code: str,
        gateway_message: str,
        gateway_details: Optional[dict[str, Any]] = None,
    ):
        self.gateway_code = gateway_code
        self.gateway_message = gateway_message
        self.gateway_details = gateway_details
        super().__init__(
            details={"gateway_code": gateway_code, "gateway_message": gateway_message}
        )


class AuthorizationError(EngineError):
    """Actor lacks the role for the action."""

    default_code = ErrorCode.FORBIDDEN
