"""Boundary to the external payment gateway.

The engine never moves money itself. When a refund is approved it may hand
the record to a gateway; gateways that work asynchronously return None and
report back later through RefundService.record_gateway_result.

Gateway callbacks are signed with a shared secret (GATEWAY_WEBHOOK_SECRET):
the signature is the hex HMAC-SHA256 of the raw request body.
"""

import hashlib
import hmac
import os
from typing import Protocol

from refund_engine.models import (
    AuthorizationError,
    ErrorCode,
    GatewayError,
    GatewayResult,
    RefundRecord,
)
from refund_engine.utils.logging import get_logger

logger = get_logger(__name__)

GATEWAY_SIGNATURE_HEADER = "X-Gateway-Signature"


class PaymentGateway(Protocol):
    """Transfer interface implemented by payment collaborators."""

    def submit_refund(self, refund: RefundRecord) -> GatewayResult | None:
        """Request the transfer for an approved refund.

        Returns:
            The result if the gateway answered synchronously, else None

        Raises:
            GatewayError: If the gateway rejected the transfer outright
        """
        ...


def result_from_error(error: GatewayError) -> GatewayResult:
    """Express a raised GatewayError as a failed GatewayResult."""
    return GatewayResult(
        success=False,
        error_code=error.gateway_code,
        error_message=error.gateway_message,
        details=error.gateway_details,
    )


def sign_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_gateway_signature(
    payload: bytes, signature: str | None, secret: str | None = None
) -> None:
    """Check a gateway callback signature.

    Args:
        payload: Raw request body
        signature: Value of the X-Gateway-Signature header
        secret: Shared secret. Defaults to GATEWAY_WEBHOOK_SECRET.

    Raises:
        AuthorizationError: If no secret is configured or the signature does not match
    """
    secret = secret or os.getenv("GATEWAY_WEBHOOK_SECRET")
    if not secret:
        logger.warning("Gateway callback rejected: GATEWAY_WEBHOOK_SECRET is not set")
        raise AuthorizationError(
            ErrorCode.FORBIDDEN, details={"reason": "gateway callbacks are not configured"}
        )
    if not signature or not hmac.compare_digest(sign_payload(payload, secret), signature):
        logger.warning("Invalid gateway callback signature")
        raise AuthorizationError(
            ErrorCode.FORBIDDEN, details={"reason": "invalid gateway signature"}
        )
