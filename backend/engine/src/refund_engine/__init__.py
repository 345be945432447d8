"""Cancellation and refund decision engine.

Models live in ``refund_engine.models``, DynamoDB-backed services in
``refund_engine.services``.
"""

__version__ = "0.1.0"
