"""REST API for the cancellation and refund engine."""
