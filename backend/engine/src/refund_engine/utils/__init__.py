"""Shared utilities for the refund engine."""
