"""
Resilience layer for arcle.

Provides retry helpers for idempotent provider calls.
"""

from .retry import execute_with_retry, is_transient_error, retrying

__all__ = [
    "execute_with_retry",
    "is_transient_error",
    "retrying",
]
