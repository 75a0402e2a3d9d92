"""Exceptions raised by payout collaborators.

The orchestrator turns every one of these into a structured ``PayoutResult``;
only database errors are allowed to reach the caller.
"""

from typing import Optional


class PayoutError(Exception):
    """Base exception for payout collaborator errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ProviderError(PayoutError):
    """Raised by a payment processor adapter when an API call fails.

    ``retryable`` is decided by the adapter from the provider error code so the
    orchestrator never has to know about provider-specific exception types.
    """

    def __init__(self, message: str, code: Optional[str] = None, retryable: bool = False):
        super().__init__(message, code or "unknown")
        self.retryable = retryable


class AttributionError(PayoutError):
    """Raised when a payment transaction cannot be linked to a fundable charge."""

    pass
