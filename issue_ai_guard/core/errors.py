"""
Error taxonomy for the generation gateway.

Every failure a generation request can end in maps to exactly one of
these exceptions. They are raised where the failure happens and only
translated into response envelopes at the gateway boundary.
"""

from datetime import datetime
from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway failures."""


class ValidationError(GatewayError):
    """Input too short or not enough source items.

    Recoverable by the caller supplying better input; never retried
    automatically.
    """


class QuotaExceededError(GatewayError):
    """The caller's per-minute or per-day budget is used up.

    Carries the earliest instant a retry can succeed.
    """
    def __init__(
        self,
        message: str,
        reset_at: Optional[datetime],
        remaining_minute: int = 0,
        remaining_daily: int = 0
    ):
        super().__init__(message)
        self.reset_at = reset_at
        self.remaining_minute = remaining_minute
        self.remaining_daily = remaining_daily


class UpstreamGenerationError(GatewayError):
    """The external generator failed or returned unusable content."""


class PersistenceError(GatewayError):
    """Ledger or cache store unreachable; the request fails closed."""
