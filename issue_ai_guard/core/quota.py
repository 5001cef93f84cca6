"""
Quota policy evaluation.

Decides whether a user may make another generation call. Enforcement order:
1. Daily ceiling - read from the per-day counter
2. Trailing-minute ceiling - read from the per-call event log

The evaluator never records usage. Callers increment the ledger only after a
generation has actually produced a result.
"""

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from issue_ai_guard.config.loader import QuotaPolicy
from issue_ai_guard.storage.repository import MINUTE_WINDOW, UsageLedger


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota evaluation."""
    allowed: bool
    remaining_minute: int
    remaining_daily: int
    reset_at: Optional[datetime] = None


def evaluate_quota(
    user_id: str,
    policy: QuotaPolicy,
    ledger: UsageLedger,
    now: Optional[datetime] = None
) -> QuotaDecision:
    """Evaluate a user's remaining budget.

    Args:
        user_id: User making the request
        policy: Limits to enforce
        ledger: Source of today's count and the recent call log
        now: Evaluation instant, defaults to the ledger's clock

    Returns:
        QuotaDecision; when denied, reset_at is the earliest instant a
        retry can succeed

    Raises:
        PersistenceError: If the ledger is unreachable
    """
    if now is None:
        now = ledger.now()

    record = ledger.get_or_create_today(user_id)

    if record.count >= policy.per_day_limit:
        tomorrow = datetime.combine(now.date() + timedelta(days=1), time.min)
        return QuotaDecision(
            allowed=False,
            remaining_minute=0,
            remaining_daily=0,
            reset_at=tomorrow
        )

    remaining_daily = policy.per_day_limit - record.count

    recent = ledger.recent_events(user_id, since=now - MINUTE_WINDOW)
    if len(recent) >= policy.per_minute_limit:
        # Allowed again once enough calls age out to drop below the limit;
        # the window can hold more than the limit after racing requests
        freeing_call = recent[len(recent) - policy.per_minute_limit]
        return QuotaDecision(
            allowed=False,
            remaining_minute=0,
            remaining_daily=remaining_daily,
            reset_at=freeing_call + MINUTE_WINDOW
        )

    return QuotaDecision(
        allowed=True,
        remaining_minute=policy.per_minute_limit - len(recent),
        remaining_daily=remaining_daily
    )


def rate_limit_message(decision: QuotaDecision, now: Optional[datetime] = None) -> str:
    """Human-readable description of a quota decision."""
    if decision.remaining_daily == 0:
        return "Daily AI limit reached. Resets at midnight."
    if decision.remaining_minute == 0:
        reset_in = 60
        if decision.reset_at is not None:
            now = now or datetime.now()
            reset_in = max(0, math.ceil((decision.reset_at - now).total_seconds()))
        return f"Rate limit reached. Please wait {reset_in} seconds."
    return f"{decision.remaining_daily} AI requests remaining today."
