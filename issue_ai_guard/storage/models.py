"""
Data models for storage layer.

Defines the usage ledger rows and the cached artifact slots.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


class ArtifactSlot(Enum):
    """Named cache slots an issue owns, at most one artifact each."""
    SUMMARY = "summary"
    SUGGESTION = "suggestion"
    COMMENT_SUMMARY = "comment_summary"


@dataclass(frozen=True)
class UsageRecord:
    """Per-user, per-day generation counter.

    One row per (user_id, day). The count only ever grows, and only
    through the ledger's increment operation.
    """
    user_id: str
    day: date
    count: int
    last_updated_at: datetime


@dataclass(frozen=True)
class CachedArtifact:
    """Populated cache slot: generated content plus the instant it was cached."""
    entity_id: str
    slot: ArtifactSlot
    content: str
    cached_at: datetime
