"""
Cache invalidation rules.

Binds domain mutations to the cached slots they make stale. A slot is only
cleared when the data it was generated from changes; fields that never feed
a prompt (status, assignee, labels, priority) invalidate nothing.
"""

import logging
import sqlite3
from enum import Enum
from typing import Dict, FrozenSet, Optional

from issue_ai_guard.storage.models import ArtifactSlot
from issue_ai_guard.storage.repository import ArtifactStore

logger = logging.getLogger(__name__)


class DomainEvent(Enum):
    """Issue mutations the application reports to the gateway."""
    DESCRIPTION_CHANGED = "description_changed"
    COMMENT_ADDED = "comment_added"
    TITLE_CHANGED = "title_changed"
    STATUS_CHANGED = "status_changed"
    ASSIGNEE_CHANGED = "assignee_changed"
    LABELS_CHANGED = "labels_changed"
    PRIORITY_CHANGED = "priority_changed"
    DUE_DATE_CHANGED = "due_date_changed"


INVALIDATION_RULES: Dict[DomainEvent, FrozenSet[ArtifactSlot]] = {
    DomainEvent.DESCRIPTION_CHANGED: frozenset({ArtifactSlot.SUMMARY, ArtifactSlot.SUGGESTION}),
    DomainEvent.COMMENT_ADDED: frozenset({ArtifactSlot.COMMENT_SUMMARY}),
}


def slots_for(event: DomainEvent) -> FrozenSet[ArtifactSlot]:
    """Slots a mutation invalidates, empty when it touches no prompt input."""
    return INVALIDATION_RULES.get(event, frozenset())


def apply_invalidation(
    event: DomainEvent,
    entity_id: str,
    store: ArtifactStore,
    conn: Optional[sqlite3.Connection] = None
) -> FrozenSet[ArtifactSlot]:
    """Clear the slots a mutation makes stale.

    Runs synchronously. Pass the mutation's own connection so the clear
    commits or rolls back together with the write that caused it.

    Args:
        event: The mutation that just happened
        entity_id: Entity owning the slots
        store: Cached artifact store
        conn: Open connection of the mutation's transaction, if any

    Returns:
        The slots that were cleared

    Raises:
        PersistenceError: If the store is unreachable
    """
    slots = slots_for(event)
    if not slots:
        return slots

    store.clear(entity_id, slots, conn=conn)
    logger.info(
        "Invalidated %s for %s after %s",
        ", ".join(sorted(slot.value for slot in slots)), entity_id, event.value
    )
    return slots
