"""
Repository pattern for data access.

Handles the usage ledger and the cached artifact store. These are the only
shared mutable resources of the gateway; every mutation goes through one of
the atomic operations defined here.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import ArtifactSlot, CachedArtifact, UsageRecord
from issue_ai_guard.core.errors import PersistenceError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Trailing window used for the per-minute quota
MINUTE_WINDOW = timedelta(seconds=60)


def _ts(value: datetime) -> str:
    """Fixed-width ISO timestamp so that string order matches time order."""
    return value.isoformat(timespec="microseconds")


@contextmanager
def _connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, translating any SQLite failure into PersistenceError."""
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise PersistenceError(f"Cannot open database {db_path}: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        conn.rollback()
        raise PersistenceError(f"Database operation failed: {e}") from e
    finally:
        conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger and cache tables if they don't exist.

    ai_usage holds one counter row per user per calendar day,
    ai_usage_event holds the short-lived per-call log backing the
    trailing-minute window, and cached_artifact holds one row per
    populated (entity, slot) pair.

    Args:
        db_path: Path to SQLite database file
    """
    slots = ", ".join(f"'{slot.value}'" for slot in ArtifactSlot)
    with _connection(db_path) as conn:
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS ai_usage (
                user_id TEXT NOT NULL,
                day TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
                last_updated_at TEXT NOT NULL,
                PRIMARY KEY (user_id, day)
            );
            CREATE TABLE IF NOT EXISTS ai_usage_event (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                occurred_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS ix_ai_usage_event_user_time
                ON ai_usage_event (user_id, occurred_at);
            CREATE TABLE IF NOT EXISTS cached_artifact (
                entity_id TEXT NOT NULL,
                slot TEXT NOT NULL CHECK (slot IN ({slots})),
                content TEXT NOT NULL,
                cached_at TEXT NOT NULL,
                PRIMARY KEY (entity_id, slot)
            );
        """)
        conn.commit()


class UsageLedger:
    """Durable per-user, per-day record of generation calls.

    The ledger makes no decisions. It answers how many calls a user has
    made today and in the trailing minute, and records a new call.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Clock = datetime.now):
        """Initialize the ledger.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current process-local time
        """
        self.db_path = db_path
        self.clock = clock

    def now(self) -> datetime:
        return self.clock()

    def get_or_create_today(self, user_id: str) -> UsageRecord:
        """Return today's record, creating it with count 0 if absent.

        Safe under concurrent callers: the (user_id, day) primary key makes
        the insert a no-op for everyone but the first.
        """
        now = self.clock()
        day = now.date()
        with _connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO ai_usage (user_id, day, count, last_updated_at) "
                "VALUES (?, ?, 0, ?)",
                (user_id, day.isoformat(), _ts(now))
            )
            conn.commit()
            return self._fetch(conn, user_id, day)

    def increment(self, user_id: str) -> UsageRecord:
        """Atomically add one call to today's count.

        The counter bump, the event append and the trim of events that
        fell out of the minute window happen in one transaction.
        """
        now = self.clock()
        day = now.date()
        with _connection(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("""
                INSERT INTO ai_usage (user_id, day, count, last_updated_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT (user_id, day) DO UPDATE SET
                    count = count + 1,
                    last_updated_at = excluded.last_updated_at
            """, (user_id, day.isoformat(), _ts(now)))
            conn.execute(
                "INSERT INTO ai_usage_event (user_id, occurred_at) VALUES (?, ?)",
                (user_id, _ts(now))
            )
            conn.execute(
                "DELETE FROM ai_usage_event WHERE user_id = ? AND occurred_at <= ?",
                (user_id, _ts(now - MINUTE_WINDOW))
            )
            conn.commit()
            record = self._fetch(conn, user_id, day)
        logger.debug("Usage for %s on %s is now %d", user_id, day, record.count)
        return record

    def recent_events(self, user_id: str, since: datetime) -> List[datetime]:
        """Timestamps of this user's calls strictly after `since`, oldest first."""
        with _connection(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT occurred_at FROM ai_usage_event "
                "WHERE user_id = ? AND occurred_at > ? ORDER BY occurred_at ASC",
                (user_id, _ts(since))
            )
            return [datetime.fromisoformat(row[0]) for row in cursor.fetchall()]

    @staticmethod
    def _fetch(conn: sqlite3.Connection, user_id: str, day: date) -> UsageRecord:
        row = conn.execute(
            "SELECT user_id, day, count, last_updated_at FROM ai_usage "
            "WHERE user_id = ? AND day = ?",
            (user_id, day.isoformat())
        ).fetchone()
        if row is None:
            raise PersistenceError(f"Usage record for {user_id} on {day} vanished")
        return UsageRecord(
            user_id=row[0],
            day=date.fromisoformat(row[1]),
            count=row[2],
            last_updated_at=datetime.fromisoformat(row[3])
        )


class ArtifactStore:
    """Durable per-entity cache slots for generated content.

    A slot is either absent or holds both content and its cache time.
    There is no expiry: slots are only emptied by invalidation.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Clock = datetime.now):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current process-local time
        """
        self.db_path = db_path
        self.clock = clock

    def read(self, entity_id: str, slot: ArtifactSlot) -> Optional[CachedArtifact]:
        """Return the populated slot, or None on a cache miss."""
        with _connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT content, cached_at FROM cached_artifact "
                "WHERE entity_id = ? AND slot = ?",
                (entity_id, slot.value)
            ).fetchone()
        if row is None:
            return None
        return CachedArtifact(
            entity_id=entity_id,
            slot=slot,
            content=row[0],
            cached_at=datetime.fromisoformat(row[1])
        )

    def read_all(self, entity_id: str) -> Dict[ArtifactSlot, CachedArtifact]:
        """Return every populated slot of an entity."""
        with _connection(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT slot, content, cached_at FROM cached_artifact WHERE entity_id = ?",
                (entity_id,)
            )
            rows = cursor.fetchall()
        return {
            ArtifactSlot(row[0]): CachedArtifact(
                entity_id=entity_id,
                slot=ArtifactSlot(row[0]),
                content=row[1],
                cached_at=datetime.fromisoformat(row[2])
            )
            for row in rows
        }

    def write(self, entity_id: str, slot: ArtifactSlot, content: str) -> CachedArtifact:
        """Store content and its cache time in a single statement.

        Raises:
            ValueError: If content is empty
        """
        if not content:
            raise ValueError("content is required and cannot be empty")
        cached_at = self.clock()
        with _connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO cached_artifact (entity_id, slot, content, cached_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (entity_id, slot) DO UPDATE SET
                    content = excluded.content,
                    cached_at = excluded.cached_at
            """, (entity_id, slot.value, content, _ts(cached_at)))
            conn.commit()
        return CachedArtifact(entity_id=entity_id, slot=slot, content=content, cached_at=cached_at)

    def clear(
        self,
        entity_id: str,
        slots: Iterable[ArtifactSlot],
        conn: Optional[sqlite3.Connection] = None
    ) -> None:
        """Empty the named slots in one statement.

        When `conn` is given the delete joins that connection's open
        transaction and the caller commits; otherwise it commits on its own.
        Clearing an already-empty slot is a no-op.
        """
        values = sorted({slot.value for slot in slots})
        if not values:
            return
        placeholders = ", ".join("?" for _ in values)
        query = (
            f"DELETE FROM cached_artifact WHERE entity_id = ? AND slot IN ({placeholders})"
        )
        params = [entity_id, *values]

        if conn is not None:
            try:
                conn.execute(query, params)
            except sqlite3.Error as e:
                raise PersistenceError(f"Database operation failed: {e}") from e
            return

        with _connection(self.db_path) as own_conn:
            own_conn.execute(query, params)
            own_conn.commit()

    def purge(self, entity_id: str) -> None:
        """Drop every slot of an entity that is being destroyed."""
        self.clear(entity_id, list(ArtifactSlot))
