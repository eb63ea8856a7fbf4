"""SQLite persistence for Subfeed Agent: subscribers, poll state and the due queue."""

import sqlite3
from datetime import datetime, timezone

from subfeed_agent.models import SCHEMA_VERSION, PollState, Subscriber, utcnow

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS subscribers (
    feed_key TEXT NOT NULL,
    destination TEXT NOT NULL,
    last_checked_at TEXT NOT NULL,
    last_seen_item_id TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (feed_key, destination)
);

CREATE INDEX IF NOT EXISTS idx_subscribers_destination ON subscribers(destination);

CREATE TABLE IF NOT EXISTS poll_state (
    feed_key TEXT PRIMARY KEY,
    last_polled_at TEXT NOT NULL,
    next_poll_at TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS due_queue (
    feed_key TEXT PRIMARY KEY,
    due_at REAL NOT NULL,
    seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_due_queue_order ON due_queue(due_at, seq);
CREATE INDEX IF NOT EXISTS idx_due_queue_seq ON due_queue(seq);
"""

# version -> script upgrading from version - 1
MIGRATIONS: dict[int, str] = {}


class SchemaVersionError(RuntimeError):
    """Raised when the database was written by a newer schema version."""


class Database:
    """SQLite database manager backing the registry, poll state and due queue."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and initialize or migrate the schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._migrate()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @property
    def schema_version(self) -> int:
        return self.conn.execute("PRAGMA user_version").fetchone()[0]

    def _migrate(self) -> None:
        version = self.schema_version
        if version > SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Database schema version {version} is newer than supported "
                f"version {SCHEMA_VERSION}"
            )
        if version == 0:
            self.conn.executescript(SCHEMA_SQL)
        else:
            for target in range(version + 1, SCHEMA_VERSION + 1):
                self.conn.executescript(MIGRATIONS[target])
        self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self.conn.commit()

    # --- Subscription registry ---

    def add_subscriber(self, subscriber: Subscriber) -> bool:
        """Insert a subscriber. Returns False if (feed_key, destination) exists."""
        cursor = self.conn.execute(
            """INSERT OR IGNORE INTO subscribers
               (feed_key, destination, last_checked_at, last_seen_item_id, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                subscriber.feed_key,
                subscriber.destination,
                _dt_to_str(subscriber.last_checked_at),
                subscriber.last_seen_item_id,
                _dt_to_str(utcnow()),
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def update_subscriber_marker(self, subscriber: Subscriber) -> bool:
        """Persist a subscriber's marker fields.

        Only touches an existing row, so a subscriber removed while its feed
        was being polled stays removed. Returns True if a row was updated.
        """
        cursor = self.conn.execute(
            """UPDATE subscribers SET last_checked_at = ?, last_seen_item_id = ?
               WHERE feed_key = ? AND destination = ?""",
            (
                _dt_to_str(subscriber.last_checked_at),
                subscriber.last_seen_item_id,
                subscriber.feed_key,
                subscriber.destination,
            ),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def remove_subscriber(self, feed_key: str, destination: str) -> bool:
        """Delete a subscriber. Returns True if one was removed."""
        cursor = self.conn.execute(
            "DELETE FROM subscribers WHERE feed_key = ? AND destination = ?",
            (feed_key, destination),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_subscribers(self, feed_key: str) -> list[Subscriber]:
        """Return the subscribers of a feed key in subscription order."""
        rows = self.conn.execute(
            "SELECT * FROM subscribers WHERE feed_key = ? ORDER BY created_at, rowid",
            (feed_key,),
        ).fetchall()
        return [_row_to_subscriber(r) for r in rows]

    def list_feed_keys_with_subscribers(self) -> list[str]:
        """Return every feed key that has at least one subscriber."""
        rows = self.conn.execute(
            "SELECT DISTINCT feed_key FROM subscribers ORDER BY feed_key"
        ).fetchall()
        return [r["feed_key"] for r in rows]

    def list_feed_keys_for_destination(self, destination: str) -> list[str]:
        """Return the feed keys a destination is subscribed to."""
        rows = self.conn.execute(
            "SELECT feed_key FROM subscribers WHERE destination = ? ORDER BY created_at, rowid",
            (destination,),
        ).fetchall()
        return [r["feed_key"] for r in rows]

    # --- Poll state ---

    def insert_poll_state(self, state: PollState) -> bool:
        """Insert poll state unless one exists. Returns True if inserted."""
        cursor = self.conn.execute(
            """INSERT OR IGNORE INTO poll_state
               (feed_key, last_polled_at, next_poll_at, retry_count, error_count)
               VALUES (?, ?, ?, ?, ?)""",
            _poll_state_params(state),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def save_poll_state(self, state: PollState) -> None:
        """Insert or overwrite the poll state of a feed key."""
        self.conn.execute(
            """INSERT INTO poll_state
               (feed_key, last_polled_at, next_poll_at, retry_count, error_count)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(feed_key) DO UPDATE SET
                   last_polled_at = excluded.last_polled_at,
                   next_poll_at = excluded.next_poll_at,
                   retry_count = excluded.retry_count,
                   error_count = excluded.error_count""",
            _poll_state_params(state),
        )
        self.conn.commit()

    def get_poll_state(self, feed_key: str) -> PollState | None:
        """Look up the poll state of a feed key."""
        row = self.conn.execute(
            "SELECT * FROM poll_state WHERE feed_key = ?", (feed_key,)
        ).fetchone()
        return _row_to_poll_state(row) if row else None

    def list_poll_states(self) -> list[PollState]:
        """Return all poll states."""
        rows = self.conn.execute(
            "SELECT * FROM poll_state ORDER BY feed_key"
        ).fetchall()
        return [_row_to_poll_state(r) for r in rows]

    def delete_poll_state(self, feed_key: str) -> bool:
        """Delete poll state. Returns True if deleted."""
        cursor = self.conn.execute(
            "DELETE FROM poll_state WHERE feed_key = ?", (feed_key,)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # --- Due queue ---

    def upsert_due(self, feed_key: str, due_at: datetime) -> None:
        """Insert or move a due-queue entry; a moved entry sorts after earlier ties."""
        self.conn.execute(
            """INSERT INTO due_queue (feed_key, due_at, seq)
               VALUES (?, ?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM due_queue))
               ON CONFLICT(feed_key) DO UPDATE SET
                   due_at = excluded.due_at,
                   seq = excluded.seq""",
            (feed_key, due_at.timestamp()),
        )
        self.conn.commit()

    def pop_due_before(self, timestamp: datetime) -> list[str]:
        """Remove and return feed keys due at or before timestamp, earliest first."""
        cutoff = timestamp.timestamp()
        rows = self.conn.execute(
            "SELECT feed_key FROM due_queue WHERE due_at <= ? ORDER BY due_at, seq",
            (cutoff,),
        ).fetchall()
        keys = [r["feed_key"] for r in rows]
        if keys:
            placeholders = ",".join("?" for _ in keys)
            self.conn.execute(
                f"DELETE FROM due_queue WHERE feed_key IN ({placeholders})", keys
            )
        self.conn.commit()
        return keys

    def get_due(self, feed_key: str) -> datetime | None:
        """Return when a feed key is due, or None if it is not queued."""
        row = self.conn.execute(
            "SELECT due_at FROM due_queue WHERE feed_key = ?", (feed_key,)
        ).fetchone()
        return _ts_to_dt(row["due_at"]) if row else None

    def list_due(self) -> list[tuple[str, datetime]]:
        """Return all queued entries in due order."""
        rows = self.conn.execute(
            "SELECT feed_key, due_at FROM due_queue ORDER BY due_at, seq"
        ).fetchall()
        return [(r["feed_key"], _ts_to_dt(r["due_at"])) for r in rows]

    def delete_due(self, feed_key: str) -> bool:
        """Remove a due-queue entry. Returns True if one was removed."""
        cursor = self.conn.execute(
            "DELETE FROM due_queue WHERE feed_key = ?", (feed_key,)
        )
        self.conn.commit()
        return cursor.rowcount > 0


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to an aware datetime."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _ts_to_dt(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _poll_state_params(state: PollState) -> tuple:
    return (
        state.feed_key,
        _dt_to_str(state.last_polled_at),
        _dt_to_str(state.next_poll_at),
        state.retry_count,
        state.error_count,
    )


def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
    """Convert a database row to a Subscriber dataclass."""
    return Subscriber(
        feed_key=row["feed_key"],
        destination=row["destination"],
        last_checked_at=_str_to_dt(row["last_checked_at"]) or utcnow(),
        last_seen_item_id=row["last_seen_item_id"],
    )


def _row_to_poll_state(row: sqlite3.Row) -> PollState:
    """Convert a database row to a PollState dataclass."""
    return PollState(
        feed_key=row["feed_key"],
        last_polled_at=_str_to_dt(row["last_polled_at"]),
        next_poll_at=_str_to_dt(row["next_poll_at"]),
        retry_count=row["retry_count"],
        error_count=row["error_count"],
    )
