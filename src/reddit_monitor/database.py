import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional, Tuple, Union

from . import migrations
from .codec import decode_post_type, decode_time_period, encode_post_type, encode_time_period
from .errors import (
    ConstraintError,
    DataCorruptionError,
    DuplicateSubscriptionError,
    NotFoundError,
    StorageIOError,
)
from .models import Chat, Post, StoreStats, Subscription, SubscriptionArgs

logger = logging.getLogger(__name__)

MEMORY = ":memory:"

_SUBSCRIPTION_COLUMNS = "chat_id, subreddit, post_limit, time, filter, created_at"

# Older rows may carry nanosecond precision, fromisoformat only takes microseconds
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(sep=" ")


def _parse_timestamp(text: Optional[str], column: str) -> Optional[datetime]:
    if text is None:
        return None
    try:
        return datetime.fromisoformat(_EXTRA_FRACTION.sub(r"\1", text))
    except (TypeError, ValueError):
        raise DataCorruptionError(column, text) from None


class Database:
    """SQLite store for chats, subscriptions and seen posts

    One connection is held for the lifetime of the object. Every public
    method runs in its own transaction and returns fully materialized
    results.
    """

    def __init__(self, db_path: Union[Path, str] = MEMORY):
        self.db_path = db_path
        self._closed = False
        try:
            if str(db_path) != MEMORY:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(db_path, isolation_level=None)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
        except (OSError, sqlite3.Error) as e:
            raise StorageIOError(f"could not open database {db_path}: {e}") from e

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run the enclosed statements as one transaction"""
        if self._closed:
            raise StorageIOError("database is closed")
        conn = self.conn
        try:
            conn.execute("BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            self._rollback()
            raise ConstraintError(str(e)) from e
        except sqlite3.Error as e:
            self._rollback()
            raise StorageIOError(str(e)) from e
        except BaseException:
            self._rollback()
            raise

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    def migrate(self, target_version: Optional[int] = None) -> Tuple[int, int]:
        """Bring the schema to the latest version, see migrations.migrate"""
        if self._closed:
            raise StorageIOError("database is closed")
        return migrations.migrate(self.conn, target_version)

    def schema_version(self) -> int:
        with self._transaction() as conn:
            return migrations.get_schema_version(conn)

    # Chat operations
    @staticmethod
    def _ensure_chat(conn: sqlite3.Connection, chat_id: int) -> None:
        conn.execute("INSERT OR IGNORE INTO chat (chat_id) VALUES (?)", (chat_id,))

    def ensure_chat_exists(self, chat_id: int) -> None:
        """Create the chat row unless it already exists"""
        with self._transaction() as conn:
            self._ensure_chat(conn, chat_id)

    def get_chat(self, chat_id: int) -> Optional[Chat]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT chat_id, repost_channel_id FROM chat WHERE chat_id = ?", (chat_id,)
            ).fetchone()
        if row:
            return Chat(chat_id=row["chat_id"], repost_channel_id=row["repost_channel_id"])
        return None

    def set_repost_channel(self, chat_id: int, repost_channel_id: int) -> None:
        with self._transaction() as conn:
            self._ensure_chat(conn, chat_id)
            conn.execute(
                "UPDATE chat SET repost_channel_id = ? WHERE chat_id = ?",
                (repost_channel_id, chat_id)
            )
        logger.info(f"Chat {chat_id} now reposts to {repost_channel_id}")

    def get_repost_channel(self, chat_id: int) -> Optional[int]:
        """Get the repost channel of a chat, None when not configured"""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT repost_channel_id FROM chat WHERE chat_id = ?", (chat_id,)
            ).fetchone()
        return row["repost_channel_id"] if row else None

    # Subscription operations
    def subscribe(self, chat_id: int, args: SubscriptionArgs) -> Subscription:
        """Subscribe a chat to a subreddit

        Raises:
            DuplicateSubscriptionError: the chat already follows the subreddit
        """
        created_at = _now()
        with self._transaction() as conn:
            self._ensure_chat(conn, chat_id)
            try:
                conn.execute(
                    "INSERT INTO subscription (chat_id, subreddit, post_limit, time, filter, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        chat_id,
                        args.subreddit,
                        args.limit,
                        encode_time_period(args.time),
                        encode_post_type(args.filter),
                        _format_timestamp(created_at),
                    )
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e).upper():
                    raise
                raise DuplicateSubscriptionError(chat_id, args.subreddit) from e
        logger.info(f"Chat {chat_id} subscribed to r/{args.subreddit}")
        return Subscription(
            chat_id=chat_id,
            subreddit=args.subreddit,
            limit=args.limit,
            time=args.time,
            filter=args.filter,
            created_at=created_at,
        )

    def unsubscribe(self, chat_id: int, subreddit: str) -> str:
        """Remove a subscription and forget every post seen through it

        ``subreddit`` is a LIKE pattern. An exact match wins over a wildcard
        match, and at most one subscription is removed.

        Returns:
            the subreddit name as it was stored

        Raises:
            NotFoundError: no subscription matches
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT subreddit FROM subscription "
                "WHERE chat_id = ? AND subreddit LIKE ? "
                "ORDER BY subreddit = ? DESC, created_at, rowid LIMIT 1",
                (chat_id, subreddit, subreddit)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"chat {chat_id} is not subscribed to r/{subreddit}")
            deleted = row["subreddit"]
            conn.execute(
                "DELETE FROM subscription WHERE chat_id = ? AND subreddit = ?",
                (chat_id, deleted)
            )
            # A later re-subscription starts from a clean slate
            conn.execute(
                "DELETE FROM post WHERE chat_id = ? AND subreddit = ?",
                (chat_id, deleted)
            )
        logger.info(f"Chat {chat_id} unsubscribed from r/{deleted}")
        return deleted

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            chat_id=row["chat_id"],
            subreddit=row["subreddit"],
            limit=row["post_limit"],
            time=decode_time_period(row["time"]),
            filter=decode_post_type(row["filter"]),
            created_at=_parse_timestamp(row["created_at"], "created_at"),
        )

    def get_subscriptions_for_chat(self, chat_id: int) -> List[Subscription]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscription "
                "WHERE chat_id = ? ORDER BY created_at, rowid",
                (chat_id,)
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def get_all_subscriptions(self) -> List[Subscription]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscription "
                "ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    # Post operations
    def record_post(self, chat_id: int, post: Post, seen_at: Optional[datetime] = None) -> None:
        """Track a post for a chat

        The first call stores the row. Later calls only ever move ``seen_at``
        from NULL to a timestamp, never back and never to a newer timestamp.
        """
        seen_text = _format_timestamp(seen_at)
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO post (post_id, chat_id, subreddit, seen_at, post_title) "
                "VALUES (?, ?, ?, ?, ?)",
                (post.id, chat_id, post.subreddit, seen_text, post.title)
            )
            conn.execute(
                "UPDATE post SET seen_at = ? "
                "WHERE post_id = ? AND chat_id = ? AND seen_at IS NULL",
                (seen_text, post.id, chat_id)
            )
        logger.debug(f"Recorded post {post.id} for chat {chat_id} (seen_at={seen_text})")

    def record_post_seen_with_current_time(self, chat_id: int, post: Post) -> None:
        self.record_post(chat_id, post, _now())

    def is_post_seen(self, chat_id: int, post: Post) -> bool:
        """Check if the post was delivered to the chat"""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT EXISTS(SELECT 1 FROM post "
                "WHERE post_id = ? AND chat_id = ? AND seen_at IS NOT NULL)",
                (post.id, chat_id)
            ).fetchone()
        return bool(row[0])

    def existing_posts_for_subreddit(self, chat_id: int, subreddit: str) -> bool:
        """Check if any post of the subreddit is tracked for the chat, seen or not"""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT EXISTS(SELECT 1 FROM post WHERE chat_id = ? AND subreddit = ?)",
                (chat_id, subreddit)
            ).fetchone()
        return bool(row[0])

    def get_post_title(self, chat_id: int, post_id: str) -> str:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT post_title FROM post WHERE post_id = ? AND chat_id = ?",
                (post_id, chat_id)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"post {post_id} is not tracked for chat {chat_id}")
        return row["post_title"]

    # Statistics
    def get_stats(self) -> StoreStats:
        with self._transaction() as conn:
            chat_count = conn.execute("SELECT COUNT(*) FROM chat").fetchone()[0]
            subscription_count = conn.execute("SELECT COUNT(*) FROM subscription").fetchone()[0]
            post_count = conn.execute("SELECT COUNT(*) FROM post").fetchone()[0]
            seen_post_count = conn.execute(
                "SELECT COUNT(*) FROM post WHERE seen_at IS NOT NULL"
            ).fetchone()[0]
            repost_channel_count = conn.execute(
                "SELECT COUNT(*) FROM chat WHERE repost_channel_id IS NOT NULL"
            ).fetchone()[0]
        return StoreStats(
            chat_count=chat_count,
            subscription_count=subscription_count,
            post_count=post_count,
            seen_post_count=seen_post_count,
            repost_channel_count=repost_channel_count,
        )
