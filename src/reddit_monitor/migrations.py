"""Database migration management"""
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional, Set, Tuple

from .errors import MigrationError

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    version: int
    description: str
    statements: Tuple[str, ...]


# Append only. A released step is never edited or removed.
MIGRATIONS: Tuple[Migration, ...] = (
    Migration(1, "create post table", (
        """
        CREATE TABLE post (
            post_id     TEXT NOT NULL,
            chat_id     INTEGER NOT NULL,
            subreddit   TEXT NOT NULL,
            seen_at     TEXT NOT NULL,
            PRIMARY KEY (post_id, chat_id)
        )
        """,
    )),

    Migration(2, "create subscription table", (
        """
        CREATE TABLE subscription (
            chat_id     INTEGER NOT NULL,
            subreddit   TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            post_limit  INTEGER,
            time        TEXT,
            filter      TEXT,
            PRIMARY KEY (subreddit, chat_id)
        )
        """,
    )),

    # chat becomes the parent of subscription, one row per subscribed chat
    Migration(3, "create chat table", (
        """
        CREATE TABLE chat (
            chat_id            INTEGER PRIMARY KEY,
            repost_channel_id  INTEGER
        )
        """,
        "INSERT OR IGNORE INTO chat (chat_id) SELECT chat_id FROM subscription",
    )),

    Migration(4, "add subscription.chat_id foreign key", (
        """
        CREATE TABLE subscription_new (
            chat_id     INTEGER NOT NULL,
            subreddit   TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            post_limit  INTEGER,
            time        TEXT,
            filter      TEXT,
            PRIMARY KEY (subreddit, chat_id),
            FOREIGN KEY (chat_id) REFERENCES chat(chat_id)
        )
        """,
        """
        INSERT INTO subscription_new (chat_id, subreddit, created_at, post_limit, time, filter)
        SELECT chat_id, subreddit, created_at, post_limit, time, filter FROM subscription
        """,
        "DROP TABLE subscription",
        "ALTER TABLE subscription_new RENAME TO subscription",
    )),

    # Rows recorded before titles existed get the placeholder 'Unknown'
    Migration(5, "make post.seen_at nullable, add post.post_title", (
        """
        CREATE TABLE post_new (
            post_id     TEXT NOT NULL,
            chat_id     INTEGER NOT NULL,
            subreddit   TEXT NOT NULL,
            seen_at     TEXT,
            post_title  TEXT NOT NULL,
            PRIMARY KEY (post_id, chat_id)
        )
        """,
        """
        INSERT INTO post_new (post_id, chat_id, subreddit, seen_at, post_title)
        SELECT post_id, chat_id, subreddit, seen_at, 'Unknown' FROM post
        """,
        "DROP TABLE post",
        "ALTER TABLE post_new RENAME TO post",
    )),
)

CURRENT_VERSION = MIGRATIONS[-1].version

# Earlier releases counted applied statements in PRAGMA user_version.
# Maps the counts they could have left behind to the version above.
LEGACY_USER_VERSIONS = {1: 1, 2: 2, 4: 3, 8: 4, 12: 5}


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


def get_applied_versions(conn: sqlite3.Connection) -> Set[int]:
    """Return the set of versions already applied to the store"""
    if _table_exists(conn, "schema_version"):
        rows = conn.execute("SELECT version FROM schema_version").fetchall()
        return {row[0] for row in rows}

    user_version = conn.execute("PRAGMA user_version").fetchone()[0]
    if user_version == 0:
        return set()
    if user_version not in LEGACY_USER_VERSIONS:
        raise MigrationError(f"unrecognised legacy schema (user_version={user_version})")
    return set(range(1, LEGACY_USER_VERSIONS[user_version] + 1))


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied version, 0 for an empty store"""
    return max(get_applied_versions(conn), default=0)


def pending_versions(conn: sqlite3.Connection, target_version: Optional[int] = None) -> List[int]:
    if target_version is None:
        target_version = CURRENT_VERSION
    applied = get_applied_versions(conn)
    return [m.version for m in MIGRATIONS if m.version <= target_version and m.version not in applied]


def _record_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
        (version, datetime.now(timezone.utc).isoformat(sep=" "))
    )


def migrate(conn: sqlite3.Connection, target_version: Optional[int] = None) -> Tuple[int, int]:
    """Apply every pending migration in a single transaction

    Args:
        conn: connection in autocommit mode (``isolation_level=None``)
        target_version: version to stop at, defaults to the latest

    Returns:
        (old version, new version)

    Raises:
        MigrationError: a step failed; nothing was applied
    """
    if target_version is None:
        target_version = CURRENT_VERSION
    if target_version > CURRENT_VERSION:
        raise MigrationError(f"unknown target version v{target_version} (latest is v{CURRENT_VERSION})")

    try:
        applied = get_applied_versions(conn)
        has_version_table = _table_exists(conn, "schema_version")
    except sqlite3.Error as e:
        raise MigrationError(f"could not read schema version: {e}") from e

    current = max(applied, default=0)
    pending = [m for m in MIGRATIONS if m.version <= target_version and m.version not in applied]

    if not pending and has_version_table:
        logger.info(f"Database is up to date (v{current})")
        return current, current

    version = current
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        if applied and not has_version_table:
            logger.info(f"Adopting legacy schema at v{current}")
            for legacy_version in sorted(applied):
                _record_version(conn, legacy_version)

        for migration in pending:
            version = migration.version
            logger.info(f"Migrating v{version - 1} → v{version}: {migration.description}")
            for sql in migration.statements:
                logger.debug(f"  executing: {' '.join(sql.split())[:60]}...")
                conn.execute(sql)
            _record_version(conn, version)

        conn.execute("COMMIT")
    except Exception as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.error(f"Migration to v{version} failed: {e}")
        if isinstance(e, sqlite3.Error):
            raise MigrationError(f"migration to v{version} failed: {e}") from e
        raise

    new_version = max(applied | {m.version for m in pending}, default=0)
    logger.info(f"✅ Database migrated v{current} → v{new_version}")
    return current, new_version


def check_migration_needed(db_path: Path) -> Tuple[bool, int, int]:
    """Check whether the database file needs migrating

    Returns:
        (needs migration, current version, latest version)
    """
    if not db_path.exists():
        return False, 0, CURRENT_VERSION

    conn = sqlite3.connect(db_path)
    try:
        current = get_schema_version(conn)
    except sqlite3.Error as e:
        raise MigrationError(f"could not read schema version: {e}") from e
    finally:
        conn.close()
    return current < CURRENT_VERSION, current, CURRENT_VERSION
