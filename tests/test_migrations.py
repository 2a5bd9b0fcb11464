"""Tests for schema migrations."""

import sqlite3

import pytest

from reddit_monitor.database import Database
from reddit_monitor.errors import MigrationError
from reddit_monitor.migrations import (
    CURRENT_VERSION,
    MIGRATIONS,
    check_migration_needed,
    get_schema_version,
    migrate,
    pending_versions,
)


def _columns(conn, table):
    return {row[1]: row for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


class TestMigrate:
    """Test migrating fresh and up-to-date stores."""

    def setup_method(self):
        self.db = Database()

    def teardown_method(self):
        self.db.close()

    def test_versions_are_consecutive(self):
        assert [m.version for m in MIGRATIONS] == list(range(1, CURRENT_VERSION + 1))

    def test_migrate_empty_store(self):
        """Test an empty store is brought to the latest version."""
        assert self.db.migrate() == (0, CURRENT_VERSION)
        assert get_schema_version(self.db.conn) == CURRENT_VERSION
        assert pending_versions(self.db.conn) == []

    def test_migrate_twice_is_noop(self):
        """Test migrating an up-to-date store changes nothing."""
        self.db.migrate()
        assert self.db.migrate() == (CURRENT_VERSION, CURRENT_VERSION)

        versions = [row[0] for row in self.db.conn.execute("SELECT version FROM schema_version")]
        assert versions == list(range(1, CURRENT_VERSION + 1))

    def test_final_schema(self):
        """Test the migrated tables have the expected shape."""
        self.db.migrate()
        conn = self.db.conn

        post = _columns(conn, "post")
        assert list(post) == ["post_id", "chat_id", "subreddit", "seen_at", "post_title"]
        assert post["seen_at"]["notnull"] == 0
        assert post["post_title"]["notnull"] == 1

        assert list(_columns(conn, "chat")) == ["chat_id", "repost_channel_id"]
        assert list(_columns(conn, "subscription")) == [
            "chat_id", "subreddit", "created_at", "post_limit", "time", "filter"
        ]
        fks = conn.execute("PRAGMA foreign_key_list(subscription)").fetchall()
        assert [(fk["table"], fk["from"], fk["to"]) for fk in fks] == [("chat", "chat_id", "chat_id")]

        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert "subscription_new" not in tables
        assert "post_new" not in tables

    def test_migrate_to_target(self):
        """Test migration stops at the requested version."""
        assert self.db.migrate(target_version=2) == (0, 2)
        assert pending_versions(self.db.conn) == [3, 4, 5]
        assert self.db.migrate() == (2, CURRENT_VERSION)

    def test_unknown_target(self):
        with pytest.raises(MigrationError):
            self.db.migrate(target_version=CURRENT_VERSION + 1)


class TestDataMigration:
    """Test migrating a store that already holds rows."""

    def setup_method(self):
        self.db = Database()
        self.db.migrate(target_version=2)
        conn = self.db.conn
        conn.execute(
            "INSERT INTO post (post_id, chat_id, subreddit, seen_at) VALUES (?, ?, ?, ?)",
            ("v6nu75", 1, "absoluteunit", "2022-06-07 05:51:40+00:00")
        )
        conn.execute(
            "INSERT INTO subscription (chat_id, subreddit, created_at, post_limit, time, filter) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (1, "absoluteunit", "2022-06-07 05:00:00+00:00", 5, "week", "video")
        )
        conn.execute(
            "INSERT INTO subscription (chat_id, subreddit, created_at) VALUES (?, ?, ?)",
            (2, "pics", "2022-06-07 06:00:00+00:00")
        )
        conn.execute(
            "INSERT INTO subscription (chat_id, subreddit, created_at) VALUES (?, ?, ?)",
            (2, "aww", "2022-06-07 07:00:00+00:00")
        )

    def teardown_method(self):
        self.db.close()

    def test_chats_are_backfilled(self):
        """Test one chat row is created per subscribed chat."""
        self.db.migrate()

        chats = [row[0] for row in self.db.conn.execute("SELECT chat_id FROM chat ORDER BY chat_id")]
        assert chats == [1, 2]
        assert self.db.get_repost_channel(1) is None

    def test_subscriptions_are_kept(self):
        self.db.migrate()

        subs = self.db.get_subscriptions_for_chat(1)
        assert len(subs) == 1
        assert subs[0].limit == 5
        assert subs[0].time.value == "week"
        assert subs[0].filter.value == "video"
        assert len(self.db.get_subscriptions_for_chat(2)) == 2

    def test_titles_are_backfilled(self):
        """Test posts recorded before titles existed get the 'Unknown' title."""
        self.db.migrate()

        assert self.db.get_post_title(1, "v6nu75") == "Unknown"
        row = self.db.conn.execute("SELECT seen_at FROM post").fetchone()
        assert row["seen_at"] == "2022-06-07 05:51:40+00:00"

    def test_foreign_key_enforced_after_migration(self):
        self.db.migrate()

        with pytest.raises(sqlite3.IntegrityError):
            self.db.conn.execute(
                "INSERT INTO subscription (chat_id, subreddit, created_at) VALUES (99, 'x', 'now')"
            )

    def test_failed_migration_is_rolled_back(self):
        """Test a failing step leaves the store at its previous version."""
        self.db.conn.execute("CREATE TABLE chat (chat_id INTEGER PRIMARY KEY, note TEXT)")

        with pytest.raises(MigrationError):
            self.db.migrate()

        conn = self.db.conn
        assert not conn.in_transaction
        assert get_schema_version(conn) == 2
        assert "post_title" not in _columns(conn, "post")
        assert list(_columns(conn, "chat")) == ["chat_id", "note"]
        assert conn.execute("SELECT COUNT(*) FROM chat").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM subscription").fetchone()[0] == 3


class TestLegacyStore:
    """Test stores that only tracked their version in PRAGMA user_version."""

    def setup_method(self):
        self.conn = sqlite3.connect(":memory:", isolation_level=None)

    def teardown_method(self):
        self.conn.close()

    def _apply_statements(self, count):
        statements = [sql for m in MIGRATIONS for sql in m.statements]
        for sql in statements[:count]:
            self.conn.execute(sql)
        self.conn.execute(f"PRAGMA user_version = {count}")

    def test_adopt_current_legacy_store(self):
        """Test a fully migrated legacy store is adopted without re-running steps."""
        self._apply_statements(12)

        assert migrate(self.conn) == (CURRENT_VERSION, CURRENT_VERSION)
        versions = [row[0] for row in self.conn.execute("SELECT version FROM schema_version")]
        assert versions == list(range(1, CURRENT_VERSION + 1))

    def test_adopt_older_legacy_store(self):
        """Test a legacy store at a release boundary is migrated the rest of the way."""
        self._apply_statements(4)

        assert migrate(self.conn) == (3, CURRENT_VERSION)
        assert "post_title" in _columns(self.conn, "post")

    def test_unknown_legacy_version(self):
        self._apply_statements(7)

        with pytest.raises(MigrationError):
            migrate(self.conn)


class TestCheckMigrationNeeded:
    """Test the migration check on database files."""

    def test_missing_file(self, tmp_path):
        assert check_migration_needed(tmp_path / "data.db") == (False, 0, CURRENT_VERSION)

    def test_outdated_file(self, tmp_path):
        db_path = tmp_path / "data.db"
        with Database(db_path) as db:
            db.migrate(target_version=3)

        assert check_migration_needed(db_path) == (True, 3, CURRENT_VERSION)

    def test_current_file(self, tmp_path):
        db_path = tmp_path / "data.db"
        with Database(db_path) as db:
            db.migrate()

        assert check_migration_needed(db_path) == (False, CURRENT_VERSION, CURRENT_VERSION)
