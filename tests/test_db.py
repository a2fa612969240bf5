"""Tests for database initialization and CRUD operations."""

import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from feedtune.db import Database, new_id
from feedtune.models import Feed, FeedItem


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        database = Database(db_path)
        yield database
        database.close()


@pytest.fixture
def feed(db: Database) -> Feed:
    return db.add_feed(Feed(id=None, user_id="user-1", url="https://example.com/feed.xml", title="Example"))


def _rss_item(feed_id: str, guid: str, day: int, **kwargs) -> FeedItem:
    return FeedItem(
        id=None,
        feed_id=feed_id,
        item_type="rss",
        title=f"Post {guid}",
        url=f"https://example.com/{guid}",
        guid=guid,
        published_at=datetime(2024, 1, day, tzinfo=timezone.utc),
        **kwargs,
    )


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_database_file_created(self, db: Database):
        """Test that database file is created on initialization."""
        assert db.db_path.exists()

    def test_tables_exist(self, db: Database):
        """Test that all tables are created."""
        conn = db._get_conn()
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        tables = [row[0] for row in cursor.fetchall()]
        for table in ("feeds", "rss_items", "youtube_items", "user_interactions", "users"):
            assert table in tables

    def test_init_is_idempotent(self, db: Database):
        """Test that opening an existing database keeps its data."""
        db.add_user("a@example.com")
        db.close()

        reopened = Database(db.db_path)
        try:
            assert reopened.get_user_by_email("a@example.com") is not None
        finally:
            reopened.close()

    def test_new_id_is_unique(self):
        """Test that generated ids do not repeat."""
        assert len({new_id() for _ in range(100)}) == 100


class TestUsers:
    """Tests for user operations."""

    def test_add_and_get_user(self, db: Database):
        user = db.add_user("a@example.com")

        assert db.get_user(user.id).email == "a@example.com"
        assert db.get_user_by_email("a@example.com").id == user.id

    def test_duplicate_email_rejected(self, db: Database):
        db.add_user("a@example.com")

        with pytest.raises(sqlite3.IntegrityError):
            db.add_user("a@example.com")

    def test_update_last_sign_in(self, db: Database):
        user = db.add_user("a@example.com")
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        db.update_user_last_sign_in(user.id, when)

        assert db.get_user(user.id).last_sign_in_at == when


class TestFeeds:
    """Tests for feed operations."""

    def test_add_feed_assigns_id_and_timestamps(self, db: Database, feed: Feed):
        assert feed.id is not None
        assert feed.created_at is not None
        assert feed.updated_at is not None

        stored = db.get_feed(feed.id)
        assert stored.title == "Example"
        assert stored.type == "rss"
        assert stored.created_at.tzinfo is not None

    def test_list_feeds_newest_first(self, db: Database):
        """Test that feeds are listed by creation time, newest first."""
        for day, title in ((1, "Old"), (3, "New"), (2, "Middle")):
            db.add_feed(
                Feed(
                    id=None,
                    user_id="user-1",
                    url=f"https://example.com/{title}",
                    title=title,
                    created_at=datetime(2024, 1, day, tzinfo=timezone.utc),
                )
            )

        titles = [feed.title for feed in db.list_feeds("user-1")]
        assert titles == ["New", "Middle", "Old"]

    def test_list_feeds_only_for_user(self, db: Database, feed: Feed):
        db.add_feed(Feed(id=None, user_id="user-2", url="https://other.com/feed", title="Other"))

        assert [f.id for f in db.list_feeds("user-1")] == [feed.id]

    def test_soft_delete_hides_feed(self, db: Database, feed: Feed):
        """Test that soft-deleted feeds are excluded from listings."""
        assert db.soft_delete_feed(feed.id, "user-1") is True

        assert db.list_feeds("user-1") == []
        assert len(db.list_feeds("user-1", include_deleted=True)) == 1
        assert db.get_feed(feed.id).is_deleted
        assert db.get_feed_by_url("user-1", feed.url) is None

    def test_soft_delete_twice_returns_false(self, db: Database, feed: Feed):
        db.soft_delete_feed(feed.id, "user-1")

        assert db.soft_delete_feed(feed.id, "user-1") is False

    def test_soft_delete_other_user_returns_false(self, db: Database, feed: Feed):
        assert db.soft_delete_feed(feed.id, "user-2") is False
        assert not db.get_feed(feed.id).is_deleted

    def test_get_feed_by_url(self, db: Database, feed: Feed):
        assert db.get_feed_by_url("user-1", feed.url).id == feed.id
        assert db.get_feed_by_url("user-2", feed.url) is None

    def test_update_feed(self, db: Database, feed: Feed):
        feed.title = "Renamed"
        feed.icon = "https://example.com/icon.png"
        db.update_feed(feed)

        stored = db.get_feed(feed.id)
        assert stored.title == "Renamed"
        assert stored.icon == "https://example.com/icon.png"

    def test_update_feed_last_fetched(self, db: Database, feed: Feed):
        when = datetime(2024, 2, 1, tzinfo=timezone.utc)

        db.update_feed_last_fetched(feed.id, when)

        assert db.get_feed(feed.id).last_fetched == when


class TestItems:
    """Tests for item operations."""

    def test_add_rss_item(self, db: Database, feed: Feed):
        item = db.add_item(_rss_item(feed.id, "a", 1, author="Jane"))

        stored = db.get_item_by_identity("rss", feed.id, "a")
        assert stored.id == item.id
        assert stored.item_type == "rss"
        assert stored.author == "Jane"
        assert stored.url == "https://example.com/a"

    def test_add_youtube_item(self, db: Database, feed: Feed):
        item = db.add_item(
            FeedItem(
                id=None,
                feed_id=feed.id,
                item_type="youtube",
                title="Video",
                url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                video_id="dQw4w9WgXcQ",
                author="Channel",
            )
        )

        stored = db.get_item_by_identity("youtube", feed.id, "dQw4w9WgXcQ")
        assert stored.id == item.id
        assert stored.item_type == "youtube"
        assert stored.author == "Channel"
        assert db.get_item_by_identity("rss", feed.id, "dQw4w9WgXcQ") is None

    def test_duplicate_identity_rejected(self, db: Database, feed: Feed):
        db.add_item(_rss_item(feed.id, "a", 1))

        with pytest.raises(sqlite3.IntegrityError):
            db.add_item(_rss_item(feed.id, "a", 2))

    def test_update_item_metadata(self, db: Database, feed: Feed):
        item = db.add_item(_rss_item(feed.id, "a", 1))
        item.title = "Updated"
        item.thumbnail = "https://example.com/a.png"

        db.update_item_metadata(item)

        stored = db.get_item_by_identity("rss", feed.id, "a")
        assert stored.title == "Updated"
        assert stored.thumbnail == "https://example.com/a.png"

    def test_list_items_newest_first(self, db: Database, feed: Feed):
        for guid, day in (("a", 1), ("c", 3), ("b", 2)):
            db.add_item(_rss_item(feed.id, guid, day))

        assert [item.guid for item in db.list_items("rss", [feed.id])] == ["c", "b", "a"]

    def test_list_items_limit_offset(self, db: Database, feed: Feed):
        for guid, day in (("a", 1), ("b", 2), ("c", 3)):
            db.add_item(_rss_item(feed.id, guid, day))

        items = db.list_items("rss", [feed.id], limit=1, offset=1)

        assert [item.guid for item in items] == ["b"]

    def test_list_items_since(self, db: Database, feed: Feed):
        for guid, day in (("a", 1), ("b", 2), ("c", 3)):
            db.add_item(_rss_item(feed.id, guid, day))

        items = db.list_items("rss", [feed.id], since=datetime(2024, 1, 2, tzinfo=timezone.utc))

        assert [item.guid for item in items] == ["c"]

    def test_list_items_without_feeds(self, db: Database):
        assert db.list_items("rss", []) == []
        assert db.count_items("rss", []) == 0

    def test_count_items(self, db: Database, feed: Feed):
        db.add_item(_rss_item(feed.id, "a", 1))
        db.add_item(_rss_item(feed.id, "b", 2))

        assert db.count_items("rss", [feed.id]) == 2
        assert db.count_items("youtube", [feed.id]) == 0

    def test_get_items_by_ids(self, db: Database, feed: Feed):
        a = db.add_item(_rss_item(feed.id, "a", 1))
        b = db.add_item(_rss_item(feed.id, "b", 2))
        db.add_item(_rss_item(feed.id, "c", 3))

        items = db.get_items_by_ids("rss", [a.id, b.id])

        assert [item.id for item in items] == [b.id, a.id]

    def test_delete_items_before_keeps_protected(self, db: Database, feed: Feed):
        old = db.add_item(_rss_item(feed.id, "old", 1))
        kept = db.add_item(_rss_item(feed.id, "kept", 2))
        recent = db.add_item(_rss_item(feed.id, "recent", 20))

        deleted = db.delete_items_before(
            "rss",
            [feed.id],
            datetime(2024, 1, 10, tzinfo=timezone.utc),
            keep_ids=[kept.id],
        )

        assert deleted == 1
        remaining = {item.id for item in db.list_items("rss", [feed.id])}
        assert remaining == {kept.id, recent.id}
        assert old.id not in remaining


class TestInteractions:
    """Tests for interaction operations."""

    def test_upsert_creates_row(self, db: Database):
        interaction = db.upsert_interaction("user-1", "item-1", "rss", {"is_read": True})

        assert interaction.is_read is True
        assert interaction.is_favorite is False

        stored = db.get_interaction("user-1", "item-1", "rss")
        assert stored.is_read is True
        assert stored.read_progress == 0
        assert stored.created_at is not None

    def test_upsert_updates_only_given_flags(self, db: Database):
        db.upsert_interaction("user-1", "item-1", "rss", {"is_read": True})
        db.upsert_interaction("user-1", "item-1", "rss", {"is_favorite": True})

        stored = db.get_interaction("user-1", "item-1", "rss")
        assert stored.is_read is True
        assert stored.is_favorite is True

        count = db._get_conn().execute("SELECT COUNT(*) FROM user_interactions").fetchone()[0]
        assert count == 1

    def test_upsert_rejects_unknown_field(self, db: Database):
        with pytest.raises(ValueError):
            db.upsert_interaction("user-1", "item-1", "rss", {"title": "x"})

    def test_get_interactions_for_user(self, db: Database):
        db.upsert_interaction("user-1", "item-1", "rss", {"is_read": True})
        db.upsert_interaction("user-2", "item-1", "rss", {"is_read": True})
        db.upsert_interaction("user-1", "item-2", "youtube", {"is_favorite": True})

        rows = db.get_interactions("user-1", ["item-1", "item-2", "item-3"])

        assert {(row.item_id, row.item_type) for row in rows} == {("item-1", "rss"), ("item-2", "youtube")}

    def test_list_interactions_with_flag(self, db: Database):
        db.upsert_interaction("user-1", "item-1", "rss", {"is_favorite": True})
        db.upsert_interaction("user-1", "item-2", "rss", {"is_read": True})

        rows = db.list_interactions_with_flag("user-1", "is_favorite")

        assert [row.item_id for row in rows] == ["item-1"]

    def test_list_interactions_with_unknown_flag(self, db: Database):
        with pytest.raises(ValueError):
            db.list_interactions_with_flag("user-1", "read_progress")

    def test_flags_flip_back_without_deleting_row(self, db: Database):
        db.upsert_interaction("user-1", "item-1", "rss", {"is_favorite": True})
        db.upsert_interaction("user-1", "item-1", "rss", {"is_favorite": False})

        stored = db.get_interaction("user-1", "item-1", "rss")
        assert stored is not None
        assert stored.is_favorite is False


def test_timestamps_round_trip_as_utc(db: Database, feed: Feed):
    """Naive datetimes are stored and read back as UTC."""
    db.add_item(_rss_item(feed.id, "a", 1, created_at=datetime(2024, 1, 1) + timedelta(hours=3)))

    stored = db.get_item_by_identity("rss", feed.id, "a")
    assert stored.created_at == datetime(2024, 1, 1, 3, tzinfo=timezone.utc)
