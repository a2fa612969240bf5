"""Tests for FeedRepository."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from feedtune.db import Database
from feedtune.models import Feed, FeedItem, ItemQuery, utcnow
from feedtune.repository import FeedRepository

USER = "user-1"
YT_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id=UC_x5XG1OV2P6uZZ5FSM9Ttw"


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        database = Database(db_path)
        yield database
        database.close()


@pytest.fixture
def repo(db: Database) -> FeedRepository:
    return FeedRepository(db)


@pytest.fixture
def rss_feed(repo: FeedRepository) -> Feed:
    return repo.add_feed(
        Feed(
            id=None,
            user_id=USER,
            url="https://example.com/feed.xml",
            title="Tech Blog",
            icon="https://example.com/icon.png",
        )
    )


@pytest.fixture
def youtube_feed(repo: FeedRepository) -> Feed:
    return repo.add_feed(Feed(id=None, user_id=USER, url=YT_FEED_URL, type="youtube", title="Dev Channel"))


def _at(day: int) -> datetime:
    return datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=day)


def _add_rss(repo: FeedRepository, feed: Feed, guid: str, day: int) -> FeedItem:
    item, _ = repo.upsert_rss_item(
        FeedItem(
            id=None,
            feed_id=feed.id,
            item_type="rss",
            title=f"Post {guid}",
            url=f"https://example.com/{guid}",
            guid=guid,
            published_at=_at(day),
        )
    )
    return item


def _add_video(repo: FeedRepository, feed: Feed, video_id: str, day: int) -> FeedItem:
    item, _ = repo.upsert_youtube_item(
        FeedItem(
            id=None,
            feed_id=feed.id,
            item_type="youtube",
            title=f"Video {video_id}",
            video_id=video_id,
            published_at=_at(day),
        )
    )
    return item


@pytest.fixture
def populated(repo: FeedRepository, rss_feed: Feed, youtube_feed: Feed) -> dict[str, FeedItem]:
    """Five RSS items on even days and five videos on odd days."""
    items = {}
    for i in range(5):
        items[f"r{i}"] = _add_rss(repo, rss_feed, f"r{i}", i * 2)
        items[f"y{i}"] = _add_video(repo, youtube_feed, f"video{i:06d}", i * 2 + 1)
    return items


class TestUpsertItems:
    """Tests for insert-vs-update by identity."""

    def test_insert_then_update(self, repo: FeedRepository, rss_feed: Feed):
        first, created = repo.upsert_rss_item(
            FeedItem(id=None, feed_id=rss_feed.id, item_type="rss", title="Old", guid="g1", url="https://e.com/1")
        )
        second, created_again = repo.upsert_rss_item(
            FeedItem(id=None, feed_id=rss_feed.id, item_type="rss", title="New", guid="g1", url="https://e.com/1")
        )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert repo.db.count_items("rss", [rss_feed.id]) == 1
        assert repo.get_item(first.id).title == "New"

    def test_rss_guid_defaults_to_url(self, repo: FeedRepository, rss_feed: Feed):
        item, _ = repo.upsert_rss_item(
            FeedItem(id=None, feed_id=rss_feed.id, item_type="rss", title="Post", url="https://e.com/post")
        )

        assert item.guid == "https://e.com/post"

    def test_youtube_item_needs_video_id(self, repo: FeedRepository, youtube_feed: Feed):
        with pytest.raises(ValueError):
            repo.upsert_youtube_item(FeedItem(id=None, feed_id=youtube_feed.id, item_type="youtube", title="x"))

    def test_same_video_in_two_feeds(self, repo: FeedRepository, youtube_feed: Feed, rss_feed: Feed):
        a = _add_video(repo, youtube_feed, "dQw4w9WgXcQ", 1)
        b = _add_video(repo, rss_feed, "dQw4w9WgXcQ", 1)

        assert a.id != b.id


class TestGetFeedItems:
    """Tests for get_feed_items."""

    def test_merged_newest_first_with_limit(self, repo, rss_feed, youtube_feed, populated):
        items = repo.get_feed_items([rss_feed.id, youtube_feed.id], limit=4)

        assert [item.id for item in items] == [
            populated["y4"].id,
            populated["r4"].id,
            populated["y3"].id,
            populated["r3"].id,
        ]
        assert {item.item_type for item in items} == {"rss", "youtube"}

    def test_since(self, repo, rss_feed, youtube_feed, populated):
        items = repo.get_feed_items([rss_feed.id, youtube_feed.id], limit=10, since=_at(7))

        assert [item.id for item in items] == [populated["y4"].id, populated["r4"].id]

    def test_youtube_items_get_watch_url(self, repo, youtube_feed, populated):
        items = repo.get_feed_items([youtube_feed.id], limit=1)

        assert items[0].url == "https://www.youtube.com/watch?v=video000004"

    def test_overlay_when_user_given(self, repo, rss_feed, populated):
        repo.update_item_interaction(USER, populated["r4"].id, "rss", {"is_read": True})

        items = repo.get_feed_items([rss_feed.id], limit=2, user_id=USER)

        assert items[0].is_read is True
        assert items[1].is_read is False

    def test_no_feeds(self, repo):
        assert repo.get_feed_items([]) == []


class TestOverlayInteractions:
    """Tests for overlay_interactions."""

    def test_missing_rows_default_to_unseen(self, repo, populated):
        items = repo.overlay_interactions(USER, [populated["r0"], populated["y0"]])

        for item in items:
            assert (item.is_read, item.is_favorite, item.is_read_later, item.read_progress) == (False, False, False, 0)

    def test_flags_from_current_user_only(self, repo, populated):
        repo.update_item_interaction("user-2", populated["r0"].id, "rss", {"is_favorite": True})
        repo.update_item_interaction(USER, populated["r0"].id, "rss", {"is_read": True, "read_progress": 40})

        item = repo.overlay_interactions(USER, [populated["r0"]])[0]

        assert item.is_read is True
        assert item.is_favorite is False
        assert item.read_progress == 40

    def test_overlay_stale_flags_reset(self, repo, populated):
        """Flags already on an item are replaced by the stored ones."""
        stale = populated["r0"]
        stale.is_favorite = True

        assert repo.overlay_interactions(USER, [stale])[0].is_favorite is False


class TestPaginatedFeedItems:
    """Tests for get_paginated_feed_items."""

    def test_first_page(self, repo, populated):
        page = repo.get_paginated_feed_items(USER, page=1, page_size=4)

        assert page.total == 10
        assert page.has_more is True
        assert [item.id for item in page.items] == [
            populated["y4"].id,
            populated["r4"].id,
            populated["y3"].id,
            populated["r3"].id,
        ]

    def test_pages_cover_everything_once(self, repo, populated):
        seen = []
        page_number = 1
        while True:
            page = repo.get_paginated_feed_items(USER, page=page_number, page_size=3)
            seen.extend(item.id for item in page.items)
            if not page.has_more:
                break
            page_number += 1

        assert page_number == 4
        assert len(seen) == 10
        assert set(seen) == {item.id for item in populated.values()}

    def test_last_page_has_no_more(self, repo, populated):
        page = repo.get_paginated_feed_items(USER, page=2, page_size=5)

        assert page.has_more is False
        assert len(page.items) == 5

    def test_items_decorated_with_feed(self, repo, rss_feed, populated):
        page = repo.get_paginated_feed_items(USER, page=1, page_size=10)
        by_id = {item.id: item for item in page.items}

        rss_item = by_id[populated["r0"].id]
        assert rss_item.feed_title == "Tech Blog"
        assert rss_item.feed_type == "rss"
        assert rss_item.site_favicon == "https://example.com/icon.png"
        assert by_id[populated["y0"].id].feed_type == "youtube"

    def test_selected_feed(self, repo, youtube_feed, populated):
        page = repo.get_paginated_feed_items(USER, 1, 10, ItemQuery(selected_feed_id=youtube_feed.id))

        assert page.total == 5
        assert {item.item_type for item in page.items} == {"youtube"}

    def test_unknown_selected_feed_is_empty(self, repo, populated):
        page = repo.get_paginated_feed_items(USER, 1, 10, ItemQuery(selected_feed_id="missing"))

        assert page.items == []
        assert page.total == 0
        assert page.has_more is False

    def test_feed_type(self, repo, populated):
        page = repo.get_paginated_feed_items(USER, 1, 10, ItemQuery(feed_type="rss"))

        assert page.total == 5
        assert {item.feed_type for item in page.items} == {"rss"}

    def test_legacy_rss_row_of_youtube_feed(self, repo, populated):
        """A YouTube feed stored as type rss is still filtered as youtube."""
        legacy = repo.add_feed(Feed(id=None, user_id=USER, url=YT_FEED_URL + "x", type="rss", title="Legacy"))
        _add_video(repo, legacy, "legacy00001", 20)

        page = repo.get_paginated_feed_items(USER, 1, 20, ItemQuery(feed_type="youtube"))

        assert page.total == 6
        assert page.items[0].feed_title == "Legacy"
        assert page.items[0].feed_type == "youtube"

    def test_feed_name(self, repo, populated):
        page = repo.get_paginated_feed_items(USER, 1, 10, ItemQuery(feed_name="TECH"))

        assert page.total == 5
        assert {item.feed_title for item in page.items} == {"Tech Blog"}

    def test_deleted_feeds_excluded(self, repo, rss_feed, populated):
        repo.soft_delete_feed(rss_feed.id, USER)

        page = repo.get_paginated_feed_items(USER, 1, 10)

        assert page.total == 5

    def test_other_user_sees_nothing(self, repo, populated):
        page = repo.get_paginated_feed_items("user-2", 1, 10)

        assert page.items == []
        assert page.has_more is False

    def test_invalid_page(self, repo):
        with pytest.raises(ValueError):
            repo.get_paginated_feed_items(USER, page=0, page_size=10)


class TestFlaggedItems:
    """Tests for favorites and read later."""

    def test_favorites(self, repo, populated):
        repo.update_item_interaction(USER, populated["r1"].id, "rss", {"is_favorite": True})
        repo.update_item_interaction(USER, populated["y3"].id, "youtube", {"is_favorite": True})
        repo.update_item_interaction(USER, populated["r2"].id, "rss", {"is_read_later": True})

        favorites = repo.get_favorite_items(USER)

        assert [item.id for item in favorites] == [populated["y3"].id, populated["r1"].id]
        assert all(item.is_favorite for item in favorites)
        assert favorites[0].feed_title == "Dev Channel"

    def test_read_later(self, repo, populated):
        repo.update_item_interaction(USER, populated["r2"].id, "rss", {"is_read_later": True})

        assert [item.id for item in repo.get_read_later_items(USER)] == [populated["r2"].id]

    def test_unflagged_item_leaves_favorites(self, repo, populated):
        repo.update_item_interaction(USER, populated["r1"].id, "rss", {"is_favorite": True})
        repo.update_item_interaction(USER, populated["r1"].id, "rss", {"is_favorite": False})

        assert repo.get_favorite_items(USER) == []

    def test_favorites_survive_feed_removal(self, repo, rss_feed, populated):
        repo.update_item_interaction(USER, populated["r1"].id, "rss", {"is_favorite": True})
        repo.soft_delete_feed(rss_feed.id, USER)

        favorites = repo.get_favorite_items(USER)

        assert [item.id for item in favorites] == [populated["r1"].id]
        assert favorites[0].feed_title == "Tech Blog"

    def test_unknown_item_type(self, repo):
        with pytest.raises(ValueError):
            repo.update_item_interaction(USER, "x", "podcast", {"is_read": True})


class TestCleanUpOldItems:
    """Tests for clean_up_old_items."""

    def test_deletes_old_items_except_protected(self, repo, rss_feed, youtube_feed):
        old_rss = _add_rss(repo, rss_feed, "old", 0)
        favorite = _add_rss(repo, rss_feed, "favorite", 0)
        later = _add_video(repo, youtube_feed, "later000001", 0)
        old_video = _add_video(repo, youtube_feed, "oldvideo001", 0)
        fresh, _ = repo.upsert_rss_item(
            FeedItem(
                id=None,
                feed_id=rss_feed.id,
                item_type="rss",
                title="Fresh",
                guid="fresh",
                published_at=utcnow(),
            )
        )
        repo.update_item_interaction(USER, favorite.id, "rss", {"is_favorite": True})
        repo.update_item_interaction(USER, later.id, "youtube", {"is_read_later": True})

        deleted = repo.clean_up_old_items(USER, older_than_days=30)

        assert deleted == {"rss": 1, "youtube": 1}
        assert repo.get_item(old_rss.id) is None
        assert repo.get_item(old_video.id) is None
        assert repo.get_item(favorite.id) is not None
        assert repo.get_item(later.id) is not None
        assert repo.get_item(fresh.id) is not None

    def test_can_delete_favorites(self, repo, rss_feed):
        favorite = _add_rss(repo, rss_feed, "favorite", 0)
        repo.update_item_interaction(USER, favorite.id, "rss", {"is_favorite": True})

        deleted = repo.clean_up_old_items(USER, older_than_days=30, keep_favorites=False)

        assert deleted["rss"] == 1
