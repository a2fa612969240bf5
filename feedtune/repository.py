"""Item access for FeedTune: fetchers, merging, interaction overlay and paging."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .db import ITEM_TABLES, Database
from .filters import merge_items
from .models import ITEM_TYPES, Feed, FeedItem, Interaction, ItemPage, ItemQuery, utcnow
from .youtube import effective_feed_type

logger = logging.getLogger(__name__)


class FeedRepository:
    """Reads and writes feeds, items and interactions through a Database.

    Args:
        db: Database instance
    """

    def __init__(self, db: Database):
        self.db = db

    # Feeds

    def get_feeds(self, user_id: str) -> list[Feed]:
        return self.db.list_feeds(user_id)

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        return self.db.get_feed(feed_id)

    def get_feed_by_url(self, user_id: str, url: str) -> Optional[Feed]:
        return self.db.get_feed_by_url(user_id, url)

    def add_feed(self, feed: Feed) -> Feed:
        return self.db.add_feed(feed)

    def update_feed(self, feed: Feed) -> None:
        self.db.update_feed(feed)

    def mark_feed_fetched(self, feed_id: str, when: Optional[datetime] = None) -> None:
        self.db.update_feed_last_fetched(feed_id, when or utcnow())

    def soft_delete_feed(self, feed_id: str, user_id: str) -> bool:
        return self.db.soft_delete_feed(feed_id, user_id)

    # Items

    def fetch_rss_items(
        self,
        feed_ids: list[str],
        limit: Optional[int],
        since: Optional[datetime] = None,
        offset: int = 0,
    ) -> list[FeedItem]:
        return self.db.list_items("rss", feed_ids, limit=limit, offset=offset, since=since)

    def fetch_youtube_items(
        self,
        feed_ids: list[str],
        limit: Optional[int],
        since: Optional[datetime] = None,
        offset: int = 0,
    ) -> list[FeedItem]:
        return self.db.list_items("youtube", feed_ids, limit=limit, offset=offset, since=since)

    def get_item(self, item_id: str) -> Optional[FeedItem]:
        """Find an item by id in either item table."""
        for item_type in ITEM_TYPES:
            items = self.db.get_items_by_ids(item_type, [item_id])
            if items:
                return items[0]
        return None

    def get_feed_items(
        self,
        feed_ids: list[str],
        limit: int = 10,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> list[FeedItem]:
        """Get the newest items of the given feeds, both kinds merged.

        Args:
            feed_ids: Feeds whose items to return
            limit: Maximum number of merged items
            since: If provided, only items newer than this
            user_id: If provided, overlay this user's interaction flags

        Returns:
            Merged list of FeedItem objects, newest first
        """
        if not feed_ids:
            return []
        rss_items = self.fetch_rss_items(feed_ids, limit, since=since)
        youtube_items = self.fetch_youtube_items(feed_ids, limit, since=since)
        items = merge_items(rss_items, youtube_items)[:limit]
        if user_id:
            items = self.overlay_interactions(user_id, items)
        return items

    def overlay_interactions(self, user_id: str, items: Iterable[FeedItem]) -> list[FeedItem]:
        """Attach the user's flags to items; items without a row read as unseen."""
        items = list(items)
        rows = self.db.get_interactions(user_id, [item.id for item in items])
        by_key = {(row.item_id, row.item_type): row for row in rows}

        result = []
        for item in items:
            row = by_key.get((item.id, item.item_type))
            result.append(
                replace(
                    item,
                    is_read=row.is_read if row else False,
                    is_favorite=row.is_favorite if row else False,
                    is_read_later=row.is_read_later if row else False,
                    read_progress=row.read_progress if row else 0,
                )
            )
        return result

    def get_paginated_feed_items(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 12,
        query: Optional[ItemQuery] = None,
    ) -> ItemPage:
        """Get one page of a user's merged items.

        Args:
            user_id: Owner of the feeds
            page: 1-based page number
            page_size: Items per page
            query: Feed selection and server-side narrowing

        Returns:
            ItemPage with decorated items, the total count and has_more
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        feeds = self._select_feeds(user_id, query or ItemQuery())
        if not feeds:
            return ItemPage(items=[], total=0, has_more=False)

        feed_ids = [feed.id for feed in feeds]
        window = page * page_size
        offset = (page - 1) * page_size

        rss_items = self.fetch_rss_items(feed_ids, window)
        youtube_items = self.fetch_youtube_items(feed_ids, window)
        items = merge_items(rss_items, youtube_items)[offset:window]

        total = self.db.count_items("rss", feed_ids) + self.db.count_items("youtube", feed_ids)
        items = self._decorate(items, {feed.id: feed for feed in feeds})
        items = self.overlay_interactions(user_id, items)

        logger.debug("Page %d of %d items for user %s: %d returned", page, total, user_id, len(items))
        return ItemPage(items=items, total=total, has_more=window < total)

    def _select_feeds(self, user_id: str, query: ItemQuery) -> list[Feed]:
        feeds = self.get_feeds(user_id)

        if query.selected_feed_id:
            return [feed for feed in feeds if feed.id == query.selected_feed_id]

        if query.feed_type in ("rss", "youtube"):
            feeds = [feed for feed in feeds if effective_feed_type(feed.type, feed.url) == query.feed_type]
        elif query.feed_type == "none":
            return []

        if query.feed_name:
            needle = query.feed_name.lower()
            feeds = [feed for feed in feeds if needle in (feed.title or "").lower()]

        return feeds

    def _decorate(self, items: Iterable[FeedItem], feeds_by_id: dict[str, Feed]) -> list[FeedItem]:
        result = []
        for item in items:
            feed = feeds_by_id.get(item.feed_id)
            if feed is None:
                result.append(item)
                continue
            result.append(
                replace(
                    item,
                    feed_title=feed.title,
                    feed_type=effective_feed_type(feed.type, feed.url),
                    site_favicon=feed.icon,
                )
            )
        return result

    def _items_with_flag(self, user_id: str, flag: str) -> list[FeedItem]:
        rows = self.db.list_interactions_with_flag(user_id, flag)
        rss_ids = [row.item_id for row in rows if row.item_type == "rss"]
        youtube_ids = [row.item_id for row in rows if row.item_type == "youtube"]

        items = merge_items(
            self.db.get_items_by_ids("rss", rss_ids),
            self.db.get_items_by_ids("youtube", youtube_ids),
        )
        feeds = {feed.id: feed for feed in self.db.list_feeds(user_id, include_deleted=True)}
        return self.overlay_interactions(user_id, self._decorate(items, feeds))

    def get_favorite_items(self, user_id: str) -> list[FeedItem]:
        return self._items_with_flag(user_id, "is_favorite")

    def get_read_later_items(self, user_id: str) -> list[FeedItem]:
        return self._items_with_flag(user_id, "is_read_later")

    def upsert_rss_item(self, item: FeedItem) -> tuple[FeedItem, bool]:
        """Insert an RSS item or refresh the stored one with the same guid.

        Returns:
            Tuple of (stored item, True if inserted)
        """
        return self._upsert_item(replace(item, item_type="rss"), item.guid or item.url)

    def upsert_youtube_item(self, item: FeedItem) -> tuple[FeedItem, bool]:
        """Insert a YouTube item or refresh the stored one with the same video id.

        Returns:
            Tuple of (stored item, True if inserted)
        """
        return self._upsert_item(replace(item, item_type="youtube"), item.video_id)

    def _upsert_item(self, item: FeedItem, key: Optional[str]) -> tuple[FeedItem, bool]:
        if not key:
            raise ValueError(f"{item.item_type} item '{item.title}' has no identity")
        if item.item_type == "rss":
            item.guid = key

        existing = self.db.get_item_by_identity(item.item_type, item.feed_id, key)
        if existing is None:
            item.id = None
            return self.db.add_item(item), True

        item.id = existing.id
        item.created_at = existing.created_at
        self.db.update_item_metadata(item)
        return item, False

    # Interactions

    def update_item_interaction(self, user_id: str, item_id: str, item_type: str, updates: dict) -> Interaction:
        """Create or update the user's interaction row for an item.

        Args:
            user_id: The user's id
            item_id: The item's id
            item_type: "rss" or "youtube"
            updates: Values for is_read, is_favorite, is_read_later, read_progress

        Returns:
            The stored Interaction

        Raises:
            ValueError: If item_type or a field name is unknown
        """
        if item_type not in ITEM_TYPES:
            raise ValueError(f"Unknown item type: {item_type}")
        return self.db.upsert_interaction(user_id, item_id, item_type, updates)

    # Maintenance

    def clean_up_old_items(
        self,
        user_id: str,
        older_than_days: int = 30,
        keep_favorites: bool = True,
        keep_read_later: bool = True,
    ) -> dict[str, int]:
        """Delete items of the user's feeds published before a cutoff.

        Returns:
            Mapping of item table kind ("rss", "youtube") to deleted count
        """
        feed_ids = [feed.id for feed in self.db.list_feeds(user_id, include_deleted=True)]
        cutoff = utcnow() - timedelta(days=older_than_days)

        keep: set[str] = set()
        if keep_favorites:
            keep.update(row.item_id for row in self.db.list_interactions_with_flag(user_id, "is_favorite"))
        if keep_read_later:
            keep.update(row.item_id for row in self.db.list_interactions_with_flag(user_id, "is_read_later"))

        deleted = {}
        for item_type in ITEM_TABLES:
            deleted[item_type] = self.db.delete_items_before(item_type, feed_ids, cutoff, keep)
        logger.info("Cleaned up items older than %s: %s", cutoff.date(), deleted)
        return deleted
