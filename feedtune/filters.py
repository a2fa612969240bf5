"""Item merging, filtering and sorting for the feed screen."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from .cache import TtlCache
from .config import FILTERS_TTL_SECONDS
from .models import FeedItem, FilterState
from .youtube import create_video_url

logger = logging.getLogger(__name__)

FILTERS_CACHE_KEY = "feedtune-feed-filters"


def _timestamp(item: FeedItem) -> float:
    moment: Optional[datetime] = item.sort_time
    return moment.timestamp() if moment else 0.0


def merge_items(rss_items: Iterable[FeedItem], youtube_items: Iterable[FeedItem]) -> list[FeedItem]:
    """Combine RSS and YouTube items into one newest-first sequence.

    Each item is tagged with its item_type. Items with equal timestamps keep
    their source order, RSS items ahead of YouTube items. Nothing is dropped.
    """
    combined = [replace(item, item_type="rss") for item in rss_items]
    for item in youtube_items:
        url = item.url or create_video_url(item.video_id)
        combined.append(replace(item, item_type="youtube", url=url))
    return sorted(combined, key=_timestamp, reverse=True)


def sort_items(items: Iterable[FeedItem], sort_by: str = "newest") -> list[FeedItem]:
    """Stable sort by one of newest, oldest, unread, favorites."""
    items = list(items)
    if sort_by == "newest":
        return sorted(items, key=_timestamp, reverse=True)
    if sort_by == "oldest":
        return sorted(items, key=_timestamp)
    if sort_by == "unread":
        return sorted(items, key=lambda item: (item.is_read, -_timestamp(item)))
    if sort_by == "favorites":
        return sorted(items, key=lambda item: (not item.is_favorite, -_timestamp(item)))
    raise ValueError(f"Unknown sort option: {sort_by}")


def apply_filters(items: Iterable[FeedItem], filters: Optional[FilterState]) -> list[FeedItem]:
    """Apply feed type, read status and feed name filters, then sort.

    Args:
        items: Items to filter; not modified
        filters: Active filter state; None means defaults

    Returns:
        New list of matching items in the requested order
    """
    filters = filters or FilterState()
    if filters.is_empty_selection:
        return []

    result = list(items)

    if filters.feed_type != "all":
        result = [item for item in result if (item.feed_type or item.item_type) == filters.feed_type]

    if filters.read_status == "read":
        result = [item for item in result if item.is_read]
    elif filters.read_status == "unread":
        result = [item for item in result if not item.is_read]

    if filters.feed_name:
        needle = filters.feed_name.lower()
        result = [item for item in result if needle in (item.feed_title or "").lower()]

    return sort_items(result, filters.sort_by)


class FilterStore:
    """Persists the feed screen filters for a day."""

    def __init__(self, cache: TtlCache, ttl: float = FILTERS_TTL_SECONDS):
        self.cache = cache
        self.ttl = ttl

    def load(self) -> FilterState:
        data = self.cache.get(FILTERS_CACHE_KEY)
        if not data:
            return FilterState()
        try:
            return FilterState.from_dict(data)
        except ValueError as e:
            logger.warning("Ignoring stored filters: %s", e)
            self.cache.remove(FILTERS_CACHE_KEY)
            return FilterState()

    def save(self, filters: FilterState) -> None:
        self.cache.set(FILTERS_CACHE_KEY, filters.to_dict(), ttl=self.ttl)

    def reset(self) -> FilterState:
        self.cache.remove(FILTERS_CACHE_KEY)
        return FilterState()
