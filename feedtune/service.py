"""Feed backend interface used by the pagination and mutation layers."""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

import requests

from .controllers import AddFeedResult, RemoteError, add_feed, remove_feed
from .models import Feed, FeedItem, Interaction, ItemPage, ItemQuery
from .repository import FeedRepository
from .sync import SYNC_MAX_ITEMS, SyncResult, sync_all_feeds
from .youtube import YouTubeResolver

logger = logging.getLogger(__name__)


class FeedBackend(Protocol):
    """Operations the client layer needs from the backing store.

    Implementations raise RemoteError when the store cannot be reached.
    """

    def get_feeds(self, user_id: str) -> list[Feed]:
        raise NotImplementedError

    def get_paginated_feed_items(self, user_id: str, page: int, page_size: int, query: ItemQuery) -> ItemPage:
        raise NotImplementedError

    def get_favorite_items(self, user_id: str) -> list[FeedItem]:
        raise NotImplementedError

    def get_read_later_items(self, user_id: str) -> list[FeedItem]:
        raise NotImplementedError

    def update_interaction(self, user_id: str, item_id: str, item_type: str, updates: dict) -> Interaction:
        raise NotImplementedError

    def add_feed(self, user_id: str, url: str, feed_type: str = "rss", title: Optional[str] = None) -> AddFeedResult:
        raise NotImplementedError

    def remove_feed(self, user_id: str, feed_id: str) -> Feed:
        raise NotImplementedError

    def sync_feeds(self, user_id: str) -> list[SyncResult]:
        raise NotImplementedError


@contextmanager
def _remote(action: str) -> Iterator[None]:
    try:
        yield
    except (sqlite3.Error, requests.RequestException) as e:
        logger.error("%s failed: %s", action, e)
        raise RemoteError(f"{action} failed: {e}", cause=e) from e


class FeedService:
    """FeedBackend backed by a FeedRepository.

    Args:
        repo: FeedRepository instance
        resolver: YouTubeResolver used when adding YouTube feeds
        timeout: Request timeout in seconds for feed fetches
        sync_max_items: Maximum entries taken from a feed per sync
    """

    def __init__(
        self,
        repo: FeedRepository,
        resolver: Optional[YouTubeResolver] = None,
        timeout: float = 30,
        sync_max_items: int = SYNC_MAX_ITEMS,
    ):
        self.repo = repo
        self.resolver = resolver or YouTubeResolver(timeout=timeout)
        self.timeout = timeout
        self.sync_max_items = sync_max_items

    def get_feeds(self, user_id: str) -> list[Feed]:
        with _remote("Loading feeds"):
            return self.repo.get_feeds(user_id)

    def get_paginated_feed_items(self, user_id: str, page: int, page_size: int, query: ItemQuery) -> ItemPage:
        with _remote("Loading items"):
            return self.repo.get_paginated_feed_items(user_id, page, page_size, query)

    def get_favorite_items(self, user_id: str) -> list[FeedItem]:
        with _remote("Loading favorites"):
            return self.repo.get_favorite_items(user_id)

    def get_read_later_items(self, user_id: str) -> list[FeedItem]:
        with _remote("Loading read later items"):
            return self.repo.get_read_later_items(user_id)

    def update_interaction(self, user_id: str, item_id: str, item_type: str, updates: dict) -> Interaction:
        with _remote("Updating item"):
            return self.repo.update_item_interaction(user_id, item_id, item_type, updates)

    def add_feed(self, user_id: str, url: str, feed_type: str = "rss", title: Optional[str] = None) -> AddFeedResult:
        with _remote("Adding feed"):
            return add_feed(
                self.repo,
                user_id,
                url,
                feed_type=feed_type,
                title=title,
                resolver=self.resolver,
                timeout=self.timeout,
            )

    def remove_feed(self, user_id: str, feed_id: str) -> Feed:
        with _remote("Removing feed"):
            return remove_feed(self.repo, user_id, feed_id)

    def sync_feeds(self, user_id: str) -> list[SyncResult]:
        with _remote("Syncing feeds"):
            return sync_all_feeds(self.repo, user_id, max_items=self.sync_max_items, timeout=self.timeout)
