"""Paged loading of the feed screen's item list.

The controller accumulates pages of merged items for the current feed
selection and filters, keeps them in the query cache under
``("items", user_id)`` so optimistic toggles show up, and mirrors them into
the TTL cache for five minutes keyed by a filter signature. Switching
filters and back within that window reuses the cached pages.
"""

import base64
import json
import logging
from typing import Optional

from .cache import QueryCache, TtlCache
from .config import PAGINATION_TTL_SECONDS
from .controllers import RemoteError
from .filters import apply_filters
from .models import FeedItem, FilterState, ItemQuery, PaginationState
from .notify import LoggingNotifier, Notifier
from .service import FeedBackend

logger = logging.getLogger(__name__)

ITEMS_CACHE_PREFIX = "feed-pagination-items_"
STATE_CACHE_KEY = "feed-pagination-state"

IDLE = "idle"
LOADING_INITIAL = "loading_initial"
READY = "ready"
LOADING_MORE = "loading_more"
RESETTING = "resetting"


def filter_signature(
    selected_feed_id: Optional[str],
    active_filter: Optional[str],
    filters: FilterState,
) -> str:
    """Base64 of the compact JSON describing the current selection."""
    payload = {
        "selectedFeedId": selected_feed_id,
        "activeFilter": active_filter,
        "readStatus": filters.read_status,
        "feedType": filters.feed_type,
        "sortBy": filters.sort_by,
    }
    raw = json.dumps(payload, separators=(",", ":"))
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _dedupe(items: list[FeedItem], held: Optional[set[str]] = None) -> list[FeedItem]:
    seen = set(held or ())
    result = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    return result


class PaginationController:
    """State machine for the accumulated, paged item list.

    States move ``idle -> loading_initial -> ready``, ``ready <-> loading_more``
    and, on a selection change, ``ready -> resetting -> loading_initial``.

    Args:
        backend: FeedBackend serving item pages
        query_cache: Shared QueryCache holding the accumulated items
        ttl_cache: TtlCache for the five minute page cache
        user_id: Current user's id
        page_size: Items per page
        notifier: Receives load failures
    """

    def __init__(
        self,
        backend: FeedBackend,
        query_cache: QueryCache,
        ttl_cache: TtlCache,
        user_id: str,
        page_size: int = 12,
        notifier: Optional[Notifier] = None,
        ttl: float = PAGINATION_TTL_SECONDS,
    ):
        self.backend = backend
        self.query_cache = query_cache
        self.ttl_cache = ttl_cache
        self.user_id = user_id
        self.page_size = page_size
        self.notifier = notifier or LoggingNotifier()
        self.ttl = ttl

        self.state = IDLE
        self.selected_feed_id: Optional[str] = None
        self.active_filter: Optional[str] = None
        self.filters = FilterState()
        self.pagination = PaginationState(page_size=page_size)

    @property
    def items_key(self) -> tuple:
        return ("items", self.user_id)

    @property
    def signature(self) -> str:
        return filter_signature(self.selected_feed_id, self.active_filter, self.filters)

    @property
    def cache_key(self) -> str:
        return f"{ITEMS_CACHE_PREFIX}{self.user_id}_{self.signature}"

    @property
    def items(self) -> list[FeedItem]:
        """Accumulated items as currently held in the query cache."""
        return list(self.query_cache.get_data(self.items_key) or [])

    @property
    def visible_items(self) -> list[FeedItem]:
        return apply_filters(self.items, self.filters)

    @property
    def is_loading(self) -> bool:
        return self.state in (LOADING_INITIAL, LOADING_MORE)

    def _query(self) -> ItemQuery:
        # feed_name stays client side; it is not part of the page signature
        feed_type = self.filters.feed_type
        if feed_type == "all" and self.active_filter in ("rss", "youtube"):
            feed_type = self.active_filter
        return ItemQuery(selected_feed_id=self.selected_feed_id, feed_type=feed_type)

    def select(
        self,
        selected_feed_id: Optional[str] = None,
        active_filter: Optional[str] = None,
        filters: Optional[FilterState] = None,
    ) -> bool:
        """Change the feed selection and filters.

        Returns:
            True if the signature changed and the list was reloaded
        """
        filters = filters or FilterState()
        new_signature = filter_signature(selected_feed_id, active_filter, filters)
        changed = new_signature != self.signature

        self.selected_feed_id = selected_feed_id
        self.active_filter = active_filter
        self.filters = filters

        if not changed and self.state != IDLE:
            return False

        self.reset()
        return True

    def reset(self) -> bool:
        """Drop the accumulated pages and load page 1 again."""
        self.state = RESETTING
        self.pagination = PaginationState(page_size=self.page_size)
        self.query_cache.set_data(self.items_key, [])
        return self.load_initial_items()

    def load_initial_items(self) -> bool:
        """Load page 1 for the current signature, from cache when fresh.

        Returns:
            True if items were loaded, False on failure or while loading
        """
        if self.is_loading:
            return False
        self.state = LOADING_INITIAL

        cached = self.ttl_cache.get(self.cache_key)
        if cached:
            items = [FeedItem.from_dict(data) for data in cached["items"]]
            self.pagination = PaginationState.from_dict(cached["pagination"])
            self.query_cache.set_data(self.items_key, items)
            self.state = READY
            logger.debug("Reused %d cached items for %s", len(items), self.cache_key)
            return True

        try:
            page = self.backend.get_paginated_feed_items(self.user_id, 1, self.page_size, self._query())
        except RemoteError as e:
            logger.error("Loading items failed: %s", e)
            self.notifier.error(f"Could not load items: {e}")
            # Page 1 never arrived; only reset() may retry
            self.pagination.has_more = False
            self.state = READY
            return False

        self.query_cache.set_data(self.items_key, _dedupe(page.items))
        self.pagination = PaginationState(
            page=1,
            page_size=self.page_size,
            total=page.total,
            has_more=page.has_more,
        )
        self.store()
        self.state = READY
        return True

    def load_more_items(self) -> bool:
        """Append the next page.

        Returns:
            True if the accumulated list grew
        """
        if self.state != READY or not self.pagination.has_more:
            return False
        self.state = LOADING_MORE

        next_page = self.pagination.page + 1
        try:
            page = self.backend.get_paginated_feed_items(self.user_id, next_page, self.page_size, self._query())
        except RemoteError as e:
            logger.error("Loading page %d failed: %s", next_page, e)
            self.notifier.error(f"Could not load more items: {e}")
            self.state = READY
            return False

        current = self.items
        new_items = _dedupe(page.items, {item.id for item in current})

        if not new_items:
            # Only already-seen items came back
            self.pagination.has_more = False
            self.store()
            self.state = READY
            return False

        self.query_cache.set_data(self.items_key, current + new_items)
        self.pagination = PaginationState(
            page=next_page,
            page_size=self.page_size,
            total=page.total,
            has_more=page.has_more,
        )
        self.store()
        self.state = READY
        return True

    def store(self) -> None:
        """Write the accumulated items and cursor to the TTL cache."""
        self.ttl_cache.set(
            self.cache_key,
            {
                "items": [item.to_dict() for item in self.items],
                "pagination": self.pagination.to_dict(),
            },
            ttl=self.ttl,
        )
        self.ttl_cache.set(
            STATE_CACHE_KEY,
            {"signature": self.signature, "pagination": self.pagination.to_dict()},
            ttl=self.ttl,
        )

    def refresh_cache(self) -> int:
        """Re-store the current pages and drop those of every other signature.

        Cached pages of other signatures hold flags from before a toggle.

        Returns:
            Number of dropped entries of other signatures
        """
        had_current = self.ttl_cache.exists(self.cache_key)
        removed = self.ttl_cache.clear_prefix(f"{ITEMS_CACHE_PREFIX}{self.user_id}_")
        self.store()
        return removed - 1 if had_current else removed
