"""Application wiring for FeedTune.

FeedApp builds every collaborator once from Settings and hands them to
whoever needs them. Its caches live between init() and dispose().
"""

import logging
from typing import Optional

from .auth import SessionProvider
from .cache import JsonFileStorage, MemoryStorage, QueryCache, TtlCache
from .config import Settings
from .controllers import RemoteError
from .db import Database
from .filters import FilterStore
from .models import FeedItem, FilterState
from .mutations import FAVORITES, READ_LATER, OptimisticMutationLayer
from .notify import LoggingNotifier, Notifier
from .pagination import IDLE, ITEMS_CACHE_PREFIX, PaginationController
from .repository import FeedRepository
from .service import FeedBackend, FeedService
from .youtube import YouTubeResolver

logger = logging.getLogger(__name__)


class FeedApp:
    """Owns the database, caches and services of one process.

    Args:
        settings: Application settings
        notifier: Receives user-facing messages
        persistent_cache: If False, the TTL cache is kept in memory only
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        persistent_cache: bool = True,
    ):
        self.settings = settings or Settings.from_env()
        self.notifier = notifier or LoggingNotifier()
        self.persistent_cache = persistent_cache
        self.query_cache = QueryCache()
        self.db: Optional[Database] = None
        self.ttl_cache: Optional[TtlCache] = None
        self.repo: Optional[FeedRepository] = None
        self.backend: Optional[FeedBackend] = None
        self.sessions: Optional[SessionProvider] = None
        self.filter_store: Optional[FilterStore] = None

    def init(self) -> "FeedApp":
        if self.db is not None:
            return self
        storage = JsonFileStorage(self.settings.cache_path) if self.persistent_cache else MemoryStorage()
        self.ttl_cache = TtlCache(storage)
        self.db = Database(self.settings.db_path)
        self.repo = FeedRepository(self.db)
        self.backend = FeedService(
            self.repo,
            resolver=YouTubeResolver(self.ttl_cache, timeout=self.settings.request_timeout),
            timeout=self.settings.request_timeout,
            sync_max_items=self.settings.sync_max_items,
        )
        self.sessions = SessionProvider(self.db, self.ttl_cache, ttl=self.settings.session_ttl)
        self.filter_store = FilterStore(self.ttl_cache)
        self.query_cache.init()
        logger.debug("FeedApp initialised with database %s", self.settings.db_path)
        return self

    def dispose(self) -> None:
        self.query_cache.dispose()
        if self.db is not None:
            self.db.close()
        self.db = None
        self.repo = None
        self.backend = None
        self.sessions = None
        self.filter_store = None
        self.ttl_cache = None

    def __enter__(self) -> "FeedApp":
        return self.init()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def clear_page_cache(self, user_id: str) -> int:
        """Drop the user's cached item pages after feeds or items changed."""
        return self.ttl_cache.clear_prefix(f"{ITEMS_CACHE_PREFIX}{user_id}_")

    def screen(self, user_id: str) -> "FeedScreen":
        if self.db is None:
            raise RuntimeError("FeedApp used before init()")
        return FeedScreen(
            backend=self.backend,
            query_cache=self.query_cache,
            ttl_cache=self.ttl_cache,
            filter_store=self.filter_store,
            user_id=user_id,
            page_size=self.settings.page_size,
            notifier=self.notifier,
        )


class FeedScreen:
    """State of the feed screen: selection, filters, pages and toggles."""

    def __init__(
        self,
        backend: FeedBackend,
        query_cache: QueryCache,
        ttl_cache: TtlCache,
        filter_store: FilterStore,
        user_id: str,
        page_size: int = 12,
        notifier: Optional[Notifier] = None,
    ):
        self.backend = backend
        self.query_cache = query_cache
        self.filter_store = filter_store
        self.user_id = user_id
        self.notifier = notifier or LoggingNotifier()
        self.pagination = PaginationController(
            backend,
            query_cache,
            ttl_cache,
            user_id,
            page_size=page_size,
            notifier=self.notifier,
        )
        self.mutations = OptimisticMutationLayer(backend, query_cache, user_id, notifier=self.notifier)

    @property
    def filters(self) -> FilterState:
        return self.pagination.filters

    @property
    def items(self) -> list[FeedItem]:
        return self.pagination.visible_items

    @property
    def favorites(self) -> list[FeedItem]:
        return list(self.query_cache.get_data((FAVORITES, self.user_id)) or [])

    @property
    def read_later(self) -> list[FeedItem]:
        return list(self.query_cache.get_data((READ_LATER, self.user_id)) or [])

    def open(
        self,
        selected_feed_id: Optional[str] = None,
        active_filter: Optional[str] = None,
        query_string: Optional[str] = None,
    ) -> list[FeedItem]:
        """Load the first page with the stored filters.

        Filters in a query string take precedence over the stored ones. A
        query string with unknown values is ignored.
        """
        filters = None
        if query_string:
            try:
                filters = FilterState.from_query_string(query_string)
            except ValueError as e:
                logger.warning("Ignoring filters from %r: %s", query_string, e)
        if filters is None:
            filters = self.filter_store.load()
        self.pagination.select(selected_feed_id, active_filter, filters)
        return self.items

    def set_filters(self, filters: FilterState) -> list[FeedItem]:
        self.filter_store.save(filters)
        self.pagination.select(self.pagination.selected_feed_id, self.pagination.active_filter, filters)
        return self.items

    def reset_filters(self) -> list[FeedItem]:
        return self.set_filters(self.filter_store.reset())

    def select_feed(self, feed_id: Optional[str], active_filter: Optional[str] = None) -> list[FeedItem]:
        self.pagination.select(feed_id, active_filter, self.filters)
        return self.items

    def load_more(self) -> bool:
        return self.pagination.load_more_items()

    def load_favorites(self) -> list[FeedItem]:
        return self._load_collection(FAVORITES, self.backend.get_favorite_items)

    def load_read_later(self) -> list[FeedItem]:
        return self._load_collection(READ_LATER, self.backend.get_read_later_items)

    def _load_collection(self, collection: str, fetch) -> list[FeedItem]:
        try:
            items = fetch(self.user_id)
        except RemoteError as e:
            self.notifier.error(f"Could not load {collection.replace('_', ' ')}: {e}")
            return list(self.query_cache.get_data((collection, self.user_id)) or [])
        self.query_cache.set_data((collection, self.user_id), items)
        return items

    def toggle_read(self, item_id: str, value: bool) -> bool:
        return self._after_toggle(self.mutations.toggle_read(item_id, value))

    def toggle_favorite(self, item_id: str, value: bool) -> bool:
        return self._after_toggle(self.mutations.toggle_favorite(item_id, value))

    def toggle_read_later(self, item_id: str, value: bool) -> bool:
        return self._after_toggle(self.mutations.toggle_read_later(item_id, value))

    def set_progress(self, item_id: str, progress: int) -> bool:
        return self._after_toggle(self.mutations.set_progress(item_id, progress))

    def track(self, item: FeedItem) -> None:
        """Put an item into the screen's item collection if it is not there yet."""
        items = self.pagination.items
        if not any(held.id == item.id for held in items):
            self.query_cache.set_data(self.pagination.items_key, items + [item])

    def _after_toggle(self, ok: bool) -> bool:
        if not ok:
            return ok
        if self.pagination.state == IDLE:
            self.pagination.ttl_cache.clear_prefix(f"{ITEMS_CACHE_PREFIX}{self.user_id}_")
        else:
            self.pagination.refresh_cache()
        return ok
