"""Optimistic interaction updates (toggles and reading progress) over the query cache."""

import logging
from dataclasses import replace
from typing import Optional, Union

from .cache import QueryCache
from .controllers import ItemNotFoundError, RemoteError, ValidationError
from .models import FeedItem
from .notify import LoggingNotifier, Notifier
from .service import FeedBackend

logger = logging.getLogger(__name__)

ITEMS = "items"
FAVORITES = "favorites"
READ_LATER = "read_later"

# Flags that also have a collection of their own
FLAG_COLLECTIONS = {"is_favorite": FAVORITES, "is_read_later": READ_LATER}

_FLAG_LABELS = {
    "is_read": "read status",
    "is_favorite": "favorite",
    "is_read_later": "read later",
    "read_progress": "reading progress",
}


class OptimisticMutationLayer:
    """Applies interaction toggles locally first and rolls back on failure.

    Each toggle takes a per-item sequence number. Writes are synchronous, so
    a newer toggle of the same item can only be issued while an older one is
    still running when it comes from a re-entrant or callback-driven path
    (a notifier or backend hook toggling again). If the older write then
    fails, its rollback is skipped so the newer intent stays in place.

    Args:
        backend: FeedBackend receiving the interaction writes
        query_cache: Shared QueryCache holding the item collections
        user_id: Current user's id
        notifier: Receives failure messages
    """

    def __init__(
        self,
        backend: FeedBackend,
        query_cache: QueryCache,
        user_id: str,
        notifier: Optional[Notifier] = None,
    ):
        self.backend = backend
        self.query_cache = query_cache
        self.user_id = user_id
        self.notifier = notifier or LoggingNotifier()
        self._sequence: dict[str, int] = {}

    def key(self, collection: str) -> tuple:
        return (collection, self.user_id)

    def toggle_read(self, item_id: str, value: bool) -> bool:
        return self._toggle(item_id, "is_read", value)

    def toggle_favorite(self, item_id: str, value: bool) -> bool:
        return self._toggle(item_id, "is_favorite", value)

    def toggle_read_later(self, item_id: str, value: bool) -> bool:
        return self._toggle(item_id, "is_read_later", value)

    def set_progress(self, item_id: str, progress: int) -> bool:
        """Record how far the user got through an item, in percent.

        Raises:
            ValidationError: If progress is not between 0 and 100
        """
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("read_progress", f"Reading progress must be 0-100, got {progress!r}")
        return self._toggle(item_id, "read_progress", progress)

    def latest_sequence(self, item_id: str) -> int:
        return self._sequence.get(item_id, 0)

    def find_item(self, item_id: str) -> Optional[FeedItem]:
        """Find an item in any cached collection."""
        for collection in (ITEMS, FAVORITES, READ_LATER):
            for item in self.query_cache.get_data(self.key(collection)) or []:
                if item.id == item_id:
                    return item
        return None

    def _toggle(self, item_id: str, flag: str, value: Union[bool, int]) -> bool:
        """Write a flag optimistically, then remotely.

        Returns:
            True on success, False if the remote write failed

        Raises:
            ItemNotFoundError: If no cached collection holds the item
        """
        item = self.find_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        keys = [self.key(collection) for collection in (ITEMS, FAVORITES, READ_LATER)]
        snapshots = {key: self.query_cache.get_data(key) for key in keys}

        sequence = self.latest_sequence(item_id) + 1
        self._sequence[item_id] = sequence

        updated = replace(item, **{flag: value})
        self._apply(item_id, flag, value, updated)

        try:
            self.backend.update_interaction(self.user_id, item_id, item.item_type, {flag: value})
        except RemoteError as e:
            if self.latest_sequence(item_id) != sequence:
                logger.info(
                    "Ignoring failed %s write %d for %s; newer write %d pending",
                    flag,
                    sequence,
                    item_id,
                    self.latest_sequence(item_id),
                )
                return False

            for key, snapshot in snapshots.items():
                if snapshot is not None:
                    self.query_cache.set_data(key, snapshot)
            logger.warning("Rolled back %s of %s: %s", flag, item_id, e)
            self.notifier.error(f"Could not update {_FLAG_LABELS[flag]}: {e}")
            return False

        return True

    def _apply(self, item_id: str, flag: str, value: Union[bool, int], updated: FeedItem) -> None:
        for collection in (ITEMS, FAVORITES, READ_LATER):
            key = self.key(collection)
            items = self.query_cache.get_data(key)
            if items is None:
                continue
            self.query_cache.set_data(
                key,
                [replace(item, **{flag: value}) if item.id == item_id else item for item in items],
            )

        collection = FLAG_COLLECTIONS.get(flag)
        if collection is None:
            return
        key = self.key(collection)
        items = self.query_cache.get_data(key)
        if items is None:
            return
        if value:
            if not any(item.id == item_id for item in items):
                self.query_cache.set_data(key, [updated] + items)
        else:
            self.query_cache.set_data(key, [item for item in items if item.id != item_id])
