"""Local TTL cache and in-memory query cache for FeedTune."""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Key/value storage kept in memory."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStorage(MemoryStorage):
    """Key/value storage persisted as one JSON object on disk.

    The file is rewritten on every change through a temporary file and an
    atomic rename.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, e)
            return
        if isinstance(data, dict):
            self._data = {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".cache-", suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(self._data, handle)
        os.replace(tmp_path, self.path)

    def set_item(self, key: str, value: str) -> None:
        super().set_item(key, value)
        self._flush()

    def remove_item(self, key: str) -> None:
        if key in self._data:
            super().remove_item(key)
            self._flush()


class TtlCache:
    """Generic ``(key, ttl) -> get/set`` cache over a key/value storage.

    Entries are stored as ``{"expiry": <epoch seconds>, "data": <value>}``.
    Values must be JSON serializable.

    Args:
        storage: Backing storage (MemoryStorage or JsonFileStorage)
        default_ttl: TTL in seconds used when set() gets none
        clock: Returns the current epoch time in seconds
    """

    def __init__(
        self,
        storage: MemoryStorage,
        default_ttl: float = 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.default_ttl = default_ttl
        self.clock = clock

    def get(self, key: str) -> Any:
        """Return the cached value, or None if absent or expired."""
        raw = self.storage.get_item(key)
        if raw is None:
            return None
        try:
            entry = json.loads(raw)
            expiry = float(entry["expiry"])
            data = entry["data"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Dropping corrupt cache entry %s: %s", key, e)
            self.storage.remove_item(key)
            return None

        if self.clock() >= expiry:
            self.storage.remove_item(key)
            return None
        return data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expiry = self.clock() + (self.default_ttl if ttl is None else ttl)
        self.storage.set_item(key, json.dumps({"expiry": expiry, "data": value}))

    def remove(self, key: str) -> None:
        self.storage.remove_item(key)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def clear_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix.

        Returns:
            Number of removed entries
        """
        keys = [key for key in self.storage.keys() if key.startswith(prefix)]
        for key in keys:
            self.storage.remove_item(key)
        logger.debug("Cleared %d cache entries with prefix %s", len(keys), prefix)
        return len(keys)


class QueryCache:
    """In-memory cache of query results shared by one application.

    Keys are tuples such as ``("items", user_id)``. Writes are
    last-write-wins. The cache must be initialised with init() before use
    and is emptied by dispose().
    """

    def __init__(self):
        self._data: Optional[dict[tuple, Any]] = None

    @property
    def active(self) -> bool:
        return self._data is not None

    def init(self) -> "QueryCache":
        if self._data is None:
            self._data = {}
        return self

    def dispose(self) -> None:
        self._data = None

    def _store(self) -> dict[tuple, Any]:
        if self._data is None:
            raise RuntimeError("QueryCache used before init() or after dispose()")
        return self._data

    def get_data(self, key: tuple) -> Any:
        return self._store().get(key)

    def set_data(self, key: tuple, value: Any) -> None:
        self._store()[key] = value

    def invalidate(self, prefix: tuple) -> int:
        """Drop every key that starts with the given tuple prefix."""
        store = self._store()
        stale = [key for key in store if key[: len(prefix)] == prefix]
        for key in stale:
            del store[key]
        return len(stale)

    def keys(self) -> Iterator[tuple]:
        return iter(list(self._store()))
