"""Runtime configuration for FeedTune."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_HOME = Path.home() / ".feedtune"

FILTERS_TTL_SECONDS = 24 * 60 * 60
PAGINATION_TTL_SECONDS = 5 * 60
YOUTUBE_SEARCH_TTL_SECONDS = 60 * 60
SESSION_TTL_SECONDS = 7 * 24 * 60 * 60


@dataclass
class Settings:
    """Application settings.

    Args:
        db_path: SQLite database holding feeds, items and interactions
        cache_path: JSON file backing the local TTL cache
        page_size: Items per page on the feed screen
        request_timeout: Timeout in seconds for outgoing HTTP requests
        session_ttl: Lifetime of a sign-in session in seconds
        sync_max_items: Maximum entries taken from a feed per sync
    """

    db_path: Path = DEFAULT_HOME / "feedtune.db"
    cache_path: Path = DEFAULT_HOME / "cache.json"
    page_size: int = 12
    request_timeout: float = 30.0
    session_ttl: int = SESSION_TTL_SECONDS
    sync_max_items: int = 20

    @classmethod
    def from_env(cls, db_path: Optional[Path] = None) -> "Settings":
        """Load settings from FEEDTUNE_* environment variables."""
        home = Path(os.getenv("FEEDTUNE_HOME", str(DEFAULT_HOME)))
        return cls(
            db_path=db_path or Path(os.getenv("FEEDTUNE_DB_PATH", str(home / "feedtune.db"))),
            cache_path=Path(os.getenv("FEEDTUNE_CACHE_PATH", str(home / "cache.json"))),
            page_size=int(os.getenv("FEEDTUNE_PAGE_SIZE", "12")),
            request_timeout=float(os.getenv("FEEDTUNE_REQUEST_TIMEOUT", "30")),
            session_ttl=int(os.getenv("FEEDTUNE_SESSION_TTL", str(SESSION_TTL_SECONDS))),
            sync_max_items=int(os.getenv("FEEDTUNE_SYNC_MAX_ITEMS", "20")),
        )
