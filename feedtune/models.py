"""Data models for FeedTune."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode

FEED_TYPES = ("rss", "youtube")
ITEM_TYPES = ("rss", "youtube")

FEED_TYPE_FILTERS = ("all", "rss", "youtube", "none")
READ_STATUS_FILTERS = ("all", "read", "unread", "none")
SORT_OPTIONS = ("newest", "oldest", "unread", "favorites")

INTERACTION_FLAGS = ("is_read", "is_favorite", "is_read_later", "read_progress")

_DATETIME_FIELDS = ("published_at", "created_at", "updated_at", "last_fetched", "deleted_at")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_json(obj: Any) -> dict:
    data = asdict(obj)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def _from_json(cls, data: dict):
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known}
    for key in _DATETIME_FIELDS:
        if key in kwargs:
            kwargs[key] = parse_datetime(kwargs[key])
    return cls(**kwargs)


@dataclass
class Feed:
    """Represents a subscribed source owned by a user."""

    id: Optional[str]
    user_id: str
    url: str
    type: str = "rss"
    title: str = ""
    description: Optional[str] = None
    icon: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_fetched: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class FeedItem:
    """A single article or video.

    RSS items are identified by ``(feed_id, guid)`` and YouTube items by
    ``(feed_id, video_id)``. The interaction flags are not stored on the
    item; they are overlaid from the current user's interaction row.
    """

    id: Optional[str]
    feed_id: str
    item_type: str
    title: str
    url: Optional[str] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    guid: Optional[str] = None
    video_id: Optional[str] = None
    author: Optional[str] = None
    feed_title: Optional[str] = None
    feed_type: Optional[str] = None
    site_favicon: Optional[str] = None
    is_read: bool = False
    is_favorite: bool = False
    is_read_later: bool = False
    read_progress: int = 0

    @property
    def identity(self) -> tuple[str, Optional[str]]:
        """Natural key used to decide insert-vs-update on sync."""
        if self.item_type == "youtube":
            return (self.feed_id, self.video_id)
        return (self.feed_id, self.guid)

    @property
    def sort_time(self) -> Optional[datetime]:
        return self.published_at or self.created_at

    def to_dict(self) -> dict:
        return _to_json(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FeedItem":
        return _from_json(cls, data)


@dataclass
class Interaction:
    """Per-user read/favorite/read-later state of one item."""

    user_id: str
    item_id: str
    item_type: str
    is_read: bool = False
    is_favorite: bool = False
    is_read_later: bool = False
    read_progress: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class User:
    """A signed-in user."""

    id: str
    email: str
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None


@dataclass
class Session:
    """An authenticated session with an expiry."""

    access_token: str
    user: User
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat(),
            "user": _to_json(self.user),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            access_token=data["access_token"],
            user=_from_json(User, data["user"]),
            expires_at=parse_datetime(data["expires_at"]),
        )


@dataclass
class FilterState:
    """Feed screen filter settings.

    ``"none"`` for ``feed_type`` or ``read_status`` comes from the legacy
    combined shape where both checkboxes were cleared; it matches nothing.
    """

    feed_type: str = "all"
    read_status: str = "all"
    sort_by: str = "newest"
    feed_name: Optional[str] = None

    def __post_init__(self):
        if self.feed_type not in FEED_TYPE_FILTERS:
            raise ValueError(f"Unknown feed type filter: {self.feed_type}")
        if self.read_status not in READ_STATUS_FILTERS:
            raise ValueError(f"Unknown read status filter: {self.read_status}")
        if self.sort_by not in SORT_OPTIONS:
            raise ValueError(f"Unknown sort option: {self.sort_by}")

    @property
    def is_empty_selection(self) -> bool:
        return self.feed_type == "none" or self.read_status == "none"

    def to_dict(self) -> dict:
        return {
            "feedType": self.feed_type,
            "readStatus": self.read_status,
            "sortBy": self.sort_by,
            "feedName": self.feed_name,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "FilterState":
        """Build a state from the stored shape or the legacy combined shape."""
        data = data or {}
        feed_type = data.get("feedType") or "all"
        read_status = data.get("readStatus") or "all"

        if "showRead" in data or "showUnread" in data:
            show_read = data.get("showRead", True)
            show_unread = data.get("showUnread", True)
            if show_read and show_unread:
                read_status = "all"
            elif show_read:
                read_status = "read"
            elif show_unread:
                read_status = "unread"
            else:
                read_status = "none"

        feed_types = data.get("feedTypes")
        if isinstance(feed_types, dict):
            rss = feed_types.get("rss", True)
            youtube = feed_types.get("youtube", True)
            if rss and youtube:
                feed_type = "all"
            elif rss:
                feed_type = "rss"
            elif youtube:
                feed_type = "youtube"
            else:
                feed_type = "none"

        return cls(
            feed_type=feed_type,
            read_status=read_status,
            sort_by=data.get("sortBy") or "newest",
            feed_name=data.get("feedName") or None,
        )

    def to_query_string(self) -> str:
        """Encode non-default values as a URL query string."""
        defaults = FilterState().to_dict()
        params = {
            key: value
            for key, value in self.to_dict().items()
            if value is not None and value != defaults[key]
        }
        return urlencode(params)

    @classmethod
    def from_query_string(cls, query: str) -> "FilterState":
        return cls.from_dict(dict(parse_qsl(query.lstrip("?"))))


@dataclass
class PaginationState:
    """Page cursor of the accumulated item list."""

    page: int = 1
    page_size: int = 12
    total: int = 0
    has_more: bool = True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PaginationState":
        return cls(**{k: v for k, v in data.items() if k in {f.name for f in fields(cls)}})


@dataclass
class ItemQuery:
    """Server-side narrowing of a paginated item request."""

    selected_feed_id: Optional[str] = None
    feed_type: str = "all"
    feed_name: Optional[str] = None


@dataclass
class ItemPage:
    """One page of merged items."""

    items: list[FeedItem] = field(default_factory=list)
    total: int = 0
    has_more: bool = False
