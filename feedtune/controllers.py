"""Business logic controllers for FeedTune."""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from .models import FEED_TYPES, Feed
from .repository import FeedRepository
from .rss import FeedParseError, discover_feed_url, parse_feed
from .sync import sync_feed
from .youtube import YouTubeResolver, is_youtube_feed_url, is_youtube_url

logger = logging.getLogger(__name__)


class FeedNotFoundError(Exception):
    """Raised when a feed is not found."""

    def __init__(self, feed_id: str):
        self.feed_id = feed_id
        super().__init__(f"Feed '{feed_id}' not found")


class ItemNotFoundError(Exception):
    """Raised when an item is not found."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item '{item_id}' not found")


class ValidationError(Exception):
    """Raised when user input is invalid."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class NotAuthenticatedError(Exception):
    """Raised when an operation needs a signed-in user."""

    def __init__(self, message: str = "Not signed in"):
        super().__init__(message)


class RemoteError(Exception):
    """Raised when a call to the backing store or network fails."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


@dataclass
class AddFeedResult:
    """Outcome of an add-feed request."""

    feed: Feed
    is_new: bool
    items_added: int = 0


def normalize_url(url: str) -> str:
    """Trim, add a missing scheme and drop a trailing slash.

    Raises:
        ValidationError: If the URL is empty or has no host
    """
    url = (url or "").strip()
    if not url:
        raise ValidationError("url", "URL is required")
    if "://" not in url:
        url = f"https://{url}"
    if not urlparse(url).netloc:
        raise ValidationError("url", f"Invalid URL: {url}")
    return url.rstrip("/")


def add_feed(
    repo: FeedRepository,
    user_id: str,
    url: str,
    feed_type: str = "rss",
    title: Optional[str] = None,
    resolver: Optional[YouTubeResolver] = None,
    timeout: float = 30,
) -> AddFeedResult:
    """Add a feed for a user.

    YouTube input (a channel or video URL, an @handle or a search keyword)
    is resolved to the channel's RSS feed first. Adding a URL the user
    already has returns the existing feed.

    Args:
        repo: FeedRepository instance
        user_id: Owner of the new feed
        url: Feed, site or YouTube URL (or a keyword for YouTube)
        feed_type: "rss" or "youtube"
        title: Optional title; defaults to the feed's own title
        resolver: YouTubeResolver used for YouTube input
        timeout: Request timeout in seconds

    Returns:
        AddFeedResult with the stored feed and whether it was created

    Raises:
        ValidationError: If the user, URL or type is missing or invalid
        YouTubeError: If YouTube input cannot be resolved
        FeedParseError: If no feed can be read from the URL
    """
    if not user_id:
        raise ValidationError("user_id", "User is required")
    if not url or not url.strip():
        raise ValidationError("url", "URL is required")
    if feed_type not in FEED_TYPES:
        raise ValidationError("type", f"Unknown feed type: {feed_type}")

    url = url.strip()
    if feed_type == "youtube" or (is_youtube_url(url) and not is_youtube_feed_url(url)):
        url = (resolver or YouTubeResolver(timeout=timeout)).to_rss_url(url)
        feed_type = "youtube"
    else:
        url = normalize_url(url)
        if is_youtube_feed_url(url):
            feed_type = "youtube"

    existing = repo.get_feed_by_url(user_id, url)
    if existing:
        logger.info("Feed %s already exists for user %s", url, user_id)
        return AddFeedResult(feed=existing, is_new=False)

    try:
        parsed = parse_feed(url, timeout=timeout)
    except FeedParseError:
        discovered = discover_feed_url(url, timeout=timeout)
        if not discovered:
            raise
        logger.info("Discovered feed %s from %s", discovered, url)
        url = discovered
        existing = repo.get_feed_by_url(user_id, url)
        if existing:
            return AddFeedResult(feed=existing, is_new=False)
        parsed = parse_feed(url, timeout=timeout)

    feed = repo.add_feed(
        Feed(
            id=None,
            user_id=user_id,
            url=url,
            type=feed_type,
            title=(title or "").strip() or parsed.title or url,
            description=parsed.description,
            icon=parsed.image,
        )
    )

    result = sync_feed(repo, feed, timeout=timeout)
    if result.error:
        logger.warning("Initial sync of %s failed: %s", url, result.error)

    return AddFeedResult(feed=feed, is_new=True, items_added=result.added)


def remove_feed(repo: FeedRepository, user_id: str, feed_id: str) -> Feed:
    """Soft-delete a feed. Its items and interactions are kept.

    Args:
        repo: FeedRepository instance
        user_id: Owner of the feed
        feed_id: The feed's id

    Returns:
        The removed Feed

    Raises:
        FeedNotFoundError: If the user has no live feed with this id
    """
    feed = repo.get_feed(feed_id)
    if not feed or feed.user_id != user_id or feed.is_deleted:
        raise FeedNotFoundError(feed_id)

    repo.soft_delete_feed(feed_id, user_id)
    return feed


def clean_up_old_items(
    repo: FeedRepository,
    user_id: str,
    older_than_days: int = 30,
    keep_favorites: bool = True,
    keep_read_later: bool = True,
) -> dict[str, int]:
    """Delete old items of a user's feeds.

    Raises:
        ValidationError: If older_than_days is negative
    """
    if older_than_days < 0:
        raise ValidationError("older_than_days", "older_than_days must not be negative")
    return repo.clean_up_old_items(
        user_id,
        older_than_days=older_than_days,
        keep_favorites=keep_favorites,
        keep_read_later=keep_read_later,
    )


def get_stats(repo: FeedRepository, user_id: str) -> dict[str, int]:
    """Count a user's feeds, items and flagged items.

    Returns:
        Dict with feeds, items, unread, favorites and read_later
    """
    db = repo.db
    feed_ids = [feed.id for feed in repo.get_feeds(user_id)]
    live = set(feed_ids)
    items = db.count_items("rss", feed_ids) + db.count_items("youtube", feed_ids)

    def flagged(flag: str) -> int:
        rows = db.list_interactions_with_flag(user_id, flag)
        count = 0
        for item_type in ("rss", "youtube"):
            ids = [row.item_id for row in rows if row.item_type == item_type]
            count += sum(1 for item in db.get_items_by_ids(item_type, ids) if item.feed_id in live)
        return count

    return {
        "feeds": len(feed_ids),
        "items": items,
        "unread": items - flagged("is_read"),
        "favorites": flagged("is_favorite"),
        "read_later": flagged("is_read_later"),
    }
