"""RSS/Atom feed fetching and parsing for FeedTune."""

import logging
from calendar import timegm
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin

import feedparser
import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, text/html, */*"

PREVIEW_SIZE = 5


@dataclass
class FeedEntry:
    """Represents an entry parsed from an RSS/Atom feed."""

    title: str
    link: str
    guid: Optional[str] = None
    description: Optional[str] = None
    published_date: Optional[datetime] = None
    thumbnail: Optional[str] = None
    author: Optional[str] = None
    video_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "link": self.link,
            "guid": self.guid,
            "description": self.description,
            "published_at": self.published_date.isoformat() if self.published_date else None,
            "thumbnail": self.thumbnail,
            "author": self.author,
            "video_id": self.video_id,
        }


@dataclass
class ParsedFeed:
    """Channel metadata and entries of a parsed feed."""

    title: str
    link: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    entries: list[FeedEntry] = field(default_factory=list)


def fetch_url(url: str, timeout: float = 30, accept: str = FEED_ACCEPT) -> requests.Response:
    """GET a URL with the browser-like headers feed hosts expect."""
    response = requests.get(
        url,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT, "Accept": accept},
    )
    response.raise_for_status()
    return response


def parse_feed(feed_url: str, timeout: float = 30) -> ParsedFeed:
    """Fetch and parse an RSS/Atom feed.

    Args:
        feed_url: URL of the RSS/Atom feed
        timeout: Request timeout in seconds

    Returns:
        ParsedFeed with channel metadata and entries

    Raises:
        FeedParseError: If the feed cannot be fetched or parsed
    """
    try:
        response = fetch_url(feed_url, timeout=timeout)
    except requests.RequestException as e:
        raise FeedParseError(f"Failed to fetch feed: {e}", url=feed_url) from e

    if not response.content or not response.content.strip():
        raise FeedParseError("Feed returned empty content", url=feed_url)

    return parse_feed_content(response.content, feed_url)


def parse_feed_content(content: bytes, feed_url: str = "") -> ParsedFeed:
    """Parse raw feed bytes.

    Raises:
        FeedParseError: If the content is not a usable feed
    """
    feed = feedparser.parse(content)

    if feed.bozo and not feed.entries:
        raise FeedParseError(f"Failed to parse feed: {feed.bozo_exception}", url=feed_url)
    if not feed.entries and not feed.feed.get("title"):
        raise FeedParseError("Content is not an RSS/Atom feed", url=feed_url)

    entries = []
    for entry in feed.entries:
        title = entry.get("title", "").strip()
        link = entry.get("link", "").strip()

        if not title or not link:
            continue

        entries.append(
            FeedEntry(
                title=title,
                link=link,
                guid=entry.get("id") or link,
                description=entry.get("summary") or None,
                published_date=_parse_entry_date(entry),
                thumbnail=_entry_thumbnail(entry),
                author=entry.get("author") or None,
                video_id=entry.get("yt_videoid") or None,
            )
        )

    channel = feed.feed
    image = channel.get("image", {}).get("href") if channel.get("image") else None
    return ParsedFeed(
        title=channel.get("title", "").strip(),
        link=channel.get("link"),
        description=channel.get("subtitle") or channel.get("description") or None,
        image=image or channel.get("icon") or channel.get("logo"),
        entries=entries,
    )


def rss_preview(url: str, timeout: float = 30) -> dict:
    """Build the preview shown before a feed is added.

    Returns:
        Dict with title, description, image, items and preview (first items)

    Raises:
        FeedParseError: If the feed cannot be fetched or parsed
    """
    parsed = parse_feed(url, timeout=timeout)
    items = [entry.to_dict() for entry in parsed.entries]
    return {
        "title": parsed.title,
        "description": parsed.description,
        "image": parsed.image,
        "items": items,
        "preview": items[:PREVIEW_SIZE],
    }


def discover_feed_url(page_url: str, timeout: float = 30) -> Optional[str]:
    """Auto-discover RSS/Atom feed URL from a site's homepage.

    Looks for <link> tags with rel="alternate" and type="application/rss+xml"
    or "application/atom+xml".

    Args:
        page_url: URL of the HTML page
        timeout: Request timeout in seconds

    Returns:
        Feed URL if discovered, None otherwise
    """
    try:
        response = fetch_url(page_url, timeout=timeout, accept="text/html, */*")
    except requests.RequestException as e:
        logger.debug("Feed discovery fetch failed for %s: %s", page_url, e)
        return None

    soup = BeautifulSoup(response.content, "html.parser")

    feed_types = [
        "application/rss+xml",
        "application/atom+xml",
        "application/feed+json",
        "application/xml",
        "text/xml",
    ]

    for feed_type in feed_types:
        link = soup.find("link", rel="alternate", type=feed_type)
        if link and link.get("href"):
            return urljoin(page_url, link["href"])

    common_paths = [
        "/feed",
        "/rss",
        "/feed.xml",
        "/rss.xml",
        "/atom.xml",
        "/index.xml",
    ]

    for path in common_paths:
        feed_url = urljoin(page_url, path)
        if _is_valid_feed(feed_url, timeout):
            return feed_url

    return None


def _is_valid_feed(url: str, timeout: float = 10) -> bool:
    """Check if a URL points to a valid RSS/Atom feed."""
    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": USER_AGENT})
    except requests.RequestException:
        return False
    if response.status_code != 200:
        return False

    feed = feedparser.parse(response.content)
    return bool(feed.entries or feed.feed.get("title"))


def _entry_thumbnail(entry: dict) -> Optional[str]:
    """Pick a thumbnail from media:thumbnail, media:content or an image enclosure."""
    for key in ("media_thumbnail", "media_content"):
        media = entry.get(key)
        if media and media[0].get("url"):
            return media[0]["url"]

    for enclosure in entry.get("enclosures", []):
        if enclosure.get("type", "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]

    return None


def _parse_entry_date(entry: dict) -> Optional[datetime]:
    """Parse publication date from a feed entry.

    feedparser normalizes dates to UTC *_parsed tuples.
    """
    date_fields = ["published_parsed", "updated_parsed", "created_parsed"]

    for field_name in date_fields:
        parsed_time = entry.get(field_name)
        if parsed_time:
            try:
                return datetime.fromtimestamp(timegm(parsed_time), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                continue

    return None


class FeedParseError(Exception):
    """Raised when a feed cannot be fetched or parsed."""

    def __init__(self, message: str, url: str = ""):
        self.url = url
        super().__init__(message)
