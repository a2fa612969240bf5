"""YouTube channel resolution for FeedTune.

Turns whatever a user typed into the add-feed box (a channel, handle,
user or video URL, a bare ``@handle`` or a search keyword) into the
channel's RSS feed URL.
"""

import json
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, quote_plus, urlparse

import requests
from bs4 import BeautifulSoup

from .cache import TtlCache
from .config import YOUTUBE_SEARCH_TTL_SECONDS
from .rss import USER_AGENT

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be"}
FEED_PATH = "youtube.com/feeds/videos.xml"

CHANNEL_ID_RE = re.compile(r"^UC[\w-]{21,22}$")
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_VIDEO_PATTERNS = [
    re.compile(r"youtu\.be/([A-Za-z0-9_-]{11})(?:[?/#]|$)"),
    re.compile(r"youtube\.com/watch\?(?:.*&)?v=([A-Za-z0-9_-]{11})(?:[&#]|$)"),
    re.compile(r"youtube\.com/(?:embed|v|shorts)/([A-Za-z0-9_-]{11})(?:[?/#]|$)"),
    re.compile(r"yt:video:([A-Za-z0-9_-]{11})"),
    re.compile(r"^([A-Za-z0-9_-]{11})$"),
]

_PAGE_CHANNEL_PATTERNS = [
    re.compile(r'"externalId"\s*:\s*"(UC[\w-]{22})"'),
    re.compile(r'"channelId"\s*:\s*"(UC[\w-]{22})"'),
    re.compile(r'"browseId"\s*:\s*"(UC[\w-]{22})"'),
]

_SEARCH_RENDERER_RE = re.compile(
    r'"channelRenderer"\s*:\s*\{\s*"channelId"\s*:\s*"(UC[\w-]{22})"\s*,'
    r'\s*"title"\s*:\s*\{\s*"simpleText"\s*:\s*"((?:[^"\\]|\\.)*)"'
)

THUMBNAIL_QUALITIES = ("default", "mqdefault", "hqdefault", "sddefault", "maxresdefault")

SEARCH_CACHE_PREFIX = "youtube_search_"


class YouTubeError(Exception):
    """Raised when a YouTube input cannot be resolved.

    Attributes:
        code: Machine readable reason (MISSING_PARAMETER, NOT_FOUND,
            API_REQUEST_ERROR, PARSE_ERROR, UNSUPPORTED_URL)
        original_error: The underlying exception, if any
    """

    def __init__(self, message: str, code: str, original_error: Optional[Exception] = None):
        self.code = code
        self.original_error = original_error
        super().__init__(message)


def is_youtube_url(value: str) -> bool:
    host = urlparse(value if "://" in value else f"https://{value}").hostname or ""
    return host in YOUTUBE_HOSTS


def is_youtube_feed_url(url: Optional[str]) -> bool:
    return bool(url) and FEED_PATH in url


def effective_feed_type(feed_type: str, url: Optional[str]) -> str:
    """Type of a stored feed, reading legacy "rss" rows of YouTube feeds as youtube."""
    if feed_type == "youtube" or is_youtube_feed_url(url):
        return "youtube"
    return "rss"


def extract_channel_id(value: Optional[str]) -> Optional[str]:
    """Extract a channel id from a bare id, a /channel/ URL or a feed URL."""
    if not value:
        return None
    value = value.strip()
    if CHANNEL_ID_RE.match(value):
        return value
    if not is_youtube_url(value):
        return None

    parsed = urlparse(value if "://" in value else f"https://{value}")
    match = re.search(r"/channel/(UC[\w-]{21,22})", parsed.path)
    if match:
        return match.group(1)

    channel_ids = parse_qs(parsed.query).get("channel_id")
    if channel_ids and CHANNEL_ID_RE.match(channel_ids[0]):
        return channel_ids[0]
    return None


def create_rss_url(channel_id: Optional[str]) -> Optional[str]:
    if not channel_id or not CHANNEL_ID_RE.match(channel_id):
        return None
    return f"https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"


def extract_video_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    for pattern in _VIDEO_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return None


def create_video_url(video_id: Optional[str]) -> Optional[str]:
    if not video_id or not VIDEO_ID_RE.match(video_id):
        return None
    return f"https://www.youtube.com/watch?v={video_id}"


def create_thumbnail_url(video_id: Optional[str], quality: str = "hqdefault") -> Optional[str]:
    if not video_id or not VIDEO_ID_RE.match(video_id):
        return None
    if quality not in THUMBNAIL_QUALITIES:
        quality = "hqdefault"
    return f"https://i.ytimg.com/vi/{video_id}/{quality}.jpg"


class YouTubeResolver:
    """Resolves YouTube inputs to channel RSS feed URLs.

    Args:
        cache: TTL cache for channel search results
        timeout: Request timeout in seconds
    """

    def __init__(self, cache: Optional[TtlCache] = None, timeout: float = 10):
        self.cache = cache
        self.timeout = timeout

    def to_rss_url(self, value: str) -> str:
        """Resolve a URL, handle or keyword to a channel RSS URL.

        Raises:
            YouTubeError: If the input is empty, unsupported or not found
        """
        value = (value or "").strip()
        if not value:
            raise YouTubeError("YouTube URL or keyword is required", "MISSING_PARAMETER")

        if is_youtube_feed_url(value):
            return value

        channel_id = extract_channel_id(value)
        if channel_id:
            return create_rss_url(channel_id)

        if is_youtube_url(value):
            return self._rss_url_from_youtube_url(value)

        if value.startswith("@") and " " not in value:
            channel_id = self._channel_id_from_page(f"https://www.youtube.com/{value}")
            return create_rss_url(channel_id)

        return self.search_channel(value)["rss_url"]

    def _rss_url_from_youtube_url(self, value: str) -> str:
        url = value if "://" in value else f"https://{value}"
        parsed = urlparse(url)
        path = parsed.path

        user_match = re.match(r"^/user/([^/?#]+)", path)
        if user_match:
            return f"https://www.youtube.com/feeds/videos.xml?user={user_match.group(1)}"

        if path.startswith("/@") or path.startswith("/c/"):
            # Keep /@handle or /c/name, drop tabs such as /videos
            depth = 2 if path.startswith("/@") else 3
            page_url = f"https://www.youtube.com{'/'.join(path.split('/')[:depth])}"
            return create_rss_url(self._channel_id_from_page(page_url))

        video_id = extract_video_id(url)
        if video_id:
            watch_url = create_video_url(video_id)
            return create_rss_url(self._channel_id_from_page(watch_url))

        if path.startswith("/playlist") or "list" in parse_qs(parsed.query):
            raise YouTubeError(f"YouTube playlists are not supported: {value}", "UNSUPPORTED_URL")

        raise YouTubeError(f"Unsupported YouTube URL format: {value}", "UNSUPPORTED_URL")

    def _get(self, url: str) -> str:
        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept-Language": "en-US,en;q=0.9"},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise YouTubeError(f"YouTube request failed: {e}", "API_REQUEST_ERROR", e) from e
        return response.text

    def _channel_id_from_page(self, url: str) -> str:
        """Read the channel id out of a channel or watch page."""
        html = self._get(url)

        soup = BeautifulSoup(html, "html.parser")
        meta = soup.find("meta", itemprop="channelId") or soup.find("meta", itemprop="identifier")
        if meta and CHANNEL_ID_RE.match(meta.get("content", "")):
            return meta["content"]

        canonical = soup.find("link", rel="canonical")
        if canonical:
            channel_id = extract_channel_id(canonical.get("href", ""))
            if channel_id:
                return channel_id

        for pattern in _PAGE_CHANNEL_PATTERNS:
            match = pattern.search(html)
            if match:
                return match.group(1)

        raise YouTubeError(f"Could not find a channel id on {url}", "NOT_FOUND")

    def search_channel(self, query: str) -> dict:
        """Find the best matching channel for a keyword.

        Returns:
            Dict with id, title, thumbnail and rss_url

        Raises:
            YouTubeError: If nothing matches or the search fails
        """
        query = (query or "").strip()
        if not query:
            raise YouTubeError("Search query is required", "MISSING_PARAMETER")

        cache_key = f"{SEARCH_CACHE_PREFIX}{query.lower()}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                logger.debug("YouTube search cache hit for %r", query)
                return cached

        # sp=EgIQAg%3D%3D restricts results to channels
        html = self._get(f"https://www.youtube.com/results?search_query={quote_plus(query)}&sp=EgIQAg%253D%253D")

        match = _SEARCH_RENDERER_RE.search(html)
        if match:
            channel_id = match.group(1)
            title = _unescape(match.group(2))
        else:
            fallback = re.search(r'"channelId"\s*:\s*"(UC[\w-]{22})"', html)
            if not fallback:
                raise YouTubeError(f"No YouTube channel found for '{query}'", "NOT_FOUND")
            channel_id = fallback.group(1)
            title = query

        result = {
            "id": channel_id,
            "title": title,
            "thumbnail": None,
            "rss_url": create_rss_url(channel_id),
        }
        if self.cache is not None:
            self.cache.set(cache_key, result, ttl=YOUTUBE_SEARCH_TTL_SECONDS)
        return result


def _unescape(raw: str) -> str:
    """Decode a JSON string body scraped out of a page."""
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw
