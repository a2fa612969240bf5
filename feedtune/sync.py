"""Feed synchronisation for FeedTune."""

import logging
from dataclasses import dataclass
from typing import Optional

from .models import Feed, FeedItem, utcnow
from .repository import FeedRepository
from .rss import FeedEntry, FeedParseError, parse_feed
from .youtube import create_thumbnail_url, create_video_url, effective_feed_type, extract_video_id

logger = logging.getLogger(__name__)

SYNC_MAX_ITEMS = 20


@dataclass
class SyncResult:
    """Result of syncing a single feed."""

    feed_id: str
    feed_title: str
    added: int
    updated: int
    total_found: int
    error: Optional[str] = None


def _entry_to_item(feed: Feed, entry: FeedEntry, item_type: str) -> Optional[FeedItem]:
    if item_type == "youtube":
        video_id = entry.video_id or extract_video_id(entry.guid) or extract_video_id(entry.link)
        if not video_id:
            return None
        return FeedItem(
            id=None,
            feed_id=feed.id,
            item_type="youtube",
            title=entry.title,
            url=entry.link or create_video_url(video_id),
            description=entry.description,
            thumbnail=entry.thumbnail or create_thumbnail_url(video_id),
            published_at=entry.published_date,
            video_id=video_id,
            author=entry.author,
        )

    return FeedItem(
        id=None,
        feed_id=feed.id,
        item_type="rss",
        title=entry.title,
        url=entry.link,
        description=entry.description,
        thumbnail=entry.thumbnail,
        published_at=entry.published_date,
        guid=entry.guid or entry.link,
        author=entry.author,
    )


def sync_feed(
    repo: FeedRepository,
    feed: Feed,
    max_items: int = SYNC_MAX_ITEMS,
    timeout: float = 30,
) -> SyncResult:
    """Fetch a feed and store its items.

    New items are inserted; items already stored under the same identity
    (guid for RSS, video id for YouTube) get their metadata refreshed.

    Args:
        repo: FeedRepository instance
        feed: Feed to sync
        max_items: Maximum number of entries taken from the feed
        timeout: Request timeout in seconds

    Returns:
        SyncResult with summary of what was stored
    """
    try:
        parsed = parse_feed(feed.url, timeout=timeout)
    except FeedParseError as e:
        logger.warning("Sync of %s failed: %s", feed.url, e)
        return SyncResult(
            feed_id=feed.id,
            feed_title=feed.title,
            added=0,
            updated=0,
            total_found=0,
            error=str(e),
        )

    item_type = effective_feed_type(feed.type, feed.url)
    entries = parsed.entries[:max_items]
    added = 0
    updated = 0
    seen: set[str] = set()

    for entry in entries:
        item = _entry_to_item(feed, entry, item_type)
        if item is None:
            logger.debug("Skipping entry without video id: %s", entry.link)
            continue

        # Skip duplicates within the same fetch
        key = item.identity[1]
        if key in seen:
            continue
        seen.add(key)

        if item_type == "youtube":
            _, created = repo.upsert_youtube_item(item)
        else:
            _, created = repo.upsert_rss_item(item)

        if created:
            added += 1
        else:
            updated += 1

    repo.mark_feed_fetched(feed.id, utcnow())
    logger.info("Synced %s: %d added, %d updated", feed.title or feed.url, added, updated)

    return SyncResult(
        feed_id=feed.id,
        feed_title=feed.title,
        added=added,
        updated=updated,
        total_found=len(seen),
    )


def sync_all_feeds(repo: FeedRepository, user_id: str, **kwargs) -> list[SyncResult]:
    """Sync every non-deleted feed of a user.

    Args:
        repo: FeedRepository instance
        user_id: Owner of the feeds
        **kwargs: Passed through to sync_feed

    Returns:
        List of SyncResult for each feed
    """
    return [sync_feed(repo, feed, **kwargs) for feed in repo.get_feeds(user_id)]
