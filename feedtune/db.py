"""SQLite database operations for FeedTune."""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional
from uuid import uuid4

from .config import DEFAULT_HOME
from .models import Feed, FeedItem, Interaction, User, parse_datetime, utcnow

DEFAULT_DB_PATH = DEFAULT_HOME / "feedtune.db"

ITEM_TABLES = {"rss": "rss_items", "youtube": "youtube_items"}

_INTERACTION_COLUMNS = ("is_read", "is_favorite", "is_read_later", "read_progress")


def new_id() -> str:
    """Generate a globally unique row id."""
    return uuid4().hex


def _fmt(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class Database:
    """SQLite database interface for FeedTune."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to the SQLite database file. Defaults to ~/.feedtune/feedtune.db
        """
        self.db_path = db_path or DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                created_at TIMESTAMP,
                last_sign_in_at TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS feeds (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                url TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'rss',
                title TEXT NOT NULL,
                description TEXT,
                icon TEXT,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                last_fetched TIMESTAMP,
                deleted_at TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS rss_items (
                id TEXT PRIMARY KEY,
                feed_id TEXT NOT NULL,
                title TEXT NOT NULL,
                link TEXT,
                description TEXT,
                thumbnail TEXT,
                published_at TIMESTAMP,
                created_at TIMESTAMP,
                guid TEXT NOT NULL,
                author TEXT,
                UNIQUE (feed_id, guid),
                FOREIGN KEY (feed_id) REFERENCES feeds(id)
            );

            CREATE TABLE IF NOT EXISTS youtube_items (
                id TEXT PRIMARY KEY,
                feed_id TEXT NOT NULL,
                title TEXT NOT NULL,
                url TEXT,
                description TEXT,
                thumbnail TEXT,
                published_at TIMESTAMP,
                created_at TIMESTAMP,
                video_id TEXT NOT NULL,
                channel_title TEXT,
                UNIQUE (feed_id, video_id),
                FOREIGN KEY (feed_id) REFERENCES feeds(id)
            );

            CREATE TABLE IF NOT EXISTS user_interactions (
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                item_type TEXT NOT NULL,
                is_read BOOLEAN DEFAULT FALSE,
                is_favorite BOOLEAN DEFAULT FALSE,
                is_read_later BOOLEAN DEFAULT FALSE,
                read_progress INTEGER DEFAULT 0,
                created_at TIMESTAMP,
                updated_at TIMESTAMP,
                PRIMARY KEY (user_id, item_id, item_type)
            );

            CREATE INDEX IF NOT EXISTS idx_feeds_user ON feeds(user_id);
            CREATE INDEX IF NOT EXISTS idx_rss_items_feed ON rss_items(feed_id);
            CREATE INDEX IF NOT EXISTS idx_youtube_items_feed ON youtube_items(feed_id);
        """)
        conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    # User operations

    def add_user(self, email: str) -> User:
        """Create a user for an email address.

        Args:
            email: The user's email

        Returns:
            User object with assigned id
        """
        user = User(id=new_id(), email=email, created_at=utcnow())
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO users (id, email, created_at, last_sign_in_at) VALUES (?, ?, ?, ?)",
            (user.id, user.email, _fmt(user.created_at), None),
        )
        conn.commit()
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return self._row_to_user(row) if row else None

    def update_user_last_sign_in(self, user_id: str, when: datetime) -> None:
        conn = self._get_conn()
        conn.execute("UPDATE users SET last_sign_in_at = ? WHERE id = ?", (_fmt(when), user_id))
        conn.commit()

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            created_at=parse_datetime(row["created_at"]),
            last_sign_in_at=parse_datetime(row["last_sign_in_at"]),
        )

    # Feed CRUD operations

    def add_feed(self, feed: Feed) -> Feed:
        """Add a new feed.

        Args:
            feed: Feed object to add (a missing id is generated)

        Returns:
            Feed object with assigned id and timestamps
        """
        now = utcnow()
        feed.id = feed.id or new_id()
        feed.created_at = feed.created_at or now
        feed.updated_at = now
        conn = self._get_conn()
        conn.execute(
            """
            INSERT INTO feeds (id, user_id, url, type, title, description, icon,
                               created_at, updated_at, last_fetched, deleted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                feed.id,
                feed.user_id,
                feed.url,
                feed.type,
                feed.title,
                feed.description,
                feed.icon,
                _fmt(feed.created_at),
                _fmt(feed.updated_at),
                _fmt(feed.last_fetched),
                _fmt(feed.deleted_at),
            ),
        )
        conn.commit()
        return feed

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        """Get a feed by id, including soft-deleted ones.

        Args:
            feed_id: The feed's id

        Returns:
            Feed object or None if not found
        """
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return self._row_to_feed(row) if row else None

    def get_feed_by_url(self, user_id: str, url: str) -> Optional[Feed]:
        """Get a user's live (not soft-deleted) feed by URL.

        Args:
            user_id: Owner of the feed
            url: The feed's URL

        Returns:
            Feed object or None if not found
        """
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM feeds WHERE user_id = ? AND url = ? AND deleted_at IS NULL",
            (user_id, url),
        ).fetchone()
        return self._row_to_feed(row) if row else None

    def list_feeds(self, user_id: str, include_deleted: bool = False) -> list[Feed]:
        """List a user's feeds, newest first.

        Args:
            user_id: Owner of the feeds
            include_deleted: If True, include soft-deleted feeds

        Returns:
            List of Feed objects
        """
        conn = self._get_conn()
        query = "SELECT * FROM feeds WHERE user_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        query += " ORDER BY created_at DESC"
        rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_feed(row) for row in rows]

    def update_feed(self, feed: Feed) -> None:
        """Update an existing feed's editable fields.

        Args:
            feed: Feed object with updated fields
        """
        feed.updated_at = utcnow()
        conn = self._get_conn()
        conn.execute(
            """
            UPDATE feeds
            SET url = ?, type = ?, title = ?, description = ?, icon = ?, updated_at = ?
            WHERE id = ?
            """,
            (feed.url, feed.type, feed.title, feed.description, feed.icon, _fmt(feed.updated_at), feed.id),
        )
        conn.commit()

    def update_feed_last_fetched(self, feed_id: str, last_fetched: datetime) -> None:
        """Update the last_fetched timestamp for a feed.

        Args:
            feed_id: The feed's id
            last_fetched: The timestamp to set
        """
        conn = self._get_conn()
        conn.execute(
            "UPDATE feeds SET last_fetched = ?, updated_at = ? WHERE id = ?",
            (_fmt(last_fetched), _fmt(utcnow()), feed_id),
        )
        conn.commit()

    def soft_delete_feed(self, feed_id: str, user_id: str) -> bool:
        """Mark a feed as deleted. Its items and interactions are kept.

        Args:
            feed_id: The feed's id
            user_id: Owner of the feed

        Returns:
            True if a live feed was marked, False if not found
        """
        now = _fmt(utcnow())
        conn = self._get_conn()
        cursor = conn.execute(
            """
            UPDATE feeds SET deleted_at = ?, updated_at = ?
            WHERE id = ? AND user_id = ? AND deleted_at IS NULL
            """,
            (now, now, feed_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def _row_to_feed(self, row: sqlite3.Row) -> Feed:
        """Convert a database row to a Feed object."""
        return Feed(
            id=row["id"],
            user_id=row["user_id"],
            url=row["url"],
            type=row["type"],
            title=row["title"],
            description=row["description"],
            icon=row["icon"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            last_fetched=parse_datetime(row["last_fetched"]),
            deleted_at=parse_datetime(row["deleted_at"]),
        )

    # Item operations

    def add_item(self, item: FeedItem) -> FeedItem:
        """Insert an RSS or YouTube item into its table.

        Args:
            item: FeedItem to add (a missing id is generated)

        Returns:
            FeedItem with assigned id and created_at
        """
        item.id = item.id or new_id()
        item.created_at = item.created_at or utcnow()
        conn = self._get_conn()
        if item.item_type == "youtube":
            conn.execute(
                """
                INSERT INTO youtube_items (id, feed_id, title, url, description, thumbnail,
                                           published_at, created_at, video_id, channel_title)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.feed_id,
                    item.title,
                    item.url,
                    item.description,
                    item.thumbnail,
                    _fmt(item.published_at),
                    _fmt(item.created_at),
                    item.video_id,
                    item.author,
                ),
            )
        else:
            conn.execute(
                """
                INSERT INTO rss_items (id, feed_id, title, link, description, thumbnail,
                                       published_at, created_at, guid, author)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.feed_id,
                    item.title,
                    item.url,
                    item.description,
                    item.thumbnail,
                    _fmt(item.published_at),
                    _fmt(item.created_at),
                    item.guid,
                    item.author,
                ),
            )
        conn.commit()
        return item

    def update_item_metadata(self, item: FeedItem) -> None:
        """Refresh the mutable metadata of an existing item.

        Args:
            item: FeedItem carrying the stored id and new metadata
        """
        table = ITEM_TABLES[item.item_type]
        link_column = "url" if item.item_type == "youtube" else "link"
        author_column = "channel_title" if item.item_type == "youtube" else "author"
        conn = self._get_conn()
        conn.execute(
            f"""
            UPDATE {table}
            SET title = ?, {link_column} = ?, description = ?, thumbnail = ?,
                published_at = ?, {author_column} = ?
            WHERE id = ?
            """,
            (
                item.title,
                item.url,
                item.description,
                item.thumbnail,
                _fmt(item.published_at),
                item.author,
                item.id,
            ),
        )
        conn.commit()

    def get_item_by_identity(self, item_type: str, feed_id: str, key: str) -> Optional[FeedItem]:
        """Get an item by its natural key.

        Args:
            item_type: "rss" or "youtube"
            feed_id: Owning feed id
            key: guid for RSS items, video_id for YouTube items

        Returns:
            FeedItem or None if not found
        """
        table = ITEM_TABLES[item_type]
        key_column = "video_id" if item_type == "youtube" else "guid"
        conn = self._get_conn()
        row = conn.execute(
            f"SELECT * FROM {table} WHERE feed_id = ? AND {key_column} = ?",
            (feed_id, key),
        ).fetchone()
        return self._row_to_item(row, item_type) if row else None

    def list_items(
        self,
        item_type: str,
        feed_ids: list[str],
        limit: Optional[int] = None,
        offset: int = 0,
        since: Optional[datetime] = None,
    ) -> list[FeedItem]:
        """List items of the given feeds, newest first.

        Args:
            item_type: "rss" or "youtube"
            feed_ids: Feeds whose items to return
            limit: Maximum number of rows
            offset: Rows to skip
            since: If provided, only items published (or created) after it

        Returns:
            List of FeedItem objects
        """
        if not feed_ids:
            return []
        table = ITEM_TABLES[item_type]
        query = f"SELECT * FROM {table} WHERE feed_id IN ({_placeholders(feed_ids)})"
        params: list = list(feed_ids)

        if since is not None:
            query += " AND COALESCE(published_at, created_at) > ?"
            params.append(_fmt(since))

        query += " ORDER BY COALESCE(published_at, created_at) DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        conn = self._get_conn()
        rows = conn.execute(query, params).fetchall()
        return [self._row_to_item(row, item_type) for row in rows]

    def count_items(self, item_type: str, feed_ids: list[str]) -> int:
        """Count items of the given feeds."""
        if not feed_ids:
            return 0
        table = ITEM_TABLES[item_type]
        conn = self._get_conn()
        row = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE feed_id IN ({_placeholders(feed_ids)})",
            list(feed_ids),
        ).fetchone()
        return row[0]

    def get_items_by_ids(self, item_type: str, item_ids: Iterable[str]) -> list[FeedItem]:
        """Get items by id, newest first."""
        ids = list(item_ids)
        if not ids:
            return []
        table = ITEM_TABLES[item_type]
        conn = self._get_conn()
        rows = conn.execute(
            f"""
            SELECT * FROM {table} WHERE id IN ({_placeholders(ids)})
            ORDER BY COALESCE(published_at, created_at) DESC
            """,
            ids,
        ).fetchall()
        return [self._row_to_item(row, item_type) for row in rows]

    def delete_items_before(
        self,
        item_type: str,
        feed_ids: list[str],
        cutoff: datetime,
        keep_ids: Iterable[str] = (),
    ) -> int:
        """Delete items published before a cutoff.

        Args:
            item_type: "rss" or "youtube"
            feed_ids: Only items of these feeds are considered
            cutoff: Items published before this are removed
            keep_ids: Item ids that must survive

        Returns:
            Number of deleted items
        """
        if not feed_ids:
            return 0
        table = ITEM_TABLES[item_type]
        query = (
            f"DELETE FROM {table} WHERE feed_id IN ({_placeholders(feed_ids)})"
            " AND published_at < ?"
        )
        params: list = list(feed_ids) + [_fmt(cutoff)]
        keep = list(keep_ids)
        if keep:
            query += f" AND id NOT IN ({_placeholders(keep)})"
            params.extend(keep)
        conn = self._get_conn()
        cursor = conn.execute(query, params)
        conn.commit()
        return cursor.rowcount

    def _row_to_item(self, row: sqlite3.Row, item_type: str) -> FeedItem:
        """Convert a database row to a FeedItem object."""
        if item_type == "youtube":
            return FeedItem(
                id=row["id"],
                feed_id=row["feed_id"],
                item_type="youtube",
                title=row["title"],
                url=row["url"],
                description=row["description"],
                thumbnail=row["thumbnail"],
                published_at=parse_datetime(row["published_at"]),
                created_at=parse_datetime(row["created_at"]),
                video_id=row["video_id"],
                author=row["channel_title"],
            )
        return FeedItem(
            id=row["id"],
            feed_id=row["feed_id"],
            item_type="rss",
            title=row["title"],
            url=row["link"],
            description=row["description"],
            thumbnail=row["thumbnail"],
            published_at=parse_datetime(row["published_at"]),
            created_at=parse_datetime(row["created_at"]),
            guid=row["guid"],
            author=row["author"],
        )

    # Interaction operations

    def get_interaction(self, user_id: str, item_id: str, item_type: str) -> Optional[Interaction]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM user_interactions WHERE user_id = ? AND item_id = ? AND item_type = ?",
            (user_id, item_id, item_type),
        ).fetchone()
        return self._row_to_interaction(row) if row else None

    def get_interactions(self, user_id: str, item_ids: Iterable[str]) -> list[Interaction]:
        """Get a user's interaction rows for a set of item ids."""
        ids = list(item_ids)
        if not ids:
            return []
        conn = self._get_conn()
        rows = conn.execute(
            f"SELECT * FROM user_interactions WHERE user_id = ? AND item_id IN ({_placeholders(ids)})",
            [user_id] + ids,
        ).fetchall()
        return [self._row_to_interaction(row) for row in rows]

    def list_interactions_with_flag(self, user_id: str, flag: str) -> list[Interaction]:
        """List a user's interaction rows with a boolean flag set.

        Args:
            user_id: The user's id
            flag: One of is_read, is_favorite, is_read_later

        Returns:
            List of Interaction objects, most recently updated first
        """
        if flag not in _INTERACTION_COLUMNS[:3]:
            raise ValueError(f"Unknown interaction flag: {flag}")
        conn = self._get_conn()
        rows = conn.execute(
            f"SELECT * FROM user_interactions WHERE user_id = ? AND {flag} = 1 ORDER BY updated_at DESC",
            (user_id,),
        ).fetchall()
        return [self._row_to_interaction(row) for row in rows]

    def upsert_interaction(self, user_id: str, item_id: str, item_type: str, updates: dict) -> Interaction:
        """Create or update the interaction row for (user, item).

        Args:
            user_id: The user's id
            item_id: The item's id
            item_type: "rss" or "youtube"
            updates: Column values to write; other flags keep their value

        Returns:
            The stored Interaction
        """
        unknown = set(updates) - set(_INTERACTION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown interaction fields: {sorted(unknown)}")

        now = utcnow()
        interaction = self.get_interaction(user_id, item_id, item_type)
        conn = self._get_conn()
        if interaction is None:
            interaction = Interaction(user_id=user_id, item_id=item_id, item_type=item_type, created_at=now)
            for key, value in updates.items():
                setattr(interaction, key, value)
            interaction.updated_at = now
            conn.execute(
                """
                INSERT INTO user_interactions (user_id, item_id, item_type, is_read, is_favorite,
                                               is_read_later, read_progress, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    item_id,
                    item_type,
                    interaction.is_read,
                    interaction.is_favorite,
                    interaction.is_read_later,
                    interaction.read_progress,
                    _fmt(now),
                    _fmt(now),
                ),
            )
        else:
            for key, value in updates.items():
                setattr(interaction, key, value)
            interaction.updated_at = now
            assignments = ", ".join(f"{key} = ?" for key in updates)
            conn.execute(
                f"""
                UPDATE user_interactions SET {assignments}, updated_at = ?
                WHERE user_id = ? AND item_id = ? AND item_type = ?
                """,
                list(updates.values()) + [_fmt(now), user_id, item_id, item_type],
            )
        conn.commit()
        return interaction

    def _row_to_interaction(self, row: sqlite3.Row) -> Interaction:
        """Convert a database row to an Interaction object."""
        return Interaction(
            user_id=row["user_id"],
            item_id=row["item_id"],
            item_type=row["item_type"],
            is_read=bool(row["is_read"]),
            is_favorite=bool(row["is_favorite"]),
            is_read_later=bool(row["is_read_later"]),
            read_progress=row["read_progress"] or 0,
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )
