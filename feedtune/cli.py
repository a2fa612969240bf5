"""CLI commands for FeedTune."""

import logging
from typing import Optional

import click

from .app import FeedApp, FeedScreen
from .config import Settings
from .controllers import (
    FeedNotFoundError,
    ItemNotFoundError,
    NotAuthenticatedError,
    RemoteError,
    ValidationError,
    clean_up_old_items,
    get_stats,
)
from .models import FEED_TYPE_FILTERS, READ_STATUS_FILTERS, SORT_OPTIONS, FeedItem, FilterState, User
from .rss import FeedParseError, rss_preview
from .youtube import YouTubeError, effective_feed_type

# Errors reported as a red message and exit status 1
USER_ERRORS = (
    ValidationError,
    FeedNotFoundError,
    ItemNotFoundError,
    NotAuthenticatedError,
    RemoteError,
    FeedParseError,
    YouTubeError,
)


class ClickNotifier:
    """Notifier that echoes to the terminal."""

    def success(self, message: str) -> None:
        click.echo(click.style(message, fg="green"))

    def error(self, message: str) -> None:
        click.echo(click.style(f"Error: {message}", fg="red"))


def _open_app() -> FeedApp:
    return FeedApp(Settings.from_env(), notifier=ClickNotifier()).init()


def _fail(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"))
    raise SystemExit(1)


@click.group()
@click.version_option(package_name="feedtune")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """FeedTune - Follow RSS feeds and YouTube channels."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("email")
def login(email: str):
    """Sign in with an email address."""
    app = _open_app()
    try:
        session = app.sessions.sign_in(email)
        click.echo(click.style(f"Signed in as {session.user.email}", fg="green"))
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
def logout():
    """Sign out."""
    app = _open_app()
    try:
        app.sessions.sign_out()
        click.echo("Signed out.")
    finally:
        app.dispose()


@cli.command()
def whoami():
    """Show the signed-in user."""
    app = _open_app()
    try:
        session = app.sessions.get_session()
        if session is None:
            click.echo("Not signed in.")
            return
        click.echo(f"{session.user.email} (session expires {session.expires_at.strftime('%Y-%m-%d %H:%M')} UTC)")
    finally:
        app.dispose()


def _require_user(app: FeedApp) -> User:
    try:
        return app.sessions.require_user()
    except NotAuthenticatedError as e:
        _fail(str(e))


@cli.command()
@click.argument("url")
@click.option("--youtube", "-y", is_flag=True, help="Treat URL as a YouTube channel, handle or search keyword")
@click.option("--title", "-t", help="Title to show instead of the feed's own title")
def add(url: str, youtube: bool, title: Optional[str]):
    """Add an RSS feed or YouTube channel."""
    app = _open_app()
    try:
        user = _require_user(app)
        result = app.backend.add_feed(user.id, url, feed_type="youtube" if youtube else "rss", title=title)
        app.clear_page_cache(user.id)
        if not result.is_new:
            click.echo(click.style(f"Feed '{result.feed.title}' is already in your list", fg="yellow"))
            return
        click.echo(
            click.style(f"Added feed '{result.feed.title}'", fg="green")
            + f" ({result.items_added} item(s))"
        )
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
@click.argument("feed_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def remove(feed_id: str, yes: bool):
    """Remove a feed. Its items stay in favorites and read later."""
    app = _open_app()
    try:
        user = _require_user(app)
        feed = app.repo.get_feed(feed_id)
        if not feed or feed.user_id != user.id or feed.is_deleted:
            _fail(f"Feed '{feed_id}' not found")

        if not yes:
            click.confirm(f"Remove feed '{feed.title}'?", abort=True)

        app.backend.remove_feed(user.id, feed_id)
        app.clear_page_cache(user.id)
        click.echo(click.style(f"Removed feed '{feed.title}'", fg="green"))
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
def feeds():
    """List your feeds."""
    app = _open_app()
    try:
        user = _require_user(app)
        feed_list = app.backend.get_feeds(user.id)
        if not feed_list:
            click.echo("No feeds yet. Use 'feedtune add' to add one.")
            return

        click.echo(click.style(f"Feeds ({len(feed_list)}):", fg="cyan", bold=True))
        click.echo()

        for feed in feed_list:
            kind = effective_feed_type(feed.type, feed.url)
            click.echo(click.style(f"  {feed.title}", fg="white", bold=True) + f" [{kind}]")
            click.echo(f"    ID: {feed.id}")
            click.echo(f"    URL: {feed.url}")
            if feed.last_fetched:
                click.echo(f"    Last synced: {feed.last_fetched.strftime('%Y-%m-%d %H:%M')}")
            click.echo()
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
@click.option("--feed", "-f", "feed_id", help="Only items of this feed")
@click.option("--type", "feed_type", type=click.Choice(FEED_TYPE_FILTERS[:3]), help="Feed type filter")
@click.option("--status", "read_status", type=click.Choice(READ_STATUS_FILTERS[:3]), help="Read status filter")
@click.option("--sort", "sort_by", type=click.Choice(SORT_OPTIONS), help="Sort order")
@click.option("--name", "feed_name", help="Only feeds whose title contains this text")
@click.option("--reset", is_flag=True, help="Forget stored filters")
@click.option("--pages", "-p", default=1, show_default=True, help="Number of pages to load")
def items(
    feed_id: Optional[str],
    feed_type: Optional[str],
    read_status: Optional[str],
    sort_by: Optional[str],
    feed_name: Optional[str],
    reset: bool,
    pages: int,
):
    """List items of your feeds.

    Filter options are remembered for a day.
    """
    app = _open_app()
    try:
        user = _require_user(app)
        current = app.filter_store.reset() if reset else app.filter_store.load()
        if any(value is not None for value in (feed_type, read_status, sort_by, feed_name)):
            app.filter_store.save(
                FilterState(
                    feed_type=feed_type or current.feed_type,
                    read_status=read_status or current.read_status,
                    sort_by=sort_by or current.sort_by,
                    feed_name=feed_name if feed_name is not None else current.feed_name,
                )
            )

        screen = app.screen(user.id)
        screen.open(selected_feed_id=feed_id)

        for _ in range(pages - 1):
            if not screen.load_more():
                break

        item_list = screen.items
        if not item_list:
            click.echo("No items found.")
            return

        query = screen.filters.to_query_string()
        label = f"Items ({len(item_list)} of {screen.pagination.pagination.total})"
        click.echo(click.style(label, fg="cyan", bold=True) + (f" ?{query}" if query else ""))
        click.echo()

        for item in item_list:
            _print_item(item)

        if screen.pagination.pagination.has_more:
            click.echo(f"More items available: use --pages {pages + 1}")
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


def _print_item(item: FeedItem):
    """Print a single item."""
    status = click.style("[read]", fg="bright_black") if item.is_read else click.style("[new]", fg="yellow")
    marks = ""
    if item.is_favorite:
        marks += click.style(" *", fg="magenta")
    if item.is_read_later:
        marks += click.style(" (later)", fg="blue")
    if item.read_progress:
        marks += click.style(f" {item.read_progress}%", fg="green")
    kind = "video" if item.item_type == "youtube" else "article"

    click.echo(f"  {click.style(item.id, fg='cyan')} {status} {item.title}{marks}")
    click.echo(f"       {kind.capitalize()} from: {item.feed_title or 'Unknown'}")
    click.echo(f"       URL: {item.url}")
    if item.published_at:
        click.echo(f"       Published: {item.published_at.strftime('%Y-%m-%d')}")
    click.echo()


def _toggle(item_id: str, flag: str, value, done: str, already: str):
    app = _open_app()
    try:
        user = _require_user(app)
        item = app.repo.get_item(item_id)
        feed = app.repo.get_feed(item.feed_id) if item else None
        if not item or not feed or feed.user_id != user.id:
            _fail(f"Item '{item_id}' not found")

        item = app.repo.overlay_interactions(user.id, [item])[0]
        if getattr(item, flag) == value:
            click.echo(f"Item {item_id} {already}.")
            return

        screen = app.screen(user.id)
        screen.track(item)
        toggles = {
            "is_read": screen.toggle_read,
            "is_favorite": screen.toggle_favorite,
            "is_read_later": screen.toggle_read_later,
            "read_progress": screen.set_progress,
        }
        if not toggles[flag](item_id, value):
            raise SystemExit(1)
        click.echo(click.style(f"{done}: {item.title}", fg="green"))
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
@click.argument("item_id")
def read(item_id: str):
    """Mark an item as read."""
    _toggle(item_id, "is_read", True, "Marked as read", "is already marked as read")


@cli.command()
@click.argument("item_id")
def unread(item_id: str):
    """Mark an item as unread."""
    _toggle(item_id, "is_read", False, "Marked as unread", "is already marked as unread")


@cli.command()
@click.argument("item_id")
def favorite(item_id: str):
    """Add an item to favorites."""
    _toggle(item_id, "is_favorite", True, "Added to favorites", "is already a favorite")


@cli.command()
@click.argument("item_id")
def unfavorite(item_id: str):
    """Remove an item from favorites."""
    _toggle(item_id, "is_favorite", False, "Removed from favorites", "is not a favorite")


@cli.command()
@click.argument("item_id")
@click.option("--remove", "-r", is_flag=True, help="Remove from read later instead")
def later(item_id: str, remove: bool):
    """Save an item to read later."""
    if remove:
        _toggle(item_id, "is_read_later", False, "Removed from read later", "is not in read later")
    else:
        _toggle(item_id, "is_read_later", True, "Saved for later", "is already in read later")


@cli.command()
@click.argument("item_id")
@click.argument("percent", type=click.IntRange(0, 100))
def progress(item_id: str, percent: int):
    """Record how far you got through an item (0-100)."""
    _toggle(item_id, "read_progress", percent, f"Progress set to {percent}%", f"is already at {percent}%")


def _list_collection(title: str, load):
    app = _open_app()
    try:
        user = _require_user(app)
        item_list = load(app.screen(user.id))
        if not item_list:
            click.echo(f"No {title.lower()} items.")
            return

        click.echo(click.style(f"{title} ({len(item_list)}):", fg="cyan", bold=True))
        click.echo()
        for item in item_list:
            _print_item(item)
    finally:
        app.dispose()


@cli.command()
def favorites():
    """List favorite items."""
    _list_collection("Favorites", FeedScreen.load_favorites)


@cli.command("read-later")
def read_later():
    """List items saved to read later."""
    _list_collection("Read later", FeedScreen.load_read_later)


@cli.command()
def sync():
    """Fetch new items for all your feeds."""
    app = _open_app()
    try:
        user = _require_user(app)
        feed_count = len(app.backend.get_feeds(user.id))
        if not feed_count:
            click.echo("No feeds yet. Use 'feedtune add' to add one.")
            return

        click.echo(click.style(f"Syncing {feed_count} feed(s)...", fg="cyan"))
        click.echo()

        total_added = 0
        for result in app.backend.sync_feeds(user.id):
            _print_sync_result(result)
            total_added += result.added
        app.clear_page_cache(user.id)

        click.echo()
        if total_added > 0:
            click.echo(click.style(f"Added {total_added} new item(s) total!", fg="green", bold=True))
        else:
            click.echo(click.style("No new items found.", fg="yellow"))
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


def _print_sync_result(result):
    """Print a single sync result."""
    status_color = "green" if result.added > 0 else "white"

    click.echo(click.style(f"  {result.feed_title}", fg="white", bold=True))

    if result.error:
        click.echo(click.style(f"    Error: {result.error}", fg="red"))
    else:
        click.echo(
            f"    Found: {result.total_found} | "
            f"Updated: {result.updated} | "
            + click.style(f"New: {result.added}", fg=status_color)
        )


@cli.command()
@click.argument("url")
def preview(url: str):
    """Show a feed's title and latest items without adding it."""
    try:
        data = rss_preview(url, timeout=Settings.from_env().request_timeout)
    except FeedParseError as e:
        _fail(str(e))

    click.echo(click.style(data["title"] or url, fg="cyan", bold=True))
    if data["description"]:
        click.echo(f"  {data['description']}")
    click.echo(f"  {len(data['items'])} item(s)")
    click.echo()
    for entry in data["preview"]:
        click.echo(f"  - {entry['title']}")
        click.echo(f"    {entry['link']}")


@cli.command()
@click.option("--days", "-d", default=30, show_default=True, help="Delete items older than this many days")
@click.option("--include-favorites", is_flag=True, help="Also delete old favorites")
@click.option("--include-read-later", is_flag=True, help="Also delete old read later items")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def cleanup(days: int, include_favorites: bool, include_read_later: bool, yes: bool):
    """Delete old items of your feeds."""
    app = _open_app()
    try:
        user = _require_user(app)
        if not yes:
            click.confirm(f"Delete items older than {days} day(s)?", abort=True)

        deleted = clean_up_old_items(
            app.repo,
            user.id,
            older_than_days=days,
            keep_favorites=not include_favorites,
            keep_read_later=not include_read_later,
        )
        app.clear_page_cache(user.id)
        click.echo(
            click.style(f"Deleted {sum(deleted.values())} item(s)", fg="green")
            + f" (articles: {deleted['rss']}, videos: {deleted['youtube']})"
        )
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


@cli.command()
def stats():
    """Show counts of feeds and items."""
    app = _open_app()
    try:
        user = _require_user(app)
        counts = get_stats(app.repo, user.id)
        click.echo(click.style("FeedTune stats:", fg="cyan", bold=True))
        click.echo(f"  Feeds: {counts['feeds']}")
        click.echo(f"  Items: {counts['items']}")
        click.echo(f"  Unread: {counts['unread']}")
        click.echo(f"  Favorites: {counts['favorites']}")
        click.echo(f"  Read later: {counts['read_later']}")
    except USER_ERRORS as e:
        _fail(str(e))
    finally:
        app.dispose()


if __name__ == "__main__":
    cli()
