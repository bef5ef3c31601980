import asyncio
from dataclasses import dataclass
from functools import wraps
from typing import Optional

import click

from . import __version__
from .config import AppConfig, ConfigManager, parse_duration
from .database import Database
from .exceptions import AlreadyExistsError, GatorError, NotLoggedInError
from .migrations import CURRENT_VERSION, check_migration_needed, get_schema_version, migrate
from .sanitize import sanitize_text


@dataclass
class State:
    """Per-invocation state handed to every command"""
    config_manager: ConfigManager
    config: AppConfig
    _db: Optional[Database] = None

    @property
    def db(self) -> Database:
        if self._db is None:
            db_path = self.config_manager.get_db_path(self.config)
            needs_migration, current_ver, latest_ver = check_migration_needed(db_path)
            if needs_migration:
                raise click.ClickException(
                    f"database schema is v{current_ver}, run 'gator db-migrate' to upgrade to v{latest_ver}"
                )
            self._db = Database(db_path)
        return self._db

    def set_user(self, name: str) -> None:
        self.config = self.config_manager.set_user(self.config, name)


class GatorGroup(click.Group):
    """Command group reporting GatorError as a one-line CLI error"""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except GatorError as e:
            raise click.ClickException(str(e)) from e


def requires_user(func):
    """Decorator resolving the current user and passing it after the state"""
    @click.pass_obj
    @wraps(func)
    def wrapper(state: State, *args, **kwargs):
        name = state.config.current_user_name
        if not name:
            raise NotLoggedInError("no current user, run 'gator register <name>' or 'gator login <name>'")
        user = state.db.get_user(name)
        if user is None:
            raise NotLoggedInError(f"current user {name!r} does not exist, run 'gator login <name>'")
        return func(state, user, *args, **kwargs)
    return wrapper


@click.group(name="gator", cls=GatorGroup, help="RSS feed aggregator")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding .gatorconfig.json (default: $GATOR_CONFIG_DIR or home)"
)
@click.pass_context
def cli(ctx: click.Context, config_dir):
    config_manager = ConfigManager(config_dir)
    ctx.obj = State(config_manager=config_manager, config=config_manager.load())


@cli.command(help="Show version")
def version():
    click.echo(f"gator {__version__}")


@cli.command(name="config", help="Show current configuration")
@click.pass_obj
def show_config(state: State):
    cfg = state.config
    click.echo(f"  Config file: {state.config_manager.config_path}")
    click.echo(f"  Database: {state.config_manager.get_db_path(cfg)}")
    click.echo(f"  Current user: {cfg.current_user_name or '-'}")
    click.echo(f"  Fetch timeout: {cfg.fetch_timeout}s")
    click.echo(f"  User-Agent: {cfg.user_agent}")
    log_dir = state.config_manager.get_log_dir(cfg)
    click.echo(f"  Log dir: {log_dir or '- (stdout only)'}")


# Users

@cli.command(help="Create a user and make it the current user")
@click.argument("name")
@click.pass_obj
def register(state: State, name):
    user = state.db.create_user(name)
    state.set_user(user.name)
    click.echo(f"User created: {user.name} ({user.id})")


@cli.command(help="Switch the current user")
@click.argument("name")
@click.pass_obj
def login(state: State, name):
    user = state.db.get_user(name)
    if user is None:
        raise click.ClickException(f"user {name!r} does not exist")
    state.set_user(user.name)
    click.echo(f"User has been set to {user.name}")


@cli.command(help="List users")
@click.pass_obj
def users(state: State):
    for user in state.db.get_users():
        suffix = " (current)" if user.name == state.config.current_user_name else ""
        click.echo(f"* {user.name}{suffix}")


@cli.command(help="Delete all users with their feeds, follows and posts")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def reset(state: State, yes):
    if not yes and not click.confirm("Delete ALL users, feeds and posts?", default=False):
        click.echo("Cancelled")
        return
    deleted = state.db.reset()
    click.echo(f"Database reset ({deleted} users deleted)")


# Feeds

@cli.command(help="Scrape followed feeds every INTERVAL (e.g. 30s, 1m, 1h30m)")
@click.argument("interval")
@click.pass_obj
def agg(state: State, interval):
    from .app import aggregate, setup_logging

    duration = parse_duration(interval)
    db = state.db
    setup_logging(state.config_manager.get_log_dir(state.config))

    click.echo(f"Collecting feeds every {interval}")
    try:
        asyncio.run(aggregate(db, state.config, duration))
    except KeyboardInterrupt:
        pass
    click.echo("Stopped")


@cli.command(help="Add a feed and follow it")
@click.argument("name")
@click.argument("url")
@requires_user
def addfeed(state: State, user, name, url):
    feed = state.db.create_feed(name, url, user.id)
    state.db.create_feed_follow(user.id, feed.id)
    click.echo(f"Feed added: {feed.name} ({feed.url})")
    click.echo(f"Feed follow created for url \"{feed.url}\" by user \"{user.name}\"")


@cli.command(help="List all feeds")
@click.pass_obj
def feeds(state: State):
    owners = {}
    for feed in state.db.get_feeds():
        if feed.user_id not in owners:
            owner = state.db.get_user_by_id(feed.user_id) if feed.user_id else None
            owners[feed.user_id] = owner.name if owner else "-"
        click.echo(f"Name: {feed.name} | Url: {feed.url} | User: {owners[feed.user_id]}")


@cli.command(help="Follow an existing feed by url")
@click.argument("url")
@requires_user
def follow(state: State, user, url):
    feed = state.db.get_feed_by_url(url)
    if feed is None:
        raise click.ClickException(f"feed not found: {url}")
    try:
        follow_edge = state.db.create_feed_follow(user.id, feed.id)
    except AlreadyExistsError:
        raise click.ClickException(f"{user.name} already follows {url}")
    click.echo(f"Feed follow created for url \"{feed.url}\" by user \"{follow_edge.user_name}\"")


@cli.command(help="List feeds followed by the current user")
@requires_user
def following(state: State, user):
    for edge in state.db.get_feed_follows_for_user(user.id):
        click.echo(f"* {edge.feed_name}")


@cli.command(help="Stop following a feed")
@click.argument("url")
@requires_user
def unfollow(state: State, user, url):
    if not state.db.delete_feed_follow(user.id, url):
        raise click.ClickException(f"{user.name} does not follow {url}")
    click.echo(f"Unfollowed {url}")


@cli.command(help="Show the newest posts from followed feeds")
@click.argument("limit", type=click.IntRange(min=1), default=2, required=False)
@requires_user
def browse(state: State, user, limit):
    posts = state.db.get_posts_for_user(user.id, limit)
    if not posts:
        click.echo("No posts yet, run 'gator agg <interval>' to collect some")
        return
    for post in posts:
        click.echo(sanitize_text(post.title))
        click.echo(post.url)
        click.echo(post.published_at.isoformat() if post.published_at else "-")
        click.echo(sanitize_text(post.description))
        click.echo()


# Database

def _existing_db_path(state: State):
    db_path = state.config_manager.get_db_path(state.config)
    if not db_path.exists():
        raise click.ClickException(f"no database at {db_path}")
    return db_path


@cli.command(name="db-version", help="Show database schema version")
@click.pass_obj
def db_version(state: State):
    db_path = _existing_db_path(state)
    current = get_schema_version(db_path)
    status = "up to date" if current >= CURRENT_VERSION else "run 'gator db-migrate'"
    click.echo(f"{db_path}: schema v{current} of v{CURRENT_VERSION} ({status})")


@cli.command(name="db-migrate", help="Upgrade the database schema")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_obj
def db_migrate(state: State, yes):
    db_path = _existing_db_path(state)
    current = get_schema_version(db_path)
    if current >= CURRENT_VERSION:
        click.echo(f"Schema already at v{current}")
        return

    if not yes:
        click.confirm(f"Upgrade {db_path} from v{current} to v{CURRENT_VERSION}?", abort=True)
    old_ver, new_ver = migrate(db_path)
    click.echo(f"Schema upgraded: v{old_ver} -> v{new_ver}")


def main():
    cli()


if __name__ == "__main__":
    main()
