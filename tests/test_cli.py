"""
Tests for the gator command line.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
from click.testing import CliRunner, Result

from gator.cli import cli
from gator.database import Database, utcnow
from gator.migrations import migrate
from gator.models import Post


@pytest.fixture
def run(tmp_path: Path) -> Callable[..., Result]:
    """
    Invoke the CLI against a temporary config directory.
    """
    runner = CliRunner()

    def invoke(*args: str) -> Result:
        return runner.invoke(cli, ["--config-dir", str(tmp_path), *args])

    return invoke


def test_version(run) -> None:
    result = run("version")
    assert result.exit_code == 0
    assert result.output.startswith("gator ")


def test_register_sets_current_user(run) -> None:
    """Should create the user and mark it current."""
    assert run("register", "kahya").exit_code == 0
    assert run("register", "holgith").exit_code == 0

    result = run("users")

    assert result.exit_code == 0
    assert result.output.splitlines() == ["* holgith (current)", "* kahya"]


def test_register_duplicate_fails(run) -> None:
    run("register", "kahya")

    result = run("register", "kahya")

    assert result.exit_code == 1
    assert "already exists" in result.output


def test_login(run) -> None:
    """Should switch to an existing user and refuse unknown ones."""
    run("register", "kahya")
    run("register", "holgith")

    assert run("login", "kahya").exit_code == 0
    assert "* kahya (current)" in run("users").output

    result = run("login", "nobody")
    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_addfeed_requires_login(run) -> None:
    result = run("addfeed", "Blog", "https://example.com/rss")

    assert result.exit_code == 1
    assert "no current user" in result.output


def test_addfeed_follows_and_lists(run) -> None:
    """Should create the feed, follow it and show it in feeds/following."""
    run("register", "kahya")

    result = run("addfeed", "Blog", "https://example.com/rss")
    assert result.exit_code == 0
    assert 'Feed follow created for url "https://example.com/rss" by user "kahya"' in result.output

    assert run("feeds").output.strip() == "Name: Blog | Url: https://example.com/rss | User: kahya"
    assert run("following").output.strip() == "* Blog"


def test_follow_and_unfollow(run) -> None:
    """A second user should follow an existing feed and unfollow it again."""
    run("register", "kahya")
    run("addfeed", "Blog", "https://example.com/rss")
    run("register", "holgith")

    assert run("follow", "https://example.com/rss").exit_code == 0
    assert run("following").output.strip() == "* Blog"

    again = run("follow", "https://example.com/rss")
    assert again.exit_code == 1
    assert "already follows" in again.output

    assert run("unfollow", "https://example.com/rss").exit_code == 0
    assert run("following").output.strip() == ""
    assert run("unfollow", "https://example.com/rss").exit_code == 1


def test_follow_unknown_feed(run) -> None:
    run("register", "kahya")

    result = run("follow", "https://missing.example/rss")

    assert result.exit_code == 1
    assert "feed not found" in result.output


def test_browse_shows_sanitized_posts(run, tmp_path: Path) -> None:
    """Should print stored posts without double escaping."""
    run("register", "kahya")
    run("addfeed", "Blog", "https://example.com/rss")
    db = Database(tmp_path / "gator.db")
    feed = db.get_feed_by_url("https://example.com/rss")
    now = utcnow()
    db.create_post(
        Post(
            id=str(uuid.uuid4()),
            feed_id=feed.id,
            url="https://example.com/1",
            title="&lt;b&gt;Hello&lt;/b&gt;",
            description="Tom &amp; Jerry",
            published_at=datetime(2006, 1, 2, 22, 4, 5, tzinfo=timezone.utc),
            created_at=now,
            updated_at=now,
        )
    )

    result = run("browse", "5")

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[:4] == [
        "&lt;b&gt;Hello&lt;/b&gt;",
        "https://example.com/1",
        "2006-01-02T22:04:05+00:00",
        "Tom &amp; Jerry",
    ]


def test_browse_empty(run) -> None:
    run("register", "kahya")

    result = run("browse")

    assert result.exit_code == 0
    assert "No posts yet" in result.output


def test_reset(run) -> None:
    run("register", "kahya")
    run("addfeed", "Blog", "https://example.com/rss")

    result = run("reset", "--yes")

    assert result.exit_code == 0
    assert run("users").output == ""
    assert run("feeds").output == ""


def test_agg_rejects_bad_interval(run) -> None:
    result = run("agg", "soon")

    assert result.exit_code == 1
    assert "invalid duration" in result.output


def test_db_version(run) -> None:
    run("register", "kahya")

    result = run("db-version")

    assert result.exit_code == 0
    assert "schema v5 of v5 (up to date)" in result.output


def test_empty_database_file_is_treated_as_new(run, tmp_path: Path) -> None:
    """A zero-byte database file should be set up, not reported as outdated."""
    (tmp_path / "gator.db").touch()

    result = run("register", "kahya")

    assert result.exit_code == 0
    assert run("users").output.strip() == "* kahya (current)"


def test_outdated_schema_requires_db_migrate(run, tmp_path: Path) -> None:
    """Commands should refuse an old schema until db-migrate upgrades it."""
    migrate(tmp_path / "gator.db", target_version=3)

    blocked = run("users")
    assert blocked.exit_code == 1
    assert "db-migrate" in blocked.output

    upgraded = run("db-migrate", "--yes")
    assert upgraded.exit_code == 0
    assert "v3 -> v5" in upgraded.output
    assert run("users").exit_code == 0
