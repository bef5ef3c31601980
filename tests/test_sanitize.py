"""Tests for the markup sanitizer."""

from gator.sanitize import sanitize_text


def test_sanitize_escapes_script_tag() -> None:
    """Should escape angle brackets."""
    assert sanitize_text("<script>") == "&lt;script&gt;"


def test_sanitize_is_idempotent() -> None:
    """Escaping twice should equal escaping once."""
    once = sanitize_text("<script>")
    assert sanitize_text(once) == once


def test_sanitize_idempotent_on_mixed_text() -> None:
    """Ampersands and quotes should not be double-escaped either."""
    once = sanitize_text('Tom & Jerry say "hi" <b>loud</b> \'twice\'')
    assert once == (
        "Tom &amp; Jerry say &quot;hi&quot; &lt;b&gt;loud&lt;/b&gt; &#x27;twice&#x27;"
    )
    assert sanitize_text(once) == once


def test_sanitize_keeps_plain_text() -> None:
    """Should leave text without markup alone."""
    assert sanitize_text("Plain title") == "Plain title"


def test_sanitize_none_and_empty() -> None:
    """Should turn None and empty input into an empty string."""
    assert sanitize_text(None) == ""
    assert sanitize_text("") == ""
