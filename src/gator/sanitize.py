import html
from typing import Optional


def sanitize_text(text: Optional[str]) -> str:
    """Escape markup-significant characters in untrusted feed text.

    Existing entities are resolved first, so applying this to its own output
    returns the same string (no ``&amp;lt;`` from a second pass).
    """
    if not text:
        return ""
    return html.escape(html.unescape(text), quote=True)
