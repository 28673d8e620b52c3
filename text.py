"""Text helpers for feed content: markup stripping, URL hashing, truncation."""

import html
import re
from hashlib import sha256
from html.parser import HTMLParser
from io import StringIO

_WHITESPACE = re.compile(r"\s+")
_TAG = re.compile(r"<[^>]+>")


class _HTMLTextExtractor(HTMLParser):
    """Extract readable text from HTML, skipping non-content tags.

    Every tag boundary is replaced by a single space so adjacent block
    elements do not run their words together.

    Usage:
        >>> parser = _HTMLTextExtractor()
        >>> parser.feed("<p>Hello <script>ignored</script>world</p>")
        >>> parser.get_text()
        ' Hello  world '
    """

    # Tags whose content should be completely ignored
    SKIP_TAGS = frozenset({"script", "style", "head", "noscript", "iframe"})

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._buffer = StringIO()
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP_TAGS:
            self._skip_depth += 1
        self._buffer.write(" ")

    def handle_endtag(self, tag):
        if tag in self.SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1
        self._buffer.write(" ")

    def handle_data(self, data):
        if self._skip_depth == 0:
            self._buffer.write(data)

    def get_text(self) -> str:
        """Return accumulated text content."""
        return self._buffer.getvalue()


def strip_html(value: str | None) -> str:
    """Convert an HTML fragment to plain text.

    Drops script and style content, replaces tags with spaces, decodes
    entities (including double-encoded ones such as ``&amp;eacute;``) and
    collapses whitespace.

    Args:
        value: HTML or plain text, possibly None

    Returns:
        Plain text, empty string for empty input
    """
    if not value:
        return ""
    parser = _HTMLTextExtractor()
    try:
        parser.feed(value)
        parser.close()
        text = parser.get_text()
    except Exception:
        # Fallback: strip tags with regex
        text = _TAG.sub(" ", value)
    return clean_text(html.unescape(text))


def clean_text(value: str | None) -> str:
    """Collapse runs of whitespace and trim."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def truncate(value: str, limit: int) -> str:
    """Cut text to at most ``limit`` characters, trimming trailing space."""
    if len(value) <= limit:
        return value
    return value[:limit].rstrip()


def hash_url(url: str) -> str:
    """Content hash of a canonical URL (sha256 hex digest)."""
    return sha256(url.encode("utf-8")).hexdigest()
