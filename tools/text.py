"""Plain-text helpers for provider payloads (HTML snippets, whitespace)."""

import html
import re
from html.parser import HTMLParser
from io import StringIO


class _HTMLTextExtractor(HTMLParser):
    """Extract readable text from HTML, skipping non-content tags."""

    SKIP_TAGS = frozenset({"script", "style", "head", "meta", "link"})

    def __init__(self):
        super().__init__()
        self._buffer = StringIO()
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP_TAGS:
            self._skip_depth += 1
        elif tag in ("p", "br", "li", "div"):
            self._buffer.write(" ")

    def handle_endtag(self, tag):
        if tag in self.SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data):
        if self._skip_depth == 0:
            self._buffer.write(data)

    def get_text(self) -> str:
        return self._buffer.getvalue()


def html_to_text(markup: str) -> str:
    """Convert an HTML fragment to single-spaced plain text."""
    if not markup:
        return ""
    if "<" not in markup:
        return collapse_whitespace(html.unescape(markup))
    parser = _HTMLTextExtractor()
    try:
        parser.feed(markup)
        parser.close()
        text = parser.get_text()
    except (AssertionError, ValueError):
        text = re.sub(r"<[^>]+>", " ", markup)
    return collapse_whitespace(text)


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate(text: str, limit: int) -> str:
    """Truncate to limit characters, appending an ellipsis when cut."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)].rstrip() + "..."
