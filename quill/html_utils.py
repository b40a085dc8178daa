"""HTML utility functions for Quill.

Functions:
    escape_html: Escape special HTML characters in a string.
    absolutize_html_urls: Convert root-relative URLs to absolute in HTML.
    join_root_url: Join a base URL with a path.
    rewrite_image_path: Point relative image sources at the assets directory.
    html_to_text: Reduce rendered HTML to plain text for search records.
"""

from __future__ import annotations

import html
import re
from pathlib import Path

_URL_ATTR_RE = re.compile(
    r'(?P<prefix>\b(?:href|src|action)=["\'])(?P<url>[^"\']+)(?P<suffix>["\'])'
)

_URL_SKIP_PREFIXES = (
    "http://",
    "https://",
    "//",
    "mailto:",
    "tel:",
    "#",
    "javascript:",
    "data:",
)

_EXTERNAL_PREFIXES = ("http://", "https://", "//", "/", "data:")

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Examples:
        >>> escape_html('Tom & "Jerry"')
        'Tom &amp; &quot;Jerry&quot;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def absolutize_html_urls(markup: str, root_url: str) -> str:
    """Rewrite root-relative URLs in href/src/action attributes to absolute URLs.

    External URLs, anchors, mailto/tel links and javascript: URLs are left
    unchanged.
    """
    if not root_url:
        return markup

    def repl(match: re.Match) -> str:
        url = match.group("url")
        if not url or url.startswith(_URL_SKIP_PREFIXES) or not url.startswith("/"):
            return match.group(0)
        absolute = join_root_url(root_url, url)
        return f"{match.group('prefix')}{absolute}{match.group('suffix')}"

    return _URL_ATTR_RE.sub(repl, markup)


def rewrite_image_path(src: str, folder: str) -> str:
    """Rewrite a relative image source to live under ``/assets/images``.

    Absolute, root-relative and templated sources are returned unchanged.

    Examples:
        >>> rewrite_image_path("covers/span.png", "posts")
        '/assets/images/posts/covers/span.png'
    """
    if not src or src.startswith(_EXTERNAL_PREFIXES) or "{{" in src:
        return src
    prefix = Path(folder) if folder else Path()
    normalized = (prefix / src).as_posix()
    return f"/assets/images/{normalized}"


def html_to_text(markup: str, limit: int | None = None) -> str:
    """Strip tags (and script/style bodies) from HTML and collapse whitespace."""
    text = _SCRIPT_STYLE_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    text = " ".join(html.unescape(text).split())
    if limit is not None and len(text) > limit:
        return text[:limit].rstrip()
    return text
