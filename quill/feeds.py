"""Feed generation for Quill.

Classes:
    FeedGenerator: Abstract base class for feed generators.
    SitemapGenerator: Generates sitemap.xml.
    RSSGenerator: Generates an RSS 2.0 feed of posts.
    SearchIndexGenerator: Generates search.json records for the hosted index.
    FeedRegistry: Runs every registered generator.

Functions:
    create_default_feed_registry: Create a registry with default generators.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .html_utils import escape_html
from .search import build_search_records

if TYPE_CHECKING:
    from .content import Page

RFC822 = "%a, %d %b %Y %H:%M:%S +0000"


class FeedGenerator(ABC):
    """Interface for generators that write one site-level file."""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Output filename, such as 'sitemap.xml'."""
        ...

    @abstractmethod
    def generate(self, pages: Iterable[Page], data: dict[str, Any]) -> str | None:
        """Generate feed content, or None when it cannot be produced.

        Args:
            pages: Pages to include.
            data: Site data (``url``, ``title``...) and feed settings.
        """
        ...

    def will_write(self, data: dict[str, Any]) -> bool:
        """Whether this generator produces a file for the given site data."""
        return True

    def write(
        self, output_dir: Path, pages: Iterable[Page], data: dict[str, Any]
    ) -> bool:
        """Generate and write the feed; returns False if it was skipped."""
        content = self.generate(pages, data)
        if content is None:
            return False
        (output_dir / self.filename).write_text(content, encoding="utf-8")
        return True


class SitemapGenerator(FeedGenerator):
    """Sitemap following the sitemaps.org protocol. Requires ``url``."""

    filename = "sitemap.xml"

    def will_write(self, data: dict[str, Any]) -> bool:
        return bool(str(data.get("url", "")).strip("/"))

    def generate(self, pages: Iterable[Page], data: dict[str, Any]) -> str | None:
        base_url = str(data.get("url", "")).rstrip("/")
        if not base_url:
            return None
        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for page in pages:
            if page.draft or not page.output_path.endswith(".html"):
                continue
            loc = escape_html(f"{base_url}{page.url}")
            lastmod = page.date.strftime("%Y-%m-%d")
            lines.append(f"  <url><loc>{loc}</loc><lastmod>{lastmod}</lastmod></url>")
        lines.append("</urlset>")
        return "\n".join(lines)


class RSSGenerator(FeedGenerator):
    """RSS 2.0 feed of published posts, newest first. Requires ``url``."""

    filename = "rss.xml"

    def will_write(self, data: dict[str, Any]) -> bool:
        return bool(str(data.get("url", "")).strip("/"))

    def __init__(self, posts_dir: str = "posts", limit: int = 20):
        self.posts_dir = posts_dir
        self.limit = limit

    def generate(self, pages: Iterable[Page], data: dict[str, Any]) -> str | None:
        base_url = str(data.get("url", "")).rstrip("/")
        if not base_url:
            return None
        title = escape_html(str(data.get("title", "Quill Feed")))
        posts = [p for p in pages if p.group == self.posts_dir and not p.draft]
        posts.sort(key=lambda p: p.date, reverse=True)

        items = []
        for page in posts[: self.limit]:
            link = escape_html(f"{base_url}{page.url}")
            description = escape_html(page.excerpt or page.description or page.title)
            categories = "".join(
                f"<category>{escape_html(tag)}</category>" for tag in page.tags
            )
            items.append(
                f"<item><title>{escape_html(page.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid><description>{description}</description>"
                f"{categories}<pubDate>{page.date.strftime(RFC822)}</pubDate></item>"
            )

        build_date = datetime.now(timezone.utc).strftime(RFC822)
        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{title}</title>",
            f"<link>{escape_html(base_url)}</link>",
            f"<description>{escape_html(str(data.get('description', '')))}</description>",
            f"<lastBuildDate>{build_date}</lastBuildDate>",
        ]
        rss.extend(items)
        rss.append("</channel></rss>")
        return "\n".join(rss)


class SearchIndexGenerator(FeedGenerator):
    """JSON records for uploading to the hosted search index.

    Only written when search is enabled for the site.
    """

    filename = "search.json"

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def will_write(self, data: dict[str, Any]) -> bool:
        return self.enabled

    def generate(self, pages: Iterable[Page], data: dict[str, Any]) -> str | None:
        if not self.enabled:
            return None
        return json.dumps(build_search_records(pages), indent=2, ensure_ascii=False)


class FeedRegistry:
    """Registry of feed generators run after the pages are written."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def reserved_filenames(self, data: dict[str, Any]) -> list[str]:
        """Filenames the registered generators will write for ``data``."""
        return [g.filename for g in self._generators if g.will_write(data)]

    def generate_all(
        self, output_dir: Path, pages: Iterable[Page], data: dict[str, Any]
    ) -> list[str]:
        """Generate all registered feeds; returns the filenames written."""
        pages_list = list(pages)
        return [
            generator.filename
            for generator in self._generators
            if generator.write(output_dir, pages_list, data)
        ]


def create_default_feed_registry(
    posts_dir: str = "posts", search_enabled: bool = False
) -> FeedRegistry:
    """Create a registry with sitemap, RSS and search index generators."""
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RSSGenerator(posts_dir=posts_dir))
    registry.register(SearchIndexGenerator(enabled=search_enabled))
    return registry
