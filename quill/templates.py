"""Template rendering engine for Quill.

This module uses Jinja2 to render page bodies and wrap them in layouts.

Key classes:
- TemplateEngine: Handles template rendering and provides context to templates.
- LiquidIncludeExtension: Accepts ``{% include algolia.html %}`` style includes.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    select_autoescape,
)
from jinja2.ext import Extension
from markupsafe import Markup
from pygments.formatters import HtmlFormatter

from .assets import AssetResolver
from .collections import PageCollection, TagCollection
from .content import LAYOUT_SUFFIXES, Page
from .html_utils import join_root_url
from .search import SearchConfig, render_hits, render_widget

__all__ = ["LiquidIncludeExtension", "TemplateEngine", "date_format"]

logger = logging.getLogger(__name__)

BUILTIN_PARTIALS_DIR = Path(__file__).parent / "templates" / "partials"

_BARE_INCLUDE_RE = re.compile(
    r"\{%(?P<open>-?)\s*include\s+(?P<name>[\w./-]+\.[A-Za-z0-9]+)\s*(?P<close>-?)%\}"
)


class LiquidIncludeExtension(Extension):
    """Quote bare include targets so Liquid-style includes compile in Jinja.

    ``{% include algolia.html %}`` becomes ``{% include "algolia.html" %}``.
    Quoted names and variable includes are left alone.
    """

    def preprocess(
        self, source: str, name: str | None, filename: str | None = None
    ) -> str:
        return _BARE_INCLUDE_RE.sub(
            lambda m: f'{{%{m["open"]} include "{m["name"]}" {m["close"]}%}}', source
        )


def date_format(value: datetime | None, fmt: str = "%B %d, %Y") -> str:
    """Jinja filter formatting a page date; empty for missing values."""
    if value is None:
        return ""
    return value.strftime(fmt)


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        site_dir: Directory containing templates.
        data: Global site data.
        env: Jinja2 environment.
        pages: All pages.
        posts: Published posts, newest first.
        tags: Tags to pages.
        search: Hosted search configuration.
        asset_resolver: Resolver for asset paths.
    """

    def __init__(
        self,
        site_dir: Path,
        data: dict[str, Any],
        root_url: str | None = None,
        search: SearchConfig | None = None,
        asset_resolver: AssetResolver | None = None,
        config: dict[str, Any] | None = None,
    ):
        self.site_dir = site_dir
        self.data = data
        self.config = config or {}
        self.root_url = root_url or str(data.get("root_url") or "")
        self.search = search or SearchConfig()
        self.env = Environment(
            loader=ChoiceLoader(
                [
                    FileSystemLoader(
                        [site_dir / "_layouts", site_dir / "_partials", site_dir]
                    ),
                    FileSystemLoader(BUILTIN_PARTIALS_DIR),
                ]
            ),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            extensions=[LiquidIncludeExtension],
        )
        self.env.filters["date_format"] = date_format
        self.pages: PageCollection = PageCollection([])
        self.posts: PageCollection = PageCollection([])
        self.tags: TagCollection = TagCollection({})

        self.asset_resolver = asset_resolver or AssetResolver(site_dir.parent / "assets")
        self.asset_resolver.set_url_generator(self.url_for)

        self._install_globals()

    @property
    def site(self) -> dict[str, Any]:
        """Config merged with site data, exposed to templates as ``site``."""
        return {**self.config, **self.data}

    def _install_globals(self) -> None:
        self.env.globals.update(
            data=self.data,
            site=self.site,
            pages=self.pages,
            posts=self.posts,
            tags=self.tags,
            search=self.search,
            url_for=self.url_for,
            pygments_css=self._pygments_css,
            js_path=self.asset_resolver.js_path,
            css_path=self.asset_resolver.css_path,
            img_path=self.asset_resolver.img_path,
            search_widget=render_widget,
            render_hits=render_hits,
        )

    @staticmethod
    def _pygments_css(style: str = "default") -> str:
        return HtmlFormatter(style=style).get_style_defs(".highlight")

    def update_collections(
        self,
        pages: Iterable[Page],
        tags: dict[str, list[Page]],
        posts_dir: str = "posts",
    ) -> None:
        """Install the page, post and tag collections used by listing templates."""
        self.pages = PageCollection(pages)
        self.posts = self.pages.group(posts_dir).published().sorted()
        self.tags = TagCollection(tags)
        self.env.globals.update(pages=self.pages, posts=self.posts, tags=self.tags)

    def url_for(self, path: str) -> str:
        """Generate a URL for a path, applying root_url if configured."""
        if path.startswith(("http://", "https://", "//")):
            return path
        base = self.root_url or str(self.data.get("url", "") or "")
        normalized = path if path.startswith("/") else f"/{path}"
        return join_root_url(base, normalized) if base else normalized

    def context_for(self, page: Page) -> dict[str, Any]:
        return {
            "site": self.site,
            "data": self.data,
            "current_page": page,
            "page": page,
            "frontmatter": page.frontmatter,
            "pages": self.pages,
            "posts": self.posts,
            "tags": self.tags,
            "search": self.search,
        }

    def render_page(self, page: Page) -> str:
        """Render a page body and wrap it in its layout."""
        context = self.context_for(page)
        body_html = self._render_body(page, context)
        layout_template = self._resolve_layout_template(page.layout)
        if layout_template is None:
            logger.debug("No layout for %s; rendering body only", page.path)
            return body_html
        return layout_template.render(page_content=Markup(body_html), **context)

    def _render_body(self, page: Page, context: dict[str, Any]) -> str:
        if page.source_type == "jinja":
            return self.env.from_string(page.content).render(**context)
        return page.content

    def _resolve_layout_template(self, layout: str):
        names = [layout] if layout == "default" else [layout, "default"]
        for name in names:
            for suffix in LAYOUT_SUFFIXES:
                try:
                    return self.env.get_template(f"{name}{suffix}")
                except TemplateNotFound:
                    continue
        return None

    def render_string(self, template: str, context: dict[str, Any]) -> str:
        return self.env.from_string(template).render(**context)
