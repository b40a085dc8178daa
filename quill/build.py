"""Site building functionality for Quill.

This module contains the core logic for building a static blog from source
files. It loads configuration and data, processes content, renders
templates, and writes pages, assets and feeds.

Key functions:
- build_site: Main function to build the entire site.
- load_config / load_data: Re-exported from the config module.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import TemplateSyntaxError

from .assets import AssetPipeline
from .config import ConfigError, load_config, load_data
from .content import ContentError, ContentProcessor, Page
from .feeds import create_default_feed_registry
from .html_utils import absolutize_html_urls
from .search import load_search_config
from .templates import TemplateEngine
from .utils import build_tags_index, ensure_clean_dir

__all__ = [
    "BuildError",
    "BuildResult",
    "ConfigError",
    "build_site",
    "load_config",
    "load_data",
]

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: List of all pages in the site.
        output_dir: Directory where the site was built.
        data: Global site data dictionary.
        feeds: Filenames of the feeds that were written.
    """

    pages: list[Page]
    output_dir: Path
    data: dict[str, Any]
    feeds: list[str] = field(default_factory=list)


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    root_url: str | None = None,
    clean_output: bool = True,
    output_dir_override: Path | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to include drafts (``_`` files, ``published: false``).
        root_url: Optional base URL to absolutize links with.
        clean_output: Whether to wipe the output directory before building.
        output_dir_override: Optional path to write the build output instead of config output_dir.

    Returns:
        BuildResult containing all pages, output directory, and site data.

    Raises:
        ConfigError: If quill.yaml or the search section is invalid.
        BuildError: If a page cannot be rendered or two pages share a URL.
    """
    config = load_config(project_root)
    if root_url is not None:
        config["root_url"] = root_url
    search = load_search_config(config)
    posts_dir = str(config.get("posts_dir") or "posts")

    site_dir = project_root / "site"
    if not site_dir.exists():
        raise FileNotFoundError(f"Expected site directory at {site_dir}")

    data = load_data(project_root)
    for key in ("title", "url", "description"):
        if key in config:
            data.setdefault(key, config[key])
    resolved_root = str(config.get("root_url") or "")
    if resolved_root:
        data.setdefault("root_url", resolved_root)

    try:
        pages = ContentProcessor(site_dir).load(include_drafts=include_drafts)
    except ContentError as exc:
        raise BuildError(exc.source_path, exc.message, exc.original_error) from exc
    registry = create_default_feed_registry(
        posts_dir=posts_dir, search_enabled=search.enabled
    )
    _check_unique_urls(pages, registry.reserved_filenames(data))
    tags = build_tags_index(p for p in pages if not p.draft)

    output_dir = output_dir_override or (
        project_root / config.get("output_dir", "output")
    )
    if clean_output:
        ensure_clean_dir(output_dir)
    else:
        output_dir.mkdir(parents=True, exist_ok=True)

    engine = TemplateEngine(
        site_dir, data, root_url=resolved_root, search=search, config=config
    )
    engine.update_collections(pages, tags, posts_dir=posts_dir)
    for page in pages:
        try:
            rendered = engine.render_page(page)
        except TemplateSyntaxError as exc:
            raise BuildError(
                page.path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except Exception as exc:
            raise BuildError(page.path, _format_error_message(exc), exc) from exc
        if resolved_root:
            rendered = absolutize_html_urls(rendered, resolved_root)
        _write_page(output_dir, page, rendered)

    AssetPipeline(project_root, output_dir).run()
    feeds = registry.generate_all(output_dir, pages, data)
    logger.info("Built %d pages into %s", len(pages), output_dir)
    return BuildResult(pages=pages, output_dir=output_dir, data=data, feeds=feeds)


def _check_unique_urls(pages: list[Page], reserved: Iterable[str] = ()) -> None:
    """Raise BuildError when two sources would be written to the same URL.

    ``reserved`` holds the files the feed generators will write at the
    output root; a page may not claim one of them either.
    """
    reserved_urls = {"/" + name for name in reserved}
    seen: dict[str, Page] = {}
    for page in pages:
        if page.url in reserved_urls:
            raise BuildError(
                page.path, f"URL {page.url} is reserved for a generated feed"
            )
        other = seen.get(page.url)
        if other is not None:
            raise BuildError(
                page.path,
                f"URL {page.url} is already produced by {other.path.name}",
            )
        seen[page.url] = page


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    if error_type == "UndefinedError":
        return f"Undefined variable: {exc}"
    if error_type == "TemplateNotFound":
        return f"Template not found: {exc}"
    if isinstance(exc, (TypeError, AttributeError)):
        return f"{error_type.replace('Error', ' error').capitalize()}: {exc}"
    return f"{error_type}: {exc}"


def _write_page(output_dir: Path, page: Page, rendered: str) -> None:
    target = output_dir / page.output_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(rendered, encoding="utf-8")
