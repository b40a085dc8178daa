"""Content processing for Quill.

This module discovers source files under ``site/``, splits their front
matter, renders their bodies and creates Page objects.

Key classes:
- Page: Dataclass representing a site page (usually a blog post).
- FileContentLoader: Discovers processable files.
- LayoutResolver: Picks the layout template for a page.
- UrlDeriver: Derives a page URL from its path or permalink.
- DefaultPageBuilder: Builds a Page from a source file.
- ContentProcessor: Facade that loads every page of a site.
- ContentError: A source file could not be read.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .html_utils import rewrite_image_path
from .renderers import RendererRegistry, default_renderer_registry
from .utils import is_html, is_markdown, is_template, slugify, source_stem

logger = logging.getLogger(__name__)

IMAGE_SRC_RE = re.compile(r'<img\s+[^>]*src="([^"]+)"', re.IGNORECASE)

LAYOUT_SUFFIXES = (".html.jinja", ".jinja", ".html", "")


class ContentError(Exception):
    """A source file could not be read or decoded."""

    def __init__(self, source_path: Path, message: str, original_error: Exception):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class Page:
    """A site page with all its metadata and content.

    Attributes:
        title: Human-readable title of the page.
        body: Source text after the front matter block.
        content: Rendered HTML (Markdown, HTML) or template text (Jinja).
        description: Short description, often from the first paragraph.
        excerpt: First prose paragraph (Markdown) or front matter ``excerpt``.
        url: URL path for the page.
        slug: URL-friendly slug derived from the filename.
        date: Publication date.
        tags: Tags, including the category.
        category: Primary category, or "".
        cover_image: URL of the cover image, or "".
        draft: Whether this is a draft page.
        layout: Layout template name.
        group: Content group (first folder, e.g. 'posts').
        path: Path to the source file.
        folder: Folder path relative to the site directory.
        filename: Name of the source file.
        source_type: "markdown", "html" or "jinja".
        frontmatter: The parsed front matter mapping.
    """

    title: str
    body: str
    content: str
    description: str
    excerpt: str
    url: str
    slug: str
    date: datetime
    tags: list[str]
    draft: bool
    layout: str
    group: str
    path: Path
    folder: str
    filename: str
    source_type: str
    category: str = ""
    cover_image: str = ""
    frontmatter: dict[str, Any] = field(default_factory=dict)

    @property
    def output_path(self) -> str:
        """Relative output path: ``<url>/index.html`` or the file a permalink names."""
        url_path = self.url.strip("/")
        if url_path and not self.url.endswith("/") and "." in url_path.rsplit("/", 1)[-1]:
            return url_path
        return f"{url_path}/index.html" if url_path else "index.html"


class FileContentLoader:
    """Discovers content files in a site directory."""

    def __init__(self, site_dir: Path):
        self.site_dir = site_dir

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """Return processable content files, sorted by relative path.

        Paths under ``_``-prefixed directories are internal (layouts,
        partials) and never returned. ``_``-prefixed files are drafts.
        """
        files: list[Path] = []
        for path in self.site_dir.rglob("*"):
            if path.is_dir():
                continue
            rel = path.relative_to(self.site_dir)
            if any(part.startswith(("_", ".")) for part in rel.parts[:-1]):
                continue
            if rel.name.startswith("_") and not include_drafts:
                continue
            if is_markdown(path) or is_template(path) or is_html(path):
                files.append(path)
        return sorted(files, key=lambda p: p.relative_to(self.site_dir).as_posix())


class LayoutResolver:
    """Resolves layout templates for pages.

    A front matter ``layout`` is used when it names an existing template.
    Otherwise layouts are searched in order:
    1. {folder}/{name} - most specific
    2. {group} - e.g. ``posts`` for everything under site/posts/
    3. {name} - for pages at the site root
    4. default
    """

    def __init__(self, site_dir: Path):
        self.site_dir = site_dir
        self.layout_dir = site_dir / "_layouts"

    def exists(self, name: str) -> bool:
        return any(
            (self.layout_dir / f"{name}{suffix}").is_file()
            for suffix in LAYOUT_SUFFIXES
        )

    def resolve(self, path: Path, folder: str, requested: str | None = None) -> str:
        if requested:
            if self.exists(requested):
                return requested
            logger.warning(
                "%s: layout %r not found, falling back", path.name, requested
            )
        name = source_stem(path)
        group = self.group_from_folder(folder)
        candidates = [f"{folder}/{name}", group] if folder else [name]
        for candidate in candidates:
            if self.exists(candidate):
                return candidate
        return "default"

    @staticmethod
    def group_from_folder(folder: str) -> str:
        if not folder:
            return ""
        return Path(folder).parts[0]


class UrlDeriver:
    """Derives URL paths for pages."""

    def derive(self, rel: Path, slug: str, permalink: str | None = None) -> str:
        """Derive the URL for a page.

        Args:
            rel: Path relative to the site directory.
            slug: URL-friendly slug.
            permalink: Optional front matter permalink that overrides the path.

        Returns:
            URL path such as ``/``, ``/posts/`` or ``/posts/my-post/``.
        """
        if permalink:
            return self.normalize_permalink(permalink)
        segments = [p for p in rel.parent.parts if p]
        url_parts = segments if slug == "index" else segments + [slug]
        path = "/".join(url_parts)
        return f"/{path}/" if path else "/"

    @staticmethod
    def normalize_permalink(permalink: str) -> str:
        """Give a permalink a leading slash and, unless it names a file, a trailing one.

        Examples:
            >>> UrlDeriver.normalize_permalink("search")
            '/search/'
            >>> UrlDeriver.normalize_permalink("/feed.xml")
            '/feed.xml'
        """
        url = "/" + str(permalink).strip().strip("/")
        last = url.rsplit("/", 1)[-1]
        if url == "/" or "." in last:
            return url
        return f"{url}/"


class DefaultPageBuilder:
    """Builds Page objects from source files.

    Attributes:
        site_dir: Directory containing site content.
        renderer_registry: Registry of content renderers.
        metadata_extractor: Composite metadata extractor.
        layout_resolver: Layout resolver instance.
        url_deriver: URL deriver instance.
    """

    def __init__(
        self,
        site_dir: Path,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.site_dir = site_dir
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.layout_resolver = LayoutResolver(site_dir)
        self.url_deriver = UrlDeriver()

    def build(self, path: Path, draft: bool = False) -> Page:
        """Build a Page object from a source file."""
        rel = path.relative_to(self.site_dir)
        folder = rel.parent.as_posix() if rel.parent != Path(".") else ""
        raw = path.read_text(encoding="utf-8")

        metadata = self.metadata_extractor.extract(raw, path)
        frontmatter: dict[str, Any] = metadata["frontmatter"]
        body: str = metadata["body"]

        renderer = self.renderer_registry.get_renderer(path)
        if renderer is not None:
            source_type = renderer.source_type
            content = renderer.render(body, folder)
        else:
            source_type = "unknown"
            content = body
        if source_type != "markdown":
            content = self._rewrite_inline_images(content, folder)

        requested_layout = frontmatter.get("layout")
        layout = self.layout_resolver.resolve(
            path, folder, str(requested_layout) if requested_layout else None
        )
        slug = slugify(source_stem(path))
        url = self.url_deriver.derive(rel, slug, frontmatter.get("permalink"))
        published = frontmatter.get("published", True) is not False

        return Page(
            title=metadata["title"],
            body=body,
            content=content,
            description=metadata.get("description", ""),
            excerpt=metadata.get("excerpt", ""),
            url=url,
            slug=slug,
            date=metadata["date"],
            tags=metadata.get("tags", []),
            draft=draft or not published,
            layout=layout,
            group=self.layout_resolver.group_from_folder(folder),
            path=path,
            folder=folder,
            filename=path.name,
            source_type=source_type,
            category=metadata.get("category", ""),
            cover_image=rewrite_image_path(metadata.get("cover_image", ""), folder),
            frontmatter=frontmatter,
        )

    def _rewrite_inline_images(self, html: str, folder: str) -> str:
        def repl(match: re.Match) -> str:
            src = match.group(1)
            return match.group(0).replace(src, rewrite_image_path(src, folder))

        return IMAGE_SRC_RE.sub(repl, html)


class ContentProcessor:
    """Loads every content file of a site into Page objects."""

    def __init__(
        self,
        site_dir: Path,
        content_loader: FileContentLoader | None = None,
        page_builder: DefaultPageBuilder | None = None,
    ):
        self.site_dir = site_dir
        self._content_loader = content_loader or FileContentLoader(site_dir)
        self._page_builder = page_builder or DefaultPageBuilder(site_dir)

    def load(self, include_drafts: bool = False) -> list[Page]:
        """Load all content files and create Page objects.

        Pages marked ``published: false`` are dropped unless drafts are
        requested, the same as ``_``-prefixed files.

        Raises:
            ContentError: If a source file cannot be read as UTF-8 text.
        """
        pages: list[Page] = []
        for path in self._content_loader.iter_files(include_drafts):
            try:
                page = self._page_builder.build(path, draft=path.name.startswith("_"))
            except UnicodeDecodeError as exc:
                message = f"Not valid UTF-8 text: {exc.reason}"
                raise ContentError(path, message, exc) from exc
            except OSError as exc:
                message = f"Could not read file: {exc.strerror or exc}"
                raise ContentError(path, message, exc) from exc
            if page.draft and not include_drafts:
                logger.debug("Skipping unpublished %s", page.path)
                continue
            pages.append(page)
        logger.debug("Loaded %d pages from %s", len(pages), self.site_dir)
        return pages

    def build_page(self, path: Path, draft: bool = False) -> Page:
        return self._page_builder.build(path, draft=draft)
