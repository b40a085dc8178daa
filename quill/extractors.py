"""Metadata extractors for Quill.

Each extractor derives one kind of page metadata from a source file's
front matter and body. Front matter always wins over values inferred from
the body or the filename.

Key classes:
- TitleExtractor: Title from front matter, first heading or filename.
- TagExtractor: Tags and category from front matter.
- DateExtractor: Date from front matter, filename prefix or mtime.
- DescriptionExtractor: Description and excerpt.
- CoverImageExtractor: Cover image from ``cover-img``/``image``.
- CompositeMetadataExtractor: Splits front matter and runs the others.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .utils import (
    coerce_datetime,
    extract_date_from_name,
    first_paragraph,
    normalize_tags,
    strip_markup,
    titleize,
)

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a YAML front matter block from content.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining content). Content without a
        parseable mapping block is returned unchanged with an empty dict.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logger.warning("Ignoring unparseable front matter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


class TitleExtractor:
    """Extracts the page title.

    Uses front matter ``title``, then the first level-1 Markdown heading,
    then the titleized filename.
    """

    def extract(
        self, body: str, frontmatter: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        title = frontmatter.get("title")
        if title:
            return {"title": str(title).strip()}
        if path.suffix.lower() == ".md":
            for line in body.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class TagExtractor:
    """Extracts tags and the primary category from front matter.

    ``category`` and ``categories`` are folded into the tag list after the
    explicit ``tags`` so a post is reachable from every label it carries.
    """

    def extract(
        self, body: str, frontmatter: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        tags = normalize_tags(frontmatter.get("tags"))
        categories = normalize_tags(frontmatter.get("category")) + normalize_tags(
            frontmatter.get("categories")
        )
        for category in categories:
            if category not in tags:
                tags.append(category)
        return {"tags": tags, "category": categories[0] if categories else ""}


class DateExtractor:
    """Extracts the publication date.

    Looks at front matter ``date``, then a YYYY-MM-DD filename prefix, then
    the file modification time.
    """

    def extract(
        self, body: str, frontmatter: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        date = coerce_datetime(frontmatter.get("date"))
        if date is None and "date" in frontmatter:
            logger.warning("%s: unrecognised date %r", path, frontmatter["date"])
        if date is None:
            date = extract_date_from_name(path.name)
        if date is None:
            date = datetime.fromtimestamp(path.stat().st_mtime)
        return {"date": date}


class DescriptionExtractor:
    """Extracts description and excerpt.

    The description is the first paragraph truncated to 160 characters. The
    excerpt is the first prose paragraph of a Markdown file, skipping
    headings, images, code fences and rules.
    """

    def extract(
        self, body: str, frontmatter: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        excerpt = frontmatter.get("excerpt")
        if excerpt is None:
            excerpt = (
                self._extract_excerpt(body) if path.suffix.lower() == ".md" else ""
            )
        description = frontmatter.get("description") or first_paragraph(
            str(excerpt) or body
        )
        return {"description": str(description), "excerpt": str(excerpt).strip()}

    def _extract_excerpt(self, text: str) -> str:
        paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
        for para in paragraphs:
            if para.startswith(("#", "![", "```", "---", "{%", "<")):
                continue
            return " ".join(strip_markup(para).split())
        return ""


class CoverImageExtractor:
    """Extracts ``cover-img`` (or ``image``) from front matter."""

    def extract(
        self, body: str, frontmatter: dict[str, Any], path: Path
    ) -> dict[str, Any]:
        cover = frontmatter.get("cover-img") or frontmatter.get("image") or ""
        if isinstance(cover, (list, tuple)):
            cover = cover[0] if cover else ""
        if isinstance(cover, dict):
            cover = cover.get("path") or cover.get("src") or ""
        return {"cover_image": str(cover)}


class CompositeMetadataExtractor:
    """Splits front matter from a source and runs the field extractors.

    Later extractors can override keys set by earlier ones.
    """

    def __init__(self, extractors: list | None = None):
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                TagExtractor(),
                DateExtractor(),
                DescriptionExtractor(),
                CoverImageExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor) -> None:
        self._extractors.append(extractor)

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from a raw source.

        Returns:
            Dictionary with ``frontmatter`` and ``body`` keys plus every key
            produced by the registered extractors.
        """
        frontmatter, body = extract_frontmatter(content)
        result: dict[str, Any] = {"frontmatter": frontmatter, "body": body}
        for extractor in self._extractors:
            result.update(extractor.extract(body, frontmatter, path))
        return result


default_metadata_extractor = CompositeMetadataExtractor()
