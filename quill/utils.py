"""Utility functions for Quill.

String processing, path handling and date extraction helpers shared by the
content, collection and build modules.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    normalize_tags: Turn front matter tag values into a clean list.
    build_tags_index: Build index of pages by tags.
    extract_date_from_name: Extract date from filename prefix.
    coerce_datetime: Turn a front matter date value into a datetime.
    is_markdown / is_template / is_html: Source type checks.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

_DATE_PREFIX_PARTS = 3


def _split_date_prefix(name: str) -> tuple[str | None, list[str]]:
    parts = name.lstrip("_").split("-")
    if len(parts) > _DATE_PREFIX_PARTS and all(
        p.isdigit() for p in parts[:_DATE_PREFIX_PARTS]
    ):
        return "-".join(parts[:_DATE_PREFIX_PARTS]), parts[_DATE_PREFIX_PARTS:]
    return None, parts


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.

    Examples:
        >>> slugify("2019-03-02-Span-of-T-in-CSharp")
        'span-of-t-in-csharp'
    """
    _, parts = _split_date_prefix(name)
    cleaned = "-".join(parts)
    cleaned = cleaned.replace("#", "sharp")
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = Path(filename).name.split(".")[0]
    _, parts = _split_date_prefix(base)
    words = re.split(r"[\s\-_]+", "-".join(parts))
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Returns:
        datetime if a valid date prefix is found, None otherwise.
    """
    parts = name.lstrip("_").split("-")
    if len(parts) >= _DATE_PREFIX_PARTS and all(
        p.isdigit() for p in parts[:_DATE_PREFIX_PARTS]
    ):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def coerce_datetime(value: Any) -> datetime | None:
    """Convert a front matter date value into a naive datetime.

    PyYAML already turns unquoted ISO dates into ``date``/``datetime``
    objects; quoted strings are parsed with ``fromisoformat``. Timezone
    aware values are converted to naive UTC so pages sort together.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        # "2019-03-02 10:00:00 +0100" is the form most blog engines emit
        text = re.sub(r"\s([+-]\d{2}):?(\d{2})$", r"\1:\2", text)
        try:
            return coerce_datetime(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def normalize_tags(value: Any) -> list[str]:
    """Normalize a front matter ``tags``/``categories`` value to a list.

    Accepts a YAML list or a string separated by commas or whitespace.

    Examples:
        >>> normalize_tags("csharp, dotnet")
        ['csharp', 'dotnet']
        >>> normalize_tags(["C#", "C#", "linq"])
        ['C#', 'linq']
    """
    if value is None:
        return []
    if isinstance(value, str):
        separator = "," if "," in value else None
        items: Iterable[Any] = value.split(separator)
    elif isinstance(value, Iterable):
        items = value
    else:
        items = [value]
    tags: list[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first paragraph from text.

    Strips leading # (headers), HTML tags, and Jinja syntax.
    Collapses whitespace and truncates to the specified limit.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    if not paragraphs:
        return ""
    para = paragraphs[0].lstrip("# ").strip()
    para = strip_markup(para)
    collapsed = " ".join(para.split())
    return collapsed[:limit]


def strip_markup(text: str) -> str:
    """Remove HTML tags and Jinja/Liquid syntax from text."""
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\{[%#{].*?[%#}]\}", "", text, flags=re.DOTALL)


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def is_markdown(path: Path) -> bool:
    return path.suffix.lower() == ".md"


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template file (.jinja or .html.jinja)."""
    return path.suffix == ".jinja"


def is_html(path: Path) -> bool:
    return path.suffix.lower() == ".html"


def source_stem(path: Path) -> str:
    """Return the file name without any of the known content suffixes."""
    name = path.name
    for suffix in (".html.jinja", ".jinja", ".html", ".md"):
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return path.stem


def extract_number_from_name(name: str) -> int | None:
    """Extract a leading number (after any date prefix) for sorting.

    Handles filenames like "01-intro" or "2024-01-15-02-part-two".
    """
    prefix, parts = _split_date_prefix(name)
    if parts and parts[0].isdigit() and (prefix is not None or len(parts) > 1):
        return int(parts[0])
    return None


def strip_number_prefix(name: str) -> str:
    """Strip date and number prefixes from a filename stem."""
    _, parts = _split_date_prefix(name)
    if len(parts) > 1 and parts[0].isdigit():
        parts = parts[1:]
    return "-".join(parts) if parts else name


def build_tags_index(pages: Iterable) -> dict[str, list]:
    """Build an index mapping tags to lists of pages containing that tag."""
    tags: dict[str, list] = {}
    for page in pages:
        for tag in page.tags:
            tags.setdefault(tag, []).append(page)
    return tags
