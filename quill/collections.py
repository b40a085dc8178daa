from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from .content import Page
from .utils import extract_number_from_name, source_stem, strip_number_prefix


class PageCollection(Sequence[Page]):
    """Lightweight helper for working with lists of Pages in templates and code."""

    def __init__(self, pages: Iterable[Page]):
        self._pages = list(pages)

    def __iter__(self) -> Iterator[Page]:
        return iter(self._pages)

    def __len__(self) -> int:
        return len(self._pages)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return PageCollection(self._pages[item])
        return self._pages[item]

    def group(self, name: str) -> PageCollection:
        return PageCollection(p for p in self._pages if p.group == name)

    def with_tag(self, tag: str) -> PageCollection:
        return PageCollection(p for p in self._pages if tag in p.tags)

    def drafts(self) -> PageCollection:
        return PageCollection(p for p in self._pages if p.draft)

    def published(self) -> PageCollection:
        return PageCollection(p for p in self._pages if not p.draft)

    def sorted(self, reverse: bool = True) -> PageCollection:
        """Sort pages by date, then by number prefix, then by filename.

        With reverse=True (the default) the newest page comes first. Pages
        sharing a date are ordered by their number prefix (``01-intro.md``),
        then by name with date and number prefixes removed.
        """

        def sort_key(p: Page):
            stem = source_stem(p.path)
            number = extract_number_from_name(stem)
            missing = float("inf") if reverse else 0
            return (
                p.date,
                number if number is not None else missing,
                strip_number_prefix(stem).lower(),
            )

        return PageCollection(sorted(self._pages, key=sort_key, reverse=reverse))

    def latest(self, count: int = 5) -> PageCollection:
        return self.sorted()[:count]

    def paginate(self, per_page: int) -> list[Paginator]:
        """Split the collection into listing pages of ``per_page`` items.

        An empty collection still yields one (empty) page so a listing
        template always has something to render.
        """
        if per_page < 1:
            raise ValueError("per_page must be at least 1")
        total = max(1, math.ceil(len(self._pages) / per_page))
        return [
            Paginator(
                number=i + 1,
                total=total,
                items=PageCollection(self._pages[i * per_page : (i + 1) * per_page]),
            )
            for i in range(total)
        ]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({len(self._pages)} pages)"


@dataclass
class Paginator:
    """One page of a paginated listing."""

    number: int
    total: int
    items: PageCollection

    @property
    def has_previous(self) -> bool:
        return self.number > 1

    @property
    def has_next(self) -> bool:
        return self.number < self.total


class TagCollection(Mapping[str, PageCollection]):
    """Mapping of tag name to PageCollection with convenience helpers."""

    def __init__(self, mapping: Mapping[str, Iterable[Page]]):
        self._mapping = {k: PageCollection(v) for k, v in mapping.items()}

    def __getitem__(self, key: str) -> PageCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def sorted_names(self) -> list[str]:
        """Tag names ordered by post count (descending), then alphabetically."""
        return sorted(self._mapping, key=lambda t: (-len(self._mapping[t]), t.lower()))

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"
