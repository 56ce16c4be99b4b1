from __future__ import annotations
"""Client-side filter, sort, pagination and selection over a fetched listing."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import math
from typing import Iterable, Sequence, TypeVar

from .models import BucketInfo, FileEntry
from .settings import PAGE_SIZES
from .ui_utils import ValidationError, normalize_path

T = TypeVar("T")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class SortColumn(str, Enum):
    NAME = "name"
    SIZE = "size"
    UPDATED = "updated"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class ListingPage:
    entries: list[FileEntry] = field(default_factory=list)
    page: int = 1
    page_count: int = 1
    total: int = 0


def _sort_key(column: SortColumn):
    if column is SortColumn.NAME:
        return lambda entry: entry.name.casefold()
    if column is SortColumn.SIZE:
        return lambda entry: entry.size
    return lambda entry: _as_aware(entry.updated_at)


def _as_aware(value: datetime | None) -> datetime:
    if value is None:
        return _OLDEST
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def filter_entries(entries: Iterable[FileEntry], term: str) -> list[FileEntry]:
    needle = (term or "").lower()
    return [entry for entry in entries if needle in entry.name.lower()]


def sort_entries(
    entries: Iterable[FileEntry],
    column: SortColumn = SortColumn.NAME,
    direction: SortDirection = SortDirection.ASC,
) -> list[FileEntry]:
    # sorted() is stable in both directions.
    return sorted(entries, key=_sort_key(column), reverse=direction is SortDirection.DESC)


def page_count(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size))


def paginate(items: Sequence[T], page: int, page_size: int) -> list[T]:
    start = (page - 1) * page_size
    return list(items[start:start + page_size])


def filter_buckets(buckets: Iterable[BucketInfo], term: str) -> list[BucketInfo]:
    needle = (term or "").lower()
    return [bucket for bucket in buckets if needle in bucket.name.lower()]


class ListingEngine:
    """Applies filter -> sort -> paginate to the listing of one path.

    Search, sort and page survive refetches of the same path and reset when a
    listing for a different path arrives. Page size is a user preference and
    always survives. The selection never names an entry outside the listing.
    """

    def __init__(self, page_size: int = 10):
        self._path: str | None = None
        self._entries: list[FileEntry] = []
        self._search = ""
        self._column = SortColumn.NAME
        self._direction = SortDirection.ASC
        self._page = 1
        self._page_size = self._validate_page_size(page_size)
        self._selection: set[str] = set()

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def entries(self) -> list[FileEntry]:
        return list(self._entries)

    @property
    def search_term(self) -> str:
        return self._search

    @property
    def sort_column(self) -> SortColumn:
        return self._column

    @property
    def sort_direction(self) -> SortDirection:
        return self._direction

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def selection(self) -> frozenset[str]:
        return frozenset(self._selection)

    def set_entries(self, path: str, entries: Iterable[FileEntry]) -> None:
        path = normalize_path(path)
        self._entries = list(entries)
        names = {entry.name for entry in self._entries}
        if path != self._path:
            self._path = path
            self._search = ""
            self._column = SortColumn.NAME
            self._direction = SortDirection.ASC
            self._page = 1
            self._selection.clear()
        else:
            self._selection &= names
            self._page = min(self._page, self._page_count())

    def reset(self) -> None:
        """Forget the listing and every per-path setting, e.g. when switching buckets."""
        self._path = None
        self._entries = []
        self._search = ""
        self._column = SortColumn.NAME
        self._direction = SortDirection.ASC
        self._page = 1
        self._selection.clear()

    def set_search(self, term: str) -> None:
        self._search = term or ""
        self._page = 1

    def set_sort(self, column: SortColumn | str, direction: SortDirection | str = SortDirection.ASC) -> None:
        self._column = SortColumn(column)
        self._direction = SortDirection(direction)

    def toggle_sort(self, column: SortColumn | str) -> None:
        column = SortColumn(column)
        if column is self._column:
            self._direction = SortDirection.DESC if self._direction is SortDirection.ASC else SortDirection.ASC
        else:
            self._column = column
            self._direction = SortDirection.ASC

    def set_page_size(self, page_size: int) -> None:
        self._page_size = self._validate_page_size(page_size)
        self._page = 1

    def set_page(self, page: int) -> None:
        self._page = max(1, min(int(page), self._page_count()))

    def visible_entries(self) -> list[FileEntry]:
        """Filtered and sorted entries across all pages."""
        return sort_entries(filter_entries(self._entries, self._search), self._column, self._direction)

    def current_page(self) -> ListingPage:
        visible = self.visible_entries()
        return ListingPage(
            entries=paginate(visible, self._page, self._page_size),
            page=self._page,
            page_count=page_count(len(visible), self._page_size),
            total=len(visible),
        )

    def select(self, names: Iterable[str]) -> None:
        known = {entry.name for entry in self._entries}
        self._selection |= {name for name in names if name in known}

    def deselect(self, names: Iterable[str]) -> None:
        self._selection -= set(names)

    def toggle_selection(self, name: str) -> None:
        if name in self._selection:
            self._selection.discard(name)
        else:
            self.select([name])

    def select_all_visible(self) -> None:
        self.select(entry.name for entry in self.current_page().entries)

    def clear_selection(self) -> None:
        self._selection.clear()

    def selected_entries(self) -> list[FileEntry]:
        return [entry for entry in self._entries if entry.name in self._selection]

    def _page_count(self) -> int:
        return page_count(len(filter_entries(self._entries, self._search)), self._page_size)

    @staticmethod
    def _validate_page_size(page_size: int) -> int:
        if page_size not in PAGE_SIZES:
            raise ValidationError(f"Page size must be one of {', '.join(map(str, PAGE_SIZES))}")
        return page_size
