"""Pagination primitives shared by sources and platforms."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class PageCursor:
    """Position within a paginated listing. 1-based."""

    page: int = 1
    page_size: int = 100
    total_known: int | None = None

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    def advance(self, *, total_known: int | None = None) -> PageCursor:
        return replace(
            self,
            page=self.page + 1,
            total_known=total_known if total_known is not None else self.total_known,
        )


@dataclass(frozen=True, slots=True)
class Page[T]:
    """One page of results plus whatever paging metadata the server returned."""

    items: tuple[T, ...]
    cursor: PageCursor
    total_pages: int | None = None
    total_items: int | None = None
    has_more: bool | None = None

    def is_last(self) -> bool:
        if not self.items:
            return True
        if self.has_more is False:
            return True
        if self.total_pages is not None and self.cursor.page >= self.total_pages:
            return True
        return len(self.items) < self.cursor.page_size
