"""Ports for reading paginated collections."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from catalogsync.domain.model import Page, PageCursor


@runtime_checkable
class PagedSource[T](Protocol):
    """Callable returning one page of a collection for a cursor."""

    async def __call__(self, cursor: PageCursor) -> Page[T]: ...


__all__ = ["PagedSource"]
