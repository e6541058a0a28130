"""Ports for the source of truth and its tabular snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .platform import ExternalPlatform

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catalogsync.domain.model import Entity, EntityKind, Page, PageCursor, TabularRow


@runtime_checkable
class CatalogSource(Protocol):
    """Read access to the source of truth plus write-back of external refs."""

    async def fetch_page(self, kind: EntityKind, cursor: PageCursor) -> Page[Entity]: ...

    async def read_entity(self, kind: EntityKind, internal_id: str) -> Entity | None: ...

    async def write_external_refs(self, entity: Entity) -> None: ...


@runtime_checkable
class EditableCatalog(ExternalPlatform, CatalogSource, Protocol):
    """The source of truth used as a write target for operator edits."""

    async def set_published(
        self, kind: EntityKind, external_id: str, *, published: bool
    ) -> None: ...


@runtime_checkable
class SnapshotStore(Protocol):
    """Tabular copies of one collection, e.g. a spreadsheet or CSV file."""

    def read_snapshot(self, kind: EntityKind) -> Sequence[TabularRow]: ...

    def write_snapshot(self, kind: EntityKind, rows: Sequence[TabularRow]) -> None: ...


__all__ = ["CatalogSource", "EditableCatalog", "SnapshotStore"]
