"""Port for external systems that mirror catalog entities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catalogsync.domain.model import (
        DesiredState,
        EntityKind,
        ExternalResource,
        Page,
        PageCursor,
        ResourceChanges,
    )


@runtime_checkable
class ExternalPlatform(Protocol):
    """CRUD surface of one external system, scoped by entity kind.

    ``get`` raises ``NotFoundError`` for unknown ids. ``create`` and ``update``
    raise ``UniqueKeyConflictError`` when the key is held by another record.
    """

    @property
    def platform_id(self) -> str: ...

    def stored_attributes(self, kind: EntityKind) -> frozenset[str] | None:
        """Attribute names the platform persists for ``kind``; ``None`` means all."""
        ...

    async def list_page(self, kind: EntityKind, cursor: PageCursor) -> Page[ExternalResource]: ...

    async def get(self, kind: EntityKind, external_id: str) -> ExternalResource: ...

    async def find_by_key(self, kind: EntityKind, key: str) -> ExternalResource | None: ...

    async def search_by_name(self, kind: EntityKind, name: str) -> Sequence[ExternalResource]: ...

    async def create(self, kind: EntityKind, desired: DesiredState) -> ExternalResource: ...

    async def update(
        self,
        kind: EntityKind,
        external_id: str,
        changes: ResourceChanges,
    ) -> ExternalResource: ...

    async def delete(self, kind: EntityKind, external_id: str) -> None: ...


__all__ = ["ExternalPlatform"]
