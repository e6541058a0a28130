"""Catalog entities as read from the source of truth."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from .enums import EntityKind

type PlatformId = str


@dataclass(frozen=True, slots=True)
class ExternalRef:
    """Where an entity lives on one external platform."""

    external_id: str
    external_key: str | None = None
    last_synced_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class EntityReference:
    """Parent link from one entity to another, by internal id."""

    kind: EntityKind
    internal_id: str


@dataclass(slots=True, kw_only=True, eq=False)
class Entity:
    """A catalog record from the source of truth.

    ``internal_id`` is the stable business key (unique within ``kind``) and is
    also the unique key pushed to external platforms. ``record_id`` is the
    source's own document handle used for writes back to it.
    """

    kind: EntityKind
    internal_id: str
    natural_key: str
    attributes: dict[str, object] = field(default_factory=dict)
    external_refs: dict[PlatformId, ExternalRef] = field(default_factory=dict)
    references: tuple[EntityReference, ...] = ()
    updated_at: datetime | None = None
    record_id: str | None = None
    published: bool | None = None

    def external_ref(self, platform_id: PlatformId) -> ExternalRef | None:
        return self.external_refs.get(platform_id)

    def record_external_ref(self, platform_id: PlatformId, ref: ExternalRef) -> None:
        """Store a confirmed ref. Only the upsert step calls this."""

        self.external_refs[platform_id] = ref

    def references_of(self, kind: EntityKind) -> tuple[EntityReference, ...]:
        return tuple(reference for reference in self.references if reference.kind == kind)

    def __repr__(self) -> str:
        return f"Entity({self.kind}:{self.internal_id} {self.natural_key!r})"
