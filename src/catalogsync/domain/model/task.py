"""Unit of reconciliation work."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .enums import SyncOperation

if TYPE_CHECKING:
    from .entity import Entity, PlatformId
    from .enums import EntityKind


@dataclass(slots=True, kw_only=True)
class SyncTask:
    """One entity on one platform, consumed exactly once by a worker.

    ``operation`` starts as the intended operation and is overwritten with the
    one actually performed; ``attempts`` counts write attempts including those
    repeated after a relocation.
    """

    entity_kind: EntityKind
    entity: Entity
    platform: PlatformId
    operation: SyncOperation = SyncOperation.SKIP
    attempts: int = 0
