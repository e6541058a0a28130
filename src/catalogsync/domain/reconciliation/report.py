"""Accumulates run outcomes from concurrent workers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from catalogsync.domain.model import (
    AmbiguityRecord,
    ChangeRecord,
    FailureRecord,
    ReconciliationReport,
    SyncOperation,
)

if TYPE_CHECKING:
    from catalogsync.domain.model import EntityKind, ExternalResource

_COUNTED = {
    SyncOperation.CREATE: "created",
    SyncOperation.UPDATE: "updated",
    SyncOperation.DELETE: "deleted",
    SyncOperation.PUBLISH: "published",
    SyncOperation.UNPUBLISH: "unpublished",
    SyncOperation.SKIP: "skipped",
}


@dataclass(slots=True)
class ReportBuilder:
    """Mutable counterpart of ``ReconciliationReport``; every update takes the lock."""

    dry_run: bool = False
    counts: dict[str, int] = field(default_factory=lambda: dict.fromkeys(_COUNTED.values(), 0))
    failed: int = 0
    cancelled: int = 0
    relocated: int = 0
    duplicates_dropped: int = 0
    failures: list[FailureRecord] = field(default_factory=list)
    ambiguous: list[AmbiguityRecord] = field(default_factory=list)
    changes: list[ChangeRecord] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _finalized: bool = False

    async def record(
        self,
        operation: SyncOperation,
        *,
        kind: EntityKind,
        internal_id: str,
        platform: str,
        external_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        async with self._lock:
            self._check_open()
            self.counts[_COUNTED[operation]] += 1
            if operation is not SyncOperation.SKIP:
                self.changes.append(
                    ChangeRecord(
                        operation=operation,
                        kind=kind,
                        internal_id=internal_id,
                        platform=platform,
                        external_id=external_id,
                        detail=detail,
                    )
                )

    async def record_relocations(self, count: int) -> None:
        async with self._lock:
            self._check_open()
            self.relocated += count

    async def record_duplicates(self, count: int) -> None:
        async with self._lock:
            self._check_open()
            self.duplicates_dropped += count

    async def record_failure(
        self,
        *,
        kind: EntityKind,
        internal_id: str,
        platform: str | None,
        error: BaseException,
        attempts: int = 0,
    ) -> None:
        async with self._lock:
            self._check_open()
            self.failed += 1
            self.failures.append(
                FailureRecord(
                    kind=kind,
                    internal_id=internal_id,
                    platform=platform,
                    error=error,
                    attempts=attempts,
                )
            )

    async def record_cancelled(self) -> None:
        async with self._lock:
            self._check_open()
            self.cancelled += 1

    async def record_ambiguous(
        self,
        *,
        kind: EntityKind,
        internal_id: str,
        platform: str,
        candidates: tuple[ExternalResource, ...],
    ) -> None:
        """Ambiguous entities count as skipped; they are listed for manual review."""

        async with self._lock:
            self._check_open()
            self.counts["skipped"] += 1
            self.ambiguous.append(
                AmbiguityRecord(
                    kind=kind,
                    internal_id=internal_id,
                    platform=platform,
                    candidate_ids=tuple(candidate.external_id for candidate in candidates),
                )
            )

    def snapshot(self) -> ReconciliationReport:
        return ReconciliationReport(
            **self.counts,
            failed=self.failed,
            cancelled=self.cancelled,
            relocated=self.relocated,
            duplicates_dropped=self.duplicates_dropped,
            failures=tuple(self.failures),
            ambiguous=tuple(self.ambiguous),
            changes=tuple(self.changes),
            dry_run=self.dry_run,
        )

    def finalize(self) -> ReconciliationReport:
        self._finalized = True
        return self.snapshot()

    def _check_open(self) -> None:
        if self._finalized:
            raise RuntimeError("Report already finalized")
