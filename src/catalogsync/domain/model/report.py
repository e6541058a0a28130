"""Immutable outcome of a reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import EntityKind, SyncOperation


@dataclass(frozen=True, slots=True)
class ChangeRecord:
    """A write that was performed, or planned in dry-run mode."""

    operation: SyncOperation
    kind: EntityKind
    internal_id: str
    platform: str
    external_id: str | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class FailureRecord:
    kind: EntityKind
    internal_id: str
    platform: str | None
    error: BaseException
    attempts: int = 0

    @property
    def error_type(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass(frozen=True, slots=True)
class AmbiguityRecord:
    """An entity that matched several external candidates and was left alone."""

    kind: EntityKind
    internal_id: str
    platform: str
    candidate_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True, kw_only=True)
class ReconciliationReport:
    """Counts per outcome. ``cancelled`` entities were cut short by a cancelled run."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    published: int = 0
    unpublished: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: int = 0
    relocated: int = 0
    duplicates_dropped: int = 0
    failures: tuple[FailureRecord, ...] = ()
    ambiguous: tuple[AmbiguityRecord, ...] = ()
    changes: tuple[ChangeRecord, ...] = ()
    dry_run: bool = False

    @property
    def processed(self) -> int:
        return (
            self.created
            + self.updated
            + self.deleted
            + self.published
            + self.unpublished
            + self.skipped
            + self.failed
            + self.cancelled
        )

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.cancelled == 0

    def summary(self) -> str:
        prefix = "[dry-run] " if self.dry_run else ""
        return (
            f"{prefix}created={self.created} updated={self.updated} deleted={self.deleted} "
            f"published={self.published} unpublished={self.unpublished} "
            f"skipped={self.skipped} failed={self.failed} cancelled={self.cancelled} "
            f"relocated={self.relocated} "
            f"duplicates_dropped={self.duplicates_dropped} ambiguous={len(self.ambiguous)}"
        )
