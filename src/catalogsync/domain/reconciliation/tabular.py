"""Apply operator-edited snapshots back to the source of truth.

Rows are processed in a fixed order: deletions, publications, unpublications,
creations (rows without a reference) and finally updates (rows with one). A
reference deleted earlier in the same batch is never updated afterwards.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.config.sync import SyncConfig
from catalogsync.domain.errors import AmbiguousMatchError, FatalError, SyncCancelledError
from catalogsync.domain.model import (
    DesiredState,
    Entity,
    ExternalRef,
    RowAction,
    SyncOperation,
    TabularRow,
)

from .contracts import MatchKind
from .fetch import fetch_resources
from .report import ReportBuilder
from .resolve import IdentityResolver
from .upsert import CollisionSafeUpsert, SurrogateKeyAllocator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine, Sequence

    from catalogsync.domain.model import EntityKind, ExternalResource, ReconciliationReport
    from catalogsync.domain.ports import EditableCatalog, SnapshotStore

    from .retry import RetryExecutor

log = getLogger(__name__)

DEFAULT_READONLY_COLUMNS: frozenset[str] = frozenset(
    {"id", "documentId", "createdAt", "updatedAt", "publishedAt", "locale"}
)


@dataclass(slots=True)
class _Plan:
    deletes: list[TabularRow] = field(default_factory=list)
    publishes: list[TabularRow] = field(default_factory=list)
    unpublishes: list[TabularRow] = field(default_factory=list)
    creates: list[TabularRow] = field(default_factory=list)
    updates: list[TabularRow] = field(default_factory=list)
    skipped: list[TabularRow] = field(default_factory=list)
    marked_for_deletion: set[str] = field(default_factory=set)


def plan_rows(rows: Sequence[TabularRow]) -> _Plan:
    plan = _Plan()
    for row in rows:
        match row.action:
            case RowAction.SKIP:
                plan.skipped.append(row)
            case RowAction.DELETE:
                plan.deletes.append(row)
                if row.reference:
                    plan.marked_for_deletion.add(row.reference)
            case RowAction.PUBLISH:
                plan.publishes.append(row)
            case RowAction.UNPUBLISH:
                plan.unpublishes.append(row)
            case _:
                if row.reference:
                    plan.updates.append(row)
                else:
                    plan.creates.append(row)
    return plan


def _cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


@dataclass(slots=True)
class TabularReconciler:
    """Reconciles spreadsheet rows of one entity kind into an editable catalog.

    Creations and updates go through the same collision-safe upsert as the
    platform sync, with the catalog itself as the target. Rows are matched by
    their reference only; a row whose key is held by another record moves that
    record to a surrogate key. A new row without a key gets the next free one.
    """

    executor: RetryExecutor
    config: SyncConfig = field(default_factory=SyncConfig)
    key_column: str = "key"
    name_column: str = "name"
    readonly_columns: frozenset[str] = DEFAULT_READONLY_COLUMNS
    dry_run: bool = False
    _upserter: CollisionSafeUpsert = field(init=False)
    _key_allocator: SurrogateKeyAllocator = field(init=False)

    def __post_init__(self) -> None:
        relocation_allocator = SurrogateKeyAllocator(
            executor=self.executor,
            page_size=self.config.page_size,
            offset=self.config.relocation_offset,
            max_lookups=self.config.max_key_lookups,
        )
        self._key_allocator = SurrogateKeyAllocator(
            executor=self.executor,
            page_size=self.config.page_size,
            offset=1,
            max_lookups=self.config.max_key_lookups,
        )
        self._upserter = CollisionSafeUpsert(
            executor=self.executor,
            allocator=relocation_allocator,
            resolver=IdentityResolver(self.executor, lookups=(MatchKind.EXTERNAL_ID,)),
            max_relocation_attempts=self.config.max_relocation_attempts,
            dry_run=self.dry_run,
        )

    async def apply(
        self,
        kind: EntityKind,
        rows: Sequence[TabularRow],
        catalog: EditableCatalog,
    ) -> ReconciliationReport:
        report = ReportBuilder(dry_run=self.dry_run)
        plan = plan_rows(rows)
        log.info(
            "Applying %s %s rows: delete=%s publish=%s unpublish=%s create=%s update=%s skip=%s",
            len(rows),
            kind,
            len(plan.deletes),
            len(plan.publishes),
            len(plan.unpublishes),
            len(plan.creates),
            len(plan.updates),
            len(plan.skipped),
        )

        for row in plan.skipped:
            await report.record(
                SyncOperation.SKIP,
                kind=kind,
                internal_id=row.get(self.key_column) or "",
                platform=catalog.platform_id,
                external_id=row.reference,
            )

        await self._each_referenced(
            plan.deletes,
            kind,
            catalog,
            report,
            lambda row, reference: self._delete(kind, row, reference, catalog, report),
        )
        await self._each_referenced(
            plan.publishes,
            kind,
            catalog,
            report,
            lambda row, reference: self._publish(kind, row, reference, catalog, report, True),
        )
        await self._each_referenced(
            plan.unpublishes,
            kind,
            catalog,
            report,
            lambda row, reference: self._publish(kind, row, reference, catalog, report, False),
        )
        await self._gather(
            [
                self._guarded(kind, row, catalog, report, self._create(kind, row, catalog, report))
                for row in plan.creates
            ]
        )

        updates: list[TabularRow] = []
        for row in plan.updates:
            # never updated, even when its delete failed
            if row.reference in plan.marked_for_deletion:
                log.warning("Not updating %s: it is marked for deletion", row.describe())
                await report.record(
                    SyncOperation.SKIP,
                    kind=kind,
                    internal_id=row.get(self.key_column) or "",
                    platform=catalog.platform_id,
                    external_id=row.reference,
                )
                continue
            updates.append(row)
        await self._gather(
            [
                self._guarded(kind, row, catalog, report, self._update(kind, row, catalog, report))
                for row in updates
            ]
        )

        final = report.finalize()
        log.info("Snapshot import finished: %s", final.summary())
        return final

    async def export_snapshot(
        self,
        kind: EntityKind,
        catalog: EditableCatalog,
        store: SnapshotStore,
    ) -> int:
        """Write the catalog's current ``kind`` collection as editable rows."""

        listing = await fetch_resources(
            catalog, kind, page_size=self.config.page_size, executor=self.executor
        )
        rows = [self._to_row(resource) for resource in listing.items]
        store.write_snapshot(kind, rows)
        log.info("Exported %s %s rows", len(rows), kind)
        return len(rows)

    def _to_row(self, resource: ExternalResource) -> TabularRow:
        fields = {
            self.key_column: resource.key or "",
            self.name_column: resource.name,
        }
        for name, value in resource.attributes.items():
            fields.setdefault(name, _cell(value))
        return TabularRow(fields=fields, reference=resource.external_id)

    async def _each_referenced(
        self,
        rows: Sequence[TabularRow],
        kind: EntityKind,
        catalog: EditableCatalog,
        report: ReportBuilder,
        action: Callable[[TabularRow, str], Awaitable[None]],
    ) -> None:
        async def run(row: TabularRow) -> None:
            if not row.reference:
                log.warning("Skipping %s: %s needs a reference", row.describe(), row.action)
                await report.record(
                    SyncOperation.SKIP,
                    kind=kind,
                    internal_id=row.get(self.key_column) or "",
                    platform=catalog.platform_id,
                )
                return
            await action(row, row.reference)

        await self._gather(
            [self._guarded(kind, row, catalog, report, run(row)) for row in rows]
        )

    async def _delete(
        self,
        kind: EntityKind,
        row: TabularRow,
        reference: str,
        catalog: EditableCatalog,
        report: ReportBuilder,
    ) -> None:
        if self.dry_run:
            await self.executor.execute(
                lambda: catalog.get(kind, reference),
                description=f"{catalog.platform_id} {kind} get {reference}",
            )
            log.info("[dry-run] would delete %s %s", kind, reference)
        else:
            await self.executor.execute(
                lambda: catalog.delete(kind, reference),
                description=f"{catalog.platform_id} {kind} delete {reference}",
            )
            log.info("Deleted %s %s", kind, reference)
        await report.record(
            SyncOperation.DELETE,
            kind=kind,
            internal_id=row.get(self.key_column) or "",
            platform=catalog.platform_id,
            external_id=reference,
        )

    async def _publish(
        self,
        kind: EntityKind,
        row: TabularRow,
        reference: str,
        catalog: EditableCatalog,
        report: ReportBuilder,
        published: bool,  # noqa: FBT001
    ) -> None:
        verb = "publish" if published else "unpublish"
        if self.dry_run:
            await self.executor.execute(
                lambda: catalog.get(kind, reference),
                description=f"{catalog.platform_id} {kind} get {reference}",
            )
            log.info("[dry-run] would %s %s %s", verb, kind, reference)
        else:
            await self.executor.execute(
                lambda: catalog.set_published(kind, reference, published=published),
                description=f"{catalog.platform_id} {kind} {verb} {reference}",
            )
            log.info("%sed %s %s", verb.capitalize(), kind, reference)
        await report.record(
            SyncOperation.PUBLISH if published else SyncOperation.UNPUBLISH,
            kind=kind,
            internal_id=row.get(self.key_column) or "",
            platform=catalog.platform_id,
            external_id=reference,
        )

    async def _create(
        self,
        kind: EntityKind,
        row: TabularRow,
        catalog: EditableCatalog,
        report: ReportBuilder,
    ) -> None:
        name = row.get(self.name_column)
        if name is None:
            raise FatalError(f"{row.describe()} has no {self.name_column}")
        key = row.get(self.key_column)
        if key is None:
            key = await self._key_allocator.allocate(catalog, kind)
            log.info("Assigned key %s to new %s %r", key, kind, name)
        await self._upsert(kind, row, catalog, report, key=key, name=name)

    async def _update(
        self,
        kind: EntityKind,
        row: TabularRow,
        catalog: EditableCatalog,
        report: ReportBuilder,
    ) -> None:
        await self._upsert(
            kind,
            row,
            catalog,
            report,
            key=row.get(self.key_column),
            name=row.get(self.name_column),
        )

    async def _upsert(
        self,
        kind: EntityKind,
        row: TabularRow,
        catalog: EditableCatalog,
        report: ReportBuilder,
        *,
        key: str | None,
        name: str | None,
    ) -> None:
        attributes = {
            column: value
            for column, value in row.fields.items()
            if column not in {self.key_column, self.name_column}
            and column not in self.readonly_columns
        }
        entity = Entity(
            kind=kind,
            internal_id=key or "",
            natural_key=name or "",
            attributes=dict(attributes),
            record_id=row.reference,
        )
        if row.reference:
            entity.record_external_ref(catalog.platform_id, ExternalRef(external_id=row.reference))
        desired = DesiredState(key=key, name=name, attributes=attributes)

        result = await self._upserter.upsert(
            entity, catalog, desired, require_existing=bool(row.reference)
        )
        await report.record(
            result.operation,
            kind=kind,
            internal_id=key or "",
            platform=catalog.platform_id,
            external_id=result.ref.external_id,
            detail=result.changes.describe() if result.changes is not None else None,
        )
        if result.relocations:
            await report.record_relocations(len(result.relocations))

    async def _guarded(
        self,
        kind: EntityKind,
        row: TabularRow,
        catalog: EditableCatalog,
        report: ReportBuilder,
        step: Coroutine[object, object, None],
    ) -> None:
        try:
            await step
        except AmbiguousMatchError as exc:
            log.warning("Skipping %s: %s", row.describe(), exc)
            await report.record_ambiguous(
                kind=kind,
                internal_id=row.get(self.key_column) or "",
                platform=catalog.platform_id,
                candidates=exc.candidates,
            )
        except SyncCancelledError:
            log.info("Cancelled before %s", row.describe())
            await report.record_cancelled()
        except Exception as exc:  # noqa: BLE001
            log.warning("Failed %s: %s", row.describe(), exc)
            await report.record_failure(
                kind=kind,
                internal_id=row.get(self.key_column) or "",
                platform=catalog.platform_id,
                error=exc,
            )

    async def _gather(self, steps: list[Awaitable[None]]) -> None:
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def bounded(step: Awaitable[None]) -> None:
            async with semaphore:
                await step

        await asyncio.gather(*(bounded(step) for step in steps))
