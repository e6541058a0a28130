"""Dependency-ordered reconciliation of catalog collections onto external platforms."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.domain.errors import (
    AmbiguousMatchError,
    CollectionFetchError,
    SyncCancelledError,
    UnresolvedReferenceError,
)
from catalogsync.domain.model import DesiredState, SyncOperation, SyncTask

from .fetch import fetch_entities
from .report import ReportBuilder

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import datetime

    from catalogsync.domain.model import (
        Entity,
        EntityKind,
        EntityReference,
        ExternalRef,
        ReconciliationReport,
    )
    from catalogsync.domain.ports import CatalogSource, ExternalPlatform

    from .retry import RetryExecutor
    from .upsert import CollisionSafeUpsert, UpsertResult

log = getLogger(__name__)

type EntityProjection = Callable[[Entity], Mapping[str, object]]


def _no_attributes(_entity: Entity) -> Mapping[str, object]:
    return {}


def reference_attribute(kind: EntityKind) -> str:
    """Desired-state attribute carrying the external ids of ``kind`` parents."""

    return f"{kind}_ids"


def shared_ref_holders(entities: Sequence[Entity], platform_id: str) -> set[str]:
    """Internal ids whose ref on ``platform_id`` is already held by an earlier entity."""

    holders: dict[str, Entity] = {}
    shared: set[str] = set()
    for entity in entities:
        ref = entity.external_ref(platform_id)
        if ref is None:
            continue
        first = holders.setdefault(ref.external_id, entity)
        if first is not entity:
            log.warning(
                "%r and %r both claim %s record %s; %r will be resolved again",
                first,
                entity,
                platform_id,
                ref.external_id,
                entity,
            )
            shared.add(entity.internal_id)
    return shared


@dataclass(slots=True)
class _RunState:
    report: ReportBuilder
    index: dict[tuple[EntityKind, str], Entity | None] = field(default_factory=dict)
    planned_refs: dict[tuple[str, EntityKind, str], ExternalRef] = field(default_factory=dict)


@dataclass(slots=True)
class ReconciliationEngine:
    """Runs entity kinds strictly in the given order, parents before children.

    Within one kind and platform, entities are reconciled concurrently by at most
    ``concurrency`` workers. A failing entity is recorded and the run goes on;
    only a collection that cannot be fetched ends the run early, with
    ``CollectionFetchError`` carrying the partial report.
    """

    source: CatalogSource
    executor: RetryExecutor
    upserter: CollisionSafeUpsert
    page_size: int = 100
    concurrency: int = 4
    project: EntityProjection = _no_attributes
    write_back: bool = True

    async def run(
        self,
        kinds: Sequence[EntityKind],
        platforms: Sequence[ExternalPlatform],
        *,
        since: datetime | None = None,
    ) -> ReconciliationReport:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        state = _RunState(report=ReportBuilder(dry_run=self.upserter.dry_run))
        log.info(
            "Starting reconciliation: kinds=%s, platforms=%s, since=%s, dry_run=%s",
            ",".join(kinds),
            ",".join(platform.platform_id for platform in platforms),
            since,
            self.upserter.dry_run,
        )

        for kind in kinds:
            if self.executor.cancelled:
                log.warning("Run cancelled; not starting %s", kind)
                break
            try:
                collection = await fetch_entities(
                    self.source, kind, page_size=self.page_size, executor=self.executor
                )
            except CollectionFetchError as exc:
                exc.partial_report = state.report.finalize()
                log.error("Aborting run: %s", exc)
                raise

            await state.report.record_duplicates(collection.duplicates_dropped)
            for entity in collection.items:
                state.index[(kind, entity.internal_id)] = entity

            selected = [
                entity
                for entity in collection.items
                if since is None or (entity.updated_at is not None and entity.updated_at >= since)
            ]
            if since is not None:
                log.info(
                    "%s of %s %s entities changed since %s",
                    len(selected),
                    len(collection.items),
                    kind,
                    since,
                )

            for platform in platforms:
                shared = shared_ref_holders(collection.items, platform.platform_id)
                await self._run_batch(kind, selected, platform, state, shared)
                if self.executor.cancelled:
                    break

        report = state.report.finalize()
        log.info("Reconciliation finished: %s", report.summary())
        return report

    async def _run_batch(
        self,
        kind: EntityKind,
        entities: Sequence[Entity],
        platform: ExternalPlatform,
        state: _RunState,
        shared: set[str],
    ) -> None:
        log.info("Reconciling %s %s entities on %s", len(entities), kind, platform.platform_id)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def worker(entity: Entity) -> None:
            async with semaphore:
                await self._reconcile_one(
                    entity, platform, state, trust_ref=entity.internal_id not in shared
                )

        await asyncio.gather(*(worker(entity) for entity in entities))

    async def _reconcile_one(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        state: _RunState,
        *,
        trust_ref: bool,
    ) -> None:
        if self.executor.cancelled:
            await state.report.record_cancelled()
            return

        previous = entity.external_ref(platform.platform_id)
        task = SyncTask(
            entity_kind=entity.kind,
            entity=entity,
            platform=platform.platform_id,
            operation=SyncOperation.UPDATE if previous is not None else SyncOperation.CREATE,
        )
        try:
            desired = await self._desired_state(entity, platform, state)
            result = await self.upserter.upsert(
                entity, platform, desired, trust_ref=trust_ref, task=task
            )
        except AmbiguousMatchError as exc:
            log.warning("Skipping %r on %s: %s", entity, platform.platform_id, exc)
            await state.report.record_ambiguous(
                kind=entity.kind,
                internal_id=entity.internal_id,
                platform=platform.platform_id,
                candidates=exc.candidates,
            )
            return
        except SyncCancelledError:
            log.info("Cancelled before %r was reconciled on %s", entity, platform.platform_id)
            await state.report.record_cancelled()
            return
        except Exception as exc:  # noqa: BLE001
            await self._record_failure(entity, platform, state, exc, task.attempts)
            return

        await state.report.record(
            result.operation,
            kind=entity.kind,
            internal_id=entity.internal_id,
            platform=platform.platform_id,
            external_id=result.ref.external_id,
            detail=result.changes.describe() if result.changes is not None else None,
        )
        if result.relocations:
            await state.report.record_relocations(len(result.relocations))

        if self.upserter.dry_run:
            state.planned_refs[(platform.platform_id, entity.kind, entity.internal_id)] = (
                result.ref
            )
        elif self.write_back and _ref_changed(previous, result):
            await self._write_back(entity, platform, state)

    async def _write_back(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        state: _RunState,
    ) -> None:
        """Persist the entity's refs; the platform write itself is already counted."""

        try:
            await self.executor.execute(
                lambda: self.source.write_external_refs(entity),
                description=f"write back refs of {entity.kind} {entity.internal_id}",
            )
        except SyncCancelledError:
            log.warning(
                "Cancelled before the %s ref of %r was written back; the next run resolves it",
                platform.platform_id,
                entity,
            )
            await state.report.record_cancelled()
        except Exception as exc:  # noqa: BLE001
            await self._record_failure(entity, platform, state, exc, 1)

    async def _record_failure(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        state: _RunState,
        error: Exception,
        attempts: int,
    ) -> None:
        log.warning(
            "Failed to reconcile %r on %s after %s attempts: %s",
            entity,
            platform.platform_id,
            attempts,
            error,
        )
        await state.report.record_failure(
            kind=entity.kind,
            internal_id=entity.internal_id,
            platform=platform.platform_id,
            error=error,
            attempts=attempts,
        )

    async def _desired_state(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        state: _RunState,
    ) -> DesiredState:
        stored = platform.stored_attributes(entity.kind)
        attributes = dict(self.project(entity))

        by_kind: dict[EntityKind, list[EntityReference]] = defaultdict(list)
        for reference in entity.references:
            by_kind[reference.kind].append(reference)

        for parent_kind, references in by_kind.items():
            attribute = reference_attribute(parent_kind)
            if stored is not None and attribute not in stored:
                continue
            attributes[attribute] = [
                await self._parent_external_id(entity, reference, platform, state)
                for reference in references
            ]

        if stored is not None:
            attributes = {name: value for name, value in attributes.items() if name in stored}
        return DesiredState(
            key=entity.internal_id or None,
            name=entity.natural_key,
            attributes=attributes,
            owner_id=entity.internal_id or None,
        )

    async def _parent_external_id(
        self,
        entity: Entity,
        reference: EntityReference,
        platform: ExternalPlatform,
        state: _RunState,
    ) -> str:
        slot = (reference.kind, reference.internal_id)
        if slot not in state.index:
            state.index[slot] = await self.executor.execute(
                lambda: self.source.read_entity(reference.kind, reference.internal_id),
                description=f"read {reference.kind} {reference.internal_id}",
            )
        parent = state.index[slot]
        if parent is None:
            raise UnresolvedReferenceError(
                f"{entity!r} references unknown {reference.kind} {reference.internal_id}"
            )

        ref = parent.external_ref(platform.platform_id) or state.planned_refs.get(
            (platform.platform_id, reference.kind, reference.internal_id)
        )
        if ref is None:
            raise UnresolvedReferenceError(
                f"{entity!r} depends on {parent!r}, which has no record on {platform.platform_id}"
            )
        return ref.external_id


def _ref_changed(previous: ExternalRef | None, result: UpsertResult) -> bool:
    if previous is None:
        return True
    return (
        previous.external_id != result.ref.external_id
        or previous.external_key != result.ref.external_key
    )
