"""Idempotent create-or-update with unique-key collision repair."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.domain.errors import (
    AmbiguousMatchError,
    NotFoundError,
    RelocationExhaustedError,
    UniqueKeyConflictError,
)
from catalogsync.domain.model import (
    ExternalRef,
    ExternalResource,
    ResourceChanges,
    SyncOperation,
    diff_resource,
    same_key,
)

from .contracts import (
    AmbiguousResolution,
    MatchKind,
    NotFoundResolution,
    ResolvedResolution,
)
from .fetch import fetch_resources, max_numeric_key
from .normalize import normalize_name
from .resolve import IdentityResolver, owned_by_other

if TYPE_CHECKING:
    from collections.abc import Callable

    from catalogsync.domain.model import DesiredState, Entity, EntityKind, SyncTask
    from catalogsync.domain.ports import ExternalPlatform

    from .contracts import Resolution
    from .retry import RetryExecutor

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Relocation:
    """An occupant that was moved off a key so the entity could take it."""

    external_id: str
    old_key: str | None
    new_key: str


@dataclass(frozen=True, slots=True)
class UpsertResult:
    ref: ExternalRef
    operation: SyncOperation
    resource: ExternalResource
    match_kind: MatchKind | None = None
    changes: ResourceChanges | None = None
    relocations: tuple[Relocation, ...] = ()


class SurrogateKeyAllocator:
    """Hands out numeric keys that are currently free on a platform.

    The first allocation for a ``(platform, kind)`` pair lists the collection to
    find the highest numeric key; later ones count up from there. Every candidate
    is checked with ``find_by_key`` before it is returned, at most
    ``max_lookups`` times per allocation. One lock serializes all allocations.
    """

    def __init__(
        self,
        *,
        executor: RetryExecutor,
        page_size: int = 100,
        offset: int = 1,
        spread: int = 0,
        max_lookups: int = 50,
        spread_source: Callable[[int, int], int] = random.randint,
    ) -> None:
        if offset < 1:
            raise ValueError("offset must be >= 1")
        self._executor = executor
        self._page_size = page_size
        self._offset = offset
        self._spread = spread
        self._max_lookups = max_lookups
        self._spread_source = spread_source
        self._next: dict[tuple[str, EntityKind], int] = {}
        self._lock = asyncio.Lock()

    async def allocate(self, platform: ExternalPlatform, kind: EntityKind) -> str:
        async with self._lock:
            slot = (platform.platform_id, kind)
            if slot not in self._next:
                listing = await fetch_resources(
                    platform, kind, page_size=self._page_size, executor=self._executor
                )
                start = max_numeric_key(listing.items) + self._offset
                if self._spread > 0:
                    start += self._spread_source(0, self._spread)
                self._next[slot] = start

            for _ in range(self._max_lookups):
                candidate = str(self._next[slot])
                self._next[slot] += 1
                occupant = await self._executor.execute(
                    lambda: platform.find_by_key(kind, candidate),  # noqa: B023
                    description=f"{platform.platform_id} {kind} key lookup {candidate}",
                )
                if occupant is None:
                    return candidate
                log.debug(
                    "Key %s on %s %s is taken, probing next",
                    candidate,
                    platform.platform_id,
                    kind,
                )

        raise RelocationExhaustedError(
            f"No free key on {platform.platform_id} {kind} after {self._max_lookups} lookups"
        )


class _LiveWrites:
    """Mutating platform calls, each run through the retry executor."""

    label = ""

    def __init__(self, executor: RetryExecutor, platform: ExternalPlatform, entity: Entity) -> None:
        self._executor = executor
        self._platform = platform
        self._kind = entity.kind

    async def create(self, desired: DesiredState) -> ExternalResource:
        return await self._executor.execute(
            lambda: self._platform.create(self._kind, desired),
            description=f"{self._platform.platform_id} {self._kind} create {desired.key}",
        )

    async def update(self, target: ExternalResource, changes: ResourceChanges) -> ExternalResource:
        return await self._executor.execute(
            lambda: self._platform.update(self._kind, target.external_id, changes),
            description=f"{self._platform.platform_id} {self._kind} update {target.external_id}",
        )


class _DryRunWrites:
    """Answers the same calls from reads only.

    A key held by another record raises ``UniqueKeyConflictError`` just as the
    platform would, so collisions and relocations are planned by the same loop.
    Keys given away by planned relocations count as free.
    """

    label = "[dry-run] "

    def __init__(self, executor: RetryExecutor, platform: ExternalPlatform, entity: Entity) -> None:
        self._executor = executor
        self._platform = platform
        self._entity = entity
        self._moved: dict[str, str] = {}

    async def create(self, desired: DesiredState) -> ExternalResource:
        await self._claim(desired.key, None)
        entity = self._entity
        return ExternalResource(
            external_id=f"dry-run:{entity.kind}:{entity.internal_id or entity.natural_key}",
            key=desired.key,
            name=desired.name or "",
            attributes=desired.attributes,
            owner_id=desired.owner_id,
        )

    async def update(self, target: ExternalResource, changes: ResourceChanges) -> ExternalResource:
        if changes.key is not None:
            await self._claim(changes.key, target.external_id)
            self._moved[target.external_id] = changes.key
        return changes.applied_to(target)

    async def _claim(self, key: str | None, external_id: str | None) -> None:
        if key is None:
            return
        kind = self._entity.kind
        holder = await self._executor.execute(
            lambda: self._platform.find_by_key(kind, key),
            description=f"{self._platform.platform_id} {kind} key lookup {key}",
        )
        if holder is None or holder.external_id == external_id:
            return
        moved_to = self._moved.get(holder.external_id)
        if moved_to is not None and not same_key(moved_to, key):
            return
        raise UniqueKeyConflictError(
            f"{kind} key {key} is held by {holder.external_id}",
            key=key,
            conflicting_id=holder.external_id,
        )


type _Writes = _LiveWrites | _DryRunWrites


@dataclass(slots=True)
class CollisionSafeUpsert:
    """Create or update an entity's counterpart, relocating whatever holds its key.

    Nothing is written when the counterpart already matches. A rejected write
    caused by another record holding the key moves that record to a freshly
    allocated key and repeats the write, at most ``max_relocation_attempts``
    times; a relocation that collides itself is retried with another key under
    the same bound. Occupants are never deleted. The entity's external ref is
    recorded only after a confirmed write (or a confirmed match).

    Dry-run mode runs the same loop with every mutating call answered from
    reads, and records no refs.
    """

    executor: RetryExecutor
    allocator: SurrogateKeyAllocator
    resolver: IdentityResolver | None = None
    max_relocation_attempts: int = 3
    dry_run: bool = False
    clock: Callable[[], datetime] = _utcnow
    _resolver: IdentityResolver = field(init=False)

    def __post_init__(self) -> None:
        self._resolver = self.resolver or IdentityResolver(self.executor)

    async def upsert(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        desired: DesiredState,
        *,
        trust_ref: bool = True,
        require_existing: bool = False,
        task: SyncTask | None = None,
    ) -> UpsertResult:
        resolution = await self._resolver.resolve(
            entity, platform, key=desired.key, trust_ref=trust_ref
        )
        if require_existing and isinstance(resolution, NotFoundResolution):
            raise NotFoundError(f"{entity!r} has no record on {platform.platform_id} to update")
        if isinstance(resolution, AmbiguousResolution):
            ids = ", ".join(candidate.external_id for candidate in resolution.candidates)
            raise AmbiguousMatchError(
                f"{entity!r} matches several {platform.platform_id} records: {ids}",
                candidates=resolution.candidates,
            )

        writes: _Writes = (
            _DryRunWrites(self.executor, platform, entity)
            if self.dry_run
            else _LiveWrites(self.executor, platform, entity)
        )
        result = await self._write(entity, platform, desired, resolution, writes, task)
        if not self.dry_run:
            entity.record_external_ref(platform.platform_id, result.ref)

        if task is not None:
            task.operation = result.operation
        return result

    async def _write(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        desired: DesiredState,
        resolution: Resolution,
        writes: _Writes,
        task: SyncTask | None,
    ) -> UpsertResult:
        relocations: list[Relocation] = []
        attempt = 0
        while True:
            attempt += 1
            if task is not None:
                task.attempts += 1
            try:
                if isinstance(resolution, ResolvedResolution):
                    target = resolution.target
                    changes = diff_resource(target, desired)
                    if changes.is_empty:
                        log.debug("%r is up to date on %s", entity, platform.platform_id)
                        return self._result(
                            target, SyncOperation.SKIP, resolution, None, relocations
                        )
                    updated = await writes.update(target, changes)
                    log.info(
                        "%sUpdated %r on %s (%s): %s",
                        writes.label,
                        entity,
                        platform.platform_id,
                        target.external_id,
                        changes.describe(),
                    )
                    return self._result(
                        updated, SyncOperation.UPDATE, resolution, changes, relocations
                    )

                created = await writes.create(desired)
                log.info(
                    "%sCreated %r on %s as %s",
                    writes.label,
                    entity,
                    platform.platform_id,
                    created.external_id,
                )
                return self._result(created, SyncOperation.CREATE, resolution, None, relocations)

            except UniqueKeyConflictError as conflict:
                if attempt > self.max_relocation_attempts:
                    raise RelocationExhaustedError(
                        f"Key {desired.key} of {entity!r} on {platform.platform_id} still "
                        f"collides after {self.max_relocation_attempts} relocations"
                    ) from conflict

                occupant = await self._find_occupant(entity, platform, desired, conflict)
                if self._is_own(occupant, entity, desired, resolution):
                    log.info(
                        "Conflict on %s resolved to existing record %s for %r",
                        platform.platform_id,
                        occupant.external_id,
                        entity,
                    )
                    resolution = ResolvedResolution(
                        target=occupant, match_kind=MatchKind.KEY, reason="late_conflict_match"
                    )
                    continue
                relocations.append(await self._relocate(entity, platform, occupant, writes))

    async def _find_occupant(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        desired: DesiredState,
        conflict: UniqueKeyConflictError,
    ) -> ExternalResource:
        if conflict.conflicting_id is not None:
            try:
                return await self.executor.execute(
                    lambda: platform.get(entity.kind, conflict.conflicting_id or ""),
                    description=(
                        f"{platform.platform_id} {entity.kind} get {conflict.conflicting_id}"
                    ),
                )
            except NotFoundError:
                log.warning(
                    "Conflicting record %s reported by %s no longer exists",
                    conflict.conflicting_id,
                    platform.platform_id,
                )
        key = conflict.key or desired.key
        occupant = None
        if key is not None:
            occupant = await self.executor.execute(
                lambda: platform.find_by_key(entity.kind, key),
                description=f"{platform.platform_id} {entity.kind} key lookup {key}",
            )
        if occupant is None:
            # Collision on something we cannot locate; retrying blindly would loop.
            raise conflict
        return occupant

    @staticmethod
    def _is_own(
        occupant: ExternalResource,
        entity: Entity,
        desired: DesiredState,
        resolution: Resolution,
    ) -> bool:
        if isinstance(resolution, ResolvedResolution):
            if occupant.external_id == resolution.target.external_id:
                return True
            return False
        if owned_by_other(occupant, entity):
            return False
        if occupant.owner_id is not None:
            return True
        # Unowned record rejected on its name rather than its key.
        return (
            desired.name is not None
            and not same_key(occupant.key, desired.key)
            and normalize_name(occupant.name) == normalize_name(desired.name)
        )

    async def _relocate(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        occupant: ExternalResource,
        writes: _Writes,
    ) -> Relocation:
        last_conflict: UniqueKeyConflictError | None = None
        for _ in range(self.max_relocation_attempts):
            new_key = await self.allocator.allocate(platform, entity.kind)
            try:
                await writes.update(occupant, ResourceChanges(key=new_key))
            except UniqueKeyConflictError as conflict:
                log.warning(
                    "Key %s on %s is taken as well; allocating another for record %s",
                    new_key,
                    platform.platform_id,
                    occupant.external_id,
                )
                last_conflict = conflict
                continue
            log.warning(
                "%sRelocated %s record %s from key %s to %s to make room for %r",
                writes.label,
                platform.platform_id,
                occupant.external_id,
                occupant.key,
                new_key,
                entity,
            )
            return Relocation(
                external_id=occupant.external_id, old_key=occupant.key, new_key=new_key
            )

        raise RelocationExhaustedError(
            f"Could not move {platform.platform_id} record {occupant.external_id} off key "
            f"{occupant.key} after {self.max_relocation_attempts} attempts"
        ) from last_conflict

    def _result(
        self,
        resource: ExternalResource,
        operation: SyncOperation,
        resolution: Resolution,
        changes: ResourceChanges | None,
        relocations: list[Relocation],
    ) -> UpsertResult:
        match_kind = (
            resolution.match_kind
            if isinstance(resolution, ResolvedResolution)
            and operation is not SyncOperation.CREATE
            else None
        )
        return UpsertResult(
            ref=ExternalRef(
                external_id=resource.external_id,
                external_key=resource.key,
                last_synced_at=self.clock(),
            ),
            operation=operation,
            resource=resource,
            match_kind=match_kind,
            changes=changes,
            relocations=tuple(relocations),
        )
