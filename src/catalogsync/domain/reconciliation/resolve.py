"""Identity resolution: find an entity's counterpart on an external platform."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.domain.errors import NotFoundError

from .contracts import (
    DEFAULT_LOOKUPS,
    AmbiguousResolution,
    MatchKind,
    NotFoundResolution,
    ResolvedResolution,
)
from .normalize import fold_name, normalize_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from catalogsync.domain.model import Entity, ExternalResource
    from catalogsync.domain.ports import ExternalPlatform

    from .contracts import Resolution
    from .retry import RetryExecutor

log = getLogger(__name__)


def owned_by_other(resource: ExternalResource, entity: Entity) -> bool:
    return resource.owner_id is not None and resource.owner_id != entity.internal_id


def _dedupe(resources: Iterable[ExternalResource]) -> tuple[ExternalResource, ...]:
    seen: set[str] = set()
    unique: list[ExternalResource] = []
    for resource in resources:
        if resource.external_id in seen:
            continue
        seen.add(resource.external_id)
        unique.append(resource)
    return tuple(unique)


@dataclass(slots=True)
class IdentityResolver:
    """Read-only lookup of an entity's counterpart, strongest evidence first.

    1. the stored external ref, if it still exists;
    2. an exact key match, unless the platform says the resource belongs to a
       different internal id (then it is reported as an obstruction);
    3. an exact case-insensitive name match. Several matches, or matches that
       only agree once accents and punctuation are folded away, are ambiguous.

    ``lookups`` restricts which of those may produce a match. The key lookup
    still runs without ``MatchKind.KEY`` so that obstructions are reported.
    """

    executor: RetryExecutor
    lookups: tuple[MatchKind, ...] = DEFAULT_LOOKUPS

    async def resolve(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        *,
        key: str | None,
        trust_ref: bool = True,
    ) -> Resolution:
        kind = entity.kind
        ref = entity.external_ref(platform.platform_id)

        if trust_ref and ref is not None and MatchKind.EXTERNAL_ID in self.lookups:
            target = await self._get(platform, entity, ref.external_id)
            if target is not None:
                return ResolvedResolution(target=target, match_kind=MatchKind.EXTERNAL_ID)
            log.info(
                "Stored ref %s of %r is gone from %s; resolving again",
                ref.external_id,
                entity,
                platform.platform_id,
            )

        obstruction: ExternalResource | None = None
        if key is not None:
            by_key = await self.executor.execute(
                lambda: platform.find_by_key(kind, key),
                description=f"{platform.platform_id} {kind} key lookup {key}",
            )
            if by_key is not None:
                if MatchKind.KEY in self.lookups and not owned_by_other(by_key, entity):
                    return ResolvedResolution(target=by_key, match_kind=MatchKind.KEY)
                obstruction = by_key

        if MatchKind.NATURAL_KEY in self.lookups and entity.natural_key.strip():
            resolution = await self._resolve_by_name(entity, platform, obstruction)
            if resolution is not None:
                return resolution

        return NotFoundResolution(obstruction=obstruction, reason="no_match")

    async def _get(
        self,
        platform: ExternalPlatform,
        entity: Entity,
        external_id: str,
    ) -> ExternalResource | None:
        try:
            return await self.executor.execute(
                lambda: platform.get(entity.kind, external_id),
                description=f"{platform.platform_id} {entity.kind} get {external_id}",
            )
        except NotFoundError:
            return None

    async def _resolve_by_name(
        self,
        entity: Entity,
        platform: ExternalPlatform,
        obstruction: ExternalResource | None,
    ) -> Resolution | None:
        candidates = await self.executor.execute(
            lambda: platform.search_by_name(entity.kind, entity.natural_key),
            description=f"{platform.platform_id} {entity.kind} name search",
        )
        viable = [
            candidate
            for candidate in _dedupe(candidates)
            if not owned_by_other(candidate, entity)
            and (obstruction is None or candidate.external_id != obstruction.external_id)
        ]

        wanted = normalize_name(entity.natural_key)
        exact = tuple(candidate for candidate in viable if normalize_name(candidate.name) == wanted)
        if len(exact) == 1:
            return ResolvedResolution(target=exact[0], match_kind=MatchKind.NATURAL_KEY)
        if exact:
            return AmbiguousResolution(
                candidates=exact,
                match_kind=MatchKind.NATURAL_KEY,
                reason="multiple_exact_name_matches",
            )

        folded = fold_name(entity.natural_key)
        near = tuple(candidate for candidate in viable if fold_name(candidate.name) == folded)
        if near:
            return AmbiguousResolution(
                candidates=near,
                match_kind=MatchKind.NATURAL_KEY,
                reason="near_name_match",
            )
        return None
