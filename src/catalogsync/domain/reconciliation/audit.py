"""Audit external collections for records that duplicate each other by name."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.domain.errors import NotFoundError

from .fetch import fetch_resources
from .normalize import normalize_name

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catalogsync.domain.model import EntityKind, ExternalResource
    from catalogsync.domain.ports import ExternalPlatform

    from .retry import RetryExecutor

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """Records sharing one normalized name; ``original`` is the first one listed."""

    name: str
    original: ExternalResource
    duplicates: tuple[ExternalResource, ...]


@dataclass(frozen=True, slots=True)
class DuplicateAudit:
    platform: str
    kind: EntityKind
    scanned: int
    groups: tuple[DuplicateGroup, ...]
    removed: tuple[str, ...] = ()
    dry_run: bool = True

    @property
    def duplicate_count(self) -> int:
        return sum(len(group.duplicates) for group in self.groups)


def group_duplicates(resources: Sequence[ExternalResource]) -> tuple[DuplicateGroup, ...]:
    by_name: dict[str, list[ExternalResource]] = {}
    for resource in resources:
        name = normalize_name(resource.name)
        if not name:
            continue
        by_name.setdefault(name, []).append(resource)
    return tuple(
        DuplicateGroup(name=name, original=members[0], duplicates=tuple(members[1:]))
        for name, members in by_name.items()
        if len(members) > 1
    )


async def find_duplicate_resources(
    platform: ExternalPlatform,
    kind: EntityKind,
    *,
    executor: RetryExecutor,
    page_size: int = 100,
) -> DuplicateAudit:
    listing = await fetch_resources(platform, kind, page_size=page_size, executor=executor)
    groups = group_duplicates(listing.items)
    for group in groups:
        log.warning(
            "%s %s %r: keeping %s, duplicates %s",
            platform.platform_id,
            kind,
            group.name,
            group.original.external_id,
            ", ".join(resource.external_id for resource in group.duplicates),
        )
    return DuplicateAudit(
        platform=platform.platform_id,
        kind=kind,
        scanned=len(listing.items),
        groups=groups,
    )


async def remove_duplicate_resources(
    platform: ExternalPlatform,
    kind: EntityKind,
    *,
    executor: RetryExecutor,
    page_size: int = 100,
    dry_run: bool = True,
) -> DuplicateAudit:
    """Delete every duplicate found by ``find_duplicate_resources`` unless ``dry_run``."""

    audit = await find_duplicate_resources(
        platform, kind, executor=executor, page_size=page_size
    )
    if dry_run:
        log.info(
            "[dry-run] would delete %s duplicate %s records on %s",
            audit.duplicate_count,
            kind,
            platform.platform_id,
        )
        return audit

    removed: list[str] = []
    for group in audit.groups:
        for duplicate in group.duplicates:
            try:
                await executor.execute(
                    lambda: platform.delete(kind, duplicate.external_id),  # noqa: B023
                    description=f"{platform.platform_id} {kind} delete {duplicate.external_id}",
                )
            except NotFoundError:
                log.info("Duplicate %s already gone", duplicate.external_id)
                continue
            removed.append(duplicate.external_id)
    log.info("Deleted %s duplicate %s records on %s", len(removed), kind, platform.platform_id)
    return DuplicateAudit(
        platform=audit.platform,
        kind=audit.kind,
        scanned=audit.scanned,
        groups=audit.groups,
        removed=tuple(removed),
        dry_run=False,
    )
