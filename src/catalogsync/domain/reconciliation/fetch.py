"""Paged fetcher: materialize a complete, deduplicated collection."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.domain.errors import CollectionFetchError, SyncCancelledError
from catalogsync.domain.model import PageCursor

from .normalize import normalize_name

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Sequence

    from catalogsync.domain.model import Entity, EntityKind, ExternalResource, Page
    from catalogsync.domain.ports import CatalogSource, ExternalPlatform, PagedSource

    from .retry import RetryExecutor

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FetchedCollection[T]:
    items: tuple[T, ...]
    pages: int = 0
    duplicates_dropped: int = 0


async def fetch_all[T](
    fetch_page: PagedSource[T],
    page_size: int,
    *,
    executor: RetryExecutor,
    identity: Callable[[T], Hashable],
    sort_key: Callable[[T], object] | None = None,
    descending: bool = True,
    max_pages: int | None = None,
    description: str = "collection",
) -> FetchedCollection[T]:
    """Request pages until the listing is exhausted.

    Items whose ``identity`` was already seen are dropped; the first occurrence
    wins. A page that keeps failing after retries aborts the whole fetch with
    ``CollectionFetchError`` and no partial collection is returned.
    """

    cursor = PageCursor(page=1, page_size=page_size)
    seen: set[Hashable] = set()
    items: list[T] = []
    duplicates = 0
    pages = 0

    while True:
        current = cursor
        try:
            page = await executor.execute(
                lambda: fetch_page(current),
                description=f"{description} page {current.page}",
            )
        except SyncCancelledError:
            raise
        except Exception as exc:
            raise CollectionFetchError(
                f"Fetching {description} failed on page {current.page}: {exc}"
            ) from exc
        pages += 1

        for item in page.items:
            item_identity = identity(item)
            if item_identity in seen:
                duplicates += 1
                log.warning("Dropping duplicate %s record %s", description, item_identity)
                continue
            seen.add(item_identity)
            items.append(item)

        if page.is_last():
            break
        if max_pages is not None and pages >= max_pages:
            log.warning("Stopping %s fetch at max_pages=%s", description, max_pages)
            break
        cursor = current.advance(total_known=page.total_items)

    if sort_key is not None:
        items.sort(key=sort_key, reverse=descending)

    log.info(
        "Fetched %s %s records across %s pages (%s duplicates dropped)",
        len(items),
        description,
        pages,
        duplicates,
    )
    return FetchedCollection(items=tuple(items), pages=pages, duplicates_dropped=duplicates)


def entity_identity(entity: Entity) -> Hashable:
    if entity.internal_id:
        return ("id", entity.internal_id)
    return ("name", normalize_name(entity.natural_key))


def _id_order(value: str | None) -> tuple[int, int, str]:
    if value is None:
        return (0, 0, "")
    stripped = value.strip()
    if stripped.isdigit():
        return (2, int(stripped), "")
    return (1, 0, stripped)


def entity_order(entity: Entity) -> tuple[int, float, tuple[int, int, str]]:
    """Newest first; undated entities last; ties by internal id, highest first."""

    if entity.updated_at is None:
        return (0, 0.0, _id_order(entity.internal_id))
    return (1, entity.updated_at.timestamp(), _id_order(entity.internal_id))


async def fetch_entities(
    source: CatalogSource,
    kind: EntityKind,
    *,
    page_size: int,
    executor: RetryExecutor,
    max_pages: int | None = None,
) -> FetchedCollection[Entity]:
    async def fetch_page(cursor: PageCursor) -> Page[Entity]:
        return await source.fetch_page(kind, cursor)

    return await fetch_all(
        fetch_page,
        page_size,
        executor=executor,
        identity=entity_identity,
        sort_key=entity_order,
        max_pages=max_pages,
        description=str(kind),
    )


async def fetch_resources(
    platform: ExternalPlatform,
    kind: EntityKind,
    *,
    page_size: int,
    executor: RetryExecutor,
    max_pages: int | None = None,
) -> FetchedCollection[ExternalResource]:
    """List a platform collection in fetch order, deduplicated by external id."""

    async def fetch_page(cursor: PageCursor) -> Page[ExternalResource]:
        return await platform.list_page(kind, cursor)

    return await fetch_all(
        fetch_page,
        page_size,
        executor=executor,
        identity=lambda resource: resource.external_id,
        max_pages=max_pages,
        description=f"{platform.platform_id} {kind}",
    )


def max_numeric_key(resources: Sequence[ExternalResource]) -> int:
    keys = [int(resource.key) for resource in resources if resource.key and resource.key.isdigit()]
    return max(keys, default=0)
