"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Callable
from contextlib import AsyncExitStack
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from catalogsync.adapters.csv_snapshot import CsvSnapshotStore
from catalogsync.adapters.strapi import StrapiCatalog
from catalogsync.adapters.woocommerce import WooCommercePlatform
from catalogsync.config import (
    SyncConfig,
    get_storage_config,
    get_strapi_config,
    get_sync_config,
    get_woocommerce_config,
)
from catalogsync.domain.model import EntityKind
from catalogsync.domain.reconciliation import (
    CollisionSafeUpsert,
    IdentityResolver,
    ReconciliationEngine,
    RetryExecutor,
    SurrogateKeyAllocator,
    TabularReconciler,
    find_duplicate_resources,
    remove_duplicate_resources,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

    from catalogsync.domain.model import ReconciliationReport
    from catalogsync.domain.ports import EditableCatalog, ExternalPlatform, SnapshotStore
    from catalogsync.domain.reconciliation import DuplicateAudit

CatalogFactory = Callable[[], StrapiCatalog]
PlatformFactory = Callable[[str], WooCommercePlatform]

ALL_KINDS: tuple[EntityKind, ...] = tuple(EntityKind)

log = getLogger(__name__)


def _default_catalog() -> StrapiCatalog:
    return StrapiCatalog(get_strapi_config())


def _default_platform(platform_id: str) -> WooCommercePlatform:
    return WooCommercePlatform(get_woocommerce_config(platform_id))


def _utcnow() -> datetime:
    return datetime.now(UTC)


def ordered_kinds(kinds: Sequence[EntityKind | str] | None) -> tuple[EntityKind, ...]:
    """Requested kinds in dependency order (parents first), without repeats."""

    if not kinds:
        return ALL_KINDS
    requested = {EntityKind(kind) for kind in kinds}
    return tuple(kind for kind in ALL_KINDS if kind in requested)


@contextlib.contextmanager
def _cancel_on_sigint(event: asyncio.Event) -> Iterator[None]:
    """Turn Ctrl+C into a graceful stop: running work finishes, nothing new starts."""

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, event.set)
    except (NotImplementedError, RuntimeError):
        # Not on the main thread, or no signal support (Windows).
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _executor(config: SyncConfig, cancel_event: asyncio.Event | None = None) -> RetryExecutor:
    return RetryExecutor(policy=config.retry, cancel_event=cancel_event)


def sync_platforms(
    *,
    platform_ids: Sequence[str],
    kinds: Sequence[EntityKind | str] | None = None,
    recent_hours: float | None = None,
    dry_run: bool = False,
    concurrency: int | None = None,
    catalog_factory: CatalogFactory | None = None,
    platform_factory: PlatformFactory | None = None,
    config: SyncConfig | None = None,
    now_provider: Callable[[], datetime] = _utcnow,
) -> ReconciliationReport:
    """Reconcile the catalog onto the given platforms, parents before children."""

    if not platform_ids:
        raise ValueError("At least one platform id is required")
    if recent_hours is not None and recent_hours < 0:
        raise ValueError("Recent hours must be non-negative")
    effective_config = config or get_sync_config()
    since = now_provider() - timedelta(hours=recent_hours) if recent_hours is not None else None

    return asyncio.run(
        _sync_platforms(
            platform_ids=platform_ids,
            kinds=ordered_kinds(kinds),
            since=since,
            dry_run=dry_run,
            concurrency=concurrency or effective_config.concurrency,
            catalog_factory=catalog_factory or _default_catalog,
            platform_factory=platform_factory or _default_platform,
            config=effective_config,
        )
    )


async def _sync_platforms(
    *,
    platform_ids: Sequence[str],
    kinds: Sequence[EntityKind],
    since: datetime | None,
    dry_run: bool,
    concurrency: int,
    catalog_factory: CatalogFactory,
    platform_factory: PlatformFactory,
    config: SyncConfig,
) -> ReconciliationReport:
    cancel_event = asyncio.Event()
    executor = _executor(config, cancel_event)
    upserter = CollisionSafeUpsert(
        executor=executor,
        allocator=SurrogateKeyAllocator(
            executor=executor,
            page_size=config.page_size,
            offset=config.relocation_offset,
            max_lookups=config.max_key_lookups,
        ),
        resolver=IdentityResolver(executor),
        max_relocation_attempts=config.max_relocation_attempts,
        dry_run=dry_run,
    )

    async with AsyncExitStack() as stack:
        catalog = await stack.enter_async_context(catalog_factory())
        platforms: list[ExternalPlatform] = [
            await stack.enter_async_context(platform_factory(platform_id))
            for platform_id in platform_ids
        ]
        engine = ReconciliationEngine(
            source=catalog,
            executor=executor,
            upserter=upserter,
            page_size=config.page_size,
            concurrency=concurrency,
        )
        with _cancel_on_sigint(cancel_event):
            return await engine.run(kinds, platforms, since=since)


def import_sheet(
    *,
    kind: EntityKind | str,
    directory: Path | None = None,
    dry_run: bool = False,
    catalog_factory: CatalogFactory | None = None,
    store: SnapshotStore | None = None,
    config: SyncConfig | None = None,
) -> ReconciliationReport:
    """Apply the operator-edited snapshot of ``kind`` to the catalog."""

    entity_kind = EntityKind(kind)
    effective_store = store or CsvSnapshotStore(directory or get_storage_config().snapshot_dir())
    rows = effective_store.read_snapshot(entity_kind)
    effective_config = config or get_sync_config()

    async def run() -> ReconciliationReport:
        async with (catalog_factory or _default_catalog)() as catalog:
            reconciler = _reconciler(catalog, effective_config, entity_kind, dry_run=dry_run)
            return await reconciler.apply(entity_kind, rows, catalog)

    return asyncio.run(run())


def export_sheet(
    *,
    kind: EntityKind | str,
    directory: Path | None = None,
    catalog_factory: CatalogFactory | None = None,
    store: SnapshotStore | None = None,
    config: SyncConfig | None = None,
) -> int:
    """Write the catalog's ``kind`` collection to an editable snapshot."""

    entity_kind = EntityKind(kind)
    effective_store = store or CsvSnapshotStore(directory or get_storage_config().snapshot_dir())
    effective_config = config or get_sync_config()

    async def run() -> int:
        async with (catalog_factory or _default_catalog)() as catalog:
            reconciler = _reconciler(catalog, effective_config, entity_kind, dry_run=False)
            return await reconciler.export_snapshot(entity_kind, catalog, effective_store)

    return asyncio.run(run())


def _reconciler(
    catalog: EditableCatalog,
    config: SyncConfig,
    kind: EntityKind,
    *,
    dry_run: bool,
) -> TabularReconciler:
    key_column, name_column = "key", "name"
    if isinstance(catalog, StrapiCatalog):
        collection = catalog.config.collection(kind)
        key_column, name_column = collection.key_field, collection.name_field
    return TabularReconciler(
        executor=_executor(config),
        config=config,
        key_column=key_column,
        name_column=name_column,
        dry_run=dry_run,
    )


def audit_duplicates(
    *,
    platform_ids: Sequence[str],
    kinds: Sequence[EntityKind | str] | None = None,
    delete: bool = False,
    platform_factory: PlatformFactory | None = None,
    config: SyncConfig | None = None,
) -> list[DuplicateAudit]:
    """Report (and with ``delete``, remove) records duplicated by name."""

    effective_config = config or get_sync_config()
    factory = platform_factory or _default_platform

    async def run() -> list[DuplicateAudit]:
        executor = _executor(effective_config)
        audits: list[DuplicateAudit] = []
        for platform_id in platform_ids:
            async with factory(platform_id) as platform:
                for kind in ordered_kinds(kinds):
                    if delete:
                        audit = await remove_duplicate_resources(
                            platform,
                            kind,
                            executor=executor,
                            page_size=effective_config.page_size,
                            dry_run=False,
                        )
                    else:
                        audit = await find_duplicate_resources(
                            platform, kind, executor=executor, page_size=effective_config.page_size
                        )
                    audits.append(audit)
        return audits

    audits = asyncio.run(run())
    log.info(
        "Duplicate audit finished: %s",
        ", ".join(f"{a.platform}/{a.kind}={a.duplicate_count}" for a in audits)
        or "nothing scanned",
    )
    return audits
