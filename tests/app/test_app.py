from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

import pytest

from catalogsync.app import (
    audit_duplicates,
    export_sheet,
    import_sheet,
    ordered_kinds,
    sync_platforms,
)
from catalogsync.config import RetryPolicy, SyncConfig
from catalogsync.domain.model import EntityKind, RowAction, TabularRow
from tests.support.catalog import (
    FakeCatalogSource,
    FakeEditableCatalog,
    FakePlatform,
    entity,
    resource,
)

AUTHOR = EntityKind.AUTHOR
PUBLISHER = EntityKind.PUBLISHER
PRODUCT = EntityKind.PRODUCT

CONFIG = SyncConfig(
    page_size=2,
    concurrency=2,
    relocation_offset=100,
    retry=RetryPolicy(total=2, backoff_factor=0.0, backoff_jitter=0.0),
)


@dataclass
class _MemoryStore:
    rows: dict[EntityKind, list[TabularRow]] = field(default_factory=dict)

    def read_snapshot(self, kind: EntityKind) -> list[TabularRow]:
        return self.rows.get(kind, [])

    def write_snapshot(self, kind: EntityKind, rows: list[TabularRow]) -> None:
        self.rows[kind] = list(rows)


def test_ordered_kinds_puts_parents_first() -> None:
    assert ordered_kinds(["product", AUTHOR, "product"]) == (AUTHOR, PRODUCT)
    assert ordered_kinds(None) == tuple(EntityKind)


def test_sync_platforms_reconciles_every_platform() -> None:
    source = FakeCatalogSource()
    source.add(
        entity(AUTHOR, "7", "Ana Pérez"),
        entity(PRODUCT, "978", "El libro", parents=[(AUTHOR, "7")]),
    )
    platforms: dict[str, FakePlatform] = {}

    def platform_factory(platform_id: str) -> FakePlatform:
        platforms[platform_id] = FakePlatform(platform_id=platform_id)
        return platforms[platform_id]

    report = sync_platforms(
        platform_ids=["woo_a", "woo_b"],
        kinds=["product", "author"],
        catalog_factory=lambda: source,  # type: ignore[arg-type,return-value]
        platform_factory=platform_factory,  # type: ignore[arg-type]
        config=CONFIG,
    )

    assert report.ok
    assert report.created == 4
    assert set(platforms) == {"woo_a", "woo_b"}
    author = source.entities[AUTHOR][0]
    assert set(author.external_refs) == {"woo_a", "woo_b"}


def test_sync_platforms_recent_hours_uses_clock() -> None:
    source = FakeCatalogSource()
    fresh = entity(AUTHOR, "1", "Fresh")
    fresh.updated_at = datetime(2025, 6, 1, 11, tzinfo=UTC)
    stale = entity(AUTHOR, "2", "Stale")
    stale.updated_at = datetime(2025, 5, 1, tzinfo=UTC)
    source.add(fresh, stale)
    platform = FakePlatform()

    report = sync_platforms(
        platform_ids=["fake"],
        kinds=["author"],
        recent_hours=2,
        catalog_factory=lambda: source,  # type: ignore[arg-type,return-value]
        platform_factory=lambda _: platform,  # type: ignore[arg-type,return-value]
        config=CONFIG,
        now_provider=lambda: datetime(2025, 6, 1, 12, tzinfo=UTC),
    )

    assert report.created == 1
    assert [item.name for item in platform.all(AUTHOR)] == ["Fresh"]


@pytest.mark.parametrize(
    ("platform_ids", "recent_hours"),
    [([], None), (["fake"], -1.0)],
)
def test_sync_platforms_rejects_bad_input(
    platform_ids: list[str],
    recent_hours: float | None,
) -> None:
    with pytest.raises(ValueError):  # noqa: PT011
        sync_platforms(platform_ids=platform_ids, recent_hours=recent_hours, config=CONFIG)


def test_import_sheet_applies_rows_to_catalog() -> None:
    catalog = FakeEditableCatalog()
    catalog.seed(PUBLISHER, resource("d1", "1", "Uno"), resource("d2", "2", "Dos"))
    store = _MemoryStore(
        rows={
            PUBLISHER: [
                TabularRow(fields={"key": "1", "name": "Uno bis"}, reference="d1"),
                TabularRow(action=RowAction.DELETE, reference="d2"),
            ]
        }
    )

    report = import_sheet(
        kind="publisher",
        catalog_factory=lambda: catalog,  # type: ignore[arg-type,return-value]
        store=store,
        config=CONFIG,
    )

    assert report.updated == 1
    assert report.deleted == 1
    assert [item.name for item in catalog.all(PUBLISHER)] == ["Uno bis"]


def test_export_sheet_writes_the_collection() -> None:
    catalog = FakeEditableCatalog()
    catalog.seed(AUTHOR, resource("d1", "1", "Ana"), resource("d2", "2", "Bea"))
    store = _MemoryStore()

    count = export_sheet(
        kind=AUTHOR,
        catalog_factory=lambda: catalog,  # type: ignore[arg-type,return-value]
        store=store,
        config=CONFIG,
    )

    assert count == 2
    assert [row.reference for row in store.rows[AUTHOR]] == ["d1", "d2"]


def test_audit_duplicates_can_delete() -> None:
    platform = FakePlatform(platform_id="woo_a")
    platform.seed(AUTHOR, resource("1", "a", "Ana"), resource("2", "b", "ana"))

    audits = audit_duplicates(
        platform_ids=["woo_a"],
        kinds=["author"],
        delete=True,
        platform_factory=lambda _: platform,  # type: ignore[arg-type,return-value]
        config=CONFIG,
    )

    assert len(audits) == 1
    assert audits[0].removed == ("2",)
    assert [item.external_id for item in platform.all(AUTHOR)] == ["1"]
