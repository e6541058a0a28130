from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from catalogsync.config import SyncConfig
from catalogsync.domain.model import EntityKind, RowAction, TabularRow
from catalogsync.domain.reconciliation import TabularReconciler
from catalogsync.domain.reconciliation.tabular import plan_rows
from tests.support.catalog import FakeEditableCatalog, make_executor, resource

PUBLISHER = EntityKind.PUBLISHER


def _reconciler(*, dry_run: bool = False) -> TabularReconciler:
    return TabularReconciler(
        executor=make_executor(),
        config=SyncConfig(relocation_offset=500, concurrency=2),
        dry_run=dry_run,
    )


def _catalog() -> FakeEditableCatalog:
    catalog = FakeEditableCatalog()
    catalog.seed(
        PUBLISHER,
        resource("d1", "1", "Uno", precio=12.0),
        resource("d2", "2", "Dos"),
    )
    return catalog


def _row(
    reference: str | None = None,
    action: RowAction = RowAction.RECONCILE,
    **fields: str,
) -> TabularRow:
    return TabularRow(fields=dict(fields), action=action, reference=reference)


def test_rows_apply_in_fixed_order_and_deleted_rows_are_not_updated() -> None:
    catalog = _catalog()
    rows = [
        _row(None, name="Tres"),
        _row("d1", key="1", name="Uno renombrado"),
        _row("d2", RowAction.PUBLISH, key="2", name="Dos"),
        _row("d1", RowAction.DELETE, key="1", name="Uno"),
    ]

    report = asyncio.run(_reconciler().apply(PUBLISHER, rows, catalog))

    assert report.deleted == 1
    assert report.published == 1
    assert report.created == 1
    assert report.updated == 0
    assert report.skipped == 1
    assert catalog.published == {"d2": True}
    operations = [call[0] for call in catalog.calls if call[0] in {"delete", "publish", "create"}]
    assert operations == ["delete", "publish", "create"]
    assert {item.key for item in catalog.all(PUBLISHER)} == {"2", "3"}


def test_new_row_without_key_gets_next_free_key() -> None:
    catalog = _catalog()

    asyncio.run(_reconciler().apply(PUBLISHER, [_row(None, name="Nueva")], catalog))

    created = [item for item in catalog.all(PUBLISHER) if item.name == "Nueva"]
    assert [item.key for item in created] == ["3"]


def test_new_row_taking_a_used_key_relocates_the_holder() -> None:
    catalog = _catalog()

    report = asyncio.run(
        _reconciler().apply(PUBLISHER, [_row(None, key="2", name="Otra")], catalog)
    )

    assert report.created == 1
    assert report.relocated == 1
    assert asyncio.run(catalog.get(PUBLISHER, "d2")).key == "502"
    newcomer = [item for item in catalog.all(PUBLISHER) if item.name == "Otra"]
    assert [item.key for item in newcomer] == ["2"]


def test_update_sends_only_changed_cells_and_ignores_readonly_columns() -> None:
    catalog = _catalog()
    rows = [
        _row("d1", key="1", name="Uno", precio="12", updatedAt="2024-01-01"),
        _row("d2", key="2", name="Dos", precio="15", createdAt="2020-01-01"),
    ]

    report = asyncio.run(_reconciler().apply(PUBLISHER, rows, catalog))

    assert report.skipped == 1
    assert report.updated == 1
    updated = asyncio.run(catalog.get(PUBLISHER, "d2"))
    assert updated.attributes["precio"] == "15"
    assert "createdAt" not in updated.attributes


def test_update_of_unknown_reference_fails_without_creating() -> None:
    catalog = _catalog()

    report = asyncio.run(
        _reconciler().apply(PUBLISHER, [_row("gone", key="9", name="Nada")], catalog)
    )

    assert report.failed == 1
    assert report.failures[0].error_type == "NotFoundError"
    assert len(catalog.all(PUBLISHER)) == 2


def test_new_row_without_name_fails() -> None:
    catalog = _catalog()

    report = asyncio.run(_reconciler().apply(PUBLISHER, [_row(None, key="9")], catalog))

    assert report.failed == 1
    assert report.failures[0].error_type == "FatalError"


def test_delete_without_reference_is_skipped() -> None:
    catalog = _catalog()

    report = asyncio.run(
        _reconciler().apply(PUBLISHER, [_row(None, RowAction.DELETE, name="Uno")], catalog)
    )

    assert report.skipped == 1
    assert catalog.writes() == []


def test_dry_run_only_reads() -> None:
    catalog = _catalog()
    rows = [
        _row("d1", RowAction.DELETE),
        _row("d2", RowAction.UNPUBLISH),
        _row(None, key="2", name="Otra"),
        _row("d2", key="2", name="Dos cambiado"),
    ]

    report = asyncio.run(_reconciler(dry_run=True).apply(PUBLISHER, rows, catalog))

    assert report.dry_run
    assert report.deleted == 1
    assert report.unpublished == 1
    assert report.created == 1
    assert report.updated == 1
    assert catalog.writes() == []
    assert catalog.published == {}


def test_failure_in_one_row_does_not_stop_the_batch() -> None:
    catalog = _catalog()
    rows = [
        _row("missing", RowAction.DELETE),
        _row("d2", RowAction.DELETE),
    ]

    report = asyncio.run(_reconciler().apply(PUBLISHER, rows, catalog))

    assert report.failed == 1
    assert report.deleted == 1


@dataclass
class _MemoryStore:
    written: dict[EntityKind, list[TabularRow]] = field(default_factory=dict)

    def read_snapshot(self, kind: EntityKind) -> list[TabularRow]:
        return self.written.get(kind, [])

    def write_snapshot(self, kind: EntityKind, rows: list[TabularRow]) -> None:
        self.written[kind] = list(rows)


def test_export_snapshot_writes_one_row_per_record() -> None:
    catalog = _catalog()
    store = _MemoryStore()

    count = asyncio.run(_reconciler().export_snapshot(PUBLISHER, catalog, store))

    assert count == 2
    rows = store.written[PUBLISHER]
    assert [(row.reference, row.fields["key"], row.fields["name"]) for row in rows] == [
        ("d1", "1", "Uno"),
        ("d2", "2", "Dos"),
    ]
    assert rows[0].fields["precio"] == "12.0"


def test_row_marked_for_deletion_is_not_updated_when_the_delete_fails() -> None:
    catalog = _catalog()
    catalog.failures["delete"] = [RuntimeError("cms unavailable")]
    rows = [
        _row("d1", RowAction.DELETE),
        _row("d1", key="1", name="Uno renombrado"),
    ]

    report = asyncio.run(_reconciler().apply(PUBLISHER, rows, catalog))

    assert report.failed == 1
    assert report.updated == 0
    assert report.skipped == 1
    assert [call for call in catalog.calls if call[0] == "update"] == []
    assert asyncio.run(catalog.get(PUBLISHER, "d1")).name == "Uno"


def test_plan_marks_deleted_references_before_anything_runs() -> None:
    plan = plan_rows(
        [
            _row("d1", key="1", name="Uno"),
            _row("d1", RowAction.DELETE),
            _row(None, RowAction.DELETE, name="Sin referencia"),
        ]
    )

    assert plan.marked_for_deletion == {"d1"}
    assert [row.reference for row in plan.updates] == ["d1"]
    assert len(plan.deletes) == 2
