"""CSV files as editable snapshots of catalog collections.

Each kind lives in ``<directory>/<kind>.csv``. Two columns are reserved: the
action column (``accion`` or ``action``) and ``documentId``, the record handle
in the source of truth. Every other column is a field.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, cast

from catalogsync.domain.model import RowAction, TabularRow

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from catalogsync.domain.model import EntityKind
    from catalogsync.domain.ports import SnapshotStore

log = getLogger(__name__)

ACTION_COLUMNS: tuple[str, ...] = ("accion", "action")
REFERENCE_COLUMN = "documentId"


class SnapshotFormatError(ValueError):
    """The CSV cannot be read as a snapshot (bad header or unknown action)."""


@dataclass(frozen=True, slots=True)
class CsvSnapshotStore:
    directory: Path
    encoding: str = "utf-8-sig"

    def path_for(self, kind: EntityKind) -> Path:
        return self.directory / f"{kind}.csv"

    def read_snapshot(self, kind: EntityKind) -> Sequence[TabularRow]:
        path = self.path_for(kind)
        rows: list[TabularRow] = []
        with path.open(encoding=self.encoding, newline="") as handle:
            reader = csv.DictReader(handle)
            header = [name.strip() for name in reader.fieldnames or []]
            if not header:
                raise SnapshotFormatError(f"{path} has no header row")
            action_column = next((name for name in ACTION_COLUMNS if name in header), None)

            for line, raw in enumerate(reader, start=2):
                cells = {
                    (name or "").strip(): (value or "")
                    for name, value in raw.items()
                    if name is not None
                }
                if not any(value.strip() for value in cells.values()):
                    continue
                raw_action = cells.pop(action_column, None) if action_column else None
                try:
                    action = RowAction.parse(raw_action)
                except ValueError as exc:
                    raise SnapshotFormatError(f"{path}:{line}: {exc}") from exc
                reference = cells.pop(REFERENCE_COLUMN, "").strip() or None
                rows.append(TabularRow(fields=cells, action=action, reference=reference, line=line))

        log.info("Read %s %s rows from %s", len(rows), kind, path)
        return rows

    def write_snapshot(self, kind: EntityKind, rows: Sequence[TabularRow]) -> None:
        path = self.path_for(kind)
        path.parent.mkdir(parents=True, exist_ok=True)

        columns: list[str] = [ACTION_COLUMNS[0], REFERENCE_COLUMN]
        for row in rows:
            for name in row.fields:
                if name not in columns:
                    columns.append(name)

        with path.open("w", encoding=self.encoding, newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=columns)
            writer.writeheader()
            for row in rows:
                writer.writerow(
                    {
                        **row.fields,
                        ACTION_COLUMNS[0]: str(row.action),
                        REFERENCE_COLUMN: row.reference or "",
                    }
                )
        log.info("Wrote %s %s rows to %s", len(rows), kind, path)


if TYPE_CHECKING:
    _store_check: SnapshotStore = CsvSnapshotStore(cast("Path", None))
