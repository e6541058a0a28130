"""Spreadsheet-style rows exchanged with snapshot stores."""

from __future__ import annotations

from dataclasses import dataclass, field

from .enums import RowAction


@dataclass(slots=True, kw_only=True)
class TabularRow:
    """One snapshot row.

    ``reference`` is the source of truth's record handle; rows without one
    describe records that do not exist yet.
    """

    fields: dict[str, str] = field(default_factory=dict)
    action: RowAction = RowAction.RECONCILE
    reference: str | None = None
    line: int | None = None

    def get(self, name: str) -> str | None:
        value = self.fields.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def describe(self) -> str:
        where = f"line {self.line}" if self.line is not None else "row"
        return f"{where} ({self.reference or 'new'})"
