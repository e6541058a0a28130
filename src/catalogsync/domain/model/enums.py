"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class EntityKind(StrEnum):
    """Catalog entity kinds, listed parents first."""

    AUTHOR = "author"
    PUBLISHER = "publisher"
    IMPRINT = "imprint"
    COLLECTION = "collection"
    PRODUCT = "product"


class SyncOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    SKIP = "skip"


class RowAction(StrEnum):
    """Operator intent written in the action column of a snapshot row.

    ``RECONCILE`` is the blank action: create when the row has no reference,
    update when it has one.
    """

    RECONCILE = ""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"
    SKIP = "skip"

    @classmethod
    def parse(cls, raw: str | None) -> RowAction:
        """Map a free-form cell value (including the legacy Spanish labels) to an action."""

        if raw is None:
            return cls.RECONCILE
        value = raw.strip().lower()
        if not value:
            return cls.RECONCILE
        try:
            return _ACTION_ALIASES[value]
        except KeyError:
            raise ValueError(f"Unknown row action: {raw!r}") from None


_ACTION_ALIASES: dict[str, RowAction] = {
    "create": RowAction.CREATE,
    "crear": RowAction.CREATE,
    "update": RowAction.UPDATE,
    "actualizar": RowAction.UPDATE,
    "delete": RowAction.DELETE,
    "eliminar": RowAction.DELETE,
    "borrar": RowAction.DELETE,
    "x": RowAction.DELETE,
    "🗑️": RowAction.DELETE,
    "🗑": RowAction.DELETE,
    "publish": RowAction.PUBLISH,
    "publicar": RowAction.PUBLISH,
    "unpublish": RowAction.UNPUBLISH,
    "despublicar": RowAction.UNPUBLISH,
    "skip": RowAction.SKIP,
    "omitir": RowAction.SKIP,
}
