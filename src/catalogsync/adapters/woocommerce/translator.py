"""Translate WooCommerce terms and products to platform-neutral resources.

Products keep the ids of their parent terms, and the internal id they were
created for, in ``meta_data`` so that later runs can compare and claim them.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, cast

from catalogsync.domain.model import EntityKind, ExternalResource

if TYPE_CHECKING:
    from collections.abc import Mapping

    from catalogsync.domain.model import DesiredState, ResourceChanges

    from .schema import WooProduct, WooTerm

OWNER_META_KEY = "_catalogsync_owner"
TERM_ATTRIBUTES: frozenset[str] = frozenset({"description"})


def reference_meta_key(kind: EntityKind) -> str:
    return f"_catalogsync_{kind}_ids"


def _ids(value: object) -> list[str]:
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else []
        except json.JSONDecodeError:
            value = [part for part in value.split(",") if part.strip()]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in cast(list[object], value)]


def term_to_resource(term: WooTerm) -> ExternalResource:
    return ExternalResource(
        external_id=str(term.id),
        key=term.slug or None,
        name=term.name,
        attributes={"description": term.description},
    )


def product_to_resource(
    product: WooProduct,
    reference_kinds: tuple[EntityKind, ...],
) -> ExternalResource:
    attributes: dict[str, object] = {}
    for kind in reference_kinds:
        raw = product.meta(reference_meta_key(kind))
        if raw is not None:
            attributes[f"{kind}_ids"] = _ids(raw)
    owner = product.meta(OWNER_META_KEY)
    return ExternalResource(
        external_id=str(product.id),
        key=product.sku or None,
        name=product.name,
        attributes=attributes,
        owner_id=str(owner) if owner not in (None, "") else None,
    )


def term_payload(
    *,
    key: str | None,
    name: str | None,
    attributes: Mapping[str, object],
) -> dict[str, object]:
    payload: dict[str, object] = {}
    if name is not None:
        payload["name"] = name
    if key is not None:
        payload["slug"] = key
    if "description" in attributes:
        payload["description"] = str(attributes["description"] or "")
    return payload


def desired_term_payload(desired: DesiredState) -> dict[str, object]:
    return term_payload(key=desired.key, name=desired.name, attributes=desired.attributes)


def changes_term_payload(changes: ResourceChanges) -> dict[str, object]:
    return term_payload(key=changes.key, name=changes.name, attributes=changes.attributes)


def product_payload(
    *,
    key: str | None,
    name: str | None,
    owner_id: str | None,
    references: Mapping[EntityKind, list[str]],
    term_names: Mapping[EntityKind, list[str]],
    attribute_ids: Mapping[EntityKind, int],
) -> dict[str, object]:
    payload: dict[str, object] = {}
    if name is not None:
        payload["name"] = name
    if key is not None:
        payload["sku"] = key

    meta: list[dict[str, object]] = [
        {"key": reference_meta_key(kind), "value": json.dumps(ids)}
        for kind, ids in references.items()
    ]
    if owner_id is not None:
        meta.append({"key": OWNER_META_KEY, "value": owner_id})
    if meta:
        payload["meta_data"] = meta

    if term_names:
        payload["attributes"] = [
            {"id": attribute_ids[kind], "visible": True, "options": names}
            for kind, names in term_names.items()
            if kind in attribute_ids
        ]
    return payload


def references_from(attributes: Mapping[str, object]) -> dict[EntityKind, list[str]]:
    references: dict[EntityKind, list[str]] = {}
    for kind in EntityKind:
        value = attributes.get(f"{kind}_ids")
        if value is not None:
            references[kind] = _ids(value)
    return references
