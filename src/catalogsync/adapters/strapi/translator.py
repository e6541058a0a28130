"""Translate Strapi records to catalog entities and external resources."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from logging import getLogger
from typing import TYPE_CHECKING, cast

from catalogsync.domain.model import (
    DesiredState,
    Entity,
    EntityReference,
    ExternalRef,
    ExternalResource,
    ResourceChanges,
)

if TYPE_CHECKING:
    from catalogsync.config.strapi import StrapiCollection
    from catalogsync.domain.model import EntityKind

    from .schema import StrapiRecord

log = getLogger(__name__)

_SCALARS = (str, int, float, bool)
RAW_EXTERNAL_IDS = "externalIds"


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_external_refs(raw: Mapping[str, object] | None) -> dict[str, ExternalRef]:
    """Read the ``externalIds`` JSON field.

    Entries are either ``{"id", "key", "syncedAt"}`` objects or bare ids as written
    by older tooling. Entries without an id are not refs and are left alone.
    """

    refs: dict[str, ExternalRef] = {}
    for platform_id, value in (raw or {}).items():
        if isinstance(value, _SCALARS) and not isinstance(value, bool):
            external_id = _text(value)
            if external_id:
                refs[platform_id] = ExternalRef(external_id=external_id)
            continue
        if not isinstance(value, Mapping):
            continue
        entry = cast(Mapping[str, object], value)
        external_id = _text(entry.get("id"))
        if external_id is None:
            log.debug("Ignoring externalIds entry %s without id", platform_id)
            continue
        synced_at = None
        raw_synced = entry.get("syncedAt")
        if isinstance(raw_synced, str):
            try:
                synced_at = datetime.fromisoformat(raw_synced)
            except ValueError:
                log.debug("Ignoring unparsable syncedAt %r on %s", raw_synced, platform_id)
        refs[platform_id] = ExternalRef(
            external_id=external_id,
            external_key=_text(entry.get("key")),
            last_synced_at=synced_at,
        )
    return refs


def dump_external_refs(
    refs: Mapping[str, ExternalRef],
    *,
    existing: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Merge ``refs`` into the stored ``externalIds`` value, keeping foreign entries."""

    merged: dict[str, object] = dict(existing or {})
    for platform_id, ref in refs.items():
        entry: dict[str, object] = {"id": ref.external_id}
        if ref.external_key is not None:
            entry["key"] = ref.external_key
        if ref.last_synced_at is not None:
            entry["syncedAt"] = ref.last_synced_at.isoformat()
        merged[platform_id] = entry
    return merged


def _content_fields(record: StrapiRecord, collection: StrapiCollection) -> dict[str, object]:
    skipped = {collection.key_field, collection.name_field, *collection.relations}
    return {
        name: value
        for name, value in record.fields.items()
        if name not in skipped and (value is None or isinstance(value, _SCALARS))
    }


def _references(
    record: StrapiRecord,
    collection: StrapiCollection,
    collections: Mapping[EntityKind, StrapiCollection],
) -> tuple[EntityReference, ...]:
    references: list[EntityReference] = []
    for field_name, parent_kind in collection.relations.items():
        parent_collection = collections.get(parent_kind)
        if parent_collection is None:
            continue
        value = record.field(field_name)
        linked = cast(list[object], value) if isinstance(value, list) else [value]
        for item in linked:
            if not isinstance(item, Mapping):
                continue
            parent_key = _text(cast(Mapping[str, object], item).get(parent_collection.key_field))
            if parent_key is None:
                log.debug(
                    "%s %s links a %s without %s",
                    collection.kind,
                    record.handle,
                    parent_kind,
                    parent_collection.key_field,
                )
                continue
            references.append(EntityReference(kind=parent_kind, internal_id=parent_key))
    return tuple(references)


def record_to_entity(
    record: StrapiRecord,
    collection: StrapiCollection,
    collections: Mapping[EntityKind, StrapiCollection],
) -> Entity:
    attributes = _content_fields(record, collection)
    if record.external_ids:
        attributes[RAW_EXTERNAL_IDS] = dict(record.external_ids)
    return Entity(
        kind=collection.kind,
        internal_id=_text(record.field(collection.key_field)) or "",
        natural_key=_text(record.field(collection.name_field)) or "",
        attributes=attributes,
        external_refs=parse_external_refs(record.external_ids),
        references=_references(record, collection, collections),
        updated_at=record.updated_at,
        record_id=record.handle,
        published=record.published_at is not None,
    )


def record_to_resource(record: StrapiRecord, collection: StrapiCollection) -> ExternalResource:
    return ExternalResource(
        external_id=record.handle,
        key=_text(record.field(collection.key_field)),
        name=_text(record.field(collection.name_field)) or "",
        attributes=_content_fields(record, collection),
    )


def desired_to_payload(desired: DesiredState, collection: StrapiCollection) -> dict[str, object]:
    data: dict[str, object] = dict(desired.attributes)
    if desired.key is not None:
        data[collection.key_field] = collection.key_value(desired.key)
    if desired.name is not None:
        data[collection.name_field] = desired.name
    return {"data": data}


def changes_to_payload(changes: ResourceChanges, collection: StrapiCollection) -> dict[str, object]:
    data: dict[str, object] = dict(changes.attributes)
    if changes.key is not None:
        data[collection.key_field] = collection.key_value(changes.key)
    if changes.name is not None:
        data[collection.name_field] = changes.name
    return {"data": data}
