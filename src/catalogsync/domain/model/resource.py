"""Platform-neutral views of records held by external systems."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


def _empty() -> Mapping[str, object]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True, kw_only=True)
class ExternalResource:
    """One record on an external platform.

    ``owner_id`` is the internal id the platform stored for the record, when the
    platform can store one. A resource owned by another internal id belongs to a
    different logical entity even if its key or name matches.
    """

    external_id: str
    key: str | None
    name: str
    attributes: Mapping[str, object] = field(default_factory=_empty)
    owner_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class DesiredState:
    """What a resource should look like after an upsert.

    A ``None`` name leaves the current name alone on update.
    """

    key: str | None
    name: str | None
    attributes: Mapping[str, object] = field(default_factory=_empty)
    owner_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ResourceChanges:
    """Partial update; ``None`` fields are left untouched."""

    key: str | None = None
    name: str | None = None
    attributes: Mapping[str, object] = field(default_factory=_empty)

    @property
    def is_empty(self) -> bool:
        return self.key is None and self.name is None and not self.attributes

    def describe(self) -> str:
        parts: list[str] = []
        if self.key is not None:
            parts.append(f"key={self.key}")
        if self.name is not None:
            parts.append(f"name={self.name!r}")
        parts.extend(sorted(self.attributes))
        return ", ".join(parts)

    def applied_to(self, resource: ExternalResource) -> ExternalResource:
        return ExternalResource(
            external_id=resource.external_id,
            key=self.key if self.key is not None else resource.key,
            name=self.name if self.name is not None else resource.name,
            attributes={**resource.attributes, **self.attributes},
            owner_id=resource.owner_id,
        )


def same_key(left: str | None, right: str | None) -> bool:
    """Keys compare case-insensitively; some platforms lower-case them (slugs)."""

    if left is None or right is None:
        return left is right
    return left.strip().casefold() == right.strip().casefold()


def same_value(current: object, wanted: object) -> bool:
    """Equality that tolerates spreadsheet-style values.

    Scalars compare by their text form, so ``12`` equals ``"12"`` and ``None``
    equals ``""``. Lists and mappings must be equal as they are.
    """

    if current == wanted:
        return True
    scalars = (str, int, float, bool, type(None))
    if not isinstance(current, scalars) or not isinstance(wanted, scalars):
        return False
    return _text(current) == _text(wanted)


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().casefold()


def diff_resource(resource: ExternalResource, desired: DesiredState) -> ResourceChanges:
    """Fields of ``desired`` that differ from ``resource``.

    Attributes compare as a subset: extra attributes the platform keeps on the
    resource are not a difference. A ``None`` desired key never clears a key.
    """

    attributes = {
        name: value
        for name, value in desired.attributes.items()
        if not same_value(resource.attributes.get(name), value)
    }
    key_changed = desired.key is not None and not same_key(desired.key, resource.key)
    return ResourceChanges(
        key=desired.key if key_changed else None,
        name=(
            desired.name
            if desired.name is not None and desired.name != resource.name
            else None
        ),
        attributes=attributes,
    )
