"""Pydantic models describing Strapi REST payloads (v4 and v5 shapes)."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from logging import getLogger
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, model_validator

log = getLogger(__name__)


def _flatten(value: object) -> object:
    """Lift v4 ``{"id", "attributes": {...}}`` and ``{"data": ...}`` wrappers to the v5 shape."""

    if isinstance(value, list):
        return [_flatten(item) for item in cast(list[object], value)]
    if not isinstance(value, Mapping):
        return value
    mapping = cast(Mapping[str, object], value)
    if set(mapping) == {"data"}:
        return _flatten(mapping["data"])
    attributes = mapping.get("attributes")
    if isinstance(attributes, Mapping):
        flattened: dict[str, object] = {
            key: item for key, item in mapping.items() if key != "attributes"
        }
        flattened.update(cast(Mapping[str, object], attributes))
        mapping = flattened
    return {key: _flatten(item) for key, item in mapping.items()}


class StrapiBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StrapiRecord(StrapiBaseModel):
    """One collection-type entry. Content fields stay in ``model_extra``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int | None = None
    document_id: str | None = Field(default=None, alias="documentId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    published_at: datetime | None = Field(default=None, alias="publishedAt")
    external_ids: dict[str, object] | None = Field(default=None, alias="externalIds")

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_shape(cls, value: object) -> object:
        return _flatten(value)

    @property
    def handle(self) -> str:
        """Record handle used in URLs: the v5 documentId, else the numeric id."""

        if self.document_id:
            return self.document_id
        if self.id is not None:
            return str(self.id)
        raise ValueError("Strapi record has neither documentId nor id")

    @property
    def fields(self) -> dict[str, object]:
        return dict(self.model_extra or {})

    def field(self, name: str) -> object:
        return (self.model_extra or {}).get(name)


class StrapiPagination(StrapiBaseModel):
    page: int = 1
    page_size: int = Field(default=25, alias="pageSize")
    page_count: int | None = Field(default=None, alias="pageCount")
    total: int | None = None


class StrapiMeta(StrapiBaseModel):
    pagination: StrapiPagination | None = None


class StrapiListResponse(StrapiBaseModel):
    data: list[StrapiRecord] = Field(default_factory=list)
    meta: StrapiMeta = Field(default_factory=StrapiMeta)


class StrapiSingleResponse(StrapiBaseModel):
    data: StrapiRecord | None = None


class StrapiErrorBody(StrapiBaseModel):
    status: int | None = None
    name: str | None = None
    message: str | None = None
    details: dict[str, object] = Field(default_factory=dict)


class StrapiErrorResponse(StrapiBaseModel):
    error: StrapiErrorBody
