"""Pydantic models describing WooCommerce REST v3 payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class WooBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WooTerm(WooBaseModel):
    """A term of a global product attribute (author, publisher, ...)."""

    id: int
    name: str
    slug: str | None = None
    description: str = ""
    count: int = 0


class WooMetaData(WooBaseModel):
    id: int | None = None
    key: str
    value: object = None


class WooProductAttribute(WooBaseModel):
    id: int = 0
    name: str | None = None
    visible: bool = True
    options: list[str] = Field(default_factory=list)


class WooProduct(WooBaseModel):
    id: int
    name: str
    sku: str | None = None
    status: str | None = None
    meta_data: list[WooMetaData] = Field(default_factory=list)
    attributes: list[WooProductAttribute] = Field(default_factory=list)

    def meta(self, key: str) -> object:
        for entry in self.meta_data:
            if entry.key == key:
                return entry.value
        return None


class WooErrorData(WooBaseModel):
    status: int | None = None
    resource_id: int | None = None


class WooErrorResponse(WooBaseModel):
    code: str
    message: str = ""
    data: WooErrorData | None = None
