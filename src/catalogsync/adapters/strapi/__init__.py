"""Public interface for the Strapi adapter."""

from __future__ import annotations

from .client import STRAPI_PLATFORM_ID, StrapiCatalog, detect_unique_violation
from .schema import StrapiListResponse, StrapiRecord, StrapiSingleResponse
from .translator import (
    dump_external_refs,
    parse_external_refs,
    record_to_entity,
    record_to_resource,
)

__all__ = [
    "STRAPI_PLATFORM_ID",
    "StrapiCatalog",
    "StrapiListResponse",
    "StrapiRecord",
    "StrapiSingleResponse",
    "detect_unique_violation",
    "dump_external_refs",
    "parse_external_refs",
    "record_to_entity",
    "record_to_resource",
]
