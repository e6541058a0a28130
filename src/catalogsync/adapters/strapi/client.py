"""Strapi REST adapter: the catalog's source of truth."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Self, cast

from catalogsync.adapters.http_resilience import (
    ResilienceConfig,
    ResilientClient,
    raise_for_sync_status,
)
from catalogsync.domain.errors import FatalError, NotFoundError, UniqueKeyConflictError
from catalogsync.domain.model import Page

from .schema import StrapiErrorResponse, StrapiListResponse, StrapiRecord, StrapiSingleResponse
from .translator import (
    RAW_EXTERNAL_IDS,
    changes_to_payload,
    desired_to_payload,
    dump_external_refs,
    record_to_entity,
    record_to_resource,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from types import TracebackType

    import httpx

    from catalogsync.config.strapi import StrapiCollection, StrapiConfig
    from catalogsync.domain.model import (
        DesiredState,
        Entity,
        EntityKind,
        ExternalResource,
        PageCursor,
        ResourceChanges,
    )
    from catalogsync.domain.ports import EditableCatalog

log = getLogger(__name__)

STRAPI_PLATFORM_ID = "strapi"
SEARCH_PAGE_SIZE = 25
_UNIQUE_MARKER = "must be unique"


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def detect_unique_violation(
    response: httpx.Response,
    payload: object,
) -> UniqueKeyConflictError | None:
    """Strapi reports unique-field violations as a 400 ``ValidationError``."""

    if response.status_code != 400 or not isinstance(payload, dict) or "error" not in payload:
        return None
    error = StrapiErrorResponse.model_validate(payload).error
    messages = [error.message or ""]
    details_errors = error.details.get("errors")
    if isinstance(details_errors, list):
        for item in cast(list[object], details_errors):
            if isinstance(item, dict):
                messages.append(str(cast(dict[str, object], item).get("message", "")))
    if not any(_UNIQUE_MARKER in message for message in messages):
        return None
    return UniqueKeyConflictError(
        f"Strapi rejected a duplicate unique value: {error.message}",
        status_code=response.status_code,
    )


@dataclass(slots=True)
class StrapiCatalog:
    """Reads and writes catalog collections through the Strapi REST API.

    Use as an async context manager; one HTTP client serves the whole session.
    Drafts are included in every read (``publicationState=preview``).
    """

    config: StrapiConfig
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    platform_id: str = STRAPI_PLATFORM_ID
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))
    _client: ResilientClient | None = field(default=None, init=False)

    async def __aenter__(self) -> Self:
        self._client = self.client_factory(self.config.resilience)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> ResilientClient:
        if self._client is None:
            raise RuntimeError("StrapiCatalog must be used as an async context manager")
        return self._client

    def stored_attributes(self, kind: EntityKind) -> frozenset[str] | None:  # noqa: ARG002
        return None

    # CatalogSource

    async def fetch_page(self, kind: EntityKind, cursor: PageCursor) -> Page[Entity]:
        collection = self.config.collection(kind)
        listing = await self._list(collection, cursor)
        return self._page(
            tuple(
                record_to_entity(record, collection, self.config.collections)
                for record in listing.data
            ),
            cursor,
            listing,
        )

    async def read_entity(self, kind: EntityKind, internal_id: str) -> Entity | None:
        collection = self.config.collection(kind)
        records = await self._filter(collection, collection.key_field, "$eq", internal_id, 2)
        if not records:
            return None
        if len(records) > 1:
            log.warning("%s %s=%s is not unique in Strapi", kind, collection.key_field, internal_id)
        return record_to_entity(records[0], collection, self.config.collections)

    async def write_external_refs(self, entity: Entity) -> None:
        if entity.record_id is None:
            raise ValueError(f"{entity!r} has no Strapi record to write refs to")
        collection = self.config.collection(entity.kind)
        existing = entity.attributes.get(RAW_EXTERNAL_IDS)
        merged = dump_external_refs(
            entity.external_refs,
            existing=cast("Mapping[str, object]", existing) if isinstance(existing, dict) else None,
        )
        await self._send(
            "PUT",
            f"/api/{collection.path}/{entity.record_id}",
            json={"data": {RAW_EXTERNAL_IDS: merged}},
        )
        entity.attributes[RAW_EXTERNAL_IDS] = merged
        log.debug("Stored external refs of %r", entity)

    # ExternalPlatform / EditableCatalog

    async def list_page(self, kind: EntityKind, cursor: PageCursor) -> Page[ExternalResource]:
        collection = self.config.collection(kind)
        listing = await self._list(collection, cursor)
        return self._page(
            tuple(record_to_resource(record, collection) for record in listing.data),
            cursor,
            listing,
        )

    async def get(self, kind: EntityKind, external_id: str) -> ExternalResource:
        collection = self.config.collection(kind)
        response = await self._send(
            "GET",
            f"/api/{collection.path}/{external_id}",
            params={"publicationState": "preview"},
        )
        record = StrapiSingleResponse.model_validate(response.json()).data
        if record is None:
            raise NotFoundError(
                f"Strapi {collection.path}/{external_id} not found", status_code=404
            )
        return record_to_resource(record, collection)

    async def find_by_key(self, kind: EntityKind, key: str) -> ExternalResource | None:
        collection = self.config.collection(kind)
        records = await self._filter(collection, collection.key_field, "$eq", key, 2)
        if not records:
            return None
        return record_to_resource(records[0], collection)

    async def search_by_name(self, kind: EntityKind, name: str) -> Sequence[ExternalResource]:
        collection = self.config.collection(kind)
        records = await self._filter(
            collection, collection.name_field, "$containsi", name.strip(), SEARCH_PAGE_SIZE
        )
        return [record_to_resource(record, collection) for record in records]

    async def create(self, kind: EntityKind, desired: DesiredState) -> ExternalResource:
        collection = self.config.collection(kind)
        response = await self._send(
            "POST", f"/api/{collection.path}", json=desired_to_payload(desired, collection)
        )
        return self._single(response, collection)

    async def update(
        self,
        kind: EntityKind,
        external_id: str,
        changes: ResourceChanges,
    ) -> ExternalResource:
        collection = self.config.collection(kind)
        response = await self._send(
            "PUT",
            f"/api/{collection.path}/{external_id}",
            json=changes_to_payload(changes, collection),
        )
        return self._single(response, collection)

    async def delete(self, kind: EntityKind, external_id: str) -> None:
        collection = self.config.collection(kind)
        await self._send("DELETE", f"/api/{collection.path}/{external_id}")

    async def set_published(self, kind: EntityKind, external_id: str, *, published: bool) -> None:
        collection = self.config.collection(kind)
        published_at = self.clock().isoformat() if published else None
        await self._send(
            "PUT",
            f"/api/{collection.path}/{external_id}",
            json={"data": {"publishedAt": published_at}},
        )

    # helpers

    async def _list(self, collection: StrapiCollection, cursor: PageCursor) -> StrapiListResponse:
        response = await self._send(
            "GET",
            f"/api/{collection.path}",
            params={
                "pagination[page]": cursor.page,
                "pagination[pageSize]": cursor.page_size,
                "pagination[withCount]": "true",
                "sort[0]": "updatedAt:desc",
                "populate": "*",
                "publicationState": "preview",
            },
        )
        return StrapiListResponse.model_validate(response.json())

    async def _filter(
        self,
        collection: StrapiCollection,
        field_name: str,
        operator: str,
        value: str,
        limit: int,
    ) -> list[StrapiRecord]:
        response = await self._send(
            "GET",
            f"/api/{collection.path}",
            params={
                f"filters[{field_name}][{operator}]": value,
                "pagination[pageSize]": limit,
                "populate": "*",
                "publicationState": "preview",
            },
        )
        return StrapiListResponse.model_validate(response.json()).data

    @staticmethod
    def _page[T](
        items: tuple[T, ...],
        cursor: PageCursor,
        listing: StrapiListResponse,
    ) -> Page[T]:
        pagination = listing.meta.pagination
        return Page(
            items=items,
            cursor=cursor,
            total_pages=pagination.page_count if pagination else None,
            total_items=pagination.total if pagination else None,
        )

    @staticmethod
    def _single(response: httpx.Response, collection: StrapiCollection) -> ExternalResource:
        record = StrapiSingleResponse.model_validate(response.json()).data
        if record is None:
            raise FatalError(f"Strapi returned no record for {collection.path}")
        return record_to_resource(record, collection)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str | int] | None = None,
        json: object = None,
    ) -> httpx.Response:
        if json is None:
            response = await self.client.request(method, url, params=params)
        else:
            response = await self.client.request(method, url, params=params, json=json)
        raise_for_sync_status(response, detect_conflict=detect_unique_violation)
        return response


if TYPE_CHECKING:
    _catalog_check: EditableCatalog = StrapiCatalog(cast("StrapiConfig", None))
