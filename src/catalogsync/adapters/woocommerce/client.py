"""WooCommerce REST adapter.

Taxonomy kinds live as terms of global product attributes, keyed by slug.
Products are keyed by SKU and carry their parent term ids in ``meta_data``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Self, cast

import httpx

from catalogsync.adapters.http_resilience import (
    ResilienceConfig,
    ResilientClient,
    raise_for_sync_status,
)
from catalogsync.config.woocommerce import TAXONOMY_KINDS
from catalogsync.domain.errors import UniqueKeyConflictError
from catalogsync.domain.model import EntityKind, Page

from .schema import WooErrorResponse, WooProduct, WooTerm
from .translator import (
    TERM_ATTRIBUTES,
    changes_term_payload,
    desired_term_payload,
    product_payload,
    product_to_resource,
    references_from,
    term_to_resource,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from types import TracebackType

    from catalogsync.config.woocommerce import WooCommerceConfig
    from catalogsync.domain.model import (
        DesiredState,
        ExternalResource,
        PageCursor,
        ResourceChanges,
    )
    from catalogsync.domain.ports import ExternalPlatform

log = getLogger(__name__)

SEARCH_PAGE_SIZE = 25
_CONFLICT_CODES = frozenset({"term_exists", "product_invalid_sku"})
_SKU_MARKERS = ("sku", "SKU")


def detect_duplicate_key(
    response: httpx.Response,
    payload: object,
) -> UniqueKeyConflictError | None:
    """Recognise duplicate slugs and SKUs, which WooCommerce reports as a 400."""

    if response.status_code != 400 or not isinstance(payload, dict) or "code" not in payload:
        return None
    error = WooErrorResponse.model_validate(payload)
    sku_clash = error.code == "woocommerce_rest_product_not_created" and any(
        marker in error.message for marker in _SKU_MARKERS
    )
    if error.code not in _CONFLICT_CODES and not sku_clash:
        return None
    resource_id = error.data.resource_id if error.data else None
    return UniqueKeyConflictError(
        f"WooCommerce rejected a duplicate key ({error.code}): {error.message}",
        status_code=response.status_code,
        conflicting_id=str(resource_id) if resource_id is not None else None,
    )


@dataclass(slots=True)
class WooCommercePlatform:
    """One WooCommerce store seen as an external platform.

    Use as an async context manager. Without an explicit ``client_factory`` the
    client authenticates with the store's consumer key and secret.
    """

    config: WooCommerceConfig
    client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None
    _client: ResilientClient | None = field(default=None, init=False)
    _term_names: dict[tuple[EntityKind, str], str] = field(default_factory=dict, init=False)

    @property
    def platform_id(self) -> str:
        return self.config.platform_id

    async def __aenter__(self) -> Self:
        if self.client_factory is not None:
            self._client = self.client_factory(self.config.resilience)
        else:
            self._client = ResilientClient(
                self.config.resilience,
                auth=httpx.BasicAuth(self.config.consumer_key, self.config.consumer_secret),
            )
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
            raise RuntimeError("WooCommercePlatform must be used as an async context manager")
        return self._client

    @property
    def reference_kinds(self) -> tuple[EntityKind, ...]:
        return tuple(kind for kind in TAXONOMY_KINDS if kind in self.config.attribute_ids)

    def stored_attributes(self, kind: EntityKind) -> frozenset[str] | None:
        if kind is EntityKind.PRODUCT:
            return frozenset(f"{parent}_ids" for parent in self.reference_kinds)
        return TERM_ATTRIBUTES

    async def list_page(self, kind: EntityKind, cursor: PageCursor) -> Page[ExternalResource]:
        params: dict[str, str | int] = {"page": cursor.page, "per_page": cursor.page_size}
        if kind is EntityKind.PRODUCT:
            params["status"] = "any"
        response = await self._send("GET", self._endpoint(kind), params=params)
        return Page(
            items=tuple(self._parse_many(kind, response)),
            cursor=cursor,
            total_pages=_header_int(response, "X-WP-TotalPages"),
            total_items=_header_int(response, "X-WP-Total"),
        )

    async def get(self, kind: EntityKind, external_id: str) -> ExternalResource:
        response = await self._send("GET", f"{self._endpoint(kind)}/{external_id}")
        return self._parse_one(kind, response)

    async def find_by_key(self, kind: EntityKind, key: str) -> ExternalResource | None:
        field_name = "sku" if kind is EntityKind.PRODUCT else "slug"
        params: dict[str, str | int] = {field_name: key}
        if kind is EntityKind.PRODUCT:
            params["status"] = "any"
        response = await self._send("GET", self._endpoint(kind), params=params)
        matches = self._parse_many(kind, response)
        return matches[0] if matches else None

    async def search_by_name(self, kind: EntityKind, name: str) -> Sequence[ExternalResource]:
        params: dict[str, str | int] = {"search": name.strip(), "per_page": SEARCH_PAGE_SIZE}
        if kind is EntityKind.PRODUCT:
            params["status"] = "any"
        response = await self._send("GET", self._endpoint(kind), params=params)
        return self._parse_many(kind, response)

    async def create(self, kind: EntityKind, desired: DesiredState) -> ExternalResource:
        if kind is EntityKind.PRODUCT:
            references = references_from(desired.attributes)
            payload = product_payload(
                key=desired.key,
                name=desired.name,
                owner_id=desired.owner_id,
                references=references,
                term_names=await self._term_names_for(references),
                attribute_ids=self.config.attribute_ids,
            )
            payload.setdefault("type", "simple")
        else:
            payload = desired_term_payload(desired)
        response = await self._send("POST", self._endpoint(kind), json=payload)
        return self._parse_one(kind, response)

    async def update(
        self,
        kind: EntityKind,
        external_id: str,
        changes: ResourceChanges,
    ) -> ExternalResource:
        if kind is EntityKind.PRODUCT:
            references = references_from(changes.attributes)
            if references:
                # Attribute lists are replaced wholesale, so unchanged kinds are resent.
                current = await self.get(kind, external_id)
                references = {**references_from(current.attributes), **references}
            payload = product_payload(
                key=changes.key,
                name=changes.name,
                owner_id=None,
                references=references,
                term_names=await self._term_names_for(references),
                attribute_ids=self.config.attribute_ids,
            )
        else:
            payload = changes_term_payload(changes)
        response = await self._send("PUT", f"{self._endpoint(kind)}/{external_id}", json=payload)
        return self._parse_one(kind, response)

    async def delete(self, kind: EntityKind, external_id: str) -> None:
        await self._send(
            "DELETE", f"{self._endpoint(kind)}/{external_id}", params={"force": "true"}
        )
        self._term_names.pop((kind, external_id), None)

    # helpers

    def _endpoint(self, kind: EntityKind) -> str:
        if kind is EntityKind.PRODUCT:
            return "/products"
        return f"/products/attributes/{self.config.attribute_id(kind)}/terms"

    def _parse_many(self, kind: EntityKind, response: httpx.Response) -> list[ExternalResource]:
        body = response.json()
        if not isinstance(body, list):
            raise TypeError(f"Expected a JSON list from {response.request.url.path}")
        return [self._to_resource(kind, item) for item in cast(list[object], body)]

    def _parse_one(self, kind: EntityKind, response: httpx.Response) -> ExternalResource:
        return self._to_resource(kind, response.json())

    def _to_resource(self, kind: EntityKind, item: object) -> ExternalResource:
        if kind is EntityKind.PRODUCT:
            return product_to_resource(WooProduct.model_validate(item), self.reference_kinds)
        term = WooTerm.model_validate(item)
        self._term_names[(kind, str(term.id))] = term.name
        return term_to_resource(term)

    async def _term_names_for(
        self,
        references: Mapping[EntityKind, list[str]],
    ) -> dict[EntityKind, list[str]]:
        names: dict[EntityKind, list[str]] = {}
        for kind, term_ids in references.items():
            if kind not in self.config.attribute_ids:
                continue
            resolved: list[str] = []
            for term_id in term_ids:
                cached = self._term_names.get((kind, term_id))
                if cached is None:
                    cached = (await self.get(kind, term_id)).name
                resolved.append(cached)
            names[kind] = resolved
        return names

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
        raise_for_sync_status(response, detect_conflict=detect_duplicate_key)
        return response


def _header_int(response: httpx.Response, name: str) -> int | None:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        log.debug("Ignoring non-numeric %s header: %r", name, raw)
        return None


if TYPE_CHECKING:
    _platform_check: ExternalPlatform = WooCommercePlatform(cast("WooCommerceConfig", None))
