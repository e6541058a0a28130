from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable  # noqa: TC003

import httpx
import pytest

from catalogsync.adapters.http_resilience import ResilienceConfig, ResilientClient
from catalogsync.adapters.woocommerce import (
    OWNER_META_KEY,
    WooCommercePlatform,
    detect_duplicate_key,
    reference_meta_key,
)
from catalogsync.config import WooCommerceConfig
from catalogsync.domain.errors import FatalError, UniqueKeyConflictError
from catalogsync.domain.model import DesiredState, EntityKind, PageCursor, ResourceChanges

BASE_URL = "https://shop.test/wp-json/wc/v3"
AUTHOR = EntityKind.AUTHOR
PUBLISHER = EntityKind.PUBLISHER
PRODUCT = EntityKind.PRODUCT

type Handler = Callable[[httpx.Request], httpx.Response]


def _make_client_factory(handler: Handler) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(  # noqa: SLF001  # type: ignore[reportPrivateUsage]
            base_url=BASE_URL,
            transport=httpx.MockTransport(async_handler),
        )
        return client

    return factory


def _platform(handler: Handler) -> WooCommercePlatform:
    config = WooCommerceConfig(
        platform_id="woo_test",
        base_url="https://shop.test",
        consumer_key="ck",
        consumer_secret="cs",
        resilience=ResilienceConfig(name="woo_test", base_url=BASE_URL),
        attribute_ids={AUTHOR: 3, PUBLISHER: 4},
    )
    return WooCommercePlatform(config=config, client_factory=_make_client_factory(handler))


def _run[T](
    platform: WooCommercePlatform,
    call: Callable[[WooCommercePlatform], Awaitable[T]],
) -> T:
    async def scenario() -> T:
        async with platform:
            return await call(platform)

    return asyncio.run(scenario())


def _term(term_id: int, name: str, slug: str) -> dict[str, object]:
    return {"id": term_id, "name": name, "slug": slug, "description": "", "count": 0}


def test_list_page_reads_terms_and_paging_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[_term(11, "Ana Pérez", "7"), _term(12, "Bea", "8")],
            headers={"X-WP-TotalPages": "4", "X-WP-Total": "7"},
        )

    page = _run(
        _platform(handler),
        lambda platform: platform.list_page(AUTHOR, PageCursor(page=2, page_size=2)),
    )

    assert [(item.external_id, item.key, item.name) for item in page.items] == [
        ("11", "7", "Ana Pérez"),
        ("12", "8", "Bea"),
    ]
    assert page.total_pages == 4
    assert page.total_items == 7
    assert seen[0].url.path == "/wp-json/wc/v3/products/attributes/3/terms"
    assert seen[0].url.params["page"] == "2"
    assert seen[0].url.params["per_page"] == "2"


def test_find_by_key_queries_slug_for_terms_and_sku_for_products() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    async def lookups(platform: WooCommercePlatform) -> None:
        await platform.find_by_key(PUBLISHER, "12")
        await platform.find_by_key(PRODUCT, "978-1")

    _run(_platform(handler), lookups)

    assert seen[0].url.path.endswith("/products/attributes/4/terms")
    assert seen[0].url.params["slug"] == "12"
    assert seen[1].url.path.endswith("/products")
    assert seen[1].url.params["sku"] == "978-1"
    assert seen[1].url.params["status"] == "any"


def test_duplicate_slug_reports_the_holder() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(
            400,
            json={
                "code": "term_exists",
                "message": "A term with the name provided already exists.",
                "data": {"status": 400, "resource_id": 11},
            },
        )

    with pytest.raises(UniqueKeyConflictError) as exc:
        _run(
            _platform(handler),
            lambda platform: platform.create(AUTHOR, DesiredState(key="7", name="Ana")),
        )

    assert exc.value.conflicting_id == "11"


def test_duplicate_sku_is_detected_from_message() -> None:
    response = httpx.Response(
        400,
        request=httpx.Request("POST", f"{BASE_URL}/products"),
        json={
            "code": "woocommerce_rest_product_not_created",
            "message": "Invalid or duplicated SKU.",
            "data": {"status": 400},
        },
    )

    conflict = detect_duplicate_key(response, response.json())

    assert conflict is not None
    assert conflict.conflicting_id is None


def test_other_bad_requests_stay_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(
            400,
            json={"code": "rest_invalid_param", "message": "Invalid parameter(s): name"},
        )

    with pytest.raises(FatalError):
        _run(
            _platform(handler),
            lambda platform: platform.create(AUTHOR, DesiredState(key="7", name="")),
        )


def test_create_product_stores_owner_and_term_names() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=_term(11, "Ana Pérez", "7"))
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(
            201,
            json={
                "id": 501,
                "name": body["name"],
                "sku": body["sku"],
                "meta_data": [{"id": 1, **entry} for entry in body["meta_data"]],
            },
        )

    desired = DesiredState(
        key="9788412345678",
        name="El libro",
        attributes={"author_ids": ["11"]},
        owner_id="9788412345678",
    )

    created = _run(_platform(handler), lambda platform: platform.create(PRODUCT, desired))

    body = bodies[0]
    assert body["type"] == "simple"
    assert body["sku"] == "9788412345678"
    assert body["attributes"] == [{"id": 3, "visible": True, "options": ["Ana Pérez"]}]
    assert {"key": reference_meta_key(AUTHOR), "value": '["11"]'} in body["meta_data"]
    assert {"key": OWNER_META_KEY, "value": "9788412345678"} in body["meta_data"]
    assert created.external_id == "501"
    assert created.owner_id == "9788412345678"
    assert created.attributes["author_ids"] == ["11"]


def test_product_update_resends_unchanged_reference_kinds() -> None:
    puts: list[dict[str, object]] = []
    product = {
        "id": 501,
        "name": "El libro",
        "sku": "978",
        "meta_data": [
            {"key": reference_meta_key(AUTHOR), "value": '["11"]'},
            {"key": reference_meta_key(PUBLISHER), "value": '["21"]'},
        ],
    }
    terms = {
        "/products/attributes/3/terms/12": _term(12, "Bea", "8"),
        "/products/attributes/4/terms/21": _term(21, "Editorial", "21"),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/wp-json/wc/v3")
        if request.method == "PUT":
            puts.append(json.loads(request.content))
            return httpx.Response(200, json=product)
        if path in terms:
            return httpx.Response(200, json=terms[path])
        return httpx.Response(200, json=product)

    _run(
        _platform(handler),
        lambda platform: platform.update(
            PRODUCT, "501", ResourceChanges(attributes={"author_ids": ["12"]})
        ),
    )

    attributes = puts[0]["attributes"]
    assert {"id": 3, "visible": True, "options": ["Bea"]} in attributes
    assert {"id": 4, "visible": True, "options": ["Editorial"]} in attributes
    assert "sku" not in puts[0]


def test_kind_without_attribute_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        raise AssertionError("no request expected")

    with pytest.raises(ValueError, match="No WooCommerce attribute"):
        _run(
            _platform(handler),
            lambda platform: platform.find_by_key(EntityKind.IMPRINT, "1"),
        )


def test_stored_attributes_follow_configured_kinds() -> None:
    platform = _platform(lambda request: httpx.Response(200))  # noqa: ARG005

    assert platform.stored_attributes(PRODUCT) == frozenset({"author_ids", "publisher_ids"})
    assert platform.stored_attributes(AUTHOR) == frozenset({"description"})
