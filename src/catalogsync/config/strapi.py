"""Strapi (source of truth) configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from catalogsync.domain.model.enums import EntityKind

from .env import env_flag, require_env_vars
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

STRAPI_TIMEOUT_SECONDS = 30.0
STRAPI_CACHE_TTL_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class StrapiCollection:
    """How one entity kind is stored in a Strapi collection type."""

    kind: EntityKind
    path: str
    key_field: str
    name_field: str
    relations: Mapping[str, EntityKind] = field(default_factory=lambda: MappingProxyType({}))
    numeric_key: bool = False

    def key_value(self, key: str) -> str | int:
        """Key as the collection stores it; integer id fields reject strings."""

        if self.numeric_key and key.strip().isdigit():
            return int(key)
        return key


DEFAULT_COLLECTIONS: Mapping[EntityKind, StrapiCollection] = MappingProxyType(
    {
        EntityKind.AUTHOR: StrapiCollection(
            kind=EntityKind.AUTHOR,
            path="autores",
            key_field="id_autor",
            numeric_key=True,
            name_field="nombre_completo_autor",
        ),
        EntityKind.PUBLISHER: StrapiCollection(
            kind=EntityKind.PUBLISHER,
            path="editoriales",
            key_field="id_editorial",
            numeric_key=True,
            name_field="nombre_editorial",
        ),
        EntityKind.IMPRINT: StrapiCollection(
            kind=EntityKind.IMPRINT,
            path="sellos",
            key_field="id_sello",
            numeric_key=True,
            name_field="nombre_sello",
            relations=MappingProxyType({"editorial": EntityKind.PUBLISHER}),
        ),
        EntityKind.COLLECTION: StrapiCollection(
            kind=EntityKind.COLLECTION,
            path="colecciones",
            key_field="id_coleccion",
            numeric_key=True,
            name_field="nombre_coleccion",
            relations=MappingProxyType(
                {"editorial": EntityKind.PUBLISHER, "sello": EntityKind.IMPRINT}
            ),
        ),
        EntityKind.PRODUCT: StrapiCollection(
            kind=EntityKind.PRODUCT,
            path="libros",
            key_field="isbn_libro",
            name_field="nombre_libro",
            relations=MappingProxyType(
                {
                    "autor_relacion": EntityKind.AUTHOR,
                    "editorial": EntityKind.PUBLISHER,
                    "sello": EntityKind.IMPRINT,
                    "coleccion": EntityKind.COLLECTION,
                }
            ),
        ),
    }
)


@dataclass(frozen=True)
class StrapiConfig:
    """Holds Strapi API configuration values."""

    base_url: str
    token: str
    resilience: ResilienceConfig
    collections: Mapping[EntityKind, StrapiCollection] = DEFAULT_COLLECTIONS

    def collection(self, kind: EntityKind) -> StrapiCollection:
        try:
            return self.collections[kind]
        except KeyError:
            raise ValueError(f"No Strapi collection configured for {kind}") from None


def _cache_config() -> CacheConfig | None:
    """Opt-in response cache for repeated read-only runs (exports, audits)."""

    if not env_flag("STRAPI_HTTP_CACHE"):
        return None
    return CacheConfig(
        backend="sqlite",
        default_ttl_seconds=STRAPI_CACHE_TTL_SECONDS,
        should_cache=cacheable_payload,
    )


def cacheable_payload(payload: object) -> bool:
    """Only successful document payloads are cached; error envelopes never are."""

    return isinstance(payload, dict) and "data" in payload and payload.get("error") is None


def get_strapi_config(*, resilience: ResilienceConfig | None = None) -> StrapiConfig:
    values = require_env_vars(("STRAPI_URL", "STRAPI_TOKEN"))
    base_url = values["STRAPI_URL"].rstrip("/")
    return StrapiConfig(
        base_url=base_url,
        token=values["STRAPI_TOKEN"],
        resilience=resilience
        or ResilienceConfig(
            name="strapi",
            base_url=base_url,
            timeout_seconds=STRAPI_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
            cache=_cache_config(),
            default_headers={"Authorization": f"Bearer {values['STRAPI_TOKEN']}"},
        ),
    )
