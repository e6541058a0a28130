"""WooCommerce platform configuration values.

One WooCommerce store is one platform. Its env variables are prefixed with the
upper-cased platform id, e.g. ``WOO_MORALEJA_URL`` for ``woo_moraleja``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from catalogsync.domain.model.enums import EntityKind

from .env import require_env_vars
from .errors import ConfigurationError
from .http_resilience import RateLimit, ResilienceConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

WOOCOMMERCE_API_PREFIX = "/wp-json/wc/v3"
WOOCOMMERCE_TIMEOUT_SECONDS = 30.0

TAXONOMY_KINDS: tuple[EntityKind, ...] = (
    EntityKind.AUTHOR,
    EntityKind.PUBLISHER,
    EntityKind.IMPRINT,
    EntityKind.COLLECTION,
)


@dataclass(frozen=True)
class WooCommerceConfig:
    """Holds the credentials and attribute mapping of one WooCommerce store."""

    platform_id: str
    base_url: str
    consumer_key: str
    consumer_secret: str
    resilience: ResilienceConfig
    attribute_ids: Mapping[EntityKind, int] = field(default_factory=dict)

    def attribute_id(self, kind: EntityKind) -> int:
        try:
            return self.attribute_ids[kind]
        except KeyError:
            raise ValueError(
                f"No WooCommerce attribute configured for {kind} on {self.platform_id}"
            ) from None


def _env_prefix(platform_id: str) -> str:
    return platform_id.upper().replace("-", "_")


def _read_attribute_ids(prefix: str) -> dict[EntityKind, int]:
    attribute_ids: dict[EntityKind, int] = {}
    for kind in TAXONOMY_KINDS:
        name = f"{prefix}_{kind.upper()}_ATTRIBUTE_ID"
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            continue
        try:
            attribute_ids[kind] = int(raw)
        except ValueError as exc:
            raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    return attribute_ids


def get_woocommerce_config(
    platform_id: str,
    *,
    resilience: ResilienceConfig | None = None,
) -> WooCommerceConfig:
    prefix = _env_prefix(platform_id)
    url_var = f"{prefix}_URL"
    key_var = f"{prefix}_CONSUMER_KEY"
    secret_var = f"{prefix}_CONSUMER_SECRET"
    values = require_env_vars((url_var, key_var, secret_var))
    base_url = values[url_var].rstrip("/")
    return WooCommerceConfig(
        platform_id=platform_id,
        base_url=base_url,
        consumer_key=values[key_var],
        consumer_secret=values[secret_var],
        attribute_ids=_read_attribute_ids(prefix),
        resilience=resilience
        or ResilienceConfig(
            name=platform_id,
            base_url=f"{base_url}{WOOCOMMERCE_API_PREFIX}",
            timeout_seconds=WOOCOMMERCE_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
        ),
    )
