"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, env_int, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .storage import StorageConfig, get_storage_config
from .strapi import DEFAULT_COLLECTIONS, StrapiCollection, StrapiConfig, get_strapi_config
from .sync import SyncConfig, get_sync_config
from .woocommerce import WooCommerceConfig, get_woocommerce_config

__all__ = [
    "DEFAULT_COLLECTIONS",
    "CacheConfig",
    "ConfigurationError",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StrapiCollection",
    "StorageConfig",
    "StrapiConfig",
    "SyncConfig",
    "WooCommerceConfig",
    "configure_logging",
    "env_flag",
    "env_int",
    "get_storage_config",
    "get_strapi_config",
    "get_sync_config",
    "get_woocommerce_config",
    "require_env_vars",
]
