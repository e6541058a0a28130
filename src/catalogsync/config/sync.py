"""Reconciliation run defaults."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_int
from .http_resilience import RetryPolicy

DEFAULT_PAGE_SIZE = 100
DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_RELOCATION_ATTEMPTS = 3
DEFAULT_RELOCATION_OFFSET = 10_000
DEFAULT_MAX_KEY_LOOKUPS = 50
DEFAULT_MAX_ATTEMPTS = 4


@dataclass(frozen=True, slots=True)
class SyncConfig:
    page_size: int = DEFAULT_PAGE_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    max_relocation_attempts: int = DEFAULT_MAX_RELOCATION_ATTEMPTS
    relocation_offset: int = DEFAULT_RELOCATION_OFFSET
    max_key_lookups: int = DEFAULT_MAX_KEY_LOOKUPS
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        page_size=env_int("CATALOGSYNC_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        concurrency=env_int("CATALOGSYNC_CONCURRENCY", DEFAULT_CONCURRENCY),
        max_relocation_attempts=env_int(
            "CATALOGSYNC_MAX_RELOCATION_ATTEMPTS", DEFAULT_MAX_RELOCATION_ATTEMPTS
        ),
        retry=RetryPolicy(total=env_int("CATALOGSYNC_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
    )
