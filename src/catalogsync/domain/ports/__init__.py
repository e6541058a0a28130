"""Domain ports for external collaborators."""

from __future__ import annotations

from .fetching import PagedSource
from .platform import ExternalPlatform
from .source import CatalogSource, EditableCatalog, SnapshotStore

__all__ = [
    "CatalogSource",
    "EditableCatalog",
    "ExternalPlatform",
    "PagedSource",
    "SnapshotStore",
]
