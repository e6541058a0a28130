"""Reconciliation core: keep external platforms converged with the catalog.

Layered flow for one run:
1) fetch each collection completely (``fetch``), retrying pages (``retry``)
2) resolve each entity's counterpart on each platform (``resolve``)
3) create or update it, relocating key collisions (``upsert``)
4) drive kinds in dependency order with bounded concurrency (``engine``)

``tabular`` applies operator-edited snapshots to the source of truth with the
same upsert, and ``audit`` reports duplicate external records.
"""

from __future__ import annotations

from .audit import (
    DuplicateAudit,
    DuplicateGroup,
    find_duplicate_resources,
    remove_duplicate_resources,
)
from .contracts import (
    AmbiguousResolution,
    MatchKind,
    NotFoundResolution,
    Resolution,
    ResolutionStatus,
    ResolvedResolution,
)
from .engine import ReconciliationEngine
from .fetch import FetchedCollection, fetch_all, fetch_entities, fetch_resources
from .report import ReportBuilder
from .resolve import IdentityResolver
from .retry import ErrorClass, RetryExecutor, classify_error
from .tabular import TabularReconciler
from .upsert import CollisionSafeUpsert, Relocation, SurrogateKeyAllocator, UpsertResult

__all__ = [
    "AmbiguousResolution",
    "CollisionSafeUpsert",
    "DuplicateAudit",
    "DuplicateGroup",
    "ErrorClass",
    "FetchedCollection",
    "IdentityResolver",
    "MatchKind",
    "NotFoundResolution",
    "ReconciliationEngine",
    "Relocation",
    "ReportBuilder",
    "Resolution",
    "ResolutionStatus",
    "ResolvedResolution",
    "RetryExecutor",
    "SurrogateKeyAllocator",
    "TabularReconciler",
    "UpsertResult",
    "classify_error",
    "fetch_all",
    "fetch_entities",
    "fetch_resources",
    "find_duplicate_resources",
    "remove_duplicate_resources",
]
