"""Public domain model surface."""

from __future__ import annotations

from catalogsync.domain.model.entity import Entity, EntityReference, ExternalRef, PlatformId
from catalogsync.domain.model.enums import EntityKind, RowAction, SyncOperation
from catalogsync.domain.model.paging import Page, PageCursor
from catalogsync.domain.model.report import (
    AmbiguityRecord,
    ChangeRecord,
    FailureRecord,
    ReconciliationReport,
)
from catalogsync.domain.model.resource import (
    DesiredState,
    ExternalResource,
    ResourceChanges,
    diff_resource,
    same_key,
)
from catalogsync.domain.model.row import TabularRow
from catalogsync.domain.model.task import SyncTask

__all__ = [
    "AmbiguityRecord",
    "ChangeRecord",
    "DesiredState",
    "Entity",
    "EntityKind",
    "EntityReference",
    "ExternalRef",
    "ExternalResource",
    "FailureRecord",
    "Page",
    "PageCursor",
    "PlatformId",
    "ReconciliationReport",
    "ResourceChanges",
    "RowAction",
    "SyncOperation",
    "SyncTask",
    "TabularRow",
    "diff_resource",
    "same_key",
]
