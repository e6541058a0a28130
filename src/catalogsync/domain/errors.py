"""Error taxonomy shared by adapters and the reconciliation core.

Adapters translate transport failures into these types once, at the HTTP
boundary. Nothing downstream inspects status codes or message text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from catalogsync.domain.model import ExternalResource, ReconciliationReport


class SyncError(Exception):
    """Base class for every error the reconciliation core understands."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(SyncError):
    """Timeout, connection reset, throttling or a 5xx; safe to retry.

    ``retry_after`` carries the server's Retry-After hint in seconds, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class NotFoundError(SyncError):
    """The addressed record does not exist."""


class UniqueKeyConflictError(SyncError):
    """A write was rejected because another record already holds the unique key."""

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        conflicting_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.key = key
        self.conflicting_id = conflicting_id


class AmbiguousMatchError(SyncError):
    """More than one external record could be the entity's counterpart."""

    def __init__(self, message: str, *, candidates: Sequence[ExternalResource]) -> None:
        super().__init__(message)
        self.candidates = tuple(candidates)


class FatalError(SyncError):
    """Non-retryable failure for one entity: bad request, schema or validation."""


class RelocationExhaustedError(FatalError):
    """The colliding record could not be moved to a free key."""


class UnresolvedReferenceError(FatalError):
    """A parent the entity depends on has no counterpart on the platform yet."""


class SyncCancelledError(SyncError):
    """The run was cancelled while an operation was waiting to retry."""


class CollectionFetchError(SyncError):
    """A collection could not be fetched completely; the run cannot continue."""

    def __init__(
        self,
        message: str,
        *,
        partial_report: ReconciliationReport | None = None,
    ) -> None:
        super().__init__(message)
        self.partial_report = partial_report
