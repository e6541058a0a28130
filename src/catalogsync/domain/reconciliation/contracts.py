"""Resolution outcomes shared by the resolver and the upsert step."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from catalogsync.domain.model import ExternalResource


class ResolutionStatus(StrEnum):
    """Outcome of looking for an entity's counterpart on a platform."""

    NOT_FOUND = "not_found"
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"


class MatchKind(StrEnum):
    """Which lookup produced the match, strongest first."""

    EXTERNAL_ID = "external_id"
    KEY = "key"
    NATURAL_KEY = "natural_key"


DEFAULT_LOOKUPS: tuple[MatchKind, ...] = (
    MatchKind.EXTERNAL_ID,
    MatchKind.KEY,
    MatchKind.NATURAL_KEY,
)


@dataclass(slots=True, kw_only=True)
class NotFoundResolution:
    """No counterpart exists; the entity should be created.

    ``obstruction`` is a resource that already holds the entity's key on behalf
    of something else. Creating will collide with it.
    """

    status: Literal[ResolutionStatus.NOT_FOUND] = ResolutionStatus.NOT_FOUND
    obstruction: ExternalResource | None = None
    reason: str | None = None


@dataclass(slots=True, kw_only=True)
class ResolvedResolution:
    """Exactly one counterpart was confirmed."""

    target: ExternalResource
    match_kind: MatchKind
    reason: str | None = None
    status: Literal[ResolutionStatus.RESOLVED] = ResolutionStatus.RESOLVED


@dataclass(slots=True, kw_only=True)
class AmbiguousResolution:
    """Several viable counterparts; never resolved automatically."""

    candidates: tuple[ExternalResource, ...]
    match_kind: MatchKind | None = None
    reason: str | None = None
    status: Literal[ResolutionStatus.AMBIGUOUS] = ResolutionStatus.AMBIGUOUS

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("Ambiguous resolution must include at least one candidate")


type Resolution = NotFoundResolution | ResolvedResolution | AmbiguousResolution
