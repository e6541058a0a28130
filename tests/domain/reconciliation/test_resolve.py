from __future__ import annotations

import asyncio

from catalogsync.domain.model import EntityKind, ExternalResource
from catalogsync.domain.reconciliation import (
    AmbiguousResolution,
    IdentityResolver,
    MatchKind,
    NotFoundResolution,
    ResolvedResolution,
)
from tests.support.catalog import FakePlatform, entity, make_executor, resource

AUTHOR = EntityKind.AUTHOR


def _resolver(*lookups: MatchKind) -> IdentityResolver:
    if lookups:
        return IdentityResolver(make_executor(), lookups=lookups)
    return IdentityResolver(make_executor())


def test_stored_ref_wins_over_key_and_name() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Pérez"), resource("11", "other", "Someone"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "11"})

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, ResolvedResolution)
    assert resolution.target.external_id == "11"
    assert resolution.match_kind is MatchKind.EXTERNAL_ID


def test_stale_ref_falls_back_to_key() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Pérez"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "999"})

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, ResolvedResolution)
    assert resolution.target.external_id == "10"
    assert resolution.match_kind is MatchKind.KEY


def test_untrusted_ref_is_not_consulted() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Pérez"), resource("11", "8", "Other"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "11"})

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7", trust_ref=False))

    assert isinstance(resolution, ResolvedResolution)
    assert resolution.target.external_id == "10"
    assert ("get", AUTHOR, "11") not in platform.calls


def test_key_held_for_another_entity_is_an_obstruction() -> None:
    platform = FakePlatform()
    squatter = resource("10", "7", "Somebody Else", owner_id="99")
    platform.seed(AUTHOR, squatter)
    subject = entity(AUTHOR, "7", "Ana Pérez")

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, NotFoundResolution)
    assert resolution.obstruction == squatter


def test_exact_name_match_claims_resource_with_other_key() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "legacy-slug", "ANA PÉREZ"))
    subject = entity(AUTHOR, "7", " ana pérez ")

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, ResolvedResolution)
    assert resolution.target.external_id == "10"
    assert resolution.match_kind is MatchKind.NATURAL_KEY


def test_several_exact_name_matches_are_ambiguous() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "a", "Ana Pérez"), resource("11", "b", "Ana Pérez"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, AmbiguousResolution)
    assert {candidate.external_id for candidate in resolution.candidates} == {"10", "11"}
    assert resolution.reason == "multiple_exact_name_matches"


def test_accent_only_match_is_ambiguous_not_resolved() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "a", "Ana Perez"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    # The fake searches by substring, so the accented query needs a wider net.
    async def search(kind: EntityKind, name: str) -> list[ExternalResource]:  # noqa: ARG001
        return platform.all(kind)

    platform.search_by_name = search  # type: ignore[method-assign]

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, AmbiguousResolution)
    assert resolution.reason == "near_name_match"


def test_name_match_skips_records_owned_by_other_entities() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "8", "Ana Pérez", owner_id="8"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, NotFoundResolution)
    assert resolution.obstruction is None


def test_reference_only_lookups_report_key_holder_as_obstruction() -> None:
    platform = FakePlatform()
    holder = resource("10", "7", "Ana Pérez")
    platform.seed(AUTHOR, holder)
    subject = entity(AUTHOR, "7", "Ana Pérez")

    resolution = asyncio.run(
        _resolver(MatchKind.EXTERNAL_ID).resolve(subject, platform, key="7")
    )

    assert isinstance(resolution, NotFoundResolution)
    assert resolution.obstruction == holder
    assert not any(call[0] == "search" for call in platform.calls)


def test_nothing_matches() -> None:
    platform = FakePlatform()
    subject = entity(AUTHOR, "7", "Ana Pérez")

    resolution = asyncio.run(_resolver().resolve(subject, platform, key="7"))

    assert isinstance(resolution, NotFoundResolution)
    assert resolution.reason == "no_match"
