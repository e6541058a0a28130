from __future__ import annotations

import asyncio

import pytest

from catalogsync.domain.errors import (
    AmbiguousMatchError,
    NotFoundError,
    RelocationExhaustedError,
    UniqueKeyConflictError,
)
from catalogsync.domain.model import DesiredState, EntityKind, SyncOperation, SyncTask
from catalogsync.domain.reconciliation import (
    CollisionSafeUpsert,
    MatchKind,
    SurrogateKeyAllocator,
)
from tests.support.catalog import FakePlatform, entity, make_executor, resource

AUTHOR = EntityKind.AUTHOR


def _upserter(*, dry_run: bool = False, max_relocation_attempts: int = 3) -> CollisionSafeUpsert:
    executor = make_executor()
    return CollisionSafeUpsert(
        executor=executor,
        allocator=SurrogateKeyAllocator(executor=executor, offset=100),
        max_relocation_attempts=max_relocation_attempts,
        dry_run=dry_run,
    )


def _desired(key: str, name: str, **attributes: object) -> DesiredState:
    return DesiredState(key=key, name=name, attributes=attributes, owner_id=key)


def test_creates_missing_resource_and_records_ref() -> None:
    platform = FakePlatform()
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert result.operation is SyncOperation.CREATE
    created = platform.all(AUTHOR)
    assert len(created) == 1
    assert created[0].owner_id == "7"
    ref = subject.external_ref("fake")
    assert ref is not None
    assert ref.external_id == created[0].external_id
    assert ref.external_key == "7"


def test_matching_resource_is_left_alone() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Pérez", owner_id="7", bio="x"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "10"})

    result = asyncio.run(
        _upserter().upsert(subject, platform, _desired("7", "Ana Pérez", bio="x"))
    )

    assert result.operation is SyncOperation.SKIP
    assert result.match_kind is MatchKind.EXTERNAL_ID
    assert platform.writes() == []


def test_only_changed_fields_are_sent() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Perez", owner_id="7", bio="x"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "10"})

    result = asyncio.run(
        _upserter().upsert(subject, platform, _desired("7", "Ana Pérez", bio="x"))
    )

    assert result.operation is SyncOperation.UPDATE
    assert result.changes is not None
    assert result.changes.name == "Ana Pérez"
    assert result.changes.key is None
    assert dict(result.changes.attributes) == {}
    assert platform.writes() == [("update", AUTHOR, "10")]


def test_key_collision_relocates_the_occupant() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert result.operation is SyncOperation.CREATE
    assert len(result.relocations) == 1
    relocation = result.relocations[0]
    assert relocation.external_id == "10"
    assert relocation.old_key == "7"
    assert relocation.new_key == "107"
    occupant = asyncio.run(platform.get(AUTHOR, "10"))
    assert occupant.key == "107"
    assert occupant.name == "Somebody Else"
    assert result.resource.key == "7"


def test_relocation_without_conflicting_id_finds_occupant_by_key() -> None:
    platform = FakePlatform(report_conflicting_id=False)
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert result.operation is SyncOperation.CREATE
    assert [item.external_id for item in result.relocations] == ["10"]


def test_relocations_are_bounded() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    platform.failures["create"] = [
        UniqueKeyConflictError("taken", key="7", conflicting_id="10") for _ in range(5)
    ]
    subject = entity(AUTHOR, "7", "Ana Pérez")

    with pytest.raises(RelocationExhaustedError):
        asyncio.run(
            _upserter(max_relocation_attempts=2).upsert(
                subject, platform, _desired("7", "Ana Pérez")
            )
        )

    assert subject.external_ref("fake") is None
    assert [call for call in platform.calls if call[0] == "create"] == [
        ("create", AUTHOR, "7"),
        ("create", AUTHOR, "7"),
        ("create", AUTHOR, "7"),
    ]


def test_conflict_with_own_record_becomes_an_update() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "old-7", "Renamed Meanwhile", owner_id="7"))
    platform.failures["create"] = [UniqueKeyConflictError("taken", conflicting_id="10")]
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert result.operation is SyncOperation.UPDATE
    assert result.relocations == ()
    assert asyncio.run(platform.get(AUTHOR, "10")).key == "7"


def test_dry_run_writes_nothing_and_plans_relocation() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(
        _upserter(dry_run=True).upsert(subject, platform, _desired("7", "Ana Pérez"))
    )

    assert result.operation is SyncOperation.CREATE
    assert result.ref.external_id == "dry-run:author:7"
    assert [item.new_key for item in result.relocations] == ["107"]
    assert platform.writes() == []
    assert subject.external_ref("fake") is None


def test_dry_run_reports_planned_update() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Ana Perez", owner_id="7"))
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "10"})

    result = asyncio.run(
        _upserter(dry_run=True).upsert(subject, platform, _desired("7", "Ana Pérez"))
    )

    assert result.operation is SyncOperation.UPDATE
    assert result.resource.name == "Ana Pérez"
    assert platform.writes() == []


def test_require_existing_refuses_to_create() -> None:
    platform = FakePlatform()
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "404"})

    with pytest.raises(NotFoundError):
        asyncio.run(
            _upserter().upsert(
                subject, platform, _desired("7", "Ana Pérez"), require_existing=True
            )
        )

    assert platform.writes() == []


def test_ambiguous_match_is_not_written() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "a", "Ana Pérez"), resource("11", "b", "Ana Pérez"))
    subject = entity(AUTHOR, "7", "Ana Pérez")

    with pytest.raises(AmbiguousMatchError) as excinfo:
        asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert len(excinfo.value.candidates) == 2
    assert platform.writes() == []


def test_task_tracks_operation_and_attempts() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    subject = entity(AUTHOR, "7", "Ana Pérez")
    task = SyncTask(entity_kind=AUTHOR, entity=subject, platform="fake")

    asyncio.run(
        _upserter().upsert(subject, platform, _desired("7", "Ana Pérez"), task=task)
    )

    assert task.operation is SyncOperation.CREATE
    assert task.attempts == 2


def test_allocator_skips_taken_keys() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("1", "5", "a"), resource("2", "6", "b"))
    allocator = SurrogateKeyAllocator(executor=make_executor(), offset=1)

    async def scenario() -> list[str]:
        first = await allocator.allocate(platform, AUTHOR)
        platform.seed(AUTHOR, resource("3", "8", "c"))
        second = await allocator.allocate(platform, AUTHOR)
        return [first, second]

    assert asyncio.run(scenario()) == ["7", "9"]


def test_allocator_gives_up_after_max_lookups() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("1", "1", "a"), resource("2", "2", "b"), resource("3", "3", "c"))
    allocator = SurrogateKeyAllocator(executor=make_executor(), offset=1, max_lookups=2)

    async def always_taken(kind: EntityKind, key: str):  # noqa: ARG001
        return resource("x", key, "taken")

    platform.find_by_key = always_taken  # type: ignore[method-assign]

    with pytest.raises(RelocationExhaustedError):
        asyncio.run(allocator.allocate(platform, AUTHOR))


def test_relocation_that_collides_tries_another_key() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    platform.failures["update"] = [UniqueKeyConflictError("taken", key="107")]
    subject = entity(AUTHOR, "7", "Ana Pérez")

    result = asyncio.run(_upserter().upsert(subject, platform, _desired("7", "Ana Pérez")))

    assert result.operation is SyncOperation.CREATE
    assert [item.new_key for item in result.relocations] == ["108"]
    assert asyncio.run(platform.get(AUTHOR, "10")).key == "108"
    assert result.resource.key == "7"


def test_relocation_gives_up_when_every_key_collides() -> None:
    platform = FakePlatform()
    platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
    platform.failures["update"] = [UniqueKeyConflictError("taken") for _ in range(2)]
    subject = entity(AUTHOR, "7", "Ana Pérez")

    with pytest.raises(RelocationExhaustedError):
        asyncio.run(
            _upserter(max_relocation_attempts=2).upsert(
                subject, platform, _desired("7", "Ana Pérez")
            )
        )

    assert asyncio.run(platform.get(AUTHOR, "10")).key == "7"
    assert subject.external_ref("fake") is None


def test_dry_run_plans_what_a_real_run_does() -> None:
    def seeded() -> FakePlatform:
        platform = FakePlatform()
        platform.seed(AUTHOR, resource("10", "7", "Somebody Else", owner_id="99"))
        return platform

    dry_platform = seeded()
    planned = asyncio.run(
        _upserter(dry_run=True).upsert(
            entity(AUTHOR, "7", "Ana Pérez"), dry_platform, _desired("7", "Ana Pérez")
        )
    )
    applied = asyncio.run(
        _upserter().upsert(entity(AUTHOR, "7", "Ana Pérez"), seeded(), _desired("7", "Ana Pérez"))
    )

    assert dry_platform.writes() == []
    assert planned.operation is applied.operation is SyncOperation.CREATE
    assert planned.relocations == applied.relocations
    assert [item.new_key for item in planned.relocations] == ["107"]


def test_dry_run_plans_relocation_for_a_key_change() -> None:
    platform = FakePlatform()
    platform.seed(
        AUTHOR,
        resource("10", "old", "Ana Pérez", owner_id="7"),
        resource("11", "7", "Somebody Else", owner_id="99"),
    )
    subject = entity(AUTHOR, "7", "Ana Pérez", refs={"fake": "10"})

    result = asyncio.run(
        _upserter(dry_run=True).upsert(subject, platform, _desired("7", "Ana Pérez"))
    )

    assert result.operation is SyncOperation.UPDATE
    assert result.resource.external_id == "10"
    assert result.resource.key == "7"
    assert [(item.external_id, item.new_key) for item in result.relocations] == [("11", "107")]
    assert platform.writes() == []
