"""
Tests for the lifecycle policy engine.
"""

import gzip
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import ValidationError
from app.domain.schemas.storage import (
    LifecycleAction,
    LifecyclePolicy,
    LifecycleRule,
    StorageFileMetadata,
)
from app.services.storage.lifecycle import StorageLifecycleService
from tests.mocks.cache import put


def policy(
    name="cleanup",
    container_pattern="^packages$",
    file_pattern=None,
    rules=None,
    is_enabled=True,
):
    return LifecyclePolicy(
        name=name,
        is_enabled=is_enabled,
        container_pattern=container_pattern,
        file_pattern=file_pattern,
        rules=rules if rules is not None else [
            LifecycleRule(action=LifecycleAction.DELETE, days_after_creation=30)
        ],
    )


@pytest.fixture
def lifecycle(storage, settings, clock):
    return StorageLifecycleService(storage, settings, clock=clock)


class TestPolicyValidation:
    """Test lifecycle policy validation."""

    def test_valid_policy(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(policy())

        assert result.is_valid is True
        assert result.errors == []

    def test_policy_requires_name(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(policy(name=""))

        assert "Policy name is required" in result.errors

    def test_policy_requires_container_pattern(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(policy(container_pattern=" "))

        assert "Container pattern is required" in result.errors

    def test_invalid_regexes_are_rejected(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(
            policy(container_pattern="([", file_pattern="*.zip")
        )

        assert result.is_valid is False
        assert any(e.startswith("Invalid container pattern") for e in result.errors)
        assert any(e.startswith("Invalid file pattern") for e in result.errors)

    def test_policy_requires_rules(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(policy(rules=[]))

        assert "At least one rule is required" in result.errors

    def test_rule_requires_an_age_predicate(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(
            policy(rules=[LifecycleRule(action=LifecycleAction.DELETE, minimum_file_size=10)])
        )

        assert result.is_valid is False
        assert "days_after_creation or days_after_modification" in result.errors[0]

    def test_size_bounds_must_be_ordered(self, lifecycle):
        result = lifecycle.validate_lifecycle_policy(
            policy(rules=[LifecycleRule(
                action=LifecycleAction.DELETE,
                days_after_creation=1,
                minimum_file_size=100,
                maximum_file_size=10,
            )])
        )

        assert result.errors == [
            "Rule 0 minimum_file_size cannot be greater than maximum_file_size"
        ]

    def test_add_policy_rejects_invalid(self, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.add_policy(policy(rules=[]))

        assert lifecycle.policies == []

    def test_invalid_configured_policies_are_skipped(self, storage, make_settings, clock):
        settings = make_settings(
            STORAGE_LIFECYCLE_POLICIES=[policy(name="good"), policy(name="bad", rules=[])]
        )

        service = StorageLifecycleService(storage, settings, clock=clock)

        assert [p.name for p in service.policies] == ["good"]


class TestRuleMatching:
    """Test rule predicate evaluation."""

    def metadata(self, clock, size=100, created_days=0, modified_days=0, **kwargs):
        now = clock()
        return StorageFileMetadata(
            name="file.bin",
            size=size,
            created_at=now - timedelta(days=created_days),
            last_modified=now - timedelta(days=modified_days),
            **kwargs,
        )

    def test_age_uses_whole_days(self, lifecycle, clock):
        rule = LifecycleRule(action=LifecycleAction.DELETE, days_after_creation=30)
        almost = StorageFileMetadata(
            name="f", created_at=clock() - timedelta(days=29, hours=23), last_modified=clock()
        )

        assert lifecycle.should_apply_rule(rule, almost) is False
        assert lifecycle.should_apply_rule(rule, self.metadata(clock, created_days=30)) is True

    def test_modification_age(self, lifecycle, clock):
        rule = LifecycleRule(action=LifecycleAction.ARCHIVE, days_after_modification=7)

        assert lifecycle.should_apply_rule(rule, self.metadata(clock, modified_days=6)) is False
        assert lifecycle.should_apply_rule(rule, self.metadata(clock, modified_days=7)) is True

    def test_predicates_are_combined(self, lifecycle, clock):
        rule = LifecycleRule(
            action=LifecycleAction.DELETE,
            days_after_creation=10,
            days_after_modification=5,
        )

        assert lifecycle.should_apply_rule(
            rule, self.metadata(clock, created_days=20, modified_days=1)
        ) is False
        assert lifecycle.should_apply_rule(
            rule, self.metadata(clock, created_days=20, modified_days=5)
        ) is True

    def test_size_bounds_are_inclusive(self, lifecycle, clock):
        rule = LifecycleRule(
            action=LifecycleAction.DELETE,
            days_after_creation=1,
            minimum_file_size=100,
            maximum_file_size=200,
        )

        assert lifecycle.should_apply_rule(rule, self.metadata(clock, size=99, created_days=2)) is False
        assert lifecycle.should_apply_rule(rule, self.metadata(clock, size=100, created_days=2)) is True
        assert lifecycle.should_apply_rule(rule, self.metadata(clock, size=200, created_days=2)) is True
        assert lifecycle.should_apply_rule(rule, self.metadata(clock, size=201, created_days=2)) is False

    def test_creation_falls_back_to_last_modified(self, lifecycle, clock):
        rule = LifecycleRule(action=LifecycleAction.DELETE, days_after_creation=3)
        metadata = StorageFileMetadata(name="f", last_modified=clock() - timedelta(days=3))

        assert lifecycle.should_apply_rule(rule, metadata) is True

    def test_missing_timestamps_never_match(self, lifecycle):
        rule = LifecycleRule(action=LifecycleAction.DELETE, days_after_creation=1)

        assert lifecycle.should_apply_rule(rule, StorageFileMetadata(name="f")) is False


class TestApplyPolicies:
    """Test applying lifecycle actions to stored objects."""

    @pytest.mark.asyncio
    async def test_delete_old_files(self, lifecycle, storage, clock):
        await put(storage, "packages", "old.zip", b"old")
        clock.advance(days=31)
        await put(storage, "packages", "new.zip", b"new")
        lifecycle.add_policy(policy())

        run = await lifecycle.apply_lifecycle_policies()

        assert await storage.exists("packages", "old.zip") is False
        assert await storage.exists("packages", "new.zip") is True
        assert run.files_processed == 2
        assert run.actions_applied == 1

        stats = await lifecycle.get_lifecycle_statistics()
        assert stats.total_files_deleted == 1
        assert stats.total_bytes_reclaimed == 3
        assert stats.policies["cleanup"].last_execution == clock()

    @pytest.mark.asyncio
    async def test_archive_moves_to_archive_container(self, lifecycle, storage, clock):
        await put(storage, "packages", "pkg-1.0.zip", b"payload")
        clock.advance(days=90)
        lifecycle.add_policy(policy(
            name="archive",
            rules=[LifecycleRule(action=LifecycleAction.ARCHIVE, days_after_modification=60)],
        ))

        await lifecycle.apply_lifecycle_policies()

        assert await storage.exists("packages", "pkg-1.0.zip") is False
        archived = await storage.download("packages-archive", "pkg-1.0.zip")
        assert archived.read() == b"payload"

    @pytest.mark.asyncio
    async def test_archive_containers_are_not_reprocessed(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        clock.advance(days=90)
        lifecycle.add_policy(policy(
            container_pattern="^packages",
            rules=[LifecycleRule(action=LifecycleAction.ARCHIVE, days_after_creation=1)],
        ))

        await lifecycle.apply_lifecycle_policies()
        await lifecycle.apply_lifecycle_policies()

        assert await storage.list_containers() == ["packages", "packages-archive"]
        assert await storage.exists("packages-archive", "a.zip") is True

    @pytest.mark.asyncio
    async def test_first_removing_rule_stops_evaluation(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        clock.advance(days=90)
        lifecycle.add_policy(policy(rules=[
            LifecycleRule(action=LifecycleAction.DELETE, days_after_creation=30),
            LifecycleRule(action=LifecycleAction.ARCHIVE, days_after_creation=30),
        ]))

        run = await lifecycle.apply_lifecycle_policies()

        assert run.actions_applied == 1
        assert run.errors == 0
        assert "packages-archive" not in await storage.list_containers()

    @pytest.mark.asyncio
    async def test_file_pattern_filters_objects(self, lifecycle, storage, clock):
        await put(storage, "packages", "build.tmp", b"t")
        await put(storage, "packages", "release.zip", b"r")
        clock.advance(days=31)
        lifecycle.add_policy(policy(file_pattern=r"\.tmp$"))

        await lifecycle.apply_lifecycle_policies()

        assert await storage.exists("packages", "build.tmp") is False
        assert await storage.exists("packages", "release.zip") is True

    @pytest.mark.asyncio
    async def test_disabled_policies_are_ignored(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        clock.advance(days=31)
        lifecycle.add_policy(policy(is_enabled=False))

        run = await lifecycle.apply_lifecycle_policies()

        assert run.files_processed == 0
        assert await storage.exists("packages", "a.zip") is True

    @pytest.mark.asyncio
    async def test_explicit_container_must_match_pattern(self, lifecycle, storage, clock):
        await put(storage, "versions", "a.zip", b"a")
        clock.advance(days=31)
        lifecycle.add_policy(policy())

        run = await lifecycle.apply_lifecycle_policies("versions")

        assert run.containers_processed == 0
        assert await storage.exists("versions", "a.zip") is True

    @pytest.mark.asyncio
    async def test_compress_rewrites_object_in_place(self, lifecycle, storage, clock):
        original = b"A" * 4096
        await put(storage, "packages", "log.txt", original)
        clock.advance(days=10)
        lifecycle.add_policy(policy(
            rules=[LifecycleRule(action=LifecycleAction.COMPRESS, days_after_creation=7)],
        ))

        await lifecycle.apply_lifecycle_policies()
        await lifecycle.apply_lifecycle_policies()

        metadata = await storage.get_metadata("packages", "log.txt")
        stored = (await storage.download("packages", "log.txt")).read()
        assert metadata.metadata["content-encoding"] == "gzip"
        assert gzip.decompress(stored) == original

        stats = await lifecycle.get_lifecycle_statistics()
        assert stats.total_files_compressed == 1
        assert stats.total_bytes_reclaimed == len(original) - len(stored)

    @pytest.mark.asyncio
    async def test_move_to_storage_class(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        clock.advance(days=31)
        lifecycle.add_policy(policy(rules=[LifecycleRule(
            action=LifecycleAction.MOVE_TO_STORAGE_CLASS,
            days_after_creation=30,
            target_storage_class="cold",
        )]))

        await lifecycle.apply_lifecycle_policies()

        metadata = await storage.get_metadata("packages", "a.zip")
        assert metadata.metadata["storage-class"] == "cold"
        assert (await lifecycle.get_lifecycle_statistics()).total_files_moved == 1

    @pytest.mark.asyncio
    async def test_move_is_noop_without_provider_support(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        clock.advance(days=31)
        storage.set_storage_class = AsyncMock(side_effect=NotImplementedError)
        lifecycle.add_policy(policy(rules=[LifecycleRule(
            action=LifecycleAction.MOVE_TO_STORAGE_CLASS, days_after_creation=30,
        )]))

        run = await lifecycle.apply_lifecycle_policies()

        assert run.errors == 0
        assert (await lifecycle.get_lifecycle_statistics()).total_files_moved == 0

    @pytest.mark.asyncio
    async def test_file_failures_are_counted_and_skipped(self, lifecycle, storage, clock):
        await put(storage, "packages", "a.zip", b"a")
        await put(storage, "packages", "b.zip", b"b")
        clock.advance(days=31)
        real_delete = storage.delete

        async def flaky_delete(container, name):
            if name == "a.zip":
                raise ConnectionError("provider timeout")
            return await real_delete(container, name)

        storage.delete = flaky_delete
        lifecycle.add_policy(policy())

        run = await lifecycle.apply_lifecycle_policies()

        assert run.errors == 1
        assert await storage.exists("packages", "a.zip") is True
        assert await storage.exists("packages", "b.zip") is False
        assert (await lifecycle.get_lifecycle_statistics()).policies["cleanup"].errors == 1
