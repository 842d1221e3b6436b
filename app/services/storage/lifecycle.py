"""
Lifecycle policy engine.

Evaluates age and size rules against stored objects and applies the
configured action: delete, archive, move to another storage class, or
compress in place.
"""

import re
from datetime import datetime
from typing import Callable, Dict, List, Optional

from app.core.config import Settings, get_settings
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.domain.interfaces.storage import IStorageService
from app.domain.schemas.storage import (
    LifecycleAction,
    LifecyclePolicy,
    LifecyclePolicyStatistics,
    LifecyclePolicyValidationResult,
    LifecycleRule,
    LifecycleRunResult,
    LifecycleStatistics,
    StorageFileMetadata,
)
from app.services.storage.utils import as_stream, compress, read_stream

logger = get_logger(__name__)


class StorageLifecycleService:
    """
    Applies lifecycle policies to containers.

    Policies are validated before they become active. Per-file failures
    are logged and counted; they never abort a pass.
    """

    ARCHIVE_SUFFIX = "-archive"
    GZIP_ENCODING = "gzip"

    def __init__(
        self,
        storage: IStorageService,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize lifecycle service.

        Args:
            storage: Storage provider the policies act on
            settings: Application settings (defaults to the cached instance)
            clock: Source of the current time
        """
        self.storage = storage
        self.settings = settings or get_settings()
        self._clock = clock or datetime.utcnow

        self._policies: Dict[str, LifecyclePolicy] = {}
        self._statistics: Dict[str, LifecyclePolicyStatistics] = {}
        self._last_execution: Optional[datetime] = None

        for policy in self.settings.STORAGE_LIFECYCLE_POLICIES:
            try:
                self.add_policy(policy)
            except ValidationError as e:
                logger.warning(
                    "Rejected lifecycle policy",
                    policy=policy.name,
                    errors=e.details.get("errors"),
                )

        logger.info(
            "Lifecycle service initialized",
            active_policies=len(self._policies),
        )

    @property
    def policies(self) -> List[LifecyclePolicy]:
        return list(self._policies.values())

    def add_policy(self, policy: LifecyclePolicy) -> None:
        """
        Validate and activate a policy, replacing any policy with the same name.

        Raises:
            ValidationError: If the policy is invalid
        """
        validation = self.validate_lifecycle_policy(policy)
        if not validation.is_valid:
            error = ValidationError(
                f"Invalid lifecycle policy {policy.name!r}: {'; '.join(validation.errors)}",
                field="policy",
            )
            error.details["errors"] = validation.errors
            raise error

        self._policies[policy.name] = policy
        self._statistics.setdefault(
            policy.name, LifecyclePolicyStatistics(policy_name=policy.name)
        )
        logger.info("Lifecycle policy activated", policy=policy.name)

    def validate_lifecycle_policy(self, policy: LifecyclePolicy) -> LifecyclePolicyValidationResult:
        """
        Check a policy for structural errors.

        Args:
            policy: Policy to check

        Returns:
            Validation result listing every problem found
        """
        result = LifecyclePolicyValidationResult(policy_name=policy.name)

        if not policy.name or not policy.name.strip():
            result.add_error("Policy name is required")

        if not policy.container_pattern or not policy.container_pattern.strip():
            result.add_error("Container pattern is required")
        else:
            try:
                re.compile(policy.container_pattern)
            except re.error as e:
                result.add_error(f"Invalid container pattern {policy.container_pattern!r}: {e}")

        if policy.file_pattern:
            try:
                re.compile(policy.file_pattern)
            except re.error as e:
                result.add_error(f"Invalid file pattern {policy.file_pattern!r}: {e}")

        if not policy.rules:
            result.add_error("At least one rule is required")

        for index, rule in enumerate(policy.rules):
            if rule.days_after_creation <= 0 and rule.days_after_modification <= 0:
                result.add_error(
                    f"Rule {index} must have days_after_creation or "
                    f"days_after_modification greater than 0"
                )
            if (
                rule.minimum_file_size is not None
                and rule.maximum_file_size is not None
                and rule.minimum_file_size > rule.maximum_file_size
            ):
                result.add_error(
                    f"Rule {index} minimum_file_size cannot be greater than maximum_file_size"
                )

        if not result.is_valid:
            logger.warning(
                "Lifecycle policy failed validation",
                policy=policy.name,
                errors=result.errors,
            )

        return result

    async def apply_lifecycle_policies(
        self,
        container_name: Optional[str] = None,
    ) -> LifecycleRunResult:
        """
        Apply every enabled policy.

        Args:
            container_name: Restrict the pass to one container. Without it,
                every container whose name matches a policy pattern is processed.

        Returns:
            Summary of the pass
        """
        run = LifecycleRunResult(started_at=self._clock())
        enabled = [p for p in self._policies.values() if p.is_enabled]

        if container_name:
            containers = [container_name]
        else:
            containers = [
                name for name in await self.storage.list_containers()
                if not name.endswith(self.ARCHIVE_SUFFIX)
            ]

        processed = set()
        for policy in enabled:
            for container in containers:
                if not re.search(policy.container_pattern, container):
                    continue
                processed.add(container)

                try:
                    await self._apply_policy_to_container(policy, container, run)
                    logger.info(
                        "Applied lifecycle policy",
                        policy=policy.name,
                        container=container,
                    )
                except Exception as e:
                    run.errors += 1
                    self._statistics[policy.name].errors += 1
                    logger.error(
                        "Error applying lifecycle policy",
                        policy=policy.name,
                        container=container,
                        error=str(e),
                    )

        run.containers_processed = len(processed)
        run.completed_at = self._clock()
        self._last_execution = run.completed_at

        logger.info(
            "Lifecycle policies applied",
            containers=run.containers_processed,
            files=run.files_processed,
            actions=run.actions_applied,
            errors=run.errors,
        )
        return run

    async def get_lifecycle_statistics(self) -> LifecycleStatistics:
        """Aggregate per-policy counters accumulated in this process."""
        policies = {
            name: stats.model_copy()
            for name, stats in self._statistics.items()
            if name in self._policies
        }

        return LifecycleStatistics(
            total_policies=len(self._policies),
            enabled_policies=sum(1 for p in self._policies.values() if p.is_enabled),
            total_files_processed=sum(s.files_processed for s in policies.values()),
            total_files_deleted=sum(s.files_deleted for s in policies.values()),
            total_files_archived=sum(s.files_archived for s in policies.values()),
            total_files_moved=sum(s.files_moved for s in policies.values()),
            total_files_compressed=sum(s.files_compressed for s in policies.values()),
            total_errors=sum(s.errors for s in policies.values()),
            total_bytes_reclaimed=sum(s.bytes_reclaimed for s in policies.values()),
            last_execution=self._last_execution,
            policies=policies,
        )

    def should_apply_rule(self, rule: LifecycleRule, metadata: StorageFileMetadata) -> bool:
        """
        Check whether every configured predicate of a rule holds.

        Ages are whole days. A missing timestamp never satisfies an age predicate.
        """
        now = self._clock()

        if rule.days_after_creation > 0:
            created_at = metadata.effective_created_at
            if created_at is None or (now - created_at).days < rule.days_after_creation:
                return False

        if rule.days_after_modification > 0:
            if metadata.last_modified is None:
                return False
            if (now - metadata.last_modified).days < rule.days_after_modification:
                return False

        if rule.minimum_file_size is not None and metadata.size < rule.minimum_file_size:
            return False

        if rule.maximum_file_size is not None and metadata.size > rule.maximum_file_size:
            return False

        return True

    async def _apply_policy_to_container(
        self,
        policy: LifecyclePolicy,
        container_name: str,
        run: LifecycleRunResult,
    ) -> None:
        stats = self._statistics[policy.name]
        file_regex = re.compile(policy.file_pattern) if policy.file_pattern else None

        files = await self.storage.list_files(container_name)

        for file_info in files:
            if file_info.is_directory:
                continue
            if file_regex and not file_regex.search(file_info.name):
                continue

            stats.files_processed += 1
            run.files_processed += 1

            try:
                metadata = await self.storage.get_metadata(container_name, file_info.name)

                for rule in policy.rules:
                    if not self.should_apply_rule(rule, metadata):
                        continue

                    await self._apply_rule_action(rule, container_name, metadata, stats)
                    run.actions_applied += 1

                    # Object no longer exists at this location
                    if rule.action in (LifecycleAction.DELETE, LifecycleAction.ARCHIVE):
                        break

            except Exception as e:
                stats.errors += 1
                run.errors += 1
                logger.error(
                    "Error applying lifecycle rule",
                    policy=policy.name,
                    container=container_name,
                    file=file_info.name,
                    error=str(e),
                )

        stats.last_execution = self._clock()

    async def _apply_rule_action(
        self,
        rule: LifecycleRule,
        container_name: str,
        metadata: StorageFileMetadata,
        stats: LifecyclePolicyStatistics,
    ) -> None:
        file_name = metadata.name

        if rule.action == LifecycleAction.DELETE:
            await self.storage.delete(container_name, file_name)
            stats.files_deleted += 1
            stats.bytes_reclaimed += metadata.size
            logger.info(
                "Deleted file due to lifecycle rule",
                container=container_name,
                file=file_name,
            )

        elif rule.action == LifecycleAction.ARCHIVE:
            await self._archive_file(container_name, file_name)
            stats.files_archived += 1
            logger.info(
                "Archived file due to lifecycle rule",
                container=container_name,
                file=file_name,
            )

        elif rule.action == LifecycleAction.MOVE_TO_STORAGE_CLASS:
            if await self._move_to_storage_class(container_name, file_name, rule.target_storage_class):
                stats.files_moved += 1

        elif rule.action == LifecycleAction.COMPRESS:
            saved = await self._compress_file(container_name, metadata)
            if saved is not None:
                stats.files_compressed += 1
                stats.bytes_reclaimed += max(saved, 0)

        else:
            logger.warning("Unknown lifecycle action", action=rule.action)

    async def _archive_file(self, container_name: str, file_name: str) -> None:
        archive_container = f"{container_name}{self.ARCHIVE_SUFFIX}"
        await self.storage.create_container(archive_container)
        await self.storage.copy(container_name, file_name, archive_container, file_name)
        await self.storage.delete(container_name, file_name)

    async def _move_to_storage_class(
        self,
        container_name: str,
        file_name: str,
        storage_class: str,
    ) -> bool:
        try:
            await self.storage.set_storage_class(container_name, file_name, storage_class)
        except NotImplementedError:
            logger.info(
                "Storage provider does not support storage classes",
                container=container_name,
                file=file_name,
                storage_class=storage_class,
            )
            return False

        logger.info(
            "Moved file to storage class due to lifecycle rule",
            container=container_name,
            file=file_name,
            storage_class=storage_class,
        )
        return True

    async def _compress_file(
        self,
        container_name: str,
        metadata: StorageFileMetadata,
    ) -> Optional[int]:
        """Gzip an object in place. Returns bytes saved, or None when skipped."""
        if metadata.metadata.get("content-encoding") == self.GZIP_ENCODING:
            return None

        original = await read_stream(
            await self.storage.download(container_name, metadata.name)
        )
        compressed = await compress(original)

        await self.storage.upload(
            container_name,
            metadata.name,
            as_stream(compressed),
            metadata.content_type or "application/octet-stream",
            {
                **{k: v for k, v in metadata.metadata.items() if k != "storage-class"},
                "content-encoding": self.GZIP_ENCODING,
                "original-size": str(len(original)),
            },
        )

        logger.info(
            "Compressed file due to lifecycle rule",
            container=container_name,
            file=metadata.name,
            original_size=len(original),
            compressed_size=len(compressed),
        )
        return len(original) - len(compressed)
