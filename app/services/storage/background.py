"""
Background loops for scheduled storage maintenance.

Each loop runs one cycle, then sleeps for its interval. A failing cycle
is logged and the loop carries on; stopping cancels the task.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.services.storage.backup import StorageBackupService
from app.services.storage.lifecycle import StorageLifecycleService
from app.services.storage.monitoring import StorageMonitoringService

logger = get_logger(__name__)


class PeriodicTask(ABC):
    """Runs ``run_once`` every ``interval`` seconds until stopped."""

    name: str = "periodic-task"

    def __init__(self, interval: float):
        self.interval = interval
        self.cycles = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def run_once(self) -> None:
        """Execute a single cycle."""
        pass

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Background task started", task=self.name, interval_seconds=self.interval)

    async def stop(self) -> None:
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Background task stopped", task=self.name, cycles=self.cycles)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in background task", task=self.name, error=str(e))
            finally:
                self.cycles += 1

            await asyncio.sleep(self.interval)


class BackupScheduler(PeriodicTask):
    """Backs up the configured containers, then prunes expired backups."""

    name = "storage-backup"

    def __init__(self, backup_service: StorageBackupService, settings: Settings):
        super().__init__(settings.STORAGE_BACKUP_INTERVAL_SECONDS)
        self.backup_service = backup_service
        self.containers = list(settings.STORAGE_BACKUP_CONTAINERS)

    async def run_once(self) -> None:
        logger.info("Starting scheduled backup", containers=self.containers)

        for container_name in self.containers:
            result = await self.backup_service.create_backup(container_name)
            if result.is_success:
                logger.info(
                    "Scheduled backup completed",
                    container=container_name,
                    backup_id=result.backup_id,
                )
            else:
                logger.error(
                    "Scheduled backup failed",
                    container=container_name,
                    error=result.error_message,
                )

        await self.backup_service.cleanup_expired_backups()


class LifecycleScheduler(PeriodicTask):
    """Applies lifecycle policies to every matching container."""

    name = "storage-lifecycle"

    def __init__(self, lifecycle_service: StorageLifecycleService, settings: Settings):
        super().__init__(settings.STORAGE_LIFECYCLE_INTERVAL_SECONDS)
        self.lifecycle_service = lifecycle_service

    async def run_once(self) -> None:
        await self.lifecycle_service.apply_lifecycle_policies()


class MonitoringScheduler(PeriodicTask):
    """Checks thresholds and dispatches any alerts raised."""

    name = "storage-monitoring"

    def __init__(self, monitoring_service: StorageMonitoringService, settings: Settings):
        super().__init__(settings.STORAGE_METRICS_INTERVAL_SECONDS)
        self.monitoring_service = monitoring_service

    async def run_once(self) -> None:
        alerts = await self.monitoring_service.check_thresholds()
        for alert in alerts:
            await self.monitoring_service.send_alert(alert)


class StorageBackgroundServices:
    """Starts and stops the enabled maintenance loops together."""

    def __init__(
        self,
        backup_service: StorageBackupService,
        lifecycle_service: StorageLifecycleService,
        monitoring_service: StorageMonitoringService,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.tasks: List[PeriodicTask] = []

        if settings.STORAGE_ENABLE_BACKUP:
            self.tasks.append(BackupScheduler(backup_service, settings))
        else:
            logger.info("Backup service is disabled")

        self.tasks.append(LifecycleScheduler(lifecycle_service, settings))

        if settings.STORAGE_ENABLE_MONITORING:
            self.tasks.append(MonitoringScheduler(monitoring_service, settings))
        else:
            logger.info("Storage monitoring is disabled")

    async def start(self) -> None:
        for task in self.tasks:
            await task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self.tasks))
