"""
Storage orchestration services.

Security validation, lifecycle policies, backup and disaster recovery,
and monitoring over pluggable storage providers.
"""

from .backup import StorageBackupService
from .background import (
    BackupScheduler,
    LifecycleScheduler,
    MonitoringScheduler,
    PeriodicTask,
    StorageBackgroundServices,
)
from .lifecycle import StorageLifecycleService
from .monitoring import OperationMonitor, StorageMonitoringService
from .security import StorageSecurityService
from .service import StorageService

__all__ = [
    "StorageService",
    "StorageSecurityService",
    "StorageLifecycleService",
    "StorageBackupService",
    "StorageMonitoringService",
    "OperationMonitor",
    "PeriodicTask",
    "BackupScheduler",
    "LifecycleScheduler",
    "MonitoringScheduler",
    "StorageBackgroundServices",
]
