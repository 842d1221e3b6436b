"""
Domain schemas for the storage orchestration layer.
"""

from .storage import *

__all__ = [
    # Provider contract
    "StoragePermissions",
    "StorageFileInfo",
    "StorageFileMetadata",
    "StorageUsageInfo",

    # Backup and recovery
    "BackupType",
    "BackupFileEntry",
    "BackupManifest",
    "FileOutcome",
    "BackupResult",
    "RestoreResult",
    "BackupInfo",
    "BackupValidationResult",
    "BackupStatistics",
    "DisasterRecoveryScenario",
    "DisasterRecoveryRequest",
    "DisasterRecoveryResult",
    "DisasterRecoveryTestCase",
    "DisasterRecoveryTestResult",

    # Lifecycle
    "LifecycleAction",
    "LifecycleRule",
    "LifecyclePolicy",
    "LifecyclePolicyValidationResult",
    "LifecyclePolicyStatistics",
    "LifecycleStatistics",
    "LifecycleRunResult",

    # Security
    "SecurityValidationResult",
    "VirusScanResult",
    "RateLimitStatus",
    "SecurityEventType",
    "SecurityEvent",

    # Monitoring
    "OperationType",
    "OperationMetric",
    "StorageMetrics",
    "HealthState",
    "StorageHealthStatus",
    "ContainerStatistics",
    "UsageStatistics",
    "AlertType",
    "AlertSeverity",
    "ThresholdAlert",
]
