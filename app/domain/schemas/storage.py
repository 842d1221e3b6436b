"""
Domain schemas for storage orchestration.

Defines data models shared by the security pipeline, lifecycle engine,
backup and disaster recovery engine, and monitoring service.
"""

from datetime import datetime
from enum import Enum, IntFlag
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoragePermissions(IntFlag):
    """Permissions granted by a presigned URL."""
    NONE = 0
    READ = 1
    WRITE = 2
    DELETE = 4
    READ_WRITE = READ | WRITE
    FULL = READ | WRITE | DELETE


class StorageFileInfo(BaseModel):
    """Listing entry returned by a storage provider."""
    name: str
    size: int = 0
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    e_tag: Optional[str] = None
    is_directory: bool = False


class StorageFileMetadata(BaseModel):
    """Full metadata for a stored object."""
    name: str
    size: int = 0
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    created_at: Optional[datetime] = None
    e_tag: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def effective_created_at(self) -> Optional[datetime]:
        """Creation time, falling back to last modification."""
        return self.created_at or self.last_modified


class StorageUsageInfo(BaseModel):
    """Usage totals for a single container."""
    container_name: str
    total_size: int = 0
    file_count: int = 0
    last_updated: datetime = Field(default_factory=datetime.utcnow)


# Backup ------------------------------------------------------------------


class BackupType(str, Enum):
    """Kinds of backup sets."""
    FULL = "full"
    INCREMENTAL = "incremental"


class BackupFileEntry(BaseModel):
    """One object captured in a backup set."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str
    original_size: int
    compressed_size: int
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    e_tag: Optional[str] = None
    backup_file_name: str


class BackupManifest(BaseModel):
    """Manifest stored alongside every backup set as ``{backupId}/manifest.json``."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    backup_id: str
    container_name: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    backup_type: BackupType = BackupType.FULL
    file_count: int = 0
    total_size: int = 0
    files: List[BackupFileEntry] = Field(default_factory=list)

    def to_json(self) -> str:
        """Serialize using the camelCase wire names."""
        return self.model_dump_json(by_alias=True, indent=2)


class FileOutcome(BaseModel):
    """Per-object outcome of a multi-file workflow."""
    file_name: str
    success: bool
    error: Optional[str] = None


class BackupResult(BaseModel):
    """Result of a backup run."""
    backup_id: str
    container_name: str
    is_success: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    file_count: int = 0
    total_size: int = 0
    compressed_size: int = 0
    error_message: Optional[str] = None
    file_results: List[FileOutcome] = Field(default_factory=list)

    @property
    def failed_files(self) -> List[FileOutcome]:
        return [r for r in self.file_results if not r.success]


class RestoreResult(BaseModel):
    """Result of restoring a backup set."""
    backup_id: str
    source_container: Optional[str] = None
    target_container: Optional[str] = None
    is_success: bool = False
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    restored_files: int = 0
    restored_bytes: int = 0
    error_message: Optional[str] = None
    file_results: List[FileOutcome] = Field(default_factory=list)

    @property
    def failed_files(self) -> List[FileOutcome]:
        return [r for r in self.file_results if not r.success]


class BackupInfo(BaseModel):
    """Summary of a backup set read from its manifest."""
    backup_id: str
    container_name: str
    created_at: datetime
    backup_type: BackupType = BackupType.FULL
    file_count: int = 0
    total_size: int = 0
    compressed_size: int = 0

    @classmethod
    def from_manifest(cls, manifest: BackupManifest) -> "BackupInfo":
        return cls(
            backup_id=manifest.backup_id,
            container_name=manifest.container_name,
            created_at=manifest.created_at,
            backup_type=manifest.backup_type,
            file_count=manifest.file_count,
            total_size=manifest.total_size,
            compressed_size=sum(f.compressed_size for f in manifest.files),
        )


class BackupValidationResult(BaseModel):
    """Integrity check outcome for a backup set."""
    backup_id: str
    is_valid: bool = False
    errors: List[str] = Field(default_factory=list)
    file_count: int = 0
    total_size: int = 0
    validated_at: datetime = Field(default_factory=datetime.utcnow)


class BackupStatistics(BaseModel):
    """Aggregate view over all backup sets."""
    total_backups: int = 0
    total_size: int = 0
    backups_by_container: Dict[str, int] = Field(default_factory=dict)
    oldest_backup: Optional[datetime] = None
    newest_backup: Optional[datetime] = None
    calculated_at: datetime = Field(default_factory=datetime.utcnow)


class DisasterRecoveryScenario(str, Enum):
    """Supported recovery scenarios."""
    CONTAINER_CORRUPTION = "container_corruption"
    REGIONAL_OUTAGE = "regional_outage"
    DATA_LOSS = "data_loss"


class DisasterRecoveryRequest(BaseModel):
    """Request to run a recovery scenario."""
    scenario: DisasterRecoveryScenario
    container_name: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class DisasterRecoveryResult(BaseModel):
    """Outcome of a recovery scenario."""
    scenario: DisasterRecoveryScenario
    is_success: bool = False
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    recovery_actions: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class DisasterRecoveryTestCase(BaseModel):
    """One step of the recovery self-test."""
    name: str
    is_success: bool = False
    backup_id: Optional[str] = None
    duration_seconds: float = 0.0
    error_message: Optional[str] = None


class DisasterRecoveryTestResult(BaseModel):
    """Outcome of the recovery self-test."""
    is_success: bool = False
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    test_cases: List[DisasterRecoveryTestCase] = Field(default_factory=list)
    error_message: Optional[str] = None


# Lifecycle ---------------------------------------------------------------


class LifecycleAction(str, Enum):
    """Actions a lifecycle rule can take on an object."""
    DELETE = "delete"
    ARCHIVE = "archive"
    MOVE_TO_STORAGE_CLASS = "move_to_storage_class"
    COMPRESS = "compress"


class LifecycleRule(BaseModel):
    """Age and size predicates plus the action taken when they all hold."""
    action: LifecycleAction
    days_after_creation: int = 0
    days_after_modification: int = 0
    minimum_file_size: Optional[int] = None
    maximum_file_size: Optional[int] = None
    target_storage_class: str = "archive"


class LifecyclePolicy(BaseModel):
    """Named set of rules applied to containers matching a pattern."""
    name: str
    is_enabled: bool = True
    container_pattern: str
    file_pattern: Optional[str] = None
    rules: List[LifecycleRule] = Field(default_factory=list)


class LifecyclePolicyValidationResult(BaseModel):
    """Outcome of checking a policy before it is activated."""
    policy_name: str
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.is_valid = False


class LifecyclePolicyStatistics(BaseModel):
    """Counters accumulated for one policy."""
    policy_name: str
    files_processed: int = 0
    files_deleted: int = 0
    files_archived: int = 0
    files_moved: int = 0
    files_compressed: int = 0
    errors: int = 0
    bytes_reclaimed: int = 0
    last_execution: Optional[datetime] = None


class LifecycleStatistics(BaseModel):
    """Counters accumulated across all policies."""
    total_policies: int = 0
    enabled_policies: int = 0
    total_files_processed: int = 0
    total_files_deleted: int = 0
    total_files_archived: int = 0
    total_files_moved: int = 0
    total_files_compressed: int = 0
    total_errors: int = 0
    total_bytes_reclaimed: int = 0
    last_execution: Optional[datetime] = None
    policies: Dict[str, LifecyclePolicyStatistics] = Field(default_factory=dict)


class LifecycleRunResult(BaseModel):
    """Summary of a single lifecycle pass."""
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    containers_processed: int = 0
    files_processed: int = 0
    actions_applied: int = 0
    errors: int = 0


# Security ----------------------------------------------------------------


class SecurityValidationResult(BaseModel):
    """Accumulated outcome of a validation call. Never raised."""
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.is_valid = False


class VirusScanResult(BaseModel):
    """Outcome of a content signature scan."""
    is_clean: bool
    threat_name: Optional[str] = None
    threat_type: Optional[str] = None
    file_name: str
    scan_timestamp: datetime = Field(default_factory=datetime.utcnow)


class RateLimitStatus(BaseModel):
    """Current standing of a client against its hourly limit."""
    client_id: str
    is_allowed: bool
    current_count: int = 0
    max_allowed: int
    reset_time: datetime


class SecurityEventType(str, Enum):
    """Kinds of audit events."""
    UPLOAD_VALIDATION = "upload_validation"
    DOWNLOAD_VALIDATION = "download_validation"
    VIRUS_SCAN_COMPLETED = "virus_scan_completed"
    ACCESS_DENIED = "access_denied"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class SecurityEvent(BaseModel):
    """Audit trail entry."""
    event_type: SecurityEventType
    container_name: Optional[str] = None
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    client_ip: Optional[str] = None
    is_success: bool = True
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


# Monitoring --------------------------------------------------------------


class OperationType(str, Enum):
    """Storage operation categories derived from operation names."""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    LIST = "list"
    GET_METADATA = "get_metadata"
    COPY = "copy"
    EXISTS = "exists"
    UNKNOWN = "unknown"


class OperationMetric(BaseModel):
    """One timed storage operation."""
    operation_name: str
    operation_type: OperationType = OperationType.UNKNOWN
    container_name: str
    file_name: Optional[str] = None
    is_success: bool
    response_time_ms: float = 0.0
    bytes_transferred: int = 0
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class StorageMetrics(BaseModel):
    """Aggregated metrics over a trailing period."""
    period_start: datetime
    period_end: datetime
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    total_bytes_transferred: int = 0
    average_response_time_ms: float = 0.0
    operations_by_type: Dict[str, int] = Field(default_factory=dict)
    errors_by_type: Dict[str, int] = Field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 1.0
        return self.successful_operations / self.total_operations

    @property
    def error_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.failed_operations / self.total_operations


class HealthState(str, Enum):
    """Overall storage health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class StorageHealthStatus(BaseModel):
    """Health derived from recent operations."""
    state: HealthState = HealthState.HEALTHY
    success_rate: float = 1.0
    average_response_time_ms: float = 0.0
    total_operations: int = 0
    failed_operations: int = 0
    checked_at: datetime = Field(default_factory=datetime.utcnow)
    issues: List[str] = Field(default_factory=list)


class ContainerStatistics(BaseModel):
    """Usage figures for one container."""
    container_name: str
    total_size: int = 0
    file_count: int = 0
    last_updated: Optional[datetime] = None


class UsageStatistics(BaseModel):
    """Usage figures across all containers."""
    total_size: int = 0
    total_files: int = 0
    container_count: int = 0
    containers: List[ContainerStatistics] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)


class AlertType(str, Enum):
    """Threshold alert categories."""
    LOW_SUCCESS_RATE = "low_success_rate"
    HIGH_RESPONSE_TIME = "high_response_time"
    HIGH_ERROR_RATE = "high_error_rate"
    HIGH_USAGE = "high_usage"
    SECURITY_THREAT = "security_threat"
    QUOTA_EXCEEDED = "quota_exceeded"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ThresholdAlert(BaseModel):
    """Raised when a metric crosses its configured threshold."""
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    value: float
    threshold: float
    created_at: datetime = Field(default_factory=datetime.utcnow)
