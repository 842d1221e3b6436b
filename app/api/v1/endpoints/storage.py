"""
Storage operations endpoints.

Provides REST endpoints for:
- Storage health, metrics, usage and threshold alerts
- Backup creation, listing, validation, restore and deletion
- Disaster recovery scenarios and self-test
- Lifecycle policy management and execution
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.core.dependencies import (
    get_backup_service,
    get_lifecycle_service,
    get_monitoring_service,
    get_security_service,
)
from app.core.logging import get_logger
from app.domain.schemas.storage import (
    BackupInfo,
    BackupResult,
    BackupStatistics,
    BackupValidationResult,
    DisasterRecoveryRequest,
    DisasterRecoveryResult,
    DisasterRecoveryTestResult,
    LifecyclePolicy,
    LifecycleRunResult,
    LifecycleStatistics,
    RestoreResult,
    SecurityEvent,
    StorageHealthStatus,
    ThresholdAlert,
    UsageStatistics,
)
from app.services.storage import (
    StorageBackupService,
    StorageLifecycleService,
    StorageMonitoringService,
    StorageSecurityService,
)

logger = get_logger(__name__)
router = APIRouter()


# Request Models

class CreateBackupRequest(BaseModel):
    """Backup creation request."""
    container_name: str = Field(..., min_length=1)


class RestoreBackupRequest(BaseModel):
    """Backup restore request."""
    target_container: Optional[str] = Field(default=None, description="Defaults to the source container")


# Monitoring

@router.get("/health", response_model=StorageHealthStatus)
async def storage_health(
    monitoring: StorageMonitoringService = Depends(get_monitoring_service),
) -> StorageHealthStatus:
    """Health derived from the last five minutes of operations."""
    return await monitoring.get_health_status()


@router.get("/metrics")
async def storage_metrics(
    period_minutes: int = Query(60, ge=1, le=24 * 60),
    monitoring: StorageMonitoringService = Depends(get_monitoring_service),
) -> Dict[str, Any]:
    """Aggregated operation metrics over a trailing period."""
    metrics = await monitoring.get_metrics(timedelta(minutes=period_minutes))
    return {
        **metrics.model_dump(mode="json"),
        "success_rate": metrics.success_rate,
        "error_rate": metrics.error_rate,
    }


@router.get("/usage", response_model=UsageStatistics)
async def storage_usage(
    refresh: bool = Query(False, description="Bypass the cached figures"),
    monitoring: StorageMonitoringService = Depends(get_monitoring_service),
) -> UsageStatistics:
    return await monitoring.get_usage_statistics(force_refresh=refresh)


@router.get("/alerts", response_model=List[ThresholdAlert])
async def storage_alerts(
    monitoring: StorageMonitoringService = Depends(get_monitoring_service),
) -> List[ThresholdAlert]:
    return await monitoring.check_thresholds()


@router.get("/security/events", response_model=List[SecurityEvent])
async def security_events(
    limit: int = Query(100, ge=1, le=1000),
    security: StorageSecurityService = Depends(get_security_service),
) -> List[SecurityEvent]:
    """Most recent audit events, newest last."""
    return security.get_security_events(limit)


# Backups

@router.get("/backups", response_model=List[BackupInfo])
async def list_backups(
    container: Optional[str] = Query(None, description="Only backups of this container"),
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> List[BackupInfo]:
    return await backup_service.list_backups(container)


@router.post("/backups", response_model=BackupResult, status_code=status.HTTP_201_CREATED)
async def create_backup(
    request: CreateBackupRequest,
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> BackupResult:
    result = await backup_service.create_backup(request.container_name)
    logger.info(
        "Backup requested",
        container=request.container_name,
        backup_id=result.backup_id,
        success=result.is_success,
    )
    return result


@router.get("/backups/statistics", response_model=BackupStatistics)
async def backup_statistics(
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> BackupStatistics:
    return await backup_service.get_backup_statistics()


@router.get("/backups/{backup_id}/validate", response_model=BackupValidationResult)
async def validate_backup(
    backup_id: str,
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> BackupValidationResult:
    return await backup_service.validate_backup(backup_id)


@router.post("/backups/{backup_id}/restore", response_model=RestoreResult)
async def restore_backup(
    backup_id: str,
    request: RestoreBackupRequest,
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> RestoreResult:
    return await backup_service.restore_backup(backup_id, request.target_container)


@router.delete("/backups/{backup_id}")
async def delete_backup(
    backup_id: str,
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> Dict[str, Any]:
    deleted = await backup_service.delete_backup(backup_id)
    return {"backup_id": backup_id, "deleted_files": deleted}


# Disaster recovery

@router.post("/disaster-recovery", response_model=DisasterRecoveryResult)
async def disaster_recovery(
    request: DisasterRecoveryRequest,
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> DisasterRecoveryResult:
    logger.warning(
        "Disaster recovery requested",
        scenario=request.scenario.value,
        container=request.container_name,
    )
    return await backup_service.perform_disaster_recovery(request)


@router.post("/disaster-recovery/test", response_model=DisasterRecoveryTestResult)
async def disaster_recovery_test(
    backup_service: StorageBackupService = Depends(get_backup_service),
) -> DisasterRecoveryTestResult:
    return await backup_service.test_disaster_recovery()


# Lifecycle

@router.get("/lifecycle/policies", response_model=List[LifecyclePolicy])
async def lifecycle_policies(
    lifecycle: StorageLifecycleService = Depends(get_lifecycle_service),
) -> List[LifecyclePolicy]:
    return lifecycle.policies


@router.post(
    "/lifecycle/policies",
    response_model=LifecyclePolicy,
    status_code=status.HTTP_201_CREATED,
)
async def add_lifecycle_policy(
    policy: LifecyclePolicy,
    lifecycle: StorageLifecycleService = Depends(get_lifecycle_service),
) -> LifecyclePolicy:
    """Validate and activate a policy. Invalid policies are rejected with 422."""
    lifecycle.add_policy(policy)
    return policy


@router.post("/lifecycle/apply", response_model=LifecycleRunResult)
async def apply_lifecycle(
    container: Optional[str] = Query(None, description="Restrict the pass to one container"),
    lifecycle: StorageLifecycleService = Depends(get_lifecycle_service),
) -> LifecycleRunResult:
    return await lifecycle.apply_lifecycle_policies(container)


@router.get("/lifecycle/statistics", response_model=LifecycleStatistics)
async def lifecycle_statistics(
    lifecycle: StorageLifecycleService = Depends(get_lifecycle_service),
) -> LifecycleStatistics:
    return await lifecycle.get_lifecycle_statistics()
