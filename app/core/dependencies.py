"""
Dependency injection for FastAPI.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from app.core.config import Settings, get_settings
from app.domain.interfaces.storage import ICacheService, IStorageService
from app.services.storage import (
    StorageBackgroundServices,
    StorageBackupService,
    StorageLifecycleService,
    StorageMonitoringService,
    StorageSecurityService,
    StorageService,
)


@dataclass
class StorageServices:
    """Wired set of storage orchestration services."""
    storage: IStorageService
    cache: ICacheService
    security: StorageSecurityService
    monitoring: StorageMonitoringService
    lifecycle: StorageLifecycleService
    backup: StorageBackupService
    facade: StorageService
    background: StorageBackgroundServices


def build_storage_services(
    storage: IStorageService,
    cache: ICacheService,
    backup_storage: Optional[IStorageService] = None,
    settings: Optional[Settings] = None,
) -> StorageServices:
    """
    Wire every orchestration service over a provider and a cache.

    Args:
        storage: Primary storage provider
        cache: Cache for counters, metrics and usage figures
        backup_storage: Provider receiving backup sets (defaults to primary)
        settings: Application settings

    Returns:
        Service bundle
    """
    settings = settings or get_settings()

    security = StorageSecurityService(cache, settings)
    monitoring = StorageMonitoringService(storage, cache, settings)
    lifecycle = StorageLifecycleService(storage, settings)
    backup = StorageBackupService(storage, backup_storage, settings)

    return StorageServices(
        storage=storage,
        cache=cache,
        security=security,
        monitoring=monitoring,
        lifecycle=lifecycle,
        backup=backup,
        facade=StorageService(storage, security, monitoring),
        background=StorageBackgroundServices(backup, lifecycle, monitoring, settings),
    )


def get_storage_services(request: Request) -> StorageServices:
    """
    Get the service bundle attached to the application.

    Raises:
        HTTPException: If storage services have not been initialized
    """
    services = getattr(request.app.state, "storage_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage services are not initialized",
        )
    return services


def get_backup_service(request: Request) -> StorageBackupService:
    return get_storage_services(request).backup


def get_lifecycle_service(request: Request) -> StorageLifecycleService:
    return get_storage_services(request).lifecycle


def get_monitoring_service(request: Request) -> StorageMonitoringService:
    return get_storage_services(request).monitoring


def get_security_service(request: Request) -> StorageSecurityService:
    return get_storage_services(request).security
