"""
Secured and monitored storage facade.

Wraps a storage provider so that uploads and downloads pass the security
pipeline, content is encrypted at rest, and every call is timed by the
monitoring service.
"""

import asyncio
import io
from datetime import timedelta
from typing import BinaryIO, Dict, List, Optional

from app.core.exceptions import SecurityViolationError
from app.core.logging import get_logger, log_storage_operation
from app.domain.interfaces.storage import IStorageService
from app.domain.schemas.storage import (
    StorageFileInfo,
    StorageFileMetadata,
    StoragePermissions,
)
from app.services.storage.monitoring import StorageMonitoringService
from app.services.storage.security import StorageSecurityService

logger = get_logger(__name__)


class StorageService:
    """Entry point for callers that read and write registry content."""

    def __init__(
        self,
        storage: IStorageService,
        security: StorageSecurityService,
        monitoring: StorageMonitoringService,
    ):
        self.storage = storage
        self.security = security
        self.monitoring = monitoring

    async def upload(
        self,
        container_name: str,
        file_name: str,
        content: BinaryIO,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
        client_ip: Optional[str] = None,
    ) -> str:
        """
        Validate, encrypt and store an object.

        Args:
            container_name: Destination container
            file_name: Object name
            content: Seekable content stream
            content_type: Declared MIME type
            metadata: Custom metadata stored with the object
            client_ip: Address of the uploading client

        Returns:
            URI of the stored object

        Raises:
            SecurityViolationError: If validation rejects the file
        """
        validation = await self.security.validate_file_upload(
            file_name, content, content_type, client_ip
        )
        if not validation.is_valid:
            logger.warning(
                "Upload rejected",
                **log_storage_operation("upload", container_name, file_name),
                errors=validation.errors,
                client_ip=client_ip,
            )
            raise SecurityViolationError(validation.errors, operation="upload")

        content.seek(0)
        size = content.seek(0, io.SEEK_END)
        content.seek(0)

        with self.monitoring.start_operation_monitoring("upload", container_name, file_name) as monitor:
            try:
                payload = await self.security.encrypt_content(content)
                uri = await self.storage.upload(
                    container_name, file_name, payload, content_type, metadata
                )
            except Exception as e:
                logger.error(
                    "Upload failed",
                    **log_storage_operation("upload", container_name, file_name),
                    error=str(e),
                )
                raise

            monitor.record_success(size)

        logger.info(
            "File uploaded",
            **log_storage_operation("upload", container_name, file_name, size=size),
        )
        return uri

    async def download(
        self,
        container_name: str,
        file_name: str,
        client_ip: Optional[str] = None,
    ) -> BinaryIO:
        """
        Validate the request, fetch and decrypt an object.

        Raises:
            SecurityViolationError: If the client is blocked or rate limited
        """
        validation = await self.security.validate_file_download(
            container_name, file_name, client_ip
        )
        if not validation.is_valid:
            logger.warning(
                "Download rejected",
                **log_storage_operation("download", container_name, file_name),
                errors=validation.errors,
                client_ip=client_ip,
            )
            raise SecurityViolationError(validation.errors, operation="download")

        with self.monitoring.start_operation_monitoring("download", container_name, file_name) as monitor:
            try:
                stream = await self.storage.download(container_name, file_name)
                content = await self.security.decrypt_content(stream)
            except Exception as e:
                logger.error(
                    "Download failed",
                    **log_storage_operation("download", container_name, file_name),
                    error=str(e),
                )
                raise

            size = content.seek(0, io.SEEK_END)
            content.seek(0)
            monitor.record_success(size)

        if client_ip:
            await self.security.update_rate_limit(client_ip, "download")

        return content

    async def delete(self, container_name: str, file_name: str) -> bool:
        with self.monitoring.start_operation_monitoring("delete", container_name, file_name):
            deleted = await self.storage.delete(container_name, file_name)

        if deleted:
            logger.info("File deleted", **log_storage_operation("delete", container_name, file_name))
        return deleted

    async def delete_batch(self, container_name: str, file_names: List[str]) -> int:
        """
        Delete objects concurrently.

        Individual failures are logged; the count of removed objects is returned.
        """
        with self.monitoring.start_operation_monitoring("delete_batch", container_name):
            results = await asyncio.gather(
                *(self.storage.delete(container_name, name) for name in file_names),
                return_exceptions=True,
            )

        deleted = 0
        for name, outcome in zip(file_names, results):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Batch delete failed for file",
                    **log_storage_operation("delete_batch", container_name, name),
                    error=str(outcome),
                )
            elif outcome:
                deleted += 1

        logger.info(
            "Batch delete completed",
            container=container_name,
            requested=len(file_names),
            deleted=deleted,
        )
        return deleted

    async def exists(self, container_name: str, file_name: str) -> bool:
        with self.monitoring.start_operation_monitoring("exists", container_name, file_name):
            return await self.storage.exists(container_name, file_name)

    async def get_metadata(self, container_name: str, file_name: str) -> StorageFileMetadata:
        with self.monitoring.start_operation_monitoring("get_metadata", container_name, file_name):
            return await self.storage.get_metadata(container_name, file_name)

    async def list_files(
        self,
        container_name: str,
        prefix: Optional[str] = None,
    ) -> List[StorageFileInfo]:
        with self.monitoring.start_operation_monitoring("list", container_name):
            return await self.storage.list_files(container_name, prefix)

    async def copy(
        self,
        source_container: str,
        source_file: str,
        destination_container: str,
        destination_file: str,
    ) -> None:
        with self.monitoring.start_operation_monitoring("copy", source_container, source_file):
            await self.storage.copy(
                source_container, source_file, destination_container, destination_file
            )

    async def get_presigned_url(
        self,
        container_name: str,
        file_name: str,
        expiration: timedelta = timedelta(hours=1),
        permissions: StoragePermissions = StoragePermissions.READ,
    ) -> str:
        with self.monitoring.start_operation_monitoring("presigned_url", container_name, file_name):
            return await self.storage.get_presigned_url(
                container_name, file_name, expiration, permissions
            )
