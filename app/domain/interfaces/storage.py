"""
Storage provider and cache service interfaces.

Vendor connectors (S3, Azure Blob, MinIO) implement ``IStorageService``;
the orchestration services only talk to these contracts.
"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, BinaryIO, Dict, List, Optional

from app.domain.schemas.storage import (
    StorageFileInfo,
    StorageFileMetadata,
    StoragePermissions,
    StorageUsageInfo,
)


class IStorageService(ABC):
    """Interface for object storage providers."""

    @abstractmethod
    async def upload(
        self,
        container_name: str,
        file_name: str,
        content: BinaryIO,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Upload an object and return its URI."""
        pass

    @abstractmethod
    async def download(
        self,
        container_name: str,
        file_name: str,
    ) -> BinaryIO:
        """Download an object as a readable stream."""
        pass

    @abstractmethod
    async def download_to_file(
        self,
        container_name: str,
        file_name: str,
        local_path: str,
    ) -> None:
        """Download an object to a local path."""
        pass

    @abstractmethod
    async def delete(
        self,
        container_name: str,
        file_name: str,
    ) -> bool:
        """Delete an object. Returns False when it did not exist."""
        pass

    @abstractmethod
    async def delete_batch(
        self,
        container_name: str,
        file_names: List[str],
    ) -> int:
        """Delete several objects and return how many were removed."""
        pass

    @abstractmethod
    async def exists(
        self,
        container_name: str,
        file_name: str,
    ) -> bool:
        """Check whether an object exists."""
        pass

    @abstractmethod
    async def get_metadata(
        self,
        container_name: str,
        file_name: str,
    ) -> StorageFileMetadata:
        """Get object metadata."""
        pass

    @abstractmethod
    async def list_files(
        self,
        container_name: str,
        prefix: Optional[str] = None,
    ) -> List[StorageFileInfo]:
        """List objects in a container, optionally under a prefix."""
        pass

    @abstractmethod
    async def get_presigned_url(
        self,
        container_name: str,
        file_name: str,
        expiration: timedelta,
        permissions: StoragePermissions = StoragePermissions.READ,
    ) -> str:
        """Generate a time-limited URL for an object."""
        pass

    @abstractmethod
    async def create_container(self, container_name: str) -> None:
        """Create a container if it does not already exist."""
        pass

    @abstractmethod
    async def delete_container(self, container_name: str) -> None:
        """Delete a container and everything in it."""
        pass

    @abstractmethod
    async def list_containers(self) -> List[str]:
        """List container names."""
        pass

    @abstractmethod
    async def copy(
        self,
        source_container: str,
        source_file: str,
        destination_container: str,
        destination_file: str,
    ) -> None:
        """Copy an object, possibly across containers."""
        pass

    @abstractmethod
    async def get_usage(self, container_name: str) -> StorageUsageInfo:
        """Get size and object count for a container."""
        pass

    async def set_storage_class(
        self,
        container_name: str,
        file_name: str,
        storage_class: str,
    ) -> None:
        """Change an object's storage tier. Providers without tiers leave this unimplemented."""
        raise NotImplementedError(
            f"{type(self).__name__} does not support storage classes"
        )


class ICacheService(ABC):
    """Interface for the key/value cache."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Get a cached value."""
        pass

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        expire: Optional[int] = None,
    ) -> bool:
        """Set a value with an optional TTL in seconds."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a key exists."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key."""
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check connectivity, raising when the backend is unreachable."""
        pass

    @abstractmethod
    async def increment(
        self,
        key: str,
        expire: Optional[int] = None,
    ) -> int:
        """
        Atomically increment a counter.

        The TTL is applied when the counter is created and left untouched
        on later increments, so the window is fixed from the first hit.
        """
        pass
