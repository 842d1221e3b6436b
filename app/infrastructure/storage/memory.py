"""
In-process storage provider.

Keeps containers and objects in dictionaries. Used for local development
and as the reference implementation of ``IStorageService`` in tests.
"""
import asyncio
import hashlib
import io
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional
from urllib.parse import quote

from app.core.exceptions import StorageFileNotFoundError
from app.core.logging import get_logger
from app.domain.interfaces.storage import IStorageService
from app.domain.schemas.storage import (
    StorageFileInfo,
    StorageFileMetadata,
    StoragePermissions,
    StorageUsageInfo,
)

logger = get_logger(__name__)


@dataclass
class _StoredObject:
    content: bytes
    content_type: str
    created_at: datetime
    last_modified: datetime
    metadata: Dict[str, str] = field(default_factory=dict)
    storage_class: str = "standard"

    @property
    def e_tag(self) -> str:
        return hashlib.md5(self.content).hexdigest()


class InMemoryStorageService(IStorageService):
    """Dictionary-backed storage provider."""

    def __init__(
        self,
        base_uri: str = "memory://",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.base_uri = base_uri
        self._clock = clock or datetime.utcnow
        self._containers: Dict[str, Dict[str, _StoredObject]] = {}

    def _container(self, container_name: str) -> Dict[str, _StoredObject]:
        container = self._containers.get(container_name)
        if container is None:
            raise StorageFileNotFoundError(container_name)
        return container

    def _object(self, container_name: str, file_name: str) -> _StoredObject:
        obj = self._container(container_name).get(file_name)
        if obj is None:
            raise StorageFileNotFoundError(container_name, file_name)
        return obj

    async def upload(
        self,
        container_name: str,
        file_name: str,
        content: BinaryIO,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        container = self._containers.setdefault(container_name, {})
        data = content.read()
        now = self._clock()

        existing = container.get(file_name)
        container[file_name] = _StoredObject(
            content=data,
            content_type=content_type,
            created_at=existing.created_at if existing else now,
            last_modified=now,
            metadata=dict(metadata or {}),
            storage_class=existing.storage_class if existing else "standard",
        )

        logger.debug(
            "Object stored",
            container=container_name,
            file=file_name,
            size=len(data),
        )
        return f"{self.base_uri}{container_name}/{file_name}"

    async def download(self, container_name: str, file_name: str) -> BinaryIO:
        return io.BytesIO(self._object(container_name, file_name).content)

    async def download_to_file(
        self,
        container_name: str,
        file_name: str,
        local_path: str,
    ) -> None:
        data = self._object(container_name, file_name).content
        await asyncio.to_thread(Path(local_path).write_bytes, data)

    async def delete(self, container_name: str, file_name: str) -> bool:
        container = self._containers.get(container_name)
        if container is None:
            return False
        return container.pop(file_name, None) is not None

    async def delete_batch(self, container_name: str, file_names: List[str]) -> int:
        deleted = 0
        for file_name in file_names:
            if await self.delete(container_name, file_name):
                deleted += 1
        return deleted

    async def exists(self, container_name: str, file_name: str) -> bool:
        return file_name in self._containers.get(container_name, {})

    async def get_metadata(
        self,
        container_name: str,
        file_name: str,
    ) -> StorageFileMetadata:
        obj = self._object(container_name, file_name)
        return StorageFileMetadata(
            name=file_name,
            size=len(obj.content),
            content_type=obj.content_type,
            last_modified=obj.last_modified,
            created_at=obj.created_at,
            e_tag=obj.e_tag,
            metadata={**obj.metadata, "storage-class": obj.storage_class},
        )

    async def list_files(
        self,
        container_name: str,
        prefix: Optional[str] = None,
    ) -> List[StorageFileInfo]:
        container = self._container(container_name)
        return [
            StorageFileInfo(
                name=name,
                size=len(obj.content),
                content_type=obj.content_type,
                last_modified=obj.last_modified,
                e_tag=obj.e_tag,
            )
            for name, obj in sorted(container.items())
            if prefix is None or name.startswith(prefix)
        ]

    async def get_presigned_url(
        self,
        container_name: str,
        file_name: str,
        expiration: timedelta,
        permissions: StoragePermissions = StoragePermissions.READ,
    ) -> str:
        self._object(container_name, file_name)
        expires = int((self._clock() + expiration).timestamp())
        return (
            f"{self.base_uri}{container_name}/{quote(file_name)}"
            f"?expires={expires}&permissions={int(permissions)}"
        )

    async def create_container(self, container_name: str) -> None:
        self._containers.setdefault(container_name, {})

    async def delete_container(self, container_name: str) -> None:
        self._containers.pop(container_name, None)

    async def list_containers(self) -> List[str]:
        return sorted(self._containers)

    async def copy(
        self,
        source_container: str,
        source_file: str,
        destination_container: str,
        destination_file: str,
    ) -> None:
        source = self._object(source_container, source_file)
        now = self._clock()
        self._containers.setdefault(destination_container, {})[destination_file] = _StoredObject(
            content=source.content,
            content_type=source.content_type,
            created_at=now,
            last_modified=now,
            metadata=dict(source.metadata),
            storage_class=source.storage_class,
        )

    async def get_usage(self, container_name: str) -> StorageUsageInfo:
        container = self._container(container_name)
        return StorageUsageInfo(
            container_name=container_name,
            total_size=sum(len(obj.content) for obj in container.values()),
            file_count=len(container),
            last_updated=self._clock(),
        )

    async def set_storage_class(
        self,
        container_name: str,
        file_name: str,
        storage_class: str,
    ) -> None:
        self._object(container_name, file_name).storage_class = storage_class
