"""
Tests for the secured storage facade.
"""

import io
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import SecurityViolationError, StorageFileNotFoundError
from app.services.storage import (
    StorageMonitoringService,
    StorageSecurityService,
    StorageService,
)


def build_facade(storage, cache, settings, clock):
    security = StorageSecurityService(cache, settings)
    monitoring = StorageMonitoringService(storage, cache, settings, clock=clock)
    return StorageService(storage, security, monitoring)


@pytest.fixture
def facade(storage, cache, make_settings, clock):
    settings = make_settings(
        STORAGE_BLOCKED_FILE_EXTENSIONS=[".exe"],
        STORAGE_MAX_DOWNLOAD_ATTEMPTS_PER_HOUR=2,
    )
    return build_facade(storage, cache, settings, clock)


class TestUpload:
    """Test validated, encrypted uploads."""

    @pytest.mark.asyncio
    async def test_content_is_encrypted_at_rest(self, facade, storage):
        plaintext = b'{"name": "demo", "version": "1.0.0"}'

        uri = await facade.upload(
            "packages", "demo.json", io.BytesIO(plaintext), "application/json"
        )

        assert uri == "memory://packages/demo.json"
        stored = (await storage.download("packages", "demo.json")).read()
        assert stored != plaintext
        assert len(stored) == 16 + 48

        downloaded = await facade.download("packages", "demo.json")
        assert downloaded.read() == plaintext

    @pytest.mark.asyncio
    async def test_plaintext_when_encryption_disabled(self, storage, cache, make_settings, clock):
        settings = make_settings(STORAGE_ENABLE_ENCRYPTION_AT_REST=False)
        facade = build_facade(storage, cache, settings, clock)

        await facade.upload("packages", "a.txt", io.BytesIO(b"hello"), "text/plain")

        assert (await storage.download("packages", "a.txt")).read() == b"hello"

    @pytest.mark.asyncio
    async def test_rejected_upload_raises(self, facade, storage):
        with pytest.raises(SecurityViolationError) as exc_info:
            await facade.upload("packages", "setup.exe", io.BytesIO(b"MZ"), "text/plain")

        assert exc_info.value.status_code == 403
        assert exc_info.value.errors == ["File extension not allowed: .exe"]
        assert exc_info.value.details["operation"] == "upload"
        assert await storage.exists("packages", "setup.exe") is False
        assert (await facade.monitoring.get_metrics()).total_operations == 0

    @pytest.mark.asyncio
    async def test_upload_records_metric(self, facade):
        await facade.upload("packages", "a.txt", io.BytesIO(b"hello"), "text/plain")

        metrics = await facade.monitoring.get_metrics()

        assert metrics.total_operations == 1
        assert metrics.operations_by_type == {"upload": 1}
        assert metrics.total_bytes_transferred == 5

    @pytest.mark.asyncio
    async def test_provider_failure_is_recorded(self, facade, storage):
        storage.upload = AsyncMock(side_effect=ConnectionError("provider down"))

        with pytest.raises(ConnectionError):
            await facade.upload("packages", "a.txt", io.BytesIO(b"hello"), "text/plain")

        metrics = await facade.monitoring.get_metrics()
        assert metrics.failed_operations == 1
        assert metrics.errors_by_type == {"ConnectionError": 1}


class TestDownload:
    """Test validated, rate-limited downloads."""

    @pytest.mark.asyncio
    async def test_downloads_count_against_rate_limit(self, facade, cache):
        await facade.upload("packages", "a.txt", io.BytesIO(b"hello"), "text/plain", client_ip="10.1.1.1")

        await facade.download("packages", "a.txt", client_ip="10.1.1.1")
        await facade.download("packages", "a.txt", client_ip="10.1.1.1")

        with pytest.raises(SecurityViolationError) as exc_info:
            await facade.download("packages", "a.txt", client_ip="10.1.1.1")

        assert exc_info.value.errors == ["Rate limit exceeded for IP: 10.1.1.1"]
        assert cache.call_log["increment"] == 2

    @pytest.mark.asyncio
    async def test_anonymous_downloads_are_not_counted(self, facade, cache):
        await facade.upload("packages", "a.txt", io.BytesIO(b"hello"), "text/plain")

        await facade.download("packages", "a.txt")

        assert "increment" not in cache.call_log

    @pytest.mark.asyncio
    async def test_missing_file_is_recorded_as_failure(self, facade):
        with pytest.raises(StorageFileNotFoundError):
            await facade.download("packages", "missing.txt")

        metrics = await facade.monitoring.get_metrics()
        assert metrics.failed_operations == 1
        assert metrics.errors_by_type == {"StorageFileNotFoundError": 1}


class TestPassThrough:
    """Test monitored pass-through operations."""

    @pytest.mark.asyncio
    async def test_delete_batch_counts_successes(self, facade, storage):
        for name in ("a.txt", "b.txt", "c.txt"):
            await facade.upload("packages", name, io.BytesIO(b"x"), "text/plain")
        real_delete = storage.delete

        async def flaky_delete(container, name):
            if name == "b.txt":
                raise ConnectionError("timeout")
            return await real_delete(container, name)

        storage.delete = flaky_delete

        deleted = await facade.delete_batch("packages", ["a.txt", "b.txt", "c.txt", "zzz.txt"])

        assert deleted == 2
        assert await storage.exists("packages", "b.txt") is True

    @pytest.mark.asyncio
    async def test_operations_are_monitored(self, facade):
        await facade.upload("packages", "a.txt", io.BytesIO(b"x"), "text/plain")

        assert await facade.exists("packages", "a.txt") is True
        assert (await facade.get_metadata("packages", "a.txt")).name == "a.txt"
        assert [f.name for f in await facade.list_files("packages")] == ["a.txt"]
        await facade.copy("packages", "a.txt", "versions", "a.txt")
        assert await facade.delete("packages", "a.txt") is True

        metrics = await facade.monitoring.get_metrics()
        assert metrics.operations_by_type == {
            "upload": 1,
            "exists": 1,
            "get_metadata": 1,
            "list": 1,
            "copy": 1,
            "delete": 1,
        }

    @pytest.mark.asyncio
    async def test_presigned_url(self, facade):
        await facade.upload("packages", "a.txt", io.BytesIO(b"x"), "text/plain")

        url = await facade.get_presigned_url("packages", "a.txt")

        assert url.startswith("memory://packages/a.txt?expires=")
        assert url.endswith("&permissions=1")
