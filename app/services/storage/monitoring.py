"""
Storage monitoring service.

Records a metric for every storage operation, derives health from the
recent success rate and response time, aggregates container usage and
raises threshold alerts.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.domain.interfaces.storage import ICacheService, IStorageService
from app.domain.schemas.storage import (
    AlertSeverity,
    AlertType,
    ContainerStatistics,
    HealthState,
    OperationMetric,
    OperationType,
    StorageHealthStatus,
    StorageMetrics,
    ThresholdAlert,
    UsageStatistics,
)

logger = get_logger(__name__)


_OPERATION_TYPES: Dict[str, OperationType] = {
    "upload": OperationType.UPLOAD,
    "download": OperationType.DOWNLOAD,
    "delete": OperationType.DELETE,
    "deletebatch": OperationType.DELETE,
    "list": OperationType.LIST,
    "listfiles": OperationType.LIST,
    "getmetadata": OperationType.GET_METADATA,
    "copy": OperationType.COPY,
    "exists": OperationType.EXISTS,
}


def parse_operation_type(operation_name: str) -> OperationType:
    """Map an operation name such as ``get_metadata`` to its category."""
    normalized = operation_name.lower().replace("_", "").replace("-", "")
    return _OPERATION_TYPES.get(normalized, OperationType.UNKNOWN)


class OperationMonitor:
    """
    Times a single storage operation and records it exactly once.

    Usable as a context manager: leaving the block records a failure if an
    exception escaped and a success otherwise, unless a result was already
    recorded explicitly.
    """

    def __init__(
        self,
        service: "StorageMonitoringService",
        operation_name: str,
        container_name: str,
        file_name: Optional[str] = None,
    ):
        self._service = service
        self.operation_name = operation_name
        self.container_name = container_name
        self.file_name = file_name
        self._started_at = service.now()
        self._started = time.perf_counter()
        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    def record_success(self, bytes_transferred: Optional[int] = None) -> None:
        self.record_completion(True, bytes_transferred)

    def record_failure(self, exception: BaseException) -> None:
        self.record_completion(False, None, exception)

    def record_completion(
        self,
        success: bool,
        bytes_transferred: Optional[int] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        if self._completed:
            return
        self._completed = True

        metric = OperationMetric(
            operation_name=self.operation_name,
            operation_type=parse_operation_type(self.operation_name),
            container_name=self.container_name,
            file_name=self.file_name,
            is_success=success,
            response_time_ms=(time.perf_counter() - self._started) * 1000,
            bytes_transferred=bytes_transferred or 0,
            timestamp=self._started_at,
            error_type=type(exception).__name__ if exception else None,
            error_message=str(exception) if exception else None,
        )
        self._service.record_operation_nowait(metric)

    def dispose(self) -> None:
        """Stop timing without recording anything further."""
        self._completed = True

    def __enter__(self) -> "OperationMonitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.record_failure(exc)
        else:
            self.record_success()
        return False


class StorageMonitoringService:
    """
    Monitors storage operations.

    Metrics are kept in memory for the retention window and mirrored to
    the cache. Recording is best-effort and never raises.
    """

    METRIC_RETENTION = timedelta(hours=24)
    HEALTH_WINDOW = timedelta(minutes=5)
    METRIC_KEY_PREFIX = "storage_metric"
    USAGE_CACHE_KEY = "storage_usage_statistics"

    MIN_SUCCESS_RATE = 0.95
    UNHEALTHY_SUCCESS_RATE = 0.80
    MAX_ERROR_RATE = 0.05

    def __init__(
        self,
        storage: IStorageService,
        cache: ICacheService,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize monitoring service.

        Args:
            storage: Storage provider whose usage is reported
            cache: Cache mirroring metric samples and usage figures
            settings: Application settings (defaults to the cached instance)
            clock: Source of the current time
        """
        self.storage = storage
        self.cache = cache
        self.settings = settings or get_settings()
        self._clock = clock or datetime.utcnow

        self._metrics: List[OperationMetric] = []
        self._pending: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return self._clock()

    @property
    def max_response_time_ms(self) -> float:
        return self.settings.STORAGE_MAX_RESPONSE_TIME_SECONDS * 1000

    # Recording ----------------------------------------------------------

    async def record_operation(self, metric: OperationMetric) -> None:
        """Store a metric in memory and mirror it to the cache."""
        try:
            self._store(metric)
            await self._persist(metric)
        except Exception as e:
            logger.error(
                "Error recording storage operation metric",
                operation=metric.operation_name,
                error=str(e),
            )

    def record_operation_nowait(self, metric: OperationMetric) -> None:
        """
        Store a metric synchronously and schedule the cache write.

        Used by ``OperationMonitor`` so the caller never awaits monitoring.
        """
        try:
            self._store(metric)
        except Exception as e:
            logger.error(
                "Error recording storage operation metric",
                operation=metric.operation_name,
                error=str(e),
            )
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self._persist(metric))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _store(self, metric: OperationMetric) -> None:
        self._metrics.append(metric)

        cutoff = self.now() - self.METRIC_RETENTION
        if self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics = [m for m in self._metrics if m.timestamp >= cutoff]

    async def _persist(self, metric: OperationMetric) -> None:
        key = f"{self.METRIC_KEY_PREFIX}:{metric.operation_name}:{int(metric.timestamp.timestamp() * 1_000_000)}"
        try:
            await self.cache.set(
                key,
                metric.model_dump(mode="json"),
                expire=int(self.METRIC_RETENTION.total_seconds()),
            )
        except Exception as e:
            logger.warning("Failed to mirror metric to cache", key=key, error=str(e))

    async def flush(self) -> None:
        """Wait for scheduled cache writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def start_operation_monitoring(
        self,
        operation_name: str,
        container_name: str,
        file_name: Optional[str] = None,
    ) -> OperationMonitor:
        """Begin timing an operation."""
        return OperationMonitor(self, operation_name, container_name, file_name)

    # Queries ------------------------------------------------------------

    def _recent(self, period: timedelta) -> List[OperationMetric]:
        cutoff = self.now() - period
        return [m for m in self._metrics if m.timestamp >= cutoff]

    async def get_metrics(self, period: timedelta = timedelta(hours=1)) -> StorageMetrics:
        """
        Aggregate metrics over a trailing period.

        Args:
            period: Window ending now

        Returns:
            Totals, averages and per-type breakdowns
        """
        now = self.now()
        metrics = StorageMetrics(period_start=now - period, period_end=now)

        try:
            recent = self._recent(period)

            metrics.total_operations = len(recent)
            metrics.successful_operations = sum(1 for m in recent if m.is_success)
            metrics.failed_operations = metrics.total_operations - metrics.successful_operations
            metrics.total_bytes_transferred = sum(m.bytes_transferred for m in recent)
            if recent:
                metrics.average_response_time_ms = sum(m.response_time_ms for m in recent) / len(recent)

            for m in recent:
                key = m.operation_type.value
                metrics.operations_by_type[key] = metrics.operations_by_type.get(key, 0) + 1
                if not m.is_success:
                    error_type = m.error_type or "Unknown"
                    metrics.errors_by_type[error_type] = metrics.errors_by_type.get(error_type, 0) + 1

        except Exception as e:
            logger.error("Error getting storage metrics", error=str(e))

        return metrics

    async def get_health_status(self) -> StorageHealthStatus:
        """
        Derive health from operations in the trailing five minutes.

        The worse of the success-rate verdict and the response-time verdict wins.
        """
        status = StorageHealthStatus(checked_at=self.now())

        try:
            recent = self._recent(self.HEALTH_WINDOW)
            if not recent:
                return status

            failed = sum(1 for m in recent if not m.is_success)
            status.total_operations = len(recent)
            status.failed_operations = failed
            status.success_rate = (len(recent) - failed) / len(recent)
            status.average_response_time_ms = sum(m.response_time_ms for m in recent) / len(recent)

            if status.success_rate < self.UNHEALTHY_SUCCESS_RATE:
                status.state = HealthState.UNHEALTHY
                status.issues.append(f"Success rate {status.success_rate:.2%} below 80%")
            elif status.success_rate < self.MIN_SUCCESS_RATE:
                status.state = HealthState.DEGRADED
                status.issues.append(f"Success rate {status.success_rate:.2%} below 95%")

            if status.average_response_time_ms > self.max_response_time_ms:
                if status.state == HealthState.HEALTHY:
                    status.state = HealthState.DEGRADED
                status.issues.append(
                    f"Average response time {status.average_response_time_ms / 1000:.2f}s "
                    f"above {self.settings.STORAGE_MAX_RESPONSE_TIME_SECONDS:.2f}s"
                )

        except Exception as e:
            logger.error("Error getting storage health status", error=str(e))
            return StorageHealthStatus(
                state=HealthState.UNHEALTHY,
                checked_at=self.now(),
                issues=[f"Health check failed: {e}"],
            )

        return status

    async def get_usage_statistics(self, force_refresh: bool = False) -> UsageStatistics:
        """
        Aggregate usage across every container.

        Results are cached for ``STORAGE_USAGE_CACHE_TTL_SECONDS``.
        """
        if not force_refresh:
            try:
                cached = await self.cache.get(self.USAGE_CACHE_KEY)
                if cached:
                    return UsageStatistics.model_validate(cached)
            except Exception as e:
                logger.warning("Failed to read cached usage statistics", error=str(e))

        stats = UsageStatistics(calculated_at=self.now())

        try:
            for container_name in await self.storage.list_containers():
                try:
                    usage = await self.storage.get_usage(container_name)
                except Exception as e:
                    logger.error(
                        "Error getting container usage",
                        container=container_name,
                        error=str(e),
                    )
                    continue

                stats.containers.append(
                    ContainerStatistics(
                        container_name=container_name,
                        total_size=usage.total_size,
                        file_count=usage.file_count,
                        last_updated=usage.last_updated,
                    )
                )

            stats.container_count = len(stats.containers)
            stats.total_size = sum(c.total_size for c in stats.containers)
            stats.total_files = sum(c.file_count for c in stats.containers)

            await self.cache.set(
                self.USAGE_CACHE_KEY,
                stats.model_dump(mode="json"),
                expire=self.settings.STORAGE_USAGE_CACHE_TTL_SECONDS,
            )

        except Exception as e:
            logger.error("Error getting storage usage statistics", error=str(e))

        return stats

    # Alerting -----------------------------------------------------------

    async def check_thresholds(self) -> List[ThresholdAlert]:
        """Compare recent health against the configured thresholds."""
        alerts: List[ThresholdAlert] = []

        try:
            health = await self.get_health_status()
            now = self.now()

            if health.success_rate < self.MIN_SUCCESS_RATE:
                alerts.append(ThresholdAlert(
                    alert_type=AlertType.LOW_SUCCESS_RATE,
                    severity=AlertSeverity.WARNING,
                    message=f"Storage success rate is {health.success_rate:.2%}, below 95% threshold",
                    value=health.success_rate,
                    threshold=self.MIN_SUCCESS_RATE,
                    created_at=now,
                ))

            if health.average_response_time_ms > self.max_response_time_ms:
                max_seconds = self.settings.STORAGE_MAX_RESPONSE_TIME_SECONDS
                alerts.append(ThresholdAlert(
                    alert_type=AlertType.HIGH_RESPONSE_TIME,
                    severity=AlertSeverity.WARNING,
                    message=(
                        f"Storage response time is {health.average_response_time_ms / 1000:.2f}s, "
                        f"above {max_seconds:.2f}s threshold"
                    ),
                    value=health.average_response_time_ms / 1000,
                    threshold=max_seconds,
                    created_at=now,
                ))

            error_rate = (
                health.failed_operations / health.total_operations
                if health.total_operations else 0.0
            )
            if error_rate > self.MAX_ERROR_RATE:
                alerts.append(ThresholdAlert(
                    alert_type=AlertType.HIGH_ERROR_RATE,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Storage error rate is {error_rate:.2%}, above 5% threshold",
                    value=error_rate,
                    threshold=self.MAX_ERROR_RATE,
                    created_at=now,
                ))

        except Exception as e:
            logger.error("Error checking storage thresholds", error=str(e))

        return alerts

    async def send_alert(self, alert: ThresholdAlert) -> None:
        """Dispatch an alert to the configured recipients."""
        log = logger.error if alert.severity == AlertSeverity.CRITICAL else logger.warning
        log(
            "Storage threshold exceeded",
            alert_type=alert.alert_type.value,
            severity=alert.severity.value,
            value=alert.value,
            threshold=alert.threshold,
            message=alert.message,
        )

        for recipient in self.settings.STORAGE_ALERT_RECIPIENTS:
            logger.info(
                "Alert sent",
                recipient=recipient,
                alert_type=alert.alert_type.value,
                message=alert.message,
            )
