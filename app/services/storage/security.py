"""
Security validation pipeline for stored files.

Provides:
- Upload validation (extension, size, content type, client IP, content scan)
- Download validation (client IP, hourly download rate limit)
- AES-256-CBC encryption at rest
- Signature-based content scanning
- Security event audit trail
"""

import io
import ipaddress
import os
from collections import deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Deque, List, Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.config import Settings, get_settings
from app.core.exceptions import StorageError
from app.core.logging import get_logger
from app.domain.interfaces.storage import ICacheService
from app.domain.schemas.storage import (
    RateLimitStatus,
    SecurityEvent,
    SecurityEventType,
    SecurityValidationResult,
    VirusScanResult,
)

logger = get_logger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class StorageSecurityService:
    """
    Gatekeeper for every file entering or leaving storage.

    Validation never raises: every violation found is accumulated into a
    ``SecurityValidationResult`` and exactly one audit event is recorded
    per validation call.
    """

    ALLOWED_CONTENT_TYPES = (
        "application/json",
        "application/xml",
        "application/zip",
        "application/pdf",
        "text/plain",
        "text/csv",
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
    )

    MALWARE_SIGNATURES = (
        "EICAR-STANDARD-ANTIVIRUS-TEST-FILE",
        "X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*",
        "eval(",
        "javascript:",
        "<script>",
    )

    SCAN_BYTES = 1024
    RATE_LIMIT_WINDOW = timedelta(hours=1)
    KEY_SIZE = 32
    IV_SIZE = 16

    def __init__(
        self,
        cache: ICacheService,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize security service.

        Args:
            cache: Cache holding rate-limit counters
            settings: Application settings (defaults to the cached instance)
        """
        self.cache = cache
        self.settings = settings or get_settings()

        self._allowed_extensions = set(self.settings.STORAGE_ALLOWED_FILE_EXTENSIONS)
        self._blocked_extensions = set(self.settings.STORAGE_BLOCKED_FILE_EXTENSIONS)
        self._allowed_networks = self._parse_networks(self.settings.STORAGE_ALLOWED_IP_ADDRESSES)
        self._blocked_networks = self._parse_networks(self.settings.STORAGE_BLOCKED_IP_ADDRESSES)
        self._encryption_key = self._derive_key(self.settings.STORAGE_ENCRYPTION_KEY)
        self._events: Deque[SecurityEvent] = deque(
            maxlen=self.settings.STORAGE_SECURITY_EVENT_HISTORY
        )

        logger.info(
            "Storage security service initialized",
            encryption_at_rest=self.settings.STORAGE_ENABLE_ENCRYPTION_AT_REST,
            virus_scanning=self.settings.STORAGE_ENABLE_VIRUS_SCANNING,
            ip_allow_list=len(self._allowed_networks),
            ip_block_list=len(self._blocked_networks),
        )

    # Validation ---------------------------------------------------------

    async def validate_file_upload(
        self,
        file_name: str,
        content: BinaryIO,
        content_type: str,
        client_ip: Optional[str] = None,
    ) -> SecurityValidationResult:
        """
        Validate a file before it is written to storage.

        Args:
            file_name: Object name including extension
            content: Seekable content stream
            content_type: Declared MIME type
            client_ip: Address of the uploading client

        Returns:
            Validation result with every violation found
        """
        result = SecurityValidationResult()
        extension = Path(file_name).suffix.lower()

        try:
            extension_rejected = not self._is_extension_allowed(extension)
            if extension_rejected:
                result.add_error(f"File extension not allowed: {extension}")

            size = self._content_length(content)
            if size > self.settings.STORAGE_MAX_FILE_SIZE:
                result.add_error(
                    f"File size exceeds maximum allowed size: "
                    f"{size} > {self.settings.STORAGE_MAX_FILE_SIZE}"
                )

            if not self._is_content_type_allowed(content_type):
                result.add_error(f"Content type not allowed: {content_type}")

            if client_ip and not self.is_ip_address_allowed(client_ip):
                result.add_error(f"IP address not allowed: {client_ip}")

            # Files already rejected by extension are never scanned
            if self.settings.STORAGE_ENABLE_VIRUS_SCANNING and not extension_rejected:
                scan_result = await self._scan(content, file_name)
                if not scan_result.is_clean:
                    result.add_error(f"Malware detected: {scan_result.threat_name}")

        except Exception as e:
            logger.error(
                "Upload validation failed unexpectedly",
                file=file_name,
                error=str(e),
            )
            result = SecurityValidationResult(
                is_valid=False,
                errors=["Internal security validation error"],
            )

        await self.log_security_event(
            SecurityEvent(
                event_type=SecurityEventType.UPLOAD_VALIDATION,
                file_name=file_name,
                content_type=content_type,
                client_ip=client_ip,
                is_success=result.is_valid,
                details={"errors": list(result.errors)} if result.errors else {},
            )
        )

        return result

    async def validate_file_download(
        self,
        container_name: str,
        file_name: str,
        client_ip: Optional[str] = None,
    ) -> SecurityValidationResult:
        """
        Validate a download request against IP policy and the hourly limit.

        Args:
            container_name: Source container
            file_name: Requested object
            client_ip: Address of the requesting client

        Returns:
            Validation result with every violation found
        """
        result = SecurityValidationResult()

        try:
            if client_ip:
                if not self.is_ip_address_allowed(client_ip):
                    result.add_error(f"IP address not allowed: {client_ip}")

                rate_limit = await self.get_rate_limit_status(client_ip)
                if not rate_limit.is_allowed:
                    result.add_error(f"Rate limit exceeded for IP: {client_ip}")

        except Exception as e:
            logger.error(
                "Download validation failed unexpectedly",
                container=container_name,
                file=file_name,
                error=str(e),
            )
            result = SecurityValidationResult(
                is_valid=False,
                errors=["Internal security validation error"],
            )

        await self.log_security_event(
            SecurityEvent(
                event_type=SecurityEventType.DOWNLOAD_VALIDATION,
                container_name=container_name,
                file_name=file_name,
                client_ip=client_ip,
                is_success=result.is_valid,
                details={"errors": list(result.errors)} if result.errors else {},
            )
        )

        return result

    def is_ip_address_allowed(self, ip: str) -> bool:
        """
        Check an address against the block list, then the allow list.

        Unparseable addresses are denied. With no allow list configured,
        every address that is not blocked is allowed.
        """
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            logger.warning("Unparseable client IP address", client_ip=ip)
            return False

        if any(address in network for network in self._blocked_networks):
            return False

        if self._allowed_networks:
            return any(address in network for network in self._allowed_networks)

        return True

    # Encryption ---------------------------------------------------------

    async def encrypt_content(self, content: BinaryIO) -> BinaryIO:
        """
        Encrypt content with AES-256-CBC.

        The random IV is prepended to the ciphertext. Returns the input
        unchanged when encryption at rest is disabled.
        """
        if not self.settings.STORAGE_ENABLE_ENCRYPTION_AT_REST:
            return content

        try:
            plaintext = content.read()
            iv = os.urandom(self.IV_SIZE)

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext) + padder.finalize()

            encryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()

            return io.BytesIO(iv + ciphertext)
        except Exception as e:
            logger.error("Content encryption failed", error=str(e))
            raise StorageError(f"Failed to encrypt content: {e}", operation="encrypt")

    async def decrypt_content(self, content: BinaryIO) -> BinaryIO:
        """
        Decrypt content produced by ``encrypt_content``.

        Returns the input unchanged when encryption at rest is disabled.
        """
        if not self.settings.STORAGE_ENABLE_ENCRYPTION_AT_REST:
            return content

        try:
            data = content.read()
            if len(data) < self.IV_SIZE:
                raise ValueError("Encrypted payload is shorter than the IV")

            iv, ciphertext = data[:self.IV_SIZE], data[self.IV_SIZE:]

            decryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return io.BytesIO(plaintext)
        except Exception as e:
            logger.error("Content decryption failed", error=str(e))
            raise StorageError(f"Failed to decrypt content: {e}", operation="decrypt")

    # Scanning -----------------------------------------------------------

    async def scan_file(self, content: BinaryIO, file_name: str) -> VirusScanResult:
        """
        Scan content for known malicious signatures and audit the result.

        Args:
            content: Content stream; its position is restored afterwards
            file_name: Name used for reporting

        Returns:
            Scan result
        """
        result = await self._scan(content, file_name)

        await self.log_security_event(
            SecurityEvent(
                event_type=SecurityEventType.VIRUS_SCAN_COMPLETED,
                file_name=file_name,
                is_success=result.is_clean,
                details={
                    "threat_name": result.threat_name,
                    "threat_type": result.threat_type,
                } if not result.is_clean else {},
            )
        )

        return result

    async def _scan(self, content: BinaryIO, file_name: str) -> VirusScanResult:
        try:
            position = content.tell()
            content.seek(0)
            head = content.read(self.SCAN_BYTES)
            content.seek(position)

            text = head.decode("utf-8", errors="replace").lower()
            for signature in self.MALWARE_SIGNATURES:
                if signature.lower() in text:
                    logger.warning(
                        "Suspicious content detected",
                        file=file_name,
                        signature=signature,
                    )
                    return VirusScanResult(
                        is_clean=False,
                        threat_name="Suspicious content detected",
                        threat_type="Potential malware",
                        file_name=file_name,
                    )

            return VirusScanResult(is_clean=True, file_name=file_name)

        except Exception as e:
            logger.error("Content scan failed", file=file_name, error=str(e))
            return VirusScanResult(
                is_clean=False,
                threat_name="Scan error",
                threat_type=type(e).__name__,
                file_name=file_name,
            )

    # Rate limiting ------------------------------------------------------

    async def get_rate_limit_status(self, client_id: str) -> RateLimitStatus:
        """
        Get the client's standing against the hourly download limit.

        Fails closed when the counter cannot be read.
        """
        max_allowed = self.settings.STORAGE_MAX_DOWNLOAD_ATTEMPTS_PER_HOUR
        reset_time = datetime.utcnow() + self.RATE_LIMIT_WINDOW

        try:
            current = await self.cache.get(self._rate_limit_key(client_id))
            count = int(current or 0)
        except Exception as e:
            logger.error("Rate limit lookup failed", client_id=client_id, error=str(e))
            return RateLimitStatus(
                client_id=client_id,
                is_allowed=False,
                current_count=max_allowed,
                max_allowed=max_allowed,
                reset_time=reset_time,
            )

        return RateLimitStatus(
            client_id=client_id,
            is_allowed=count < max_allowed,
            current_count=count,
            max_allowed=max_allowed,
            reset_time=reset_time,
        )

    async def update_rate_limit(self, client_id: str, operation: str) -> None:
        """
        Count one operation against the client's hourly window.

        The counter expires one hour after its first increment.
        """
        try:
            count = await self.cache.increment(
                self._rate_limit_key(client_id),
                expire=int(self.RATE_LIMIT_WINDOW.total_seconds()),
            )
            if count == self.settings.STORAGE_MAX_DOWNLOAD_ATTEMPTS_PER_HOUR:
                logger.warning(
                    "Client reached hourly rate limit",
                    client_id=client_id,
                    operation=operation,
                    count=count,
                )
        except Exception as e:
            logger.error(
                "Rate limit update failed",
                client_id=client_id,
                operation=operation,
                error=str(e),
            )

    # Audit trail --------------------------------------------------------

    async def log_security_event(self, event: SecurityEvent) -> None:
        """Record an audit event when access logging is enabled."""
        if not self.settings.STORAGE_ENABLE_ACCESS_LOGGING:
            return

        self._events.append(event)

        log = logger.info if event.is_success else logger.warning
        log(
            "Security event",
            event_type=event.event_type.value,
            container=event.container_name,
            file=event.file_name,
            client_ip=event.client_ip,
            success=event.is_success,
            **event.details,
        )

    def get_security_events(self, limit: Optional[int] = None) -> List[SecurityEvent]:
        """Return recorded events, newest last."""
        events = list(self._events)
        if limit is not None:
            return events[-limit:] if limit > 0 else []
        return events

    # Helpers ------------------------------------------------------------

    def _is_extension_allowed(self, extension: str) -> bool:
        if extension in self._blocked_extensions:
            return False
        if self._allowed_extensions:
            return extension in self._allowed_extensions
        return True

    def _is_content_type_allowed(self, content_type: Optional[str]) -> bool:
        if not content_type:
            return False
        normalized = content_type.lower()
        return any(normalized.startswith(allowed) for allowed in self.ALLOWED_CONTENT_TYPES)

    @staticmethod
    def _content_length(content: BinaryIO) -> int:
        position = content.tell()
        end = content.seek(0, io.SEEK_END)
        content.seek(position)
        return end

    @staticmethod
    def _rate_limit_key(client_id: str) -> str:
        return f"rate_limit:{client_id}"

    @classmethod
    def _derive_key(cls, configured: Optional[str]) -> bytes:
        if configured:
            return configured.encode("utf-8").ljust(cls.KEY_SIZE, b" ")[:cls.KEY_SIZE]

        logger.warning("No storage encryption key configured, using an ephemeral key")
        return os.urandom(cls.KEY_SIZE)

    @staticmethod
    def _parse_networks(entries: List[str]) -> List[IPNetwork]:
        networks: List[IPNetwork] = []
        for entry in entries:
            try:
                networks.append(ipaddress.ip_network(entry.strip(), strict=False))
            except ValueError:
                logger.warning("Ignoring invalid IP policy entry", entry=entry)
        return networks
