"""
Custom exceptions for the storage orchestration layer.
"""
from typing import Any, Dict, List, Optional


class StorageOrchestrationException(Exception):
    """Base exception for all storage orchestration exceptions."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(StorageOrchestrationException):
    """Resource not found exception."""

    def __init__(self, resource: str, resource_id: Any):
        message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, status_code=404)


class ValidationError(StorageOrchestrationException):
    """Validation error exception."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, status_code=422, details=details)


class SecurityViolationError(StorageOrchestrationException):
    """Raised when a file operation is rejected by the security pipeline."""

    def __init__(self, errors: List[str], operation: Optional[str] = None):
        message = "; ".join(errors) if errors else "Security validation failed"
        details: Dict[str, Any] = {"errors": list(errors)}
        if operation:
            details["operation"] = operation
        super().__init__(message, status_code=403, details=details)
        self.errors = list(errors)


class StorageError(StorageOrchestrationException):
    """Storage operation error exception."""

    def __init__(self, message: str, operation: Optional[str] = None):
        details = {"operation": operation} if operation else {}
        super().__init__(message, status_code=500, details=details)


class StorageFileNotFoundError(StorageError):
    """Object or container missing in the underlying store."""

    def __init__(self, container_name: str, file_name: Optional[str] = None):
        if file_name:
            message = f"File {file_name} not found in container {container_name}"
        else:
            message = f"Container {container_name} not found"
        super().__init__(message, operation="lookup")
        self.status_code = 404
        self.container_name = container_name
        self.file_name = file_name
