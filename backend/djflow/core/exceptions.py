"""
Custom exceptions for DJ Flow.
Each error carries an HTTP status code and a details payload for the API.
"""
from typing import Any, Optional


class DJFlowException(Exception):
    """Base exception for all DJ Flow errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DJFlowException):
    """Raised when request data fails a business validation rule."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        row: Optional[int] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if row is not None:
            details["row"] = row

        super().__init__(message, details, status_code=422)


class ConfigurationError(DJFlowException):
    """
    Raised when approval configuration cannot be used as stored.

    `missing` names the piece that has to be fixed, e.g. "approvers",
    "levels" or "assignee".
    """

    def __init__(
        self,
        message: str,
        missing: str,
        project_id: Optional[int] = None,
        job_type_id: Optional[int] = None,
        level: Optional[int] = None
    ):
        details: dict[str, Any] = {"missing": missing}
        if project_id is not None:
            details["project_id"] = project_id
        if job_type_id is not None:
            details["job_type_id"] = job_type_id
        if level is not None:
            details["level"] = level

        super().__init__(message, details, status_code=422)


class RoutingError(DJFlowException):
    """Raised when no approval flow of any kind exists for a job."""

    def __init__(self, message: str, project_id: int, job_type_id: Optional[int]):
        details = {
            "project_id": project_id,
            "job_type_id": job_type_id,
        }
        super().__init__(message, details, status_code=422)


class ResourceNotFoundError(DJFlowException):
    """Raised when a referenced resource doesn't exist."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: Any
    ):
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details, status_code=404)


class PermissionDeniedError(DJFlowException):
    """Raised when a user lacks the capability for an action."""

    def __init__(
        self,
        message: str,
        user_id: Optional[int] = None,
        action: Optional[str] = None
    ):
        details: dict[str, Any] = {}
        if user_id is not None:
            details["user_id"] = user_id
        if action:
            details["action"] = action
        super().__init__(message, details, status_code=403)


class InvalidTransitionError(DJFlowException):
    """Raised when a job cannot move from its current status to the requested one."""

    def __init__(
        self,
        message: str,
        job_id: int,
        current_status: str,
        target_status: Optional[str] = None
    ):
        details = {
            "job_id": job_id,
            "current_status": current_status,
        }
        if target_status:
            details["target_status"] = target_status
        super().__init__(message, details, status_code=409)


class PersistenceError(DJFlowException):
    """Raised when the store is unavailable or a write did not land."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=503)


class FileFormatError(DJFlowException):
    """Raised when an uploaded file is invalid or unsupported."""

    def __init__(
        self,
        message: str,
        expected_format: str,
        file_name: Optional[str] = None
    ):
        details = {"expected_format": expected_format}
        if file_name:
            details["file_name"] = file_name
        super().__init__(message, details, status_code=400)
