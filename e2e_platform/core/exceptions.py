"""
Base exception classes for the E2E platform.

Provides a hierarchy of exceptions for the different error types that can
occur while accepting, executing and packaging test jobs.
"""

from typing import Optional, Dict, Any


class E2EPlatformError(Exception):
    """Base exception class for all E2E platform errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class ValidationError(E2EPlatformError):
    """Raised when a submission or configuration fails validation."""

    def __init__(
        self,
        message: str,
        validation_type: Optional[str] = None,
        violations: Optional[list] = None,
    ):
        super().__init__(message, "VALIDATION_FAILED")
        self.validation_type = validation_type
        self.violations = violations or []
        self.context.update(
            {
                "validation_type": validation_type,
                "violations": violations,
            }
        )


class JobNotFoundError(E2EPlatformError):
    """Raised when no job exists for the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", "JOB_NOT_FOUND")
        self.job_id = job_id
        self.context.update({"job_id": job_id})


class ArtifactsNotReadyError(E2EPlatformError):
    """Raised when a job exists but its artifact bundle is not available yet."""

    def __init__(self, job_id: str, state: Optional[str] = None, reason: Optional[str] = None):
        message = f"Artifacts not ready for job: {job_id}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, "ARTIFACTS_NOT_READY")
        self.job_id = job_id
        self.state = state
        self.reason = reason
        self.context.update({"job_id": job_id, "state": state, "reason": reason})


class InvalidStateTransitionError(E2EPlatformError):
    """Raised when a job is asked to move backwards or out of a final state."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        current_state: Optional[str] = None,
        target_state: Optional[str] = None,
    ):
        super().__init__(message, "INVALID_STATE_TRANSITION")
        self.job_id = job_id
        self.current_state = current_state
        self.target_state = target_state
        self.context.update(
            {
                "job_id": job_id,
                "current_state": current_state,
                "target_state": target_state,
            }
        )


class MaterializationError(E2EPlatformError):
    """Raised when a script cannot be written to the job workspace."""

    def __init__(self, message: str, job_id: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message, "MATERIALIZATION_FAILED")
        self.job_id = job_id
        self.path = path
        self.context.update({"job_id": job_id, "path": path})


class PackagingError(E2EPlatformError):
    """Raised when an artifact bundle cannot be created."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        bundle_path: Optional[str] = None,
    ):
        super().__init__(message, "PACKAGING_FAILED")
        self.job_id = job_id
        self.bundle_path = bundle_path
        self.context.update({"job_id": job_id, "bundle_path": bundle_path})


class FileOperationError(E2EPlatformError):
    """Raised when file system operations fail."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, "FILE_OPERATION_FAILED")
        self.file_path = file_path
        self.operation = operation
        self.context.update(
            {
                "file_path": file_path,
                "operation": operation,
            }
        )
