"""Core components for the E2E platform."""

from .config import Config
from .exceptions import (
    E2EPlatformError,
    ValidationError,
    JobNotFoundError,
    ArtifactsNotReadyError,
    InvalidStateTransitionError,
    MaterializationError,
    PackagingError,
    FileOperationError,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    "Config",
    "E2EPlatformError",
    "ValidationError",
    "JobNotFoundError",
    "ArtifactsNotReadyError",
    "InvalidStateTransitionError",
    "MaterializationError",
    "PackagingError",
    "FileOperationError",
    "setup_logging",
    "get_logger",
]
