"""
E2E Platform - Playwright test execution service

Accepts Playwright test scripts, runs each one in an isolated runner
process, tracks job state and packages the resulting reports, traces and
videos into downloadable bundles.
"""

__version__ = "1.0.0"
__author__ = "E2E Platform Team"

from .core.config import Config
from .core.exceptions import E2EPlatformError
from .core.logging_config import setup_logging
from .jobs.orchestrator import JobOrchestrator

__all__ = [
    "Config",
    "E2EPlatformError",
    "setup_logging",
    "JobOrchestrator",
]
