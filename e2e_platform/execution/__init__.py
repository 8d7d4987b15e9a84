"""
Test execution components for the E2E platform.

This module materializes test scripts into runnable workspaces, runs the
Playwright runner against them and parses what it reports.
"""

from .executor import ProcessExecutor
from .materializer import ScriptMaterializer, sanitize_identifier, validate_script
from .models import (
    Engine,
    Viewport,
    RuntimeOptions,
    ErrorRecord,
    ScriptValidation,
    MaterializedScript,
    ProcessOutcome,
    ParsedResult,
    ResultSource,
)
from .parser import ResultParser

__all__ = [
    "ProcessExecutor",
    "ScriptMaterializer",
    "ResultParser",
    "sanitize_identifier",
    "validate_script",
    "Engine",
    "Viewport",
    "RuntimeOptions",
    "ErrorRecord",
    "ScriptValidation",
    "MaterializedScript",
    "ProcessOutcome",
    "ParsedResult",
    "ResultSource",
]
