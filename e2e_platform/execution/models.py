"""
Data models for script materialization, process execution and result parsing.

Defines Pydantic models shared by the execution stages of a job pipeline.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Engine(str, Enum):
    """Browser engine the runner launches."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"

    @property
    def device_descriptor(self) -> str:
        """Playwright device descriptor used for the runner project."""
        return {
            Engine.CHROMIUM: "Desktop Chrome",
            Engine.FIREFOX: "Desktop Firefox",
            Engine.WEBKIT: "Desktop Safari",
        }[self]


class Viewport(BaseModel):
    """Browser viewport dimensions in CSS pixels."""

    model_config = ConfigDict(extra="forbid")

    width: int = Field(1280, ge=1, le=10000)
    height: int = Field(720, ge=1, le=10000)


class RuntimeOptions(BaseModel):
    """Runner options supplied with a submission."""

    model_config = ConfigDict(extra="forbid")

    engine: Engine = Field(Engine.CHROMIUM, description="Browser engine")
    headless: bool = Field(True, description="Run the browser without a window")
    viewport: Viewport = Field(default_factory=Viewport)


class ErrorRecord(BaseModel):
    """A structured failure entry attached to a job."""

    message: str
    stack: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ScriptValidation(BaseModel):
    """Advisory static checks on a test script. Never blocks execution."""

    is_valid: bool
    issues: List[str] = Field(default_factory=list)
    has_navigation: bool = False
    has_interactions: bool = False
    line_count: int = 0


class MaterializedScript(BaseModel):
    """Files written to a job workspace by the materializer."""

    job_dir: Path
    tests_dir: Path
    test_file: Path
    config_file: Path
    results_json: Path
    results_xml: Path
    output_dir: Path
    report_dir: Path
    test_title: str
    validation: ScriptValidation

    @property
    def warnings(self) -> List[str]:
        return list(self.validation.issues)


class ProcessOutcome(BaseModel):
    """What happened to the runner subprocess."""

    command: List[str]
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: Optional[str] = None
    duration: float = Field(0.0, ge=0, description="Wall time in seconds")

    @property
    def launched(self) -> bool:
        return self.spawn_error is None


class ResultSource(str, Enum):
    """Which evidence produced a verdict."""

    JSON = "json"
    STDERR = "stderr"
    NONE = "none"


class ParsedResult(BaseModel):
    """Normalized verdict for a single runner invocation."""

    passed: bool
    passed_count: int = 0
    failed_count: int = 0
    duration_ms: Optional[float] = None
    raw_status: Optional[str] = None
    errors: List[ErrorRecord] = Field(default_factory=list)
    source: ResultSource = ResultSource.NONE
