"""
Data models for job tracking.

Defines the Job entity, its state machine and the records attached to it
as it moves through the pipeline.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import InvalidStateTransitionError
from ..execution.models import ErrorRecord, ResultSource, RuntimeOptions


class JobState(str, Enum):
    """Lifecycle state of a job."""

    QUEUED = "queued"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.PASSED, JobState.FAILED)


_STATE_RANK = {
    JobState.QUEUED: 0,
    JobState.RUNNING: 1,
    JobState.PASSED: 2,
    JobState.FAILED: 2,
}


class JobCounts(BaseModel):
    """Passed/failed test counters for a job."""

    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)


class JobTimestamps(BaseModel):
    """UTC timestamps recorded as a job moves through its states."""

    created: datetime = Field(default_factory=datetime.utcnow)
    started: Optional[datetime] = None
    ended: Optional[datetime] = None


class ArtifactRefs(BaseModel):
    """Locations of a job's report directory and artifact bundle."""

    report_dir: Optional[str] = None
    bundle_path: str
    bundle_name: str


class Job(BaseModel):
    """
    A single test run tracked by the platform.

    State only moves forward: queued, running, then passed or failed.
    Mutating methods enforce that and raise InvalidStateTransitionError
    on any violation.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_label: str
    name: str
    script: str
    runtime_options: RuntimeOptions = Field(default_factory=RuntimeOptions)
    callback_url: Optional[str] = None

    state: JobState = JobState.QUEUED
    counts: JobCounts = Field(default_factory=JobCounts)
    errors: List[ErrorRecord] = Field(default_factory=list)
    timestamps: JobTimestamps = Field(default_factory=JobTimestamps)
    duration_ms: Optional[float] = None
    exit_code: Optional[int] = None
    result_source: ResultSource = ResultSource.NONE
    warnings: List[str] = Field(default_factory=list)

    artifacts: Optional[ArtifactRefs] = None
    artifacts_ready: bool = False
    packaging_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def passed(self) -> bool:
        return self.state == JobState.PASSED

    def _check_transition(self, target: JobState) -> None:
        if self.is_terminal or _STATE_RANK[target] <= _STATE_RANK[self.state]:
            raise InvalidStateTransitionError(
                f"Cannot move job {self.id} from {self.state.value} to {target.value}",
                job_id=self.id,
                current_state=self.state.value,
                target_state=target.value,
            )

    def mark_running(self) -> None:
        self._check_transition(JobState.RUNNING)
        self.state = JobState.RUNNING
        self.timestamps.started = datetime.utcnow()

    def finish(
        self,
        passed: bool,
        errors: Optional[List[ErrorRecord]] = None,
        duration_ms: Optional[float] = None,
        exit_code: Optional[int] = None,
        result_source: ResultSource = ResultSource.NONE,
        counts: Optional[JobCounts] = None,
    ) -> None:
        """
        Record the verdict. Only ever called once per job.

        Counts default to one passed or one failed test, matching the
        single-test workspaces the materializer writes.
        """
        target = JobState.PASSED if passed else JobState.FAILED
        self._check_transition(target)

        self.state = target
        self.timestamps.ended = datetime.utcnow()
        self.counts = counts or JobCounts(passed=1 if passed else 0, failed=0 if passed else 1)
        self.errors = list(errors or [])
        self.exit_code = exit_code
        self.result_source = result_source

        if duration_ms is None and self.timestamps.started is not None:
            elapsed = self.timestamps.ended - self.timestamps.started
            duration_ms = elapsed.total_seconds() * 1000
        self.duration_ms = duration_ms

    def attach_artifacts(self, refs: ArtifactRefs) -> None:
        if not self.is_terminal:
            raise InvalidStateTransitionError(
                f"Cannot attach artifacts to non-terminal job {self.id}",
                job_id=self.id,
                current_state=self.state.value,
            )
        if self.artifacts is not None:
            raise InvalidStateTransitionError(
                f"Artifacts already attached to job {self.id}",
                job_id=self.id,
                current_state=self.state.value,
            )
        self.artifacts = refs
        self.artifacts_ready = True
        self.packaging_error = None

    def record_packaging_failure(self, message: str) -> None:
        if not self.is_terminal:
            raise InvalidStateTransitionError(
                f"Cannot record packaging result for non-terminal job {self.id}",
                job_id=self.id,
                current_state=self.state.value,
            )
        self.artifacts_ready = False
        self.packaging_error = message

    def summary(self) -> dict:
        """Compact view used for listings and completion callbacks."""
        return {
            "id": self.id,
            "project_label": self.project_label,
            "name": self.name,
            "state": self.state.value,
            "passed": self.counts.passed,
            "failed": self.counts.failed,
            "duration_ms": self.duration_ms,
            "created": self.timestamps.created.isoformat(),
            "artifacts_ready": self.artifacts_ready,
        }


class HydrationReport(BaseModel):
    """Outcome of loading persisted jobs into the registry on startup."""

    loaded: int = 0
    reconciled: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)


class DeletionResult(BaseModel):
    """What a delete removed from disk and from the registry."""

    job_id: str
    job_dir_removed: bool = False
    bundle_removed: bool = False
    registry_entry_removed: bool = False
    removed_paths: List[str] = Field(default_factory=list)
