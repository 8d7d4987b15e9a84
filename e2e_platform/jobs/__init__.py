"""
Job tracking and orchestration for the E2E platform.

This module owns the job state machine, the registry that tracks jobs,
and the orchestrator that runs them on a bounded worker pool.
"""

from .models import (
    Job,
    JobState,
    JobCounts,
    JobTimestamps,
    ArtifactRefs,
    HydrationReport,
    DeletionResult,
)
from .registry import JobRegistry, JobStore
from .requests import RunRequest, SubmissionReceipt, convert_recorded_test
from .callbacks import CallbackNotifier
from .retention import RetentionSweeper
from .orchestrator import JobOrchestrator

__all__ = [
    "Job",
    "JobState",
    "JobCounts",
    "JobTimestamps",
    "ArtifactRefs",
    "HydrationReport",
    "DeletionResult",
    "JobRegistry",
    "JobStore",
    "RunRequest",
    "SubmissionReceipt",
    "convert_recorded_test",
    "CallbackNotifier",
    "RetentionSweeper",
    "JobOrchestrator",
]
