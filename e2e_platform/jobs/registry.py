"""
Job registry.

Owns the authoritative in-memory job map and mirrors every job to
``<jobs_dir>/<job_id>/result.json`` so history survives a restart.
"""

import json
import os
import re
import shutil
import threading
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import FileOperationError, JobNotFoundError
from ..core.logging_config import get_logger
from ..execution.models import ErrorRecord
from .models import HydrationReport, Job


MIRROR_FILENAME = "result.json"
INTERRUPTED_MESSAGE = "interrupted"

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]*$")

logger = get_logger(__name__)


def is_valid_job_id(job_id: str) -> bool:
    """Job ids double as directory names; reject anything path-like."""
    return bool(job_id) and bool(_JOB_ID_RE.match(job_id))


class JobStore:
    """Durable per-job mirror files under the jobs directory."""

    def __init__(self, jobs_dir: Union[str, Path]):
        self.jobs_dir = Path(jobs_dir)

    def job_dir(self, job_id: str) -> Path:
        return self.jobs_dir / job_id

    def mirror_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / MIRROR_FILENAME

    def write(self, job: Job) -> Path:
        """Write the mirror atomically (temp file, fsync, rename)."""
        path = self.mirror_path(job.id)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        text = json.dumps(job.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            raise FileOperationError(
                f"Failed to write job mirror: {e}",
                file_path=str(path),
                operation="write",
            ) from e
        return path

    def read(self, job_id: str) -> Optional[Job]:
        """Load a job from its mirror; None when absent or unreadable."""
        path = self.mirror_path(job_id)
        if not path.is_file():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
            return Job.model_validate(data)
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning(
                f"Unreadable job mirror {path}: {e}",
                extra={"metadata": {"job_id": job_id}},
            )
            return None

    def delete_mirror(self, job_id: str) -> bool:
        path = self.mirror_path(job_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def remove_job_dir(self, job_id: str) -> bool:
        job_dir = self.job_dir(job_id)
        if not job_dir.exists():
            return False
        shutil.rmtree(job_dir)
        return True

    def iter_job_ids(self) -> Iterator[str]:
        if not self.jobs_dir.is_dir():
            return
        for entry in self.jobs_dir.iterdir():
            if entry.is_dir() and (entry / MIRROR_FILENAME).is_file():
                yield entry.name


class JobRegistry:
    """
    Thread-safe map from job id to Job.

    Jobs handed out are deep copies; the only way to change a stored job is
    :meth:`update`, which applies a mutator under the lock and persists the
    result before publishing it.
    """

    def __init__(self, store: JobStore):
        self.store = store
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def put(self, job: Job) -> Job:
        with self._lock:
            stored = job.model_copy(deep=True)
            self.store.write(stored)
            self._jobs[job.id] = stored
            return stored.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        """
        Return a snapshot of a job.

        Checks memory first, then the on-disk mirror.

        Raises:
            JobNotFoundError: if neither knows the id
        """
        with self._lock:
            return self._load(job_id).model_copy(deep=True)

    def update(self, job_id: str, mutator: Callable[[Job], None]) -> Job:
        """
        Apply ``mutator`` to a job and persist it.

        The mutator works on a copy, so an exception it raises leaves the
        stored job untouched.
        """
        with self._lock:
            working = self._load(job_id).model_copy(deep=True)
            mutator(working)
            self.store.write(working)
            self._jobs[job_id] = working
            return working.model_copy(deep=True)

    def list(self, limit: int = 100) -> List[Job]:
        """Jobs found on disk, newest first. In-memory copies take precedence."""
        with self._lock:
            jobs: Dict[str, Job] = {}
            for job_id in self.store.iter_job_ids():
                job = self._jobs.get(job_id) or self.store.read(job_id)
                if job is not None:
                    jobs[job_id] = job

            ordered = sorted(jobs.values(), key=lambda j: j.timestamps.created, reverse=True)
            if limit is not None:
                ordered = ordered[: max(limit, 0)]
            return [job.model_copy(deep=True) for job in ordered]

    def remove(self, job_id: str) -> bool:
        """Drop the in-memory entry and the mirror file."""
        with self._lock:
            in_memory = self._jobs.pop(job_id, None) is not None
            on_disk = is_valid_job_id(job_id) and self.store.delete_mirror(job_id)
            return in_memory or on_disk

    def evict(self, job_id: str) -> bool:
        """Drop the in-memory entry only."""
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def hydrate(self) -> HydrationReport:
        """
        Load every persisted job into memory.

        A job whose mirror still says queued or running was cut off by a
        restart and cannot be resumed; it is finished as failed with an
        ``interrupted`` error and re-persisted. Jobs already in memory are
        left alone.
        """
        report = HydrationReport()
        with self._lock:
            for job_id in self.store.iter_job_ids():
                if job_id in self._jobs:
                    continue
                job = self.store.read(job_id)
                if job is None:
                    report.skipped.append(job_id)
                    continue

                if not job.is_terminal:
                    job.finish(
                        passed=False,
                        errors=[
                            ErrorRecord(
                                message=INTERRUPTED_MESSAGE,
                                stack=f"Job was {job.state.value} when the process stopped",
                            )
                        ],
                        result_source=job.result_source,
                    )
                    self.store.write(job)
                    report.reconciled.append(job_id)

                self._jobs[job_id] = job
                report.loaded += 1

        if report.reconciled:
            logger.warning(
                f"Reconciled {len(report.reconciled)} interrupted job(s) to failed",
                extra={"metadata": {"job_ids": report.reconciled}},
            )
        logger.info(
            f"Hydrated {report.loaded} job(s) from {self.store.jobs_dir}",
            extra={"metadata": {"skipped": report.skipped}},
        )
        return report

    def _load(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is not None:
            return job
        if not is_valid_job_id(job_id):
            raise JobNotFoundError(job_id)
        job = self.store.read(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        self._jobs[job_id] = job
        return job
