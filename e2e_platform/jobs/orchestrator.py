"""
Job orchestration.

Accepts run submissions, queues them, and drives each job through
materialize, execute, parse, persist and package on a bounded pool of
asyncio workers. Submission never waits on any of those stages; callers
poll the registry or supply a completion callback.
"""

import asyncio
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from ..core.config import Config
from ..core.exceptions import ArtifactsNotReadyError, PackagingError
from ..core.logging_config import flush_job_log, get_logger, job_log, log_performance
from ..execution.executor import ProcessExecutor
from ..execution.materializer import ScriptMaterializer, extract_test_body, validate_script
from ..execution.models import ErrorRecord, ResultSource, RuntimeOptions
from ..execution.parser import ResultParser
from ..reporting.packager import ArtifactPackager, resolve_report_location
from .callbacks import CallbackNotifier
from .models import ArtifactRefs, DeletionResult, Job, JobCounts
from .registry import JobRegistry, JobStore
from .requests import RunRequest, SubmissionReceipt
from .retention import RetentionSweeper


CANCELLED_MESSAGE = "cancelled"
INTERRUPTED_MESSAGE = "interrupted"
TIMEOUT_MESSAGE = "execution timeout"


def _fail(error: ErrorRecord):
    """Mutator that finishes a live job as failed, or records why packaging never happened."""

    def mutate(job: Job) -> None:
        if not job.is_terminal:
            job.finish(passed=False, errors=[error], result_source=job.result_source)
        elif not job.artifacts_ready and job.packaging_error is None:
            job.record_packaging_failure(error.message)

    return mutate


class JobOrchestrator:
    """
    Runs test jobs concurrently, bounded by ``Config.max_concurrent_jobs``.

    Typical use::

        async with JobOrchestrator(config) as orchestrator:
            receipt = orchestrator.submit_run(script, "shop", "checkout")
            job = await orchestrator.wait_for(receipt.job_id)
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[JobRegistry] = None,
        materializer: Optional[ScriptMaterializer] = None,
        executor: Optional[ProcessExecutor] = None,
        parser: Optional[ResultParser] = None,
        packager: Optional[ArtifactPackager] = None,
        notifier: Optional[CallbackNotifier] = None,
    ):
        self.config = config
        self.registry = registry or JobRegistry(JobStore(config.jobs_dir))
        self.materializer = materializer or ScriptMaterializer()
        self.executor = executor or ProcessExecutor(config)
        self.parser = parser or ResultParser()
        self.packager = packager or ArtifactPackager(config)
        self.notifier = notifier or CallbackNotifier(timeout=config.callback_timeout)
        self.sweeper = RetentionSweeper(config, self.registry, in_flight=self.in_flight_jobs)
        self.logger = get_logger(__name__)

        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._pipelines: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._done: Dict[str, asyncio.Event] = {}
        self._background: Set[asyncio.Task] = set()
        self._sweeper_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    def in_flight_jobs(self) -> Set[str]:
        """Ids of jobs that are queued, running or still packaging."""
        return set(self._in_flight)

    async def start(self, hydrate: bool = True, schedule_cleanup: bool = True) -> None:
        """
        Start the worker pool.

        Args:
            hydrate: Load persisted jobs into the registry first
            schedule_cleanup: Run the periodic retention sweep
        """
        if self.is_running:
            return

        self.config.ensure_directories()
        if hydrate:
            await asyncio.to_thread(self.registry.hydrate)

        self._workers = [
            asyncio.create_task(self._worker(index), name=f"job-worker-{index}")
            for index in range(max(1, self.config.max_concurrent_jobs))
        ]
        if schedule_cleanup:
            self._sweeper_task = asyncio.create_task(self.sweeper.run_forever())

        self.logger.info(
            f"Job orchestrator started with {len(self._workers)} worker(s)",
            extra={"metadata": {"jobs_dir": str(self.config.jobs_dir)}},
        )

    async def stop(self) -> None:
        """
        Stop the worker pool.

        Running pipelines are cancelled and end as failed. Jobs still
        waiting in the queue are finished as ``interrupted``.
        """
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            await asyncio.gather(self._sweeper_task, return_exceptions=True)
            self._sweeper_task = None

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self._queue.empty():
            job_id = self._queue.get_nowait()
            self._queue.task_done()
            if job_id in self._cancelled:
                continue
            self.registry.update(
                job_id,
                _fail(ErrorRecord(message=INTERRUPTED_MESSAGE, stack="Orchestrator stopped before the job started")),
            )
            self._settle(job_id)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        self.logger.info("Job orchestrator stopped")

    async def __aenter__(self) -> "JobOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def submit_run(
        self,
        script: str,
        project_label: str,
        name: str,
        runtime_options: Union[RuntimeOptions, Dict[str, Any], None] = None,
        callback_url: Optional[str] = None,
    ) -> SubmissionReceipt:
        """
        Accept a run and queue it.

        Returns as soon as the job is recorded as queued.

        Raises:
            ValidationError: on missing fields or invalid runtime options.
                No job id is issued in that case.
        """
        request = RunRequest.from_submission(
            script=script,
            project_label=project_label,
            name=name,
            runtime_options=runtime_options,
            callback_url=callback_url,
        )
        return self.submit_request(request)

    def submit_request(self, request: RunRequest) -> SubmissionReceipt:
        validation = validate_script(extract_test_body(request.script))
        job = Job(
            project_label=request.project_label,
            name=request.name,
            script=request.script,
            runtime_options=request.runtime_options,
            callback_url=request.callback_url,
            warnings=validation.issues,
        )

        self.registry.put(job)
        self._in_flight.add(job.id)
        self._done[job.id] = asyncio.Event()
        self._queue.put_nowait(job.id)

        self.logger.info(
            f"Queued job {job.id}: {job.name}",
            extra={
                "metadata": {
                    "job_id": job.id,
                    "project_label": job.project_label,
                    "engine": job.runtime_options.engine.value,
                    "queue_size": self._queue.qsize(),
                }
            },
        )
        return SubmissionReceipt(job_id=job.id, warnings=validation.issues)

    def get_status(self, job_id: str) -> Job:
        return self.registry.get(job_id)

    def get_artifact_bundle_path(self, job_id: str) -> Path:
        """
        Path of a job's bundle. The same path on every call once ready.

        Raises:
            JobNotFoundError: unknown job
            ArtifactsNotReadyError: job not finished, packaging failed or
                the bundle file is gone
        """
        job = self.registry.get(job_id)
        if not job.artifacts_ready or job.artifacts is None:
            if job.packaging_error:
                reason = job.packaging_error
            elif not job.is_terminal:
                reason = f"job is {job.state.value}"
            elif job_id in self._in_flight:
                reason = "packaging in progress"
            else:
                reason = "no bundle was produced"
            raise ArtifactsNotReadyError(job_id, state=job.state.value, reason=reason)

        bundle_path = Path(job.artifacts.bundle_path)
        if not bundle_path.is_file():
            raise ArtifactsNotReadyError(job_id, state=job.state.value, reason="bundle file missing")
        return bundle_path

    def list_jobs(self, limit: int = 100) -> List[Job]:
        return self.registry.list(limit=limit)

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """
        Wait until a job is terminal and its packaging has settled.

        Raises:
            JobNotFoundError: unknown job
            asyncio.TimeoutError: if ``timeout`` elapses first
        """
        event = self._done.get(job_id)
        if event is not None:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        return self.registry.get(job_id)

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a queued or running job.

        Returns:
            False if the job had already finished, True otherwise

        Raises:
            JobNotFoundError: unknown job
        """
        job = self.registry.get(job_id)
        if job.is_terminal:
            return False

        pipeline = self._pipelines.get(job_id)
        if pipeline is not None:
            pipeline.cancel()
            await asyncio.gather(pipeline, return_exceptions=True)
        else:
            self._cancelled.add(job_id)
            self.registry.update(
                job_id,
                _fail(ErrorRecord(message=CANCELLED_MESSAGE, stack="Job was cancelled before it started")),
            )
            self._settle(job_id)

        self.logger.info(f"Cancelled job {job_id}", extra={"metadata": {"job_id": job_id}})
        return True

    async def delete_job(self, job_id: str) -> DeletionResult:
        """
        Remove a job's working directory, bundle and registry entry.

        A job still in flight is cancelled first.

        Raises:
            JobNotFoundError: unknown job; nothing is touched
        """
        job = self.registry.get(job_id)

        if job_id in self._in_flight:
            pipeline = self._pipelines.get(job_id)
            if pipeline is not None:
                pipeline.cancel()
                await asyncio.gather(pipeline, return_exceptions=True)
            else:
                await self.cancel_job(job_id)
            job = self.registry.get(job_id)

        result = DeletionResult(job_id=job_id)

        bundles = set()
        if job.artifacts is not None:
            bundles.add(Path(job.artifacts.bundle_path))
        bundles_dir = Path(self.config.bundles_dir)
        if bundles_dir.is_dir():
            bundles.update(bundles_dir.glob(f"*_{job_id}_*.zip"))
        for bundle in sorted(bundles):
            if bundle.is_file():
                bundle.unlink()
                result.bundle_removed = True
                result.removed_paths.append(str(bundle))

        job_dir = self.registry.store.job_dir(job_id)
        if await asyncio.to_thread(self.registry.store.remove_job_dir, job_id):
            result.job_dir_removed = True
            result.removed_paths.append(str(job_dir))

        result.registry_entry_removed = self.registry.remove(job_id)
        self._done.pop(job_id, None)
        self._cancelled.discard(job_id)

        self.logger.info(
            f"Deleted job {job_id}",
            extra={"metadata": {"job_id": job_id, "removed_paths": result.removed_paths}},
        )
        return result

    async def cleanup_expired(self, dry_run: bool = False) -> Dict[str, Any]:
        """Run one retention sweep now."""
        summary = await asyncio.to_thread(self.sweeper.sweep, None, dry_run)
        if not dry_run:
            for job_id in summary["deleted_jobs"]:
                self._done.pop(job_id, None)
        return summary

    async def _worker(self, index: int) -> None:
        logger = get_logger(__name__, stage=f"worker-{index}")
        while True:
            job_id = await self._queue.get()
            try:
                if job_id in self._cancelled:
                    logger.debug(f"Skipping cancelled job {job_id}")
                    continue

                pipeline = asyncio.create_task(self._run_pipeline(job_id), name=f"job-{job_id}")
                self._pipelines[job_id] = pipeline
                try:
                    await asyncio.wait({pipeline})
                except asyncio.CancelledError:
                    pipeline.cancel()
                    await asyncio.gather(pipeline, return_exceptions=True)
                    raise
                finally:
                    self._pipelines.pop(job_id, None)
            finally:
                self._queue.task_done()

    async def _run_pipeline(self, job_id: str) -> None:
        with job_log(self.registry.store.job_dir(job_id), job_id):
            await self._run_stages(job_id)

    async def _run_stages(self, job_id: str) -> None:
        logger = get_logger(__name__, job_id=job_id)
        start_time = time.time()
        try:
            job = self.registry.update(job_id, lambda j: j.mark_running())
            logger.info(f"Running job: {job.name}", extra={"metadata": {"stage": "execution"}})

            job = await self._execute(job)
            job = await self._package(job)

            if job.callback_url:
                self._spawn(self.notifier.notify(job))
        except asyncio.CancelledError:
            logger.warning("Job cancelled")
            self.registry.update(
                job_id,
                _fail(ErrorRecord(message=CANCELLED_MESSAGE, stack="Job was cancelled while running")),
            )
            raise
        except Exception as e:
            logger.error(f"Job pipeline failed: {e}", exc_info=True)
            self.registry.update(
                job_id,
                _fail(ErrorRecord(message=str(e) or type(e).__name__, stack=traceback.format_exc())),
            )
        finally:
            self._settle(job_id)
            log_performance(logger, "job_pipeline", time.time() - start_time)

    async def _execute(self, job: Job) -> Job:
        logger = get_logger(__name__, job_id=job.id, stage="execute")
        job_dir = self.registry.store.job_dir(job.id)
        workspace = await asyncio.to_thread(
            self.materializer.materialize, job_dir, job.name, job.script, job.runtime_options
        )

        outcome = await self.executor.run(workspace, job.runtime_options)

        if not outcome.launched:
            errors = [ErrorRecord(message=outcome.spawn_error)]
            verdict = dict(passed=False, errors=errors, result_source=ResultSource.NONE)
        elif outcome.timed_out:
            stack = f"Test execution timed out after {self.config.execution_timeout}s"
            if outcome.stderr:
                stack += f"\n{outcome.stderr}"
            errors = [ErrorRecord(message=TIMEOUT_MESSAGE, stack=stack)]
            verdict = dict(
                passed=False,
                errors=errors,
                duration_ms=outcome.duration * 1000,
                result_source=ResultSource.NONE,
            )
        else:
            parsed = await asyncio.to_thread(self.parser.parse, workspace.results_json, outcome.stderr)
            verdict = dict(
                passed=parsed.passed,
                errors=parsed.errors,
                duration_ms=parsed.duration_ms if parsed.duration_ms is not None else outcome.duration * 1000,
                exit_code=outcome.exit_code,
                result_source=parsed.source,
                counts=JobCounts(passed=parsed.passed_count, failed=parsed.failed_count),
            )

        job = self.registry.update(job.id, lambda j: j.finish(**verdict))
        logger.info(
            f"Job {job.id} finished: {job.state.value}",
            extra={
                "metadata": {
                    "status": job.state.value,
                    "exit_code": job.exit_code,
                    "result_source": job.result_source.value,
                }
            },
        )
        return job

    async def _package(self, job: Job) -> Job:
        flush_job_log(job.id)
        try:
            bundle_path = await asyncio.to_thread(self.packager.build, job)
        except PackagingError as e:
            get_logger(__name__, job_id=job.id, stage="packaging").error(
                f"Packaging failed for job {job.id}: {e.message}",
                extra={"metadata": e.to_dict()},
            )
            return self.registry.update(job.id, lambda j: j.record_packaging_failure(e.message))

        report_dir = resolve_report_location(self.registry.store.job_dir(job.id))
        refs = ArtifactRefs(
            report_dir=str(report_dir) if report_dir is not None else None,
            bundle_path=str(bundle_path),
            bundle_name=bundle_path.name,
        )
        return self.registry.update(job.id, lambda j: j.attach_artifacts(refs))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _settle(self, job_id: str) -> None:
        self._in_flight.discard(job_id)
        event = self._done.get(job_id)
        if event is not None:
            event.set()

