"""
Runner subprocess execution.

Launches one Playwright runner process per job against the job's own
configuration, with a hard wall-clock timeout and process-tree cleanup.
"""

import asyncio
import os
import time
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from ..core.config import Config
from ..core.logging_config import get_logger, log_performance
from .materializer import OUTPUT_DIRNAME
from .models import MaterializedScript, ProcessOutcome, RuntimeOptions


STDOUT_LOG = "stdout.log"
STDERR_LOG = "stderr.log"
STREAM_DRAIN_TIMEOUT = 5.0


def terminate_process_tree(pid: int, grace_period: float) -> List[int]:
    """
    Terminate a process and all of its descendants.

    Sends SIGTERM to the whole tree, waits up to ``grace_period`` seconds,
    then SIGKILLs whatever is still alive. Blocking; run it in a thread.

    Returns:
        PIDs that had to be force-killed
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(parent)

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=grace_period)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    if alive:
        psutil.wait_procs(alive, timeout=grace_period)
    return [proc.pid for proc in alive]


class ProcessExecutor:
    """
    Runs the external test runner for a single materialized job.

    Stateless between calls: concurrent invocations for different jobs are
    safe because every job has its own working directory. Bounding the
    number of simultaneous runs is the orchestrator's job.
    """

    def __init__(self, config: Config):
        self.config = config

    def build_command(self, workspace: MaterializedScript) -> List[str]:
        return [*self.config.runner_command, "--config", str(workspace.config_file)]

    def build_environment(
        self, workspace: MaterializedScript, options: RuntimeOptions
    ) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(
            {
                "BROWSER_TYPE": options.engine.value,
                "HEADLESS": "true" if options.headless else "false",
                "VIEWPORT_WIDTH": str(options.viewport.width),
                "VIEWPORT_HEIGHT": str(options.viewport.height),
                "PWTEST_OUTPUT_DIR": str(workspace.job_dir / OUTPUT_DIRNAME),
                "PWTEST_HTML_REPORT_OPEN": "never",
            }
        )
        if self.config.node_path:
            env["NODE_PATH"] = self.config.node_path
        return env

    async def run(
        self,
        workspace: MaterializedScript,
        options: RuntimeOptions,
        timeout: Optional[float] = None,
    ) -> ProcessOutcome:
        """
        Run the runner to completion, timeout or cancellation.

        Args:
            workspace: Materialized job workspace
            options: Runtime options exported to the runner environment
            timeout: Wall-clock limit in seconds; defaults to config

        Returns:
            Outcome of the subprocess. Timeouts and spawn failures are
            reported in the outcome, not raised.

        Raises:
            asyncio.CancelledError: if the calling task is cancelled; the
                process tree is killed first.
        """
        timeout = timeout if timeout is not None else self.config.execution_timeout
        command = self.build_command(workspace)
        logger = get_logger(__name__, job_id=workspace.job_dir.name)

        logger.info(
            f"Executing command: {' '.join(command)}",
            extra={"metadata": {"cwd": str(workspace.job_dir), "timeout": timeout}},
        )

        start_time = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(workspace.job_dir),
                env=self.build_environment(workspace, options),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start runner: {e}")
            return ProcessOutcome(
                command=command,
                spawn_error=str(e),
                duration=time.monotonic() - start_time,
            )

        stdout_task = asyncio.ensure_future(proc.stdout.read())
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        timed_out = False

        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(f"Runner exceeded timeout of {timeout}s, terminating process tree")
            await self._kill(proc)
        except asyncio.CancelledError:
            logger.warning("Runner cancelled, terminating process tree")
            await self._kill(proc)
            stdout_task.cancel()
            stderr_task.cancel()
            raise

        stdout = await self._drain(stdout_task)
        stderr = await self._drain(stderr_task)
        duration = time.monotonic() - start_time

        self._write_logs(workspace.job_dir, stdout, stderr)

        outcome = ProcessOutcome(
            command=command,
            exit_code=None if timed_out else proc.returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            duration=duration,
        )

        log_performance(
            logger,
            "runner_execution",
            duration,
            exit_code=outcome.exit_code,
            timed_out=timed_out,
        )
        return outcome

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        killed = await asyncio.to_thread(
            terminate_process_tree, proc.pid, self.config.kill_grace_period
        )
        if killed:
            get_logger(__name__).debug(f"Force-killed runner processes: {killed}")
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.config.kill_grace_period or 1.0)
        except asyncio.TimeoutError:
            get_logger(__name__).error(f"Runner process {proc.pid} did not exit after kill")

    @staticmethod
    async def _drain(task: "asyncio.Future[bytes]") -> str:
        try:
            data = await asyncio.wait_for(task, timeout=STREAM_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            # A detached descendant may still hold the pipe open.
            return ""
        return data.decode("utf-8", errors="replace")

    @staticmethod
    def _write_logs(job_dir: Path, stdout: str, stderr: str) -> None:
        try:
            (job_dir / STDOUT_LOG).write_text(stdout, encoding="utf-8")
            (job_dir / STDERR_LOG).write_text(stderr, encoding="utf-8")
        except OSError as e:
            get_logger(__name__).warning(f"Could not write runner logs: {e}")
