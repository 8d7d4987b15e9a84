"""
Retention sweep for job workspaces and artifact bundles.
"""

import asyncio
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Set

from ..core.config import Config
from ..core.logging_config import get_logger
from .registry import JobRegistry


def _tree_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())


class RetentionSweeper:
    """
    Deletes job directories and bundles older than the retention window.

    Jobs reported by ``in_flight`` (queued, running or still packaging) are
    never touched, whatever their age.
    """

    def __init__(
        self,
        config: Config,
        registry: JobRegistry,
        in_flight: Optional[Callable[[], Iterable[str]]] = None,
    ):
        self.config = config
        self.registry = registry
        self.in_flight = in_flight or (lambda: ())
        self.logger = get_logger(__name__)

    def sweep(self, now: Optional[float] = None, dry_run: bool = False) -> Dict[str, Any]:
        """
        Run one cleanup pass. Blocking.

        Args:
            now: Reference time (epoch seconds); defaults to the current time
            dry_run: If True, only report what would be deleted

        Returns:
            Cleanup summary with statistics
        """
        start_time = time.time()
        now = now if now is not None else start_time
        cutoff = now - self.config.retention_seconds
        protected: Set[str] = set(self.in_flight())

        summary: Dict[str, Any] = {
            "deleted_jobs": [],
            "deleted_bundles": [],
            "skipped": [],
            "errors": [],
            "freed_space": 0,
            "dry_run": dry_run,
        }

        jobs_dir = Path(self.config.jobs_dir)
        if jobs_dir.is_dir():
            for job_dir in sorted(jobs_dir.iterdir()):
                if not job_dir.is_dir():
                    continue
                self._sweep_path(job_dir, job_dir.name, cutoff, protected, summary, "deleted_jobs", dry_run)

        bundles_dir = Path(self.config.bundles_dir)
        if bundles_dir.is_dir():
            for bundle in sorted(bundles_dir.glob("*.zip")):
                owner = next((job_id for job_id in protected if job_id in bundle.name), None)
                self._sweep_path(
                    bundle, owner or bundle.name, cutoff, protected, summary, "deleted_bundles", dry_run
                )

        summary["duration"] = time.time() - start_time
        self.logger.info(
            f"Cleanup completed: {len(summary['deleted_jobs'])} job directories, "
            f"{len(summary['deleted_bundles'])} bundles",
            extra={"metadata": summary},
        )
        return summary

    def _sweep_path(
        self,
        path: Path,
        key: str,
        cutoff: float,
        protected: Set[str],
        summary: Dict[str, Any],
        bucket: str,
        dry_run: bool,
    ) -> None:
        try:
            if path.stat().st_mtime >= cutoff:
                return
            if key in protected:
                summary["skipped"].append(path.name)
                self.logger.debug(f"Skipping in-flight job: {path.name}")
                return

            size = _tree_size(path)
            if dry_run:
                self.logger.info(f"Would delete: {path} ({size} bytes)")
            else:
                if path.is_dir():
                    shutil.rmtree(path)
                    self.registry.evict(path.name)
                else:
                    path.unlink()
                self.logger.debug(f"Deleted expired item: {path}")
            summary[bucket].append(path.name)
            summary["freed_space"] += size
        except OSError as e:
            error_msg = f"Failed to delete {path}: {e}"
            summary["errors"].append(error_msg)
            self.logger.error(error_msg)

    async def run_forever(self, interval_hours: Optional[float] = None) -> None:
        """
        Sweep periodically until cancelled.

        Args:
            interval_hours: Cleanup interval in hours; defaults to config
        """
        interval_hours = interval_hours or self.config.cleanup_interval_hours
        self.logger.info(f"Starting scheduled cleanup every {interval_hours} hours")

        while True:
            try:
                await asyncio.sleep(interval_hours * 3600)
                self.logger.info("Running scheduled cleanup")
                await asyncio.to_thread(self.sweep)
            except asyncio.CancelledError:
                self.logger.info("Scheduled cleanup cancelled")
                raise
            except Exception as e:
                self.logger.error(f"Scheduled cleanup failed: {e}")
