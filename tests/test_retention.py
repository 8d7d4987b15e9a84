"""
Tests for the retention sweep.
"""

import asyncio
import os
import time
from unittest.mock import patch

import pytest

from e2e_platform.jobs.models import Job
from e2e_platform.jobs.orchestrator import JobOrchestrator
from e2e_platform.jobs.retention import RetentionSweeper


DAY = 24 * 3600


def _age(path, seconds):
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


@pytest.fixture
def populated(temp_config, registry):
    """One expired job with bundle, one fresh job."""
    old = Job(project_label="shop", name="old", script="s")
    new = Job(project_label="shop", name="new", script="s")
    registry.put(old)
    registry.put(new)

    temp_config.bundles_dir.mkdir(parents=True)
    old_bundle = temp_config.bundles_dir / f"shop_{old.id}_2024-01-01.zip"
    old_bundle.write_bytes(b"zip")
    new_bundle = temp_config.bundles_dir / f"shop_{new.id}_2024-01-02.zip"
    new_bundle.write_bytes(b"zip")

    _age(temp_config.jobs_dir / old.id, 2 * DAY)
    _age(old_bundle, 2 * DAY)
    return old, new, old_bundle, new_bundle


class TestRetentionSweeper:
    """Test expiry of job directories and bundles."""

    def test_sweeps_expired_items(self, temp_config, registry, populated):
        old, new, old_bundle, new_bundle = populated
        sweeper = RetentionSweeper(temp_config, registry)

        summary = sweeper.sweep()

        assert summary["deleted_jobs"] == [old.id]
        assert summary["deleted_bundles"] == [old_bundle.name]
        assert not (temp_config.jobs_dir / old.id).exists()
        assert not old_bundle.exists()
        assert (temp_config.jobs_dir / new.id).exists()
        assert new_bundle.exists()
        assert old.id not in registry
        assert summary["freed_space"] > 0

    def test_dry_run_deletes_nothing(self, temp_config, registry, populated):
        old, _, old_bundle, _ = populated

        summary = RetentionSweeper(temp_config, registry).sweep(dry_run=True)

        assert summary["deleted_jobs"] == [old.id]
        assert (temp_config.jobs_dir / old.id).exists()
        assert old_bundle.exists()

    def test_in_flight_jobs_are_skipped(self, temp_config, registry, populated):
        old, _, old_bundle, _ = populated
        sweeper = RetentionSweeper(temp_config, registry, in_flight=lambda: {old.id})

        summary = sweeper.sweep()

        assert summary["deleted_jobs"] == []
        assert summary["deleted_bundles"] == []
        assert old.id in summary["skipped"]
        assert (temp_config.jobs_dir / old.id).exists()
        assert old_bundle.exists()

    def test_reference_time_controls_expiry(self, temp_config, registry, populated):
        summary = RetentionSweeper(temp_config, registry).sweep(now=time.time() + 3 * DAY)

        assert len(summary["deleted_jobs"]) == 2
        assert len(summary["deleted_bundles"]) == 2

    def test_missing_directories(self, temp_config, registry):
        summary = RetentionSweeper(temp_config, registry).sweep()

        assert summary["deleted_jobs"] == []
        assert summary["errors"] == []

    @pytest.mark.asyncio
    async def test_scheduled_sweep_runs_until_cancelled(self, temp_config, registry):
        sweeper = RetentionSweeper(temp_config, registry)

        with patch.object(sweeper, "sweep", return_value={}) as sweep:
            task = asyncio.create_task(sweeper.run_forever(interval_hours=0.1 / 3600))
            await asyncio.sleep(0.35)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert sweep.call_count >= 2

    @pytest.mark.asyncio
    async def test_orchestrator_cleanup_skips_in_flight_jobs(self, temp_config):
        orchestrator = JobOrchestrator(temp_config)
        receipt = orchestrator.submit_run("await page.goto('/');", "shop", "t")
        _age(temp_config.jobs_dir / receipt.job_id, 2 * DAY)

        summary = await orchestrator.cleanup_expired()

        assert receipt.job_id in summary["skipped"]
        assert (temp_config.jobs_dir / receipt.job_id).exists()

        await orchestrator.stop()
