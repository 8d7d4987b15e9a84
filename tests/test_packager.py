"""
Tests for artifact bundle packaging.
"""

import json
import zipfile
from unittest.mock import patch

import pytest

from e2e_platform.core.exceptions import PackagingError
from e2e_platform.jobs.models import Job
from e2e_platform.reporting.packager import (
    ArtifactPackager,
    bundle_info,
    resolve_report_location,
)


@pytest.fixture
def finished_job():
    job = Job(project_label="shop-web", name="Checkout", script="await page.goto('/');")
    job.mark_running()
    job.finish(passed=True, duration_ms=2500)
    return job


@pytest.fixture
def job_dir(temp_config, finished_job):
    path = temp_config.jobs_dir / finished_job.id
    (path / "playwright-report").mkdir(parents=True)
    (path / "playwright-report" / "index.html").write_text("<html></html>")
    (path / "test-results" / "checkout-chromium").mkdir(parents=True)
    (path / "test-results" / "checkout-chromium" / "trace.zip").write_bytes(b"trace")
    (path / "tests").mkdir()
    (path / "tests" / "Checkout.spec.js").write_text("test()")
    (path / "result.json").write_text(finished_job.model_dump_json())
    (path / "test-results.json").write_text("{}")
    (path / "playwright.config.js").write_text("module.exports = {}")
    return path


@pytest.fixture
def packager(temp_config):
    return ArtifactPackager(temp_config)


class TestArtifactPackager:
    """Test bundle construction."""

    def test_bundle_name(self, packager, finished_job):
        name = packager.bundle_name(finished_job)

        assert name.startswith(f"shop-web_{finished_job.id}_")
        assert name.endswith(".zip")
        assert ":" not in name

    def test_builds_bundle_in_insertion_order(self, packager, finished_job, job_dir, temp_config):
        bundle = packager.build(finished_job)

        assert bundle.parent == temp_config.bundles_dir
        with zipfile.ZipFile(bundle) as zf:
            names = zf.namelist()

        assert names[0] == "playwright-report/index.html"
        assert names.index("test-results/checkout-chromium/trace.zip") < names.index(
            "tests/Checkout.spec.js"
        )
        assert names.index("tests/Checkout.spec.js") < names.index("result.json")
        assert names[-2:] == ["manifest.json", "README.md"]
        assert "test-results.xml" not in names

    def test_manifest(self, packager, finished_job, job_dir):
        bundle = packager.build(finished_job)

        with zipfile.ZipFile(bundle) as zf:
            manifest = json.loads(zf.read("manifest.json"))
            readme = zf.read("README.md").decode()

        assert manifest["job_id"] == finished_job.id
        assert manifest["version"] == "1.0.0"
        assert manifest["test_info"]["state"] == "passed"
        assert manifest["test_info"]["engine"] == "chromium"
        assert "playwright-report/" in manifest["contents"]
        assert "html_report" in manifest["instructions"]
        assert "playwright-report/index.html" in manifest["members"]

        assert "# Test Results - Checkout" in readme
        assert finished_job.id in readme
        assert "2.50s" in readme

    def test_report_found_under_test_results(self, packager, finished_job, job_dir):
        (job_dir / "playwright-report" / "index.html").unlink()
        (job_dir / "playwright-report").rmdir()
        nested = job_dir / "test-results" / "playwright-report"
        nested.mkdir()
        (nested / "index.html").write_text("<html></html>")

        assert resolve_report_location(job_dir) == nested

        bundle = packager.build(finished_job)
        with zipfile.ZipFile(bundle) as zf:
            names = zf.namelist()

        assert "playwright-report/index.html" in names
        assert "test-results/checkout-chromium/trace.zip" in names
        assert not [n for n in names if n.startswith("test-results/playwright-report/")]
        assert len(names) == len(set(names))

    def test_missing_items_are_skipped(self, packager, finished_job, temp_config):
        (temp_config.jobs_dir / finished_job.id).mkdir(parents=True)

        bundle = packager.build(finished_job)

        with zipfile.ZipFile(bundle) as zf:
            assert zf.namelist() == ["manifest.json", "README.md"]

    def test_missing_job_directory_raises(self, packager, finished_job):
        with pytest.raises(PackagingError) as exc_info:
            packager.build(finished_job)
        assert exc_info.value.error_code == "PACKAGING_FAILED"

    def test_partial_archive_is_removed(self, packager, finished_job, job_dir, temp_config):
        with patch.object(zipfile.ZipFile, "writestr", side_effect=OSError("disk full")):
            with pytest.raises(PackagingError):
                packager.build(finished_job)

        assert list(temp_config.bundles_dir.glob("*.zip")) == []

    def test_unwritable_bundles_dir_raises(self, packager, finished_job, job_dir, temp_config):
        temp_config.bundles_dir.parent.mkdir(parents=True, exist_ok=True)
        temp_config.bundles_dir.write_text("not a directory")

        with pytest.raises(PackagingError):
            packager.build(finished_job)


class TestBundleInfo:
    """Test bundle metadata lookups."""

    def test_existing_bundle(self, packager, finished_job, job_dir):
        info = bundle_info(packager.build(finished_job))

        assert info["exists"]
        assert info["size"] > 0

    def test_missing_bundle(self, tmp_path):
        info = bundle_info(tmp_path / "nope.zip")

        assert info["exists"] is False
        assert "error" in info
