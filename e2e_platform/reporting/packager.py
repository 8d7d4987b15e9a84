"""
Artifact bundle packaging.

Collects a finished job's report, raw captures, materialized test and
result files into a single zip bundle with a manifest and a README.
"""

import json
import re
import time
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from jinja2 import Environment, FileSystemLoader

from ..core.config import Config
from ..core.exceptions import PackagingError
from ..core.logging_config import JOB_LOG_FILENAME, get_logger, log_performance
from ..execution.materializer import (
    CONFIG_FILENAME,
    OUTPUT_DIRNAME,
    REPORT_DIRNAME,
    RESULTS_JSON_FILENAME,
    RESULTS_XML_FILENAME,
    TESTS_DIRNAME,
)
from ..execution.executor import STDERR_LOG, STDOUT_LOG
from ..jobs.models import Job
from ..jobs.registry import MIRROR_FILENAME


BUNDLE_VERSION = "1.0.0"
COMPRESSION_LEVEL = 9

# Ordered; the first existing location wins.
REPORT_CANDIDATES = (
    Path(REPORT_DIRNAME),
    Path(OUTPUT_DIRNAME) / REPORT_DIRNAME,
)

RESULT_FILES = (
    MIRROR_FILENAME,
    RESULTS_JSON_FILENAME,
    RESULTS_XML_FILENAME,
    CONFIG_FILENAME,
    STDOUT_LOG,
    STDERR_LOG,
    JOB_LOG_FILENAME,
)

MANIFEST_CONTENTS = {
    f"{REPORT_DIRNAME}/": "HTML test report with interactive features",
    f"{OUTPUT_DIRNAME}/": "Raw test artifacts (traces, videos, screenshots)",
    f"{TESTS_DIRNAME}/": "Test specification files",
    MIRROR_FILENAME: "Job record at the time of packaging",
    RESULTS_JSON_FILENAME: "Playwright native test results",
    RESULTS_XML_FILENAME: "JUnit XML test results",
    CONFIG_FILENAME: "Playwright configuration used for this test",
    STDOUT_LOG: "Runner standard output",
    STDERR_LOG: "Runner standard error",
    JOB_LOG_FILENAME: "Platform log of this job's pipeline",
    "manifest.json": "This manifest file",
    "README.md": "Instructions for viewing the test results",
}

MANIFEST_INSTRUCTIONS = {
    "html_report": "Open playwright-report/index.html in a web browser to view the interactive report",
    "traces": "Open .zip files in test-results/ with Playwright trace viewer",
    "videos": "Video files are in test-results/ directory",
    "screenshots": "Screenshot files are in test-results/ directory",
}

_LABEL_RE = re.compile(r"[^A-Za-z0-9_\-]")


def resolve_report_location(job_dir: Union[str, Path]) -> Optional[Path]:
    """Return the first existing HTML report directory for a job, if any."""
    job_dir = Path(job_dir)
    for candidate in REPORT_CANDIDATES:
        path = job_dir / candidate
        if path.is_dir():
            return path
    return None


def bundle_info(bundle_path: Union[str, Path]) -> Dict[str, Any]:
    """Size and timestamps of a bundle, or ``exists: False``."""
    path = Path(bundle_path)
    try:
        stat = path.stat()
    except OSError as e:
        return {"exists": False, "error": str(e)}
    return {
        "exists": True,
        "path": str(path),
        "size": stat.st_size,
        "size_mb": round(stat.st_size / 1024 / 1024, 2),
        "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
    }


class ArtifactPackager:
    """Builds one immutable zip bundle per finished job."""

    def __init__(self, config: Config, template_dir: Optional[Path] = None):
        self.config = config
        self.bundles_dir = Path(config.bundles_dir)
        self.template_dir = template_dir or (Path(__file__).parent / "templates")
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            keep_trailing_newline=True,
        )

    def job_dir(self, job: Job) -> Path:
        return Path(self.config.jobs_dir) / job.id

    def bundle_name(self, job: Job) -> str:
        label = _LABEL_RE.sub("_", job.project_label)[:50] or "project"
        timestamp = re.sub(r"[:.]", "-", job.timestamps.created.isoformat())
        return f"{label}_{job.id}_{timestamp}.zip"

    def build(self, job: Job) -> Path:
        """
        Write the bundle for ``job``. Blocking; run it in a worker thread.

        Missing optional members are logged and skipped.

        Raises:
            PackagingError: if the job directory is missing or the archive
                cannot be written. No partial archive is left behind.
        """
        logger = get_logger(__name__, job_id=job.id, stage="packaging")
        start_time = time.time()

        job_dir = self.job_dir(job)
        if not job_dir.is_dir():
            raise PackagingError(f"Test directory not found: {job_dir}", job_id=job.id)

        bundle_path = self.bundles_dir / self.bundle_name(job)
        members: List[str] = []

        try:
            self.bundles_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                bundle_path, "w", zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL
            ) as zf:
                report_dir = resolve_report_location(job_dir)
                if report_dir is not None:
                    members += self._add_directory(zf, report_dir, REPORT_DIRNAME)
                else:
                    logger.warning(
                        "Playwright report directory not found in any expected location",
                        extra={"metadata": {"searched": [str(job_dir / c) for c in REPORT_CANDIDATES]}},
                    )

                for dirname in (OUTPUT_DIRNAME, TESTS_DIRNAME):
                    directory = job_dir / dirname
                    if directory.is_dir():
                        members += self._add_directory(zf, directory, dirname, exclude=report_dir)
                    else:
                        logger.warning(f"Directory not found: {dirname}")

                for filename in RESULT_FILES:
                    path = job_dir / filename
                    if path.is_file():
                        zf.write(path, filename)
                        members.append(filename)
                    else:
                        logger.warning(f"File not found: {filename}")

                manifest = self.create_manifest(job, members)
                zf.writestr("manifest.json", json.dumps(manifest, indent=2))
                zf.writestr("README.md", self.create_readme(manifest))
        except (OSError, zipfile.BadZipFile) as e:
            if bundle_path.exists():
                bundle_path.unlink()
            raise PackagingError(
                f"Failed to write artifact bundle: {e}",
                job_id=job.id,
                bundle_path=str(bundle_path),
            ) from e

        size_mb = bundle_path.stat().st_size / 1024 / 1024
        logger.info(f"Zip file created: {bundle_path.name} ({size_mb:.2f} MB)")
        log_performance(
            logger,
            "artifact_packaging",
            time.time() - start_time,
            members=len(members),
            bundle=bundle_path.name,
        )
        return bundle_path

    def create_manifest(self, job: Job, members: List[str]) -> Dict[str, Any]:
        return {
            "job_id": job.id,
            "created_at": datetime.utcnow().isoformat(),
            "version": BUNDLE_VERSION,
            "contents": dict(MANIFEST_CONTENTS),
            "instructions": dict(MANIFEST_INSTRUCTIONS),
            "test_info": {
                "project_label": job.project_label,
                "name": job.name,
                "state": job.state.value,
                "duration_ms": job.duration_ms,
                "engine": job.runtime_options.engine.value,
                "started": job.timestamps.started.isoformat() if job.timestamps.started else None,
                "ended": job.timestamps.ended.isoformat() if job.timestamps.ended else None,
            },
            "members": members,
        }

    def create_readme(self, manifest: Dict[str, Any]) -> str:
        info = manifest.get("test_info") or {}
        duration_ms = info.get("duration_ms")
        duration = f"{duration_ms / 1000:.2f}s" if duration_ms else "Unknown"
        template = self.jinja_env.get_template("README.md.j2")
        return template.render(manifest=manifest, info=info, duration=duration)

    @staticmethod
    def _add_directory(
        zf: zipfile.ZipFile, directory: Path, arc_root: str, exclude: Optional[Path] = None
    ) -> List[str]:
        """Add every file under ``directory``, skipping the ``exclude`` subtree."""
        added = []
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            if exclude is not None and exclude in path.parents:
                continue
            arcname = f"{arc_root}/{path.relative_to(directory).as_posix()}"
            zf.write(path, arcname)
            added.append(arcname)
        return added
