"""
Main CLI interface for the E2E platform.

Runs a single test script to completion and inspects, deletes and cleans
up the jobs recorded under the configured jobs directory.
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core.config import Config
from .core.config_manager import get_config_manager
from .core.exceptions import E2EPlatformError, JobNotFoundError, ValidationError
from .core.logging_config import setup_logging
from .execution.models import Engine
from .jobs.models import Job
from .jobs.orchestrator import JobOrchestrator
from .jobs.registry import JobRegistry, JobStore
from .jobs.requests import convert_recorded_test


STATE_ICONS = {
    "queued": "⏳",
    "running": "🏃",
    "passed": "✅",
    "failed": "❌",
}


def _load_config(args: argparse.Namespace) -> Config:
    config_file = getattr(args, "config_file", None)
    return get_config_manager(Path(config_file) if config_file else None).get_config()


def _read_script(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    script_path = Path(path)
    if not script_path.exists():
        raise ValidationError(f"Script file not found: {script_path}", validation_type="file")
    return script_path.read_text(encoding="utf-8")


def _runtime_options(args: argparse.Namespace) -> dict:
    return {
        "engine": args.engine,
        "headless": not args.headed,
        "viewport": {"width": args.width, "height": args.height},
    }


def _print_job(job: Job, verbose: bool = False) -> None:
    icon = STATE_ICONS.get(job.state.value, "•")
    print(f"{icon} {job.name} [{job.state.value}]")
    print(f"   Job ID: {job.id}")
    print(f"   Project: {job.project_label}")
    print(f"   Browser: {job.runtime_options.engine.value}")
    print(f"   Passed/Failed: {job.counts.passed}/{job.counts.failed}")
    if job.duration_ms is not None:
        print(f"   Duration: {job.duration_ms / 1000:.2f}s")
    if job.artifacts is not None:
        print(f"   Bundle: {job.artifacts.bundle_path}")
    elif job.packaging_error:
        print(f"   Packaging error: {job.packaging_error}")
    for warning in job.warnings:
        print(f"   ⚠️  {warning}")
    for error in job.errors:
        print(f"   Error: {error.message}")
        if verbose and error.stack:
            print(error.stack)


def cmd_run(args: argparse.Namespace) -> int:
    """Run one test script and wait for its verdict."""
    config = _load_config(args)
    script = _read_script(args.script)

    async def _run() -> Job:
        async with JobOrchestrator(config) as orchestrator:
            receipt = orchestrator.submit_run(
                script=script,
                project_label=args.project,
                name=args.name or Path(args.script).stem,
                runtime_options=_runtime_options(args),
                callback_url=args.callback_url,
            )
            if not args.json:
                print(f"🚀 Submitted job {receipt.job_id}")
                for warning in receipt.warnings:
                    print(f"   ⚠️  {warning}")
            return await orchestrator.wait_for(receipt.job_id)

    job = asyncio.run(_run())

    if args.json:
        print(json.dumps(job.model_dump(mode="json"), indent=2))
    else:
        _print_job(job, verbose=args.verbose)
    return 0 if job.passed else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show one job."""
    config = _load_config(args)
    job = JobRegistry(JobStore(config.jobs_dir)).get(args.job_id)

    if args.json:
        print(json.dumps(job.model_dump(mode="json"), indent=2))
    else:
        _print_job(job, verbose=args.verbose)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List recorded jobs, newest first."""
    config = _load_config(args)
    jobs = JobRegistry(JobStore(config.jobs_dir)).list(limit=args.limit)

    if args.json:
        print(json.dumps([job.summary() for job in jobs], indent=2))
        return 0

    if not jobs:
        print("No jobs found")
        return 0

    print(f"📋 {len(jobs)} job(s):")
    for job in jobs:
        icon = STATE_ICONS.get(job.state.value, "•")
        created = job.timestamps.created.strftime("%Y-%m-%d %H:%M:%S")
        print(f"   {icon} {job.id}  {created}  {job.project_label}/{job.name}")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a job's files, bundle and record."""
    config = _load_config(args)

    async def _delete():
        orchestrator = JobOrchestrator(config)
        return await orchestrator.delete_job(args.job_id)

    result = asyncio.run(_delete())
    print(f"🗑️  Deleted job {result.job_id}")
    for path in result.removed_paths:
        print(f"   Removed: {path}")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Delete job directories and bundles past the retention window."""
    config = _load_config(args)

    async def _cleanup():
        orchestrator = JobOrchestrator(config)
        return await orchestrator.cleanup_expired(dry_run=args.dry_run)

    summary = asyncio.run(_cleanup())

    if args.json:
        print(json.dumps(summary, indent=2))
        return 0

    prefix = "Would delete" if args.dry_run else "Deleted"
    print(f"🧹 {prefix} {len(summary['deleted_jobs'])} job directories and "
          f"{len(summary['deleted_bundles'])} bundles "
          f"({summary['freed_space'] / 1024 / 1024:.2f} MB)")
    for error in summary["errors"]:
        print(f"   ❌ {error}")
    return 1 if summary["errors"] else 0


def cmd_convert(args: argparse.Namespace) -> int:
    """Convert a codegen-recorded test file into a run request."""
    recorded = _read_script(args.script)
    request, validation = convert_recorded_test(
        recorded,
        project_label=args.project,
        name=args.name,
        runtime_options=_runtime_options(args),
    )

    if args.json:
        print(json.dumps(
            {
                "request": request.model_dump(mode="json"),
                "validation": validation.model_dump(mode="json"),
            },
            indent=2,
        ))
    else:
        print(request.script)
        print()
        if validation.is_valid:
            print("✅ Converted test passed validation")
        else:
            print("⚠️  Validation issues:")
            for issue in validation.issues:
                print(f"   - {issue}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Show, validate or save the effective configuration."""
    manager = get_config_manager(Path(args.config_file) if args.config_file else None)
    config = manager.get_config()

    if args.config_action == "validate":
        issues = manager.validate_config(config)
        if issues:
            print("❌ Configuration validation failed:")
            for issue in issues:
                print(f"   - {issue}")
            return 1
        print("✅ Configuration is valid")
        return 0

    if args.config_action == "save":
        path = manager.save_config(config, Path(args.output) if args.output else None)
        print(f"💾 Configuration saved to {path}")
        return 0

    print(json.dumps(config.to_dict(), indent=2))
    return 0


def _add_runtime_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--engine",
        choices=[engine.value for engine in Engine],
        default=Engine.CHROMIUM.value,
        help="Browser engine (default: chromium)",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--width", type=int, default=1280, help="Viewport width")
    parser.add_argument("--height", type=int, default=720, help="Viewport height")


def create_main_parser() -> argparse.ArgumentParser:
    """Create main CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="e2e-platform",
        description="E2E Platform - run Playwright tests and package their reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  e2e-platform run tests/login.js --project shop --name "Login flow"
  e2e-platform status 3f2b7c1e-...
  e2e-platform list --limit 20
  e2e-platform cleanup --dry-run
  e2e-platform convert recorded.spec.js --json
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-file", help="Path to a YAML or JSON configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run a test script and wait for the result")
    run_parser.add_argument("script", help="Path to the test script, or - for stdin")
    run_parser.add_argument("--project", required=True, help="Project identifier")
    run_parser.add_argument("--name", help="Test name (default: script file name)")
    run_parser.add_argument("--callback-url", help="URL to POST the result to")
    run_parser.add_argument("--json", action="store_true", help="Print the job as JSON")
    _add_runtime_arguments(run_parser)
    run_parser.set_defaults(func=cmd_run)

    status_parser = subparsers.add_parser("status", help="Show a job")
    status_parser.add_argument("job_id", help="Job identifier")
    status_parser.add_argument("--json", action="store_true", help="Print the job as JSON")
    status_parser.set_defaults(func=cmd_status)

    list_parser = subparsers.add_parser("list", help="List jobs, newest first")
    list_parser.add_argument("--limit", type=int, default=100, help="Maximum number of jobs")
    list_parser.add_argument("--json", action="store_true", help="Print jobs as JSON")
    list_parser.set_defaults(func=cmd_list)

    delete_parser = subparsers.add_parser("delete", help="Delete a job and its artifacts")
    delete_parser.add_argument("job_id", help="Job identifier")
    delete_parser.set_defaults(func=cmd_delete)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired jobs and bundles")
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")
    cleanup_parser.add_argument("--json", action="store_true", help="Print the summary as JSON")
    cleanup_parser.set_defaults(func=cmd_cleanup)

    convert_parser = subparsers.add_parser("convert", help="Convert a recorded test into a run request")
    convert_parser.add_argument("script", help="Path to the recorded test, or - for stdin")
    convert_parser.add_argument("--project", default="recorded-test", help="Project identifier")
    convert_parser.add_argument("--name", default="Recorded Test", help="Test name")
    convert_parser.add_argument("--json", action="store_true", help="Print request and validation as JSON")
    _add_runtime_arguments(convert_parser)
    convert_parser.set_defaults(func=cmd_convert)

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "config_action",
        nargs="?",
        choices=["show", "validate", "save"],
        default="show",
        help="Action to perform (default: show)",
    )
    config_parser.add_argument("--output", "-o", help="Destination for 'save'")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_main_parser()

    if args is None:
        args = sys.argv[1:]

    parsed_args = parser.parse_args(args)

    if not hasattr(parsed_args, "func"):
        parser.print_help()
        return 1

    try:
        config = _load_config(parsed_args)
        if parsed_args.verbose:
            config.log_level = "DEBUG"
        setup_logging(config, uuid.uuid4().hex[:8])
        return parsed_args.func(parsed_args)
    except JobNotFoundError as e:
        print(f"❌ {e.message}")
        return 2
    except ValidationError as e:
        print(f"❌ {e.message}")
        for violation in e.violations:
            print(f"   - {violation}")
        return 1
    except E2EPlatformError as e:
        print(f"❌ E2E platform error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n⏹️  Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
