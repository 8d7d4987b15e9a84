"""
Pytest configuration and shared fixtures for E2E platform tests.

Provides temporary configurations wired to a fake Playwright runner and
sample test scripts for all test modules.
"""

import sys
from pathlib import Path

import pytest

from e2e_platform.core import config_manager
from e2e_platform.core.config import Config
from e2e_platform.jobs.registry import JobRegistry, JobStore


FAKE_RUNNER = Path(__file__).parent / "fixtures" / "fake_playwright.py"

ENV_VARS = [
    "CI",
    "NODE_PATH",
    "E2E_PLATFORM_LOG_LEVEL",
    "E2E_PLATFORM_JOBS_DIR",
    "E2E_PLATFORM_BUNDLES_DIR",
    "E2E_PLATFORM_LOGS_DIR",
    "E2E_PLATFORM_EXECUTION_TIMEOUT",
    "E2E_PLATFORM_MAX_CONCURRENT_JOBS",
    "E2E_PLATFORM_RETENTION_HOURS",
    "E2E_PLATFORM_CLEANUP_INTERVAL_HOURS",
    "E2E_PLATFORM_RUNNER_COMMAND",
]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: tests that launch real runner subprocesses")
    config.addinivalue_line("markers", "slow: tests that wait on timeouts")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate every test from platform environment variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_manager, "_config_manager", None)
    yield


@pytest.fixture
def temp_config(tmp_path):
    """Configuration rooted in a temporary directory, using the fake runner."""
    return Config(
        log_level="DEBUG",
        project_root=tmp_path,
        jobs_dir=tmp_path / "test-runs",
        bundles_dir=tmp_path / "reports" / "zips",
        logs_dir=tmp_path / "logs",
        runner_command=[sys.executable, str(FAKE_RUNNER)],
        execution_timeout=30,
        kill_grace_period=1.0,
        max_concurrent_jobs=2,
    )


@pytest.fixture
def registry(temp_config):
    return JobRegistry(JobStore(temp_config.jobs_dir))


@pytest.fixture
def passing_script():
    return (
        "await page.goto('https://example.com');\n"
        "await expect(page.locator('h1')).toBeVisible();"
    )


@pytest.fixture
def failing_script():
    return (
        "await page.goto('https://example.com/FAKE_FAIL');\n"
        "await expect(page.locator('#missing')).toBeVisible();"
    )


@pytest.fixture
def recorded_test():
    return """import { test, expect } from '@playwright/test';

test('test', async ({ page }) => {
  // Recorded with codegen
  await page.goto('https://demo.playwright.dev/todomvc/');
  await page.getByPlaceholder('What needs to be done?').click();
  await page.getByPlaceholder('What needs to be done?').fill('buy milk');

  await page.getByPlaceholder('What needs to be done?').press('Enter');
});
"""
