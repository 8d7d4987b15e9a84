"""
Unit tests for script materialization.

Tests body extraction from recorded tests, advisory validation and the
files written into a job workspace.
"""

from pathlib import Path

import pytest

from e2e_platform.core.exceptions import MaterializationError
from e2e_platform.execution.materializer import (
    ScriptMaterializer,
    clean_test_code,
    display_title,
    extract_test_body,
    sanitize_identifier,
    validate_script,
)
from e2e_platform.execution.models import Engine, RuntimeOptions, Viewport


class TestSanitizeIdentifier:
    """Test file name identifiers."""

    def test_replaces_non_alphanumeric_characters(self):
        assert sanitize_identifier("Login Test #1") == "Login_Test__1"

    def test_is_deterministic(self):
        assert sanitize_identifier("checkout/flow v2") == sanitize_identifier("checkout/flow v2")

    def test_non_ascii_is_replaced(self):
        assert sanitize_identifier("café") == "caf_"

    def test_falls_back_when_nothing_survives(self):
        assert sanitize_identifier("") == "test"
        assert sanitize_identifier("☃☃") == "test"

    def test_path_separators_cannot_escape(self):
        assert "/" not in sanitize_identifier("../../etc/passwd")
        assert "." not in sanitize_identifier("../../etc/passwd")


class TestExtractTestBody:
    """Test body extraction from the accepted wrapper shapes."""

    def test_bare_snippet_is_kept(self):
        body = extract_test_body("await page.goto('https://example.com');")
        assert body == "await page.goto('https://example.com');"

    def test_recorded_test_is_unwrapped(self, recorded_test):
        body = extract_test_body(recorded_test)

        lines = body.splitlines()
        assert lines[0] == "await page.goto('https://demo.playwright.dev/todomvc/');"
        assert len(lines) == 4
        assert "import" not in body
        assert "Recorded with codegen" not in body

    def test_describe_wrapper_is_unwrapped(self):
        code = """const { test, expect } = require('@playwright/test');

test.describe('Suite', () => {
  test('case', async ({ page }) => {
    await page.goto('https://example.com');
  });
});
"""
        assert extract_test_body(code) == "await page.goto('https://example.com');"

    def test_bare_arrow_is_unwrapped(self):
        code = "async ({ page }) => {\n  await page.goto('https://example.com');\n}"
        assert extract_test_body(code) == "await page.goto('https://example.com');"

    def test_clean_test_code_drops_comments_and_blank_lines(self):
        code = "  // comment\n\n  await page.goto('/');\n   \n"
        assert clean_test_code(code) == "await page.goto('/');"


class TestValidateScript:
    """Test advisory script validation."""

    def test_valid_script(self, passing_script):
        validation = validate_script(passing_script)

        assert validation.is_valid
        assert validation.issues == []
        assert validation.has_navigation
        assert validation.has_interactions
        assert validation.line_count == 2

    def test_missing_navigation_and_interaction(self):
        validation = validate_script("console.log('hi');")

        assert not validation.is_valid
        assert any("page.goto()" in issue for issue in validation.issues)
        assert "Test does not contain any page interactions" in validation.issues

    def test_recorded_locator_calls_count_as_interactions(self, recorded_test):
        validation = validate_script(extract_test_body(recorded_test))
        assert validation.has_interactions

    def test_mismatched_delimiters(self):
        validation = validate_script("await page.goto('/'; { [")

        assert "Mismatched parentheses detected" in validation.issues
        assert "Mismatched braces detected" in validation.issues
        assert "Mismatched brackets detected" in validation.issues


class TestScriptMaterializer:
    """Test workspace materialization."""

    def test_writes_spec_and_config(self, tmp_path, passing_script):
        materializer = ScriptMaterializer()
        job_dir = tmp_path / "job-1"

        workspace = materializer.materialize(job_dir, "Login flow", passing_script)

        assert workspace.test_file == job_dir / "tests" / "Login_flow.spec.js"
        assert workspace.test_file.exists()
        assert workspace.config_file == job_dir / "playwright.config.js"
        assert workspace.config_file.exists()
        assert workspace.results_json == job_dir / "test-results.json"
        assert workspace.warnings == []

    def test_spec_file_wraps_body(self, tmp_path, passing_script):
        workspace = ScriptMaterializer().materialize(tmp_path / "job", "Login flow", passing_script)
        content = workspace.test_file.read_text()

        assert "require('@playwright/test')" in content
        assert 'test.describe("Login flow"' in content
        assert 'test("Login flow", async ({ page }) => {' in content
        assert "      await page.goto('https://example.com');" in content
        assert "throw error;" in content

    def test_title_cannot_break_out_of_string_literal(self, tmp_path, passing_script):
        workspace = ScriptMaterializer().materialize(
            tmp_path / "job", "x\"); process.exit(1); (\"", passing_script
        )
        content = workspace.test_file.read_text()

        assert "process.exit(1); (" not in content
        assert display_title("x\"); process.exit(1); (\"") == "x processexit1"

    def test_runner_config_reflects_options(self, tmp_path, passing_script):
        options = RuntimeOptions(
            engine=Engine.FIREFOX,
            headless=False,
            viewport=Viewport(width=1920, height=1080),
        )
        workspace = ScriptMaterializer().materialize(tmp_path / "job", "t", passing_script, options)
        content = workspace.config_file.read_text()

        assert "devices[\"Desktop Firefox\"]" in content
        assert 'name: "firefox"' in content
        assert "headless: false" in content
        assert "viewport: { width: 1920, height: 1080 }" in content
        assert "outputFile: \"test-results.json\"" in content
        assert "outputDir: \"./test-results\"" in content
        assert "retries: 0" in content
        assert "workers: 1" in content

    def test_viewport_overrides_device_defaults(self, tmp_path, passing_script):
        workspace = ScriptMaterializer().materialize(tmp_path / "job", "t", passing_script)
        content = workspace.config_file.read_text()

        device_pos = content.index("...devices[")
        viewport_pos = content.index("viewport:", device_pos)
        assert viewport_pos > device_pos

    def test_validation_issues_become_warnings(self, tmp_path):
        workspace = ScriptMaterializer().materialize(tmp_path / "job", "t", "console.log('x');")

        assert workspace.warnings
        assert workspace.test_file.exists()

    def test_unwritable_workspace_raises(self, tmp_path, passing_script):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")

        with pytest.raises(MaterializationError) as exc_info:
            ScriptMaterializer().materialize(blocker / "job", "t", passing_script)

        assert exc_info.value.error_code == "MATERIALIZATION_FAILED"

    def test_templates_ship_with_package(self):
        materializer = ScriptMaterializer()
        assert (Path(materializer.template_dir) / "test_spec.js.j2").exists()
        assert (Path(materializer.template_dir) / "playwright.config.js.j2").exists()
