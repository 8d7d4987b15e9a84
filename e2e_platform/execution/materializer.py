"""
Script materialization.

Turns a raw Playwright test snippet (or a full recorded test file) into a
self-contained spec file plus a per-job runner configuration on disk.
"""

import json
import re
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..core.exceptions import MaterializationError
from ..core.logging_config import get_logger
from .models import MaterializedScript, RuntimeOptions, ScriptValidation


TESTS_DIRNAME = "tests"
OUTPUT_DIRNAME = "test-results"
REPORT_DIRNAME = "playwright-report"
CONFIG_FILENAME = "playwright.config.js"
RESULTS_JSON_FILENAME = "test-results.json"
RESULTS_XML_FILENAME = "test-results.xml"

_QUOTED = r"""(?:'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*"|`[^`]*`)"""
_PAGE_ARGS = r"async\s*\(\s*\{\s*page[^}]*\}\s*\)\s*=>\s*\{"

_IMPORT_RE = re.compile(r"""import\s+\{[^}]+\}\s+from\s+['"][^'"]+['"]\s*;?[ \t]*\n?""")
_REQUIRE_RE = re.compile(
    r"""(?:const|let|var)\s+\{[^}]+\}\s*=\s*require\(\s*['"][^'"]+['"]\s*\)\s*;?[ \t]*\n?"""
)

# Ordered: the most specific wrapper wins.
_WRAPPER_PATTERNS = [
    re.compile(
        r"^test\.describe\(\s*" + _QUOTED + r"\s*,\s*(?:async\s*)?\(\s*\)\s*=>\s*\{\s*"
        r"test\(\s*" + _QUOTED + r"\s*,\s*" + _PAGE_ARGS
        + r"(?P<body>[\s\S]*)\}\s*\)\s*;?\s*\}\s*\)\s*;?\s*$"
    ),
    re.compile(
        r"^test\(\s*" + _QUOTED + r"\s*,\s*" + _PAGE_ARGS
        + r"(?P<body>[\s\S]*)\}\s*\)\s*;?\s*$"
    ),
    re.compile(r"^" + _PAGE_ARGS + r"(?P<body>[\s\S]*)\}\s*;?\s*$"),
]

_NAVIGATION_RE = re.compile(r"await\s+page\.goto\s*\(")
_INTERACTION_RE = re.compile(
    r"await\s+(?:page\.(?:click|dblclick|fill|press|check|uncheck|type|selectOption|hover|"
    r"setInputFiles|getByRole|getByText|getByLabel|getByPlaceholder|getByAltText|getByTitle|"
    r"getByTestId|locator)|expect\s*\()"
)
_DELIMITERS = [("(", ")", "parentheses"), ("{", "}", "braces"), ("[", "]", "brackets")]

BODY_INDENT = " " * 6


def sanitize_identifier(name: str, fallback: str = "test", max_length: int = 100) -> str:
    """Map a free-text name to a filesystem-safe ASCII identifier.

    Every character outside ``[A-Za-z0-9]`` becomes ``_``. The mapping is
    deterministic so the same name always yields the same file name.
    """
    cleaned = re.sub(r"[^A-Za-z0-9]", "_", name or "")[:max_length]
    if not cleaned.strip("_"):
        return fallback
    return cleaned


def display_title(name: str) -> str:
    """Title used for the describe/test blocks."""
    title = re.sub(r"[^A-Za-z0-9\s_\-]", "", name or "").strip()
    return re.sub(r"\s+", " ", title) or "Test"


def clean_test_code(code: str) -> str:
    """Trim lines and drop blank and ``//`` comment-only lines."""
    lines = [line.strip() for line in code.splitlines()]
    return "\n".join(line for line in lines if line and not line.startswith("//"))


def extract_test_body(code: str) -> str:
    """
    Reduce recorded test code to the statements inside the test callback.

    Accepts a bare snippet, a ``test(...)`` block, a ``test.describe``
    block with a single test, or a bare ``async ({ page }) => {}`` arrow.
    Import and require lines for the test framework are removed.
    """
    stripped = _IMPORT_RE.sub("", code.strip())
    stripped = _REQUIRE_RE.sub("", stripped).strip()

    for pattern in _WRAPPER_PATTERNS:
        match = pattern.match(stripped)
        if match:
            return clean_test_code(match.group("body"))

    return clean_test_code(stripped)


def validate_script(code: str) -> ScriptValidation:
    """
    Run advisory static checks on a test body.

    Mismatched delimiters and missing navigation/interaction are reported
    as issues. They never stop a job from running.
    """
    issues: List[str] = []

    has_navigation = bool(_NAVIGATION_RE.search(code))
    has_interactions = bool(_INTERACTION_RE.search(code))

    if not has_navigation:
        issues.append("Test does not contain page.goto() - may not navigate to any page")
    if not has_interactions:
        issues.append("Test does not contain any page interactions")

    for opening, closing, label in _DELIMITERS:
        if code.count(opening) != code.count(closing):
            issues.append(f"Mismatched {label} detected")

    return ScriptValidation(
        is_valid=not issues,
        issues=issues,
        has_navigation=has_navigation,
        has_interactions=has_interactions,
        line_count=len(code.splitlines()),
    )


def _js_string(value) -> str:
    # JSON string literals are valid JS string literals; ensure_ascii keeps
    # U+2028/U+2029 escaped.
    return json.dumps(str(value), ensure_ascii=True)


def _js_bool(value) -> str:
    return "true" if value else "false"


class ScriptMaterializer:
    """
    Writes a runnable test workspace for one job.

    Layout inside ``job_dir``::

        tests/<identifier>.spec.js
        playwright.config.js
    """

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        test_timeout_ms: int = 30000,
        expect_timeout_ms: int = 5000,
        action_timeout_ms: int = 10000,
        navigation_timeout_ms: int = 30000,
    ):
        self.template_dir = template_dir or (Path(__file__).parent / "templates")
        self.test_timeout_ms = test_timeout_ms
        self.expect_timeout_ms = expect_timeout_ms
        self.action_timeout_ms = action_timeout_ms
        self.navigation_timeout_ms = navigation_timeout_ms

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )
        self.jinja_env.filters["js_string"] = _js_string
        self.jinja_env.filters["js_bool"] = _js_bool

    def render_test_file(self, name: str, body: str) -> str:
        indented = "\n".join(f"{BODY_INDENT}{line}" for line in body.splitlines())
        template = self.jinja_env.get_template("test_spec.js.j2")
        return template.render(title=display_title(name), body=indented)

    def render_runner_config(self, options: RuntimeOptions) -> str:
        template = self.jinja_env.get_template("playwright.config.js.j2")
        return template.render(
            tests_dir=f"./{TESTS_DIRNAME}",
            output_dir=f"./{OUTPUT_DIRNAME}",
            report_dir=f"./{REPORT_DIRNAME}",
            results_json=RESULTS_JSON_FILENAME,
            results_xml=RESULTS_XML_FILENAME,
            engine=options.engine.value,
            device=options.engine.device_descriptor,
            headless=options.headless,
            viewport_width=options.viewport.width,
            viewport_height=options.viewport.height,
            test_timeout_ms=self.test_timeout_ms,
            expect_timeout_ms=self.expect_timeout_ms,
            action_timeout_ms=self.action_timeout_ms,
            navigation_timeout_ms=self.navigation_timeout_ms,
        )

    def materialize(
        self,
        job_dir: Union[str, Path],
        name: str,
        script: str,
        options: Optional[RuntimeOptions] = None,
    ) -> MaterializedScript:
        """
        Write the spec file and runner config for a job.

        Args:
            job_dir: Workspace directory owned by the job
            name: Free-text test name supplied by the caller
            script: Raw test code, bare snippet or full recorded file
            options: Runtime options; defaults apply when omitted

        Returns:
            Paths of everything written plus the advisory validation
        """
        job_dir = Path(job_dir)
        options = options or RuntimeOptions()
        logger = get_logger(__name__, job_id=job_dir.name, stage="materialize")

        body = extract_test_body(script)
        validation = validate_script(body)
        if validation.issues:
            logger.warning(
                f"Script validation reported {len(validation.issues)} issue(s)",
                extra={"metadata": {"job_dir": str(job_dir), "issues": validation.issues}},
            )

        tests_dir = job_dir / TESTS_DIRNAME
        test_file = tests_dir / f"{sanitize_identifier(name)}.spec.js"
        config_file = job_dir / CONFIG_FILENAME

        try:
            tests_dir.mkdir(parents=True, exist_ok=True)
            test_file.write_text(self.render_test_file(name, body), encoding="utf-8")
            config_file.write_text(self.render_runner_config(options), encoding="utf-8")
        except OSError as e:
            raise MaterializationError(
                f"Failed to write test workspace: {e}",
                job_id=job_dir.name,
                path=str(job_dir),
            ) from e

        logger.debug(
            f"Materialized test file: {test_file}",
            extra={
                "metadata": {
                    "engine": options.engine.value,
                    "headless": options.headless,
                    "line_count": validation.line_count,
                }
            },
        )

        return MaterializedScript(
            job_dir=job_dir,
            tests_dir=tests_dir,
            test_file=test_file,
            config_file=config_file,
            results_json=job_dir / RESULTS_JSON_FILENAME,
            results_xml=job_dir / RESULTS_XML_FILENAME,
            output_dir=job_dir / OUTPUT_DIRNAME,
            report_dir=job_dir / REPORT_DIRNAME,
            test_title=display_title(name),
            validation=validation,
        )
