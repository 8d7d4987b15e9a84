"""
Runner result parsing.

Reads the Playwright JSON reporter output for a job and falls back to a
stderr heuristic when no structured result is available.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..core.logging_config import get_logger
from .models import ErrorRecord, ParsedResult, ResultSource


ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
FAILURE_MARKERS = ("failed", "error")

logger = get_logger(__name__)


def strip_ansi(text: Optional[str]) -> str:
    """Remove terminal colour escapes from runner output."""
    if not text:
        return ""
    return ANSI_ESCAPE_RE.sub("", text)


class MalformedReportError(ValueError):
    """The result document is valid JSON but not shaped like a reporter output."""


def _expect(value, kind: type, where: str):
    if not isinstance(value, kind):
        raise MalformedReportError(f"{where} is {type(value).__name__}, expected {kind.__name__}")
    return value


def _first_spec_suite(suites) -> Optional[Dict[str, Any]]:
    """Depth-first search for the first suite that declares specs."""
    for suite in _expect(suites or [], list, "suites"):
        _expect(suite, dict, "suite")
        if suite.get("specs"):
            return suite
        nested = _first_spec_suite(suite.get("suites"))
        if nested is not None:
            return nested
    return None


def _first_result(report: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    First result of the first test, or ``None`` when the report holds none.

    Raises:
        MalformedReportError: if any level has the wrong JSON type.
    """
    suite = _first_spec_suite(report.get("suites"))
    if suite is None:
        return None
    spec = _expect(_expect(suite["specs"], list, "specs")[0], dict, "spec")
    tests = _expect(spec.get("tests") or [], list, "tests")
    if not tests:
        return None
    test = _expect(tests[0], dict, "test")
    results = _expect(test.get("results") or [], list, "results")
    if not results:
        return None
    return _expect(results[0], dict, "result")


def _error_record(error) -> ErrorRecord:
    if isinstance(error, str):
        return ErrorRecord(message=strip_ansi(error) or "Test failed")
    _expect(error, dict, "error")
    message = _expect(error.get("message") or "", str, "error message")
    stack = _expect(error.get("stack") or "", str, "error stack")
    return ErrorRecord(message=strip_ansi(message) or "Test failed", stack=strip_ansi(stack))


class ResultParser:
    """
    Maps runner output to a :class:`ParsedResult`.

    Only the first result of the first test is authoritative; a job runs a
    single materialized test.
    """

    def parse(
        self,
        results_path: Union[str, Path],
        stderr: str = "",
    ) -> ParsedResult:
        results_path = Path(results_path)

        report = self._load_report(results_path)
        if report is not None:
            try:
                result = _first_result(report)
                if result is not None:
                    return self._from_result(result)
            except MalformedReportError as e:
                logger.warning(
                    f"Malformed test results in {results_path.name}: {e}, falling back to stderr",
                    extra={"metadata": {"results_path": str(results_path)}},
                )
                return self.parse_stderr(stderr)
            logger.warning(
                f"No test result found in {results_path.name}, falling back to stderr",
                extra={"metadata": {"results_path": str(results_path)}},
            )

        return self.parse_stderr(stderr)

    def _load_report(self, results_path: Path) -> Optional[Dict[str, Any]]:
        if not results_path.exists():
            logger.warning(
                f"Result file missing: {results_path}",
                extra={"metadata": {"results_path": str(results_path)}},
            )
            return None
        try:
            with open(results_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                f"Could not parse test results JSON: {e}",
                extra={"metadata": {"results_path": str(results_path)}},
            )
            return None
        if not isinstance(data, dict):
            logger.warning(f"Unexpected result document type: {type(data).__name__}")
            return None
        return data

    def _from_result(self, result: Dict[str, Any]) -> ParsedResult:
        status = _expect(result.get("status") or "unknown", str, "status")
        passed = status == "passed"
        duration = result.get("duration")
        if duration is not None and (isinstance(duration, bool) or not isinstance(duration, (int, float))):
            raise MalformedReportError(f"duration is {type(duration).__name__}, expected number")

        errors = []
        error = result.get("error")
        if not error and result.get("errors"):
            error = _expect(result["errors"], list, "errors")[0]
        if error:
            errors.append(_error_record(error))
        elif not passed:
            errors.append(ErrorRecord(message=f"Test finished with status: {status}"))

        return ParsedResult(
            passed=passed,
            passed_count=1 if passed else 0,
            failed_count=0 if passed else 1,
            duration_ms=duration,
            raw_status=status,
            errors=errors,
            source=ResultSource.JSON,
        )

    def parse_stderr(self, stderr: str) -> ParsedResult:
        """
        Heuristic verdict from stderr text.

        Any occurrence of a failure marker means failed. Non-empty stderr is
        kept as an error record either way.
        """
        text = strip_ansi(stderr)
        lowered = text.lower()
        passed = not any(marker in lowered for marker in FAILURE_MARKERS)

        errors = []
        if text.strip():
            errors.append(ErrorRecord(message="Test execution error", stack=text))

        return ParsedResult(
            passed=passed,
            passed_count=1 if passed else 0,
            failed_count=0 if passed else 1,
            raw_status=None,
            errors=errors,
            source=ResultSource.STDERR,
        )
