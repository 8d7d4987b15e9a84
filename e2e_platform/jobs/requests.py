"""
Run request validation and recorded-test conversion.
"""

from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ValidationError
from ..execution.materializer import extract_test_body, validate_script
from ..execution.models import RuntimeOptions, ScriptValidation


class RunRequest(BaseModel):
    """A validated request to run one test script."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    project_label: str = Field(..., min_length=1, description="Project identifier")
    name: str = Field(..., min_length=1, description="Test name")
    script: str = Field(..., min_length=1, description="Playwright test code")
    runtime_options: RuntimeOptions = Field(default_factory=RuntimeOptions)
    callback_url: Optional[str] = Field(None, description="Completion callback URL")

    @field_validator("callback_url")
    @classmethod
    def validate_callback_url(cls, v):
        if v is None or v == "":
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("callback_url must be an http(s) URL")
        return v

    @classmethod
    def from_submission(
        cls,
        script: Optional[str],
        project_label: Optional[str],
        name: Optional[str],
        runtime_options: Union[RuntimeOptions, Dict[str, Any], None] = None,
        callback_url: Optional[str] = None,
    ) -> "RunRequest":
        """
        Build a request from loosely typed submission fields.

        Raises:
            ValidationError: listing every violation found
        """
        missing = [
            field
            for field, value in (
                ("project_label", project_label),
                ("name", name),
                ("script", script),
            )
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                validation_type="missing_fields",
                violations=[f"{field} is required" for field in missing],
            )

        if isinstance(runtime_options, RuntimeOptions):
            runtime_options = runtime_options.model_dump()

        try:
            return cls(
                project_label=project_label,
                name=name,
                script=script,
                runtime_options=runtime_options or {},
                callback_url=callback_url,
            )
        except PydanticValidationError as e:
            violations = _format_violations(e)
            raise ValidationError(
                f"Invalid run request: {'; '.join(violations)}",
                validation_type="invalid_fields",
                violations=violations,
            ) from e


class SubmissionReceipt(BaseModel):
    """Returned to the caller as soon as a job is queued."""

    job_id: str
    warnings: List[str] = Field(default_factory=list)


def _format_violations(error: PydanticValidationError) -> List[str]:
    violations = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        violations.append(f"{location}: {item['msg']}")
    return violations


def convert_recorded_test(
    recorded_code: str,
    project_label: str = "recorded-test",
    name: str = "Recorded Test",
    runtime_options: Union[RuntimeOptions, Dict[str, Any], None] = None,
    callback_url: Optional[str] = None,
) -> Tuple[RunRequest, ScriptValidation]:
    """
    Convert a codegen-recorded test file into a run request.

    The import lines and the test wrapper are stripped so only the body is
    submitted. The returned validation is advisory.

    Raises:
        ValidationError: if the recorded code is empty or the options are invalid
    """
    if not recorded_code or not recorded_code.strip():
        raise ValidationError(
            "Missing required field: recorded test code",
            validation_type="missing_fields",
            violations=["recorded_code is required"],
        )

    body = extract_test_body(recorded_code)
    request = RunRequest.from_submission(
        script=body,
        project_label=project_label,
        name=name,
        runtime_options=runtime_options,
        callback_url=callback_url,
    )
    return request, validate_script(body)
