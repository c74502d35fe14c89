"""
API Service - Business logic layer between the API and the calc pipeline.

The service:
1. Translates API requests to pipeline calls
2. Maps hard pipeline errors to structured error responses
3. Formats responses

This layer is framework-agnostic (can be used with FastAPI, the CLI, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
import logging

from ..builder import CalcBuilder
from ..config import Settings, get_settings
from ..errors import CalcPlanError, PlanValidationError, VerificationError
from ..plan_schema import CalcSuggestInput, ValidationReport, validate_plan
from ..repair import RepairReport, default_pipeline
from ..sandbox import verify_calc_js
from .schemas import (
    # Requests
    ValidateRequest,
    BuildRequest,
    VerifyRequest,
    CalcInput,
    # Responses
    ValidateResponse,
    BuildResponse,
    VerifyResponse,
    ErrorResponse,
    HealthResponse,
    RepairStep,
    # Enums
    BuildStatus,
    ErrorCode,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "calcplan"
SERVICE_VERSION = "1.0.0"


class InvalidInput(ValueError):
    """Raised when a request's character context cannot be read."""


@dataclass
class APIService:
    """
    Main API service.

    Usage:
        service = APIService()

        response = service.build(BuildRequest(input=..., plan=...))
        if isinstance(response, ErrorResponse):
            ...
    """
    settings: Settings = field(default_factory=get_settings)

    def health(self) -> HealthResponse:
        return HealthResponse(status="healthy", service=SERVICE_NAME, version=SERVICE_VERSION)

    def validate(self, request: ValidateRequest) -> ValidateResponse | ErrorResponse:
        """
        Validate a raw plan; optionally run the repair pipeline over it.

        A plan with nothing salvageable is reported as valid=False rather
        than as an error response.
        """
        try:
            input = self._input(request.input)
        except InvalidInput as e:
            return error_response(ErrorCode.INVALID_INPUT, str(e))

        report = ValidationReport()
        try:
            plan = validate_plan(input, request.plan, report)
        except PlanValidationError as e:
            return ValidateResponse(valid=False, warnings=report.warnings, errors=e.errors or [e.reason])

        steps: list[RepairStep] = []
        if request.repair:
            repair_report = RepairReport()
            plan = default_pipeline().run(input, plan, repair_report)
            steps = [
                RepairStep(name=o.name, changed=o.changed, skipped=o.skipped, reverted=o.reverted, errors=o.errors)
                for o in repair_report.outcomes
            ]
        return ValidateResponse(valid=True, plan=plan.to_dict(), warnings=report.warnings, repair=steps)

    def build(self, request: BuildRequest) -> BuildResponse | ErrorResponse:
        try:
            input = self._input(request.input)
        except InvalidInput as e:
            return error_response(ErrorCode.INVALID_INPUT, str(e))

        builder = CalcBuilder(
            created_by=request.created_by or self.settings.created_by,
            verify=request.verify,
            timeout_ms=self.settings.sandbox_timeout_ms,
        )
        try:
            result = builder.build(input, request.plan)
        except VerificationError as e:
            return error_response(ErrorCode.VERIFICATION_FAILED, str(e), details=_verification_details(e))
        except PlanValidationError as e:
            return error_response(ErrorCode.INVALID_PLAN, str(e), details={"errors": e.errors})
        except CalcPlanError as e:
            logger.error("build failed for %s: %s", input.name or input.id, e)
            return error_response(ErrorCode.INTERNAL_ERROR, str(e))

        verification = result.verification
        return BuildResponse(
            success=True,
            status=BuildStatus(result.status.value),
            js=result.js,
            used_plan=result.used_plan,
            error=result.error,
            plan=result.plan.to_dict() if result.plan else None,
            warnings=result.warnings,
            repaired=result.repair.changed if result.repair else [],
            details_checked=verification.details_checked if verification else 0,
            buffs_checked=verification.buffs_checked if verification else 0,
            build_time_ms=result.build_time_ms,
        )

    def verify(self, request: VerifyRequest) -> VerifyResponse | ErrorResponse:
        try:
            input = self._input(request.input)
        except InvalidInput as e:
            return error_response(ErrorCode.INVALID_INPUT, str(e))

        try:
            report = verify_calc_js(request.js, input, timeout_ms=self.settings.sandbox_timeout_ms)
        except VerificationError as e:
            return error_response(ErrorCode.VERIFICATION_FAILED, str(e), details=_verification_details(e))
        return VerifyResponse(
            ok=True,
            details_checked=report.details_checked,
            buffs_checked=report.buffs_checked,
            passes=report.passes,
        )

    def _input(self, model: CalcInput) -> CalcSuggestInput:
        try:
            input = CalcSuggestInput.from_dict(model.to_payload())
        except ValueError as e:
            raise InvalidInput(str(e)) from e
        if not input.tables:
            raise InvalidInput("tables is empty")
        return input


# HTTP status per error code.
ERROR_STATUS = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.INVALID_PLAN: 422,
    ErrorCode.VERIFICATION_FAILED: 422,
    ErrorCode.INTERNAL_ERROR: 500,
}


def error_response(code: ErrorCode, message: str, details: dict | None = None) -> ErrorResponse:
    return ErrorResponse(error=message, error_code=code, details=details)


def status_for(response: ErrorResponse) -> int:
    return ERROR_STATUS.get(response.error_code, 400)


def _verification_details(e: VerificationError) -> dict:
    out = {"stage": e.stage}
    if e.target:
        out["target"] = e.target
    if e.pass_label:
        out["pass"] = e.pass_label
    return out
