"""
Calc Builder - validate -> repair -> render -> verify for one character.

The builder:
1. Validates the proposed plan (hard errors abort the plan)
2. Runs the repair pipeline over the validated plan
3. Renders calc.js module text
4. Verifies the module in the sandbox (optional)

When no plan is supplied, or the supplied plan fails with a hard error, the
heuristic fallback plan is built instead and the result reports
used_plan=False together with the error that caused the fallback.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Any

from .cache import BuildCache
from .config import get_settings
from .errors import PlanValidationError, VerificationError
from .plan_schema import CalcSuggestInput, CalcSuggestResult, ValidationReport, validate_plan
from .render import heuristic_plan, render_calc_js
from .repair import RepairPipeline, RepairReport, default_pipeline
from .sandbox import VerificationReport, verify_calc_js

logger = logging.getLogger(__name__)

BUILDER_VERSION = "1.0.0"


class BuildStatus(Enum):
    """Status of a build."""
    SUCCESS = "success"
    FALLBACK = "fallback"  # heuristic plan used
    CACHED = "cached"  # retrieved from cache


@dataclass
class BuildResult:
    """
    Result of building one calc.js module.
    """
    status: BuildStatus
    js: str
    used_plan: bool
    error: str | None = None
    plan: CalcSuggestResult | None = None

    validation: ValidationReport | None = None
    repair: RepairReport | None = None
    verification: VerificationReport | None = None

    build_time_ms: int = 0

    @property
    def warnings(self) -> list[str]:
        return list(self.validation.warnings) if self.validation else []

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"js": self.js, "usedPlan": self.used_plan}
        if self.error:
            out["error"] = self.error
        if self.plan is not None:
            out["plan"] = self.plan.to_dict()
        return out


@dataclass
class _Attempt:
    plan: CalcSuggestResult
    js: str
    validation: ValidationReport
    repair: RepairReport | None
    verification: VerificationReport | None


class CalcBuilder:
    """
    Builds calc.js modules.

    Usage:
        builder = CalcBuilder()
        result = builder.build(input, raw_plan)
        if result.used_plan:
            js = result.js
    """

    def __init__(
        self,
        created_by: str | None = None,
        verify: bool = True,
        use_cache: bool = False,
        cache_dir: str | None = None,
        pipeline: RepairPipeline | None = None,
        timeout_ms: int | None = None,
    ):
        settings = get_settings()
        self.created_by = created_by or settings.created_by
        self.verify = verify
        self.pipeline = pipeline or default_pipeline()
        self.timeout_ms = timeout_ms
        self.cache: BuildCache | None = None
        if use_cache:
            self.cache = BuildCache(cache_dir or settings.cache_dir, builder_version=BUILDER_VERSION)

    def build(self, input: CalcSuggestInput, raw_plan: dict[str, Any] | None = None) -> BuildResult:
        """
        Build the module for input.

        Raises:
            CalcPlanError: when even the heuristic fallback cannot be built
        """
        start = time.time()
        input_dict = input.to_dict()

        if self.cache:
            cached = self.cache.get(input_dict, raw_plan)
            if cached is not None:
                logger.debug("cache hit for %s", input.name or input.id)
                return BuildResult(
                    status=BuildStatus.CACHED,
                    js=cached["js"],
                    used_plan=cached["usedPlan"],
                    error=cached.get("error"),
                )

        error: str | None = None
        result: BuildResult | None = None
        if raw_plan is not None:
            try:
                attempt = self.run(input, raw_plan)
                result = self._result(BuildStatus.SUCCESS, attempt, used_plan=True)
            except (PlanValidationError, VerificationError) as e:
                error = str(e)
                logger.warning("plan for %s rejected, using heuristic plan: %s", input.name or input.id, e)
        else:
            error = "no plan supplied"

        if result is None:
            attempt = self.run(input, heuristic_plan(input), repair=False)
            result = self._result(BuildStatus.FALLBACK, attempt, used_plan=False, error=error)

        result.build_time_ms = int((time.time() - start) * 1000)
        if self.cache:
            self.cache.put(input_dict, raw_plan, result.to_dict(), metadata={"name": input.name})
        return result

    def run(self, input: CalcSuggestInput, raw_plan: dict[str, Any], repair: bool = True) -> _Attempt:
        """validate -> repair -> render -> verify, raising on hard errors."""
        validation = ValidationReport()
        plan = validate_plan(input, raw_plan, validation)

        repair_report: RepairReport | None = None
        if repair:
            repair_report = RepairReport()
            plan = self.pipeline.run(input, plan, repair_report)
            if repair_report.changed:
                logger.debug("repair changed: %s", ", ".join(repair_report.changed))

        js = render_calc_js(input, plan, created_by=self.created_by)
        verification = verify_calc_js(js, input, timeout_ms=self.timeout_ms) if self.verify else None
        return _Attempt(plan, js, validation, repair_report, verification)

    def _result(
        self, status: BuildStatus, attempt: _Attempt, used_plan: bool, error: str | None = None,
    ) -> BuildResult:
        return BuildResult(
            status=status,
            js=attempt.js,
            used_plan=used_plan,
            error=error,
            plan=attempt.plan,
            validation=attempt.validation,
            repair=attempt.repair,
            verification=attempt.verification,
        )


def build_calc(
    input: CalcSuggestInput,
    raw_plan: dict[str, Any] | None = None,
    **kwargs: Any,
) -> BuildResult:
    """Convenience wrapper: CalcBuilder(**kwargs).build(input, raw_plan)."""
    return CalcBuilder(**kwargs).build(input, raw_plan)


__all__ = ["BuildStatus", "BuildResult", "CalcBuilder", "build_calc"]
