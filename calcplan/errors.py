"""
Error taxonomy for the calc generation pipeline.

Hard errors (raised to the caller):
- PlanValidationError: nothing salvageable in the plan (no details, empty mainAttr)
- VerificationError: the rendered module threw or produced out-of-range numbers

Soft errors (caught inside the validator / repair engine, logged, field dropped):
- ExpressionError: a fragment failed the safety checks
- TableRefError: a fragment referenced an unknown talent block or table
"""

from __future__ import annotations

ERROR_PREFIX = "[calcplan]"


class CalcPlanError(Exception):
    """Base class for all calcplan errors."""


class PlanValidationError(CalcPlanError):
    """Raised when the plan as a whole cannot be used."""

    def __init__(self, reason: str, errors: list[str] | None = None):
        self.reason = reason
        self.errors = errors or []
        super().__init__(f"{ERROR_PREFIX} invalid LLM plan: {reason}")


class ExpressionError(CalcPlanError):
    """Raised when an expression fragment is rejected."""

    def __init__(self, reason: str, field: str = "expr"):
        self.field = field
        self.reason = reason
        super().__init__(f"{field} {reason}")


class TableRefError(ExpressionError):
    """
    Raised when a talent table reference cannot be resolved.

    kind is one of "unsupported talent key" / "unknown table".
    """

    UNSUPPORTED_TALENT = "unsupported talent key"
    UNKNOWN_TABLE = "unknown table"

    def __init__(self, kind: str, talent: str, table: str | None = None, field: str = "expr"):
        self.kind = kind
        self.talent = talent
        self.table = table
        if table is None:
            reason = f"{kind}: talent.{talent}"
        else:
            reason = f"{kind}: talent.{talent}[{table!r}]"
        super().__init__(reason, field=field)


class VerificationError(CalcPlanError):
    """Raised when the sandboxed run of a rendered module fails."""

    def __init__(self, stage: str, message: str, target: str = "", pass_label: str = ""):
        self.stage = stage
        self.target = target
        self.pass_label = pass_label
        self.message = message
        where = f" ({pass_label})" if pass_label else ""
        subject = f" [{target}]" if target else ""
        super().__init__(f"{ERROR_PREFIX} Generated calc.js invalid {stage}{where}{subject}: {message}")


class SandboxTimeout(VerificationError):
    """Raised when the evaluator exceeds its wall-clock or step budget."""

    def __init__(self, message: str):
        super().__init__("module", message)
