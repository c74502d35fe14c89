"""
Pydantic Schemas for API - request/response models for OpenAPI.

These models define the contract between callers (batch tools, HTTP clients,
the CLI) and the calc pipeline. Input and plan payloads keep the camelCase
JSON shape the pipeline consumes.

Error Codes:
- INVALID_INPUT: the character context could not be read (unknown game, bad shape)
- INVALID_PLAN: the plan has nothing salvageable (no details, empty mainAttr)
- VERIFICATION_FAILED: the rendered module failed the sandboxed run
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class GameId(str, Enum):
    """Supported games."""
    GS = "gs"
    SR = "sr"


class BuildStatus(str, Enum):
    """Build status values."""
    SUCCESS = "success"
    FALLBACK = "fallback"
    CACHED = "cached"


class ErrorCode(str, Enum):
    """Structured error codes."""
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PLAN = "INVALID_PLAN"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Shared Models
# =============================================================================

class CalcInput(BaseModel):
    """Per-character context, camelCase as produced by the upstream scraper."""
    game: GameId
    tables: dict[str, list[str]] = Field(..., description="talent block -> table names")
    name: str = ""
    elem: str = ""
    id: Optional[int] = None
    weapon: Optional[str] = None
    star: Optional[int] = None
    tableUnits: dict[str, dict[str, str]] = Field(default_factory=dict)
    tableSamples: dict[str, dict[str, Any]] = Field(default_factory=dict)
    tableTextSamples: dict[str, dict[str, str]] = Field(default_factory=dict)
    talentDesc: dict[str, str] = Field(default_factory=dict)
    buffHints: list[str] = Field(default_factory=list)
    upstream: Optional[dict[str, Any]] = None
    upstreamDirect: bool = False

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RepairStep(BaseModel):
    """What one repair pass did."""
    name: str
    changed: bool = False
    skipped: bool = False
    reverted: bool = False
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# Request Models
# =============================================================================

class ValidateRequest(BaseModel):
    """Validate a raw plan against a character context."""
    input: CalcInput
    plan: dict[str, Any] = Field(..., description="Raw LLM plan (mainAttr, details, buffs, defDmgKey)")
    repair: bool = Field(False, description="Also run the repair pipeline and return the repaired plan")


class BuildRequest(BaseModel):
    """Build a calc.js module."""
    input: CalcInput
    plan: Optional[dict[str, Any]] = Field(None, description="Raw LLM plan; heuristic plan when omitted")
    verify: bool = Field(True, description="Run the sandboxed verifier on the rendered module")
    created_by: Optional[str] = Field(None, description="Provenance string written into the module")


class VerifyRequest(BaseModel):
    """Verify already rendered module text."""
    input: CalcInput
    js: str = Field(..., description="Rendered calc.js module text")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class ValidateResponse(BaseModel):
    """Response from validating a plan."""
    valid: bool
    plan: Optional[dict[str, Any]] = Field(None, description="Validated (and optionally repaired) plan")
    warnings: list[str] = Field(default_factory=list, description="Fields and rows dropped as unsafe")
    errors: list[str] = Field(default_factory=list)
    repair: list[RepairStep] = Field(default_factory=list)
    api_version: str = "v1"


class BuildResponse(BaseModel):
    """Response from building a module."""
    success: bool
    status: BuildStatus
    js: str
    used_plan: bool = Field(..., description="False when the heuristic fallback plan was used")
    error: Optional[str] = Field(None, description="Why the supplied plan was not used")
    plan: Optional[dict[str, Any]] = None
    warnings: list[str] = Field(default_factory=list)
    repaired: list[str] = Field(default_factory=list, description="Repair passes that changed the plan")
    details_checked: int = 0
    buffs_checked: int = 0
    build_time_ms: int = 0
    api_version: str = "v1"


class VerifyResponse(BaseModel):
    """Response from verifying a module."""
    ok: bool
    details_checked: int = 0
    buffs_checked: int = 0
    passes: list[str] = Field(default_factory=list)
    api_version: str = "v1"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
