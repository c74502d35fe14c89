"""
API Module - HTTP interface over the calc pipeline.

Exposes validate / build / verify for batch tools and HTTP clients:
1. Validate a raw LLM plan (optionally repaired) and list what was dropped
2. Build a calc.js module with heuristic fallback
3. Verify rendered module text in the sandbox

The service layer is framework-agnostic; FastAPI is only needed for create_app.
"""

from .schemas import (
    # Requests
    ValidateRequest,
    BuildRequest,
    VerifyRequest,
    # Responses
    ValidateResponse,
    BuildResponse,
    VerifyResponse,
    ErrorResponse,
    HealthResponse,
    # Shared
    CalcInput,
    RepairStep,
    GameId,
    BuildStatus,
    ErrorCode,
)
from .service import APIService
from .app import create_app

__all__ = [
    # Requests
    "ValidateRequest",
    "BuildRequest",
    "VerifyRequest",
    # Responses
    "ValidateResponse",
    "BuildResponse",
    "VerifyResponse",
    "ErrorResponse",
    "HealthResponse",
    # Shared
    "CalcInput",
    "RepairStep",
    "GameId",
    "BuildStatus",
    "ErrorCode",
    # Service
    "APIService",
    "create_app",
]
