"""
FastAPI Application - REST API over the calc pipeline.

Endpoints:
    GET    /api/v1/health              Health check
    POST   /api/v1/calc/validate       Validate (and optionally repair) a plan
    POST   /api/v1/calc/build          validate -> repair -> render -> verify
    POST   /api/v1/calc/verify         Sandbox-verify rendered module text

All responses are JSON with explicit Pydantic schemas. Hard pipeline errors
come back as ErrorResponse with a stable error_code.
"""

from typing import Optional, Union

from ..config import get_settings


def create_app(service=None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (creates new if not provided)

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import FastAPI
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install 'calcplan[api]'"
        )

    from .service import APIService, status_for
    from .schemas import (
        # Request models
        ValidateRequest,
        BuildRequest,
        VerifyRequest,
        # Response models
        ValidateResponse,
        BuildResponse,
        VerifyResponse,
        ErrorResponse,
        HealthResponse,
    )

    settings = get_settings()

    app = FastAPI(
        title="calcplan API",
        description="""
Validation, repair, rendering and sandboxed verification of LLM-proposed
damage-calc plans.

## Error Codes

| Code | Description |
|------|-------------|
| `INVALID_INPUT` | Character context could not be read |
| `INVALID_PLAN` | Plan has nothing salvageable |
| `VERIFICATION_FAILED` | Rendered module failed the sandboxed run |
        """,
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_service = service or APIService(settings=settings)

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(response: ErrorResponse) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(status_code=status_for(response), content=response.model_dump(mode="json"))

    # =========================================================================
    # Calc Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/calc/validate",
        response_model=ValidateResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Calc"],
        summary="Validate a raw plan",
    )
    async def validate_plan(request: ValidateRequest) -> Union[ValidateResponse, JSONResponse]:
        """
        Validate a raw plan against the character context.

        Unsafe fields and rows are dropped and listed in `warnings`; a plan
        with nothing salvageable comes back with `valid=false`.
        """
        response = api_service.validate(request)
        if isinstance(response, ErrorResponse):
            return make_error_response(response)
        return response

    @app.post(
        "/api/v1/calc/build",
        response_model=BuildResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid input"},
            422: {"model": ErrorResponse, "description": "Invalid plan or verification failure"},
        },
        tags=["Calc"],
        summary="Build a calc.js module",
    )
    async def build_calc(request: BuildRequest) -> Union[BuildResponse, JSONResponse]:
        """
        Build a calc.js module.

        Falls back to the heuristic plan when no plan is given or the given
        plan fails; `used_plan` and `error` report the fallback.
        """
        response = api_service.build(request)
        if isinstance(response, ErrorResponse):
            return make_error_response(response)
        return response

    @app.post(
        "/api/v1/calc/verify",
        response_model=VerifyResponse,
        responses={422: {"model": ErrorResponse}},
        tags=["Calc"],
        summary="Verify rendered module text",
    )
    async def verify_calc(request: VerifyRequest) -> Union[VerifyResponse, JSONResponse]:
        response = api_service.verify(request)
        if isinstance(response, ErrorResponse):
            return make_error_response(response)
        return response

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/api/v1/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return api_service.health()

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "calcplan API",
            "version": "1.0.0",
            "docs": "/api/docs",
            "health": "/api/v1/health",
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: Optional[bool] = None):
    """Run the API server with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        raise ImportError("uvicorn not installed. Install with: pip install 'calcplan[api]'")

    if reload is None:
        reload = get_settings().env == "development"
    uvicorn.run("calcplan.api.app:create_app", host=host, port=port, reload=reload, factory=True)
