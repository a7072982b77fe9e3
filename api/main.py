"""
FastAPI Application
===================

Main FastAPI application for the SQL validation service.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from api.middleware.telemetry import TelemetryMiddleware
from api.routes.health import router as health_router
from api.routes.validation import router as validation_router
from api.schemas import ErrorResponse
from observability.logging_config import get_logger, setup_logging
from observability.metrics import metrics_endpoint, setup_metrics, track_validation_metrics
from observability.tracing import setup_tracing
from sql_validation.exceptions import ExternalServiceError, MalformedInputError
from sql_validation.llm.mock import MockLLM
from sql_validation.service import ValidationService, build_service
from sql_validation.settings import ValidationSettings


def create_service(settings: Optional[ValidationSettings] = None) -> ValidationService:
    """Create and configure the validation service."""
    # For demo purposes, corrections come from MockLLM
    # In production, configure with a real LLM
    mock_responses = {
        "missing join condition": [
            "SELECT c.name, o.amount FROM customers c JOIN orders o ON o.customer_id = c.id"
        ],
        "Unknown table: 'customer'": ["SELECT id, name FROM customers"],
        "Unknown table: 'order'": ["SELECT id, amount, order_date FROM orders"],
        "sensitive column": ["SELECT id, name, tier FROM customers"],
    }

    return build_service(
        settings,
        llm=MockLLM(responses=mock_responses),
        telemetry_sink=track_validation_metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    setup_logging(version=__version__)
    logger = get_logger(__name__)
    logger.info("Starting SQL Validation API", version=__version__)

    if getattr(app.state, "service", None) is None:
        app.state.service = create_service()

    yield

    logger.info("Shutting down SQL Validation API")


def create_app(
    service: Optional[ValidationService] = None,
    enable_tracing: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Pre-built service (built from the environment at startup if omitted)
        enable_tracing: Install the OpenTelemetry provider and instrument the app
    """
    app = FastAPI(
        title="SQL Validation API",
        description=(
            "Multi-stage validation of generated SQL: security, semantic, schema "
            "and business-logic checks, dry run and bounded self-correction."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(validation_router)

    setup_metrics(app, version=__version__)
    app.add_route("/metrics", metrics_endpoint)

    if enable_tracing:
        setup_tracing(app, version=__version__)

    @app.exception_handler(MalformedInputError)
    async def malformed_input_handler(request: Request, exc: MalformedInputError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error="MalformedInput",
                message=str(exc),
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_handler(
        request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        get_logger(__name__).warning(
            "external_service_unavailable", service=exc.service, error=exc.message
        )
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(
                error="ServiceUnavailable",
                message=f"{exc.service} is unavailable",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        get_logger(__name__).exception("unhandled_error", error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="An unexpected error occurred",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
