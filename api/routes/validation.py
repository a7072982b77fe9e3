"""
Validation Routes
=================

HTTP endpoints for the SQL validation pipeline.
"""

from fastapi import APIRouter, Depends, Request

from api.schemas import (
    DryRunRequest,
    DryRunResponse,
    EnhancedValidationRequest,
    EnhancedValidationResponseModel,
    ErrorResponse,
    StageValidationResponse,
    ValidationMetricsResponse,
)
from sql_validation.service import ValidationService

router = APIRouter(prefix="/api/v1/validation", tags=["Validation"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Malformed request"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def get_service(request: Request) -> ValidationService:
    """Dependency to get the configured service from app state."""
    return request.app.state.service


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post(
    "/comprehensive",
    response_model=EnhancedValidationResponseModel,
    responses=ERROR_RESPONSES,
    summary="Validate SQL",
    description=(
        "Runs the stages enabled by the validation level, the optional dry run "
        "and, when requested, self-correction"
    ),
)
async def validate_comprehensive(
    body: EnhancedValidationRequest,
    service: ValidationService = Depends(get_service),
    request_id: str | None = Depends(get_request_id),
) -> EnhancedValidationResponseModel:
    response = await service.validate(body.to_domain())
    return EnhancedValidationResponseModel.from_response(response, request_id)


@router.post(
    "/self-correct",
    response_model=EnhancedValidationResponseModel,
    responses=ERROR_RESPONSES,
    summary="Validate and correct SQL",
    description="Same as /comprehensive with self-correction always enabled",
)
async def validate_self_correct(
    body: EnhancedValidationRequest,
    service: ValidationService = Depends(get_service),
    request_id: str | None = Depends(get_request_id),
) -> EnhancedValidationResponseModel:
    response = await service.self_correct(body.to_domain())
    return EnhancedValidationResponseModel.from_response(response, request_id)


@router.post(
    "/semantic",
    response_model=StageValidationResponse,
    responses=ERROR_RESPONSES,
    summary="Semantic validation only",
)
async def validate_semantic(
    body: EnhancedValidationRequest,
    service: ValidationService = Depends(get_service),
    request_id: str | None = Depends(get_request_id),
) -> StageValidationResponse:
    outcome = await service.validate_semantic(body.to_domain())
    return StageValidationResponse.from_outcome(outcome, request_id)


@router.post(
    "/business-logic",
    response_model=StageValidationResponse,
    responses=ERROR_RESPONSES,
    summary="Business-logic validation only",
)
async def validate_business_logic(
    body: EnhancedValidationRequest,
    service: ValidationService = Depends(get_service),
    request_id: str | None = Depends(get_request_id),
) -> StageValidationResponse:
    outcome = await service.validate_business_logic(body.to_domain())
    return StageValidationResponse.from_outcome(outcome, request_id)


@router.post(
    "/dry-run",
    response_model=DryRunResponse,
    responses={
        **ERROR_RESPONSES,
        503: {"model": ErrorResponse, "description": "Execution engine unavailable"},
    },
    summary="Preview a SELECT statement",
    description="Security check followed by a bounded, read-only preview",
)
async def dry_run(
    body: DryRunRequest,
    service: ValidationService = Depends(get_service),
    request_id: str | None = Depends(get_request_id),
) -> DryRunResponse:
    result = await service.dry_run(
        body.sql,
        max_rows_to_analyze=body.max_rows_to_analyze,
        max_execution_time=body.max_execution_time,
    )
    return DryRunResponse.from_result(result, request_id)


@router.get(
    "/metrics",
    response_model=ValidationMetricsResponse,
    summary="Validation metrics",
    description="Aggregated validation outcomes since startup",
)
async def validation_metrics(
    service: ValidationService = Depends(get_service),
) -> ValidationMetricsResponse:
    return ValidationMetricsResponse.from_metrics(service.metrics())
