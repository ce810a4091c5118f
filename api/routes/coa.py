"""Chart-of-accounts endpoints.

Template discovery, merged chart preview, assignment validation,
assignment persistence and history, customization previews and template
recommendations.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from coa_engine import (
    AssignmentService,
    CoaAssignmentRequest,
    MergedCoa,
    OrganizationContext,
    OrganizationStatus,
    TemplateLoadError,
    ValidationEngine,
    ValidationResult,
)
from core.audit.history import AssignmentPersistenceError
from core.models.assignment import (
    AvailableTemplate,
    CoaAssignmentHistory,
    OrganizationCoaConfig,
    TemplateAssignmentResult,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_service(request: Request) -> AssignmentService:
    """Assignment service wired at startup."""
    return request.app.state.assignment_service


# =============================================================================
# Request / response models
# =============================================================================

class OrganizationContextBody(BaseModel):
    """Organization facts used by the assignment rules."""
    country: Optional[str] = None
    industry: Optional[str] = None
    status: OrganizationStatus = OrganizationStatus.SETUP
    has_transactions: bool = False
    fiscal_year_end: Optional[date] = None
    regulatory_requirements: List[str] = Field(default_factory=list)
    multi_location: bool = False
    parent_organization_id: Optional[str] = None


class AssignmentRequestBody(BaseModel):
    """Request to assign (or validate) COA templates."""
    organization_id: str = Field(..., description="Organization receiving the chart")
    assigned_by: str = Field(..., description="User making the assignment")
    country_template: Optional[str] = Field(None, description="Country template code")
    industry_template: Optional[str] = Field(None, description="Industry template code")
    allow_custom_accounts: bool = False
    context: Optional[OrganizationContextBody] = Field(None, description="Enables full rule validation")

    def to_request(self) -> CoaAssignmentRequest:
        return CoaAssignmentRequest(
            organization_id=self.organization_id,
            assigned_by=self.assigned_by,
            country_template=self.country_template,
            industry_template=self.industry_template,
            allow_custom_accounts=self.allow_custom_accounts,
        )

    def to_context(self) -> Optional[OrganizationContext]:
        if self.context is None:
            return None
        return OrganizationContext(organization_id=self.organization_id, **self.context.model_dump())


class ValidationResponse(BaseModel):
    """Rule validation outcome."""
    valid: bool
    summary: str
    errors: List[Dict[str, Any]]
    warnings: List[Dict[str, Any]]
    recommendations: List[Dict[str, Any]]


class MergedChartResponse(BaseModel):
    """Merged chart preview."""
    layers: List[str]
    metadata: Dict[str, Any]
    layer_counts: Dict[str, int]
    overrides: List[Dict[str, str]]
    accounts: List[Dict[str, Any]]
    structure: ValidationResponse


class CustomizationBody(BaseModel):
    """Organization changes applied on top of the assigned chart."""
    additional_accounts: List[Dict[str, Any]] = Field(default_factory=list)
    account_modifications: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    exclude_accounts: List[str] = Field(default_factory=list)


class RecommendationRequest(BaseModel):
    """Free-text business profile."""
    country: Optional[str] = None
    industry: Optional[str] = None
    business_type: Optional[str] = None
    description: Optional[str] = None


class RecommendationResponse(BaseModel):
    """Recommended templates."""
    country_template: Optional[str]
    industry_template: Optional[str]
    reasons: List[str]


# =============================================================================
# Templates
# =============================================================================

@router.get("/templates", response_model=List[AvailableTemplate])
async def list_templates(service: AssignmentService = Depends(get_service)) -> List[AvailableTemplate]:
    """List installed country and industry templates."""
    return service.get_available_templates()


@router.get("/templates/merged", response_model=MergedChartResponse)
async def merged_chart(
    country: Optional[str] = Query(None, description="Country template code"),
    industry: Optional[str] = Query(None, description="Industry template code"),
    service: AssignmentService = Depends(get_service),
) -> MergedChartResponse:
    """Preview the chart produced by a template combination."""
    try:
        merged = service.merger.build_merged_coa(country, industry)
    except TemplateLoadError as e:
        logger.error(f"Template load failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    structure = service.validation_engine.validate_account_structure(merged.accounts)
    return _chart_response(merged, structure)


def _chart_response(merged: MergedCoa, structure: ValidationResult) -> MergedChartResponse:
    data = merged.to_dict()
    return MergedChartResponse(
        layers=data["layers"],
        metadata=data["metadata"],
        layer_counts=data["layer_counts"],
        overrides=data["overrides"],
        accounts=data["accounts"],
        structure=ValidationResponse(
            summary=ValidationEngine.get_validation_summary(structure),
            **structure.to_dict(),
        ),
    )


@router.post("/templates/reload")
async def reload_templates(service: AssignmentService = Depends(get_service)) -> Dict[str, str]:
    """Drop cached templates."""
    service.reload_templates()
    return {"status": "reloaded"}


# =============================================================================
# Validation / assignment
# =============================================================================

@router.post("/validate", response_model=ValidationResponse)
async def validate_assignment(
    body: AssignmentRequestBody,
    service: AssignmentService = Depends(get_service),
) -> ValidationResponse:
    """Run the assignment rules without persisting anything."""
    context = body.to_context() or OrganizationContext(organization_id=body.organization_id)
    engine = service.validation_engine
    result = engine.validate_coa_assignment(body.to_request(), context)
    return ValidationResponse(summary=engine.get_validation_summary(result), **result.to_dict())


@router.post("/assignments", response_model=TemplateAssignmentResult)
async def assign_templates(
    body: AssignmentRequestBody,
    service: AssignmentService = Depends(get_service),
) -> TemplateAssignmentResult:
    """Validate, merge and persist a template assignment."""
    try:
        return await service.assign_template(body.to_request(), body.to_context())
    except AssignmentPersistenceError as e:
        raise HTTPException(status_code=502, detail=f"Assignment could not be persisted: {e}")
    except TemplateLoadError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/assignments/{organization_id}", response_model=OrganizationCoaConfig)
async def get_assignment(
    organization_id: str,
    service: AssignmentService = Depends(get_service),
) -> OrganizationCoaConfig:
    """Current configuration of an organization."""
    try:
        config = await service.get_organization_assignment(organization_id)
    except AssignmentPersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    if config is None:
        raise HTTPException(status_code=404, detail=f"No COA assignment for {organization_id}")
    return config


@router.get("/assignments/{organization_id}/history", response_model=List[CoaAssignmentHistory])
async def get_history(
    organization_id: str,
    service: AssignmentService = Depends(get_service),
) -> List[CoaAssignmentHistory]:
    """Assignment history of an organization, oldest first."""
    try:
        return await service.get_assignment_history(organization_id)
    except AssignmentPersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/assignments/{organization_id}/customizations/preview", response_model=MergedChartResponse)
async def preview_customizations(
    organization_id: str,
    body: CustomizationBody,
    service: AssignmentService = Depends(get_service),
) -> MergedChartResponse:
    """Preview the assigned chart with organization customizations applied."""
    try:
        preview = await service.preview_customizations(
            organization_id,
            additional_accounts=body.additional_accounts,
            account_modifications=body.account_modifications,
            exclude_accounts=body.exclude_accounts,
        )
    except AssignmentPersistenceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except TemplateLoadError as e:
        raise HTTPException(status_code=500, detail=str(e))

    if preview is None:
        raise HTTPException(status_code=404, detail=f"No COA assignment for {organization_id}")
    return _chart_response(preview.chart, preview.validation)


@router.post("/recommendation", response_model=RecommendationResponse)
async def recommend_templates(
    body: RecommendationRequest,
    service: AssignmentService = Depends(get_service),
) -> RecommendationResponse:
    """Suggest templates for a business profile."""
    recommendation = service.get_template_recommendation(body.model_dump())
    return RecommendationResponse(**recommendation.to_dict())
