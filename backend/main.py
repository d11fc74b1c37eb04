"""
TaxScope - FastAPI Backend
==========================
API server for the tax analysis workflow.

Architecture:
1. The step workflow decides which form comes next
2. Finance records are versioned; the latest submission always wins
3. Tax estimates are computed locally - the LLM only adds commentary
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field, ValidationError

# Local imports
from api_key_service import ApiKeyCache
from config import get_settings
from errors import AppError
from estimate_calculator import EstimateCalculator
from mapping import map_to_tax_model
from models import (
    AnalysisResult,
    BusinessFinances,
    ClampPolicy,
    DataSource,
    InsightResult,
    OptimizationReport,
    PersonalFinances,
    TaxScenario,
    UserProfile,
    WorkflowState,
    WorkflowStep,
)
from openai_client import TaxInsightsClient, build_financial_data
from recommendations import OptimizationAnalyzer
from report_renderer import TaxReport, build_report, download_report, render_text
from repository import FinanceRepository
from tax_constants import FilingStatus, get_reference_rates
from workflow import SCENARIO_PATHS, StepWorkflow

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

# In-memory storage (replace with database in production)
repository = FinanceRepository()
workflows_db: Dict[str, StepWorkflow] = {}

key_cache = ApiKeyCache(ttl_seconds=settings.api_key_cache_ttl)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("TaxScope starting up...")
    yield
    key_cache.clear()
    logger.info("TaxScope shutting down...")


app = FastAPI(
    title="TaxScope",
    description="Multi-step tax analysis API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_calculator() -> EstimateCalculator:
    return EstimateCalculator.from_settings(settings)


def get_insights_client() -> TaxInsightsClient:
    """A client per request; the API key is resolved through the shared cache."""
    return TaxInsightsClient.from_settings(settings, key_cache=key_cache)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class ProfileRequest(BaseModel):
    country: str
    filing_status: FilingStatus
    birth_date: date
    dependents: int = 0
    spouse_income: float = 0.0


class AdvanceRequest(BaseModel):
    step: str
    payload: Any = None


class ImportRequest(BaseModel):
    raw: Dict[str, Any]
    source: DataSource = Field(default_factory=DataSource)


class OptimizationRequest(BaseModel):
    deductible_budget_expenses: float = Field(default=0.0, ge=0)
    tax_advantaged_investments: float = Field(default=0.0, ge=0)


class InsightsRequest(BaseModel):
    document_analysis: Optional[Dict[str, Any]] = None


class DocumentAnalysisRequest(BaseModel):
    file_name: str
    file_type: str = "text/plain"
    content: str


class RecordResponse(BaseModel):
    user_id: str
    version: int
    created_at: datetime
    record: Dict[str, Any]


class AnalysisInputs(BaseModel):
    scenario: TaxScenario
    profile: UserProfile
    personal: Optional[PersonalFinances] = None
    business: Optional[BusinessFinances] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def missing(message: str, next_step: WorkflowStep) -> HTTPException:
    """404 that tells the client which step to send the user back to."""
    return HTTPException(status_code=404, detail={"message": message, "next_step": next_step.value})


def get_profile(user_id: str) -> UserProfile:
    """Get profile or raise 404."""
    profile = repository.get_profile(user_id)
    if profile is None:
        raise missing(f"Profile for {user_id} not found", WorkflowStep.PROFILE)
    return profile


def get_workflow(user_id: str) -> StepWorkflow:
    """Get the user's workflow, rebuilding it from stored records if needed."""
    if user_id not in workflows_db:
        workflows_db[user_id] = StepWorkflow.resume(
            profile=repository.get_profile(user_id),
            scenario=repository.scenarios.get(user_id),
            personal=repository.personal.current(user_id),
            business=repository.business.current(user_id),
        )
    return workflows_db[user_id]


def sync_workflow_profile(user_id: str, profile: UserProfile) -> None:
    """Keep a cached workflow in step with a profile saved outside it."""
    workflow = workflows_db.get(user_id)
    if workflow is None:
        return
    if workflow.current_step == WorkflowStep.PROFILE:
        workflow.advance(WorkflowStep.PROFILE, profile)
    else:
        workflow.profile = profile


def get_analysis_inputs(user_id: str) -> AnalysisInputs:
    """Collect the latest records the user's scenario needs."""
    profile = get_profile(user_id)
    scenario = repository.scenarios.get(user_id)
    if scenario is None:
        raise missing("No tax scenario selected", WorkflowStep.SCENARIO)

    personal = None
    business = None
    path = SCENARIO_PATHS[scenario]
    if WorkflowStep.PERSONAL in path:
        personal = repository.personal.current(user_id)
        if personal is None:
            raise missing("No personal finances submitted", WorkflowStep.PERSONAL)
    if WorkflowStep.BUSINESS in path:
        business = repository.business.current(user_id)
        if business is None:
            raise missing("No business finances submitted", WorkflowStep.BUSINESS)

    return AnalysisInputs(scenario=scenario, profile=profile, personal=personal, business=business)


def persist_step(user_id: str, step: WorkflowStep, workflow: StepWorkflow) -> None:
    """Write the payload a step just stored to the repository."""
    if step == WorkflowStep.PROFILE:
        repository.save_profile(user_id, workflow.profile)
    elif step == WorkflowStep.SCENARIO:
        repository.scenarios[user_id] = workflow.scenario
    elif step == WorkflowStep.PERSONAL:
        repository.personal.append(user_id, workflow.personal)
    elif step == WorkflowStep.BUSINESS:
        repository.business.append(user_id, workflow.business)


def validation_detail(exc: ValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]


def build_user_report(user_id: str, calculator: EstimateCalculator) -> TaxReport:
    inputs = get_analysis_inputs(user_id)
    result = calculator.calculate(inputs.personal, inputs.business)
    return build_report(
        scenario=inputs.scenario,
        result=result,
        profile=inputs.profile,
        personal=inputs.personal,
        business=inputs.business,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": "TaxScope",
        "version": "1.0.0",
        "status": "healthy",
    }


@app.get("/api/health")
async def health_check(client: TaxInsightsClient = Depends(get_insights_client)):
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "estimate_calculator": "ready",
            "report_renderer": "ready",
            "llm_integration": "openai" if client.is_connected else "mock_mode",
        },
        "tax_model": settings.tax_model.value,
        "flat_tax_rate": settings.flat_tax_rate,
    }


# --- PROFILE ENDPOINTS ---

@app.put("/api/users/{user_id}/profile")
async def save_profile(user_id: str, request: ProfileRequest):
    """Create or update the user's profile."""
    try:
        profile = UserProfile(**request.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=validation_detail(e))

    profile = repository.save_profile(user_id, profile)
    sync_workflow_profile(user_id, profile)
    logger.info(f"[{user_id}] Profile saved")
    return {"user_id": user_id, "profile": profile.model_dump(mode="json")}


@app.get("/api/users/{user_id}/profile")
async def get_profile_endpoint(user_id: str):
    profile = get_profile(user_id)
    return {"user_id": user_id, "profile": profile.model_dump(mode="json")}


# --- WORKFLOW ENDPOINTS ---

@app.get("/api/users/{user_id}/workflow", response_model=WorkflowState)
async def get_workflow_state(user_id: str):
    return get_workflow(user_id).snapshot()


@app.post("/api/users/{user_id}/workflow/advance", response_model=WorkflowState)
async def advance_workflow(user_id: str, request: AdvanceRequest):
    """
    Complete the current step.

    422 for an invalid payload, 409 for a step that is not the current one.
    """
    workflow = get_workflow(user_id)
    try:
        workflow.advance(request.step, request.payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=validation_detail(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    persist_step(user_id, WorkflowStep(request.step), workflow)
    return workflow.snapshot()


@app.post("/api/users/{user_id}/workflow/reset", response_model=WorkflowState)
async def reset_workflow(user_id: str):
    """Start a new analysis from the profile step."""
    workflow = get_workflow(user_id)
    workflow.reset()
    repository.scenarios.pop(user_id, None)
    return workflow.snapshot()


# --- FINANCE RECORD ENDPOINTS ---

@app.post("/api/users/{user_id}/personal-finances", response_model=RecordResponse)
async def submit_personal_finances(user_id: str, finances: PersonalFinances):
    """Store a new personal finance record; it supersedes earlier ones."""
    get_profile(user_id)
    record = repository.personal.append(user_id, finances)
    return RecordResponse(
        user_id=user_id, version=record.version, created_at=record.created_at,
        record=record.value.model_dump()
    )


@app.get("/api/users/{user_id}/personal-finances", response_model=RecordResponse)
async def latest_personal_finances(user_id: str):
    record = repository.personal.current_record(user_id)
    if record is None:
        raise missing("No personal finances submitted", WorkflowStep.PERSONAL)
    return RecordResponse(
        user_id=user_id, version=record.version, created_at=record.created_at,
        record=record.value.model_dump()
    )


@app.post("/api/users/{user_id}/business-finances", response_model=RecordResponse)
async def submit_business_finances(user_id: str, finances: BusinessFinances):
    """Store a new business finance record; it supersedes earlier ones."""
    get_profile(user_id)
    record = repository.business.append(user_id, finances)
    return RecordResponse(
        user_id=user_id, version=record.version, created_at=record.created_at,
        record=record.value.model_dump()
    )


@app.get("/api/users/{user_id}/business-finances", response_model=RecordResponse)
async def latest_business_finances(user_id: str):
    record = repository.business.current_record(user_id)
    if record is None:
        raise missing("No business finances submitted", WorkflowStep.BUSINESS)
    return RecordResponse(
        user_id=user_id, version=record.version, created_at=record.created_at,
        record=record.value.model_dump()
    )


@app.get("/api/users/{user_id}/personal-finances/history", response_model=List[RecordResponse])
async def personal_finances_history(user_id: str):
    """Every stored version, oldest first."""
    return [
        RecordResponse(user_id=user_id, version=r.version, created_at=r.created_at, record=r.value.model_dump())
        for r in repository.personal.history(user_id)
    ]


@app.get("/api/users/{user_id}/business-finances/history", response_model=List[RecordResponse])
async def business_finances_history(user_id: str):
    return [
        RecordResponse(user_id=user_id, version=r.version, created_at=r.created_at, record=r.value.model_dump())
        for r in repository.business.history(user_id)
    ]


@app.post("/api/users/{user_id}/import")
async def import_finances(user_id: str, request: ImportRequest):
    """
    Import finance figures from an upload, OCR result or CRM export.

    The business record is only stored when it carries any amount.
    """
    get_profile(user_id)
    mapped = map_to_tax_model(request.raw, request.source)

    personal_record = repository.personal.append(user_id, mapped.personal)
    business_version = None
    if mapped.business.revenue > 0 or mapped.business.total_expenses > 0:
        business_version = repository.business.append(user_id, mapped.business).version

    logger.info(f"[{user_id}] Imported finances via {mapped.source.method.value}")
    return {
        "user_id": user_id,
        "source": mapped.source.model_dump(),
        "personal_version": personal_record.version,
        "business_version": business_version,
        "personal": mapped.personal.model_dump(),
        "business": mapped.business.model_dump(),
    }


# --- ANALYSIS ENDPOINTS ---

@app.get("/api/users/{user_id}/analysis", response_model=AnalysisResult)
async def get_analysis(
    user_id: str,
    rate: Optional[float] = Query(default=None, ge=0, le=1),
    clamp: Optional[ClampPolicy] = None,
    calculator: EstimateCalculator = Depends(get_calculator),
):
    """Compute the estimate from the latest records. Never cached."""
    inputs = get_analysis_inputs(user_id)
    if rate is not None or clamp is not None:
        calculator = EstimateCalculator(
            rate=rate if rate is not None else calculator.rate,
            clamp=clamp or calculator.clamp,
            tax_model=calculator.tax_model,
        )
    return calculator.calculate(inputs.personal, inputs.business)


@app.get("/api/users/{user_id}/report", response_model=TaxReport)
async def get_report(user_id: str, calculator: EstimateCalculator = Depends(get_calculator)):
    return build_user_report(user_id, calculator)


@app.get("/api/users/{user_id}/report/print", response_class=PlainTextResponse)
async def print_report(user_id: str, calculator: EstimateCalculator = Depends(get_calculator)):
    return render_text(build_user_report(user_id, calculator))


@app.get("/api/users/{user_id}/report/pdf")
async def download_report_pdf(user_id: str, calculator: EstimateCalculator = Depends(get_calculator)):
    """Download the report as a PDF."""
    report = build_user_report(user_id, calculator)
    outcome = download_report(report)
    if not outcome.success:
        return JSONResponse(status_code=500, content={"error": outcome.error})

    return Response(
        content=outcome.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{outcome.filename}"'},
    )


@app.post("/api/users/{user_id}/optimization", response_model=OptimizationReport)
async def optimize(user_id: str, request: OptimizationRequest):
    """Heuristic estimate of how much tax could be saved."""
    inputs = get_analysis_inputs(user_id)
    analyzer = OptimizationAnalyzer()
    return analyzer.analyze(
        inputs.personal,
        inputs.business,
        deductible_budget_expenses=request.deductible_budget_expenses,
        tax_advantaged_investments=request.tax_advantaged_investments,
    )


# --- AI ENDPOINTS ---

@app.post("/api/users/{user_id}/insights", response_model=InsightResult)
async def generate_insights(
    user_id: str,
    request: InsightsRequest,
    calculator: EstimateCalculator = Depends(get_calculator),
    client: TaxInsightsClient = Depends(get_insights_client),
):
    """AI commentary on the user's estimate."""
    inputs = get_analysis_inputs(user_id)
    result = calculator.calculate(inputs.personal, inputs.business)
    financial_data = build_financial_data(inputs.profile, result, inputs.scenario, inputs.business)
    return client.generate_tax_insights(financial_data, request.document_analysis)


@app.post("/api/users/{user_id}/documents/analyze", response_model=InsightResult)
async def analyze_document(
    user_id: str,
    request: DocumentAnalysisRequest,
    client: TaxInsightsClient = Depends(get_insights_client),
):
    profile = repository.get_profile(user_id)
    context = {"filing_status": profile.filing_status.value, "dependents": profile.dependents} if profile else None
    return client.analyze_document(request.file_name, request.file_type, request.content, context)


# --- REFERENCE DATA ---

@app.get("/api/reference/rates")
async def get_rates():
    """Flat rates, the simplified bracket schedule and form options."""
    return get_reference_rates()


# --- ERROR HANDLERS ---

@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    logger.error(f"{exc.code.value}: {exc.detail or exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(include_detail=settings.debug))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
