"""
TaxScope - Data Models
======================
Pydantic models for the analysis workflow.

These models serve as the contract between:
- The step forms (API payloads and Streamlit forms)
- The estimate calculator
- The record repository
- The report renderer
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, computed_field

from tax_constants import FilingStatus, SUPPORTED_COUNTRIES, MAX_DEPENDENTS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class TaxScenario(str, Enum):
    PERSONAL = "personal"
    BUSINESS = "business"
    COMBINED = "combined"


class WorkflowStep(str, Enum):
    PROFILE = "profile"
    SCENARIO = "scenario"
    PERSONAL = "personal"
    BUSINESS = "business"
    ANALYSIS = "analysis"


class SourceMethod(str, Enum):
    UPLOAD = "upload"
    OCR = "ocr"
    CRM = "crm"
    MANUAL = "manual"


class TaxModel(str, Enum):
    FLAT = "flat"
    PROGRESSIVE = "progressive"


class ClampPolicy(str, Enum):
    NONE = "none"              # taxable income may go negative
    ZERO_FLOOR = "zero_floor"  # taxable income floored at zero


class RecommendationCategory(str, Enum):
    INCOME = "income_optimization"
    DEDUCTIONS = "deduction_opportunities"
    CREDITS = "tax_credits"
    BUSINESS = "business_strategies"


# =============================================================================
# USER PROFILE
# =============================================================================

class UserProfile(BaseModel):
    """
    Profile collected in the first workflow step.

    Created once per user and updated by later profile submissions.
    """
    country: str = Field(..., min_length=2, max_length=2)
    filing_status: FilingStatus
    birth_date: date
    dependents: int = Field(default=0, ge=0, le=MAX_DEPENDENTS)
    spouse_income: float = Field(default=0.0, ge=0)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator('country', mode='before')
    @classmethod
    def normalize_country(cls, v):
        if v is None:
            return v
        code = str(v).strip().upper()
        if code not in SUPPORTED_COUNTRIES:
            raise ValueError(f"Unsupported country: {v}")
        return code

    @field_validator('birth_date')
    @classmethod
    def birth_date_not_in_future(cls, v: date) -> date:
        if v > date.today():
            raise ValueError("Birth date cannot be in the future")
        return v

    @computed_field
    @property
    def age(self) -> int:
        today = date.today()
        had_birthday = (today.month, today.day) >= (self.birth_date.month, self.birth_date.day)
        return today.year - self.birth_date.year - (0 if had_birthday else 1)


# =============================================================================
# FINANCE RECORDS
# =============================================================================

class PersonalFinances(BaseModel):
    """Personal income, deduction and credit figures. All amounts >= 0."""

    # Income
    salary_income: float = Field(default=0.0, ge=0)
    freelance_income: float = Field(default=0.0, ge=0)
    investment_income: float = Field(default=0.0, ge=0)
    rental_income: float = Field(default=0.0, ge=0)
    capital_gains: float = Field(default=0.0, ge=0)
    other_income: float = Field(default=0.0, ge=0)

    # Deductions
    retirement_contributions: float = Field(default=0.0, ge=0)
    mortgage_interest: float = Field(default=0.0, ge=0)
    property_taxes: float = Field(default=0.0, ge=0)
    charitable_donations: float = Field(default=0.0, ge=0)
    medical_expenses: float = Field(default=0.0, ge=0)
    childcare_costs: float = Field(default=0.0, ge=0)
    education_expenses: float = Field(default=0.0, ge=0)
    other_deductions: float = Field(default=0.0, ge=0)

    # Credits
    tax_credits: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def total_income(self) -> float:
        return (
            self.salary_income
            + self.freelance_income
            + self.investment_income
            + self.rental_income
            + self.capital_gains
            + self.other_income
        )

    @computed_field
    @property
    def total_deductions(self) -> float:
        return (
            self.retirement_contributions
            + self.mortgage_interest
            + self.property_taxes
            + self.charitable_donations
            + self.medical_expenses
            + self.childcare_costs
            + self.education_expenses
            + self.other_deductions
        )

    @computed_field
    @property
    def taxable_income(self) -> float:
        """Personal income after personal deductions (not floored)."""
        return self.total_income - self.total_deductions


class BusinessFinances(BaseModel):
    """Revenue and expense categories of a single business. All amounts >= 0."""

    revenue: float = Field(default=0.0, ge=0)

    employee_costs: float = Field(default=0.0, ge=0)
    equipment: float = Field(default=0.0, ge=0)
    rent: float = Field(default=0.0, ge=0)
    utilities: float = Field(default=0.0, ge=0)
    marketing: float = Field(default=0.0, ge=0)
    travel_expenses: float = Field(default=0.0, ge=0)
    office_supplies: float = Field(default=0.0, ge=0)
    professional_services: float = Field(default=0.0, ge=0)
    insurance: float = Field(default=0.0, ge=0)
    other_expenses: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def total_expenses(self) -> float:
        return (
            self.employee_costs
            + self.equipment
            + self.rent
            + self.utilities
            + self.marketing
            + self.travel_expenses
            + self.office_supplies
            + self.professional_services
            + self.insurance
            + self.other_expenses
        )

    @computed_field
    @property
    def net_income(self) -> float:
        return self.revenue - self.total_expenses


PERSONAL_INCOME_FIELDS = [
    "salary_income", "freelance_income", "investment_income",
    "rental_income", "capital_gains", "other_income",
]

PERSONAL_DEDUCTION_FIELDS = [
    "retirement_contributions", "mortgage_interest", "property_taxes",
    "charitable_donations", "medical_expenses", "childcare_costs",
    "education_expenses", "other_deductions",
]

BUSINESS_EXPENSE_FIELDS = [
    "employee_costs", "equipment", "rent", "utilities", "marketing",
    "travel_expenses", "office_supplies", "professional_services",
    "insurance", "other_expenses",
]


class DataSource(BaseModel):
    """Where an imported finance record came from."""
    method: SourceMethod = SourceMethod.MANUAL
    reference: Optional[str] = None
    provider: Optional[str] = None


class MappedTaxModel(BaseModel):
    """Result of mapping a raw upload/OCR/CRM payload."""
    personal: PersonalFinances
    business: BusinessFinances
    source: DataSource


# =============================================================================
# ANALYSIS RESULT
# =============================================================================

class AnalysisResult(BaseModel):
    """
    Derived tax figures. A pure function of the input records;
    recomputed on every view and never stored.
    """

    total_income: float
    total_deductions: float
    taxable_income: float
    total_credits: float

    tax_before_cuts: float = Field(description="Tax on gross income, no deductions")
    tax_after_deductions: float
    tax_after_cuts: float = Field(ge=0)
    savings: float = Field(description="May be negative")
    effective_rate: float = Field(description="Percent of taxable income")

    # How it was computed
    rate: float
    tax_model: TaxModel = TaxModel.FLAT
    clamp_policy: ClampPolicy = ClampPolicy.NONE

    # Component breakdown for the report
    personal_taxable_income: float = 0.0
    business_net_income: float = 0.0
    has_business: bool = False

    calculated_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# RECOMMENDATION MODELS
# =============================================================================

class RecommendationSection(BaseModel):
    """A titled group of canned recommendations."""
    category: RecommendationCategory
    title: str
    items: List[str]


class OptimizationOpportunities(BaseModel):
    additional_deductions: float = 0.0
    tax_advantaged_investments: float = 0.0
    business_expense_optimization: float = 0.0
    retirement_contributions: float = 0.0
    health_savings: float = 0.0


class OptimizationReport(BaseModel):
    """Heuristic optimisation estimate."""

    current_tax: float
    optimized_tax: float
    opportunities: OptimizationOpportunities
    recommendations: List[str]
    tax_bracket: str
    marginal_rate: float
    confidence_score: float

    @computed_field
    @property
    def potential_savings(self) -> float:
        return round(self.current_tax - self.optimized_tax, 2)


# =============================================================================
# AI INSIGHT MODELS
# =============================================================================

class InsightResult(BaseModel):
    """Structured output of the AI insight collaborator."""
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0, le=1)
    summary: Optional[str] = None
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    is_fallback: bool = False


class UsageRecord(BaseModel):
    """One AI call's token usage and estimated cost."""
    request_type: str
    model: str
    tokens_used: int = 0
    cost: float = 0.0
    success: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# WORKFLOW PAYLOADS
# =============================================================================

class ScenarioSelection(BaseModel):
    scenario: TaxScenario


class WorkflowState(BaseModel):
    """Serializable snapshot of a workflow controller."""
    current_step: WorkflowStep
    scenario: Optional[TaxScenario] = None
    visited: List[WorkflowStep] = Field(default_factory=list)
    profile: Optional[UserProfile] = None
    personal: Optional[PersonalFinances] = None
    business: Optional[BusinessFinances] = None
    is_complete: bool = False

    @model_validator(mode='after')
    def business_only_when_scenario_allows(self):
        if self.business is not None and self.scenario == TaxScenario.PERSONAL:
            raise ValueError("Business data is not part of the personal scenario")
        return self
