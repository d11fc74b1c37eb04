"""
TaxScope - Test Suite
=====================
Tests for the backend components.
"""

import pytest
from datetime import date, timedelta
from types import SimpleNamespace

# Import modules to test
import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import httpx
import openai
from pydantic import ValidationError

from tax_constants import (
    FilingStatus,
    SIMPLIFIED_BRACKETS,
    DEFAULT_FLAT_RATE,
    calculate_bracket_tax,
    get_marginal_rate,
    get_tax_bracket_label,
)
from models import (
    BusinessFinances,
    ClampPolicy,
    PersonalFinances,
    SourceMethod,
    TaxModel,
    TaxScenario,
    UserProfile,
    WorkflowStep,
)
from estimate_calculator import EstimateCalculator, calculate_estimate
from workflow import StepWorkflow, initial_step, next_step
from mapping import map_to_tax_model, number_or_zero
from repository import FinanceRepository, RecordStore
from api_key_service import ApiKeyCache
from config import Settings
from errors import AppError, ErrorCode, code_for_status, to_app_error
from recommendations import OptimizationAnalyzer, build_recommendations
from report_renderer import (
    DOWNLOAD_ERROR,
    build_report,
    download_report,
    render_pdf,
    render_text,
    savings_message,
)
from openai_client import AIProvider, TaxInsightsClient, calculate_cost, parse_insights, INSIGHTS_FALLBACK


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def profile():
    return UserProfile(
        country="US",
        filing_status=FilingStatus.MARRIED_FILING_JOINTLY,
        birth_date=date(1985, 4, 12),
        dependents=2,
        spouse_income=40000,
    )


@pytest.fixture
def personal():
    """Salary 75k + other 5k, 12k deductions, 2k credits."""
    return PersonalFinances(
        salary_income=75000,
        other_income=5000,
        retirement_contributions=6000,
        mortgage_interest=4000,
        charitable_donations=2000,
        tax_credits=2000,
    )


@pytest.fixture
def business():
    """Revenue 100k, 30k expenses."""
    return BusinessFinances(
        revenue=100000,
        employee_costs=20000,
        rent=6000,
        marketing=4000,
    )


# =============================================================================
# TAX CONSTANTS TESTS
# =============================================================================

class TestTaxConstants:
    """Test the simplified schedule helpers."""

    def test_default_flat_rate(self):
        assert DEFAULT_FLAT_RATE == 0.25

    def test_brackets_ascending(self):
        prev_limit = 0
        prev_rate = 0
        for limit, _, rate in SIMPLIFIED_BRACKETS:
            assert limit > prev_limit
            assert rate >= prev_rate
            prev_limit = limit
            prev_rate = rate

    def test_bracket_base_taxes_are_continuous(self):
        """Each band's base tax equals the tax at the previous limit."""
        prev_limit = 0
        for limit, base_tax, _ in SIMPLIFIED_BRACKETS:
            assert calculate_bracket_tax(prev_limit) == pytest.approx(base_tax)
            prev_limit = limit

    def test_bracket_tax_zero_and_negative(self):
        assert calculate_bracket_tax(0) == 0
        assert calculate_bracket_tax(-5000) == 0

    def test_bracket_tax_first_band(self):
        assert calculate_bracket_tax(10000) == 1000

    def test_bracket_tax_middle_band(self):
        # 4600 + (50,000 - 40,000) * 22%
        assert calculate_bracket_tax(50000) == 6800

    def test_bracket_tax_top_band(self):
        assert calculate_bracket_tax(600000) == pytest.approx(156200 + 82000 * 0.37)

    def test_marginal_rate(self):
        assert get_marginal_rate(5000) == 0.10
        assert get_marginal_rate(100000) == 0.24
        assert get_marginal_rate(10_000_000) == 0.37
        assert get_tax_bracket_label(60000) == "22%"


# =============================================================================
# DATA MODEL TESTS
# =============================================================================

class TestDataModels:
    """Test model validation and derived fields."""

    def test_personal_totals(self, personal):
        assert personal.total_income == 80000
        assert personal.total_deductions == 12000
        assert personal.taxable_income == 68000

    def test_business_totals(self, business):
        assert business.total_expenses == 30000
        assert business.net_income == 70000

    def test_negative_amounts_rejected(self):
        with pytest.raises(ValidationError):
            PersonalFinances(salary_income=-1)
        with pytest.raises(ValidationError):
            BusinessFinances(rent=-100)

    def test_profile_country_normalized(self):
        p = UserProfile(country="gb", filing_status="single", birth_date=date(1990, 1, 1))
        assert p.country == "GB"

    def test_profile_unsupported_country(self):
        with pytest.raises(ValidationError):
            UserProfile(country="XX", filing_status="single", birth_date=date(1990, 1, 1))

    def test_profile_dependents_bounds(self):
        with pytest.raises(ValidationError):
            UserProfile(country="US", filing_status="single", birth_date=date(1990, 1, 1), dependents=11)
        with pytest.raises(ValidationError):
            UserProfile(country="US", filing_status="single", birth_date=date(1990, 1, 1), dependents=-1)

    def test_profile_future_birth_date(self):
        with pytest.raises(ValidationError):
            UserProfile(
                country="US",
                filing_status="single",
                birth_date=date.today() + timedelta(days=1),
            )

    def test_profile_invalid_filing_status(self):
        with pytest.raises(ValidationError):
            UserProfile(country="US", filing_status="divorced", birth_date=date(1990, 1, 1))

    def test_profile_age(self, profile):
        assert profile.age >= 40


# =============================================================================
# ESTIMATE CALCULATOR TESTS
# =============================================================================

class TestEstimateCalculator:
    """Test the flat-rate estimate."""

    def test_combined_scenario_figures(self, personal, business):
        result = calculate_estimate(personal, business)

        assert result.total_income == 180000
        assert result.total_deductions == 42000
        assert result.taxable_income == 138000
        assert result.tax_before_cuts == 45000
        assert result.tax_after_deductions == 34500
        assert result.total_credits == 2000
        assert result.tax_after_cuts == 32500
        assert result.savings == 12500
        assert result.effective_rate == pytest.approx(32500 / 138000 * 100, abs=0.01)

    def test_component_breakdown(self, personal, business):
        result = calculate_estimate(personal, business)
        assert result.personal_taxable_income == 68000
        assert result.business_net_income == 70000
        assert result.has_business is True

    def test_personal_only(self, personal):
        result = calculate_estimate(personal)
        assert result.total_income == 80000
        assert result.taxable_income == 68000
        assert result.tax_after_cuts == 68000 * 0.25 - 2000
        assert result.has_business is False

    def test_business_only(self, business):
        result = calculate_estimate(None, business)
        assert result.total_income == 100000
        assert result.taxable_income == 70000
        assert result.tax_after_cuts == 17500

    def test_taxable_income_not_clamped_by_default(self):
        personal = PersonalFinances(salary_income=10000, other_deductions=20000)
        result = calculate_estimate(personal)

        assert result.taxable_income == -10000
        assert result.tax_after_deductions == -2500
        assert result.tax_after_cuts == 0
        assert result.effective_rate == 0

    def test_zero_floor_clamp(self):
        personal = PersonalFinances(salary_income=10000, other_deductions=20000)
        result = calculate_estimate(personal, clamp=ClampPolicy.ZERO_FLOOR)

        assert result.taxable_income == 0
        assert result.tax_after_deductions == 0
        assert result.clamp_policy == ClampPolicy.ZERO_FLOOR

    def test_effective_rate_zero_at_zero_taxable(self):
        personal = PersonalFinances(salary_income=10000, other_deductions=10000)
        result = calculate_estimate(personal)
        assert result.taxable_income == 0
        assert result.effective_rate == 0

    def test_tax_after_cuts_never_negative(self):
        personal = PersonalFinances(salary_income=20000, tax_credits=50000)
        result = calculate_estimate(personal)
        assert result.tax_after_cuts == 0

    def test_savings_boundary_with_large_credits(self):
        """Credits larger than the tax cannot push savings past the counterfactual."""
        personal = PersonalFinances(salary_income=20000, tax_credits=50000)
        result = calculate_estimate(personal)
        assert result.savings == result.tax_before_cuts == 5000

    def test_savings_zero_without_deductions_or_credits(self):
        result = calculate_estimate(PersonalFinances(salary_income=50000))
        assert result.savings == 0

    def test_credits_override(self, personal, business):
        result = calculate_estimate(personal, business, credits=0)
        assert result.tax_after_cuts == 34500
        assert result.savings == 10500

    def test_explicit_rate(self, personal, business):
        result = calculate_estimate(personal, business, rate=0.22)
        assert result.tax_before_cuts == pytest.approx(39600)
        assert result.tax_after_deductions == pytest.approx(30360)
        assert result.tax_after_cuts == pytest.approx(28360)
        assert result.rate == 0.22

    def test_invalid_rate(self, personal):
        with pytest.raises(ValueError):
            calculate_estimate(personal, rate=1.5)
        with pytest.raises(ValueError):
            EstimateCalculator(rate=-0.1)

    def test_negative_credits_rejected(self, personal):
        with pytest.raises(ValueError):
            calculate_estimate(personal, credits=-1)

    def test_progressive_model(self, personal, business):
        result = calculate_estimate(personal, business, tax_model=TaxModel.PROGRESSIVE)
        assert result.tax_before_cuts == calculate_bracket_tax(180000)
        assert result.tax_after_deductions == calculate_bracket_tax(138000)
        assert result.tax_after_cuts == calculate_bracket_tax(138000) - 2000

    def test_calculator_object(self, personal, business):
        calculator = EstimateCalculator(rate=0.25, clamp=ClampPolicy.NONE)
        assert calculator.calculate(personal, business).tax_after_cuts == 32500


# =============================================================================
# WORKFLOW TESTS
# =============================================================================

class TestWorkflow:
    """Test step transitions."""

    def _walk(self, scenario, profile, personal, business):
        workflow = StepWorkflow()
        workflow.advance(WorkflowStep.PROFILE, profile)
        workflow.advance(WorkflowStep.SCENARIO, scenario)
        while workflow.current_step != WorkflowStep.ANALYSIS:
            payload = personal if workflow.current_step == WorkflowStep.PERSONAL else business
            workflow.advance(workflow.current_step, payload)
        return workflow

    def test_initial_step(self):
        assert initial_step(has_profile=False) == WorkflowStep.PROFILE
        assert initial_step(has_profile=True) == WorkflowStep.SCENARIO
        assert StepWorkflow().current_step == WorkflowStep.PROFILE
        assert StepWorkflow(has_profile=True).current_step == WorkflowStep.SCENARIO

    def test_combined_visits_personal_then_business(self, profile, personal, business):
        workflow = self._walk(TaxScenario.COMBINED, profile, personal, business)
        assert workflow.visited == [
            WorkflowStep.PROFILE,
            WorkflowStep.SCENARIO,
            WorkflowStep.PERSONAL,
            WorkflowStep.BUSINESS,
            WorkflowStep.ANALYSIS,
        ]
        assert workflow.personal == personal
        assert workflow.business == business
        assert workflow.is_complete

    def test_personal_never_visits_business(self, profile, personal, business):
        workflow = self._walk(TaxScenario.PERSONAL, profile, personal, business)
        assert WorkflowStep.BUSINESS not in workflow.visited
        assert workflow.business is None

    def test_business_never_visits_personal(self, profile, personal, business):
        workflow = self._walk(TaxScenario.BUSINESS, profile, personal, business)
        assert WorkflowStep.PERSONAL not in workflow.visited
        assert workflow.personal is None

    def test_reset_clears_everything(self, profile, personal, business):
        workflow = self._walk(TaxScenario.COMBINED, profile, personal, business)
        assert workflow.reset() == WorkflowStep.PROFILE
        assert workflow.current_step == WorkflowStep.PROFILE
        assert workflow.profile is None
        assert workflow.scenario is None
        assert workflow.personal is None
        assert workflow.business is None

    def test_advance_accepts_dicts_and_strings(self):
        workflow = StepWorkflow()
        workflow.advance("profile", {
            "country": "CA",
            "filing_status": "single",
            "birth_date": "1990-06-01",
        })
        assert workflow.advance("scenario", "personal") == WorkflowStep.PERSONAL
        assert workflow.advance("personal", {"salary_income": 50000}) == WorkflowStep.ANALYSIS
        assert workflow.personal.salary_income == 50000

    def test_out_of_order_step_raises(self, personal):
        workflow = StepWorkflow()
        with pytest.raises(ValueError):
            workflow.advance(WorkflowStep.PERSONAL, personal)

    def test_unknown_step_raises(self):
        with pytest.raises(ValueError):
            StepWorkflow().advance("payment", {})

    def test_terminal_step_raises(self, profile, personal, business):
        workflow = self._walk(TaxScenario.PERSONAL, profile, personal, business)
        with pytest.raises(ValueError):
            workflow.advance(WorkflowStep.ANALYSIS, None)

    def test_invalid_scenario_is_a_validation_error(self):
        workflow = StepWorkflow(has_profile=True)
        with pytest.raises(ValidationError):
            workflow.advance(WorkflowStep.SCENARIO, "everything")
        with pytest.raises(ValidationError):
            workflow.advance(WorkflowStep.SCENARIO, {"scenario": "everything"})
        assert workflow.current_step == WorkflowStep.SCENARIO

    def test_next_step_table(self):
        assert next_step(WorkflowStep.SCENARIO, TaxScenario.BUSINESS) == WorkflowStep.BUSINESS
        assert next_step(WorkflowStep.PERSONAL, TaxScenario.COMBINED) == WorkflowStep.BUSINESS
        assert next_step(WorkflowStep.PERSONAL, TaxScenario.PERSONAL) == WorkflowStep.ANALYSIS
        with pytest.raises(ValueError):
            next_step(WorkflowStep.BUSINESS, TaxScenario.PERSONAL)

    def test_resume_from_records(self, profile, personal):
        workflow = StepWorkflow.resume(profile=profile, scenario="combined", personal=personal)
        assert workflow.current_step == WorkflowStep.BUSINESS

    def test_resume_combined_with_both_records(self, profile, personal, business):
        workflow = StepWorkflow.resume(
            profile=profile, scenario=TaxScenario.COMBINED, personal=personal, business=business
        )
        assert workflow.current_step == WorkflowStep.ANALYSIS
        assert workflow.personal == personal
        assert workflow.business == business
        assert workflow.is_complete

    def test_resume_without_scenario(self, profile):
        assert StepWorkflow.resume(profile=profile).current_step == WorkflowStep.SCENARIO
        assert StepWorkflow.resume().current_step == WorkflowStep.PROFILE


# =============================================================================
# MAPPING TESTS
# =============================================================================

class TestMapping:
    """Test raw payload coercion."""

    def test_map_to_tax_model(self):
        mapped = map_to_tax_model(
            {"salary_income": "1000", "freelance_income": 200, "investment_income": "$300.50"},
            {"method": "upload"},
        )
        assert mapped.personal.salary_income == 1000
        assert mapped.personal.freelance_income == 200
        assert mapped.personal.investment_income == 300.5
        assert mapped.personal.rental_income == 0
        assert mapped.source.method == SourceMethod.UPLOAD

    def test_number_or_zero(self):
        assert number_or_zero("1,200.50") == 1200.5
        assert number_or_zero("-50") == -50
        assert number_or_zero("abc") == 0
        assert number_or_zero(None) == 0
        assert number_or_zero(float("nan")) == 0
        assert number_or_zero(float("inf")) == 0
        assert number_or_zero(True) == 0

    def test_negative_amounts_clamped(self):
        mapped = map_to_tax_model({"salary_income": "-500", "revenue": 1000})
        assert mapped.personal.salary_income == 0
        assert mapped.business.revenue == 1000

    def test_aliases_and_nested_sections(self):
        mapped = map_to_tax_model(
            {"personal": {"Wages": "50000"}, "business": {"annual_revenue": "20000", "travel": 500}},
            "crm",
        )
        assert mapped.personal.salary_income == 50000
        assert mapped.business.revenue == 20000
        assert mapped.business.travel_expenses == 500
        assert mapped.source.method == SourceMethod.CRM

    def test_empty_payload(self):
        mapped = map_to_tax_model(None)
        assert mapped.personal.total_income == 0
        assert mapped.source.method == SourceMethod.MANUAL


# =============================================================================
# REPOSITORY TESTS
# =============================================================================

class TestRepository:
    """Test versioned records."""

    def test_latest_record_wins(self):
        store = RecordStore("personal finances")
        store.append("u1", PersonalFinances(salary_income=1000))
        store.append("u1", PersonalFinances(salary_income=2000))

        assert store.current("u1").salary_income == 2000
        assert store.current_record("u1").version == 2
        assert [r.value.salary_income for r in store.history("u1")] == [1000, 2000]

    def test_users_isolated(self):
        store = RecordStore("business finances")
        store.append("u1", BusinessFinances(revenue=1))
        assert store.current("u2") is None
        assert store.history("u2") == []

    def test_profile_update_keeps_created_at(self, profile):
        repo = FinanceRepository()
        first = repo.save_profile("u1", profile)
        updated = repo.save_profile("u1", profile.model_copy(update={"dependents": 3}))

        assert updated.created_at == first.created_at
        assert repo.get_profile("u1").dependents == 3

    def test_profile_edit_keeps_finance_history(self, profile):
        repo = FinanceRepository()
        repo.save_profile("u1", profile)
        repo.personal.append("u1", PersonalFinances(salary_income=1))

        repo.save_profile("u1", profile.model_copy(update={"dependents": 0}))
        assert repo.personal.current_record("u1").version == 1


# =============================================================================
# API KEY CACHE TESTS
# =============================================================================

class TestApiKeyCache:
    """Test TTL behaviour with a fake clock."""

    @pytest.fixture
    def clock(self):
        return SimpleNamespace(now=0.0)

    @pytest.fixture
    def loader(self):
        calls = []

        def load(key_type):
            calls.append(key_type)
            return f"key-{len(calls)}"

        load.calls = calls
        return load

    def test_cached_within_ttl(self, clock, loader):
        cache = ApiKeyCache(loader=loader, ttl_seconds=300, clock=lambda: clock.now)
        assert cache.get("openai") == "key-1"
        clock.now = 299
        assert cache.get("openai") == "key-1"
        assert loader.calls == ["openai"]

    def test_reloaded_after_ttl(self, clock, loader):
        cache = ApiKeyCache(loader=loader, ttl_seconds=300, clock=lambda: clock.now)
        cache.get("openai")
        clock.now = 300
        assert cache.get("openai") == "key-2"

    def test_clear_type(self, clock, loader):
        cache = ApiKeyCache(loader=loader, ttl_seconds=300, clock=lambda: clock.now)
        cache.get("openai")
        cache.get("other")
        cache.clear_type("openai")
        assert cache.get("openai") == "key-3"
        assert cache.get("other") == "key-2"

    def test_clear(self, clock, loader):
        cache = ApiKeyCache(loader=loader, ttl_seconds=300, clock=lambda: clock.now)
        cache.get("openai")
        cache.clear()
        assert cache.get("openai") == "key-2"

    def test_negative_ttl_rejected(self, loader):
        with pytest.raises(ValueError):
            ApiKeyCache(loader=loader, ttl_seconds=-1)


# =============================================================================
# CONFIG TESTS
# =============================================================================

class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("FLAT_TAX_RATE", "CLAMP_TAXABLE_INCOME", "TAX_MODEL", "CORS_ORIGINS"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings()
        assert settings.flat_tax_rate == DEFAULT_FLAT_RATE
        assert settings.clamp_policy == ClampPolicy.NONE
        assert settings.tax_model == TaxModel.FLAT

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv("FLAT_TAX_RATE", "0.3")
        monkeypatch.setenv("CLAMP_TAXABLE_INCOME", "true")
        monkeypatch.setenv("TAX_MODEL", "PROGRESSIVE")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings()
        assert settings.flat_tax_rate == 0.3
        assert settings.clamp_policy == ClampPolicy.ZERO_FLOOR
        assert settings.tax_model == TaxModel.PROGRESSIVE
        assert settings.cors_origins == ["http://a.test", "http://b.test"]
        assert settings.log_level == "DEBUG"

    def test_invalid_value_names_the_setting(self, monkeypatch):
        monkeypatch.setenv("FLAT_TAX_RATE", "abc")
        with pytest.raises(ValidationError) as exc_info:
            Settings()
        assert "flat_tax_rate" in str(exc_info.value)

    def test_rate_out_of_range(self, monkeypatch):
        monkeypatch.setenv("FLAT_TAX_RATE", "1.5")
        with pytest.raises(ValidationError):
            Settings()

    def test_calculator_from_settings(self, monkeypatch, personal, business):
        monkeypatch.setenv("FLAT_TAX_RATE", "0.22")
        calculator = EstimateCalculator.from_settings(Settings())
        assert calculator.calculate(personal, business).tax_after_cuts == pytest.approx(28360)


# =============================================================================
# ERROR TESTS
# =============================================================================

class TestErrors:

    def test_status_mapping(self):
        assert code_for_status(401) == ErrorCode.AUTH_ERROR
        assert code_for_status(403) == ErrorCode.AUTH_ERROR
        assert code_for_status(404) == ErrorCode.NOT_FOUND
        assert code_for_status(422) == ErrorCode.VALIDATION_ERROR
        assert code_for_status(429) == ErrorCode.NETWORK_ERROR
        assert code_for_status(503) == ErrorCode.NETWORK_ERROR
        assert code_for_status(418) == ErrorCode.UNKNOWN_ERROR

    def test_app_error_message_and_status(self):
        error = AppError(ErrorCode.DATABASE_ERROR, detail="connection reset")
        assert error.message == "Failed to save financial data. Please try again."
        assert error.status_code == 500
        assert "detail" not in error.to_dict()
        assert error.to_dict(include_detail=True)["detail"] == "connection reset"

    def test_to_app_error(self):
        exc = RuntimeError("expired token")
        exc.status_code = 401
        assert to_app_error(exc).code == ErrorCode.AUTH_ERROR
        assert to_app_error(ValueError("x")).code == ErrorCode.UNKNOWN_ERROR

    def test_to_app_error_unmapped_status_uses_default(self):
        exc = RuntimeError("bad request")
        exc.status_code = 400
        assert to_app_error(exc, default=ErrorCode.AI_SERVICE_ERROR).code == ErrorCode.AI_SERVICE_ERROR


# =============================================================================
# RECOMMENDATION TESTS
# =============================================================================

class TestRecommendations:

    def test_business_section_only_with_business(self):
        assert [s.title for s in build_recommendations(False)] == [
            "Income Optimization", "Deduction Opportunities", "Tax Credits",
        ]
        assert build_recommendations(True)[-1].title == "Business Tax Strategies"

    def test_optimization_analysis(self):
        analyzer = OptimizationAnalyzer()
        report = analyzer.analyze(PersonalFinances(salary_income=100000))

        # 14500 + 15000 * 24%
        assert report.current_tax == 18100
        assert report.opportunities.retirement_contributions == 15000
        assert report.opportunities.health_savings == 3650
        assert report.optimized_tax == pytest.approx(18100 - (15000 + 3650) * 0.22)
        assert report.potential_savings == pytest.approx(4103)
        assert report.confidence_score == 0.85
        assert "Maximize retirement contributions up to $15,000" in report.recommendations

    def test_optimization_with_business_and_budget(self, business):
        analyzer = OptimizationAnalyzer()
        report = analyzer.analyze(
            PersonalFinances(salary_income=50000, other_deductions=2000),
            business,
            deductible_budget_expenses=5000,
            tax_advantaged_investments=1000,
        )
        assert report.opportunities.additional_deductions == 3000
        assert report.opportunities.business_expense_optimization == 20000
        assert report.opportunities.tax_advantaged_investments == 1000
        assert len(report.recommendations) == 5

    def test_optimized_tax_floor(self):
        report = OptimizationAnalyzer().analyze(
            PersonalFinances(salary_income=5000), tax_advantaged_investments=100000
        )
        assert report.optimized_tax == 0


# =============================================================================
# REPORT TESTS
# =============================================================================

class TestReportRenderer:

    @pytest.fixture
    def report(self, profile, personal, business):
        result = calculate_estimate(personal, business)
        return build_report(TaxScenario.COMBINED, result, profile, personal, business)

    def test_report_contents(self, report):
        assert report.title == "Tax Analysis Report"
        assert report.scenario_label == "Combined"
        assert report.savings_message == "You have earned $12,500.00 from your tax cuts this year"
        assert len(report.recommendations) == 4

    def test_savings_message_negative(self):
        assert "-$100.00" in savings_message(-100)

    def test_render_text(self, report):
        text = render_text(report)
        assert "Without tax cuts, you would have paid" in text
        assert "$45,000.00" in text
        assert "$32,500.00" in text
        assert "Business Tax Strategies" in text

    def test_render_pdf(self, report):
        pdf = render_pdf(report)
        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    def test_download_success(self, report):
        outcome = download_report(report)
        assert outcome.success
        assert outcome.filename.endswith(".pdf")

    def test_pdf_with_markup_in_insights(self, profile, personal, business):
        result = calculate_estimate(personal, business)
        report = build_report(
            TaxScenario.COMBINED, result, profile, personal, business,
            ai_insights=["Salary<br>bonus split", "Use <b>401(k) to lower AGI", "R&D credit"],
        )
        outcome = download_report(report)
        assert outcome.success
        assert outcome.content.startswith(b"%PDF")

    def test_download_failure_is_reported(self, report):
        def broken_renderer(_):
            raise RuntimeError("renderer crashed")

        outcome = download_report(report, renderer=broken_renderer)
        assert not outcome.success
        assert outcome.content is None
        assert outcome.error == DOWNLOAD_ERROR


# =============================================================================
# AI CLIENT TESTS
# =============================================================================

class FakeCompletions:
    def __init__(self, content=None, tokens=1000, error=None):
        self.content = content
        self.tokens = tokens
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(total_tokens=self.tokens),
        )


def fake_openai(**kwargs):
    completions = FakeCompletions(**kwargs)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestInsightsClient:

    FINANCIAL_DATA = {"income": 180000, "deductions": 42000, "business_expenses": 30000, "filing_status": "single"}

    def test_mock_mode_without_key(self):
        client = TaxInsightsClient(api_key=None)
        assert not client.is_connected

        result = client.generate_tax_insights(self.FINANCIAL_DATA)
        assert result.insights
        assert result.confidence == 0.5

    def test_rotated_key_reaches_client(self):
        clock = SimpleNamespace(now=0.0)
        keys = iter([None, "sk-rotated"])
        cache = ApiKeyCache(loader=lambda key_type: next(keys), ttl_seconds=300, clock=lambda: clock.now)
        client = TaxInsightsClient(key_cache=cache)

        assert not client.is_connected
        assert client.provider == AIProvider.MOCK

        clock.now = 300
        assert client.is_connected
        assert client.provider == AIProvider.OPENAI

    def test_parses_json_response(self):
        openai_client, completions = fake_openai(
            content='```json\n{"insights": ["a"], "recommendations": ["b"], "confidence": 0.9, "summary": "s"}\n```'
        )
        client = TaxInsightsClient(client=openai_client)

        result = client.generate_tax_insights(self.FINANCIAL_DATA, {"insights": ["doc"]})
        assert result.insights == ["a"]
        assert result.recommendations == ["b"]
        assert result.confidence == 0.9
        assert not result.is_fallback
        assert "Document Analysis" in completions.calls[0]["messages"][1]["content"]

    def test_unparseable_response_falls_back(self):
        openai_client, _ = fake_openai(content="Sorry, I cannot help with that.")
        result = TaxInsightsClient(client=openai_client).generate_tax_insights(self.FINANCIAL_DATA)

        assert result.is_fallback
        assert result.confidence == 0.5
        assert result.insights == ["Tax analysis completed"]

    def test_usage_tracked(self):
        openai_client, _ = fake_openai(content='{"insights": []}', tokens=2000)
        client = TaxInsightsClient(client=openai_client)
        client.generate_tax_insights(self.FINANCIAL_DATA)

        assert len(client.usage_log) == 1
        assert client.usage_log[0].tokens_used == 2000
        assert client.total_cost == pytest.approx(0.09)

    def test_api_failure_raises_app_error(self):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        openai_client, _ = fake_openai(error=error)
        client = TaxInsightsClient(client=openai_client)

        with pytest.raises(AppError) as exc_info:
            client.generate_tax_insights(self.FINANCIAL_DATA)
        assert exc_info.value.code == ErrorCode.AI_SERVICE_ERROR
        assert client.usage_log[0].success is False

    def test_upstream_status_sets_error_code(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.RateLimitError(
            "Rate limit reached", response=httpx.Response(429, request=request), body=None
        )
        openai_client, _ = fake_openai(error=error)

        with pytest.raises(AppError) as exc_info:
            TaxInsightsClient(client=openai_client).generate_tax_insights(self.FINANCIAL_DATA)
        assert exc_info.value.code == ErrorCode.NETWORK_ERROR
        assert exc_info.value.status_code == 503

    def test_analyze_document(self):
        openai_client, _ = fake_openai(
            content='{"insights": ["W-2 found"], "recommendations": [], "confidence": 0.8, '
                    '"extractedData": {"income": 52000}}'
        )
        result = TaxInsightsClient(client=openai_client).analyze_document("w2.txt", "text/plain", "Wages 52000")
        assert result.extracted_data == {"income": 52000}

    def test_analyze_empty_document(self):
        with pytest.raises(AppError) as exc_info:
            TaxInsightsClient().analyze_document("empty.txt", "text/plain", "   ")
        assert exc_info.value.code == ErrorCode.FILE_ERROR

    def test_cost_estimate(self):
        assert calculate_cost(1000) == pytest.approx(0.045)
        assert calculate_cost(None) == 0

    def test_parse_rejects_bad_shape(self):
        result = parse_insights('{"insights": "not a list"}', INSIGHTS_FALLBACK)
        assert result.is_fallback


# =============================================================================
# RUN TESTS
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
