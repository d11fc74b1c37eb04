"""
TaxScope - Streamlit App
========================
Multi-step tax analysis with a clean, minimal UX.

Flow:
1. Profile (skipped when one exists)
2. Scenario: personal, business or combined
3. Personal and/or business finances
4. Analysis report with download and print
"""

import sys
import os

# Path setup for Streamlit Cloud
_current_file = os.path.abspath(__file__)
_backend_dir = os.path.dirname(_current_file)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

import logging
from datetime import date
from typing import Optional

import pandas as pd
import streamlit as st

from api_key_service import ApiKeyCache, env_key_loader
from config import get_settings
from errors import AppError
from estimate_calculator import EstimateCalculator
from models import (
    BusinessFinances,
    PersonalFinances,
    TaxScenario,
    UserProfile,
    WorkflowStep,
)
from openai_client import TaxInsightsClient, build_financial_data
from report_renderer import build_report, download_report, fmt_currency, figure_rows, render_text
from tax_constants import FilingStatus, MARRIED_STATUSES, MAX_DEPENDENTS, SUPPORTED_COUNTRIES
from workflow import StepWorkflow

logger = logging.getLogger(__name__)


# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="TaxScope - Tax Analysis",
    page_icon="📊",
    layout="wide",
    initial_sidebar_state="collapsed"
)

st.markdown("""
<style>
    .main .block-container {
        padding-top: 2rem;
        padding-bottom: 2rem;
        max-width: 1100px;
    }
    .main-header {
        text-align: center;
        padding: 1.5rem 0;
        background: linear-gradient(135deg, #1a1a2e 0%, #16213e 100%);
        border-radius: 16px;
        color: white;
        margin-bottom: 1.5rem;
    }
    .savings-box {
        text-align: center;
        padding: 1.5rem;
        border-radius: 12px;
        background: #e8f8f0;
        color: #0b6b43;
        font-size: 1.2rem;
        font-weight: 600;
    }
</style>
""", unsafe_allow_html=True)


# =============================================================================
# SESSION STATE
# =============================================================================

def streamlit_key_loader(key_type: str) -> Optional[str]:
    """Streamlit secrets first (deployed apps), then the environment."""
    secret_name = f"{key_type.upper()}_API_KEY"
    try:
        if secret_name in st.secrets:
            return st.secrets[secret_name]
    except FileNotFoundError:
        # No secrets.toml when running locally
        logger.debug("No Streamlit secrets file found")
    return env_key_loader(key_type)


def init_session_state():
    """Initialize all session state variables."""
    settings = get_settings()

    if 'workflow' not in st.session_state:
        st.session_state.workflow = StepWorkflow()

    if 'calculator' not in st.session_state:
        st.session_state.calculator = EstimateCalculator.from_settings(settings)

    if 'ai_client' not in st.session_state:
        key_cache = ApiKeyCache(loader=streamlit_key_loader, ttl_seconds=settings.api_key_cache_ttl)
        st.session_state.ai_client = TaxInsightsClient.from_settings(settings, key_cache=key_cache)

    if 'insights' not in st.session_state:
        st.session_state.insights = None

    if 'download_error' not in st.session_state:
        st.session_state.download_error = None

init_session_state()


def advance(step: WorkflowStep, payload):
    """Advance the workflow and rerun; show validation problems inline."""
    try:
        st.session_state.workflow.advance(step, payload)
    except ValueError as e:
        st.error(f"Please check your input: {e}")
        return
    st.rerun()


def money_input(label: str, key: str, value: float = 0.0) -> float:
    return st.number_input(label, min_value=0.0, value=float(value), step=100.0, key=key)


# =============================================================================
# STEP 1: PROFILE
# =============================================================================

def render_profile_step():
    st.markdown("### Step 1: Your Profile")

    countries = list(SUPPORTED_COUNTRIES.keys())
    # Spouse income depends on filing status, so it sits outside the form
    filing_status = st.selectbox(
        "Filing Status",
        options=list(FilingStatus),
        format_func=lambda x: x.value.replace('_', ' ').title(),
        key="profile_filing_status",
    )

    with st.form("profile_form"):
        col1, col2 = st.columns(2)
        with col1:
            country = st.selectbox(
                "Country",
                options=countries,
                format_func=lambda c: SUPPORTED_COUNTRIES[c],
            )
            birth_date = st.date_input(
                "Date of Birth",
                value=date(1985, 1, 1),
                min_value=date(1900, 1, 1),
                max_value=date.today(),
            )
        with col2:
            dependents = st.number_input("Dependents", min_value=0, max_value=MAX_DEPENDENTS, value=0, step=1)
            spouse_income = 0.0
            if filing_status in MARRIED_STATUSES:
                spouse_income = money_input("Spouse Income", "spouse_income")

        submitted = st.form_submit_button("Continue", type="primary", use_container_width=True)

    if submitted:
        advance(WorkflowStep.PROFILE, {
            "country": country,
            "filing_status": filing_status,
            "birth_date": birth_date,
            "dependents": int(dependents),
            "spouse_income": spouse_income,
        })


# =============================================================================
# STEP 2: SCENARIO
# =============================================================================

SCENARIO_DESCRIPTIONS = {
    TaxScenario.PERSONAL: "Personal - salary, investments and household deductions",
    TaxScenario.BUSINESS: "Business - revenue and business expenses",
    TaxScenario.COMBINED: "Combined - personal and business together",
}


def render_scenario_step():
    st.markdown("### Step 2: Choose Your Tax Scenario")

    choice = st.radio(
        "Which situation should we analyze?",
        options=list(TaxScenario),
        format_func=lambda s: SCENARIO_DESCRIPTIONS[s],
        index=None,
    )

    if st.button("Continue", type="primary", use_container_width=True, key="scenario_continue"):
        if choice is None:
            st.error("Please select at least one tax scenario")
        else:
            advance(WorkflowStep.SCENARIO, choice)


# =============================================================================
# STEP 3: FINANCES
# =============================================================================

def render_personal_step():
    st.markdown("### Personal Finances")

    with st.form("personal_form"):
        st.markdown("**Income**")
        col1, col2 = st.columns(2)
        with col1:
            salary = money_input("Salary", "salary_income")
            freelance = money_input("Freelance Income", "freelance_income")
            investment = money_input("Investment Income", "investment_income")
        with col2:
            rental = money_input("Rental Income", "rental_income")
            capital_gains = money_input("Capital Gains", "capital_gains")
            other_income = money_input("Other Income", "other_income")

        st.markdown("**Deductions**")
        col1, col2 = st.columns(2)
        with col1:
            retirement = money_input("Retirement Contributions", "retirement_contributions")
            mortgage = money_input("Mortgage Interest", "mortgage_interest")
            property_taxes = money_input("Property Taxes", "property_taxes")
            charitable = money_input("Charitable Donations", "charitable_donations")
        with col2:
            medical = money_input("Medical Expenses", "medical_expenses")
            childcare = money_input("Childcare Costs", "childcare_costs")
            education = money_input("Education Expenses", "education_expenses")
            other_deductions = money_input("Other Deductions", "other_deductions")

        st.markdown("**Credits**")
        credits = money_input("Tax Credits", "tax_credits")

        submitted = st.form_submit_button("Continue", type="primary", use_container_width=True)

    if submitted:
        advance(WorkflowStep.PERSONAL, PersonalFinances(
            salary_income=salary,
            freelance_income=freelance,
            investment_income=investment,
            rental_income=rental,
            capital_gains=capital_gains,
            other_income=other_income,
            retirement_contributions=retirement,
            mortgage_interest=mortgage,
            property_taxes=property_taxes,
            charitable_donations=charitable,
            medical_expenses=medical,
            childcare_costs=childcare,
            education_expenses=education,
            other_deductions=other_deductions,
            tax_credits=credits,
        ))


def render_business_step():
    st.markdown("### Business Finances")

    with st.form("business_form"):
        revenue = money_input("Annual Revenue", "revenue")

        st.markdown("**Expenses**")
        col1, col2 = st.columns(2)
        with col1:
            employee_costs = money_input("Employee Costs", "employee_costs")
            equipment = money_input("Equipment", "equipment")
            rent = money_input("Rent", "rent")
            utilities = money_input("Utilities", "utilities")
            marketing = money_input("Marketing", "marketing")
        with col2:
            travel = money_input("Travel", "travel_expenses")
            supplies = money_input("Office Supplies", "office_supplies")
            professional = money_input("Professional Services", "professional_services")
            insurance = money_input("Insurance", "insurance")
            other_expenses = money_input("Other Expenses", "other_expenses")

        submitted = st.form_submit_button("Continue", type="primary", use_container_width=True)

    if submitted:
        advance(WorkflowStep.BUSINESS, BusinessFinances(
            revenue=revenue,
            employee_costs=employee_costs,
            equipment=equipment,
            rent=rent,
            utilities=utilities,
            marketing=marketing,
            travel_expenses=travel,
            office_supplies=supplies,
            professional_services=professional,
            insurance=insurance,
            other_expenses=other_expenses,
        ))


# =============================================================================
# STEP 4: ANALYSIS
# =============================================================================

def render_analysis_step():
    workflow: StepWorkflow = st.session_state.workflow
    result = st.session_state.calculator.calculate(workflow.personal, workflow.business)
    insights = st.session_state.insights or []
    report = build_report(
        scenario=workflow.scenario,
        result=result,
        profile=workflow.profile,
        personal=workflow.personal,
        business=workflow.business,
        ai_insights=insights,
    )

    st.markdown(f"### {report.title} ({report.scenario_label})")
    st.markdown(f"#### {report.impact_heading}")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric(report.without_cuts_label, fmt_currency(result.tax_before_cuts))
    with col2:
        st.metric(report.with_cuts_label, fmt_currency(result.tax_after_cuts))
    with col3:
        st.metric("Effective Rate", f"{result.effective_rate:.1f}%")

    st.markdown(f'<div class="savings-box">{report.savings_message}</div>', unsafe_allow_html=True)

    with st.expander("📊 See detailed calculation"):
        df = pd.DataFrame(figure_rows(report), columns=["Item", "Amount"])
        st.dataframe(df, hide_index=True, use_container_width=True)

    st.markdown("---")
    st.markdown("### 💡 Recommendations")
    cols = st.columns(len(report.recommendations))
    for col, section in zip(cols, report.recommendations):
        with col:
            st.markdown(f"**{section.title}**")
            for item in section.items:
                st.markdown(f"- {item}")

    st.markdown("**Action Items**")
    for item in report.action_items:
        st.checkbox(item, key=f"action_{item}")

    # AI insights
    st.markdown("---")
    ai_client: TaxInsightsClient = st.session_state.ai_client
    if st.button("🤖 Get AI Insights", use_container_width=True):
        with st.spinner("Analyzing your situation..."):
            try:
                financial_data = build_financial_data(workflow.profile, result, workflow.scenario, workflow.business)
                insight_result = ai_client.generate_tax_insights(financial_data)
                st.session_state.insights = insight_result.insights + insight_result.recommendations
                st.rerun()
            except AppError as e:
                st.error(e.message)

    if insights:
        st.markdown("**AI Insights**")
        for insight in insights:
            st.markdown(f"- {insight}")

    # Actions
    st.markdown("---")
    col1, col2, col3 = st.columns(3)
    with col1:
        st.download_button(
            "🖨️ Print Report",
            data=render_text(report),
            file_name="tax-analysis.txt",
            mime="text/plain",
            use_container_width=True,
        )
    with col2:
        if st.button("📄 Download Report", use_container_width=True):
            with st.spinner("Generating PDF..."):
                outcome = download_report(report)
            if outcome.success:
                st.session_state.download_error = None
                st.download_button(
                    "💾 Save PDF",
                    data=outcome.content,
                    file_name=outcome.filename,
                    mime="application/pdf",
                    use_container_width=True,
                )
            else:
                st.session_state.download_error = outcome.error
    with col3:
        if st.button("🔄 Start New Analysis", use_container_width=True):
            workflow.reset()
            st.session_state.insights = None
            st.session_state.download_error = None
            st.rerun()

    if st.session_state.download_error:
        st.error(st.session_state.download_error)

    st.caption(report.disclaimer)


# =============================================================================
# MAIN APP
# =============================================================================

st.markdown("""
<div class="main-header">
    <h1>📊 TaxScope</h1>
    <p>Personal and business tax analysis in four steps</p>
</div>
""", unsafe_allow_html=True)

STEP_RENDERERS = {
    WorkflowStep.PROFILE: render_profile_step,
    WorkflowStep.SCENARIO: render_scenario_step,
    WorkflowStep.PERSONAL: render_personal_step,
    WorkflowStep.BUSINESS: render_business_step,
    WorkflowStep.ANALYSIS: render_analysis_step,
}

current_workflow: StepWorkflow = st.session_state.workflow
st.progress(
    (list(WorkflowStep).index(current_workflow.current_step) + 1) / len(WorkflowStep),
    text=f"Step: {current_workflow.current_step.value.title()}",
)
STEP_RENDERERS[current_workflow.current_step]()


# =============================================================================
# SIDEBAR
# =============================================================================

with st.sidebar:
    st.markdown("### 📊 TaxScope")
    st.markdown("---")

    if st.session_state.ai_client.is_connected:
        st.success("🟢 AI Connected")
    else:
        st.error("🔴 AI Offline")
        st.caption("Add OPENAI_API_KEY in Settings")

    if current_workflow.profile:
        st.metric("Filing Status", current_workflow.profile.filing_status.value.replace('_', ' ').title())
    if current_workflow.scenario:
        st.metric("Scenario", current_workflow.scenario.value.title())

    st.markdown("---")
    if st.button("🔄 Start Over", use_container_width=True):
        for key in list(st.session_state.keys()):
            del st.session_state[key]
        st.rerun()
