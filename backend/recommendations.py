"""
TaxScope - Recommendations
==========================
Canned recommendation sections shown on the report, and the heuristic
optimisation analysis.

The optimisation analysis is a rough estimate: each opportunity amount is
multiplied by an average rate to get a saving. It uses the simplified
progressive schedule, not the flat report rate.
"""

import logging
from typing import List, Optional

from models import (
    BusinessFinances,
    OptimizationOpportunities,
    OptimizationReport,
    PersonalFinances,
    RecommendationCategory,
    RecommendationSection,
)
from tax_constants import (
    OPTIMIZATION_CONFIDENCE,
    OPTIMIZATION_LIMITS,
    OPTIMIZATION_SAVINGS_RATE,
    TAX_ADVANTAGED_INVESTMENT_RATE,
    calculate_bracket_tax,
    get_marginal_rate,
    get_tax_bracket_label,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATIC RECOMMENDATIONS
# =============================================================================

INCOME_OPTIMIZATION = RecommendationSection(
    category=RecommendationCategory.INCOME,
    title="Income Optimization",
    items=[
        "Maximize 401(k) contributions to reduce taxable income and build wealth.",
        "Contribute to a Health Savings Account if you have an eligible health plan.",
        "Use tax-loss harvesting to offset capital gains with investment losses.",
    ],
)

DEDUCTION_OPPORTUNITIES = RecommendationSection(
    category=RecommendationCategory.DEDUCTIONS,
    title="Deduction Opportunities",
    items=[
        "Itemize deductions if they exceed the standard deduction amount.",
        "Bunch charitable giving into a single year to clear the itemizing threshold.",
        "Claim the home office deduction if you work from a dedicated space at home.",
    ],
)

TAX_CREDITS = RecommendationSection(
    category=RecommendationCategory.CREDITS,
    title="Tax Credits",
    items=[
        "Check eligibility for the Earned Income Tax Credit.",
        "Claim education credits for qualifying tuition and course fees.",
        "Claim the Child Tax Credit for each qualifying dependent.",
    ],
)

BUSINESS_STRATEGIES = RecommendationSection(
    category=RecommendationCategory.BUSINESS,
    title="Business Tax Strategies",
    items=[
        "Use Section 179 to expense qualifying equipment purchases in the year they are made.",
        "Categorize every business expense so none are missed at filing time.",
        "Set up a SEP-IRA or Solo 401(k) to shelter owner income.",
    ],
)

ACTION_ITEMS = [
    "Review and maximize retirement contributions",
    "Gather documentation for itemized deductions",
    "Consider tax-loss harvesting opportunities",
    "Plan quarterly estimated tax payments",
]


def build_recommendations(has_business: bool) -> List[RecommendationSection]:
    """Recommendation sections for a report. Business strategies only with business data."""
    sections = [INCOME_OPTIMIZATION, DEDUCTION_OPPORTUNITIES, TAX_CREDITS]
    if has_business:
        sections.append(BUSINESS_STRATEGIES)
    return [section.model_copy(deep=True) for section in sections]


# =============================================================================
# OPTIMISATION ANALYSIS
# =============================================================================

class OptimizationAnalyzer:
    """
    Estimate how much tax could be saved.

    Inputs beyond the finance records are optional: the total of deductible
    expenses found in the user's budget, and the tax-saving potential of
    their investments.
    """

    def __init__(self, limits: Optional[dict] = None):
        self.limits = {**OPTIMIZATION_LIMITS, **(limits or {})}

    def analyze(
        self,
        personal: Optional[PersonalFinances],
        business: Optional[BusinessFinances] = None,
        deductible_budget_expenses: float = 0.0,
        tax_advantaged_investments: float = 0.0,
    ) -> OptimizationReport:
        personal = personal or PersonalFinances()

        current_tax = self._calculate_current_tax(personal, business)
        opportunities = self._find_opportunities(
            personal, business, deductible_budget_expenses, tax_advantaged_investments
        )
        optimized_tax = self._calculate_optimized_tax(current_tax, opportunities)
        taxable = self._taxable_income(personal, business)

        report = OptimizationReport(
            current_tax=current_tax,
            optimized_tax=optimized_tax,
            opportunities=opportunities,
            recommendations=self._generate_recommendations(opportunities),
            tax_bracket=get_tax_bracket_label(taxable),
            marginal_rate=get_marginal_rate(taxable),
            confidence_score=OPTIMIZATION_CONFIDENCE,
        )
        logger.info(f"Optimization: current={current_tax:.2f} optimized={optimized_tax:.2f}")
        return report

    def _taxable_income(self, personal: PersonalFinances, business: Optional[BusinessFinances]) -> float:
        income = personal.total_income + (business.revenue if business else 0.0)
        deductions = personal.total_deductions + (business.total_expenses if business else 0.0)
        return max(0.0, income - deductions)

    def _calculate_current_tax(self, personal: PersonalFinances, business: Optional[BusinessFinances]) -> float:
        return calculate_bracket_tax(self._taxable_income(personal, business))

    def _find_opportunities(
        self,
        personal: PersonalFinances,
        business: Optional[BusinessFinances],
        deductible_budget_expenses: float,
        tax_advantaged_investments: float,
    ) -> OptimizationOpportunities:
        income = personal.total_income
        revenue = business.revenue if business else 0.0
        expenses = business.total_expenses if business else 0.0

        max_business_deductions = revenue * self.limits["business_deduction_share_of_revenue"]

        return OptimizationOpportunities(
            additional_deductions=round(max(0.0, deductible_budget_expenses - personal.total_deductions), 2),
            tax_advantaged_investments=round(max(0.0, tax_advantaged_investments), 2),
            business_expense_optimization=round(max(0.0, max_business_deductions - expenses), 2),
            retirement_contributions=round(
                min(self.limits["retirement_cap"], income * self.limits["retirement_share_of_income"]), 2
            ),
            health_savings=round(min(self.limits["hsa_cap"], income * self.limits["hsa_share_of_income"]), 2),
        )

    def _calculate_optimized_tax(self, current_tax: float, opp: OptimizationOpportunities) -> float:
        total_optimizations = (
            opp.additional_deductions * OPTIMIZATION_SAVINGS_RATE
            + opp.tax_advantaged_investments * TAX_ADVANTAGED_INVESTMENT_RATE
            + opp.business_expense_optimization * OPTIMIZATION_SAVINGS_RATE
            + opp.retirement_contributions * OPTIMIZATION_SAVINGS_RATE
            + opp.health_savings * OPTIMIZATION_SAVINGS_RATE
        )
        return round(max(0.0, current_tax - total_optimizations), 2)

    def _generate_recommendations(self, opp: OptimizationOpportunities) -> List[str]:
        recommendations = []

        if opp.additional_deductions > 0:
            recommendations.append(f"Claim additional deductions worth ${opp.additional_deductions:,.0f}")
        if opp.tax_advantaged_investments > 0:
            recommendations.append(f"Consider tax-advantaged investments worth ${opp.tax_advantaged_investments:,.0f}")
        if opp.business_expense_optimization > 0:
            recommendations.append(
                f"Optimize business expenses for ${opp.business_expense_optimization:,.0f} in additional deductions"
            )
        if opp.retirement_contributions > 0:
            recommendations.append(f"Maximize retirement contributions up to ${opp.retirement_contributions:,.0f}")
        if opp.health_savings > 0:
            recommendations.append(f"Consider Health Savings Account contributions up to ${opp.health_savings:,.0f}")

        return recommendations
