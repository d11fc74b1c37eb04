"""
TaxScope - Estimate Calculator
==============================
Turns the profile's finance records into an AnalysisResult.

The estimate is a flat-rate approximation, not tax law:

    total_income          = personal income + business revenue
    total_deductions      = personal deductions + business expenses
    taxable_income        = total_income - total_deductions
    tax_before_cuts       = total_income * rate
    tax_after_deductions  = taxable_income * rate
    tax_after_cuts        = max(0, tax_after_deductions - credits)
    savings               = tax_before_cuts - tax_after_cuts
    effective_rate        = tax_after_cuts / taxable_income * 100  (0 if taxable <= 0)

The rate and whether taxable income is floored at zero are explicit
arguments. TaxModel.PROGRESSIVE replaces the flat multiplication with the
simplified bracket schedule in tax_constants.
"""

import logging
from typing import Optional

from models import (
    AnalysisResult,
    BusinessFinances,
    ClampPolicy,
    PersonalFinances,
    TaxModel,
)
from tax_constants import DEFAULT_FLAT_RATE, calculate_bracket_tax

logger = logging.getLogger(__name__)


def _apply_tax(amount: float, rate: float, tax_model: TaxModel) -> float:
    if tax_model == TaxModel.PROGRESSIVE:
        # Bracket schedule taxes nothing below zero
        return calculate_bracket_tax(amount)
    return amount * rate


def calculate_estimate(
    personal: Optional[PersonalFinances],
    business: Optional[BusinessFinances] = None,
    rate: float = DEFAULT_FLAT_RATE,
    clamp: ClampPolicy = ClampPolicy.NONE,
    tax_model: TaxModel = TaxModel.FLAT,
    credits: Optional[float] = None,
) -> AnalysisResult:
    """
    Compute the tax estimate for one user.

    Args:
        personal: Personal finances, or None for a business-only scenario
        business: Business finances, or None when there is no business
        rate: Flat rate in [0, 1]
        clamp: Whether taxable income is floored at zero
        tax_model: Flat multiplication or the simplified bracket schedule
        credits: Overrides personal.tax_credits when given

    Returns:
        AnalysisResult rounded to cents
    """
    if not 0 <= rate <= 1:
        raise ValueError(f"Tax rate must be between 0 and 1, got {rate}")
    if credits is not None and credits < 0:
        raise ValueError("Credits cannot be negative")

    personal = personal or PersonalFinances()

    # Step 1: Gross income
    business_revenue = business.revenue if business else 0.0
    total_income = personal.total_income + business_revenue

    # Step 2: Deductions
    business_expenses = business.total_expenses if business else 0.0
    total_deductions = personal.total_deductions + business_expenses

    # Step 3: Taxable income
    taxable_income = total_income - total_deductions
    if clamp == ClampPolicy.ZERO_FLOOR:
        taxable_income = max(0.0, taxable_income)

    # Step 4-5: Counterfactual and post-deduction tax
    tax_before_cuts = _apply_tax(total_income, rate, tax_model)
    tax_after_deductions = _apply_tax(taxable_income, rate, tax_model)

    # Step 6: Credits
    total_credits = personal.tax_credits if credits is None else credits
    tax_after_cuts = max(0.0, tax_after_deductions - total_credits)

    # Step 7: Savings against the no-deduction, no-credit counterfactual
    savings = tax_before_cuts - tax_after_cuts

    # Step 8: Effective rate
    effective_rate = (tax_after_cuts / taxable_income) * 100 if taxable_income > 0 else 0.0

    logger.debug(
        f"Estimate: income={total_income:.2f} taxable={taxable_income:.2f} "
        f"after_cuts={tax_after_cuts:.2f} model={tax_model.value}"
    )

    return AnalysisResult(
        total_income=round(total_income, 2),
        total_deductions=round(total_deductions, 2),
        taxable_income=round(taxable_income, 2),
        total_credits=round(total_credits, 2),
        tax_before_cuts=round(tax_before_cuts, 2),
        tax_after_deductions=round(tax_after_deductions, 2),
        tax_after_cuts=round(tax_after_cuts, 2),
        savings=round(savings, 2),
        effective_rate=round(effective_rate, 2),
        rate=rate,
        tax_model=tax_model,
        clamp_policy=clamp,
        personal_taxable_income=round(personal.taxable_income, 2),
        business_net_income=round(business.net_income, 2) if business else 0.0,
        has_business=business is not None,
    )


class EstimateCalculator:
    """
    Estimate calculator bound to one configuration.

    Holds the rate, clamp policy and tax model so callers do not repeat them.
    """

    def __init__(
        self,
        rate: float = DEFAULT_FLAT_RATE,
        clamp: ClampPolicy = ClampPolicy.NONE,
        tax_model: TaxModel = TaxModel.FLAT,
    ):
        if not 0 <= rate <= 1:
            raise ValueError(f"Tax rate must be between 0 and 1, got {rate}")
        self.rate = rate
        self.clamp = clamp
        self.tax_model = tax_model

    @classmethod
    def from_settings(cls, settings) -> "EstimateCalculator":
        return cls(
            rate=settings.flat_tax_rate,
            clamp=settings.clamp_policy,
            tax_model=settings.tax_model,
        )

    def calculate(
        self,
        personal: Optional[PersonalFinances],
        business: Optional[BusinessFinances] = None,
        credits: Optional[float] = None,
    ) -> AnalysisResult:
        return calculate_estimate(
            personal,
            business,
            rate=self.rate,
            clamp=self.clamp,
            tax_model=self.tax_model,
            credits=credits,
        )
