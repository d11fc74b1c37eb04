"""
TaxScope - Tax Constants
========================
Rates, thresholds and reference tables used by the estimate calculator,
the optimisation analysis and the profile forms.

These figures are deliberately simplified: the live estimate is a flat-rate
approximation, and the progressive table below is a single illustrative
schedule, not a jurisdiction's real brackets.
"""

from enum import Enum
from typing import Dict, List, Tuple

# =============================================================================
# FILING STATUS ENUM
# =============================================================================

class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married_filing_jointly"
    MARRIED_FILING_SEPARATELY = "married_filing_separately"
    HEAD_OF_HOUSEHOLD = "head_of_household"
    QUALIFYING_WIDOW = "qualifying_widow"


# Statuses for which the profile form asks for spouse income
MARRIED_STATUSES = (
    FilingStatus.MARRIED_FILING_JOINTLY,
    FilingStatus.MARRIED_FILING_SEPARATELY,
)


# =============================================================================
# SUPPORTED COUNTRIES
# =============================================================================

SUPPORTED_COUNTRIES: Dict[str, str] = {
    "US": "United States",
    "CA": "Canada",
    "GB": "United Kingdom",
    "AU": "Australia",
    "DE": "Germany",
    "FR": "France",
    "JP": "Japan",
    "SG": "Singapore",
    "IN": "India",
    "BR": "Brazil",
}

MAX_DEPENDENTS = 10


# =============================================================================
# FLAT-RATE ESTIMATE
# =============================================================================

# Rate used by the analysis report and the PDF export
DEFAULT_FLAT_RATE = 0.25

# Older report page used 22%; kept selectable through configuration
LEGACY_FLAT_RATE = 0.22


# =============================================================================
# SIMPLIFIED PROGRESSIVE SCHEDULE
# Format: (upper_limit, base_tax, marginal_rate)
# Tax for income in a band = base_tax + (income - previous_limit) * rate
# =============================================================================

SIMPLIFIED_BRACKETS: List[Tuple[float, float, float]] = [
    (10000, 0, 0.10),
    (40000, 1000, 0.12),
    (85000, 4600, 0.22),
    (163000, 14500, 0.24),
    (207000, 33200, 0.32),
    (518000, 47300, 0.35),
    (float('inf'), 156200, 0.37),
]


# =============================================================================
# OPTIMISATION HEURISTICS
# =============================================================================

OPTIMIZATION_LIMITS = {
    "retirement_cap": 20000,
    "retirement_share_of_income": 0.15,
    "hsa_cap": 3650,
    "hsa_share_of_income": 0.05,
    "business_deduction_share_of_revenue": 0.5,
}

# Average rates used to turn an opportunity amount into a tax saving
OPTIMIZATION_SAVINGS_RATE = 0.22
TAX_ADVANTAGED_INVESTMENT_RATE = 0.15

OPTIMIZATION_CONFIDENCE = 0.85


# =============================================================================
# AI USAGE
# =============================================================================

# Blended price per 1K tokens, used only for the usage estimate
AI_COST_PER_1K_TOKENS = 0.045


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def calculate_bracket_tax(taxable_income: float) -> float:
    """
    Calculate tax with the simplified progressive schedule.

    Args:
        taxable_income: Income after deductions

    Returns:
        Tax owed, rounded to cents. Zero for non-positive income.
    """
    if taxable_income <= 0:
        return 0.0

    prev_limit = 0.0
    for limit, base_tax, rate in SIMPLIFIED_BRACKETS:
        if taxable_income <= limit:
            return round(base_tax + (taxable_income - prev_limit) * rate, 2)
        prev_limit = limit

    # Unreachable: the last band is unbounded
    return 0.0


def get_marginal_rate(taxable_income: float) -> float:
    """Get the marginal rate of the simplified schedule for an income level."""
    for limit, _, rate in SIMPLIFIED_BRACKETS:
        if taxable_income <= limit:
            return rate

    return SIMPLIFIED_BRACKETS[-1][2]


def get_tax_bracket_label(taxable_income: float) -> str:
    """Human readable bracket label, e.g. '22%'."""
    return f"{get_marginal_rate(taxable_income) * 100:.0f}%"


def get_reference_rates() -> dict:
    """All reference figures, for the API and the UI sidebar."""
    return {
        "default_flat_rate": DEFAULT_FLAT_RATE,
        "legacy_flat_rate": LEGACY_FLAT_RATE,
        "brackets": [
            {
                "limit": limit if limit != float('inf') else "unlimited",
                "base_tax": base_tax,
                "rate": rate,
            }
            for limit, base_tax, rate in SIMPLIFIED_BRACKETS
        ],
        "optimization_limits": OPTIMIZATION_LIMITS,
        "countries": SUPPORTED_COUNTRIES,
        "filing_statuses": [status.value for status in FilingStatus],
    }
