"""
TaxScope - Raw Data Mapping
===========================
Coerce loosely-typed payloads (CSV uploads, OCR output, CRM exports)
into PersonalFinances and BusinessFinances.
"""

import logging
import math
import re
from typing import Any, Dict, Optional, Union

from models import (
    BusinessFinances,
    DataSource,
    MappedTaxModel,
    PersonalFinances,
    SourceMethod,
    PERSONAL_INCOME_FIELDS,
    PERSONAL_DEDUCTION_FIELDS,
    BUSINESS_EXPENSE_FIELDS,
)

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

# Alternative keys seen in uploads and CRM exports
FIELD_ALIASES = {
    "salary": "salary_income",
    "wages": "salary_income",
    "freelance": "freelance_income",
    "investment": "investment_income",
    "dividends": "investment_income",
    "rental": "rental_income",
    "other": "other_income",
    "retirement": "retirement_contributions",
    "charitable": "charitable_donations",
    "medical": "medical_expenses",
    "childcare": "childcare_costs",
    "education": "education_expenses",
    "credits": "tax_credits",
    "annual_revenue": "revenue",
    "sales": "revenue",
    "travel": "travel_expenses",
    "supplies": "office_supplies",
}


def number_or_zero(value: Any) -> float:
    """
    Best-effort numeric coercion.

    Finite numbers pass through; strings lose everything except digits,
    '.' and '-' before parsing ('$1,200.50' -> 1200.5). Anything else,
    and anything non-finite, is 0.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def _normalize_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in raw.items():
        name = str(key).strip().lower().replace(" ", "_").replace("-", "_")
        name = FIELD_ALIASES.get(name, name)
        # First value wins when an alias collides with a canonical key
        normalized.setdefault(name, value)
    return normalized


def _amount(data: Dict[str, Any], field: str) -> float:
    value = number_or_zero(data.get(field))
    if value < 0:
        logger.warning(f"Negative amount for {field} clamped to 0")
        return 0.0
    return value


def map_to_tax_model(
    raw: Optional[Dict[str, Any]],
    source: Union[DataSource, Dict[str, Any], str, None] = None,
) -> MappedTaxModel:
    """
    Map a raw payload to the finance records.

    Args:
        raw: Flat dict of field name -> value; nested "personal" and
            "business" dicts are also accepted
        source: DataSource, a dict with the same keys, or a method name

    Returns:
        MappedTaxModel with both records and the source attached
    """
    raw = raw or {}
    personal_raw = raw.get("personal") if isinstance(raw.get("personal"), dict) else raw
    business_raw = raw.get("business") if isinstance(raw.get("business"), dict) else raw
    personal_data = _normalize_keys(personal_raw)
    business_data = _normalize_keys(business_raw)

    personal_fields = PERSONAL_INCOME_FIELDS + PERSONAL_DEDUCTION_FIELDS + ["tax_credits"]
    personal = PersonalFinances(**{f: _amount(personal_data, f) for f in personal_fields})

    business_fields = ["revenue"] + BUSINESS_EXPENSE_FIELDS
    business = BusinessFinances(**{f: _amount(business_data, f) for f in business_fields})

    if isinstance(source, DataSource):
        data_source = source
    elif isinstance(source, dict):
        data_source = DataSource.model_validate(source)
    elif isinstance(source, str):
        data_source = DataSource(method=SourceMethod(source.lower()))
    else:
        data_source = DataSource()

    return MappedTaxModel(personal=personal, business=business, source=data_source)
