"""
TaxScope - LLM Prompts
======================
System prompts and prompt builders for the AI insight client.

RULES FOR LLM USAGE:
1. The LLM NEVER calculates the estimate - that is done in estimate_calculator
2. The LLM receives figures only - no names, addresses or identifiers
3. The LLM must answer with a single JSON object
"""

import json
from typing import Any, Dict, List, Optional, Tuple


# =============================================================================
# SYSTEM PROMPTS
# =============================================================================

TAX_INSIGHTS_SYSTEM_PROMPT = """You are a tax optimization expert. Analyze financial data and provide personalized tax insights, savings opportunities, and recommendations. Focus on maximizing tax savings while ensuring compliance.

## CRITICAL RULES:
1. The tax figures you receive are already calculated - do not recalculate them
2. Output ONLY valid JSON - no explanations, no markdown
3. Keep each insight and recommendation to one or two sentences"""


DOCUMENT_ANALYSIS_SYSTEM_PROMPT = """You are a tax expert AI assistant. Analyze financial documents and provide insights, recommendations, and extract relevant financial data. Always be accurate and helpful.

## CRITICAL RULES:
1. Extract ONLY amounts that are explicitly present in the document
2. Numbers must be numeric, without currency symbols or commas
3. Output ONLY valid JSON - no explanations, no markdown"""


INSIGHTS_RESPONSE_FORMAT = """{
  "insights": ["insight1", "insight2", ...],
  "recommendations": ["rec1", "rec2", ...],
  "confidence": 0.85,
  "summary": "Brief summary of key findings"
}"""


DOCUMENT_RESPONSE_FORMAT = """{
  "insights": ["insight1", "insight2", ...],
  "recommendations": ["rec1", "rec2", ...],
  "confidence": 0.85,
  "extractedData": {
    "income": 0,
    "expenses": 0,
    "deductions": 0,
    "additionalInsights": []
  }
}"""


# =============================================================================
# PROMPT BUILDERS
# =============================================================================

def build_financial_summary(financial_data: Dict[str, Any]) -> str:
    """Build a human-readable summary of the figures sent to the LLM."""

    lines = [
        f"Filing Status: {financial_data.get('filing_status', 'Not specified')}",
        f"Dependents: {financial_data.get('dependents', 0)}",
        f"Scenario: {financial_data.get('scenario', 'personal')}",
        "",
        "=== INCOME & DEDUCTIONS ===",
        f"Annual Income: ${financial_data.get('income', 0):,.2f}",
        f"Deductions: ${financial_data.get('deductions', 0):,.2f}",
    ]

    if financial_data.get('business_expenses', 0) > 0:
        lines.append(f"Business Expenses: ${financial_data['business_expenses']:,.2f}")
    if financial_data.get('credits', 0) > 0:
        lines.append(f"Tax Credits: ${financial_data['credits']:,.2f}")

    if 'taxable_income' in financial_data:
        lines.extend([
            "",
            "=== ESTIMATE ===",
            f"Taxable Income: ${financial_data.get('taxable_income', 0):,.2f}",
            f"Estimated Tax: ${financial_data.get('tax_after_cuts', 0):,.2f}",
            f"Effective Rate: {financial_data.get('effective_rate', 0):.1f}%",
        ])

    return "\n".join(lines)


def build_tax_insights_prompt(
    financial_data: Dict[str, Any],
    document_analysis: Optional[Dict[str, Any]] = None,
) -> str:
    """User prompt for generate_tax_insights."""
    analysis = json.dumps(document_analysis) if document_analysis else "None"
    return f"""Analyze this financial situation and provide tax optimization insights:

{build_financial_summary(financial_data)}

Document Analysis: {analysis}

Please provide:
1. Tax optimization opportunities
2. Potential savings strategies
3. Compliance recommendations
4. Next steps for tax planning

Format your response as JSON with the following structure:
{INSIGHTS_RESPONSE_FORMAT}"""


def build_document_analysis_prompt(
    file_name: str,
    file_type: str,
    content: str,
    user_context: Optional[Dict[str, Any]] = None,
) -> str:
    """User prompt for analyze_document."""
    context = user_context or {}
    return f"""Analyze this financial document and provide insights:

Document: {file_name} ({file_type})
Content: {content}

User Context:
- Filing Status: {context.get('filing_status') or 'Not specified'}
- Dependents: {context.get('dependents') or 0}
- Income: ${context.get('income') or 'Not specified'}

Please provide:
1. Key financial data extracted (income, expenses, deductions, etc.)
2. Tax-relevant insights and opportunities
3. Specific recommendations for tax optimization
4. Confidence level (0-1) in your analysis

Format your response as JSON with the following structure:
{DOCUMENT_RESPONSE_FORMAT}"""


# =============================================================================
# RESPONSE HANDLING
# =============================================================================

def strip_code_fences(content: str) -> str:
    """Remove ```json fences some models wrap around JSON."""
    text = content.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    return text.strip()


def validate_insights_response(response: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Check that a parsed LLM response has the expected shape.

    Returns:
        Tuple of (is_valid, list of issues)
    """
    issues = []

    for key in ("insights", "recommendations"):
        value = response.get(key)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            issues.append(f"{key} must be a list of strings")

    confidence = response.get('confidence')
    if confidence is not None:
        if not isinstance(confidence, (int, float)) or confidence < 0 or confidence > 1:
            issues.append("Invalid confidence")

    if 'extractedData' in response and not isinstance(response['extractedData'], dict):
        issues.append("extractedData must be an object")

    return len(issues) == 0, issues
