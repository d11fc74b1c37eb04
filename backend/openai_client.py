"""
OpenAI Integration for TaxScope
===============================
AI-generated tax insights and document analysis.

The client is an explicit object: callers construct it with an API key,
an API key cache, or a ready-made OpenAI client, and pass it where it is
needed. Without a key it answers with deterministic mock insights so the
rest of the app keeps working offline.

IMPORTANT: only figures are sent to OpenAI. The estimate itself is always
computed locally.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from api_key_service import ApiKeyCache
from errors import AppError, ErrorCode, to_app_error
from llm_prompts import (
    TAX_INSIGHTS_SYSTEM_PROMPT,
    DOCUMENT_ANALYSIS_SYSTEM_PROMPT,
    build_tax_insights_prompt,
    build_document_analysis_prompt,
    strip_code_fences,
    validate_insights_response,
)
from models import (
    AnalysisResult,
    BusinessFinances,
    InsightResult,
    TaxScenario,
    UsageRecord,
    UserProfile,
)
from tax_constants import AI_COST_PER_1K_TOKENS

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class AIProvider(Enum):
    OPENAI = "openai"
    MOCK = "mock"


@dataclass
class AIResponse:
    """Response from AI model."""
    content: str
    model: str
    provider: str
    tokens_used: Optional[int] = None
    success: bool = True
    error: Optional[str] = None
    error_code: ErrorCode = ErrorCode.AI_SERVICE_ERROR


# Returned when the model's answer cannot be parsed
INSIGHTS_FALLBACK = InsightResult(
    insights=["Tax analysis completed"],
    recommendations=["Consider consulting a tax professional"],
    confidence=0.5,
    is_fallback=True,
)

DOCUMENT_FALLBACK = InsightResult(
    insights=["Document analysis completed"],
    recommendations=["Review the document for tax optimization opportunities"],
    confidence=0.5,
    is_fallback=True,
)


def calculate_cost(tokens: Optional[int]) -> float:
    """Estimated cost of a call from its total token count."""
    return round((tokens or 0) / 1000 * AI_COST_PER_1K_TOKENS, 6)


def parse_insights(content: str, fallback: InsightResult) -> InsightResult:
    """
    Parse a JSON insight answer.

    Missing keys default to empty lists and confidence 0.5. Unparseable or
    malformed answers return a copy of `fallback`.
    """
    try:
        parsed = json.loads(strip_code_fences(content))
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse AI response: {e}")
        return fallback.model_copy(deep=True)

    if not isinstance(parsed, dict):
        logger.warning("AI response is not a JSON object")
        return fallback.model_copy(deep=True)

    is_valid, issues = validate_insights_response(parsed)
    if not is_valid:
        logger.warning(f"AI response failed validation: {issues}")
        return fallback.model_copy(deep=True)

    return InsightResult(
        insights=parsed.get("insights") or [],
        recommendations=parsed.get("recommendations") or [],
        confidence=parsed.get("confidence") or 0.5,
        summary=parsed.get("summary"),
        extracted_data=parsed.get("extractedData") or {},
    )


class TaxInsightsClient:
    """
    AI client for tax insights.

    Supports:
    - OpenAI chat completions (when a key is available)
    - Mock responses (fallback when no API key)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        key_cache: Optional[ApiKeyCache] = None,
        client: Optional[Any] = None,
        timeout: float = 30.0,
    ):
        self.model = model
        self.timeout = timeout
        self.api_key = api_key
        self.key_cache = key_cache
        self.usage_log: List[UsageRecord] = []
        self._injected_client = client
        self._client = None
        self._client_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings, key_cache: Optional[ApiKeyCache] = None) -> "TaxInsightsClient":
        return cls(
            model=settings.openai_model,
            key_cache=key_cache or ApiKeyCache(ttl_seconds=settings.api_key_cache_ttl),
            timeout=settings.openai_timeout,
        )

    def _resolve_client(self) -> Optional[Any]:
        """
        The OpenAI client for the current key, or None in mock mode.

        The key is looked up through the cache on every call; a new key
        (rotation, or one set after startup) gets a new OpenAI client.
        """
        if self._injected_client is not None:
            return self._injected_client

        key = self.api_key or (self.key_cache.get("openai") if self.key_cache else None)
        if not key:
            self._client = None
            self._client_key = None
            return None

        if key != self._client_key:
            self._client = OpenAI(api_key=key, timeout=self.timeout)
            self._client_key = key
            logger.info("AI insights client connected to OpenAI")
        return self._client

    @property
    def provider(self) -> AIProvider:
        return AIProvider.OPENAI if self._resolve_client() is not None else AIProvider.MOCK

    @property
    def is_connected(self) -> bool:
        """Check if connected to real AI provider."""
        return self._resolve_client() is not None

    @property
    def total_cost(self) -> float:
        return round(sum(record.cost for record in self.usage_log), 6)

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def generate_tax_insights(
        self,
        financial_data: Dict[str, Any],
        document_analysis: Optional[Dict[str, Any]] = None,
    ) -> InsightResult:
        """
        Generate tax insights and recommendations.

        Args:
            financial_data: Figures only (see build_financial_data)
            document_analysis: Optional output of analyze_document

        Returns:
            InsightResult; the canned fallback if the answer cannot be parsed

        Raises:
            AppError: when the OpenAI call fails; the code follows the
                upstream HTTP status, AI_SERVICE_ERROR when there is none
        """
        client = self._resolve_client()
        if client is None:
            return self._mock_insights(financial_data)

        response = self._call_openai(
            client,
            system_prompt=TAX_INSIGHTS_SYSTEM_PROMPT,
            user_prompt=build_tax_insights_prompt(financial_data, document_analysis),
            request_type="tax_insights",
        )
        if not response.success:
            raise AppError(response.error_code, "Failed to generate tax insights", detail=response.error)

        return parse_insights(response.content, INSIGHTS_FALLBACK)

    def analyze_document(
        self,
        file_name: str,
        file_type: str,
        content: str,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> InsightResult:
        """
        Analyze the text of a financial document.

        Returns:
            InsightResult with extracted_data; the canned fallback if the
            answer cannot be parsed

        Raises:
            AppError: when the OpenAI call fails; the code follows the
                upstream HTTP status, AI_SERVICE_ERROR when there is none
        """
        if not content or not content.strip():
            raise AppError(ErrorCode.FILE_ERROR, "The document contains no readable text")

        client = self._resolve_client()
        if client is None:
            return self._mock_document_analysis(file_name)

        response = self._call_openai(
            client,
            system_prompt=DOCUMENT_ANALYSIS_SYSTEM_PROMPT,
            user_prompt=build_document_analysis_prompt(file_name, file_type, content, user_context),
            request_type="document_analysis",
        )
        if not response.success:
            raise AppError(response.error_code, "Failed to analyze document", detail=response.error)

        return parse_insights(response.content, DOCUMENT_FALLBACK)

    # -------------------------------------------------------------------------
    # OpenAI call
    # -------------------------------------------------------------------------

    def _call_openai(self, client: Any, system_prompt: str, user_prompt: str, request_type: str) -> AIResponse:
        """Make a call to OpenAI API."""
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            error = to_app_error(e, default=ErrorCode.AI_SERVICE_ERROR)
            logger.error(f"OpenAI {request_type} call failed: {e}")
            self._track_usage(request_type, None, success=False)
            return AIResponse(
                content="",
                model=self.model,
                provider="openai",
                success=False,
                error=str(e),
                error_code=error.code,
            )

        tokens = response.usage.total_tokens if response.usage else None
        self._track_usage(request_type, tokens, success=True)
        return AIResponse(
            content=response.choices[0].message.content or "",
            model=self.model,
            provider="openai",
            tokens_used=tokens,
            success=True
        )

    def _track_usage(self, request_type: str, tokens: Optional[int], success: bool) -> None:
        record = UsageRecord(
            request_type=request_type,
            model=self.model,
            tokens_used=tokens or 0,
            cost=calculate_cost(tokens),
            success=success,
        )
        self.usage_log.append(record)
        logger.info(f"AI usage: {request_type} tokens={record.tokens_used} cost=${record.cost:.4f}")

    # -------------------------------------------------------------------------
    # Mock responses
    # -------------------------------------------------------------------------

    def _mock_insights(self, financial_data: Dict[str, Any]) -> InsightResult:
        income = financial_data.get("income", 0) or 0
        deductions = financial_data.get("deductions", 0) or 0
        business_expenses = financial_data.get("business_expenses", 0) or 0

        insights = [f"Your reported income is ${income:,.0f} with ${deductions:,.0f} in deductions."]
        recommendations = []

        if income > 0 and deductions / income < 0.1:
            insights.append("Your deductions are under 10% of income; you may be missing deductible expenses.")
            recommendations.append("Review retirement, charitable and medical expenses for additional deductions.")
        if business_expenses > 0:
            insights.append(f"Business expenses of ${business_expenses:,.0f} reduce your taxable income.")
            recommendations.append("Keep receipts for every business expense category you claim.")
        recommendations.append("Add an OpenAI API key for personalized AI insights.")

        return InsightResult(
            insights=insights,
            recommendations=recommendations,
            confidence=0.5,
            summary="Offline analysis based on your reported figures.",
        )

    def _mock_document_analysis(self, file_name: str) -> InsightResult:
        return InsightResult(
            insights=[f"{file_name} was received. Automatic analysis requires an OpenAI API key."],
            recommendations=["Enter the document's amounts in the finance forms."],
            confidence=0.5,
        )


def build_financial_data(
    profile: Optional[UserProfile],
    result: AnalysisResult,
    scenario: Optional[TaxScenario] = None,
    business: Optional[BusinessFinances] = None,
) -> Dict[str, Any]:
    """
    Figures sent to the insight collaborator.

    No identifying fields: only filing status, dependents and amounts.
    """
    return {
        "filing_status": profile.filing_status.value if profile else None,
        "dependents": profile.dependents if profile else 0,
        "scenario": scenario.value if scenario else None,
        "income": result.total_income,
        "deductions": result.total_deductions,
        "business_expenses": business.total_expenses if business else 0.0,
        "credits": result.total_credits,
        "taxable_income": result.taxable_income,
        "tax_after_cuts": result.tax_after_cuts,
        "effective_rate": result.effective_rate,
    }
