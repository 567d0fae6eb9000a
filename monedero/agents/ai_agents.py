"""
AI Agents for Monedero

DESIGN DECISION: The AI only ever sees AggregatedFinancialData that has
passed the PII gate, rendered into a prompt. Its output is parsed into
FinancialInsightResponse, a strict schema.

CRITICAL BOUNDARIES:

INSIGHT AGENT:
   - CAN: Turn computed metrics into three short tips and a summary
   - CANNOT: See raw expenses, descriptions, merchants or identifiers
   - CANNOT: Return partial output. Invalid JSON or any schema violation
     fails the whole generation attempt.

The LLM is a WRITER, not an ORACLE.
Every number it talks about was computed by the heuristics engine.
"""

import json
from typing import Any, Callable, Optional

import google.generativeai as genai
import structlog
from pydantic import ValidationError

from monedero.config import GeminiSettings, get_settings
from monedero.models.advisor import FinancialInsightResponse

logger = structlog.get_logger(__name__)


class InsightGenerationError(Exception):
    """The AI call failed (transport, quota, blocked response)."""
    pass


class AISchemaError(InsightGenerationError):
    """The AI answered, but the answer does not fit FinancialInsightResponse."""
    pass


def extract_json_object(text: str) -> dict:
    """
    Pull the outermost JSON object out of a model response.

    Raises:
        AISchemaError: If there is no parseable object
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise AISchemaError("AI response contains no JSON object")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise AISchemaError(f"AI response is not valid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise AISchemaError("AI response JSON is not an object")
    return data


class InsightAgent:
    """
    AI agent for the financial advisor.

    RESPONSIBILITIES:
    - Send the built prompts to Gemini
    - Validate the response against FinancialInsightResponse

    BOUNDARIES:
    - NEVER builds prompts itself
    - NEVER persists anything
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model_factory: Optional[Callable[[str], Any]] = None,
    ):
        """
        Args:
            settings: Gemini settings; loaded from the environment if omitted.
            model_factory: Builds a model for a given system instruction.
                Defaults to genai.GenerativeModel.
        """
        self._settings = settings or get_settings().gemini
        if model_factory is None:
            genai.configure(api_key=self._settings.api_key)
            model_factory = self._build_model
        self._model_factory = model_factory

    def _build_model(self, system_prompt: str) -> Any:
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system_prompt,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
                "response_mime_type": "application/json",
            },
        )

    async def synthesize(self, system_prompt: str, user_prompt: str) -> FinancialInsightResponse:
        """
        Generate tips for the given prompts.

        Raises:
            InsightGenerationError: If the call fails
            AISchemaError: If the response fails validation
        """
        model = self._model_factory(system_prompt)

        try:
            response = await model.generate_content_async(user_prompt)
            text = response.text
        except Exception as e:
            logger.error("ai_call_failed", model=self._settings.model_name, error=str(e))
            raise InsightGenerationError(f"AI call failed: {e}") from e

        data = extract_json_object(text or "")
        try:
            return FinancialInsightResponse.model_validate(data)
        except ValidationError as e:
            logger.warning("ai_schema_rejected", errors=e.error_count())
            raise AISchemaError(
                f"AI response failed schema validation ({e.error_count()} errors)"
            ) from e
