"""AI Agents package."""

from monedero.agents.ai_agents import (
    AISchemaError,
    InsightAgent,
    InsightGenerationError,
    extract_json_object,
)

__all__ = [
    "AISchemaError",
    "InsightAgent",
    "InsightGenerationError",
    "extract_json_object",
]
