"""
Prompt Templates for the Financial Advisor

One template per supported locale. The system prompt carries the role,
the computed context and the rules; the user prompt is a fixed request.

CRITICAL: Prompts are built only from AggregatedFinancialData, which has
already passed validate_no_pii(). Nothing else may be interpolated here.
"""

from decimal import Decimal

from monedero.models.advisor import AggregatedFinancialData, SupportedLocale
from monedero.models.money import quantize

PROMPT_TEMPLATES = {
    SupportedLocale.ES: {
        "role": (
            "Eres un coach financiero práctico para personas en economías con "
            "alta inflación y múltiples monedas (Venezuela)."
        ),
        "rules": [
            "Proporciona EXACTAMENTE 3 consejos cortos y accionables.",
            "Enfócate en: liquidez, fuga inflacionaria, y ahorro.",
            "Sé directo, como un amigo que entiende de finanzas.",
            "Usa datos concretos del contexto proporcionado.",
            "Responde siempre en español.",
            "Cada consejo debe tener un título corto (máximo 50 caracteres) y un cuerpo (máximo 200 caracteres).",
            "Asigna un tipo a cada consejo: 'warning' para alertas, 'tip' para sugerencias, 'success' para logros.",
            "Responde solo con JSON: {\"tips\": [{\"title\", \"body\", \"type\"}], \"summary\"} (summary opcional, máximo 120 caracteres).",
        ],
        "labels": {
            "projected_spending": "Gasto mensual proyectado",
            "burn_rate": "Velocidad de gasto",
            "unbudgeted_friction": "Gastos no presupuestados",
            "rate_volatility": "Volatilidad cambiaria (7 días)",
            "budget_usage": "Uso del presupuesto",
            "top_categories": "Principales categorías de gasto",
            "days_remaining": "Días restantes en el mes",
        },
        "user_prompt": "Genera 3 consejos financieros personalizados basados en el contexto proporcionado.",
    },
    SupportedLocale.EN: {
        "role": (
            "You are a practical financial coach for people navigating "
            "high-inflation, multi-currency economies (Venezuela)."
        ),
        "rules": [
            "Provide EXACTLY 3 short, actionable tips.",
            "Focus on: liquidity, inflation leakage, and savings.",
            "Be direct, like a friend who understands finance.",
            "Use concrete data from the provided context.",
            "Always respond in English.",
            "Each tip must have a short title (max 50 chars) and body (max 200 chars).",
            "Assign a type to each tip: 'warning' for alerts, 'tip' for suggestions, 'success' for achievements.",
            "Respond with JSON only: {\"tips\": [{\"title\", \"body\", \"type\"}], \"summary\"} (summary optional, max 120 chars).",
        ],
        "labels": {
            "projected_spending": "Projected monthly spending",
            "burn_rate": "Daily burn rate",
            "unbudgeted_friction": "Unbudgeted expenses",
            "rate_volatility": "Rate volatility (7 days)",
            "budget_usage": "Budget utilization",
            "top_categories": "Top spending categories",
            "days_remaining": "Days remaining in month",
        },
        "user_prompt": "Generate 3 personalized financial tips based on the provided context.",
    },
}


def _signed(value: Decimal, places: int = 1) -> str:
    value = quantize(value, places)
    return f"+{value}" if value > 0 else f"{value}"


def build_system_prompt(locale: SupportedLocale, data: AggregatedFinancialData) -> str:
    template = PROMPT_TEMPLATES[SupportedLocale(locale)]
    labels = template["labels"]
    m = data.metrics

    top_categories = ", ".join(
        f"{c.name}: ${quantize(c.amount_usd, 2)} ({c.percentage}%)"
        for c in m.top_categories[:3]
    )
    rules = "\n".join(f"{i}. {rule}" for i, rule in enumerate(template["rules"], start=1))

    return (
        f"{template['role']}\n"
        "\n"
        "CONTEXT:\n"
        f"- {labels['projected_spending']}: ${quantize(m.s_proj, 2)} USD\n"
        f"- {labels['burn_rate']}: ${quantize(m.spending_velocity_usd, 2)} USD/day\n"
        f"- {labels['unbudgeted_friction']}: {quantize(m.unbudgeted_ratio * 100, 1)}%\n"
        f"- {labels['rate_volatility']}: {_signed(m.rate_volatility)}%\n"
        f"- {labels['budget_usage']}: {quantize(data.budget_status.utilization_percent, 0)}%\n"
        f"- {labels['top_categories']}: {top_categories or 'N/A'}\n"
        f"- {labels['days_remaining']}: {m.days_remaining}\n"
        "\n"
        "RULES:\n"
        f"{rules}"
    )


def build_user_prompt(locale: SupportedLocale) -> str:
    return PROMPT_TEMPLATES[SupportedLocale(locale)]["user_prompt"]
