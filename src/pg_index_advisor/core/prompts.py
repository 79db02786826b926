"""LLM prompting templates for plan explanations."""

import json
from typing import Any, Dict, List, Tuple

SYSTEM_PROMPT = {
    "ru": "Ты эксперт по оптимизации PostgreSQL.",
    "en": "You are a PostgreSQL optimization expert.",
}

_BODY = {
    "ru": """Объясни простым языком этот план выполнения запроса.

План выполнения:
{plan}

Найденные проблемы:
{issues}

Объясни кратко:
1. Что делает запрос (2-3 предложения)
2. Где главные проблемы с производительностью
3. Конкретные шаги для оптимизации

Отвечай на русском языке. Будь кратким и практичным. Не используй markdown заголовки.""",
    "en": """Explain this query execution plan in simple terms.

Execution plan:
{plan}

Issues found:
{issues}

Explain briefly:
1. What the query does (2-3 sentences)
2. Where the main performance issues are
3. Specific steps for optimization

Be concise and practical. Don't use markdown headers.""",
}

_NO_ISSUES = {"ru": "- нет", "en": "- none"}


def explain_template(
    plan: Dict[str, Any],
    recommendations: List[Dict[str, Any]],
    lang: str = "en",
    max_plan_chars: int = 8000,
) -> Tuple[str, str]:
    """Build ``(system, prompt)`` from a serialized plan and its recommendations."""
    lang = "ru" if lang == "ru" else "en"
    suffix = "" if lang == "ru" else "En"
    issues = "\n".join(
        f"- {r.get('title' + suffix, r.get('title', ''))}: {r.get('issue' + suffix, r.get('issue', ''))}"
        for r in recommendations
    )
    plan_text = json.dumps(plan, indent=2, ensure_ascii=False)[:max_plan_chars]
    prompt = _BODY[lang].format(plan=plan_text, issues=issues or _NO_ISSUES[lang])
    return SYSTEM_PROMPT[lang], prompt
