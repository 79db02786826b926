"""
Dummy LLM provider that returns deterministic responses.

This provider is useful for testing and development when a real LLM
is not needed or available.
"""

import re
from typing import Optional

from pg_index_advisor.core.llm_adapter import LLMProvider

_ISSUE_LINE = re.compile(r"^- (?P<title>.+): (?P<issue>[^:]+)$", re.MULTILINE)


class DummyLLMProvider(LLMProvider):
    """
    Echoes the issues listed in the prompt back as a short summary.
    Useful for testing and development.
    """

    name = "dummy"

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        russian = "Найденные проблемы" in prompt
        issues = [m.group("title") for m in _ISSUE_LINE.finditer(prompt)]
        if not issues:
            if russian:
                return "Простой план без существенных проблем."
            return "Simple plan with minimal cost; no major issues detected."
        if russian:
            return "Основные проблемы: " + "; ".join(issues) + "."
        return "Main issues: " + "; ".join(issues) + "."
