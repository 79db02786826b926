"""
LLM provider interface and factory.

This module provides a common interface for LLM providers, a factory to
instantiate the configured provider, and ``explain_analysis``, which turns a
finished analysis into prose without ever failing the caller.
"""

import importlib
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional

from pg_index_advisor.core import metrics, prompts
from pg_index_advisor.core.models import LocalizedText

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name = "base"

    @abstractmethod
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """
        Generate completion for a prompt with optional system context.

        Args:
            prompt: The prompt to complete
            system: Optional system context/instruction

        Returns:
            Generated completion text

        Raises:
            Exception: If completion fails
        """


PROVIDER_MAP = {
    "dummy": ("pg_index_advisor.providers.provider_dummy", "DummyLLMProvider"),
    "ollama": ("pg_index_advisor.providers.provider_ollama", "OllamaLLMProvider"),
}


def _load(provider_name: str) -> LLMProvider:
    module_name, class_name = PROVIDER_MAP[provider_name]
    module = importlib.import_module(module_name)
    return getattr(module, class_name)()


def get_llm() -> LLMProvider:
    """
    Get the configured LLM provider instance.

    The provider is determined by the LLM_PROVIDER environment variable:
    - "dummy": Returns deterministic responses (for testing)
    - "ollama": Uses local Ollama server; falls back to dummy when unreachable

    Raises:
        ValueError: If the provider name is unknown
    """
    # Always read from env at call time to respect test overrides
    provider_name = os.getenv("LLM_PROVIDER", "dummy")
    if provider_name not in PROVIDER_MAP:
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. "
            f"Valid options are: {list(PROVIDER_MAP.keys())}"
        )

    instance = _load(provider_name)
    if provider_name == "ollama" and not type(instance).is_available():
        logger.warning("Ollama unavailable; falling back to dummy provider")
        return _load("dummy")
    return instance


_EXPLAIN_FAILED = LocalizedText(
    ru="Ошибка AI анализа",
    en="AI analysis error",
)


class Explanation(NamedTuple):
    text: Optional[str]
    provider: Optional[str]
    error: Optional[str] = None


def explain_analysis(
    plan: Dict[str, Any],
    recommendations: List[Dict[str, Any]],
    lang: str = "en",
) -> Explanation:
    """
    Ask the configured provider to explain an analysis in prose.

    Never raises: provider failures come back as ``Explanation(None, ..., error)``
    so the structured analysis stays usable.
    """
    system, prompt = prompts.explain_template(plan, recommendations, lang)
    provider_name = None
    start = time.time()
    try:
        llm = get_llm()
        provider_name = llm.name
        text = llm.complete(prompt=prompt, system=system)
    except Exception as e:
        logger.warning("LLM explanation failed: %s", e)
        return Explanation(text=None, provider=provider_name, error=_EXPLAIN_FAILED.get(lang))
    finally:
        metrics.observe_llm_latency(time.time() - start)
    return Explanation(text=text, provider=provider_name)
