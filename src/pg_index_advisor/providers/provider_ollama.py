"""
Ollama LLM provider implementation.

This provider uses the Ollama HTTP API to generate completions using
locally running models.
"""

import logging
import time
from typing import Optional

import requests

from pg_index_advisor.core.config import settings
from pg_index_advisor.core.llm_adapter import LLMProvider

logger = logging.getLogger(__name__)


class OllamaLLMProvider(LLMProvider):
    """
    LLM provider that uses local Ollama server for completions.

    Configuration via environment variables:
    - OLLAMA_HOST: Ollama server URL (default: http://localhost:11434)
    - LLM_MODEL: Model to use (default: llama2)
    - LLM_TIMEOUT_S: Request timeout in seconds (default: 30)
    """

    name = "ollama"

    def __init__(self):
        self.host = settings.OLLAMA_HOST.rstrip("/")
        self.model = settings.LLM_MODEL
        self.timeout = settings.LLM_TIMEOUT_S
        self.max_retries = 2  # Number of retries on timeout
        self.retry_timeout = max(1, self.timeout // 2)

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """
        Generate completion using Ollama's HTTP API.

        Raises:
            RuntimeError: If every attempt fails
        """
        start_time = time.time()
        last_error: Optional[Exception] = None

        payload = {"model": self.model, "prompt": prompt, "stream": False}
        if system:
            payload["system"] = system

        # Try with initial timeout, then retry with shorter timeouts
        timeouts = [self.timeout] + [self.retry_timeout] * self.max_retries

        for attempt, timeout in enumerate(timeouts, 1):
            try:
                logger.debug("ollama attempt %d/%d (timeout %ss, model %s)", attempt, len(timeouts), timeout, self.model)
                response = requests.post(
                    f"{self.host}/api/generate",
                    headers={"Content-Type": "application/json"},
                    json=payload,
                    timeout=timeout,
                )
                response.raise_for_status()
                result = response.json()
                if "error" in result:
                    raise RuntimeError(f"Ollama error: {result['error']}")
                logger.debug("ollama completed in %.2fs", time.time() - start_time)
                return result.get("response", "").strip()
            except (requests.RequestException, ValueError, RuntimeError) as e:
                last_error = e
                logger.warning("ollama attempt %d failed: %s", attempt, e)

        raise RuntimeError(f"All {len(timeouts)} attempts failed. Last error: {last_error}")

    @classmethod
    def is_available(cls) -> bool:
        """True if the Ollama server responds to a version check."""
        try:
            host = settings.OLLAMA_HOST.rstrip("/")
            response = requests.get(f"{host}/api/version", timeout=2)
            return response.status_code == 200
        except requests.RequestException:
            return False
