"""
Structure tests for the application.

Verifies that all key modules can be imported and have expected structure.
"""

import pytest
import requests


def test_config_import():
    from pg_index_advisor.core.config import AnalyzerOptions, Settings, settings

    assert Settings is not None
    assert settings is not None
    assert AnalyzerOptions.from_settings(settings) == AnalyzerOptions()


def test_core_pipeline_import():
    from pg_index_advisor.core.analyzer import analyze, analyze_plan, build_response
    from pg_index_advisor.core.plan_parser import parse_plan

    assert analyze is not None
    assert analyze_plan is not None
    assert build_response is not None
    assert parse_plan is not None


def test_rule_registry():
    from pg_index_advisor.core.plan_heuristics import RULES

    ids = [rule.rule_id for rule in RULES]
    assert ids == [
        "seq-scan",
        "estimation",
        "nested-loop",
        "sort-disk",
        "hash-batches",
        "bitmap-lossy",
        "bottleneck",
        "planning-overhead",
    ]
    assert len(set(ids)) == len(ids)


def test_routers_import():
    from pg_index_advisor.routers import analyze, explain, health

    assert analyze.router is not None
    assert explain.router is not None
    assert health.router is not None


def test_dummy_provider_works():
    from pg_index_advisor.providers.provider_dummy import DummyLLMProvider

    provider = DummyLLMProvider()
    assert provider.name == "dummy"
    response = provider.complete("Issues found:\n- none\n")
    assert isinstance(response, str)
    assert len(response) > 0


def test_ollama_unavailable(monkeypatch):
    from pg_index_advisor.providers.provider_ollama import OllamaLLMProvider

    def refuse(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests, "get", refuse)
    monkeypatch.setattr(requests, "post", refuse)
    assert OllamaLLMProvider.is_available() is False
    with pytest.raises(RuntimeError):
        OllamaLLMProvider().complete("test prompt")


def test_ollama_falls_back_to_dummy(monkeypatch):
    from pg_index_advisor.core.llm_adapter import get_llm
    from pg_index_advisor.providers.provider_ollama import OllamaLLMProvider

    monkeypatch.setenv("LLM_PROVIDER", "ollama")
    monkeypatch.setattr(OllamaLLMProvider, "is_available", classmethod(lambda cls: False))
    assert get_llm().name == "dummy"


def test_unknown_provider_rejected(monkeypatch):
    from pg_index_advisor.core.llm_adapter import get_llm

    monkeypatch.setenv("LLM_PROVIDER", "nope")
    with pytest.raises(ValueError):
        get_llm()
