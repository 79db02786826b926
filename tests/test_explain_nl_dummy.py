"""
Tests for natural language explanation using the dummy LLM provider.
"""

import os

import pytest

from pg_index_advisor.core import llm_adapter
from pg_index_advisor.core.prompts import explain_template


@pytest.fixture(autouse=True)
def use_dummy_provider():
    """Force dummy provider for all tests."""
    original = os.environ.get("LLM_PROVIDER")
    os.environ["LLM_PROVIDER"] = "dummy"
    yield
    if original:
        os.environ["LLM_PROVIDER"] = original
    else:
        del os.environ["LLM_PROVIDER"]


def _analysis(client, plan):
    data = client.post("/api/v1/analyze", json={"plan": plan}).json()["data"]
    return {"plan": data["plan"], "recommendations": data["recommendations"]}


def test_explain_nl_simple(client, seq_scan_plan):
    payload = _analysis(client, seq_scan_plan)
    response = client.post("/api/v1/explain", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["provider"] == "dummy"
    assert data["explanation"] == "Main issues: Sequential Scan on users; Bottleneck: Seq Scan (users)."


def test_explain_nl_russian(client, seq_scan_plan):
    payload = _analysis(client, seq_scan_plan)
    payload["lang"] = "ru"
    data = client.post("/api/v1/explain", json=payload).json()
    assert data["explanation"].startswith("Основные проблемы: Sequential Scan на users")


def test_explain_nl_no_issues(client):
    payload = {"plan": {"id": 0, "nodeType": "Result", "children": []}, "recommendations": []}
    data = client.post("/api/v1/explain", json=payload).json()
    assert data["explanation"] == "Simple plan with minimal cost; no major issues detected."


def test_explain_requires_plan(client):
    response = client.post("/api/v1/explain", json={"recommendations": []})
    assert response.status_code == 422


def test_provider_failure_is_soft(client, monkeypatch):
    class Broken(llm_adapter.LLMProvider):
        name = "broken"

        def complete(self, prompt, system=None):
            raise RuntimeError("model offline")

    monkeypatch.setattr(llm_adapter, "get_llm", lambda: Broken())
    data = client.post("/api/v1/explain", json={"plan": {}, "lang": "ru"}).json()
    assert data["success"] is False
    assert data["explanation"] is None
    assert data["provider"] == "broken"
    assert data["error"] == "Ошибка AI анализа"


def test_unknown_provider_is_soft():
    os.environ["LLM_PROVIDER"] = "nope"
    result = llm_adapter.explain_analysis({}, [], "en")
    assert result.text is None
    assert result.error == "AI analysis error"


def test_prompt_lists_issues():
    recs = [{"title": "Заголовок", "titleEn": "Title", "issue": "Проблема", "issueEn": "Issue"}]
    system, prompt = explain_template({"nodeType": "Result"}, recs, "en")
    assert system == "You are a PostgreSQL optimization expert."
    assert "- Title: Issue" in prompt
    system, prompt = explain_template({"nodeType": "Result"}, [], "ru")
    assert "- нет" in prompt


def test_prompt_plan_is_truncated():
    plan = {"filter": "x" * 10000}
    _, prompt = explain_template(plan, [], "en", max_plan_chars=100)
    assert "x" * 200 not in prompt
