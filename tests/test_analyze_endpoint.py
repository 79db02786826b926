"""
Tests for the /api/v1/analyze endpoint.
"""

import pytest

from pg_index_advisor.core import analyzer


def test_analyze_text_plan(client, seq_scan_plan):
    response = client.post("/api/v1/analyze", json={"plan": seq_scan_plan})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["format"] == "text"
    assert data["plan"]["id"] == 0
    assert data["summary"]["nodeCount"] == 1
    assert [r["id"] for r in data["recommendations"]] == ["seq-scan-0", "bottleneck-0"]


def test_analyze_json_plan_with_hint(client, hash_join_json):
    response = client.post("/api/v1/analyze", json={"plan": hash_join_json, "format": "json"})
    assert response.status_code == 200
    plan = response.json()["data"]["plan"]
    assert [c["id"] for c in plan["children"]] == [1, 2]


def test_missing_plan_is_400(client):
    response = client.post("/api/v1/analyze", json={})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "План не указан"
    assert body["errorEn"] == "Plan not provided"


def test_non_object_body_is_400(client):
    response = client.post("/api/v1/analyze", json=["plan"])
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_INPUT"


def test_malformed_plan_is_400(client):
    response = client.post("/api/v1/analyze", json={"plan": "not a plan at all"})
    assert response.status_code == 400
    assert response.json()["code"] == "MALFORMED_INPUT"


@pytest.mark.parametrize(
    "plan",
    [
        '[{"Plan": {"Node Type": "Result", "Startup Cost": 0, "Total Cost": 1, "Plan Rows": 1e999, "Plan Width": 4}}]',
        "\n".join(
            ["Limit  (cost=0.00..1.00 rows=1 width=4)"]
            + ["  " * i + "  ->  Limit  (cost=0.00..1.00 rows=1 width=4)" for i in range(300)]
        ),
    ],
)
def test_out_of_range_input_is_400(client, plan):
    response = client.post("/api/v1/analyze", json={"plan": plan})
    assert response.status_code == 400
    assert response.json()["code"] == "MALFORMED_INPUT"

def test_unparsable_header_reports_line(client):
    plan = "Limit  (cost=0.00..1.00 rows=1 width=4)\n  ->  Seq Scan on users\n"
    response = client.post("/api/v1/analyze", json={"plan": plan})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "UNPARSABLE_HEADER"
    assert body["detail"].startswith("line 2")


def test_internal_error_is_500(client, monkeypatch, seq_scan_plan):
    def boom(*args, **kwargs):
        raise RuntimeError("rule crashed")

    monkeypatch.setattr(analyzer, "evaluate_rules", boom)
    response = client.post("/api/v1/analyze", json={"plan": seq_scan_plan})
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["errorEn"] == "Error analyzing plan"
    assert "detail" not in body


def test_request_id_is_echoed(client, seq_scan_plan):
    response = client.post(
        "/api/v1/analyze",
        json={"plan": seq_scan_plan},
        headers={"x-request-id": "req-42"},
    )
    assert response.headers["x-request-id"] == "req-42"
