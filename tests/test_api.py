import json

import pytest
from fastapi.testclient import TestClient

from value_assessment import chat, server
from value_assessment.server import app

SCENARIO_A = {
    "regions": {
        "AMER": {
            "annual_gmv_attempts": 75000000,
            "pre_auth_fraud_approval_rate_percent": 95,
            "issuing_bank_decline_rate_percent": 7,
            "three_ds_challenge_rate_percent": 10,
            "three_ds_abandonment_rate_percent": 5,
            "manual_review_rate_percent": 3,
        }
    }
}


@pytest.fixture(autouse=True)
def _reset_state():
    server.REQUEST_HISTORY.clear()
    server.SESSIONS.clear()
    yield
    server.REQUEST_HISTORY.clear()
    server.SESSIONS.clear()


def _client() -> TestClient:
    return TestClient(app)


def test_health_and_defaults() -> None:
    client = _client()
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert "X-Process-Time-Ms" in health.headers

    defaults = client.get("/defaults").json()
    assert defaults["vendor"]["fraud_approval_rate_percent"] == 99.0
    assert defaults["vendor"]["three_ds_challenge"] == {"mode": "relative", "percent": 30.0}
    assert defaults["regions"] == {}


def test_assess_scenario_a() -> None:
    response = _client().post("/assess", json=SCENARIO_A)
    assert response.status_code == 200
    payload = response.json()
    assert payload["funnel_config"] == "current"
    assert payload["aggregate"]["total_gmv_uplift"] == pytest.approx(2_974_936.9855, rel=1e-7)
    assert payload["regions"]["AMER"]["current"]["complete_rate"] == pytest.approx(0.8782913, rel=1e-6)


def test_assess_with_legacy_config_and_unknown_config() -> None:
    client = _client()
    legacy = client.post("/assess?funnel_config=legacy_two_stage", json=SCENARIO_A)
    assert legacy.status_code == 200
    assert legacy.json()["funnel_config"] == "legacy_two_stage"

    unknown = client.post("/assess?funnel_config=v0", json=SCENARIO_A)
    assert unknown.status_code == 422


def test_assess_rejects_malformed_payload() -> None:
    client = _client()
    assert client.post("/assess", json={"regions": {"LATAM": {"annual_gmv_attempts": 1}}}).status_code == 422
    assert client.post("/assess", json={"unexpected": True}).status_code == 422


def test_assess_clamps_out_of_range_values() -> None:
    payload = {"regions": {"AMER": {"annual_gmv_attempts": -10, "three_ds_challenge_rate_percent": 500}}}
    response = _client().post("/assess", json=payload)
    assert response.status_code == 200
    assert response.json()["aggregate"]["total_value"] == 0


def test_breakdown_endpoint() -> None:
    client = _client()
    response = client.post("/breakdown/gmv_uplift", json=SCENARIO_A)
    assert response.status_code == 200
    items = response.json()["line_items"]
    labels = [item["label"] for item in items]
    assert labels[0] == "AMER Region"
    assert "Total GMV Uplift ($)" in labels

    chargebacks = client.post("/breakdown/chargeback_savings", json=SCENARIO_A).json()["line_items"]
    savings = [item for item in chargebacks if item["label"] == "Chargeback Savings ($)"][0]
    assert savings["impact"] == "$420,000"

    assert client.post("/breakdown/loyalty", json=SCENARIO_A).status_code == 404


def test_demo_endpoint() -> None:
    client = _client()
    response = client.get("/demo/chargebacks_only")
    assert response.status_code == 200
    aggregate = response.json()["assessment"]["aggregate"]
    assert aggregate["total_value"] == aggregate["chargeback_savings"]

    assert client.get("/demo/unknown").status_code == 404


def test_session_patch_and_assessment_flow() -> None:
    client = _client()
    created = client.post("/sessions")
    assert created.status_code == 201
    session_id = created.json()["session_id"]
    assert created.json()["messages"][0]["role"] == "assistant"

    patched = client.patch(
        f"/sessions/{session_id}",
        json={"amerAnnualGMV": "75,000,000", "amer3DSChallengeRate": 10, "bogusKey": 1, "vendorKPIs": {"fraudApprovalRate": 250}},
    )
    assert patched.status_code == 200
    body = patched.json()
    assert body["rejected_fields"] == ["bogusKey"]
    assert body["profile"]["regions"]["AMER"]["annual_gmv_attempts"] == 75000000
    assert body["profile"]["vendor"]["fraud_approval_rate_percent"] == 100.0
    assert body["collected_data"]["amerAnnualGMV"] == 75000000

    fetched = client.get(f"/sessions/{session_id}")
    assert fetched.json()["profile"] == body["profile"]

    assessment = client.get(f"/sessions/{session_id}/assessment")
    assert assessment.status_code == 200
    assert assessment.json()["aggregate"]["total_gmv_uplift"] > 0


def test_unknown_session_returns_404() -> None:
    client = _client()
    assert client.get("/sessions/missing").status_code == 404
    assert client.patch("/sessions/missing", json={}).status_code == 404
    assert client.get("/sessions/missing/assessment").status_code == 404
    assert client.post("/sessions/missing/chat", json={"message": "hi"}).status_code == 404


def test_chat_flow_updates_session(monkeypatch) -> None:
    def _fake(system_prompt, messages, temperature=0.7, timeout=30):
        return "```json\n" + json.dumps(
            {
                "message": "Great. What is your AMER gross revenue margin?",
                "updatedData": {"amerAnnualGMV": 75000000, "amerFraudCheckTiming": "pre-auth"},
                "isComplete": False,
            }
        ) + "\n```"

    monkeypatch.setattr(chat, "generate_chat_completion", _fake)
    client = _client()
    session_id = client.post("/sessions").json()["session_id"]

    response = client.post(f"/sessions/{session_id}/chat", json={"message": "75 million, pre-auth"})
    assert response.status_code == 200
    body = response.json()
    assert body["error"] is None
    assert "revenue" not in body["message"].lower()
    assert body["profile"]["regions"]["AMER"]["annual_gmv_attempts"] == 75000000

    history = client.get(f"/sessions/{session_id}").json()["messages"]
    assert [message["role"] for message in history] == ["assistant", "user", "assistant"]


def test_chat_failure_keeps_previous_profile(monkeypatch) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    client = _client()
    session_id = client.post("/sessions").json()["session_id"]
    client.patch(f"/sessions/{session_id}", json={"amerAnnualGMV": 1000})

    response = client.post(f"/sessions/{session_id}/chat", json={"message": "hello"})
    assert response.status_code == 200
    body = response.json()
    assert "OPENROUTER_API_KEY" in body["error"]
    assert body["message"] == chat.RETRY_MESSAGE
    assert body["profile"]["regions"]["AMER"]["annual_gmv_attempts"] == 1000

    history = client.get(f"/sessions/{session_id}").json()["messages"]
    assert len(history) == 1


def test_chat_requires_message() -> None:
    client = _client()
    session_id = client.post("/sessions").json()["session_id"]
    assert client.post(f"/sessions/{session_id}/chat", json={"message": ""}).status_code == 422


def test_rate_limit_returns_429(monkeypatch) -> None:
    monkeypatch.setattr(server, "RATE_LIMIT_REQUESTS", 2)
    client = _client()
    assert client.get("/health").status_code == 200
    assert client.get("/health").status_code == 200
    limited = client.get("/health")
    assert limited.status_code == 429
    assert limited.json()["detail"] == "Rate limit exceeded"
