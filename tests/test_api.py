"""
API-level integration tests for the Payment Orchestrator.

Uses FastAPI's TestClient (synchronous).  The lifespan context manager
(startup/shutdown) runs automatically when the client is used as a
context manager.

The default routing sends test-environment credentials to the in-process
sandbox, so outcomes are chosen by the card's last four digits:
  "4242" -> approved on every PSP
  "9995" -> insufficient_funds (terminal) on every PSP
  "3220" -> 3DS challenge
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app

# ---------------------------------------------------------------------------
# Shared client, lifespan runs once for the whole module
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def reset_psps(client):
    yield
    for psp in ("stripe", "adyen"):
        client.post(f"/psps/{psp}/reset")


# Base payload used as a starting point; tests override individual fields.
_BASE = {
    "amount": 1999,
    "currency": "usd",
    "token_id": "tok_test_4242424242424242",
    "idempotency_key": "placeholder",
}


def _payment(**overrides) -> dict:
    """Return a copy of _BASE with the given overrides applied."""
    return {**_BASE, **overrides}


_CARD = {
    "number": "4242 4242 4242 4242",
    "exp_month": "11",
    "exp_year": "29",
    "cvc": "314",
    "cardholder_name": "Katherine Johnson",
}


# ---------------------------------------------------------------------------
# 1. POST /payments, 200 with correct response shape
# ---------------------------------------------------------------------------

def test_post_payment_response_shape(client, reset_psps):
    r = client.post("/payments", json=_payment(idempotency_key="shape-001"))

    assert r.status_code == 200
    data = r.json()

    assert data["psp"] in ("stripe", "adyen")
    assert isinstance(data["attempts"], list) and len(data["attempts"]) == 1
    assert data["attempts"][0]["psp"] == data["psp"]

    response = data["response"]
    assert response["success"] is True
    assert response["status"] == "captured"
    assert response["amount"] == 1999
    assert response["currency"] == "USD"
    assert response["transaction_id"].startswith(f"{data['psp']}_test_")
    assert response["failure_category"] is None


# ---------------------------------------------------------------------------
# 2. POST /payments, terminal decline stops after one attempt
# ---------------------------------------------------------------------------

def test_post_payment_terminal_decline(client, reset_psps):
    r = client.post(
        "/payments",
        json=_payment(idempotency_key="decline-001", token_id="tok_test_4000000000009995"),
    )

    assert r.status_code == 200
    data = r.json()
    assert data["response"]["success"] is False
    assert data["response"]["failure_category"] == "insufficient_funds"
    assert len(data["attempts"]) == 1


# ---------------------------------------------------------------------------
# 3. POST /payments, 3DS card asks for customer action
# ---------------------------------------------------------------------------

def test_post_payment_requires_action(client, reset_psps):
    r = client.post(
        "/payments",
        json=_payment(idempotency_key="threeds-001", token_id="tok_test_4000000000003220"),
    )

    assert r.status_code == 200
    action = r.json()["response"]["requires_action"]
    assert action["type"] == "3ds_challenge"
    assert action["url"]


# ---------------------------------------------------------------------------
# 4. POST /payments, request validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("overrides", [
    {"amount": 0},
    {"currency": "US1"},
    {"idempotency_key": "bad key!"},
    {"token_id": ""},
])
def test_post_payment_invalid_body(client, overrides):
    r = client.post("/payments", json=_payment(**{"idempotency_key": "valid-key", **overrides}))
    assert r.status_code == 422


# ---------------------------------------------------------------------------
# 5. POST /payments, 422 when every PSP circuit is open
# ---------------------------------------------------------------------------

def test_post_payment_no_route(client, reset_psps):
    for psp in ("stripe", "adyen"):
        client.post(f"/psps/{psp}/inject-failures?count=3")

    r = client.post("/payments", json=_payment(idempotency_key="noroute-001"))

    assert r.status_code == 422
    assert r.json()["error"] == "NoRouteAvailable"


# ---------------------------------------------------------------------------
# 6. Token lifecycle
# ---------------------------------------------------------------------------

def test_token_lifecycle(client, reset_psps):
    r = client.post("/tokens", json={"card": _CARD, "session_id": "sess-api"})
    assert r.status_code == 201
    token = r.json()
    assert token["id"].startswith("tok_")
    assert token["last4"] == "4242"
    assert token["brand"] == "visa"
    assert token["exp_year"] == 2029
    assert "number" not in token

    r = client.get(f"/tokens/{token['id']}")
    assert r.status_code == 200
    assert r.json()["fingerprint"] == token["fingerprint"]

    assert client.get(f"/tokens/{token['id']}/valid").json()["valid"] is True

    # A vaulted card pays like any other token
    r = client.post("/payments", json=_payment(idempotency_key="vaulted-001", token_id=token["id"]))
    assert r.json()["response"]["success"] is True

    assert client.delete(f"/tokens/{token['id']}").status_code == 204
    assert client.get(f"/tokens/{token['id']}").status_code == 404
    assert client.get(f"/tokens/{token['id']}/valid").json()["valid"] is False


def test_create_token_rejects_bad_card(client):
    r = client.post("/tokens", json={"card": {**_CARD, "cvc": "12"}})
    assert r.status_code == 422


def test_vault_config(client):
    r = client.get("/vault/config")
    assert r.status_code == 200
    assert r.json()["provider"] == "direct"


# ---------------------------------------------------------------------------
# 7. GET /psps/status, both PSPs with correct fields
# ---------------------------------------------------------------------------

def test_get_psp_status_shape(client):
    r = client.get("/psps/status")
    assert r.status_code == 200

    data = r.json()
    assert isinstance(data, list)
    assert {p["name"] for p in data} == {"stripe", "adyen"}

    for psp in data:
        assert psp["state"] in ("closed", "open", "half_open")
        assert isinstance(psp["failures"], int)
        assert isinstance(psp["success_count"], int)
        assert "recovery_remaining_seconds" in psp
        assert "health" in psp


# ---------------------------------------------------------------------------
# 8. Breaker controls
# ---------------------------------------------------------------------------

def test_inject_failures_opens_and_reset_closes(client, reset_psps):
    r = client.post("/psps/adyen/inject-failures?count=3")
    assert r.status_code == 200
    assert r.json()["state"] == "open"
    assert r.json()["failures"] == 3

    r = client.post("/psps/adyen/reset")
    assert r.status_code == 200
    assert r.json()["state"] == "closed"


def test_reset_unknown_psp_returns_404(client):
    r = client.post("/psps/UnknownPSP/reset")
    assert r.status_code == 404


def test_inject_failures_count_zero_returns_422(client):
    r = client.post("/psps/stripe/inject-failures?count=0")
    assert r.status_code == 422


def test_health_check_updates_status(client, reset_psps):
    r = client.post("/psps/health-check")
    assert r.status_code == 200
    assert set(r.json()) == {"stripe", "adyen"}

    status = {p["name"]: p for p in client.get("/psps/status").json()}
    assert status["stripe"]["health"]["status"] in ("healthy", "degraded")


# ---------------------------------------------------------------------------
# 9. Transport and stats
# ---------------------------------------------------------------------------

def test_transport_status_without_endpoints(client):
    r = client.get("/transport/status")
    assert r.status_code == 200
    assert r.json() == {"endpoints": [], "emergency_psp": None, "pending_sync": 0}


def test_transport_sync_with_empty_queue(client):
    r = client.post("/transport/sync")
    assert r.status_code == 200
    assert r.json() == {"synced": 0, "remaining": 0}


def test_get_stats_shape(client):
    r = client.get("/stats")
    assert r.status_code == 200

    data = r.json()
    for field in (
        "total_payments",
        "total_approved",
        "total_declined",
        "total_volume",
        "overall_approval_rate",
        "retried_payments",
        "emergency_transactions",
        "per_psp",
        "uptime_seconds",
    ):
        assert field in data
    assert 0.0 <= data["overall_approval_rate"] <= 1.0


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "running"
