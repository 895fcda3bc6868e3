import re
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers.orders import reset_order_runtime_for_tests


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("WEALTH_STORE_BACKEND", "IN_MEMORY")
    monkeypatch.setenv("WEALTH_SEED_DEMO_DATA", "true")
    monkeypatch.setenv("ORDER_FILL_DELAY_SECONDS", "0")
    reset_order_runtime_for_tests()
    # No lifespan: the fill worker stays stopped and fills go through /execute.
    yield TestClient(app)
    reset_order_runtime_for_tests()


def _submit(client, portfolio_id, payload, **headers):
    return client.post(f"/portfolios/{portfolio_id}/orders", json=payload, headers=headers)


def _buy(instrument_id, quantity, **extra):
    return {"instrument_id": instrument_id, "side": "BUY", "quantity": quantity, **extra}


def test_health_probes(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/live").json() == {"status": "live"}
    assert client.get("/health/ready").json() == {"status": "ready"}


def test_observability_headers_are_generated_and_propagated(client):
    generated = client.get("/health")
    assert re.fullmatch(r"corr_[0-9a-f]{12}", generated.headers["X-Correlation-Id"])
    assert re.fullmatch(r"req_[0-9a-f]{12}", generated.headers["X-Request-Id"])

    trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
    propagated = client.get(
        "/health",
        headers={
            "X-Correlation-Id": "corr-fixed",
            "traceparent": f"00-{trace_id}-00f067aa0ba902b7-01",
        },
    )
    assert propagated.headers["X-Correlation-Id"] == "corr-fixed"
    assert propagated.headers["X-Trace-Id"] == trace_id
    assert propagated.headers["traceparent"] == f"00-{trace_id}-0000000000000001-01"


def test_metrics_endpoint_is_exposed(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_request" in response.text


def test_submit_then_execute_updates_portfolio(client):
    before = client.get("/portfolios/port-cli-1").json()

    submitted = _submit(client, "port-cli-1", _buy("ins-1", 10), **{"X-Actor-Id": "adv-1"})
    assert submitted.status_code == 202
    body = submitted.json()
    assert body["status"] == "PENDING"
    order_id = body["order_id"]

    executed = client.post(f"/orders/{order_id}/execute")
    assert executed.status_code == 200
    assert executed.json()["status"] == "EXECUTED"
    assert Decimal(executed.json()["executed_price"]) == Decimal("245.50")

    after = client.get("/portfolios/port-cli-1").json()
    assert Decimal(after["portfolio"]["cash"]) == Decimal(before["portfolio"]["cash"]) - Decimal(
        "2455.00"
    )
    transactions = client.get("/portfolios/port-cli-1/transactions").json()
    assert [t["order_id"] for t in transactions] == [order_id]
    history = client.get("/portfolios/port-cli-1/orders").json()
    assert [o["order_id"] for o in history] == [order_id]
    audit = client.get("/audit-events", params={"client_id": "cli-1"}).json()
    assert [e["event_type"] for e in audit] == ["ORDER_CREATED", "ORDER_EXECUTED"]
    assert audit[0]["actor_id"] == "adv-1"

    # executing again leaves the order untouched
    again = client.post(f"/orders/{order_id}/execute")
    assert again.json()["executed_at"] == executed.json()["executed_at"]


@pytest.mark.parametrize(
    "portfolio_id, payload, code",
    [
        ("port-cli-3", _buy("ins-8", 1), "SUITABILITY_FAILED"),
        ("port-cli-1", _buy("ins-8", 1000), "INSUFFICIENT_CASH"),
        ("port-cli-1", _buy("ins-1", 400), "CONCENTRATION_LIMIT_EXCEEDED"),
        (
            "port-cli-1",
            {"instrument_id": "ins-2", "side": "SELL", "quantity": 1},
            "INSUFFICIENT_HOLDINGS",
        ),
        ("port-cli-1", _buy("ins-404", 1), "INSTRUMENT_NOT_FOUND"),
    ],
)
def test_rejections_return_reason_code(client, portfolio_id, payload, code):
    response = _submit(client, portfolio_id, payload)

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == code
    assert response.json()["detail"]["reason"]
    assert client.get(f"/portfolios/{portfolio_id}/orders").json() == []


def test_malformed_order_is_rejected_by_validation(client):
    response = _submit(client, "port-cli-1", _buy("ins-1", 1, order_type="LIMIT"))

    assert response.status_code == 422


def test_idempotent_submission_replays_and_detects_conflicts(client):
    headers = {"Idempotency-Key": "order-submit-idem-001"}
    first = _submit(client, "port-cli-1", _buy("ins-1", 5), **headers)
    replay = _submit(client, "port-cli-1", _buy("ins-1", 5), **headers)
    conflict = _submit(client, "port-cli-1", _buy("ins-1", 6), **headers)

    assert first.status_code == replay.status_code == 202
    assert replay.json()["order_id"] == first.json()["order_id"]
    assert replay.json()["idempotency_key"] == "order-submit-idem-001"
    assert conflict.status_code == 409
    assert "IDEMPOTENCY_KEY_CONFLICT" in conflict.json()["detail"]


def test_unknown_resources_return_404(client):
    assert _submit(client, "port-missing", _buy("ins-1", 1)).status_code == 404
    assert client.get("/orders/ord_missing").status_code == 404
    assert client.post("/orders/ord_missing/execute").status_code == 404
    assert client.get("/portfolios/port-missing/allocations").status_code == 404


def test_allocations_sum_to_one_hundred(client):
    allocations = client.get("/portfolios/port-cli-1/allocations").json()

    total = sum(Decimal(a["percentage"]) for a in allocations)
    assert abs(total - Decimal("100")) <= Decimal("0.000001")
    assert {a["asset_class"] for a in allocations} == {"EQUITY", "CASH"}


def test_drift_uses_profile_or_explicit_score(client):
    stored = client.get("/portfolios/port-cli-1/drift").json()
    explicit = client.get("/portfolios/port-cli-1/drift", params={"risk_score": 9}).json()

    assert stored["risk_score"] == 7
    assert stored["model_name"] == "Growth"
    assert explicit["model_name"] == "Aggressive"
    assert client.get(
        "/portfolios/port-cli-1/drift", params={"risk_score": 11}
    ).status_code == 422


def test_insights_for_concentrated_client(client):
    actions = client.get("/portfolios/port-cli-3/next-best-actions").json()
    health = client.get("/portfolios/port-cli-3/health-score").json()

    assert "REDUCE_CONCENTRATION" in {a["type"] for a in actions}
    assert health["risk_profile_stale"] is True
    assert 0 <= health["score"] < 100


def test_catalog_endpoints(client):
    instruments = client.get("/instruments").json()
    models = client.get("/model-portfolios").json()

    assert len(instruments) == 15
    assert [m["model_id"] for m in models] == ["mp-1", "mp-2", "mp-3", "mp-4", "mp-5"]
