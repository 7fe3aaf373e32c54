import time

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError as PydanticValidationError

from order_engine.common.config import QuoteConfig
from order_engine.integration.api_gateway import create_app
from order_engine.integration.schemas import OrderRequest
from order_engine.order_router.main import OrderRouter

VALID_ORDER = {"tokenIn": "SOL", "tokenOut": "USDC", "amount": 10, "orderType": "MARKET"}


@pytest.fixture
def order_router(fake_redis, duckdb_conn, fast_settings):
    return OrderRouter(fake_redis, duckdb_conn, fast_settings)


@pytest.fixture
def client(order_router, fast_settings):
    with TestClient(create_app(order_router, fast_settings)) as test_client:
        yield test_client


def _wait_for_status(client, order_id, status, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        response = client.get(f"/api/orders/{order_id}")
        if response.status_code == 200 and response.json()["status"] == status:
            return response.json()
        time.sleep(0.05)
    raise AssertionError(f"order {order_id} never reached {status}")


def test_submit_order_is_accepted(client):
    response = client.post("/api/orders/execute", json=VALID_ORDER)

    assert response.status_code == 202
    body = response.json()
    assert body["orderId"].startswith("order_")
    assert body["status"] == "pending"
    assert "WebSocket" in body["message"]


def test_submitted_order_reaches_confirmed(client, order_router):
    order_id = client.post("/api/orders/execute", json=VALID_ORDER).json()["orderId"]

    order = _wait_for_status(client, order_id, "confirmed")

    assert order["venueId"] in {"RAYDIUM", "METEORA"}
    assert len(order["settlementRef"]) == 64
    assert order["executionAmount"] > 0
    assert order["completedAt"] is not None


def test_validation_errors_list_every_field(client):
    response = client.post(
        "/api/orders/execute",
        json={"tokenIn": "", "amount": -1, "orderType": "FOO"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    fields = {detail["field"] for detail in body["details"]}
    assert fields == {"tokenIn", "tokenOut", "amount", "orderType"}
    messages = {detail["field"]: detail["message"] for detail in body["details"]}
    assert messages["tokenIn"] == "tokenIn is required"
    assert messages["amount"] == "amount must be positive"


def test_non_finite_amount_is_rejected(client):
    body = '{"tokenIn": "SOL", "tokenOut": "USDC", "amount": Infinity, "orderType": "MARKET"}'

    response = client.post(
        "/api/orders/execute",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert [detail["field"] for detail in response.json()["details"]] == ["amount"]


@pytest.mark.parametrize("amount", [float("inf"), float("-inf"), float("nan")])
def test_order_request_rejects_non_finite_amount(amount):
    with pytest.raises(PydanticValidationError, match="amount must be a finite number"):
        OrderRequest(tokenIn="SOL", tokenOut="USDC", amount=amount, orderType="MARKET")


@pytest.mark.parametrize("order_type", ["LIMIT", "SNIPER"])
def test_deferred_order_types_are_rejected(client, order_type):
    response = client.post("/api/orders/execute", json={**VALID_ORDER, "orderType": order_type})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "orderType"


def test_unknown_order_is_404(client):
    assert client.get("/api/orders/order_0_00000000").status_code == 404


def test_health_reports_components(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["components"] == {"redis": "up", "duckdb": "up"}
    assert body["details"]["checks"]["redis"]["healthy"] is True
    assert set(body["details"]["checks"]) == {"redis", "duckdb"}
    assert body["timestamp"]


def test_health_degrades_when_redis_is_down(client, fake_redis):
    fake_redis.fail = True

    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["components"]["redis"] == "down"


def test_status_stream_handshake_and_ping(client, order_router):
    order_id = "order_1700000000000_abcdef12"

    with client.websocket_connect(f"/api/orders/{order_id}/status") as ws:
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["orderId"] == order_id
        assert isinstance(connected["timestamp"], int)

        ws.send_text("not json")
        ws.send_json({"type": "ping"})
        pong = ws.receive_json()
        assert pong["type"] == "pong"
        assert order_router.broadcaster.subscriber_count(order_id) == 1

    deadline = time.monotonic() + 2
    while order_router.broadcaster.subscriber_count(order_id) and time.monotonic() < deadline:
        time.sleep(0.02)
    assert order_router.broadcaster.subscriber_count(order_id) == 0


def test_status_stream_ignores_binary_frames(client):
    with client.websocket_connect("/api/orders/order_1700000000000_abcdef12/status") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_bytes(b"\x00\xff")
        ws.send_json({"type": "ping"})

        assert ws.receive_json()["type"] == "pong"


def test_status_stream_receives_lifecycle(fake_redis, duckdb_conn, fast_settings):
    slow_quotes = fast_settings.model_copy(update={"quotes": QuoteConfig(latency_seconds=0.3, seed=2)})
    router = OrderRouter(fake_redis, duckdb_conn, slow_quotes)

    with TestClient(create_app(router, slow_quotes)) as client:
        order_id = client.post("/api/orders/execute", json=VALID_ORDER).json()["orderId"]

        with client.websocket_connect(f"/api/orders/{order_id}/status") as ws:
            assert ws.receive_json()["type"] == "connected"
            statuses = []
            while not statuses or statuses[-1] not in ("confirmed", "failed"):
                frame = ws.receive_json()
                assert frame["orderId"] == order_id
                statuses.append(frame["status"])

    assert statuses == ["routing", "building", "submitted", "confirmed"]
