"""
End-to-end tests for the ASGI app: HTTP JSON-RPC, WebSocket RPC and the
ops endpoints, over an in-memory chain and Redis.
"""

import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from iobabel.config.loader import GatewayConfig
from iobabel.node.gateway import build_gateway
from iobabel.node.main import create_app

from conftest import FakeChainClient, FakeRedis


def make_client(overrides=None):
    config = GatewayConfig.from_dict(overrides or {})
    gateway = build_gateway(config, client=FakeChainClient(height=100), redis_client=FakeRedis())
    return TestClient(create_app(gateway=gateway)), gateway


@pytest.fixture
def app_client():
    client, gateway = make_client()
    with client:
        yield client, gateway


# ============================================================================
# HTTP JSON-RPC
# ============================================================================

class TestHTTP:
    def test_single_call(self, app_client):
        client, _ = app_client
        response = client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber"})
        assert response.status_code == 200
        assert response.json() == {"id": 1, "jsonrpc": "2.0", "result": "0x64"}

    def test_batch_keeps_order(self, app_client):
        client, _ = app_client
        response = client.post("/", json=[
            {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId"},
            {"jsonrpc": "2.0", "id": 2, "method": "net_version"},
        ])
        assert response.json() == [
            {"id": 1, "jsonrpc": "2.0", "result": "0x1251"},
            {"id": 2, "jsonrpc": "2.0", "result": "4689"},
        ]

    def test_missing_version_gets_no_content(self, app_client):
        client, gateway = app_client
        response = client.post("/", json={"id": 1, "method": "eth_blockNumber"})
        assert response.status_code == 204
        assert gateway.metrics.rpc_invalid_requests.value == 1

    def test_unparseable_body(self, app_client):
        client, _ = app_client
        response = client.post("/", content=b"{not json", headers={"content-type": "application/json"})
        assert response.status_code == 204

    def test_unsupported_method(self, app_client):
        client, _ = app_client
        response = client.post("/", json={"jsonrpc": "2.0", "id": 7, "method": "eth_getWork"})
        assert response.json() == {"id": 7, "jsonrpc": "2.0"}

    def test_oversized_body(self):
        client, _ = make_client({"rpc": {"http": {"max_request_size": 64}}})
        with client:
            payload = {"jsonrpc": "2.0", "id": 1, "method": "web3_sha3", "params": ["0x" + "00" * 64]}
            response = client.post("/", json=payload)
        assert response.status_code == 413


# ============================================================================
# WebSocket JSON-RPC
# ============================================================================

class TestWebSocket:
    def test_call_over_websocket(self, app_client):
        client, _ = app_client
        with client.websocket_connect("/") as ws:
            ws.send_text(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber"}))
            assert ws.receive_json() == {"id": 1, "jsonrpc": "2.0", "result": "0x64"}

    def test_subscribe_and_unsubscribe(self, app_client):
        client, gateway = app_client
        with client.websocket_connect("/") as ws:
            ws.send_text(json.dumps({"jsonrpc": "2.0", "id": 1, "method": "eth_subscribe", "params": ["newHeads"]}))
            sub_id = ws.receive_json()["result"]
            assert sub_id.startswith("0x")
            assert gateway.ws_manager.active_subscriptions == 1

            ws.send_text(json.dumps({"jsonrpc": "2.0", "id": 2, "method": "eth_unsubscribe", "params": [sub_id]}))
            assert ws.receive_json() == {"id": 2, "jsonrpc": "2.0", "result": True}
        assert gateway.ws_manager.active_subscriptions == 0

    def test_disabled_websocket_rejected(self):
        client, _ = make_client({"rpc": {"websocket": {"enabled": False}}})
        with client:
            with pytest.raises(WebSocketDisconnect):
                with client.websocket_connect("/"):
                    pass


# ============================================================================
# Ops endpoints
# ============================================================================

class TestOps:
    def test_ping(self, app_client):
        client, _ = app_client
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.text == "pong"

    def test_metrics(self, app_client):
        client, _ = app_client
        client.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber"})
        response = client.get("/metrics")
        assert response.headers["content-type"].startswith("text/plain")
        assert 'babel_rpc_method_requests_total{method="eth_blockNumber"} 1.0' in response.text

    def test_ops_endpoints_can_be_disabled(self):
        client, _ = make_client({"metrics": {"enabled": False}, "health": {"enabled": False}})
        with client:
            assert client.get("/ping").status_code in (404, 405)
            assert client.get("/metrics").status_code in (404, 405)

    def test_shutdown_leaves_injected_gateway_open(self):
        client, gateway = make_client()
        with client:
            pass
        assert gateway.client.closed is False
        assert gateway.redis.closed is False
