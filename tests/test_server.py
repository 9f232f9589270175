"""HTTP + WebSocket integration tests for the bootstrap server.

Each test spins up the aiohttp app on a random local port via
aiohttp's test utilities and talks to it over real sockets.
"""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from noface_bootstrap.server import BootstrapConfig, BootstrapServer


# ── Helpers ──────────────────────────────────────────────────────

def make_server(**overrides) -> BootstrapServer:
    config = BootstrapConfig(rate_limit_requests=0, **overrides)
    return BootstrapServer(config)


def make_client(server: BootstrapServer) -> TestClient:
    return TestClient(TestServer(server.app))


def peer_body(i: int = 1, **extra) -> dict:
    body = {"id": f"test_peer_{i:04d}", "ip": f"192.168.1.{i % 250 + 1}", "port": 8000 + i}
    body.update(extra)
    return body


# ── Registration ─────────────────────────────────────────────────

class TestRegisterEndpoint:
    @pytest.mark.asyncio
    async def test_register(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post("/register", json=peer_body(
                1, name="Test Node", capabilities=["chat"], version="1.2.0",
            ))
            assert resp.status == 200
            data = await resp.json()

        assert data["success"] is True
        peer = data["peer"]
        assert peer["id"] == "test_peer_0001"
        assert peer["name"] == "Test Node"
        assert peer["version"] == "1.2.0"
        assert peer["capabilities"] == ["chat"]
        assert peer["registeredAt"] == peer["updatedAt"]
        assert peer["connectionCount"] == 1
        assert data["network"] == {"totalPeers": 1, "activePeers": 1}

    @pytest.mark.asyncio
    async def test_validation_errors_listed(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post("/register", json={"id": "short", "ip": "10.0.0.1", "port": 0})
            assert resp.status == 400
            data = await resp.json()

        assert data["success"] is False
        assert data["error"] == "Validation failed"
        assert "id must be at least 10 characters" in data["details"]
        assert "port must be between 1 and 65535" in data["details"]

    @pytest.mark.asyncio
    async def test_missing_fields(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post("/register", json={"id": "invalid_peer"})
            data = await resp.json()
        assert resp.status == 400
        assert data["details"] == ["ip is required", "port is required"]

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post(
                "/register", data="{not json", headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "Invalid JSON body"

    @pytest.mark.asyncio
    async def test_non_utf8_body(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post(
                "/register", data=b'{"id": "\xff\xfe"}',
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
            assert (await resp.json())["error"] == "Invalid JSON body"

    @pytest.mark.asyncio
    async def test_float_port_accepted(self):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.post("/register", json=peer_body(1, port=8080.0))
            assert resp.status == 200
            data = await resp.json()
        assert data["peer"]["port"] == 8080

    @pytest.mark.asyncio
    async def test_reregister_increments_count(self):
        server = make_server()
        async with make_client(server) as client:
            first = await (await client.post("/register", json=peer_body(1))).json()
            second = await (await client.post("/register", json=peer_body(1))).json()

        assert second["peer"]["registeredAt"] == first["peer"]["registeredAt"]
        assert second["peer"]["connectionCount"] == 2
        assert second["network"]["totalPeers"] == 1


# ── Listing and lookup ───────────────────────────────────────────

class TestPeerEndpoints:
    @pytest.mark.asyncio
    async def test_list_with_pagination(self):
        server = make_server()
        for i in range(120):
            server.registry.register(f"test_peer_{i:04d}", "10.0.0.1", 1000 + i)

        async with make_client(server) as client:
            last = await (await client.get("/peers", params={"limit": "50", "offset": "100"})).json()
            first = await (await client.get("/peers")).json()

        assert len(last["peers"]) == 20
        assert last["pagination"] == {"total": 120, "limit": 50, "offset": 100, "hasMore": False}
        assert len(first["peers"]) == 50
        assert first["pagination"]["hasMore"] is True
        assert set(first["peers"][0]) == {
            "id", "ip", "port", "name", "version", "capabilities", "lastSeen", "registeredAt",
        }

    @pytest.mark.asyncio
    async def test_list_filters_echoed(self):
        server = make_server()
        server.registry.register("test_peer_0001", "10.0.0.1", 1001, capabilities=["relay"], version="2.0")
        server.registry.register("test_peer_0002", "10.0.0.2", 1002, capabilities=["chat"], version="2.0")

        async with make_client(server) as client:
            resp = await client.get("/peers", params={"active": "true", "capability": "relay", "version": "2.0"})
            data = await resp.json()

        assert [p["id"] for p in data["peers"]] == ["test_peer_0001"]
        assert data["filters"] == {"active": True, "capability": "relay", "version": "2.0"}

    @pytest.mark.asyncio
    async def test_get_peer(self):
        server = make_server()
        server.registry.register("test_peer_0001", "10.0.0.1", 1001)
        async with make_client(server) as client:
            resp = await client.get("/peers/test_peer_0001")
            data = await resp.json()
        assert resp.status == 200
        assert data["peer"]["id"] == "test_peer_0001"
        assert data["peer"]["connectionCount"] == 1

    @pytest.mark.asyncio
    async def test_heartbeat(self):
        server = make_server()
        server.registry.register("test_peer_0001", "10.0.0.1", 1001)
        async with make_client(server) as client:
            resp = await client.post("/peers/test_peer_0001/heartbeat")
            data = await resp.json()
        assert resp.status == 200
        assert isinstance(data["lastSeen"], int)

    @pytest.mark.asyncio
    async def test_delete(self):
        server = make_server()
        server.registry.register("test_peer_0001", "10.0.0.1", 1001)
        async with make_client(server) as client:
            resp = await client.delete("/peers/test_peer_0001")
            assert resp.status == 200
            again = await client.delete("/peers/test_peer_0001")
            assert again.status == 404
        assert len(server.registry) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/peers/nobody_home"),
        ("POST", "/peers/nobody_home/heartbeat"),
        ("DELETE", "/peers/nobody_home"),
    ])
    async def test_unknown_peer_404(self, method, path):
        server = make_server()
        async with make_client(server) as client:
            resp = await client.request(method, path)
            data = await resp.json()
        assert resp.status == 404
        assert data == {"success": False, "error": "Peer not found"}


# ── Read-only views and middleware ───────────────────────────────

class TestMiscEndpoints:
    @pytest.mark.asyncio
    async def test_health(self):
        async with make_client(make_server()) as client:
            data = await (await client.get("/health")).json()
        assert data["status"] == "ok"

    @pytest.mark.asyncio
    async def test_status(self):
        server = make_server()
        server.registry.register("test_peer_0001", "10.0.0.1", 1001)
        async with make_client(server) as client:
            data = await (await client.get("/status")).json()
        assert data["server"]["status"] == "running"
        assert data["network"]["totalPeers"] == 1
        assert data["network"]["activePeers"] == 1
        assert data["network"]["signalingConnections"] == 0
        assert data["network"]["lastCleanup"] is None

    @pytest.mark.asyncio
    async def test_api_docs(self):
        async with make_client(make_server()) as client:
            data = await (await client.get("/api")).json()
        assert any(e["path"] == "/register" for e in data["endpoints"])

    @pytest.mark.asyncio
    async def test_unknown_route(self):
        async with make_client(make_server()) as client:
            resp = await client.get("/nope")
            data = await resp.json()
        assert resp.status == 404
        assert data == {"success": False, "error": "Endpoint not found"}

    @pytest.mark.asyncio
    async def test_cors(self):
        async with make_client(make_server()) as client:
            preflight = await client.options("/register")
            assert preflight.status == 204
            assert preflight.headers["Access-Control-Allow-Origin"] == "*"
            resp = await client.get("/health")
            assert resp.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        server = BootstrapServer(BootstrapConfig(rate_limit_requests=2))
        async with make_client(server) as client:
            assert (await client.get("/peers")).status == 200
            assert (await client.get("/peers")).status == 200
            limited = await client.get("/peers")
            assert limited.status == 429
            assert (await client.get("/health")).status == 200

    @pytest.mark.asyncio
    async def test_internal_error_is_opaque(self, monkeypatch):
        server = make_server()

        def explode(*args, **kwargs):
            raise RuntimeError("secret detail")

        monkeypatch.setattr(server.registry, "stats", explode)
        async with make_client(server) as client:
            resp = await client.get("/status")
            data = await resp.json()
        assert resp.status == 500
        assert data == {"success": False, "error": "Internal server error"}

    @pytest.mark.asyncio
    async def test_scheduler_follows_app_lifecycle(self):
        server = make_server()
        async with make_client(server):
            assert server.scheduler.running
        assert not server.scheduler.running


# ── Signaling over WebSocket ─────────────────────────────────────

class TestSignalingEndpoint:
    @pytest.mark.asyncio
    async def test_offer_between_two_peers(self):
        server = make_server()
        async with make_client(server) as client:
            ws_a = await client.ws_connect("/ws")
            ws_b = await client.ws_connect("/ws")

            await ws_a.send_json({"type": "register", "peerId": "A"})
            assert (await ws_a.receive_json(timeout=2))["type"] == "peer_list"
            await ws_b.send_json({"type": "register", "peerId": "B"})
            assert (await ws_b.receive_json(timeout=2))["type"] == "peer_list"

            offer = {"type": "offer", "sdp": "v=0"}
            await ws_a.send_json({"type": "peer_offer", "from": "A", "to": "B", "offer": offer})
            received = await ws_b.receive_json(timeout=2)
            assert received == {"type": "peer_offer", "from": "A", "offer": offer}

            status = await (await client.get("/status")).json()
            assert status["network"]["signalingConnections"] == 2

            await ws_a.close()
            await ws_b.close()

    @pytest.mark.asyncio
    async def test_ping(self):
        async with make_client(make_server()) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_str('{"type": "ping"}')
            assert (await ws.receive_json(timeout=2))["type"] == "pong"
            await ws.close()

    @pytest.mark.asyncio
    async def test_disconnect_unbinds(self):
        server = make_server()
        async with make_client(server) as client:
            ws = await client.ws_connect("/ws")
            await ws.send_json({"type": "register", "peerId": "A"})
            await ws.receive_json(timeout=2)
            assert "A" in server.directory
            await ws.close()
            for _ in range(50):
                if "A" not in server.directory:
                    break
                await asyncio.sleep(0.02)
            assert "A" not in server.directory

    @pytest.mark.asyncio
    async def test_second_registration_closes_first(self):
        server = make_server()
        async with make_client(server) as client:
            first = await client.ws_connect("/ws")
            await first.send_json({"type": "register", "peerId": "A"})
            await first.receive_json(timeout=2)

            second = await client.ws_connect("/ws")
            await second.send_json({"type": "register", "peerId": "A"})
            await second.receive_json(timeout=2)

            msg = await first.receive(timeout=2)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
            assert first.close_code == 4000

            await asyncio.sleep(0.05)
            assert server.directory.lookup("A") is not None
            await second.close()

    @pytest.mark.asyncio
    async def test_shutdown_closes_channels(self):
        server = make_server()
        client = make_client(server)
        await client.start_server()
        ws = await client.ws_connect("/ws")
        await ws.send_json({"type": "register", "peerId": "A"})
        await ws.receive_json(timeout=2)

        await server._on_shutdown(server.app)
        msg = await ws.receive(timeout=2)
        assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
        await client.close()
