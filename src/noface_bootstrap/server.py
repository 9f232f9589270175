"""Bootstrap server — HTTP discovery API plus the WebSocket signaling endpoint.

Runs one aiohttp application that owns the peer registry, the
connection directory, the signaling relay and the cleanup scheduler.

HTTP API:
    POST   /register               register or refresh a peer
    GET    /peers                  filtered, paginated peer listing
    GET    /peers/{id}             single peer lookup
    POST   /peers/{id}/heartbeat   refresh a peer's last-seen time
    DELETE /peers/{id}             unregister a peer
    GET    /status                 server and network counters
    GET    /health                 liveness probe
    GET    /api                    endpoint documentation
    GET    /ws                     signaling WebSocket
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from aiohttp import WSMsgType, web

from noface_bootstrap import __version__
from noface_bootstrap.middleware import (
    RateLimiter,
    error_middleware,
    error_response,
    make_cors_middleware,
    make_rate_limit_middleware,
)
from noface_bootstrap.registry.cleanup import SWEEP_INTERVAL, CleanupScheduler
from noface_bootstrap.registry.peer import PeerFilter, to_millis
from noface_bootstrap.registry.store import (
    ACTIVE_WINDOW,
    DEFAULT_PAGE_SIZE,
    INACTIVITY_THRESHOLD,
    MAX_PAGE_SIZE,
    PeerRegistry,
)
from noface_bootstrap.signaling.channel import (
    CLOSE_GOING_AWAY,
    DEFAULT_OUTBOX_SIZE,
    SignalingChannel,
)
from noface_bootstrap.signaling.directory import ConnectionDirectory
from noface_bootstrap.signaling.relay import SignalingRelay

logger = logging.getLogger(__name__)

API_DOCS = {
    "name": "NoFace Bootstrap Server",
    "version": __version__,
    "endpoints": [
        {"method": "POST", "path": "/register",
         "body": {"id": "string (>= 10 chars)", "ip": "string", "port": "1-65535",
                  "name": "string?", "capabilities": "string[]?", "version": "string?"}},
        {"method": "GET", "path": "/peers",
         "query": {"limit": "int (default 50, max 100)", "offset": "int (default 0)",
                   "active": "true|false", "capability": "string", "version": "string"}},
        {"method": "GET", "path": "/peers/{id}"},
        {"method": "POST", "path": "/peers/{id}/heartbeat"},
        {"method": "DELETE", "path": "/peers/{id}"},
        {"method": "GET", "path": "/status"},
        {"method": "GET", "path": "/health"},
        {"method": "GET", "path": "/ws",
         "messages": ["register{peerId}", "peer_offer{from,to,offer}",
                      "peer_answer{from,to,answer}", "ice_candidate{from,to,candidate}",
                      "ping", "pong"]},
    ],
}


@dataclass
class BootstrapConfig:
    """Tunable settings for a bootstrap server."""

    host: str = "0.0.0.0"
    port: int = 3000

    # Peer liveness
    active_window: float = ACTIVE_WINDOW
    inactivity_threshold: float = INACTIVITY_THRESHOLD
    sweep_interval: float = SWEEP_INTERVAL

    # Listing
    default_page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE

    # Signaling
    channel_outbox_size: int = DEFAULT_OUTBOX_SIZE
    ws_heartbeat: float = 30.0

    # Front end
    rate_limit_requests: int = 120  # per window per client, 0 disables
    rate_limit_window: float = 60.0
    cors_origin: str = "*"
    shutdown_timeout: float = 10.0

    def validate(self) -> None:
        """Raise ValueError if the settings are inconsistent."""
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.active_window <= 0 or self.inactivity_threshold <= 0:
            raise ValueError("active_window and inactivity_threshold must be positive")
        if self.active_window >= self.inactivity_threshold:
            raise ValueError("active_window must be shorter than inactivity_threshold")
        if self.sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        if not 1 <= self.default_page_size <= self.max_page_size:
            raise ValueError("need 1 <= default_page_size <= max_page_size")
        if self.channel_outbox_size < 1:
            raise ValueError("channel_outbox_size must be at least 1")
        if self.rate_limit_requests < 0:
            raise ValueError("rate_limit_requests must not be negative")


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class BootstrapServer:
    """Owns the registry and signaling components and serves them over aiohttp."""

    def __init__(
        self,
        config: BootstrapConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or BootstrapConfig()
        self.config.validate()

        self.registry = PeerRegistry(
            active_window=self.config.active_window,
            inactivity_threshold=self.config.inactivity_threshold,
            default_page_size=self.config.default_page_size,
            max_page_size=self.config.max_page_size,
            clock=clock,
        )
        self.directory = ConnectionDirectory()
        self.relay = SignalingRelay(self.registry, self.directory, clock=clock)
        self.scheduler = CleanupScheduler(
            self.registry,
            interval=self.config.sweep_interval,
            threshold=self.config.inactivity_threshold,
        )
        self.rate_limiter = RateLimiter(
            self.config.rate_limit_requests, self.config.rate_limit_window,
        )

        self._channels: set[SignalingChannel] = set()
        self._runner: web.AppRunner | None = None
        self._started_at = time.monotonic()

        self.app = web.Application(middlewares=[
            make_cors_middleware(self.config.cors_origin),
            error_middleware,
            make_rate_limit_middleware(self.rate_limiter),
        ])
        self.app.router.add_post("/register", self._handle_register)
        self.app.router.add_get("/peers", self._handle_list_peers)
        self.app.router.add_get("/peers/{peer_id}", self._handle_get_peer)
        self.app.router.add_post("/peers/{peer_id}/heartbeat", self._handle_heartbeat)
        self.app.router.add_delete("/peers/{peer_id}", self._handle_delete_peer)
        self.app.router.add_get("/status", self._handle_status)
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/api", self._handle_api_docs)
        self.app.router.add_get("/ws", self._handle_ws)

        self.app.on_startup.append(self._on_startup)
        self.app.on_shutdown.append(self._on_shutdown)
        self.app.on_cleanup.append(self._on_cleanup)

    @property
    def open_channels(self) -> int:
        return len(self._channels)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Start listening."""
        self._runner = web.AppRunner(self.app, shutdown_timeout=self.config.shutdown_timeout)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info("Bootstrap server listening on %s:%d", self.config.host, self.config.port)

    async def stop(self) -> None:
        """Stop accepting connections, close channels, drain requests."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Bootstrap server stopped")

    async def _on_startup(self, app: web.Application) -> None:
        self._started_at = time.monotonic()
        self.scheduler.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        channels = list(self._channels)
        if channels:
            logger.info("Closing %d signaling channel(s)", len(channels))
        await asyncio.gather(
            *(ch.close(code=CLOSE_GOING_AWAY, reason="server shutdown") for ch in channels),
            return_exceptions=True,
        )

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.scheduler.stop()

    # ── Registry endpoints ───────────────────────────────────────

    async def _handle_register(self, request: web.Request) -> web.Response:
        """POST /register {id, ip, port, name?, capabilities?, version?}"""
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response("Invalid JSON body", 400)
        if not isinstance(data, dict):
            return error_response("Request body must be a JSON object", 400)

        record = self.registry.register(
            data.get("id"),
            data.get("ip"),
            data.get("port"),
            name=data.get("name"),
            capabilities=data.get("capabilities"),
            version=data.get("version"),
        )
        total, active = self.registry.stats()
        return web.json_response({
            "success": True,
            "message": "Peer registered successfully",
            "peer": {
                "id": record.peer_id,
                "name": record.name,
                "version": record.version,
                "capabilities": sorted(record.capabilities),
                "registeredAt": to_millis(record.registered_at),
                "updatedAt": to_millis(record.updated_at),
                "connectionCount": record.connection_count,
            },
            "network": {"totalPeers": total, "activePeers": active},
        })

    async def _handle_list_peers(self, request: web.Request) -> web.Response:
        """GET /peers?limit=50&offset=0&active=true&capability=x&version=y"""
        query = request.query
        peer_filter = PeerFilter(
            active_only=query.get("active", "").lower() == "true",
            capability=query.get("capability") or None,
            version=query.get("version") or None,
        )
        page = self.registry.list(
            peer_filter, limit=query.get("limit"), offset=query.get("offset"),
        )
        return web.json_response({
            "success": True,
            "peers": [r.to_public_dict() for r in page.records],
            "pagination": {
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "hasMore": page.has_more,
            },
            "filters": {
                "active": peer_filter.active_only,
                "capability": peer_filter.capability,
                "version": peer_filter.version,
            },
        })

    async def _handle_get_peer(self, request: web.Request) -> web.Response:
        record = self.registry.get(request.match_info["peer_id"])
        return web.json_response({"success": True, "peer": record.to_dict()})

    async def _handle_heartbeat(self, request: web.Request) -> web.Response:
        last_seen = self.registry.heartbeat(request.match_info["peer_id"])
        return web.json_response({"success": True, "lastSeen": to_millis(last_seen)})

    async def _handle_delete_peer(self, request: web.Request) -> web.Response:
        self.registry.delete(request.match_info["peer_id"])
        return web.json_response({
            "success": True,
            "message": "Peer unregistered successfully",
        })

    # ── Read-only views ──────────────────────────────────────────

    async def _handle_status(self, request: web.Request) -> web.Response:
        total, active = self.registry.stats()
        return web.json_response({
            "success": True,
            "server": {
                "status": "running",
                "uptime": round(time.monotonic() - self._started_at, 1),
                "version": __version__,
            },
            "network": {
                "totalPeers": total,
                "activePeers": active,
                "signalingConnections": len(self.directory),
                "lastCleanup": _iso(self.scheduler.last_sweep),
            },
            "signaling": {
                "openChannels": self.open_channels,
                "relayed": self.relay.relayed,
                "dropped": self.relay.dropped,
            },
        })

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _handle_api_docs(self, request: web.Request) -> web.Response:
        return web.json_response(API_DOCS)

    # ── Signaling ────────────────────────────────────────────────

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.config.ws_heartbeat)
        await ws.prepare(request)

        channel = SignalingChannel(
            ws,
            outbox_size=self.config.channel_outbox_size,
            remote=request.remote or "unknown",
        )
        channel.start()
        self._channels.add(channel)
        logger.debug("Signaling channel opened: %r", channel)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.relay.dispatch(channel, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    logger.warning("Dropping binary frame from %r", channel)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("Signaling channel error on %r: %s", channel, ws.exception())
                    break
        finally:
            self.relay.disconnect(channel)
            self._channels.discard(channel)
            await channel.close()
            logger.debug("Signaling channel closed: %r", channel)

        return ws


def summarize(server: BootstrapServer) -> dict[str, Any]:
    """Settings banner printed by the CLI at startup."""
    cfg = server.config
    return {
        "listen": f"{cfg.host}:{cfg.port}",
        "active window": f"{cfg.active_window:.0f}s",
        "inactivity threshold": f"{cfg.inactivity_threshold:.0f}s",
        "sweep interval": f"{cfg.sweep_interval:.0f}s",
        "page size": f"{cfg.default_page_size} (max {cfg.max_page_size})",
        "rate limit": (
            f"{cfg.rate_limit_requests}/{cfg.rate_limit_window:.0f}s"
            if cfg.rate_limit_requests else "off"
        ),
    }
