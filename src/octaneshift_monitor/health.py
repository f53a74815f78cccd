"""HTTP surface with health checks, metrics and watchlist API.

Endpoints:
    GET    /health           Last pass summary (503 when stale or failed);
                             ?rpc=1 adds a per-chain RPC check
    GET    /metrics          Prometheus exposition
    GET    /ready, /live     Liveness and readiness
    POST   /api/test-alert   Synthetic low-balance alert, never delivered
    GET    /api/watchlist    List watched entries
    POST   /api/watchlist    Register an entry
    PUT    /api/watchlist    Change overrides or label of an entry
    DELETE /api/watchlist    Unregister an entry (?address=..&chain=..)
    GET    /api/alerts       Outstanding alerts
    GET    /api/alerts/history  Dispatched alerts, newest first (?address=..&chain=..&limit=..)
    POST   /api/alerts/ack   Acknowledge an outstanding alert
    POST   /api/channels/{name}/reset  Close a channel's circuit breaker
    GET    /api/deeplink/validate  Check a deep link and return its prefill data (?url=..)
    GET    /api/qr           QR code for a link (?text=..&format=svg|png)
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from aiohttp import web
from prometheus_client import Gauge, generate_latest

from octaneshift_monitor.alerter.deeplink import DeepLinkError
from octaneshift_monitor.alerter.qr import QRCodeError, generate_qr_code, generate_qr_svg
from octaneshift_monitor.chains import parse_chain, validate_address
from octaneshift_monitor.errors import (
    AlertHistoryError,
    AlertStoreError,
    DeliveryFailure,
    EntryValidationError,
)
from octaneshift_monitor.monitor.models import WatchEntry, entry_key
from octaneshift_monitor.monitor.simulation import run_test_alert
from octaneshift_monitor.monitor.watchlist import validate_entry
from octaneshift_monitor.redaction import redact_mapping

if TYPE_CHECKING:
    from octaneshift_monitor.monitor.scheduler import WatchlistScheduler

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
# Passes older than this many poll intervals make the service unhealthy
STALE_PASS_INTERVALS = 3
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500

RpcHealthCheck = Callable[[], Awaitable[dict[str, bool]]]


class HealthStatus(Enum):
    """Overall service health."""

    STARTING = "starting"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


HEALTH_STATUS = Gauge(
    "octaneshift_health_status",
    "Overall health status (1=healthy, 0.5=degraded or starting, 0=unhealthy)",
)

_STATUS_VALUES = {
    HealthStatus.HEALTHY: 1.0,
    HealthStatus.DEGRADED: 0.5,
    HealthStatus.STARTING: 0.5,
    HealthStatus.UNHEALTHY: 0.0,
}


class MonitorServer:
    """aiohttp server exposing the scheduler's state and watchlist API."""

    def __init__(
        self,
        scheduler: WatchlistScheduler,
        *,
        stale_after_seconds: float | None = None,
        rpc_health: RpcHealthCheck | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            scheduler: Scheduler whose passes are reported.
            stale_after_seconds: Age after which the last pass is considered
                stale. Defaults to three poll intervals.
            rpc_health: Checks each chain's RPC endpoint for ``/health?rpc=1``.
        """
        self.scheduler = scheduler
        self._stale_after = (
            stale_after_seconds
            if stale_after_seconds is not None
            else scheduler.poll_interval_seconds * STALE_PASS_INTERVALS
        )
        self._rpc_health = rpc_health
        self._start_time = time.time()
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def get_status(self) -> HealthStatus:
        """Derive health from the last pass."""
        if self.scheduler.last_error is not None:
            status = HealthStatus.UNHEALTHY
        else:
            summary = self.scheduler.last_summary
            if summary is None:
                status = HealthStatus.STARTING
            elif summary.finished_at is None:
                status = HealthStatus.DEGRADED
            else:
                age = (self.scheduler.now() - summary.finished_at).total_seconds()
                if age > self._stale_after:
                    status = HealthStatus.UNHEALTHY
                elif summary.errors:
                    status = HealthStatus.DEGRADED
                else:
                    status = HealthStatus.HEALTHY
        HEALTH_STATUS.set(_STATUS_VALUES[status])
        return status

    # Health

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle /health endpoint."""
        status = self.get_status()
        rpc: dict[str, bool] | None = None
        if request.query.get("rpc") in ("1", "true") and self._rpc_health is not None:
            rpc = await self._rpc_health()
            if status == HealthStatus.HEALTHY and not all(rpc.values()):
                status = HealthStatus.DEGRADED
        summary = self.scheduler.last_summary
        body: dict[str, Any] = {
            "status": status.value,
            "uptime_seconds": round(time.time() - self._start_time, 3),
            "watchlist_entries": len(self.scheduler.watchlist),
            "in_flight": len(self.scheduler.in_flight),
            "last_pass": summary.to_dict() if summary else None,
            "last_error": self.scheduler.last_error,
            "channels": self.scheduler.dispatcher.get_circuit_status(),
        }
        if rpc is not None:
            body["rpc"] = rpc
        status_code = 503 if status in (HealthStatus.UNHEALTHY, HealthStatus.STARTING) else 200
        return web.json_response(body, status=status_code)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        self.get_status()
        return web.Response(
            body=generate_latest(),
            content_type="text/plain",
            charset="utf-8",
        )

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        """Handle /ready endpoint; ready once a pass has completed."""
        status = self.get_status()
        if status in (HealthStatus.UNHEALTHY, HealthStatus.STARTING):
            return web.json_response({"ready": False, "reason": status.value}, status=503)
        return web.json_response({"ready": True})

    async def _handle_live(self, _request: web.Request) -> web.Response:
        """Handle /live endpoint."""
        return web.json_response({"live": True})

    # API

    async def _handle_test_alert(self, _request: web.Request) -> web.Response:
        """Generate a synthetic alert through the real formatting path."""
        try:
            test_alert = await run_test_alert(self.scheduler)
        except DeliveryFailure as e:
            logger.error("Test alert error: %s", e)
            return web.json_response(
                {"success": False, "error": "Failed to generate test alert"}, status=500
            )

        alert = test_alert.message.to_dict()
        try:
            alert["qrCode"] = generate_qr_code(test_alert.message.deep_link)
        except QRCodeError as e:
            logger.warning("Test alert QR code failed: %s", e)
            alert["qrCode"] = None

        return web.json_response(
            {
                "success": True,
                "message": "Test alert generated; it was logged, not delivered.",
                "alert": alert,
                "channels": {
                    "telegram": test_alert.formatted.telegram_markdown,
                    "discord": test_alert.formatted.discord_embed,
                },
            }
        )

    async def _read_json(self, request: web.Request) -> dict[str, Any]:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            raise web.HTTPBadRequest(
                text=json.dumps({"error": "Request body must be JSON"}),
                content_type="application/json",
            ) from None
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(
                text=json.dumps({"error": "Request body must be a JSON object"}),
                content_type="application/json",
            )
        return data

    async def _handle_list_watchlist(self, _request: web.Request) -> web.Response:
        entries = [
            {"key": entry.key, **entry.to_dict()} for entry in self.scheduler.watchlist.entries()
        ]
        return web.json_response({"entries": entries, "count": len(entries)})

    async def _handle_register(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        try:
            entry = self.scheduler.watchlist.register(WatchEntry.from_dict(data))
        except EntryValidationError as e:
            logger.info("Rejected watchlist entry %s: %s", redact_mapping(data), e)
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"entry": {"key": entry.key, **entry.to_dict()}}, status=201)

    async def _handle_update(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        address = data.get("address")
        chain = data.get("chain")
        if not isinstance(address, str) or not isinstance(chain, str):
            return web.json_response(
                {"error": "Fields 'address' and 'chain' are required"}, status=400
            )
        try:
            entry = self.scheduler.watchlist.update(address, chain, data)
        except EntryValidationError as e:
            logger.info("Rejected watchlist update %s: %s", redact_mapping(data), e)
            return web.json_response({"error": str(e)}, status=400)
        if entry is None:
            return web.json_response({"error": "Entry not found"}, status=404)
        return web.json_response({"entry": {"key": entry.key, **entry.to_dict()}})

    @staticmethod
    def _entry_query(request: web.Request) -> tuple[str, str] | None:
        address = request.query.get("address")
        chain = request.query.get("chain")
        if not address or not chain:
            return None
        return address, chain

    async def _handle_unregister(self, request: web.Request) -> web.Response:
        query = self._entry_query(request)
        if query is None:
            return web.json_response(
                {"error": "Query parameters 'address' and 'chain' are required"}, status=400
            )
        address, chain = query
        if not self.scheduler.watchlist.unregister(address, chain):
            return web.json_response({"error": "Entry not found"}, status=404)
        await self.scheduler.deduplicator.store.clear(entry_key(address, chain))
        return web.json_response({"removed": True})

    async def _handle_list_alerts(self, _request: web.Request) -> web.Response:
        try:
            states = await self.scheduler.deduplicator.store.list_states()
        except AlertStoreError as e:
            logger.error("Failed to list alert states: %s", e)
            return web.json_response({"error": "Alert store unavailable"}, status=503)
        alerts = [state.to_dict() for state in sorted(states, key=lambda s: s.key)]
        return web.json_response({"alerts": alerts, "count": len(alerts)})

    async def _handle_alert_history(self, request: web.Request) -> web.Response:
        history = self.scheduler.history
        if history is None:
            return web.json_response({"error": "Alert history is not enabled"}, status=404)

        try:
            limit = int(request.query.get("limit", DEFAULT_HISTORY_LIMIT))
        except ValueError:
            return web.json_response({"error": "limit must be an integer"}, status=400)
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            return web.json_response(
                {"error": f"limit must be between 1 and {MAX_HISTORY_LIMIT}"}, status=400
            )

        key = None
        if "address" in request.query or "chain" in request.query:
            query = self._entry_query(request)
            if query is None:
                return web.json_response(
                    {"error": "Filter by both 'address' and 'chain'"}, status=400
                )
            key = entry_key(*query)

        try:
            records = await history.get_alerts(key, limit=limit)
        except AlertHistoryError as e:
            logger.error("Failed to read alert history: %s", e)
            return web.json_response({"error": "Alert history unavailable"}, status=503)
        alerts = [record.to_dict() for record in records]
        return web.json_response({"alerts": alerts, "count": len(alerts)})

    async def _handle_reset_channel(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if not self.scheduler.dispatcher.reset_circuit(name):
            return web.json_response({"error": f"Unknown channel: {name}"}, status=404)
        return web.json_response({"reset": True, "channel": name})

    async def _handle_validate_deeplink(self, request: web.Request) -> web.Response:
        """Check a deep link's signature and return its prefill data."""
        url = request.query.get("url")
        if not url:
            return web.json_response(
                {"success": False, "error": "Query parameter 'url' is required"}, status=400
            )
        deep_links = self.scheduler.deep_links
        try:
            chain, amount, address = deep_links.parse(url)
            if not amount.is_finite() or amount <= 0:
                raise DeepLinkError(f"Invalid amount: {amount}")
            chain = parse_chain(chain).value
            address = validate_address(address, chain)
        except (DeepLinkError, EntryValidationError) as e:
            return web.json_response({"success": False, "error": str(e)}, status=400)
        if deep_links.is_signed and not deep_links.verify(url):
            logger.warning("Deep link with invalid signature for chain %s", chain)
            return web.json_response(
                {"success": False, "error": "Invalid deep link signature"}, status=403
            )
        return web.json_response(
            {
                "success": True,
                "data": {
                    "chain": chain,
                    "amount": str(amount),
                    "address": address,
                    "signed": deep_links.is_signed,
                },
            }
        )

    async def _handle_ack(self, request: web.Request) -> web.Response:
        data = await self._read_json(request)
        try:
            entry = validate_entry(WatchEntry.from_dict(data))
        except EntryValidationError as e:
            return web.json_response({"error": str(e)}, status=400)
        if not await self.scheduler.deduplicator.acknowledge(entry):
            return web.json_response({"error": "No outstanding alert"}, status=404)
        return web.json_response({"acknowledged": True})

    async def _handle_qr(self, request: web.Request) -> web.Response:
        text = request.query.get("text")
        output = request.query.get("format", "svg")
        if not text:
            return web.json_response({"error": "Query parameter 'text' is required"}, status=400)
        if output not in ("svg", "png"):
            return web.json_response({"error": "format must be svg or png"}, status=400)
        try:
            if output == "svg":
                return web.Response(text=generate_qr_svg(text), content_type="image/svg+xml")
            return web.json_response({"qrCode": generate_qr_code(text)})
        except QRCodeError as e:
            return web.json_response({"error": str(e)}, status=400)

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/live", self._handle_live)
        app.router.add_post("/api/test-alert", self._handle_test_alert)
        app.router.add_get("/api/watchlist", self._handle_list_watchlist)
        app.router.add_post("/api/watchlist", self._handle_register)
        app.router.add_put("/api/watchlist", self._handle_update)
        app.router.add_delete("/api/watchlist", self._handle_unregister)
        app.router.add_get("/api/alerts", self._handle_list_alerts)
        app.router.add_get("/api/alerts/history", self._handle_alert_history)
        app.router.add_post("/api/alerts/ack", self._handle_ack)
        app.router.add_post("/api/channels/{name}/reset", self._handle_reset_channel)
        app.router.add_get("/api/deeplink/validate", self._handle_validate_deeplink)
        app.router.add_get("/api/qr", self._handle_qr)
        return app

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self, port: int = DEFAULT_HTTP_PORT, host: str = DEFAULT_HOST) -> None:
        """Start the HTTP server.

        Args:
            port: Port to listen on.
            host: Interface to bind.
        """
        if self._runner:
            logger.warning("HTTP server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("HTTP server started on port %d", port)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            logger.info("HTTP server stopped")
