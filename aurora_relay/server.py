"""HTTP and WebSocket surface of the relay."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from . import constants
from .config import AuthConfig, ServerConfig
from .errors import RejectionError, RejectionKind
from .identity import Identity, IdentityGate, require_role
from .relay import DeviceRelay

LOGGER = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

_STATUS_BY_KIND: Dict[RejectionKind, int] = {
    RejectionKind.MISSING_FIELD: 400,
    RejectionKind.UNKNOWN_DEVICE: 400,
    RejectionKind.UNKNOWN_COMMAND: 400,
    RejectionKind.MISSING_PARAMETERS: 400,
    RejectionKind.INVALID_SIGNATURE: 401,
    RejectionKind.UNAUTHENTICATED: 401,
    RejectionKind.UNAUTHORIZED: 403,
}


def rejection_response(
    exc: RejectionError, *, overrides: Optional[Mapping[RejectionKind, int]] = None
) -> web.Response:
    status = (overrides or {}).get(exc.kind, _STATUS_BY_KIND[exc.kind])
    return web.json_response(exc.as_dict(), status=status)


@web.middleware
async def rejection_middleware(
    request: web.Request, handler: Handler
) -> web.StreamResponse:
    try:
        return await handler(request)
    except RejectionError as exc:
        return rejection_response(exc)


async def _read_object(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (ValueError, RecursionError):
        body = None
    if not isinstance(body, dict):
        raise RejectionError(
            RejectionKind.MISSING_FIELD, "Request body must be a JSON object"
        )
    return body


class RelayHttpServer:
    """aiohttp application exposing commands, status reports and live updates."""

    # an unprovisioned device is an authentication failure for the actuator
    _REPORT_OVERRIDES = {RejectionKind.UNKNOWN_DEVICE: 401}

    def __init__(
        self,
        relay: DeviceRelay,
        gate: IdentityGate,
        *,
        server_config: Optional[ServerConfig] = None,
        auth_config: Optional[AuthConfig] = None,
        mqtt_connected: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._relay = relay
        self._gate = gate
        self._server_config = server_config or ServerConfig()
        self._auth_config = auth_config or AuthConfig()
        self._mqtt_connected = mqtt_connected
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_application(self) -> web.Application:
        app = web.Application(middlewares=[rejection_middleware])
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/ws", self._handle_websocket)

        app.router.add_post("/devices/command", self._handle_submit_command)
        app.router.add_get("/devices", self._handle_list_devices)
        app.router.add_get("/devices/{device_id}/command", self._handle_get_command)
        app.router.add_delete(
            "/devices/{device_id}/command", self._handle_clear_command
        )
        app.router.add_get("/devices/{device_id}/status", self._handle_get_status)
        app.router.add_post("/devices/status", self._handle_report_status)
        app.router.add_post("/api/device/update", self._handle_report_status)

        app.router.add_get("/modules", self._handle_modules)
        app.router.add_get("/users/me", self._handle_current_user)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_application())
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner, self._server_config.host, self._server_config.port
        )
        await self._site.start()
        LOGGER.info(
            "Relay listening on http://%s:%s",
            self._server_config.host,
            self._server_config.port,
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    def _identity(self, request: web.Request) -> Identity:
        return self._gate.authorize_header(request.headers.get("Authorization"))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.json_response({"message": constants.SERVICE_BANNER})

    async def _handle_health(self, request: web.Request) -> web.Response:
        payload: Dict[str, Any] = {
            "status": "ok",
            "observers": self._relay.hub.observer_count,
        }
        if self._mqtt_connected is not None:
            connected = self._mqtt_connected()
            payload["mqtt"] = "connected" if connected else "disconnected"
            if not connected:
                payload["status"] = "degraded"
        status = 200 if payload["status"] == "ok" else 503
        return web.json_response(payload, status=status)

    async def _handle_submit_command(self, request: web.Request) -> web.Response:
        identity = self._identity(request)
        require_role(identity, self._auth_config.command_roles)
        body = await _read_object(request)
        accepted = await self._relay.submit_command(body, identity)
        return web.json_response(accepted.as_dict())

    async def _handle_get_command(self, request: web.Request) -> web.Response:
        command = self._relay.get_command(request.match_info["device_id"])
        return web.json_response(command.as_dict() if command else {})

    async def _handle_clear_command(self, request: web.Request) -> web.Response:
        identity = self._identity(request)
        require_role(identity, self._auth_config.admin_roles)
        device_id = request.match_info["device_id"]
        cleared = await self._relay.clear_command(device_id, identity)
        return web.json_response({"deviceId": device_id, "cleared": cleared})

    async def _handle_report_status(self, request: web.Request) -> web.Response:
        try:
            body = await _read_object(request)
            verified = await self._relay.report_status(body)
        except RejectionError as exc:
            return rejection_response(exc, overrides=self._REPORT_OVERRIDES)
        return web.json_response(
            {"message": "Device updated successfully", "deviceId": verified.device_id}
        )

    async def _handle_get_status(self, request: web.Request) -> web.Response:
        status = self._relay.get_status(request.match_info["device_id"])
        return web.json_response(status or {})

    async def _handle_list_devices(self, request: web.Request) -> web.Response:
        self._identity(request)
        return web.json_response({"devices": self._relay.store.snapshot()})

    async def _handle_modules(self, request: web.Request) -> web.Response:
        self._identity(request)
        return web.json_response({"modules": self._relay.vocabulary.as_dict()})

    async def _handle_current_user(self, request: web.Request) -> web.Response:
        identity = self._identity(request)
        return web.json_response(identity.as_dict())

    async def _handle_websocket(self, request: web.Request) -> web.StreamResponse:
        if self._server_config.require_observer_identity:
            token = request.query.get("token")
            if token:
                self._gate.authorize(token)
            else:
                self._identity(request)

        ws = web.WebSocketResponse(
            heartbeat=self._server_config.websocket_heartbeat_seconds
        )
        await ws.prepare(request)

        channel = await self._relay.hub.join(
            ws.send_json,
            name=f"ws:{request.remote}",
            greeting=self._relay.snapshot_event,
            closer=lambda: ws.close(
                code=WSCloseCode.TRY_AGAIN_LATER, message=b"observer removed"
            ),
        )
        try:
            async for message in ws:
                if message.type == WSMsgType.ERROR:
                    LOGGER.debug(
                        "Observer %s connection error: %s", channel.name, ws.exception()
                    )
                    break
        finally:
            await self._relay.hub.leave(channel)
        return ws
