"""Main application entry-point for aurora-relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .adapters import MQTTClient, MQTTConnectionError
from .bridge import MqttEventBridge
from .config import RelayConfig, load_config
from .device_auth import DeviceAuthenticator
from .hub import BroadcastHub
from .identity import IdentityGate
from .logging import configure_logging
from .relay import DeviceRelay
from .server import RelayHttpServer
from .state_store import DeviceStateStore
from .vocabulary import DEFAULT_VOCABULARY, CommandVocabulary

LOGGER = logging.getLogger(__name__)


class RelayApp:
    """Coordinates startup and shutdown of the relay.

    Owns the process-wide store and hub, the HTTP/WebSocket server and, when
    enabled, the MQTT connection and bridge.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        *,
        vocabulary: CommandVocabulary = DEFAULT_VOCABULARY,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config or load_config()
        self.hub = BroadcastHub(max_pending_events=self._config.hub.max_pending_events)
        self.store = DeviceStateStore()
        self.relay = DeviceRelay(
            vocabulary,
            DeviceAuthenticator(self._config.device_secrets),
            self.store,
            self.hub,
        )
        self.gate = IdentityGate(
            self._config.auth.token_secret,
            algorithms=[self._config.auth.token_algorithm],
            leeway_seconds=self._config.auth.token_leeway_seconds,
            require_expiry=self._config.auth.require_token_expiry,
        )
        self._mqtt_client = mqtt_client
        if self._mqtt_client is None and self._config.mqtt.enabled:
            self._mqtt_client = MQTTClient(self._config.mqtt)
        self._bridge: Optional[MqttEventBridge] = None
        self.server = RelayHttpServer(
            self.relay,
            self.gate,
            server_config=self._config.server,
            auth_config=self._config.auth,
            mqtt_connected=(
                self._mqtt_client.is_connected if self._mqtt_client else None
            ),
        )
        self._shutdown_event: Optional[asyncio.Event] = None

    async def run(self) -> None:
        """Serve until cancelled or ``request_shutdown`` is called."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("aurora-relay starting with config: %s", self._config.path)
        if not self._config.device_secrets:
            LOGGER.warning(
                "No device secrets provisioned; status reports will be rejected"
            )

        await self._start_services()
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("aurora-relay received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[RelayConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("aurora-relay received shutdown signal")

    async def _start_services(self) -> None:
        await self.server.start()

        if self._mqtt_client is None:
            return
        try:
            await self._mqtt_client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT bridge disabled: %s", exc)
            return
        self._bridge = MqttEventBridge(self._mqtt_client, self.relay, self._config.mqtt)
        await self._bridge.start()

    async def _stop_services(self) -> None:
        if self._bridge is not None:
            await self._bridge.stop()
            self._bridge = None
        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
        await self.hub.close()
        await self.server.stop()
        LOGGER.info("aurora-relay stopped")
