"""MQTT push transport for actuators.

Topics (``prefix`` defaults to ``aurora/devices``):

- ``{prefix}/{deviceId}/command``: latest accepted command, retained so an
  actuator that reconnects immediately receives its pending command.
- ``{prefix}/{deviceId}/status``: latest verified status.
- ``{prefix}/{deviceId}/report``: inbound status reports, same body and same
  keyed-hash check as the HTTP route.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from .config import MqttConfig
from .commands import has_reserved_characters
from .errors import RejectionError
from .hub import EVENT_COMMAND, EVENT_STATUS, ObserverChannel
from .relay import DeviceRelay

LOGGER = logging.getLogger(__name__)


class MQTTBridgeClient(Protocol):
    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def set_message_handler(self, handler): ...

    def register_connect_handler(self, handler: Callable[[int], None]) -> None: ...


class MqttEventBridge:
    """Mirrors hub events onto MQTT and feeds MQTT status reports to the relay."""

    def __init__(
        self, mqtt: MQTTBridgeClient, relay: DeviceRelay, config: MqttConfig
    ) -> None:
        self._mqtt = mqtt
        self._relay = relay
        self._config = config
        self._prefix = config.topic_prefix.strip("/")
        self._channel: Optional[ObserverChannel] = None
        self._connect_handler_registered = False

    @property
    def report_subscription(self) -> str:
        return f"{self._prefix}/+/report"

    async def start(self) -> None:
        if self._channel is not None:
            return
        self._mqtt.set_message_handler(self._handle_message)
        if not self._connect_handler_registered:
            self._mqtt.register_connect_handler(self._on_reconnect)
            self._connect_handler_registered = True
        self._mqtt.subscribe(self.report_subscription, qos=self._config.qos)
        self._channel = await self._relay.hub.join(self._publish_event, name="mqtt")
        LOGGER.info("MQTT bridge active on %s/#", self._prefix)

    async def stop(self) -> None:
        channel = self._channel
        self._channel = None
        self._mqtt.set_message_handler(None)
        if channel is not None:
            await self._relay.hub.leave(channel)

    def _on_reconnect(self, rc: int) -> None:
        # a clean session drops subscriptions on every reconnect
        if self._channel is None:
            return
        try:
            self._mqtt.subscribe(self.report_subscription, qos=self._config.qos)
        except RuntimeError as exc:
            LOGGER.warning("Failed to resubscribe to status reports: %s", exc)
            return
        LOGGER.info("Resubscribed to %s", self.report_subscription)

    async def _publish_event(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        device_id = event.get("deviceId")
        if event_type not in (EVENT_COMMAND, EVENT_STATUS) or not device_id:
            return
        if has_reserved_characters(device_id):
            LOGGER.warning("Not publishing %s for device %r", event_type, device_id)
            return

        topic = f"{self._prefix}/{device_id}/{event_type}"
        payload = json.dumps(event.get("data", {}), separators=(",", ":")).encode(
            "utf-8"
        )
        try:
            self._mqtt.publish(
                topic, payload, qos=self._config.qos, retain=self._config.retain
            )
        except (RuntimeError, ValueError) as exc:
            LOGGER.warning("Failed to publish %s: %s", topic, exc)

    async def _handle_message(self, topic: str, payload: bytes) -> None:
        parts = topic.split("/")
        if len(parts) < 3 or parts[-1] != "report":
            LOGGER.debug("Ignoring MQTT message on %s", topic)
            return
        topic_device = parts[-2]

        try:
            body = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOGGER.warning("Discarding malformed status report on %s", topic)
            return
        if not isinstance(body, dict):
            LOGGER.warning("Discarding non-object status report on %s", topic)
            return

        body.setdefault("deviceId", topic_device)
        if body["deviceId"] != topic_device:
            LOGGER.warning(
                "Discarding status report on %s claiming device %r",
                topic,
                body["deviceId"],
            )
            return

        try:
            await self._relay.report_status(body)
        except RejectionError as exc:
            LOGGER.info(
                "MQTT status report from %s rejected: %s", topic_device, exc.kind.value
            )
