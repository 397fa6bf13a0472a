"""Relay service joining validation, authentication, storage and fan-out."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .commands import AcceptedCommand, CommandSubmission, validate
from .device_auth import DeviceAuthenticator, StatusReport, VerifiedStatus
from .errors import RejectionError
from .hub import EVENT_COMMAND, EVENT_SNAPSHOT, EVENT_STATUS, BroadcastHub, RelayEvent
from .identity import Identity
from .state_store import DeviceStateStore
from .vocabulary import CommandVocabulary

LOGGER = logging.getLogger(__name__)


class DeviceRelay:
    """Accepts commands from clients and status reports from actuators.

    Commands: validate, store as the device's latest command, broadcast.
    Status reports: authenticate, store as the device's latest status,
    broadcast. A rejection raises before anything is stored or broadcast.
    """

    def __init__(
        self,
        vocabulary: CommandVocabulary,
        authenticator: DeviceAuthenticator,
        store: DeviceStateStore,
        hub: BroadcastHub,
    ) -> None:
        self._vocabulary = vocabulary
        self._authenticator = authenticator
        self._store = store
        self._hub = hub

    @property
    def vocabulary(self) -> CommandVocabulary:
        return self._vocabulary

    @property
    def store(self) -> DeviceStateStore:
        return self._store

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    async def submit_command(
        self, payload: Mapping[str, Any], identity: Optional[Identity] = None
    ) -> AcceptedCommand:
        try:
            submission = CommandSubmission.from_payload(payload)
            accepted = validate(submission, self._vocabulary)
        except RejectionError as exc:
            LOGGER.info("Rejected command: %s", exc.kind.value)
            raise

        self._store.set_command(accepted.device_id, accepted)
        LOGGER.info(
            "Accepted %s for %s (issued by %s)",
            accepted.command,
            accepted.device_id,
            identity.subject if identity else "anonymous",
        )
        await self._hub.broadcast(
            RelayEvent(EVENT_COMMAND, accepted.device_id, accepted.as_dict())
        )
        return accepted

    def get_command(self, device_id: str) -> Optional[AcceptedCommand]:
        return self._store.get_command(device_id)

    async def clear_command(self, device_id: str, identity: Identity) -> bool:
        cleared = self._store.clear_command(device_id)
        if cleared:
            LOGGER.info(
                "Pending command for %s cleared by %s", device_id, identity.subject
            )
            await self._hub.broadcast(RelayEvent(EVENT_COMMAND, device_id, {}))
        return cleared

    async def report_status(self, body: Mapping[str, Any]) -> VerifiedStatus:
        try:
            verified = self._authenticator.authenticate(StatusReport.from_payload(body))
        except RejectionError as exc:
            LOGGER.info("Rejected status report: %s", exc.kind.value)
            raise

        self._store.set_status(verified.device_id, verified.payload)
        LOGGER.info("Status updated for %s", verified.device_id)
        await self._hub.broadcast(
            RelayEvent(EVENT_STATUS, verified.device_id, verified.payload)
        )
        return verified

    def get_status(self, device_id: str) -> Optional[Dict[str, Any]]:
        return self._store.get_status(device_id)

    def snapshot_event(self) -> RelayEvent:
        return RelayEvent(EVENT_SNAPSHOT, None, {"devices": self._store.snapshot()})
