"""Latest-value store for per-device commands and statuses."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .commands import AcceptedCommand

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceSlot:
    """Immutable snapshot of one device's latest value."""

    device_id: str
    value: Any
    updated_at: datetime


class DeviceStateStore:
    """Holds exactly one pending command and one status per device.

    Writes overwrite, reads return the latest value; there is no history and
    no queue. A command issued before the previous one was fetched replaces
    it. Every value is deep-copied on the way in and on the way out so a
    reader never observes a value another caller is still mutating, and a
    single lock serialises slot replacement so readers never see a torn
    write. The lock is a ``threading.Lock`` so the store can be shared with
    paho's network thread as well as the event loop.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._commands: Dict[str, DeviceSlot] = {}
        self._statuses: Dict[str, DeviceSlot] = {}

    def set_command(self, device_id: str, command: AcceptedCommand) -> None:
        slot = DeviceSlot(device_id, copy.deepcopy(command), self._clock())
        with self._lock:
            previous = self._commands.get(device_id)
            self._commands[device_id] = slot
        if previous is not None:
            LOGGER.debug(
                "Pending command %s for %s superseded by %s",
                previous.value.command,
                device_id,
                command.command,
            )

    def get_command(self, device_id: str) -> Optional[AcceptedCommand]:
        slot = self.command_slot(device_id)
        return None if slot is None else copy.deepcopy(slot.value)

    def clear_command(self, device_id: str) -> bool:
        """Drop the pending command for ``device_id``; False when none was pending."""

        with self._lock:
            return self._commands.pop(device_id, None) is not None

    def command_slot(self, device_id: str) -> Optional[DeviceSlot]:
        with self._lock:
            return self._commands.get(device_id)

    def set_status(self, device_id: str, status: Mapping[str, Any]) -> None:
        slot = DeviceSlot(device_id, copy.deepcopy(dict(status)), self._clock())
        with self._lock:
            self._statuses[device_id] = slot

    def get_status(self, device_id: str) -> Optional[Dict[str, Any]]:
        slot = self.status_slot(device_id)
        return None if slot is None else copy.deepcopy(slot.value)

    def status_slot(self, device_id: str) -> Optional[DeviceSlot]:
        with self._lock:
            return self._statuses.get(device_id)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Return every device's latest command and status, keyed by device id."""

        with self._lock:
            commands = dict(self._commands)
            statuses = dict(self._statuses)

        devices: Dict[str, Dict[str, Any]] = {}
        for device_id in sorted(set(commands) | set(statuses)):
            command = commands.get(device_id)
            status = statuses.get(device_id)
            devices[device_id] = {
                "command": command.value.as_dict() if command else None,
                "commandUpdatedAt": (
                    command.updated_at.isoformat(timespec="seconds")
                    if command
                    else None
                ),
                "status": copy.deepcopy(status.value) if status else None,
                "statusUpdatedAt": (
                    status.updated_at.isoformat(timespec="seconds")
                    if status
                    else None
                ),
            }
        return devices
