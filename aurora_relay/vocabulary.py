"""Closed command vocabulary for the actuators behind the relay.

Every device class is one of two variants:

- ``FixedVocabularyDevice``: the command must exactly (case-sensitively) match
  one of a finite set of names.
- ``OpenParameterDevice``: any command name is accepted as long as the
  submission carries a structured key/value ``parameters`` map.

The validator only asks a device entry to ``check`` a submission, so new
open-ended classes can be added here without touching ``commands.validate``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterator, Mapping, Union

from .errors import RejectionError, RejectionKind

if TYPE_CHECKING:
    from .commands import CommandSubmission


class DeviceClass(str, Enum):
    DOOR = "DOOR"
    CURTAIN = "CURTAIN"
    LIVING_ROOM_LED = "LIVING_ROOM_LED"
    BEDROOM_LED = "BEDROOM_LED"
    BATHROOM_LED = "BATHROOM_LED"
    SOLAR_PANEL = "SOLAR_PANEL"
    CUSTOM = "CUSTOM"


class DeviceCommandNames:
    """Command name constants understood by the actuator firmware."""

    # -------------------------------------------------------------------------
    # Door lock
    # -------------------------------------------------------------------------

    DOOR_OPEN = "DOOR_OPEN"
    DOOR_CLOSE = "DOOR_CLOSE"
    DOOR_LOCK = "DOOR_LOCK"
    DOOR_UNLOCK = "DOOR_UNLOCK"

    # -------------------------------------------------------------------------
    # Curtain motor
    # -------------------------------------------------------------------------

    CURTAIN_OPEN = "CURTAIN_OPEN"
    CURTAIN_CLOSE = "CURTAIN_CLOSE"
    CURTAIN_STOP = "CURTAIN_STOP"

    # -------------------------------------------------------------------------
    # Lighting zones
    # -------------------------------------------------------------------------

    LIVING_ROOM_LED_ON = "LIVING_ROOM_LED_ON"
    LIVING_ROOM_LED_OFF = "LIVING_ROOM_LED_OFF"
    BEDROOM_LED_ON = "BEDROOM_LED_ON"
    BEDROOM_LED_OFF = "BEDROOM_LED_OFF"
    BATHROOM_LED_ON = "BATHROOM_LED_ON"
    BATHROOM_LED_OFF = "BATHROOM_LED_OFF"

    # -------------------------------------------------------------------------
    # Solar panel relay
    # -------------------------------------------------------------------------

    SOLAR_PANEL_ON = "SOLAR_PANEL_ON"
    SOLAR_PANEL_OFF = "SOLAR_PANEL_OFF"


@dataclass(frozen=True, slots=True)
class FixedVocabularyDevice:
    device_class: DeviceClass
    commands: FrozenSet[str]

    def __post_init__(self) -> None:
        if not self.commands:
            raise ValueError(
                f"Fixed vocabulary for {self.device_class.value} cannot be empty"
            )

    def check(self, submission: "CommandSubmission") -> None:
        if submission.command not in self.commands:
            raise RejectionError(
                RejectionKind.UNKNOWN_COMMAND,
                f"Command {submission.command!r} is not allowed for "
                f"{self.device_class.value}",
            )

    def describe(self) -> Dict[str, object]:
        return {"kind": "fixed", "commands": sorted(self.commands)}


@dataclass(frozen=True, slots=True)
class OpenParameterDevice:
    device_class: DeviceClass

    def check(self, submission: "CommandSubmission") -> None:
        # bool/str/list/None are all rejected; only key/value maps pass
        if not isinstance(submission.parameters, Mapping):
            raise RejectionError(
                RejectionKind.MISSING_PARAMETERS,
                f"{self.device_class.value} commands require a parameters object",
            )

    def describe(self) -> Dict[str, object]:
        return {"kind": "open", "parametersRequired": True}


DeviceSpec = Union[FixedVocabularyDevice, OpenParameterDevice]


class CommandVocabulary:
    """Immutable mapping of device class names to their device entries."""

    def __init__(self, devices: Mapping[DeviceClass, DeviceSpec]) -> None:
        self._devices: Dict[str, DeviceSpec] = {}
        for device_class, spec in devices.items():
            if spec.device_class is not device_class:
                raise ValueError(
                    f"Vocabulary entry for {device_class.value} describes "
                    f"{spec.device_class.value}"
                )
            self._devices[device_class.value] = spec

    def get(self, device: str) -> DeviceSpec | None:
        return self._devices.get(device)

    def __contains__(self, device: object) -> bool:
        return device in self._devices

    def __iter__(self) -> Iterator[str]:
        return iter(self._devices)

    def __len__(self) -> int:
        return len(self._devices)

    def as_dict(self) -> Dict[str, Dict[str, object]]:
        return {name: spec.describe() for name, spec in self._devices.items()}


def _fixed(device_class: DeviceClass, *commands: str) -> FixedVocabularyDevice:
    return FixedVocabularyDevice(device_class, frozenset(commands))


DEFAULT_VOCABULARY = CommandVocabulary(
    {
        DeviceClass.DOOR: _fixed(
            DeviceClass.DOOR,
            DeviceCommandNames.DOOR_OPEN,
            DeviceCommandNames.DOOR_CLOSE,
            DeviceCommandNames.DOOR_LOCK,
            DeviceCommandNames.DOOR_UNLOCK,
        ),
        DeviceClass.CURTAIN: _fixed(
            DeviceClass.CURTAIN,
            DeviceCommandNames.CURTAIN_OPEN,
            DeviceCommandNames.CURTAIN_CLOSE,
            DeviceCommandNames.CURTAIN_STOP,
        ),
        DeviceClass.LIVING_ROOM_LED: _fixed(
            DeviceClass.LIVING_ROOM_LED,
            DeviceCommandNames.LIVING_ROOM_LED_ON,
            DeviceCommandNames.LIVING_ROOM_LED_OFF,
        ),
        DeviceClass.BEDROOM_LED: _fixed(
            DeviceClass.BEDROOM_LED,
            DeviceCommandNames.BEDROOM_LED_ON,
            DeviceCommandNames.BEDROOM_LED_OFF,
        ),
        DeviceClass.BATHROOM_LED: _fixed(
            DeviceClass.BATHROOM_LED,
            DeviceCommandNames.BATHROOM_LED_ON,
            DeviceCommandNames.BATHROOM_LED_OFF,
        ),
        DeviceClass.SOLAR_PANEL: _fixed(
            DeviceClass.SOLAR_PANEL,
            DeviceCommandNames.SOLAR_PANEL_ON,
            DeviceCommandNames.SOLAR_PANEL_OFF,
        ),
        DeviceClass.CUSTOM: OpenParameterDevice(DeviceClass.CUSTOM),
    }
)
