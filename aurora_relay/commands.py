"""Command submission validation for the relay."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from .errors import RejectionError, RejectionKind
from .vocabulary import CommandVocabulary


@dataclass(frozen=True, slots=True)
class CommandSubmission:
    """Raw command as received from a control client.

    ``parameters`` keeps whatever the client sent (``None`` when the field was
    absent); the device entry in the vocabulary decides what is acceptable.
    """

    device: Any
    command: Any
    parameters: Any = None
    device_id: Any = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommandSubmission":
        return cls(
            device=payload.get("device"),
            command=payload.get("command"),
            parameters=payload.get("parameters"),
            device_id=payload.get("deviceId"),
        )


@dataclass(frozen=True, slots=True)
class AcceptedCommand:
    device: str
    command: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    device_id: str = ""

    def __post_init__(self) -> None:
        if not self.device_id:
            object.__setattr__(self, "device_id", self.device)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "command": self.command,
            "parameters": copy.deepcopy(self.parameters),
            "deviceId": self.device_id,
        }


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


# topic level separator, MQTT wildcards and NUL cannot appear in a device id
_RESERVED_ID_CHARACTERS = frozenset("/+#\x00")


def has_reserved_characters(device_id: str) -> bool:
    return any(char in _RESERVED_ID_CHARACTERS for char in device_id)


def validate(
    submission: CommandSubmission, vocabulary: CommandVocabulary
) -> AcceptedCommand:
    """Validate a submission against the vocabulary.

    Checks run in order and stop at the first failure: required fields,
    known device class, then the device entry's own rule (exact command match
    for fixed vocabularies, a parameters object for open ones). Nothing is
    written anywhere; callers store the returned command themselves.

    Raises:
        RejectionError: with ``MissingField``, ``UnknownDevice``,
            ``UnknownCommand`` or ``MissingParameters``.
    """

    if _is_blank(submission.device):
        raise RejectionError(RejectionKind.MISSING_FIELD, "Field 'device' is required")
    if _is_blank(submission.command):
        raise RejectionError(
            RejectionKind.MISSING_FIELD, "Field 'command' is required"
        )
    if submission.device_id is not None and _is_blank(submission.device_id):
        raise RejectionError(
            RejectionKind.MISSING_FIELD, "Field 'deviceId' must be a non-empty string"
        )
    if submission.device_id is not None and has_reserved_characters(
        submission.device_id
    ):
        raise RejectionError(
            RejectionKind.MISSING_FIELD,
            "Field 'deviceId' cannot contain '/', '+', '#' or NUL",
        )

    spec = vocabulary.get(submission.device)
    if spec is None:
        raise RejectionError(
            RejectionKind.UNKNOWN_DEVICE, f"Unknown device {submission.device!r}"
        )

    spec.check(submission)

    parameters = submission.parameters
    return AcceptedCommand(
        device=submission.device,
        command=submission.command,
        parameters=copy.deepcopy(parameters) if parameters is not None else {},
        device_id=submission.device_id or submission.device,
    )
