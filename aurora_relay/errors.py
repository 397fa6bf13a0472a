"""Rejection taxonomy shared by the validator, authenticator and identity gate."""

from __future__ import annotations

from enum import Enum
from typing import Dict


class RejectionKind(str, Enum):
    MISSING_FIELD = "MissingField"
    UNKNOWN_DEVICE = "UnknownDevice"
    UNKNOWN_COMMAND = "UnknownCommand"
    MISSING_PARAMETERS = "MissingParameters"
    INVALID_SIGNATURE = "InvalidSignature"
    UNAUTHENTICATED = "Unauthenticated"
    UNAUTHORIZED = "Unauthorized"


class RejectionError(Exception):
    """Raised when client input or credentials are rejected.

    Rejections are never process-fatal and never leave partial state behind.
    ``detail`` is human readable and must not contain key material or
    payload fragments.
    """

    def __init__(self, kind: RejectionKind, detail: str) -> None:
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail

    def as_dict(self) -> Dict[str, str]:
        return {"error": self.kind.value, "detail": self.detail}


class RelayConfigurationError(RuntimeError):
    """Raised when the relay cannot be configured."""
