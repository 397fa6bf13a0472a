"""Keyed-hash authentication of actuator status reports.

Each actuator shares one symmetric secret with the relay. A report carries
``mac = HMAC-SHA256(secret, canonicalize(payload))`` as lowercase hex; the
relay recomputes it and compares in constant time before accepting the
payload as the device's latest status.

Canonical form is compact JSON with sorted keys and UTF-8 output, which is
byte-for-byte what firmware produces with ``JSON.stringify`` over a payload
whose keys are already sorted.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from .errors import RejectionError, RejectionKind

LOGGER = logging.getLogger(__name__)


def canonicalize(payload: Any) -> bytes:
    """Serialize ``payload`` deterministically for signing.

    Raises:
        TypeError: for values JSON cannot represent.
        ValueError: for NaN/Infinity or circular structures.
    """

    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def _hmac(secret: str) -> hmac.HMAC:
    return hmac.HMAC(secret.encode("utf-8"), hashes.SHA256())


def compute_mac(secret: str, payload: Any) -> str:
    """Return the hex MAC a device holding ``secret`` sends for ``payload``."""

    digest = _hmac(secret)
    digest.update(canonicalize(payload))
    return digest.finalize().hex()


@dataclass(frozen=True, slots=True)
class StatusReport:
    device_id: Any
    payload: Any
    mac: Any

    @classmethod
    def from_payload(cls, body: Mapping[str, Any]) -> "StatusReport":
        mac = body.get("mac")
        if mac is None:
            # firmware built against the first server revision sends "hmac"
            mac = body.get("hmac")
        return cls(device_id=body.get("deviceId"), payload=body.get("payload"), mac=mac)


@dataclass(frozen=True, slots=True)
class VerifiedStatus:
    device_id: str
    payload: Dict[str, Any]
    verified_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "payload": copy.deepcopy(self.payload),
            "verifiedAt": self.verified_at.isoformat(timespec="seconds"),
        }


class DeviceAuthenticator:
    """Admits status reports signed with a provisioned device secret."""

    def __init__(
        self,
        secrets: Mapping[str, str],
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._secrets: Dict[str, str] = dict(secrets)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def is_provisioned(self, device_id: str) -> bool:
        return bool(self._secrets.get(device_id))

    def authenticate(self, report: StatusReport) -> VerifiedStatus:
        """Verify ``report`` and return its payload for storage and broadcast.

        Raises:
            RejectionError: ``MissingField`` when a field is absent,
                ``UnknownDevice`` when no usable secret is provisioned,
                ``InvalidSignature`` when the MAC does not verify or the
                payload cannot be canonicalized.
        """

        missing = [
            name
            for name, value in (
                ("deviceId", report.device_id),
                ("payload", report.payload),
                ("mac", report.mac),
            )
            if value is None or value == ""
        ]
        if missing:
            raise RejectionError(
                RejectionKind.MISSING_FIELD,
                "Missing fields: " + ", ".join(missing),
            )
        if not isinstance(report.device_id, str):
            raise RejectionError(
                RejectionKind.MISSING_FIELD, "Field 'deviceId' must be a string"
            )
        if not isinstance(report.payload, Mapping):
            raise RejectionError(
                RejectionKind.MISSING_FIELD, "Field 'payload' must be an object"
            )

        secret = self._secrets.get(report.device_id)
        if not secret:
            raise RejectionError(
                RejectionKind.UNKNOWN_DEVICE, f"Unknown device {report.device_id!r}"
            )

        if not self._verify(secret, report.payload, report.mac):
            LOGGER.info("Rejected status report from %s: bad MAC", report.device_id)
            raise RejectionError(RejectionKind.INVALID_SIGNATURE, "Invalid signature")

        return VerifiedStatus(
            device_id=report.device_id,
            payload=copy.deepcopy(dict(report.payload)),
            verified_at=self._clock(),
        )

    @staticmethod
    def _verify(secret: str, payload: Mapping[str, Any], mac: Any) -> bool:
        try:
            message = canonicalize(payload)
            supplied = bytes.fromhex(mac)
        except (TypeError, ValueError, RecursionError):
            return False

        digest = _hmac(secret)
        digest.update(message)
        try:
            digest.verify(supplied)
        except InvalidSignature:
            return False
        return True
