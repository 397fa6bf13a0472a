"""Identity gate for privileged operations.

Tokens are issued by the external authentication service and verified here
statelessly on every request: signature and expiry via PyJWT, then the
subject and role claims are lifted into an ``Identity``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Collection, Dict, Mapping, Optional, Sequence

import jwt

from .errors import RejectionError, RejectionKind

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    subject: str
    role: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"subject": self.subject, "role": self.role}


class IdentityGate:
    def __init__(
        self,
        secret: str,
        *,
        algorithms: Sequence[str] = ("HS256",),
        leeway_seconds: float = 0,
        require_expiry: bool = True,
    ) -> None:
        self._secret = secret
        self._algorithms = list(algorithms)
        self._leeway = leeway_seconds
        self._required_claims = ["exp"] if require_expiry else []

    def authorize(self, raw_token: Optional[str]) -> Identity:
        """Verify ``raw_token`` and return the caller's identity.

        Raises:
            RejectionError: ``Unauthenticated`` when the token is missing,
                malformed, expired, badly signed or has no subject.
        """

        if not raw_token:
            raise RejectionError(RejectionKind.UNAUTHENTICATED, "No token provided")

        try:
            claims = jwt.decode(
                raw_token,
                self._secret,
                algorithms=self._algorithms,
                leeway=self._leeway,
                options={"require": self._required_claims},
            )
        except jwt.ExpiredSignatureError:
            raise RejectionError(
                RejectionKind.UNAUTHENTICATED, "Token expired"
            ) from None
        except jwt.InvalidTokenError as exc:
            LOGGER.debug("Token rejected: %s", exc)
            raise RejectionError(
                RejectionKind.UNAUTHENTICATED, "Invalid token"
            ) from None

        subject = claims.get("sub") or claims.get("id")
        if subject is None or subject == "":
            raise RejectionError(RejectionKind.UNAUTHENTICATED, "Token has no subject")

        role = claims.get("role")
        return Identity(
            subject=str(subject),
            role=str(role) if role is not None else None,
            claims=claims,
        )

    def authorize_header(self, header: Optional[str]) -> Identity:
        """Authorize an ``Authorization: Bearer <token>`` header value."""

        if not header:
            return self.authorize(None)
        scheme, _, token = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            raise RejectionError(
                RejectionKind.UNAUTHENTICATED, "Expected a Bearer token"
            )
        return self.authorize(token.strip())


def require_role(identity: Identity, roles: Collection[str]) -> None:
    """Reject ``identity`` unless its role is in ``roles``; empty allows anyone."""

    if roles and identity.role not in roles:
        raise RejectionError(
            RejectionKind.UNAUTHORIZED,
            f"Role {identity.role!r} may not perform this operation",
        )


def issue_token(
    secret: str,
    subject: str,
    *,
    role: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
    algorithm: str = "HS256",
    now: Optional[datetime] = None,
) -> str:
    """Sign a token the way the authentication service does (development aid)."""

    issued_at = now or datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": subject,
        "iat": issued_at,
        "exp": issued_at + expires_in,
    }
    if role is not None:
        claims["role"] = role
    return jwt.encode(claims, secret, algorithm=algorithm)
