"""
Token issuing/verification and password hashing.

The signing secret is handed to ``TokenService`` at construction; nothing here
reads global state, so tests can run several services with different secrets
side by side.
"""
from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import bcrypt
import jwt

from .errors import ConfigError, ExpiredToken, InvalidToken
from .utils import utcnow

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["exp", "iat", "nbf", "user_id"]


@dataclass(frozen=True)
class TokenClaims:
    owner_id: int
    username: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


# PUBLIC_INTERFACE
class TokenService:
    """Issue and verify HS256 access tokens carrying the caller's user id."""

    def __init__(
        self,
        secret: str,
        ttl_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret = secret or ""
        self._ttl_hours = ttl_hours
        self._clock = clock

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigError("JWT secret not initialized")
        return self._secret

    def issue(self, owner_id: int, username: str, ttl_hours: Optional[int] = None) -> str:
        """
        Mint a signed token for the given user.

        iat = nbf = now, exp = now + ttl_hours (the service default when omitted).
        Raises ConfigError if no signing secret is configured.
        """
        secret = self._require_secret()
        now = self._clock()
        ttl = self._ttl_hours if ttl_hours is None else ttl_hours
        payload: Dict[str, Any] = {
            "sub": str(owner_id),
            "user_id": owner_id,
            "username": username,
            "iat": now,
            "nbf": now,
            "exp": now + timedelta(hours=ttl),
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """
        Validate signature, algorithm and validity window and return the claims.

        Raises:
            ExpiredToken: signature is fine but now is outside [nbf, exp].
            InvalidToken: malformed token, bad signature, other algorithm or missing claims.
            ConfigError: no signing secret configured.
        """
        secret = self._require_secret()
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken("token has expired") from exc
        except jwt.ImmatureSignatureError as exc:
            raise ExpiredToken("token is not yet valid") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(str(exc) or "invalid token") from exc

        user_id = payload.get("user_id")
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
            raise InvalidToken("token does not carry a valid user reference")

        return TokenClaims(
            owner_id=user_id,
            username=str(payload.get("username", "")),
            issued_at=_from_timestamp(payload["iat"]),
            not_before=_from_timestamp(payload["nbf"]),
            expires_at=_from_timestamp(payload["exp"]),
        )


def _prehash(password: str) -> bytes:
    """SHA-256 the password first so bcrypt's 72-byte input limit never truncates it."""
    digest = hashlib.sha256(password.encode("utf-8")).digest()
    return base64.b64encode(digest)


# PUBLIC_INTERFACE
class PasswordHasher:
    """Salted bcrypt hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self._rounds = rounds
        self._dummy: Optional[bytes] = None

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(_prehash(password), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(_prehash(password), password_hash.encode("utf-8"))
        except ValueError:
            # Stored value is not a bcrypt hash
            logger.warning("Stored password hash has an unexpected format")
            return False

    def burn(self, password: str) -> None:
        """Spend the same work as a real check; used when the username is unknown."""
        if self._dummy is None:
            self._dummy = bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=self._rounds))
        bcrypt.checkpw(_prehash(password), self._dummy)
