from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ExpiredToken, InvalidToken, Unauthorized
from .security import TokenService

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
REJECTION_MESSAGE = "Invalid or expired token"


@dataclass(frozen=True)
class CurrentUser:
    """Identity resolved from a verified bearer token."""

    user_id: int
    username: str


# PUBLIC_INTERFACE
def extract_bearer_token(header: Optional[str]) -> str:
    """
    Return the token part of an ``Authorization: Bearer <token>`` header.

    The scheme is matched case-sensitively and must be followed by exactly one
    space. Raises Unauthorized when the header is missing, uses another scheme,
    or carries an empty token.
    """
    if not header:
        raise Unauthorized("Authorization header required")
    if not header.startswith(BEARER_PREFIX):
        raise Unauthorized("Authorization header must use the Bearer scheme")
    token = header[len(BEARER_PREFIX):]
    if not token or token[0].isspace():
        raise Unauthorized("Authorization token is empty")
    return token


# PUBLIC_INTERFACE
def authorize(header: Optional[str], tokens: TokenService) -> CurrentUser:
    """
    Resolve the caller behind an Authorization header.

    Expired and invalid tokens are logged differently but rejected with the
    same Unauthorized error, so callers cannot tell them apart.
    """
    token = extract_bearer_token(header)
    try:
        claims = tokens.verify(token)
    except ExpiredToken as exc:
        logger.info("Rejected token: %s", exc.message)
        raise Unauthorized(REJECTION_MESSAGE) from exc
    except InvalidToken as exc:
        logger.warning("Rejected token: %s", exc.message)
        raise Unauthorized(REJECTION_MESSAGE) from exc
    return CurrentUser(user_id=claims.owner_id, username=claims.username)
