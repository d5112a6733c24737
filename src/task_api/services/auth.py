from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import Conflict, InvalidCredentials, UserNotFound
from ..models import UserEntity
from ..repositories import UserRepository
from ..schemas import LoginRequest, RegisterRequest
from ..security import PasswordHasher, TokenService

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class AuthService:
    """Registration, login and profile lookup."""

    def __init__(self, users: UserRepository, tokens: TokenService, hasher: PasswordHasher) -> None:
        self._users = users
        self._tokens = tokens
        self._hasher = hasher

    def register(self, payload: RegisterRequest) -> Dict[str, Any]:
        """
        Create an account and return {token, user}.

        Raises:
            Conflict: username or email (case-insensitive) is already taken.
        """
        username = payload.username.strip()
        email = payload.email.strip().lower()
        full_name = payload.full_name.strip()

        if self._users.username_exists(username):
            raise Conflict("username already exists")
        if self._users.email_exists(email):
            raise Conflict("email already exists")

        user = self._users.create(
            username=username,
            email=email,
            password_hash=self._hasher.hash(payload.password),
            full_name=full_name,
        )
        token = self._tokens.issue(user["id"], user["username"])
        logger.info("Registered user id=%s username=%s", user["id"], user["username"])
        return {"token": token, "user": user}

    def login(self, payload: LoginRequest) -> Dict[str, Any]:
        """
        Check credentials and return {token, user}.

        Unknown username and wrong password raise the same InvalidCredentials.
        """
        username = payload.username.strip()
        user = self._users.get_by_username(username)
        if user is None:
            self._hasher.burn(payload.password)
            logger.info("Login rejected for username=%s", username)
            raise InvalidCredentials()
        if not self._hasher.verify(payload.password, user["password_hash"]):
            logger.info("Login rejected for username=%s", username)
            raise InvalidCredentials()

        token = self._tokens.issue(user["id"], user["username"])
        return {"token": token, "user": user}

    def get_user(self, user_id: int) -> UserEntity:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFound()
        return user
