"""
FastAPI dependencies.

The object graph is built once in ``create_app`` and parked on ``app.state``;
these helpers hand the pieces to the endpoints.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from .auth import CurrentUser, authorize
from .security import TokenService
from .services import AuthService, CategoryService, StatsService, TaskService

# Declared as an API key header so the scheme shows up in the OpenAPI document;
# the value is checked by authorize(), not by FastAPI.
_authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_category_service(request: Request) -> CategoryService:
    return request.app.state.category_service


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_stats_service(request: Request) -> StatsService:
    return request.app.state.stats_service


# PUBLIC_INTERFACE
def get_current_user(
    request: Request,
    authorization: Optional[str] = Depends(_authorization_header),
    tokens: TokenService = Depends(get_token_service),
) -> CurrentUser:
    """
    Authorization gate for protected endpoints.

    Raises Unauthorized (401) when the bearer token is missing or rejected.
    On success the identity is also stored on ``request.state.user``.
    """
    user = authorize(authorization, tokens)
    request.state.user = user
    return user
