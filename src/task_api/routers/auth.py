from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..auth import CurrentUser
from ..deps import get_auth_service, get_current_user
from ..schemas import ApiResponse, AuthOut, ErrorResponse, LoginRequest, RegisterRequest, UserOut
from ..services import AuthService
from ..utils import success_envelope

router = APIRouter(
    prefix="/api/v1/auth",
    tags=["auth"],
)


# PUBLIC_INTERFACE
@router.post(
    "/register",
    response_model=ApiResponse[AuthOut],
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account and return an access token for it.",
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        409: {"model": ErrorResponse, "description": "Username or email already exists"},
    },
)
def register(payload: RegisterRequest, service: AuthService = Depends(get_auth_service)):
    """
    Register a new user.
    """
    return success_envelope("User registered successfully", service.register(payload))


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=ApiResponse[AuthOut],
    summary="Login",
    description="Exchange username and password for an access token.",
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
    },
)
def login(payload: LoginRequest, service: AuthService = Depends(get_auth_service)):
    return success_envelope("Login successful", service.login(payload))


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=ApiResponse[UserOut],
    summary="Current user",
    description="Return the profile of the authenticated caller.",
    responses={
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        404: {"model": ErrorResponse, "description": "User no longer exists"},
    },
)
def me(
    user: CurrentUser = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    return success_envelope("User retrieved successfully", service.get_user(user.user_id))
