from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import ServiceError
from .logging_setup import setup_logging
from .repositories import get_repositories
from .routers import auth as auth_router
from .routers import categories as categories_router
from .routers import stats as stats_router
from .routers import tasks as tasks_router
from .security import PasswordHasher, TokenService
from .services import AuthService, CategoryService, StatsService, TaskService
from .settings import Settings, get_settings
from .utils import error_envelope, utcnow

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "auth", "description": "Registration, login and the current user's profile."},
    {"name": "categories", "description": "CRUD operations for the caller's categories."},
    {
        "name": "tasks",
        "description": "CRUD operations for tasks with filtering, sorting, pagination and bulk status updates.",
    },
    {"name": "stats", "description": "Dashboard statistics, upcoming and overdue tasks."},
]


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.message))

    # Global exception handler for consistent JSON on validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return request validation errors as a 400 envelope.

        Response format:
            {
                "success": false,
                "error": "Validation failed",
                "details": [... pydantic/fastapi error details ...]
            }
        """
        return JSONResponse(
            status_code=400,
            content=error_envelope("Validation failed", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_envelope("Internal server error"))


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build the application and its object graph.

    Args:
        settings: configuration to use; read from the environment when omitted.
        clock: time source for due-date checks and statistics (UTC now by default).
    """
    settings = settings or get_settings()
    clock = clock or utcnow

    problem = settings.secret_problem()
    if problem:
        logger.warning(problem)

    app = FastAPI(
        title="Task Backend",
        description="Backend API service for managing personal tasks and categories with token authentication.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    repos = get_repositories(settings)
    tokens = TokenService(settings.jwt_secret, ttl_hours=settings.jwt_expiry_hours)
    app.state.settings = settings
    app.state.token_service = tokens
    app.state.auth_service = AuthService(repos.users, tokens, PasswordHasher(settings.bcrypt_rounds))
    app.state.category_service = CategoryService(repos.categories)
    app.state.task_service = TaskService(repos.tasks, repos.categories, clock=clock)
    app.state.stats_service = StatsService(repos.stats, clock=clock)

    _install_exception_handlers(app)

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    # Include routers
    app.include_router(auth_router.router)
    app.include_router(categories_router.router)
    app.include_router(tasks_router.router)
    app.include_router(stats_router.router)
    return app


app = create_app()


# PUBLIC_INTERFACE
def run() -> None:
    """Console entry point: configure logging and serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)
