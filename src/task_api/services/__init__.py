"""
Business logic between the routers and the repositories.

Services validate input before touching a store, translate "no matching row"
into NotFound, and never see HTTP objects.
"""
from __future__ import annotations

from .auth import AuthService
from .categories import CategoryService
from .stats import StatsService
from .tasks import TaskService

__all__ = ["AuthService", "CategoryService", "StatsService", "TaskService"]
