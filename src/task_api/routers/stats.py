from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..auth import CurrentUser
from ..deps import get_current_user, get_stats_service
from ..schemas import ApiResponse, DashboardStatsOut, ErrorResponse, TaskOut
from ..services import StatsService
from ..utils import success_envelope

router = APIRouter(
    prefix="/api/v1/stats",
    tags=["stats"],
    dependencies=[Depends(get_current_user)],
    responses={401: {"model": ErrorResponse, "description": "Missing or invalid token"}},
)


# PUBLIC_INTERFACE
@router.get(
    "/dashboard",
    response_model=ApiResponse[DashboardStatsOut],
    summary="Dashboard statistics",
    description="Counts by status, priority and category, completion rate and overdue count.",
)
def dashboard(
    user: CurrentUser = Depends(get_current_user),
    service: StatsService = Depends(get_stats_service),
):
    return success_envelope("Statistics retrieved successfully", service.dashboard(user.user_id))


# PUBLIC_INTERFACE
@router.get(
    "/upcoming",
    response_model=ApiResponse[List[TaskOut]],
    summary="Upcoming tasks",
    description="Open tasks due within the next `days` days, earliest first. Non-positive values mean 7.",
)
def upcoming(
    days: Optional[int] = Query(None, description="Look-ahead window in days (default 7)"),
    user: CurrentUser = Depends(get_current_user),
    service: StatsService = Depends(get_stats_service),
):
    return success_envelope("Upcoming tasks retrieved successfully", service.upcoming(user.user_id, days))


# PUBLIC_INTERFACE
@router.get(
    "/overdue",
    response_model=ApiResponse[List[TaskOut]],
    summary="Overdue tasks",
    description="Open tasks whose due date has passed, earliest first.",
)
def overdue(
    user: CurrentUser = Depends(get_current_user),
    service: StatsService = Depends(get_stats_service),
):
    return success_envelope("Overdue tasks retrieved successfully", service.overdue(user.user_id))
