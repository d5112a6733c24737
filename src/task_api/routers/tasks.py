from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from ..auth import CurrentUser
from ..deps import get_current_user, get_task_service
from ..models import SortField, SortOrder, TaskPriority, TaskStatus
from ..repositories import MAX_PAGE_SIZE, TaskFilter
from ..schemas import (
    ApiResponse,
    BulkStatusUpdate,
    BulkUpdateResult,
    ErrorResponse,
    PaginatedResponse,
    TaskCreate,
    TaskOut,
    TaskStatusUpdate,
    TaskUpdate,
)
from ..services import TaskService
from ..utils import pagination_envelope, success_envelope

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
    dependencies=[Depends(get_current_user)],
    responses={401: {"model": ErrorResponse, "description": "Missing or invalid token"}},
)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=ApiResponse[TaskOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create task",
    description="Create a task for the caller. The due date may not be in the past.",
    responses={
        201: {"description": "Task created successfully"},
        400: {"model": ErrorResponse, "description": "Validation error, past due date or unknown category"},
    },
)
def create_task(
    payload: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """
    Create a new task.
    """
    return success_envelope("Task created successfully", service.create(user.user_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PaginatedResponse[TaskOut],
    summary="List tasks",
    description=(
        "List the caller's tasks with optional filters, sorting and pagination.\n\n"
        "Query parameters:\n"
        "- status, priority, category_id: exact-match filters\n"
        "- search: case-insensitive substring match on title or description\n"
        "- sort_by: created_at, updated_at, due_date or priority (low < medium < high)\n"
        "- sort_order: asc or desc; tasks without a due date sort last\n"
        "- page, page_size: 1-based page and items per page (1..100)"
    ),
    responses={400: {"model": ErrorResponse, "description": "Invalid query parameters or unknown category"}},
)
def list_tasks(
    status_: Optional[TaskStatus] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[TaskPriority] = Query(None, description="Filter by priority"),
    category_id: Optional[int] = Query(None, ge=0, description="Filter by category id; 0 means no filter"),
    search: Optional[str] = Query(None, description="Search text for title/description"),
    sort_by: SortField = Query(SortField.CREATED_AT, description="Sort field"),
    sort_order: SortOrder = Query(SortOrder.DESC, description="Sort direction"),
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(10, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """
    List tasks with pagination and filters.
    """
    flt = TaskFilter(
        status=status_,
        priority=priority,
        category_id=category_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    items, total = service.list(user.user_id, flt)
    return pagination_envelope("Tasks retrieved successfully", items, total, flt.page, flt.page_size)


# Registered before the /{task_id} routes so "bulk" is never read as an id.
# PUBLIC_INTERFACE
@router.patch(
    "/bulk/status",
    response_model=ApiResponse[BulkUpdateResult],
    summary="Bulk status update",
    description=(
        "Set one status on many tasks. Ids that do not exist or belong to someone "
        "else are skipped and counted in failed_count."
    ),
    responses={400: {"model": ErrorResponse, "description": "Empty or invalid id list"}},
)
def bulk_update_status(
    payload: BulkStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    result = service.bulk_update_status(user.user_id, payload)
    return success_envelope("Tasks updated successfully", result)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=ApiResponse[TaskOut],
    summary="Get task",
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
def get_task(
    task_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """
    Retrieve a single task by its ID.
    """
    return success_envelope("Task retrieved successfully", service.get(user.user_id, task_id))


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=ApiResponse[TaskOut],
    summary="Update task",
    description=(
        "Partially update a task: only fields present in the body change. "
        "category_id null or 0 detaches the category; due_date null clears it."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Validation error, past due date or unknown category"},
        404: {"model": ErrorResponse, "description": "Task not found"},
    },
)
def update_task(
    payload: TaskUpdate,
    task_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    return success_envelope("Task updated successfully", service.update(user.user_id, task_id, payload))


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}/status",
    response_model=ApiResponse[TaskOut],
    summary="Update task status",
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
def update_task_status(
    payload: TaskStatusUpdate,
    task_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = service.update_status(user.user_id, task_id, payload.status)
    return success_envelope("Task status updated successfully", task)


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    response_model=ApiResponse[Any],
    summary="Delete task",
    description="Soft delete a task.",
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
def delete_task(
    task_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    service.delete(user.user_id, task_id)
    return success_envelope("Task deleted successfully")
