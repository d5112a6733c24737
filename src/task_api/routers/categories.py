from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Path, Query, status

from ..auth import CurrentUser
from ..deps import get_category_service, get_current_user
from ..repositories import MAX_PAGE_SIZE
from ..schemas import ApiResponse, CategoryCreate, CategoryOut, CategoryUpdate, ErrorResponse, PaginatedResponse
from ..services import CategoryService
from ..utils import pagination_envelope, success_envelope

router = APIRouter(
    prefix="/api/v1/categories",
    tags=["categories"],
    dependencies=[Depends(get_current_user)],
    responses={401: {"model": ErrorResponse, "description": "Missing or invalid token"}},
)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PaginatedResponse[CategoryOut],
    summary="List categories",
    description=(
        "List the caller's categories, newest first.\n\n"
        "Each category carries task_count, pending_count and completed_count."
    ),
)
def list_categories(
    page: int = Query(1, ge=1, description="1-based page number"),
    page_size: int = Query(10, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    items, total = service.list(user.user_id, page, page_size)
    return pagination_envelope("Categories retrieved successfully", items, total, page, page_size)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=ApiResponse[CategoryOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create category",
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        409: {"model": ErrorResponse, "description": "Name already used by another category"},
    },
)
def create_category(
    payload: CategoryCreate,
    user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return success_envelope("Category created successfully", service.create(user.user_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/{category_id}",
    response_model=ApiResponse[CategoryOut],
    summary="Get category",
    responses={404: {"model": ErrorResponse, "description": "Category not found"}},
)
def get_category(
    category_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return success_envelope("Category retrieved successfully", service.get(user.user_id, category_id))


# PUBLIC_INTERFACE
@router.put(
    "/{category_id}",
    response_model=ApiResponse[CategoryOut],
    summary="Update category",
    description="Change the fields present in the body; omitted fields stay as they are.",
    responses={
        404: {"model": ErrorResponse, "description": "Category not found"},
        409: {"model": ErrorResponse, "description": "Name already used by another category"},
    },
)
def update_category(
    payload: CategoryUpdate,
    category_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    updated = service.update(user.user_id, category_id, payload)
    return success_envelope("Category updated successfully", updated)


# PUBLIC_INTERFACE
@router.delete(
    "/{category_id}",
    response_model=ApiResponse[Any],
    summary="Delete category",
    description="Soft delete a category. Its tasks are kept and lose their category.",
    responses={404: {"model": ErrorResponse, "description": "Category not found"}},
)
def delete_category(
    category_id: int = Path(..., ge=1),
    user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    service.delete(user.user_id, category_id)
    return success_envelope("Category deleted successfully")
