from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import TaskPriority, TaskStatus
from .utils import as_utc

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]

DataT = TypeVar("DataT")


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Normalize due_date input into an aware UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are taken as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_utc(value)

    if isinstance(value, date):
        return as_utc(datetime(value.year, value.month, value.day))

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return as_utc(datetime(d.year, d.month, d.day))
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e

    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_text(value: Optional[str], field: str, max_len: int, required: bool) -> Optional[str]:
    if value is None:
        if required:
            raise ValueError(f"{field} is required")
        return None
    s = value.strip()
    if required and not s:
        raise ValueError(f"{field} cannot be empty")
    if len(s) > max_len:
        raise ValueError(f"{field} must be at most {max_len} characters")
    return s


def _clean_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if len(s) != 7:
        raise ValueError("color must be exactly 7 characters, e.g. '#1e90ff'")
    return s


def _zero_means_none(value: Optional[int]) -> Optional[int]:
    # Category ids start at 1, so 0 is only ever "no category".
    if value == 0:
        return None
    return value


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class RegisterRequest(BaseModel):
    """Schema for registering a new account."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "johndoe",
                "email": "john@example.com",
                "password": "s3cret-pass",
                "full_name": "John Doe",
            }
        }
    )

    username: str = Field(..., description="Unique login name (3..50 chars)")
    email: EmailStr = Field(..., description="Unique email address; stored lower-cased")
    password: str = Field(..., min_length=6, max_length=128, description="Password (min 6 chars)")
    full_name: str = Field(..., description="Display name")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        s = v.strip()
        if not (3 <= len(s) <= 50):
            raise ValueError("username length must be between 3 and 50 characters")
        return s

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        s = v.lower()
        if len(s) > 100:
            raise ValueError("email must be at most 100 characters")
        return s

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        return _clean_text(v, "full_name", 100, required=True)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class LoginRequest(BaseModel):
    """Schema for logging in with username and password."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """Public view of an account. The password hash is never part of it."""

    id: int
    username: str
    email: str
    full_name: str
    created_at: datetime
    updated_at: datetime


class AuthOut(BaseModel):
    token: str = Field(..., description="Bearer access token")
    user: UserOut


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class CategoryCreate(BaseModel):
    """Schema for creating a category."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"name": "Work", "description": "Office tasks", "color": "#1e90ff"}
        }
    )

    name: str = Field(..., description="Category name (1..100 chars)")
    description: str = Field(default="", description="Optional description (max 255 chars)")
    color: Optional[str] = Field(default=None, description="Optional 7-character color code")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_text(v, "name", 100, required=True)  # type: ignore[return-value]

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        return _clean_text(v, "description", 255, required=False) or ""

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _clean_color(v)


# PUBLIC_INTERFACE
class CategoryUpdate(BaseModel):
    """
    Schema for updating a category.
    Only fields present in the request body are changed. An explicit empty or
    null description/color clears that field.
    """

    name: Optional[str] = Field(default=None, description="New name (1..100 chars)")
    description: Optional[str] = Field(default=None, description="New description; empty clears it")
    color: Optional[str] = Field(default=None, description="New color; null or empty clears it")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _clean_text(v, "name", 100, required=True)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        return _clean_text(v, "description", 255, required=False)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> Optional[str]:
        return _clean_color(v)


# PUBLIC_INTERFACE
class CategoryOut(BaseModel):
    """Schema returned by the API for a category."""

    id: int
    name: str
    description: str
    color: Optional[str] = None
    user_id: int
    created_at: datetime
    updated_at: datetime
    task_count: Optional[int] = Field(default=None, description="Live tasks in this category (listings only)")
    pending_count: Optional[int] = Field(default=None, description="Pending tasks (listings only)")
    completed_count: Optional[int] = Field(default=None, description="Completed tasks (listings only)")


class CategoryRefOut(BaseModel):
    id: int
    name: str
    color: Optional[str] = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Write report",
                "description": "Quarterly numbers",
                "status": "pending",
                "priority": "high",
                "due_date": "2030-02-01T09:00:00Z",
                "category_id": 1,
            }
        }
    )

    title: str = Field(..., description="Short title for the task (1..200 chars)")
    description: str = Field(default="", description="Optional detailed description")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Workflow status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC",
    )
    category_id: Optional[int] = Field(default=None, ge=0, description="Optional category id; 0 means none")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_text(v, "title", 200, required=True)  # type: ignore[return-value]

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to datetime.
        """
        return _parse_due_date(v)

    @field_validator("category_id")
    @classmethod
    def normalize_category(cls, v: Optional[int]) -> Optional[int]:
        return _zero_means_none(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for updating an existing task.
    All fields are optional; only fields present in the body are updated.
    - category_id null or 0 detaches the category
    - due_date null clears the due date
    - description null or "" clears the description
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"status": "completed"}
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the task (1..200 chars)")
    description: Optional[str] = Field(default=None, description="Detailed description")
    status: Optional[TaskStatus] = Field(default=None, description="Workflow status")
    priority: Optional[TaskPriority] = Field(default=None, description="Priority")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time; null clears it")
    category_id: Optional[int] = Field(default=None, ge=0, description="Category id; null or 0 detaches")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce 1..200 length.
        """
        if v is None:
            return v
        return _clean_text(v, "title", 200, required=True)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)

    @field_validator("category_id")
    @classmethod
    def normalize_category(cls, v: Optional[int]) -> Optional[int]:
        return _zero_means_none(v)


class TaskStatusUpdate(BaseModel):
    status: TaskStatus = Field(..., description="New status")


# PUBLIC_INTERFACE
class BulkStatusUpdate(BaseModel):
    """Set one status on many tasks. Ids that are missing or not yours are counted as failed."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"task_ids": [1, 2, 3], "status": "completed"}}
    )

    task_ids: List[int] = Field(..., max_length=1000, description="Task ids to update")
    status: TaskStatus = Field(..., description="New status")


class BulkUpdateResult(BaseModel):
    success_count: int
    failed_count: int
    total_count: int


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task.
    """

    id: int = Field(..., description="Unique identifier of the task")
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime] = Field(default=None, description="Due date/time as an ISO8601 datetime")
    user_id: int
    category_id: Optional[int] = None
    category: Optional[CategoryRefOut] = Field(default=None, description="Linked category, if it still exists")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class CategoryTaskCountOut(BaseModel):
    category_id: int
    category_name: str
    task_count: int


# PUBLIC_INTERFACE
class DashboardStatsOut(BaseModel):
    """Aggregates over the caller's live tasks."""

    total_tasks: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_category: List[CategoryTaskCountOut]
    completion_rate: float = Field(..., description="completed / total * 100, 0 when there are no tasks")
    overdue_tasks: int


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel, Generic[DataT]):
    """Envelope for single-object responses."""

    success: bool = True
    message: str
    data: Optional[DataT] = None


class PaginationMeta(BaseModel):
    total: int = Field(..., description="Total number of items matching the query")
    page: int = Field(..., description="Current page (1-based)")
    page_size: int = Field(..., description="Page size applied to the query")
    total_pages: int = Field(..., description="ceil(total / page_size)")


class PaginatedResponse(BaseModel, Generic[DataT]):
    """Envelope for paginated list responses."""

    success: bool = True
    message: str
    data: List[DataT]
    pagination: PaginationMeta


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None
