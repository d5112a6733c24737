from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, TypedDict


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Ordering used when sorting by priority.
PRIORITY_RANK: Dict[str, int] = {
    TaskPriority.LOW.value: 1,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.HIGH.value: 3,
}


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    DUE_DATE = "due_date"
    PRIORITY = "priority"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# PUBLIC_INTERFACE
class UserEntity(TypedDict):
    """
    A registered account.

    Fields:
    - id: Unique integer identifier (starts at 1)
    - username: Unique login name (trimmed)
    - email: Unique, lower-cased email address
    - password_hash: bcrypt hash; never serialized to clients
    - full_name: Display name
    - created_at / updated_at: UTC timestamps
    """

    id: int
    username: str
    email: str
    password_hash: str
    full_name: str
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class CategoryEntity(TypedDict):
    """
    A named grouping of tasks owned by one user.

    Fields:
    - id: Unique integer identifier (starts at 1, never 0)
    - name: 1..100 chars, unique per owner among live categories
    - description: Up to 255 chars, empty when unset
    - color: Optional 7-character color code such as '#1e90ff'
    - user_id: Owner
    - created_at / updated_at: UTC timestamps
    """

    id: int
    name: str
    description: str
    color: Optional[str]
    user_id: int
    created_at: datetime
    updated_at: datetime


class CategoryWithCounts(CategoryEntity):
    """Category as returned by listings, with counts over the owner's live tasks."""

    task_count: int
    pending_count: int
    completed_count: int


class CategoryRef(TypedDict):
    id: int
    name: str
    color: Optional[str]


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A work item owned by one user.

    Fields:
    - id: Unique integer identifier
    - title: 1..200 chars (trimmed on input via schemas)
    - description: Free text, empty when unset
    - status: One of TaskStatus values
    - priority: One of TaskPriority values
    - due_date: Optional UTC due datetime
    - user_id: Owner
    - category_id: Optional linked category id
    - category: Live linked category (id, name, color), or None
    - created_at / updated_at: UTC timestamps
    """

    id: int
    title: str
    description: str
    status: str
    priority: str
    due_date: Optional[datetime]
    user_id: int
    category_id: Optional[int]
    category: Optional[CategoryRef]
    created_at: datetime
    updated_at: datetime


class CategoryTaskCount(TypedDict):
    category_id: int
    category_name: str
    task_count: int
