from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import errors
from .models import (
    PRIORITY_RANK,
    CategoryEntity,
    CategoryRef,
    CategoryTaskCount,
    CategoryWithCounts,
    SortField,
    SortOrder,
    TaskEntity,
    TaskPriority,
    TaskStatus,
    UserEntity,
)
from .settings import Settings
from .utils import utcnow

MAX_PAGE_SIZE = 100

# Columns a partial update may touch; anything else is a programming error.
CATEGORY_MUTABLE_FIELDS = frozenset({"name", "description", "color"})
TASK_MUTABLE_FIELDS = frozenset({"title", "description", "status", "priority", "due_date", "category_id"})


@dataclass(frozen=True)
class TaskFilter:
    """
    Query parameters for listing tasks.
    """

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category_id: Optional[int] = None
    search: Optional[str] = None
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    page: int = 1
    page_size: int = 10

    def __post_init__(self) -> None:
        # Coerce plain strings and reject anything outside the allow-lists.
        try:
            object.__setattr__(self, "sort_by", SortField(self.sort_by))
            object.__setattr__(self, "sort_order", SortOrder(self.sort_order))
            if self.status is not None:
                object.__setattr__(self, "status", TaskStatus(self.status))
            if self.priority is not None:
                object.__setattr__(self, "priority", TaskPriority(self.priority))
        except ValueError as exc:
            raise errors.ValidationError(str(exc)) from exc
        if self.page < 1:
            raise errors.ValidationError("page must be >= 1")
        if not (1 <= self.page_size <= MAX_PAGE_SIZE):
            raise errors.ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        # Category ids start at 1, so 0 means "any category".
        if self.category_id == 0:
            object.__setattr__(self, "category_id", None)
        if self.category_id is not None and self.category_id < 0:
            raise errors.ValidationError("category_id must be >= 0")
        search = self.search.strip() if self.search else None
        object.__setattr__(self, "search", search or None)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def check_mutable_fields(changes: Mapping[str, Any], allowed: frozenset) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"cannot update fields: {sorted(unknown)}")


# PUBLIC_INTERFACE
class UserRepository(ABC):
    """Credential store contract."""

    @abstractmethod
    def create(self, username: str, email: str, password_hash: str, full_name: str) -> UserEntity:
        """Persist and return a new user. Raises Conflict if the username or email is taken."""

    @abstractmethod
    def get(self, user_id: int) -> Optional[UserEntity]:
        """Return a user by id, or None."""

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[UserEntity]:
        """Return a user by exact username, or None."""

    @abstractmethod
    def username_exists(self, username: str) -> bool:
        """True if the username is taken."""

    @abstractmethod
    def email_exists(self, email: str) -> bool:
        """True if the email is taken (case-insensitive)."""


# PUBLIC_INTERFACE
class CategoryRepository(ABC):
    """Category store contract. Every method is scoped to one owner."""

    @abstractmethod
    def create(self, owner_id: int, name: str, description: str, color: Optional[str]) -> CategoryEntity:
        """Persist and return a new category. Raises Conflict if the owner already uses the name."""

    @abstractmethod
    def get(self, category_id: int, owner_id: int) -> Optional[CategoryEntity]:
        """Return a live category owned by owner_id, or None."""

    @abstractmethod
    def exists(self, category_id: int, owner_id: int) -> bool:
        """True if a live category with this id belongs to owner_id."""

    @abstractmethod
    def name_taken(self, owner_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
        """True if another live category of owner_id already uses name."""

    @abstractmethod
    def list(self, owner_id: int, page: int, page_size: int) -> Tuple[List[CategoryWithCounts], int]:
        """
        Return one page of the owner's categories (newest first) and the total count.
        Each category carries task_count, pending_count and completed_count.
        """

    @abstractmethod
    def update(self, category_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[CategoryEntity]:
        """
        Apply changes to a live category. Return the updated entity or None if not found.
        Raises Conflict if a new name is already used by another live category of the owner.
        """

    @abstractmethod
    def delete(self, category_id: int, owner_id: int) -> bool:
        """
        Soft delete a category and detach its tasks.
        Return True if a live row was deleted, False otherwise.
        """


# PUBLIC_INTERFACE
class TaskRepository(ABC):
    """Task store contract. Every method is scoped to one owner."""

    @abstractmethod
    def create(
        self,
        owner_id: int,
        title: str,
        description: str,
        status: str,
        priority: str,
        due_date: Optional[datetime],
        category_id: Optional[int],
    ) -> TaskEntity:
        """Persist and return a new task."""

    @abstractmethod
    def get(self, task_id: int, owner_id: int) -> Optional[TaskEntity]:
        """Return a live task owned by owner_id, or None."""

    @abstractmethod
    def list(self, owner_id: int, flt: TaskFilter) -> Tuple[List[TaskEntity], int]:
        """
        Return one page of matching tasks and the total number of matches.
        - Filter by status, priority, category
        - Substring search across title and description (case-insensitive)
        - Sorting by an allow-listed field (asc/desc), null due dates last
        - Pagination by page/page_size
        """

    @abstractmethod
    def update(self, task_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[TaskEntity]:
        """Apply changes to a live task. Return the updated entity or None if not found."""

    @abstractmethod
    def update_status(self, task_id: int, owner_id: int, status: str) -> bool:
        """Set status on one task. Return False if no row matched."""

    @abstractmethod
    def bulk_update_status(self, task_ids: Sequence[int], owner_id: int, status: str) -> int:
        """Set status on the owner's live tasks among task_ids. Return the number of rows matched."""

    @abstractmethod
    def delete(self, task_id: int, owner_id: int) -> bool:
        """Soft delete a task. Return True if a live row was deleted."""


# PUBLIC_INTERFACE
class StatsRepository(ABC):
    """Read-only aggregates over an owner's live tasks."""

    @abstractmethod
    def count_tasks(self, owner_id: int) -> int:
        """Number of live tasks."""

    @abstractmethod
    def count_by_status(self, owner_id: int) -> Dict[str, int]:
        """Counts per status, only for statuses present."""

    @abstractmethod
    def count_by_priority(self, owner_id: int) -> Dict[str, int]:
        """Counts per priority, only for priorities present."""

    @abstractmethod
    def count_by_category(self, owner_id: int) -> List[CategoryTaskCount]:
        """Counts per live category, highest count first."""

    @abstractmethod
    def count_overdue(self, owner_id: int, now: datetime) -> int:
        """Tasks due strictly before now that are not completed."""

    @abstractmethod
    def list_overdue(self, owner_id: int, now: datetime) -> List[TaskEntity]:
        """Tasks due strictly before now that are not completed, earliest due first."""

    @abstractmethod
    def list_due_between(self, owner_id: int, start: datetime, end: datetime) -> List[TaskEntity]:
        """Not-completed tasks with start <= due_date <= end, earliest due first."""


@dataclass
class Repositories:
    """The set of stores one application instance works with."""

    users: UserRepository
    categories: CategoryRepository
    tasks: TaskRepository
    stats: StatsRepository


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryStore:
    """
    Thread-safe in-memory tables shared by the in-memory repositories.
    Rows are plain dicts; deleted rows keep a 'deleted_at' timestamp.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self.users: Dict[int, Dict[str, Any]] = {}
        self.categories: Dict[int, Dict[str, Any]] = {}
        self.tasks: Dict[int, Dict[str, Any]] = {}
        self._next_ids = {"users": 1, "categories": 1, "tasks": 1}

    def now(self) -> datetime:
        return utcnow()

    def allocate_id(self, table: str) -> int:
        with self.lock:
            i = self._next_ids[table]
            self._next_ids[table] += 1
            return i

    def live_category(self, category_id: Optional[int], owner_id: int) -> Optional[Dict[str, Any]]:
        if category_id is None:
            return None
        row = self.categories.get(category_id)
        if row is None or row["deleted_at"] is not None or row["user_id"] != owner_id:
            return None
        return row

    def live_tasks(self, owner_id: int) -> List[Dict[str, Any]]:
        return [t for t in self.tasks.values() if t["user_id"] == owner_id and t["deleted_at"] is None]

    def task_entity(self, row: Dict[str, Any]) -> TaskEntity:
        category = self.live_category(row["category_id"], row["user_id"])
        ref: Optional[CategoryRef] = None
        if category is not None:
            ref = {"id": category["id"], "name": category["name"], "color": category["color"]}
        entity = {k: v for k, v in row.items() if k != "deleted_at"}
        entity["category"] = ref
        return entity  # type: ignore[return-value]


def _public(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k != "deleted_at"}


class InMemoryUserRepository(UserRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def create(self, username: str, email: str, password_hash: str, full_name: str) -> UserEntity:
        # Check and insert under one lock so concurrent registrations cannot both win.
        with self._store.lock:
            if self.username_exists(username):
                raise errors.Conflict("username already exists")
            if self.email_exists(email):
                raise errors.Conflict("email already exists")
            now = self._store.now()
            row = {
                "id": self._store.allocate_id("users"),
                "username": username,
                "email": email,
                "password_hash": password_hash,
                "full_name": full_name,
                "created_at": now,
                "updated_at": now,
                "deleted_at": None,
            }
            self._store.users[row["id"]] = row
            return _public(row)  # type: ignore[return-value]

    def _live(self) -> Iterable[Dict[str, Any]]:
        return (u for u in self._store.users.values() if u["deleted_at"] is None)

    def get(self, user_id: int) -> Optional[UserEntity]:
        with self._store.lock:
            row = self._store.users.get(user_id)
            if row is None or row["deleted_at"] is not None:
                return None
            return _public(row)  # type: ignore[return-value]

    def get_by_username(self, username: str) -> Optional[UserEntity]:
        with self._store.lock:
            for row in self._live():
                if row["username"] == username:
                    return _public(row)  # type: ignore[return-value]
        return None

    def username_exists(self, username: str) -> bool:
        with self._store.lock:
            return any(row["username"] == username for row in self._store.users.values())

    def email_exists(self, email: str) -> bool:
        wanted = email.lower()
        with self._store.lock:
            return any(row["email"].lower() == wanted for row in self._store.users.values())


class InMemoryCategoryRepository(CategoryRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def create(self, owner_id: int, name: str, description: str, color: Optional[str]) -> CategoryEntity:
        with self._store.lock:
            if self.name_taken(owner_id, name):
                raise errors.Conflict("category with this name already exists")
            now = self._store.now()
            row = {
                "id": self._store.allocate_id("categories"),
                "name": name,
                "description": description,
                "color": color,
                "user_id": owner_id,
                "created_at": now,
                "updated_at": now,
                "deleted_at": None,
            }
            self._store.categories[row["id"]] = row
            return _public(row)  # type: ignore[return-value]

    def get(self, category_id: int, owner_id: int) -> Optional[CategoryEntity]:
        with self._store.lock:
            row = self._store.live_category(category_id, owner_id)
            return None if row is None else _public(row)  # type: ignore[return-value]

    def exists(self, category_id: int, owner_id: int) -> bool:
        with self._store.lock:
            return self._store.live_category(category_id, owner_id) is not None

    def name_taken(self, owner_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
        with self._store.lock:
            return any(
                c["user_id"] == owner_id
                and c["deleted_at"] is None
                and c["name"] == name
                and c["id"] != exclude_id
                for c in self._store.categories.values()
            )

    def list(self, owner_id: int, page: int, page_size: int) -> Tuple[List[CategoryWithCounts], int]:
        with self._store.lock:
            rows = [
                c for c in self._store.categories.values()
                if c["user_id"] == owner_id and c["deleted_at"] is None
            ]
            total = len(rows)
            rows.sort(key=lambda c: (c["created_at"], c["id"]), reverse=True)
            start = (page - 1) * page_size
            tasks = self._store.live_tasks(owner_id)

            items: List[CategoryWithCounts] = []
            for c in rows[start:start + page_size]:
                mine = [t for t in tasks if t["category_id"] == c["id"]]
                item = _public(c)
                item["task_count"] = len(mine)
                item["pending_count"] = sum(1 for t in mine if t["status"] == TaskStatus.PENDING.value)
                item["completed_count"] = sum(1 for t in mine if t["status"] == TaskStatus.COMPLETED.value)
                items.append(item)  # type: ignore[arg-type]
            return items, total

    def update(self, category_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[CategoryEntity]:
        check_mutable_fields(changes, CATEGORY_MUTABLE_FIELDS)
        with self._store.lock:
            row = self._store.live_category(category_id, owner_id)
            if row is None:
                return None
            if "name" in changes and self.name_taken(owner_id, changes["name"], exclude_id=category_id):
                raise errors.Conflict("category with this name already exists")
            row.update(changes)
            row["updated_at"] = self._store.now()
            return _public(row)  # type: ignore[return-value]

    def delete(self, category_id: int, owner_id: int) -> bool:
        with self._store.lock:
            row = self._store.live_category(category_id, owner_id)
            if row is None:
                return False
            now = self._store.now()
            row["deleted_at"] = now
            for t in self._store.live_tasks(owner_id):
                if t["category_id"] == category_id:
                    t["category_id"] = None
                    t["updated_at"] = now
            return True


def _sort_tasks(rows: List[Dict[str, Any]], flt: TaskFilter) -> List[Dict[str, Any]]:
    reverse = flt.sort_order is SortOrder.DESC

    def value(t: Dict[str, Any]) -> Any:
        if flt.sort_by is SortField.PRIORITY:
            return PRIORITY_RANK[t["priority"]]
        return t[flt.sort_by.value]

    present = [t for t in rows if value(t) is not None]
    missing = [t for t in rows if value(t) is None]
    present.sort(key=lambda t: (value(t), t["id"]), reverse=reverse)
    missing.sort(key=lambda t: t["id"], reverse=reverse)
    return present + missing


class InMemoryTaskRepository(TaskRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def create(
        self,
        owner_id: int,
        title: str,
        description: str,
        status: str,
        priority: str,
        due_date: Optional[datetime],
        category_id: Optional[int],
    ) -> TaskEntity:
        now = self._store.now()
        row = {
            "id": self._store.allocate_id("tasks"),
            "title": title,
            "description": description,
            "status": status,
            "priority": priority,
            "due_date": due_date,
            "user_id": owner_id,
            "category_id": category_id,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        with self._store.lock:
            self._store.tasks[row["id"]] = row
            return self._store.task_entity(row)

    def _live(self, task_id: int, owner_id: int) -> Optional[Dict[str, Any]]:
        row = self._store.tasks.get(task_id)
        if row is None or row["user_id"] != owner_id or row["deleted_at"] is not None:
            return None
        return row

    def get(self, task_id: int, owner_id: int) -> Optional[TaskEntity]:
        with self._store.lock:
            row = self._live(task_id, owner_id)
            return None if row is None else self._store.task_entity(row)

    def list(self, owner_id: int, flt: TaskFilter) -> Tuple[List[TaskEntity], int]:
        with self._store.lock:
            items = self._store.live_tasks(owner_id)

            # Filtering
            if flt.status is not None:
                items = [t for t in items if t["status"] == flt.status.value]
            if flt.priority is not None:
                items = [t for t in items if t["priority"] == flt.priority.value]
            if flt.category_id is not None:
                items = [t for t in items if t["category_id"] == flt.category_id]
            if flt.search:
                s = flt.search.casefold()
                items = [
                    t for t in items
                    if s in t["title"].casefold() or s in (t["description"] or "").casefold()
                ]

            total = len(items)
            page = _sort_tasks(items, flt)[flt.offset:flt.offset + flt.page_size]
            return [self._store.task_entity(t) for t in page], total

    def update(self, task_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[TaskEntity]:
        check_mutable_fields(changes, TASK_MUTABLE_FIELDS)
        with self._store.lock:
            row = self._live(task_id, owner_id)
            if row is None:
                return None
            row.update(changes)
            row["updated_at"] = self._store.now()
            return self._store.task_entity(row)

    def update_status(self, task_id: int, owner_id: int, status: str) -> bool:
        return self.bulk_update_status([task_id], owner_id, status) > 0

    def bulk_update_status(self, task_ids: Sequence[int], owner_id: int, status: str) -> int:
        with self._store.lock:
            now = self._store.now()
            matched = 0
            for task_id in set(task_ids):
                row = self._live(task_id, owner_id)
                if row is None:
                    continue
                row["status"] = status
                row["updated_at"] = now
                matched += 1
            return matched

    def delete(self, task_id: int, owner_id: int) -> bool:
        with self._store.lock:
            row = self._live(task_id, owner_id)
            if row is None:
                return False
            row["deleted_at"] = self._store.now()
            return True


class InMemoryStatsRepository(StatsRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def _count_by(self, owner_id: int, field: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._store.lock:
            for t in self._store.live_tasks(owner_id):
                counts[t[field]] = counts.get(t[field], 0) + 1
        return counts

    def count_tasks(self, owner_id: int) -> int:
        with self._store.lock:
            return len(self._store.live_tasks(owner_id))

    def count_by_status(self, owner_id: int) -> Dict[str, int]:
        return self._count_by(owner_id, "status")

    def count_by_priority(self, owner_id: int) -> Dict[str, int]:
        return self._count_by(owner_id, "priority")

    def count_by_category(self, owner_id: int) -> List[CategoryTaskCount]:
        with self._store.lock:
            counts: Dict[int, int] = {}
            for t in self._store.live_tasks(owner_id):
                if self._store.live_category(t["category_id"], owner_id) is not None:
                    counts[t["category_id"]] = counts.get(t["category_id"], 0) + 1
            result: List[CategoryTaskCount] = [
                {
                    "category_id": cid,
                    "category_name": self._store.categories[cid]["name"],
                    "task_count": n,
                }
                for cid, n in counts.items()
            ]
        result.sort(key=lambda c: (-c["task_count"], c["category_id"]))
        return result

    def _open_with_due(self, owner_id: int) -> List[Dict[str, Any]]:
        return [
            t for t in self._store.live_tasks(owner_id)
            if t["due_date"] is not None and t["status"] != TaskStatus.COMPLETED.value
        ]

    def count_overdue(self, owner_id: int, now: datetime) -> int:
        with self._store.lock:
            return sum(1 for t in self._open_with_due(owner_id) if t["due_date"] < now)

    def list_overdue(self, owner_id: int, now: datetime) -> List[TaskEntity]:
        with self._store.lock:
            rows = [t for t in self._open_with_due(owner_id) if t["due_date"] < now]
            rows.sort(key=lambda t: (t["due_date"], t["id"]))
            return [self._store.task_entity(t) for t in rows]

    def list_due_between(self, owner_id: int, start: datetime, end: datetime) -> List[TaskEntity]:
        with self._store.lock:
            rows = [t for t in self._open_with_due(owner_id) if start <= t["due_date"] <= end]
            rows.sort(key=lambda t: (t["due_date"], t["id"]))
            return [self._store.task_entity(t) for t in rows]


def in_memory_repositories() -> Repositories:
    store = InMemoryStore()
    return Repositories(
        users=InMemoryUserRepository(store),
        categories=InMemoryCategoryRepository(store),
        tasks=InMemoryTaskRepository(store),
        stats=InMemoryStatsRepository(store),
    )


# PUBLIC_INTERFACE
def get_repositories(settings: Settings) -> Repositories:
    """
    Factory returning the stores for the configured backend.
    - memory: in-memory tables (default)
    - sqlite: SQLite file at settings.sqlite_db_path
    """
    if settings.persistence_backend == "sqlite":
        from .db import sqlite_repositories

        return sqlite_repositories(settings.sqlite_db_path)
    return in_memory_repositories()
