from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import CategoryNotFound, InvalidDueDate, TaskNotFound, ValidationError
from ..models import TaskEntity, TaskStatus
from ..repositories import CategoryRepository, TaskFilter, TaskRepository
from ..schemas import BulkStatusUpdate, TaskCreate, TaskUpdate
from ..utils import utcnow

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class TaskService:
    """
    Owner-scoped task operations.

    Validation (due date, category ownership) runs before any write, so a
    rejected request never leaves partial changes behind.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        categories: CategoryRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._tasks = tasks
        self._categories = categories
        self._clock = clock

    def _check_due_date(self, due_date: Optional[datetime]) -> None:
        if due_date is not None and due_date < self._clock():
            raise InvalidDueDate()

    def _check_category(self, owner_id: int, category_id: Optional[int]) -> None:
        if category_id is not None and not self._categories.exists(category_id, owner_id):
            raise CategoryNotFound()

    def create(self, owner_id: int, payload: TaskCreate) -> TaskEntity:
        self._check_due_date(payload.due_date)
        self._check_category(owner_id, payload.category_id)
        return self._tasks.create(
            owner_id=owner_id,
            title=payload.title,
            description=payload.description,
            status=payload.status.value,
            priority=payload.priority.value,
            due_date=payload.due_date,
            category_id=payload.category_id,
        )

    def get(self, owner_id: int, task_id: int) -> TaskEntity:
        task = self._tasks.get(task_id, owner_id)
        if task is None:
            raise TaskNotFound()
        return task

    def list(self, owner_id: int, flt: TaskFilter) -> Tuple[List[TaskEntity], int]:
        self._check_category(owner_id, flt.category_id)
        return self._tasks.list(owner_id, flt)

    def update(self, owner_id: int, task_id: int, payload: TaskUpdate) -> TaskEntity:
        """
        Partial update: only fields present in the payload change.
        category_id None detaches, due_date None clears, description None clears.
        """
        current = self.get(owner_id, task_id)

        fields = payload.model_fields_set
        changes: Dict[str, Any] = {}
        if "title" in fields and payload.title is not None:
            changes["title"] = payload.title
        if "description" in fields:
            changes["description"] = payload.description or ""
        if "status" in fields and payload.status is not None:
            changes["status"] = payload.status.value
        if "priority" in fields and payload.priority is not None:
            changes["priority"] = payload.priority.value
        if "due_date" in fields:
            self._check_due_date(payload.due_date)
            changes["due_date"] = payload.due_date
        if "category_id" in fields:
            self._check_category(owner_id, payload.category_id)
            changes["category_id"] = payload.category_id

        if not changes:
            return current
        updated = self._tasks.update(task_id, owner_id, changes)
        if updated is None:
            raise TaskNotFound()
        return updated

    def update_status(self, owner_id: int, task_id: int, status: TaskStatus) -> TaskEntity:
        if not self._tasks.update_status(task_id, owner_id, status.value):
            raise TaskNotFound()
        return self.get(owner_id, task_id)

    def bulk_update_status(self, owner_id: int, payload: BulkStatusUpdate) -> Dict[str, int]:
        """
        Best effort: ids that are missing or owned by someone else are counted
        as failed instead of failing the request.
        """
        if not payload.task_ids:
            raise ValidationError("task IDs cannot be empty")

        total = len(payload.task_ids)
        success = self._tasks.bulk_update_status(payload.task_ids, owner_id, payload.status.value)
        logger.info(
            "Bulk status update owner=%s status=%s success=%s total=%s",
            owner_id, payload.status.value, success, total,
        )
        return {
            "success_count": success,
            "failed_count": total - success,
            "total_count": total,
        }

    def delete(self, owner_id: int, task_id: int) -> None:
        if not self._tasks.delete(task_id, owner_id):
            raise TaskNotFound()
        logger.info("Deleted task id=%s owner=%s", task_id, owner_id)
