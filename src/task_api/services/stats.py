from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..models import TaskEntity, TaskStatus
from ..repositories import StatsRepository
from ..utils import utcnow

DEFAULT_UPCOMING_DAYS = 7


# PUBLIC_INTERFACE
class StatsService:
    """Read-only aggregation over the caller's live tasks."""

    def __init__(self, stats: StatsRepository, clock: Callable[[], datetime] = utcnow) -> None:
        self._stats = stats
        self._clock = clock

    def dashboard(self, owner_id: int) -> Dict[str, Any]:
        """
        Totals, per-status/priority/category counts, completion rate and overdue count.

        completion_rate is completed / total * 100, and 0.0 when there are no tasks.
        """
        now = self._clock()
        total = self._stats.count_tasks(owner_id)
        by_status = self._stats.count_by_status(owner_id)

        completed = by_status.get(TaskStatus.COMPLETED.value, 0)
        completion_rate = (completed / total * 100) if total else 0.0

        return {
            "total_tasks": total,
            "by_status": by_status,
            "by_priority": self._stats.count_by_priority(owner_id),
            "by_category": self._stats.count_by_category(owner_id),
            "completion_rate": completion_rate,
            "overdue_tasks": self._stats.count_overdue(owner_id, now),
        }

    def upcoming(self, owner_id: int, days: Optional[int] = None) -> List[TaskEntity]:
        """Open tasks due within the next `days` days (7 when missing or not positive)."""
        if days is None or days <= 0:
            days = DEFAULT_UPCOMING_DAYS
        now = self._clock()
        return self._stats.list_due_between(owner_id, now, now + timedelta(days=days))

    def overdue(self, owner_id: int) -> List[TaskEntity]:
        return self._stats.list_overdue(owner_id, self._clock())
