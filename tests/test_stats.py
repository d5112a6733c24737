from datetime import timedelta

import pytest

from task_api.services.stats import DEFAULT_UPCOMING_DAYS, StatsService

from conftest import FrozenClock

STATS = "/api/v1/stats"


def create_task(client, headers, title="t", **extra):
    res = client.post("/api/v1/tasks", json={"title": title, **extra}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


class TestDashboard:
    def test_completion_rate(self, client, alice, bob):
        for _ in range(3):
            create_task(client, alice["headers"], status="completed")
        for _ in range(2):
            create_task(client, alice["headers"], status="pending")
        create_task(client, bob["headers"], status="pending")

        res = client.get(f"{STATS}/dashboard", headers=alice["headers"])
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["total_tasks"] == 5
        assert data["by_status"] == {"completed": 3, "pending": 2}
        assert data["by_priority"] == {"medium": 5}
        assert data["completion_rate"] == pytest.approx(60.0)
        assert data["overdue_tasks"] == 0

    def test_empty_dashboard(self, client, alice):
        data = client.get(f"{STATS}/dashboard", headers=alice["headers"]).json()["data"]
        assert data == {
            "total_tasks": 0,
            "by_status": {},
            "by_priority": {},
            "by_category": [],
            "completion_rate": 0.0,
            "overdue_tasks": 0,
        }

    def test_by_category(self, client, alice):
        work = client.post("/api/v1/categories", json={"name": "Work"}, headers=alice["headers"]).json()["data"]
        home = client.post("/api/v1/categories", json={"name": "Home"}, headers=alice["headers"]).json()["data"]
        create_task(client, alice["headers"], category_id=home["id"])
        create_task(client, alice["headers"], category_id=home["id"])
        create_task(client, alice["headers"], category_id=work["id"])
        create_task(client, alice["headers"])

        data = client.get(f"{STATS}/dashboard", headers=alice["headers"]).json()["data"]
        assert data["by_category"] == [
            {"category_id": home["id"], "category_name": "Home", "task_count": 2},
            {"category_id": work["id"], "category_name": "Work", "task_count": 1},
        ]

    def test_deleted_tasks_are_not_counted(self, client, alice):
        task = create_task(client, alice["headers"], status="completed")
        create_task(client, alice["headers"])
        client.delete(f"/api/v1/tasks/{task['id']}", headers=alice["headers"])
        data = client.get(f"{STATS}/dashboard", headers=alice["headers"]).json()["data"]
        assert data["total_tasks"] == 1
        assert data["completion_rate"] == 0.0


class TestDueDates:
    def test_overdue_after_time_passes(self, client, alice, clock):
        soon = create_task(client, alice["headers"], "soon", due_date=(clock.now + timedelta(hours=1)).isoformat())
        create_task(client, alice["headers"], "done", status="completed",
                    due_date=(clock.now + timedelta(hours=1)).isoformat())
        create_task(client, alice["headers"], "later", due_date=(clock.now + timedelta(days=30)).isoformat())
        create_task(client, alice["headers"], "undated")

        assert client.get(f"{STATS}/overdue", headers=alice["headers"]).json()["data"] == []

        clock.advance(days=1)
        res = client.get(f"{STATS}/overdue", headers=alice["headers"])
        assert res.status_code == 200
        assert [t["id"] for t in res.json()["data"]] == [soon["id"]]
        dashboard = client.get(f"{STATS}/dashboard", headers=alice["headers"]).json()["data"]
        assert dashboard["overdue_tasks"] == 1

    def test_upcoming_window(self, client, alice, clock):
        create_task(client, alice["headers"], "in-2-days", due_date=(clock.now + timedelta(days=2)).isoformat())
        create_task(client, alice["headers"], "in-1-day", due_date=(clock.now + timedelta(days=1)).isoformat())
        create_task(client, alice["headers"], "in-10-days", due_date=(clock.now + timedelta(days=10)).isoformat())
        create_task(client, alice["headers"], "done", status="completed",
                    due_date=(clock.now + timedelta(days=1)).isoformat())

        def titles(**params):
            res = client.get(f"{STATS}/upcoming", params=params, headers=alice["headers"])
            assert res.status_code == 200
            return [t["title"] for t in res.json()["data"]]

        assert titles() == ["in-1-day", "in-2-days"]
        assert titles(days=1) == ["in-1-day"]
        assert titles(days=30) == ["in-1-day", "in-2-days", "in-10-days"]
        assert titles(days=0) == titles() == titles(days=-5)


class FakeStats:
    """Stats store returning fixed numbers."""

    def __init__(self, by_status):
        self.by_status = by_status
        self.windows = []

    def count_tasks(self, owner_id):
        return sum(self.by_status.values())

    def count_by_status(self, owner_id):
        return dict(self.by_status)

    def count_by_priority(self, owner_id):
        return {}

    def count_by_category(self, owner_id):
        return []

    def count_overdue(self, owner_id, now):
        return 0

    def list_overdue(self, owner_id, now):
        return []

    def list_due_between(self, owner_id, start, end):
        self.windows.append((start, end))
        return []


class TestStatsService:
    def test_completion_rate_from_counts(self):
        service = StatsService(FakeStats({"completed": 3, "pending": 2}), clock=FrozenClock())
        data = service.dashboard(1)
        assert data["total_tasks"] == 5
        assert data["completion_rate"] == pytest.approx(60.0)

    def test_no_tasks_means_zero_rate(self):
        assert StatsService(FakeStats({}), clock=FrozenClock()).dashboard(1)["completion_rate"] == 0.0

    @pytest.mark.parametrize("days,expected", [(None, DEFAULT_UPCOMING_DAYS), (0, 7), (-3, 7), (3, 3)])
    def test_upcoming_window_length(self, days, expected):
        clock = FrozenClock()
        stats = FakeStats({})
        StatsService(stats, clock=clock).upcoming(1, days)
        assert stats.windows == [(clock.now, clock.now + timedelta(days=expected))]
