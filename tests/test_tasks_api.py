from datetime import timedelta

from conftest import parse_dt

TASKS = "/api/v1/tasks"


def create_task(client, headers, title="Test Task", **extra):
    res = client.post(TASKS, json={"title": title, **extra}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def create_category(client, headers, name="Work"):
    res = client.post("/api/v1/categories", json={"name": name}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def assert_task_shape(task: dict):
    for key in [
        "id", "title", "description", "status", "priority", "due_date",
        "user_id", "category_id", "category", "created_at", "updated_at",
    ]:
        assert key in task
    assert isinstance(task["id"], int)
    parse_dt(task["created_at"])
    parse_dt(task["updated_at"])
    if task["due_date"] is not None:
        parse_dt(task["due_date"])


class TestTaskCreate:
    def test_defaults(self, client, alice):
        res = client.post(TASKS, json={"title": "  Buy milk  "}, headers=alice["headers"])
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["message"] == "Task created successfully"
        task = body["data"]
        assert_task_shape(task)
        assert task["title"] == "Buy milk"
        assert task["description"] == ""
        assert task["status"] == "pending"
        assert task["priority"] == "medium"
        assert task["due_date"] is None
        assert task["category"] is None
        assert task["user_id"] == alice["user"]["id"]

    def test_with_due_date_and_category(self, client, alice, clock):
        cat = create_category(client, alice["headers"])
        due = clock.now + timedelta(days=2)
        task = create_task(
            client, alice["headers"], "Report",
            description="Numbers", priority="high", due_date=due.isoformat(), category_id=cat["id"],
        )
        assert parse_dt(task["due_date"]) == due
        assert task["category_id"] == cat["id"]
        assert task["category"] == {"id": cat["id"], "name": "Work", "color": None}

    def test_date_only_due_date_is_midnight_utc(self, client, alice, clock):
        day = (clock.now + timedelta(days=3)).date()
        task = create_task(client, alice["headers"], due_date=day.isoformat())
        assert task["due_date"].startswith(day.isoformat() + "T00:00:00")

    def test_past_due_date_is_rejected(self, client, alice, clock):
        past = (clock.now - timedelta(minutes=5)).isoformat()
        res = client.post(TASKS, json={"title": "late", "due_date": past}, headers=alice["headers"])
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": "due date cannot be in the past"}

    def test_foreign_or_unknown_category_is_rejected(self, client, alice, bob):
        theirs = create_category(client, bob["headers"])
        for category_id in (theirs["id"], 999):
            res = client.post(TASKS, json={"title": "t", "category_id": category_id}, headers=alice["headers"])
            assert res.status_code == 400
            assert res.json()["error"] == "category not found"

    def test_category_zero_means_none(self, client, alice):
        task = create_task(client, alice["headers"], category_id=0)
        assert task["category_id"] is None

    def test_validation(self, client, alice):
        for payload in [
            {},
            {"title": "   "},
            {"title": "x" * 201},
            {"title": "t", "status": "archived"},
            {"title": "t", "priority": "urgent"},
            {"title": "t", "due_date": "next tuesday"},
            {"title": "t", "category_id": -1},
        ]:
            res = client.post(TASKS, json=payload, headers=alice["headers"])
            assert res.status_code == 400, payload
            assert res.json()["error"] == "Validation failed"


class TestTaskReadUpdateDelete:
    def test_get(self, client, alice):
        task = create_task(client, alice["headers"])
        res = client.get(f"{TASKS}/{task['id']}", headers=alice["headers"])
        assert res.status_code == 200
        assert res.json()["data"]["id"] == task["id"]

        res = client.get(f"{TASKS}/999999", headers=alice["headers"])
        assert res.status_code == 404
        assert res.json() == {"success": False, "error": "task not found"}

    def test_non_numeric_id(self, client, alice):
        res = client.get(f"{TASKS}/abc", headers=alice["headers"])
        assert res.status_code == 400

    def test_status_only_update_leaves_other_fields(self, client, alice, clock):
        cat = create_category(client, alice["headers"])
        due = (clock.now + timedelta(days=1)).isoformat()
        task = create_task(
            client, alice["headers"], "Write", description="Report",
            priority="high", due_date=due, category_id=cat["id"],
        )
        res = client.put(f"{TASKS}/{task['id']}", json={"status": "completed"}, headers=alice["headers"])
        assert res.status_code == 200
        updated = res.json()["data"]
        assert updated["status"] == "completed"
        for field in ("title", "description", "priority", "due_date", "category_id", "category", "created_at"):
            assert updated[field] == task[field], field

    def test_explicit_null_and_zero_clear_fields(self, client, alice, clock):
        cat = create_category(client, alice["headers"])
        due = (clock.now + timedelta(days=1)).isoformat()
        task = create_task(
            client, alice["headers"], description="Report", due_date=due, category_id=cat["id"]
        )
        res = client.put(
            f"{TASKS}/{task['id']}",
            json={"category_id": 0, "due_date": None, "description": None},
            headers=alice["headers"],
        )
        updated = res.json()["data"]
        assert updated["category_id"] is None
        assert updated["category"] is None
        assert updated["due_date"] is None
        assert updated["description"] == ""
        assert updated["title"] == task["title"]

        # Re-attach, then detach with null
        res = client.put(f"{TASKS}/{task['id']}", json={"category_id": cat["id"]}, headers=alice["headers"])
        assert res.json()["data"]["category_id"] == cat["id"]
        res = client.put(f"{TASKS}/{task['id']}", json={"category_id": None}, headers=alice["headers"])
        assert res.json()["data"]["category_id"] is None

    def test_update_validates_before_writing(self, client, alice, bob, clock):
        task = create_task(client, alice["headers"], "Original")
        theirs = create_category(client, bob["headers"])
        past = (clock.now - timedelta(days=1)).isoformat()

        res = client.put(
            f"{TASKS}/{task['id']}", json={"title": "Changed", "due_date": past}, headers=alice["headers"]
        )
        assert res.status_code == 400
        assert res.json()["error"] == "due date cannot be in the past"

        res = client.put(
            f"{TASKS}/{task['id']}", json={"title": "Changed", "category_id": theirs["id"]}, headers=alice["headers"]
        )
        assert res.status_code == 400
        assert res.json()["error"] == "category not found"

        current = client.get(f"{TASKS}/{task['id']}", headers=alice["headers"]).json()["data"]
        assert current["title"] == "Original"
        assert current["category_id"] is None

    def test_empty_update_returns_current(self, client, alice):
        task = create_task(client, alice["headers"])
        res = client.put(f"{TASKS}/{task['id']}", json={}, headers=alice["headers"])
        assert res.status_code == 200
        assert res.json()["data"] == task

    def test_patch_status(self, client, alice):
        task = create_task(client, alice["headers"])
        res = client.patch(f"{TASKS}/{task['id']}/status", json={"status": "in_progress"}, headers=alice["headers"])
        assert res.status_code == 200
        assert res.json()["data"]["status"] == "in_progress"
        assert res.json()["data"]["title"] == task["title"]

        res = client.patch(f"{TASKS}/{task['id']}/status", json={"status": "done"}, headers=alice["headers"])
        assert res.status_code == 400

    def test_delete_is_soft_and_final(self, client, alice):
        task = create_task(client, alice["headers"])
        res = client.delete(f"{TASKS}/{task['id']}", headers=alice["headers"])
        assert res.status_code == 200
        assert res.json()["message"] == "Task deleted successfully"

        assert client.get(f"{TASKS}/{task['id']}", headers=alice["headers"]).status_code == 404
        assert client.delete(f"{TASKS}/{task['id']}", headers=alice["headers"]).status_code == 404
        res = client.get(TASKS, headers=alice["headers"])
        assert res.json()["pagination"]["total"] == 0


class TestTaskIsolation:
    def test_cross_owner_access_is_not_found(self, client, alice, bob):
        task = create_task(client, alice["headers"], "Private")
        url = f"{TASKS}/{task['id']}"

        assert client.get(url, headers=bob["headers"]).status_code == 404
        assert client.put(url, json={"title": "Hijacked"}, headers=bob["headers"]).status_code == 404
        assert client.patch(f"{url}/status", json={"status": "completed"}, headers=bob["headers"]).status_code == 404
        assert client.delete(url, headers=bob["headers"]).status_code == 404

        current = client.get(url, headers=alice["headers"]).json()["data"]
        assert current["title"] == "Private"
        assert current["status"] == "pending"

    def test_lists_only_own_tasks(self, client, alice, bob):
        create_task(client, alice["headers"], "mine")
        create_task(client, bob["headers"], "theirs")
        res = client.get(TASKS, headers=alice["headers"])
        assert [t["title"] for t in res.json()["data"]] == ["mine"]

    def test_filtering_by_foreign_category(self, client, alice, bob):
        theirs = create_category(client, bob["headers"])
        res = client.get(TASKS, params={"category_id": theirs["id"]}, headers=alice["headers"])
        assert res.status_code == 400
        assert res.json()["error"] == "category not found"


class TestTaskListing:
    def test_pagination(self, client, alice):
        for i in range(25):
            create_task(client, alice["headers"], f"task {i}")

        seen = []
        for page, expected in ((1, 10), (2, 10), (3, 5)):
            res = client.get(TASKS, params={"page": page, "page_size": 10}, headers=alice["headers"])
            assert res.status_code == 200
            body = res.json()
            assert len(body["data"]) == expected
            assert body["pagination"] == {"total": 25, "page": page, "page_size": 10, "total_pages": 3}
            seen.extend(t["id"] for t in body["data"])
        assert len(set(seen)) == 25

    def test_default_order_is_newest_first(self, client, alice):
        ids = [create_task(client, alice["headers"], f"t{i}")["id"] for i in range(3)]
        res = client.get(TASKS, headers=alice["headers"])
        assert [t["id"] for t in res.json()["data"]] == list(reversed(ids))

    def test_filters_and_search(self, client, alice):
        cat = create_category(client, alice["headers"])
        create_task(client, alice["headers"], "Quarterly report", status="completed", priority="high",
                    category_id=cat["id"])
        create_task(client, alice["headers"], "Groceries", description="Milk and REPORT cards")
        create_task(client, alice["headers"], "Gym", priority="low")

        def titles(**params):
            res = client.get(TASKS, params={"sort_order": "asc", **params}, headers=alice["headers"])
            assert res.status_code == 200, res.text
            return [t["title"] for t in res.json()["data"]]

        assert titles(status="completed") == ["Quarterly report"]
        assert titles(priority="low") == ["Gym"]
        assert titles(category_id=cat["id"]) == ["Quarterly report"]
        assert titles(search="report") == ["Quarterly report", "Groceries"]
        assert titles(search="REPORT", status="pending") == ["Groceries"]
        assert titles(search="nothing-matches") == []

    def test_category_zero_lists_everything(self, client, alice):
        cat = create_category(client, alice["headers"])
        create_task(client, alice["headers"], "filed", category_id=cat["id"])
        create_task(client, alice["headers"], "loose")

        res = client.get(TASKS, params={"category_id": 0}, headers=alice["headers"])
        assert res.status_code == 200, res.text
        assert res.json()["pagination"]["total"] == 2
        assert sorted(t["title"] for t in res.json()["data"]) == ["filed", "loose"]

    def test_sorting(self, client, alice, clock):
        create_task(client, alice["headers"], "undated-low", priority="low")
        create_task(client, alice["headers"], "later-high", priority="high",
                    due_date=(clock.now + timedelta(days=5)).isoformat())
        create_task(client, alice["headers"], "sooner-medium", priority="medium",
                    due_date=(clock.now + timedelta(days=1)).isoformat())

        def titles(sort_by, sort_order):
            res = client.get(TASKS, params={"sort_by": sort_by, "sort_order": sort_order}, headers=alice["headers"])
            return [t["title"] for t in res.json()["data"]]

        assert titles("priority", "desc") == ["later-high", "sooner-medium", "undated-low"]
        assert titles("priority", "asc") == ["undated-low", "sooner-medium", "later-high"]
        assert titles("due_date", "asc") == ["sooner-medium", "later-high", "undated-low"]
        assert titles("due_date", "desc") == ["later-high", "sooner-medium", "undated-low"]

    def test_invalid_query_parameters(self, client, alice):
        for params in [
            {"sort_by": "title"},
            {"sort_by": "created_at; DROP TABLE tasks"},
            {"sort_order": "up"},
            {"status": "archived"},
            {"page": 0},
            {"page_size": 101},
            {"page_size": 0},
            {"category_id": -1},
        ]:
            res = client.get(TASKS, params=params, headers=alice["headers"])
            assert res.status_code == 400, params
            assert res.json()["error"] == "Validation failed"


class TestBulkStatus:
    def test_counts_foreign_and_missing_ids_as_failed(self, client, alice, bob):
        t1 = create_task(client, alice["headers"], "one")
        t2 = create_task(client, alice["headers"], "two")
        foreign = create_task(client, bob["headers"], "bob's")

        res = client.patch(
            f"{TASKS}/bulk/status",
            json={"task_ids": [t1["id"], t2["id"], foreign["id"]], "status": "completed"},
            headers=alice["headers"],
        )
        assert res.status_code == 200
        assert res.json()["data"] == {"success_count": 2, "failed_count": 1, "total_count": 3}

        for t in (t1, t2):
            assert client.get(f"{TASKS}/{t['id']}", headers=alice["headers"]).json()["data"]["status"] == "completed"
        assert client.get(f"{TASKS}/{foreign['id']}", headers=bob["headers"]).json()["data"]["status"] == "pending"

    def test_unknown_ids(self, client, alice):
        t1 = create_task(client, alice["headers"])
        res = client.patch(
            f"{TASKS}/bulk/status",
            json={"task_ids": [t1["id"], 99998, 99999], "status": "in_progress"},
            headers=alice["headers"],
        )
        assert res.json()["data"] == {"success_count": 1, "failed_count": 2, "total_count": 3}

    def test_empty_list(self, client, alice):
        res = client.patch(f"{TASKS}/bulk/status", json={"task_ids": [], "status": "completed"},
                           headers=alice["headers"])
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": "task IDs cannot be empty"}

    def test_invalid_payload(self, client, alice):
        for payload in [{"task_ids": [1]}, {"task_ids": [1], "status": "done"}, {"status": "completed"}]:
            res = client.patch(f"{TASKS}/bulk/status", json=payload, headers=alice["headers"])
            assert res.status_code == 400, payload
