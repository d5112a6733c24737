from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence, Tuple

from .errors import Conflict
from .models import (
    CategoryEntity,
    CategoryTaskCount,
    CategoryWithCounts,
    SortField,
    SortOrder,
    TaskEntity,
    TaskStatus,
    UserEntity,
)
from .repositories import (
    CATEGORY_MUTABLE_FIELDS,
    TASK_MUTABLE_FIELDS,
    CategoryRepository,
    Repositories,
    StatsRepository,
    TaskFilter,
    TaskRepository,
    UserRepository,
    check_mutable_fields,
)
from .utils import as_utc, utcnow

# Fixed ORDER BY fragments; the requested sort field only selects a key here.
_SORT_EXPRESSIONS: Dict[SortField, str] = {
    SortField.CREATED_AT: "t.created_at",
    SortField.UPDATED_AT: "t.updated_at",
    SortField.DUE_DATE: "t.due_date",
    SortField.PRIORITY: "CASE t.priority WHEN 'low' THEN 1 WHEN 'medium' THEN 2 WHEN 'high' THEN 3 END",
}
_SORT_DIRECTIONS: Dict[SortOrder, str] = {SortOrder.ASC: "ASC", SortOrder.DESC: "DESC"}

# Older SQLite builds allow at most 999 bound variables per statement.
_BULK_CHUNK_SIZE = 500

_CATEGORY_NAME_TAKEN = "category with this name already exists"

_TASK_SELECT = """
    SELECT t.*, c.name AS category_name, c.color AS category_color
    FROM tasks t
    LEFT JOIN categories c
        ON c.id = t.category_id AND c.user_id = t.user_id AND c.deleted_at IS NULL
"""

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        full_name TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        color TEXT NULL,
        user_id INTEGER NOT NULL REFERENCES users(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_categories_user_name
        ON categories(user_id, name) WHERE deleted_at IS NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'in_progress', 'completed')),
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high')),
        due_date TEXT NULL,
        user_id INTEGER NOT NULL REFERENCES users(id),
        category_id INTEGER NULL REFERENCES categories(id),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_user_due_date ON tasks(user_id, due_date)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id)",
]


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC text so that string comparison matches time order."""
    if value is None:
        return None
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _casefold(value: Optional[str]) -> Optional[str]:
    return None if value is None else value.casefold()


def _like_pattern(term: str) -> str:
    escaped = term.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


class SQLiteDatabase:
    """
    Owns the SQLite file: creates the schema and hands out one connection per unit of work.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self.connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)


def _row_to_user(row: sqlite3.Row) -> UserEntity:
    return {
        "id": int(row["id"]),
        "username": str(row["username"]),
        "email": str(row["email"]),
        "password_hash": str(row["password_hash"]),
        "full_name": str(row["full_name"]),
        "created_at": _from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": _from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


def _row_to_category(row: sqlite3.Row) -> CategoryEntity:
    return {
        "id": int(row["id"]),
        "name": str(row["name"]),
        "description": row["description"] or "",
        "color": row["color"],
        "user_id": int(row["user_id"]),
        "created_at": _from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": _from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


def _row_to_task(row: sqlite3.Row) -> TaskEntity:
    category = None
    if row["category_name"] is not None:
        category = {"id": int(row["category_id"]), "name": row["category_name"], "color": row["category_color"]}
    return {
        "id": int(row["id"]),
        "title": str(row["title"]),
        "description": row["description"] or "",
        "status": str(row["status"]),
        "priority": str(row["priority"]),
        "due_date": _from_db(row["due_date"]),
        "user_id": int(row["user_id"]),
        "category_id": int(row["category_id"]) if row["category_id"] is not None else None,
        "category": category,  # type: ignore[typeddict-item]
        "created_at": _from_db(row["created_at"]),  # type: ignore[typeddict-item]
        "updated_at": _from_db(row["updated_at"]),  # type: ignore[typeddict-item]
    }


class SQLiteUserRepository(UserRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def create(self, username: str, email: str, password_hash: str, full_name: str) -> UserEntity:
        now = _to_db(utcnow())
        with self._db.connect() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO users (username, email, password_hash, full_name, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (username, email, password_hash, full_name, now, now),
                )
            except sqlite3.IntegrityError as exc:
                # A concurrent registration won the UNIQUE index
                if not _is_unique_violation(exc):
                    raise
                if "users.email" in str(exc):
                    raise Conflict("email already exists") from exc
                raise Conflict("username already exists") from exc
            row = conn.execute("SELECT * FROM users WHERE id = ?", (cur.lastrowid,)).fetchone()
            assert row is not None
            return _row_to_user(row)

    def get(self, user_id: int) -> Optional[UserEntity]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,)
            ).fetchone()
            return _row_to_user(row) if row else None

    def get_by_username(self, username: str) -> Optional[UserEntity]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ? AND deleted_at IS NULL", (username,)
            ).fetchone()
            return _row_to_user(row) if row else None

    def username_exists(self, username: str) -> bool:
        with self._db.connect() as conn:
            row = conn.execute("SELECT 1 FROM users WHERE username = ? LIMIT 1", (username,)).fetchone()
            return row is not None

    def email_exists(self, email: str) -> bool:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM users WHERE lower(email) = lower(?) LIMIT 1", (email,)
            ).fetchone()
            return row is not None


class SQLiteCategoryRepository(CategoryRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    @staticmethod
    def _fetch(conn: sqlite3.Connection, category_id: int, owner_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM categories WHERE id = ? AND user_id = ? AND deleted_at IS NULL",
            (category_id, owner_id),
        ).fetchone()

    def create(self, owner_id: int, name: str, description: str, color: Optional[str]) -> CategoryEntity:
        now = _to_db(utcnow())
        with self._db.connect() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO categories (name, description, color, user_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (name, description, color, owner_id, now, now),
                )
            except sqlite3.IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise
                raise Conflict(_CATEGORY_NAME_TAKEN) from exc
            row = self._fetch(conn, int(cur.lastrowid), owner_id)
            assert row is not None
            return _row_to_category(row)

    def get(self, category_id: int, owner_id: int) -> Optional[CategoryEntity]:
        with self._db.connect() as conn:
            row = self._fetch(conn, category_id, owner_id)
            return _row_to_category(row) if row else None

    def exists(self, category_id: int, owner_id: int) -> bool:
        with self._db.connect() as conn:
            return self._fetch(conn, category_id, owner_id) is not None

    def name_taken(self, owner_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
        sql = "SELECT 1 FROM categories WHERE user_id = ? AND name = ? AND deleted_at IS NULL"
        params: List[Any] = [owner_id, name]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        with self._db.connect() as conn:
            return conn.execute(sql + " LIMIT 1", params).fetchone() is not None

    def list(self, owner_id: int, page: int, page_size: int) -> Tuple[List[CategoryWithCounts], int]:
        with self._db.connect() as conn:
            count_row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM categories WHERE user_id = ? AND deleted_at IS NULL",
                (owner_id,),
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                """
                SELECT c.*,
                    COUNT(t.id) AS task_count,
                    COALESCE(SUM(CASE WHEN t.status = ? THEN 1 ELSE 0 END), 0) AS pending_count,
                    COALESCE(SUM(CASE WHEN t.status = ? THEN 1 ELSE 0 END), 0) AS completed_count
                FROM categories c
                LEFT JOIN tasks t
                    ON t.category_id = c.id AND t.user_id = c.user_id AND t.deleted_at IS NULL
                WHERE c.user_id = ? AND c.deleted_at IS NULL
                GROUP BY c.id
                ORDER BY c.created_at DESC, c.id DESC
                LIMIT ? OFFSET ?
                """,
                (
                    TaskStatus.PENDING.value,
                    TaskStatus.COMPLETED.value,
                    owner_id,
                    page_size,
                    (page - 1) * page_size,
                ),
            ).fetchall()

            items: List[CategoryWithCounts] = []
            for r in rows:
                item: Dict[str, Any] = dict(_row_to_category(r))
                item["task_count"] = int(r["task_count"])
                item["pending_count"] = int(r["pending_count"])
                item["completed_count"] = int(r["completed_count"])
                items.append(item)  # type: ignore[arg-type]
            return items, total

    def update(self, category_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[CategoryEntity]:
        check_mutable_fields(changes, CATEGORY_MUTABLE_FIELDS)
        assignments = [f"{field} = ?" for field in changes] + ["updated_at = ?"]
        params = [*changes.values(), _to_db(utcnow()), category_id, owner_id]
        with self._db.connect() as conn:
            try:
                cur = conn.execute(
                    f"""
                    UPDATE categories SET {', '.join(assignments)}
                    WHERE id = ? AND user_id = ? AND deleted_at IS NULL
                    """,
                    params,
                )
            except sqlite3.IntegrityError as exc:
                if not _is_unique_violation(exc):
                    raise
                raise Conflict(_CATEGORY_NAME_TAKEN) from exc
            if cur.rowcount == 0:
                return None
            row = self._fetch(conn, category_id, owner_id)
            return _row_to_category(row) if row else None

    def delete(self, category_id: int, owner_id: int) -> bool:
        now = _to_db(utcnow())
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE categories SET deleted_at = ?
                WHERE id = ? AND user_id = ? AND deleted_at IS NULL
                """,
                (now, category_id, owner_id),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                """
                UPDATE tasks SET category_id = NULL, updated_at = ?
                WHERE category_id = ? AND user_id = ? AND deleted_at IS NULL
                """,
                (now, category_id, owner_id),
            )
            return True


class SQLiteTaskRepository(TaskRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    @staticmethod
    def _fetch(conn: sqlite3.Connection, task_id: int, owner_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"{_TASK_SELECT} WHERE t.id = ? AND t.user_id = ? AND t.deleted_at IS NULL",
            (task_id, owner_id),
        ).fetchone()

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
        now = _to_db(utcnow())
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO tasks (title, description, status, priority, due_date,
                    user_id, category_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (title, description, status, priority, _to_db(due_date), owner_id, category_id, now, now),
            )
            row = self._fetch(conn, int(cur.lastrowid), owner_id)
            assert row is not None
            return _row_to_task(row)

    def get(self, task_id: int, owner_id: int) -> Optional[TaskEntity]:
        with self._db.connect() as conn:
            row = self._fetch(conn, task_id, owner_id)
            return _row_to_task(row) if row else None

    def list(self, owner_id: int, flt: TaskFilter) -> Tuple[List[TaskEntity], int]:
        clauses = ["t.user_id = ?", "t.deleted_at IS NULL"]
        params: List[Any] = [owner_id]

        if flt.status is not None:
            clauses.append("t.status = ?")
            params.append(flt.status.value)

        if flt.priority is not None:
            clauses.append("t.priority = ?")
            params.append(flt.priority.value)

        if flt.category_id is not None:
            clauses.append("t.category_id = ?")
            params.append(flt.category_id)

        if flt.search:
            # Substring search on title and description
            clauses.append(
                "(casefold(t.title) LIKE ? ESCAPE '\\' OR casefold(t.description) LIKE ? ESCAPE '\\')"
            )
            like = _like_pattern(flt.search)
            params.extend([like, like])

        where_sql = f"WHERE {' AND '.join(clauses)}"

        key = _SORT_EXPRESSIONS[flt.sort_by]
        direction = _SORT_DIRECTIONS[flt.sort_order]
        order_sql = f"ORDER BY ({key}) IS NULL, {key} {direction}, t.id {direction}"

        with self._db.connect() as conn:
            # total count
            count_row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM tasks t {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                {_TASK_SELECT}
                {where_sql}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, flt.page_size, flt.offset],
            ).fetchall()
            return [_row_to_task(r) for r in rows], total

    def update(self, task_id: int, owner_id: int, changes: Mapping[str, Any]) -> Optional[TaskEntity]:
        check_mutable_fields(changes, TASK_MUTABLE_FIELDS)
        values = {k: (_to_db(v) if k == "due_date" else v) for k, v in changes.items()}
        assignments = [f"{field} = ?" for field in values] + ["updated_at = ?"]
        params = [*values.values(), _to_db(utcnow()), task_id, owner_id]
        with self._db.connect() as conn:
            cur = conn.execute(
                f"""
                UPDATE tasks SET {', '.join(assignments)}
                WHERE id = ? AND user_id = ? AND deleted_at IS NULL
                """,
                params,
            )
            if cur.rowcount == 0:
                return None
            row = self._fetch(conn, task_id, owner_id)
            return _row_to_task(row) if row else None

    def update_status(self, task_id: int, owner_id: int, status: str) -> bool:
        return self.bulk_update_status([task_id], owner_id, status) > 0

    def bulk_update_status(self, task_ids: Sequence[int], owner_id: int, status: str) -> int:
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return 0
        now = _to_db(utcnow())
        matched = 0
        # One transaction; the IN list is split to stay under SQLite's bound-variable limit.
        with self._db.connect() as conn:
            for start in range(0, len(ids), _BULK_CHUNK_SIZE):
                chunk = ids[start:start + _BULK_CHUNK_SIZE]
                cur = conn.execute(
                    f"""
                    UPDATE tasks SET status = ?, updated_at = ?
                    WHERE id IN ({_placeholders(len(chunk))}) AND user_id = ? AND deleted_at IS NULL
                    """,
                    [status, now, *chunk, owner_id],
                )
                matched += int(cur.rowcount)
        return matched

    def delete(self, task_id: int, owner_id: int) -> bool:
        with self._db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE tasks SET deleted_at = ?
                WHERE id = ? AND user_id = ? AND deleted_at IS NULL
                """,
                (_to_db(utcnow()), task_id, owner_id),
            )
            return cur.rowcount > 0


class SQLiteStatsRepository(StatsRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def _grouped(self, owner_id: int, column: str) -> Dict[str, int]:
        # column comes from the two call sites below, never from a request
        with self._db.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {column} AS value, COUNT(*) AS cnt FROM tasks
                WHERE user_id = ? AND deleted_at IS NULL
                GROUP BY {column}
                """,
                (owner_id,),
            ).fetchall()
            return {str(r["value"]): int(r["cnt"]) for r in rows}

    def count_tasks(self, owner_id: int) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM tasks WHERE user_id = ? AND deleted_at IS NULL",
                (owner_id,),
            ).fetchone()
            return int(row["cnt"]) if row else 0

    def count_by_status(self, owner_id: int) -> Dict[str, int]:
        return self._grouped(owner_id, "status")

    def count_by_priority(self, owner_id: int) -> Dict[str, int]:
        return self._grouped(owner_id, "priority")

    def count_by_category(self, owner_id: int) -> List[CategoryTaskCount]:
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT c.id AS category_id, c.name AS category_name, COUNT(t.id) AS task_count
                FROM tasks t
                JOIN categories c
                    ON c.id = t.category_id AND c.user_id = t.user_id AND c.deleted_at IS NULL
                WHERE t.user_id = ? AND t.deleted_at IS NULL
                GROUP BY c.id, c.name
                ORDER BY task_count DESC, c.id ASC
                """,
                (owner_id,),
            ).fetchall()
            return [
                {
                    "category_id": int(r["category_id"]),
                    "category_name": str(r["category_name"]),
                    "task_count": int(r["task_count"]),
                }
                for r in rows
            ]

    def count_overdue(self, owner_id: int, now: datetime) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM tasks
                WHERE user_id = ? AND deleted_at IS NULL
                    AND due_date IS NOT NULL AND due_date < ? AND status != ?
                """,
                (owner_id, _to_db(now), TaskStatus.COMPLETED.value),
            ).fetchone()
            return int(row["cnt"]) if row else 0

    def list_overdue(self, owner_id: int, now: datetime) -> List[TaskEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"""
                {_TASK_SELECT}
                WHERE t.user_id = ? AND t.deleted_at IS NULL
                    AND t.due_date IS NOT NULL AND t.due_date < ? AND t.status != ?
                ORDER BY t.due_date ASC, t.id ASC
                """,
                (owner_id, _to_db(now), TaskStatus.COMPLETED.value),
            ).fetchall()
            return [_row_to_task(r) for r in rows]

    def list_due_between(self, owner_id: int, start: datetime, end: datetime) -> List[TaskEntity]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"""
                {_TASK_SELECT}
                WHERE t.user_id = ? AND t.deleted_at IS NULL
                    AND t.due_date BETWEEN ? AND ? AND t.status != ?
                ORDER BY t.due_date ASC, t.id ASC
                """,
                (owner_id, _to_db(start), _to_db(end), TaskStatus.COMPLETED.value),
            ).fetchall()
            return [_row_to_task(r) for r in rows]


def sqlite_repositories(db_path: str) -> Repositories:
    db = SQLiteDatabase(db_path)
    return Repositories(
        users=SQLiteUserRepository(db),
        categories=SQLiteCategoryRepository(db),
        tasks=SQLiteTaskRepository(db),
        stats=SQLiteStatsRepository(db),
    )
