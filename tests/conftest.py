from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from task_api.main import create_app
from task_api.repositories import in_memory_repositories
from task_api.settings import Settings

SECRET = "test-signing-secret-0123456789abcdef"
PASSWORD = "s3cret-pass"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def parse_dt(value):
    # Pydantic renders UTC as a trailing "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, username, password=PASSWORD, email=None):
    res = client.post(
        "/api/v1/auth/register",
        json={
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
            "full_name": username.title(),
        },
    )
    assert res.status_code == 201, res.text
    data = res.json()["data"]
    return data["token"], data["user"]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture(params=["memory", "sqlite"])
def settings(request, tmp_path):
    return Settings(
        persistence_backend=request.param,
        sqlite_db_path=str(tmp_path / "tasks.db"),
        jwt_secret=SECRET,
        bcrypt_rounds=4,
    )


@pytest.fixture
def client(settings, clock):
    app = create_app(settings, clock=clock)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def alice(client):
    token, user = register(client, "alice")
    return {"headers": auth_headers(token), "user": user, "token": token}


@pytest.fixture
def bob(client):
    token, user = register(client, "bob")
    return {"headers": auth_headers(token), "user": user, "token": token}


@pytest.fixture(params=["memory", "sqlite"])
def repos(request, tmp_path):
    if request.param == "sqlite":
        from task_api.db import sqlite_repositories

        return sqlite_repositories(str(tmp_path / "repo.db"))
    return in_memory_repositories()
