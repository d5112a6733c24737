import base64
import json
import logging
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from task_api import errors
from task_api.auth import CurrentUser, authorize, extract_bearer_token
from task_api.security import PasswordHasher, TokenService
from task_api.settings import Settings

from conftest import SECRET


def _b64(obj):
    raw = json.dumps(obj).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _claims(**overrides):
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "7",
        "user_id": 7,
        "username": "alice",
        "iat": now,
        "nbf": now,
        "exp": now + timedelta(hours=1),
    }
    claims.update(overrides)
    return claims


class TestTokenService:
    def test_issue_and_verify(self):
        tokens = TokenService(SECRET, ttl_hours=24)
        claims = tokens.verify(tokens.issue(7, "alice"))
        assert claims.owner_id == 7
        assert claims.username == "alice"
        assert claims.issued_at == claims.not_before
        assert claims.expires_at - claims.issued_at == timedelta(hours=24)

    def test_payload_carries_subject_and_user_id(self):
        token = TokenService(SECRET).issue(7, "alice")
        payload = jwt.decode(token, SECRET, algorithms=["HS256"])
        assert payload["sub"] == "7"
        assert payload["user_id"] == 7
        assert payload["username"] == "alice"

    def test_expired_token(self):
        tokens = TokenService(SECRET)
        token = tokens.issue(7, "alice", ttl_hours=-1)
        with pytest.raises(errors.ExpiredToken):
            tokens.verify(token)

    def test_not_yet_valid_token(self):
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        token = jwt.encode(_claims(iat=datetime.now(timezone.utc), nbf=later, exp=later + timedelta(hours=1)),
                           SECRET, algorithm="HS256")
        with pytest.raises(errors.ExpiredToken):
            TokenService(SECRET).verify(token)

    def test_wrong_secret(self):
        token = TokenService("another-secret-0123456789abcdefghij").issue(7, "alice")
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify(token)

    def test_malformed_token(self):
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify("not-a-jwt")

    def test_other_hmac_algorithm_rejected(self):
        token = jwt.encode(_claims(), SECRET, algorithm="HS512")
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify(token)

    def test_unsigned_token_rejected(self):
        now = int(datetime.now(timezone.utc).timestamp())
        payload = {"user_id": 7, "iat": now, "nbf": now, "exp": now + 3600}
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(payload)}."
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify(token)

    def test_missing_claims_rejected(self):
        claims = _claims()
        del claims["nbf"]
        token = jwt.encode(claims, SECRET, algorithm="HS256")
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify(token)

    @pytest.mark.parametrize("user_id", ["7", 0, -3, True])
    def test_bad_user_reference_rejected(self, user_id):
        token = jwt.encode(_claims(user_id=user_id), SECRET, algorithm="HS256")
        with pytest.raises(errors.InvalidToken):
            TokenService(SECRET).verify(token)

    def test_empty_secret_is_a_config_error(self):
        tokens = TokenService("")
        with pytest.raises(errors.ConfigError):
            tokens.issue(1, "alice")
        with pytest.raises(errors.ConfigError):
            tokens.verify("anything")

    def test_services_with_different_secrets_are_independent(self):
        a = TokenService(SECRET)
        b = TokenService(SECRET[::-1])
        assert a.verify(a.issue(1, "x")).owner_id == 1
        assert b.verify(b.issue(2, "y")).owner_id == 2
        with pytest.raises(errors.InvalidToken):
            b.verify(a.issue(1, "x"))


class TestPasswordHasher:
    def test_hash_and_verify(self):
        hasher = PasswordHasher(rounds=4)
        hashed = hasher.hash("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert hashed.startswith("$2")
        assert hasher.verify("s3cret-pass", hashed)
        assert not hasher.verify("wrong-pass", hashed)

    def test_salted(self):
        hasher = PasswordHasher(rounds=4)
        assert hasher.hash("same") != hasher.hash("same")

    def test_long_passwords_are_not_truncated(self):
        hasher = PasswordHasher(rounds=4)
        base = "x" * 80
        hashed = hasher.hash(base + "a")
        assert hasher.verify(base + "a", hashed)
        assert not hasher.verify(base + "b", hashed)

    def test_garbage_hash_does_not_verify(self):
        assert PasswordHasher(rounds=4).verify("pw", "not-a-bcrypt-hash") is False

    def test_burn_runs(self):
        PasswordHasher(rounds=4).burn("whatever")


class TestBearerExtraction:
    @pytest.mark.parametrize("header", [None, "", "bearer abc", "Basic abc", "Bearer", "Bearer ", "Bearer    ", "Bearer  abc"])
    def test_rejected(self, header):
        with pytest.raises(errors.Unauthorized):
            extract_bearer_token(header)

    def test_token_returned(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


class TestAuthorize:
    def test_valid_token(self):
        tokens = TokenService(SECRET)
        user = authorize(f"Bearer {tokens.issue(3, 'carol')}", tokens)
        assert user == CurrentUser(user_id=3, username="carol")

    def test_expired_and_invalid_look_the_same(self, caplog):
        tokens = TokenService(SECRET)
        expired = tokens.issue(3, "carol", ttl_hours=-1)

        caplog.set_level(logging.INFO, logger="task_api.auth")
        with pytest.raises(errors.Unauthorized) as exp_info:
            authorize(f"Bearer {expired}", tokens)
        with pytest.raises(errors.Unauthorized) as bad_info:
            authorize("Bearer garbage", tokens)

        assert exp_info.value.message == bad_info.value.message == "Invalid or expired token"
        levels = [r.levelno for r in caplog.records if r.name == "task_api.auth"]
        assert levels == [logging.INFO, logging.WARNING]


class TestSettings:
    def test_secret_problem(self):
        assert Settings().secret_problem() is not None
        assert Settings(jwt_secret="short").secret_problem() is not None
        assert Settings(jwt_secret=SECRET).secret_problem() is None

    def test_get_settings_from_env(self, monkeypatch):
        from task_api.settings import get_settings

        monkeypatch.setenv("PERSISTENCE_BACKEND", "SQLite")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("JWT_EXPIRY_HOURS", "not-a-number")
        monkeypatch.setenv("BCRYPT_ROUNDS", "2")
        s = get_settings()
        assert s.persistence_backend == "sqlite"
        assert s.cors_allow_origins == ["http://a.test", "http://b.test"]
        assert s.jwt_expiry_hours == 24
        assert s.bcrypt_rounds == 12

    def test_unknown_backend_falls_back_to_memory(self, monkeypatch):
        from task_api.settings import get_settings

        monkeypatch.setenv("PERSISTENCE_BACKEND", "postgres")
        assert get_settings().persistence_backend == "memory"
