from __future__ import annotations

import os

from fastapi.testclient import TestClient

from app.core.auth import SESSION_COOKIE_NAME, create_session_token
from app.core.config import get_settings
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.main import app
from app.models import SystemEvent, User

client = TestClient(app)


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-auth-secret"
    get_settings.cache_clear()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _create_user(username: str, display_name: str | None = None) -> int:
    with SessionLocal() as db:
        user = User(username=username, display_name=display_name)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user.id


def test_me_returns_bearer_user() -> None:
    user_id = _create_user("alice", "Alice")
    token = create_session_token(get_settings(), user_id)

    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == user_id
    assert data["username"] == "alice"
    assert data["display_name"] == "Alice"


def test_me_accepts_session_cookie() -> None:
    user_id = _create_user("cookie-user")
    token = create_session_token(get_settings(), user_id)

    client.cookies.clear()
    client.cookies.set(SESSION_COOKIE_NAME, token)
    try:
        resp = client.get("/api/auth/me")
    finally:
        client.cookies.clear()
    assert resp.status_code == 200
    assert resp.json()["username"] == "cookie-user"


def test_missing_or_invalid_tokens_are_rejected() -> None:
    resp_missing = client.get("/api/auth/me")
    assert resp_missing.status_code == 401
    assert resp_missing.json()["detail"] == "Not authenticated."

    resp_bad = client.get("/api/auth/me", headers={"Authorization": "Bearer nope.nope"})
    assert resp_bad.status_code == 401
    assert resp_bad.json()["detail"] == "Invalid or expired session."

    expired = create_session_token(get_settings(), 1, ttl_seconds=-5)
    resp_expired = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp_expired.status_code == 401


def test_token_for_deleted_user_is_rejected() -> None:
    token = create_session_token(get_settings(), 987654)
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "User not found for this session."


def test_system_events_are_scoped_to_caller_and_global() -> None:
    mine = _create_user("events-mine")
    theirs = _create_user("events-theirs")
    with SessionLocal() as db:
        db.add_all(
            [
                SystemEvent(level="INFO", category="kite_session", message="mine", user_id=mine),
                SystemEvent(level="ERROR", category="scheduled_snapshot", message="global"),
                SystemEvent(level="INFO", category="kite_session", message="theirs", user_id=theirs),
            ]
        )
        db.commit()

    token = create_session_token(get_settings(), mine)
    headers = {"Authorization": f"Bearer {token}"}
    resp = client.get("/api/system-events/", headers=headers)
    assert resp.status_code == 200
    messages = {e["message"] for e in resp.json()}
    assert messages == {"mine", "global"}

    errors = client.get("/api/system-events/", params={"level": "error"}, headers=headers)
    assert [e["message"] for e in errors.json()] == ["global"]


def test_missing_crypto_key_is_a_server_error() -> None:
    user_id = _create_user("no-crypto-key")
    token = create_session_token(get_settings(), user_id)
    saved = os.environ.pop("PB_CRYPTO_KEY")
    get_settings.cache_clear()
    try:
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 500
        assert "PB_CRYPTO_KEY" in resp.json()["detail"]
    finally:
        os.environ["PB_CRYPTO_KEY"] = saved
        get_settings.cache_clear()
