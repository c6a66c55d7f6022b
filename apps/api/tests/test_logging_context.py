from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from teamcrm.core.config import get_settings
from teamcrm.core.database import Base, get_db
from teamcrm.core.security import ACCESS_TOKEN_COOKIE, TokenClaims, create_access_token
from teamcrm.logging import JsonLogFormatter
from teamcrm.main import app
from teamcrm.middleware.rate_limit import reset_rate_limiter
from teamcrm.teams.models import Team, User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def owner(db_session: Session) -> User:
    return _seed_member(db_session)


@pytest.fixture()
def client(db_session: Session, owner: User) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        _sign_in(test_client, owner)
        yield test_client
    app.dependency_overrides.clear()


def _seed_member(session: Session, team: Team | None = None, role: str = "owner") -> User:
    if team is None:
        team = Team(name="Logged Team")
        session.add(team)
        session.flush()
    user = User(team_id=team.id, email=f"{uuid.uuid4().hex[:8]}@example.com", name="Member", password_hash="x", role=role)
    session.add(user)
    session.commit()
    return user


def _sign_in(client: TestClient, user: User) -> None:
    token = create_access_token(TokenClaims(user_id=str(user.id), team_id=str(user.team_id), role=user.role))
    client.cookies.set(ACCESS_TOKEN_COOKIE, token)

def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/api/v1/companies/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "teamcrm.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/v1/companies/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_request_log_carries_team_and_user(client: TestClient, owner: User, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    assert client.get("/api/v1/companies").status_code == 200

    records = [record for record in caplog.records if record.name == "teamcrm.request"]
    assert any(
        getattr(record, "team_id", None) == str(owner.team_id) and getattr(record, "user_id", None) == str(owner.id)
        for record in records
    )


def test_guard_rejection_is_logged_with_code(client: TestClient, owner: User, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.delete(f"/api/v1/teams/members/{owner.id}", headers={"X-Correlation-Id": "guard-1"})
    assert response.status_code == 400

    records = [record for record in caplog.records if record.getMessage() == "team.guard_rejected"]
    assert records
    assert getattr(records[-1], "code", None) == "CANNOT_REMOVE_OWNER"
    assert getattr(records[-1], "correlation_id", None) == "guard-1"


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "teamcrm.request",
            "levelname": "INFO",
            "msg": "http.request",
            "correlation_id": "fmt-1",
            "method": "GET",
            "status_code": 200,
            "password": "hunter2",
            "error": "x" * 600,
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "http.request"
    assert payload["logger"] == "teamcrm.request"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["method"] == "GET"
    assert payload["fields"]["status_code"] == 200
    assert "password" not in payload["fields"]
    assert len(payload["fields"]["error"]) == 500
