from __future__ import annotations

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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_MUTATIONS_PER_MINUTE", "3")
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
        team = Team(name="Limited Team")
        session.add(team)
        session.flush()
    user = User(team_id=team.id, email=f"{uuid.uuid4().hex[:8]}@example.com", name="Member", password_hash="x", role=role)
    session.add(user)
    session.commit()
    return user


def _sign_in(client: TestClient, user: User) -> None:
    token = create_access_token(TokenClaims(user_id=str(user.id), team_id=str(user.team_id), role=user.role))
    client.cookies.set(ACCESS_TOKEN_COOKIE, token)

def test_mutating_endpoints_are_rate_limited(client: TestClient) -> None:
    responses = [client.post("/api/v1/companies", json={"name": f"Rate Limit Co {index}"}) for index in range(5)]

    assert [response.status_code for response in responses[:3]] == [201, 201, 201]
    limited = [response for response in responses if response.status_code == 429]
    assert limited
    first_limited = limited[0]
    body = first_limited.json()
    assert body["error"]["code"] == "RATE_LIMITED"
    assert body["error"]["message"] == "Too many requests"
    assert int(first_limited.headers["Retry-After"]) >= 1
    assert first_limited.headers.get("x-correlation-id")


def test_get_endpoints_are_not_rate_limited(client: TestClient) -> None:
    create = client.post("/api/v1/companies", json={"name": "Readable Co"})
    assert create.status_code == 201

    responses = [client.get("/api/v1/companies") for _ in range(10)]

    assert all(response.status_code == 200 for response in responses)


def test_buckets_are_per_user_and_route_group(client: TestClient, db_session: Session, owner: User) -> None:
    for index in range(3):
        assert client.post("/api/v1/companies", json={"name": f"Co {index}"}).status_code == 201
    assert client.post("/api/v1/companies", json={"name": "Co 4"}).status_code == 429

    assert client.post("/api/v1/contacts", json={"name": "Other group"}).status_code == 201

    team = db_session.get(Team, owner.team_id)
    _sign_in(client, _seed_member(db_session, team=team, role="member"))
    assert client.post("/api/v1/companies", json={"name": "Fresh bucket"}).status_code == 201
