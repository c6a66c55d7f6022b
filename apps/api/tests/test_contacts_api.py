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
        team = Team(name="Contact Team")
        session.add(team)
        session.flush()
    user = User(team_id=team.id, email=f"{uuid.uuid4().hex[:8]}@example.com", name="Member", password_hash="x", role=role)
    session.add(user)
    session.commit()
    return user


def _sign_in(client: TestClient, user: User) -> None:
    token = create_access_token(TokenClaims(user_id=str(user.id), team_id=str(user.team_id), role=user.role))
    client.cookies.set(ACCESS_TOKEN_COOKIE, token)


def _create_contact(client: TestClient, **fields: object) -> dict:
    response = client.post("/api/v1/contacts", json={"name": "Wile E.", **fields})
    assert response.status_code == 201
    return response.json()["data"]


def test_contact_owner_defaults_to_caller(client: TestClient, owner: User) -> None:
    contact = _create_contact(client, email="wile@acme.example.com", phone="555-0100", title="Engineer")

    assert contact["ownerId"] == str(owner.id)
    assert contact["email"] == "wile@acme.example.com"


def test_contact_email_must_be_valid(client: TestClient) -> None:
    response = client.post("/api/v1/contacts", json={"name": "Wile", "email": "not-mail", "phone": "1" * 51})

    assert response.status_code == 400
    assert set(response.json()["error"]["details"]) == {"email", "phone"}


def test_company_link_must_belong_to_team(client: TestClient, db_session: Session) -> None:
    response = client.post("/api/v1/contacts", json={"name": "Wile", "companyId": str(uuid.uuid4())})

    assert response.status_code == 400
    assert response.json()["error"]["details"] == {"companyId": ["Referenced record not found in team"]}


def test_list_contacts_filters_and_includes(client: TestClient) -> None:
    company = client.post("/api/v1/companies", json={"name": "Acme"}).json()["data"]
    linked = _create_contact(client, name="Road Runner", email="beep@acme.example.com", companyId=company["id"])
    _create_contact(client, name="Elmer", email="elmer@hunt.example.com")

    by_company = client.get(f"/api/v1/contacts?companyId={company['id']}&include=company").json()
    assert [item["id"] for item in by_company["data"]] == [linked["id"]]
    assert by_company["data"][0]["company"]["name"] == "Acme"

    by_email = client.get("/api/v1/contacts?search=HUNT").json()
    assert [item["name"] for item in by_email["data"]] == ["Elmer"]

    sorted_by_email = client.get("/api/v1/contacts?sort=-email").json()["data"]
    assert [item["name"] for item in sorted_by_email] == ["Elmer", "Road Runner"]


def test_contact_include_deals_and_activities(client: TestClient) -> None:
    contact = _create_contact(client)
    client.post("/api/v1/deals", json={"title": "Anvil order", "contactId": contact["id"]})
    client.post("/api/v1/activities", json={"type": "call", "title": "Intro call", "contactId": contact["id"]})

    data = client.get(f"/api/v1/contacts/{contact['id']}?include=deals,activities").json()["data"]

    assert [item["title"] for item in data["deals"]] == ["Anvil order"]
    assert [item["title"] for item in data["activities"]] == ["Intro call"]


def test_update_and_delete_contact(client: TestClient) -> None:
    contact = _create_contact(client, title="Engineer")

    updated = client.put(f"/api/v1/contacts/{contact['id']}", json={"title": "Chief Engineer"})
    assert updated.status_code == 200
    assert updated.json()["data"]["title"] == "Chief Engineer"
    assert updated.json()["data"]["name"] == "Wile E."

    assert client.delete(f"/api/v1/contacts/{contact['id']}").status_code == 200
    assert client.put(f"/api/v1/contacts/{contact['id']}", json={"title": "Gone"}).status_code == 404
