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
        team = Team(name="Deal Team")
        session.add(team)
        session.flush()
    user = User(team_id=team.id, email=f"{uuid.uuid4().hex[:8]}@example.com", name="Member", password_hash="x", role=role)
    session.add(user)
    session.commit()
    return user


def _sign_in(client: TestClient, user: User) -> None:
    token = create_access_token(TokenClaims(user_id=str(user.id), team_id=str(user.team_id), role=user.role))
    client.cookies.set(ACCESS_TOKEN_COOKIE, token)


def _create_deal(client: TestClient, **fields: object) -> dict:
    response = client.post("/api/v1/deals", json={"title": "Rocket skates", **fields})
    assert response.status_code == 201
    return response.json()["data"]


def test_create_deal_defaults(client: TestClient, owner: User) -> None:
    deal = _create_deal(client, value=1250.5)

    assert deal["stage"] == "lead"
    assert deal["value"] == 1250.5
    assert deal["probability"] is None
    assert deal["ownerId"] == str(owner.id)


@pytest.mark.parametrize(
    ("body", "field"),
    [
        ({"title": "Bad", "value": -1}, "value"),
        ({"title": "Bad", "probability": 101}, "probability"),
        ({"title": "Bad", "stage": "closed"}, "stage"),
        ({"value": 10}, "title"),
    ],
)
def test_create_deal_rejects_invalid_fields(client: TestClient, body: dict, field: str) -> None:
    response = client.post("/api/v1/deals", json=body)

    assert response.status_code == 400
    assert field in response.json()["error"]["details"]


def test_deal_links_must_belong_to_team(client: TestClient) -> None:
    response = client.post(
        "/api/v1/deals",
        json={"title": "Bad", "companyId": str(uuid.uuid4()), "contactId": str(uuid.uuid4())},
    )

    assert response.status_code == 400
    assert set(response.json()["error"]["details"]) == {"companyId", "contactId"}


def test_sort_by_value_descending_is_stable_with_ties(client: TestClient) -> None:
    for _ in range(5):
        _create_deal(client, value=500)
    _create_deal(client, value=900)

    first = client.get("/api/v1/deals?sort=-value").json()["data"]
    second = client.get("/api/v1/deals?sort=-value").json()["data"]

    assert [item["id"] for item in first] == [item["id"] for item in second]
    assert first[0]["value"] == 900.0
    tied = [item["id"] for item in first[1:]]
    assert tied == sorted(tied, key=lambda value: uuid.UUID(value).hex, reverse=True)


def test_cursor_pages_through_ties_without_overlap(client: TestClient) -> None:
    created = {_create_deal(client, value=500)["id"] for _ in range(5)}

    seen: list[str] = []
    cursor = None
    while True:
        url = "/api/v1/deals?sort=-value&limit=2" + (f"&cursor={cursor}" if cursor else "")
        page = client.get(url).json()
        seen.extend(item["id"] for item in page["data"])
        if not page["pagination"]["hasMore"]:
            break
        cursor = page["pagination"]["cursor"]

    assert len(seen) == 5
    assert set(seen) == created


def test_filter_by_stage_and_search(client: TestClient) -> None:
    _create_deal(client, title="Anvil bulk order", stage="proposal")
    _create_deal(client, title="Anvil single", stage="won")
    _create_deal(client, title="Birdseed", stage="proposal")

    proposals = client.get("/api/v1/deals?stage=proposal&search=anvil").json()

    assert [item["title"] for item in proposals["data"]] == ["Anvil bulk order"]
    assert proposals["pagination"]["total"] == 1
    assert client.get("/api/v1/deals?stage=closed").status_code == 400


def test_pipeline_groups_every_stage(client: TestClient) -> None:
    company = client.post("/api/v1/companies", json={"name": "Acme"}).json()["data"]
    _create_deal(client, title="One", value=100, stage="qualified", companyId=company["id"])
    _create_deal(client, title="Two", value=250.25, stage="qualified")
    _create_deal(client, title="Three", stage="won")

    response = client.get("/api/v1/deals/pipeline")

    assert response.status_code == 200
    stages = response.json()["data"]
    assert [row["stage"] for row in stages] == ["lead", "qualified", "proposal", "negotiation", "won", "lost"]
    qualified = stages[1]
    assert qualified["count"] == 2
    assert qualified["totalValue"] == 350.25
    assert {deal["title"] for deal in qualified["deals"]} == {"One", "Two"}
    one = next(deal for deal in qualified["deals"] if deal["title"] == "One")
    assert one["company"]["name"] == "Acme"
    assert stages[4]["count"] == 1
    assert stages[4]["totalValue"] == 0.0
    assert stages[0] == {"stage": "lead", "count": 0, "totalValue": 0.0, "deals": []}


def test_update_deal_stage_and_reject_null_title(client: TestClient) -> None:
    deal = _create_deal(client)

    moved = client.put(f"/api/v1/deals/{deal['id']}", json={"stage": "negotiation", "probability": 60})
    assert moved.status_code == 200
    assert moved.json()["data"]["stage"] == "negotiation"
    assert moved.json()["data"]["probability"] == 60

    cleared = client.put(f"/api/v1/deals/{deal['id']}", json={"title": None})
    assert cleared.status_code == 400
