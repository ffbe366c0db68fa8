import os
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Keep app startup off the on-disk database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from slot_booking.database import get_session, register_models  # noqa: E402
from slot_booking.main import app  # noqa: E402
from slot_booking.models.event import Event  # noqa: E402
from slot_booking.models.group import Group  # noqa: E402
from slot_booking.models.player import Player  # noqa: E402
from slot_booking.models.tournament import Tournament  # noqa: E402
from slot_booking.routes.dependencies import get_clock  # noqa: E402
from slot_booking.services.change_feed import reset_change_feed  # noqa: E402
from slot_booking.services.reconciliation import ReconciliationEngine  # noqa: E402
from slot_booking.utils.match_generation import generate_group_matches  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# sqlite:///:memory: with StaticPool so every session (test and app) shares one DB;
# check_same_thread=False for TestClient's worker thread
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Fixed "now" for the engine and the app; fixture slots are in 2030
FROZEN_NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def frozen_clock() -> datetime:
    return FROZEN_NOW


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def change_feed():
    """Fresh in-process change feed per test."""
    reset_change_feed()
    yield
    reset_change_feed()


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on freshly created tables"""
    register_models()
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    The override is set before TestClient() and kept for its whole lifetime
    so the app never touches its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: frozen_clock

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def engine(session: Session) -> ReconciliationEngine:
    return ReconciliationEngine(session, clock=frozen_clock)


@pytest.fixture
def league(session: Session):
    """
    One event (UTC) with three players, one tournament, one round robin group
    and three future slots on two dates.
    """
    event = Event(
        name="Summer League",
        timezone="UTC",
        global_time_slots=[{"id": "g1", "start": "2030-06-02T09:00:00Z", "location": "Court 2"}],
    )
    session.add(event)
    session.commit()
    session.refresh(event)

    players = [Player(event_id=event.id, name=name) for name in ("Ana", "Ben", "Cleo")]
    for player in players:
        session.add(player)
    session.commit()
    for player in players:
        session.refresh(player)

    tournament = Tournament(
        event_id=event.id,
        name="Singles",
        time_slots=[
            {"id": "s1", "start": "2030-06-01T18:00:00Z", "location": "Court 1"},
            {"id": "s2", "start": "2030-06-01T20:00:00Z", "location": "Court 1"},
        ],
    )
    session.add(tournament)
    session.commit()
    session.refresh(tournament)

    group = Group(tournament_id=tournament.id, name="Group A", player_ids=[p.id for p in players])
    session.add(group)
    session.commit()
    session.refresh(group)

    matches = generate_group_matches(group, event.id)
    for match in matches:
        session.add(match)
    session.commit()
    for match in matches:
        session.refresh(match)

    return {
        "event": event,
        "tournament": tournament,
        "group": group,
        "players": players,
        "matches": matches,
    }


@pytest.fixture
def api_league(client: TestClient):
    """The same league as ``league``, built through the HTTP API."""
    event = client.post(
        "/api/events",
        json={
            "name": "Summer League",
            "timezone": "UTC",
            "global_time_slots": [{"id": "g1", "start": "2030-06-02T09:00:00Z", "location": "Court 2"}],
        },
    ).json()
    players = [
        client.post(f"/api/events/{event['id']}/players", json={"name": name}).json()
        for name in ("Ana", "Ben", "Cleo")
    ]
    tournament = client.post(
        f"/api/events/{event['id']}/tournaments",
        json={
            "name": "Singles",
            "time_slots": [
                {"id": "s1", "start": "2030-06-01T18:00:00Z", "location": "Court 1"},
                {"id": "s2", "start": "2030-06-01T20:00:00Z", "location": "Court 1"},
            ],
        },
    ).json()
    group = client.post(
        f"/api/tournaments/{tournament['id']}/groups",
        json={"name": "Group A", "player_ids": [p["id"] for p in players]},
    ).json()
    matches = client.get(f"/api/groups/{group['id']}/matches").json()
    return {
        "event_id": event["id"],
        "tournament_id": tournament["id"],
        "group_id": group["id"],
        "player_ids": [p["id"] for p in players],
        "match_ids": [m["id"] for m in matches],
    }
