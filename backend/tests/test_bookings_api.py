"""Booking, result and slot endpoints over HTTP."""
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from slot_booking.main import app
from slot_booking.routes.dependencies import get_clock

ORGANIZER_HEADERS = {"X-Organizer": "true"}


def player_headers(player_id):
    return {"X-Player-Id": str(player_id)}


def test_available_slots_and_dates(client: TestClient, api_league):
    tournament_id = api_league["tournament_id"]

    slots = client.get(f"/api/tournaments/{tournament_id}/slots/available").json()
    assert [s["id"] for s in slots] == ["s1", "s2", "g1"]
    assert slots[0]["date"] == "2030-06-01"
    assert slots[0]["hour"] == "18.00"
    assert slots[2]["source"] == "event"

    dates = client.get(f"/api/tournaments/{tournament_id}/slots/dates").json()
    assert [(d["date"], [s["id"] for s in d["slots"]]) for d in dates] == [
        ("2030-06-01", ["s1", "s2"]),
        ("2030-06-02", ["g1"]),
    ]


def test_book_then_double_book_conflicts(client: TestClient, api_league):
    ana, ben, cleo = api_league["player_ids"]
    first, second, _ = api_league["match_ids"]

    response = client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}, headers=player_headers(ana))
    assert response.status_code == 200
    assert response.json()["status"] == "scheduled"
    assert response.json()["slot_id"] == "s1"

    response = client.post(f"/api/matches/{second}/book", json={"slot_id": "s1"}, headers=player_headers(cleo))
    assert response.status_code == 409
    assert "already booked" in response.json()["detail"]

    slots = client.get(f"/api/tournaments/{api_league['tournament_id']}/slots/available").json()
    assert "s1" not in [s["id"] for s in slots]
    assert client.get(f"/api/events/{api_league['event_id']}/slot-conflicts").json() == {}


def test_booking_error_codes(client: TestClient, api_league):
    ana, ben, cleo = api_league["player_ids"]
    first = api_league["match_ids"][0]  # Ana vs Ben

    assert client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}).status_code == 403
    assert (
        client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}, headers=player_headers(cleo)).status_code
        == 403
    )
    assert client.post(f"/api/matches/{first}/book", json={}, headers=player_headers(ana)).status_code == 422
    assert (
        client.post(f"/api/matches/{first}/book", json={"slot_id": "nope"}, headers=player_headers(ana)).status_code
        == 404
    )
    assert client.post("/api/matches/999/book", json={"slot_id": "s1"}, headers=ORGANIZER_HEADERS).status_code == 404
    assert client.post(f"/api/matches/{first}/cancel", headers=ORGANIZER_HEADERS).status_code == 422


def test_reschedule_and_cancel(client: TestClient, api_league):
    ben = api_league["player_ids"][1]
    first = api_league["match_ids"][0]
    client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}, headers=player_headers(ben))

    moved = client.post(f"/api/matches/{first}/reschedule", json={"slot_id": "g1"}, headers=player_headers(ben))
    assert moved.status_code == 200
    assert moved.json()["slot_id"] == "g1"
    assert moved.json()["location"] == "Court 2"

    cancelled = client.post(f"/api/matches/{first}/cancel", headers=player_headers(ben))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "pending"
    assert cancelled.json()["slot_id"] is None

    slots = client.get(f"/api/matches/{first}/candidate-slots").json()
    assert [s["id"] for s in slots] == ["s1", "s2", "g1"]


def test_result_entry_and_deletion(client: TestClient, api_league):
    ana = api_league["player_ids"][0]
    first = api_league["match_ids"][0]
    client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}, headers=ORGANIZER_HEADERS)

    bad = client.put(f"/api/matches/{first}/result", json={"score1": "three", "score2": 1}, headers=ORGANIZER_HEADERS)
    assert bad.status_code == 422
    assert client.put(f"/api/matches/{first}/result", json={"score1": True, "score2": 1},
                      headers=ORGANIZER_HEADERS).status_code == 422

    done = client.put(f"/api/matches/{first}/result", json={"score1": 3, "score2": "1"}, headers=ORGANIZER_HEADERS)
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert (done.json()["score1"], done.json()["score2"]) == (3, 1)
    assert done.json()["slot_id"] == "s1"

    # Completed matches keep holding their slot
    slots = client.get(f"/api/tournaments/{api_league['tournament_id']}/slots/available").json()
    assert "s1" not in [s["id"] for s in slots]

    assert client.delete(f"/api/matches/{first}/result", headers=player_headers(ana)).status_code == 403

    reset = client.delete(f"/api/matches/{first}/result", headers=ORGANIZER_HEADERS)
    assert reset.status_code == 200
    assert reset.json()["status"] == "pending"
    assert reset.json()["score1"] is None
    assert reset.json()["slot_id"] is None


def test_slot_administration(client: TestClient, api_league):
    event_id, tournament_id = api_league["event_id"], api_league["tournament_id"]
    first = api_league["match_ids"][0]
    payload = {"start": "2030-06-05T10:00:00Z", "location": "Court 9"}

    assert client.post(f"/api/tournaments/{tournament_id}/slots", json=payload).status_code == 403

    created = client.post(f"/api/tournaments/{tournament_id}/slots", json=payload, headers=ORGANIZER_HEADERS)
    assert created.status_code == 201
    slot_id = created.json()["id"]
    shared = client.post(
        f"/api/events/{event_id}/slots",
        json={"start": "2030-06-06T10:00:00Z", "location": "Court 10", "field": "East"},
        headers=ORGANIZER_HEADERS,
    )
    assert shared.status_code == 201
    assert shared.json()["source"] == "event"

    client.post(f"/api/matches/{first}/book", json={"slot_id": slot_id}, headers=ORGANIZER_HEADERS)

    assert client.delete(f"/api/events/{event_id}/slots/{slot_id}").status_code == 403
    deleted = client.delete(f"/api/events/{event_id}/slots/{slot_id}", headers=ORGANIZER_HEADERS)
    assert deleted.status_code == 200
    assert deleted.json() == {"slot_id": slot_id, "released_matches": 1}
    assert client.delete(f"/api/events/{event_id}/slots/{slot_id}", headers=ORGANIZER_HEADERS).status_code == 404

    match = client.get(f"/api/groups/{api_league['group_id']}/matches").json()[0]
    assert match["status"] == "pending"
    slots = client.get(f"/api/tournaments/{tournament_id}/slots/available").json()
    assert [s["id"] for s in slots] == ["s1", "s2", "g1", shared.json()["id"]]


def test_past_slots_follow_the_app_clock(client: TestClient, api_league):
    tournament_id = api_league["tournament_id"]
    first = api_league["match_ids"][0]
    after_first_slot = datetime(2030, 6, 1, 19, 0, tzinfo=timezone.utc)
    app.dependency_overrides[get_clock] = lambda: (lambda: after_first_slot)

    slots = client.get(f"/api/tournaments/{tournament_id}/slots/available").json()
    assert [s["id"] for s in slots] == ["s2", "g1"]

    late = client.post(f"/api/matches/{first}/book", json={"slot_id": "s1"}, headers=ORGANIZER_HEADERS)
    assert late.status_code == 422
