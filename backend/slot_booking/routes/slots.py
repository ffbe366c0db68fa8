from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlmodel import Session

from slot_booking.database import get_session
from slot_booking.models.event import Event
from slot_booking.models.match import Match
from slot_booking.models.tournament import Tournament
from slot_booking.routes.dependencies import get_actor, get_engine
from slot_booking.services import slot_admin
from slot_booking.services.booking_index import find_slot_conflicts, load_event_matches
from slot_booking.services.booking_state import Actor, require_organizer
from slot_booking.services.errors import SchedulingError
from slot_booking.services.reconciliation import ReconciliationEngine
from slot_booking.utils.http_errors import to_http_exception
from slot_booking.utils.slot_registry import TimeSlot

router = APIRouter()


class SlotCreate(BaseModel):
    start: datetime
    location: str
    field: Optional[str] = None

    @field_validator("location")
    @classmethod
    def validate_location(cls, v):
        if not v or not v.strip():
            raise ValueError("location cannot be empty")
        return v.strip()


class SlotResponse(BaseModel):
    id: str
    start: datetime
    start_ms: int
    date: date
    hour: str
    location: str
    field: Optional[str] = None
    source: str
    aliases: List[str] = []


class DateSlots(BaseModel):
    date: date
    slots: List[SlotResponse]


class SlotDeleteResponse(BaseModel):
    slot_id: str
    released_matches: int


def slot_response(slot: TimeSlot, tz_name: str) -> SlotResponse:
    return SlotResponse(
        id=slot.id,
        start=slot.start,
        start_ms=slot.start_ms,
        date=slot.date_key(tz_name),
        hour=slot.hour_label(tz_name),
        location=slot.location,
        field=slot.field,
        source=slot.source,
        aliases=sorted(slot.aliases),
    )


def load_tournament(session: Session, tournament_id: int) -> Tuple[Tournament, Event]:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament, session.get(Event, tournament.event_id)


@router.get("/tournaments/{tournament_id}/slots/available", response_model=List[SlotResponse])
def list_available_slots(
    tournament_id: int,
    session: Session = Depends(get_session),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Future slots not booked by any match of the event"""
    tournament, event = load_tournament(session, tournament_id)
    try:
        slots = engine.available_slots_for(tournament, event)
    except SchedulingError as e:
        raise to_http_exception(e)
    return [slot_response(s, event.timezone) for s in slots]


@router.get("/tournaments/{tournament_id}/slots/dates", response_model=List[DateSlots])
def list_slot_dates(
    tournament_id: int,
    session: Session = Depends(get_session),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Available slots grouped by calendar date (event timezone), ascending"""
    tournament, event = load_tournament(session, tournament_id)
    try:
        by_date = engine.slots_by_date(engine.available_slots_for(tournament, event), event.timezone)
    except SchedulingError as e:
        raise to_http_exception(e)
    return [
        DateSlots(date=day, slots=[slot_response(s, event.timezone) for s in slots]) for day, slots in by_date.items()
    ]


@router.post("/tournaments/{tournament_id}/slots", response_model=SlotResponse, status_code=201)
def create_tournament_slot(
    tournament_id: int,
    slot_data: SlotCreate,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    tournament, event = load_tournament(session, tournament_id)
    try:
        require_organizer(actor, "add slots")
        slot = slot_admin.add_tournament_slot(session, tournament, slot_data.start, slot_data.location, slot_data.field)
    except SchedulingError as e:
        raise to_http_exception(e)
    return slot_response(slot, event.timezone)


@router.post("/events/{event_id}/slots", response_model=SlotResponse, status_code=201)
def create_event_slot(
    event_id: int,
    slot_data: SlotCreate,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Add a slot shared by every tournament of the event"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    try:
        require_organizer(actor, "add slots")
        slot = slot_admin.add_event_slot(session, event, slot_data.start, slot_data.location, slot_data.field)
    except SchedulingError as e:
        raise to_http_exception(e)
    return slot_response(slot, event.timezone)


@router.delete("/events/{event_id}/slots/{slot_id}", response_model=SlotDeleteResponse)
def delete_event_slot(
    event_id: int,
    slot_id: str,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    """Delete a slot everywhere in the event; scheduled matches in it return to pending"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    try:
        require_organizer(actor, "delete slots")
        released = slot_admin.delete_slot(session, event, slot_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return SlotDeleteResponse(slot_id=slot_id, released_matches=released)


@router.get("/matches/{match_id}/candidate-slots", response_model=List[SlotResponse])
def list_candidate_slots(
    match_id: int,
    session: Session = Depends(get_session),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Slots this match could be booked into right now"""
    match = session.get(Match, match_id)
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    tournament, event = load_tournament(session, match.tournament_id)
    try:
        available = engine.available_slots_for(tournament, event)
    except SchedulingError as e:
        raise to_http_exception(e)
    return [slot_response(s, event.timezone) for s in engine.candidate_slots_for_match(match, available)]


@router.get("/events/{event_id}/slot-conflicts", response_model=Dict[str, List[int]])
def list_slot_conflicts(event_id: int, session: Session = Depends(get_session)):
    """Slot ids held by more than one match (empty when bookings are exclusive)"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return find_slot_conflicts(load_event_matches(session, event_id))
