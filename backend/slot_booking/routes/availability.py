from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from slot_booking.database import get_session
from slot_booking.models.availability import DayWindow
from slot_booking.models.event import Event
from slot_booking.models.group import Group
from slot_booking.models.tournament import Tournament
from slot_booking.routes.dependencies import get_actor, get_engine
from slot_booking.routes.slots import SlotResponse, slot_response
from slot_booking.services.availability_store import OverrideKind, SqlAvailabilityStore
from slot_booking.services.booking_state import Actor, require_self_or_organizer
from slot_booking.services.errors import SchedulingError
from slot_booking.services.reconciliation import ReconciliationEngine
from slot_booking.utils.http_errors import to_http_exception

router = APIRouter()


class GlobalAvailabilityUpdate(BaseModel):
    available: bool


class GlobalAvailabilityResponse(BaseModel):
    player_id: int
    available: bool


class DateToggleResponse(BaseModel):
    player_id: int
    date: date
    unavailable: bool


class SlotToggleResponse(BaseModel):
    player_id: int
    slot_id: str
    is_preferred: bool


class WindowToggleResponse(BaseModel):
    player_id: int
    date: date
    window: DayWindow
    is_available: bool


class OverrideResponse(BaseModel):
    kind: str
    key: Dict[str, str]
    value: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CellResponse(BaseModel):
    player_id: int
    date: date
    status: str
    slot_ids: List[str] = []
    hours: List[str] = []


class DateSummaryResponse(BaseModel):
    date: date
    unavailable_count: int
    slot_ids: List[str]


class SlotInterestResponse(BaseModel):
    slot: SlotResponse
    interested_player_ids: List[int]


class GroupAvailabilityResponse(BaseModel):
    group_id: int
    timezone: str
    participant_ids: List[int]
    dates: List[DateSummaryResponse]
    cells: List[CellResponse]
    slots: List[SlotInterestResponse]
    globally_unavailable: List[int]

@router.put("/players/{player_id}/availability", response_model=GlobalAvailabilityResponse)
def set_global_availability(
    player_id: int,
    update: GlobalAvailabilityUpdate,
    actor: Actor = Depends(get_actor),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Switch a player's overall availability on or off"""
    try:
        require_self_or_organizer(actor, player_id)
        available = engine.set_global_availability(player_id, update.available)
    except SchedulingError as e:
        raise to_http_exception(e)
    return GlobalAvailabilityResponse(player_id=player_id, available=available)


@router.post("/players/{player_id}/date-unavailability/{day}/toggle", response_model=DateToggleResponse)
def toggle_date_unavailability(
    player_id: int,
    day: date,
    actor: Actor = Depends(get_actor),
    engine: ReconciliationEngine = Depends(get_engine),
):
    try:
        require_self_or_organizer(actor, player_id)
        unavailable = engine.toggle_date_unavailability(player_id, day)
    except SchedulingError as e:
        raise to_http_exception(e)
    return DateToggleResponse(player_id=player_id, date=day, unavailable=unavailable)


@router.post("/players/{player_id}/slot-preferences/{slot_id}/toggle", response_model=SlotToggleResponse)
def toggle_slot_preference(
    player_id: int,
    slot_id: str,
    tournament_id: int = Query(..., description="Tournament whose slot list the slot belongs to"),
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Flip interest in a slot; rejected while the slot's date is marked unavailable"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    event = session.get(Event, tournament.event_id)
    try:
        require_self_or_organizer(actor, player_id)
        preferred = engine.toggle_slot_preference(player_id, slot_id, tournament, event)
    except SchedulingError as e:
        raise to_http_exception(e)
    return SlotToggleResponse(player_id=player_id, slot_id=slot_id, is_preferred=preferred)


@router.post("/players/{player_id}/windows/{day}/{window}/toggle", response_model=WindowToggleResponse)
def toggle_window_availability(
    player_id: int,
    day: date,
    window: DayWindow,
    actor: Actor = Depends(get_actor),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Legacy MORNING/AFTERNOON/EVENING availability toggle"""
    try:
        require_self_or_organizer(actor, player_id)
        available = engine.toggle_window_availability(player_id, day, window)
    except SchedulingError as e:
        raise to_http_exception(e)
    return WindowToggleResponse(player_id=player_id, date=day, window=window, is_available=available)


@router.get("/groups/{group_id}/availability", response_model=GroupAvailabilityResponse)
def get_group_availability(
    group_id: int,
    session: Session = Depends(get_session),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Participants x dates grid plus per-slot interest for a group"""
    group = session.get(Group, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    try:
        view = engine.group_availability(group)
    except SchedulingError as e:
        raise to_http_exception(e)

    return GroupAvailabilityResponse(
        group_id=view.group_id,
        timezone=view.timezone,
        participant_ids=view.participant_ids,
        dates=[
            DateSummaryResponse(date=d.date, unavailable_count=d.unavailable_count, slot_ids=d.slot_ids)
            for d in view.dates
        ],
        cells=[
            CellResponse(player_id=c.player_id, date=c.date, status=c.status, slot_ids=c.slot_ids, hours=c.hours)
            for c in view.cells
        ],
        slots=[
            SlotInterestResponse(
                slot=slot_response(s.slot, view.timezone), interested_player_ids=s.interested_player_ids
            )
            for s in view.slots
        ],
        globally_unavailable=view.globally_unavailable,
    )


@router.get("/overrides/{kind}", response_model=List[OverrideResponse])
def list_overrides(
    kind: OverrideKind,
    player_ids: List[int] = Query(...),
    range_start: Optional[date] = Query(None),
    range_end: Optional[date] = Query(None),
    session: Session = Depends(get_session),
):
    """Batched override lookup for many players, in the kind's natural order"""
    try:
        records = SqlAvailabilityStore(session).get_overrides_for_players(kind, player_ids, range_start, range_end)
    except SchedulingError as e:
        raise to_http_exception(e)
    return [
        OverrideResponse(
            kind=r.kind.value,
            key={name: str(getattr(v, "value", v)) for name, v in r.key._asdict().items()},
            value=r.value,
            created_at=r.created_at,
            updated_at=r.updated_at,
        )
        for r in records
    ]
