from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from slot_booking.database import get_session
from slot_booking.models.event import DEFAULT_TIMEZONE, Event
from slot_booking.models.group import Group
from slot_booking.models.match import Match
from slot_booking.models.player import Player
from slot_booking.models.tournament import Tournament
from slot_booking.utils.match_generation import generate_group_matches

router = APIRouter()


def _require_name(v):
    if not v or not v.strip():
        raise ValueError("name cannot be empty")
    return v.strip()


class EventCreate(BaseModel):
    name: str
    timezone: str = DEFAULT_TIMEZONE
    global_time_slots: Optional[List[Dict[str, Any]]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_name(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        if not v or v.strip() not in pytz.all_timezones_set:
            raise ValueError(f"unknown timezone: {v!r}")
        return v.strip()


class EventResponse(BaseModel):
    id: int
    name: str
    timezone: str
    global_time_slots: Optional[List[Dict[str, Any]]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PlayerCreate(BaseModel):
    name: str
    phone: Optional[str] = None
    status: str = "confirmed"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_name(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in ("confirmed", "pending"):
            raise ValueError("status must be 'confirmed' or 'pending'")
        return v


class PlayerResponse(BaseModel):
    id: int
    event_id: int
    name: str
    phone: Optional[str] = None
    status: str

    class Config:
        from_attributes = True


class TournamentCreate(BaseModel):
    name: str
    time_slots: Optional[List[Dict[str, Any]]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_name(v)


class TournamentResponse(BaseModel):
    id: int
    event_id: int
    name: str
    time_slots: Optional[List[Dict[str, Any]]] = None

    class Config:
        from_attributes = True


class EventDetail(EventResponse):
    players: List[PlayerResponse]
    tournaments: List[TournamentResponse]


class GroupCreate(BaseModel):
    name: str
    position: int = 0
    player_ids: List[int] = []
    generate_matches: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _require_name(v)


class GroupResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    position: int
    player_ids: List[int]
    match_count: int = 0


class MatchResponse(BaseModel):
    id: int
    group_id: int
    tournament_id: int
    event_id: int
    player1_id: int
    player2_id: int
    sequence: int
    status: str
    score1: Optional[int] = None
    score2: Optional[int] = None
    slot_id: Optional[str] = None
    scheduled_time: Optional[str] = None
    location: Optional[str] = None
    field: Optional[str] = None

    class Config:
        from_attributes = True


@router.post("/events", response_model=EventResponse, status_code=201)
def create_event(event_data: EventCreate, session: Session = Depends(get_session)):
    """Create an event"""
    event = Event(**event_data.model_dump())
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@router.get("/events/{event_id}", response_model=EventDetail)
def get_event(event_id: int, session: Session = Depends(get_session)):
    """Get an event with its players and tournaments"""
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    players = session.exec(select(Player).where(Player.event_id == event_id).order_by(Player.id)).all()
    tournaments = session.exec(
        select(Tournament).where(Tournament.event_id == event_id).order_by(Tournament.id)
    ).all()
    return EventDetail(
        id=event.id,
        name=event.name,
        timezone=event.timezone,
        global_time_slots=event.global_time_slots,
        created_at=event.created_at,
        players=[PlayerResponse.model_validate(p) for p in players],
        tournaments=[TournamentResponse.model_validate(t) for t in tournaments],
    )


@router.post("/events/{event_id}/players", response_model=PlayerResponse, status_code=201)
def create_player(event_id: int, player_data: PlayerCreate, session: Session = Depends(get_session)):
    """Register a player in an event"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    player = Player(event_id=event_id, **player_data.model_dump())
    session.add(player)
    session.commit()
    session.refresh(player)
    return player


@router.post("/events/{event_id}/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(event_id: int, tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a tournament within an event"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    tournament = Tournament(event_id=event_id, **tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.post("/tournaments/{tournament_id}/groups", response_model=GroupResponse, status_code=201)
def create_group(tournament_id: int, group_data: GroupCreate, session: Session = Depends(get_session)):
    """Create a group and, unless disabled, its round robin matches"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    player_ids = list(dict.fromkeys(group_data.player_ids))
    if player_ids:
        known = session.exec(
            select(Player.id).where(Player.event_id == tournament.event_id, Player.id.in_(player_ids))
        ).all()
        missing = sorted(set(player_ids) - set(known))
        if missing:
            raise HTTPException(status_code=422, detail=f"Players not in this event: {missing}")

    group = Group(
        tournament_id=tournament_id,
        name=group_data.name,
        position=group_data.position,
        player_ids=player_ids,
    )
    session.add(group)
    session.commit()
    session.refresh(group)

    matches = []
    if group_data.generate_matches:
        matches = generate_group_matches(group, tournament.event_id)
        for match in matches:
            session.add(match)
        session.commit()

    return GroupResponse(
        id=group.id,
        tournament_id=group.tournament_id,
        name=group.name,
        position=group.position,
        player_ids=group.player_ids,
        match_count=len(matches),
    )


@router.get("/groups/{group_id}/matches", response_model=List[MatchResponse])
def list_group_matches(
    group_id: int,
    status: Optional[str] = Query(None),
    player_id: Optional[int] = Query(None, description="Only matches involving this player"),
    session: Session = Depends(get_session),
):
    """List a group's matches in sequence order"""
    if not session.get(Group, group_id):
        raise HTTPException(status_code=404, detail="Group not found")
    query = select(Match).where(Match.group_id == group_id)
    if status:
        query = query.where(Match.status == status)
    matches = session.exec(query.order_by(Match.sequence, Match.id)).all()
    if player_id is not None:
        matches = [m for m in matches if m.involves(player_id)]
    return matches
