from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from slot_booking.database import get_session
from slot_booking.models.event import Event
from slot_booking.models.group import Group
from slot_booking.services.match_counts import bucket_by_played, event_match_counts, group_match_counts

router = APIRouter()


class PlayerMatchCountResponse(BaseModel):
    player_id: int
    name: str
    group_id: int
    group_name: str
    tournament_id: int
    expected: int
    played: int
    scheduled: int
    remaining: int

    class Config:
        from_attributes = True


@router.get("/events/{event_id}/match-counts", response_model=List[PlayerMatchCountResponse])
def get_event_match_counts(
    event_id: int,
    max_played: Optional[int] = Query(None, ge=0, description="Only players with played <= max_played"),
    fully_completed: Optional[bool] = Query(None, description="Only players with (or without) remaining == 0"),
    session: Session = Depends(get_session),
):
    """Per-player match counts across the event, each player at their assigned group"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return event_match_counts(session, event_id, max_played=max_played, fully_completed=fully_completed)


@router.get("/events/{event_id}/match-counts/buckets", response_model=Dict[int, List[PlayerMatchCountResponse]])
def get_played_buckets(
    event_id: int,
    max_matches: int = Query(3, ge=0),
    session: Session = Depends(get_session),
):
    """Players grouped by matches played, 0..max_matches"""
    if not session.get(Event, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return bucket_by_played(event_match_counts(session, event_id), max_matches)


@router.get("/groups/{group_id}/match-counts", response_model=List[PlayerMatchCountResponse])
def get_group_match_counts(group_id: int, session: Session = Depends(get_session)):
    group = session.get(Group, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group_match_counts(session, group)
