"""
Organizer-side slot administration: add slots to a tournament or to the
event-global list, and delete slots.

Raw slot documents are stored as written. Deleting a slot removes every raw
record that normalizes to it (including composite-key duplicates) and frees
the scheduled matches that held it.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, select

from slot_booking.models.event import Event
from slot_booking.models.match import MATCH_PENDING, MATCH_SCHEDULED, Match
from slot_booking.models.slot_claim import SlotClaim
from slot_booking.models.tournament import Tournament
from slot_booking.services.errors import NotFoundError, ValidationError
from slot_booking.utils.slot_registry import (
    SOURCE_EVENT,
    SOURCE_TOURNAMENT,
    TimeSlot,
    collect_slots,
    find_slot,
    normalize,
    parse_start,
)

logger = logging.getLogger(__name__)


def new_slot_id() -> str:
    return f"ts{uuid.uuid4().hex[:12]}"


def build_raw_slot(start: datetime, location: str, field: Optional[str] = None) -> Dict[str, Any]:
    if not location or not location.strip():
        raise ValidationError("location is required")
    raw: Dict[str, Any] = {"id": new_slot_id(), "start": start.isoformat(), "location": location.strip()}
    if field and field.strip():
        raw["field"] = field.strip()
    return raw


def add_tournament_slot(
    session: Session, tournament: Tournament, start: datetime, location: str, field: Optional[str] = None
) -> TimeSlot:
    event = session.get(Event, tournament.event_id)
    raw = build_raw_slot(start, location, field)
    slot = normalize(raw, SOURCE_TOURNAMENT, event.timezone)
    # Reassign so the JSON column change is detected
    tournament.time_slots = list(tournament.time_slots or []) + [raw]
    session.add(tournament)
    session.commit()
    logger.info("Added slot %s to tournament %s", slot.id, tournament.id)
    return slot


def add_event_slot(
    session: Session, event: Event, start: datetime, location: str, field: Optional[str] = None
) -> TimeSlot:
    raw = build_raw_slot(start, location, field)
    slot = normalize(raw, SOURCE_EVENT, event.timezone)
    event.global_time_slots = list(event.global_time_slots or []) + [raw]
    session.add(event)
    session.commit()
    logger.info("Added global slot %s to event %s", slot.id, event.id)
    return slot


def event_slots(session: Session, event: Event) -> List[Tuple[Tournament, List[TimeSlot]]]:
    """Every tournament of the event with its merged (tournament + global) slot list."""
    tournaments = session.exec(
        select(Tournament).where(Tournament.event_id == event.id).order_by(Tournament.id)
    ).all()
    return [(t, collect_slots(t.time_slots, event.global_time_slots, event.timezone)) for t in tournaments]


def _strip_raw(raw_slots, ids, source: str, tz_name: str) -> Tuple[List[Dict[str, Any]], int]:
    kept: List[Dict[str, Any]] = []
    removed = 0
    for raw in raw_slots or []:
        slot = normalize(raw, source, tz_name)
        if slot is not None and slot.id in ids:
            removed += 1
            continue
        kept.append(raw)
    return kept, removed


def _holds(match: Match, slot: TimeSlot, tz_name: str) -> bool:
    if match.slot_id:
        return str(match.slot_id).strip() in slot.all_ids
    return bool(match.scheduled_time) and parse_start(match.scheduled_time, tz_name) == slot.start_ms


def delete_slot(session: Session, event: Event, slot_id: str) -> int:
    """
    Remove a slot from the event and every tournament.

    Scheduled matches in the slot go back to pending and lose their claim;
    completed matches keep the slot as history. Returns the number of
    matches released.
    """
    target: Optional[TimeSlot] = None
    tournaments = []
    for tournament, slots in event_slots(session, event):
        tournaments.append(tournament)
        target = target or find_slot(slots, slot_id)
    if target is None:
        target = find_slot(collect_slots(None, event.global_time_slots, event.timezone), slot_id)
    if target is None:
        raise NotFoundError(f"Slot {slot_id} not found")

    ids = target.all_ids
    removed_total = 0
    for tournament in tournaments:
        kept, removed = _strip_raw(tournament.time_slots, ids, SOURCE_TOURNAMENT, event.timezone)
        if removed:
            tournament.time_slots = kept
            session.add(tournament)
            removed_total += removed
    kept, removed = _strip_raw(event.global_time_slots, ids, SOURCE_EVENT, event.timezone)
    if removed:
        event.global_time_slots = kept
        session.add(event)
        removed_total += removed

    released = 0
    scheduled = session.exec(
        select(Match).where(Match.event_id == event.id, Match.status == MATCH_SCHEDULED)
    ).all()
    for match in scheduled:
        if not _holds(match, target, event.timezone):
            continue
        match.status = MATCH_PENDING
        match.slot_id = None
        match.scheduled_time = None
        match.location = None
        match.field = None
        match.updated_at = datetime.utcnow()
        session.add(match)
        claim = session.exec(select(SlotClaim).where(SlotClaim.match_id == match.id)).first()
        if claim is not None:
            session.delete(claim)
        released += 1

    session.commit()
    logger.info(
        "Deleted slot %s from event %s (%d raw record(s), %d match(es) released)",
        target.id,
        event.id,
        removed_total,
        released,
    )
    return released
