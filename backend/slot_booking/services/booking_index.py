"""
Booking Index: which slots are currently held, derived from match state.

Nothing here is cached. Call ``load_booking_index`` on every read so the
answer always reflects the persisted match collection.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from sqlmodel import Session, select

from slot_booking.models.match import MATCH_COMPLETED, MATCH_FINISHED_LEGACY, MATCH_SCHEDULED, Match
from slot_booking.utils.slot_registry import TimeSlot, parse_start

CLAIMING_STATUSES = frozenset({MATCH_SCHEDULED, MATCH_COMPLETED, MATCH_FINISHED_LEGACY})


def match_holds_slot(match: Match) -> bool:
    """
    The one definition of "booked" used by the index and by the match counts:
    a scheduled/completed match that references a slot id or a start time.
    """
    if match.status not in CLAIMING_STATUSES:
        return False
    return bool(match.slot_id) or bool(match.scheduled_time)


@dataclass
class BookedSlots:
    ids: Set[str] = field(default_factory=set)
    # start instants claimed by legacy matches that recorded only a time
    start_ms: Set[int] = field(default_factory=set)
    # token -> claiming match id (slot ids and start instants)
    claimants: Dict[str, int] = field(default_factory=dict)

    def add(self, match: Match, tz_name: str = "UTC") -> None:
        if match.slot_id:
            # A slot id names exactly one slot; parallel slots at the same start stay free
            slot_id = str(match.slot_id).strip()
            self.ids.add(slot_id)
            self.claimants.setdefault(slot_id, match.id)
            return
        start = parse_start(match.scheduled_time, tz_name)
        if start is not None:
            self.start_ms.add(start)
            self.claimants.setdefault(f"@{start}", match.id)

    def holds(self, slot: TimeSlot) -> bool:
        if slot.all_ids & self.ids:
            return True
        return slot.start_ms in self.start_ms

    def claimant_of(self, slot: TimeSlot) -> Optional[int]:
        for slot_id in sorted(slot.all_ids):
            if slot_id in self.claimants:
                return self.claimants[slot_id]
        return self.claimants.get(f"@{slot.start_ms}")

    def __len__(self) -> int:
        return len(self.ids) + len(self.start_ms)


def build_booking_index(
    matches: Iterable[Match],
    exclude_match_id: Optional[int] = None,
    tz_name: str = "UTC",
) -> BookedSlots:
    """
    Build the set of claimed slots from a match collection.

    ``exclude_match_id`` leaves one match out, so a reschedule does not
    collide with the slot it is giving up.
    """
    booked = BookedSlots()
    for match in matches:
        if exclude_match_id is not None and match.id == exclude_match_id:
            continue
        if match_holds_slot(match):
            booked.add(match, tz_name)
    return booked


def load_event_matches(session: Session, event_id: int) -> List[Match]:
    return list(session.exec(select(Match).where(Match.event_id == event_id).order_by(Match.id)).all())


def load_booking_index(
    session: Session,
    event_id: int,
    exclude_match_id: Optional[int] = None,
    tz_name: str = "UTC",
) -> BookedSlots:
    """Recompute the index from every match of the event (all tournaments and groups)."""
    return build_booking_index(load_event_matches(session, event_id), exclude_match_id, tz_name)


def find_slot_conflicts(matches: Iterable[Match]) -> Dict[str, List[int]]:
    """Slot ids held by more than one match. Empty when exclusivity holds."""
    holders: Dict[str, List[int]] = defaultdict(list)
    for match in matches:
        if match_holds_slot(match) and match.slot_id:
            holders[str(match.slot_id).strip()].append(match.id)
    return {slot_id: sorted(ids) for slot_id, ids in sorted(holders.items()) if len(ids) > 1}
