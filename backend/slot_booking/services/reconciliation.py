"""
Reconciliation Engine: slot supply + booking claims + player overrides.

Answers the questions the booking screens ask:
- which slots can still be booked for a tournament (future, unclaimed)
- which dates a player excluded and which slots they want to play in
- whether a given slot can be claimed by a given match right now

Interest gating: a player may not change interest in a slot whose date they
marked unavailable. Marking a date unavailable later does not retract
interest already recorded.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from sqlmodel import Session, select

from slot_booking.models.availability import DayWindow
from slot_booking.models.event import Event
from slot_booking.models.group import Group
from slot_booking.models.match import Match
from slot_booking.models.player import Player
from slot_booking.models.tournament import Tournament
from slot_booking.services.availability_store import (
    AvailabilityStore,
    DateKey,
    GlobalKey,
    OverrideKind,
    SlotKey,
    SqlAvailabilityStore,
    WindowKey,
)
from slot_booking.services.booking_index import load_booking_index
from slot_booking.services.errors import ConflictError, NotFoundError, ValidationError
from slot_booking.utils.slot_registry import TimeSlot, collect_slots, find_slot, future_unbooked, now_ms

logger = logging.getLogger(__name__)

CELL_UNAVAILABLE = "unavailable"
CELL_PREFERRED = "preferred"
CELL_AVAILABLE = "available"


@dataclass
class AvailabilityCell:
    player_id: int
    date: date
    status: str  # "unavailable" | "preferred" | "available"
    slot_ids: List[str] = field(default_factory=list)
    hours: List[str] = field(default_factory=list)


@dataclass
class DateSummary:
    date: date
    unavailable_count: int
    slot_ids: List[str]


@dataclass
class SlotInterest:
    slot: TimeSlot
    date: date
    hour: str
    interested_player_ids: List[int]


@dataclass
class GroupAvailability:
    group_id: int
    timezone: str
    participant_ids: List[int]
    dates: List[DateSummary]
    cells: List[AvailabilityCell]
    slots: List[SlotInterest]
    globally_unavailable: List[int]


class ReconciliationEngine:
    def __init__(
        self,
        session: Session,
        store: Optional[AvailabilityStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.store = store if store is not None else SqlAvailabilityStore(session)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # OVERRIDE READS
    # =========================================================================

    def is_date_unavailable(self, player_id: int, day: date) -> bool:
        return self.store.get_override(OverrideKind.DATE, DateKey(player_id, day))

    def is_interested(self, player_id: int, slot_id: str) -> bool:
        return self.store.get_override(OverrideKind.SLOT, SlotKey(player_id, str(slot_id)))

    def is_globally_available(self, player_id: int) -> bool:
        return self.store.get_override(OverrideKind.GLOBAL, GlobalKey(player_id))

    def is_window_available(self, player_id: int, day: date, window: DayWindow) -> bool:
        return self.store.get_override(OverrideKind.WINDOW, WindowKey(player_id, day, DayWindow(window)))

    def unavailable_dates(
        self, player_ids: List[int], range_start: Optional[date] = None, range_end: Optional[date] = None
    ) -> Dict[int, Set[date]]:
        out: Dict[int, Set[date]] = {pid: set() for pid in player_ids}
        for record in self.store.get_overrides_for_players(OverrideKind.DATE, player_ids, range_start, range_end):
            if record.value:
                out.setdefault(record.key.player_id, set()).add(record.key.date)
        return out

    def preferred_slots(self, player_ids: List[int]) -> Dict[int, Set[str]]:
        out: Dict[int, Set[str]] = {pid: set() for pid in player_ids}
        for record in self.store.get_overrides_for_players(OverrideKind.SLOT, player_ids):
            if record.value:
                out.setdefault(record.key.player_id, set()).add(record.key.slot_id)
        return out

    # =========================================================================
    # SLOTS
    # =========================================================================

    def all_slots(self, tournament: Tournament, event: Event) -> List[TimeSlot]:
        """Every known slot for the tournament: its own list plus the event-global list."""
        return collect_slots(tournament.time_slots, event.global_time_slots, event.timezone)

    def available_slots_for(
        self, tournament: Tournament, event: Event, exclude_match_id: Optional[int] = None
    ) -> List[TimeSlot]:
        """Future slots not claimed by any match anywhere in the event."""
        booked = load_booking_index(self.session, event.id, exclude_match_id, event.timezone)
        return future_unbooked(self.all_slots(tournament, event), booked, self.now())

    def candidate_slots_for_match(self, match: Match, available_slots: List[TimeSlot]) -> List[TimeSlot]:
        """
        Slots a match may be booked into. Either participant may take any
        free slot; the opponent's unrelated preferences do not narrow it.
        """
        return list(available_slots)

    def resolve_slot_for_booking(
        self,
        tournament: Tournament,
        event: Event,
        slot_id: Optional[str],
        exclude_match_id: Optional[int] = None,
    ) -> TimeSlot:
        """
        Find ``slot_id`` and confirm it can be claimed now.

        Raises:
            ValidationError: no slot given, or the slot has already started
            NotFoundError: the slot is not in either slot list
            ConflictError: another match holds the slot
        """
        if slot_id is None or not str(slot_id).strip():
            raise ValidationError("No slot selected")

        slot = find_slot(self.all_slots(tournament, event), str(slot_id))
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")

        booked = load_booking_index(self.session, event.id, exclude_match_id, event.timezone)
        if booked.holds(slot):
            claimant = booked.claimant_of(slot)
            raise ConflictError(f"Slot {slot.id} is already booked by match {claimant}; choose another slot")

        if slot.start_ms <= now_ms(self.now()):
            raise ValidationError(f"Slot {slot.id} has already started")
        return slot

    @staticmethod
    def date_keys(slots: List[TimeSlot], tz_name: str) -> List[date]:
        """Distinct calendar dates of ``slots``, ascending."""
        return sorted({s.date_key(tz_name) for s in slots})

    @staticmethod
    def slots_by_date(slots: List[TimeSlot], tz_name: str) -> "OrderedDict[date, List[TimeSlot]]":
        grouped: Dict[date, List[TimeSlot]] = {}
        for slot in slots:
            grouped.setdefault(slot.date_key(tz_name), []).append(slot)
        return OrderedDict(
            (day, sorted(grouped[day], key=lambda s: (s.start_ms, s.id))) for day in sorted(grouped)
        )

    # =========================================================================
    # OVERRIDE WRITES
    # =========================================================================

    def toggle_date_unavailability(self, player_id: int, day: date) -> bool:
        """Flip the player's unavailability for ``day``. Returns the new state."""
        self._require_player(player_id)
        key = DateKey(player_id, day)
        if self.store.get_override(OverrideKind.DATE, key):
            self.store.remove_override(OverrideKind.DATE, key)
            logger.info("Player %s available again on %s", player_id, day)
            return False
        self.store.set_override(OverrideKind.DATE, key, True)
        logger.info("Player %s marked unavailable on %s", player_id, day)
        return True

    def toggle_slot_preference(self, player_id: int, slot_id: str, tournament: Tournament, event: Event) -> bool:
        """
        Flip the player's interest in a slot. Returns the new state.

        Raises:
            NotFoundError: unknown player, or unknown slot with no interest to clear
            ValidationError: the player marked the slot's date unavailable
        """
        player = self._require_player(player_id)
        if player.event_id != event.id:
            raise NotFoundError(f"Player {player_id} is not part of event {event.id}")

        slot_id = str(slot_id).strip()
        slot = find_slot(self.all_slots(tournament, event), slot_id)
        if slot is None:
            key = SlotKey(player_id, slot_id)
            if not self.store.get_override(OverrideKind.SLOT, key):
                raise NotFoundError(f"Slot {slot_id} not found")
            # Interest in a slot that no longer exists can always be cleared
            self.store.remove_override(OverrideKind.SLOT, key)
            return False

        day = slot.date_key(event.timezone)
        if self.is_date_unavailable(player_id, day):
            logger.warning("Rejected interest change for player %s on slot %s: unavailable on %s", player_id, slot_id, day)
            raise ValidationError(
                f"Player {player_id} is marked unavailable on {day.isoformat()}; "
                "remove the unavailability before changing interest in this slot"
            )

        # Interest is stored under the canonical id; records left under aliases count too
        alias_keys = [SlotKey(player_id, sid) for sid in sorted(slot.all_ids)]
        if any(self.store.get_override(OverrideKind.SLOT, k) for k in alias_keys):
            for k in alias_keys:
                self.store.remove_override(OverrideKind.SLOT, k)
            return False
        self.store.set_override(OverrideKind.SLOT, SlotKey(player_id, slot.id), True)
        logger.info("Player %s interested in slot %s", player_id, slot.id)
        return True

    def set_global_availability(self, player_id: int, available: bool) -> bool:
        """Store the player's global switch; ``available=True`` reverts to the default."""
        self._require_player(player_id)
        key = GlobalKey(player_id)
        if available:
            self.store.remove_override(OverrideKind.GLOBAL, key)
        else:
            self.store.set_override(OverrideKind.GLOBAL, key, False)
        return available

    def toggle_window_availability(self, player_id: int, day: date, window: DayWindow) -> bool:
        """Legacy day-window toggle: no override -> "not available"; override present -> back to default."""
        self._require_player(player_id)
        key = WindowKey(player_id, day, DayWindow(window))
        if self.store.get_record(OverrideKind.WINDOW, key) is None:
            self.store.set_override(OverrideKind.WINDOW, key, False)
            return False
        self.store.remove_override(OverrideKind.WINDOW, key)
        return True

    # =========================================================================
    # GROUP VIEW
    # =========================================================================

    def group_availability(self, group: Group) -> GroupAvailability:
        """Participants x future dates grid with per-slot interest, for one group."""
        tournament = self.session.get(Tournament, group.tournament_id)
        event = self.session.get(Event, tournament.event_id)
        tz_name = event.timezone

        known = {
            p.id for p in self.session.exec(select(Player).where(Player.event_id == event.id)).all()
        }
        participants = [pid for pid in group.player_ids or [] if pid in known]

        slots = self.available_slots_for(tournament, event)
        by_date = self.slots_by_date(slots, tz_name)
        days = list(by_date)

        unavailable = self.unavailable_dates(participants, days[0] if days else None, days[-1] if days else None)
        preferred = self.preferred_slots(participants)
        globally_off = [
            r.key.player_id
            for r in self.store.get_overrides_for_players(OverrideKind.GLOBAL, participants)
            if not r.value
        ]

        summaries = [
            DateSummary(
                date=day,
                unavailable_count=sum(1 for pid in participants if day in unavailable.get(pid, set())),
                slot_ids=[s.id for s in by_date[day]],
            )
            for day in days
        ]

        cells: List[AvailabilityCell] = []
        for pid in participants:
            for day in days:
                if day in unavailable.get(pid, set()):
                    cells.append(AvailabilityCell(pid, day, CELL_UNAVAILABLE))
                    continue
                chosen = [s for s in by_date[day] if s.all_ids & preferred.get(pid, set())]
                if chosen:
                    cells.append(
                        AvailabilityCell(
                            pid,
                            day,
                            CELL_PREFERRED,
                            slot_ids=[s.id for s in chosen],
                            hours=[s.hour_label(tz_name) for s in chosen],
                        )
                    )
                else:
                    cells.append(AvailabilityCell(pid, day, CELL_AVAILABLE))

        interest = [
            SlotInterest(
                slot=slot,
                date=slot.date_key(tz_name),
                hour=slot.hour_label(tz_name),
                interested_player_ids=[pid for pid in participants if slot.all_ids & preferred.get(pid, set())],
            )
            for slot in slots
        ]

        return GroupAvailability(
            group_id=group.id,
            timezone=tz_name,
            participant_ids=participants,
            dates=summaries,
            cells=cells,
            slots=interest,
            globally_unavailable=globally_off,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_player(self, player_id: int) -> Player:
        player = self.session.get(Player, player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found")
        return player
