"""
Match Booking State Machine.

    pending   --book-------->  scheduled
    scheduled --reschedule-->  scheduled   (different slot)
    scheduled --cancel------>  pending
    *         --enter result-> completed
    completed --delete result> pending     (organizer only; scheduling cleared too)

A booking writes the match and a SlotClaim row in one transaction. The claim
table's unique keys (event, slot) and (match) make the store reject a second
claim on the same slot, closing the gap between the Booking Index check and
the write. Every guard runs before anything is written.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select

from slot_booking.models.event import Event
from slot_booking.models.group import Group
from slot_booking.models.match import MATCH_COMPLETED, MATCH_PENDING, MATCH_SCHEDULED, Match
from slot_booking.models.slot_claim import SlotClaim
from slot_booking.models.tournament import Tournament
from slot_booking.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
    ValidationError,
)
from slot_booking.services.reconciliation import ReconciliationEngine
from slot_booking.utils.slot_registry import TimeSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Who is asking. Identity is established upstream; this only carries it."""

    player_id: Optional[int] = None
    is_organizer: bool = False

    def label(self) -> str:
        if self.is_organizer:
            return "organizer" if self.player_id is None else f"organizer:{self.player_id}"
        return f"player:{self.player_id}"


ORGANIZER = Actor(is_organizer=True)


def require_participant_or_organizer(match: Match, actor: Actor) -> None:
    if actor.is_organizer or match.involves(actor.player_id):
        return
    raise PermissionDeniedError(f"Only the two players of match {match.id} or an organizer may do this")


def require_self_or_organizer(actor: Actor, player_id: int) -> None:
    """A player may only change their own availability."""
    if actor.is_organizer or (actor.player_id is not None and actor.player_id == player_id):
        return
    raise PermissionDeniedError(f"Only player {player_id} or an organizer may change this availability")


def require_organizer(actor: Actor, action: str) -> None:
    if not actor.is_organizer:
        raise PermissionDeniedError(f"Only an organizer may {action}")


def parse_score(value: Any, label: str) -> int:
    """Accept a non-negative int or its decimal string; anything else is a ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label} is required and must be a non-negative integer")
    if isinstance(value, int):
        score = value
    elif isinstance(value, str) and value.strip().isdigit():
        score = int(value.strip())
    else:
        raise ValidationError(f"{label} must be a non-negative integer, got {value!r}")
    if score < 0:
        raise ValidationError(f"{label} must be a non-negative integer, got {value!r}")
    return score


class MatchBookingService:
    def __init__(self, session: Session, engine: Optional[ReconciliationEngine] = None):
        self.session = session
        self.engine = engine if engine is not None else ReconciliationEngine(session)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def book(self, match_id: int, slot_id: Optional[str], actor: Actor) -> Match:
        """pending -> scheduled into ``slot_id``."""
        match, tournament, event = self._load(match_id)
        require_participant_or_organizer(match, actor)
        if match.status != MATCH_PENDING:
            raise ValidationError(f"Match {match.id} is {match.status}; only pending matches can be booked")

        slot = self.engine.resolve_slot_for_booking(tournament, event, slot_id)
        self._apply_slot(match, slot)
        match.status = MATCH_SCHEDULED
        self.session.add(SlotClaim(event_id=event.id, slot_id=slot.id, match_id=match.id, claimed_by=actor.label()))
        self._commit_claim(match, slot)
        logger.info("Match %s booked into slot %s by %s", match.id, slot.id, actor.label())
        return match

    def reschedule(self, match_id: int, slot_id: Optional[str], actor: Actor) -> Match:
        """scheduled -> scheduled, moving to a different free slot."""
        match, tournament, event = self._load(match_id)
        require_participant_or_organizer(match, actor)
        if match.status != MATCH_SCHEDULED:
            raise ValidationError(f"Match {match.id} is {match.status}; only scheduled matches can be rescheduled")
        if slot_id is not None and str(slot_id).strip() == (match.slot_id or ""):
            raise ValidationError(f"Match {match.id} is already in slot {match.slot_id}")

        slot = self.engine.resolve_slot_for_booking(tournament, event, slot_id, exclude_match_id=match.id)
        previous = match.slot_id
        self._apply_slot(match, slot)

        claim = self._claim_for(match.id)
        if claim is None:
            self.session.add(SlotClaim(event_id=event.id, slot_id=slot.id, match_id=match.id, claimed_by=actor.label()))
        else:
            claim.slot_id = slot.id
            claim.claimed_at = datetime.utcnow()
            claim.claimed_by = actor.label()
            self.session.add(claim)
        self._commit_claim(match, slot)
        logger.info("Match %s moved from slot %s to %s by %s", match.id, previous, slot.id, actor.label())
        return match

    def cancel(self, match_id: int, actor: Actor) -> Match:
        """scheduled -> pending, releasing the slot."""
        match, _, _ = self._load(match_id)
        require_participant_or_organizer(match, actor)
        if match.status != MATCH_SCHEDULED:
            raise ValidationError(f"Match {match.id} is {match.status}; only scheduled matches can be cancelled")

        released = match.slot_id
        self._clear_slot(match)
        match.status = MATCH_PENDING
        self._release_claim(match.id)
        self._commit(match)
        logger.info("Booking of match %s in slot %s cancelled by %s", match.id, released, actor.label())
        return match

    def enter_result(self, match_id: int, score1: Any, score2: Any, actor: Actor) -> Match:
        """Any state -> completed. The slot stays referenced as the match's history."""
        match, _, _ = self._load(match_id)
        require_participant_or_organizer(match, actor)
        if match.is_completed and not actor.is_organizer:
            raise PermissionDeniedError(f"Match {match.id} already has a result; only an organizer may change it")

        parsed = (parse_score(score1, "score1"), parse_score(score2, "score2"))
        match.score1, match.score2 = parsed
        match.status = MATCH_COMPLETED
        self._touch(match)
        self.session.add(match)
        self._commit(match)
        logger.info("Result %s-%s entered for match %s by %s", match.score1, match.score2, match.id, actor.label())
        return match

    def delete_result(self, match_id: int, actor: Actor) -> Match:
        """completed -> pending. Scores and scheduling are both cleared."""
        require_organizer(actor, "delete a result")
        match, _, _ = self._load(match_id)
        if not match.is_completed:
            raise ValidationError(f"Match {match.id} is {match.status}; there is no result to delete")

        match.score1 = None
        match.score2 = None
        self._clear_slot(match)
        match.status = MATCH_PENDING
        self._release_claim(match.id)
        self._commit(match)
        logger.info("Result of match %s deleted by %s", match.id, actor.label())
        return match

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _load(self, match_id: int) -> Tuple[Match, Tournament, Event]:
        match = self.session.get(Match, match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        group = self.session.get(Group, match.group_id)
        tournament = self.session.get(Tournament, group.tournament_id) if group else None
        event = self.session.get(Event, tournament.event_id) if tournament else None
        if event is None:
            raise NotFoundError(f"Match {match_id} no longer belongs to an event")
        return match, tournament, event

    def _claim_for(self, match_id: int) -> Optional[SlotClaim]:
        return self.session.exec(select(SlotClaim).where(SlotClaim.match_id == match_id)).first()

    def _release_claim(self, match_id: int) -> None:
        claim = self._claim_for(match_id)
        if claim is not None:
            self.session.delete(claim)

    @staticmethod
    def _apply_slot(match: Match, slot: TimeSlot) -> None:
        match.slot_id = slot.id
        match.scheduled_time = slot.start_iso
        match.location = slot.location or None
        match.field = slot.field
        MatchBookingService._touch(match)

    @staticmethod
    def _clear_slot(match: Match) -> None:
        match.slot_id = None
        match.scheduled_time = None
        match.location = None
        match.field = None
        MatchBookingService._touch(match)

    @staticmethod
    def _touch(match: Match) -> None:
        match.updated_at = datetime.utcnow()

    def _commit_claim(self, match: Match, slot: TimeSlot) -> None:
        self.session.add(match)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Slot %s claimed concurrently; booking of match %s rejected", slot.id, match.id)
            raise ConflictError(f"Slot {slot.id} is already booked; choose another slot") from exc
        except OperationalError as exc:
            self.session.rollback()
            raise TransientIOError(f"Could not save booking for match {match.id}: {exc}") from exc
        self.session.refresh(match)

    def _commit(self, match: Match) -> None:
        try:
            self.session.commit()
        except OperationalError as exc:
            self.session.rollback()
            raise TransientIOError(f"Could not save match {match.id}: {exc}") from exc
        self.session.refresh(match)
