"""
Request-scoped dependencies shared by the routers.

The caller identity comes from the X-Player-Id / X-Organizer headers set by
the authenticating proxy; routes only pass it on as an Actor.
"""
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, Header
from sqlmodel import Session

from slot_booking.database import get_session
from slot_booking.services.booking_state import Actor, MatchBookingService
from slot_booking.services.reconciliation import ReconciliationEngine

TRUTHY = ("1", "true", "yes")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_actor(
    x_player_id: Optional[int] = Header(None),
    x_organizer: Optional[str] = Header(None),
) -> Actor:
    return Actor(player_id=x_player_id, is_organizer=(x_organizer or "").strip().lower() in TRUTHY)


def get_clock() -> Clock:
    """Source of "now" for past-slot filtering; tests override it with a fixed instant."""
    return utc_now


def get_engine(session: Session = Depends(get_session), clock: Clock = Depends(get_clock)) -> ReconciliationEngine:
    return ReconciliationEngine(session, clock=clock)


def get_booking_service(
    session: Session = Depends(get_session), engine: ReconciliationEngine = Depends(get_engine)
) -> MatchBookingService:
    return MatchBookingService(session, engine)
