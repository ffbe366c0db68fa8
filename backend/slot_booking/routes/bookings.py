"""Booking and result endpoints."""
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from slot_booking.routes.dependencies import get_actor, get_booking_service
from slot_booking.routes.events import MatchResponse
from slot_booking.services.booking_state import Actor, MatchBookingService
from slot_booking.services.errors import SchedulingError
from slot_booking.utils.http_errors import to_http_exception

router = APIRouter()


class BookRequest(BaseModel):
    slot_id: Optional[str] = None


class ResultRequest(BaseModel):
    # Raw values; the state machine validates them so bad input maps to one error type
    score1: Any = None
    score2: Any = None


@router.post("/matches/{match_id}/book", response_model=MatchResponse)
def book_match(
    match_id: int,
    request: BookRequest,
    actor: Actor = Depends(get_actor),
    service: MatchBookingService = Depends(get_booking_service),
):
    """Book a pending match into a free slot"""
    try:
        return service.book(match_id, request.slot_id, actor)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/matches/{match_id}/reschedule", response_model=MatchResponse)
def reschedule_match(
    match_id: int,
    request: BookRequest,
    actor: Actor = Depends(get_actor),
    service: MatchBookingService = Depends(get_booking_service),
):
    """Move a scheduled match to another free slot"""
    try:
        return service.reschedule(match_id, request.slot_id, actor)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/matches/{match_id}/cancel", response_model=MatchResponse)
def cancel_booking(
    match_id: int,
    actor: Actor = Depends(get_actor),
    service: MatchBookingService = Depends(get_booking_service),
):
    """Release a scheduled match's slot"""
    try:
        return service.cancel(match_id, actor)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.put("/matches/{match_id}/result", response_model=MatchResponse)
def enter_result(
    match_id: int,
    request: ResultRequest,
    actor: Actor = Depends(get_actor),
    service: MatchBookingService = Depends(get_booking_service),
):
    try:
        return service.enter_result(match_id, request.score1, request.score2, actor)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.delete("/matches/{match_id}/result", response_model=MatchResponse)
def delete_result(
    match_id: int,
    actor: Actor = Depends(get_actor),
    service: MatchBookingService = Depends(get_booking_service),
):
    """Organizer only: clear the result and the booking"""
    try:
        return service.delete_result(match_id, actor)
    except SchedulingError as e:
        raise to_http_exception(e)
