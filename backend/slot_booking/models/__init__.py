from slot_booking.models.availability import (
    AvailabilitySetting,
    DateUnavailability,
    DayWindow,
    SlotPreference,
    WindowAvailability,
)
from slot_booking.models.event import Event
from slot_booking.models.group import Group
from slot_booking.models.match import Match
from slot_booking.models.player import Player
from slot_booking.models.slot_claim import SlotClaim
from slot_booking.models.tournament import Tournament

__all__ = [
    "Event",
    "Player",
    "Tournament",
    "Group",
    "Match",
    "SlotClaim",
    "AvailabilitySetting",
    "DateUnavailability",
    "SlotPreference",
    "WindowAvailability",
    "DayWindow",
]
