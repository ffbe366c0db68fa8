"""
Per-player availability overrides.

Each table holds at most one row per composite key (enforced by a unique
constraint). A missing row means the player is on the default state.
"""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class DayWindow(str, Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"
    EVENING = "EVENING"


class AvailabilitySetting(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("player_id", name="uq_availability_setting_player"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(index=True)
    available: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DateUnavailability(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("player_id", "date", name="uq_date_unavailability_player_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(index=True)
    date: date
    unavailable: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SlotPreference(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("player_id", "slot_id", name="uq_slot_preference_player_slot"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(index=True)
    slot_id: str
    is_preferred: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class WindowAvailability(SQLModel, table=True):
    """Legacy MORNING/AFTERNOON/EVENING overrides, kept readable for older events."""

    __table_args__ = (
        SAUniqueConstraint("player_id", "date", "window", name="uq_window_availability_player_date_window"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(index=True)
    date: date
    window: DayWindow = Field(sa_column=Column(String, nullable=False))
    is_available: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
