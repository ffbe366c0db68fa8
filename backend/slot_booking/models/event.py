import os
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from slot_booking.models.player import Player
    from slot_booking.models.tournament import Tournament

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")


class Event(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    timezone: str = Field(default=DEFAULT_TIMEZONE)
    # Raw slot documents shared by every tournament of the event (any legacy shape)
    global_time_slots: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    players: List["Player"] = Relationship(back_populates="event")
    tournaments: List["Tournament"] = Relationship(back_populates="event")
