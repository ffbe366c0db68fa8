from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from slot_booking.models.match import Match
    from slot_booking.models.tournament import Tournament


class Group(SQLModel, table=True):
    __tablename__ = "match_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    position: int = Field(default=0)  # Display order within the tournament
    player_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="groups")
    matches: List["Match"] = Relationship(back_populates="group")
