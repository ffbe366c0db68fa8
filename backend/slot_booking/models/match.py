from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from slot_booking.models.group import Group

MATCH_PENDING = "pending"
MATCH_SCHEDULED = "scheduled"
MATCH_COMPLETED = "completed"
MATCH_FINISHED_LEGACY = "finished"  # Older documents use this synonym for completed


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="match_group.id", index=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    player1_id: int = Field(foreign_key="player.id")
    player2_id: int = Field(foreign_key="player.id")
    sequence: int = Field(default=0)  # Order within the group

    status: str = Field(default=MATCH_PENDING)  # "pending" | "scheduled" | "completed"
    score1: Optional[int] = None
    score2: Optional[int] = None

    # Booking fields (all cleared together when the booking is released)
    slot_id: Optional[str] = Field(default=None, index=True)
    scheduled_time: Optional[str] = None  # ISO-8601 as written by the booking flow
    location: Optional[str] = None
    field: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    group: "Group" = Relationship(back_populates="matches")

    def involves(self, player_id: Optional[int]) -> bool:
        return player_id is not None and player_id in (self.player1_id, self.player2_id)

    @property
    def is_completed(self) -> bool:
        return self.status in (MATCH_COMPLETED, MATCH_FINISHED_LEGACY)
