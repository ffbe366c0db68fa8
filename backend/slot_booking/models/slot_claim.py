from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class SlotClaim(SQLModel, table=True):
    """One row per slot held by a match; the unique keys make double-booking a store error."""

    __table_args__ = (
        SAUniqueConstraint("event_id", "slot_id", name="uq_slotclaim_event_slot"),
        SAUniqueConstraint("match_id", name="uq_slotclaim_match"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: int = Field(foreign_key="event.id", index=True)
    slot_id: str
    match_id: int = Field(foreign_key="match.id")
    claimed_at: datetime = Field(default_factory=datetime.utcnow)
    claimed_by: Optional[str] = None
