"""
Slot Registry: the single ingestion boundary for administrator-created slots.

Raw slot documents arrive from two sources (tournament-scoped and
event-global) in several historical shapes:

  {"id": "ts1", "start": "2025-06-01T18:00:00Z", "location": "Court 1"}
  {"slotId": "a", "time": 1748800800000, "location": "Court 1", "field": "B"}
  {"time": "2025-06-01T18:00:00.000Z", "location": "Court 1", "matchId": null}
  {"timeSlotId": 7, "date": {"seconds": 1748800800}, "location": "Court 2"}

Everything downstream works on the canonical ``TimeSlot`` produced here and
never inspects raw field names again.
"""
import logging
import math
from dataclasses import dataclass, field as dc_field, replace
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import pytz

if TYPE_CHECKING:
    from slot_booking.services.booking_index import BookedSlots

logger = logging.getLogger(__name__)

ID_FIELDS = ("id", "slotId", "timeSlotId")
START_FIELDS = ("start", "time", "date")

SOURCE_TOURNAMENT = "tournament"
SOURCE_EVENT = "event"

# Epoch values below this are seconds, at or above it milliseconds (1e11 s is year 5138)
EPOCH_SECONDS_CUTOFF = 100_000_000_000


@dataclass(frozen=True)
class TimeSlot:
    id: str
    start_ms: int
    location: str = ""
    field: Optional[str] = None
    source: str = SOURCE_TOURNAMENT
    aliases: FrozenSet[str] = dc_field(default_factory=frozenset)

    @property
    def start(self) -> datetime:
        return datetime.fromtimestamp(self.start_ms / 1000, tz=timezone.utc)

    @property
    def start_iso(self) -> str:
        return self.start.isoformat()

    @property
    def all_ids(self) -> FrozenSet[str]:
        return self.aliases | {self.id}

    @property
    def composite_key(self) -> Tuple[int, str, str]:
        return (
            self.start_ms,
            (self.location or "").strip().lower(),
            (self.field or "").strip().lower(),
        )

    def local_start(self, tz_name: str) -> datetime:
        return self.start.astimezone(resolve_timezone(tz_name))

    def date_key(self, tz_name: str) -> date:
        """Calendar date of the slot start in the event's timezone."""
        return self.local_start(tz_name).date()

    def hour_label(self, tz_name: str) -> str:
        """Start time as shown next to a date, e.g. "8.00" or "18.30"."""
        local = self.local_start(tz_name)
        return f"{local.hour}.{local.minute:02d}"


def resolve_timezone(tz_name: Optional[str]):
    try:
        return pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return pytz.UTC


def _in_range(start_ms: int) -> Optional[int]:
    """``start_ms`` if it converts to a datetime, else None."""
    try:
        datetime.fromtimestamp(start_ms / 1000, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None
    return start_ms


def _epoch_to_ms(value: float) -> Optional[int]:
    if not math.isfinite(value):
        return None
    if abs(value) < EPOCH_SECONDS_CUTOFF:
        return _in_range(int(round(value * 1000)))
    return _in_range(int(round(value)))


def _datetime_to_ms(value: datetime, tz_name: str) -> int:
    if value.tzinfo is None:
        value = resolve_timezone(tz_name).localize(value)
    return int(round(value.timestamp() * 1000))


def parse_start(value: Any, tz_name: str = "UTC") -> Optional[int]:
    """
    Convert any supported start encoding to epoch milliseconds.

    Accepts epoch seconds/milliseconds (numbers or numeric strings), ISO-8601
    strings (naive values are read in ``tz_name``), datetime objects and
    store timestamp dicts ({"seconds": ...}). Returns None when unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _datetime_to_ms(value, tz_name)
    if isinstance(value, (int, float)):
        return _epoch_to_ms(value)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (seconds, nanos)):
            return None
        if not (math.isfinite(seconds) and math.isfinite(nanos)):
            return None
        return _in_range(int(seconds * 1000) + int(nanos) // 1_000_000)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            return _epoch_to_ms(float(raw))
        except ValueError:
            pass
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        try:
            return _datetime_to_ms(datetime.fromisoformat(raw), tz_name)
        except ValueError:
            return None
    return None


def _first_present(raw: Dict[str, Any], names: Iterable[str]) -> Any:
    for name in names:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def normalize(raw: Dict[str, Any], source: str = SOURCE_TOURNAMENT, tz_name: str = "UTC") -> Optional[TimeSlot]:
    """
    Convert one raw slot document to a TimeSlot, or None if it cannot be used.

    A slot without any id field is identified by its raw start value, which
    is how older bookings referenced it.
    """
    if not isinstance(raw, dict):
        return None

    raw_start = _first_present(raw, START_FIELDS)
    start_ms = parse_start(raw_start, tz_name)
    if start_ms is None:
        logger.debug("Dropping slot with unparseable start: %r", raw)
        return None

    raw_id = _first_present(raw, ID_FIELDS)
    if raw_id is None:
        raw_id = raw_start if isinstance(raw_start, (str, int, float)) else start_ms
    slot_id = str(raw_id).strip()
    if not slot_id:
        return None

    location = raw.get("location") or ""
    field = raw.get("field")
    return TimeSlot(
        id=slot_id,
        start_ms=start_ms,
        location=str(location).strip(),
        field=str(field).strip() if field not in (None, "") else None,
        source=source,
    )


def dedupe(slots: Iterable[TimeSlot]) -> List[TimeSlot]:
    """
    Collapse duplicate slots into one logical slot.

    First by id (earliest start wins when duplicates disagree), then by the
    composite key (start, location, field) so the same window entered twice
    under different ids shows once. Ids of collapsed records are kept as
    aliases. Earlier input wins ties, so pass tournament-scoped slots first.
    """
    by_id: Dict[str, TimeSlot] = {}
    order: List[str] = []
    for slot in slots:
        existing = by_id.get(slot.id)
        if existing is None:
            by_id[slot.id] = slot
            order.append(slot.id)
        elif slot.start_ms < existing.start_ms:
            by_id[slot.id] = replace(slot, aliases=existing.aliases | slot.aliases)

    by_key: Dict[Tuple[int, str, str], TimeSlot] = {}
    key_order: List[Tuple[int, str, str]] = []
    for slot_id in order:
        slot = by_id[slot_id]
        key = slot.composite_key
        kept = by_key.get(key)
        if kept is None:
            by_key[key] = slot
            key_order.append(key)
            continue
        logger.debug("Collapsing slot %s into %s (same start/location/field)", slot.id, kept.id)
        by_key[key] = replace(kept, aliases=kept.aliases | slot.all_ids)

    return sorted((by_key[k] for k in key_order), key=lambda s: (s.start_ms, s.id))


def normalize_all(raw_slots: Optional[Iterable[Dict[str, Any]]], source: str, tz_name: str) -> List[TimeSlot]:
    out: List[TimeSlot] = []
    for raw in raw_slots or []:
        slot = normalize(raw, source=source, tz_name=tz_name)
        if slot is not None:
            out.append(slot)
    return out


def collect_slots(tournament_slots, event_slots, tz_name: str = "UTC") -> List[TimeSlot]:
    """Union of both slot sources, normalized and deduplicated."""
    return dedupe(
        normalize_all(tournament_slots, SOURCE_TOURNAMENT, tz_name)
        + normalize_all(event_slots, SOURCE_EVENT, tz_name)
    )


def now_ms(now: Optional[datetime] = None) -> int:
    if now is None:
        now = datetime.now(timezone.utc)
    return _datetime_to_ms(now, "UTC")


def future_unbooked(slots: Iterable[TimeSlot], booked: "BookedSlots", now: Optional[datetime] = None) -> List[TimeSlot]:
    """Slots that start after ``now`` and are not held by any match."""
    cutoff = now_ms(now)
    return [s for s in slots if s.start_ms > cutoff and not booked.holds(s)]


def find_slot(slots: Iterable[TimeSlot], slot_id: str) -> Optional[TimeSlot]:
    """Look up a slot by its id or any alias."""
    wanted = str(slot_id).strip()
    for slot in slots:
        if wanted in slot.all_ids:
            return slot
    return None
