"""
Availability Store Adapter.

Per-player overrides layered on a default state:

  GLOBAL  (player)                  -> available      default True
  DATE    (player, date)            -> unavailable    default False
  SLOT    (player, slot id)         -> is_preferred   default False
  WINDOW  (player, date, window)    -> is_available   default True (legacy)

Keys are explicit tuples (``DateKey`` etc.), one row per key. Writes are
upserts; removing an override returns the player to the default.

``AvailabilityStore`` is the narrow interface the reconciliation engine
depends on; ``SqlAvailabilityStore`` implements it over a SQLModel session.
"""
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple, Type

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, SQLModel, select

from slot_booking.models.availability import (
    AvailabilitySetting,
    DateUnavailability,
    DayWindow,
    SlotPreference,
    WindowAvailability,
)
from slot_booking.services.change_feed import (
    ChangeFeed,
    OverrideSnapshot,
    SubscriptionGroup,
    get_change_feed,
)
from slot_booking.services.errors import TransientIOError, ValidationError
from slot_booking.utils.chunking import chunked, unique_in_order

logger = logging.getLogger(__name__)

# Document stores cap "IN" predicates (Firestore allows 10 values per query)
QUERY_CHUNK_SIZE = int(os.getenv("OVERRIDE_QUERY_CHUNK_SIZE", "10"))


class OverrideKind(str, Enum):
    GLOBAL = "availability_settings"
    DATE = "date_unavailabilities"
    SLOT = "slot_preferences"
    WINDOW = "availabilities"


class GlobalKey(NamedTuple):
    player_id: int


class DateKey(NamedTuple):
    player_id: int
    date: date


class SlotKey(NamedTuple):
    player_id: int
    slot_id: str


class WindowKey(NamedTuple):
    player_id: int
    date: date
    window: DayWindow


@dataclass(frozen=True)
class OverrideRecord:
    kind: OverrideKind
    key: Tuple
    value: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class _TableSpec:
    model: Type[SQLModel]
    key_type: Type[tuple]
    key_columns: Tuple[str, ...]
    value_column: str
    default: bool
    dated: bool

    def key_of(self, row: SQLModel) -> tuple:
        return self.coerce(tuple(getattr(row, c) for c in self.key_columns))

    def coerce(self, parts: Sequence[Any]) -> tuple:
        """Build the typed key, turning ISO date strings and window names into their types."""
        values = list(parts)
        for index, column in enumerate(self.key_columns):
            if column == "date" and isinstance(values[index], str):
                values[index] = date.fromisoformat(values[index])
            elif column == "window" and not isinstance(values[index], DayWindow):
                values[index] = DayWindow(values[index])
        return self.key_type(*values)

    def sort_key(self, record: OverrideRecord) -> tuple:
        key = record.key
        if self.dated:
            return (key.date, key.player_id) + tuple(str(v) for v in key[2:])
        return tuple(str(v) if not isinstance(v, int) else v for v in reversed(key))


TABLES: Dict[OverrideKind, _TableSpec] = {
    OverrideKind.GLOBAL: _TableSpec(AvailabilitySetting, GlobalKey, ("player_id",), "available", True, False),
    OverrideKind.DATE: _TableSpec(DateUnavailability, DateKey, ("player_id", "date"), "unavailable", False, True),
    OverrideKind.SLOT: _TableSpec(SlotPreference, SlotKey, ("player_id", "slot_id"), "is_preferred", False, False),
    OverrideKind.WINDOW: _TableSpec(
        WindowAvailability, WindowKey, ("player_id", "date", "window"), "is_available", True, True
    ),
}


def default_for(kind: OverrideKind) -> bool:
    return TABLES[kind].default


def make_key(kind: OverrideKind, *parts: Any) -> tuple:
    """Build the typed key for ``kind`` from its parts, validating arity."""
    spec = TABLES[kind]
    if len(parts) != len(spec.key_columns):
        raise ValidationError(f"{kind.value} keys need {len(spec.key_columns)} parts, got {len(parts)}")
    return spec.coerce(parts)


class AvailabilityStore(ABC):
    """
    Interface consumed by the reconciliation engine.

    Implementations must keep at most one record per key and return records
    from batched reads in the kind's natural order.
    """

    @abstractmethod
    def set_override(self, kind: OverrideKind, key: tuple, value: bool) -> OverrideRecord:
        """Upsert the override for ``key``. Idempotent."""
        pass

    @abstractmethod
    def remove_override(self, kind: OverrideKind, key: tuple) -> bool:
        """Delete the override for ``key``. Returns False if there was none."""
        pass

    @abstractmethod
    def get_record(self, kind: OverrideKind, key: tuple) -> Optional[OverrideRecord]:
        pass

    def get_override(self, kind: OverrideKind, key: tuple) -> bool:
        """Override value for ``key``, or the kind's default when absent."""
        record = self.get_record(kind, key)
        return default_for(kind) if record is None else record.value

    @abstractmethod
    def get_overrides_for_players(
        self,
        kind: OverrideKind,
        player_ids: Iterable[int],
        range_start: Optional[date] = None,
        range_end: Optional[date] = None,
    ) -> List[OverrideRecord]:
        pass

    @abstractmethod
    def subscribe(
        self,
        kind: OverrideKind,
        player_ids: Iterable[int],
        callback: Callable[[OverrideSnapshot], None],
    ) -> SubscriptionGroup:
        pass


class SqlAvailabilityStore(AvailabilityStore):
    def __init__(self, session: Session, feed: Optional[ChangeFeed] = None, chunk_size: Optional[int] = None):
        self.session = session
        self.feed = feed if feed is not None else get_change_feed()
        self.chunk_size = chunk_size or QUERY_CHUNK_SIZE

    # =========================================================================
    # WRITES
    # =========================================================================

    def set_override(self, kind: OverrideKind, key: tuple, value: bool) -> OverrideRecord:
        spec = TABLES[kind]
        key = spec.coerce(key)
        try:
            row = self._upsert(spec, key, value)
        except OperationalError as exc:
            self.session.rollback()
            raise TransientIOError(f"Could not write {kind.value} override: {exc}") from exc
        self._publish(kind, key.player_id)
        return self._to_record(kind, row)

    def _upsert(self, spec: _TableSpec, key: tuple, value: bool) -> SQLModel:
        now = datetime.utcnow()
        row = self._find_row(spec, key)
        if row is None:
            row = spec.model(**dict(zip(spec.key_columns, key)), **{spec.value_column: value})
            row.created_at = now
            row.updated_at = now
            self.session.add(row)
            try:
                self.session.commit()
            except IntegrityError:
                # Another writer created the same key first; merge into its row
                self.session.rollback()
                row = self._find_row(spec, key)
                if row is None:
                    raise
            else:
                self.session.refresh(row)
                return row

        setattr(row, spec.value_column, value)
        row.updated_at = now
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def remove_override(self, kind: OverrideKind, key: tuple) -> bool:
        spec = TABLES[kind]
        key = spec.coerce(key)
        try:
            row = self._find_row(spec, key)
            if row is None:
                return False
            self.session.delete(row)
            self.session.commit()
        except OperationalError as exc:
            self.session.rollback()
            raise TransientIOError(f"Could not remove {kind.value} override: {exc}") from exc
        self._publish(kind, key.player_id)
        return True

    # =========================================================================
    # READS
    # =========================================================================

    def get_record(self, kind: OverrideKind, key: tuple) -> Optional[OverrideRecord]:
        spec = TABLES[kind]
        try:
            row = self._find_row(spec, spec.coerce(key))
        except OperationalError as exc:
            raise TransientIOError(f"Could not read {kind.value} override: {exc}") from exc
        return None if row is None else self._to_record(kind, row)

    def get_overrides_for_players(
        self,
        kind: OverrideKind,
        player_ids: Iterable[int],
        range_start: Optional[date] = None,
        range_end: Optional[date] = None,
    ) -> List[OverrideRecord]:
        """
        Batched lookup across many players.

        Ids are queried in chunks of ``chunk_size``; the merged result is
        sorted as a whole, not per chunk. The date range applies to dated
        kinds only.
        """
        spec = TABLES[kind]
        ids = unique_in_order(player_ids)
        records: List[OverrideRecord] = []
        for chunk in chunked(ids, self.chunk_size):
            records.extend(self._query_chunk(kind, chunk, range_start, range_end))
        return sorted(records, key=spec.sort_key)

    def _query_chunk(
        self,
        kind: OverrideKind,
        chunk: Sequence[int],
        range_start: Optional[date],
        range_end: Optional[date],
    ) -> List[OverrideRecord]:
        spec = TABLES[kind]
        model = spec.model
        query = select(model).where(model.player_id.in_(list(chunk)))
        if spec.dated:
            if range_start is not None:
                query = query.where(model.date >= range_start)
            if range_end is not None:
                query = query.where(model.date <= range_end)
        try:
            rows = self.session.exec(query).all()
        except OperationalError as exc:
            raise TransientIOError(f"Could not query {kind.value}: {exc}") from exc
        return [self._to_record(kind, row) for row in rows]

    # =========================================================================
    # REALTIME
    # =========================================================================

    def subscribe(
        self,
        kind: OverrideKind,
        player_ids: Iterable[int],
        callback: Callable[[OverrideSnapshot], None],
    ) -> SubscriptionGroup:
        """
        Subscribe to full-state snapshots for ``player_ids``.

        Players are split into partitions of ``chunk_size``; each partition
        gets an initial snapshot now and a new one after every change.
        """
        ids = unique_in_order(player_ids)
        subscriptions = []
        for index, chunk in enumerate(chunked(ids, self.chunk_size)):
            subscription = self.feed.subscribe(kind, chunk, callback, partition=f"{kind.value}:{index}")
            subscriptions.append(subscription)
            subscription.deliver(self._loader(kind))
        return SubscriptionGroup(subscriptions)

    def _loader(self, kind: OverrideKind):
        return lambda ids: self.get_overrides_for_players(kind, ids)

    def _publish(self, kind: OverrideKind, player_id: int) -> None:
        delivered = self.feed.publish(kind, player_id, self._loader(kind))
        if delivered:
            logger.debug("Published %s snapshot for player %s to %d subscriber(s)", kind.value, player_id, delivered)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _find_row(self, spec: _TableSpec, key: tuple) -> Optional[SQLModel]:
        query = select(spec.model)
        for column, value in zip(spec.key_columns, key):
            query = query.where(getattr(spec.model, column) == value)
        return self.session.exec(query).first()

    @staticmethod
    def _to_record(kind: OverrideKind, row: SQLModel) -> OverrideRecord:
        spec = TABLES[kind]
        return OverrideRecord(
            kind=kind,
            key=spec.key_of(row),
            value=bool(getattr(row, spec.value_column)),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
