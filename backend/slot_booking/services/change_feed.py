"""
In-process change feed for availability overrides.

Subscribers register for one override kind and a set of players. After every
write touching one of those players the feed delivers a full snapshot of the
subscribed set. Snapshots replace state; they are never deltas.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

if TYPE_CHECKING:
    from slot_booking.services.availability_store import OverrideKind, OverrideRecord

logger = logging.getLogger(__name__)

SnapshotLoader = Callable[[Sequence[int]], List["OverrideRecord"]]


@dataclass(frozen=True)
class OverrideSnapshot:
    kind: "OverrideKind"
    partition: str
    player_ids: FrozenSet[int]
    records: List["OverrideRecord"]


SnapshotCallback = Callable[[OverrideSnapshot], None]


@dataclass
class Subscription:
    id: str
    kind: "OverrideKind"
    partition: str
    player_ids: FrozenSet[int]
    callback: SnapshotCallback
    feed: "ChangeFeed"
    active: bool = True

    def close(self) -> None:
        self.feed.unsubscribe(self)

    def deliver(self, loader: SnapshotLoader) -> None:
        if not self.active:
            return
        records = loader(sorted(self.player_ids))
        self.callback(OverrideSnapshot(self.kind, self.partition, self.player_ids, records))


class SubscriptionGroup:
    """Handle for a multi-partition subscription. Closing it closes every partition."""

    def __init__(self, subscriptions: Iterable[Subscription]):
        self.subscriptions: List[Subscription] = list(subscriptions)

    @property
    def partitions(self) -> List[str]:
        return [s.partition for s in self.subscriptions]

    @property
    def active(self) -> bool:
        return any(s.active for s in self.subscriptions)

    def close(self) -> None:
        for subscription in self.subscriptions:
            subscription.close()

    def __enter__(self) -> "SubscriptionGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Subscription] = {}

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(
        self,
        kind: "OverrideKind",
        player_ids: Iterable[int],
        callback: SnapshotCallback,
        partition: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(
            id=uuid.uuid4().hex,
            kind=kind,
            partition=partition or uuid.uuid4().hex[:8],
            player_ids=frozenset(player_ids),
            callback=callback,
            feed=self,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
        subscription.active = False

    def publish(self, kind: "OverrideKind", player_id: int, loader: SnapshotLoader) -> int:
        """Push a fresh snapshot to every subscription covering ``player_id``. Returns deliveries made."""
        with self._lock:
            targets = [
                s for s in self._subscriptions.values() if s.kind == kind and player_id in s.player_ids
            ]
        for subscription in targets:
            try:
                subscription.deliver(loader)
            except Exception:
                # A failing subscriber must not fail the write that triggered it
                logger.exception("Snapshot delivery failed for subscription %s", subscription.id)
        return len(targets)

    def clear(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.active = False


class AvailabilityProjection:
    """
    Local read model fed by snapshots.

    State is kept per partition and each snapshot replaces its partition
    wholesale, so players that drop out of a partition leave no stale flags.
    """

    def __init__(self):
        self._partitions: Dict[str, Dict[Any, Any]] = {}

    def apply(self, snapshot: OverrideSnapshot) -> None:
        self._partitions[snapshot.partition] = {r.key: r.value for r in snapshot.records}

    def drop(self, partition: str) -> None:
        self._partitions.pop(partition, None)

    @property
    def partitions(self) -> List[str]:
        return sorted(self._partitions)

    def get(self, key: Any, default: Any = None) -> Any:
        for entries in self._partitions.values():
            if key in entries:
                return entries[key]
        return default

    def items(self) -> List[tuple]:
        merged: Dict[Any, Any] = {}
        for entries in self._partitions.values():
            merged.update(entries)
        return list(merged.items())

    def keys_for_player(self, player_id: int, value: Any = True) -> List[Any]:
        """Keys of ``player_id`` whose value equals ``value`` (e.g. unavailable dates)."""
        return sorted(k for k, v in self.items() if k.player_id == player_id and v == value)


_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    global _feed
    if _feed is None:
        _feed = ChangeFeed()
    return _feed


def reset_change_feed() -> None:
    global _feed
    if _feed is not None:
        _feed.clear()
    _feed = None
