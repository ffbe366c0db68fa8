"""
Match-Count Aggregator.

Read-only projection of group match state per player:

  expected   matches in the group involving the player
  played     of those, completed (legacy "finished" included)
  scheduled  of those, not completed but holding a slot (match_holds_slot)
  remaining  max(0, expected - played)
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, select

from slot_booking.models.group import Group
from slot_booking.models.match import Match
from slot_booking.models.player import Player
from slot_booking.models.tournament import Tournament
from slot_booking.services.booking_index import match_holds_slot


@dataclass
class PlayerMatchCount:
    player_id: int
    name: str
    group_id: int
    group_name: str
    tournament_id: int
    expected: int
    played: int
    scheduled: int
    remaining: int

    @property
    def fully_completed(self) -> bool:
        return self.remaining == 0


def count_for_player(player_id: int, matches: Iterable[Match]) -> Dict[str, int]:
    expected = played = scheduled = 0
    for match in matches:
        if not match.involves(player_id):
            continue
        expected += 1
        if match.is_completed:
            played += 1
        elif match_holds_slot(match):
            scheduled += 1
    return {
        "expected": expected,
        "played": played,
        "scheduled": scheduled,
        "remaining": max(0, expected - played),
    }


def _group_rows(group: Group, matches: List[Match], names: Dict[int, str]) -> List[PlayerMatchCount]:
    rows = []
    for player_id in group.player_ids or []:
        counts = count_for_player(player_id, matches)
        rows.append(
            PlayerMatchCount(
                player_id=player_id,
                name=names.get(player_id, f"Player {player_id}"),
                group_id=group.id,
                group_name=group.name,
                tournament_id=group.tournament_id,
                **counts,
            )
        )
    return rows


def _player_names(session: Session, player_ids: Iterable[int]) -> Dict[int, str]:
    ids = list(set(player_ids))
    if not ids:
        return {}
    players = session.exec(select(Player).where(Player.id.in_(ids))).all()
    return {p.id: p.name for p in players}


def _group_matches(session: Session, group_id: int) -> List[Match]:
    return list(session.exec(select(Match).where(Match.group_id == group_id)).all())


def apply_filters(
    rows: List[PlayerMatchCount], max_played: Optional[int] = None, fully_completed: Optional[bool] = None
) -> List[PlayerMatchCount]:
    if max_played is not None:
        rows = [r for r in rows if r.played <= max_played]
    if fully_completed is not None:
        rows = [r for r in rows if r.fully_completed == fully_completed]
    return rows


def group_match_counts(session: Session, group: Group) -> List[PlayerMatchCount]:
    """One row per player listed in the group, in the group's player order."""
    names = _player_names(session, group.player_ids or [])
    return _group_rows(group, _group_matches(session, group.id), names)


def event_match_counts(
    session: Session,
    event_id: int,
    max_played: Optional[int] = None,
    fully_completed: Optional[bool] = None,
) -> List[PlayerMatchCount]:
    """
    One row per player of the event, counted in the player's assigned group:
    the first group listing them, in tournament then group order.
    """
    groups = session.exec(
        select(Group)
        .join(Tournament, Group.tournament_id == Tournament.id)
        .where(Tournament.event_id == event_id)
        .order_by(Tournament.id, Group.position, Group.id)
    ).all()

    assigned: Dict[int, Group] = {}
    for group in groups:
        for player_id in group.player_ids or []:
            assigned.setdefault(player_id, group)

    names = _player_names(session, assigned)
    rows: List[PlayerMatchCount] = []
    for group in groups:
        members = [pid for pid in group.player_ids or [] if assigned.get(pid) is group]
        if not members:
            continue
        matches = _group_matches(session, group.id)
        for row in _group_rows(group, matches, names):
            if row.player_id in members:
                rows.append(row)
                members.remove(row.player_id)
    return apply_filters(rows, max_played, fully_completed)


def bucket_by_played(rows: Iterable[PlayerMatchCount], max_matches: int) -> Dict[int, List[PlayerMatchCount]]:
    """Buckets 0..max_matches keyed by played count; players above max_matches are left out."""
    if max_matches < 0:
        raise ValueError("max_matches must be >= 0")
    buckets: Dict[int, List[PlayerMatchCount]] = {n: [] for n in range(max_matches + 1)}
    for row in rows:
        if row.played <= max_matches:
            buckets[row.played].append(row)
    for n in buckets:
        buckets[n].sort(key=lambda r: (r.played, r.name.lower(), r.player_id))
    return buckets
