"""
Round robin match generation for a group.
"""

from typing import List, Tuple

from slot_booking.models.group import Group
from slot_booking.models.match import MATCH_PENDING, Match


def rr_matches(n: int) -> int:
    """Round robin match count: n * (n-1) / 2"""
    if n < 0:
        raise ValueError(f"rr_matches: n must be >= 0, got {n}")
    return (n * (n - 1)) // 2


def round_robin_pairs(player_ids: List[int]) -> List[Tuple[int, int]]:
    """Every unordered pair once, in listing order: (a, b), (a, c), ..., (b, c), ..."""
    ids = []
    for player_id in player_ids:
        if player_id not in ids:
            ids.append(player_id)
    pairs = []
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            pairs.append((ids[i], ids[j]))
    return pairs


def generate_group_matches(group: Group, event_id: int) -> List[Match]:
    """Pending matches for every pairing in the group. Caller adds and commits them."""
    matches = []
    for sequence, (player1_id, player2_id) in enumerate(round_robin_pairs(group.player_ids or []), start=1):
        matches.append(
            Match(
                group_id=group.id,
                tournament_id=group.tournament_id,
                event_id=event_id,
                player1_id=player1_id,
                player2_id=player2_id,
                sequence=sequence,
                status=MATCH_PENDING,
            )
        )
    return matches
