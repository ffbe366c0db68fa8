import pytest

from slot_booking.models.group import Group
from slot_booking.utils.match_generation import generate_group_matches, round_robin_pairs, rr_matches


def test_rr_matches():
    assert rr_matches(0) == 0
    assert rr_matches(1) == 0
    assert rr_matches(4) == 6
    assert rr_matches(5) == 10
    with pytest.raises(ValueError):
        rr_matches(-1)


def test_round_robin_pairs_each_pair_once_in_stable_order():
    assert round_robin_pairs([3, 1, 2]) == [(3, 1), (3, 2), (1, 2)]
    assert round_robin_pairs([1, 2, 1]) == [(1, 2)]
    assert round_robin_pairs([7]) == []


def test_generate_group_matches_no_duplicates():
    group = Group(id=5, tournament_id=2, name="A", player_ids=[10, 11, 12, 13])

    matches = generate_group_matches(group, event_id=9)

    assert len(matches) == rr_matches(4)
    pairs = {frozenset((m.player1_id, m.player2_id)) for m in matches}
    assert len(pairs) == len(matches)
    assert [m.sequence for m in matches] == [1, 2, 3, 4, 5, 6]
    assert all(m.status == "pending" and m.event_id == 9 and m.group_id == 5 for m in matches)
