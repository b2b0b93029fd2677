import random

import pytest

from casevault.opening.errors import SynchronizationMismatch
from casevault.opening.rewards import RewardTableEntry
from casevault.opening.sequence import SequenceFrozen, build_sequence


WINNER = RewardTableEntry("dragon", "skin", 0.0, display_name="Dragon")
POOL = [
    RewardTableEntry("a", "skin", 5.0),
    RewardTableEntry("b", "skin", 3.0),
    RewardTableEntry("banned", "skin", 50.0, never_drop=True),
]


def test_winner_sits_in_the_back_band():
    rng = random.Random(7)
    for _ in range(25):
        seq = build_sequence(WINNER, POOL, 100, rng)
        assert len(seq.items) == 100
        assert 80 <= seq.winner_index <= 85
        assert seq.items[seq.winner_index].id == "dragon"


def test_explicit_index_and_decoys_skip_never_drop():
    seq = build_sequence(WINNER, POOL, 100, random.Random(1), winner_index=85)
    assert seq.winner_index == 85
    assert seq.winner.id == "dragon"
    assert all(item.id in {"a", "b"} for i, item in enumerate(seq.items) if i != 85)


def test_no_decoys_fills_with_winner():
    seq = build_sequence(WINNER, [], 10, random.Random(2))
    assert {item.id for item in seq.items} == {"dragon"}


def test_frozen_sequence_refuses_rewrite():
    seq = build_sequence(RewardTableEntry("a", "skin", 5.0), POOL, 20, random.Random(3))
    placed = seq.with_winner(WINNER)
    assert placed.winner.id == "dragon"
    assert placed.revision == seq.revision + 1
    assert seq.winner.id == "a"

    placed.freeze()
    with pytest.raises(SequenceFrozen):
        placed.with_winner(RewardTableEntry("b", "skin", 3.0))
    assert placed.winner.id == "dragon"


def test_verify_flags_mismatch():
    seq = build_sequence(WINNER, POOL, 20, random.Random(4))
    seq.verify(WINNER)
    with pytest.raises(SynchronizationMismatch) as info:
        seq.verify(RewardTableEntry("other", "skin", 1.0))
    assert info.value.displayed_id == "dragon"
    assert info.value.awarded_id == "other"


def test_winner_index_must_be_in_range():
    with pytest.raises(ValueError):
        build_sequence(WINNER, POOL, 10, random.Random(5), winner_index=10)
