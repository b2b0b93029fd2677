import random

import pytest

from casevault.opening.animator import COMPLETE, ERROR, IDLE, OPENING, SETTLING, SPINNING, RevealAnimator
from casevault.opening.errors import InvalidPhase, NetworkFailure
from casevault.opening.rewards import RewardTableEntry
from casevault.opening.sequence import build_sequence


WINNER = RewardTableEntry("w", "skin", 0.0)


def frozen(length=100, index=85):
    pool = [RewardTableEntry("d", "skin", 1.0)]
    return build_sequence(WINNER, pool, length, random.Random(0), winner_index=index).freeze()


def make(scheduler):
    done = []
    anim = RevealAnimator(scheduler, 1.0, 5.0, on_spin_complete=lambda: done.append(1))
    return anim, done


def test_duplicate_spin_callbacks_complete_once(scheduler):
    anim, done = make(scheduler)
    anim.begin()
    lead_in = scheduler.last()
    assert anim.phase == OPENING

    lead_in.fire()
    assert anim.phase == OPENING

    seq = frozen()
    anim.reward_ready(seq)
    assert anim.phase == SPINNING
    spin = scheduler.last()
    assert spin.delay == 5.0
    assert anim.sequence.items[85].id == "w"

    spin.fire()
    spin.fire()
    assert anim.spin_finished() is False
    assert done == [1]
    assert anim.phase == SETTLING

    anim.settled()
    assert anim.history == [IDLE, OPENING, SPINNING, SETTLING, COMPLETE]


def test_reward_before_lead_in_waits(scheduler):
    anim, _ = make(scheduler)
    anim.begin()
    lead_in = scheduler.last()
    anim.reward_ready(frozen())
    assert anim.phase == OPENING
    lead_in.fire()
    assert anim.phase == SPINNING


def test_view_report_beats_timer(scheduler):
    anim, done = make(scheduler)
    anim.begin()
    scheduler.last().fire()
    anim.reward_ready(frozen())
    spin = scheduler.last()
    assert anim.spin_finished() is True
    assert spin.cancelled
    spin.fire()
    assert done == [1]


def test_spinning_cannot_jump_to_complete(scheduler):
    anim, _ = make(scheduler)
    anim.begin()
    scheduler.last().fire()
    anim.reward_ready(frozen())
    with pytest.raises(InvalidPhase):
        anim.settled()
    assert anim.phase == SPINNING


def test_unfrozen_sequence_is_refused(scheduler):
    anim, _ = make(scheduler)
    anim.begin()
    seq = build_sequence(WINNER, [], 10, random.Random(0))
    with pytest.raises(ValueError):
        anim.reward_ready(seq)


def test_cancel_ignores_late_timers(scheduler):
    anim, done = make(scheduler)
    anim.begin()
    scheduler.last().fire()
    anim.reward_ready(frozen())
    spin = scheduler.last()

    anim.cancel()
    spin.fire()
    assert done == []
    assert anim.phase == IDLE
    assert anim.cancelled


def test_reset_drops_previous_generation(scheduler):
    anim, _ = make(scheduler)
    anim.begin()
    stale = scheduler.last()
    anim.reset()
    anim.begin()
    stale.fire()
    assert anim.phase == OPENING
    assert anim.history == [IDLE, OPENING]


def test_fail_lands_in_error_once(scheduler):
    anim, _ = make(scheduler)
    anim.begin()
    assert anim.fail(NetworkFailure("down")) is True
    assert anim.phase == ERROR
    assert anim.fail(NetworkFailure("again")) is False
    assert scheduler.last().cancelled
