from datetime import datetime, timedelta, timezone

from casevault import bonuses, catalog, database
from casevault.economy import get_balance


NOW = datetime(2026, 7, 1, 9, 0, tzinfo=timezone.utc)


def test_daily_streak_rules(make_user):
    catalog.seed()
    uid = make_user()

    first = bonuses.claim_daily_reward(uid, now=NOW)
    assert (first["day_number"], first["reward_coins"], first["new_streak"]) == (1, 10, 1)

    soon = bonuses.claim_daily_reward(uid, now=NOW + timedelta(hours=23))
    assert soon["error"] == "already_claimed_today"
    assert soon["retry_after"] == 3600

    second = bonuses.claim_daily_reward(uid, now=NOW + timedelta(hours=25))
    assert (second["day_number"], second["reward_coins"]) == (2, 15)

    state = bonuses.daily_state(uid, now=NOW + timedelta(hours=30))
    assert state["can_claim"] is False
    assert state["next_day"] == 3

    lapsed = bonuses.claim_daily_reward(uid, now=NOW + timedelta(hours=25 + 49))
    assert (lapsed["day_number"], lapsed["new_streak"]) == (1, 1)
    assert get_balance(uid) == 10 + 15 + 10


def test_streak_is_capped_by_calendar(make_user):
    catalog.seed()
    uid = make_user()
    bonuses.claim_daily_reward(uid, now=NOW)
    with database.connect() as db:
        db.execute("UPDATE accounts SET daily_streak = 12 WHERE id = ?", (uid,))
    capped = bonuses.claim_daily_reward(uid, now=NOW + timedelta(hours=26))
    assert capped["day_number"] == 7
    assert capped["reward_coins"] == 100
    assert capped["new_streak"] == 13


def test_no_calendar(make_user):
    uid = make_user()
    assert bonuses.claim_daily_reward(uid, now=NOW)["error"] == "no_daily_rewards"
    assert bonuses.daily_state(uid, now=NOW)["can_claim"] is False


def test_task_reward_once(make_user):
    catalog.seed()
    uid = make_user()
    assert bonuses.claim_task_reward(uid, "invite_friend")["reward_coins"] == 100
    assert bonuses.claim_task_reward(uid, "invite_friend")["error"] == "task_already_claimed"
    assert bonuses.claim_task_reward(uid, "nope")["error"] == "task_not_found"
    claimed = {t["id"]: t["claimed"] for t in bonuses.tasks(uid)}
    assert claimed["invite_friend"] is True
    assert claimed["join_channel"] is False
    assert get_balance(uid) == 100


def test_quiz_pays_right_answers_once(make_user):
    uid = make_user()
    with database.connect() as db:
        db.execute(
            "INSERT INTO quiz_questions (question, answers, correct_answer, reward_coins) VALUES (?, ?, ?, ?)",
            ("Which map has B site apartments?", "Dust II\nMirage\nNuke", 1, 20),
        )
        db.execute(
            "INSERT INTO quiz_questions (question, answers, correct_answer, reward_coins) VALUES (?, ?, ?, ?)",
            ("Smoke duration?", "10s\n18s", 1, 20),
        )
    right = bonuses.answer_quiz(uid, 1, 1)
    assert right["correct"] is True and right["reward_coins"] == 20
    assert bonuses.answer_quiz(uid, 1, 1)["error"] == "already_answered"
    wrong = bonuses.answer_quiz(uid, 2, 0)
    assert wrong["correct"] is False and wrong["reward_coins"] == 0
    listed = bonuses.quiz(uid)
    assert listed[0]["answers"] == ["Dust II", "Mirage", "Nuke"]
    assert [q["answered"] for q in listed] == [True, True]
    assert get_balance(uid) == 20
