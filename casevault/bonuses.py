import logging
from datetime import datetime, timedelta, timezone

from casevault.database import _applyledger, _balance, connect
from casevault.economy import TX_DAILY, TX_QUIZ, TX_TASK
from casevault.logs import telemetry


CLAIM_INTERVAL = timedelta(hours=24)
STREAK_WINDOW = timedelta(hours=48)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _calendar(db) -> list[dict]:
    rows = db.execute(
        "SELECT day_number, reward_coins FROM daily_rewards WHERE is_active = 1 ORDER BY day_number ASC"
    ).fetchall()
    return [dict(r) for r in rows]


def _lastclaim(db, user_id: int):
    return db.execute(
        "SELECT day_number, claimed_at FROM daily_claims WHERE user_id = ? ORDER BY id DESC LIMIT 1",
        (int(user_id),),
    ).fetchone()


def _next_streak(db, user_id: int, moment: datetime) -> tuple[int, int]:
    """Return (seconds until claimable, streak the next claim would reach)."""
    last = _lastclaim(db, user_id)
    if last is None:
        return 0, 1
    at = datetime.fromisoformat(last["claimed_at"])
    wait = max(0, int((at + CLAIM_INTERVAL - moment).total_seconds()))
    row = db.execute("SELECT daily_streak FROM accounts WHERE id = ?", (int(user_id),)).fetchone()
    streak = int(row["daily_streak"]) if row else 0
    if moment - at >= STREAK_WINDOW:
        return wait, 1
    return wait, streak + 1


def daily_state(user_id: int, now: datetime | None = None) -> dict:
    moment = now or _now()
    with connect() as db:
        calendar = _calendar(db)
        wait, streak = _next_streak(db, user_id, moment)
        claimed = [
            dict(r)
            for r in db.execute(
                "SELECT day_number, reward_coins, claimed_at FROM daily_claims WHERE user_id = ? ORDER BY id DESC LIMIT 30",
                (int(user_id),),
            ).fetchall()
        ]
    day = min(streak, len(calendar)) if calendar else 0
    return {
        "calendar": calendar,
        "claimed": claimed,
        "can_claim": bool(calendar) and wait == 0,
        "retry_after": wait,
        "next_day": day,
    }


def claim_daily_reward(user_id: int, now: datetime | None = None) -> dict:
    uid = int(user_id)
    moment = now or _now()
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        calendar = _calendar(db)
        if not calendar:
            db.execute("ROLLBACK")
            return {"success": False, "error": "no_daily_rewards"}
        wait, streak = _next_streak(db, uid, moment)
        if wait > 0:
            db.execute("ROLLBACK")
            return {"success": False, "error": "already_claimed_today", "retry_after": wait}
        day = min(streak, len(calendar))
        coins = int(calendar[day - 1]["reward_coins"])
        db.execute(
            "INSERT INTO daily_claims (user_id, day_number, reward_coins, claimed_at) VALUES (?, ?, ?, ?)",
            (uid, day, coins, moment.isoformat()),
        )
        claim_id = int(db.execute("SELECT last_insert_rowid()").fetchone()[0])
        db.execute("UPDATE accounts SET daily_streak = ? WHERE id = ?", (streak, uid))
        if coins > 0:
            _applyledger(db, uid, coins, TX_DAILY, f"daily reward day {day}", f"daily:{claim_id}")
        balance = _balance(db, uid)
        db.execute("COMMIT")
    telemetry("daily_claimed", user_id=uid, day=day, coins=coins, streak=streak)
    return {"success": True, "day_number": day, "reward_coins": coins, "new_streak": streak, "new_balance": balance}


def tasks(user_id: int) -> list[dict]:
    with connect() as db:
        rows = db.execute(
            """
            SELECT t.id, t.title, t.reward_coins, c.claimed_at
            FROM tasks t
            LEFT JOIN task_claims c ON c.task_id = t.id AND c.user_id = ?
            WHERE t.is_active = 1
            ORDER BY t.reward_coins ASC, t.id ASC
            """,
            (int(user_id),),
        ).fetchall()
    return [{**dict(r), "claimed": r["claimed_at"] is not None} for r in rows]


def claim_task_reward(user_id: int, task_id: str) -> dict:
    uid = int(user_id)
    key = str(task_id or "").strip().lower()
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        task = db.execute("SELECT id, title, reward_coins, is_active FROM tasks WHERE id = ?", (key,)).fetchone()
        if task is None or not task["is_active"]:
            db.execute("ROLLBACK")
            return {"success": False, "error": "task_not_found"}
        done = db.execute("SELECT 1 FROM task_claims WHERE user_id = ? AND task_id = ?", (uid, key)).fetchone()
        if done:
            db.execute("ROLLBACK")
            return {"success": False, "error": "task_already_claimed"}
        db.execute("INSERT INTO task_claims (user_id, task_id) VALUES (?, ?)", (uid, key))
        coins = int(task["reward_coins"])
        if coins > 0:
            _applyledger(db, uid, coins, TX_TASK, f"task {task['title']}", f"task:{key}")
        balance = _balance(db, uid)
        db.execute("COMMIT")
    logger.info("user %s claimed task %s for %s coins", uid, key, coins)
    return {"success": True, "task_id": key, "reward_coins": coins, "new_balance": balance}


def quiz(user_id: int) -> list[dict]:
    with connect() as db:
        rows = db.execute(
            """
            SELECT q.id, q.question, q.answers, q.reward_coins, a.correct
            FROM quiz_questions q
            LEFT JOIN quiz_answers a ON a.question_id = q.id AND a.user_id = ?
            WHERE q.is_active = 1
            ORDER BY q.id ASC
            """,
            (int(user_id),),
        ).fetchall()
    return [
        {
            "id": int(r["id"]),
            "question": r["question"],
            "answers": [line.strip() for line in r["answers"].splitlines() if line.strip()],
            "reward_coins": int(r["reward_coins"]),
            "answered": r["correct"] is not None,
            "correct": bool(r["correct"]),
        }
        for r in rows
    ]


def answer_quiz(user_id: int, question_id: int, answer: int) -> dict:
    """One attempt per question; only a right answer pays."""
    uid = int(user_id)
    qid = int(question_id)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute(
            "SELECT id, correct_answer, reward_coins, is_active FROM quiz_questions WHERE id = ?",
            (qid,),
        ).fetchone()
        if row is None or not row["is_active"]:
            db.execute("ROLLBACK")
            return {"success": False, "error": "question_not_found"}
        if db.execute("SELECT 1 FROM quiz_answers WHERE user_id = ? AND question_id = ?", (uid, qid)).fetchone():
            db.execute("ROLLBACK")
            return {"success": False, "error": "already_answered"}
        correct = int(answer) == int(row["correct_answer"])
        db.execute("INSERT INTO quiz_answers (user_id, question_id, correct) VALUES (?, ?, ?)", (uid, qid, int(correct)))
        coins = int(row["reward_coins"]) if correct else 0
        if coins > 0:
            _applyledger(db, uid, coins, TX_QUIZ, f"quiz question {qid}", f"quiz:{qid}")
        balance = _balance(db, uid)
        db.execute("COMMIT")
    return {"success": True, "correct": correct, "reward_coins": coins, "new_balance": balance}
