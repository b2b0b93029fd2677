"""Server-side procedures behind the case-opening flow.

Each procedure runs in one ``BEGIN IMMEDIATE`` transaction and answers with
an RPC-style dict: ``{"success": True, ...}`` or ``{"success": False,
"error": code, ...}``. Business failures never raise.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from casevault.database import (
    _applyledger,
    _balance,
    _caserow,
    _rewardrows,
    accountbyid,
    caserow,
    connect,
    rewardrows,
    syncwallet,
)
from casevault.economy import TX_CASE_OPEN, TX_CASE_SELL, TX_REWARD
from casevault.inventory import inventory_items
from casevault.logs import telemetry
from casevault.opening.rewards import KIND_SKIN, RNG, eligible, entry_from_row, select_winner
from casevault.opening.sequence import ROULETTE_LENGTH, build_sequence


KEEP = "keep"
SELL = "sell"
DISPOSITIONS = {KEEP, SELL}

FREE_CASE_COOLDOWN_HOURS = 8.0
PENDING_TTL_SECONDS = 600
SEQUENCE_LENGTH = ROULETTE_LENGTH

logger = logging.getLogger(__name__)


def configure(cfg: dict) -> None:
    global FREE_CASE_COOLDOWN_HOURS, PENDING_TTL_SECONDS, SEQUENCE_LENGTH
    FREE_CASE_COOLDOWN_HOURS = float(cfg.get("free_case_cooldown_hours", FREE_CASE_COOLDOWN_HOURS))
    PENDING_TTL_SECONDS = int(cfg.get("pending_ttl_seconds", PENDING_TTL_SECONDS))
    SEQUENCE_LENGTH = int(cfg.get("roulette_length", SEQUENCE_LENGTH))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fail(code: str, **detail) -> dict:
    return {"success": False, "error": code, **detail}


def _opening(db: sqlite3.Connection, session_id: str):
    return db.execute("SELECT * FROM case_openings WHERE session_id = ?", (str(session_id),)).fetchone()


def _opening_payload(row, balance: int) -> dict:
    roulette = json.loads(row["roulette"])
    return {
        "success": True,
        "session_id": row["session_id"],
        "case_id": row["case_id"],
        "status": row["status"],
        "reward": json.loads(row["reward"]),
        "new_balance": int(balance),
        "roulette_items": roulette,
        "winner_index": int(row["winner_index"]),
    }


def _free_cooldown(db: sqlite3.Connection, user_id: int, case_id: str, moment: datetime) -> int:
    row = db.execute(
        "SELECT opened_at FROM free_case_openings WHERE user_id = ? AND case_id = ?",
        (int(user_id), str(case_id)),
    ).fetchone()
    if not row:
        return 0
    ready = datetime.fromisoformat(row["opened_at"]) + timedelta(hours=FREE_CASE_COOLDOWN_HOURS)
    return max(0, int((ready - moment).total_seconds()))


def free_case_timers(user_id: int, now: datetime | None = None) -> dict:
    moment = now or _now()
    with connect() as db:
        rows = db.execute("SELECT case_id FROM free_case_openings WHERE user_id = ?", (int(user_id),)).fetchall()
        return {r["case_id"]: _free_cooldown(db, user_id, r["case_id"], moment) for r in rows}


def reward_table(case_id: str) -> dict:
    key = str(case_id or "").strip().lower()
    case = caserow(key)
    if not case or not case["is_active"]:
        return _fail("case_not_found", case_id=key)
    return {"success": True, "case": case, "rows": rewardrows(key)}


def _open_case(db, uid: int, key: str, sid: str, is_free: bool, moment: datetime, rng) -> dict:
    existing = _opening(db, sid)
    if existing is not None:
        if int(existing["user_id"]) != uid or existing["case_id"] != key:
            return _fail("session_conflict", session_id=sid)
        out = _opening_payload(existing, _balance(db, uid))
        out["idempotent_replay"] = True
        return out

    case = _caserow(db, key)
    if not case or not case["is_active"]:
        return _fail("case_not_found", case_id=key)
    pool = eligible(entry_from_row(r) for r in _rewardrows(db, key))
    if not pool:
        return _fail("empty_case", case_id=key)

    free = bool(case["is_free"])
    if is_free and not free:
        return _fail("not_free_case", case_id=key)
    price = 0 if free else int(case["price"])
    if free:
        wait = _free_cooldown(db, uid, key, moment)
        if wait > 0:
            return _fail("free_case_cooldown", case_id=key, retry_after=wait)
    else:
        balance = _balance(db, uid)
        if balance < price:
            return _fail("insufficient_funds", required=price, current=balance)
        if price > 0:
            _applyledger(db, uid, -price, TX_CASE_OPEN, f"open case {key}", f"caseopen:{sid}:debit")

    winner = select_winner(pool, rng)
    sequence = build_sequence(winner, pool, SEQUENCE_LENGTH, rng)
    stamp = moment.isoformat()
    db.execute(
        """
        INSERT INTO case_openings (session_id, user_id, case_id, is_free, price, reward, roulette, winner_index, status, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
        """,
        (
            sid,
            uid,
            key,
            int(free),
            price,
            json.dumps(winner.to_reward()),
            json.dumps([item.to_reward() for item in sequence.items]),
            sequence.winner_index,
            stamp,
            stamp,
        ),
    )
    if free:
        db.execute(
            "INSERT OR REPLACE INTO free_case_openings (user_id, case_id, opened_at) VALUES (?, ?, ?)",
            (uid, key, stamp),
        )
    return _opening_payload(_opening(db, sid), _balance(db, uid))


def open_case(user_id: int, case_id: str, session_id: str, is_free: bool = False, now: datetime | None = None, rng=RNG) -> dict:
    uid = int(user_id)
    key = str(case_id or "").strip().lower()
    sid = str(session_id or "").strip()
    if not sid:
        return _fail("missing_session")
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        result = _open_case(db, uid, key, sid, bool(is_free), now or _now(), rng)
        db.execute("COMMIT" if result["success"] else "ROLLBACK")
    if result["success"] and not result.get("idempotent_replay"):
        telemetry(
            "case_opened",
            user_id=uid,
            case_id=key,
            session_id=sid,
            reward_id=result["reward"]["id"],
            winner_index=result["winner_index"],
        )
    elif not result["success"]:
        logger.info("open_case refused for user %s case %s: %s", uid, key, result["error"])
    return result


def confirm_case_reward(user_id: int, session_id: str, now: datetime | None = None) -> dict:
    uid = int(user_id)
    sid = str(session_id or "").strip()
    moment = now or _now()
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = _opening(db, sid)
        if row is None or int(row["user_id"]) != uid:
            db.execute("ROLLBACK")
            return _fail("session_not_found", session_id=sid)
        if row["status"] == "pending":
            db.execute(
                "UPDATE case_openings SET status = 'revealed', updated_at = ? WHERE session_id = ?",
                (moment.isoformat(), sid),
            )
        payload = _opening_payload(_opening(db, sid), _balance(db, uid))
        db.execute("COMMIT")
    return payload


def _settle(db, row, disposition: str, moment: datetime) -> dict:
    uid = int(row["user_id"])
    sid = row["session_id"]
    reward = json.loads(row["reward"])
    inventory_id = None
    if reward["kind"] == KIND_SKIN and disposition == KEEP:
        db.execute(
            """
            INSERT INTO inventory (user_id, skin_id, name, rarity, image_url, price, source_session, obtained_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                uid,
                reward["id"],
                reward.get("display_name", ""),
                reward.get("rarity", ""),
                reward.get("image_ref", ""),
                int(reward.get("monetary_value", 0)),
                sid,
                moment.isoformat(),
                moment.isoformat(),
            ),
        )
        inventory_id = int(db.execute("SELECT last_insert_rowid()").fetchone()[0])
    else:
        amount = int(reward.get("monetary_value", 0))
        tx_type = TX_CASE_SELL if disposition == SELL else TX_REWARD
        if amount > 0:
            _applyledger(db, uid, amount, tx_type, f"case reward {reward['id']} ({disposition})", f"caseopen:{sid}:settle")
    db.execute(
        """
        UPDATE case_openings SET status = 'settled', disposition = ?, inventory_id = ?, updated_at = ?
        WHERE session_id = ?
        """,
        (disposition, inventory_id, moment.isoformat(), sid),
    )
    return {
        "success": True,
        "session_id": sid,
        "disposition": disposition,
        "inventory_id": inventory_id,
        "new_balance": _balance(db, uid),
    }


def settle_case_reward(user_id: int, session_id: str, disposition: str, now: datetime | None = None) -> dict:
    uid = int(user_id)
    sid = str(session_id or "").strip()
    choice = str(disposition or "").strip().lower()
    if choice not in DISPOSITIONS:
        return _fail("invalid_disposition", disposition=choice)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = _opening(db, sid)
        if row is None or int(row["user_id"]) != uid:
            db.execute("ROLLBACK")
            return _fail("session_not_found", session_id=sid)
        if row["status"] == "settled":
            db.execute("ROLLBACK")
            if row["disposition"] != choice:
                return _fail("settlement_conflict", session_id=sid, disposition=row["disposition"])
            return {
                "success": True,
                "session_id": sid,
                "disposition": choice,
                "inventory_id": row["inventory_id"],
                "new_balance": syncwallet(uid),
                "idempotent_replay": True,
            }
        if row["status"] != "revealed":
            db.execute("ROLLBACK")
            return _fail("reward_not_revealed", session_id=sid, status=row["status"])
        result = _settle(db, row, choice, now or _now())
        db.execute("COMMIT")
    telemetry("case_settled", user_id=uid, session_id=sid, disposition=choice, inventory_id=result["inventory_id"])
    return result


def reconcile_openings(user_id: int, older_than: int | None = None, now: datetime | None = None) -> dict:
    """Keep, on the user's behalf, rewards whose view never chose a disposition."""
    uid = int(user_id)
    moment = now or _now()
    ttl = PENDING_TTL_SECONDS if older_than is None else int(older_than)
    cutoff = (moment - timedelta(seconds=ttl)).isoformat()
    kept: list[str] = []
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        rows = db.execute(
            "SELECT * FROM case_openings WHERE user_id = ? AND status IN ('pending', 'revealed') AND created_at <= ?",
            (uid, cutoff),
        ).fetchall()
        for row in rows:
            _settle(db, row, KEEP, moment)
            kept.append(row["session_id"])
        db.execute("COMMIT")
    if kept:
        telemetry("openings_reconciled", user_id=uid, count=len(kept))
    return {"success": True, "kept": kept}


RECENT_WINS_LIMIT = 20


def recent_wins(limit: int = RECENT_WINS_LIMIT) -> list[dict]:
    """Latest revealed rewards across all users, newest first."""
    with connect() as db:
        rows = db.execute(
            """
            SELECT o.case_id, o.reward, o.created_at, a.username
            FROM case_openings o
            JOIN accounts a ON a.id = o.user_id
            WHERE o.status IN ('revealed', 'settled')
            ORDER BY o.created_at DESC, o.rowid DESC
            LIMIT ?
            """,
            (max(1, int(limit)),),
        ).fetchall()
    return [
        {
            "case_id": r["case_id"],
            "username": r["username"],
            "reward": json.loads(r["reward"]),
            "won_at": r["created_at"],
        }
        for r in rows
    ]


def account_snapshot(user_id: int, now: datetime | None = None) -> dict:
    uid = int(user_id)
    reconcile_openings(uid, now=now)
    return {"success": True, "balance": syncwallet(uid), "inventory": inventory_items(uid)}


def toggle_admin_role(actor_id: int, user_id: int, grant: bool) -> dict:
    actor = accountbyid(actor_id)
    if not actor or not actor["is_admin"]:
        return _fail("forbidden")
    if int(actor_id) == int(user_id) and not grant:
        return _fail("cannot_revoke_self")
    with connect() as db:
        cur = db.execute("UPDATE accounts SET is_admin = ? WHERE id = ?", (1 if grant else 0, int(user_id)))
        if cur.rowcount == 0:
            return _fail("user_not_found", user_id=int(user_id))
    telemetry("admin_role_changed", actor_id=int(actor_id), user_id=int(user_id), grant=bool(grant))
    return {"success": True, "user_id": int(user_id), "is_admin": bool(grant)}
