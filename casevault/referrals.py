import logging
import secrets
import sqlite3

from casevault.database import _applyledger, connect
from casevault.economy import TX_REFERRAL
from casevault.logs import telemetry


REFERRAL_BONUS_COINS = 50
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

logger = logging.getLogger(__name__)


def _randomcode(length: int = 8) -> str:
    return "REF" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def _uniquecode(db: sqlite3.Connection) -> str:
    for _ in range(64):
        candidate = _randomcode()
        if not db.execute("SELECT 1 FROM accounts WHERE referral_code = ? LIMIT 1", (candidate,)).fetchone():
            return candidate
    return _randomcode(12)


def referral_code(user_id: int) -> str | None:
    """Return the user's code, minting one on first use."""
    uid = int(user_id)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute("SELECT referral_code FROM accounts WHERE id = ?", (uid,)).fetchone()
        if row is None:
            db.execute("ROLLBACK")
            return None
        if row["referral_code"]:
            db.execute("ROLLBACK")
            return row["referral_code"]
        code = _uniquecode(db)
        db.execute("UPDATE accounts SET referral_code = ? WHERE id = ?", (code, uid))
        db.execute("COMMIT")
    logger.info("minted referral code for user %s", uid)
    return code


def referral_stats(user_id: int) -> dict:
    uid = int(user_id)
    code = referral_code(uid)
    with connect() as db:
        row = db.execute(
            "SELECT COUNT(*) AS invited, COALESCE(SUM(coins_earned), 0) AS earned FROM referral_earnings WHERE referrer_id = ?",
            (uid,),
        ).fetchone()
    return {"code": code, "invited": int(row["invited"]), "coins_earned": int(row["earned"]), "bonus": REFERRAL_BONUS_COINS}


def apply_referral(user_id: int, code: str) -> dict:
    """Attach a new user to whoever owns ``code`` and pay the referrer once."""
    uid = int(user_id)
    text = str(code or "").strip().upper()
    if not text:
        return {"success": False, "error": "referral_not_found"}
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        referrer = db.execute("SELECT id FROM accounts WHERE referral_code = ?", (text,)).fetchone()
        me = db.execute("SELECT referred_by FROM accounts WHERE id = ?", (uid,)).fetchone()
        error = None
        if referrer is None or me is None:
            error = "referral_not_found"
        elif int(referrer["id"]) == uid:
            error = "cannot_refer_self"
        elif me["referred_by"] is not None:
            error = "referral_already_used"
        if error:
            db.execute("ROLLBACK")
            return {"success": False, "error": error}

        referrer_id = int(referrer["id"])
        db.execute("UPDATE accounts SET referred_by = ? WHERE id = ?", (referrer_id, uid))
        db.execute(
            "INSERT INTO referral_earnings (referrer_id, referred_id, coins_earned) VALUES (?, ?, ?)",
            (referrer_id, uid, REFERRAL_BONUS_COINS),
        )
        _applyledger(db, referrer_id, REFERRAL_BONUS_COINS, TX_REFERRAL, f"referral of user {uid}", f"referral:{uid}")
        db.execute("COMMIT")
    telemetry("referral_applied", referrer_id=referrer_id, user_id=uid, coins=REFERRAL_BONUS_COINS)
    return {"success": True, "referrer_id": referrer_id, "coins_earned": REFERRAL_BONUS_COINS}
