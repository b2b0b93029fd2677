from datetime import datetime, timezone

from casevault.database import _applyledger, _balance, connect
from casevault.economy import TX_PROMO
from casevault.logs import telemetry


def _expired(expires_at: str | None, moment: datetime) -> bool:
    if not expires_at:
        return False
    stamp = datetime.fromisoformat(expires_at)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp < moment


def redeem_promo(user_id: int, code: str, now: datetime | None = None) -> dict:
    uid = int(user_id)
    text = str(code or "").strip().upper()
    if not text:
        return {"success": False, "error": "promo_not_found"}
    moment = now or datetime.now(timezone.utc)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        promo = db.execute(
            "SELECT id, code, reward_coins, max_uses, current_uses, expires_at, is_active FROM promo_codes WHERE UPPER(code) = ?",
            (text,),
        ).fetchone()
        error = None
        if promo is None or not promo["is_active"]:
            error = "promo_not_found"
        elif db.execute(
            "SELECT 1 FROM promo_redemptions WHERE user_id = ? AND promo_id = ?",
            (uid, int(promo["id"])),
        ).fetchone():
            error = "promo_already_used"
        elif promo["max_uses"] is not None and int(promo["current_uses"]) >= int(promo["max_uses"]):
            error = "promo_limit_reached"
        elif _expired(promo["expires_at"], moment):
            error = "promo_expired"
        if error:
            db.execute("ROLLBACK")
            return {"success": False, "error": error}

        promo_id = int(promo["id"])
        coins = int(promo["reward_coins"])
        db.execute("INSERT INTO promo_redemptions (user_id, promo_id) VALUES (?, ?)", (uid, promo_id))
        db.execute("UPDATE promo_codes SET current_uses = current_uses + 1 WHERE id = ?", (promo_id,))
        if coins > 0:
            _applyledger(db, uid, coins, TX_PROMO, f"promo code {promo['code']}", f"promo:{promo_id}")
        balance = _balance(db, uid)
        db.execute("COMMIT")
    telemetry("promo_redeemed", user_id=uid, code=promo["code"], coins=coins)
    return {"success": True, "reward_coins": coins, "new_balance": balance}
