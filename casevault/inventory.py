import logging
import secrets
from datetime import datetime, timezone

from casevault.database import _applyledger, _balance, connect, isadmin
from casevault.economy import TX_SKIN_SELL
from casevault.logs import telemetry


OWNED = "owned"
SOLD = "sold"
WITHDRAWING = "withdrawing"
WITHDRAWN = "withdrawn"

logger = logging.getLogger(__name__)


def _nowiso() -> str:
    return datetime.now(timezone.utc).isoformat()


def valid_trade_url(url: str) -> bool:
    text = str(url or "").strip()
    return text.startswith("https://") and "steamcommunity.com" in text and "tradeoffer" in text


def inventory_items(user_id: int, include_gone: bool = False) -> list[dict]:
    where = "" if include_gone else "AND status IN ('owned', 'withdrawing')"
    with connect() as db:
        rows = db.execute(
            f"""
            SELECT id, skin_id, name, rarity, image_url, price, status, source_session, obtained_at
            FROM inventory
            WHERE user_id = ? {where}
            ORDER BY id DESC
            """,
            (int(user_id),),
        ).fetchall()
    return [dict(r) for r in rows]


def _sell(db, user_id: int, row) -> int:
    price = int(row["price"])
    db.execute(
        "UPDATE inventory SET status = 'sold', updated_at = ? WHERE id = ?",
        (_nowiso(), int(row["id"])),
    )
    if price > 0:
        _applyledger(db, int(user_id), price, TX_SKIN_SELL, f"sell {row['name']}", f"inventory:{int(row['id'])}:sell")
    return price


def sell_item(user_id: int, inventory_id: int) -> dict:
    uid = int(user_id)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute(
            "SELECT id, name, price, status FROM inventory WHERE id = ? AND user_id = ?",
            (int(inventory_id), uid),
        ).fetchone()
        if row is None:
            db.execute("ROLLBACK")
            return {"success": False, "error": "item_not_found"}
        if row["status"] != OWNED:
            db.execute("ROLLBACK")
            return {"success": False, "error": "item_not_sellable", "status": row["status"]}
        earned = _sell(db, uid, row)
        balance = _balance(db, uid)
        db.execute("COMMIT")
    telemetry("skin_sold", user_id=uid, inventory_id=int(inventory_id), price=earned)
    return {"success": True, "earned": earned, "new_balance": balance}


def sell_all(user_id: int) -> dict:
    uid = int(user_id)
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        rows = db.execute(
            "SELECT id, name, price, status FROM inventory WHERE user_id = ? AND status = 'owned'",
            (uid,),
        ).fetchall()
        total = sum(_sell(db, uid, row) for row in rows)
        balance = _balance(db, uid)
        db.execute("COMMIT")
    if rows:
        telemetry("skins_sold", user_id=uid, items=len(rows), total=total)
    return {"success": True, "items_sold": len(rows), "total_earned": total, "new_balance": balance}


def request_withdrawal(user_id: int, inventory_id: int, trade_url: str) -> dict:
    uid = int(user_id)
    url = str(trade_url or "").strip()
    if not valid_trade_url(url):
        return {"success": False, "error": "invalid_trade_url"}
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute(
            "SELECT id, status FROM inventory WHERE id = ? AND user_id = ?",
            (int(inventory_id), uid),
        ).fetchone()
        if row is None:
            db.execute("ROLLBACK")
            return {"success": False, "error": "item_not_found"}
        if row["status"] == WITHDRAWING:
            db.execute("ROLLBACK")
            return {"success": False, "error": "withdrawal_exists"}
        if row["status"] != OWNED:
            db.execute("ROLLBACK")
            return {"success": False, "error": "item_not_withdrawable", "status": row["status"]}
        stamp = _nowiso()
        db.execute("UPDATE accounts SET steam_trade_url = ? WHERE id = ?", (url, uid))
        db.execute("UPDATE inventory SET status = 'withdrawing', updated_at = ? WHERE id = ?", (stamp, int(inventory_id)))
        db.execute(
            "INSERT INTO withdrawals (user_id, inventory_id, steam_trade_url, status, created_at, updated_at) VALUES (?, ?, ?, 'pending', ?, ?)",
            (uid, int(inventory_id), url, stamp, stamp),
        )
        request_id = int(db.execute("SELECT last_insert_rowid()").fetchone()[0])
        db.execute("COMMIT")
    telemetry("withdrawal_requested", user_id=uid, inventory_id=int(inventory_id), request_id=request_id)
    return {"success": True, "request_id": request_id, "status": "pending"}


def withdrawals(user_id: int | None = None, status: str | None = None) -> list[dict]:
    clauses, args = [], []
    if user_id is not None:
        clauses.append("user_id = ?")
        args.append(int(user_id))
    if status:
        clauses.append("status = ?")
        args.append(str(status))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with connect() as db:
        rows = db.execute(
            f"SELECT id, user_id, inventory_id, steam_trade_url, status, trade_offer_id, created_at, updated_at FROM withdrawals {where} ORDER BY id DESC",
            args,
        ).fetchall()
    return [dict(r) for r in rows]


def resolve_withdrawal(admin_id: int, request_id: int, approve: bool) -> dict:
    if not isadmin(admin_id):
        return {"success": False, "error": "forbidden"}
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        row = db.execute("SELECT id, inventory_id, status FROM withdrawals WHERE id = ?", (int(request_id),)).fetchone()
        if row is None:
            db.execute("ROLLBACK")
            return {"success": False, "error": "request_not_found"}
        if row["status"] not in {"pending", "processing"}:
            db.execute("ROLLBACK")
            return {"success": False, "error": "request_closed", "status": row["status"]}
        stamp = _nowiso()
        status = "completed" if approve else "rejected"
        offer = f"trade_{secrets.token_hex(8)}" if approve else ""
        db.execute(
            "UPDATE withdrawals SET status = ?, trade_offer_id = ?, updated_at = ? WHERE id = ?",
            (status, offer, stamp, int(request_id)),
        )
        db.execute(
            "UPDATE inventory SET status = ?, updated_at = ? WHERE id = ?",
            (WITHDRAWN if approve else OWNED, stamp, int(row["inventory_id"])),
        )
        db.execute("COMMIT")
    logger.info("withdrawal %s %s by admin %s", request_id, status, admin_id)
    return {"success": True, "request_id": int(request_id), "status": status, "trade_offer_id": offer}
