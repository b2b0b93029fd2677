import logging
from datetime import timedelta
from pathlib import Path

from flask import Flask, request, send_from_directory, session
from werkzeug.security import check_password_hash, generate_password_hash

from casevault import admin, bonuses, catalog, database, inventory, media, procedures, promo, referrals
from casevault.config import load
from casevault.database import accountbyid, accountbyname, caselist, createaccount, ledgerrows
from casevault.economy import SIGNUP_GRANT_COINS, get_balance
from casevault.logs import setup as setup_logging
from casevault.opening.manager import MANAGER
from casevault.opening.rewards import eligible, entry_from_row
from casevault.opening.scheduler import SCHEDULER


ROOT = Path(__file__).resolve().parent.parent

STATUS = {
    "unauthorized": 401,
    "forbidden": 403,
    "insufficient_funds": 402,
    "settlement_conflict": 409,
    "session_conflict": 409,
    "reward_not_revealed": 409,
    "operation_in_progress": 409,
    "withdrawal_exists": 409,
    "duplicate": 409,
    "free_case_cooldown": 429,
    "already_claimed_today": 429,
    "network_failure": 503,
}

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = "changeme"
app.permanent_session_lifetime = timedelta(days=30)


def configure(settings: dict) -> None:
    setup_logging(settings["log_level"])
    app.secret_key = settings["secret"]
    database.configure(ROOT / settings["database_dir"])
    media.configure(ROOT / settings["media_dir"])
    procedures.configure(settings)
    MANAGER.configure(settings)


def status_of(code: str) -> int:
    if code in STATUS:
        return STATUS[code]
    if code.endswith("_not_found"):
        return 404
    return 400


def reply(ok: bool, data: dict):
    if ok:
        return {"ok": True, **data}
    code = str(data.get("error") or "error")
    return {"ok": False, **data, "error": code}, status_of(code)


def answer(payload: dict):
    """Turn a procedure's ``success`` dict into a response."""
    data = dict(payload)
    return reply(bool(data.pop("success", False)), data)


def currentaccount():
    accountid = session.get("accountid")
    if not accountid:
        return None
    return accountbyid(int(accountid))


def unauthorized():
    return reply(False, {"error": "unauthorized"})


@app.route("/api/register", methods=["POST"])
def register():
    payload = request.get_json(silent=True) or {}
    username = str(payload.get("username", "")).strip()
    password = str(payload.get("password", ""))
    if len(username) < 3:
        return reply(False, {"error": "username_too_short"})
    if len(password) < 6:
        return reply(False, {"error": "password_too_short"})
    created = createaccount(username, generate_password_hash(password), SIGNUP_GRANT_COINS)
    if not created:
        return reply(False, {"error": "username_taken"})
    session["accountid"] = created
    logger.info("account %s registered as %s", created, username)
    invite = str(payload.get("referral_code") or "").strip()
    if invite:
        applied = referrals.apply_referral(created, invite)
        if not applied["success"]:
            logger.info("referral code %s ignored for account %s: %s", invite, created, applied["error"])
    return reply(True, {"user_id": created, "balance": get_balance(created)})


@app.route("/api/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    username = str(payload.get("username", "")).strip()
    account = accountbyname(username)
    if not account or not check_password_hash(account["passwordhash"], str(payload.get("password", ""))):
        return reply(False, {"error": "invalid_credentials"})
    session["accountid"] = account["id"]
    session.permanent = bool(payload.get("remember"))
    return reply(True, {"user_id": account["id"]})


@app.route("/api/logout", methods=["POST"])
def logout():
    accountid = session.pop("accountid", None)
    if accountid:
        MANAGER.drop(accountid)
    return reply(True, {})


@app.route("/api/me")
def me():
    account = currentaccount()
    if not account:
        return unauthorized()
    snapshot = procedures.account_snapshot(account["id"])
    return reply(
        True,
        {
            "user_id": account["id"],
            "username": account["username"],
            "is_admin": bool(account["is_admin"]),
            "steam_trade_url": account["steam_trade_url"],
            "balance": snapshot["balance"],
            "ledger": ledgerrows(account["id"], 20),
        },
    )


@app.route("/api/cases")
def cases():
    account = currentaccount()
    if not account:
        return unauthorized()
    timers = procedures.free_case_timers(account["id"])
    rows = [{**row, "free_in": timers.get(row["id"], 0)} for row in caselist()]
    return reply(True, {"cases": rows})


@app.route("/api/cases/<case_id>")
def casepreview(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    table = procedures.reward_table(case_id)
    if not table["success"]:
        return answer(table)
    entries = [entry_from_row(row) for row in table["rows"]]
    total = sum(e.weight for e in eligible(entries)) or 1.0
    rewards = [
        {**e.to_reward(), "never_drop": e.never_drop, "chance": round(100.0 * e.weight / total, 3) if e.eligible else 0.0}
        for e in entries
    ]
    return reply(True, {"case": table["case"], "rewards": rewards})


@app.route("/api/cases/<case_id>/open", methods=["POST"])
def caseopen(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    return reply(*MANAGER.open_case(account["id"], case_id, bool(payload.get("is_free"))))


@app.route("/api/cases/<case_id>/session")
def casesession(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, MANAGER.state(account["id"], case_id))


@app.route("/api/cases/<case_id>/session/spin-finished", methods=["POST"])
def casespinfinished(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(*MANAGER.spin_finished(account["id"], case_id))


@app.route("/api/cases/<case_id>/session/keep", methods=["POST"])
def casekeep(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(*MANAGER.keep(account["id"], case_id))


@app.route("/api/cases/<case_id>/session/sell", methods=["POST"])
def casesell(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(*MANAGER.sell(account["id"], case_id))


@app.route("/api/cases/<case_id>/session/cancel", methods=["POST"])
def casecancel(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(*MANAGER.cancel(account["id"], case_id))


@app.route("/api/cases/<case_id>/session/refresh", methods=["POST"])
def caserefresh(case_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(*MANAGER.refresh(account["id"], case_id))


@app.route("/api/inventory")
def inventorylist():
    account = currentaccount()
    if not account:
        return unauthorized()
    gone = request.args.get("all") == "1"
    return reply(True, {"items": inventory.inventory_items(account["id"], include_gone=gone)})


@app.route("/api/inventory/<int:inventory_id>/sell", methods=["POST"])
def inventorysell(inventory_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(inventory.sell_item(account["id"], inventory_id))


@app.route("/api/inventory/sell-all", methods=["POST"])
def inventorysellall():
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(inventory.sell_all(account["id"]))


@app.route("/api/inventory/<int:inventory_id>/withdraw", methods=["POST"])
def inventorywithdraw(inventory_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    trade_url = payload.get("trade_url") or account["steam_trade_url"]
    return answer(inventory.request_withdrawal(account["id"], inventory_id, trade_url))


@app.route("/api/withdrawals")
def withdrawallist():
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, {"withdrawals": inventory.withdrawals(account["id"])})


@app.route("/api/promo/redeem", methods=["POST"])
def promoredeem():
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    return answer(promo.redeem_promo(account["id"], payload.get("code", "")))


@app.route("/api/rewards/daily")
def dailystate():
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, bonuses.daily_state(account["id"]))


@app.route("/api/rewards/daily/claim", methods=["POST"])
def dailyclaim():
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(bonuses.claim_daily_reward(account["id"]))


@app.route("/api/tasks")
def tasklist():
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, {"tasks": bonuses.tasks(account["id"])})


@app.route("/api/tasks/<task_id>/claim", methods=["POST"])
def taskclaim(task_id: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(bonuses.claim_task_reward(account["id"], task_id))


@app.route("/api/quiz")
def quizlist():
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, {"questions": bonuses.quiz(account["id"])})


@app.route("/api/quiz/<int:question_id>/answer", methods=["POST"])
def quizanswer(question_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    try:
        choice = int(payload.get("answer"))
    except (TypeError, ValueError):
        return reply(False, {"error": "invalid_answer"})
    return answer(bonuses.answer_quiz(account["id"], question_id, choice))


@app.route("/api/recent-wins")
def recentwins():
    return reply(True, {"wins": procedures.recent_wins()})


@app.route("/api/referral")
def referralstate():
    account = currentaccount()
    if not account:
        return unauthorized()
    return reply(True, referrals.referral_stats(account["id"]))


@app.route("/api/referral/apply", methods=["POST"])
def referralapply():
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    return answer(referrals.apply_referral(account["id"], payload.get("code", "")))


@app.route("/api/banners")
def bannerlist():
    with database.connect() as db:
        rows = db.execute(
            "SELECT id, title, image_url, link FROM banners WHERE is_active = 1 ORDER BY position ASC, id ASC"
        ).fetchall()
    return reply(True, {"banners": [dict(r) for r in rows]})


@app.route("/media/<path:filename>")
def mediafile(filename: str):
    resp = send_from_directory(media.MEDIA, filename)
    resp.headers["Cache-Control"] = "public, max-age=604800, immutable"
    return resp


@app.route("/api/admin/<table>")
def adminlist(table: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(admin.list_records(account["id"], table))


@app.route("/api/admin/<table>", methods=["POST"])
def adminsave(table: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    if not account["is_admin"]:
        return reply(False, {"error": "forbidden"})
    payload = request.form.to_dict() if request.files or request.form else (request.get_json(silent=True) or {})
    upload = request.files.get("image")
    if upload and upload.filename:
        kind = {"cases": "case", "skins": "skin", "banners": "banner"}.get(table)
        if kind is None:
            return reply(False, {"error": "invalid_kind"})
        try:
            payload["image_url"] = media.saveimage(upload, kind)
        except ValueError as exc:
            return reply(False, {"error": str(exc)})
    try:
        record = admin.parse_record(table, payload)
    except admin.InvalidRecord as exc:
        return reply(False, {"error": exc.code, "field": exc.field})
    return answer(admin.save_record(account["id"], record))


@app.route("/api/admin/<table>/<key>", methods=["DELETE"])
def admindelete(table: str, key: str):
    account = currentaccount()
    if not account:
        return unauthorized()
    return answer(admin.delete_record(account["id"], table, int(key) if key.isdigit() else key))


@app.route("/api/admin/users/<int:user_id>/balance", methods=["POST"])
def adminbalance(user_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    try:
        amount = int(payload.get("amount", 0))
    except (TypeError, ValueError):
        return reply(False, {"error": "invalid_amount"})
    reference = str(payload.get("reference_id") or "").strip()
    if not reference:
        return reply(False, {"error": "missing_reference"})
    return answer(admin.adjust_balance(account["id"], user_id, amount, str(payload.get("reason", "")), reference))


@app.route("/api/admin/users/<int:user_id>/role", methods=["POST"])
def adminrole(user_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    return answer(admin.toggle_admin_role(account["id"], user_id, bool(payload.get("grant"))))


@app.route("/api/admin/withdrawals")
def adminwithdrawals():
    account = currentaccount()
    if not account:
        return unauthorized()
    if not account["is_admin"]:
        return reply(False, {"error": "forbidden"})
    return reply(True, {"withdrawals": inventory.withdrawals(status=request.args.get("status"))})


@app.route("/api/admin/withdrawals/<int:request_id>", methods=["POST"])
def adminresolve(request_id: int):
    account = currentaccount()
    if not account:
        return unauthorized()
    payload = request.get_json(silent=True) or {}
    return answer(inventory.resolve_withdrawal(account["id"], request_id, bool(payload.get("approve"))))


def main() -> None:
    settings = load()
    configure(settings)
    database.setup()
    catalog.seed()
    try:
        app.run(host=settings["host"], port=settings["port"], debug=settings["debug"], threaded=True)
    finally:
        SCHEDULER.shutdown()


if __name__ == "__main__":
    main()
