from datetime import datetime, timedelta, timezone

from conftest import FixedRNG

from casevault import database, procedures
from casevault.economy import get_balance
from casevault.inventory import inventory_items


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def status(session_id):
    with database.connect() as db:
        row = db.execute("SELECT status, disposition FROM case_openings WHERE session_id = ?", (session_id,)).fetchone()
    return tuple(row)


def test_open_debits_once_and_replays(make_user, make_case):
    uid = make_user(300)
    make_case("vault", price=100)
    first = procedures.open_case(uid, "vault", "s-1", now=NOW, rng=FixedRNG(0.05, index=85))
    assert first["success"]
    assert first["reward"]["id"] == "skin_a"
    assert first["winner_index"] == 85
    assert first["roulette_items"][85]["id"] == "skin_a"
    assert first["new_balance"] == 200

    again = procedures.open_case(uid, "vault", "s-1", now=NOW)
    assert again["idempotent_replay"] is True
    assert again["reward"] == first["reward"]
    assert get_balance(uid) == 200
    assert status("s-1") == ("pending", "")


def test_session_id_belongs_to_one_user(make_user, make_case):
    a, b = make_user(300), make_user(300)
    make_case("vault")
    assert procedures.open_case(a, "vault", "shared")["success"]
    clash = procedures.open_case(b, "vault", "shared")
    assert clash["error"] == "session_conflict"
    assert get_balance(b) == 300


def test_refusals(make_user, make_case):
    uid = make_user(50)
    make_case("vault", price=100)
    make_case("hollow", rewards=(("ghost", 1.0, 5),), never_drop=("ghost",))

    broke = procedures.open_case(uid, "vault", "s-1")
    assert broke == {"success": False, "error": "insufficient_funds", "required": 100, "current": 50}
    assert procedures.open_case(uid, "nope", "s-2")["error"] == "case_not_found"
    assert procedures.open_case(uid, "hollow", "s-3")["error"] == "empty_case"
    assert procedures.open_case(uid, "vault", "")["error"] == "missing_session"
    assert procedures.open_case(uid, "vault", "s-4", is_free=True)["error"] == "not_free_case"


def test_keep_is_idempotent_and_sell_conflicts(make_user, make_case):
    uid = make_user(100)
    make_case("vault", price=100)
    procedures.open_case(uid, "vault", "s-1", now=NOW)
    assert procedures.confirm_case_reward(uid, "s-1", now=NOW)["status"] == "revealed"

    kept = procedures.settle_case_reward(uid, "s-1", "keep", now=NOW)
    assert kept["success"] and kept["inventory_id"]
    replay = procedures.settle_case_reward(uid, "s-1", "KEEP", now=NOW)
    assert replay["idempotent_replay"] is True
    assert replay["inventory_id"] == kept["inventory_id"]
    assert len(inventory_items(uid)) == 1

    conflict = procedures.settle_case_reward(uid, "s-1", "sell", now=NOW)
    assert conflict["error"] == "settlement_conflict"
    assert conflict["disposition"] == "keep"
    assert get_balance(uid) == 0


def test_sell_credits_value_once(make_user, make_case):
    uid = make_user(100)
    make_case("vault", price=100, rewards=(("only", 1.0, 40),))
    procedures.open_case(uid, "vault", "s-1")
    assert procedures.settle_case_reward(uid, "s-1", "sell")["error"] == "reward_not_revealed"
    assert get_balance(uid) == 0
    procedures.confirm_case_reward(uid, "s-1")
    assert procedures.settle_case_reward(uid, "s-1", "sell")["new_balance"] == 40
    assert procedures.settle_case_reward(uid, "s-1", "sell")["new_balance"] == 40
    assert get_balance(uid) == 40
    assert status("s-1") == ("settled", "sell")


def test_coin_bundle_credits_on_keep(make_user, make_case):
    uid = make_user(100)
    make_case("vault", price=100, rewards=())
    with database.connect() as db:
        db.execute("INSERT INTO coin_rewards (id, name, amount) VALUES ('c75', '75 coins', 75)")
        db.execute(
            "INSERT INTO case_rewards (case_id, reward_type, coin_reward_id, probability) VALUES ('vault', 'coin_reward', 'c75', 1)"
        )
    opened = procedures.open_case(uid, "vault", "s-1")
    assert opened["reward"]["kind"] == "coin_reward"
    procedures.confirm_case_reward(uid, "s-1")
    settled = procedures.settle_case_reward(uid, "s-1", "keep")
    assert settled["inventory_id"] is None
    assert get_balance(uid) == 75
    assert inventory_items(uid) == []


def test_free_case_cooldown(make_user, make_case):
    uid = make_user(0)
    make_case("gift", price=0, is_free=True)
    assert procedures.open_case(uid, "gift", "f-1", is_free=True, now=NOW)["success"]

    later = NOW + timedelta(hours=2)
    wait = procedures.open_case(uid, "gift", "f-2", is_free=True, now=later)
    assert wait["error"] == "free_case_cooldown"
    assert wait["retry_after"] == 6 * 3600
    assert procedures.free_case_timers(uid, now=later) == {"gift": 6 * 3600}

    ready = procedures.open_case(uid, "gift", "f-3", is_free=True, now=NOW + timedelta(hours=8))
    assert ready["success"]
    assert get_balance(uid) == 0


def test_abandoned_reward_is_kept_after_ttl(make_user, make_case):
    uid = make_user(100)
    make_case("vault", price=100)
    procedures.open_case(uid, "vault", "s-1", now=NOW)

    early = procedures.account_snapshot(uid, now=NOW + timedelta(seconds=60))
    assert early["inventory"] == []
    assert status("s-1") == ("pending", "")

    late = procedures.account_snapshot(uid, now=NOW + timedelta(seconds=procedures.PENDING_TTL_SECONDS + 1))
    assert len(late["inventory"]) == 1
    assert status("s-1") == ("settled", "keep")


def test_toggle_admin_role(make_user):
    boss = make_user(admin=True)
    user = make_user()
    assert procedures.toggle_admin_role(user, boss, False)["error"] == "forbidden"
    assert procedures.toggle_admin_role(boss, boss, False)["error"] == "cannot_revoke_self"
    assert procedures.toggle_admin_role(boss, 999, True)["error"] == "user_not_found"
    assert procedures.toggle_admin_role(boss, user, True)["is_admin"] is True
    assert database.isadmin(user)


def test_recent_wins_skip_unrevealed(make_user, make_case):
    uid = make_user(300)
    make_case("vault", price=100)
    procedures.open_case(uid, "vault", "s-1", now=NOW)
    procedures.open_case(uid, "vault", "s-2", now=NOW + timedelta(minutes=1))
    assert procedures.recent_wins() == []

    procedures.confirm_case_reward(uid, "s-1", now=NOW)
    procedures.confirm_case_reward(uid, "s-2", now=NOW)
    wins = procedures.recent_wins()
    assert [w["won_at"] for w in wins] == [(NOW + timedelta(minutes=1)).isoformat(), NOW.isoformat()]
    assert wins[0]["username"] == database.accountbyid(uid)["username"]
    assert wins[0]["reward"]["id"] in {"skin_a", "skin_b"}
    assert len(procedures.recent_wins(limit=1)) == 1
