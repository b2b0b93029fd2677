from dataclasses import fields

import pytest

from casevault import admin, database, procedures
from casevault.economy import get_balance


def test_schemas_match_record_types():
    for table, cls in admin.RECORDS.items():
        assert {f.name for f in fields(cls)} == {spec.name for spec in admin.FIELD_SCHEMAS[table]}


def test_parse_coerces_and_defaults():
    record = admin.parse_record("cases", {"id": "neon", "name": "Neon Case", "price": "120", "is_free": "false"})
    assert isinstance(record, admin.CaseRecord)
    assert record.price == 120
    assert record.is_free is False
    assert record.is_active is True

    reward = admin.parse_record("case_rewards", {"case_id": "neon", "skin_id": "awp", "probability": "2.5", "never_drop": "on"})
    assert reward.id is None
    assert reward.probability == 2.5
    assert reward.never_drop is True


@pytest.mark.parametrize(
    "table, payload, code, field",
    [
        ("cases", {"name": "No slug"}, "missing_field", "id"),
        ("cases", {"id": "x", "name": "X", "price": "abc"}, "invalid_value", "price"),
        ("cases", {"id": "x", "name": "X", "price": -5}, "negative_value", "price"),
        ("case_rewards", {"case_id": "x", "reward_type": "coin_reward"}, "missing_field", "coin_reward_id"),
        ("case_rewards", {"case_id": "x", "reward_type": "sticker"}, "invalid_value", "reward_type"),
        ("quiz_questions", {"question": "?", "answers": "only one", "correct_answer": 0}, "invalid_value", "answers"),
        ("promo_codes", {"code": "X", "reward_coins": 10, "max_uses": 0}, "invalid_value", "max_uses"),
        ("weapons", {}, "unknown_table", "weapons"),
    ],
)
def test_parse_rejects(table, payload, code, field):
    with pytest.raises(admin.InvalidRecord) as info:
        admin.parse_record(table, payload)
    assert info.value.code == code
    assert info.value.field == field


def test_save_insert_and_upsert(make_user):
    boss = make_user(admin=True)
    user = make_user()
    case = admin.parse_record("cases", {"id": "neon", "name": "Neon Case", "price": 120})
    assert admin.save_record(user, case)["error"] == "forbidden"
    assert admin.save_record(boss, case)["key"] == "neon"

    renamed = admin.parse_record("cases", {"id": "neon", "name": "Neon Nights", "price": 150})
    admin.save_record(boss, renamed)
    assert database.caserow("neon")["name"] == "Neon Nights"
    assert database.caserow("neon")["price"] == 150

    promo = admin.parse_record("promo_codes", {"code": "NEON", "reward_coins": 25})
    saved = admin.save_record(boss, promo)
    assert isinstance(saved["key"], int)
    assert admin.save_record(boss, promo)["error"] == "duplicate"

    listed = admin.list_records(boss, "cases")
    assert [r["id"] for r in listed["rows"]] == ["neon"]
    assert listed["fields"][0]["name"] == "id"


def test_user_edit_and_delete(make_user):
    boss = make_user(admin=True)
    user = make_user()
    record = admin.parse_record("users", {"id": user, "username": "renamed", "steam_trade_url": ""})
    assert admin.save_record(boss, record)["success"]
    assert database.accountbyid(user)["username"] == "renamed"

    ghost = admin.parse_record("users", {"id": 999, "username": "ghost"})
    assert admin.save_record(boss, ghost)["error"] == "user_not_found"

    admin.save_record(boss, admin.parse_record("tasks", {"id": "t1", "title": "Follow", "reward_coins": 5}))
    assert admin.delete_record(boss, "tasks", "t1")["success"]
    assert admin.delete_record(boss, "tasks", "t1")["error"] == "not_found"
    assert admin.delete_record(boss, "users", user)["error"] == "unknown_table"


def test_balance_adjustment_is_idempotent(make_user):
    boss = make_user(admin=True)
    user = make_user(100)
    first = admin.adjust_balance(boss, user, -40, "chargeback", "ticket-7")
    assert first == {"success": True, "applied": True, "new_balance": 60}
    again = admin.adjust_balance(boss, user, -40, "chargeback", "ticket-7")
    assert again["applied"] is False
    assert get_balance(user) == 60
    assert admin.adjust_balance(user, boss, 10, "", "x")["error"] == "forbidden"
    assert admin.adjust_balance(boss, 999, 10, "", "x")["error"] == "user_not_found"


def test_mixed_case_slugs_open(make_user):
    boss = make_user(admin=True)
    uid = make_user(200)
    admin.save_record(boss, admin.parse_record("skins", {"id": "AK_Redline", "name": "AK-47 | Redline", "price": 30}))
    admin.save_record(boss, admin.parse_record("cases", {"id": " Dragon ", "name": "Dragon", "price": 100}))
    reward = admin.parse_record("case_rewards", {"case_id": "Dragon", "skin_id": "AK_Redline", "probability": 1})
    admin.save_record(boss, reward)
    assert reward.case_id == "dragon"

    table = procedures.reward_table("Dragon")
    assert [row["id"] for row in table["rows"]] == ["ak_redline"]
    opened = procedures.open_case(uid, "Dragon", "sid-1")
    assert opened["success"]
    assert opened["reward"]["id"] == "ak_redline"
    assert admin.delete_record(boss, "cases", "DRAGON")["success"]
