from casevault import catalog, database


def register(client, username="shooter", password="hunter22"):
    return client.post("/api/register", json={"username": username, "password": password})


def test_requires_login(client):
    resp = client.get("/api/cases")
    assert resp.status_code == 401
    assert resp.get_json() == {"ok": False, "error": "unauthorized"}


def test_register_login_and_duplicate(client):
    first = register(client)
    assert first.get_json()["balance"] == 500
    assert register(client).status_code == 400
    client.post("/api/logout")
    assert client.get("/api/me").status_code == 401
    bad = client.post("/api/login", json={"username": "shooter", "password": "wrong"})
    assert bad.get_json()["error"] == "invalid_credentials"
    good = client.post("/api/login", json={"username": "shooter", "password": "hunter22"})
    assert good.get_json()["ok"] is True
    assert client.get("/api/me").get_json()["username"] == "shooter"


def test_open_reveal_keep_over_http(client, scheduler):
    catalog.seed()
    register(client)
    cases = client.get("/api/cases").get_json()["cases"]
    assert {c["id"] for c in cases} == {"daily", "recruit", "operator"}

    preview = client.get("/api/cases/operator").get_json()
    chances = {r["id"]: r["chance"] for r in preview["rewards"]}
    assert chances["karambit_fade"] == 0.0
    assert round(sum(r["chance"] for r in preview["rewards"])) == 100

    opened = client.post("/api/cases/recruit/open", json={})
    body = opened.get_json()
    assert body["ok"] is True
    assert body["session"]["phase"] == "opening"
    assert body["balance"] == 450
    assert body["can_open"] is False

    scheduler.run_pending()
    state = client.get("/api/cases/recruit/session").get_json()
    assert state["session"]["phase"] == "spinning"
    roulette = state["session"]["roulette"]
    assert roulette["items"][roulette["winner_index"]]["id"] == state["session"]["reward"]["id"]

    done = client.post("/api/cases/recruit/session/spin-finished").get_json()
    assert done["session"]["phase"] == "complete"

    kept = client.post("/api/cases/recruit/session/keep").get_json()
    assert kept["session"]["settled"] is True
    items = client.get("/api/inventory").get_json()["items"]
    assert len(items) == 1

    again = client.post("/api/cases/recruit/session/keep")
    assert again.status_code == 409
    assert again.get_json()["error"] == "settlement_conflict"


def test_insufficient_funds_status(client, make_case):
    register(client)
    make_case("whale", price=5000)
    resp = client.post("/api/cases/whale/open", json={})
    assert resp.status_code == 402
    body = resp.get_json()
    assert (body["required"], body["current"]) == (5000, 500)
    assert body["state"]["can_open"] is False


def test_promo_and_daily_routes(client):
    catalog.seed()
    register(client)
    with database.connect() as db:
        db.execute("INSERT INTO promo_codes (code, reward_coins) VALUES ('HELLO', 40)")
    assert client.post("/api/promo/redeem", json={"code": "hello"}).get_json()["new_balance"] == 540
    assert client.post("/api/promo/redeem", json={"code": "hello"}).get_json()["error"] == "promo_already_used"

    claim = client.post("/api/rewards/daily/claim").get_json()
    assert claim["day_number"] == 1
    assert client.post("/api/rewards/daily/claim").status_code == 429


def test_admin_routes_need_admin(client):
    register(client)
    assert client.get("/api/admin/cases").status_code == 403
    assert client.post("/api/admin/cases", json={"id": "x", "name": "X"}).status_code == 403

    with database.connect() as db:
        db.execute("UPDATE accounts SET is_admin = 1")
    saved = client.post("/api/admin/cases", json={"id": "neon", "name": "Neon", "price": 10})
    assert saved.get_json()["key"] == "neon"
    broken = client.post("/api/admin/cases", json={"name": "no id"})
    assert broken.get_json() == {"ok": False, "error": "missing_field", "field": "id"}


def test_top_up_reenables_open(client, make_case):
    register(client)
    make_case("vault", price=1000)
    assert client.post("/api/cases/vault/open", json={}).status_code == 402
    with database.connect() as db:
        db.execute("INSERT INTO promo_codes (code, reward_coins) VALUES ('BIG', 1000)")
    assert client.post("/api/promo/redeem", json={"code": "big"}).get_json()["new_balance"] == 1500

    state = client.get("/api/cases/vault/session").get_json()
    assert state["balance"] == 1500
    assert state["can_open"] is True
    assert state["shortfall"] is None
    assert client.post("/api/cases/vault/session/refresh").get_json()["can_open"] is True


def test_session_routes_check_case(client, make_case, scheduler):
    register(client)
    make_case("vault", price=100)
    client.post("/api/cases/vault/open", json={})
    scheduler.run_pending()

    wrong = client.post("/api/cases/other/session/spin-finished")
    assert wrong.status_code == 404
    assert wrong.get_json()["error"] == "case_not_found"
    assert client.get("/api/cases/other/session").get_json()["active"] is False
    assert client.get("/api/cases/vault/session").get_json()["session"]["phase"] == "spinning"


def test_recent_wins_and_referral_signup(client, make_case, scheduler):
    register(client, "host")
    code = client.get("/api/referral").get_json()["code"]
    make_case("vault", price=100)
    client.post("/api/cases/vault/open", json={})
    scheduler.run_pending()
    client.post("/api/cases/vault/session/spin-finished")
    client.post("/api/logout")

    wins = client.get("/api/recent-wins").get_json()["wins"]
    assert [w["username"] for w in wins] == ["host"]

    joined = client.post("/api/register", json={"username": "guest", "password": "hunter22", "referral_code": code})
    assert joined.get_json()["balance"] == 500
    assert client.post("/api/referral/apply", json={"code": code}).get_json()["error"] == "referral_already_used"
