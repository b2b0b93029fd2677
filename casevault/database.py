import sqlite3
from pathlib import Path


ROOT = Path(__file__).resolve().parent.parent
DBROOT = ROOT / "database"
DBNAME = "casevault"


def configure(directory) -> Path:
    global DBROOT
    DBROOT = Path(directory)
    return DBROOT


def path(name: str = DBNAME) -> Path:
    DBROOT.mkdir(parents=True, exist_ok=True)
    target = DBROOT / f"{name}.db"
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def connect(name: str = DBNAME) -> sqlite3.Connection:
    db = sqlite3.connect(path(name), timeout=20)
    db.row_factory = sqlite3.Row
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA busy_timeout = 20000")
    return db


def hascolumn(db: sqlite3.Connection, table: str, col: str) -> bool:
    rows = db.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == col for row in rows)


def setup() -> None:
    with connect() as db:
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                passwordhash TEXT NOT NULL,
                is_admin INTEGER NOT NULL DEFAULT 0,
                createdat TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        if not hascolumn(db, "accounts", "steam_trade_url"):
            db.execute("ALTER TABLE accounts ADD COLUMN steam_trade_url TEXT NOT NULL DEFAULT ''")
        if not hascolumn(db, "accounts", "daily_streak"):
            db.execute("ALTER TABLE accounts ADD COLUMN daily_streak INTEGER NOT NULL DEFAULT 0")
        if not hascolumn(db, "accounts", "referral_code"):
            db.execute("ALTER TABLE accounts ADD COLUMN referral_code TEXT")
        if not hascolumn(db, "accounts", "referred_by"):
            db.execute("ALTER TABLE accounts ADD COLUMN referred_by INTEGER")
        db.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_referral_code ON accounts(referral_code) WHERE referral_code IS NOT NULL"
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS wallets (
                user_id INTEGER PRIMARY KEY,
                balance INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS ledger (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL,
                reference_id TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_idempotent
            ON ledger(user_id, type, reference_id)
            WHERE reference_id IS NOT NULL AND reference_id <> ''
            """
        )
        db.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_ledger_no_update
            BEFORE UPDATE ON ledger
            BEGIN
                SELECT RAISE(ABORT, 'ledger is immutable');
            END;
            """
        )
        db.execute(
            """
            CREATE TRIGGER IF NOT EXISTS trg_ledger_no_delete
            BEFORE DELETE ON ledger
            BEGIN
                SELECT RAISE(ABORT, 'ledger is immutable');
            END;
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS cases (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price INTEGER NOT NULL DEFAULT 0,
                is_free INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                image_url TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS skins (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                weapon_type TEXT NOT NULL DEFAULT '',
                rarity TEXT NOT NULL DEFAULT '',
                price INTEGER NOT NULL DEFAULT 0,
                image_url TEXT NOT NULL DEFAULT ''
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS coin_rewards (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                amount INTEGER NOT NULL,
                image_url TEXT NOT NULL DEFAULT ''
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS case_rewards (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                case_id TEXT NOT NULL,
                reward_type TEXT NOT NULL DEFAULT 'skin',
                skin_id TEXT,
                coin_reward_id TEXT,
                probability REAL NOT NULL DEFAULT 0,
                custom_probability REAL,
                never_drop INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS case_openings (
                session_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                case_id TEXT NOT NULL,
                is_free INTEGER NOT NULL DEFAULT 0,
                price INTEGER NOT NULL DEFAULT 0,
                reward TEXT NOT NULL,
                roulette TEXT NOT NULL,
                winner_index INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                disposition TEXT NOT NULL DEFAULT '',
                inventory_id INTEGER,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_case_openings_created ON case_openings(created_at)")
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS inventory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                skin_id TEXT NOT NULL,
                name TEXT NOT NULL,
                rarity TEXT NOT NULL DEFAULT '',
                image_url TEXT NOT NULL DEFAULT '',
                price INTEGER NOT NULL DEFAULT 0,
                source_session TEXT UNIQUE,
                status TEXT NOT NULL DEFAULT 'owned',
                obtained_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS withdrawals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                inventory_id INTEGER NOT NULL,
                steam_trade_url TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                trade_offer_id TEXT NOT NULL DEFAULT '',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_withdrawals_open
            ON withdrawals(inventory_id)
            WHERE status IN ('pending', 'processing')
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS promo_codes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE,
                reward_coins INTEGER NOT NULL,
                max_uses INTEGER,
                current_uses INTEGER NOT NULL DEFAULT 0,
                expires_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS promo_redemptions (
                user_id INTEGER NOT NULL,
                promo_id INTEGER NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, promo_id)
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS free_case_openings (
                user_id INTEGER NOT NULL,
                case_id TEXT NOT NULL,
                opened_at TEXT NOT NULL,
                PRIMARY KEY (user_id, case_id)
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS daily_rewards (
                day_number INTEGER PRIMARY KEY,
                reward_coins INTEGER NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS daily_claims (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                day_number INTEGER NOT NULL,
                reward_coins INTEGER NOT NULL,
                claimed_at TEXT NOT NULL
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                reward_coins INTEGER NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS task_claims (
                user_id INTEGER NOT NULL,
                task_id TEXT NOT NULL,
                claimed_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, task_id)
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS quiz_questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                question TEXT NOT NULL,
                answers TEXT NOT NULL,
                correct_answer INTEGER NOT NULL,
                reward_coins INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS quiz_answers (
                user_id INTEGER NOT NULL,
                question_id INTEGER NOT NULL,
                correct INTEGER NOT NULL,
                answered_at TEXT DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, question_id)
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS banners (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                image_url TEXT NOT NULL DEFAULT '',
                link TEXT NOT NULL DEFAULT '',
                position INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS referral_earnings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                referrer_id INTEGER NOT NULL,
                referred_id INTEGER NOT NULL UNIQUE,
                coins_earned INTEGER NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """
        )


def createaccount(username: str, passwordhash: str, grant: int = 0) -> int | None:
    try:
        with connect() as db:
            db.execute("BEGIN IMMEDIATE")
            db.execute("INSERT INTO accounts (username, passwordhash) VALUES (?, ?)", (username, passwordhash))
            user_id = int(db.execute("SELECT last_insert_rowid()").fetchone()[0])
            if grant:
                _applyledger(db, user_id, int(grant), "initial_grant", "signup bonus", f"signup:{user_id}:initial_grant")
            db.execute("COMMIT")
        return user_id
    except sqlite3.IntegrityError:
        return None


def accountbyname(username: str):
    with connect() as db:
        return db.execute(
            "SELECT id, username, passwordhash, is_admin, steam_trade_url, daily_streak FROM accounts WHERE username = ?",
            (username,),
        ).fetchone()


def accountbyid(accountid: int):
    with connect() as db:
        return db.execute(
            "SELECT id, username, passwordhash, is_admin, steam_trade_url, daily_streak FROM accounts WHERE id = ?",
            (int(accountid),),
        ).fetchone()


def isadmin(accountid: int) -> bool:
    row = accountbyid(accountid)
    return bool(row and row["is_admin"])


def _ensurewallet(db: sqlite3.Connection, user_id: int) -> None:
    db.execute("INSERT OR IGNORE INTO wallets (user_id, balance) VALUES (?, 0)", (int(user_id),))


def _applyledger(
    db: sqlite3.Connection,
    user_id: int,
    amount: int,
    tx_type: str,
    description: str,
    reference_id: str | None = None,
) -> bool:
    if int(amount) == 0:
        raise ValueError("amount cannot be zero")
    _ensurewallet(db, user_id)
    try:
        db.execute(
            "INSERT INTO ledger (user_id, amount, type, description, reference_id) VALUES (?, ?, ?, ?, ?)",
            (int(user_id), int(amount), str(tx_type), str(description), reference_id),
        )
    except sqlite3.IntegrityError:
        return False
    db.execute(
        "UPDATE wallets SET balance = balance + ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
        (int(amount), int(user_id)),
    )
    return True


def _balance(db: sqlite3.Connection, user_id: int) -> int:
    _ensurewallet(db, user_id)
    row = db.execute("SELECT balance FROM wallets WHERE user_id = ?", (int(user_id),)).fetchone()
    return int(row[0]) if row else 0


def applyledger(user_id: int, amount: int, tx_type: str, description: str, reference_id: str | None = None) -> bool:
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        applied = _applyledger(db, user_id, amount, tx_type, description, reference_id)
        if applied:
            db.execute("COMMIT")
            return True
        db.execute("ROLLBACK")
        return False


def syncwallet(user_id: int) -> int:
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        _ensurewallet(db, user_id)
        row = db.execute("SELECT COALESCE(SUM(amount), 0) FROM ledger WHERE user_id = ?", (int(user_id),)).fetchone()
        balance = int(row[0]) if row else 0
        db.execute(
            "UPDATE wallets SET balance = ?, updated_at = CURRENT_TIMESTAMP WHERE user_id = ?",
            (balance, int(user_id)),
        )
        db.execute("COMMIT")
    return balance


def ledgerrows(user_id: int, limit: int = 50):
    with connect() as db:
        rows = db.execute(
            "SELECT amount, type, description, reference_id, created_at FROM ledger WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (int(user_id), int(limit)),
        ).fetchall()
    return [dict(r) for r in rows]


def caselist(include_inactive: bool = False):
    where = "" if include_inactive else "WHERE is_active = 1"
    with connect() as db:
        rows = db.execute(
            f"SELECT id, name, price, is_free, is_active, image_url, description FROM cases {where} ORDER BY is_free DESC, price ASC, name ASC"
        ).fetchall()
    return [dict(r) for r in rows]


def _caserow(db: sqlite3.Connection, case_id: str):
    return db.execute(
        "SELECT id, name, price, is_free, is_active, image_url, description FROM cases WHERE id = ?",
        (str(case_id),),
    ).fetchone()


def caserow(case_id: str) -> dict | None:
    with connect() as db:
        row = _caserow(db, case_id)
    return dict(row) if row else None


def _rewardrows(db: sqlite3.Connection, case_id: str) -> list[dict]:
    rows = db.execute(
        """
        SELECT
            r.id AS row_id,
            r.reward_type AS kind,
            r.probability,
            r.custom_probability,
            r.never_drop,
            COALESCE(s.id, c.id) AS id,
            COALESCE(s.name, c.name) AS display_name,
            COALESCE(s.image_url, c.image_url, '') AS image_ref,
            COALESCE(s.price, c.amount, 0) AS monetary_value,
            COALESCE(s.rarity, '') AS rarity
        FROM case_rewards r
        LEFT JOIN skins s ON r.reward_type = 'skin' AND s.id = r.skin_id
        LEFT JOIN coin_rewards c ON r.reward_type = 'coin_reward' AND c.id = r.coin_reward_id
        WHERE r.case_id = ?
        ORDER BY r.id ASC
        """,
        (str(case_id),),
    ).fetchall()
    return [dict(r) for r in rows if r["id"] is not None]


def rewardrows(case_id: str) -> list[dict]:
    with connect() as db:
        return _rewardrows(db, case_id)
