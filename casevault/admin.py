"""Admin CRUD over the catalog tables.

Each table has one record type and one entry in ``FIELD_SCHEMAS``. Forms are
rendered from the schema, payloads are parsed against it, and ``save_record``
writes whatever record it is handed.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import ClassVar

from casevault import procedures
from casevault.database import accountbyid, connect, isadmin
from casevault.economy import adjust_coins, get_balance
from casevault.logs import telemetry
from casevault.opening.rewards import KIND_COINS, KIND_SKIN, KINDS


TEXT = "text"
SLUG = "slug"
INT = "int"
FLOAT = "float"
BOOL = "bool"
IMAGE = "image"

logger = logging.getLogger(__name__)


class InvalidRecord(ValueError):
    def __init__(self, code: str, field: str = "") -> None:
        super().__init__(f"{code}: {field}" if field else code)
        self.code = code
        self.field = field


@dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str
    required: bool = False
    default: object = None
    label: str = ""


FIELD_SCHEMAS: dict[str, tuple[FieldSpec, ...]] = {
    "cases": (
        FieldSpec("id", SLUG, required=True, label="Slug"),
        FieldSpec("name", TEXT, required=True),
        FieldSpec("price", INT, default=0),
        FieldSpec("is_free", BOOL, default=False),
        FieldSpec("is_active", BOOL, default=True),
        FieldSpec("image_url", IMAGE, default=""),
        FieldSpec("description", TEXT, default=""),
    ),
    "skins": (
        FieldSpec("id", SLUG, required=True, label="Slug"),
        FieldSpec("name", TEXT, required=True),
        FieldSpec("weapon_type", TEXT, default=""),
        FieldSpec("rarity", TEXT, default=""),
        FieldSpec("price", INT, default=0),
        FieldSpec("image_url", IMAGE, default=""),
    ),
    "coin_rewards": (
        FieldSpec("id", SLUG, required=True, label="Slug"),
        FieldSpec("name", TEXT, required=True),
        FieldSpec("amount", INT, required=True),
        FieldSpec("image_url", IMAGE, default=""),
    ),
    "case_rewards": (
        FieldSpec("id", INT),
        FieldSpec("case_id", SLUG, required=True),
        FieldSpec("reward_type", TEXT, default=KIND_SKIN),
        FieldSpec("skin_id", SLUG),
        FieldSpec("coin_reward_id", SLUG),
        FieldSpec("probability", FLOAT, default=0.0),
        FieldSpec("custom_probability", FLOAT),
        FieldSpec("never_drop", BOOL, default=False),
    ),
    "users": (
        FieldSpec("id", INT, required=True),
        FieldSpec("username", TEXT, required=True),
        FieldSpec("steam_trade_url", TEXT, default=""),
    ),
    "tasks": (
        FieldSpec("id", SLUG, required=True, label="Slug"),
        FieldSpec("title", TEXT, required=True),
        FieldSpec("reward_coins", INT, required=True),
        FieldSpec("is_active", BOOL, default=True),
    ),
    "promo_codes": (
        FieldSpec("id", INT),
        FieldSpec("code", TEXT, required=True),
        FieldSpec("reward_coins", INT, required=True),
        FieldSpec("max_uses", INT),
        FieldSpec("expires_at", TEXT),
        FieldSpec("is_active", BOOL, default=True),
    ),
    "quiz_questions": (
        FieldSpec("id", INT),
        FieldSpec("question", TEXT, required=True),
        FieldSpec("answers", TEXT, required=True, label="Answers, one per line"),
        FieldSpec("correct_answer", INT, required=True),
        FieldSpec("reward_coins", INT, default=0),
        FieldSpec("is_active", BOOL, default=True),
    ),
    "banners": (
        FieldSpec("id", INT),
        FieldSpec("title", TEXT, required=True),
        FieldSpec("image_url", IMAGE, default=""),
        FieldSpec("link", TEXT, default=""),
        FieldSpec("position", INT, default=0),
        FieldSpec("is_active", BOOL, default=True),
    ),
    "daily_rewards": (
        FieldSpec("day_number", INT, required=True),
        FieldSpec("reward_coins", INT, required=True),
        FieldSpec("is_active", BOOL, default=True),
    ),
}


class Record:
    TABLE: ClassVar[str] = ""
    KEY: ClassVar[str] = "id"

    def check(self) -> None:
        pass

    def to_row(self) -> dict:
        return asdict(self)

    @property
    def key(self):
        return getattr(self, self.KEY)


@dataclass
class CaseRecord(Record):
    TABLE: ClassVar[str] = "cases"
    id: str
    name: str
    price: int = 0
    is_free: bool = False
    is_active: bool = True
    image_url: str = ""
    description: str = ""

    def check(self) -> None:
        if self.price < 0:
            raise InvalidRecord("negative_value", "price")


@dataclass
class SkinRecord(Record):
    TABLE: ClassVar[str] = "skins"
    id: str
    name: str
    weapon_type: str = ""
    rarity: str = ""
    price: int = 0
    image_url: str = ""

    def check(self) -> None:
        if self.price < 0:
            raise InvalidRecord("negative_value", "price")


@dataclass
class CoinRewardRecord(Record):
    TABLE: ClassVar[str] = "coin_rewards"
    id: str
    name: str
    amount: int = 0
    image_url: str = ""

    def check(self) -> None:
        if self.amount <= 0:
            raise InvalidRecord("negative_value", "amount")


@dataclass
class CaseRewardRecord(Record):
    TABLE: ClassVar[str] = "case_rewards"
    case_id: str
    id: int | None = None
    reward_type: str = KIND_SKIN
    skin_id: str | None = None
    coin_reward_id: str | None = None
    probability: float = 0.0
    custom_probability: float | None = None
    never_drop: bool = False

    def check(self) -> None:
        if self.reward_type not in KINDS:
            raise InvalidRecord("invalid_value", "reward_type")
        if self.reward_type == KIND_SKIN and not self.skin_id:
            raise InvalidRecord("missing_field", "skin_id")
        if self.reward_type == KIND_COINS and not self.coin_reward_id:
            raise InvalidRecord("missing_field", "coin_reward_id")
        if self.probability < 0 or (self.custom_probability or 0) < 0:
            raise InvalidRecord("negative_value", "probability")


@dataclass
class UserRecord(Record):
    TABLE: ClassVar[str] = "users"
    id: int
    username: str
    steam_trade_url: str = ""

    def check(self) -> None:
        if len(self.username) < 3:
            raise InvalidRecord("invalid_value", "username")


@dataclass
class TaskRecord(Record):
    TABLE: ClassVar[str] = "tasks"
    id: str
    title: str
    reward_coins: int = 0
    is_active: bool = True


@dataclass
class PromoCodeRecord(Record):
    TABLE: ClassVar[str] = "promo_codes"
    code: str
    reward_coins: int
    id: int | None = None
    max_uses: int | None = None
    expires_at: str | None = None
    is_active: bool = True

    def check(self) -> None:
        if self.reward_coins <= 0:
            raise InvalidRecord("negative_value", "reward_coins")
        if self.max_uses is not None and self.max_uses < 1:
            raise InvalidRecord("invalid_value", "max_uses")


@dataclass
class QuizQuestionRecord(Record):
    TABLE: ClassVar[str] = "quiz_questions"
    question: str
    answers: str
    correct_answer: int
    id: int | None = None
    reward_coins: int = 0
    is_active: bool = True

    def check(self) -> None:
        options = [line for line in self.answers.splitlines() if line.strip()]
        if len(options) < 2:
            raise InvalidRecord("invalid_value", "answers")
        if not 0 <= self.correct_answer < len(options):
            raise InvalidRecord("invalid_value", "correct_answer")


@dataclass
class BannerRecord(Record):
    TABLE: ClassVar[str] = "banners"
    title: str
    id: int | None = None
    image_url: str = ""
    link: str = ""
    position: int = 0
    is_active: bool = True


@dataclass
class DailyRewardRecord(Record):
    TABLE: ClassVar[str] = "daily_rewards"
    KEY: ClassVar[str] = "day_number"
    day_number: int
    reward_coins: int
    is_active: bool = True

    def check(self) -> None:
        if self.day_number < 1:
            raise InvalidRecord("invalid_value", "day_number")


RECORDS: dict[str, type[Record]] = {
    cls.TABLE: cls
    for cls in (
        CaseRecord,
        SkinRecord,
        CoinRewardRecord,
        CaseRewardRecord,
        UserRecord,
        TaskRecord,
        PromoCodeRecord,
        QuizQuestionRecord,
        BannerRecord,
        DailyRewardRecord,
    )
}


def _coerce(spec: FieldSpec, value):
    if value is None or (isinstance(value, str) and not value.strip() and spec.kind != TEXT):
        return None
    try:
        if spec.kind == INT:
            return int(value)
        if spec.kind == FLOAT:
            return float(value)
        if spec.kind == BOOL:
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRecord("invalid_value", spec.name) from exc
    if spec.kind == SLUG:
        # ids are matched lowercase everywhere they are looked up
        return str(value).strip().lower()
    return str(value).strip()


def parse_record(table: str, payload: dict) -> Record:
    cls = RECORDS.get(str(table))
    if cls is None:
        raise InvalidRecord("unknown_table", str(table))
    values = {}
    for spec in FIELD_SCHEMAS[cls.TABLE]:
        value = _coerce(spec, payload.get(spec.name))
        if value is None or value == "":
            if spec.required:
                raise InvalidRecord("missing_field", spec.name)
            value = spec.default
        values[spec.name] = value
    record = cls(**values)
    record.check()
    return record


def form_schema(table: str) -> list[dict]:
    return [asdict(spec) for spec in FIELD_SCHEMAS.get(str(table), ())]


def _forbidden() -> dict:
    return {"success": False, "error": "forbidden"}


def list_records(actor_id: int, table: str) -> dict:
    if not isadmin(actor_id):
        return _forbidden()
    cls = RECORDS.get(str(table))
    if cls is None:
        return {"success": False, "error": "unknown_table"}
    cols = ", ".join(spec.name for spec in FIELD_SCHEMAS[cls.TABLE])
    source = "accounts" if cls is UserRecord else cls.TABLE
    with connect() as db:
        rows = db.execute(f"SELECT {cols} FROM {source} ORDER BY {cls.KEY} ASC").fetchall()
    return {"success": True, "table": cls.TABLE, "fields": form_schema(cls.TABLE), "rows": [dict(r) for r in rows]}


def _saveuser(db, record: UserRecord) -> None:
    cur = db.execute(
        "UPDATE accounts SET username = ?, steam_trade_url = ? WHERE id = ?",
        (record.username, record.steam_trade_url, int(record.id)),
    )
    if cur.rowcount == 0:
        raise InvalidRecord("user_not_found", "id")


def save_record(actor_id: int, record: Record) -> dict:
    if not isadmin(actor_id):
        return _forbidden()
    row = record.to_row()
    try:
        with connect() as db:
            if isinstance(record, UserRecord):
                _saveuser(db, record)
                key = record.id
            elif record.key is None:
                row.pop(record.KEY)
                cols = list(row)
                cur = db.execute(
                    f"INSERT INTO {record.TABLE} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                    [row[c] for c in cols],
                )
                key = cur.lastrowid
            else:
                cols = list(row)
                updates = ", ".join(f"{c} = excluded.{c}" for c in cols if c != record.KEY)
                db.execute(
                    f"INSERT INTO {record.TABLE} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
                    f"ON CONFLICT({record.KEY}) DO UPDATE SET {updates}",
                    [row[c] for c in cols],
                )
                key = record.key
    except InvalidRecord as exc:
        return {"success": False, "error": exc.code, "field": exc.field}
    except sqlite3.IntegrityError:
        logger.info("admin %s hit a uniqueness clash on %s", actor_id, record.TABLE)
        return {"success": False, "error": "duplicate"}
    telemetry("admin_saved", actor_id=int(actor_id), table=record.TABLE, key=key)
    return {"success": True, "table": record.TABLE, "key": key}


def delete_record(actor_id: int, table: str, key) -> dict:
    if not isadmin(actor_id):
        return _forbidden()
    cls = RECORDS.get(str(table))
    if cls is None or cls is UserRecord:
        return {"success": False, "error": "unknown_table"}
    keyspec = next(spec for spec in FIELD_SCHEMAS[cls.TABLE] if spec.name == cls.KEY)
    if keyspec.kind == SLUG:
        key = str(key).strip().lower()
    with connect() as db:
        cur = db.execute(f"DELETE FROM {cls.TABLE} WHERE {cls.KEY} = ?", (key,))
    if cur.rowcount == 0:
        return {"success": False, "error": "not_found"}
    telemetry("admin_deleted", actor_id=int(actor_id), table=cls.TABLE, key=key)
    return {"success": True}


def adjust_balance(actor_id: int, user_id: int, amount: int, reason: str, reference_id: str) -> dict:
    """Manual credit or debit; ``reference_id`` makes a resubmitted form a no-op."""
    if not isadmin(actor_id):
        return _forbidden()
    if not accountbyid(user_id):
        return {"success": False, "error": "user_not_found"}
    value = int(amount)
    if value == 0:
        return {"success": False, "error": "invalid_amount"}
    applied = adjust_coins(user_id, value, reason or "admin adjustment", f"admin:{reference_id}")
    balance = get_balance(user_id)
    logger.info("admin %s adjusted user %s by %s (applied=%s)", actor_id, user_id, value, applied)
    return {"success": True, "applied": applied, "new_balance": balance}


def toggle_admin_role(actor_id: int, user_id: int, grant: bool) -> dict:
    return procedures.toggle_admin_role(actor_id, user_id, grant)
