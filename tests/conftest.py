import itertools
from dataclasses import dataclass
from typing import Callable

import pytest

from casevault import database, procedures
from casevault.opening.manager import MANAGER


@dataclass
class Handle:
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False

    def fire(self) -> None:
        # fires even when cancelled, like a timer that raced its cancel
        self.callback()


class ManualScheduler:
    def __init__(self) -> None:
        self.calls: list[Handle] = []

    def call_later(self, delay, callback) -> Handle:
        handle = Handle(float(delay), callback)
        self.calls.append(handle)
        return handle

    def cancel(self, handle) -> None:
        if handle is not None:
            handle.cancelled = True

    def pending(self) -> list[Handle]:
        return [h for h in self.calls if not h.cancelled]

    def last(self) -> Handle:
        return self.calls[-1]

    def run_pending(self) -> None:
        for handle in self.pending():
            handle.cancelled = True
            handle.callback()


class FixedRNG:
    """Replays the given draws for ``random()``; ``randint`` returns ``index`` clamped to range."""

    def __init__(self, *draws: float, index: int | None = None) -> None:
        self.draws = list(draws)
        self.index = index

    def random(self) -> float:
        return self.draws.pop(0) if self.draws else 0.5

    def randint(self, lo: int, hi: int) -> int:
        if self.index is None:
            return lo
        return min(max(self.index, lo), hi)


class Backend:
    """Procedure module stand-in that records calls and lets a test swap one out."""

    def __init__(self, **overrides) -> None:
        self.overrides = overrides
        self.calls: list[str] = []

    def __getattr__(self, name):
        fn = self.overrides.get(name) or getattr(procedures, name)

        def call(*args):
            self.calls.append(name)
            return fn(*args)

        return call


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DBROOT", tmp_path / "database")
    database.setup()
    return tmp_path


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def make(balance: int = 0, admin: bool = False) -> int:
        uid = database.createaccount(f"player{next(counter)}", "x", balance)
        if admin:
            with database.connect() as conn:
                conn.execute("UPDATE accounts SET is_admin = 1 WHERE id = ?", (uid,))
        return uid

    return make


@pytest.fixture
def make_case(db):
    def make(
        case_id: str,
        price: int = 100,
        rewards=(("skin_a", 0.8, 10), ("skin_b", 0.2, 40)),
        is_free: bool = False,
        never_drop=(),
    ) -> str:
        with database.connect() as conn:
            conn.execute(
                "INSERT INTO cases (id, name, price, is_free) VALUES (?, ?, ?, ?)",
                (case_id, case_id.title(), price, int(is_free)),
            )
            for skin_id, probability, value in rewards:
                conn.execute(
                    "INSERT OR REPLACE INTO skins (id, name, rarity, price) VALUES (?, ?, 'Mil-Spec Grade', ?)",
                    (skin_id, skin_id.upper(), value),
                )
                conn.execute(
                    "INSERT INTO case_rewards (case_id, reward_type, skin_id, probability, never_drop) VALUES (?, 'skin', ?, ?, ?)",
                    (case_id, skin_id, probability, int(skin_id in never_drop)),
                )
        return case_id

    return make


@pytest.fixture
def client(db, scheduler, monkeypatch):
    from casevault.server import app

    monkeypatch.setattr(MANAGER, "scheduler", scheduler)
    monkeypatch.setattr(MANAGER, "_controllers", {})
    app.config["TESTING"] = True
    return app.test_client()
