import logging
import sqlite3
from dataclasses import dataclass

from casevault import procedures
from casevault.opening.errors import NetworkFailure, from_payload
from casevault.opening.rewards import RewardTableEntry, load_reward_table, reward_from_payload


logger = logging.getLogger(__name__)


@dataclass
class OpenCaseResult:
    session_id: str
    reward: RewardTableEntry
    new_balance: int
    roulette_items: list[RewardTableEntry] | None = None
    winner_index: int | None = None
    replay: bool = False


@dataclass
class SettlementResult:
    session_id: str
    disposition: str
    new_balance: int
    inventory_id: int | None = None
    replay: bool = False


class ProcedureGateway:
    """Calls the reward procedures and turns their payloads into results or errors."""

    def __init__(self, backend=procedures) -> None:
        self._backend = backend

    def _call(self, name: str, *args) -> dict:
        try:
            payload = getattr(self._backend, name)(*args)
        except sqlite3.Error as exc:
            logger.exception("procedure %s failed", name)
            raise NetworkFailure(f"{name} unavailable: {exc}") from exc
        if not payload.get("success"):
            raise from_payload(payload)
        return payload

    def fetch_reward_rows(self, case_id: str) -> list[dict]:
        return self._call("reward_table", case_id)["rows"]

    def reward_table(self, case_id: str) -> list[RewardTableEntry]:
        return load_reward_table(case_id, self.fetch_reward_rows)

    def open_case(self, user_id: int, case_id: str, session_id: str, is_free: bool) -> OpenCaseResult:
        payload = self._call("open_case", user_id, case_id, session_id, is_free)
        items = payload.get("roulette_items")
        return OpenCaseResult(
            session_id=str(payload.get("session_id") or session_id),
            reward=reward_from_payload(payload["reward"]),
            new_balance=int(payload.get("new_balance", 0)),
            roulette_items=[reward_from_payload(i) for i in items] if items else None,
            winner_index=payload.get("winner_index"),
            replay=bool(payload.get("idempotent_replay")),
        )

    def confirm_case_reward(self, user_id: int, session_id: str) -> OpenCaseResult:
        payload = self._call("confirm_case_reward", user_id, session_id)
        return OpenCaseResult(
            session_id=session_id,
            reward=reward_from_payload(payload["reward"]),
            new_balance=int(payload.get("new_balance", 0)),
        )

    def settle_case_reward(self, user_id: int, session_id: str, disposition: str) -> SettlementResult:
        payload = self._call("settle_case_reward", user_id, session_id, disposition)
        return SettlementResult(
            session_id=session_id,
            disposition=str(payload["disposition"]),
            new_balance=int(payload.get("new_balance", 0)),
            inventory_id=payload.get("inventory_id"),
            replay=bool(payload.get("idempotent_replay")),
        )

    def refresh(self, user_id: int) -> dict:
        payload = self._call("account_snapshot", user_id)
        return {"balance": int(payload["balance"]), "inventory": payload["inventory"]}
