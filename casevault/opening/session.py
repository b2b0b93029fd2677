"""Client-side controller for one user opening one case.

The controller owns the reveal animator and the current session. Remote
calls run outside the controller lock; the in-flight flags stop a second
open or settle from starting while one is outstanding.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock

from casevault.logs import telemetry
from casevault.opening.animator import COMPLETE, ERROR, IDLE, OPENING_SECONDS, SETTLING, SPIN_SECONDS, RevealAnimator
from casevault.opening.errors import (
    CaseOpeningError,
    InsufficientFunds,
    InvalidPhase,
    MalformedResponse,
    OperationInProgress,
    SettlementConflict,
    SynchronizationMismatch,
)
from casevault.opening.gateway import OpenCaseResult, ProcedureGateway
from casevault.opening.rewards import RNG, RewardTableEntry, select_winner
from casevault.opening.scheduler import SCHEDULER
from casevault.opening.sequence import ROULETTE_LENGTH, RouletteSequence, build_sequence, sequence_from_payload


KEEP = "keep"
SELL = "sell"

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_hex(16)


@dataclass
class CaseOpeningSession:
    session_id: str
    user_id: int
    case_id: str
    is_free: bool = False
    phase: str = IDLE
    reward: RewardTableEntry | None = None
    sequence: RouletteSequence | None = None
    new_balance: int | None = None
    settled: bool = False
    disposition: str = ""
    inventory_id: int | None = None
    cancelled: bool = False
    error: str = ""
    error_detail: dict = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "case_id": self.case_id,
            "is_free": self.is_free,
            "phase": self.phase,
            "reward": self.reward.to_reward() if self.reward else None,
            "roulette": self.sequence.to_dict() if self.sequence else None,
            "new_balance": self.new_balance,
            "settled": self.settled,
            "disposition": self.disposition,
            "inventory_id": self.inventory_id,
            "cancelled": self.cancelled,
            "error": self.error,
            "error_detail": dict(self.error_detail),
            "created_at": self.created_at,
        }


class CaseOpeningController:
    def __init__(
        self,
        user_id: int,
        case_id: str,
        gateway: ProcedureGateway | None = None,
        scheduler=SCHEDULER,
        opening_seconds: float = OPENING_SECONDS,
        spin_seconds: float = SPIN_SECONDS,
        roulette_length: int = ROULETTE_LENGTH,
        rng=RNG,
    ) -> None:
        self.user_id = int(user_id)
        self.case_id = str(case_id)
        self.gateway = gateway or ProcedureGateway()
        self.roulette_length = int(roulette_length)
        self.rng = rng
        self.animator = RevealAnimator(
            scheduler,
            opening_seconds,
            spin_seconds,
            on_spin_complete=self._on_spin_complete,
        )
        self._lock = RLock()
        self._opening = False
        self._settling = False
        self.session: CaseOpeningSession | None = None
        self.last: CaseOpeningSession | None = None
        self.balance: int | None = None
        self.inventory: list[dict] = []
        self.shortfall: dict | None = None

    @property
    def busy(self) -> bool:
        return self._opening or self._settling

    @property
    def can_open(self) -> bool:
        with self._lock:
            return self.session is None and not self.busy and self.shortfall is None

    def _discard(self, session: CaseOpeningSession) -> None:
        if self.session is session:
            self.session = None
        self.last = session

    def _fail(self, session: CaseOpeningSession, exc: CaseOpeningError) -> None:
        if self.session is not session:
            return
        self.animator.fail(exc)
        session.phase = ERROR
        session.error = exc.code
        session.error_detail = dict(exc.detail)
        if isinstance(exc, InsufficientFunds):
            self.shortfall = {"required": exc.required, "current": exc.current}
            self.balance = exc.current
        self._discard(session)
        logger.warning("case %s session %s failed: %s", self.case_id, session.session_id, exc)
        telemetry("case_open_failed", user_id=self.user_id, case_id=self.case_id, session_id=session.session_id, error=exc.code)

    def _draft(self) -> RouletteSequence | None:
        # Cosmetic strip so the wheel can be laid out before the server answers.
        try:
            table = self.gateway.reward_table(self.case_id)
            placeholder = select_winner(table, self.rng)
        except CaseOpeningError as exc:
            logger.debug("no draft roulette for case %s: %s", self.case_id, exc)
            return None
        return build_sequence(placeholder, table, self.roulette_length, self.rng)

    def _place(self, draft: RouletteSequence | None, result: OpenCaseResult) -> RouletteSequence:
        if result.roulette_items and result.winner_index is not None:
            sequence = sequence_from_payload(result.roulette_items, result.winner_index)
        elif draft is not None:
            sequence = draft.with_winner(result.reward)
        else:
            sequence = build_sequence(result.reward, [], self.roulette_length, self.rng)
        sequence.verify(result.reward)
        return sequence.freeze()

    def open(self, is_free: bool = False) -> CaseOpeningSession:
        with self._lock:
            if self.busy:
                raise OperationInProgress("an open or settle call is already running")
            if self.session is not None:
                raise OperationInProgress(
                    "finish or cancel the current opening first",
                    session_id=self.session.session_id,
                    phase=self.session.phase,
                )
            self._opening = True
            session = CaseOpeningSession(new_session_id(), self.user_id, self.case_id, bool(is_free))
            self.session = session
            self.animator.reset()
            self.animator.on_change = lambda phase: setattr(session, "phase", phase)
            self.animator.begin()
        telemetry("case_open_started", user_id=self.user_id, case_id=self.case_id, session_id=session.session_id)

        try:
            draft = self._draft()
            result = self.gateway.open_case(self.user_id, self.case_id, session.session_id, bool(is_free))
            with self._lock:
                if self.session is not session:
                    # closed while the call was out; the server has already applied it
                    logger.info("session %s cancelled before the reward arrived", session.session_id)
                    session.reward = result.reward
                    self._reconcile()
                    return session
                session.reward = result.reward
                session.new_balance = result.new_balance
                self.balance = result.new_balance
                self.shortfall = None
                try:
                    session.sequence = self._place(draft, result)
                except SynchronizationMismatch as exc:
                    logger.error("roulette out of sync for session %s: %s", session.session_id, exc)
                    self._fail(session, exc)
                    raise
                self.animator.reward_ready(session.sequence)
            return session
        except CaseOpeningError as exc:
            with self._lock:
                self._fail(session, exc)
            raise
        except Exception as exc:
            logger.exception("open of case %s returned an unusable answer", self.case_id)
            err = MalformedResponse(str(exc) or type(exc).__name__)
            with self._lock:
                self._fail(session, err)
            raise err from exc
        finally:
            with self._lock:
                self._opening = False

    def spin_finished(self) -> bool:
        if self.session is None:
            return False
        return self.animator.spin_finished()

    def _on_spin_complete(self) -> None:
        with self._lock:
            session = self.session
            if session is None or session.phase != SETTLING:
                return
            self._settling = True
        try:
            confirmed = self.gateway.confirm_case_reward(self.user_id, session.session_id)
            with self._lock:
                if self.session is not session:
                    return
                shown = session.sequence.winner if session.sequence else None
                if shown is None or shown.id != confirmed.reward.id:
                    exc = SynchronizationMismatch(shown.id if shown else "", confirmed.reward.id)
                    logger.error("awarded reward differs from the revealed one: %s", exc)
                    session.reward = confirmed.reward
                    self._fail(session, exc)
                    return
                session.reward = confirmed.reward
                session.new_balance = confirmed.new_balance
                self.balance = confirmed.new_balance
                self.animator.settled()
        except CaseOpeningError as exc:
            with self._lock:
                self._fail(session, exc)
        except Exception as exc:
            logger.exception("confirming session %s failed", session.session_id)
            with self._lock:
                self._fail(session, MalformedResponse(str(exc) or type(exc).__name__))
        finally:
            with self._lock:
                self._settling = False
        telemetry("case_revealed", user_id=self.user_id, session_id=session.session_id, phase=session.phase)

    def _dispose(self, disposition: str) -> CaseOpeningSession:
        with self._lock:
            session = self.session
            if session is None:
                if self.last is not None and self.last.settled:
                    raise SettlementConflict(
                        "reward already settled",
                        session_id=self.last.session_id,
                        disposition=self.last.disposition,
                    )
                raise InvalidPhase("no revealed reward to settle", phase=IDLE)
            if session.phase != COMPLETE:
                raise InvalidPhase(f"cannot settle during {session.phase}", phase=session.phase)
            if self._settling:
                raise OperationInProgress("settlement already running", session_id=session.session_id)
            self._settling = True
        try:
            result = self.gateway.settle_case_reward(self.user_id, session.session_id, disposition)
        except CaseOpeningError as exc:
            # stays in complete; retried with the same session id
            session.error = exc.code
            session.error_detail = dict(exc.detail)
            logger.warning("settle %s for session %s failed: %s", disposition, session.session_id, exc)
            raise
        except Exception as exc:
            logger.exception("settle %s for session %s returned an unusable answer", disposition, session.session_id)
            err = MalformedResponse(str(exc) or type(exc).__name__)
            session.error = err.code
            raise err from exc
        finally:
            with self._lock:
                self._settling = False
        with self._lock:
            session.settled = True
            session.disposition = result.disposition
            session.inventory_id = result.inventory_id
            session.new_balance = result.new_balance
            session.error = ""
            session.error_detail = {}
            self.balance = result.new_balance
            self._discard(session)
        return session

    def keep(self) -> CaseOpeningSession:
        return self._dispose(KEEP)

    def sell(self) -> CaseOpeningSession:
        return self._dispose(SELL)

    def _reconcile(self) -> None:
        try:
            self.refresh()
        except CaseOpeningError as exc:
            logger.warning("refresh after cancel failed for user %s: %s", self.user_id, exc)

    def cancel(self) -> CaseOpeningSession | None:
        """Close the view. Never settles; a reward already drawn stays with the server."""
        with self._lock:
            session = self.session
            if session is None:
                return None
            self.animator.cancel()
            session.cancelled = True
            self._discard(session)
            drawn = session.reward is not None
        telemetry("case_open_cancelled", user_id=self.user_id, session_id=session.session_id, drawn=drawn)
        if drawn:
            self._reconcile()
        return session

    def refresh(self) -> dict:
        snapshot = self.gateway.refresh(self.user_id)
        with self._lock:
            self.balance = snapshot["balance"]
            self.inventory = snapshot["inventory"]
            if self.shortfall is not None and self.balance >= self.shortfall["required"]:
                self.shortfall = None
            elif self.shortfall is not None:
                self.shortfall["current"] = self.balance
        return snapshot

    def state(self) -> dict:
        with self._lock:
            current = self.session or self.last
            return {
                "case_id": self.case_id,
                "active": self.session is not None,
                "busy": self.busy,
                "can_open": self.session is None and not self.busy and self.shortfall is None,
                "balance": self.balance,
                "shortfall": dict(self.shortfall) if self.shortfall else None,
                "session": current.to_dict() if current else None,
                "animation": self.animator.to_dict(),
            }
