import logging
from threading import Lock

from casevault.opening.animator import OPENING_SECONDS, SPIN_SECONDS
from casevault.opening.errors import CaseOpeningError
from casevault.opening.gateway import ProcedureGateway
from casevault.opening.scheduler import SCHEDULER
from casevault.opening.sequence import ROULETTE_LENGTH
from casevault.opening.session import CaseOpeningController


logger = logging.getLogger(__name__)


class CaseOpeningManager:
    """One controller per user; switching cases cancels the previous view."""

    def __init__(self, gateway: ProcedureGateway | None = None, scheduler=SCHEDULER) -> None:
        self._lock = Lock()
        self._controllers: dict[int, CaseOpeningController] = {}
        self.gateway = gateway or ProcedureGateway()
        self.scheduler = scheduler
        self.opening_seconds = OPENING_SECONDS
        self.spin_seconds = SPIN_SECONDS
        self.roulette_length = ROULETTE_LENGTH

    def configure(self, cfg: dict) -> None:
        self.opening_seconds = float(cfg.get("opening_seconds", self.opening_seconds))
        self.spin_seconds = float(cfg.get("spin_seconds", self.spin_seconds))
        self.roulette_length = int(cfg.get("roulette_length", self.roulette_length))

    def _get(self, user_id: int, case_id: str | None = None) -> CaseOpeningController | None:
        uid = int(user_id)
        key = str(case_id or "").strip().lower()
        with self._lock:
            ctl = self._controllers.get(uid)
            if not key or (ctl is not None and ctl.case_id == key):
                return ctl
            stale = ctl
            ctl = CaseOpeningController(
                uid,
                key,
                gateway=self.gateway,
                scheduler=self.scheduler,
                opening_seconds=self.opening_seconds,
                spin_seconds=self.spin_seconds,
                roulette_length=self.roulette_length,
            )
            self._controllers[uid] = ctl
        if stale is not None:
            logger.info("user %s switched from case %s to %s", uid, stale.case_id, key)
            stale.cancel()
        return ctl

    def _run(self, ctl: CaseOpeningController | None, action, case_id: str | None = None) -> tuple[bool, dict]:
        if ctl is None:
            return False, {"error": "no_session"}
        key = str(case_id or "").strip().lower()
        if key and key != ctl.case_id:
            return False, {"error": "case_not_found", "case_id": key}
        try:
            action(ctl)
        except CaseOpeningError as exc:
            return False, {**exc.to_dict(), "state": ctl.state()}
        return True, ctl.state()

    def open_case(self, user_id: int, case_id: str, is_free: bool = False) -> tuple[bool, dict]:
        if not str(case_id or "").strip():
            return False, {"error": "case_not_found"}
        return self._run(self._get(user_id, case_id), lambda ctl: ctl.open(is_free))

    def spin_finished(self, user_id: int, case_id: str | None = None) -> tuple[bool, dict]:
        return self._run(self._get(user_id), lambda ctl: ctl.spin_finished(), case_id)

    def keep(self, user_id: int, case_id: str | None = None) -> tuple[bool, dict]:
        return self._run(self._get(user_id), lambda ctl: ctl.keep(), case_id)

    def sell(self, user_id: int, case_id: str | None = None) -> tuple[bool, dict]:
        return self._run(self._get(user_id), lambda ctl: ctl.sell(), case_id)

    def cancel(self, user_id: int, case_id: str | None = None) -> tuple[bool, dict]:
        return self._run(self._get(user_id), lambda ctl: ctl.cancel(), case_id)

    def refresh(self, user_id: int, case_id: str | None = None) -> tuple[bool, dict]:
        return self._run(self._get(user_id), lambda ctl: ctl.refresh(), case_id)

    def state(self, user_id: int, case_id: str | None = None) -> dict:
        ctl = self._get(user_id)
        key = str(case_id or "").strip().lower()
        if ctl is None or (key and key != ctl.case_id):
            return {"case_id": key or None, "active": False, "can_open": True, "session": None}
        if ctl.shortfall is not None and not ctl.busy:
            # a top-up elsewhere may have covered the price
            try:
                ctl.refresh()
            except CaseOpeningError as exc:
                logger.warning("balance refresh for user %s failed: %s", user_id, exc)
        return ctl.state()

    def drop(self, user_id: int) -> None:
        with self._lock:
            ctl = self._controllers.pop(int(user_id), None)
        if ctl is not None:
            ctl.cancel()


MANAGER = CaseOpeningManager()
