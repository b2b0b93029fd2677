import logging
from threading import RLock
from typing import Callable

from casevault.opening.errors import InvalidPhase
from casevault.opening.scheduler import SCHEDULER
from casevault.opening.sequence import RouletteSequence


IDLE = "idle"
OPENING = "opening"
SPINNING = "spinning"
SETTLING = "settling"
COMPLETE = "complete"
ERROR = "error"

OPENING_SECONDS = 1.0
SPIN_SECONDS = 5.0

TRANSITIONS = {
    IDLE: {OPENING, ERROR},
    OPENING: {SPINNING, ERROR},
    SPINNING: {SETTLING, ERROR},
    SETTLING: {COMPLETE, ERROR},
    COMPLETE: set(),
    ERROR: set(),
}
TERMINAL = {COMPLETE, ERROR}

logger = logging.getLogger(__name__)


class RevealAnimator:
    """Drives one reveal: lead-in, a single spin, settlement, done.

    Timer callbacks carry the generation they were scheduled in; anything
    scheduled before the last reset/cancel is ignored when it fires.
    """

    def __init__(
        self,
        scheduler=SCHEDULER,
        opening_seconds: float = OPENING_SECONDS,
        spin_seconds: float = SPIN_SECONDS,
        on_spin_complete: Callable[[], None] | None = None,
        on_change: Callable[[str], None] | None = None,
    ) -> None:
        self._lock = RLock()
        self._scheduler = scheduler
        self.opening_seconds = float(opening_seconds)
        self.spin_seconds = float(spin_seconds)
        self.on_spin_complete = on_spin_complete
        self.on_change = on_change
        self._generation = 0
        self._timers: dict[str, object] = {}
        self._clear()

    def _clear(self) -> None:
        self.phase = IDLE
        self.history = [IDLE]
        self.sequence: RouletteSequence | None = None
        self.error = None
        self.cancelled = False
        self._lead_in_done = False
        self._spin_done = False

    def _move(self, target: str) -> None:
        if target not in TRANSITIONS[self.phase]:
            raise InvalidPhase(f"cannot go from {self.phase} to {target}", phase=self.phase, target=target)
        logger.debug("reveal %s -> %s (generation %d)", self.phase, target, self._generation)
        self.phase = target
        self.history.append(target)
        if self.on_change is not None:
            self.on_change(target)

    def _schedule(self, name: str, delay: float, fn: Callable[[int], None]) -> None:
        gen = self._generation
        self._timers[name] = self._scheduler.call_later(delay, lambda: fn(gen))

    def _cancel_timers(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for handle in timers:
            self._scheduler.cancel(handle)

    def reset(self) -> None:
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._clear()

    def begin(self) -> None:
        with self._lock:
            self._move(OPENING)
            self._schedule("lead_in", self.opening_seconds, self._lead_in_elapsed)

    def reward_ready(self, sequence: RouletteSequence) -> None:
        with self._lock:
            if self.phase != OPENING:
                raise InvalidPhase(f"reward arrived during {self.phase}", phase=self.phase)
            if not sequence.frozen:
                raise ValueError("sequence must be frozen before the spin")
            self.sequence = sequence
            self._maybe_spin()

    def _lead_in_elapsed(self, gen: int) -> None:
        with self._lock:
            if gen != self._generation or self.phase != OPENING:
                return
            self._timers.pop("lead_in", None)
            self._lead_in_done = True
            self._maybe_spin()

    def _maybe_spin(self) -> None:
        if self.phase != OPENING or not self._lead_in_done or self.sequence is None:
            return
        self._move(SPINNING)
        self._schedule("spin", self.spin_seconds, self._finish_spin)

    def spin_finished(self) -> bool:
        """Animation end reported by the view; duplicates are ignored."""
        return self._finish_spin(self._generation)

    def _finish_spin(self, gen: int) -> bool:
        with self._lock:
            if gen != self._generation or self.phase != SPINNING or self._spin_done:
                return False
            self._spin_done = True
            self._scheduler.cancel(self._timers.pop("spin", None))
            self._move(SETTLING)
            callback = self.on_spin_complete
        if callback is not None:
            callback()
        return True

    def settled(self) -> None:
        with self._lock:
            self._move(COMPLETE)

    def fail(self, error) -> bool:
        with self._lock:
            if self.phase in TERMINAL:
                return False
            self._cancel_timers()
            self.error = error
            self._move(ERROR)
            return True

    def cancel(self) -> None:
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self.cancelled = True
            self.phase = IDLE
            self.history.append(IDLE)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "phase": self.phase,
                "opening_seconds": self.opening_seconds,
                "spin_seconds": self.spin_seconds,
                "sequence": self.sequence.to_dict() if self.sequence else None,
            }
