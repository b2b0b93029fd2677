from threading import Lock, Timer
from typing import Callable


class TimerScheduler:
    """Runs callbacks after a delay on daemon timer threads."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._timers: set[Timer] = set()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        holder: list[Timer] = []

        def run() -> None:
            with self._lock:
                self._timers.discard(holder[0])
            callback()

        timer = Timer(max(0.0, float(delay)), run)
        timer.daemon = True
        holder.append(timer)
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def cancel(self, handle: Timer | None) -> None:
        if handle is None:
            return
        handle.cancel()
        with self._lock:
            self._timers.discard(handle)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()


SCHEDULER = TimerScheduler()
