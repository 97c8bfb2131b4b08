import logging
import threading
from typing import Callable, Dict, Optional


class Countdown:
    """Handle for one running countdown."""

    def __init__(self, room_code: str, seconds: int, lock, on_tick, on_expire):
        self.room_code = room_code
        self.seconds = seconds
        self.remaining = seconds
        self.lock = lock
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.cancelled = False
        self.finished = False

    @property
    def running(self) -> bool:
        return not (self.cancelled or self.finished)


class TimerEngine:
    """At most one countdown per room code.

    - ``start`` cancels any countdown already running for the room
    - each tick runs under the room lock handed to ``start``
    - ``on_tick(remaining)`` returns False when the room is gone, which stops
      the countdown without expiry
    - ``on_expire()`` runs once, when remaining reaches 0
    """

    def __init__(
        self,
        spawn: Callable,
        sleep: Callable[[float], None],
        interval: float = 1.0,
        logger: logging.Logger = None,
    ):
        self._spawn = spawn
        self._sleep = sleep
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)
        self._handles: Dict[str, Countdown] = {}
        self._lock = threading.Lock()

    def start(self, room_code: str, seconds: int, lock, on_tick, on_expire) -> Countdown:
        handle = Countdown(room_code, seconds, lock, on_tick, on_expire)
        with self._lock:
            previous = self._handles.get(room_code)
            if previous is not None:
                previous.cancelled = True
                self.logger.info(f"[timer-preempt] room={room_code} remaining={previous.remaining}")
            self._handles[room_code] = handle
        self.logger.info(f"[timer-set] room={room_code} duration={seconds}s")
        self._spawn(self._run, handle)
        return handle

    def cancel(self, room_code: str) -> bool:
        with self._lock:
            handle = self._handles.pop(room_code, None)
        if handle is None:
            return False
        handle.cancelled = True
        self.logger.info(f"[timer-cancel] room={room_code} remaining={handle.remaining}")
        return True

    def current(self, room_code: str) -> Optional[Countdown]:
        return self._handles.get(room_code)

    def is_running(self, room_code: str) -> bool:
        handle = self._handles.get(room_code)
        return handle is not None and handle.running

    def _run(self, handle: Countdown) -> None:
        try:
            while handle.running:
                self._sleep(self.interval)
                if not self.tick(handle):
                    return
        except Exception:
            self.logger.exception(f"[timer-error] room={handle.room_code} remaining={handle.remaining}")
            self._drop(handle)

    def _drop(self, handle: Countdown) -> None:
        handle.finished = True
        with self._lock:
            if self._handles.get(handle.room_code) is handle:
                del self._handles[handle.room_code]

    def tick(self, handle: Countdown) -> bool:
        """Advance ``handle`` by one second. Returns True while it keeps running."""
        with handle.lock:
            if not handle.running or self._handles.get(handle.room_code) is not handle:
                return False
            handle.remaining = max(0, handle.remaining - 1)
            alive = handle.on_tick(handle.remaining)
            if alive and handle.remaining > 0:
                return True
            self._drop(handle)
            if not alive:
                self.logger.info(f"[timer-abort] room={handle.room_code} room gone")
                return False
            self.logger.info(f"[timer-expire] room={handle.room_code}")
            handle.on_expire()
            return False
