import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from .config import SAVE_DEBOUNCE_SECONDS

log = logging.getLogger(__name__)


class SaveState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"


class DebouncedSaver:
    """Coalesces payloads and sends only the newest one after a quiet period.

    ``idle -> pending`` on :meth:`submit`, ``pending -> in_flight`` when the
    timer fires or :meth:`flush` is called, then back to ``idle`` (or to
    ``pending`` when a payload arrived while the request was out). A failed
    send keeps its payload pending and records ``last_error``; nothing is
    retried until the next submit or flush.
    """

    def __init__(self, send: Callable[[Any], Any], delay: float = SAVE_DEBOUNCE_SECONDS, name: str = "autosave"):
        self._send = send
        self._delay = max(0.0, float(delay))
        self._name = name
        self._lock = threading.Lock()
        self._flush_guard = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Any = None
        self._has_pending = False
        self._in_flight = False
        self._closed = False
        self.last_error: Optional[Exception] = None
        self.sent_count = 0

    @property
    def state(self) -> SaveState:
        with self._lock:
            if self._in_flight:
                return SaveState.IN_FLIGHT
            return SaveState.PENDING if self._has_pending else SaveState.IDLE

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._has_pending

    def submit(self, payload: Any):
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self._name} is closed")
            self._pending = payload
            self._has_pending = True
            self._restart_timer()

    def _restart_timer(self):
        # caller holds self._lock
        if self._timer is not None:
            self._timer.cancel()
        timer = threading.Timer(self._delay, self._fire)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self):
        self.flush()

    def flush(self) -> bool:
        """Send the pending payload now. Returns False if the send failed."""
        with self._flush_guard:
            with self._lock:
                if self._timer is not None:
                    self._timer.cancel()
                    self._timer = None
                if not self._has_pending:
                    return True
                payload = self._pending
                self._pending = None
                self._has_pending = False
                self._in_flight = True
            try:
                self._send(payload)
            except Exception as exc:
                log.error("%s failed: %s", self._name, exc)
                with self._lock:
                    self._in_flight = False
                    self.last_error = exc
                    if not self._has_pending:
                        self._pending = payload
                        self._has_pending = True
                return False
            with self._lock:
                self._in_flight = False
                self.last_error = None
                self.sent_count += 1
                if self._has_pending and not self._closed and self._timer is None:
                    self._restart_timer()
            return True

    def cancel(self):
        """Stop the timer and drop whatever has not been sent."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None
            self._has_pending = False

    def close(self) -> bool:
        ok = self.flush()
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        return ok
