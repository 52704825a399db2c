import logging
import threading

from recordstream.errors import CancellationError


logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = "deadline exceeded"


class CancelToken:
    """Cooperative cancellation signal shared by a decoder and its consumer.

    Work is never interrupted; callers check the token before starting each
    unit of work and stop when it is set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None
        self._timer: threading.Timer | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
        logger.info("cancellation requested", extra={"reason": reason})

    def cancel_after(self, seconds: float) -> None:
        self.stop_timer()
        timer = threading.Timer(seconds, self.cancel, kwargs={"reason": DEADLINE_EXCEEDED})
        timer.daemon = True
        with self._lock:
            self._timer = timer
        timer.start()

    def stop_timer(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def error(self) -> CancellationError | None:
        if not self._event.is_set():
            return None
        return CancellationError(self._reason or "cancelled")

    def raise_if_cancelled(self) -> None:
        error = self.error()
        if error is not None:
            raise error
