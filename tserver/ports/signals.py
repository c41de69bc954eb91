from __future__ import annotations

import signal
import threading
import time
from typing import Optional, Protocol


class ShutdownSignal(Protocol):
    def wait(self, timeout: Optional[float] = None) -> bool: ...

    def trigger(self) -> None: ...

    def close(self) -> None: ...


class ManualSignal:
    """Shutdown source fired from code instead of the OS."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def trigger(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def close(self) -> None:
        return None


class InterruptSignal(ManualSignal):
    """
    Fires on SIGINT (and SIGTERM where the platform has it).

    Must be created on the main thread; the previous handlers come back on close().
    The signal handler only records the signal number: setting the event from
    inside a handler can deadlock on the event's own lock, so wait() polls.
    """

    poll_interval = 0.2
    signals = tuple(
        s for s in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if s is not None
    )

    def __init__(self) -> None:
        super().__init__()
        self.received: Optional[int] = None
        self._previous = {}
        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self._on_signal)

    def _on_signal(self, signum, frame) -> None:  # noqa: ARG002 - signal API
        self.received = signum

    def is_set(self) -> bool:
        return self.received is not None or super().is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            step = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                step = min(step, remaining)
            self._event.wait(step)
        return True

    def close(self) -> None:
        while self._previous:
            sig, handler = self._previous.popitem()
            signal.signal(sig, handler)
