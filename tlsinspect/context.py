"""
context.py
==========
Cancellation and deadlines for blocking network calls.

A CheckContext is handed down from the inspection to the CRL and OCSP
checkers. Every network call goes through CheckContext.call(), which runs
the call on a daemon worker thread and returns control to the caller as
soon as the context is cancelled or its deadline passes. The abandoned
worker finishes on its own, bounded by the HTTP timeout.
"""

import threading
import time

from tlsinspect.config import load_config
from tlsinspect.errors import CheckCancelled


class CheckContext:
    """
    Cancellation token plus optional deadline.

    Args:
        timeout:        Seconds from now until the deadline (None = no deadline).
        cancel_event:   Shared threading.Event; a fresh one if omitted.
        poll_interval:  How often call() re-checks the token, in seconds.
    """

    def __init__(self, timeout: float = None, cancel_event: threading.Event = None,
                 poll_interval: float = 0.05):
        self._event = cancel_event if cancel_event is not None else threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self.poll_interval = poll_interval

    @classmethod
    def from_config(cls, cfg: dict = None, cancel_event: threading.Event = None) -> "CheckContext":
        cfg = cfg or load_config()
        return cls(
            timeout=cfg["check_timeout_seconds"],
            cancel_event=cancel_event,
            poll_interval=cfg["cancel_poll_interval_seconds"],
        )

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self):
        """Seconds until the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout_for(self, default: float) -> float:
        """Clamp a per-request timeout to the time left on the context."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def check(self) -> None:
        """Raise CheckCancelled if the context is done."""
        if self._event.is_set():
            raise CheckCancelled("cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise CheckCancelled("deadline exceeded")

    def call(self, fn, *args, **kwargs):
        """
        Run a blocking call so that cancellation interrupts the wait.

        Returns:
            Whatever fn returns.

        Raises:
            CheckCancelled: If the context fires before fn completes.
            Any exception raised by fn.
        """
        self.check()

        outcome = {}
        done = threading.Event()

        def run():
            try:
                outcome["value"] = fn(*args, **kwargs)
            except BaseException as exc:
                outcome["error"] = exc
            finally:
                done.set()

        threading.Thread(target=run, daemon=True, name="tlsinspect-io").start()

        while not done.wait(self.poll_interval):
            self.check()

        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]


def background() -> CheckContext:
    """A context that is never cancelled and has no deadline."""
    return CheckContext()
