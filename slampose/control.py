"""Thread-safe flags that coordinate a worker loop and the requests made to it."""

from __future__ import annotations

import threading
from typing import NamedTuple


class ThreadControl:
    """Stop, release and finish handshakes between a worker loop and its owner.

    A fresh control reports itself finished and stopped, because its loop
    has not started yet. The loop calls :meth:`start` when it begins. It
    polls :meth:`stop` and :meth:`check_finish` on each pass and calls
    :meth:`set_finish` when it leaves.
    """

    def __init__(self):
        self._finish_lock = threading.Lock()
        self._stop_lock = threading.Lock()
        self._released = threading.Condition(self._stop_lock)
        self._finish_requested = False
        self._finished = True
        self._stopped = True
        self._stop_requested = False

    def start(self):
        """Mark the loop as running: neither finished nor stopped."""
        with self._finish_lock:
            self._finished = False
        with self._stop_lock:
            self._stopped = False

    def request_finish(self):
        """Ask the loop to finish at its next check."""
        with self._finish_lock:
            self._finish_requested = True

    def check_finish(self) -> bool:
        """Whether finishing has been requested."""
        with self._finish_lock:
            return self._finish_requested

    def set_finish(self):
        """Record that the loop has finished."""
        with self._finish_lock:
            self._finished = True

    def is_finished(self) -> bool:
        with self._finish_lock:
            return self._finished

    def request_stop(self):
        """Ask a running loop to pause; ignored while it is already stopped."""
        with self._stop_lock:
            if not self._stopped:
                self._stop_requested = True

    def is_stopped(self) -> bool:
        with self._stop_lock:
            return self._stopped

    def stop(self) -> bool:
        """Enter the stopped state if a stop was requested and no finish is pending.

        Returns whether the loop is now to pause.
        """
        with self._stop_lock, self._finish_lock:
            if self._finish_requested:
                return False
            if self._stop_requested:
                self._stopped = True
                self._stop_requested = False
                return True
            return False

    def release(self):
        """Let a stopped loop run again."""
        with self._released:
            self._stopped = False
            self._released.notify_all()

    def wait_until_released(self, timeout=None) -> bool:
        """Block while stopped; return whether the loop was released in time."""
        with self._released:
            return self._released.wait_for(lambda: not self._stopped, timeout)


class ModeChange(NamedTuple):
    """Pending switches of the localization-only mode, in the order to apply them."""

    activate: bool
    deactivate: bool

    def __bool__(self) -> bool:
        return self.activate or self.deactivate


class ModeRequests:
    """Requests to switch localization mode or reset, taken by the tracking loop."""

    def __init__(self):
        self._mode_lock = threading.Lock()
        self._reset_lock = threading.Lock()
        self._activate = False
        self._deactivate = False
        self._reset = False

    def activate_localization_mode(self):
        """Ask tracking to stop mapping and only localize."""
        with self._mode_lock:
            self._activate = True

    def deactivate_localization_mode(self):
        """Ask tracking to resume mapping."""
        with self._mode_lock:
            self._deactivate = True

    def request_reset(self):
        """Ask tracking to clear its map and start over."""
        with self._reset_lock:
            self._reset = True

    def take_mode_change(self) -> ModeChange:
        """Return the pending mode requests and clear them.

        When both are pending, activation is applied before deactivation.
        """
        with self._mode_lock:
            change = ModeChange(self._activate, self._deactivate)
            self._activate = False
            self._deactivate = False
        return change

    def take_reset(self) -> bool:
        """Return whether a reset was requested and clear the request."""
        with self._reset_lock:
            pending = self._reset
            self._reset = False
        return pending