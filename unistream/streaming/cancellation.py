"""
unistream - Stream Abort Signal

Cooperative cancellation threaded from the caller down to the raw
transport. The iterator checks the signal before every pull, so an
abort stops further upstream reads while events already in flight
finish normally.

Usage:
    signal = AbortSignal()
    response = stream_response(source, "openai", signal=signal)
    ...
    signal.abort("client went away")
"""

from threading import Lock
from typing import Callable, List, Optional


class StreamAbortedError(Exception):
    """Raised by ``raise_if_aborted`` once the signal has fired."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "stream aborted")
        self.reason = reason


class AbortSignal:
    """
    Abort flag with cascading children and listeners.

    ``abort`` is idempotent; listeners run once, on the first call.
    """

    def __init__(self, parent: Optional["AbortSignal"] = None):
        self._aborted = False
        self._reason: Optional[str] = None
        self._lock = Lock()
        self._children: List["AbortSignal"] = []
        self._listeners: List[Callable[[Optional[str]], None]] = []
        if parent is not None:
            parent.link_child(self)

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def abort(self, reason: Optional[str] = None):
        """Request abort and cascade to children."""
        with self._lock:
            if self._aborted:
                return
            self._aborted = True
            self._reason = reason
            children = list(self._children)
            listeners = list(self._listeners)

        for listener in listeners:
            listener(reason)
        for child in children:
            child.abort(reason)

    def add_listener(self, listener: Callable[[Optional[str]], None]):
        """Run ``listener(reason)`` on abort, immediately if already aborted."""
        with self._lock:
            fire_now = self._aborted
            if not fire_now:
                self._listeners.append(listener)
        if fire_now:
            listener(self._reason)

    def link_child(self, signal: "AbortSignal") -> "AbortSignal":
        with self._lock:
            self._children.append(signal)
            should_abort = self._aborted
        if should_abort:
            signal.abort(self._reason)
        return signal

    def child(self) -> "AbortSignal":
        return AbortSignal(parent=self)

    def raise_if_aborted(self):
        if self._aborted:
            raise StreamAbortedError(self._reason)

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self._aborted}, reason={self._reason!r})"
