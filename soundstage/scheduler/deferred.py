"""
Deferred (promise) primitive used to sequence background playback.

A Deferred settles exactly once, either resolved with a value or rejected
with an exception; later resolve()/reject() calls are ignored. Callbacks
registered with then()/catch() run on the thread that settles the Deferred
(or immediately, if it is already settled) and produce a new Deferred, so
steps can be chained. A then() callback that returns a Deferred is adopted:
the chained Deferred settles when the returned one does.
"""

import logging
import threading
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

PENDING = "pending"
RESOLVED = "resolved"
REJECTED = "rejected"


class Deferred:
    """Thread-safe single-settlement promise."""

    def __init__(self):
        self._lock = threading.Lock()
        self._settled = threading.Event()
        self._state = PENDING
        self._value: Any = None
        self._error: Optional[BaseException] = None
        self._callbacks: List[Callable[[], None]] = []

    @classmethod
    def resolved(cls, value: Any = None) -> "Deferred":
        deferred = cls()
        deferred.resolve(value)
        return deferred

    @classmethod
    def rejected(cls, error: BaseException) -> "Deferred":
        deferred = cls()
        deferred.reject(error)
        return deferred

    @property
    def state(self) -> str:
        return self._state

    @property
    def done(self) -> bool:
        return self._settled.is_set()

    def resolve(self, value: Any = None) -> bool:
        """Resolve with value. Returns False if already settled."""
        return self._settle(RESOLVED, value, None)

    def reject(self, error: Any) -> bool:
        """Reject with error (non-exceptions are wrapped). Returns False if already settled."""
        if not isinstance(error, BaseException):
            error = RuntimeError(str(error))
        return self._settle(REJECTED, None, error)

    def _settle(self, state: str, value: Any, error: Optional[BaseException]) -> bool:
        with self._lock:
            if self._state != PENDING:
                return False
            self._state = state
            self._value = value
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
            self._settled.set()
        for callback in callbacks:
            callback()
        return True

    def _add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._state == PENDING:
                self._callbacks.append(callback)
                return
        callback()

    def then(
        self,
        on_resolved: Optional[Callable[[Any], Any]] = None,
        on_rejected: Optional[Callable[[BaseException], Any]] = None,
    ) -> "Deferred":
        """
        Chain a step.

        Args:
            on_resolved: Called with the value; its return value (or adopted
                Deferred) resolves the chained Deferred
            on_rejected: Called with the error; its return value recovers the chain

        Returns:
            Chained Deferred. An exception raised by a callback rejects it.
        """
        chained = Deferred()

        def run():
            if self._state == RESOLVED:
                handler, argument = on_resolved, self._value
            else:
                handler, argument = on_rejected, self._error
            if handler is None:
                if self._state == RESOLVED:
                    chained.resolve(self._value)
                else:
                    chained.reject(self._error)
                return
            try:
                outcome = handler(argument)
            except Exception as e:
                chained.reject(e)
                return
            if isinstance(outcome, Deferred):
                outcome.then(chained.resolve, chained.reject)
            else:
                chained.resolve(outcome)

        self._add_callback(run)
        return chained

    def catch(self, on_rejected: Callable[[BaseException], Any]) -> "Deferred":
        return self.then(None, on_rejected)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until settled. Returns False on timeout."""
        return self._settled.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Block until settled and return the value.

        Raises:
            TimeoutError: If the Deferred did not settle in time
            BaseException: The rejection error
        """
        if not self.wait(timeout):
            raise TimeoutError("Deferred did not settle in time")
        if self._state == REJECTED:
            raise self._error
        return self._value

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def __repr__(self) -> str:
        return f"Deferred({self._state})"
