"""
Serialized execution for the core components.

Every public operation runs under one process-wide re-entrant lock, so two
mutations never interleave. A nested mutating call into the same component
class (for example a ledger callback calling back into the market) is
rejected instead of being allowed to observe half-applied state.
"""

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from swarmnode.errors import AuthorizationError, PausedError, ReentrancyError
from swarmnode.events import EventBus
from swarmnode.logging import get_logger
from swarmnode.models import Identity

logger = get_logger("executor")


class SerialExecutor:
    """Global mutex plus a per-class in-flight guard."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._in_flight: set[str] = set()

    @contextmanager
    def mutation(self, guard: str) -> Iterator[None]:
        """Run a mutating operation of class ``guard`` with exclusive access."""
        with self._lock:
            if guard in self._in_flight:
                logger.debug("Rejected reentrant call into %s", guard)
                raise ReentrancyError(f"reentrant call into {guard}")
            self._in_flight.add(guard)
            try:
                yield
            finally:
                self._in_flight.discard(guard)

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._lock:
            yield


class Component:
    """
    Shared plumbing for directory, market and relay.

    Holds the privileged operator identity, the pause flag, the clock and the
    event bus. Events raised inside an operation are buffered and only
    published once the operation has committed.
    """

    guard = "component"

    def __init__(
        self,
        operator: Identity,
        executor: Optional[SerialExecutor] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.operator = operator
        self.executor = executor or SerialExecutor()
        self.events = events or EventBus()
        self.clock = clock or time.time
        self._paused = False
        self._pending_events: list[tuple[str, dict]] = []

    def now(self) -> float:
        return self.clock()

    @property
    def paused(self) -> bool:
        return self._paused

    @contextmanager
    def _operation(self, name: str, pausable: bool = True) -> Iterator[None]:
        """
        Serialize one mutating operation and flush its events on success.

        A rejected operation is logged at DEBUG and its buffered events are
        discarded before the error propagates.
        """
        with self.executor.mutation(self.guard):
            self._pending_events = []
            try:
                if pausable and self._paused:
                    raise PausedError(f"{self.guard} is paused; {name} rejected")
                yield
            except Exception as e:
                self._pending_events = []
                logger.debug("%s.%s rejected: %s", self.guard, name, e)
                raise
            events, self._pending_events = self._pending_events, []
        for event_name, data in events:
            self.events.emit(event_name, data)

    def _emit(self, event_name: str, /, **data) -> None:
        self._pending_events.append((event_name, data))

    def _require_operator(self, caller: Identity) -> None:
        if caller != self.operator:
            raise AuthorizationError(f"{caller} is not the operator")

    # ==================== Pause Control ====================

    def pause(self, caller: Identity) -> None:
        """Reject mutating operations until unpaused. Operator only."""
        with self._operation("pause", pausable=False):
            self._require_operator(caller)
            self._paused = True
            self._emit("Paused", component=self.guard)
        logger.info("%s paused", self.guard)

    def unpause(self, caller: Identity) -> None:
        with self._operation("unpause", pausable=False):
            self._require_operator(caller)
            self._paused = False
            self._emit("Unpaused", component=self.guard)
        logger.info("%s unpaused", self.guard)
