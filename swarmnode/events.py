"""
State-change notification stream.

Events are appended to an in-memory log, handed to local subscribers and,
when a Redis client is attached, published on ``{prefix}:{EventName}`` for
out-of-process consumers (dashboards, SDKs).
"""

import os
import threading
from typing import Callable, Optional

import redis

from swarmnode.logging import get_logger
from swarmnode.models import Event

logger = get_logger("events")

EventCallback = Callable[[Event], None]


class EventBus:
    """
    Append-only event log with pub/sub fan-out.

    Channel structure (Redis):
        {prefix}:{name}     one channel per event name, JSON payload
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "swarm:events",
        publish: bool = False,
    ):
        """
        Args:
            redis_url: Redis connection URL. Defaults to REDIS_URL env var.
            prefix: Channel prefix for published events
            publish: Publish events to Redis in addition to local delivery
        """
        self.redis_url = redis_url or os.environ.get(
            "REDIS_URL", "redis://localhost:6379"
        )
        self.prefix = prefix
        self.publish = publish
        self._client: Optional[redis.Redis] = None
        self._log: list[Event] = []
        self._subscribers: list[tuple[Optional[frozenset], EventCallback]] = []
        self._lock = threading.Lock()

    @property
    def client(self) -> redis.Redis:
        """Lazy Redis client initialization."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
        return self._client

    def close(self) -> None:
        if self._client:
            self._client.close()

    def subscribe(
        self, callback: EventCallback, names: Optional[list[str]] = None
    ) -> None:
        """
        Register a local subscriber.

        Args:
            callback: Called with each Event after its operation commits
            names: Optional filter on event names
        """
        selector = frozenset(names) if names else None
        self._subscribers.append((selector, callback))

    def emit(self, name: str, data: dict) -> Event:
        """Append an event and fan it out."""
        with self._lock:
            event = Event(sequence=len(self._log) + 1, name=name, data=data)
            self._log.append(event)

        for selector, callback in list(self._subscribers):
            if selector is not None and name not in selector:
                continue
            try:
                callback(event)
            except Exception:
                # state is already committed; a broken subscriber must not undo it
                logger.exception("Subscriber failed on %s #%d", name, event.sequence)

        if self.publish:
            try:
                self.client.publish(f"{self.prefix}:{name}", event.to_json())
            except redis.RedisError as e:
                logger.warning("Could not publish %s to Redis: %s", name, e)

        return event

    def history(self, name: Optional[str] = None) -> list[Event]:
        """Return logged events, optionally only those called ``name``."""
        if name is None:
            return list(self._log)
        return [event for event in self._log if event.name == name]

    def last(self, name: str) -> Optional[Event]:
        matching = self.history(name)
        return matching[-1] if matching else None
