"""
Partition transports for the cross-partition relay.

Two implementations of the relay's transport collaborator:
    - InProcessHub / InProcessEndpoint: queues envelopes in memory and
      delivers them when ``deliver_pending`` is called
    - RedisTransport: one FIFO inbox per partition in Redis
"""

import json
import os
import uuid
from collections import deque
from typing import Optional

import redis

from swarmnode.errors import DeliveryError, NotFoundError, SwarmError
from swarmnode.logging import get_logger
from swarmnode.models import CrossPartitionMessage, Identity

logger = get_logger("transport")


class InProcessEndpoint:
    """A relay's handle on the in-process hub."""

    def __init__(self, hub: "InProcessHub", partition_id: str):
        self.hub = hub
        self.partition_id = partition_id
        self.identity = Identity(address=f"transport:{partition_id}")

    def dispatch(self, envelope: CrossPartitionMessage, fee: int) -> str:
        return self.hub.enqueue(self, envelope, fee)


class InProcessHub:
    """
    In-memory stand-in for the cross-partition messaging layer.

    Dispatch only queues; nothing reaches a remote relay until
    ``deliver_pending`` runs, which mirrors the asynchronous hop of a real
    transport.
    """

    def __init__(self) -> None:
        self._endpoints: dict[str, InProcessEndpoint] = {}
        self._relays: dict[str, object] = {}
        self._queue: deque = deque()
        self.fees_collected = 0

    def endpoint(self, partition_id: str) -> InProcessEndpoint:
        if partition_id not in self._endpoints:
            self._endpoints[partition_id] = InProcessEndpoint(self, partition_id)
        return self._endpoints[partition_id]

    def attach(self, relay) -> None:
        """Make ``relay`` the receiver for its partition."""
        self._relays[relay.partition_id] = relay

    def enqueue(
        self, source: InProcessEndpoint, envelope: CrossPartitionMessage, fee: int
    ) -> str:
        receipt = uuid.uuid4().hex
        self._queue.append((receipt, source, envelope))
        self.fees_collected += fee
        logger.debug("Queued %s for partition %s", receipt, envelope.partition_id)
        return receipt

    @property
    def pending(self) -> int:
        return len(self._queue)

    def deliver_pending(self) -> list[tuple[str, Optional[Exception]]]:
        """
        Deliver every queued envelope once, in dispatch order.

        Any rejection by the receiving relay, a paused relay included, is
        recorded as that envelope's outcome and the envelope is dropped.

        Returns:
            (receipt, error) per envelope; error is None on success
        """
        outcomes = []
        while self._queue:
            receipt, source, envelope = self._queue.popleft()
            relay = self._relays.get(envelope.partition_id)
            if relay is None:
                error: Optional[Exception] = NotFoundError(
                    f"no relay attached for partition {envelope.partition_id}"
                )
                logger.warning("Dropping %s: %s", receipt, error)
                outcomes.append((receipt, error))
                continue

            target = self.endpoint(envelope.partition_id)
            try:
                relay.receive_message(
                    target.identity, source.partition_id, source.identity, envelope
                )
                outcomes.append((receipt, None))
            except SwarmError as e:
                logger.warning("Delivery of %s failed: %s", receipt, e)
                outcomes.append((receipt, e))
        return outcomes


class RedisTransport:
    """
    Redis-backed transport for one partition.

    Key structure:
        partition:inbox:{partition_id}       LIST of pending envelopes (FIFO)
        partition:processing:{partition_id}  LIST of envelopes being delivered
        partition:notify:{partition_id}      pub/sub channel announcing arrivals
    """

    def __init__(self, partition_id: str, redis_url: Optional[str] = None):
        """
        Initialize transport with Redis connection.

        Args:
            partition_id: Partition whose inbox this transport drains
            redis_url: Redis connection URL. Defaults to REDIS_URL env var.
        """
        self.partition_id = partition_id
        self.identity = Identity(address=f"transport:redis:{partition_id}")
        self.redis_url = redis_url or os.environ.get(
            "REDIS_URL", "redis://localhost:6379"
        )
        self._client: Optional[redis.Redis] = None
        self._relay = None

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

    def ping(self) -> bool:
        """Check Redis connection."""
        try:
            return self.client.ping()
        except redis.ConnectionError:
            return False

    def close(self) -> None:
        if self._client:
            self._client.close()

    def attach(self, relay) -> None:
        self._relay = relay

    # ==================== Outbound ====================

    def dispatch(self, envelope: CrossPartitionMessage, fee: int) -> str:
        """Queue an envelope in the target partition's inbox."""
        receipt = uuid.uuid4().hex
        record = json.dumps(
            {
                "receipt": receipt,
                "source_partition": self.partition_id,
                "origin_sender": self.identity.address,
                "fee": fee,
                "envelope": envelope.to_json(),
            }
        )
        target = envelope.partition_id
        try:
            pipe = self.client.pipeline()
            pipe.lpush(f"partition:inbox:{target}", record)
            pipe.publish(f"partition:notify:{target}", receipt)
            pipe.execute()
        except redis.RedisError as e:
            raise DeliveryError(f"could not queue message for {target}: {e}") from e

        return receipt

    def pending(self, partition_id: Optional[str] = None) -> int:
        """Number of envelopes waiting in a partition's inbox."""
        return self.client.llen(f"partition:inbox:{partition_id or self.partition_id}")

    # ==================== Inbound ====================

    def poll(self, timeout: int = 0) -> Optional[CrossPartitionMessage]:
        """
        Deliver the next envelope from this partition's inbox to the relay.

        Each envelope gets a single delivery attempt; a failed delivery or a
        malformed record is logged and discarded.

        Args:
            timeout: Blocking timeout in seconds (0 = non-blocking)

        Returns:
            The delivered envelope, or None if the inbox was empty or delivery failed
        """
        if self._relay is None:
            raise NotFoundError(f"no relay attached to transport {self.partition_id}")

        inbox = f"partition:inbox:{self.partition_id}"
        processing = f"partition:processing:{self.partition_id}"

        if timeout > 0:
            raw = self.client.brpoplpush(inbox, processing, timeout)
        else:
            raw = self.client.rpoplpush(inbox, processing)

        if not raw:
            return None

        try:
            try:
                record = json.loads(raw)
                envelope = CrossPartitionMessage.from_json(record["envelope"])
                origin_sender = Identity(address=record["origin_sender"])
                source_partition = record["source_partition"]
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Dropping malformed record from %s: %s", inbox, e)
                return None

            try:
                self._relay.receive_message(
                    self.identity,
                    source_partition,
                    origin_sender,
                    envelope,
                )
                return envelope
            except SwarmError as e:
                logger.warning("Delivery of %s failed: %s", record.get("receipt"), e)
                return None
        finally:
            self.client.lrem(processing, 1, raw)


# CLI interface
if __name__ == "__main__":
    import sys

    from swarmnode.config import SwarmConfig
    from swarmnode.logging import configure_logging

    configure_logging(SwarmConfig.from_env().log_level)

    if len(sys.argv) < 2:
        print("Usage: python -m swarmnode.transport <command> [args]")
        print("Commands: ping, pending <partition>")
        sys.exit(1)

    command = sys.argv[1]

    if command == "ping":
        transport = RedisTransport("cli")
        if transport.ping():
            print("Redis connection OK")
        else:
            print("Redis connection FAILED")
            sys.exit(1)

    elif command == "pending":
        if len(sys.argv) < 3:
            print("Usage: python -m swarmnode.transport pending <partition>")
            sys.exit(1)
        partition_id = sys.argv[2]
        transport = RedisTransport(partition_id)
        print(f"Pending messages for {partition_id}: {transport.pending()}")

    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
