"""
Wiring for a complete SwarmNode network.

Builds the directory, market and one relay per partition on a shared
executor and event bus so every operation across them is serialized.
"""

from typing import Callable, Optional

from swarmnode.config import SwarmConfig
from swarmnode.directory import AgentDirectory
from swarmnode.escrow import InMemoryLedger, ValueEscrow, ValueLedger
from swarmnode.events import EventBus
from swarmnode.executor import SerialExecutor
from swarmnode.logging import get_logger
from swarmnode.market import TaskMarket
from swarmnode.models import Identity
from swarmnode.relay import CrossPartitionRelay, DeliveryMode
from swarmnode.transport import InProcessHub

logger = get_logger()

DIRECTORY_ACCOUNT = Identity(address="swarm:directory")
MARKET_ACCOUNT = Identity(address="swarm:market")


class SwarmNetwork:
    """Directory, market and relays sharing one serialized executor."""

    def __init__(
        self,
        operator: Identity,
        config: Optional[SwarmConfig] = None,
        ledger: Optional[ValueLedger] = None,
        partitions: Optional[list[str]] = None,
        clock: Optional[Callable[[], float]] = None,
        publish_events: bool = False,
        delivery_mode: DeliveryMode = DeliveryMode.AT_MOST_ONCE,
    ):
        """
        Args:
            operator: Privileged identity for every component
            config: Fee parameters and Redis settings (defaults from env)
            ledger: Value ledger; an empty InMemoryLedger if omitted
            partitions: Partitions to run relays for; each allows all of them
            clock: Time source shared by all components
            publish_events: Also publish events to Redis
            delivery_mode: Relay delivery mode
        """
        self.config = config or SwarmConfig.from_env()
        self.operator = operator
        self.ledger = ledger if ledger is not None else InMemoryLedger()
        self.executor = SerialExecutor()
        self.events = EventBus(
            redis_url=self.config.redis_url,
            prefix=self.config.event_channel_prefix,
            publish=publish_events,
        )
        shared = {"executor": self.executor, "events": self.events, "clock": clock}

        self.directory = AgentDirectory(
            ValueEscrow(self.ledger, DIRECTORY_ACCOUNT),
            operator,
            deployment_fee=self.config.deployment_fee,
            **shared,
        )
        self.market = TaskMarket(
            self.directory,
            ValueEscrow(self.ledger, MARKET_ACCOUNT),
            operator,
            min_reward=self.config.min_reward,
            **shared,
        )

        self.hub = InProcessHub()
        self.relays: dict[str, CrossPartitionRelay] = {}
        for partition_id in partitions or []:
            relay = CrossPartitionRelay(
                partition_id,
                self.hub.endpoint(partition_id),
                operator,
                supported_partitions=list(partitions),
                delivery_mode=delivery_mode,
                **shared,
            )
            self.hub.attach(relay)
            self.relays[partition_id] = relay

        logger.info(
            "Swarm network ready (fee=%d, min_reward=%d, partitions=%s)",
            self.directory.deployment_fee,
            self.market.min_reward,
            list(self.relays),
        )

    def relay(self, partition_id: str) -> CrossPartitionRelay:
        return self.relays[partition_id]

    def deliver_pending(self):
        """Flush the in-process transport."""
        return self.hub.deliver_pending()

    def stats(self) -> dict:
        """Network-wide counters."""
        return {
            **self.directory.stats(),
            **{k: v for k, v in self.market.stats().items() if k != "paused"},
            "relays": {pid: relay.stats() for pid, relay in self.relays.items()},
        }
