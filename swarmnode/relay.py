"""
Cross-partition message relay.

One relay runs per partition. Agents register the local address they use on
each supported partition; ``send_message`` wraps a payload in an envelope
and hands it to the transport, and ``receive_message`` (called by the
transport on the destination partition) forwards it to the target agent's
local handler.

The relay does not retry or deduplicate by default: a delivery is attempted
once and any redelivery policy belongs to the transport.
"""

from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import pydantic

from swarmnode.errors import (
    AuthorizationError,
    DeliveryError,
    NotFoundError,
    StateError,
    ValidationError,
)
from swarmnode.executor import Component
from swarmnode.logging import get_logger
from swarmnode.models import CrossPartitionMessage, Identity, PartitionRegistration

logger = get_logger("relay")

# (source_agent, source_partition, payload)
MessageHandler = Callable[[Identity, str, bytes], None]


class CrossPartitionTransport(Protocol):
    identity: Identity

    def dispatch(self, envelope: CrossPartitionMessage, fee: int) -> Any:
        ...


class DeliveryMode(str, Enum):
    AT_MOST_ONCE = "at_most_once"
    RETRY = "retry"


class CrossPartitionRelay(Component):
    """
    Relay instance for one local partition.

    Structure:
        _registrations      agent -> {partition_id: PartitionRegistration}
        _supported          allow-list of partition ids
        _handlers           agent -> local message handler
        _nonces             target partition -> last nonce sent
    """

    guard = "relay"

    def __init__(
        self,
        partition_id: str,
        transport: CrossPartitionTransport,
        operator: Identity,
        supported_partitions: Optional[list[str]] = None,
        delivery_mode: DeliveryMode = DeliveryMode.AT_MOST_ONCE,
        max_attempts: int = 3,
        **kwargs,
    ):
        """
        Args:
            partition_id: Partition this relay serves
            transport: Collaborator that carries envelopes between partitions
            operator: Identity allowed to manage the partition allow-list
            supported_partitions: Initial allow-list
            delivery_mode: Single attempt (default) or bounded handler retries
            max_attempts: Attempts per message in RETRY mode
        """
        super().__init__(operator, **kwargs)
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        self.partition_id = partition_id
        self.transport = transport
        self.delivery_mode = DeliveryMode(delivery_mode)
        self.max_attempts = max_attempts
        self._registrations: dict[Identity, dict[str, PartitionRegistration]] = (
            defaultdict(dict)
        )
        self._supported: set[str] = set(supported_partitions or [])
        self._handlers: dict[Identity, MessageHandler] = {}
        self._nonces: dict[str, int] = defaultdict(int)
        self.messages_sent = 0
        self.messages_received = 0

    # ==================== Partition Allow-list ====================

    def add_supported_partition(self, caller: Identity, partition_id: str) -> None:
        """Allow a partition. Operator only; adding twice is a no-op."""
        with self._operation("add_supported_partition"):
            self._require_operator(caller)
            if not partition_id:
                raise ValidationError("partition id cannot be empty")
            if partition_id in self._supported:
                return
            self._supported.add(partition_id)
            self._emit("PartitionSupported", partition_id=partition_id)

        logger.info("Partition %s is now supported", partition_id)

    def remove_supported_partition(self, caller: Identity, partition_id: str) -> None:
        with self._operation("remove_supported_partition"):
            self._require_operator(caller)
            if partition_id not in self._supported:
                raise NotFoundError(f"partition {partition_id} is not supported")
            self._supported.discard(partition_id)
            self._emit("PartitionUnsupported", partition_id=partition_id)

    def is_supported(self, partition_id: str) -> bool:
        with self.executor.read():
            return partition_id in self._supported

    @property
    def supported_partitions(self) -> list[str]:
        with self.executor.read():
            return sorted(self._supported)

    # ==================== Registration ====================

    def register_agent(
        self, caller: Identity, partition_id: str, local_address: str
    ) -> PartitionRegistration:
        """Record (or overwrite) the caller's address on a supported partition."""
        with self._operation("register_agent"):
            self._require_supported(partition_id)
            if not local_address:
                raise ValidationError("local address cannot be empty")

            registration = PartitionRegistration(
                agent=caller,
                partition_id=partition_id,
                local_address=local_address,
                is_active=True,
                last_sync=self.now(),
            )
            self._registrations[caller][partition_id] = registration
            self._emit(
                "PartitionRegistered",
                agent=str(caller),
                partition_id=partition_id,
                local_address=local_address,
            )

        logger.info("%s registered on partition %s as %s", caller, partition_id, local_address)
        return registration.model_copy()

    def sync(self, caller: Identity, partition_id: str) -> float:
        """Refresh the last-sync time of the caller's registration."""
        with self._operation("sync"):
            registration = self._registration(caller, partition_id)
            registration.last_sync = self.now()
            return registration.last_sync

    def deactivate(self, caller: Identity, partition_id: str) -> None:
        with self._operation("deactivate"):
            registration = self._registration(caller, partition_id)
            registration.is_active = False
            self._emit("PartitionDeactivated", agent=str(caller), partition_id=partition_id)

    def get_registration(
        self, agent: Identity, partition_id: str
    ) -> Optional[PartitionRegistration]:
        with self.executor.read():
            registration = self._registrations.get(agent, {}).get(partition_id)
            return registration.model_copy() if registration else None

    def partitions_of(self, agent: Identity) -> list[str]:
        with self.executor.read():
            return [
                partition_id
                for partition_id, registration in self._registrations.get(agent, {}).items()
                if registration.is_active
            ]

    def bind_handler(self, agent: Identity, handler: MessageHandler) -> None:
        """Install the local handler that receives messages addressed to ``agent``."""
        with self.executor.read():
            self._handlers[agent] = handler

    # ==================== Messaging ====================

    def send_message(
        self,
        caller: Identity,
        target_partition: str,
        target_agent: Identity,
        payload: bytes,
        transport_fee: int = 0,
    ) -> CrossPartitionMessage:
        """
        Wrap ``payload`` and hand it to the transport. Fire and forget.

        Returns:
            The dispatched envelope
        """
        with self._operation("send_message"):
            if not self.partitions_of(caller):
                raise StateError(f"{caller} has no active partition registration")
            self._require_supported(target_partition)
            if transport_fee < 0:
                raise ValidationError("transport fee cannot be negative")

            nonce = self._nonces[target_partition] + 1
            envelope = CrossPartitionMessage(
                source_agent=caller,
                target_agent=target_agent,
                partition_id=target_partition,
                payload=bytes(payload),
                nonce=nonce,
                timestamp=self.now(),
            )
            receipt = self.transport.dispatch(envelope, transport_fee)

            self._nonces[target_partition] = nonce
            self.messages_sent += 1
            self._emit(
                "PartitionMessageSent",
                source_agent=str(caller),
                target_agent=str(target_agent),
                partition_id=target_partition,
                nonce=nonce,
                receipt=receipt if isinstance(receipt, (str, int)) else None,
            )

        logger.info(
            "Sent message #%d from %s to %s on %s",
            nonce,
            caller,
            target_agent,
            target_partition,
        )
        return envelope

    def receive_message(
        self,
        caller: Identity,
        source_partition: str,
        origin_sender: Identity,
        envelope: CrossPartitionMessage | str | bytes,
    ) -> None:
        """
        Forward an incoming envelope to the target agent's handler. Transport only.

        Raises:
            ValidationError: The envelope could not be parsed
            DeliveryError: No handler, or the handler raised
        """
        with self._operation("receive_message"):
            if caller != self.transport.identity:
                raise AuthorizationError(f"{caller} is not the trusted transport")
            if not isinstance(envelope, CrossPartitionMessage):
                try:
                    envelope = CrossPartitionMessage.from_json(envelope)
                except pydantic.ValidationError as e:
                    raise ValidationError(f"malformed envelope: {e}") from e

            handler = self._handlers.get(envelope.target_agent)
            if handler is None:
                raise DeliveryError(f"no local handler for {envelope.target_agent}")

            self._deliver(handler, envelope, source_partition)

            self.messages_received += 1
            self._emit(
                "PartitionMessageReceived",
                source_agent=str(envelope.source_agent),
                target_agent=str(envelope.target_agent),
                source_partition=source_partition,
                origin_sender=str(origin_sender),
                nonce=envelope.nonce,
            )

        logger.info(
            "Delivered message #%d from %s (%s) to %s",
            envelope.nonce,
            envelope.source_agent,
            source_partition,
            envelope.target_agent,
        )

    def stats(self) -> dict:
        with self.executor.read():
            return {
                "partition_id": self.partition_id,
                "supported_partitions": self.supported_partitions,
                "registered_agents": len(self._registrations),
                "messages_sent": self.messages_sent,
                "messages_received": self.messages_received,
                "delivery_mode": self.delivery_mode.value,
            }

    # ==================== Internals ====================

    def _deliver(
        self,
        handler: MessageHandler,
        envelope: CrossPartitionMessage,
        source_partition: str,
    ) -> None:
        attempts = self.max_attempts if self.delivery_mode == DeliveryMode.RETRY else 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                handler(envelope.source_agent, source_partition, envelope.payload)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Handler for %s failed (attempt %d/%d): %s",
                    envelope.target_agent,
                    attempt,
                    attempts,
                    e,
                )

        raise DeliveryError(
            f"delivery to {envelope.target_agent} failed: {last_error}"
        ) from last_error

    def _require_supported(self, partition_id: str) -> None:
        if partition_id not in self._supported:
            raise ValidationError(f"partition {partition_id} is not supported")

    def _registration(self, caller: Identity, partition_id: str) -> PartitionRegistration:
        registration = self._registrations.get(caller, {}).get(partition_id)
        if registration is None:
            raise NotFoundError(f"{caller} is not registered on {partition_id}")
        return registration
