# SwarmNode - Agent Coordination Core
"""
Core library for the SwarmNode agent network.

Modules:
    - directory: Agent registration, status, connections and rewards
    - market: Escrowed task marketplace and task lifecycle
    - relay: Cross-partition message relay
    - transport: In-process and Redis-backed partition transports
    - escrow: Value ledger and escrow custody
"""

from swarmnode.config import SwarmConfig
from swarmnode.directory import AgentDirectory
from swarmnode.errors import (
    AuthorizationError,
    CapabilityMismatchError,
    DeliveryError,
    EscrowError,
    NotFoundError,
    PausedError,
    ReentrancyError,
    StateError,
    SwarmError,
    ValidationError,
)
from swarmnode.escrow import InMemoryLedger, ValueEscrow
from swarmnode.market import TaskMarket
from swarmnode.models import AgentStatus, Identity, TaskStatus
from swarmnode.network import SwarmNetwork
from swarmnode.relay import CrossPartitionRelay, DeliveryMode

__version__ = "0.1.0"

__all__ = [
    "AgentDirectory",
    "AgentStatus",
    "AuthorizationError",
    "CapabilityMismatchError",
    "CrossPartitionRelay",
    "DeliveryError",
    "DeliveryMode",
    "EscrowError",
    "Identity",
    "InMemoryLedger",
    "NotFoundError",
    "PausedError",
    "ReentrancyError",
    "StateError",
    "SwarmConfig",
    "SwarmError",
    "SwarmNetwork",
    "TaskMarket",
    "TaskStatus",
    "ValidationError",
    "ValueEscrow",
]
