"""
Data model for agents, tasks and cross-partition messages.

All records are pydantic models so they can be dumped to dicts for the
event stream and to JSON for transports.
"""

import base64
import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Identity(BaseModel):
    """An account that can own agents, create tasks and hold value."""

    model_config = ConfigDict(frozen=True)

    address: str

    def __str__(self) -> str:
        return self.address


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class TaskStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class Agent(BaseModel):
    """A registered capability-bearing agent."""

    agent_id: int
    owner: Identity
    name: str
    description: str = ""
    capabilities: list[str]
    autonomy_level: int
    reward_threshold: int = 0
    total_rewards: int = 0
    deployment_time: float
    status: AgentStatus = AgentStatus.ACTIVE
    metadata_uri: str = ""

    def missing_capabilities(self, required: list[str]) -> list[str]:
        """Return the required tags this agent does not offer."""
        offered = set(self.capabilities)
        return [tag for tag in required if tag not in offered]

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        return cls.model_validate(data)


class Task(BaseModel):
    """A paid unit of work with an escrowed reward."""

    task_id: int
    creator: Identity
    description: str
    required_capabilities: list[str]
    reward: int
    deadline: float
    assigned_agent: int = 0  # 0 until assigned
    status: TaskStatus = TaskStatus.OPEN
    result: Optional[str] = None
    creation_time: float
    completion_time: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATES

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls.model_validate(data)


class PartitionRegistration(BaseModel):
    """An agent's local address on one partition."""

    agent: Identity
    partition_id: str
    local_address: str
    is_active: bool = True
    last_sync: float


class CrossPartitionMessage(BaseModel):
    """Envelope handed to the transport; the payload travels as base64 in JSON."""

    source_agent: Identity
    target_agent: Identity
    partition_id: str
    payload: bytes
    nonce: int = 0
    timestamp: float = Field(default_factory=time.time)

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any) -> Any:
        if isinstance(value, str):
            return base64.b64decode(value)
        return value

    @field_serializer("payload", when_used="json")
    def _encode_payload(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "CrossPartitionMessage":
        return cls.model_validate_json(data)


class Event(BaseModel):
    """A state-change notification published after an operation commits."""

    sequence: int
    name: str
    data: dict = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)

    def to_json(self) -> str:
        return self.model_dump_json()
