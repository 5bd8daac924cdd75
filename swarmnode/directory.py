"""
Agent directory for registering agents and tracking their network.

Provides paid registration, owner-controlled status, directed connections
between agents and operator-granted rewards.
"""

from collections import defaultdict
from typing import Optional

from swarmnode.errors import (
    AuthorizationError,
    NotFoundError,
    StateError,
    ValidationError,
)
from swarmnode.escrow import ValueEscrow
from swarmnode.executor import Component
from swarmnode.logging import get_logger
from swarmnode.models import Agent, AgentStatus, Identity

logger = get_logger("directory")

MAX_AUTONOMY = 1000


class AgentDirectory(Component):
    """
    Registry of agents, keyed by a monotonically increasing integer id.

    Structure:
        _agents             agent_id -> Agent (never deleted)
        _names              name -> agent_id
        _owned              owner -> [agent_id, ...]
        _network            agent_id -> [connected agent_id, ...] (forward edges)
        _connections        {(from_id, to_id), ...}
    """

    guard = "directory"

    def __init__(
        self,
        escrow: ValueEscrow,
        operator: Identity,
        deployment_fee: int = 10,
        **kwargs,
    ):
        """
        Initialize the directory.

        Args:
            escrow: Custody of the directory's treasury (fees in, rewards out)
            operator: Identity allowed to reward agents and change fees
            deployment_fee: Fee charged on every registration
        """
        super().__init__(operator, **kwargs)
        self.escrow = escrow
        self.deployment_fee = deployment_fee
        self._agents: dict[int, Agent] = {}
        self._names: dict[str, int] = {}
        self._owned: dict[Identity, list[int]] = defaultdict(list)
        self._network: dict[int, list[int]] = defaultdict(list)
        self._connections: set[tuple[int, int]] = set()
        self._next_id = 1
        self.active_agents = 0

    @property
    def total_agents(self) -> int:
        return self._next_id - 1

    # ==================== Registration ====================

    def register(
        self,
        caller: Identity,
        name: str,
        description: str,
        capabilities: list[str],
        autonomy_level: int,
        reward_threshold: int = 0,
        metadata_uri: str = "",
        fee: Optional[int] = None,
    ) -> int:
        """
        Register a new agent owned by ``caller``.

        Args:
            caller: Paying identity, becomes the agent's owner
            name: Globally unique, non-empty name
            description: Free text
            capabilities: Non-empty list of capability tags
            autonomy_level: 0-1000
            reward_threshold: Minimum reward the agent is interested in
            metadata_uri: Pointer to off-core metadata
            fee: Fee the caller agrees to pay; None accepts the current fee

        Returns:
            agent_id: New agent id, starting at 1

        Raises:
            ValidationError: Bad name, autonomy or capabilities
            EscrowError: Deployment fee could not be collected
        """
        with self._operation("register"):
            if not name:
                raise ValidationError("agent name cannot be empty")
            if name in self._names:
                raise ValidationError(f"agent name {name!r} is already taken")
            if not 0 <= autonomy_level <= MAX_AUTONOMY:
                raise ValidationError(
                    f"autonomy level must be within 0-{MAX_AUTONOMY}, got {autonomy_level}"
                )
            if not capabilities:
                raise ValidationError("an agent needs at least one capability")
            if reward_threshold < 0:
                raise ValidationError("reward threshold cannot be negative")
            if fee is not None and fee < self.deployment_fee:
                raise ValidationError(
                    f"offered fee {fee} is below the deployment fee {self.deployment_fee}"
                )

            self.escrow.collect(caller, self.deployment_fee)

            agent_id = self._next_id
            agent = Agent(
                agent_id=agent_id,
                owner=caller,
                name=name,
                description=description,
                capabilities=list(capabilities),
                autonomy_level=autonomy_level,
                reward_threshold=reward_threshold,
                deployment_time=self.now(),
                metadata_uri=metadata_uri,
            )
            self._agents[agent_id] = agent
            self._names[name] = agent_id
            self._owned[caller].append(agent_id)
            self._next_id += 1
            self.active_agents += 1

            self._emit(
                "AgentRegistered",
                agent_id=agent_id,
                owner=str(caller),
                name=name,
                capabilities=list(capabilities),
            )

        logger.info("Registered agent %d (%s) for %s", agent_id, name, caller)
        return agent_id

    # ==================== Status ====================

    def set_status(self, caller: Identity, agent_id: int, status: AgentStatus) -> None:
        """
        Move an agent to any status. Owner only.

        No transition is forbidden (a terminated agent may come back); only
        the active counter is kept in step.
        """
        try:
            status = AgentStatus(status)
        except ValueError as e:
            raise ValidationError(f"unknown agent status {status!r}") from e

        with self._operation("set_status"):
            agent = self._owned_agent(caller, agent_id)
            previous = agent.status

            if previous != AgentStatus.ACTIVE and status == AgentStatus.ACTIVE:
                self.active_agents += 1
            elif previous == AgentStatus.ACTIVE and status != AgentStatus.ACTIVE:
                self.active_agents -= 1

            agent.status = status
            self._emit(
                "AgentStatusChanged",
                agent_id=agent_id,
                previous=previous.value,
                status=status.value,
            )

        logger.info("Agent %d status %s -> %s", agent_id, previous.value, status.value)

    # ==================== Connections ====================

    def connect(self, caller: Identity, from_agent: int, to_agent: int) -> None:
        """Add the directed edge from_agent -> to_agent. Owner of from_agent only."""
        with self._operation("connect"):
            source = self._owned_agent(caller, from_agent)
            target = self._get(to_agent)

            if from_agent == to_agent:
                raise ValidationError("an agent cannot connect to itself")
            if (from_agent, to_agent) in self._connections:
                raise StateError(f"agents {from_agent} and {to_agent} already connected")
            if source.status != AgentStatus.ACTIVE or target.status != AgentStatus.ACTIVE:
                raise StateError("both agents must be active to connect")

            self._connections.add((from_agent, to_agent))
            self._network[from_agent].append(to_agent)
            self._emit("Connected", from_agent=from_agent, to_agent=to_agent)

        logger.info("Connected agent %d -> %d", from_agent, to_agent)

    def disconnect(self, caller: Identity, from_agent: int, to_agent: int) -> None:
        """
        Remove the directed edge from_agent -> to_agent.

        The edge is swapped with the last entry of the adjacency list and the
        list truncated, so the order of the remaining edges changes.
        """
        with self._operation("disconnect"):
            self._owned_agent(caller, from_agent)
            self._get(to_agent)

            if (from_agent, to_agent) not in self._connections:
                raise StateError(f"agents {from_agent} and {to_agent} are not connected")

            edges = self._network[from_agent]
            index = edges.index(to_agent)
            edges[index] = edges[-1]
            edges.pop()
            self._connections.discard((from_agent, to_agent))
            self._emit("Disconnected", from_agent=from_agent, to_agent=to_agent)

        logger.info("Disconnected agent %d -> %d", from_agent, to_agent)

    # ==================== Rewards & Treasury ====================

    def reward(self, caller: Identity, agent_id: int, amount: int) -> None:
        """
        Grant ``amount`` to an active agent's owner from the treasury. Operator only.

        Raises:
            EscrowError: Treasury transfer failed; total_rewards is untouched
        """
        with self._operation("reward"):
            self._require_operator(caller)
            agent = self._get(agent_id)
            if amount <= 0:
                raise ValidationError("reward amount must be positive")
            if agent.status != AgentStatus.ACTIVE:
                raise StateError(f"agent {agent_id} is not active")

            self.escrow.pay(agent.owner, amount)
            agent.total_rewards += amount
            self._emit("AgentReward", agent_id=agent_id, amount=amount)

        logger.info("Rewarded agent %d with %d", agent_id, amount)

    def set_deployment_fee(self, caller: Identity, fee: int) -> None:
        with self._operation("set_deployment_fee", pausable=False):
            self._require_operator(caller)
            if fee < 0:
                raise ValidationError("deployment fee cannot be negative")
            previous, self.deployment_fee = self.deployment_fee, fee
            self._emit("DeploymentFeeUpdated", previous=previous, fee=fee)

    def withdraw_fees(self, caller: Identity, to: Identity, amount: int) -> None:
        """Send collected value out of the treasury. Operator only."""
        with self._operation("withdraw_fees", pausable=False):
            self._require_operator(caller)
            if amount <= 0:
                raise ValidationError("withdrawal amount must be positive")
            self.escrow.pay(to, amount)

        logger.info("Withdrew %d from treasury to %s", amount, to)

    # ==================== Queries ====================

    def get_agent(self, agent_id: int) -> Agent:
        """Return a copy of the agent record."""
        with self.executor.read():
            return self._get(agent_id).model_copy(deep=True)

    def capabilities(self, agent_id: int) -> list[str]:
        with self.executor.read():
            return list(self._get(agent_id).capabilities)

    def network(self, agent_id: int) -> list[int]:
        """Forward adjacency list of an agent, in storage order."""
        with self.executor.read():
            self._get(agent_id)
            return list(self._network.get(agent_id, []))

    def owner_agents(self, owner: Identity) -> list[int]:
        with self.executor.read():
            return list(self._owned.get(owner, []))

    def is_connected(self, from_agent: int, to_agent: int) -> bool:
        with self.executor.read():
            return (from_agent, to_agent) in self._connections

    def find_by_name(self, name: str) -> Optional[Agent]:
        with self.executor.read():
            agent_id = self._names.get(name)
            return self.get_agent(agent_id) if agent_id else None

    def owner_of(self, agent_id: int) -> Identity:
        with self.executor.read():
            return self._get(agent_id).owner

    def stats(self) -> dict:
        with self.executor.read():
            return {
                "total_agents": self.total_agents,
                "active_agents": self.active_agents,
                "connections": len(self._connections),
                "deployment_fee": self.deployment_fee,
                "paused": self.paused,
            }

    # ==================== Internals ====================

    def _get(self, agent_id: int) -> Agent:
        if agent_id <= 0 or agent_id >= self._next_id:
            raise NotFoundError(f"agent {agent_id} does not exist")
        return self._agents[agent_id]

    def _owned_agent(self, caller: Identity, agent_id: int) -> Agent:
        agent = self._get(agent_id)
        if agent.owner != caller:
            raise AuthorizationError(f"{caller} does not own agent {agent_id}")
        return agent
