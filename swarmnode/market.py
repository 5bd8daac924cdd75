"""
Task marketplace with escrowed rewards.

A task's reward is pulled into market custody when the task is created and
leaves custody exactly once: to the assigned agent's owner on completion,
or back to the creator on failure, expiry or cancellation.

Lifecycle:
    open -> assigned -> in_progress -> completed
    in_progress -> failed            (fail_task, handle_expired)
    assigned -> failed               (handle_expired)
    open -> cancelled
"""

from collections import defaultdict

from swarmnode.directory import AgentDirectory
from swarmnode.errors import (
    AuthorizationError,
    CapabilityMismatchError,
    NotFoundError,
    StateError,
    ValidationError,
)
from swarmnode.escrow import ValueEscrow
from swarmnode.executor import Component
from swarmnode.logging import get_logger
from swarmnode.models import AgentStatus, Identity, Task, TaskStatus

logger = get_logger("market")


class TaskMarket(Component):
    """Creates, matches and settles tasks against the agent directory."""

    guard = "market"

    def __init__(
        self,
        directory: AgentDirectory,
        escrow: ValueEscrow,
        operator: Identity,
        min_reward: int = 1,
        **kwargs,
    ):
        """
        Args:
            directory: Source of agent ownership, status and capabilities
            escrow: Custody for task rewards
            operator: Identity allowed to expire tasks and change parameters
            min_reward: Smallest reward a task may carry
        """
        super().__init__(operator, **kwargs)
        self.directory = directory
        self.escrow = escrow
        self.min_reward = min_reward
        self._tasks: dict[int, Task] = {}
        self._agent_tasks: dict[int, list[int]] = defaultdict(list)
        self._creator_tasks: dict[Identity, list[int]] = defaultdict(list)
        self._next_id = 1
        self.completed_tasks = 0

    @property
    def total_tasks(self) -> int:
        return self._next_id - 1

    # ==================== Creation ====================

    def create_task(
        self,
        caller: Identity,
        description: str,
        required_capabilities: list[str],
        reward: int,
        deadline: float,
    ) -> int:
        """
        Create an open task and escrow its reward.

        Args:
            caller: Creator, pays the reward into custody
            description: Non-empty task description
            required_capabilities: Non-empty list of tags an agent must offer
            reward: Amount escrowed, at least ``min_reward``
            deadline: Absolute time, strictly in the future

        Returns:
            task_id: New task id, starting at 1
        """
        with self._operation("create_task"):
            now = self.now()
            if not description:
                raise ValidationError("task description cannot be empty")
            if not required_capabilities:
                raise ValidationError("a task needs at least one required capability")
            if reward < self.min_reward:
                raise ValidationError(
                    f"reward {reward} is below the minimum of {self.min_reward}"
                )
            if deadline <= now:
                raise ValidationError("deadline must be in the future")

            task_id = self._next_id
            self.escrow.hold(task_id, caller, reward)

            self._tasks[task_id] = Task(
                task_id=task_id,
                creator=caller,
                description=description,
                required_capabilities=list(required_capabilities),
                reward=reward,
                deadline=deadline,
                creation_time=now,
            )
            self._creator_tasks[caller].append(task_id)
            self._next_id += 1

            self._emit(
                "TaskCreated",
                task_id=task_id,
                creator=str(caller),
                reward=reward,
                deadline=deadline,
            )

        logger.info("Created task %d with reward %d", task_id, reward)
        return task_id

    # ==================== Lifecycle ====================

    def assign_task(self, caller: Identity, task_id: int, agent_id: int) -> None:
        """
        Assign an open task to an agent owned by ``caller``.

        Raises:
            CapabilityMismatchError: The agent lacks one of the required tags
        """
        with self._operation("assign_task"):
            task = self._get(task_id)
            agent = self.directory.get_agent(agent_id)

            if agent.owner != caller:
                raise AuthorizationError(f"{caller} does not own agent {agent_id}")
            self._require_status(task, TaskStatus.OPEN)
            self._require_before_deadline(task)
            if agent.status != AgentStatus.ACTIVE:
                raise StateError(f"agent {agent_id} is not active")

            missing = agent.missing_capabilities(task.required_capabilities)
            if missing:
                raise CapabilityMismatchError(
                    f"agent {agent_id} lacks {', '.join(missing)}", missing=missing
                )

            task.assigned_agent = agent_id
            task.status = TaskStatus.ASSIGNED
            self._agent_tasks[agent_id].append(task_id)
            self._emit("TaskAssigned", task_id=task_id, agent_id=agent_id)

        logger.info("Assigned task %d to agent %d", task_id, agent_id)

    def start_task(self, caller: Identity, task_id: int) -> None:
        with self._operation("start_task"):
            task = self._get(task_id)
            self._require_assignee(caller, task)
            self._require_status(task, TaskStatus.ASSIGNED)
            self._require_before_deadline(task)

            task.status = TaskStatus.IN_PROGRESS
            self._emit("TaskStarted", task_id=task_id, agent_id=task.assigned_agent)

        logger.info("Task %d in progress", task_id)

    def complete_task(self, caller: Identity, task_id: int, result: str) -> None:
        """
        Record the result and pay the reward to the assigned agent's owner.

        The task only advances if the payment succeeds.
        """
        with self._operation("complete_task"):
            task = self._get(task_id)
            self._require_assignee(caller, task)
            self._require_status(task, TaskStatus.IN_PROGRESS)
            self._require_before_deadline(task)

            paid = self.escrow.release(task_id, caller)

            task.result = result
            task.completion_time = self.now()
            task.status = TaskStatus.COMPLETED
            self.completed_tasks += 1
            self._emit(
                "TaskCompleted",
                task_id=task_id,
                agent_id=task.assigned_agent,
                reward=paid,
            )

        logger.info("Task %d completed, paid %d to %s", task_id, paid, caller)

    def fail_task(self, caller: Identity, task_id: int) -> None:
        """Give up on an in-progress task; the creator is refunded."""
        with self._operation("fail_task"):
            task = self._get(task_id)
            self._require_assignee(caller, task)
            self._require_status(task, TaskStatus.IN_PROGRESS)

            self._refund(task, TaskStatus.FAILED)
            self._emit(
                "TaskFailed",
                task_id=task_id,
                agent_id=task.assigned_agent,
                reason="failed",
            )

        logger.info("Task %d failed, reward refunded", task_id)

    def cancel_task(self, caller: Identity, task_id: int) -> None:
        """Withdraw an open task. Creator only."""
        with self._operation("cancel_task"):
            task = self._get(task_id)
            if task.creator != caller:
                raise AuthorizationError(f"{caller} did not create task {task_id}")
            self._require_status(task, TaskStatus.OPEN)

            self._refund(task, TaskStatus.CANCELLED)
            self._emit("TaskCancelled", task_id=task_id)

        logger.info("Task %d cancelled", task_id)

    def handle_expired(self, caller: Identity, task_id: int) -> None:
        """
        Fail an assigned or in-progress task whose deadline has passed. Operator only.

        Nothing sweeps stalled tasks automatically; this call is the only
        way to recover their escrow.
        """
        with self._operation("handle_expired"):
            self._require_operator(caller)
            task = self._get(task_id)
            self._require_status(task, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
            if self.now() < task.deadline:
                raise StateError(f"task {task_id} has not reached its deadline")

            self._refund(task, TaskStatus.FAILED)
            self._emit(
                "TaskFailed",
                task_id=task_id,
                agent_id=task.assigned_agent,
                reason="expired",
            )

        logger.info("Task %d expired, reward refunded", task_id)

    # ==================== Parameters ====================

    def set_min_reward(self, caller: Identity, amount: int) -> None:
        with self._operation("set_min_reward", pausable=False):
            self._require_operator(caller)
            if amount < 0:
                raise ValidationError("minimum reward cannot be negative")
            previous, self.min_reward = self.min_reward, amount
            self._emit("MinRewardUpdated", previous=previous, min_reward=amount)

    # ==================== Queries ====================

    def get_task(self, task_id: int) -> Task:
        """Return a copy of the task record."""
        with self.executor.read():
            return self._get(task_id).model_copy(deep=True)

    def agent_tasks(self, agent_id: int) -> list[int]:
        with self.executor.read():
            return list(self._agent_tasks.get(agent_id, []))

    def creator_tasks(self, creator: Identity) -> list[int]:
        with self.executor.read():
            return list(self._creator_tasks.get(creator, []))

    def open_tasks(self) -> list[int]:
        with self.executor.read():
            return [
                task_id
                for task_id, task in self._tasks.items()
                if task.status == TaskStatus.OPEN
            ]

    def escrowed(self, task_id: int) -> int:
        """Amount currently held for a task (0 once settled)."""
        with self.executor.read():
            self._get(task_id)
            return self.escrow.held(task_id)

    def stats(self) -> dict:
        with self.executor.read():
            by_status: dict[str, int] = defaultdict(int)
            for task in self._tasks.values():
                by_status[task.status.value] += 1
            return {
                "total_tasks": self.total_tasks,
                "completed_tasks": self.completed_tasks,
                "escrowed": self.escrow.total_held,
                "min_reward": self.min_reward,
                "by_status": dict(by_status),
                "paused": self.paused,
            }

    # ==================== Internals ====================

    def _get(self, task_id: int) -> Task:
        if task_id <= 0 or task_id >= self._next_id:
            raise NotFoundError(f"task {task_id} does not exist")
        return self._tasks[task_id]

    def _require_status(self, task: Task, *allowed: TaskStatus) -> None:
        if task.status not in allowed:
            expected = " or ".join(status.value for status in allowed)
            raise StateError(
                f"task {task.task_id} is {task.status.value}, expected {expected}"
            )

    def _require_before_deadline(self, task: Task) -> None:
        if self.now() >= task.deadline:
            raise StateError(f"task {task.task_id} is past its deadline")

    def _require_assignee(self, caller: Identity, task: Task) -> None:
        if not task.assigned_agent:
            raise StateError(f"task {task.task_id} has no assigned agent")
        if self.directory.owner_of(task.assigned_agent) != caller:
            raise AuthorizationError(
                f"{caller} does not own the agent assigned to task {task.task_id}"
            )

    def _refund(self, task: Task, status: TaskStatus) -> None:
        self.escrow.release(task.task_id, task.creator)
        task.status = status
