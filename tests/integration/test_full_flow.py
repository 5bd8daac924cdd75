"""
Integration tests for the full agent network flow.

Tests the complete lifecycle on one wired network:
1. Agent registration and connection
2. Task creation, assignment and settlement
3. Expiry recovery by the operator
4. Cross-partition message delivery
"""

import pytest

from swarmnode.models import AgentStatus, TaskStatus
from swarmnode.network import DIRECTORY_ACCOUNT, MARKET_ACCOUNT

HOUR = 3600.0


# ==================== Fixtures ====================

@pytest.fixture
def analyst(network, alice):
    """Active agent owned by alice with the analysis capability."""
    return network.directory.register(
        alice, "Analyst", "Runs analyses", ["analysis"], 800, 5, "ipfs://analyst"
    )


def total_value(ledger, *holders):
    return sum(ledger.balance_of(holder) for holder in holders)


# ==================== Task Flow Tests ====================

class TestTaskFlow:
    """Create, assign, start and complete a task end to end."""

    def test_complete_workflow(self, network, ledger, alice, bob, clock, analyst):
        market = network.market
        completed_before = market.completed_tasks
        balance_before = ledger.balance_of(alice)

        task_id = market.create_task(bob, "Analyse", ["analysis"], 30, clock.now + HOUR)
        market.assign_task(alice, task_id, analyst)
        market.start_task(alice, task_id)
        market.complete_task(alice, task_id, "ok")

        task = market.get_task(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "ok"
        assert ledger.balance_of(alice) - balance_before == 30
        assert market.completed_tasks == completed_before + 1

        names = [event.name for event in network.events.history()]
        assert names == [
            "AgentRegistered",
            "TaskCreated",
            "TaskAssigned",
            "TaskStarted",
            "TaskCompleted",
        ]

    def test_expiry_recovery(self, network, ledger, operator, alice, bob, clock, analyst):
        market = network.market
        task_id = market.create_task(bob, "Stalls", ["analysis"], 30, clock.now + HOUR)
        market.assign_task(alice, task_id, analyst)
        bob_before = ledger.balance_of(bob)

        clock.advance(HOUR + 60)
        market.handle_expired(operator, task_id)

        assert market.get_task(task_id).status == TaskStatus.FAILED
        assert ledger.balance_of(bob) - bob_before == 30

    def test_value_is_conserved(self, network, ledger, operator, alice, bob, clock, analyst):
        """Every escrowed reward leaves custody exactly once."""
        market = network.market
        holders = (alice, bob, DIRECTORY_ACCOUNT, MARKET_ACCOUNT)
        before = total_value(ledger, *holders)
        deadline = clock.now + HOUR

        completed = market.create_task(bob, "Done", ["analysis"], 30, deadline)
        failed = market.create_task(bob, "Fails", ["analysis"], 20, deadline)
        cancelled = market.create_task(bob, "Dropped", ["analysis"], 10, deadline)
        expired = market.create_task(bob, "Late", ["analysis"], 15, deadline)
        assert ledger.balance_of(MARKET_ACCOUNT) == 75

        for task_id in (completed, failed, expired):
            market.assign_task(alice, task_id, analyst)
        market.start_task(alice, completed)
        market.start_task(alice, failed)
        market.complete_task(alice, completed, "ok")
        market.fail_task(alice, failed)
        market.cancel_task(bob, cancelled)
        clock.advance(HOUR)
        market.handle_expired(operator, expired)

        assert ledger.balance_of(MARKET_ACCOUNT) == 0
        assert market.stats()["escrowed"] == 0
        assert total_value(ledger, *holders) == before


# ==================== Directory Flow Tests ====================

class TestDirectoryFlow:
    """Registration, connections and counters across owners."""

    def test_agents_connect_and_counters_hold(self, network, alice, bob):
        directory = network.directory
        first = directory.register(alice, "Worker1", "", ["data_processing"], 650)
        second = directory.register(bob, "Worker2", "", ["analytics"], 750)

        directory.connect(alice, first, second)
        assert directory.network(first) == [second]

        directory.set_status(bob, second, AgentStatus.INACTIVE)
        stats = network.stats()
        assert stats["total_agents"] == 2
        assert stats["active_agents"] == 1
        assert stats["connections"] == 1


# ==================== Cross-Partition Flow Tests ====================

class TestCrossPartitionFlow:
    """Agents on different partitions exchange messages."""

    def test_message_round_trip(self, network, alice, bob):
        received = []
        p1, p2 = network.relay("P1"), network.relay("P2")

        p1.register_agent(alice, "P1", "0xa-local")
        p2.register_agent(bob, "P2", "0xb-local")
        p2.bind_handler(bob, lambda source, partition, payload: received.append(
            (source, partition, payload)
        ))

        payload = b'{"action": "sync", "state": [1, 2, 3]}'
        p1.send_message(alice, "P2", bob, payload)
        assert received == []

        network.deliver_pending()

        assert received == [(alice, "P1", payload)]
        stats = network.stats()["relays"]
        assert stats["P1"]["messages_sent"] == 1
        assert stats["P2"]["messages_received"] == 1

    def test_handler_may_use_market(self, network, alice, bob, clock, analyst):
        """Delivery can drive market operations on the receiving side."""
        p1, p2 = network.relay("P1"), network.relay("P2")
        p1.register_agent(bob, "P1", "0xb-local")

        def accept_work(source, partition, payload):
            task_id = int(payload.decode())
            network.market.assign_task(alice, task_id, analyst)

        p2.bind_handler(alice, accept_work)
        task_id = network.market.create_task(
            bob, "Remote", ["analysis"], 12, clock.now + HOUR
        )

        p1.send_message(bob, "P2", alice, str(task_id).encode())
        [(_, error)] = network.deliver_pending()

        assert error is None
        assert network.market.get_task(task_id).status == TaskStatus.ASSIGNED
