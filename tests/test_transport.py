"""
Tests for the Redis transport and the event bus.

Run with: pytest tests/test_transport.py -v
Uses mocking to avoid requiring a Redis server during tests.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import redis

from swarmnode.errors import DeliveryError, NotFoundError, PausedError
from swarmnode.events import EventBus
from swarmnode.models import CrossPartitionMessage, Identity
from swarmnode.transport import RedisTransport

ALICE = Identity(address="0xalice")
BOB = Identity(address="0xbob")


def make_envelope(payload=b"ping", partition="P2"):
    return CrossPartitionMessage(
        source_agent=ALICE,
        target_agent=BOB,
        partition_id=partition,
        payload=payload,
        nonce=1,
        timestamp=1.0,
    )


class TestRedisTransportInit:
    """Tests for RedisTransport initialization."""

    def test_init_defaults(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        transport = RedisTransport("P1")
        assert transport.redis_url == "redis://localhost:6379"
        assert transport.identity == Identity(address="transport:redis:P1")
        assert transport._client is None

    def test_init_from_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://broker:6379")
        assert RedisTransport("P1").redis_url == "redis://broker:6379"

    @patch("swarmnode.transport.redis.from_url")
    def test_lazy_client_initialization(self, mock_from_url):
        mock_client = MagicMock()
        mock_from_url.return_value = mock_client

        transport = RedisTransport("P1", redis_url="redis://test:6379")
        assert transport._client is None

        assert transport.client == mock_client
        assert transport.client == mock_client
        mock_from_url.assert_called_once()

    def test_ping_failure(self):
        transport = RedisTransport("P1")
        transport._client = MagicMock()
        transport._client.ping.side_effect = redis.ConnectionError("down")
        assert transport.ping() is False


class TestRedisTransportDispatch:
    """Tests for RedisTransport.dispatch."""

    def test_dispatch_queues_in_target_inbox(self):
        transport = RedisTransport("P1")
        transport._client = MagicMock()
        pipe = transport._client.pipeline.return_value

        receipt = transport.dispatch(make_envelope(), fee=4)

        key, raw = pipe.lpush.call_args.args
        record = json.loads(raw)
        assert key == "partition:inbox:P2"
        assert record["receipt"] == receipt
        assert record["source_partition"] == "P1"
        assert record["origin_sender"] == "transport:redis:P1"
        assert record["fee"] == 4
        assert CrossPartitionMessage.from_json(record["envelope"]).payload == b"ping"
        pipe.publish.assert_called_once_with("partition:notify:P2", receipt)
        pipe.execute.assert_called_once()

    def test_dispatch_redis_error(self):
        transport = RedisTransport("P1")
        transport._client = MagicMock()
        transport._client.pipeline.return_value.execute.side_effect = redis.RedisError(
            "boom"
        )
        with pytest.raises(DeliveryError):
            transport.dispatch(make_envelope(), fee=0)


class TestRedisTransportPoll:
    """Tests for RedisTransport.poll."""

    def _record(self, envelope):
        return json.dumps(
            {
                "receipt": "r1",
                "source_partition": "P1",
                "origin_sender": "transport:redis:P1",
                "fee": 0,
                "envelope": envelope.to_json(),
            }
        )

    def test_poll_requires_relay(self):
        transport = RedisTransport("P2")
        with pytest.raises(NotFoundError):
            transport.poll()

    def test_poll_empty_inbox(self):
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.rpoplpush.return_value = None
        transport.attach(MagicMock())

        assert transport.poll() is None

    def test_poll_delivers_to_relay(self):
        envelope = make_envelope(b"\x01\x02")
        raw = self._record(envelope)
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.rpoplpush.return_value = raw
        relay = MagicMock()
        transport.attach(relay)

        delivered = transport.poll()

        assert delivered == envelope
        relay.receive_message.assert_called_once_with(
            transport.identity,
            "P1",
            Identity(address="transport:redis:P1"),
            envelope,
        )
        transport._client.rpoplpush.assert_called_once_with(
            "partition:inbox:P2", "partition:processing:P2"
        )
        transport._client.lrem.assert_called_once_with(
            "partition:processing:P2", 1, raw
        )

    def test_poll_blocking(self):
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.brpoplpush.return_value = None
        transport.attach(MagicMock())

        transport.poll(timeout=5)
        transport._client.brpoplpush.assert_called_once_with(
            "partition:inbox:P2", "partition:processing:P2", 5
        )

    def test_poll_failed_delivery_is_dropped(self):
        raw = self._record(make_envelope())
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.rpoplpush.return_value = raw
        relay = MagicMock()
        relay.receive_message.side_effect = DeliveryError("handler down")
        transport.attach(relay)

        assert transport.poll() is None
        transport._client.lrem.assert_called_once_with(
            "partition:processing:P2", 1, raw
        )
        transport._client.lpush.assert_not_called()

    @pytest.mark.parametrize(
        "raw",
        [
            "{garbage",
            json.dumps({"receipt": "r1"}),
            json.dumps(
                {
                    "receipt": "r1",
                    "source_partition": "P1",
                    "origin_sender": "x",
                    "envelope": "{}",
                }
            ),
            json.dumps(["not", "a", "record"]),
        ],
    )
    def test_poll_malformed_record_is_dropped(self, raw):
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.rpoplpush.return_value = raw
        relay = MagicMock()
        transport.attach(relay)

        assert transport.poll() is None
        relay.receive_message.assert_not_called()
        transport._client.lrem.assert_called_once_with(
            "partition:processing:P2", 1, raw
        )

    def test_poll_rejected_by_paused_relay(self):
        raw = self._record(make_envelope())
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.rpoplpush.return_value = raw
        relay = MagicMock()
        relay.receive_message.side_effect = PausedError("relay is paused")
        transport.attach(relay)

        assert transport.poll() is None
        transport._client.lrem.assert_called_once_with(
            "partition:processing:P2", 1, raw
        )

    def test_pending(self):
        transport = RedisTransport("P2")
        transport._client = MagicMock()
        transport._client.llen.return_value = 3
        assert transport.pending() == 3
        transport._client.llen.assert_called_once_with("partition:inbox:P2")


class TestEventBus:
    """Tests for EventBus."""

    def test_sequence_and_history(self):
        bus = EventBus()
        bus.emit("TaskCreated", {"task_id": 1})
        bus.emit("TaskAssigned", {"task_id": 1, "agent_id": 2})

        history = bus.history()
        assert [e.sequence for e in history] == [1, 2]
        assert bus.last("TaskAssigned").data["agent_id"] == 2
        assert bus.last("TaskCompleted") is None

    def test_filtered_subscriber(self):
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append, names=["TaskCompleted"])

        bus.emit("TaskCreated", {})
        bus.emit("TaskCompleted", {"task_id": 1})

        assert [e.name for e in seen] == ["TaskCompleted"]

    def test_broken_subscriber_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        bus.emit("Connected", {})

        assert len(seen) == 1

    def test_publishes_to_redis(self):
        bus = EventBus(prefix="swarm:test", publish=True)
        bus._client = MagicMock()

        event = bus.emit("AgentRegistered", {"agent_id": 1})

        bus._client.publish.assert_called_once_with(
            "swarm:test:AgentRegistered", event.to_json()
        )

    def test_redis_failure_is_logged(self):
        bus = EventBus(publish=True)
        bus._client = MagicMock()
        bus._client.publish.side_effect = redis.ConnectionError("down")

        bus.emit("AgentRegistered", {"agent_id": 1})
        assert len(bus.history()) == 1

    def test_no_publish_by_default(self):
        bus = EventBus()
        bus._client = MagicMock()
        bus.emit("AgentRegistered", {})
        bus._client.publish.assert_not_called()
