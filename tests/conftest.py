"""Shared fixtures: a controllable clock, funded identities and a wired network."""

import pytest

from swarmnode.config import SwarmConfig
from swarmnode.escrow import InMemoryLedger
from swarmnode.models import Identity
from swarmnode.network import MARKET_ACCOUNT, DIRECTORY_ACCOUNT, SwarmNetwork

START_TIME = 1_700_000_000.0
HOUR = 3600.0


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def operator():
    return Identity(address="0xoperator")


@pytest.fixture
def alice():
    return Identity(address="0xalice")


@pytest.fixture
def bob():
    return Identity(address="0xbob")


@pytest.fixture
def ledger(alice, bob):
    """Ledger where alice and bob hold 10,000 and approved both custodians."""
    ledger = InMemoryLedger()
    for who in (alice, bob):
        ledger.mint(who, 10_000)
        ledger.approve(who, DIRECTORY_ACCOUNT, 1_000)
        ledger.approve(who, MARKET_ACCOUNT, 1_000)
    return ledger


@pytest.fixture
def config():
    return SwarmConfig(deployment_fee=10, min_reward=1)


@pytest.fixture
def network(operator, config, ledger, clock):
    return SwarmNetwork(
        operator,
        config=config,
        ledger=ledger,
        partitions=["P1", "P2"],
        clock=clock,
    )


@pytest.fixture
def directory(network):
    return network.directory


@pytest.fixture
def market(network):
    return network.market
