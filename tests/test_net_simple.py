import pytest

from dagsim.block import GENESIS_MINER, Block
from dagsim.config import ATTACKER_IN, ATTACKER_OUT, HONEST_DELAY, TIME_PRECISION
from dagsim.events import SendBlockEvent
from dagsim.net_simple import BroadcastEvent, SimpleNetwork


class StubOracle:
    def __init__(self, miners=3, timestamp=0):
        self.miners = [None] * miners
        self.timestamp = timestamp
        self.time_precision = TIME_PRECISION

    def real_time(self):
        return self.timestamp / self.time_precision


def test_delays_follow_roles():
    network = SimpleNetwork(has_attacker=True)
    genesis = Block(index=0, miner_id=GENESIS_MINER)
    assert network.delay(0, 1, genesis) == 0
    assert network.delay(0, 1, Block(index=1, miner_id=0)) == ATTACKER_OUT
    assert network.delay(2, 0, Block(index=2, miner_id=2)) == ATTACKER_IN
    assert network.delay(2, 1, Block(index=3, miner_id=2)) == HONEST_DELAY


def test_without_attacker_everyone_is_honest():
    network = SimpleNetwork()
    assert network.delay(1, 0, Block(index=1, miner_id=0)) == HONEST_DELAY


def test_broadcast_schedules_now_and_relay_is_silent():
    oracle = StubOracle(timestamp=42)
    network = SimpleNetwork()
    network.setup(oracle)
    block = Block(index=5, miner_id=1)
    events = network.broadcast(1, block)
    assert len(events) == 1
    assert events[0].timestamp == 42
    assert events[0].block is block
    assert events[0].network is network
    assert network.relay(1, block) == []


def test_broadcast_event_reaches_all_but_miner():
    oracle = StubOracle(miners=4, timestamp=10)
    network = SimpleNetwork()
    network.setup(oracle)
    block = Block(index=1, miner_id=2)
    events = BroadcastEvent(block, 2, network=network, timestamp=10).run(oracle)
    assert sorted(e.receiver_id for e in events) == [0, 1, 3]
    assert all(isinstance(e, SendBlockEvent) and e.block is block for e in events)
    assert {e.timestamp for e in events} == {10 + int(HONEST_DELAY * TIME_PRECISION)}


def test_genesis_broadcast_without_network():
    oracle = StubOracle(miners=2)
    genesis = Block(index=0, miner_id=GENESIS_MINER)
    events = BroadcastEvent(genesis).run(oracle)
    assert sorted(e.receiver_id for e in events) == [0, 1]
    assert all(e.timestamp == 0 for e in events)


def test_non_genesis_broadcast_needs_network():
    oracle = StubOracle(miners=2)
    with pytest.raises(ValueError):
        BroadcastEvent(Block(index=1, miner_id=0)).run(oracle)