import random

import pytest

from dagsim.block import Block
from dagsim.config import ATTACKER_IN, ATTACKER_OUT, GLOBAL_LATENCY
from dagsim.events import SendBlockEvent
from dagsim.net_peer import PeerNetwork, PeerSendEvent
from dagsim.oracle import Oracle


def make(n=6, peers=3, attacker=False, seed=7, **kwargs):
    oracle = Oracle(rng=random.Random(seed))
    for _ in range(n):
        oracle.add_honest_miner(1.0)
    oracle.finalize_miners()
    net = PeerNetwork(attacker, peers=peers, rng=random.Random(seed), **kwargs)
    oracle.set_network(net)
    return oracle, net


def test_setup_gives_every_miner_enough_peers():
    _, net = make(n=8, peers=3)
    assert set(net.peers) == set(range(8))
    assert all(len(links) >= 3 for links in net.peers.values())
    assert all(len(set(links)) == len(links) for links in net.peers.values())


def test_setup_is_reproducible():
    _, first = make(n=10, peers=4, seed=3)
    _, second = make(n=10, peers=4, seed=3)
    assert first.peers == second.peers


def test_setup_rejects_too_few_miners():
    with pytest.raises(ValueError):
        make(n=2, peers=5)


def test_to_timestamp_uses_precision():
    _, net = make()
    assert net.to_timestamp(1.5) == 1_500_000


def test_relay_schedules_one_check():
    oracle, net = make()
    block = Block(index=5, miner_id=1)
    events = net.relay(2, block)
    assert len(events) == 1
    event = events[0]
    assert isinstance(event, PeerSendEvent)
    assert event.sender_id == 2 and event.first is False
    assert event.timestamp == oracle.timestamp


def test_broadcast_without_attacker():
    _, net = make()
    block = Block(index=5, miner_id=1)
    events = net.broadcast(1, block)
    assert len(events) == 1
    assert isinstance(events[0], PeerSendEvent)
    assert events[0].first is True
    assert net.start_time[5] == net.end_time[5] == 0


def test_broadcast_by_attacker_reaches_everyone():
    _, net = make(n=5, attacker=True)
    block = Block(index=4, miner_id=0)
    events = net.broadcast(0, block)
    sends = [e for e in events if isinstance(e, SendBlockEvent)]
    receivers = sorted(e.receiver_id for e in sends)
    # every other miner by broadcast, plus the attacker itself by express relay
    assert receivers == [0, 1, 2, 3, 4]
    for e in sends:
        if e.receiver_id == 0:
            assert e.timestamp == net.to_timestamp(ATTACKER_IN)
        else:
            assert e.timestamp == net.to_timestamp(ATTACKER_OUT)
    assert all(4 in net.sent[i] for i in range(5))


def test_express_relay_disabled_when_negative():
    _, net = make(attacker=True, attacker_in=-1)
    assert net.express_relay(Block(index=3, miner_id=2)) == []


def test_send_to_best_peer_sends_to_first_peer():
    _, net = make(block_size=2.0, bandwidth=16.0)
    block = Block(index=5, miner_id=1)
    events = net.send_to_best_peer(PeerSendEvent(net, 1, block))
    sends = [e for e in events if isinstance(e, SendBlockEvent)]
    checks = [e for e in events if isinstance(e, PeerSendEvent)]
    assert len(sends) == 1 and len(checks) == 1
    target = net.peers[1][0]
    assert sends[0].receiver_id == target
    assert 5 in net.sent[target]
    assert net.net_time[1] == pytest.approx(1.0)
    low = net.to_timestamp(1.0 + GLOBAL_LATENCY)
    assert low <= sends[0].timestamp < low + 1000
    assert checks[0].timestamp == net.to_timestamp(1.0 + GLOBAL_LATENCY)


def test_repeated_sends_cover_all_peers_in_order():
    _, net = make(block_size=0.5, bandwidth=100.0)
    block = Block(index=7, miner_id=2)
    receivers = []
    while True:
        events = net.send_to_best_peer(PeerSendEvent(net, 2, block, first=True))
        sends = [e for e in events if isinstance(e, SendBlockEvent)]
        if not sends:
            assert events == []
            break
        receivers.append(sends[0].receiver_id)
    assert receivers == net.peers[2]


def test_all_peers_have_block():
    _, net = make()
    block = Block(index=5, miner_id=1)
    for p in net.peers[1]:
        net.sent[p].add(5)
    assert net.send_to_best_peer(PeerSendEvent(net, 1, block)) == []


def test_backlog_defers_relay():
    _, net = make()
    block = Block(index=5, miner_id=1)
    net.net_time[1] = 10.0
    events = net.send_to_best_peer(PeerSendEvent(net, 1, block))
    assert len(events) == 1
    assert isinstance(events[0], PeerSendEvent)
    assert events[0].timestamp == net.to_timestamp(0.1)
    assert all(5 not in net.sent[p] for p in net.peers[1])
    assert net.net_time[1] == 10.0


def test_backlog_ignored_for_first_send():
    _, net = make(block_size=2.0, bandwidth=16.0)
    block = Block(index=5, miner_id=1)
    net.net_time[1] = 10.0
    events = net.send_to_best_peer(PeerSendEvent(net, 1, block, first=True))
    assert any(isinstance(e, SendBlockEvent) for e in events)
    assert net.net_time[1] == pytest.approx(11.0)


def test_event_run_delegates_to_network():
    oracle, net = make()
    block = Block(index=5, miner_id=1)
    events = PeerSendEvent(net, 1, block).run(oracle)
    sends = [e for e in events if isinstance(e, SendBlockEvent)]
    assert [e.receiver_id for e in sends] == [net.peers[1][0]]