import random

import pytest

from dagsim.bitcoin import BitcoinNetwork
from dagsim.cli import main, make_network, parse_args, run_simulation
from dagsim.config import DEBUG_SEED, NetworkType, SimulationConfig
from dagsim.net_peer import PeerNetwork
from dagsim.net_simple import SimpleNetwork


def small_config(**kwargs):
    base = dict(honest_miners=4, peers=2, duration_blocks=4, debug=True)
    base.update(kwargs)
    return SimulationConfig(**base)


def test_parse_defaults():
    config = parse_args([])
    assert config.rate == 5.0
    assert config.block_size == 4.0
    assert config.bandwidth == 20.0
    assert config.buffer_size == 32.0
    assert config.peers == 10
    assert config.local_ratio == 0.05
    assert config.attacker_ratio == 0.0
    assert config.duration() == 5000 * 5.0
    assert config.network_type is NetworkType.BITCOIN


def test_parse_attacker_ratio():
    config = parse_args(["-a", "-l", "0.3"])
    assert config.has_attacker is True
    assert config.attacker_ratio == 0.3


def test_parse_duration_in_blocks():
    config = parse_args(["-r", "2", "-t", "10"])
    assert config.duration() == 20.0


def test_parse_equals_form_and_network():
    config = parse_args(["-log=3", "-peer", "4", "-net", "peer"])
    assert config.log_level == 3
    assert config.peers == 4
    assert config.network_type is NetworkType.PEER


def test_parse_rejects_invalid_ratio():
    with pytest.raises(SystemExit):
        parse_args(["-a", "-l", "1.5"])


@pytest.mark.parametrize(
    "kind, expected",
    [
        (NetworkType.SIMPLE, SimpleNetwork),
        (NetworkType.PEER, PeerNetwork),
        (NetworkType.BITCOIN, BitcoinNetwork),
    ],
)
def test_make_network_types(kind, expected):
    network = make_network(kind, small_config(), random.Random(1))
    assert isinstance(network, expected)
    assert network.attackers == set()


def test_make_network_attacker_flag():
    network = make_network(NetworkType.SIMPLE, small_config(has_attacker=True), random.Random(1))
    assert network.attackers == {0}


def test_make_network_unknown_kind():
    with pytest.raises(ValueError):
        make_network(99, small_config(), random.Random(1))


@pytest.mark.parametrize("kind", list(NetworkType))
def test_run_simulation_produces_blocks(kind):
    config = small_config(network_type=kind)
    oracle = run_simulation(config, random.Random(5))
    assert len(oracle.miners) == 4
    assert len(oracle.blocks) > 1
    assert oracle.timestamp > oracle.duration
    for miner in oracle.miners.miners:
        miner.graph.check_consistency()
        assert miner.graph.contains(oracle.blocks[0])


def test_run_simulation_with_attacker_adds_miner():
    config = small_config(network_type=NetworkType.SIMPLE, has_attacker=True, attacker_ratio=0.25)
    oracle = run_simulation(config, random.Random(2))
    assert len(oracle.miners) == 5
    assert oracle.miners.weights[0] == pytest.approx(0.25)


def test_run_simulation_is_reproducible():
    config = small_config(network_type=NetworkType.PEER)
    first = run_simulation(config, random.Random(11))
    second = run_simulation(small_config(network_type=NetworkType.PEER), random.Random(11))
    assert [(b.index, b.miner_id) for b in first.blocks] == [
        (b.index, b.miner_id) for b in second.blocks
    ]


def test_main_runs_with_debug_seed(capsys):
    code = main(["-d", "-log", "3", "-miners", "3", "-peer", "2", "-t", "3"])
    out = capsys.readouterr().out
    assert code == 0
    assert f"Random seed for this run: {DEBUG_SEED}" in out
    assert "Start" in out and "done" in out