"""Command line entry point: parse parameters and run one simulation."""

from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from typing import Any

from dagsim.bitcoin import BitcoinNetwork
from dagsim.config import (
    DEBUG_SEED,
    HONEST_MINERS,
    LOG_LEVELS,
    NOTICE,
    NetworkType,
    SimulationConfig,
)
from dagsim.miners import HonestMiner
from dagsim.net_peer import PeerNetwork
from dagsim.net_simple import SimpleNetwork
from dagsim.oracle import Oracle

log = logging.getLogger(__name__)

_NETWORK_NAMES = {
    "simple": NetworkType.SIMPLE,
    "peer": NetworkType.PEER,
    "bitcoin": NetworkType.BITCOIN,
}


def make_network(kind: Any, config: SimulationConfig, rng: random.Random) -> Any:
    """Build the network of type ``kind`` configured by ``config``."""
    kind = NetworkType(kind)
    if kind is NetworkType.SIMPLE:
        return SimpleNetwork(config.has_attacker)
    if kind is NetworkType.PEER:
        return PeerNetwork(
            config.has_attacker,
            block_size=config.block_size,
            bandwidth=config.bandwidth,
            peers=config.peers,
            rng=rng,
        )
    return BitcoinNetwork(
        config.has_attacker,
        block_size=config.block_size,
        bandwidth=config.bandwidth,
        buffer_size=config.buffer_size,
        peers=config.peers,
        local_ratio=config.local_ratio,
        has_monopoly=config.has_monopoly,
        rng=rng,
    )


def run_simulation(config: SimulationConfig, rng: random.Random) -> Oracle:
    """Run one simulation and return the finished oracle."""
    special = config.has_attacker or config.has_monopoly
    oracle = Oracle(
        config.time_precision,
        config.rate,
        config.duration(),
        rng=rng,
        split_first_miner=special,
        check=config.debug,
    )
    network = make_network(config.network_type, config, rng)
    if special:
        ratio = config.attacker_ratio
        oracle.add_miner(HonestMiner(check=config.debug), ratio / (1 - ratio))
    for _ in range(config.honest_miners):
        oracle.add_honest_miner(1.0 / config.honest_miners)
    oracle.finalize_miners()
    oracle.set_network(network)
    oracle.prepare()
    oracle.run()
    return oracle


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dagsim",
        description="Simulate block propagation and pivot-chain selection in a block DAG.",
        allow_abbrev=False,
    )
    parser.add_argument("-d", dest="debug", action="store_true", help="Set debug")
    parser.add_argument("-log", "--log", dest="log_level", type=int, default=2,
                        help="Log Level (1E,2W,3N,4I,5D)")
    parser.add_argument("-r", dest="rate", type=float, default=5.0,
                        help="Block Generation Rate (s/block)")
    parser.add_argument("-s", dest="block_size", type=float, default=4.0,
                        help="Block Size (MB)")
    parser.add_argument("-band", "--band", dest="bandwidth", type=float, default=20.0,
                        help="Bandwidth(Mbps)")
    parser.add_argument("-buff", "--buff", dest="buffer_size", type=float, default=32.0,
                        help="Buffer Size (MB)")
    parser.add_argument("-a", dest="has_attacker", action="store_true", help="Attacker")
    parser.add_argument("-m", dest="has_monopoly", action="store_true",
                        help="Special Honest Miner")
    parser.add_argument("-l", dest="attacker_ratio", type=float, default=0.2,
                        help="Attacker ratio")
    parser.add_argument("-local", "--local", dest="local_ratio", type=float, default=0.05,
                        help="Local ratio")
    parser.add_argument("-peer", "--peer", dest="peers", type=int, default=10,
                        help="Number of peers")
    parser.add_argument("-t", dest="duration_blocks", type=float, default=5000.0,
                        help="Duration (in blocks)")
    parser.add_argument("-miners", "--miners", dest="honest_miners", type=int,
                        default=HONEST_MINERS, help="Number of honest miners")
    parser.add_argument("-net", "--net", dest="network", choices=sorted(_NETWORK_NAMES),
                        default="bitcoin", help="Network model")
    return parser


def parse_args(argv: list[str] | None = None) -> SimulationConfig:
    """Turn command line arguments into a simulation configuration."""
    parser = _parser()
    args = parser.parse_args(argv)
    try:
        return SimulationConfig(
            debug=args.debug,
            log_level=args.log_level,
            rate=args.rate,
            block_size=args.block_size,
            bandwidth=args.bandwidth,
            buffer_size=args.buffer_size,
            has_attacker=args.has_attacker,
            has_monopoly=args.has_monopoly,
            attacker_ratio=args.attacker_ratio,
            local_ratio=args.local_ratio,
            peers=args.peers,
            duration_blocks=args.duration_blocks,
            honest_miners=args.honest_miners,
            network_type=_NETWORK_NAMES[args.network],
        )
    except ValueError as exc:
        parser.error(str(exc))


def _configure_logging(level_code: int) -> None:
    logger = logging.getLogger("dagsim")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname).4s] %(module)10.10s ▶ %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel(LOG_LEVELS.get(level_code, logging.DEBUG))
    logger.propagate = False


def main(argv: list[str] | None = None) -> int:
    config = parse_args(argv)
    _configure_logging(config.log_level)

    log.warning("[Running parameters]")
    if not config.has_attacker and config.has_monopoly:
        log.warning(
            "Basic: rate %0.1f, size %0.0f MB, special honest miner %0.0f%%",
            config.rate, config.block_size, config.attacker_ratio * 100,
        )
    else:
        log.warning(
            "Basic: rate %0.1f, size %0.0f MB, attacker %0.0f%%",
            config.rate, config.block_size, config.attacker_ratio * 100,
        )
    log.warning(
        "Network: bandwidth %0.1f Mbps, %0.1f buffer, %d peers, %d neighbors, local ratio %0.2f",
        config.bandwidth, config.buffer_size, config.honest_miners,
        config.peers, config.local_ratio,
    )

    seed = DEBUG_SEED if config.debug else time.time_ns() % 1_000_000_000
    rng = random.Random(seed)
    log.log(NOTICE, "Random seed for this run: %d", seed)

    log.error("Start")
    run_simulation(config, rng)
    log.error("done")
    return 0


if __name__ == "__main__":
    sys.exit(main())