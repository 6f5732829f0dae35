"""Simulation parameters and fixed constants."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

# Command-line log level codes: 1 error, 2 warning, 3 notice, 4 info, 5 debug.
LOG_LEVELS = {
    0: logging.CRITICAL,
    1: logging.ERROR,
    2: logging.WARNING,
    3: NOTICE,
    4: logging.INFO,
    5: logging.DEBUG,
}

TIME_PRECISION = 1e6
HONEST_MINERS = 10000
DEBUG_SEED = 499226315

# Simple network
HONEST_DELAY = 100
DIAMETER = int(60 * TIME_PRECISION)

# Peer network
GLOBAL_LATENCY = 0.3

# Extra delays for the attacker in simple and peer networks
ATTACKER_IN = 2
ATTACKER_OUT = 2


class NetworkType(enum.IntEnum):
    SIMPLE = 1
    PEER = 2
    BITCOIN = 3


@dataclass
class SimulationConfig:
    """Parameters of one simulation run."""

    debug: bool = False
    log_level: int = 2
    rate: float = 5.0
    block_size: float = 4.0
    bandwidth: float = 20.0
    buffer_size: float = 32.0
    has_attacker: bool = False
    has_monopoly: bool = False
    attacker_ratio: float = 0.2
    local_ratio: float = 0.05
    peers: int = 10
    duration_blocks: float = 5000.0
    honest_miners: int = HONEST_MINERS
    time_precision: float = TIME_PRECISION
    network_type: NetworkType = NetworkType.BITCOIN

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise ValueError("block generation rate must be positive")
        if self.honest_miners < 1:
            raise ValueError("at least one honest miner is required")
        if not 0 <= self.attacker_ratio < 1:
            raise ValueError("attacker ratio must lie in [0, 1)")
        if not self.has_attacker and not self.has_monopoly:
            self.attacker_ratio = 0.0

    def duration(self) -> float:
        """Simulated time span in seconds."""
        return self.duration_blocks * self.rate