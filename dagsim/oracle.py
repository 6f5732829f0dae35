"""The simulation driver: mines blocks at random and runs the event loop."""

from __future__ import annotations

import bisect
import itertools
import math
import random
from typing import Any

from dagsim.block import GENESIS_MINER, Block
from dagsim.config import TIME_PRECISION
from dagsim.events import Event, EventQueue, GenBlockEvent
from dagsim.miners import HonestMiner
from dagsim.net_simple import BroadcastEvent


class MinerSet:
    """Miners with their share of the total mining power."""

    def __init__(self) -> None:
        self.miners: list[Any] = []
        self.weights: list[float] = []
        self.cum_table: list[float] = []

    def __len__(self) -> int:
        return len(self.miners)

    def add(self, miner: Any, weight: float) -> int:
        """Append ``miner`` with ``weight``; return its id."""
        self.miners.append(miner)
        self.weights.append(weight)
        return len(self.miners) - 1

    def normalize(self) -> None:
        """Scale weights to sum to one and build the cumulative table."""
        total = sum(self.weights)
        if total <= 0:
            raise ValueError("total mining weight must be positive")
        self.weights = [weight / total for weight in self.weights]
        self.cum_table = list(itertools.accumulate(self.weights))

    def pick(self, r: float) -> int:
        """Id of the miner that owns point ``r`` of [0, 1)."""
        if not self.cum_table:
            raise ValueError("miner weights are not normalized")
        return min(bisect.bisect_left(self.cum_table, r), len(self.cum_table) - 1)


class Oracle:
    """Owns the clock, the event queue, all blocks and all miners."""

    def __init__(
        self,
        time_precision: float = TIME_PRECISION,
        rate: float = 5.0,
        duration: float = 3000.0,
        *,
        rng: random.Random | None = None,
        split_first_miner: bool = False,
        check: bool = False,
    ) -> None:
        if time_precision * rate <= 1:
            raise ValueError("rate times time precision must exceed one tick")
        self.queue = EventQueue()
        self.miners = MinerSet()
        self.blocks: list[Block] = [Block(index=0, miner_id=GENESIS_MINER)]
        self.network: Any = None
        self.timestamp = 0
        self.time_precision = time_precision
        self.rate = rate
        self.duration = int(time_precision * duration)
        self.rng = rng if rng is not None else random.Random()
        self.split_first_miner = split_first_miner
        self.check = check

    def prepare(self) -> None:
        """Schedule the first block and the broadcast of the genesis block."""
        self.queue.push(self.mine_next_block())
        self.queue.push(BroadcastEvent(self.blocks[0], timestamp=0))

    def run(self) -> None:
        """Process events in time order until the duration is exceeded."""
        while self.queue:
            event = self.queue.pop()
            self.timestamp = event.timestamp
            if self.timestamp > self.duration:
                break
            for follow_up in event.run(self):
                if follow_up.timestamp >= self.timestamp:
                    self.queue.push(follow_up)

    def real_time(self) -> float:
        """Current time in seconds."""
        return self.timestamp / self.time_precision

    def get_miner(self, miner_id: int) -> Any:
        if not 0 <= miner_id < len(self.miners):
            raise IndexError(f"no miner with id {miner_id}")
        return self.miners.miners[miner_id]

    def add_miner(self, miner: Any, weight: float) -> int:
        miner_id = len(self.miners)
        miner.setup(self, miner_id)
        return self.miners.add(miner, weight)

    def add_honest_miner(self, weight: float) -> int:
        return self.add_miner(HonestMiner(check=self.check), weight)

    def finalize_miners(self) -> None:
        self.miners.normalize()

    def set_network(self, network: Any) -> None:
        network.setup(self)
        self.network = network

    def mine_next_block(self) -> Event:
        """Draw the time and miner of the next block and return its event."""
        next_stamp = self.timestamp
        difficulty = self.time_precision * self.rate
        threshold = 3 * math.ceil(difficulty)
        log_base = math.log(1 - 1 / difficulty)
        while True:
            r = self.rng.random()
            if r == 0.0:
                continue
            fk = math.log(r) / log_base
            k = math.ceil(fk)
            residual = k - fk
            if k > threshold:
                next_stamp += threshold
            else:
                next_stamp += k
                break

        picked = self.miners.pick(self.rng.random())
        block = Block(index=len(self.blocks), miner_id=picked, residual=residual)
        block.seen = {miner_id: False for miner_id in range(len(self.miners))}
        self.blocks.append(block)
        return GenBlockEvent(block, timestamp=next_stamp, split_first_miner=self.split_first_miner)