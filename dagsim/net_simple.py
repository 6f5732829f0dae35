"""A network where every block reaches every miner after a fixed delay."""

from __future__ import annotations

import logging
from typing import Any

from dagsim.block import GENESIS_MINER, Block
from dagsim.config import ATTACKER_IN, ATTACKER_OUT, HONEST_DELAY
from dagsim.events import Event, SendBlockEvent

log = logging.getLogger(__name__)


class SimpleNetwork:
    """Fixed delays in seconds; miner 0 is the attacker when there is one."""

    def __init__(
        self,
        has_attacker: bool = False,
        honest_delay: float = HONEST_DELAY,
        attacker_in: float = ATTACKER_IN,
        attacker_out: float = ATTACKER_OUT,
    ) -> None:
        self.oracle: Any = None
        self.honest_delay = honest_delay
        self.attacker_in = attacker_in
        self.attacker_out = attacker_out
        self.attackers: set[int] = {0} if has_attacker else set()

    def setup(self, oracle: Any) -> None:
        self.oracle = oracle

    def broadcast(self, sender_id: int, block: Block) -> list[Event]:
        return [BroadcastEvent(block, sender_id, network=self, timestamp=self.oracle.timestamp)]

    def relay(self, sender_id: int, block: Block) -> list[Event]:
        return []

    def delay(self, from_id: int, to_id: int, block: Block) -> float:
        """Delay in seconds for ``block`` travelling from ``from_id`` to ``to_id``."""
        if block.miner_id == GENESIS_MINER:
            return 0.0
        if block.miner_id in self.attackers:
            return self.attacker_out
        if to_id in self.attackers:
            return self.attacker_in
        return self.honest_delay


class BroadcastEvent(Event):
    """Sends ``block`` to every miner except the one that mined it."""

    def __init__(
        self,
        block: Block,
        sender_id: int = 0,
        network: SimpleNetwork | None = None,
        timestamp: int = 0,
    ) -> None:
        super().__init__(timestamp)
        self.block = block
        self.sender_id = sender_id
        self.network = network

    def _delay(self, receiver_id: int) -> float:
        if self.network is None:
            if self.block.miner_id != GENESIS_MINER:
                raise ValueError("only the genesis block may be broadcast without a network")
            return 0.0
        return self.network.delay(self.sender_id, receiver_id, self.block)

    def run(self, oracle: Any) -> list[Event]:
        log.debug(
            "Broadcast Event: time %.2f, block %d, miner %d",
            oracle.real_time(), self.block.index, self.block.miner_id,
        )
        return [
            SendBlockEvent(
                self.block,
                receiver_id,
                timestamp=oracle.timestamp + int(self._delay(receiver_id) * oracle.time_precision),
            )
            for receiver_id in range(len(oracle.miners))
            if receiver_id != self.block.miner_id
        ]