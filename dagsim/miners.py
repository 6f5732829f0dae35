"""Miners: the honest strategy and a block-withholding adversary."""

from __future__ import annotations

import enum
import logging
from collections import deque
from typing import Any

from dagsim.block import GENESIS_MINER, Block
from dagsim.config import DIAMETER, NOTICE
from dagsim.events import Event
from dagsim.localgraph import InsertResult, LocalGraph

log = logging.getLogger(__name__)


def _ref_indexes(block: Block) -> list[int]:
    return [ref.index for ref in block.references]


def _drain_cache(cache: list[Block], graph: LocalGraph) -> list[Block]:
    """Insert cached blocks whose ancestors have arrived; return those inserted."""
    inserted: list[Block] = []
    progress = True
    while progress:
        progress = False
        for block in list(cache):
            result = graph.insert(block)
            if result is InsertResult.FAIL:
                continue
            cache.remove(block)
            if result is InsertResult.SUCCESS:
                inserted.append(block)
                progress = True
    return inserted


class HonestMiner:
    """Mines on its pivot tip, references every other tip and relays what it learns."""

    def __init__(self, check: bool = False) -> None:
        self.miner_id = -1
        self.oracle: Any = None
        self.graph = LocalGraph(check=check)
        self.cache: list[Block] = []

    def setup(self, oracle: Any, miner_id: int) -> None:
        self.oracle = oracle
        self.miner_id = miner_id

    def generate_block(self, block: Block) -> list[Event]:
        """Attach ``block`` to the local view and broadcast it."""
        self.graph.fill_new_block(block)
        self.graph.insert(block)
        log.info(
            "Time %.2f, Miner %d mines block %d, height %d, father %d, refs %s",
            self.oracle.real_time(), self.miner_id, block.index, block.height,
            block.parent.index, _ref_indexes(block),
        )
        return list(self.oracle.network.broadcast(self.miner_id, block))

    def receive_block(self, block: Block) -> list[Event]:
        """Take in a block; relay it and any cached blocks it unlocks."""
        network = self.oracle.network
        if self.miner_id == 0:
            log.info(
                "Time %.2f, Miner %d receives %d (miner %d)",
                self.oracle.real_time(), self.miner_id, block.index, block.miner_id,
            )
        result = self.graph.insert(block)
        events: list[Event] = []
        if result is InsertResult.SUCCESS:
            events.extend(network.relay(self.miner_id, block))
            for cached in _drain_cache(self.cache, self.graph):
                events.extend(network.relay(self.miner_id, cached))
        elif result is InsertResult.FAIL:
            self.cache.append(block)
        return events


class WithholdType(enum.Enum):
    SELFISH = 1
    DELAY_REF = 2


class WithholdMiner:
    """An adversary that holds back its blocks while it leads the real pivot chain.

    ``graph`` is the view it mines on; ``real_graph`` tracks what the network
    as a whole has seen, including the blocks it has already released.
    """

    def __init__(self, kind: WithholdType, check: bool = False) -> None:
        self.kind = kind
        self.miner_id = -1
        self.oracle: Any = None
        self.graph = LocalGraph(check=check)
        self.real_graph = LocalGraph(check=check)
        self.cache: list[Block] = []
        self.holding: deque[Block] = deque()
        self.receiving_time: dict[int, int] = {}

    def setup(self, oracle: Any, miner_id: int) -> None:
        self.oracle = oracle
        self.miner_id = miner_id

    def generate_block(self, block: Block) -> list[Event]:
        """Mine ``block`` privately and release held blocks if no longer leading."""
        if self.kind is WithholdType.SELFISH:
            parent = self.graph.pivot_tip.block
            block.parent = parent
            parent.children.append(block)
            block.height = parent.height + 1
            block.ancestor_num = parent.ancestor_num + 1
        else:
            self.graph.fill_new_block(block)
        self.graph.insert(block)
        log.log(
            NOTICE,
            "Time %.2f, Adv Miner mines %d, height %d, father %d, refs %s",
            self.oracle.real_time(), block.index, block.height,
            block.parent.index, _ref_indexes(block),
        )
        self.holding.append(block)
        return self._check_broadcast()

    def receive_block(self, block: Block) -> list[Event]:
        self.receiving_time[block.index] = self.oracle.timestamp
        if block.miner_id == GENESIS_MINER:
            self.real_graph.insert(block)
            self.graph.insert(block)
            return []

        log.info("Time %.2f, Adv Miner receives %d", self.oracle.real_time(), block.index)
        result = self.real_graph.insert(block)
        if result is InsertResult.FAIL:
            raise RuntimeError(f"block {block.index} arrived before its ancestors")
        if result is InsertResult.EXISTING:
            return []
        events = self._graph_insert(block)
        events.extend(self._insert_cache())
        events.extend(self._check_broadcast())
        return events

    def _graph_insert(self, block: Block) -> list[Event]:
        if self.kind is WithholdType.SELFISH:
            self.graph.insert(block)
            return []
        half = DIAMETER // 2
        if self.receiving_time[block.index] + half <= self.oracle.timestamp:
            self.graph.insert(block)
            return []
        return [DelayInsertEvent(self, block, timestamp=self.oracle.timestamp + half)]

    def _check_broadcast(self) -> list[Event]:
        network = self.oracle.network
        events: list[Event] = []
        while self.real_graph.pivot_tip.block.miner_id != self.miner_id and self.holding:
            block = self.holding.popleft()
            events.extend(network.broadcast(self.miner_id, block))
            self.real_graph.insert(block)
            log.log(NOTICE, "Time %.2f, AdvMiner broadcast %d", self.oracle.real_time(), block.index)
        return events

    def _insert_cache(self) -> list[Event]:
        events: list[Event] = []
        for block in _drain_cache(self.cache, self.real_graph):
            events.extend(self._graph_insert(block))
        return events


class DelayInsertEvent(Event):
    """Adds a received block to a withholding miner's mining view after a delay."""

    def __init__(self, miner: WithholdMiner, block: Block, timestamp: int = 0) -> None:
        super().__init__(timestamp)
        self.miner = miner
        self.block = block

    def run(self, oracle: Any) -> list[Event]:
        self.miner.graph.insert(self.block)
        return []