"""A gossip network modelled on Bitcoin block relay.

Miners announce blocks to their peers with small inventory packets; a peer
that has not yet asked for the block requests it and receives it over the
sender's shared outbound link.
"""

from __future__ import annotations

import logging
import random
from typing import Any

from dagsim.block import Block
from dagsim.config import NOTICE
from dagsim.events import Event, SendBlockEvent
from dagsim.geo import GEO_N
from dagsim.traffic import BYTES, MB, PacketEvent, PacketStatus, Traffic

log = logging.getLogger(__name__)

FULL_BLOCK = 0
COMPACT_BLOCK = 1
INV_SIZE = 32 * BYTES
COMPACT_RATIO = 50


class BitcoinNetwork:
    """Peer-to-peer relay with geographic latencies and bandwidth limits.

    Miner 0 is the attacker when ``has_attacker`` is set; it receives every
    block almost at once and its own blocks reach everyone almost at once.
    """

    def __init__(
        self,
        has_attacker: bool = False,
        *,
        block_size: float = 4.0,
        bandwidth: float = 20.0,
        buffer_size: float = 32.0,
        peers: int = 10,
        local_ratio: float = 0.05,
        has_monopoly: bool = False,
        verify_time: float = 0.3,
        relay_impl: int = FULL_BLOCK,
        rng: random.Random | None = None,
    ) -> None:
        if not 0 < local_ratio < 1:
            raise ValueError("local ratio must lie strictly between 0 and 1")
        if relay_impl not in (FULL_BLOCK, COMPACT_BLOCK):
            raise ValueError(f"unknown relay implementation {relay_impl}")
        self.oracle: Any = None
        self.block_size = block_size
        self.peer_count = peers
        self.local_ratio = local_ratio
        self.verify_time = verify_time
        self.relay_impl = relay_impl
        self.attackers: set[int] = {0} if has_attacker else set()
        self.rng = rng if rng is not None else random.Random()
        self.traffic = Traffic(
            self, bandwidth=bandwidth, buffer_size=buffer_size, has_monopoly=has_monopoly
        )
        self.peers: dict[int, list[int]] = {}
        self.sent: dict[int, set[int]] = {}
        self.in_flight: dict[int, set[int]] = {}
        self.geo: dict[int, int] = {}

    def setup(self, oracle: Any) -> None:
        """Place miners in regions and wire up random, mostly local, peer links."""
        self.oracle = oracle
        rng = self.rng
        n = len(oracle.miners)
        peers: dict[int, list[int]] = {i: [] for i in range(n)}
        self.sent = {i: set() for i in range(n)}
        self.in_flight = {i: set() for i in range(n)}
        self.geo = {i: rng.randrange(GEO_N) for i in range(n)}

        inv = 1.0 / GEO_N
        accept_remote = (inv * (1 - self.local_ratio) / self.local_ratio) / (1 - inv)
        needed = self.peer_count // 2
        for i in range(n):
            chosen = set(peers[i])
            if n - len(chosen) < needed:
                raise ValueError(f"too few miners for {self.peer_count} peers each")
            for _ in range(needed):
                while True:
                    end = rng.randrange(n)
                    if end in chosen:
                        continue
                    if self.geo[i] == self.geo[end] or rng.random() < accept_remote:
                        chosen.add(end)
                        break
            ordered = sorted(chosen)
            rng.shuffle(ordered)
            peers[i] = []
            for p in ordered:
                peers[i].append(p)
                peers[p].append(i)
        self.peers = peers

    def _mark(self, miner_id: int, block: Block) -> None:
        self.sent[miner_id].add(block.index)
        self.in_flight[miner_id].add(block.index)

    def broadcast(self, sender_id: int, block: Block) -> list[Event]:
        """Announce a freshly mined block."""
        self._mark(sender_id, block)
        express: list[Event] = []
        if block.miner_id in self.attackers:
            express.extend(self.express_broadcast(block))
        express.extend(self.express_relay(block))
        block.receiving_time.setdefault(sender_id, self.oracle.timestamp)
        return [*self.send_to_all_peers(sender_id, block), *express]

    def relay(self, sender_id: int, block: Block) -> list[Event]:
        """Pass on a block that ``sender_id`` has just accepted."""
        self._mark(sender_id, block)
        if sender_id not in block.receiving_time:
            block.receiving_time[sender_id] = self.oracle.timestamp
            self._log_propagation(block)
        return self.send_to_all_peers(sender_id, block)

    def _log_propagation(self, block: Block) -> None:
        oracle = self.oracle
        n = len(oracle.miners)
        if len(block.receiving_time) != n:
            return
        start = block.receiving_time.get(block.miner_id, 0)
        avg = sum(t - start for t in block.receiving_time.values()) / n
        latest = oracle.timestamp - start
        level = logging.WARNING if block.index % 5 == 0 else NOTICE
        log.log(
            level, "Block %d miner %d, Avg time %0.2f, Max time %0.2f",
            block.index, block.miner_id,
            avg / oracle.time_precision, latest / oracle.time_precision,
        )

    def send_to_all_peers(self, sender_id: int, block: Block) -> list[Event]:
        """Inventory announcements to every peer, after verifying the block."""
        if sender_id in self.attackers:
            return []
        start = int(self.oracle.time_precision * self.verify_time) + self.oracle.timestamp
        events: list[Event] = []
        for receiver_id in self.peers[sender_id]:
            inv = INVPacketEvent(self, sender_id, receiver_id, INV_SIZE, block_id=block.index)
            inv.prepare(start)
            inv.status = PacketStatus.SENDING
            events.append(inv)
        return events

    def express_relay(self, block: Block) -> list[Event]:
        """Deliver ``block`` to the attackers one tick from now."""
        events: list[Event] = []
        for attacker in sorted(self.attackers):
            events.append(SendBlockEvent(block, attacker, timestamp=self.oracle.timestamp + 1))
            self._mark(attacker, block)
        return events

    def express_broadcast(self, block: Block) -> list[Event]:
        """Deliver ``block`` to every other miner one tick from now."""
        events: list[Event] = []
        for receiver in range(len(self.oracle.miners)):
            if receiver == block.miner_id:
                continue
            events.append(SendBlockEvent(block, receiver, timestamp=self.oracle.timestamp + 1))
            self._mark(receiver, block)
        return events


class INVPacketEvent(PacketEvent):
    """An inventory announcement of block ``block_id``."""

    def __init__(
        self,
        network: BitcoinNetwork,
        sender_id: int,
        receiver_id: int,
        size: int,
        block_id: int,
        timestamp: int = 0,
    ) -> None:
        super().__init__(network, sender_id, receiver_id, size, timestamp)
        self.block_id = block_id

    def sent(self, oracle: Any) -> list[Event]:
        network = self.network
        if self.block_id in network.in_flight[self.receiver_id]:
            return []
        block = oracle.blocks[self.block_id]
        if block.miner_id == 0 and network.attackers:
            log.critical("error %d at %d", self.block_id, self.receiver_id)

        if network.relay_impl == FULL_BLOCK:
            request: PacketEvent = GETPacketEvent(
                network, self.sender_id, self.receiver_id,
                int(network.block_size * MB), block=block,
            )
            if self.sender_id == 0:
                log.info(
                    "Time %0.2f, Miner %d request %d",
                    oracle.real_time(), self.receiver_id, self.block_id,
                )
        else:
            request = GETCompactPacketEvent(
                network, self.sender_id, self.receiver_id,
                int(network.block_size * MB / COMPACT_RATIO), block=block,
            )
            log.log(
                NOTICE, "Time %0.2f, Miner %d request %d",
                oracle.real_time(), self.receiver_id, self.block_id,
            )
        request.prepare(oracle.timestamp + 2 * self.ping_delay())
        network.in_flight[self.receiver_id].add(self.block_id)
        return [request]


class GETPacketEvent(PacketEvent):
    """Transfer of a full block; on arrival the receiver gets the block."""

    def __init__(
        self,
        network: BitcoinNetwork,
        sender_id: int,
        receiver_id: int,
        size: int,
        block: Block,
        timestamp: int = 0,
    ) -> None:
        super().__init__(network, sender_id, receiver_id, size, timestamp)
        self.block = block

    def sent(self, oracle: Any) -> list[Event]:
        if self.receiver_id == 0:
            log.debug("Relay block %d", self.block.index)
        if self.sender_id == 0:
            log.debug(
                "Time %0.2f, Miner %d get block %d",
                oracle.real_time(), self.receiver_id, self.block.index,
            )
        return [
            SendBlockEvent(
                self.block, self.receiver_id, timestamp=self.timestamp + self.ping_delay()
            )
        ]


class GETCompactPacketEvent(PacketEvent):
    """Transfer of a compact block, followed by the full block."""

    def __init__(
        self,
        network: BitcoinNetwork,
        sender_id: int,
        receiver_id: int,
        size: int,
        block: Block,
        timestamp: int = 0,
    ) -> None:
        super().__init__(network, sender_id, receiver_id, size, timestamp)
        self.block = block

    def sent(self, oracle: Any) -> list[Event]:
        full = GETPacketEvent(
            self.network, self.sender_id, self.receiver_id,
            int(self.network.block_size * MB), block=self.block,
        )
        full.prepare(oracle.timestamp + 2 * self.ping_delay())
        if self.receiver_id == 0:
            log.debug("Relay block %d", self.block.index)
        if self.sender_id == 0:
            log.debug("Receive block %d", self.block.index)
        return [full]