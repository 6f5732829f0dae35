"""A gossip network where each miner pushes whole blocks to its peers one by one."""

from __future__ import annotations

import logging
import random
from typing import Any

from dagsim.block import Block
from dagsim.config import ATTACKER_IN, ATTACKER_OUT, GLOBAL_LATENCY
from dagsim.events import Event, SendBlockEvent

log = logging.getLogger(__name__)

BACKLOG_LIMIT = 5.0
RETRY_INTERVAL = 0.1
JITTER_TICKS = 1000
REPORT_INTERVAL = 50


class PeerNetwork:
    """Miners linked to random peers; each sender uploads one block at a time.

    Miner 0 is the attacker when ``has_attacker`` is set.  A negative
    ``attacker_in`` or ``attacker_out`` switches the matching express path off.
    """

    def __init__(
        self,
        has_attacker: bool = False,
        *,
        block_size: float = 4.0,
        bandwidth: float = 20.0,
        peers: int = 10,
        global_latency: float = GLOBAL_LATENCY,
        attacker_in: float = ATTACKER_IN,
        attacker_out: float = ATTACKER_OUT,
        rng: random.Random | None = None,
    ) -> None:
        if bandwidth <= 0:
            raise ValueError("bandwidth must be positive")
        self.oracle: Any = None
        self.block_size = block_size
        self.bandwidth = bandwidth
        self.peer_count = peers
        self.global_latency = global_latency
        self.attackers: set[int] = {0} if has_attacker else set()
        self.attacker_in = attacker_in
        self.attacker_out = attacker_out
        self.rng = rng if rng is not None else random.Random()
        self.peers: dict[int, list[int]] = {}
        self.sent: dict[int, set[int]] = {}
        self.net_time: list[float] = []
        self.start_time: dict[int, int] = {}
        self.end_time: dict[int, int] = {}

    def setup(self, oracle: Any) -> None:
        """Wire every miner to random peers, reproducibly for a given generator."""
        self.oracle = oracle
        rng = self.rng
        n = len(oracle.miners)
        peers: dict[int, list[int]] = {i: [] for i in range(n)}
        self.sent = {i: set() for i in range(n)}

        for i in range(n):
            chosen = set(peers[i])
            needed = self.peer_count - len(peers[i])
            if needed > n - len(chosen):
                raise ValueError(f"too few miners for {self.peer_count} peers each")
            for _ in range(needed):
                while True:
                    end = rng.randrange(n)
                    if end not in chosen:
                        chosen.add(end)
                        break
            ordered = sorted(chosen)
            rng.shuffle(ordered)
            peers[i] = []
            for p in ordered:
                peers[i].append(p)
                if p > i:
                    peers[p].append(i)

        self.peers = peers
        self.net_time = [0.0] * n

    def to_timestamp(self, seconds: float) -> int:
        """Convert seconds to simulation ticks."""
        return int(seconds * self.oracle.time_precision)

    def broadcast(self, sender_id: int, block: Block) -> list[Event]:
        """Start spreading a freshly mined block."""
        now = self.oracle.timestamp
        self.start_time[block.index] = now
        self.end_time[block.index] = now
        events: list[Event] = []
        if block.miner_id in self.attackers:
            events.extend(self.express_broadcast(block))
        events.extend(self.express_relay(block))
        events.append(PeerSendEvent(self, sender_id, block, first=True, timestamp=now))
        return events

    def relay(self, sender_id: int, block: Block) -> list[Event]:
        """Pass on a block that ``sender_id`` has just accepted."""
        return [PeerSendEvent(self, sender_id, block, timestamp=self.oracle.timestamp)]

    def send_to_best_peer(self, event: PeerSendEvent) -> list[Event]:
        """Upload the block to the next peer lacking it and schedule the next check."""
        sender = event.sender_id
        block = event.block
        now = self.oracle.real_time()
        events: list[Event] = []
        all_have = True
        next_time: float | None = None

        for p in self.peers[sender]:
            if block.index in self.sent[p]:
                continue
            all_have = False
            transfer = self.block_size * 8 / self.bandwidth
            if self.net_time[sender] <= now:
                self.net_time[sender] = now + transfer
            elif self.net_time[sender] - now > BACKLOG_LIMIT and not event.first:
                break
            else:
                self.net_time[sender] += transfer
            self.sent[p].add(block.index)
            send_time = self.to_timestamp(
                self.net_time[sender] + self.global_latency
            ) + self.rng.randrange(JITTER_TICKS)
            events.append(SendBlockEvent(block, p, timestamp=send_time))
            if self.end_time.get(block.index, 0) < send_time:
                self.end_time[block.index] = send_time
            next_time = self.net_time[sender] + self.global_latency
            break

        if not all_have:
            if next_time is None:
                next_time = now + RETRY_INTERVAL
            events.append(
                PeerSendEvent(self, sender, block, timestamp=self.to_timestamp(next_time))
            )
        elif (
            block.miner_id != 0
            and block.index % REPORT_INTERVAL == 0
            and self.oracle.timestamp == self.end_time.get(block.index, 0)
        ):
            elapsed = self.end_time.get(block.index, 0) - self.start_time.get(block.index, 0)
            log.warning(
                "block %d sent to everyone, time %.3f",
                block.index, elapsed / self.oracle.time_precision,
            )
        return events

    def express_relay(self, block: Block) -> list[Event]:
        """Deliver ``block`` to the attackers after ``attacker_in`` seconds."""
        if self.attacker_in < 0:
            return []
        at = self.oracle.timestamp + self.to_timestamp(self.attacker_in)
        events: list[Event] = []
        for attacker in sorted(self.attackers):
            events.append(SendBlockEvent(block, attacker, timestamp=at))
            self.sent[attacker].add(block.index)
        return events

    def express_broadcast(self, block: Block) -> list[Event]:
        """Deliver ``block`` to every other miner after ``attacker_out`` seconds."""
        if self.attacker_out < 0:
            return []
        at = self.oracle.timestamp + self.to_timestamp(self.attacker_out)
        events: list[Event] = []
        for receiver in self.sent:
            if receiver == block.miner_id:
                continue
            events.append(SendBlockEvent(block, receiver, timestamp=at))
            self.sent[receiver].add(block.index)
        return events


class PeerSendEvent(Event):
    """``sender_id`` looks for a peer that still needs ``block``."""

    def __init__(
        self,
        network: PeerNetwork,
        sender_id: int,
        block: Block,
        first: bool = False,
        timestamp: int = 0,
    ) -> None:
        super().__init__(timestamp)
        self.network = network
        self.sender_id = sender_id
        self.block = block
        self.first = first

    def run(self, oracle: Any) -> list[Event]:
        log.debug(
            "PeerSend  Event: time %.2f, block %d, sender %d",
            oracle.real_time(), self.block.index, self.sender_id,
        )
        return self.network.send_to_best_peer(self)