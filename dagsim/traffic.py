"""Outbound bandwidth sharing for the peer-to-peer relay network.

A sender transmits all of its queued packets at once and splits its bandwidth
evenly between them.  ``acc_size`` is the amount of data the sender has
offered to each queued packet so far; a packet is finished once the sender's
running total reaches the value assigned to the packet when it was queued.
"""

from __future__ import annotations

import enum
import heapq
import itertools
import logging
from abc import abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from dagsim.config import NOTICE
from dagsim.events import Event
from dagsim.geo import geo_delay

log = logging.getLogger(__name__)

BYTES = 1000
KB = 1024 * BYTES
MB = 1024 * KB

LOG_NODE = 7429
ACC_TOLERANCE = 100 * BYTES
MONOPOLY_BANDWIDTH = 500.0 * 128 * KB
MONOPOLY_BUFFER = 32 * MB


class PacketStatus(enum.Enum):
    CONSTRUCTED = 0
    WAITING = 1
    SENDING = 2


class PacketEvent(Event):
    """A packet from ``sender_id`` to ``receiver_id`` of ``size`` bytes.

    A constructed packet joins its sender's outbound traffic when it runs;
    a packet in the sending state has arrived and performs :meth:`sent`.
    """

    def __init__(
        self,
        network: Any,
        sender_id: int,
        receiver_id: int,
        size: int,
        timestamp: int = 0,
    ) -> None:
        super().__init__(timestamp)
        self.network = network
        self.sender_id = sender_id
        self.receiver_id = receiver_id
        self.size = size
        self.acc_size = 0
        self.status = PacketStatus.CONSTRUCTED

    def ping_delay(self) -> int:
        """Random one-way latency between the two endpoints, in ticks."""
        network = self.network
        rng = network.rng
        base = geo_delay(network.geo[self.sender_id], network.geo[self.receiver_id])
        delay_ms = (base + 4 * rng.random()) * (0.9 + 0.2 * rng.random())
        return int(delay_ms / 1000 * network.oracle.time_precision)

    def prepare(self, start_time: int) -> None:
        """Schedule the packet to enter its sender's queue at ``start_time``."""
        self.timestamp = start_time
        self.status = PacketStatus.CONSTRUCTED

    def run(self, oracle: Any) -> list[Event]:
        if self.status is PacketStatus.CONSTRUCTED:
            return self.network.traffic.add_event(self)
        if self.status is PacketStatus.SENDING:
            return list(self.sent(oracle))
        return []

    @abstractmethod
    def sent(self, oracle: Any) -> list[Event]:
        """Act on the packet's arrival and return the events it causes."""


@dataclass(eq=False)
class NodeOutbound:
    """The outbound link of one sender."""

    bandwidth: float
    buffer_size: int
    last_wakeup: int = 0
    acc_size: int = 0
    buffer: int = 0
    next_wakeup: WakeupTrafficEvent | None = None
    queue: list[tuple[int, int, PacketEvent]] = field(default_factory=list)
    waiting: deque[PacketEvent] = field(default_factory=deque)
    _counter: itertools.count = field(default_factory=itertools.count, init=False, repr=False)

    @property
    def pending(self) -> int:
        """Number of packets being transmitted."""
        return len(self.queue)

    def push(self, packet: PacketEvent) -> None:
        heapq.heappush(self.queue, (packet.acc_size, next(self._counter), packet))

    def pop(self) -> PacketEvent:
        return heapq.heappop(self.queue)[2]

    def peek(self) -> PacketEvent:
        return self.queue[0][2]


class Traffic:
    """Outbound links of all senders of a network.

    ``bandwidth`` is in Mbps and ``buffer_size`` in MB.  With ``has_monopoly``
    miner 0 gets a much faster link.
    """

    def __init__(
        self,
        network: Any,
        bandwidth: float = 20.0,
        buffer_size: float = 32.0,
        has_monopoly: bool = False,
    ) -> None:
        self.network = network
        self.bandwidth = bandwidth * 128 * KB
        self.buffer_size = int(buffer_size * MB) + 1
        self.nodes: dict[int, NodeOutbound] = {}
        if has_monopoly:
            self.nodes[0] = NodeOutbound(
                bandwidth=MONOPOLY_BANDWIDTH, buffer_size=MONOPOLY_BUFFER
            )

    @property
    def _oracle(self) -> Any:
        return self.network.oracle

    def _node(self, sender_id: int) -> NodeOutbound:
        node = self.nodes.get(sender_id)
        if node is None:
            node = NodeOutbound(
                bandwidth=self.bandwidth,
                buffer_size=self.buffer_size,
                last_wakeup=self._oracle.timestamp,
            )
            self.nodes[sender_id] = node
        return node

    def _advance(self, node: NodeOutbound, now: int) -> None:
        if node.pending:
            elapsed = now - node.last_wakeup
            node.acc_size += int(
                elapsed * node.bandwidth / (self._oracle.time_precision * node.pending)
            )
        node.last_wakeup = now

    def _is_logged(self, node: NodeOutbound) -> bool:
        return self.nodes.get(LOG_NODE) is node

    def add_event(self, packet: PacketEvent) -> list[Event]:
        """Queue ``packet`` on its sender's link, or park it if the buffer is full."""
        node = self._node(packet.sender_id)
        if node.buffer + packet.size < node.buffer_size:
            return self.push_event(packet)
        node.waiting.append(packet)
        return []

    def _pull_waiting(self, node: NodeOutbound) -> list[Event]:
        if node.waiting and node.buffer + node.waiting[0].size < node.buffer_size:
            return self.push_event(node.waiting.popleft())
        return self.update_next_wakeup(node)

    def push_event(self, packet: PacketEvent) -> list[Event]:
        """Start transmitting ``packet`` on its sender's link."""
        node = self._node(packet.sender_id)
        self._advance(node, self._oracle.timestamp)
        packet.acc_size = node.acc_size + packet.size
        node.buffer += packet.size
        packet.status = PacketStatus.WAITING
        node.push(packet)
        return self.update_next_wakeup(node)

    def pop_event(self, wakeup: WakeupTrafficEvent) -> tuple[PacketEvent, list[Event]]:
        """Take the finished packet off the link woken by ``wakeup``."""
        node = wakeup.node
        if not node.pending:
            raise RuntimeError("wakeup on an empty outbound queue")
        self._advance(node, self._oracle.timestamp)
        packet = node.pop()
        node.buffer -= packet.size
        if abs(packet.acc_size - node.acc_size) > ACC_TOLERANCE:
            raise RuntimeError(
                f"sender {packet.sender_id}: packet progress {packet.acc_size} "
                f"does not match link progress {node.acc_size}"
            )
        return packet, self._pull_waiting(node)

    def update_next_wakeup(self, node: NodeOutbound) -> list[Event]:
        """Schedule or move the wakeup for the next packet to finish on ``node``."""
        now = self._oracle.timestamp
        precision = self._oracle.time_precision
        if not node.pending:
            node.next_wakeup = None
            return []
        if node.last_wakeup != now:
            raise RuntimeError("outbound link progress was not brought up to date")

        remaining = node.peek().acc_size - node.acc_size
        next_time = max(now, now + int(remaining * precision * node.pending / node.bandwidth))

        if node.next_wakeup is None or node.next_wakeup.queue is None:
            wakeup = WakeupTrafficEvent(node, self, timestamp=next_time)
            node.next_wakeup = wakeup
            if self._is_logged(node):
                log.log(
                    NOTICE, "Time %0.6f, Newake at %0.6f, %d packets",
                    now / precision, next_time / precision, node.pending,
                )
            return [wakeup]

        node.next_wakeup.change_time(next_time)
        if self._is_logged(node):
            log.log(
                NOTICE, "Time %0.6f, Update to %0.6f, %d packets",
                now / precision, next_time / precision, node.pending,
            )
        return []


class WakeupTrafficEvent(Event):
    """The moment the next packet on ``node`` finishes transmission."""

    def __init__(self, node: NodeOutbound, traffic: Traffic, timestamp: int = 0) -> None:
        super().__init__(timestamp)
        self.node = node
        self.traffic = traffic

    def run(self, oracle: Any) -> list[Event]:
        now = oracle.timestamp
        if self.traffic.nodes.get(LOG_NODE) is self.node:
            log.log(
                NOTICE, "Time %0.6f, Wake up, %d packets remains",
                now / oracle.time_precision, self.node.pending - 1,
            )
        packet, follow_ups = self.traffic.pop_event(self)
        packet.timestamp = now + packet.ping_delay()
        packet.status = PacketStatus.SENDING
        return [*follow_ups, packet]