"""Discrete events and the time-ordered queue that schedules them."""

from __future__ import annotations

import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from dagsim.config import NOTICE

if TYPE_CHECKING:
    from dagsim.block import Block

log = logging.getLogger(__name__)

REPORT_INTERVAL = 50
ANTICONE_HORIZON = 20


class Event(ABC):
    """Something that happens at ``timestamp`` and may cause further events."""

    def __init__(self, timestamp: int = 0) -> None:
        self.timestamp = timestamp
        self._queue: EventQueue | None = None
        self._entry: list[Any] | None = None

    @property
    def queue(self) -> EventQueue | None:
        """The queue currently holding this event, or None."""
        return self._queue

    def change_time(self, timestamp: int) -> None:
        """Move the event to ``timestamp``, rescheduling it if queued."""
        self.timestamp = timestamp
        if self._queue is not None:
            self._queue._reschedule(self)

    @abstractmethod
    def run(self, oracle: Any) -> list[Event]:
        """Carry out the event and return the events it causes."""


class EventQueue:
    """Priority queue of events ordered by timestamp, earliest first.

    Events with equal timestamps come out in the order they were pushed.
    """

    def __init__(self) -> None:
        self._heap: list[list[Any]] = []
        self._counter = itertools.count()
        self._live = 0

    def push(self, event: Event) -> None:
        if event._queue is not None:
            raise ValueError("event is already queued")
        self._add_entry(event)
        event._queue = self
        self._live += 1

    def pop(self) -> Event:
        while self._heap:
            _, _, event = heapq.heappop(self._heap)
            if event is None:
                continue
            event._queue = None
            event._entry = None
            self._live -= 1
            return event
        raise IndexError("pop from an empty event queue")

    def __len__(self) -> int:
        return self._live

    def _add_entry(self, event: Event) -> None:
        entry = [event.timestamp, next(self._counter), event]
        event._entry = entry
        heapq.heappush(self._heap, entry)

    def _reschedule(self, event: Event) -> None:
        if event._entry is not None:
            event._entry[2] = None
        self._add_entry(event)


class GenBlockEvent(Event):
    """A miner finds ``block``; the next block is scheduled in turn."""

    def __init__(
        self,
        block: Block,
        timestamp: int = 0,
        split_first_miner: bool = False,
    ) -> None:
        super().__init__(timestamp)
        self.block = block
        self.split_first_miner = split_first_miner

    def run(self, oracle: Any) -> list[Event]:
        block = self.block
        log.debug(
            "GenBlock  Event: time %.2f, block %d, miner %d",
            oracle.real_time(), block.index, block.miner_id,
        )
        miner = oracle.get_miner(block.miner_id)
        block.seen[block.miner_id] = True

        if block.index % REPORT_INTERVAL == 0:
            self._report(oracle)

        events = list(miner.generate_block(block))
        events.append(oracle.mine_next_block())
        return events

    def _report(self, oracle: Any) -> None:
        try:
            observer = oracle.get_miner(1)
        except IndexError:
            return
        graph = observer.graph
        log.warning("")
        log.warning("Current time: %.2f s", oracle.real_time())
        log.log(NOTICE, "Pivot block %d", graph.pivot_tip.block.index)
        graph.report_pivot()
        graph.report_anti(ANTICONE_HORIZON, self.split_first_miner)
        graph.report_epoch_size()
        log.warning("")


class SendBlockEvent(Event):
    """``block`` arrives at miner ``receiver_id``."""

    def __init__(self, block: Block, receiver_id: int, timestamp: int = 0) -> None:
        super().__init__(timestamp)
        self.block = block
        self.receiver_id = receiver_id

    def run(self, oracle: Any) -> list[Event]:
        log.debug(
            "SendBlock Event: time %.2f, block %d, receiver %d",
            oracle.real_time(), self.block.index, self.receiver_id,
        )
        receiver = oracle.get_miner(self.receiver_id)
        self.block.seen[self.receiver_id] = True
        return list(receiver.receive_block(self.block))