from types import SimpleNamespace

import pytest

from dagsim.block import Block
from dagsim.events import Event, EventQueue, GenBlockEvent, SendBlockEvent


class Tick(Event):
    def __init__(self, timestamp, label):
        super().__init__(timestamp)
        self.label = label

    def run(self, oracle):
        return [Tick(self.timestamp + 1, self.label)]


class RecordingMiner:
    def __init__(self, graph=None):
        self.generated = []
        self.received = []
        self.graph = graph

    def generate_block(self, block):
        self.generated.append(block)
        return [Tick(5, "gen")]

    def receive_block(self, block):
        self.received.append(block)
        return [Tick(6, "recv")]


class RecordingGraph:
    def __init__(self):
        self.calls = []
        self.pivot_tip = SimpleNamespace(block=SimpleNamespace(index=42))

    def report_pivot(self):
        self.calls.append("pivot")

    def report_anti(self, c, split_first_miner):
        self.calls.append(("anti", c, split_first_miner))

    def report_epoch_size(self):
        self.calls.append("epoch")


class FakeOracle:
    def __init__(self, miners):
        self.miners = miners
        self.next_events = []

    def real_time(self):
        return 0.0

    def get_miner(self, miner_id):
        return self.miners[miner_id]

    def mine_next_block(self):
        event = Tick(100, "next")
        self.next_events.append(event)
        return event


def test_queue_pops_in_time_order():
    queue = EventQueue()
    for ts, label in [(30, "c"), (10, "a"), (20, "b")]:
        queue.push(Tick(ts, label))
    assert len(queue) == 3
    assert [queue.pop().label for _ in range(3)] == ["a", "b", "c"]
    assert len(queue) == 0


def test_equal_timestamps_keep_push_order():
    queue = EventQueue()
    for label in "xyz":
        queue.push(Tick(7, label))
    assert [queue.pop().label for _ in range(3)] == ["x", "y", "z"]


def test_pop_empty_raises():
    with pytest.raises(IndexError):
        EventQueue().pop()


def test_queue_membership_tracked():
    queue = EventQueue()
    event = Tick(1, "a")
    queue.push(event)
    assert event.queue is queue
    popped = queue.pop()
    assert popped is event
    assert event.queue is None


def test_push_twice_raises():
    queue = EventQueue()
    event = Tick(1, "a")
    queue.push(event)
    with pytest.raises(ValueError):
        queue.push(event)


def test_change_time_reorders_queued_event():
    queue = EventQueue()
    early = Tick(10, "early")
    late = Tick(20, "late")
    queue.push(early)
    queue.push(late)
    late.change_time(5)
    assert len(queue) == 2
    assert queue.pop() is late
    assert queue.pop() is early
    with pytest.raises(IndexError):
        queue.pop()


def test_change_time_can_delay_event():
    queue = EventQueue()
    first = Tick(10, "first")
    second = Tick(20, "second")
    queue.push(first)
    queue.push(second)
    first.change_time(30)
    assert [queue.pop().label for _ in range(2)] == ["second", "first"]


def test_change_time_outside_queue_only_sets_timestamp():
    event = SendBlockEvent(Block(index=1, miner_id=0), receiver_id=1, timestamp=10)
    event.change_time(99)
    assert event.timestamp == 99
    assert event.queue is None


def test_popped_event_can_be_requeued():
    queue = EventQueue()
    event = Tick(3, "a")
    queue.push(event)
    queue.pop()
    queue.push(event)
    assert queue.pop() is event


def test_event_base_is_abstract():
    with pytest.raises(TypeError):
        Event(0)


def test_send_block_event_delivers_and_marks_seen():
    miners = [RecordingMiner(), RecordingMiner()]
    oracle = FakeOracle(miners)
    block = Block(index=3, miner_id=0)
    events = SendBlockEvent(block, receiver_id=1, timestamp=4).run(oracle)
    assert miners[1].received == [block]
    assert block.seen == {1: True}
    assert [e.label for e in events] == ["recv"]


def test_gen_block_event_generates_and_schedules_next():
    miners = [RecordingMiner(), RecordingMiner(RecordingGraph())]
    oracle = FakeOracle(miners)
    block = Block(index=7, miner_id=0)
    events = GenBlockEvent(block, timestamp=2).run(oracle)
    assert miners[0].generated == [block]
    assert block.seen[0] is True
    assert events[-1] is oracle.next_events[0]
    assert [e.label for e in events] == ["gen", "next"]
    assert miners[1].graph.calls == []


def test_gen_block_event_reports_every_fiftieth_block():
    graph = RecordingGraph()
    miners = [RecordingMiner(), RecordingMiner(graph)]
    oracle = FakeOracle(miners)
    block = Block(index=50, miner_id=0)
    events = GenBlockEvent(block, timestamp=2, split_first_miner=True).run(oracle)
    assert [e.label for e in events] == ["gen", "next"]
    assert graph.calls == ["pivot", ("anti", 20, True), "epoch"]