"""A miner's local view of the block DAG, with pivot-chain selection.

Each view keeps, for every block it has seen, the weight of the subtree
rooted there (blocks plus their descendants along parent edges).  Blocks on
the pivot chain store their weight minus the total weight of the view, so a
non-positive stored weight marks a pivot block and the pivot chain can be
moved by adjusting two branches only.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from dataclasses import dataclass

from dagsim.block import Block
from dagsim.counters import CountMap

log = logging.getLogger(__name__)

EPOCH_WINDOW = 100


class InsertResult(enum.Enum):
    SUCCESS = 1
    FAIL = 2
    EXISTING = 3


class GraphInconsistency(RuntimeError):
    """The local graph's bookkeeping contradicts itself."""


@dataclass(eq=False)
class DetailedBlock:
    """A block as tracked by one local graph."""

    block: Block
    parent: DetailedBlock | None = None
    max_child: DetailedBlock | None = None
    weight: int = 1

    def is_pivot(self) -> bool:
        return self.weight <= 0

    def is_genesis(self) -> bool:
        return self.block.parent is None

    def weight_in(self, graph: LocalGraph) -> float:
        """Subtree weight in ``graph``, with the block's residual as tie-breaker."""
        if self.is_pivot():
            return graph.total_weight + self.weight + self.block.residual
        return self.weight + self.block.residual


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return math.nan
    return numerator / denominator


class LocalGraph:
    """The part of the block DAG one miner has seen."""

    def __init__(self, check: bool = False) -> None:
        self.ledger: dict[int, DetailedBlock] = {}
        self.total_weight = 0
        self.tips: set[int] = set()
        self.pivot_tip: DetailedBlock | None = None
        self.genesis: DetailedBlock | None = None
        self.check = check

    def contains(self, block: Block) -> bool:
        return block.index in self.ledger

    def get(self, block: Block) -> DetailedBlock | None:
        return self.ledger.get(block.index)

    def seen_all_ancestors(self, block: Block) -> bool:
        """True when the parent and every referenced block are in the graph."""
        if block.parent is not None and not self.contains(block.parent):
            return False
        return all(self.contains(ref) for ref in block.references)

    def children_of(self, node: DetailedBlock) -> list[DetailedBlock]:
        """Parent-edge children of ``node`` that this graph has seen."""
        return [self.ledger[c.index] for c in node.block.children if c.index in self.ledger]

    def ref_children_of(self, node: DetailedBlock) -> list[DetailedBlock]:
        """Blocks referencing ``node`` that this graph has seen."""
        return [
            self.ledger[c.index] for c in node.block.ref_children if c.index in self.ledger
        ]

    def _update_tips(self, node: DetailedBlock) -> None:
        parents = list(node.block.references)
        if not node.is_genesis():
            parents.append(node.block.parent)
        for parent in parents:
            self.tips.discard(parent.index)
        self.tips.add(node.block.index)

    def _update_max_child(self, node: DetailedBlock) -> bool:
        """Recompute ``node.max_child``; True if it changed."""
        old = node.max_child
        best: DetailedBlock | None = None
        best_weight = 0.0
        for child in self.children_of(node):
            weight = child.weight_in(self)
            if weight > best_weight:
                best, best_weight = child, weight
        node.max_child = best
        if best is None:
            return False
        return old is None or best is not old

    def fill_new_block(self, block: Block) -> None:
        """Attach a freshly mined block to the pivot tip, referencing all other tips."""
        if self.pivot_tip is None:
            raise ValueError("cannot mine on an empty graph")
        parent = self.pivot_tip.block
        block.parent = parent
        parent.children.append(block)
        block.height = parent.height + 1
        block.ancestor_num = self.total_weight
        block.references = []
        for index in sorted(self.tips):
            if index != parent.index:
                ref = self.ledger[index].block
                block.references.append(ref)
                ref.ref_children.append(block)

    def insert(self, block: Block) -> InsertResult:
        """Add ``block`` to the view and move the pivot chain if needed."""
        if self.contains(block):
            return InsertResult.EXISTING
        if not self.seen_all_ancestors(block):
            return InsertResult.FAIL

        self.total_weight += 1
        node = DetailedBlock(block=block)
        if node.is_genesis():
            node.weight = self.total_weight - node.weight
            self.genesis = node
        else:
            node.parent = self.ledger[block.parent.index]
        self.ledger[block.index] = node
        self._update_tips(node)

        if node.is_genesis():
            self.pivot_tip = node
            return InsertResult.SUCCESS

        current = node.parent
        while not current.is_pivot():
            self._update_max_child(current)
            current.weight += 1
            current = current.parent

        pivot_point = current
        old_branch = pivot_point.max_child
        current = old_branch
        while current is not None:
            current.weight -= 1
            current = current.max_child

        if self._update_max_child(pivot_point):
            current = old_branch
            while current is not None:
                current.weight += self.total_weight
                current = current.max_child
            current = pivot_point.max_child
            while current is not None:
                self.pivot_tip = current
                current.weight -= self.total_weight
                current = current.max_child

        if self.check:
            self.check_consistency()
        return InsertResult.SUCCESS

    def _pivot_chain(self):
        node = self.genesis
        while node is not None and node.max_child is not None:
            node = node.max_child
            yield node

    def epochs(self) -> tuple[dict[int, int], CountMap]:
        """Epoch of every block in the pivot tip's past, and block counts per epoch."""
        if self.genesis is None:
            return {}, CountMap()
        epoch_of: dict[int, int] = {self.genesis.block.index: 0}
        sizes = CountMap()
        for pivot in self._pivot_chain():
            epoch = pivot.block.height
            pending = deque([pivot])
            while pending:
                node = pending.popleft()
                index = node.block.index
                if index in epoch_of:
                    continue
                epoch_of[index] = epoch
                sizes.incur(epoch, 1)
                pending.extend(self.ledger[ref.index] for ref in node.block.references)
                if not node.is_genesis():
                    pending.append(node.parent)
        return epoch_of, sizes

    def count_anti(self, c: int) -> tuple[dict[int, int], dict[int, int]]:
        """Anticone size within ``c`` epochs for each block, and the epoch map."""
        epoch_of, _ = self.epochs()
        descendants: dict[int, int] = {}
        for index, epoch in epoch_of.items():
            end_epoch = epoch + c
            visited: set[int] = set()
            count = 0
            pending = deque([self.ledger[index]])
            while pending:
                node = pending.popleft()
                node_index = node.block.index
                if node_index in visited:
                    continue
                visited.add(node_index)
                node_epoch = epoch_of.get(node_index)
                if node_epoch is None or node_epoch > end_epoch:
                    continue
                count += 1
                pending.extend(self.ref_children_of(node))
                pending.extend(self.children_of(node))
            descendants[index] = count

        pivot_weight = {0: 1}
        max_epoch = 0
        for max_epoch, pivot in enumerate(self._pivot_chain(), start=1):
            pivot_weight[max_epoch] = pivot.block.ancestor_num + 1

        result: dict[int, int] = {}
        for index, desc in descendants.items():
            horizon = epoch_of[index] + c
            if horizon <= max_epoch:
                anti = pivot_weight[horizon] - (self.ledger[index].block.ancestor_num + desc)
                if anti < 0:
                    raise GraphInconsistency(f"negative anticone for block {index}")
                result[index] = anti
        return result, epoch_of

    def report_pivot(self) -> tuple[CountMap, CountMap, CountMap]:
        """Pivot blocks per miner, (unused) last-pivot counts, and references per miner."""
        pivot_cnt = CountMap()
        last_pivot_cnt = CountMap()
        pivot_ref_sum = CountMap()
        node = self.pivot_tip
        while node is not None and not node.is_genesis():
            pivot_cnt.incur(node.block.miner_id, 1)
            pivot_ref_sum.incur(node.block.miner_id, len(node.block.references))
            node = node.parent

        height = self.pivot_tip.block.height if self.pivot_tip else 0
        first_miner = pivot_cnt[0]
        log.warning(
            "%d(%d) pivot, %d from miner 0; ratio %.3f, %.3f;",
            height, self.total_weight, first_miner,
            _ratio(height, self.total_weight), _ratio(first_miner, height),
        )
        return pivot_cnt, last_pivot_cnt, pivot_ref_sum

    def report_anti(self, c: int, split_first_miner: bool = False) -> tuple[CountMap, CountMap]:
        """Blocks and summed anticone sizes per miner."""
        anti, _ = self.count_anti(c)
        block_cnt = CountMap()
        anti_sum = CountMap()
        for index, num in anti.items():
            miner = self.ledger[index].block.miner_id
            block_cnt.incur(miner, 1)
            anti_sum.incur(miner, num)

        if split_first_miner:
            log.warning(
                "N+%d Antiset in recent %d epochs, Attacker %.3f, Honest %.3f",
                c, EPOCH_WINDOW,
                _ratio(anti_sum[0], block_cnt[0]),
                _ratio(anti_sum.total() - anti_sum[0], block_cnt.total() - block_cnt[0]),
            )
        else:
            log.warning(
                "N+%d Antiset in recent %d epochs, %.3f",
                c, EPOCH_WINDOW, _ratio(anti_sum.total(), block_cnt.total()),
            )
        return block_cnt, anti_sum

    def report_epoch_size(self) -> CountMap:
        """Blocks per epoch; logs how many fall in the most recent epochs."""
        _, sizes = self.epochs()
        height = self.pivot_tip.block.height if self.pivot_tip else 0
        recent = sum(sizes[height - i] for i in range(EPOCH_WINDOW))
        log.warning("Last %d epochs have %d blocks", EPOCH_WINDOW, recent)
        return sizes

    def check_consistency(self) -> None:
        """Verify weights, pivot marks, max children and tips; raise on any error."""
        if self.genesis is None or self.genesis.weight != 0:
            raise GraphInconsistency("genesis error")
        count = 0
        child_count = 1
        referenced: dict[int, bool] = {}
        for index, node in self.ledger.items():
            count += 1
            if index != node.block.index:
                raise GraphInconsistency("index consistency")
            referenced.setdefault(index, False)
            for ref in node.block.references:
                referenced[ref.index] = True
            if not node.is_genesis():
                referenced[node.block.parent.index] = True

            subtree = 1
            best_weight = 0.0
            best: DetailedBlock | None = None
            for child in self.children_of(node):
                child_count += 1
                if child.parent is not node:
                    raise GraphInconsistency("child parent consistency")
                if child.is_pivot():
                    subtree += child.weight + self.total_weight
                    if not node.is_pivot() or child is not node.max_child:
                        raise GraphInconsistency("mark non-pivot block as pivot")
                else:
                    subtree += child.weight
                    if node.is_pivot() and child is node.max_child:
                        raise GraphInconsistency("mark pivot block as non-pivot")
                weight = child.weight_in(self)
                if best_weight < weight:
                    best_weight, best = weight, child
            if node.max_child is not best:
                raise GraphInconsistency(f"max child consistency at block {index}")
            if node.is_pivot() and subtree != node.weight + self.total_weight:
                raise GraphInconsistency(f"block {index}, weight consistency")
            if not node.is_pivot() and subtree != node.weight:
                raise GraphInconsistency(f"block {index}, weight consistency")

        if count != self.total_weight or count != child_count:
            raise GraphInconsistency("global weight consistency")
        if (
            self.pivot_tip is None
            or not self.pivot_tip.is_pivot()
            or self.pivot_tip.max_child is not None
        ):
            raise GraphInconsistency("pivot tip error")
        for index, has_successor in referenced.items():
            if index not in self.tips and not has_successor:
                raise GraphInconsistency(f"tip block {index} outside tip list")
            if index in self.tips and has_successor:
                raise GraphInconsistency(f"non-tip block {index} in tip list")