"""Blocks of the simulated block DAG."""

from __future__ import annotations

from dataclasses import dataclass, field

GENESIS_MINER = -1


@dataclass(eq=False)
class Block:
    """A mined block.

    ``index``, ``miner_id``, ``residual`` and ``seen`` are set by the oracle;
    ``height``, ``ancestor_num``, ``parent`` and ``references`` by the miner
    that mines it; ``children`` and ``ref_children`` by the miners of its
    descendants; ``receiving_time`` by the network.
    """

    index: int
    miner_id: int
    residual: float = 0.0
    height: int = 0
    ancestor_num: int = 0
    parent: Block | None = None
    references: list[Block] = field(default_factory=list)
    children: list[Block] = field(default_factory=list)
    ref_children: list[Block] = field(default_factory=list)
    seen: dict[int, bool] = field(default_factory=dict)
    receiving_time: dict[int, int] = field(default_factory=dict)

    def is_genesis(self) -> bool:
        """True for the block without a parent."""
        return self.parent is None