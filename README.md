# dagsim

dagsim is a discrete-event simulator for DAG-structured blockchains. In the
simulated DAG every block names one parent, which is the miner's current pivot
tip, and refers to every other tip the miner knows about. Each miner keeps its
own view of the DAG. From that view it picks a pivot chain by subtree weight
and breaks ties with a random per-block residual. Blocks spread over one of
three network models:

- **simple**: each block reaches every miner after a fixed delay.
- **peer**: a random peer graph. Each node uploads whole blocks to one peer at
  a time, limited by its bandwidth.
- **bitcoin**: INV/GET relay. Nodes are placed in 20 geographic regions with
  measured latencies, and each node has an outbound link whose bandwidth is
  shared between the packets it is sending and whose socket buffer is limited.

Every 50 blocks the simulator logs statistics taken from miner 1's view of the
DAG: pivot-chain length and share, average anticone size within 20 epochs, and
the number of blocks in the last 100 epochs. In the bitcoin model it also logs
how long each block took to reach every miner.

## Installation

```
pip install .
```

The package has no dependencies outside the standard library. The tests use
pytest (`pip install .[test]`).

## Running a simulation

```
dagsim -r 5 -s 4 -band 20 -buff 32 -t 5000
```

By default the run has 10000 honest miners and lasts 5000 blocks. In pure
Python that is a long run. Use `-miners` and `-t` for smaller experiments:

```
dagsim -miners 200 -t 100 -net peer -log 3
```

| option              | meaning                                                        | default   |
|---------------------|----------------------------------------------------------------|-----------|
| `-d`                | debug mode: fixed random seed and a consistency check of every local graph after each insert | off |
| `-log`              | log level (1 error, 2 warning, 3 notice, 4 info, 5 debug)      | 2         |
| `-r`                | block generation interval in seconds                           | 5         |
| `-s`                | block size in MB                                               | 4         |
| `-band`             | bandwidth in Mbps                                              | 20        |
| `-buff`             | socket buffer size in MB (bitcoin model)                       | 32        |
| `-a`                | treat miner 0 as the attacker in the network models            | off       |
| `-m`                | add a special honest miner 0 (in the bitcoin model it gets a much faster link) | off |
| `-l`                | hash-power share of miner 0 when `-a` or `-m` is set           | 0.2       |
| `-local`            | ratio of peer links kept within a region (bitcoin model)       | 0.05      |
| `-peer`             | number of peers per node                                       | 10        |
| `-t`                | duration, in blocks                                            | 5000      |
| `-miners`           | number of honest miners                                        | 10000     |
| `-net`              | network model: `simple`, `peer` or `bitcoin`                   | `bitcoin` |

Without `-d`, the random seed comes from the clock, and the log reports it at
notice level. Log lines go to standard output.

## Using it as a library

```python
import random

from dagsim.cli import run_simulation
from dagsim.config import NetworkType, SimulationConfig

config = SimulationConfig(
    honest_miners=200,
    duration_blocks=100,
    network_type=NetworkType.PEER,
)
oracle = run_simulation(config, random.Random(1))
print(len(oracle.blocks))
print(oracle.get_miner(1).graph.pivot_tip.block.height)
```

Main parts of the package:

- `dagsim.config`: `SimulationConfig` (the parameters of a run, validated when
  created), `NetworkType`, and fixed constants.
- `dagsim.oracle.Oracle`: the clock, the event queue, all blocks and the miner
  set. `mine_next_block` draws when the next block is found and which miner
  finds it. `run` processes events until the duration is over.
- `dagsim.localgraph.LocalGraph`: one miner's view. It covers insertion
  (`insert` returns an `InsertResult`), pivot-chain upkeep, `epochs`,
  `count_anti`, the `report_*` statistics and `check_consistency`, which raises
  `GraphInconsistency`.
- `dagsim.miners`: `HonestMiner`, and `WithholdMiner`, a block-withholding
  adversary in two variants (`WithholdType.SELFISH`, `WithholdType.DELAY_REF`).
- `dagsim.net_simple.SimpleNetwork`, `dagsim.net_peer.PeerNetwork` and
  `dagsim.bitcoin.BitcoinNetwork`: the network models.
- `dagsim.traffic.Traffic`: outbound bandwidth sharing for the bitcoin model.
- `dagsim.events`: the `Event` base class and the time-ordered `EventQueue`.
- `dagsim.counters.CountMap`: integer tallies.

## What it does not do

- The `dagsim` command always uses honest miners. With `-a`, miner 0 is still
  an `HonestMiner`; the only difference is how the network treats it. To study
  a withholding attack, build an `Oracle` yourself and add a `WithholdMiner`
  with `add_miner`.
- Results go only to the log. Nothing is written to files, and no plots or
  machine-readable reports are produced. In library use, read the statistics
  from the returned `Oracle` and the miners' `LocalGraph`s.