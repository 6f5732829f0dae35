from dagsim.block import GENESIS_MINER, Block


def test_genesis_has_no_parent():
    genesis = Block(index=0, miner_id=GENESIS_MINER)
    child = Block(index=1, miner_id=3, parent=genesis)
    assert genesis.is_genesis() is True
    assert child.is_genesis() is False


def test_collections_are_not_shared():
    a = Block(index=1, miner_id=0)
    b = Block(index=2, miner_id=0)
    a.children.append(b)
    a.seen[0] = True
    a.receiving_time[0] = 12
    assert b.children == []
    assert b.seen == {}
    assert b.receiving_time == {}


def test_blocks_compare_by_identity():
    a = Block(index=1, miner_id=0)
    b = Block(index=1, miner_id=0)
    assert a != b
    assert len({a, b}) == 2
    assert a in {a}


def test_genesis_block_uses_minus_one_miner():
    genesis = Block(index=0, miner_id=GENESIS_MINER)
    assert genesis.miner_id == -1
    assert genesis.is_genesis() is True