import pytest
import numpy as np
from PhyTrans.BlockParameters import *


################
### HELPERS ####
################

def leaf_transitions() -> BlockConfiguration:
    """
    One single-point transition at 0.4 on each leaf branch of a 7 node tree.
    """
    return BlockConfiguration([0.4] * 4 + [0.5] * 3,
                              [0.4] * 4 + [0.5] * 3,
                              [0] * 4 + [-1] * 3)

################
#### TESTS #####
################

def test_empty():
    blocks = BlockConfiguration.empty(7)
    assert blocks.get_dimension() == 7
    assert all(blocks.get_count(i) == -1 for i in range(7))
    assert blocks.get_block(3) == (-1, DEFAULT_FRACTION, DEFAULT_FRACTION)


def test_setters_bump_version():
    """
    Every mutation increments the version exactly once.
    """
    blocks = leaf_transitions()
    version = blocks.version
    blocks.set_count(4, 2)
    blocks.set_start(4, 0.1)
    blocks.set_end(4, 0.9)
    assert blocks.version == version + 3
    blocks.set_block(5, 1, 0.2, 0.3)
    assert blocks.version == version + 4
    assert blocks.get_block(4) == (2, 0.1, 0.9)
    assert blocks.get_block(5) == (1, 0.2, 0.3)


def test_setter_bounds():
    blocks = leaf_transitions()
    with pytest.raises(BlockParameterError):
        blocks.set_count(0, -2)
    with pytest.raises(BlockParameterError):
        blocks.set_start(0, 1.5)
    with pytest.raises(BlockParameterError):
        blocks.set_end(0, -0.1)
    with pytest.raises(BlockParameterError):
        blocks.set_block(0, 0, 0.2, 2.0)
    # rejected values leave the configuration untouched
    assert blocks.get_block(0) == (0, 0.4, 0.4)


def test_sanity_check_dimension():
    """
    A configuration of the wrong size is padded with defaults and a warning.
    """
    blocks = BlockConfiguration([0.4, 0.4], [0.4, 0.4], [0, 0])
    with pytest.warns(UserWarning):
        blocks.sanity_check(7)
    assert blocks.get_dimension() == 7
    assert len(blocks.start) == 7 and len(blocks.end) == 7
    assert blocks.get_block(0) == (0, 0.4, 0.4)
    assert blocks.get_block(6) == (-1, DEFAULT_FRACTION, DEFAULT_FRACTION)


def test_sanity_check_bounds():
    """
    Out of range fractions are clamped, counts are floored at -1 and the
    root count is forced to -1.
    """
    blocks = BlockConfiguration([-0.5, 0.2, 0.5], [1.5, 0.2, 0.5],
                                [-4, 0, 3])
    with pytest.warns(UserWarning):
        blocks.sanity_check(3, root_nr = 2)
    assert blocks.get_start(0) == 0.0
    assert blocks.get_end(0) == 1.0
    assert blocks.get_count(0) == -1
    assert blocks.get_count(2) == -1
    assert blocks.get_block(1) == (0, 0.2, 0.2)


def test_listener_and_copy():
    blocks = leaf_transitions()
    seen = []
    blocks.add_listener(lambda b: seen.append(b.version))
    blocks.set_count(4, 1)
    assert seen == [blocks.version]

    clone = blocks.copy()
    clone.set_count(4, 5)
    assert blocks.get_count(4) == 1
    assert np.array_equal(clone.start, blocks.start)
    # copies do not inherit listeners
    assert seen == [blocks.version]
