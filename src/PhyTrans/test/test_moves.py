import math
import pytest
import numpy as np
from PhyTrans.TimeTree import TimeTree
from PhyTrans.BlockParameters import BlockConfiguration
from PhyTrans.HazardFunction import GammaHazardFunction
from PhyTrans.PopulationFunction import ConstantPopulation
from PhyTrans.Calibration import Calibration
from PhyTrans.TransmissionTreeLikelihood import TransmissionTreeLikelihood
from PhyTrans.Moves import *


################
### HELPERS ####
################

def balanced_tree() -> TimeTree:
    return TimeTree([4, 4, 5, 5, 6, 6, None],
                    [0, 0, 0, 0, 1, 1, 2])


def leaf_transitions() -> BlockConfiguration:
    blocks = BlockConfiguration.empty(7)
    for nr in range(4):
        blocks.set_block(nr, 0, 0.4, 0.4)
    return blocks


def sampled_chain() -> BlockConfiguration:
    """
    Leaves 0 and 2 infect the two cherries, no unsampled host.
    """
    blocks = BlockConfiguration.empty(7)
    blocks.set_block(1, 0, 0.3, 0.3)
    blocks.set_block(3, 0, 0.6, 0.6)
    blocks.set_block(5, 0, 0.5, 0.5)
    return blocks


_CALIBRATION : Calibration | None = None


def make_model(blocks : BlockConfiguration | None = None) \
               -> TransmissionTreeLikelihood:
    global _CALIBRATION
    sampling = GammaHazardFunction(0.8, 2.0, 1.0, np.random.default_rng(1))
    transmission = GammaHazardFunction(1.5, 2.0, 2.0,
                                       np.random.default_rng(2))
    if _CALIBRATION is None:
        _CALIBRATION = Calibration(sampling, transmission, 2000).calibrate()
    return TransmissionTreeLikelihood(
        balanced_tree(),
        blocks if blocks is not None else leaf_transitions(),
        ConstantPopulation(1.0),
        sampling,
        transmission,
        origin = 3.0,
        calibration = _CALIBRATION)


def snapshot(blocks : BlockConfiguration) -> tuple:
    return blocks.count.copy(), blocks.start.copy(), blocks.end.copy()


def assert_same(blocks : BlockConfiguration, saved : tuple) -> None:
    assert np.array_equal(blocks.count, saved[0])
    assert np.array_equal(blocks.start, saved[1])
    assert np.array_equal(blocks.end, saved[2])


def infections(blocks : BlockConfiguration) -> int:
    return int(np.sum(blocks.count[:6] + 1))


def adjacent_branches(tree : TimeTree, first : int, second : int) \
                      -> list[int]:
    """
    The branches meeting at the internal node shared by two branches.
    """
    if tree.get_node(first).get_parent() == tree.get_node(second).get_parent():
        nr = tree.get_node(first).get_parent()
    elif tree.get_node(first).get_parent() == second:
        nr = second
    else:
        nr = first
    node = tree.get_node(nr)
    above = [] if node.is_root() else [nr]
    return above + list(node.get_children())

################
#### TESTS #####
################

def test_eligible_infections():
    tree = balanced_tree()
    assert eligible_infections(tree, leaf_transitions()) == [0, 1, 2, 3]
    assert eligible_infections(tree, sampled_chain()) == []

    blocks = leaf_transitions()
    blocks.set_block(0, 2, 0.1, 0.5)
    assert eligible_infections(tree, blocks) == [0, 0, 1, 2, 3]


def test_choose_branch_by_length():
    tree = balanced_tree()
    rng = np.random.default_rng(4)
    picks = [choose_branch_by_length(tree, rng) for _ in range(600)]
    assert set(picks) <= set(range(6))
    assert len(set(picks)) == 6


def test_insert_hastings_ratio():
    model = make_model()
    move = InsertInfectionMove(np.random.default_rng(3))
    move.execute(model)
    assert len(move.undo_info) == 1
    nr = next(iter(move.undo_info))
    eligible = len(eligible_infections(model.tree, model.blocks))
    expected = math.log(1.0 / eligible) - \
               math.log(model.tree.get_node(nr).get_length() /
                        model.tree.total_length())
    assert move.hastings_ratio() == pytest.approx(expected)
    assert model.is_valid_colouring()


def test_remove_hastings_ratio():
    """
    Every leaf branch (length 1 of 6) is removable, one of four.
    """
    model = make_model()
    move = RemoveInfectionMove(np.random.default_rng(3))
    move.execute(model)
    nr = next(iter(move.undo_info))
    assert nr in range(4)
    assert model.blocks.get_count(nr) == -1
    assert move.hastings_ratio() == pytest.approx(math.log(1 / 6) -
                                                  math.log(1 / 4))
    assert model.is_valid_colouring()


def test_remove_without_candidates():
    model = make_model(sampled_chain())
    saved = snapshot(model.blocks)
    move = RemoveInfectionMove(np.random.default_rng(3))
    move.execute(model)
    assert move.hastings_ratio() == -math.inf
    assert_same(model.blocks, saved)


def test_undo_restores():
    for seed in range(10):
        for move_type in (InsertInfectionMove, RemoveInfectionMove,
                          BlockBoundaryMove):
            model = make_model()
            saved = snapshot(model.blocks)
            move = move_type(np.random.default_rng(seed))
            move.execute(model)
            move.undo(model)
            assert_same(model.blocks, saved)


def test_same_move():
    model = make_model()
    replica = make_model()
    move = InsertInfectionMove(np.random.default_rng(8))
    move.execute(model)
    move.same_move(replica)
    assert_same(replica.blocks, snapshot(model.blocks))


def test_boundary_move_keeps_counts():
    model = make_model()
    counts = model.blocks.count.copy()
    move = BlockBoundaryMove(np.random.default_rng(2))
    move.execute(model)
    assert move.hastings_ratio() == 0.0
    assert np.array_equal(model.blocks.count, counts)
    nr = next(iter(move.undo_info))
    assert model.blocks.get_start(nr) == model.blocks.get_end(nr)


def test_infection_mover():
    """
    A rejected move reports -inf and is undone, an accepted one keeps the
    number of infections and the validity of the colouring.
    """
    accepted = 0
    for seed in range(40):
        for to_sibling in (True, False, None):
            model = make_model()
            saved = snapshot(model.blocks)
            infections = int(np.sum(model.blocks.count[:6] + 1))
            move = InfectionMover(np.random.default_rng(seed), to_sibling)
            move.execute(model)
            if move.hastings_ratio() == -math.inf:
                move.undo(model)
                assert_same(model.blocks, saved)
            else:
                accepted += 1
                assert int(np.sum(model.blocks.count[:6] + 1)) == infections
                assert model.is_valid_colouring()
    assert accepted > 0


def test_kernel_keeps_valid_colouring():
    model = make_model()
    kernel = BlockOperatorKernel(np.random.default_rng(21))
    kinds = set()
    for _ in range(200):
        move = kernel.generate()
        kinds.add(type(move))
        move.execute(model)
        if move.hastings_ratio() == -math.inf:
            move.undo(model)
        assert model.is_valid_colouring()
        assert not math.isnan(model.calculate_log_p())
    assert kernel.iter == 200
    assert kinds == {BlockBoundaryMove, InsertInfectionMove,
                     RemoveInfectionMove}


def test_adjacent_infection_mover():
    """
    The infection moves between two branches meeting at one node, and the
    Hastings ratio compares how many of that node's branches are infected
    before and after.
    """
    accepted = 0
    rejected = 0
    for seed in range(40):
        model = make_model()
        saved = snapshot(model.blocks)
        move = AdjacentInfectionMover(np.random.default_rng(seed))
        move.execute(model)
        if move.hastings_ratio() == -math.inf:
            rejected += 1
            move.undo(model)
            assert_same(model.blocks, saved)
            continue

        accepted += 1
        assert infections(model.blocks) == 4
        assert model.is_valid_colouring()
        assert len(move.undo_info) == 2
        first, second = move.undo_info
        branches = adjacent_branches(model.tree, first, second)
        before = sum(1 for nr in branches if saved[0][nr] > -1)
        after = sum(1 for nr in branches if model.blocks.get_count(nr) > -1)
        assert move.hastings_ratio() == pytest.approx(math.log(before) -
                                                      math.log(after))
        move.undo(model)
        assert_same(model.blocks, saved)
    # the root has no infected branch below it
    assert accepted > 0 and rejected > 0


def test_adjacent_infection_mover_onto_sibling():
    """
    Both infections of the cherry (0,1) end up on branch 1: two infected
    branches before, one after.
    """
    for seed in range(200):
        model = make_model()
        move = AdjacentInfectionMover(np.random.default_rng(seed))
        move.execute(model)
        if model.blocks.get_count(1) == 1 and model.blocks.get_count(0) == -1:
            assert move.hastings_ratio() == pytest.approx(math.log(2.0))
            assert model.is_valid_colouring()
            return
    pytest.fail("no move from branch 0 to branch 1 in 200 draws")


def test_constant_count_move():
    accepted = 0
    for seed in range(20):
        model = make_model()
        saved = snapshot(model.blocks)
        move = ConstantCountMove(np.random.default_rng(seed))
        move.execute(model)
        assert move.hastings_ratio() == 0.0
        assert infections(model.blocks) == 4
        assert model.is_valid_colouring()
        if not np.array_equal(model.blocks.count, saved[0]) or \
           not np.array_equal(model.blocks.start, saved[1]):
            accepted += 1
        move.undo(model)
        assert_same(model.blocks, saved)
    assert accepted > 0

    model = make_model(sampled_chain())
    saved = snapshot(model.blocks)
    move = ConstantCountMove(np.random.default_rng(3))
    move.execute(model)
    assert move.hastings_ratio() == -math.inf
    assert_same(model.blocks, saved)


def test_kernel_keep_constant_count():
    model = make_model()
    kernel = BlockOperatorKernel(np.random.default_rng(21),
                                 keep_constant_count = True)
    kinds = set()
    for _ in range(200):
        move = kernel.generate()
        kinds.add(type(move))
        move.execute(model)
        if move.hastings_ratio() == -math.inf:
            move.undo(model)
        assert infections(model.blocks) == 4
        assert model.is_valid_colouring()
    assert kinds == {BlockBoundaryMove, ConstantCountMove}
