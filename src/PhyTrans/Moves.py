#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyTrans --
##  Library for the Reconstruction of Transmission Trees on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Author : Mark Kessler
Last Edit : 10/19/26
First Included in Version : 1.0.0

Docs   - [x]
Tests  - [x]
Design - [x]

Proposal moves that edit the block configuration of a transmission tree
likelihood. Every move records the blocks it touched so that it can be
undone (reverted) or replayed (same_move), and reports the log Hastings
ratio of the proposal. A move that cannot produce a valid state reports a
log Hastings ratio of -inf, which a sampler rejects outright.

The tree itself is never touched, only block counts and fractions.
"""

from __future__ import annotations
import math
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration
from .Colouring import get_colour
from .Validator import Validator

if TYPE_CHECKING:
    from .TransmissionTreeLikelihood import TransmissionTreeLikelihood

# attempts at finding a branch with a block before giving up
BOUNDARY_ATTEMPTS : int = 100

#########################
#### EXCEPTION CLASS ####
#########################

class MoveError(Exception):
    def __init__(self, message : str = "Error making a move") -> None:
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def _default_rng() -> np.random.Generator:
    seed : int = random.randint(0, 10000)
    return np.random.default_rng(seed)


def _sorted_fractions(rng : np.random.Generator) -> tuple[float, float]:
    start, end = sorted(rng.random(2))
    return float(start), float(end)


def eligible_infections(tree : TimeTree,
                        blocks : BlockConfiguration) -> list[int]:
    """
    The infections that can be removed while keeping a valid colouring,
    listed by branch. A single infection is removable unless it separates
    two sampled hosts. A block can lose either of its boundary infections,
    so its branch is listed twice.

    Args:
        tree (TimeTree): the time tree.
        blocks (BlockConfiguration): per-branch block parameters.
    Returns:
        list[int]: branch (node) index of every eligible infection.
    """
    _, colours = get_colour(tree, blocks)
    leaf_count = tree.get_leaf_node_count()
    eligible : list[int] = []
    for node in tree:
        if node.is_root():
            continue
        nr = node.get_nr()
        count = blocks.get_count(nr)
        if count == 0:
            if not (colours[nr] < leaf_count
                    and colours[node.get_parent()] < leaf_count):
                eligible.append(nr)
        elif count > 0:
            eligible.extend((nr, nr))
    return eligible


def choose_branch_by_length(tree : TimeTree,
                            rng : np.random.Generator) -> int:
    """
    Pick a uniformly random point on the tree and return the branch it lies
    on.

    Args:
        tree (TimeTree): the time tree.
        rng (np.random.Generator): random number generator.
    Returns:
        int: index of the node below the chosen point.
    """
    r = rng.random() * tree.total_length()
    last = -1
    for node in tree:
        if node.is_root():
            continue
        last = node.get_nr()
        if r < node.get_length():
            return last
        r -= node.get_length()
    if last == -1:
        raise MoveError("The tree has no branches")
    # rounding left r just past the final branch
    return last

##############
#### MOVE ####
##############

class Move(ABC):
    """
    Abstract superclass for all block moves.

    A move is executed on a TransmissionTreeLikelihood and makes a
    reversible edit to its block configuration.
    """

    def __init__(self, rng : np.random.Generator | None = None) -> None:
        """
        Args:
            rng (np.random.Generator | None, optional): random number
                                                        generator. Defaults
                                                        to a randomly seeded
                                                        one.
        Returns:
            N/A
        """
        self.rng : np.random.Generator = rng if rng is not None \
                                         else _default_rng()
        self.model : TransmissionTreeLikelihood | None = None
        # previous (count, start, end) of every branch touched
        self.undo_info : dict[int, tuple[int, float, float]] = {}
        # (count, start, end) of every branch after the move
        self.same_move_info : dict[int, tuple[int, float, float]] = {}
        self._log_hastings : float = 0.0

    @abstractmethod
    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        """
        *ABSTRACT METHOD*

        Edit the blocks in place, recording every touched branch first with
        _touch.

        Args:
            tree (TimeTree): the time tree.
            blocks (BlockConfiguration): the blocks to edit.
        Returns:
            float: the log Hastings ratio.
        """
        pass

    def _touch(self, blocks : BlockConfiguration, nr : int) -> None:
        if nr not in self.undo_info:
            self.undo_info[nr] = blocks.get_block(nr)

    def execute(self, model : TransmissionTreeLikelihood) \
                -> TransmissionTreeLikelihood:
        """
        Apply the move to a model.

        Args:
            model (TransmissionTreeLikelihood): the model to edit.
        Returns:
            TransmissionTreeLikelihood: the edited model.
        """
        self.model = model
        self.undo_info = {}
        self._log_hastings = self.propose(model.tree, model.blocks)
        self.same_move_info = {nr : model.blocks.get_block(nr)
                               for nr in self.undo_info}
        model.mark_dirty()
        return model

    def undo(self, model : TransmissionTreeLikelihood) -> None:
        """
        Revert the blocks touched by the last execute.
        """
        for nr, (count, start, end) in self.undo_info.items():
            model.blocks.set_block(nr, count, start, end)
        model.mark_dirty()

    def same_move(self, model : TransmissionTreeLikelihood) -> None:
        """
        Replay the outcome of the last execute on another (identical) model.
        """
        for nr, (count, start, end) in self.same_move_info.items():
            model.blocks.set_block(nr, count, start, end)
        model.mark_dirty()

    def hastings_ratio(self) -> float:
        return self._log_hastings

#####################
#### BLOCK MOVES ####
#####################

class BlockBoundaryMove(Move):
    """
    Redraw the boundaries of a randomly chosen branch that carries at least
    one infection. The block count is unchanged.
    """

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        dimension = blocks.get_dimension()
        nr = int(self.rng.integers(dimension))
        attempts = 0
        while blocks.get_count(nr) == -1 and attempts < BOUNDARY_ATTEMPTS:
            nr = int(self.rng.integers(dimension))
            attempts += 1

        count = blocks.get_count(nr)
        if count == -1:
            return 0.0
        self._touch(blocks, nr)
        if count == 0:
            fraction = float(self.rng.random())
            blocks.set_block(nr, 0, fraction, fraction)
        else:
            start, end = _sorted_fractions(self.rng)
            blocks.set_block(nr, count, start, end)
        return 0.0


class InsertInfectionMove(Move):
    """
    Add one infection at a uniformly random point of the tree.

    Hastings ratio: probability of picking this infection for removal in
    the reverse move over the density of inserting it here.
    """

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        nr = choose_branch_by_length(tree, self.rng)
        self._touch(blocks, nr)
        count = blocks.get_count(nr)
        if count == -1:
            fraction = float(self.rng.random())
            blocks.set_block(nr, 0, fraction, fraction)
        elif count == 0:
            start, end = _sorted_fractions(self.rng)
            blocks.set_block(nr, 1, start, end)
        else:
            # the new infection goes inside the block
            blocks.set_count(nr, count + 1)

        eligible = len(eligible_infections(tree, blocks))
        length = tree.get_node(nr).get_length()
        return math.log(1.0 / eligible) - math.log(length / tree.total_length())


class RemoveInfectionMove(Move):
    """
    Remove one infection chosen uniformly among those whose removal keeps
    the colouring valid. Reports -inf and changes nothing when there is none.
    """

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        eligible = eligible_infections(tree, blocks)
        if not eligible:
            return -math.inf

        nr = eligible[int(self.rng.integers(len(eligible)))]
        self._touch(blocks, nr)
        count = blocks.get_count(nr)
        if count == 0:
            blocks.set_count(nr, -1)
        elif count == 1:
            # one infection left, start and end coincide
            if self.rng.random() < 0.5:
                fraction = blocks.get_end(nr)
            else:
                fraction = blocks.get_start(nr)
            blocks.set_block(nr, 0, fraction, fraction)
        else:
            blocks.set_count(nr, count - 1)

        length = tree.get_node(nr).get_length()
        return math.log(length / tree.total_length()) \
               - math.log(1.0 / len(eligible))


class ConstantCountMove(Move):
    """
    Remove one infection as RemoveInfectionMove does, then insert one as
    InsertInfectionMove does, so the total number of infections is
    unchanged. The pair is treated as symmetric (log Hastings ratio 0).
    Reports -inf when no infection can be removed.
    """

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        removal = RemoveInfectionMove(self.rng)
        insertion = InsertInfectionMove(self.rng)
        # both halves record into this move so a single undo reverts them
        removal.undo_info = self.undo_info
        insertion.undo_info = self.undo_info

        if removal.propose(tree, blocks) == -math.inf:
            return -math.inf
        insertion.propose(tree, blocks)
        return 0.0

##########################
#### INFECTION MOVERS ####
##########################

class InfectionShift(Move):
    """
    Base for moves that take one infection off a branch and put one on
    another branch. Blocks that keep more than one infection get fresh
    boundaries.
    """

    def _remove(self, blocks : BlockConfiguration, nr : int) -> None:
        self._touch(blocks, nr)
        count = blocks.get_count(nr) - 1
        if count == -1:
            blocks.set_count(nr, -1)
        elif count == 0:
            if self.rng.random() < 0.5:
                fraction = blocks.get_end(nr)
            else:
                fraction = blocks.get_start(nr)
            blocks.set_block(nr, 0, fraction, fraction)
        else:
            start, end = _sorted_fractions(self.rng)
            blocks.set_block(nr, count, start, end)

    def _insert(self, blocks : BlockConfiguration, nr : int) -> None:
        self._touch(blocks, nr)
        count = blocks.get_count(nr) + 1
        if count == 0:
            fraction = float(self.rng.random())
            blocks.set_block(nr, 0, fraction, fraction)
        else:
            start, end = _sorted_fractions(self.rng)
            blocks.set_block(nr, count, start, end)

    def _is_valid(self, tree : TimeTree, blocks : BlockConfiguration) -> bool:
        valid, colours = get_colour(tree, blocks)
        return valid and Validator(tree, blocks).is_valid(colours)


class InfectionMover(InfectionShift):
    """
    Take an infection off a random branch and put it elsewhere: on the
    sibling branch, or at a uniformly random point of the tree.
    """

    def __init__(self,
                 rng : np.random.Generator | None = None,
                 to_sibling : bool | None = None) -> None:
        """
        Args:
            rng (np.random.Generator | None, optional): random number
                                                        generator.
            to_sibling (bool | None, optional): force the sibling (True) or
                        the whole tree (False) as destination. Defaults to
                        None, a coin flip per execution.
        Returns:
            N/A
        """
        super().__init__(rng)
        self.to_sibling : bool | None = to_sibling

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        branches = [node.get_nr() for node in tree if not node.is_root()]
        source = branches[int(self.rng.integers(len(branches)))]
        if blocks.get_count(source) < 0:
            return -math.inf

        to_sibling = self.to_sibling
        if to_sibling is None:
            to_sibling = bool(self.rng.random() < 0.5)

        self._remove(blocks, source)
        if to_sibling:
            parent = tree.get_node(tree.get_node(source).get_parent())
            target = [child for child in parent.get_children()
                      if child != source][0]
            log_hastings = 0.0
        else:
            target = choose_branch_by_length(tree, self.rng)
            log_hastings = math.log(tree.get_node(source).get_length()) \
                           - math.log(tree.get_node(target).get_length())
        self._insert(blocks, target)

        if not self._is_valid(tree, blocks):
            return -math.inf
        return log_hastings


class AdjacentInfectionMover(InfectionShift):
    """
    Pick an internal node and move one infection between the branches that
    meet at it: the branch above it (unless it is the root) and the two
    below it.

    Hastings ratio: the number of adjacent branches carrying infections
    before the move over the number after it.
    """

    def _adjacent(self, tree : TimeTree, nr : int) -> list[int]:
        node = tree.get_node(nr)
        above = [] if node.is_root() else [nr]
        return above + list(node.get_children())

    def _infected(self,
                  branches : list[int],
                  blocks : BlockConfiguration) -> list[int]:
        return [nr for nr in branches if blocks.get_count(nr) > -1]

    def propose(self, tree : TimeTree, blocks : BlockConfiguration) -> float:
        leaf_count = tree.get_leaf_node_count()
        nr = leaf_count + int(self.rng.integers(
            tree.get_internal_node_count()))
        branches = self._adjacent(tree, nr)
        infected = self._infected(branches, blocks)
        if not infected:
            return -math.inf

        source = infected[int(self.rng.integers(len(infected)))]
        others = [other for other in branches if other != source]
        target = others[int(self.rng.integers(len(others)))]
        self._remove(blocks, source)
        self._insert(blocks, target)

        if not self._is_valid(tree, blocks):
            return -math.inf
        return math.log(len(infected)) \
               - math.log(len(self._infected(branches, blocks)))

##########################
#### PROPOSAL KERNELS ####
##########################

class ProposalKernel(ABC):
    """
    Abstract class that defines proposal kernel behavior.

    In general, simply must have a generate method that spits out a move.
    """

    def __init__(self) -> None:
        super().__init__()

    @abstractmethod
    def generate(self) -> Move:
        """
        *ABSTRACT METHOD*

        Generate the next move to apply to the model.

        Args:
            N/A
        Returns:
            Move: Any newly instantiated object that is a subclass of Move.
        """
        raise NotImplementedError("Calling abstract method from the "
                                  "ProposalKernel superclass. Please "
                                  "implement a subclass with a generate "
                                  "method that returns a subclass of type "
                                  "'Move'")


class BlockOperatorKernel(ProposalKernel):
    """
    Half of the time a boundary move, otherwise an insertion or a removal
    with equal probability. With keep_constant_count the insertion and
    removal are replaced by a paired removal and insertion.
    """

    def __init__(self,
                 rng : np.random.Generator | None = None,
                 keep_constant_count : bool = False) -> None:
        """
        Args:
            rng (np.random.Generator | None, optional): random number
                        generator shared with the generated moves. Defaults
                        to a randomly seeded one.
            keep_constant_count (bool, optional): keep the total number of
                        infections fixed. Defaults to False.
        Returns:
            N/A
        """
        super().__init__()
        self.rng : np.random.Generator = rng if rng is not None \
                                         else _default_rng()
        self.keep_constant_count : bool = keep_constant_count
        self.iter : int = 0

    def generate(self) -> Move:
        """
        Returns:
            Move: a BlockBoundaryMove, ConstantCountMove,
                  RemoveInfectionMove or InsertInfectionMove.
        """
        self.iter += 1
        if self.rng.random() < 0.5:
            return BlockBoundaryMove(self.rng)
        if self.keep_constant_count:
            return ConstantCountMove(self.rng)
        if self.rng.random() < 0.5:
            return RemoveInfectionMove(self.rng)
        return InsertInfectionMove(self.rng)
