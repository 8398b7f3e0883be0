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

Derives a host colour for every node of a time tree from the block
configuration.

A colour region is a maximal set of nodes connected by branches without a
transition. The colour of leaf i is always i (the sampled host i). A region
that contains no leaf belongs to an unsampled host and receives a fresh
colour >= L.

The colouring is computed in two passes:

1. post-order: find, for every node, the sampled colour that flows up to it
   through transition free branches. If two different sampled colours meet
   at a node the configuration has a path between two samples without a
   transmission, and no valid colouring exists.
2. pre-order: a node inherits the colour of its parent when its branch has
   no transition. Otherwise it starts a new region, which takes the sampled
   colour flowing into it or a freshly minted unsampled colour.
"""

from __future__ import annotations
from typing import Any, Callable, Hashable

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration

NO_COLOUR : int = -1

###################
#### COLOURING ####
###################

def get_colour(tree : TimeTree,
               blocks : BlockConfiguration) -> tuple[bool, np.ndarray]:
    """
    Colour the nodes of a tree.

    Args:
        tree (TimeTree): the time tree.
        blocks (BlockConfiguration): per-branch block parameters.
    Returns:
        tuple[bool, np.ndarray]: (True, colours) when a valid colouring
                                 exists, otherwise (False, colours) where
                                 colours may be only partially assigned
                                 (NO_COLOUR marks unassigned nodes).
    """
    node_count = tree.get_node_count()
    leaf_count = tree.get_leaf_node_count()
    colours = np.full(node_count, NO_COLOUR, dtype = int)

    # pass 1: sampled colour flowing up through transition free branches
    sampled = np.full(node_count, NO_COLOUR, dtype = int)
    for nr in tree.postorder():
        node = tree.get_node(nr)
        if node.is_leaf():
            sampled[nr] = nr
            continue
        flowing = [sampled[child] for child in node.get_children()
                   if blocks.get_count(child) == -1
                   and sampled[child] != NO_COLOUR]
        if len(flowing) > 1:
            return False, colours
        if flowing:
            sampled[nr] = flowing[0]

    # pass 2: inherit or start a new region
    next_colour = leaf_count
    for nr in tree.preorder():
        node = tree.get_node(nr)
        if not node.is_root() and blocks.get_count(nr) == -1:
            colours[nr] = colours[node.get_parent()]
        elif sampled[nr] != NO_COLOUR:
            colours[nr] = sampled[nr]
        else:
            colours[nr] = next_colour
            next_colour += 1

    return True, colours


def transition_branches(tree : TimeTree, colours : np.ndarray) -> list[int]:
    """
    Indices of the nodes whose branch carries a change of colour.

    Args:
        tree (TimeTree): the time tree.
        colours (np.ndarray): a colouring of the tree.
    Returns:
        list[int]: node indices, in index order.
    """
    return [node.get_nr() for node in tree
            if not node.is_root()
            and colours[node.get_nr()] != colours[node.get_parent()]]

#########################
#### COLOURING CACHE ####
#########################

class ColouringCache:
    """
    Memoises a value derived from the block configuration. The value is
    recomputed only when the key handed to get differs from the key it was
    computed for, or after an explicit invalidate.
    """

    def __init__(self) -> None:
        self._key : Hashable | None = None
        self._value : Any = None
        self._valid : bool = False
        self.recomputations : int = 0

    def get(self, key : Hashable, compute : Callable[[], Any]) -> Any:
        """
        Return the cached value for key, computing it if necessary.

        Args:
            key (Hashable): the configuration version the value belongs to.
            compute (Callable[[], Any]): recomputes the value.
        Returns:
            Any: the (possibly freshly) computed value.
        """
        if not self._valid or key != self._key:
            self._value = compute()
            self._key = key
            self._valid = True
            self.recomputations += 1
        return self._value

    def put(self, key : Hashable, value : Any) -> None:
        self._key = key
        self._value = value
        self._valid = True

    def invalidate(self) -> None:
        self._valid = False

    def is_valid(self, key : Hashable) -> bool:
        return self._valid and key == self._key
