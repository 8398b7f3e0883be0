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

Checks that a colouring describes a legal partition of a time tree into
hosts. All checks are a single sweep over the nodes.
"""

from __future__ import annotations
from collections import Counter

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration

FRACTION_TOLERANCE : float = 1e-12


class Validator:
    """
    Validates colourings of one tree against one block configuration.
    """

    def __init__(self, tree : TimeTree, blocks : BlockConfiguration) -> None:
        """
        Args:
            tree (TimeTree): the time tree.
            blocks (BlockConfiguration): per-branch block parameters.
        Returns:
            N/A
        """
        self.tree : TimeTree = tree
        self.blocks : BlockConfiguration = blocks
        self.reason : str = ""

    def is_valid(self, colours : np.ndarray) -> bool:
        """
        A colouring is valid when

        - every node has a colour and leaf i has colour i,
        - a branch carries a transition exactly when the colours across it
          differ,
        - every colour occupies a single connected region (it has exactly one
          region top: the root, or a node whose branch carries a transition),
        - block fractions satisfy 0 <= start <= end <= 1, with start == end
          for a single transition.

        Since leaf i carries colour i and colour i has a single region, the
        region of a sampled colour always terminates at its own leaf.

        Args:
            colours (np.ndarray): one colour per node.
        Returns:
            bool: True if the colouring is valid. On failure, self.reason
                  holds a short description.
        """
        self.reason = ""
        tree = self.tree
        blocks = self.blocks

        if len(colours) != tree.get_node_count():
            return self._fail("colouring has the wrong dimension")

        tops : Counter = Counter()
        for node in tree:
            nr = node.get_nr()
            colour = colours[nr]
            if colour < 0:
                return self._fail(f"node {nr} has no colour")
            if node.is_leaf() and colour != nr:
                return self._fail(f"leaf {nr} has colour {colour}")
            if node.is_root():
                tops[colour] += 1
                continue

            count = blocks.get_count(nr)
            parent_colour = colours[node.get_parent()]
            if count == -1:
                if colour != parent_colour:
                    return self._fail(f"colour changes on branch {nr} "
                                      "without a transition")
                continue

            if colour == parent_colour:
                return self._fail(f"transition on branch {nr} does not "
                                  "change colour")
            tops[colour] += 1

            start = blocks.get_start(nr)
            end = blocks.get_end(nr)
            if start < 0 or end > 1 or start > end + FRACTION_TOLERANCE:
                return self._fail(f"block on branch {nr} has fractions "
                                  f"{start}, {end}")
            if count == 0 and abs(start - end) > FRACTION_TOLERANCE:
                return self._fail(f"single transition on branch {nr} has "
                                  "start != end")

        for colour, top_count in tops.items():
            if top_count > 1:
                return self._fail(f"colour {colour} occupies {top_count} "
                                  "disjoint regions")
        return True

    def _fail(self, reason : str) -> bool:
        self.reason = reason
        return False
