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

Per-branch block parameters of a transmission tree hypothesis. For the branch
above node i:

    count[i] == -1 : no host transition on the branch
    count[i] ==  0 : exactly one transition at start[i] == end[i]
    count[i] ==  k : a block of k + 2 transitions, the first (oldest) at
                     end[i] and the last at start[i]

start and end are fractions of the branch length measured upwards from the
node. The root has no branch, so its entry is always -1.

Every mutation bumps a version counter, which is what likelihood caches key
their derived colourings on.
"""

from __future__ import annotations
import warnings
from typing import Callable

import numpy as np

DEFAULT_FRACTION : float = 0.5

#########################
#### EXCEPTION CLASS ####
#########################

class BlockParameterError(Exception):
    """
    Raised when a block parameter is set outside of its bounds.
    """

    def __init__(self, message : str = "Invalid block parameter") -> None:
        """
        Args:
            message (str, optional): The error message. Defaults to
                                     "Invalid block parameter".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

#############################
#### BLOCK CONFIGURATION ####
#############################

class BlockConfiguration:
    """
    Container for the (start, end, count) triple of every branch.
    """

    def __init__(self,
                 start : list[float] | np.ndarray,
                 end : list[float] | np.ndarray,
                 count : list[int] | np.ndarray) -> None:
        """
        Args:
            start (list[float] | np.ndarray): block start fractions.
            end (list[float] | np.ndarray): block end fractions.
            count (list[int] | np.ndarray): block counts, each >= -1.
        Returns:
            N/A
        """
        self.start : np.ndarray = np.array(start, dtype = float)
        self.end : np.ndarray = np.array(end, dtype = float)
        self.count : np.ndarray = np.array(count, dtype = int)
        self.version : int = 0
        self._listeners : list[Callable[[BlockConfiguration], None]] = []

    @classmethod
    def empty(cls, node_count : int) -> BlockConfiguration:
        """
        A configuration without any transition.

        Args:
            node_count (int): number of nodes in the tree.
        Returns:
            BlockConfiguration: all counts -1, all fractions 0.5.
        """
        return cls(np.full(node_count, DEFAULT_FRACTION),
                   np.full(node_count, DEFAULT_FRACTION),
                   np.full(node_count, -1, dtype = int))

    def sanity_check(self, node_count : int, root_nr : int | None = None) -> None:
        """
        Repair a configuration whose dimension or bounds do not fit a tree
        with node_count nodes. Each repair emits a warning, none is fatal.

        Args:
            node_count (int): number of nodes in the tree.
            root_nr (int | None, optional): index of the root. Defaults to
                                            the last node.
        Returns:
            N/A
        """
        if root_nr is None:
            root_nr = node_count - 1

        for name, default in (("start", DEFAULT_FRACTION),
                              ("end", DEFAULT_FRACTION),
                              ("count", -1)):
            values : np.ndarray = getattr(self, name)
            if len(values) != node_count:
                warnings.warn(f"Setting dimension of block {name} parameter "
                              f"from {len(values)} to {node_count}")
                resized = np.full(node_count, default, dtype = values.dtype)
                keep = min(len(values), node_count)
                resized[:keep] = values[:keep]
                setattr(self, name, resized)

        for name in ("start", "end"):
            values = getattr(self, name)
            if np.any(values < 0) or np.any(values > 1):
                warnings.warn(f"Clamping block {name} fractions into [0, 1]")
                setattr(self, name, np.clip(values, 0.0, 1.0))

        if np.any(self.count < -1):
            warnings.warn("Setting lower bound of block count parameter to -1")
            self.count = np.maximum(self.count, -1)

        if self.count[root_nr] != -1:
            warnings.warn("The root has no branch, setting its block count "
                          "to -1")
            self.count[root_nr] = -1

        self._changed()

    def get_dimension(self) -> int:
        return len(self.count)

    def get_count(self, i : int) -> int:
        return int(self.count[i])

    def get_start(self, i : int) -> float:
        return float(self.start[i])

    def get_end(self, i : int) -> float:
        return float(self.end[i])

    def set_count(self, i : int, value : int) -> None:
        """
        Set the block count of branch i.

        Raises:
            BlockParameterError: if value < -1.
        Args:
            i (int): node index.
            value (int): the new count.
        Returns:
            N/A
        """
        if value < -1:
            raise BlockParameterError(f"Block count must be >= -1, got "
                                      f"{value}")
        self.count[i] = value
        self._changed()

    def set_start(self, i : int, value : float) -> None:
        """
        Set the block start fraction of branch i.

        Raises:
            BlockParameterError: if value is outside [0, 1].
        Args:
            i (int): node index.
            value (float): the new fraction.
        Returns:
            N/A
        """
        self._check_fraction(value, "start")
        self.start[i] = value
        self._changed()

    def set_end(self, i : int, value : float) -> None:
        """
        Set the block end fraction of branch i.

        Raises:
            BlockParameterError: if value is outside [0, 1].
        Args:
            i (int): node index.
            value (float): the new fraction.
        Returns:
            N/A
        """
        self._check_fraction(value, "end")
        self.end[i] = value
        self._changed()

    def set_block(self,
                  i : int,
                  count : int,
                  start : float,
                  end : float) -> None:
        """
        Set all three values of branch i at once (a single version bump).

        Raises:
            BlockParameterError: if any value is out of bounds.
        Args:
            i (int): node index.
            count (int): the new count.
            start (float): the new start fraction.
            end (float): the new end fraction.
        Returns:
            N/A
        """
        if count < -1:
            raise BlockParameterError(f"Block count must be >= -1, got "
                                      f"{count}")
        self._check_fraction(start, "start")
        self._check_fraction(end, "end")
        self.count[i] = count
        self.start[i] = start
        self.end[i] = end
        self._changed()

    def get_block(self, i : int) -> tuple[int, float, float]:
        return self.get_count(i), self.get_start(i), self.get_end(i)

    def add_listener(self,
                     listener : Callable[[BlockConfiguration], None]) -> None:
        """
        Register a callback invoked after every mutation.

        Args:
            listener (Callable[[BlockConfiguration], None]): the callback.
        Returns:
            N/A
        """
        self._listeners.append(listener)

    def copy(self) -> BlockConfiguration:
        return BlockConfiguration(self.start.copy(),
                                  self.end.copy(),
                                  self.count.copy())

    def _check_fraction(self, value : float, name : str) -> None:
        if not 0.0 <= value <= 1.0:
            raise BlockParameterError(f"Block {name} fraction must be in "
                                      f"[0, 1], got {value}")

    def _changed(self) -> None:
        self.version += 1
        for listener in self._listeners:
            listener(self)
