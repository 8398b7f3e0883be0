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

Within-host effective population size models. Time is measured backwards
from the first event of a segment, so t = 0 is the most recent event.
"""

from __future__ import annotations
import math
from abc import ABC, abstractmethod

#########################
#### EXCEPTION CLASS ####
#########################

class PopulationFunctionError(Exception):
    def __init__(self, message : str = "Invalid population function") -> None:
        self.message = message
        super().__init__(self.message)

#############################
#### POPULATION FUNCTION ####
#############################

class PopulationFunction(ABC):
    """
    Abstract population size model. Subclasses supply the population size at
    a time and the integral of its reciprocal over an interval.
    """

    @abstractmethod
    def get_pop_size(self, t : float) -> float:
        """
        *ABSTRACT METHOD*

        Args:
            t (float): time (backwards).
        Returns:
            float: the effective population size at t.
        """
        pass

    @abstractmethod
    def get_integral(self, start : float, finish : float) -> float:
        """
        *ABSTRACT METHOD*

        Args:
            start (float): start of the interval.
            finish (float): end of the interval.
        Returns:
            float: the integral of 1 / N(t) from start to finish.
        """
        pass

    def is_constant(self) -> bool:
        return False


class ConstantPopulation(PopulationFunction):
    """
    N(t) = pop_size for all t.
    """

    def __init__(self, pop_size : float) -> None:
        """
        Raises:
            PopulationFunctionError: if pop_size <= 0
        Args:
            pop_size (float): the population size.
        Returns:
            N/A
        """
        if pop_size <= 0:
            raise PopulationFunctionError("Population size must be > 0")
        self.pop_size : float = float(pop_size)

    def get_pop_size(self, t : float) -> float:
        return self.pop_size

    def get_integral(self, start : float, finish : float) -> float:
        return (finish - start) / self.pop_size

    def is_constant(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"ConstantPopulation({self.pop_size})"


class ExponentialGrowth(PopulationFunction):
    """
    N(t) = N0 * exp(-g * t), a population that was smaller further back in
    time when g > 0.
    """

    def __init__(self, pop_size : float, growth_rate : float) -> None:
        """
        Raises:
            PopulationFunctionError: if pop_size <= 0
        Args:
            pop_size (float): N0, the population size at t = 0.
            growth_rate (float): g, the exponential growth rate.
        Returns:
            N/A
        """
        if pop_size <= 0:
            raise PopulationFunctionError("Population size must be > 0")
        self.pop_size : float = float(pop_size)
        self.growth_rate : float = float(growth_rate)

    def get_pop_size(self, t : float) -> float:
        return self.pop_size * math.exp(-self.growth_rate * t)

    def get_integral(self, start : float, finish : float) -> float:
        g = self.growth_rate
        if g == 0:
            return (finish - start) / self.pop_size
        return (math.exp(g * finish) - math.exp(g * start)) / \
               (self.pop_size * g)

    def __repr__(self) -> str:
        return f"ExponentialGrowth({self.pop_size}, {self.growth_rate})"
