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

Likelihood of a block: a chain of hidden (unsampled, unobserved) hosts on a
single branch. With n hidden generations, each generation interval Gamma
distributed with shape a and rate b, the duration tau of the block has a
Gamma(n * a, b) density. Each hidden host escapes observation with
probability 1 - rho, so

    L(tau | n, Y) = (1 - rho)^n * g(tau ; n * a, b) / Z(Y)

    Z(Y) = sum_{m >= 1} (1 - rho)^m * G(Y ; m * a, b)

where Y is the time between the start of the block and the end of the study.
The series is truncated once a term drops below a tolerance. After N terms
the neglected tail is at most (1 - rho)^(N + 1) / rho.
"""

from __future__ import annotations
import math

import scipy.special
import scipy.stats

DEFAULT_TOLERANCE : float = 1e-7
DEFAULT_MAX_TERMS : int = 1_000_000

#########################
#### EXCEPTION CLASS ####
#########################

class BlockLikelihoodError(Exception):
    def __init__(self, message : str = "Error in block likelihood") -> None:
        self.message = message
        super().__init__(self.message)

#################
#### HELPERS ####
#################

def dgamma(x : float, shape : float, rate : float) -> float:
    """
    Gamma density.

    Raises:
        BlockLikelihoodError: if x < 0.
    Args:
        x (float): the point.
        shape (float): Gamma shape.
        rate (float): Gamma rate.
    Returns:
        float: the density at x.
    """
    if x < 0:
        raise BlockLikelihoodError(f"x should be non-negative, got {x}")
    return float(scipy.stats.gamma.pdf(x, shape, scale = 1.0 / rate))


def pgamma(x : float, shape : float, rate : float) -> float:
    """
    Gamma cumulative distribution function, 0 for x <= 0.
    """
    if x <= 0:
        return 0.0
    return float(scipy.special.gammainc(shape, x * rate))

##########################
#### BLOCK LIKELIHOOD ####
##########################

class BlockLikelihood:
    """
    Block likelihood for fixed calibration constant rho and the generation
    interval of the transmission hazard.
    """

    def __init__(self,
                 rho : float,
                 shape : float,
                 rate : float,
                 tolerance : float = DEFAULT_TOLERANCE,
                 max_terms : int = DEFAULT_MAX_TERMS) -> None:
        """
        Raises:
            BlockLikelihoodError: if rho is outside [0, 1), or shape or rate
                                  is not positive.
        Args:
            rho (float): probability that a hidden host is observed.
            shape (float): generation interval shape a.
            rate (float): generation interval rate b.
            tolerance (float, optional): series truncation tolerance.
                                         Defaults to 1e-7.
            max_terms (int, optional): series iteration cap. Defaults to
                                       1000000.
        Returns:
            N/A
        """
        if not 0 <= rho < 1:
            raise BlockLikelihoodError(f"rho must be in [0, 1), got {rho}")
        if shape <= 0 or rate <= 0:
            raise BlockLikelihoodError("Generation interval shape and rate "
                                       "must be > 0")
        self.rho : float = rho
        self.shape : float = shape
        self.rate : float = rate
        self.tolerance : float = tolerance
        self.max_terms : int = max_terms
        self.last_terms : int = 0

    def block_condition(self, y : float, max_terms : int | None = None) \
                        -> float:
        """
        Z(Y), summed until a term falls below the tolerance or the iteration
        cap is hit. Hitting the cap silently truncates the series, see
        residual_bound.

        Args:
            y (float): time from the start of the block to the end of the
                       study.
            max_terms (int | None, optional): overrides the iteration cap.
        Returns:
            float: Z(Y). The number of terms summed is left in last_terms.
        """
        cap = self.max_terms if max_terms is None else max_terms
        z = 0.0
        n = 1
        term = math.inf
        while term > self.tolerance and n <= cap:
            term = (1.0 - self.rho) ** n * pgamma(y, n * self.shape, self.rate)
            z += term
            n += 1
        self.last_terms = n - 1
        return z

    def residual_bound(self, terms : int) -> float:
        """
        Upper bound on the part of Z(Y) not summed after a number of terms.

        Args:
            terms (int): number of terms summed.
        Returns:
            float: (1 - rho)^(terms + 1) / rho, inf when rho == 0.
        """
        if self.rho == 0:
            return math.inf
        return (1.0 - self.rho) ** (terms + 1) / self.rho

    def log_block_likelihood(self, tau : float, n : int, y : float) -> float:
        """
        Args:
            tau (float): block duration.
            n (int): number of hidden generations, > 0.
            y (float): time from the start of the block to the end of the
                       study.
        Returns:
            float: log L(tau | n, Y), -inf when Z(Y) == 0.
        """
        if tau < 0:
            raise BlockLikelihoodError(f"Block duration must be >= 0, got "
                                       f"{tau}")
        z = self.block_condition(y)
        if z == 0:
            return -math.inf
        log_density = float(scipy.stats.gamma.logpdf(tau, n * self.shape,
                                                      scale = 1.0 / self.rate))
        return n * math.log1p(-self.rho) + log_density - math.log(z)

    def branch_contribution(self,
                            start_height : float,
                            end_height : float,
                            count : int,
                            end_time : float) -> float:
        """
        Log likelihood of the block on one branch, given its start and end
        as heights.

        Args:
            start_height (float): the youngest transition of the block.
            end_height (float): the oldest transition of the block.
            count (int): block count (number of hidden generations).
            end_time (float): end of the study, as a height.
        Returns:
            float: the log likelihood.
        """
        return self.log_block_likelihood(end_height - start_height,
                                         count,
                                         end_height - end_time)
