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

Gamma shaped hazard functions for the two events a host can experience:
being sampled, and causing a new transmission.

For a host infected at (forward) time d, the hazard of the event at time t is

    h(t, d) = C * g(t - d ; shape, rate)

where g is the Gamma density and C a constant that scales the total hazard.
The cumulative hazard is C * G(t - d), with G the Gamma CDF, so the
probability that the event has not happened by t is exp(-C * G(t - d)).
"""

from __future__ import annotations
import math
import random

import numpy as np
import scipy.stats

#########################
#### EXCEPTION CLASS ####
#########################

class HazardError(Exception):
    """
    Raised when a hazard function is given nonsensical parameters.
    """

    def __init__(self, message : str = "Invalid hazard function") -> None:
        """
        Args:
            message (str, optional): The error message. Defaults to
                                     "Invalid hazard function".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

#########################
#### HAZARD FUNCTION ####
#########################

class GammaHazardFunction:
    """
    Hazard with a Gamma shaped time profile and a constant total weight.

    constant -- C, the expected number of events over the lifetime of an
                infection (for sampling, a value below 1)
    shape -- shape of the Gamma profile
    rate -- rate of the Gamma profile
    rng -- numpy random number generator used by simulate
    """

    def __init__(self,
                 constant : float,
                 shape : float,
                 rate : float,
                 rng : np.random.Generator | None = None) -> None:
        """
        Raises:
            HazardError: if constant < 0, shape <= 0 or rate <= 0.
        Args:
            constant (float): total hazard weight C.
            shape (float): Gamma shape.
            rate (float): Gamma rate.
            rng (np.random.Generator | None, optional): random number
                                                        generator. Defaults
                                                        to a randomly seeded
                                                        generator.
        Returns:
            N/A
        """
        self.set_constant(constant)
        self._shape : float = 1.0
        self._rate : float = 1.0
        self.set_shape(shape)
        self.set_rate(rate)

        if rng is not None:
            self.rng : np.random.Generator = rng
        else:
            seed : int = random.randint(0, 10000)
            self.rng : np.random.Generator = np.random.default_rng(seed)

    def set_constant(self, value : float) -> None:
        """
        Raises:
            HazardError: if value < 0
        Args:
            value (float): the new constant.
        Returns:
            N/A
        """
        if value < 0:
            raise HazardError("Hazard constant must be >= 0")
        self._constant : float = float(value)

    def set_shape(self, value : float) -> None:
        """
        Raises:
            HazardError: if value <= 0
        Args:
            value (float): the new Gamma shape.
        Returns:
            N/A
        """
        if value <= 0:
            raise HazardError("Hazard shape must be > 0")
        self._shape = float(value)
        self._refresh()

    def set_rate(self, value : float) -> None:
        """
        Raises:
            HazardError: if value <= 0
        Args:
            value (float): the new Gamma rate.
        Returns:
            N/A
        """
        if value <= 0:
            raise HazardError("Hazard rate must be > 0")
        self._rate = float(value)
        self._refresh()

    def get_constant(self) -> float:
        return self._constant

    def get_shape(self) -> float:
        return self._shape

    def get_rate(self) -> float:
        return self._rate

    def _refresh(self) -> None:
        self._dist = scipy.stats.gamma(self._shape, scale = 1.0 / self._rate)

    def log_hazard(self, t : float, d : float) -> float:
        """
        Log of the instantaneous hazard at time t for a host infected at d.

        Args:
            t (float): event time (forward time).
            d (float): infection time (forward time).
        Returns:
            float: log h(t, d); -inf when t < d or C == 0.
        """
        if self._constant == 0:
            return -math.inf
        return math.log(self._constant) + float(self._dist.logpdf(t - d))

    def log_survival(self, t : float, d : float) -> float:
        """
        Log probability that the event has not happened between d and t.

        Args:
            t (float): end of the window (forward time).
            d (float): infection time (forward time).
        Returns:
            float: -C * G(t - d)
        """
        return -self._constant * float(self._dist.cdf(t - d))

    def simulate(self, size : int | None = None) -> float | np.ndarray:
        """
        Draw the time since infection of the first event. With probability
        exp(-C) the event never happens and inf is returned.

        Args:
            size (int | None, optional): number of draws. Defaults to None,
                                         a single float.
        Returns:
            float | np.ndarray: event time(s).
        """
        u = self.rng.random(size)
        if self._constant == 0:
            times = np.full(np.shape(u), np.inf)
        else:
            with np.errstate(divide = "ignore"):
                target = np.atleast_1d(-np.log(u) / self._constant)
            times = np.full(target.shape, np.inf)
            happens = target < 1.0
            times[happens] = self._dist.ppf(target[happens])
        if size is None:
            return float(np.ravel(times)[0])
        return times

    def __repr__(self) -> str:
        return f"GammaHazardFunction(constant={self._constant}, " \
               f"shape={self._shape}, rate={self._rate})"
