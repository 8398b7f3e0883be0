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

Calibration constants tying the sampling and transmission hazards to the
probability that a chain of infections is never observed.

    lambda : mean number of onward transmissions of a host, accounting for
             the transmissions that happen before the host is sampled
    p0     : fixed point of x = (1 - Cs) * exp(lambda * (x - 1)), the
             probability that a host leaves no observed descendant
    phi    : 1 - p0 * (1 + lambda * (1 - p0) / (1 - Cs))
    rho    : 1 - exp(phi * S_tr(100) + S_s(100)), the probability that a
             hidden intermediate host of a block is observed

lambda is estimated once by simulation, everything else is closed form or
Newton iteration.
"""

from __future__ import annotations
import math

import numpy as np

from .HazardFunction import GammaHazardFunction

NEWTON_TOLERANCE : float = 1e-6
NEWTON_MAX_STEPS : int = 1000
DEFAULT_NUM_SAMPLES : int = 50000

# time horizon over which rho is evaluated
RHO_HORIZON : float = 100.0

#########################
#### EXCEPTION CLASS ####
#########################

class CalibrationError(Exception):
    """
    Raised when the hazard parameters do not admit calibration constants.
    """

    def __init__(self, message : str = "Calibration failed") -> None:
        self.message = message
        super().__init__(self.message)

######################
#### CLOSED FORMS ####
######################

def _fixed_point_residual(x : float, cs : float, lam : float) -> float:
    return x - (1 - cs) * math.exp(lam * (x - 1))


def get_p0(cs : float,
           lam : float,
           x0 : float = 0.1,
           tol : float = NEWTON_TOLERANCE,
           max_steps : int = NEWTON_MAX_STEPS) -> float:
    """
    Solve x = (1 - Cs) * exp(lambda * (x - 1)) by damped Newton iteration.
    A Newton step that would increase the residual is halved until it does
    not.

    Raises:
        CalibrationError: if Cs >= 1, the derivative vanishes, or the
                          iteration does not converge within max_steps.
    Args:
        cs (float): sampling hazard constant, < 1.
        lam (float): lambda, the onward transmission rate.
        x0 (float, optional): starting guess. Defaults to 0.1.
        tol (float, optional): residual tolerance. Defaults to 1e-6.
        max_steps (int, optional): iteration cap. Defaults to 1000.
    Returns:
        float: p0.
    """
    if cs >= 1:
        raise CalibrationError(f"The sampling constant must be < 1, got {cs}")

    x = x0
    residual = _fixed_point_residual(x, cs, lam)
    steps = 0
    while abs(residual) > tol and steps < max_steps:
        tmp = (1 - cs) * math.exp(lam * (x - 1))
        derivative = 1 - tmp * lam
        if derivative == 0:
            raise CalibrationError(f"Zero derivative at x = {x} while solving "
                                   "for p0")
        step = residual / derivative

        candidate = x - step
        candidate_residual = _fixed_point_residual(candidate, cs, lam)
        halvings = 0
        while abs(candidate_residual) > abs(residual) and halvings < 30:
            step /= 2
            candidate = x - step
            candidate_residual = _fixed_point_residual(candidate, cs, lam)
            halvings += 1

        x = candidate
        residual = candidate_residual
        steps += 1

    if abs(residual) > tol:
        raise CalibrationError(f"The p0 algorithm did not converge after "
                               f"{steps} iterations")
    return x


def get_lambda(cs : float, ctr : float, retained_fraction : float) -> float:
    """
    lambda = Cs * f * Ctr + (1 - Cs) * Ctr, where f is the fraction of
    transmissions that happen before sampling.
    """
    return cs * retained_fraction * ctr + (1 - cs) * ctr


def get_phi(cs : float, lam : float, p0 : float) -> float:
    return 1 - p0 * (1 + lam * (1 - p0) / (1 - cs))


def get_rho(phi : float,
            sampling : GammaHazardFunction,
            transmission : GammaHazardFunction) -> float:
    """
    Args:
        phi (float): see get_phi.
        sampling (GammaHazardFunction): the sampling hazard.
        transmission (GammaHazardFunction): the transmission hazard.
    Returns:
        float: rho.
    """
    return 1 - math.exp(transmission.log_survival(RHO_HORIZON, 0.0) * phi
                        + sampling.log_survival(RHO_HORIZON, 0.0))


def get_retained_fraction(sampling : GammaHazardFunction,
                          transmission : GammaHazardFunction,
                          num_samples : int = DEFAULT_NUM_SAMPLES) -> float:
    """
    Monte-Carlo estimate of the probability that the first transmission of
    a host happens before the host is sampled. Events that never happen
    are drawn as inf.

    Args:
        sampling (GammaHazardFunction): the sampling hazard.
        transmission (GammaHazardFunction): the transmission hazard.
        num_samples (int, optional): number of draws. Defaults to 50000.
    Returns:
        float: the fraction in [0, 1].
    """
    if num_samples <= 0:
        raise CalibrationError("The number of calibration samples must be "
                               "> 0")
    infection_times = transmission.simulate(num_samples)
    sampling_times = sampling.simulate(num_samples)
    return float(np.count_nonzero(infection_times < sampling_times)) \
           / num_samples

#####################
#### CALIBRATION ####
#####################

class Calibration:
    """
    Computes and holds the calibration constants for one pair of hazards.
    """

    def __init__(self,
                 sampling : GammaHazardFunction,
                 transmission : GammaHazardFunction,
                 num_samples : int = DEFAULT_NUM_SAMPLES) -> None:
        """
        Args:
            sampling (GammaHazardFunction): the sampling hazard.
            transmission (GammaHazardFunction): the transmission hazard.
            num_samples (int, optional): draws for the lambda estimate.
                                         Defaults to 50000.
        Returns:
            N/A
        """
        self.sampling : GammaHazardFunction = sampling
        self.transmission : GammaHazardFunction = transmission
        self.num_samples : int = num_samples

        self.retained_fraction : float | None = None
        self.lam : float | None = None
        self.p0 : float | None = None
        self.phi : float | None = None
        self.rho : float | None = None

    def calibrate(self) -> Calibration:
        """
        Run the simulation, the p0 solver and the closed forms once.

        Raises:
            CalibrationError: see get_p0.
        Args:
            N/A
        Returns:
            Calibration: self, for chaining.
        """
        cs = self.sampling.get_constant()
        ctr = self.transmission.get_constant()
        if cs >= 1:
            raise CalibrationError(f"The sampling constant must be < 1, got "
                                   f"{cs}")

        self.retained_fraction = get_retained_fraction(self.sampling,
                                                       self.transmission,
                                                       self.num_samples)
        self.lam = get_lambda(cs, ctr, self.retained_fraction)
        self.p0 = get_p0(cs, self.lam)
        self.phi = get_phi(cs, self.lam, self.p0)
        self.rho = get_rho(self.phi, self.sampling, self.transmission)
        return self

    def is_calibrated(self) -> bool:
        return self.p0 is not None

    def __repr__(self) -> str:
        return f"Calibration(lambda={self.lam}, p0={self.p0}, " \
               f"phi={self.phi}, rho={self.rho})"
