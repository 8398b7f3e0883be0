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

Within-host coalescent log likelihoods of a single segment.

Three flavours are offered:

1) coalescent_log_likelihood: the standard (unconditioned) coalescent.
2) conditioned_coalescent_log_likelihood: every coalescent waiting time is
   treated as a truncated exponential that must end before the infection
   time (birth time) of the host.
3) exact_conditioned_coalescent_log_likelihood: the unconditioned density
   divided by the probability that all lineages have coalesced by the birth
   time. That probability is computed with a dynamic programming table over
   (sample group, lineage count), propagated with pure death transition
   matrices.

All times within a segment are heights, so time runs backwards from the
most recent event.
"""

from __future__ import annotations
import math

import numpy as np
from scipy.linalg import expm

from .Segments import SegmentIntervalList, IntervalType
from .PopulationFunction import PopulationFunction

# an interval end may overshoot the birth time by this much (rounding)
BIRTH_TIME_TOLERANCE : float = 1e-8

# an interval this short with a zero reciprocal integral is not an error
ZERO_AREA_DURATION : float = 1e-10

#########################
#### EXCEPTION CLASS ####
#########################

class CoalescentError(Exception):
    """
    Raised when a segment violates a precondition of the coalescent
    evaluators. This always indicates a corrupted segment construction or a
    misuse, never an unlikely genealogy.
    """

    def __init__(self, message : str = "Error in coalescent computation") \
                 -> None:
        """
        Args:
            message (str, optional): The error message. Defaults to
                                     "Error in coalescent computation".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

#################
#### HELPERS ####
#################

def _choose2(k : int) -> float:
    return k * (k - 1) / 2.0


def _log1mexp(x : float) -> float:
    """
    log(1 - exp(-x)) for x >= 0, accurate for small x.
    """
    if x <= 0:
        return -math.inf
    return math.log(-math.expm1(-x))


def _constant_pop_size(population : PopulationFunction) -> float:
    if not population.is_constant():
        raise CoalescentError("Conditioning on the infection time requires a "
                              "constant population size")
    return population.get_pop_size(0.0)


def _birth_time(segment : SegmentIntervalList) -> float:
    if segment.birth_time is None:
        raise CoalescentError("Segment has no birth time")
    return segment.birth_time

#######################
#### UNCONDITIONED ####
#######################

def coalescent_log_likelihood(segment : SegmentIntervalList,
                              population : PopulationFunction,
                              threshold : float = 0.0) -> float:
    """
    Standard coalescent log likelihood of the intervals of a segment.

    For every interval with k lineages, C(k, 2) times the integral of 1 / N
    over the interval is subtracted. Every interval ending in a coalescence
    additionally subtracts log N at its end. If the population size at a
    coalescence is far below its mean over the interval (by the factor
    threshold), the genealogy is rejected.

    Args:
        segment (SegmentIntervalList): a segment with computed intervals.
        population (PopulationFunction): the within-host population model.
        threshold (float, optional): rejection threshold. Defaults to 0.0.
    Returns:
        float: the log likelihood, possibly -inf.
    """
    log_l = 0.0
    start = 0.0

    for i in range(segment.get_interval_count()):
        duration = segment.get_interval(i)
        finish = start + duration

        area = population.get_integral(start, finish)
        if area == 0 and duration > ZERO_AREA_DURATION:
            return -math.inf

        lineages = segment.get_lineage_count(i)
        log_l -= _choose2(lineages) * area

        if segment.get_interval_type(i) == IntervalType.COALESCENT:
            pop_at_event = population.get_pop_size(finish)
            if duration == 0.0 or pop_at_event * area / duration >= threshold:
                log_l -= math.log(pop_at_event)
            else:
                return -math.inf

        start = finish

    return log_l

#####################
#### CONDITIONED ####
#####################

def conditioned_coalescent_log_likelihood(segment : SegmentIntervalList,
                                          population : PopulationFunction) \
                                          -> float:
    """
    Coalescent log likelihood with every waiting time conditioned to end
    before the birth time tmax of the segment.

    With k > 1 lineages, rate = C(k, 2) / N and an interval from t0 to t:

        COALESCENT : -rate * (t - t0) + log(rate) - log(1 - exp(-rate * (tmax - t0)))
        SAMPLE     : -rate * (t - t0) + log(1 - exp(-rate * (tmax - t)))
                                      - log(1 - exp(-rate * (tmax - t0)))

    Only intervals of positive length contribute, so simultaneous events add
    nothing. More than one lineage surviving up to tmax has probability
    zero.

    Raises:
        CoalescentError: if the population size is not constant, the
                         segment has no birth time, or an interval ends
                         after the birth time.
    Args:
        segment (SegmentIntervalList): a segment with computed intervals.
        population (PopulationFunction): a constant population model.
    Returns:
        float: the log likelihood, possibly -inf.
    """
    pop_size = _constant_pop_size(population)
    tmax = _birth_time(segment)
    times = segment.get_times()
    if not times:
        return 0.0

    log_l = 0.0
    t0 = times[0]
    for i in range(segment.get_interval_count()):
        duration = segment.get_interval(i)
        t = t0 + duration
        if t > tmax + BIRTH_TIME_TOLERANCE:
            raise CoalescentError(f"Interval end {t} is after the birth time "
                                  f"{tmax} of the segment")
        t = min(t, tmax)

        lineages = segment.get_lineage_count(i)
        if lineages > 1 and duration > 0:
            rate = _choose2(lineages) / pop_size
            if tmax - t0 <= 0:
                return -math.inf
            norm = _log1mexp(rate * (tmax - t0))
            if segment.get_interval_type(i) == IntervalType.COALESCENT:
                log_l += -rate * (t - t0) + math.log(rate) - norm
            else:
                log_l += -rate * (t - t0) + _log1mexp(rate * (tmax - t)) \
                         - norm
        t0 = t

    return log_l

###############
#### EXACT ####
###############

def _pure_death_generator(max_lineages : int, pop_size : float) -> np.ndarray:
    """
    Generator of the lineage count process, indexed by lineage count
    (index 0 is unused). Lineage count i drops to i - 1 at rate
    C(i, 2) / N.
    """
    q = np.zeros((max_lineages + 1, max_lineages + 1))
    for i in range(2, max_lineages + 1):
        rate = _choose2(i) / pop_size
        q[i, i] = -rate
        q[i, i - 1] = rate
    return q


def coalescence_probability_table(segment : SegmentIntervalList,
                                  pop_size : float) -> np.ndarray:
    """
    Distribution of the number of lineages of a segment, integrated over
    all genealogies consistent with its sample times.

    Row k holds the lineage count distribution just before the sample group
    k + 1 is added, i.e. after the lineages of groups 0..k have coalesced
    for the time between group k and the next group. The last row is the
    distribution at the birth time, so table[-1, 1] is the probability that
    every lineage has coalesced into one by the birth time.

    Raises:
        CoalescentError: if a sample group lies after the birth time or the
                         segment has no samples.
    Args:
        segment (SegmentIntervalList): the segment.
        pop_size (float): the constant population size.
    Returns:
        np.ndarray: table of shape (groups, total samples + 1).
    """
    tmax = _birth_time(segment)
    groups = segment.sample_groups()
    if not groups:
        raise CoalescentError("Segment has no sample events")

    max_lineages = sum(count for _, count in groups)
    generator = _pure_death_generator(max_lineages, pop_size)
    table = np.zeros((len(groups), max_lineages + 1))

    dist = np.zeros(max_lineages + 1)
    dist[0] = 1.0
    for k, (time, count) in enumerate(groups):
        shifted = np.zeros(max_lineages + 1)
        shifted[count:] = dist[:max_lineages + 1 - count]
        dist = shifted

        next_time = groups[k + 1][0] if k + 1 < len(groups) else tmax
        duration = next_time - time
        if duration < -BIRTH_TIME_TOLERANCE:
            raise CoalescentError(f"Sample at {time} is after the birth time "
                                  f"{tmax} of the segment")
        if duration > 0:
            # row vector times transition matrix
            dist = dist @ expm(generator * duration)
        table[k] = dist

    return table


def exact_conditioned_coalescent_log_likelihood(
        segment : SegmentIntervalList,
        population : PopulationFunction) -> float:
    """
    Unconditioned coalescent log likelihood minus the log probability that
    all lineages coalesce before the birth time.

    Raises:
        CoalescentError: if the population size is not constant or the
                         segment has no birth time.
    Args:
        segment (SegmentIntervalList): a segment with computed intervals.
        population (PopulationFunction): a constant population model.
    Returns:
        float: the log likelihood, possibly -inf.
    """
    pop_size = _constant_pop_size(population)
    times = segment.get_times()
    if times and times[-1] > _birth_time(segment) + BIRTH_TIME_TOLERANCE:
        raise CoalescentError(f"Event at {times[-1]} is after the birth time "
                              f"{segment.birth_time} of the segment")

    numerator = coalescent_log_likelihood(segment, population)
    if numerator == -math.inf:
        return numerator

    table = coalescence_probability_table(segment, pop_size)
    probability = float(table[-1, 1])
    if probability <= 0:
        return -math.inf
    return numerator - math.log(probability)
