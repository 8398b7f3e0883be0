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

Log probability of a transmission tree hypothesis overlaid on a fixed time
tree. The evaluation proceeds as

    colouring -> validation -> segments -> coalescent + transmission terms

Colourings and segments are derived state. They are memoised under the key
(block configuration version, epoch). Any mutation of the block
configuration changes its version, and mark_dirty / restore /
requires_recalculation advance the epoch, so stale derived state is never
read. Evaluation is single threaded and assumes one proposal in flight at a
time.
"""

from __future__ import annotations
import math
import warnings

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration
from .HazardFunction import GammaHazardFunction
from .PopulationFunction import PopulationFunction
from .Colouring import get_colour, ColouringCache
from .Validator import Validator
from .Segments import SegmentIntervalList, collect_segments
from .Coalescent import coalescent_log_likelihood, \
                        conditioned_coalescent_log_likelihood, \
                        exact_conditioned_coalescent_log_likelihood
from .Transmission import TransmissionEvaluator
from .Calibration import Calibration, DEFAULT_NUM_SAMPLES
from .BlockLikelihood import BlockLikelihood

SHORT_BRANCH_PENALTY : float = -10000.0

# origins further than this above the root tend to be numerically unstable
ORIGIN_WARNING_GAP : float = 75.0

CONDITIONING_MODES : tuple[str, ...] = ("truncated", "exact")

#########################
#### EXCEPTION CLASS ####
#########################

class LikelihoodError(Exception):
    """
    Raised when a transmission tree likelihood is configured inconsistently.
    """

    def __init__(self, message : str = "Invalid likelihood configuration") \
                 -> None:
        """
        Args:
            message (str, optional): The error message. Defaults to
                                     "Invalid likelihood configuration".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

######################################
#### TRANSMISSION TREE LIKELIHOOD ####
######################################

class TransmissionTreeLikelihood:
    """
    Aggregate evaluator of the transmission tree log probability.
    """

    def __init__(self,
                 tree : TimeTree,
                 blocks : BlockConfiguration,
                 population : PopulationFunction,
                 sampling_hazard : GammaHazardFunction,
                 transmission_hazard : GammaHazardFunction,
                 end_time : float = 0.0,
                 origin : float | None = None,
                 colour_only : bool = False,
                 include_coalescent : bool = True,
                 condition_on_infection_time : bool = True,
                 conditioning : str = "truncated",
                 allow_transmissions_after_sampling : bool = True,
                 branch_length_threshold : float = 1e-4,
                 calibration : Calibration | None = None,
                 calibration_samples : int = DEFAULT_NUM_SAMPLES) -> None:
        """
        The block configuration is repaired (with warnings) if it does not
        fit the tree, and the calibration constants are computed unless an
        already calibrated Calibration is handed in.

        Raises:
            LikelihoodError: if the conditioning mode is unknown, or
                             conditioning on the infection time is requested
                             with a non constant population.
            CalibrationError: if the hazards cannot be calibrated.
            BlockLikelihoodError: if the calibrated rho is outside [0, 1).
        Args:
            tree (TimeTree): the time tree, never modified.
            blocks (BlockConfiguration): per-branch block parameters.
            population (PopulationFunction): within-host population model.
            sampling_hazard (GammaHazardFunction): hazard of being sampled.
            transmission_hazard (GammaHazardFunction): hazard of causing a
                                                       transmission.
            end_time (float, optional): end of the study, as a height.
                                        Defaults to 0.0.
            origin (float | None, optional): infection time of the first
                                             host, as a height. Defaults to
                                             None (the root height).
            colour_only (bool, optional): only check the colouring, short
                                          branches included. Defaults to
                                          False.
            include_coalescent (bool, optional): add the within-host
                                                 coalescent. Defaults to
                                                 True.
            condition_on_infection_time (bool, optional): condition the
                        coalescent on coalescing before the infection time.
                        Defaults to True.
            conditioning (str, optional): "truncated" or "exact". Defaults to
                                          "truncated".
            allow_transmissions_after_sampling (bool, optional): Defaults to
                                                                 True.
            branch_length_threshold (float, optional): branches shorter than
                        this are penalised. Defaults to 1e-4.
            calibration (Calibration | None, optional): precomputed
                        calibration constants. Defaults to None.
            calibration_samples (int, optional): simulation size used when
                        calibrating here. Defaults to 50000.
        Returns:
            N/A
        """
        if conditioning not in CONDITIONING_MODES:
            raise LikelihoodError(f"Unknown conditioning mode '{conditioning}'"
                                  f", expected one of {CONDITIONING_MODES}")
        if condition_on_infection_time and include_coalescent \
           and not population.is_constant():
            raise LikelihoodError("Conditioning on the infection time requires "
                                  "a constant population size")

        self.tree : TimeTree = tree
        self.blocks : BlockConfiguration = blocks
        self.population : PopulationFunction = population
        self.sampling_hazard : GammaHazardFunction = sampling_hazard
        self.transmission_hazard : GammaHazardFunction = transmission_hazard
        self.end_time : float = end_time
        self.origin : float | None = origin

        self.colour_only : bool = colour_only
        self.include_coalescent : bool = include_coalescent
        self.condition_on_infection_time : bool = condition_on_infection_time
        self.conditioning : str = conditioning
        self.allow_transmissions_after_sampling : bool = \
            allow_transmissions_after_sampling
        self.branch_length_threshold : float = branch_length_threshold

        self.blocks.sanity_check(tree.get_node_count(),
                                 tree.get_root().get_nr())

        if calibration is None:
            calibration = Calibration(sampling_hazard,
                                      transmission_hazard,
                                      calibration_samples)
        if not calibration.is_calibrated():
            calibration.calibrate()
        self.calibration : Calibration = calibration

        self.evaluator : TransmissionEvaluator = TransmissionEvaluator(
            tree,
            sampling_hazard,
            transmission_hazard,
            end_time,
            calibration.p0,
            allow_transmissions_after_sampling)
        self.block_likelihood : BlockLikelihood = BlockLikelihood(
            calibration.rho,
            transmission_hazard.get_shape(),
            transmission_hazard.get_rate())
        self.validator : Validator = Validator(tree, blocks)

        self._colourings : ColouringCache = ColouringCache()
        self._validity : ColouringCache = ColouringCache()
        self._segments : ColouringCache = ColouringCache()
        self._epoch : int = 0
        self._initial_calculation : bool = True
        self.log_p : float = 0.0

    #### Derived state ####

    def _key(self) -> tuple[int, int]:
        return self.blocks.version, self._epoch

    def _compute_colouring(self) -> tuple[bool, np.ndarray]:
        return get_colour(self.tree, self.blocks)

    def _coloured(self) -> tuple[bool, np.ndarray]:
        return self._colourings.get(self._key(), self._compute_colouring)

    def calc_colour_at_base(self) -> bool:
        """
        Recompute the colouring of the current block configuration.

        Args:
            N/A
        Returns:
            bool: True if a valid colouring exists.
        """
        result = self._compute_colouring()
        self._colourings.put(self._key(), result)
        self._validity.invalidate()
        return result[0]

    def get_colouring(self) -> np.ndarray:
        """
        The colour of every node, recomputed only if the configuration has
        changed since the last call.

        Args:
            N/A
        Returns:
            np.ndarray: one colour per node.
        """
        return self._coloured()[1]

    def get_fresh_colouring(self) -> np.ndarray:
        """
        The colour of every node, recomputed from the block arrays even if
        the configuration version has not changed. Moves that edit the
        arrays in place use this to see their own changes.

        Args:
            N/A
        Returns:
            np.ndarray: one colour per node.
        """
        self.calc_colour_at_base()
        return self.get_colouring()

    def get_colour(self, nr : int) -> int:
        return int(self.get_colouring()[nr])

    def _compute_validity(self) -> bool:
        valid, colours = self._coloured()
        return valid and self.validator.is_valid(colours)

    def is_valid_colouring(self) -> bool:
        """
        The validator runs once per configuration, later calls reuse its
        verdict.

        Args:
            N/A
        Returns:
            bool: True if the colouring exists and passes the validator.
        """
        return self._validity.get(self._key(), self._compute_validity)

    def get_segments(self) -> dict[int, SegmentIntervalList]:
        """
        Segments of the current (valid) colouring, keyed by colour.

        Raises:
            LikelihoodError: if the current colouring is invalid.
        Args:
            N/A
        Returns:
            dict[int, SegmentIntervalList]: the segments.
        """
        if not self.is_valid_colouring():
            raise LikelihoodError("Segments of an invalid colouring requested")
        colours = self.get_colouring()
        return self._segments.get(self._key(),
                                  lambda : collect_segments(self.tree,
                                                            colours,
                                                            self.blocks,
                                                            self.origin))

    #### Cache invalidation ####

    def mark_dirty(self) -> None:
        """
        Notification that the block configuration (or anything the derived
        state depends on) has changed.
        """
        self._epoch += 1

    def restore(self) -> None:
        self.mark_dirty()

    def requires_recalculation(self) -> bool:
        self.mark_dirty()
        return True

    def set_origin(self, origin : float | None) -> None:
        self.origin = origin
        self.mark_dirty()

    #### Evaluation ####

    def _origin_invalid(self) -> bool:
        return self.origin is not None \
               and self.origin < self.tree.root_height()

    def _warn_about_origin(self) -> None:
        if self.origin is None:
            return
        height = self.tree.root_height()
        if height > self.origin:
            warnings.warn(f"Origin ({self.origin}) is less than the tree "
                          f"height ({height}). Consider increasing the origin "
                          "start value to get the chain started.")
        if self.origin - height > ORIGIN_WARNING_GAP:
            warnings.warn(f"Origin ({self.origin}) is more than "
                          f"{ORIGIN_WARNING_GAP} over the tree height "
                          f"({height}). Consider decreasing the origin start "
                          "value to prevent numerical issues.")

    def calculate_log_p(self) -> float:
        """
        The log probability of the current configuration, -inf for an
        invalid one.

        Raises:
            CoalescentError: if a segment is corrupted.
        Args:
            N/A
        Returns:
            float: the log probability.
        """
        if self._initial_calculation:
            self._warn_about_origin()
            self._initial_calculation = False

        self.log_p = self._calculate_log_p()
        return self.log_p

    def _calculate_log_p(self) -> float:
        if self._origin_invalid():
            return -math.inf
        if not self.calc_colour_at_base():
            return -math.inf
        if not self.is_valid_colouring():
            return -math.inf

        log_p = 0.0
        if self.branch_length_threshold > 0:
            for node in self.tree:
                if not node.is_root() \
                   and node.get_length() < self.branch_length_threshold:
                    log_p += SHORT_BRANCH_PENALTY

        if self.colour_only:
            return log_p

        if self.include_coalescent:
            log_p += self.calculate_coalescent()
        log_p += self.calc_transmission_likelihood()

        if math.isnan(log_p) or log_p == math.inf:
            warnings.warn(f"Numerical instability encountered, log "
                          f"probability {log_p} replaced by -inf")
            return -math.inf
        return log_p

    def _segment_coalescent(self, segment : SegmentIntervalList) -> float:
        if not self.condition_on_infection_time:
            return coalescent_log_likelihood(segment, self.population)
        if self.conditioning == "exact":
            return exact_conditioned_coalescent_log_likelihood(segment,
                                                               self.population)
        return conditioned_coalescent_log_likelihood(segment, self.population)

    def calculate_coalescents(self) -> dict[int, float]:
        """
        Within-host coalescent log likelihood of every host.

        Args:
            N/A
        Returns:
            dict[int, float]: log likelihoods keyed by colour.
        """
        return {colour : self._segment_coalescent(segment)
                for colour, segment in self.get_segments().items()}

    def calculate_coalescent(self) -> float:
        if not self.is_valid_colouring():
            return -math.inf
        return sum(self.calculate_coalescents().values())

    def calculate_sampled_host_contribution(self) -> float:
        """
        Sampling terms of the sampled hosts and the transmissions they cause.
        """
        if self._origin_invalid() or not self.is_valid_colouring():
            return -math.inf
        return self.evaluator.sampled_total(self.get_colouring(),
                                            self.get_segments(),
                                            self.blocks)

    def calculate_unsampled_host_contribution(self) -> float:
        """
        Terms of the unsampled hosts and the transmissions they cause.
        """
        if self._origin_invalid() or not self.is_valid_colouring():
            return -math.inf
        return self.evaluator.unsampled_total(self.get_colouring(),
                                              self.get_segments(),
                                              self.blocks)

    def calculate_block_contribution(self) -> float:
        """
        Log likelihood of all blocks with hidden intermediate hosts.
        """
        if self._origin_invalid() or not self.is_valid_colouring():
            return -math.inf
        log_p = 0.0
        for node in self.tree:
            nr = node.get_nr()
            if node.is_root() or self.blocks.get_count(nr) <= 0:
                continue
            height = node.get_height()
            length = node.get_length()
            log_p += self.block_likelihood.branch_contribution(
                height + length * self.blocks.get_start(nr),
                height + length * self.blocks.get_end(nr),
                self.blocks.get_count(nr),
                self.end_time)
        return log_p

    def calc_transmission_likelihood(self) -> float:
        """
        Sum of the sampled host, unsampled host and block contributions.
        """
        return self.calculate_sampled_host_contribution() \
               + self.calculate_unsampled_host_contribution() \
               + self.calculate_block_contribution()

    def __repr__(self) -> str:
        return f"TransmissionTreeLikelihood(leaves=" \
               f"{self.tree.get_leaf_node_count()}, origin={self.origin}, " \
               f"log_p={self.log_p})"
