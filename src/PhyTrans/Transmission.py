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

Sampling and transmission terms of the transmission tree likelihood.

Every host contributes the probability of its sampling history (sampled at
the first event of its segment, or never sampled before the end of the
study) and of not causing any transmission beyond the ones present in the
tree, corrected by the probability that the host is observed at all. Every
transmission in the tree costs the transmission hazard of the infector at
that time.

Internally all times are heights. The hazard functions work in forward time,
so heights are converted relative to the root height.
"""

from __future__ import annotations
import math
import warnings

import numpy as np

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration
from .HazardFunction import GammaHazardFunction
from .Segments import SegmentIntervalList


class TransmissionEvaluator:
    """
    Evaluates the sampled host, unsampled host and transmission event terms
    for a coloured tree.
    """

    def __init__(self,
                 tree : TimeTree,
                 sampling_hazard : GammaHazardFunction,
                 transmission_hazard : GammaHazardFunction,
                 end_time : float,
                 p0 : float,
                 allow_transmissions_after_sampling : bool = True) -> None:
        """
        Args:
            tree (TimeTree): the time tree.
            sampling_hazard (GammaHazardFunction): hazard of being sampled.
            transmission_hazard (GammaHazardFunction): hazard of causing a
                                                       transmission.
            end_time (float): the end of the study, as a height.
            p0 (float): probability that an infection chain goes extinct
                        unobserved.
            allow_transmissions_after_sampling (bool, optional): whether a
                        sampled host keeps transmitting until the end of the
                        study. Defaults to True.
        Returns:
            N/A
        """
        self.tree : TimeTree = tree
        self.sampling_hazard : GammaHazardFunction = sampling_hazard
        self.transmission_hazard : GammaHazardFunction = transmission_hazard
        self.end_time : float = end_time
        self.p0 : float = p0
        self.allow_transmissions_after_sampling : bool = \
            allow_transmissions_after_sampling

    #### Hazard terms, on heights ####

    def log_survival_transmission(self, birth : float, time : float) -> float:
        root_height = self.tree.root_height()
        return self.transmission_hazard.log_survival(root_height - time,
                                                     root_height - birth)

    def log_survival_sampling(self, birth : float, time : float) -> float:
        root_height = self.tree.root_height()
        return self.sampling_hazard.log_survival(root_height - time,
                                                 root_height - birth)

    def log_hazard_transmission(self, birth : float, time : float) -> float:
        root_height = self.tree.root_height()
        return self.transmission_hazard.log_hazard(root_height - time,
                                                   root_height - birth)

    def log_hazard_sampling(self, birth : float, time : float) -> float:
        root_height = self.tree.root_height()
        return self.sampling_hazard.log_hazard(root_height - time,
                                               root_height - birth)

    def log_individual_condition(self,
                                 p0 : float,
                                 birth : float,
                                 time : float) -> float:
        """
        Log probability that a host infected at birth is observed before
        time, either by being sampled or through an observed descendant.

        Args:
            p0 (float): extinction probability of an unobserved chain.
            birth (float): infection height.
            time (float): end of the observation window (a height).
        Returns:
            float: log(1 - exp(S_tr * (1 - p0) + S_s)), or +inf when the
                   probability is exactly zero so that subtracting it gives
                   -inf.
        """
        observed = 1.0 - math.exp(self.log_survival_transmission(birth, time)
                                  * (1 - p0)
                                  + self.log_survival_sampling(birth, time))
        if observed == 0:
            return math.inf
        return math.log(observed)

    #### Per host terms ####

    def sampled_host_contribution(self,
                                  first_event_time : float,
                                  segment : SegmentIntervalList) -> float:
        """
        Sampled at the first event of its segment and not before, no
        transmission apart from those in the tree, observed. The first event
        is the leaf, or a later transmission when the host keeps infecting
        after being sampled.

        Args:
            first_event_time (float): lowest height in the segment of the
                                      host.
            segment (SegmentIntervalList): the segment of the host.
        Returns:
            float: the log contribution. A +inf result is reported with a
                   warning.
        """
        birth = segment.birth_time
        log_p = self.log_hazard_sampling(birth, first_event_time) \
                + self.log_survival_sampling(birth, first_event_time)
        if self.allow_transmissions_after_sampling:
            log_p += self.log_survival_transmission(birth, self.end_time)
        else:
            log_p += self.log_survival_transmission(birth, first_event_time)
        log_p -= self.log_individual_condition(self.p0, birth, self.end_time)

        if log_p == math.inf:
            warnings.warn(f"Numerical instability encountered for the host "
                          f"infected at {birth} with first event at "
                          f"{first_event_time} (p0 = {self.p0})")
        return log_p

    def unsampled_host_contribution(self,
                                    segment : SegmentIntervalList) -> float:
        """
        Never sampled and no transmission apart from those in the tree, yet
        observed.

        Args:
            segment (SegmentIntervalList): the segment of the host.
        Returns:
            float: the log contribution.
        """
        birth = segment.birth_time
        return self.log_survival_sampling(birth, self.end_time) \
               + self.log_survival_transmission(birth, self.end_time) \
               - self.log_individual_condition(self.p0, birth, self.end_time)

    def transmission_event_cost(self,
                                nr : int,
                                infector : SegmentIntervalList,
                                blocks : BlockConfiguration) -> float:
        """
        Transmission hazard of the infector at the oldest transition on the
        branch above node nr.

        Args:
            nr (int): index of the node below the transition.
            infector (SegmentIntervalList): segment of the parent colour.
            blocks (BlockConfiguration): per-branch block parameters.
        Returns:
            float: the log hazard.
        """
        node = self.tree.get_node(nr)
        time = node.get_height() + node.get_length() * blocks.get_end(nr)
        return self.log_hazard_transmission(infector.birth_time, time)

    #### Totals ####

    def _transmission_costs(self,
                            colours : np.ndarray,
                            segments : dict[int, SegmentIntervalList],
                            blocks : BlockConfiguration,
                            sampled : bool) -> float:
        leaf_count = self.tree.get_leaf_node_count()
        log_p = 0.0
        for node in self.tree:
            if node.is_root():
                continue
            nr = node.get_nr()
            parent_colour = int(colours[node.get_parent()])
            if colours[nr] == parent_colour:
                continue
            if (parent_colour < leaf_count) == sampled:
                log_p += self.transmission_event_cost(nr,
                                                      segments[parent_colour],
                                                      blocks)
        return log_p

    def sampled_total(self,
                      colours : np.ndarray,
                      segments : dict[int, SegmentIntervalList],
                      blocks : BlockConfiguration) -> float:
        """
        All sampled host terms plus the cost of every transmission caused by
        a sampled host.

        Args:
            colours (np.ndarray): a valid colouring.
            segments (dict[int, SegmentIntervalList]): segments by colour.
            blocks (BlockConfiguration): per-branch block parameters.
        Returns:
            float: the log contribution.
        """
        log_p = 0.0
        for leaf in range(self.tree.get_leaf_node_count()):
            segment = segments[leaf]
            log_p += self.sampled_host_contribution(segment.get_times()[0],
                                                    segment)
        return log_p + self._transmission_costs(colours, segments, blocks, True)

    def unsampled_total(self,
                        colours : np.ndarray,
                        segments : dict[int, SegmentIntervalList],
                        blocks : BlockConfiguration) -> float:
        """
        All unsampled host terms (once per unsampled colour) plus the cost of
        every transmission caused by an unsampled host.

        Args:
            colours (np.ndarray): a valid colouring.
            segments (dict[int, SegmentIntervalList]): segments by colour.
            blocks (BlockConfiguration): per-branch block parameters.
        Returns:
            float: the log contribution.
        """
        leaf_count = self.tree.get_leaf_node_count()
        log_p = 0.0
        for colour, segment in segments.items():
            if colour >= leaf_count:
                log_p += self.unsampled_host_contribution(segment)
        return log_p + self._transmission_costs(colours, segments, blocks,
                                                False)
