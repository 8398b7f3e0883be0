#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyTrans --
##  Library for the Reconstruction of Transmission Trees on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##############################################################################

"""
PhyTrans - Transmission Tree Python Library

Likelihood of transmission tree hypotheses overlaid on fixed time trees.
"""

# Core data structures
from .TimeTree import TimeTree, TreeNode, TimeTreeError
from .BlockParameters import BlockConfiguration, BlockParameterError

# Models
from .HazardFunction import GammaHazardFunction, HazardError
from .PopulationFunction import (
    PopulationFunction,
    ConstantPopulation,
    ExponentialGrowth,
    PopulationFunctionError
)

# Colouring and segments
from .Colouring import get_colour, transition_branches, ColouringCache, \
                       NO_COLOUR
from .Validator import Validator
from .Segments import (
    IntervalType,
    SegmentIntervalList,
    SegmentError,
    collect_segments
)

# Likelihood components
from .Coalescent import (
    coalescent_log_likelihood,
    conditioned_coalescent_log_likelihood,
    exact_conditioned_coalescent_log_likelihood,
    coalescence_probability_table,
    CoalescentError
)
from .Transmission import TransmissionEvaluator
from .Calibration import (
    Calibration,
    CalibrationError,
    get_p0,
    get_lambda,
    get_phi,
    get_rho,
    get_retained_fraction
)
from .BlockLikelihood import BlockLikelihood, BlockLikelihoodError, \
                             dgamma, pgamma
from .TransmissionTreeLikelihood import (
    TransmissionTreeLikelihood,
    LikelihoodError
)

# Proposals
from .Moves import (
    Move,
    MoveError,
    BlockBoundaryMove,
    InsertInfectionMove,
    RemoveInfectionMove,
    ConstantCountMove,
    InfectionShift,
    InfectionMover,
    AdjacentInfectionMover,
    ProposalKernel,
    BlockOperatorKernel,
    eligible_infections
)

# Construction
from .ModelBuilder import (
    ModelBuilder,
    BuiltModel,
    BuildPhase,
    BuildContext,
    BuildError,
    TreePhase,
    BlockPhase,
    HazardPhase,
    PopulationPhase,
    CalibrationPhase,
    LikelihoodPhase,
    ValidationPhase
)

__version__ = "1.0.0"
__author__ = "Mark Kessler"
