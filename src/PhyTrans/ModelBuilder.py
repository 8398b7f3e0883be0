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

Phase-based construction of a transmission tree likelihood.

Each phase is a well-defined step, phases execute in the order they are
added, and each phase can read the components built by earlier phases.

Phases:
- TreePhase: attach the time tree (or parse it from newick)
- BlockPhase: attach (and repair) the block configuration
- HazardPhase: attach the sampling and transmission hazards
- PopulationPhase: attach the within-host population model
- CalibrationPhase: compute p0, phi and rho
- LikelihoodPhase: assemble the TransmissionTreeLikelihood
- ValidationPhase: check the starting state
"""

from __future__ import annotations
import warnings
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable

from .TimeTree import TimeTree
from .BlockParameters import BlockConfiguration
from .HazardFunction import GammaHazardFunction
from .PopulationFunction import PopulationFunction
from .Colouring import get_colour
from .Calibration import Calibration, DEFAULT_NUM_SAMPLES
from .TransmissionTreeLikelihood import TransmissionTreeLikelihood


class BuildContext:
    """
    Accumulates built components during the model construction process.

    Phases can read from and write to this context, allowing later phases
    to use components built by earlier phases.
    """

    def __init__(self) -> None:
        self._components : OrderedDict[str, Any] = OrderedDict()
        self._metadata : dict[str, Any] = {}

    def set(self, key : str, value : Any) -> None:
        """
        Store a component in the context.

        Args:
            key (str): Component identifier.
            value (Any): The component.
        Returns:
            N/A
        """
        self._components[key] = value

    def get(self, key : str, default : Any = None) -> Any:
        return self._components.get(key, default)

    def has(self, key : str) -> bool:
        return key in self._components

    def require(self, key : str) -> Any:
        """
        Get a component, raising an error if it doesn't exist.

        Args:
            key (str): Component identifier.
        Returns:
            Any: The component.
        Raises:
            BuildError: If the component doesn't exist.
        """
        if key not in self._components:
            raise BuildError(f"Required component '{key}' not found in "
                             f"context. Available: "
                             f"{list(self._components.keys())}")
        return self._components[key]

    def set_meta(self, key : str, value : Any) -> None:
        self._metadata[key] = value

    def get_meta(self, key : str, default : Any = None) -> Any:
        return self._metadata.get(key, default)

class BuildPhase(ABC):
    """
    Abstract base class for model build phases.
    """

    # component keys that must exist before the phase runs
    prerequisites : tuple[str, ...] = ()

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Human-readable name for this phase.
        """
        pass

    @abstractmethod
    def execute(self, context : BuildContext) -> None:
        """
        Execute this build phase.

        Args:
            context (BuildContext): The build context with previously
                                    built components.
        Returns:
            N/A
        Raises:
            BuildError: If the phase fails.
        """
        pass

    def validate_prerequisites(self, context : BuildContext) -> None:
        """
        Check that required components exist before executing.

        Args:
            context (BuildContext): The build context.
        Returns:
            N/A
        Raises:
            BuildError: If prerequisites are not met.
        """
        for key in self.prerequisites:
            if not context.has(key):
                raise BuildError(f"Prerequisite '{key}' not found",
                                 phase = self.name)


class BuildError(Exception):
    """
    Exception raised during model building.
    """

    def __init__(self, message : str, phase : str | None = None) -> None:
        """
        Args:
            message (str): Error message.
            phase (str | None, optional): Phase where error occurred.
        Returns:
            N/A
        """
        if phase:
            message = f"[{phase}] {message}"
        self.message = message
        self.phase = phase
        super().__init__(self.message)


class ModelBuilder:
    """
    Phase-based model builder.

    Usage:
        model = ModelBuilder() \\
            .add_phase(TreePhase("((A:1,B:1):1,C:2);")) \\
            .add_phase(BlockPhase()) \\
            .add_phase(HazardPhase(sampling, transmission)) \\
            .add_phase(PopulationPhase(ConstantPopulation(1.0))) \\
            .add_phase(CalibrationPhase()) \\
            .add_phase(LikelihoodPhase(origin = 3.0)) \\
            .add_phase(ValidationPhase()) \\
            .build()
    """

    def __init__(self) -> None:
        self._phases : list[BuildPhase] = []

    def add_phase(self, phase : BuildPhase) -> ModelBuilder:
        """
        Add a build phase.

        Args:
            phase (BuildPhase): The phase to add.
        Returns:
            ModelBuilder: Self, for chaining.
        """
        self._phases.append(phase)
        return self

    def insert_phase(self, index : int, phase : BuildPhase) -> ModelBuilder:
        self._phases.insert(index, phase)
        return self

    def build(self) -> BuiltModel:
        """
        Execute all phases and build the model.

        Args:
            N/A
        Returns:
            BuiltModel: The constructed model.
        Raises:
            BuildError: If any phase fails.
        """
        context = BuildContext()

        for phase in self._phases:
            try:
                phase.validate_prerequisites(context)
                phase.execute(context)
            except BuildError:
                raise
            except Exception as e:
                raise BuildError(str(e), phase = phase.name) from e

        return BuiltModel(context)


class BuiltModel:
    """
    The result of model building.
    """

    def __init__(self, context : BuildContext) -> None:
        self._context : BuildContext = context
        self._likelihood : TransmissionTreeLikelihood | None = \
            context.get("likelihood")

    @property
    def tree(self) -> TimeTree | None:
        return self._context.get("tree")

    @property
    def blocks(self) -> BlockConfiguration | None:
        return self._context.get("blocks")

    def get(self, key : str, default : Any = None) -> Any:
        """
        Get a component by key.

        Args:
            key (str): Component key.
            default (Any, optional): Default if not found.
        Returns:
            Any: The component.
        """
        return self._context.get(key, default)

    def get_meta(self, key : str, default : Any = None) -> Any:
        """
        Get a value recorded by a phase, such as the leaf count, the root
        height, p0 or rho.

        Args:
            key (str): Metadata key.
            default (Any, optional): Default if not recorded.
        Returns:
            Any: The value.
        """
        return self._context.get_meta(key, default)

    def likelihood(self) -> float:
        """
        Compute the log probability of the current state.

        Args:
            N/A
        Returns:
            float: The log probability.
        Raises:
            BuildError: If no likelihood was built.
        """
        if self._likelihood is None:
            raise BuildError("No likelihood configured")
        return self._likelihood.calculate_log_p()

    def invalidate(self) -> None:
        if self._likelihood is not None:
            self._likelihood.mark_dirty()


# =====================
# Build Phases
# =====================

class TreePhase(BuildPhase):
    """
    Phase that attaches the time tree.
    """

    def __init__(self, tree : TimeTree | str) -> None:
        """
        Args:
            tree (TimeTree | str): a tree, or a newick string to parse.
        Returns:
            N/A
        """
        self._tree = tree

    @property
    def name(self) -> str:
        return "Tree"

    def execute(self, context : BuildContext) -> None:
        tree = self._tree
        if isinstance(tree, str):
            tree = TimeTree.from_newick(tree)
        context.set("tree", tree)
        context.set_meta("num_leaves", tree.get_leaf_node_count())
        context.set_meta("root_height", tree.root_height())


class BlockPhase(BuildPhase):
    """
    Phase that attaches the block configuration, repairing its dimension and
    bounds with warnings. Without a configuration, every branch starts
    without a transition.
    """

    prerequisites = ("tree",)

    def __init__(self, blocks : BlockConfiguration | None = None) -> None:
        self._blocks = blocks

    @property
    def name(self) -> str:
        return "Blocks"

    def execute(self, context : BuildContext) -> None:
        tree : TimeTree = context.require("tree")
        blocks = self._blocks
        if blocks is None:
            blocks = BlockConfiguration.empty(tree.get_node_count())
        blocks.sanity_check(tree.get_node_count(), tree.get_root().get_nr())
        context.set("blocks", blocks)


class HazardPhase(BuildPhase):
    """
    Phase that attaches the sampling and transmission hazards.
    """

    def __init__(self,
                 sampling : GammaHazardFunction,
                 transmission : GammaHazardFunction) -> None:
        self._sampling = sampling
        self._transmission = transmission

    @property
    def name(self) -> str:
        return "Hazards"

    def execute(self, context : BuildContext) -> None:
        context.set("sampling_hazard", self._sampling)
        context.set("transmission_hazard", self._transmission)


class PopulationPhase(BuildPhase):
    """
    Phase that attaches the within-host population model.
    """

    def __init__(self, population : PopulationFunction) -> None:
        self._population = population

    @property
    def name(self) -> str:
        return "Population"

    def execute(self, context : BuildContext) -> None:
        context.set("population", self._population)


class CalibrationPhase(BuildPhase):
    """
    Phase that computes the calibration constants once.
    """

    prerequisites = ("sampling_hazard", "transmission_hazard")

    def __init__(self, num_samples : int = DEFAULT_NUM_SAMPLES) -> None:
        self._num_samples = num_samples

    @property
    def name(self) -> str:
        return "Calibration"

    def execute(self, context : BuildContext) -> None:
        calibration = Calibration(context.require("sampling_hazard"),
                                  context.require("transmission_hazard"),
                                  self._num_samples).calibrate()
        context.set("calibration", calibration)
        context.set_meta("p0", calibration.p0)
        context.set_meta("rho", calibration.rho)


class LikelihoodPhase(BuildPhase):
    """
    Phase that assembles the TransmissionTreeLikelihood. Keyword arguments
    are passed on (end_time, origin and the evaluation flags).
    """

    prerequisites = ("tree", "blocks", "population", "sampling_hazard",
                     "transmission_hazard")

    def __init__(self, **options : Any) -> None:
        self._options = options

    @property
    def name(self) -> str:
        return "Likelihood"

    def execute(self, context : BuildContext) -> None:
        likelihood = TransmissionTreeLikelihood(
            context.require("tree"),
            context.require("blocks"),
            context.require("population"),
            context.require("sampling_hazard"),
            context.require("transmission_hazard"),
            calibration = context.get("calibration"),
            **self._options)
        context.set("likelihood", likelihood)


class ValidationPhase(BuildPhase):
    """
    Phase that checks the starting state. A starting state with an invalid
    colouring, or an origin below the root, has probability zero and only
    draws a warning. Missing components and failed custom validators are
    errors.
    """

    prerequisites = ("likelihood",)

    def __init__(self,
                 required_components : list[str] | None = None,
                 custom_validators : list[tuple[str, Callable[[BuildContext],
                                                              bool]]]
                                     | None = None) -> None:
        """
        Args:
            required_components (list[str] | None, optional): component keys
                                                               that must
                                                               exist.
            custom_validators (list[tuple[str, Callable]] | None, optional):
                        (name, validator) pairs, each validator returning
                        False on failure.
        Returns:
            N/A
        """
        self._required = required_components or []
        self._validators = custom_validators or []

    @property
    def name(self) -> str:
        return "Validation"

    def execute(self, context : BuildContext) -> None:
        for key in self._required:
            if not context.has(key):
                raise BuildError(f"Missing required component: {key}")

        likelihood : TransmissionTreeLikelihood = context.require("likelihood")
        valid, colours = get_colour(likelihood.tree, likelihood.blocks)
        if not valid:
            warnings.warn("The starting block configuration connects two "
                          "sampled hosts without a transmission")
        elif not likelihood.validator.is_valid(colours):
            warnings.warn("The starting block configuration does not yield a "
                          f"valid colouring: {likelihood.validator.reason}")
        origin = likelihood.origin
        if origin is not None and origin < likelihood.tree.root_height():
            warnings.warn(f"The origin ({origin}) is below the root height "
                          f"({likelihood.tree.root_height()})")

        for name, validator in self._validators:
            if not validator(context):
                raise BuildError(f"Validation failed: {name}")
