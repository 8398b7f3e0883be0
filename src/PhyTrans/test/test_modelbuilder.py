import math
import pytest
import numpy as np
from PhyTrans.BlockParameters import BlockConfiguration
from PhyTrans.HazardFunction import GammaHazardFunction
from PhyTrans.PopulationFunction import ConstantPopulation
from PhyTrans.Calibration import Calibration
from PhyTrans.TransmissionTreeLikelihood import TransmissionTreeLikelihood
from PhyTrans.ModelBuilder import *


################
### HELPERS ####
################

NEWICK = "((A:1,B:1):1,(C:1,D:1):1);"


def leaf_transitions() -> BlockConfiguration:
    blocks = BlockConfiguration.empty(7)
    for nr in range(4):
        blocks.set_block(nr, 0, 0.4, 0.4)
    return blocks


def hazard_phase() -> HazardPhase:
    return HazardPhase(
        GammaHazardFunction(0.8, 2.0, 1.0, np.random.default_rng(1)),
        GammaHazardFunction(1.5, 2.0, 2.0, np.random.default_rng(2)))


def full_builder(blocks : BlockConfiguration | None = None,
                 **options) -> ModelBuilder:
    options.setdefault("origin", 3.0)
    return ModelBuilder() \
        .add_phase(TreePhase(NEWICK)) \
        .add_phase(BlockPhase(blocks)) \
        .add_phase(hazard_phase()) \
        .add_phase(PopulationPhase(ConstantPopulation(1.0))) \
        .add_phase(CalibrationPhase(2000)) \
        .add_phase(LikelihoodPhase(**options))

################
#### TESTS #####
################

def test_full_build():
    model = full_builder(leaf_transitions()) \
        .add_phase(ValidationPhase(required_components = ["calibration"])) \
        .build()
    assert model.tree.get_leaf_node_count() == 4
    assert model.blocks.get_count(0) == 0
    calibration = model.get("calibration")
    assert isinstance(calibration, Calibration)
    assert calibration.is_calibrated()

    likelihood = model.get("likelihood")
    assert isinstance(likelihood, TransmissionTreeLikelihood)
    assert likelihood.calibration is calibration
    log_p = model.likelihood()
    assert math.isfinite(log_p)
    model.invalidate()
    assert model.likelihood() == log_p


def test_missing_prerequisite():
    builder = ModelBuilder().add_phase(BlockPhase())
    with pytest.raises(BuildError) as err:
        builder.build()
    assert err.value.phase == "Blocks"
    assert "tree" in err.value.message


def test_phase_failure_wrapped():
    """
    Errors raised inside a phase carry the phase name.
    """
    builder = ModelBuilder().add_phase(TreePhase("(A:1,B:1,C:1);"))
    with pytest.raises(BuildError) as err:
        builder.build()
    assert err.value.phase == "Tree"


def test_default_blocks_warn():
    """
    Without a configuration no branch carries a transition, which joins
    sampled hosts and only draws a warning.
    """
    builder = full_builder().add_phase(ValidationPhase())
    with pytest.warns(UserWarning, match = "two sampled hosts"):
        model = builder.build()
    assert model.likelihood() == -math.inf


def test_origin_below_root_warns():
    builder = full_builder(leaf_transitions(), origin = 1.0) \
        .add_phase(ValidationPhase())
    with pytest.warns(UserWarning, match = "below the root"):
        builder.build()


def test_custom_validators():
    passing = full_builder(leaf_transitions()).add_phase(ValidationPhase(
        custom_validators = [("has tree", lambda ctx: ctx.has("tree"))]))
    passing.build()

    failing = full_builder(leaf_transitions()).add_phase(ValidationPhase(
        custom_validators = [("never", lambda ctx: False)]))
    with pytest.raises(BuildError) as err:
        failing.build()
    assert "never" in err.value.message

    missing = full_builder(leaf_transitions()).add_phase(ValidationPhase(
        required_components = ["nothing"]))
    with pytest.raises(BuildError):
        missing.build()


def test_insert_phase_and_no_likelihood():
    model = ModelBuilder() \
        .add_phase(BlockPhase()) \
        .insert_phase(0, TreePhase(NEWICK)) \
        .build()
    assert model.blocks.get_dimension() == 7
    assert model.get("likelihood") is None
    with pytest.raises(BuildError):
        model.likelihood()


def test_phase_metadata():
    """
    The tree and calibration phases record summary values on the model.
    """
    model = full_builder(leaf_transitions()).build()
    calibration = model.get("calibration")
    assert model.get_meta("num_leaves") == 4
    assert model.get_meta("root_height") == pytest.approx(2.0)
    assert model.get_meta("p0") == calibration.p0
    assert model.get_meta("rho") == calibration.rho
    assert model.get_meta("missing") is None
    assert model.get_meta("missing", 0) == 0
