import math
import pytest
import numpy as np
from PhyTrans.PopulationFunction import *
from PhyTrans.Segments import SegmentIntervalList, IntervalType
from PhyTrans.Coalescent import *


################
### HELPERS ####
################

def make_segment(samples : list[float],
                 coalescences : list[float],
                 birth_time : float | None) -> SegmentIntervalList:
    segment = SegmentIntervalList(birth_time)
    for time in samples:
        segment.add_event(time, IntervalType.SAMPLE)
    for time in coalescences:
        segment.add_event(time, IntervalType.COALESCENT)
    segment.calculate_intervals()
    return segment


def simple_segment(birth_time : float | None = 3.0) -> SegmentIntervalList:
    return make_segment([0.0, 0.0, 0.5], [1.0, 2.0], birth_time)


def random_segment(leaf_count : int,
                   rng : np.random.Generator,
                   birth_gap : float = 1.0) -> SegmentIntervalList:
    """
    Simulate a genealogy under the constant size (N = 1) coalescent with
    serially sampled leaves, born birth_gap after its last coalescence.
    """
    sample_times = np.sort(rng.uniform(0.0, 1.0, leaf_count))
    sample_times[0] = 0.0
    samples : list[float] = []
    coalescences : list[float] = []
    t = 0.0
    lineages = 0
    idx = 0
    while True:
        while idx < leaf_count and sample_times[idx] <= t:
            samples.append(float(sample_times[idx]))
            lineages += 1
            idx += 1
        if lineages <= 1 and idx == leaf_count:
            break
        if lineages < 2:
            t = float(sample_times[idx])
            continue
        wait = rng.exponential(1.0 / (lineages * (lineages - 1) / 2.0))
        if idx < leaf_count and t + wait > sample_times[idx]:
            t = float(sample_times[idx])
            continue
        t += wait
        coalescences.append(t)
        lineages -= 1
    return make_segment(samples, coalescences, t + birth_gap)

################
#### TESTS #####
################

def test_population_functions():
    constant = ConstantPopulation(2.0)
    assert constant.is_constant()
    assert constant.get_integral(1.0, 3.0) == pytest.approx(1.0)

    flat = ExponentialGrowth(2.0, 0.0)
    assert not flat.is_constant()
    assert flat.get_integral(1.0, 3.0) == pytest.approx(1.0)

    growing = ExponentialGrowth(2.0, 0.5)
    assert growing.get_pop_size(2.0) == pytest.approx(2.0 * math.exp(-1.0))
    expected = (math.exp(1.5) - math.exp(0.5)) / (2.0 * 0.5)
    assert growing.get_integral(1.0, 3.0) == pytest.approx(expected)

    with pytest.raises(PopulationFunctionError):
        ConstantPopulation(0.0)
    with pytest.raises(PopulationFunctionError):
        ExponentialGrowth(-1.0, 0.1)


def test_unconditioned_value():
    """
    Intervals (0.5 with 2 lineages, 0.5 with 3, 1.0 with 2) and N = 2.
    """
    log_l = coalescent_log_likelihood(simple_segment(), ConstantPopulation(2))
    assert log_l == pytest.approx(-1.5 - 2 * math.log(2.0))

    flat = coalescent_log_likelihood(simple_segment(),
                                     ExponentialGrowth(2.0, 0.0))
    assert flat == pytest.approx(log_l)


def test_unconditioned_zero_area():
    """
    A population whose reciprocal integrates to zero over a real interval
    rejects the genealogy.
    """

    class InfinitePopulation(PopulationFunction):
        def get_pop_size(self, t):
            return math.inf

        def get_integral(self, start, finish):
            return 0.0

    assert coalescent_log_likelihood(simple_segment(),
                                     InfinitePopulation()) == -math.inf


def test_unconditioned_threshold():
    """
    A shrinking population that is tiny at the coalescence relative to its
    interval mean fails a strict threshold.
    """
    segment = simple_segment()
    population = ExponentialGrowth(1.0, 3.0)
    assert math.isfinite(coalescent_log_likelihood(segment, population))
    assert coalescent_log_likelihood(segment, population,
                                     threshold = 10.0) == -math.inf


def test_truncated_large_birth_time():
    """
    As the birth time recedes, every conditioning factor tends to 1 and the
    truncated density differs from the standard one by the log of the
    number of lineage pairs at each coalescence.
    """
    population = ConstantPopulation(2.0)
    segment = simple_segment(birth_time = 1e4)
    conditioned = conditioned_coalescent_log_likelihood(segment, population)
    plain = coalescent_log_likelihood(segment, population)
    assert conditioned == pytest.approx(plain + math.log(3.0) + math.log(1.0))

    # the second of two simultaneous coalescences spans no time and adds
    # nothing, and with N = 1 the standard density adds nothing for it either
    population = ConstantPopulation(1.0)
    segment = make_segment([0.4] * 4, [1.0, 1.0, 2.0], 1e4)
    conditioned = conditioned_coalescent_log_likelihood(segment, population)
    plain = coalescent_log_likelihood(segment, population)
    assert conditioned == pytest.approx(plain + math.log(6.0))


def test_truncated_value():
    """
    Two samples at 0, a coalescence at h and a birth at T: the waiting time
    density C(2,2)/N exp(-h/N) divided by 1 - exp(-T/N).
    """
    pop_size, h, birth = 1.5, 0.7, 2.0
    segment = make_segment([0.0, 0.0], [h], birth)
    expected = -h / pop_size - math.log(pop_size) - \
               math.log(1.0 - math.exp(-birth / pop_size))
    value = conditioned_coalescent_log_likelihood(segment,
                                                  ConstantPopulation(pop_size))
    assert value == pytest.approx(expected)


def test_truncated_coalescence_at_sample_time():
    """
    A coalescence at the time of the last sample closes an interval of
    length zero with three lineages, which contributes nothing.
    """
    segment = make_segment([0.0, 0.0, 1.0], [1.0, 2.0], 3.0)
    assert segment.get_interval_type(1) == IntervalType.COALESCENT
    assert segment.get_interval(1) == 0.0
    assert segment.get_lineage_count(1) == 3

    # sample interval 0 -> 1 and coalescent interval 1 -> 2, both with two
    # lineages at rate 1
    expected = -2.0 - math.log(1.0 - math.exp(-3.0))
    value = conditioned_coalescent_log_likelihood(segment,
                                                  ConstantPopulation(1.0))
    assert value == pytest.approx(expected)
    assert value == pytest.approx(-1.94893, abs = 1e-5)


def test_truncated_errors():
    with pytest.raises(CoalescentError):
        conditioned_coalescent_log_likelihood(simple_segment(),
                                              ExponentialGrowth(1.0, 0.5))
    with pytest.raises(CoalescentError):
        conditioned_coalescent_log_likelihood(simple_segment(None),
                                              ConstantPopulation(1.0))
    with pytest.raises(CoalescentError):
        conditioned_coalescent_log_likelihood(simple_segment(1.5),
                                              ConstantPopulation(1.0))


def test_truncated_birth_tolerance():
    """
    A birth time a rounding error below the last coalescence is accepted.
    """
    segment = simple_segment(birth_time = 2.0 - 1e-12)
    value = conditioned_coalescent_log_likelihood(segment,
                                                  ConstantPopulation(1.0))
    assert not math.isnan(value)


def test_exact_two_samples():
    """
    For two samples at 0, the exact correction is 1 - exp(-T/N).
    """
    pop_size, h, birth = 1.5, 0.7, 2.0
    segment = make_segment([0.0, 0.0], [h], birth)
    population = ConstantPopulation(pop_size)
    expected = -h / pop_size - math.log(pop_size) - \
               math.log(1.0 - math.exp(-birth / pop_size))
    assert exact_conditioned_coalescent_log_likelihood(segment, population) \
           == pytest.approx(expected)

    table = coalescence_probability_table(segment, pop_size)
    assert table.shape == (1, 3)
    assert table[-1, 1] == pytest.approx(1 - math.exp(-birth / pop_size))


def test_exact_three_samples():
    """
    With three simultaneous samples the probability of a single lineage at T
    is the hypoexponential distribution function of two waiting times.
    """
    birth = 1.5
    segment = make_segment([0.0, 0.0, 0.0], [0.3, 0.9], birth)
    rate3, rate2 = 3.0, 1.0
    survival = (rate3 * math.exp(-rate2 * birth) -
                rate2 * math.exp(-rate3 * birth)) / (rate3 - rate2)
    table = coalescence_probability_table(segment, 1.0)
    assert table[-1, 1] == pytest.approx(1.0 - survival)


def test_exact_serial_samples():
    """
    A lone lineage waits unchanged until the second sample arrives.
    """
    birth = 2.5
    segment = make_segment([0.0, 0.5], [1.0], birth)
    table = coalescence_probability_table(segment, 1.0)
    assert table.shape == (2, 3)
    assert table[0, 1] == pytest.approx(1.0)
    assert table[-1, 1] == pytest.approx(1 - math.exp(-(birth - 0.5)))


def test_probability_table_rows_sum_to_one():
    segment = random_segment(8, np.random.default_rng(3))
    table = coalescence_probability_table(segment, 1.0)
    assert np.allclose(table.sum(axis = 1), 1.0)
    assert np.all(table >= -1e-12)


@pytest.mark.parametrize("leaf_count", [2, 5, 20])
def test_exact_at_least_unconditioned(leaf_count):
    """
    Dividing by a probability can only raise the log density.
    """
    rng = np.random.default_rng(leaf_count)
    population = ConstantPopulation(1.0)
    for birth_gap in (0.01, 0.5, 5.0):
        segment = random_segment(leaf_count, rng, birth_gap)
        plain = coalescent_log_likelihood(segment, population)
        exact = exact_conditioned_coalescent_log_likelihood(segment,
                                                            population)
        assert math.isfinite(exact)
        assert exact >= plain - 1e-9


@pytest.mark.parametrize("leaf_count", [2, 5, 20])
def test_truncated_tends_to_unconditioned(leaf_count):
    rng = np.random.default_rng(100 + leaf_count)
    population = ConstantPopulation(1.0)
    segment = random_segment(leaf_count, rng, birth_gap = 1e4)
    plain = coalescent_log_likelihood(segment, population)
    truncated = conditioned_coalescent_log_likelihood(segment, population)
    pairs = sum(math.log(segment.get_lineage_count(i) *
                         (segment.get_lineage_count(i) - 1) / 2.0)
                for i in range(segment.get_interval_count())
                if segment.get_interval_type(i) == IntervalType.COALESCENT
                and segment.get_interval(i) > 0)
    assert truncated == pytest.approx(plain + pairs, rel = 1e-9, abs = 1e-9)


def test_exact_errors():
    with pytest.raises(CoalescentError):
        exact_conditioned_coalescent_log_likelihood(
            simple_segment(), ExponentialGrowth(1.0, 0.2))
    with pytest.raises(CoalescentError):
        exact_conditioned_coalescent_log_likelihood(simple_segment(1.5),
                                                    ConstantPopulation(1.0))
    with pytest.raises(CoalescentError):
        coalescence_probability_table(SegmentIntervalList(1.0), 1.0)
