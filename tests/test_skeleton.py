"""
Unit Tests for Simulation Skeletons
===================================

Test suite for the simulation state machine:
- Design builders (parallel, crossover, outcome)
- Parameter updates and validation
- State transitions and prerequisites
- Sampling and summaries
"""

import pytest
import pandas as pd
import numpy as np

from exposure_response.exceptions import StateError, ValidationError
from exposure_response.simulation import (
    UNSET,
    ExposureSkeleton,
    OutcomeSkeleton,
    SkeletonState,
    create_outcome_skeleton,
    create_skeleton_crossover,
    create_skeleton_parallel
)


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def parallel_skeleton():
    """Two groups of five units, two observations per unit (N = 20)."""
    return create_skeleton_parallel(G=2, n_per_group=5, obs_per_unit=2, random_seed=1)


def configure_exposure(skeleton, means=(3.0, 4.0), unit_sd=1.0):
    """Set every prerequisite of an exposure skeleton."""
    skeleton.update_parameter('group', 'mean', list(means))
    if 'cluster' in skeleton.structure:
        skeleton.update_parameter('cluster', 'sd', 0.5)
    skeleton.update_parameter('unit', 'sd', unit_sd)
    skeleton.update_parameter('observation', 'sd', 1.0)
    skeleton.update_parameter('observation', 'timefn', lambda t: 0 * t)
    return skeleton


# ============================================================================
# Test 1: Design Builders
# ============================================================================

def test_parallel_design(parallel_skeleton):
    data = parallel_skeleton.standata

    assert isinstance(parallel_skeleton, ExposureSkeleton)
    assert (data.N, data.G, data.K, data.n) == (20, 2, 0, 10)
    assert 'cluster' not in parallel_skeleton.structure
    assert np.all((data.time >= 0) & (data.time <= 1))


def test_parallel_design_with_clusters():
    skeleton = create_skeleton_parallel(
        G=2, n_per_group=6, obs_per_unit=1, clusters_per_group=3, random_seed=0
    )

    assert skeleton.standata.K == 6
    assert set(skeleton.structure['cluster']) == {'sd', 're'}


def test_crossover_design_visits_every_group():
    skeleton = create_skeleton_crossover(G=3, n_units=4, obs_per_period=2, random_seed=5)
    data = skeleton.standata

    assert data.N == 4 * 3 * 2
    for unit in range(1, data.n + 1):
        assert set(data.group_of_obs[data.unit_of_obs == unit]) == {1, 2, 3}


def test_outcome_design():
    skeleton = create_outcome_skeleton(S=3, n_per_study=10, obs_per_unit=2, random_seed=2)

    assert isinstance(skeleton, OutcomeSkeleton)
    assert skeleton.standata.S == 3
    assert skeleton.standata.n == 30
    assert set(skeleton.structure) == {'study', 'unit', 'observation'}


def test_builders_are_reproducible():
    a = create_skeleton_parallel(G=2, n_per_group=3, obs_per_unit=2, random_seed=9)
    b = create_skeleton_parallel(G=2, n_per_group=3, obs_per_unit=2, random_seed=9)

    np.testing.assert_array_equal(a.standata.time, b.standata.time)


def test_builder_rejects_bad_sizes():
    with pytest.raises(ValidationError):
        create_skeleton_parallel(G=0, n_per_group=3, obs_per_unit=2)


# ============================================================================
# Test 2: State Machine
# ============================================================================

def test_initial_state_is_unconfigured(parallel_skeleton):
    assert parallel_skeleton.state is SkeletonState.UNCONFIGURED
    assert parallel_skeleton.get_parameter('unit', 'sd') is UNSET


def test_state_transitions(parallel_skeleton):
    parallel_skeleton.update_parameter('group', 'mean', [3, 4])
    assert parallel_skeleton.state is SkeletonState.PARTIALLY_CONFIGURED

    configure_exposure(parallel_skeleton)
    assert parallel_skeleton.state is SkeletonState.CONFIGURED

    parallel_skeleton.sample_observations()
    assert parallel_skeleton.state is SkeletonState.SAMPLED

    parallel_skeleton.update_parameter('observation', 'sd', 2.0)
    assert parallel_skeleton.state is SkeletonState.CONFIGURED


def test_missing_unit_sd_raises(parallel_skeleton):
    """Sampling without the unit sd names the missing level and parameter."""
    parallel_skeleton.update_parameter('group', 'mean', [3, 4])
    parallel_skeleton.update_parameter('observation', 'sd', 1.0)
    parallel_skeleton.update_parameter('observation', 'timefn', lambda t: 0 * t)
    before = parallel_skeleton.standata

    with pytest.raises(StateError) as exc_info:
        parallel_skeleton.sample_observations()

    assert exc_info.value.level == 'unit'
    assert exc_info.value.parameter == 'sd'
    assert parallel_skeleton.standata is before
    assert parallel_skeleton.state is SkeletonState.PARTIALLY_CONFIGURED


def test_drawing_effects_before_sd_raises(parallel_skeleton):
    with pytest.raises(StateError) as exc_info:
        parallel_skeleton.update_parameter('unit', 're')

    assert exc_info.value.parameter == 'sd'


def test_unknown_level_and_type_raise(parallel_skeleton):
    with pytest.raises(ValidationError):
        parallel_skeleton.update_parameter('cluster', 'sd', 1.0)
    with pytest.raises(ValidationError):
        parallel_skeleton.update_parameter('group', 'sd', 1.0)


@pytest.mark.parametrize('level, ptype, value', [
    ('group', 'mean', [1.0, 2.0, 3.0]),
    ('unit', 'sd', -1.0),
    ('unit', 'sd', [1.0, 2.0]),
    ('observation', 'timefn', 3.0),
    ('unit', 're', np.zeros(4)),
])
def test_invalid_values_raise(parallel_skeleton, level, ptype, value):
    with pytest.raises(ValidationError):
        parallel_skeleton.update_parameter(level, ptype, value)


def test_update_overwrites_and_chains(parallel_skeleton):
    result = parallel_skeleton.update_parameter('unit', 'sd', 1.0)
    parallel_skeleton.update_parameter('unit', 'sd', 0.2)

    assert result is parallel_skeleton
    assert parallel_skeleton.get_parameter('unit', 'sd') == 0.2


def test_scalar_mean_is_broadcast(parallel_skeleton):
    parallel_skeleton.update_parameter('group', 'mean', 2.5)

    np.testing.assert_array_equal(parallel_skeleton.get_parameter('group', 'mean'), [2.5, 2.5])


# ============================================================================
# Test 3: Sampling
# ============================================================================

def test_group_means_recovered_from_mean_w(parallel_skeleton):
    """meanW minus the unit effects equals the configured group means."""
    configure_exposure(parallel_skeleton).sample_observations()

    data = parallel_skeleton.standata
    reI = parallel_skeleton.get_parameter('unit', 're')
    meanW = parallel_skeleton.meanW

    assert len(meanW) == 20
    np.testing.assert_array_equal(
        np.unique(np.round(meanW - reI[data.unit_of_obs - 1], 8)), [3.0, 4.0]
    )


def test_zero_sd_gives_exact_means(parallel_skeleton):
    configure_exposure(parallel_skeleton, unit_sd=0.0)
    parallel_skeleton.update_parameter('observation', 'sd', 0.0)
    parallel_skeleton.sample_observations()

    data = parallel_skeleton.standata
    np.testing.assert_array_equal(data.w, np.where(data.group_of_obs == 1, 3.0, 4.0))


def test_resampling_keeps_effects_and_overwrites_outcome(parallel_skeleton):
    configure_exposure(parallel_skeleton).sample_observations()
    first_w = np.array(parallel_skeleton.standata.w)
    first_re = np.array(parallel_skeleton.get_parameter('unit', 're'))

    parallel_skeleton.sample_observations()

    np.testing.assert_array_equal(parallel_skeleton.get_parameter('unit', 're'), first_re)
    assert not np.array_equal(parallel_skeleton.standata.w, first_w)
    assert parallel_skeleton.state is SkeletonState.SAMPLED


def test_same_seed_same_draw():
    draws = []
    for _ in range(2):
        skeleton = create_skeleton_parallel(G=2, n_per_group=5, obs_per_unit=2, random_seed=3)
        configure_exposure(skeleton).sample_observations()
        draws.append(np.array(skeleton.standata.w))

    np.testing.assert_array_equal(draws[0], draws[1])


def test_copy_is_independent(parallel_skeleton):
    configure_exposure(parallel_skeleton)
    duplicate = parallel_skeleton.copy()
    duplicate.update_parameter('unit', 'sd', 5.0)

    assert parallel_skeleton.get_parameter('unit', 'sd') == 1.0
    assert duplicate.get_parameter('observation', 'sd') == 1.0


def test_timefn_contributes_to_mean(parallel_skeleton):
    configure_exposure(parallel_skeleton, unit_sd=0.0)
    parallel_skeleton.update_parameter('observation', 'timefn', lambda t: 2 * t)
    parallel_skeleton.sample_observations()

    data = parallel_skeleton.standata
    expected = np.where(data.group_of_obs == 1, 3.0, 4.0) + 2 * data.time
    np.testing.assert_allclose(parallel_skeleton.meanW, expected)


def test_timefn_with_wrong_shape_raises(parallel_skeleton):
    configure_exposure(parallel_skeleton)
    parallel_skeleton.update_parameter('observation', 'timefn', lambda t: np.zeros(3))

    with pytest.raises(ValidationError):
        parallel_skeleton.sample_observations()


def test_failed_sampling_leaves_skeleton_unchanged(parallel_skeleton):
    configure_exposure(parallel_skeleton)
    parallel_skeleton.update_parameter('observation', 'timefn', lambda t: np.zeros(3))
    before = parallel_skeleton.standata

    with pytest.raises(ValidationError):
        parallel_skeleton.sample_observations()

    assert parallel_skeleton.get_parameter('unit', 're') is UNSET
    assert parallel_skeleton.state is SkeletonState.CONFIGURED
    assert parallel_skeleton.standata is before

    parallel_skeleton.update_parameter('observation', 'timefn', lambda t: 0 * t)
    parallel_skeleton.sample_observations()
    fresh = create_skeleton_parallel(G=2, n_per_group=5, obs_per_unit=2, random_seed=1)
    configure_exposure(fresh).sample_observations()

    np.testing.assert_array_equal(parallel_skeleton.standata.w, fresh.standata.w)


def test_clustered_sampling():
    skeleton = create_skeleton_parallel(
        G=2, n_per_group=4, obs_per_unit=2, clusters_per_group=2, random_seed=4
    )
    configure_exposure(skeleton).sample_observations()

    assert len(skeleton.get_parameter('cluster', 're')) == skeleton.standata.K


def test_summary(parallel_skeleton):
    with pytest.raises(StateError):
        parallel_skeleton.summary()

    configure_exposure(parallel_skeleton).sample_observations()
    summary = parallel_skeleton.summary()

    assert isinstance(summary, pd.DataFrame)
    assert list(summary['n_obs']) == [10, 10]
    assert list(summary['n_units']) == [5, 5]


# ============================================================================
# Test 4: Outcome Skeleton
# ============================================================================

def test_outcome_sampling_is_binary():
    skeleton = create_outcome_skeleton(S=2, n_per_study=50, random_seed=8)
    skeleton.update_parameter('study', 'mean', [-1.0, 1.0])
    skeleton.update_parameter('observation', 'xfn', lambda x: 0.5 * x)
    skeleton.update_parameter('observation', 'offset', 0.0)

    assert skeleton.state is SkeletonState.CONFIGURED
    skeleton.sample_observations()

    data = skeleton.standata
    assert set(np.unique(data.y)) <= {0, 1}
    np.testing.assert_allclose(
        skeleton.meanY, np.where(data.study_of_obs == 1, -1.0, 1.0) + 0.5 * data.x
    )


def test_outcome_requires_offset():
    skeleton = create_outcome_skeleton(S=1, n_per_study=5, random_seed=8)
    skeleton.update_parameter('study', 'mean', [0.0])
    skeleton.update_parameter('observation', 'xfn', lambda x: x)

    with pytest.raises(StateError) as exc_info:
        skeleton.sample_observations()

    assert exc_info.value.level == 'observation'
    assert exc_info.value.parameter == 'offset'


def test_outcome_covariates_and_unit_effects():
    skeleton = create_outcome_skeleton(
        S=2, n_per_study=5, obs_per_unit=3, n_covariates=2, random_seed=6
    )
    assert 'coef' in skeleton.structure['observation']
    assert skeleton.missing_parameters()[1] == ('unit', 'sd')

    skeleton.update_parameter('study', 'mean', [0.0, 0.0])
    skeleton.update_parameter('unit', 'sd', 0.0)
    skeleton.update_parameter('observation', 'xfn', lambda x: 0 * x)
    skeleton.update_parameter('observation', 'offset', 0.0)
    skeleton.update_parameter('observation', 'coef', [1.0, -1.0])
    skeleton.sample_observations()

    data = skeleton.standata
    np.testing.assert_allclose(skeleton.meanY, data.Z @ np.array([1.0, -1.0]))


def test_skeleton_requires_matching_dataset():
    outcome = create_outcome_skeleton(S=1, n_per_study=3, random_seed=0).standata

    with pytest.raises(ValidationError):
        ExposureSkeleton(outcome)
