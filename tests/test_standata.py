"""
Unit Tests for Sampler-Ready Datasets
=====================================

Test suite for dataset construction and attachments:
- create_standata_exposure / create_standata_outcome
- Spline basis creation and attachment
- Prior configuration
- Immutability of attachments
"""

import pytest
import pandas as pd
import numpy as np

from exposure_response.data import (
    ExposureDataset,
    OutcomeDataset,
    PriorConfig,
    SplineBasis,
    add_priors,
    add_spline_exposure,
    add_spline_time,
    create_spline,
    create_standata_exposure,
    create_standata_outcome,
    validate_basis
)
from exposure_response.exceptions import ValidationError


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def exposure_frame():
    """Long-format concentrations: 2 groups, 4 units, 2 clusters, 3 visits each."""
    rng = np.random.default_rng(7)
    n_units, visits = 4, 3
    return pd.DataFrame({
        'group': np.repeat(['control', 'control', 'stove', 'stove'], visits),
        'unit_id': np.repeat([11, 12, 21, 22], visits),
        'clust_id': np.repeat(['village_a', 'village_a', 'village_b', 'village_b'], visits),
        'time': np.tile([0.0, 0.5, 1.0], n_units),
        'conc': rng.lognormal(mean=3, sigma=0.5, size=n_units * visits),
    })


@pytest.fixture
def outcome_frame():
    """Binary outcomes in 3 studies with at-risk time and one covariate."""
    rng = np.random.default_rng(11)
    N = 30
    return pd.DataFrame({
        'study': np.repeat(['s1', 's2', 's3'], 10),
        'y': rng.integers(0, 2, size=N),
        'exposure': rng.uniform(10, 200, size=N),
        'time_at_risk': rng.uniform(0.5, 2.0, size=N),
        'age': rng.normal(30, 5, size=N),
    })


# ============================================================================
# Test 1: Exposure Dataset
# ============================================================================

def test_create_exposure_from_frame(exposure_frame):
    """Columns are picked up from the frame and coded densely."""
    data = create_standata_exposure(exposure_frame)

    assert isinstance(data, ExposureDataset)
    assert (data.N, data.G, data.K, data.n) == (12, 2, 2, 4)
    assert data.timedf == 0
    assert data.Mt.shape == (12, 0)
    np.testing.assert_array_equal(data.group_of_obs[:3], [1, 1, 1])
    np.testing.assert_array_equal(data.unit_of_obs[::3], [1, 2, 3, 4])


def test_create_exposure_log_transform(exposure_frame):
    data = create_standata_exposure(exposure_frame, log_transform=True)

    np.testing.assert_allclose(data.w, np.log(exposure_frame['conc']))


def test_create_exposure_log_of_nonpositive_raises():
    with pytest.raises(ValidationError) as exc_info:
        create_standata_exposure(
            group=[1, 1], conc=[1.0, 0.0], unit_id=[1, 2], log_transform=True
        )

    assert exc_info.value.field == 'conc'


def test_create_exposure_defaults():
    """Missing time gives zeros; missing cluster gives an inactive level."""
    data = create_standata_exposure(group=[1, 2], conc=[1.0, 2.0], unit_id=[5, 6])

    np.testing.assert_array_equal(data.time, [0.0, 0.0])
    assert data.K == 0
    assert not data.is_active('cluster')
    assert data.is_active('unit')


def test_create_exposure_requires_unit():
    with pytest.raises(ValidationError):
        create_standata_exposure(group=[1, 2], conc=[1.0, 2.0])


def test_create_exposure_length_mismatch_names_field():
    with pytest.raises(ValidationError) as exc_info:
        create_standata_exposure(
            group=[1, 2, 2], conc=[1.0, 2.0, 3.0], unit_id=[1, 2, 3], time=[0.0, 1.0]
        )

    assert exc_info.value.field == 'time'


def test_create_exposure_return_addition(exposure_frame):
    """The returned frame carries the derived index columns."""
    data, frame = create_standata_exposure(exposure_frame, return_addition=True)

    assert 'group_of_obs' in frame.columns
    assert 'unit_of_obs' in frame.columns
    np.testing.assert_array_equal(frame['unit_of_obs'], data.unit_of_obs)
    assert 'group_of_obs' not in exposure_frame.columns


def test_index_round_trip(exposure_frame):
    """Counts re-derived from the index arrays equal the stored counts."""
    data = create_standata_exposure(exposure_frame)

    assert data.group_of_obs.max() == data.G
    assert data.cluster_of_obs.max() == data.K
    assert data.unit_of_obs.max() == data.n


def test_dataset_arrays_are_read_only(exposure_frame):
    data = create_standata_exposure(exposure_frame)

    with pytest.raises(ValueError):
        data.w[0] = 0.0


def test_sampler_dict_contents(exposure_frame):
    d = create_standata_exposure(exposure_frame).to_sampler_dict()

    for key in ('G', 'K', 'n', 'N', 'group_of_obs', 'w', 'Mt', 'timedf'):
        assert key in d
    np.testing.assert_array_equal(d['prior_sigmaI'], [0.0, 1.0])


def test_unknown_level_raises(exposure_frame):
    data = create_standata_exposure(exposure_frame)

    with pytest.raises(ValidationError):
        data.is_active('household')


# ============================================================================
# Test 2: Outcome Dataset
# ============================================================================

def test_create_outcome_from_frame(outcome_frame):
    data = create_standata_outcome(outcome_frame, covariates=['age'])

    assert isinstance(data, OutcomeDataset)
    assert (data.N, data.S, data.n, data.p) == (30, 3, 0, 1)
    np.testing.assert_allclose(data.offset, np.log(outcome_frame['time_at_risk']))
    assert data.covariates.shape == (30, 1)


def test_create_outcome_without_offset_or_covariates(outcome_frame):
    data = create_standata_outcome(
        study=outcome_frame['study'],
        y=outcome_frame['y'],
        exposure=outcome_frame['exposure']
    )

    np.testing.assert_array_equal(data.offset, np.zeros(30))
    assert data.p == 0
    assert data.covariates is None


def test_create_outcome_rejects_non_binary():
    with pytest.raises(ValidationError) as exc_info:
        create_standata_outcome(study=[1, 1], y=[0, 2], exposure=[1.0, 2.0])

    assert exc_info.value.field == 'y'


def test_create_outcome_rejects_nonpositive_time_at_risk():
    with pytest.raises(ValidationError):
        create_standata_outcome(
            study=[1, 1], y=[0, 1], exposure=[1.0, 2.0], time_at_risk=[1.0, 0.0]
        )


def test_create_outcome_with_units():
    data = create_standata_outcome(
        study=[1, 1, 2, 2], y=[0, 1, 1, 0], exposure=[1.0, 2.0, 3.0, 4.0],
        unit_id=['a', 'a', 'b', 'c']
    )

    assert data.n == 3
    assert data.random_effect_levels() == [('unit', 'reI')]
    assert data.is_active('unit')


# ============================================================================
# Test 3: Spline Bases
# ============================================================================

def test_create_spline_shape_and_knots():
    x = np.linspace(0, 10, 50)
    basis = create_spline(x, df=5)

    assert isinstance(basis, SplineBasis)
    assert basis.df == 5
    assert len(basis.interior_knots) == 2
    assert basis.boundary_knots == (0.0, 10.0)
    assert basis.evaluate(x).shape == (50, 5)


def test_spline_values_are_partition_of_unity_minus_first():
    """Columns are non-negative and their row sums never exceed one."""
    x = np.linspace(0, 1, 25)
    M = create_spline(x, df=4).evaluate(x)

    assert np.all(M >= -1e-12)
    assert np.all(M.sum(axis=1) <= 1 + 1e-12)


def test_spline_reevaluation_matches_rows():
    """Evaluating at a subset of values reproduces the matching rows."""
    x = np.linspace(0, 1, 20)
    basis = create_spline(x, df=4)

    np.testing.assert_allclose(basis.evaluate(x[[3, 7]]), basis.evaluate(x)[[3, 7]])


def test_spline_zero_df_is_empty():
    basis = create_spline([1.0, 2.0], df=0)

    assert basis.df == 0
    assert basis.evaluate([1.0, 2.0, 3.0]).shape == (3, 0)


def test_spline_df_below_degree_raises():
    with pytest.raises(ValidationError) as exc_info:
        create_spline(np.linspace(0, 1, 10), df=2, degree=3)

    assert exc_info.value.field == 'df'


def test_spline_degenerate_range_raises():
    with pytest.raises(ValidationError):
        create_spline([1.0, 1.0, 1.0], df=3)


def test_validate_basis_placeholder_and_rows():
    assert validate_basis(None, 4).shape == (4, 0)
    assert validate_basis(np.zeros((0,)), 4).shape == (4, 0)

    with pytest.raises(ValidationError) as exc_info:
        validate_basis(np.ones((3, 2)), 4, 'Mt')
    assert exc_info.value.field == 'Mt'


def test_add_spline_time_returns_new_dataset(exposure_frame):
    """Attaching a basis leaves the original dataset untouched."""
    data = create_standata_exposure(exposure_frame)
    basis = create_spline(data.time, df=3)

    with_spline = add_spline_time(data, basis)

    assert with_spline.timedf == 3
    assert with_spline.time_basis == basis
    assert data.timedf == 0
    assert data.Mt.shape == (12, 0)


def test_zero_column_spline_equivalent_to_none(exposure_frame):
    """An (N, 0) matrix and no matrix describe the same dataset."""
    data = create_standata_exposure(exposure_frame)
    explicit = add_spline_time(data, np.zeros((data.N, 0)))

    assert explicit.timedf == data.timedf == 0
    assert explicit.to_sampler_dict()['Mt'].shape == data.to_sampler_dict()['Mt'].shape


def test_add_spline_row_mismatch_raises(exposure_frame):
    data = create_standata_exposure(exposure_frame)

    with pytest.raises(ValidationError):
        add_spline_time(data, np.ones((data.N - 1, 3)))


def test_add_spline_exposure(outcome_frame):
    data = create_standata_outcome(outcome_frame)
    basis = create_spline(data.x, df=4)

    with_spline = add_spline_exposure(data, basis)

    assert with_spline.xdf == 4
    assert with_spline.basis is basis
    np.testing.assert_allclose(with_spline.Mx, basis.evaluate(data.x))


# ============================================================================
# Test 4: Priors
# ============================================================================

def test_prior_defaults():
    priors = PriorConfig('exposure')

    assert priors['etaG'] == (0.0, 10.0)
    assert priors['sigmaW'] == (0.0, 1.0)
    assert set(priors) == {'etaG', 'sigmaK', 'sigmaI', 'sigmaW', 'theta'}


def test_prior_override_and_update():
    priors = PriorConfig.for_model('outcome', beta=(0, 2))
    updated = priors.updated(sigmaI=(0, 0.5))

    assert priors['beta'] == (0.0, 2.0)
    assert priors['sigmaI'] == (0.0, 1.0)
    assert updated['sigmaI'] == (0.0, 0.5)
    assert updated['beta'] == (0.0, 2.0)


def test_prior_unknown_name_raises():
    with pytest.raises(ValidationError) as exc_info:
        PriorConfig('exposure', {'beta': (0, 1)})

    assert exc_info.value.field == 'beta'


@pytest.mark.parametrize('value', [(0, 0), (0, -1), (0,), (0, float('inf'))])
def test_prior_malformed_pair_raises(value):
    with pytest.raises(ValidationError):
        PriorConfig('exposure', {'sigmaI': value})


def test_add_priors_leaves_indices_untouched(exposure_frame):
    data = create_standata_exposure(exposure_frame)
    with_priors = add_priors(data, sigmaI=(0, 0.1))

    assert data.priors is None
    assert with_priors.priors['sigmaI'] == (0.0, 0.1)
    np.testing.assert_array_equal(with_priors.unit_of_obs, data.unit_of_obs)
    np.testing.assert_array_equal(with_priors.to_sampler_dict()['prior_sigmaI'], [0.0, 0.1])

    again = add_priors(with_priors, etaG=(1, 5))
    assert again.priors['sigmaI'] == (0.0, 0.1)
    assert again.priors['etaG'] == (1.0, 5.0)


def test_priors_kind_must_match_dataset(exposure_frame):
    data = create_standata_exposure(exposure_frame)

    with pytest.raises(ValidationError):
        data.replace(priors=PriorConfig('outcome'))
