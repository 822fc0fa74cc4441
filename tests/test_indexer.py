"""
Unit Tests for Hierarchical Indexing
====================================

Test suite for dense index construction:
- Dense 1-based coding of arbitrary identifiers
- Idempotence and round trips
- Optional (inactive) levels
- Length validation
"""

import pytest
import numpy as np

from exposure_response.data import HierarchicalIndexer, dense_codes, recount
from exposure_response.exceptions import ValidationError


# ============================================================================
# Test 1: Dense Coding
# ============================================================================

def test_dense_codes_follow_sorted_order():
    """String identifiers are coded by their sorted order."""
    codes, count = dense_codes(['b', 'a', 'c', 'a'])

    assert count == 3
    np.testing.assert_array_equal(codes, [2, 1, 3, 1])


def test_dense_codes_of_sparse_integers():
    """Gaps in integer identifiers are closed."""
    codes, count = dense_codes([10, 50, 10, 7])

    assert count == 3
    np.testing.assert_array_equal(codes, [2, 3, 2, 1])


def test_dense_codes_are_idempotent():
    """Coding an already dense vector returns it unchanged."""
    codes, count = dense_codes([4, 4, 9, 2, 9, 11])
    again, count_again = dense_codes(codes)

    np.testing.assert_array_equal(again, codes)
    assert count_again == count


def test_dense_codes_empty():
    """An empty vector has no levels."""
    codes, count = dense_codes([])

    assert count == 0
    assert len(codes) == 0


@pytest.mark.parametrize('seed', range(10))
def test_random_identifiers_round_trip(seed):
    """For random ids: codes lie in [1, K], max equals K and map back to the ids."""
    rng = np.random.default_rng(seed)
    n_obs = int(rng.integers(1, 200))
    ids = rng.integers(-1000, 1000, size=n_obs)

    codes, count = dense_codes(ids)
    distinct = np.unique(ids)

    assert codes.min() >= 1
    assert codes.max() == count == len(distinct)
    assert recount(codes) == count
    np.testing.assert_array_equal(distinct[codes - 1], ids)


# ============================================================================
# Test 2: HierarchicalIndexer
# ============================================================================

def test_indexer_with_all_levels():
    """Group, unit and cluster are coded independently."""
    idx = HierarchicalIndexer(6).index(
        group=['ctl', 'ctl', 'trt', 'trt', 'trt', 'ctl'],
        unit=[101, 101, 205, 206, 206, 102],
        cluster=['v1', 'v1', 'v2', 'v2', 'v2', 'v1']
    )

    np.testing.assert_array_equal(idx.group_of_obs, [1, 1, 2, 2, 2, 1])
    np.testing.assert_array_equal(idx.unit_of_obs, [1, 1, 3, 4, 4, 2])
    np.testing.assert_array_equal(idx.cluster_of_obs, [1, 1, 2, 2, 2, 1])
    assert idx.counts() == {'G': 2, 'K': 2, 'n': 4}
    assert idx.active_levels == ('group', 'cluster', 'unit')


def test_indexer_all_zero_cluster_is_inactive():
    """An all-zero cluster vector gives K = 0 and an all-zero index."""
    idx = HierarchicalIndexer(4).index(
        group=[1, 1, 2, 2],
        unit=[1, 2, 3, 4],
        cluster=[0, 0, 0, 0]
    )

    assert idx.K == 0
    np.testing.assert_array_equal(idx.cluster_of_obs, np.zeros(4))
    assert 'cluster' not in idx.active_levels


def test_indexer_missing_optional_levels():
    """Omitted unit and cluster vectors are inactive."""
    idx = HierarchicalIndexer(3).index(group=['x', 'y', 'x'])

    assert idx.n == 0
    assert idx.K == 0
    np.testing.assert_array_equal(idx.unit_of_obs, [0, 0, 0])


def test_indexer_required_unit_codes_zero_ids():
    """With unit_optional=False a zero identifier is an ordinary unit."""
    idx = HierarchicalIndexer(4).index(
        group=[1, 1, 1, 1],
        unit=[0, 1, 0, 1],
        unit_optional=False
    )

    assert idx.n == 2
    np.testing.assert_array_equal(idx.unit_of_obs, [1, 2, 1, 2])


def test_indexer_required_unit_missing_raises():
    """A required unit vector cannot be omitted."""
    with pytest.raises(ValidationError) as exc_info:
        HierarchicalIndexer(2).index(group=[1, 2], unit_optional=False)

    assert exc_info.value.field == 'unit_id'


def test_indexer_length_mismatch_raises():
    """A vector of the wrong length names the offending field."""
    with pytest.raises(ValidationError) as exc_info:
        HierarchicalIndexer(4).index(
            group=[1, 1, 2, 2],
            unit=[1, 2, 3],
            cluster=[1, 1, 1, 1]
        )

    assert exc_info.value.field == 'unit_id'
    assert 'unit_id' in str(exc_info.value)


def test_indexer_rejects_negative_size():
    with pytest.raises(ValidationError):
        HierarchicalIndexer(-1)


def test_indexer_rejects_matrix_input():
    with pytest.raises(ValidationError):
        HierarchicalIndexer(2).index(group=[[1, 2], [3, 4]])


@pytest.mark.parametrize('seed', range(12))
def test_indexer_random_identifiers(seed):
    """Every active level is coded into [1, count] with max == count."""
    rng = np.random.default_rng(seed)
    n_obs = int(rng.integers(1, 150))
    group = rng.choice(['ctl', 'trt', 'low', 'high'], size=n_obs)
    unit = rng.integers(1, 500, size=n_obs)
    if seed % 3 == 0:
        cluster = np.zeros(n_obs, dtype=np.int64)
    else:
        cluster = rng.choice([-7, -3, 2, 5, 11, 19], size=n_obs)

    idx = HierarchicalIndexer(n_obs).index(group=group, unit=unit, cluster=cluster)

    arrays = {
        'group': (idx.group_of_obs, idx.G, group),
        'cluster': (idx.cluster_of_obs, idx.K, cluster),
        'unit': (idx.unit_of_obs, idx.n, unit),
    }
    for level, (codes, count, ids) in arrays.items():
        assert len(codes) == n_obs
        if level in idx.active_levels:
            assert codes.min() >= 1
            assert codes.max() == count == len(np.unique(ids))
            np.testing.assert_array_equal(np.unique(ids)[codes - 1], ids)
        else:
            assert count == 0
            np.testing.assert_array_equal(codes, np.zeros(n_obs))

    assert ('cluster' in idx.active_levels) == (seed % 3 != 0)
    assert idx.active_levels[0] == 'group'
    assert 'unit' in idx.active_levels
