"""
Hierarchical Index Construction

Converts arbitrary group / cluster / unit identifiers into dense 1-based
integer codes. Code 0 is reserved for "level not used for this observation".
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import ValidationError


def _as_vector(values, name: str) -> np.ndarray:
    """Convert identifiers to a 1-D array."""
    arr = np.asarray(values)
    if arr.ndim == 0:
        arr = arr.reshape(1)
    if arr.ndim != 1:
        raise ValidationError(
            f"'{name}' must be one-dimensional. Got shape {arr.shape}",
            field=name
        )
    return arr


def check_length(values, n_obs: int, name: str) -> np.ndarray:
    """
    Validate that a per-observation vector has exactly ``n_obs`` entries.

    Raises
    ------
    ValidationError
        If the length differs from ``n_obs``
    """
    arr = _as_vector(values, name)
    if len(arr) != n_obs:
        raise ValidationError(
            f"Length of '{name}' must equal the number of observations "
            f"({n_obs}). Got: {len(arr)}",
            field=name
        )
    return arr


def dense_codes(values, name: str = 'values') -> Tuple[np.ndarray, int]:
    """
    Map identifiers to dense 1-based integer codes.

    Codes follow the sorted order of the distinct identifier values, so
    repeated calls on the same input give the same codes and an input that
    is already ``1..K`` is returned unchanged.

    Parameters
    ----------
    values : array-like
        Identifiers of any sortable type
    name : str
        Field name used in error messages

    Returns
    -------
    codes : np.ndarray of int
        Dense codes in ``[1, count]``
    count : int
        Number of distinct identifiers
    """
    arr = _as_vector(values, name)
    if len(arr) == 0:
        return np.zeros(0, dtype=np.int64), 0
    try:
        levels, inverse = np.unique(arr, return_inverse=True)
    except TypeError as e:
        raise ValidationError(
            f"Identifiers in '{name}' are not mutually comparable: {e}",
            field=name
        ) from e
    codes = inverse.reshape(-1).astype(np.int64) + 1
    return codes, int(len(levels))


def optional_codes(
    values,
    n_obs: int,
    name: str = 'values'
) -> Tuple[np.ndarray, int]:
    """
    Dense codes for an optional level.

    ``None`` or an all-zero vector marks the level inactive: the index array
    is all zeros and the count is 0.
    """
    if values is None:
        return np.zeros(n_obs, dtype=np.int64), 0
    arr = check_length(values, n_obs, name)
    if arr.dtype.kind in 'biuf' and not np.any(arr != 0):
        return np.zeros(n_obs, dtype=np.int64), 0
    return dense_codes(arr, name)


def recount(index_array) -> int:
    """Re-derive a level count from an index array (0 when inactive)."""
    arr = np.asarray(index_array)
    if arr.size == 0:
        return 0
    return int(arr.max())


@dataclass(frozen=True)
class HierarchicalIndex:
    """
    Dense per-observation index arrays with their level counts.

    Attributes:
        N: Number of observations
        group_of_obs: Group code per observation, shape (N,)
        cluster_of_obs: Cluster code per observation, all zeros if inactive
        unit_of_obs: Unit code per observation, all zeros if inactive
        G: Number of groups
        K: Number of clusters (0 when inactive)
        n: Number of units (0 when inactive)
    """
    N: int
    group_of_obs: np.ndarray
    cluster_of_obs: np.ndarray
    unit_of_obs: np.ndarray
    G: int
    K: int
    n: int

    @property
    def active_levels(self) -> Tuple[str, ...]:
        counts = (('group', self.G), ('cluster', self.K), ('unit', self.n))
        return tuple(level for level, count in counts if count > 0)

    def counts(self) -> Dict[str, int]:
        return {'G': self.G, 'K': self.K, 'n': self.n}


class HierarchicalIndexer:
    """
    Builds validated dense index arrays for a fixed number of observations.

    Parameters
    ----------
    n_obs : int
        Number of observations every identifier vector must match

    Examples
    --------
    >>> indexer = HierarchicalIndexer(4)
    >>> idx = indexer.index(group=['a', 'a', 'b', 'b'], unit=[10, 11, 12, 12])
    >>> idx.group_of_obs
    array([1, 1, 2, 2])
    >>> idx.K
    0
    """

    def __init__(self, n_obs: int):
        if n_obs < 0:
            raise ValidationError(
                f"n_obs must be non-negative. Got: {n_obs}", field='n_obs'
            )
        self.n_obs = int(n_obs)

    def index(
        self,
        group: Sequence,
        unit: Optional[Sequence] = None,
        cluster: Optional[Sequence] = None,
        unit_optional: bool = True,
        names: Tuple[str, str, str] = ('group', 'unit_id', 'clust_id')
    ) -> HierarchicalIndex:
        """
        Index group, unit and (optional) cluster identifiers.

        All vectors are length-checked before any code is assigned, so a
        mismatch never yields a partially built index. With
        ``unit_optional=False`` every unit identifier, zero included, is coded.
        """
        group_name, unit_name, cluster_name = names
        group = check_length(group, self.n_obs, group_name)
        if unit is not None:
            unit = check_length(unit, self.n_obs, unit_name)
        if cluster is not None:
            cluster = check_length(cluster, self.n_obs, cluster_name)

        group_of_obs, G = dense_codes(group, group_name)
        if unit_optional:
            unit_of_obs, n = optional_codes(unit, self.n_obs, unit_name)
        elif unit is None:
            raise ValidationError(
                f"'{unit_name}' is required", field=unit_name
            )
        else:
            unit_of_obs, n = dense_codes(unit, unit_name)
        cluster_of_obs, K = optional_codes(cluster, self.n_obs, cluster_name)

        return HierarchicalIndex(
            N=self.n_obs,
            group_of_obs=group_of_obs,
            cluster_of_obs=cluster_of_obs,
            unit_of_obs=unit_of_obs,
            G=G,
            K=K,
            n=n
        )
