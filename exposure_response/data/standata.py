"""
Sampler-Ready Hierarchical Datasets

This module builds the canonical data objects for the exposure model
(concentrations measured on units nested in clusters and groups) and the
outcome model (binary outcomes of units nested in studies). Both are
immutable; spline and prior attachments return new datasets.

"""

import dataclasses
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..exceptions import ValidationError
from .indexer import HierarchicalIndexer, check_length
from .priors import PriorConfig
from .spline import SplineBasis, add_spline_exposure, add_spline_time, validate_basis


def _frozen_array(values, dtype) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


class HierarchicalDataset:
    """
    Behaviour shared by the exposure and outcome datasets.

    Subclasses declare which level carries the fixed mean, which levels
    carry random effects and which basis matrix feeds the spline term; the
    posterior composer works only through this interface.
    """

    kind: str = ''
    mean_level: str = ''
    mean_parameter: str = ''
    basis_field: str = ''
    basis_parameter: str = ''
    outcome_field: str = ''

    def replace(self, **changes):
        """Return a copy with ``changes`` applied (the original is untouched)."""
        return dataclasses.replace(self, **changes)

    def levels(self) -> Dict[str, Tuple[np.ndarray, int]]:
        """Mapping of level name to (index array, count)."""
        raise NotImplementedError

    def random_effect_levels(self) -> List[Tuple[str, str]]:
        """(level, parameter) pairs of the levels with random effects."""
        raise NotImplementedError

    def is_active(self, level: str) -> bool:
        """A level is active when any observation uses it."""
        try:
            index, _ = self.levels()[level]
        except KeyError:
            raise ValidationError(
                f"Unknown level '{level}' for the {self.kind} dataset. "
                f"Levels: {sorted(self.levels())}",
                field=level
            ) from None
        return bool(np.any(index != 0))

    @property
    def basis_matrix(self) -> np.ndarray:
        return getattr(self, self.basis_field)

    @property
    def basis(self) -> Optional[SplineBasis]:
        return None

    @property
    def linear_offset(self) -> np.ndarray:
        """Known per-observation term added to the linear predictor."""
        return np.zeros(self.N)

    @property
    def covariates(self) -> Optional[np.ndarray]:
        return None

    @property
    def outcome(self) -> np.ndarray:
        return getattr(self, self.outcome_field)

    def prior_config(self) -> PriorConfig:
        if self.priors is None:
            return PriorConfig(self.kind)
        return self.priors

    def _validate_common(self, count_fields: Dict[str, str]):
        for name, value in self._per_observation().items():
            if len(value) != self.N:
                raise ValidationError(
                    f"'{name}' must have length N={self.N}. Got: {len(value)}",
                    field=name
                )
        for index_name, count_name in count_fields.items():
            index = getattr(self, index_name)
            count = getattr(self, count_name)
            if np.any(index < 0) or np.any(index > count):
                raise ValidationError(
                    f"'{index_name}' values must lie in [0, {count_name}={count}]",
                    field=index_name
                )
        mean_index, _ = self.levels()[self.mean_level]
        if np.any(mean_index < 1):
            raise ValidationError(
                f"Every observation needs a {self.mean_level} code >= 1",
                field=self.mean_level
            )
        basis = self.basis_matrix
        if basis.ndim != 2 or basis.shape[0] != self.N:
            raise ValidationError(
                f"'{self.basis_field}' must have N={self.N} rows. "
                f"Got shape {basis.shape}",
                field=self.basis_field
            )
        if self.ltmean is not None and len(self.ltmean) != self.N:
            raise ValidationError(
                f"'ltmean' must have length N={self.N}. Got: {len(self.ltmean)}",
                field='ltmean'
            )
        if self.priors is not None and self.priors.kind != self.kind:
            raise ValidationError(
                f"Priors for the {self.priors.kind} model cannot be attached "
                f"to a {self.kind} dataset",
                field='priors'
            )

    def _per_observation(self) -> Dict[str, np.ndarray]:
        raise NotImplementedError


@dataclass(frozen=True, eq=False)
class ExposureDataset(HierarchicalDataset):
    """
    Data for the exposure model.

    Attributes:
        N: Number of observations
        G: Number of groups
        K: Number of clusters (0 when the cluster level is inactive)
        n: Number of units
        group_of_obs: Group code of each observation, in [1, G]
        cluster_of_obs: Cluster code of each observation, all zeros if K == 0
        unit_of_obs: Unit code of each observation, in [1, n]
        w: Concentration observations (log scale when log-transformed)
        time: Time of each observation
        Mt: Temporal spline matrix, shape (N, timedf)
        timedf: Number of temporal spline columns
        time_basis: Basis specification behind ``Mt``, if known
        priors: Prior configuration, if attached
        ltmean: Fitted or simulated mean per observation, if attached
    """
    N: int
    G: int
    K: int
    n: int
    group_of_obs: np.ndarray
    cluster_of_obs: np.ndarray
    unit_of_obs: np.ndarray
    w: np.ndarray
    time: np.ndarray
    Mt: np.ndarray
    timedf: int = 0
    time_basis: Optional[SplineBasis] = None
    priors: Optional[PriorConfig] = None
    ltmean: Optional[np.ndarray] = None

    kind = 'exposure'
    mean_level = 'group'
    mean_parameter = 'etaG'
    basis_field = 'Mt'
    basis_parameter = 'theta'
    outcome_field = 'w'

    def __post_init__(self):
        for name in ('group_of_obs', 'cluster_of_obs', 'unit_of_obs'):
            object.__setattr__(self, name, _frozen_array(getattr(self, name), np.int64))
        for name in ('w', 'time'):
            object.__setattr__(self, name, _frozen_array(getattr(self, name), np.float64))
        Mt = validate_basis(self.Mt, int(self.N), 'Mt')
        object.__setattr__(self, 'Mt', _frozen_array(Mt, np.float64))
        object.__setattr__(self, 'timedf', int(self.Mt.shape[1]))
        if self.ltmean is not None:
            object.__setattr__(self, 'ltmean', _frozen_array(self.ltmean, np.float64))
        self._validate_common({
            'group_of_obs': 'G',
            'cluster_of_obs': 'K',
            'unit_of_obs': 'n',
        })

    def _per_observation(self) -> Dict[str, np.ndarray]:
        return {
            'group_of_obs': self.group_of_obs,
            'cluster_of_obs': self.cluster_of_obs,
            'unit_of_obs': self.unit_of_obs,
            'w': self.w,
            'time': self.time,
        }

    def levels(self) -> Dict[str, Tuple[np.ndarray, int]]:
        return {
            'group': (self.group_of_obs, self.G),
            'cluster': (self.cluster_of_obs, self.K),
            'unit': (self.unit_of_obs, self.n),
        }

    def random_effect_levels(self) -> List[Tuple[str, str]]:
        return [('cluster', 'reK'), ('unit', 'reI')]

    @property
    def basis(self) -> Optional[SplineBasis]:
        return self.time_basis

    def to_sampler_dict(self) -> Dict[str, Union[int, np.ndarray]]:
        """Flat named values passed to the sampler."""
        out = {
            'G': self.G,
            'K': self.K,
            'n': self.n,
            'N': self.N,
            'group_of_obs': np.asarray(self.group_of_obs),
            'cluster_of_obs': np.asarray(self.cluster_of_obs),
            'unit_of_obs': np.asarray(self.unit_of_obs),
            'w': np.asarray(self.w),
            'time': np.asarray(self.time),
            'Mt': np.asarray(self.Mt),
            'timedf': self.timedf,
        }
        out.update(self.prior_config().as_sampler_dict())
        return out


@dataclass(frozen=True, eq=False)
class OutcomeDataset(HierarchicalDataset):
    """
    Data for the outcome model.

    Attributes:
        N: Number of observations
        S: Number of studies
        n: Number of units (0 when no unit random effect is used)
        study_of_obs: Study code of each observation, in [1, S]
        unit_of_obs: Unit code of each observation, all zeros if n == 0
        y: Binary outcomes
        x: Exposure of each observation
        offset: Log time-at-risk offset
        Z: Covariate matrix, shape (N, p)
        p: Number of covariates
        Mx: Exposure spline matrix, shape (N, xdf)
        xdf: Number of exposure spline columns
        x_basis: Basis specification behind ``Mx``, if known
        priors: Prior configuration, if attached
        ltmean: Fitted or simulated logit-scale mean, if attached
    """
    N: int
    S: int
    n: int
    study_of_obs: np.ndarray
    unit_of_obs: np.ndarray
    y: np.ndarray
    x: np.ndarray
    offset: np.ndarray
    Z: np.ndarray
    Mx: np.ndarray
    p: int = 0
    xdf: int = 0
    x_basis: Optional[SplineBasis] = None
    priors: Optional[PriorConfig] = None
    ltmean: Optional[np.ndarray] = None

    kind = 'outcome'
    mean_level = 'study'
    mean_parameter = 'etaS'
    basis_field = 'Mx'
    basis_parameter = 'beta'
    outcome_field = 'y'

    def __post_init__(self):
        raw_y = np.asarray(self.y)
        if raw_y.size and not np.all(np.isin(raw_y, (0, 1))):
            raise ValidationError("'y' must contain only 0 and 1", field='y')
        for name in ('study_of_obs', 'unit_of_obs', 'y'):
            object.__setattr__(self, name, _frozen_array(getattr(self, name), np.int64))
        for name in ('x', 'offset'):
            object.__setattr__(self, name, _frozen_array(getattr(self, name), np.float64))
        Mx = validate_basis(self.Mx, int(self.N), 'Mx')
        Z = validate_basis(self.Z, int(self.N), 'Z')
        object.__setattr__(self, 'Mx', _frozen_array(Mx, np.float64))
        object.__setattr__(self, 'Z', _frozen_array(Z, np.float64))
        object.__setattr__(self, 'xdf', int(self.Mx.shape[1]))
        object.__setattr__(self, 'p', int(self.Z.shape[1]))
        if self.ltmean is not None:
            object.__setattr__(self, 'ltmean', _frozen_array(self.ltmean, np.float64))
        self._validate_common({
            'study_of_obs': 'S',
            'unit_of_obs': 'n',
        })

    def _per_observation(self) -> Dict[str, np.ndarray]:
        return {
            'study_of_obs': self.study_of_obs,
            'unit_of_obs': self.unit_of_obs,
            'y': self.y,
            'x': self.x,
            'offset': self.offset,
        }

    def levels(self) -> Dict[str, Tuple[np.ndarray, int]]:
        return {
            'study': (self.study_of_obs, self.S),
            'unit': (self.unit_of_obs, self.n),
        }

    def random_effect_levels(self) -> List[Tuple[str, str]]:
        return [('unit', 'reI')]

    @property
    def basis(self) -> Optional[SplineBasis]:
        return self.x_basis

    @property
    def linear_offset(self) -> np.ndarray:
        return np.asarray(self.offset)

    @property
    def covariates(self) -> Optional[np.ndarray]:
        return self.Z if self.p > 0 else None

    def to_sampler_dict(self) -> Dict[str, Union[int, np.ndarray]]:
        """Flat named values passed to the sampler."""
        out = {
            'S': self.S,
            'n': self.n,
            'N': self.N,
            'study_of_obs': np.asarray(self.study_of_obs),
            'unit_of_obs': np.asarray(self.unit_of_obs),
            'y': np.asarray(self.y),
            'x': np.asarray(self.x),
            'offset': np.asarray(self.offset),
            'Z': np.asarray(self.Z),
            'p': self.p,
            'Mx': np.asarray(self.Mx),
            'xdf': self.xdf,
        }
        out.update(self.prior_config().as_sampler_dict())
        return out


def _column(data: Optional[pd.DataFrame], value, column: str):
    """Explicit argument wins; otherwise take the column from ``data``."""
    if value is not None:
        return value
    if data is not None and column in data.columns:
        return data[column].to_numpy()
    return None


def create_standata_exposure(
    data: Optional[pd.DataFrame] = None,
    group=None,
    conc=None,
    unit_id=None,
    clust_id=None,
    time=None,
    Mt=None,
    log_transform: bool = False,
    return_addition: bool = False
) -> Union[ExposureDataset, Tuple[ExposureDataset, pd.DataFrame]]:
    """
    Create the dataset for fitting the exposure model.

    Parameters
    ----------
    data : pd.DataFrame, optional
        Long-format data; columns 'group', 'conc', 'unit_id', 'clust_id' and
        'time' are used for any argument not given explicitly
    group : array-like, shape (N,)
        Group assignment of each observation
    conc : array-like, shape (N,)
        Exposure concentrations
    unit_id : array-like, shape (N,)
        Unit (person, household) of each observation
    clust_id : array-like, shape (N,), optional
        Cluster membership; omitted or all zero means no cluster level
    time : array-like, shape (N,), optional
        Observation times; zeros when omitted
    Mt : array-like or SplineBasis, optional
        Temporal spline matrix (see :func:`add_spline_time`)
    log_transform : bool, optional (default=False)
        If True, model ``log(conc)``
    return_addition : bool, optional (default=False)
        If True, also return ``data`` with the derived index columns added

    Returns
    -------
    dataset : ExposureDataset
        Or ``(dataset, frame)`` when ``return_addition=True``

    Notes
    -----
    Identifiers are coded in sorted order of their distinct values, so the
    ordering of groups, units and clusters follows that sort.
    """
    group = _column(data, group, 'group')
    conc = _column(data, conc, 'conc')
    unit_id = _column(data, unit_id, 'unit_id')
    clust_id = _column(data, clust_id, 'clust_id')
    time = _column(data, time, 'time')

    if conc is None:
        raise ValidationError("'conc' is required", field='conc')
    if group is None:
        raise ValidationError("'group' is required", field='group')
    conc = np.asarray(conc, dtype=np.float64).reshape(-1)
    N = len(conc)

    index = HierarchicalIndexer(N).index(
        group=group,
        unit=unit_id,
        cluster=clust_id,
        unit_optional=False
    )
    if time is None:
        time = np.zeros(N)
    else:
        time = check_length(np.asarray(time, dtype=np.float64), N, 'time')

    if log_transform:
        if np.any(conc <= 0):
            raise ValidationError(
                "'conc' must be strictly positive when log_transform=True",
                field='conc'
            )
        w = np.log(conc)
    else:
        w = conc

    dataset = ExposureDataset(
        N=N,
        G=index.G,
        K=index.K,
        n=index.n,
        group_of_obs=index.group_of_obs,
        cluster_of_obs=index.cluster_of_obs,
        unit_of_obs=index.unit_of_obs,
        w=w,
        time=time,
        Mt=np.zeros((N, 0))
    )
    if Mt is not None:
        dataset = add_spline_time(dataset, Mt)

    if not return_addition:
        return dataset

    frame = data.copy() if data is not None else pd.DataFrame({'conc': conc})
    frame['group_of_obs'] = index.group_of_obs
    frame['unit_of_obs'] = index.unit_of_obs
    frame['cluster_of_obs'] = index.cluster_of_obs
    frame['time'] = time
    return dataset, frame


def create_standata_outcome(
    data: Optional[pd.DataFrame] = None,
    study=None,
    y=None,
    exposure=None,
    unit_id=None,
    time_at_risk=None,
    covariates=None,
    Mx=None,
    return_addition: bool = False
) -> Union[OutcomeDataset, Tuple[OutcomeDataset, pd.DataFrame]]:
    """
    Create the dataset for fitting the outcome model.

    Parameters
    ----------
    data : pd.DataFrame, optional
        Long-format data; columns 'study', 'y', 'exposure', 'unit_id' and
        'time_at_risk' are used for any argument not given explicitly
    study : array-like, shape (N,)
        Study of each observation
    y : array-like, shape (N,)
        Binary outcome (0/1)
    exposure : array-like, shape (N,)
        Exposure value of each observation
    unit_id : array-like, shape (N,), optional
        Unit of each observation; omitted or all zero means no unit effect
    time_at_risk : array-like, shape (N,), optional
        Positive at-risk time; enters the model as ``log(time_at_risk)``
    covariates : array-like (N, p), pd.DataFrame, or list of str, optional
        Covariate matrix, or names of columns of ``data``
    Mx : array-like or SplineBasis, optional
        Exposure spline matrix (see :func:`add_spline_exposure`)
    return_addition : bool, optional (default=False)
        If True, also return ``data`` with the derived index columns added

    Returns
    -------
    dataset : OutcomeDataset
        Or ``(dataset, frame)`` when ``return_addition=True``
    """
    study = _column(data, study, 'study')
    y = _column(data, y, 'y')
    exposure = _column(data, exposure, 'exposure')
    unit_id = _column(data, unit_id, 'unit_id')
    time_at_risk = _column(data, time_at_risk, 'time_at_risk')

    for name, value in (('study', study), ('y', y), ('exposure', exposure)):
        if value is None:
            raise ValidationError(f"'{name}' is required", field=name)
    y = np.asarray(y).reshape(-1)
    N = len(y)
    exposure = check_length(np.asarray(exposure, dtype=np.float64), N, 'exposure')

    index = HierarchicalIndexer(N).index(
        group=study,
        unit=unit_id,
        names=('study', 'unit_id', 'clust_id')
    )

    if time_at_risk is None:
        offset = np.zeros(N)
    else:
        time_at_risk = check_length(
            np.asarray(time_at_risk, dtype=np.float64), N, 'time_at_risk'
        )
        if np.any(time_at_risk <= 0):
            raise ValidationError(
                "'time_at_risk' must be strictly positive", field='time_at_risk'
            )
        offset = np.log(time_at_risk)

    if isinstance(covariates, (list, tuple)) and covariates and \
            all(isinstance(c, str) for c in covariates):
        if data is None:
            raise ValidationError(
                "Covariate column names require 'data'", field='covariates'
            )
        covariates = data[list(covariates)]
    if isinstance(covariates, pd.DataFrame):
        covariates = covariates.to_numpy(dtype=np.float64)
    Z = validate_basis(covariates, N, 'covariates')

    dataset = OutcomeDataset(
        N=N,
        S=index.G,
        n=index.n,
        study_of_obs=index.group_of_obs,
        unit_of_obs=index.unit_of_obs,
        y=y,
        x=exposure,
        offset=offset,
        Z=Z,
        Mx=np.zeros((N, 0))
    )
    if Mx is not None:
        dataset = add_spline_exposure(dataset, Mx)

    if not return_addition:
        return dataset

    frame = data.copy() if data is not None else pd.DataFrame({'y': y, 'exposure': exposure})
    frame['study_of_obs'] = index.group_of_obs
    frame['unit_of_obs'] = index.unit_of_obs
    frame['offset'] = offset
    return dataset, frame
