"""
Simulation Skeletons for Exposure and Outcome Models

A skeleton pairs a study design (a dataset with index arrays but no
outcomes yet) with the generative parameters that fill it in. Parameters
are set level by level with ``update_parameter``; once every prerequisite
is present ``sample_observations`` draws the outcomes and writes them, with
the conditional means, back into ``standata``.

"""

import copy
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.special import expit

from ..data.standata import (
    ExposureDataset,
    OutcomeDataset,
    create_standata_exposure,
    create_standata_outcome
)
from ..exceptions import StateError, ValidationError


class _Unset:
    """Marker for a parameter slot that has not been given a value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNSET = _Unset()


class SkeletonState(Enum):
    UNCONFIGURED = 'unconfigured'
    PARTIALLY_CONFIGURED = 'partially_configured'
    CONFIGURED = 'configured'
    SAMPLED = 'sampled'


class _Skeleton:
    """
    State shared by the exposure and outcome skeletons.

    Subclasses define the parameter slots (``_declare_slots``), the
    prerequisites of sampling and the generative model itself.
    """

    def __init__(self, standata, random_seed: Optional[int] = None):
        self.standata = standata
        self.random_seed = random_seed
        self._rng = np.random.default_rng(random_seed)
        self._sampled = False
        self.structure: Dict[str, Dict[str, object]] = {
            level: {ptype: UNSET for ptype in ptypes}
            for level, ptypes in self._declare_slots().items()
        }

    def _declare_slots(self) -> Dict[str, Tuple[str, ...]]:
        raise NotImplementedError

    def _level_size(self, level: str) -> int:
        if level == 'observation':
            return self.standata.N
        return self.standata.levels()[level][1]

    # ---- Parameter updates ----

    def update_parameter(self, level: str, type: str, value=None) -> '_Skeleton':
        """
        Set one parameter of the generative model.

        Parameters
        ----------
        level : str
            Hierarchical level, e.g. 'group', 'cluster', 'unit', 'observation'
        type : str
            Parameter type at that level: 'mean', 'sd', 're', 'timefn',
            'xfn', 'offset' or 'coef', as declared for this skeleton
        value : optional
            New value. For ``type='re'`` omit it to draw the random effects
            from a zero-mean normal with the level's configured sd.

        Returns
        -------
        self
            Repeated updates of the same slot overwrite the previous value.

        Raises
        ------
        ValidationError
            If the level/type combination is not declared or the value has
            the wrong shape
        StateError
            If random effects are drawn before the level's sd is set
        """
        if level not in self.structure:
            raise ValidationError(
                f"Unknown level '{level}'. Available levels: {list(self.structure)}",
                field=level
            )
        if type not in self.structure[level]:
            raise ValidationError(
                f"Parameter type '{type}' is not supported at level '{level}'. "
                f"Supported: {list(self.structure[level])}",
                field=f'{level}/{type}'
            )

        checked = self._check_value(level, type, value)
        self.structure[level][type] = checked
        self._sampled = False
        return self

    def _check_value(self, level: str, type: str, value):
        name = f'{level}/{type}'
        size = self._level_size(level)

        if type == 'sd':
            sd = np.asarray(value, dtype=np.float64)
            if sd.ndim != 0 or not np.isfinite(sd) or sd < 0:
                raise ValidationError(
                    f"'{name}' must be a non-negative scalar. Got: {value!r}",
                    field=name
                )
            return float(sd)

        if type in ('timefn', 'xfn'):
            if not callable(value):
                raise ValidationError(
                    f"'{name}' must be a callable. Got: {value!r}", field=name
                )
            return value

        if type == 're' and value is None:
            return self._draw_effects(level)

        if type == 'coef':
            size = self.standata.p

        if value is None:
            raise ValidationError(f"'{name}' requires a value", field=name)
        arr = np.asarray(value, dtype=np.float64)
        if arr.ndim == 0 and type in ('mean', 'offset'):
            arr = np.full(size, float(arr))
        arr = arr.reshape(-1) if arr.ndim <= 1 else arr
        if arr.shape != (size,):
            raise ValidationError(
                f"'{name}' must have length {size}. Got shape {arr.shape}",
                field=name
            )
        if not np.all(np.isfinite(arr)):
            raise ValidationError(f"'{name}' must be finite", field=name)
        return arr

    def _draw_effects(self, level: str, rng=None) -> np.ndarray:
        sd = self.structure[level]['sd']
        if sd is UNSET:
            raise StateError(
                f"Cannot draw random effects at level '{level}': "
                f"parameter 'sd' at level '{level}' is not set",
                level=level,
                parameter='sd'
            )
        rng = self._rng if rng is None else rng
        return rng.normal(0.0, sd, size=self._level_size(level))

    def get_parameter(self, level: str, type: str):
        try:
            return self.structure[level][type]
        except KeyError:
            raise ValidationError(
                f"Parameter '{level}/{type}' is not declared for this skeleton",
                field=f'{level}/{type}'
            ) from None

    # ---- State ----

    def required_parameters(self) -> List[Tuple[str, str]]:
        """(level, type) pairs that must be set before sampling."""
        raise NotImplementedError

    def missing_parameters(self) -> List[Tuple[str, str]]:
        return [
            (level, ptype) for level, ptype in self.required_parameters()
            if self.structure[level][ptype] is UNSET
        ]

    @property
    def state(self) -> SkeletonState:
        if self._sampled:
            return SkeletonState.SAMPLED
        if not self.missing_parameters():
            return SkeletonState.CONFIGURED
        any_set = any(
            value is not UNSET
            for slots in self.structure.values()
            for value in slots.values()
        )
        if any_set:
            return SkeletonState.PARTIALLY_CONFIGURED
        return SkeletonState.UNCONFIGURED

    def copy(self) -> '_Skeleton':
        """Independent copy, including the random number generator state."""
        return copy.deepcopy(self)

    # ---- Sampling ----

    def sample_observations(self, random_seed: Optional[int] = None) -> '_Skeleton':
        """
        Draw a new outcome vector from the configured generative model.

        Parameters
        ----------
        random_seed : int, optional
            Reseed the skeleton's generator before drawing

        Returns
        -------
        self
            ``standata`` now holds the sampled outcome and, in ``ltmean``,
            the conditional mean of every observation.

        Raises
        ------
        StateError
            Naming the first missing prerequisite
        ValidationError
            If ``timefn`` or ``xfn`` returns the wrong shape

        On any error the skeleton, its cached random effects and its
        generator are left unchanged.

        Notes
        -----
        Calling this again on a sampled skeleton silently replaces the
        previous draw. Cached random effects are kept, so repeated calls
        vary only the observation-level noise.
        """
        missing = self.missing_parameters()
        if missing:
            level, ptype = missing[0]
            raise StateError(
                f"Cannot sample observations: parameter '{ptype}' at level "
                f"'{level}' is not set. Missing: "
                + ', '.join(f'{lv}/{pt}' for lv, pt in missing),
                level=level,
                parameter=ptype
            )

        if random_seed is not None:
            rng = np.random.default_rng(random_seed)
        else:
            rng = copy.deepcopy(self._rng)

        effects = {}
        for level, ptype in self._random_effect_slots():
            effects[level] = self.structure[level][ptype]
            if effects[level] is UNSET:
                effects[level] = self._draw_effects(level, rng)

        mean = self._conditional_mean(effects)
        standata = self._draw(mean, rng)

        # Commit only once every draw has succeeded
        for level, value in effects.items():
            self.structure[level]['re'] = value
        self._rng = rng
        self.standata = standata
        self._sampled = True
        return self

    def _random_effect_slots(self) -> List[Tuple[str, str]]:
        return [
            (level, 're') for level, slots in self.structure.items()
            if 're' in slots
        ]

    def _effect_at_obs(self, level: str, effects: Dict[str, np.ndarray]) -> np.ndarray:
        index, _ = self.standata.levels()[level]
        return np.asarray(effects[level])[index - 1]

    def _response(self, level: str, ptype: str, values: np.ndarray) -> np.ndarray:
        fn: Callable = self.structure[level][ptype]
        result = np.asarray(fn(values), dtype=np.float64)
        try:
            return np.broadcast_to(result, (self.standata.N,)).astype(np.float64)
        except ValueError:
            raise ValidationError(
                f"'{level}/{ptype}' must return a scalar or one value per "
                f"observation ({self.standata.N}). Got shape {result.shape}",
                field=f'{level}/{ptype}'
            ) from None

    def _conditional_mean(self, effects: Dict[str, np.ndarray]) -> np.ndarray:
        raise NotImplementedError

    def _draw(self, mean: np.ndarray, rng: np.random.Generator):
        raise NotImplementedError

    def summary(self) -> pd.DataFrame:
        """
        Per-group summary of the sampled data.

        Returns
        -------
        summary : pd.DataFrame
            Columns: level code, n_obs, n_units, outcome_mean, mean_mean

        Raises
        ------
        StateError
            If no observations have been sampled yet
        """
        if self.standata.ltmean is None:
            raise StateError(
                "No sampled observations to summarize. "
                "Call sample_observations() first."
            )
        data = self.standata
        top = data.mean_level
        frame = pd.DataFrame({
            top: data.levels()[top][0],
            'unit': data.unit_of_obs,
            'outcome': data.outcome,
            'mean': data.ltmean,
        })
        summary = frame.groupby(top).agg(
            n_obs=('outcome', 'size'),
            n_units=('unit', 'nunique'),
            outcome_mean=('outcome', 'mean'),
            mean_mean=('mean', 'mean'),
        )
        return summary.reset_index()


class ExposureSkeleton(_Skeleton):
    """
    Generative model for exposure concentrations.

    ``w[o] = groupMean[g] + clusterRE[k] + unitRE[i] + timefn(time[o]) + e``
    with ``e ~ Normal(0, observation sd)``; the cluster term is present only
    when the design has clusters.

    Parameters
    ----------
    standata : ExposureDataset
        Study design; its ``w`` values are replaced when sampling
    random_seed : int, optional
        Seed for random effect and observation draws

    Examples
    --------
    >>> skel = create_skeleton_parallel(G=2, n_per_group=10, obs_per_unit=2,
    ...                                 random_seed=1)
    >>> skel.update_parameter('group', 'mean', [3, 4])
    >>> skel.update_parameter('unit', 'sd', 1)
    >>> skel.update_parameter('observation', 'sd', 1)
    >>> skel.update_parameter('observation', 'timefn', lambda t: 0 * t)
    >>> skel.sample_observations().standata.w.shape
    (40,)
    """

    def __init__(self, standata: ExposureDataset, random_seed: Optional[int] = None):
        if not isinstance(standata, ExposureDataset):
            raise ValidationError(
                "ExposureSkeleton requires an ExposureDataset", field='standata'
            )
        super().__init__(standata, random_seed)

    def _declare_slots(self) -> Dict[str, Tuple[str, ...]]:
        slots = {'group': ('mean',)}
        if self.standata.is_active('cluster'):
            slots['cluster'] = ('sd', 're')
        slots['unit'] = ('sd', 're')
        slots['observation'] = ('sd', 'timefn')
        return slots

    def required_parameters(self) -> List[Tuple[str, str]]:
        required = [('group', 'mean')]
        if 'cluster' in self.structure:
            required.append(('cluster', 'sd'))
        required += [('unit', 'sd'), ('observation', 'sd'), ('observation', 'timefn')]
        return required

    def _conditional_mean(self, effects: Dict[str, np.ndarray]) -> np.ndarray:
        data = self.standata
        mean = np.asarray(self.structure['group']['mean'])[data.group_of_obs - 1]
        if 'cluster' in self.structure:
            mean = mean + self._effect_at_obs('cluster', effects)
        mean = mean + self._effect_at_obs('unit', effects)
        return mean + self._response('observation', 'timefn', np.asarray(data.time))

    def _draw(self, mean: np.ndarray, rng: np.random.Generator) -> ExposureDataset:
        sd = self.structure['observation']['sd']
        w = rng.normal(mean, sd)
        return self.standata.replace(w=w, ltmean=mean)

    @property
    def meanW(self) -> Optional[np.ndarray]:
        """Conditional means of the most recent draw."""
        return self.standata.ltmean


class OutcomeSkeleton(_Skeleton):
    """
    Generative model for binary outcomes.

    ``logit P(y[o] = 1) = studyMean[s] + unitRE[i] + xfn(x[o]) + Z[o] @ coef
    + offset[o]``; the unit and covariate terms are present only when the
    design has them.

    Parameters
    ----------
    standata : OutcomeDataset
        Study design; its ``y`` values are replaced when sampling
    random_seed : int, optional
        Seed for random effect and outcome draws
    """

    def __init__(self, standata: OutcomeDataset, random_seed: Optional[int] = None):
        if not isinstance(standata, OutcomeDataset):
            raise ValidationError(
                "OutcomeSkeleton requires an OutcomeDataset", field='standata'
            )
        super().__init__(standata, random_seed)

    def _declare_slots(self) -> Dict[str, Tuple[str, ...]]:
        slots = {'study': ('mean',)}
        if self.standata.is_active('unit'):
            slots['unit'] = ('sd', 're')
        observation = ('xfn', 'offset')
        if self.standata.p > 0:
            observation += ('coef',)
        slots['observation'] = observation
        return slots

    def required_parameters(self) -> List[Tuple[str, str]]:
        required = [('study', 'mean')]
        if 'unit' in self.structure:
            required.append(('unit', 'sd'))
        required += [
            ('observation', ptype) for ptype in self.structure['observation']
        ]
        return required

    def _conditional_mean(self, effects: Dict[str, np.ndarray]) -> np.ndarray:
        data = self.standata
        mean = np.asarray(self.structure['study']['mean'])[data.study_of_obs - 1]
        if 'unit' in self.structure:
            mean = mean + self._effect_at_obs('unit', effects)
        mean = mean + self._response('observation', 'xfn', np.asarray(data.x))
        if 'coef' in self.structure['observation']:
            mean = mean + np.asarray(data.Z) @ self.structure['observation']['coef']
        return mean + self.structure['observation']['offset']

    def _draw(self, mean: np.ndarray, rng: np.random.Generator) -> OutcomeDataset:
        y = rng.binomial(1, expit(mean))
        return self.standata.replace(
            y=y,
            offset=self.structure['observation']['offset'],
            ltmean=mean
        )

    @property
    def meanY(self) -> Optional[np.ndarray]:
        """Logit-scale conditional means of the most recent draw."""
        return self.standata.ltmean


# ---- Design builders ----

def _check_positive(**values):
    for name, value in values.items():
        if int(value) < 1:
            raise ValidationError(f"{name} must be >= 1. Got: {value}", field=name)


def create_skeleton_parallel(
    G: int,
    n_per_group: int,
    obs_per_unit: int,
    clusters_per_group: int = 0,
    time_range: Tuple[float, float] = (0.0, 1.0),
    random_seed: Optional[int] = None
) -> ExposureSkeleton:
    """
    Skeleton for a parallel-arm design.

    Each of the ``G * n_per_group`` units belongs to one group for the whole
    study and is measured ``obs_per_unit`` times at uniformly drawn times.

    Parameters
    ----------
    G : int
        Number of groups (arms)
    n_per_group : int
        Units per group
    obs_per_unit : int
        Observations per unit
    clusters_per_group : int, optional (default=0)
        If positive, units of each group are assigned round-robin to this
        many clusters; 0 means no cluster level
    time_range : tuple, optional (default=(0, 1))
        Range of observation times
    random_seed : int, optional
        Seed for the times and all later draws
    """
    _check_positive(G=G, n_per_group=n_per_group, obs_per_unit=obs_per_unit)
    if clusters_per_group < 0 or clusters_per_group > n_per_group:
        raise ValidationError(
            f"clusters_per_group must be in [0, n_per_group={n_per_group}]. "
            f"Got: {clusters_per_group}",
            field='clusters_per_group'
        )
    rng = np.random.default_rng(random_seed)

    n_units = G * n_per_group
    unit_group = np.repeat(np.arange(1, G + 1), n_per_group)
    unit_id = np.repeat(np.arange(1, n_units + 1), obs_per_unit)
    group = np.repeat(unit_group, obs_per_unit)
    if clusters_per_group > 0:
        within = np.tile(np.arange(n_per_group) % clusters_per_group, G)
        unit_cluster = (unit_group - 1) * clusters_per_group + within + 1
        clust_id = np.repeat(unit_cluster, obs_per_unit)
    else:
        clust_id = None

    lower, upper = time_range
    time = np.sort(
        rng.uniform(lower, upper, size=(n_units, obs_per_unit)), axis=1
    ).reshape(-1)

    standata = create_standata_exposure(
        group=group,
        conc=np.zeros(len(unit_id)),
        unit_id=unit_id,
        clust_id=clust_id,
        time=time
    )
    return ExposureSkeleton(standata, random_seed=rng.integers(2**32))


def create_skeleton_crossover(
    G: int,
    n_units: int,
    obs_per_period: int,
    clusters: int = 0,
    time_range: Tuple[float, float] = (0.0, 1.0),
    random_seed: Optional[int] = None
) -> ExposureSkeleton:
    """
    Skeleton for a crossover design.

    Every unit passes through all ``G`` groups in consecutive periods; unit
    ``u`` starts in group ``u mod G`` so the group order is balanced across
    units. Period ``j`` covers the ``j``-th of ``G`` equal slices of
    ``time_range``.

    Parameters
    ----------
    G : int
        Number of groups (treatment periods)
    n_units : int
        Number of units
    obs_per_period : int
        Observations per unit in each period
    clusters : int, optional (default=0)
        If positive, units are assigned round-robin to this many clusters
    time_range : tuple, optional (default=(0, 1))
        Range of observation times
    random_seed : int, optional
        Seed for the times and all later draws
    """
    _check_positive(G=G, n_units=n_units, obs_per_period=obs_per_period)
    if clusters < 0 or clusters > n_units:
        raise ValidationError(
            f"clusters must be in [0, n_units={n_units}]. Got: {clusters}",
            field='clusters'
        )
    rng = np.random.default_rng(random_seed)

    lower, upper = time_range
    width = (upper - lower) / G
    units, groups, times = [], [], []
    for u in range(n_units):
        for period in range(G):
            start = lower + period * width
            period_times = np.sort(rng.uniform(start, start + width, size=obs_per_period))
            units.append(np.full(obs_per_period, u + 1))
            groups.append(np.full(obs_per_period, (u + period) % G + 1))
            times.append(period_times)
    unit_id = np.concatenate(units)
    clust_id = (unit_id - 1) % clusters + 1 if clusters > 0 else None

    standata = create_standata_exposure(
        group=np.concatenate(groups),
        conc=np.zeros(len(unit_id)),
        unit_id=unit_id,
        clust_id=clust_id,
        time=np.concatenate(times)
    )
    return ExposureSkeleton(standata, random_seed=rng.integers(2**32))


def create_outcome_skeleton(
    S: int,
    n_per_study: int,
    obs_per_unit: int = 1,
    exposure_range: Tuple[float, float] = (0.0, 1.0),
    unit_effects: Optional[bool] = None,
    n_covariates: int = 0,
    random_seed: Optional[int] = None
) -> OutcomeSkeleton:
    """
    Skeleton for a multi-study outcome design.

    Parameters
    ----------
    S : int
        Number of studies
    n_per_study : int
        Units per study
    obs_per_unit : int, optional (default=1)
        Observations per unit
    exposure_range : tuple, optional (default=(0, 1))
        Exposures are drawn uniformly from this range
    unit_effects : bool, optional
        Whether units carry a random effect. Defaults to
        ``obs_per_unit > 1``.
    n_covariates : int, optional (default=0)
        Number of standard-normal covariates to generate
    random_seed : int, optional
        Seed for the design and all later draws
    """
    _check_positive(S=S, n_per_study=n_per_study, obs_per_unit=obs_per_unit)
    if n_covariates < 0:
        raise ValidationError(
            f"n_covariates must be non-negative. Got: {n_covariates}",
            field='n_covariates'
        )
    if unit_effects is None:
        unit_effects = obs_per_unit > 1
    rng = np.random.default_rng(random_seed)

    n_units = S * n_per_study
    N = n_units * obs_per_unit
    study = np.repeat(np.arange(1, S + 1), n_per_study * obs_per_unit)
    unit_id = np.repeat(np.arange(1, n_units + 1), obs_per_unit) if unit_effects else None
    lower, upper = exposure_range
    exposure = rng.uniform(lower, upper, size=N)
    covariates = rng.normal(size=(N, n_covariates)) if n_covariates > 0 else None

    standata = create_standata_outcome(
        study=study,
        y=np.zeros(N, dtype=np.int64),
        exposure=exposure,
        unit_id=unit_id,
        covariates=covariates
    )
    return OutcomeSkeleton(standata, random_seed=rng.integers(2**32))
