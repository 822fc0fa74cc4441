"""
Posterior Composition of Fitted Quantities

Combines a ParameterSet with a dataset's index arrays and basis matrix into
the linear predictor, and derives fitted means, exposure-response curves and
odds ratios from it. All functions accept posterior draws or fixed point
values.

"""

from typing import Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..data.spline import validate_basis
from ..data.standata import HierarchicalDataset, OutcomeDataset
from ..exceptions import StateError, ValidationError
from ..models.parameters import ParameterSet


def _interval_bounds(level: float):
    if not 0 < level < 1:
        raise ValidationError(f"level must be in (0, 1). Got: {level}", field='level')
    tail = (1 - level) / 2 * 100
    return tail, 100 - tail


def required_parameters(
    dataset: HierarchicalDataset,
    include_cluster: bool = True,
    include_reI: bool = True,
    include_time: bool = True
) -> Dict[str, Optional[str]]:
    """
    Parameters needed to compose the predictor, mapped to their level.

    Random-effect levels that are inactive in ``dataset`` (all-zero index)
    contribute nothing and need no parameter.
    """
    needed = {dataset.mean_parameter: dataset.mean_level}
    toggles = {'cluster': include_cluster, 'unit': include_reI}
    for level, parameter in dataset.random_effect_levels():
        if toggles.get(level, True) and dataset.is_active(level):
            needed[parameter] = level
    if include_time:
        needed[dataset.basis_parameter] = None
    if dataset.covariates is not None:
        needed['gamma'] = None
    return needed


def compose_linear_predictor(
    dataset: HierarchicalDataset,
    values: Dict[str, np.ndarray],
    include_cluster: bool = True,
    include_reI: bool = True,
    include_time: bool = True,
    basis: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Sum the active level contributions and the spline term.

    ``values`` holds either point vectors (result shape ``(N,)``) or
    draws-by-unit matrices (result shape ``(draws, N)``); indexing and the
    basis product broadcast over the leading draw axis.

    Parameters
    ----------
    dataset : HierarchicalDataset
        Supplies index arrays, the basis matrix and any fixed offset
    values : Dict[str, np.ndarray]
        Parameter values by name, from :func:`required_parameters`
    include_cluster, include_reI, include_time : bool
        Which optional terms to add
    basis : np.ndarray, optional
        Replacement basis matrix (same rows as the dataset)

    Raises
    ------
    StateError
        If a needed parameter is missing from ``values``
    """
    needed = required_parameters(dataset, include_cluster, include_reI, include_time)
    for name, level in needed.items():
        if name not in values:
            where = f" for level '{level}'" if level else ''
            raise StateError(
                f"Parameter '{name}'{where} is required for composition but "
                f"was not provided",
                level=level,
                parameter=name
            )

    levels = dataset.levels()
    mean_index, _ = levels[dataset.mean_level]
    predictor = values[dataset.mean_parameter][..., mean_index - 1]

    for level, parameter in dataset.random_effect_levels():
        if parameter in needed:
            index, _ = levels[level]
            predictor = predictor + values[parameter][..., index - 1]

    if include_time:
        M = dataset.basis_matrix if basis is None else basis
        predictor = predictor + values[dataset.basis_parameter] @ np.asarray(M).T

    if 'gamma' in needed:
        predictor = predictor + values['gamma'] @ np.asarray(dataset.covariates).T

    return predictor + dataset.linear_offset


def compute_fitted_mean(
    dataset: HierarchicalDataset,
    params: ParameterSet,
    include_time: bool = True,
    include_reI: bool = True,
    include_cluster: bool = True,
    exp_transform: bool = False,
    add: bool = False
) -> Union[np.ndarray, HierarchicalDataset]:
    """
    Fitted mean of every observation from posterior means or fixed values.

    Parameters
    ----------
    dataset : HierarchicalDataset
        Any dataset exposing index arrays and a basis matrix; it may hold
        records other than those the model was fitted to
    params : ParameterSet
        Posterior draws (reduced to per-unit means) or point values
    include_time : bool, optional (default=True)
        Add the spline term (time for exposure, exposure for outcome)
    include_reI : bool, optional (default=True)
        Add the unit random effect
    include_cluster : bool, optional (default=True)
        Add the cluster random effect when the cluster level is active
    exp_transform : bool, optional (default=False)
        Exponentiate the result (concentration or odds scale)
    add : bool, optional (default=False)
        Return a new dataset with the result in ``ltmean`` instead

    Returns
    -------
    fitted : np.ndarray, shape (N,)
        Or a dataset copy when ``add=True``

    Raises
    ------
    StateError
        If a requested term's parameter is absent from ``params``
    """
    needed = required_parameters(dataset, include_cluster, include_reI, include_time)
    for name, level in needed.items():
        params.require(name, level)
    values = {name: params.point(name) for name in needed}

    fitted = compose_linear_predictor(
        dataset,
        values,
        include_cluster=include_cluster,
        include_reI=include_reI,
        include_time=include_time
    )
    if exp_transform:
        fitted = np.exp(fitted)

    if add:
        return dataset.replace(ltmean=fitted)
    return fitted


def fitted_mean_frame(
    dataset: HierarchicalDataset,
    fitted: np.ndarray,
    group_names: Optional[Sequence[str]] = None,
    one_per_unit: bool = False
) -> pd.DataFrame:
    """
    Tidy frame of observed and fitted values for plotting.

    Parameters
    ----------
    dataset : HierarchicalDataset
        Dataset the fitted values belong to
    fitted : np.ndarray, shape (N,)
        From :func:`compute_fitted_mean`
    group_names : Sequence[str], optional
        Display names of the top-level groups; defaults to "Group 1", ...
    one_per_unit : bool, optional (default=False)
        Keep only the first observation of each unit, useful when fitted
        values are constant within a unit

    Returns
    -------
    frame : pd.DataFrame
        Columns: group, group_name, unit, time (exposure for outcome data),
        observed, fitted
    """
    fitted = np.asarray(fitted, dtype=np.float64)
    if fitted.shape != (dataset.N,):
        raise ValidationError(
            f"'fitted' must have length N={dataset.N}. Got shape {fitted.shape}",
            field='fitted'
        )
    group_index, n_groups = dataset.levels()[dataset.mean_level]
    if group_names is None:
        group_names = [f'Group {g}' for g in range(1, n_groups + 1)]
    if len(group_names) != n_groups:
        raise ValidationError(
            f"'group_names' must have {n_groups} entries. Got: {len(group_names)}",
            field='group_names'
        )

    position = dataset.x if isinstance(dataset, OutcomeDataset) else dataset.time
    frame = pd.DataFrame({
        'group': group_index,
        'group_name': np.asarray(group_names, dtype=object)[group_index - 1],
        'unit': dataset.unit_of_obs,
        'time': position,
        'observed': dataset.outcome,
        'fitted': fitted,
    })
    if one_per_unit:
        frame = frame[~frame['unit'].duplicated()].reset_index(drop=True)
    return frame


def _curve_basis(dataset, values, basis_matrix):
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    if basis_matrix is not None:
        return values, validate_basis(basis_matrix, len(values), 'basis_matrix')
    if dataset.basis is None:
        if dataset.basis_matrix.shape[1] == 0:
            return values, np.zeros((len(values), 0))
        raise ValidationError(
            f"The dataset's '{dataset.basis_field}' has no stored basis "
            "specification; pass basis_matrix evaluated at the new values",
            field='basis_matrix'
        )
    return values, dataset.basis.evaluate(values)


def _intercept_draws(dataset, params: ParameterSet, intercept) -> np.ndarray:
    """Intercept draws (draws,) for the requested level member, or zeros."""
    name = dataset.mean_parameter
    if intercept is None:
        return np.zeros(params.n_draws)
    params.require(name, dataset.mean_level)
    draws = params.draws(name)
    if intercept == 'mean':
        return draws.mean(axis=1)
    _, count = dataset.levels()[dataset.mean_level]
    if not 1 <= int(intercept) <= count:
        raise ValidationError(
            f"intercept must be 'mean', None or a {dataset.mean_level} code in "
            f"[1, {count}]. Got: {intercept!r}",
            field='intercept'
        )
    return draws[:, int(intercept) - 1]


def exposure_response_curve(
    dataset: HierarchicalDataset,
    params: ParameterSet,
    values,
    basis_matrix: Optional[np.ndarray] = None,
    intercept: Union[str, int, None] = 'mean',
    exp_transform: bool = False,
    level: float = 0.95
) -> pd.DataFrame:
    """
    Evaluate the response curve at new time or exposure values.

    The spline term is recomputed at ``values`` from the dataset's stored
    basis (or ``basis_matrix``); random effects are held at zero, their
    prior mean, and the intercept at the chosen level.

    Parameters
    ----------
    dataset : HierarchicalDataset
        Dataset whose basis defines the curve
    params : ParameterSet
        Draws give credible intervals; point values give the curve only
    values : array-like, shape (m,)
        Time (exposure model) or exposure (outcome model) values
    basis_matrix : np.ndarray, shape (m, df), optional
        Basis evaluated at ``values``; required when the dataset holds a
        basis matrix without its specification
    intercept : 'mean', int or None, optional (default='mean')
        'mean' averages the group/study intercepts, an int selects one
        (1-based), None leaves the curve uncentred
    exp_transform : bool, optional (default=False)
        Exponentiate the curve
    level : float, optional (default=0.95)
        Credible interval mass

    Returns
    -------
    curve : pd.DataFrame
        Columns: value, estimate, lower, upper (lower/upper are NaN for
        point values)

    Raises
    ------
    ValidationError
        If ``basis_matrix`` rows differ from the number of values
    StateError
        If the spline coefficients are absent from ``params``
    """
    values, M = _curve_basis(dataset, values, basis_matrix)
    coef = dataset.basis_parameter
    params.require(coef)
    theta = params.draws(coef)
    if theta.shape[1] != M.shape[1]:
        raise ValidationError(
            f"'{coef}' has {theta.shape[1]} coefficients but the basis has "
            f"{M.shape[1]} columns",
            field='basis_matrix'
        )

    curves = _intercept_draws(dataset, params, intercept)[:, np.newaxis] + theta @ M.T
    if exp_transform:
        curves = np.exp(curves)

    frame = pd.DataFrame({
        'value': values,
        'estimate': curves.mean(axis=0),
    })
    if curves.shape[0] > 1:
        lower, upper = _interval_bounds(level)
        frame['lower'] = np.percentile(curves, lower, axis=0)
        frame['upper'] = np.percentile(curves, upper, axis=0)
    else:
        frame['lower'] = np.nan
        frame['upper'] = np.nan
    return frame


def _profile_dataset(
    dataset: OutcomeDataset,
    exposure,
    study: int,
    unit: Optional[int],
    basis_matrix: Optional[np.ndarray] = None,
    name: str = 'basis_matrix'
):
    """Single-record datasets at each exposure value for one study/unit."""
    exposure = np.asarray(exposure, dtype=np.float64).reshape(-1)
    m = len(exposure)
    if not 1 <= study <= dataset.S:
        raise ValidationError(
            f"study must be in [1, {dataset.S}]. Got: {study}", field='study'
        )
    if unit is not None and not 1 <= unit <= dataset.n:
        raise ValidationError(
            f"unit must be in [1, {dataset.n}]. Got: {unit}", field='unit'
        )
    if basis_matrix is not None:
        Mx = validate_basis(basis_matrix, m, name)
        if Mx.shape[1] != dataset.xdf:
            raise ValidationError(
                f"'{name}' has {Mx.shape[1]} columns but the dataset's 'Mx' "
                f"has {dataset.xdf}",
                field=name
            )
    elif dataset.basis is not None:
        Mx = dataset.basis.evaluate(exposure)
    elif dataset.xdf == 0:
        Mx = np.zeros((m, 0))
    else:
        raise ValidationError(
            "The dataset's 'Mx' has no stored basis specification, so the "
            "exposure spline cannot be evaluated at new exposures; pass "
            "basis_matrix and reference_basis",
            field='Mx'
        )
    return OutcomeDataset(
        N=m,
        S=dataset.S,
        n=dataset.n if unit is not None else 0,
        study_of_obs=np.full(m, study),
        unit_of_obs=np.full(m, unit if unit is not None else 0),
        y=np.zeros(m, dtype=np.int64),
        x=exposure,
        offset=np.zeros(m),
        Z=np.zeros((m, 0)),
        Mx=Mx,
        x_basis=dataset.x_basis,
    )


def odds_ratio(
    dataset: OutcomeDataset,
    params: ParameterSet,
    exposure,
    reference: float,
    study: int = 1,
    unit: Optional[int] = None,
    level: float = 0.95,
    basis_matrix=None,
    reference_basis=None
) -> pd.DataFrame:
    """
    Odds ratio of the outcome at ``exposure`` versus ``reference``.

    Both linear predictors are composed on the logit scale for the same
    study (and unit); the odds ratio is the exponential of their
    difference, so shared intercept and random-effect terms cancel.

    Parameters
    ----------
    dataset : OutcomeDataset
        Supplies the exposure basis
    params : ParameterSet
        Needs the study intercepts and exposure spline coefficients (and
        the unit effects when ``unit`` is given)
    exposure : float or array-like
        Target exposure value(s)
    reference : float
        Reference exposure
    study : int, optional (default=1)
        Study code (1-based) whose intercept is used
    unit : int, optional
        Unit code whose random effect is included
    level : float, optional (default=0.95)
        Credible interval mass for posterior draws
    basis_matrix : array-like, optional
        Exposure basis rows at ``exposure``, one per target value. Required
        when the dataset's 'Mx' was attached as a raw matrix; overrides
        the stored basis otherwise
    reference_basis : array-like, optional
        Exposure basis rows at ``reference``; a single row is repeated for
        every target value

    Returns
    -------
    ratios : pd.DataFrame
        Columns: exposure, reference, odds_ratio, lower, upper. For draws
        the point estimate is the exponentiated posterior mean log odds
        ratio. The odds ratio at ``exposure == reference`` is exactly 1.
    """
    if not isinstance(dataset, OutcomeDataset):
        raise ValidationError(
            "odds_ratio requires an OutcomeDataset", field='dataset'
        )
    exposure = np.atleast_1d(np.asarray(exposure, dtype=np.float64))
    m = len(exposure)
    if basis_matrix is not None:
        basis_matrix = validate_basis(basis_matrix, m, 'basis_matrix')
    if reference_basis is not None:
        reference_basis = np.asarray(reference_basis, dtype=np.float64)
        if reference_basis.ndim == 2 and reference_basis.shape[0] == 1:
            reference_basis = np.repeat(reference_basis, m, axis=0)
        reference_basis = validate_basis(reference_basis, m, 'reference_basis')
    target = _profile_dataset(
        dataset, exposure, study, unit, basis_matrix, 'basis_matrix'
    )
    ref = _profile_dataset(
        dataset, np.full(m, float(reference)), study, unit,
        reference_basis, 'reference_basis'
    )

    include_reI = unit is not None
    needed = required_parameters(target, include_reI=include_reI)
    for name, lvl in needed.items():
        params.require(name, lvl)
    draws = {name: params.draws(name) for name in needed}

    log_or = (
        compose_linear_predictor(target, draws, include_reI=include_reI)
        - compose_linear_predictor(ref, draws, include_reI=include_reI)
    )
    ratios = np.exp(log_or)  # (draws, m)

    frame = pd.DataFrame({
        'exposure': exposure,
        'reference': float(reference),
        'odds_ratio': np.exp(log_or.mean(axis=0)) if ratios.shape[0] > 1 else ratios[0],
    })
    if ratios.shape[0] > 1:
        lower, upper = _interval_bounds(level)
        frame['lower'] = np.percentile(ratios, lower, axis=0)
        frame['upper'] = np.percentile(ratios, upper, axis=0)
    else:
        frame['lower'] = np.nan
        frame['upper'] = np.nan
    return frame
