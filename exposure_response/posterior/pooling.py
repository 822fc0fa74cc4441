"""
Pooling Diagnostics

How much of the variation in the data each hierarchical level explains,
computed straight from the posterior standard deviations, plus the
Gelman-Pardoe pooling factor of a set of random effects.

"""

from typing import Dict, Optional

import numpy as np
import pandas as pd

from ..exceptions import StateError, ValidationError
from ..models.parameters import ParameterSet
from .composer import _interval_bounds


# Standard deviation parameter of each level, in hierarchy order
LEVEL_SD = {
    'exposure': (('cluster', 'sigmaK'), ('unit', 'sigmaI'), ('observation', 'sigmaW')),
    'outcome': (('unit', 'sigmaI'),),
}

# Latent residual variance of the logistic distribution
LOGISTIC_VARIANCE = np.pi ** 2 / 3

# Random-effect parameter of each level, for the pooling factor
LEVEL_EFFECT = {'cluster': 'reK', 'unit': 'reI'}


def pooling_factor(re_draws: np.ndarray) -> float:
    """
    Gelman-Pardoe pooling factor of one set of random effects.

    lambda = 1 - var_k(E[re_k]) / E[var_k(re_k)]

    Near 0 the effects are barely pooled toward the mean; near 1 they
    are pooled completely.

    Parameters
    ----------
    re_draws : np.ndarray, shape (draws, units)
        Posterior draws of the random effects

    Returns
    -------
    lam : float
        Pooling factor, NaN when the effects have no posterior spread
    """
    re_draws = np.asarray(re_draws, dtype=np.float64)
    if re_draws.ndim != 2 or re_draws.shape[0] < 2 or re_draws.shape[1] < 2:
        raise ValidationError(
            "Pooling factor needs a draws-by-units matrix with at least two "
            f"draws and two units. Got shape {re_draws.shape}",
            field='re_draws'
        )
    between = np.var(re_draws.mean(axis=0), ddof=1)
    within = np.mean(np.var(re_draws, axis=1, ddof=1))
    if within == 0:
        return float('nan')
    return float(1 - between / within)


def _level_sds(kind: str) -> tuple:
    try:
        return LEVEL_SD[kind]
    except KeyError:
        raise ValidationError(
            f"kind must be one of {sorted(LEVEL_SD)}. Got: {kind!r}",
            field='kind'
        ) from None


def variance_partition(
    params: ParameterSet,
    kind: str,
    levels: Optional[tuple] = None
) -> Dict[str, np.ndarray]:
    """
    Share of the total variance attributable to each level, per draw.

    share_l = sigma_l^2 / sum_j sigma_j^2

    For the outcome model the observation level is the latent logistic
    residual with fixed variance pi^2 / 3.

    Parameters
    ----------
    params : ParameterSet
        Draws (or point values) of the level standard deviations
    kind : str
        'exposure' or 'outcome'
    levels : tuple, optional
        Levels to include; defaults to every level whose standard deviation
        is in ``params``. Listing a level without its parameter raises. The
        outcome model always includes its fixed observation level.

    Returns
    -------
    shares : Dict[str, np.ndarray]
        Level name to an array of shares, one per draw

    Raises
    ------
    StateError
        If a requested level's standard deviation is missing
    """
    sds = _level_sds(kind)
    if levels is None:
        levels = tuple(level for level, name in sds if params.has(name))
        if not levels:
            raise StateError(
                f"No level standard deviations found. Expected any of "
                f"{[name for _, name in sds]}",
                parameter=sds[0][1]
            )

    variances = {}
    for level, name in sds:
        if level not in levels:
            continue
        params.require(name, level)
        variances[level] = params.draws(name)[:, 0] ** 2
    unknown = set(levels) - set(variances)
    if kind == 'outcome':
        unknown.discard('observation')
    if unknown:
        raise ValidationError(
            f"Unknown level(s) {sorted(unknown)} for the {kind} model",
            field='levels'
        )
    if kind == 'outcome':
        n_draws = max((len(v) for v in variances.values()), default=1)
        variances['observation'] = np.full(n_draws, LOGISTIC_VARIANCE)

    total = sum(variances.values())
    return {
        level: np.divide(var, total, out=np.zeros_like(total), where=total > 0)
        for level, var in variances.items()
    }


def pooling_metrics(
    params: ParameterSet,
    kind: str,
    level: float = 0.95,
    verbose: bool = False
) -> pd.DataFrame:
    """
    Per-level variance shares and pooling factors.

    Parameters
    ----------
    params : ParameterSet
        Posterior draws; point values give shares without intervals
    kind : str
        'exposure' or 'outcome'
    level : float, optional (default=0.95)
        Credible interval mass
    verbose : bool, optional (default=False)
        If True, print the table

    Returns
    -------
    metrics : pd.DataFrame
        Columns: level, sd_mean, share_mean, share_lower, share_upper,
        pooling_factor (NaN where the level has no random effects in
        ``params``)
    """
    shares = variance_partition(params, kind)
    sd_names = dict(_level_sds(kind))
    lower, upper = _interval_bounds(level)

    rows = []
    for name, share in shares.items():
        if name in sd_names:
            sd_mean = float(params.draws(sd_names[name])[:, 0].mean())
        else:
            sd_mean = float(np.sqrt(LOGISTIC_VARIANCE))
        effect = LEVEL_EFFECT.get(name)
        lam = float('nan')
        if effect is not None and params.has(effect):
            effect_draws = params.draws(effect)
            if effect_draws.shape[0] > 1 and effect_draws.shape[1] > 1:
                lam = pooling_factor(effect_draws)
        posterior = len(share) > 1
        rows.append({
            'level': name,
            'sd_mean': sd_mean,
            'share_mean': float(np.mean(share)),
            'share_lower': float(np.percentile(share, lower)) if posterior else np.nan,
            'share_upper': float(np.percentile(share, upper)) if posterior else np.nan,
            'pooling_factor': lam,
        })
    metrics = pd.DataFrame(rows)

    if verbose:
        print(f"\n{'=' * 80}")
        print(f"POOLING METRICS ({kind.upper()} MODEL)")
        print(f"{'=' * 80}")
        for row in rows:
            print(
                f"  {row['level']:<12} share: {row['share_mean']:.3f}  "
                f"sd: {row['sd_mean']:.3f}  pooling: {row['pooling_factor']:.3f}"
            )

    return metrics
