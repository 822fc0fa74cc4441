"""
Prior Configuration

Hyperparameters for the exposure and outcome models. Every recognised name
has a documented default; each value is a ``(location, scale)`` pair of a
normal prior. Standard deviations use the pair as a normal truncated at zero,
so ``sigmaI=(0, 0.1)`` is a half-normal with scale 0.1.
"""

from types import MappingProxyType
from typing import Dict, Mapping, Tuple

import numpy as np

from ..exceptions import ValidationError


EXPOSURE_PRIORS: Mapping[str, Tuple[float, float]] = MappingProxyType({
    'etaG': (0.0, 10.0),    # group means
    'sigmaK': (0.0, 1.0),   # cluster random-effect sd
    'sigmaI': (0.0, 1.0),   # unit random-effect sd
    'sigmaW': (0.0, 1.0),   # observation sd
    'theta': (0.0, 10.0),   # temporal spline coefficients
})

OUTCOME_PRIORS: Mapping[str, Tuple[float, float]] = MappingProxyType({
    'etaS': (0.0, 10.0),    # study intercepts (logit scale)
    'sigmaI': (0.0, 1.0),   # unit random-effect sd
    'beta': (0.0, 10.0),    # exposure spline coefficients
    'gamma': (0.0, 10.0),   # covariate coefficients
})

PRIOR_SCHEMAS = {
    'exposure': EXPOSURE_PRIORS,
    'outcome': OUTCOME_PRIORS,
}


def _check_pair(name: str, value) -> Tuple[float, float]:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (2,):
        raise ValidationError(
            f"Prior '{name}' must be a (location, scale) pair. Got: {value!r}",
            field=name
        )
    if not np.all(np.isfinite(arr)):
        raise ValidationError(
            f"Prior '{name}' must be finite. Got: {value!r}", field=name
        )
    if arr[1] <= 0:
        raise ValidationError(
            f"Prior '{name}' scale must be positive. Got: {arr[1]}", field=name
        )
    return float(arr[0]), float(arr[1])


class PriorConfig:
    """
    Validated hyperparameter overlay for one model kind.

    Parameters
    ----------
    kind : str
        'exposure' or 'outcome'
    values : Mapping[str, Tuple[float, float]], optional
        Overrides of the schema defaults

    Examples
    --------
    >>> priors = PriorConfig('exposure', {'sigmaI': (0, 0.1)})
    >>> priors['sigmaI']
    (0.0, 0.1)
    >>> priors['etaG']
    (0.0, 10.0)
    """

    def __init__(self, kind: str, values: Mapping = None):
        if kind not in PRIOR_SCHEMAS:
            raise ValidationError(
                f"Unknown model kind '{kind}'. Expected one of "
                f"{sorted(PRIOR_SCHEMAS)}",
                field='kind'
            )
        self.kind = kind
        self._values: Dict[str, Tuple[float, float]] = dict(self.schema)
        for name, value in (values or {}).items():
            if name not in self.schema:
                raise ValidationError(
                    f"Unknown prior '{name}' for the {kind} model. "
                    f"Recognised: {sorted(self.schema)}",
                    field=name
                )
            self._values[name] = _check_pair(name, value)

    @property
    def schema(self) -> Mapping[str, Tuple[float, float]]:
        return PRIOR_SCHEMAS[self.kind]

    @classmethod
    def for_model(cls, kind: str, **overrides) -> "PriorConfig":
        return cls(kind, overrides)

    def updated(self, **overrides) -> "PriorConfig":
        """Return a new config with ``overrides`` applied on top of this one."""
        merged = dict(self._values)
        merged.update(overrides)
        return PriorConfig(self.kind, merged)

    def __getitem__(self, name: str) -> Tuple[float, float]:
        return self._values[name]

    def __iter__(self):
        return iter(self._values)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PriorConfig):
            return NotImplemented
        return self.kind == other.kind and self._values == other._values

    def __repr__(self) -> str:
        return f"PriorConfig(kind={self.kind!r}, values={self._values!r})"

    def as_dict(self) -> Dict[str, Tuple[float, float]]:
        return dict(self._values)

    def as_sampler_dict(self) -> Dict[str, np.ndarray]:
        """Flatten to ``prior_<name>`` entries for the sampler data."""
        return {
            f'prior_{name}': np.asarray(pair, dtype=np.float64)
            for name, pair in self._values.items()
        }


def add_priors(dataset, **priors):
    """
    Attach prior hyperparameters to a dataset.

    Names not given keep their current (or default) values. The dataset's
    index arrays and basis matrices are untouched.

    Parameters
    ----------
    dataset : ExposureDataset or OutcomeDataset
        Dataset to extend; it is not modified
    **priors
        ``name=(location, scale)`` pairs

    Returns
    -------
    dataset : same type as input
        New dataset with the updated prior configuration

    Raises
    ------
    ValidationError
        For unknown names or malformed pairs
    """
    current = dataset.priors
    if current is None:
        config = PriorConfig(dataset.kind, priors)
    else:
        config = current.updated(**priors)
    return dataset.replace(priors=config)
