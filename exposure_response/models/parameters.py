"""
Named Parameter Values

A ParameterSet holds the values the posterior composer works with: either
posterior draws (one row per draw, one column per unit of the parameter)
extracted from an ArviZ InferenceData, or fixed point values given by the
caller.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple

import arviz as az
import numpy as np

from ..exceptions import StateError, ValidationError


class ParameterSet:
    """
    Mapping from parameter name to draws or point values.

    Parameters
    ----------
    values : Mapping[str, array-like]
        2-D arrays are draws (draws x units); 1-D arrays and scalars are
        point values

    Examples
    --------
    >>> params = ParameterSet.from_values({'etaG': [3.0, 4.0], 'reI': [0.1, -0.1]})
    >>> params.point('etaG')
    array([3., 4.])
    >>> 'theta' in params
    False
    """

    def __init__(self, values: Mapping):
        self._values: Dict[str, np.ndarray] = {}
        for name, value in values.items():
            arr = np.asarray(value, dtype=np.float64)
            if arr.ndim == 0:
                arr = arr.reshape(1)
            if arr.ndim > 2:
                raise ValidationError(
                    f"Parameter '{name}' must be a vector or a draws-by-unit "
                    f"matrix. Got shape {arr.shape}",
                    field=name
                )
            self._values[name] = arr

    @classmethod
    def from_values(cls, values: Mapping) -> 'ParameterSet':
        """Fixed parameter values supplied by the caller."""
        return cls(values)

    @classmethod
    def from_inference_data(
        cls,
        idata: az.InferenceData,
        names: Optional[Iterable[str]] = None,
        empty: Iterable[str] = ()
    ) -> 'ParameterSet':
        """
        Extract posterior draws from a fitted model.

        Parameters
        ----------
        idata : az.InferenceData
            Sampler output with a ``posterior`` group
        names : Iterable[str], optional
            Parameters to extract. Defaults to every posterior variable.
        empty : Iterable[str], optional
            Names to register as zero-width draws (coefficients of an
            unused basis) when absent from the posterior

        Returns
        -------
        params : ParameterSet
            Chains and draws are flattened into rows

        Raises
        ------
        StateError
            If a requested name is not in the posterior
        """
        posterior = idata.posterior
        n_draws = posterior.sizes['chain'] * posterior.sizes['draw']
        if names is None:
            names = list(posterior.data_vars)
        empty = set(empty)

        values = {}
        for name in names:
            if name in posterior:
                samples = posterior[name].values  # (chain, draw, ...)
                values[name] = samples.reshape(n_draws, -1)
            elif name in empty:
                values[name] = np.zeros((n_draws, 0))
            else:
                raise StateError(
                    f"Parameter '{name}' not found in the posterior. "
                    f"Available: {sorted(posterior.data_vars)}",
                    parameter=name
                )
        return cls(values)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._values)

    @property
    def is_posterior(self) -> bool:
        return any(value.ndim == 2 for value in self._values.values())

    @property
    def n_draws(self) -> int:
        """Number of draws (1 for point values)."""
        counts = [v.shape[0] for v in self._values.values() if v.ndim == 2]
        return max(counts) if counts else 1

    def has(self, name: str) -> bool:
        return name in self._values

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def require(self, name: str, level: Optional[str] = None) -> None:
        """Raise StateError naming ``name`` if it is absent."""
        if name not in self._values:
            where = f" for level '{level}'" if level else ''
            raise StateError(
                f"Parameter '{name}'{where} is required but not present. "
                f"Available: {sorted(self._values)}",
                level=level,
                parameter=name
            )

    def point(self, name: str) -> np.ndarray:
        """Point value per unit: the posterior mean for draws."""
        self.require(name)
        value = self._values[name]
        if value.ndim == 2:
            return value.mean(axis=0)
        return value

    def draws(self, name: str) -> np.ndarray:
        """Draws-by-unit matrix; point values become a single row."""
        self.require(name)
        value = self._values[name]
        if value.ndim == 1:
            return value[np.newaxis, :]
        return value

    def point_set(self) -> 'ParameterSet':
        """ParameterSet of point values only."""
        return ParameterSet({name: self.point(name) for name in self._values})

    def subset(self, names: Iterable[str]) -> 'ParameterSet':
        for name in names:
            self.require(name)
        return ParameterSet({name: self._values[name] for name in names})

    def __repr__(self) -> str:
        shapes = ', '.join(f'{k}{v.shape}' for k, v in self._values.items())
        return f'ParameterSet({shapes})'
