"""
Shared Sampling Workflow for the Hierarchical Models

Both models follow the same steps: validate the dataset, specify the PyMC
model from the dataset's sampler dictionary, run NUTS, then check
convergence and extract named parameters for composition.

"""

import warnings
from typing import Dict, Iterable, List, Optional

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from ..exceptions import ExternalFailure, ValidationError
from .control import SamplerControl
from .parameters import ParameterSet


RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400


class HierarchicalModel:
    """
    Base class for the exposure and outcome models.

    Parameters
    ----------
    control : SamplerControl or Mapping, optional
        NUTS settings; defaults to ``adapt_delta=0.9, max_treedepth=12``
    random_seed : int, optional (default=42)
        Random seed for MCMC reproducibility

    Attributes
    ----------
    model_ : pm.Model
        PyMC model object
    trace_ : az.InferenceData
        Posterior samples from MCMC
    convergence_ : Dict
        Convergence diagnostics (R-hat, ESS, divergences)
    standata_ : HierarchicalDataset
        Dataset the model was fitted to
    """

    dataset_type = None
    summary_names: tuple = ()

    def __init__(self, control=None, random_seed: Optional[int] = 42):
        self.control = SamplerControl.from_mapping(control)
        self.random_seed = random_seed

        # Placeholders
        self.model_ = None
        self.trace_ = None
        self.convergence_ = None
        self.standata_ = None

    def _check_dataset(self, standata):
        if not isinstance(standata, self.dataset_type):
            raise ValidationError(
                f"{type(self).__name__} requires a {self.dataset_type.__name__}. "
                f"Got: {type(standata).__name__}",
                field='standata'
            )

    def build_model(self, standata) -> pm.Model:
        """Specify the PyMC model for ``standata``."""
        raise NotImplementedError

    def fit(
        self,
        standata,
        B: int = 1000,
        warmup: Optional[int] = None,
        chains: int = 4,
        cores: Optional[int] = None,
        verbose: bool = True,
        **sample_kwargs
    ) -> 'HierarchicalModel':
        """
        Fit the model via MCMC (NUTS).

        Parameters
        ----------
        standata : HierarchicalDataset
            Dataset of the type this model expects
        B : int, optional (default=1000)
            Number of post-warmup draws per chain
        warmup : int, optional
            Number of warmup iterations. Defaults to ``B``.
        chains : int, optional (default=4)
            Number of MCMC chains
        cores : int, optional
            Number of CPU cores. If None, PyMC decides.
        verbose : bool, optional (default=True)
            If True, print progress
        **sample_kwargs
            Passed to ``pm.sample``

        Returns
        -------
        self : HierarchicalModel
            Fitted model with populated ``trace_``

        Notes
        -----
        Errors raised by PyMC during sampling propagate unchanged.
        """
        self._check_dataset(standata)
        if warmup is None:
            warmup = B
        if B < 1 or warmup < 0 or chains < 1:
            raise ValidationError(
                f"Need B >= 1, warmup >= 0 and chains >= 1. "
                f"Got B={B}, warmup={warmup}, chains={chains}",
                field='B'
            )
        self.standata_ = standata

        if verbose:
            print(f"\n{'=' * 80}")
            print(f"{type(self).__name__.upper()}: MCMC SAMPLING")
            print(f"{'=' * 80}")
            print(f"Observations (N): {standata.N}")
            for level, (_, count) in standata.levels().items():
                print(f"  {level}: {count}")
            print(f"\nMCMC Configuration:")
            print(f"  Chains: {chains}")
            print(f"  Draws per chain: {B}")
            print(f"  Warmup iterations: {warmup}")
            print(f"  adapt_delta: {self.control.adapt_delta}")
            print(f"  max_treedepth: {self.control.max_treedepth}")

        self.model_ = self.build_model(standata)

        with self.model_:
            step = pm.NUTS(
                target_accept=self.control.adapt_delta,
                max_treedepth=self.control.max_treedepth
            )
            self.trace_ = pm.sample(
                draws=B,
                tune=warmup,
                chains=chains,
                cores=cores,
                step=step,
                random_seed=self.random_seed,
                return_inferencedata=True,
                progressbar=verbose,
                **sample_kwargs
            )

        if verbose:
            print(f"\n✓ MCMC sampling completed")
            print(f"  Total samples: {chains * B}")

        return self

    def _require_trace(self, action: str):
        if self.trace_ is None:
            raise ValueError(
                f"Model not fitted. Call fit() before {action}."
            )

    def _free_names(self) -> List[str]:
        return [
            rv.name for rv in self.model_.free_RVs
            if not rv.name.endswith('_raw')
        ] if self.model_ is not None else list(self.summary_names)

    def check_convergence(self, verbose: bool = True) -> Dict[str, object]:
        """
        Check MCMC convergence using R-hat, ESS and divergences.

        Returns
        -------
        convergence : Dict
            - 'rhat_ok': All R-hat < 1.01
            - 'rhat_max': Largest R-hat
            - 'ess_ok': All bulk ESS > 400
            - 'ess_min': Smallest bulk ESS
            - 'divergences': Number of divergent transitions
            - 'all_ok': All criteria met

        Raises
        ------
        ValueError
            If the model hasn't been fitted yet
        """
        self._require_trace('checking convergence')
        var_names = [n for n in self._free_names() if n in self.trace_.posterior]

        rhat = az.rhat(self.trace_, var_names=var_names)
        rhat_values = np.concatenate([
            np.atleast_1d(rhat[var].values).ravel() for var in rhat.data_vars
        ])
        rhat_max = float(np.nanmax(rhat_values))
        rhat_ok = rhat_max < RHAT_THRESHOLD

        ess = az.ess(self.trace_, var_names=var_names)
        ess_values = np.concatenate([
            np.atleast_1d(ess[var].values).ravel() for var in ess.data_vars
        ])
        ess_min = float(np.nanmin(ess_values))
        ess_ok = ess_min > ESS_THRESHOLD

        divergences = 0
        if hasattr(self.trace_, 'sample_stats') and 'diverging' in self.trace_.sample_stats:
            divergences = int(self.trace_.sample_stats['diverging'].sum().values)

        all_ok = rhat_ok and ess_ok and divergences == 0

        if verbose:
            print(f"\n{'=' * 80}")
            print("CONVERGENCE DIAGNOSTICS")
            print(f"{'=' * 80}")
            print(f"  Max R-hat: {rhat_max:.4f}  {'✓ PASS' if rhat_ok else '✗ FAIL'}")
            print(f"  Min ESS: {ess_min:.0f}  {'✓ PASS' if ess_ok else '✗ FAIL'}")
            print(f"  Divergences: {divergences}")

        self.convergence_ = {
            'rhat_ok': bool(rhat_ok),
            'rhat_max': rhat_max,
            'ess_ok': bool(ess_ok),
            'ess_min': ess_min,
            'divergences': divergences,
            'all_ok': bool(all_ok),
        }
        return self.convergence_

    def validate_convergence(self, verbose: bool = True) -> Dict[str, object]:
        """
        Check convergence and fail on R-hat problems.

        Low ESS and divergent transitions only warn.

        Raises
        ------
        ExternalFailure
            If any R-hat is at or above 1.01
        """
        diagnostics = self.check_convergence(verbose=verbose)
        if not diagnostics['rhat_ok']:
            raise ExternalFailure(
                f"MCMC convergence failed! R-hat >= {RHAT_THRESHOLD} detected.\n"
                f"Max R-hat = {diagnostics['rhat_max']:.4f}\n\n"
                "Try increasing B or warmup.",
                diagnostics=diagnostics
            )
        if not diagnostics['ess_ok']:
            warnings.warn(
                f"Low effective sample size detected (ESS = {diagnostics['ess_min']:.0f}). "
                "Consider increasing B for more reliable inference."
            )
        if diagnostics['divergences'] > 0:
            warnings.warn(
                f"{diagnostics['divergences']} divergent transitions after warmup. "
                "Consider increasing adapt_delta."
            )
        return diagnostics

    def summary(self, var_names: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """Posterior summary table (mean, sd, HDI, R-hat, ESS) from ArviZ."""
        self._require_trace('summarizing')
        if var_names is None:
            var_names = [n for n in self._free_names() if n in self.trace_.posterior]
        summary = az.summary(self.trace_, var_names=list(var_names))
        summary = summary.reset_index()
        return summary.rename(columns={'index': 'parameter'})

    def _empty_names(self) -> List[str]:
        """Coefficient names whose basis has no columns in ``standata_``."""
        return []

    def extract_parameters(self, names: Optional[Iterable[str]] = None) -> ParameterSet:
        """
        Extract posterior draws as a ParameterSet.

        Parameters
        ----------
        names : Iterable[str], optional
            Parameters to extract. Defaults to the model's standard
            parameters that are present in the posterior.
        """
        self._require_trace('extracting parameters')
        empty = self._empty_names()
        if names is None:
            names = [
                n for n in self.summary_names
                if n in self.trace_.posterior or n in empty
            ]
        return ParameterSet.from_inference_data(self.trace_, names, empty=empty)
