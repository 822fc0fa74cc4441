"""
Hierarchical Outcome Model

Binary outcome ``y`` of observation o, for study s and unit i, with exposure
x and log at-risk time ``offset``:

    logit P(y[o] = 1) = etaS[s] + reI[i] + Mx[o] @ beta + Z[o] @ gamma + offset[o]

The unit random effect ``reI ~ Normal(0, sigmaI)`` is present only when
units are identified; ``beta`` only when an exposure spline is attached and
``gamma`` only when covariates are given.

"""

from typing import List, Optional

import arviz as az
import pymc as pm
import pytensor.tensor as pt

from ..data.standata import OutcomeDataset
from .base import HierarchicalModel


class OutcomeModel(HierarchicalModel):
    """Outcome model fitted with PyMC (logistic link)."""

    dataset_type = OutcomeDataset
    summary_names = ('etaS', 'reI', 'beta', 'gamma', 'sigmaI')

    def build_model(self, standata: OutcomeDataset) -> pm.Model:
        """
        Specify the outcome model in PyMC.

        Parameters
        ----------
        standata : OutcomeDataset
            Data and priors

        Returns
        -------
        model : pm.Model
            PyMC model object
        """
        self._check_dataset(standata)
        d = standata.to_sampler_dict()

        with pm.Model() as model:
            etaS = pm.Normal(
                'etaS',
                mu=d['prior_etaS'][0],
                sigma=d['prior_etaS'][1],
                shape=d['S']
            )
            eta = etaS[d['study_of_obs'] - 1] + d['offset']

            if d['n'] > 0:
                sigmaI = pm.TruncatedNormal(
                    'sigmaI',
                    mu=d['prior_sigmaI'][0],
                    sigma=d['prior_sigmaI'][1],
                    lower=0
                )
                reI_raw = pm.Normal('reI_raw', mu=0, sigma=1, shape=d['n'])
                reI = pm.Deterministic('reI', sigmaI * reI_raw)
                eta = eta + reI[d['unit_of_obs'] - 1]

            if d['xdf'] > 0:
                beta = pm.Normal(
                    'beta',
                    mu=d['prior_beta'][0],
                    sigma=d['prior_beta'][1],
                    shape=d['xdf']
                )
                eta = eta + pt.dot(pt.as_tensor_variable(d['Mx']), beta)

            if d['p'] > 0:
                gamma = pm.Normal(
                    'gamma',
                    mu=d['prior_gamma'][0],
                    sigma=d['prior_gamma'][1],
                    shape=d['p']
                )
                eta = eta + pt.dot(pt.as_tensor_variable(d['Z']), gamma)

            muY = pm.Deterministic('muY', eta)
            pm.Bernoulli('y', logit_p=muY, observed=d['y'])

        return model

    def _empty_names(self) -> List[str]:
        empty = []
        if self.standata_ is not None:
            if self.standata_.xdf == 0:
                empty.append('beta')
            if self.standata_.p == 0:
                empty.append('gamma')
        return empty


def sample_outcome_model(
    standata: OutcomeDataset,
    B: int = 1000,
    warmup: Optional[int] = None,
    chains: int = 4,
    control=None,
    random_seed: Optional[int] = None,
    verbose: bool = False,
    **sample_kwargs
) -> az.InferenceData:
    """
    Sample from the posterior distribution of the outcome model.

    Same arguments as :func:`sample_exposure_model`; ``standata`` must be
    an OutcomeDataset.
    """
    model = OutcomeModel(control=control, random_seed=random_seed)
    model.fit(
        standata,
        B=B,
        warmup=warmup,
        chains=chains,
        verbose=verbose,
        **sample_kwargs
    )
    return model.trace_
