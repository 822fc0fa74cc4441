"""
Hierarchical Exposure Model

Concentration ``w`` of observation o, for group g, cluster k, unit i and
time t:

    w[o] = etaG[g] + reK[k] + reI[i] + Mt[o] @ theta + e[o]

with ``e ~ Normal(0, sigmaW)``, ``reK ~ Normal(0, sigmaK)`` (only when the
cluster level is active) and ``reI ~ Normal(0, sigmaI)``. Random effects use
the non-centred parameterization.

"""

from typing import List, Optional

import arviz as az
import pymc as pm
import pytensor.tensor as pt

from ..data.standata import ExposureDataset
from .base import HierarchicalModel


class ExposureModel(HierarchicalModel):
    """
    Exposure model fitted with PyMC.

    Examples
    --------
    >>> exp_data = create_standata_exposure(group=[1] * 10,
    ...                                     conc=np.random.normal(size=10),
    ...                                     unit_id=[0, 1] * 5,
    ...                                     time=np.random.uniform(size=10))
    >>> exp_data = add_priors(exp_data, sigmaI=(0, 0.1))
    >>> model = ExposureModel().fit(exp_data, B=500, chains=2)
    >>> params = model.extract_parameters()
    """

    dataset_type = ExposureDataset
    summary_names = ('etaG', 'reK', 'reI', 'theta', 'sigmaK', 'sigmaI', 'sigmaW')

    def build_model(self, standata: ExposureDataset) -> pm.Model:
        """
        Specify the exposure model in PyMC.

        Parameters
        ----------
        standata : ExposureDataset
            Data and priors

        Returns
        -------
        model : pm.Model
            PyMC model object
        """
        self._check_dataset(standata)
        d = standata.to_sampler_dict()
        group_idx = d['group_of_obs'] - 1

        with pm.Model() as model:
            etaG = pm.Normal(
                'etaG',
                mu=d['prior_etaG'][0],
                sigma=d['prior_etaG'][1],
                shape=d['G']
            )
            mu = etaG[group_idx]

            if d['K'] > 0:
                sigmaK = pm.TruncatedNormal(
                    'sigmaK',
                    mu=d['prior_sigmaK'][0],
                    sigma=d['prior_sigmaK'][1],
                    lower=0
                )
                reK_raw = pm.Normal('reK_raw', mu=0, sigma=1, shape=d['K'])
                reK = pm.Deterministic('reK', sigmaK * reK_raw)
                mu = mu + reK[d['cluster_of_obs'] - 1]

            sigmaI = pm.TruncatedNormal(
                'sigmaI',
                mu=d['prior_sigmaI'][0],
                sigma=d['prior_sigmaI'][1],
                lower=0
            )
            reI_raw = pm.Normal('reI_raw', mu=0, sigma=1, shape=d['n'])
            reI = pm.Deterministic('reI', sigmaI * reI_raw)
            mu = mu + reI[d['unit_of_obs'] - 1]

            if d['timedf'] > 0:
                theta = pm.Normal(
                    'theta',
                    mu=d['prior_theta'][0],
                    sigma=d['prior_theta'][1],
                    shape=d['timedf']
                )
                mu = mu + pt.dot(pt.as_tensor_variable(d['Mt']), theta)

            muW = pm.Deterministic('muW', mu)
            sigmaW = pm.TruncatedNormal(
                'sigmaW',
                mu=d['prior_sigmaW'][0],
                sigma=d['prior_sigmaW'][1],
                lower=0
            )
            pm.Normal('w', mu=muW, sigma=sigmaW, observed=d['w'])

        return model

    def _empty_names(self) -> List[str]:
        if self.standata_ is not None and self.standata_.timedf == 0:
            return ['theta']
        return []


def sample_exposure_model(
    standata: ExposureDataset,
    B: int = 1000,
    warmup: Optional[int] = None,
    chains: int = 4,
    control=None,
    random_seed: Optional[int] = None,
    verbose: bool = False,
    **sample_kwargs
) -> az.InferenceData:
    """
    Sample from the posterior distribution of the exposure model.

    Parameters
    ----------
    standata : ExposureDataset
        Typically from ``create_standata_exposure``, with priors attached
        via ``add_priors`` (defaults are used otherwise)
    B : int, optional (default=1000)
        Number of post-warmup iterations per chain
    warmup : int, optional
        Number of warmup iterations. Defaults to ``B``.
    chains : int, optional (default=4)
        Number of chains
    control : SamplerControl or Mapping, optional
        ``adapt_delta`` (default 0.9) and ``max_treedepth`` (default 12)
    random_seed : int, optional
        Seed passed to PyMC
    verbose : bool, optional (default=False)
        Print progress
    **sample_kwargs
        Passed to ``pm.sample``

    Returns
    -------
    trace : az.InferenceData
        Posterior draws
    """
    model = ExposureModel(control=control, random_seed=random_seed)
    model.fit(
        standata,
        B=B,
        warmup=warmup,
        chains=chains,
        verbose=verbose,
        **sample_kwargs
    )
    return model.trace_
