"""
exposure_response: Hierarchical Exposure and Outcome Modelling

Shape hierarchical measurements into sampler-ready datasets, simulate data
with the same hierarchy, fit the exposure and outcome models with PyMC and
compose the posterior into fitted means, exposure-response curves, odds
ratios and pooling diagnostics.
"""

from .version import __version__, __author__, __description__
from .exceptions import ExposureResponseError, ExternalFailure, StateError, ValidationError
from .data import (
    ExposureDataset,
    HierarchicalIndexer,
    OutcomeDataset,
    PriorConfig,
    SplineBasis,
    add_priors,
    add_spline_exposure,
    add_spline_time,
    create_spline,
    create_standata_exposure,
    create_standata_outcome
)
from .models import (
    ExposureModel,
    OutcomeModel,
    ParameterSet,
    SamplerControl,
    sample_exposure_model,
    sample_outcome_model
)
from .posterior import (
    compute_fitted_mean,
    exposure_response_curve,
    odds_ratio,
    pooling_metrics
)
from .simulation import (
    create_outcome_skeleton,
    create_skeleton_crossover,
    create_skeleton_parallel
)

__all__ = [
    'ExposureResponseError',
    'ExternalFailure',
    'StateError',
    'ValidationError',
    'ExposureDataset',
    'HierarchicalIndexer',
    'OutcomeDataset',
    'PriorConfig',
    'SplineBasis',
    'add_priors',
    'add_spline_exposure',
    'add_spline_time',
    'create_spline',
    'create_standata_exposure',
    'create_standata_outcome',
    'ExposureModel',
    'OutcomeModel',
    'ParameterSet',
    'SamplerControl',
    'sample_exposure_model',
    'sample_outcome_model',
    'compute_fitted_mean',
    'exposure_response_curve',
    'odds_ratio',
    'pooling_metrics',
    'create_outcome_skeleton',
    'create_skeleton_crossover',
    'create_skeleton_parallel',
    '__version__',
    '__author__',
    '__description__',
]
