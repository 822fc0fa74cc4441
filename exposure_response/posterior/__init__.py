"""Derived quantities from posterior draws or fixed parameter values"""

from .composer import (
    compose_linear_predictor,
    compute_fitted_mean,
    exposure_response_curve,
    fitted_mean_frame,
    odds_ratio,
    required_parameters
)
from .pooling import pooling_factor, pooling_metrics, variance_partition

__all__ = [
    'compose_linear_predictor',
    'compute_fitted_mean',
    'exposure_response_curve',
    'fitted_mean_frame',
    'odds_ratio',
    'required_parameters',
    'pooling_factor',
    'pooling_metrics',
    'variance_partition',
]
