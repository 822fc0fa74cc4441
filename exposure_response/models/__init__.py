"""Sampler boundary: PyMC models, sampler control and parameter extraction"""

from .base import HierarchicalModel
from .control import SamplerControl
from .exposure_model import ExposureModel, sample_exposure_model
from .outcome_model import OutcomeModel, sample_outcome_model
from .parameters import ParameterSet

__all__ = [
    'HierarchicalModel',
    'SamplerControl',
    'ExposureModel',
    'sample_exposure_model',
    'OutcomeModel',
    'sample_outcome_model',
    'ParameterSet',
]
