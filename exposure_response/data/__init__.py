"""Data shaping: indexing, spline bases, priors and sampler-ready datasets"""

from .indexer import HierarchicalIndex, HierarchicalIndexer, dense_codes, recount
from .priors import EXPOSURE_PRIORS, OUTCOME_PRIORS, PriorConfig, add_priors
from .spline import (
    SplineBasis,
    add_spline_exposure,
    add_spline_time,
    create_spline,
    validate_basis
)
from .standata import (
    ExposureDataset,
    HierarchicalDataset,
    OutcomeDataset,
    create_standata_exposure,
    create_standata_outcome
)

__all__ = [
    'HierarchicalIndex',
    'HierarchicalIndexer',
    'dense_codes',
    'recount',
    'EXPOSURE_PRIORS',
    'OUTCOME_PRIORS',
    'PriorConfig',
    'add_priors',
    'SplineBasis',
    'add_spline_exposure',
    'add_spline_time',
    'create_spline',
    'validate_basis',
    'ExposureDataset',
    'HierarchicalDataset',
    'OutcomeDataset',
    'create_standata_exposure',
    'create_standata_outcome',
]
