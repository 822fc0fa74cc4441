"""Simulation skeletons for generating exposure and outcome data"""

from .skeleton import (
    UNSET,
    ExposureSkeleton,
    OutcomeSkeleton,
    SkeletonState,
    create_outcome_skeleton,
    create_skeleton_crossover,
    create_skeleton_parallel
)

__all__ = [
    'UNSET',
    'ExposureSkeleton',
    'OutcomeSkeleton',
    'SkeletonState',
    'create_outcome_skeleton',
    'create_skeleton_crossover',
    'create_skeleton_parallel',
]
