"""Sampler control settings passed to NUTS."""

from dataclasses import dataclass, fields
from typing import Mapping, Optional, Union

from ..exceptions import ValidationError


@dataclass(frozen=True)
class SamplerControl:
    """
    NUTS tuning targets.

    Attributes:
        adapt_delta: Target acceptance rate during step-size adaptation
        max_treedepth: Maximum depth of the NUTS trajectory tree
    """
    adapt_delta: float = 0.9
    max_treedepth: int = 12

    def __post_init__(self):
        if not 0 < self.adapt_delta < 1:
            raise ValidationError(
                f"adapt_delta must be in (0, 1). Got: {self.adapt_delta}",
                field='adapt_delta'
            )
        if int(self.max_treedepth) != self.max_treedepth or self.max_treedepth < 1:
            raise ValidationError(
                f"max_treedepth must be a positive integer. Got: {self.max_treedepth}",
                field='max_treedepth'
            )

    @classmethod
    def from_mapping(
        cls,
        control: Optional[Union['SamplerControl', Mapping]] = None
    ) -> 'SamplerControl':
        """Accept None (defaults), a SamplerControl, or a plain mapping."""
        if control is None:
            return cls()
        if isinstance(control, cls):
            return control
        allowed = {f.name for f in fields(cls)}
        unknown = set(control) - allowed
        if unknown:
            raise ValidationError(
                f"Unknown control settings: {sorted(unknown)}. "
                f"Allowed: {sorted(allowed)}",
                field='control'
            )
        return cls(**dict(control))
