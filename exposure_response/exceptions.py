"""
Exception hierarchy for exposure_response.

All exceptions inherit from ExposureResponseError so callers can catch any
package-specific error. ValidationError and StateError also inherit from the
matching builtin (ValueError / RuntimeError).
"""

from typing import Optional


class ExposureResponseError(Exception):
    """Base exception for all exposure_response errors."""
    pass


class ValidationError(ExposureResponseError, ValueError):
    """
    Input validation failed.

    Raised at the boundary of the offending call for length mismatches,
    shape mismatches and unknown parameter, level or prior names.

    Attributes:
        field: Name of the offending field, if known
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StateError(ExposureResponseError, RuntimeError):
    """
    An operation was requested before the state it needs exists.

    Raised when a simulation skeleton is sampled with unset prerequisites,
    or when composition asks for a parameter that the ParameterSet lacks.

    Attributes:
        level: Hierarchical level of the missing item (e.g. 'unit')
        parameter: Parameter type or name of the missing item (e.g. 'sd')
    """

    def __init__(
        self,
        message: str,
        level: Optional[str] = None,
        parameter: Optional[str] = None
    ):
        super().__init__(message)
        self.level = level
        self.parameter = parameter


class ExternalFailure(ExposureResponseError, RuntimeError):
    """
    The external sampler produced an unusable result.

    Raised by convergence validation. Errors raised inside PyMC itself are
    never wrapped and reach the caller unchanged.

    Attributes:
        diagnostics: Convergence diagnostics that triggered the failure
    """

    def __init__(self, message: str, diagnostics: Optional[dict] = None):
        super().__init__(message)
        self.diagnostics = diagnostics
