"""
Spline Basis Construction and Attachment

B-spline bases for the temporal effect of the exposure model and the
exposure-response function of the outcome model. A basis keeps its knots so
the same functions can be re-evaluated at new time / exposure values when
drawing curves.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.interpolate import BSpline

from ..exceptions import ValidationError


@dataclass(frozen=True)
class SplineBasis:
    """
    B-spline basis specification.

    Without an intercept column: ``df - degree`` interior knots placed at
    quantiles of the data, boundary knots at the data range, and the first
    basis function dropped.

    Attributes:
        degree: Polynomial degree of the pieces
        interior_knots: Interior knot locations
        boundary_knots: (lower, upper) boundary knots
    """
    degree: int
    interior_knots: tuple
    boundary_knots: tuple

    @property
    def df(self) -> int:
        return len(self.interior_knots) + self.degree

    def knot_vector(self) -> np.ndarray:
        lower, upper = self.boundary_knots
        return np.concatenate([
            np.repeat(lower, self.degree + 1),
            np.asarray(self.interior_knots, dtype=np.float64),
            np.repeat(upper, self.degree + 1),
        ])

    def evaluate(self, x) -> np.ndarray:
        """
        Evaluate the basis at new values.

        Parameters
        ----------
        x : array-like, shape (m,)
            Values at which to evaluate

        Returns
        -------
        basis : np.ndarray, shape (m, df)
            Basis matrix; values outside the boundary knots are extrapolated
        """
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        if self.df == 0 or len(x) == 0:
            return np.zeros((len(x), self.df))
        design = BSpline.design_matrix(
            x, self.knot_vector(), self.degree, extrapolate=True
        )
        return design.toarray()[:, 1:]


def create_spline(
    x,
    df: int,
    degree: int = 3,
    boundary_knots: Optional[tuple] = None
) -> SplineBasis:
    """
    Create a B-spline basis from observed time or exposure values.

    Parameters
    ----------
    x : array-like
        Values the basis should span
    df : int
        Degrees of freedom (number of basis columns). 0 means "no effect".
    degree : int, optional (default=3)
        Polynomial degree; cubic by default
    boundary_knots : tuple, optional
        (lower, upper) range. Defaults to the range of ``x``.

    Returns
    -------
    basis : SplineBasis
        Call ``basis.evaluate(x)`` for the matrix

    Raises
    ------
    ValidationError
        If ``df`` is negative, or positive but smaller than ``degree``
    """
    if degree < 1:
        raise ValidationError(f"degree must be >= 1. Got: {degree}", field='degree')
    if df < 0:
        raise ValidationError(f"df must be non-negative. Got: {df}", field='df')

    x = np.asarray(x, dtype=np.float64).reshape(-1)
    if df == 0:
        return SplineBasis(degree=degree, interior_knots=(), boundary_knots=(0.0, 0.0))
    if df < degree:
        raise ValidationError(
            f"df must be at least degree ({degree}) for a non-empty basis. Got: {df}",
            field='df'
        )
    if len(x) == 0 or not np.all(np.isfinite(x)):
        raise ValidationError(
            "Spline values must be a non-empty vector of finite numbers",
            field='x'
        )

    if boundary_knots is None:
        boundary_knots = (float(x.min()), float(x.max()))
    lower, upper = (float(b) for b in boundary_knots)
    if not upper > lower:
        raise ValidationError(
            f"Boundary knots must span a positive range. Got: ({lower}, {upper})",
            field='boundary_knots'
        )

    n_interior = df - degree
    if n_interior > 0:
        probs = np.linspace(0, 1, n_interior + 2)[1:-1]
        interior = tuple(float(q) for q in np.quantile(x, probs))
    else:
        interior = ()

    return SplineBasis(
        degree=degree,
        interior_knots=interior,
        boundary_knots=(lower, upper)
    )


def validate_basis(matrix, n_rows: int, name: str = 'Mt') -> np.ndarray:
    """
    Validate a basis matrix against the expected row count.

    ``None`` or an empty array gives the ``(n_rows, 0)`` placeholder, the
    "no temporal / exposure effect" state.

    Raises
    ------
    ValidationError
        If the matrix is not two-dimensional or its row count is wrong
    """
    if matrix is None:
        return np.zeros((n_rows, 0))
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((n_rows, 0))
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValidationError(
            f"'{name}' must be a two-dimensional matrix. Got shape {arr.shape}",
            field=name
        )
    if arr.shape[0] != n_rows:
        raise ValidationError(
            f"'{name}' must have {n_rows} rows. Got: {arr.shape[0]}",
            field=name
        )
    return arr


def add_spline_time(dataset, Mt, basis: Optional[SplineBasis] = None):
    """
    Attach a temporal spline matrix to an exposure dataset.

    Parameters
    ----------
    dataset : ExposureDataset
        Dataset to extend; it is not modified
    Mt : array-like, shape (N, timedf), or SplineBasis, or None
        Basis evaluated at the dataset's times. A SplineBasis is evaluated
        at ``dataset.time``.
    basis : SplineBasis, optional
        Basis specification, kept for curve evaluation at new times

    Returns
    -------
    dataset : ExposureDataset
        New dataset with ``Mt``, ``timedf`` and ``time_basis`` set
    """
    if isinstance(Mt, SplineBasis):
        basis = Mt
        Mt = basis.evaluate(dataset.time)
    Mt = validate_basis(Mt, dataset.N, 'Mt')
    return dataset.replace(Mt=Mt, timedf=Mt.shape[1], time_basis=basis)


def add_spline_exposure(dataset, Mx, basis: Optional[SplineBasis] = None):
    """
    Attach an exposure spline matrix to an outcome dataset.

    Same contract as :func:`add_spline_time`, evaluated at ``dataset.x``.
    """
    if isinstance(Mx, SplineBasis):
        basis = Mx
        Mx = basis.evaluate(dataset.x)
    Mx = validate_basis(Mx, dataset.N, 'Mx')
    return dataset.replace(Mx=Mx, xdf=Mx.shape[1], x_basis=basis)
