"""
Tolerance checks and distance computations used throughout the package, with the
`FLOAT_TOLERANCE` attribute alongside the ability to set your own global tolerance.


Tolerance Control
---------------------------------------------------------------------------------------
[`FLOAT_TOLERANCE`][dibl.core.numerics.FLOAT_TOLERANCE]
Global attribute of tolerance for the package

[`equal_within_tolerance`][dibl.core.numerics.equal_within_tolerance]
Function to check equality of two real numbers (or sequences of them) up to a tolerance

[`set_tolerance`][dibl.core.numerics.set_tolerance]
Function used to set global tolerance


Matrices and Distances
---------------------------------------------------------------------------------------
[`is_symmetric`][dibl.core.numerics.is_symmetric]
Check whether a square matrix equals its transpose up to a tolerance

[`pairwise_distances`][dibl.core.numerics.pairwise_distances]
Euclidean distance matrix for a collection of points

[`min_pairwise_distance`][dibl.core.numerics.min_pairwise_distance]
Smallest distance between two distinct points of a collection

"""

import math
from collections.abc import Sequence
from numbers import Real
from typing import Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

FLOAT_TOLERANCE = 1e-9
"""The default tolerance to use when testing for equality of real numbers."""


def equal_within_tolerance(
    x: Union[Real, Sequence[Real]],
    y: Union[Real, Sequence[Real]],
    rel_tol: Optional[Real] = None,
    abs_tol: Optional[Real] = None,
) -> bool:
    """Test equality of two real numbers or sequences of real numbers up to a tolerance.

    Sequences (including Numpy arrays of any dimension) are compared element-wise and
    are only equal if they have the same length.

    Parameters
    ----------
    x, y :
        Real numbers or sequences of real numbers to test equality of.
    rel_tol :
        The maximum allowed relative difference. Defaults to the value of
        ``FLOAT_TOLERANCE`` at the time of the call.
    abs_tol :
        The minimum permitted absolute difference. Defaults to the value of
        ``FLOAT_TOLERANCE`` at the time of the call.

    Returns
    -------
    bool
        Whether the two numbers or sequences of numbers are equal up to the relative
        and absolute tolerances.
    """

    rel_tol = FLOAT_TOLERANCE if rel_tol is None else rel_tol
    abs_tol = FLOAT_TOLERANCE if abs_tol is None else abs_tol

    if _is_seq(x) and _is_seq(y):
        return len(x) == len(y) and all(
            equal_within_tolerance(a, b, rel_tol=rel_tol, abs_tol=abs_tol)
            for a, b in zip(x, y)
        )
    elif isinstance(x, Real) and isinstance(y, Real):
        return math.isclose(x, y, rel_tol=rel_tol, abs_tol=abs_tol)
    else:
        raise TypeError(
            f"Both arguments must be of type {Real}, type sequences or type Numpy arrays, "
            "but one or more arguments were of an unexpected type."
        )


def _is_seq(x) -> bool:
    return isinstance(x, (Sequence, np.ndarray))


def set_tolerance(tol: float):
    """
    Update the global FLOAT_TOLERANCE from its default (1e-9) to the value passed.

    Parameters
    ----------
    tol :
        The new, non-negative tolerance.
    """

    if not isinstance(tol, float):
        raise TypeError(
            f"Expected 'tol' to be of type float, but received {type(tol)} instead."
        )

    if tol < 0:
        raise ValueError(f"Expected 'tol' to be non-negative but received {tol}.")

    global FLOAT_TOLERANCE
    FLOAT_TOLERANCE = tol


def is_symmetric(matrix: ArrayLike, tol: Optional[float] = None) -> bool:
    """Whether a square matrix is symmetric up to an absolute tolerance.

    With ``tol=0`` the check is for exact (bitwise) equality with the transpose.
    """

    matrix = np.asarray(matrix)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        return False

    tol = FLOAT_TOLERANCE if tol is None else tol
    if tol == 0:
        return bool(np.array_equal(matrix, matrix.T))

    return bool(np.allclose(matrix, matrix.T, rtol=0, atol=tol))


def pairwise_distances(points: ArrayLike, diagonal: Optional[float] = None) -> NDArray:
    """Compute the Euclidean distance matrix of a collection of points.

    Parameters
    ----------
    points :
        An array of shape ``(n, d)`` (or a sequence of ``n`` points of dimension ``d``).
    diagonal :
        (Default: None) If not ``None``, the value written to the diagonal of the
        returned matrix in place of the zero self-distances.

    Returns
    -------
    numpy.ndarray
        The ``(n, n)`` matrix whose ``[i, j]`` entry is the distance between points
        ``i`` and ``j``.
    """

    points = np.asarray(points, dtype=float)
    diffs = points[:, np.newaxis, :] - points[np.newaxis, :, :]
    distances = np.sqrt(np.sum(diffs**2, axis=-1))
    if diagonal is not None:
        np.fill_diagonal(distances, diagonal)

    return distances


def min_pairwise_distance(points: ArrayLike) -> float:
    """The smallest Euclidean distance between two distinct points of a collection.

    Raises a ValueError if fewer than two points are supplied.
    """

    points = np.asarray(points, dtype=float)
    if len(points) < 2:
        raise ValueError(
            "Expected at least 2 points to compute a pairwise distance, but received "
            f"{len(points)}."
        )

    return float(np.min(pairwise_distances(points, diagonal=np.inf)))
