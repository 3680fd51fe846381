"""
Space-filling designs of simulator inputs in the unit hypercube.


[MaximinLatinHypercubeDesigner][dibl.core.designers.MaximinLatinHypercubeDesigner]
---------------------------------------------------------------------------------------
[`make_design`][dibl.core.designers.MaximinLatinHypercubeDesigner.make_design]
Create a maximin Latin hypercube design.


Functions
---------------------------------------------------------------------------------------
[`generate_design`][dibl.core.designers.generate_design]
Maximin Latin hypercube design on the unit square.

[`maximin_search`][dibl.core.designers.maximin_search]
Local search improving the minimum pairwise distance of a Latin hypercube.

[`is_latin_hypercube`][dibl.core.designers.is_latin_hypercube]
Check that a design has exactly one point in each stratification cell of each axis.

[`unit_grid`][dibl.core.designers.unit_grid]
Rectangular grid of query points covering the unit hypercube.

"""

from __future__ import annotations

import itertools
from numbers import Real
from typing import Any, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from dibl.core.modelling import Input, as_design_array
from dibl.core.numerics import pairwise_distances
from dibl.utilities.validation import check_int, check_real

MAXIMIN_ITERATIONS = 1000
"""The default number of local search iterations for maximin designs."""

SWAP_TOLERANCE = 1e-5
"""The default amount by which a swap may reduce the minimum pairwise distance and
still be accepted."""


class MaximinLatinHypercubeDesigner(object):
    """A designer producing Latin hypercube designs in the unit hypercube that are
    locally optimised to maximise the smallest distance between two points.

    A design of ``n`` points is started from an independent random permutation of the
    ``n`` cell centres ``(i + 0.5) / n`` in each coordinate. A fixed number of
    local-search iterations then propose swapping the first coordinates of a point
    from a closest pair with those of another point chosen at random. A swap is kept
    if the minimum pairwise distance does not fall by more than `tolerance`, so
    neutral swaps are accepted and the search can move across plateaus. Swapping
    coordinates preserves the Latin hypercube property.

    Parameters
    ----------
    dim : int, optional
        (Default: 2) The dimension of the design points.
    iterations : int, optional
        (Default: ``MAXIMIN_ITERATIONS``) The number of local-search iterations.
    tolerance : numbers.Real, optional
        (Default: ``SWAP_TOLERANCE``) The acceptance tolerance for swaps.

    Examples
    --------
    >>> designer = MaximinLatinHypercubeDesigner()
    >>> design = designer.make_design(8, seed=1)
    >>> len(design), len(design[0])
    (8, 2)
    >>> is_latin_hypercube(design)
    True
    """

    def __init__(
        self,
        dim: int = 2,
        iterations: int = MAXIMIN_ITERATIONS,
        tolerance: Real = SWAP_TOLERANCE,
    ):
        check_int(
            dim, TypeError(f"Expected 'dim' to be an integer but received {type(dim)}.")
        )
        if dim < 1:
            raise ValueError(f"Expected 'dim' to be a positive integer but is equal to {dim}.")

        check_int(
            iterations,
            TypeError(
                f"Expected 'iterations' to be an integer but received {type(iterations)}."
            ),
        )
        if iterations < 0:
            raise ValueError(
                "Expected 'iterations' to be a non-negative integer but is equal to "
                f"{iterations}."
            )

        check_real(
            tolerance,
            TypeError(
                f"Expected 'tolerance' to be a real number but received {type(tolerance)}."
            ),
        )
        if not tolerance >= 0:
            raise ValueError(
                f"Expected 'tolerance' to be non-negative but is equal to {tolerance}."
            )

        self._dim = dim
        self._iterations = iterations
        self._tolerance = tolerance

    @property
    def dim(self) -> int:
        """(Read-only) The dimension of the design points."""

        return self._dim

    @property
    def iterations(self) -> int:
        """(Read-only) The number of local-search iterations."""

        return self._iterations

    @property
    def tolerance(self) -> Real:
        """(Read-only) The acceptance tolerance for swaps."""

        return self._tolerance

    def make_design(self, size: int, seed: Optional[int] = None) -> list[Input]:
        """Create a maximin Latin hypercube design.

        Parameters
        ----------
        size : int
            The number of design points, at least 2.
        seed : int, optional
            (Default: None) A random seed. The same seed always gives the same design.
            If ``None`` then fresh entropy is drawn from the operating system.

        Returns
        -------
        list[Input]
            The design points, in the unit hypercube.

        Raises
        ------
        ValueError
            If `size` is less than 2.
        """

        check_int(
            size,
            TypeError(f"Expected 'size' to be an integer but received {type(size)}."),
        )
        if size < 2:
            raise ValueError(
                "Expected 'size' to be an integer of at least 2, so that pairwise "
                f"distances are defined, but is equal to {size}."
            )

        if seed is not None:
            check_int(
                seed,
                TypeError(f"Expected 'seed' to be None or of type int, but received {type(seed)}."),
            )

        rng = np.random.default_rng(seed)
        points = latin_hypercube_centres(size, self._dim, rng)
        points, _ = maximin_search(points, self._iterations, self._tolerance, rng)
        return [Input.from_array(point) for point in points]


def latin_hypercube_centres(size: int, dim: int, rng: np.random.Generator) -> NDArray:
    """A random Latin hypercube of `size` points in ``[0, 1]^dim``, made by permuting
    the cell centres ``(i + 0.5) / size`` independently in each coordinate."""

    return np.column_stack(
        [(rng.permutation(size) + 0.5) / size for _ in range(dim)]
    )


def maximin_search(
    points: ArrayLike,
    iterations: int,
    tolerance: Real,
    rng: np.random.Generator,
) -> tuple[NDArray, list[float]]:
    """Randomised local search for a design with a larger minimum pairwise distance.

    Each iteration picks a closest pair of points (uniformly at random among ties),
    takes the first point of the pair and a second point chosen uniformly from the
    rest, and proposes swapping their first coordinates. The swap is accepted iff the
    new minimum pairwise distance is at least the current minimum minus `tolerance`.

    Parameters
    ----------
    points :
        The starting design, an array of shape ``(n, d)`` with ``n >= 2``. It is not
        modified.
    iterations : int
        The number of swaps to propose.
    tolerance : numbers.Real
        The acceptance tolerance.
    rng : numpy.random.Generator
        The source of randomness.

    Returns
    -------
    tuple[numpy.ndarray, list[float]]
        The final design, and the minimum pairwise distance of the design before the
        search followed by its value after each iteration.
    """

    points = np.array(points, dtype=float)
    n_points = len(points)
    distances = pairwise_distances(points, diagonal=np.inf)
    current_min = float(np.min(distances))
    history = [current_min]
    for _ in range(iterations):
        rows, cols = np.nonzero(np.triu(distances == current_min, k=1))
        pair = rng.integers(len(rows))
        first = rows[pair]
        second = rng.choice([i for i in range(n_points) if i != first])

        proposal = points.copy()
        proposal[[first, second], 0] = proposal[[second, first], 0]
        proposal_distances = pairwise_distances(proposal, diagonal=np.inf)
        proposal_min = float(np.min(proposal_distances))
        if proposal_min >= current_min - tolerance:
            points, distances, current_min = proposal, proposal_distances, proposal_min

        history.append(current_min)

    return points, history


def generate_design(
    size: int,
    seed: Optional[int] = None,
    iterations: int = MAXIMIN_ITERATIONS,
    tolerance: Real = SWAP_TOLERANCE,
) -> list[Input]:
    """A maximin Latin hypercube design of `size` points on the unit square.

    This is shorthand for
    ``MaximinLatinHypercubeDesigner(2, iterations, tolerance).make_design(size, seed)``.
    """

    return MaximinLatinHypercubeDesigner(
        dim=2, iterations=iterations, tolerance=tolerance
    ).make_design(size, seed=seed)


def is_latin_hypercube(points: Any) -> bool:
    """Whether a design of ``n`` points in the unit hypercube has exactly one point in
    each of the ``n`` cells ``[i / n, (i + 1) / n)`` of every coordinate axis."""

    points = as_design_array(points)
    n_points = len(points)
    if n_points == 0:
        return False

    if np.any(points < 0) or np.any(points > 1):
        return False

    cells = np.minimum(np.floor(points * n_points), n_points - 1).astype(int)
    return all(
        len(set(cells[:, k])) == n_points for k in range(points.shape[1])
    )


def unit_grid(points_per_dim: int, dim: int = 2) -> list[Input]:
    """A rectangular grid of query points covering ``[0, 1]^dim``.

    Each coordinate takes `points_per_dim` equally spaced values from 0 to 1 inclusive.
    The points are ordered with the first coordinate varying fastest.

    Examples
    --------
    >>> unit_grid(2)
    [Input(0.0, 0.0), Input(1.0, 0.0), Input(0.0, 1.0), Input(1.0, 1.0)]
    """

    for arg_name, value, minimum in (("points_per_dim", points_per_dim, 2), ("dim", dim, 1)):
        check_int(
            value,
            TypeError(f"Expected '{arg_name}' to be an integer but received {type(value)}."),
        )
        if value < minimum:
            raise ValueError(
                f"Expected '{arg_name}' to be at least {minimum} but is equal to {value}."
            )

    axis = np.linspace(0, 1, points_per_dim)
    return [
        Input(*(float(c) for c in reversed(coords)))
        for coords in itertools.product(axis, repeat=dim)
    ]

