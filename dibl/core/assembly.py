"""
Assembly of the covariance structure of an augmented observation vector.

An augmented observation vector ``D`` holds simulator outputs at the ``n`` design
points followed by blocks of partial derivatives, one block per input dimension with
derivative information. A `BlockMap` records, for every entry of ``D``, the design
point it was observed at and its derivative label (``None`` for an output, otherwise
the coordinate index of the derivative). The functions in this module use the block
map to fill the covariance matrix ``Var_D`` and the cross-covariance row between an
output at a query point and ``D``, block by block.


[BlockMap][dibl.core.assembly.BlockMap]
---------------------------------------------------------------------------------------
[`from_directives`][dibl.core.assembly.BlockMap.from_directives]
Build a block map from the dimensions (and design points) carrying derivatives.

[`prior_mean_vector`][dibl.core.assembly.BlockMap.prior_mean_vector]
The prior expectation of the augmented observation vector.


Assembly
---------------------------------------------------------------------------------------
[`assemble`][dibl.core.assembly.assemble]
The covariance matrix of the augmented observation vector.

[`cross_covariance`][dibl.core.assembly.cross_covariance]
Covariances between the output at a query point and the augmented observations.

"""

from __future__ import annotations

import dataclasses
from collections.abc import Collection, Iterator, Mapping, Sequence
from itertools import groupby
from numbers import Real
from typing import Any, NamedTuple, Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from dibl.core.errors import DimensionMismatchError
from dibl.core.kernels import SquaredExponential
from dibl.core.modelling import (
    BayesLinearHyperparameters,
    Input,
    TrainingDatum,
    as_design_array,
)
from dibl.utilities.validation import check_int

DerivativeDirectives = Union[
    None, Collection[int], Mapping[int, Optional[Sequence[int]]]
]
"""The input dimensions carrying derivative observations: either a collection of
dimensions (one derivative per design point in each) or a mapping from dimension to the
indices of the design points with a derivative in that dimension (``None`` for all)."""


class ObservationLabel(NamedTuple):
    """The meaning of one entry of an augmented observation vector: the index of the
    design point it was observed at, and ``None`` for a simulator output or the
    coordinate index of a partial derivative."""

    point: int
    dim: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class Block:
    """A contiguous run of entries of an augmented observation vector sharing a
    derivative label.

    Attributes
    ----------
    dim : int or None
        The derivative label of every entry in the block.
    points : tuple[int, ...]
        The design point indices of the entries, in order.
    start : int
        The position of the first entry of the block.
    """

    dim: Optional[int]
    points: tuple[int, ...]
    start: int

    @property
    def stop(self) -> int:
        return self.start + len(self.points)

    @property
    def indices(self) -> slice:
        """The positions of the block's entries, as a slice."""

        return slice(self.start, self.stop)

    def __len__(self) -> int:
        return len(self.points)


class BlockMap(Sequence):
    """The correspondence between entries of an augmented observation vector and the
    design points and derivative directions they were observed at.

    A `BlockMap` is a sequence of `ObservationLabel` of length ``len(D)``. The labels
    must start with the outputs at every design point, in design order, followed by
    derivative labels grouped into contiguous blocks with one block per dimension.

    Parameters
    ----------
    labels : Sequence[ObservationLabel or tuple[int, Optional[int]]]
        The label of each entry of the augmented observation vector.
    n_points : int
        The number of design points.

    Attributes
    ----------
    blocks : tuple[Block, ...]
        (Read-only) The contiguous blocks, value block first.
    n_points : int
        (Read-only) The number of design points.
    derivative_dims : tuple[int, ...]
        (Read-only) The input dimensions with derivative observations, in block order.
    size : int
        (Read-only) The length of the augmented observation vector.

    Raises
    ------
    DimensionMismatchError
        If the labels don't begin with one output per design point, refer to design
        points that don't exist, or split a dimension over several blocks.

    Examples
    --------
    >>> block_map = BlockMap.from_directives(3, [1])
    >>> list(block_map)
    [ObservationLabel(point=0, dim=None), ObservationLabel(point=1, dim=None),
     ObservationLabel(point=2, dim=None), ObservationLabel(point=0, dim=1),
     ObservationLabel(point=1, dim=1), ObservationLabel(point=2, dim=1)]
    >>> [block.indices for block in block_map.blocks]
    [slice(0, 3, None), slice(3, 6, None)]
    """

    def __init__(self, labels: Sequence[tuple[int, Optional[int]]], n_points: int):
        check_int(
            n_points,
            TypeError(f"Expected 'n_points' to be an int, but received {type(n_points)}."),
        )
        if n_points < 1:
            raise ValueError(
                f"Expected at least one design point, but 'n_points' is {n_points}."
            )

        self._n_points = n_points
        self._labels = tuple(ObservationLabel(*label) for label in labels)
        self._blocks = self._partition(self._labels, n_points)

    @staticmethod
    def _partition(labels: Sequence[ObservationLabel], n_points: int) -> tuple[Block, ...]:
        for label in labels:
            if not 0 <= label.point < n_points:
                raise DimensionMismatchError(
                    f"Observation label {tuple(label)} refers to design point "
                    f"{label.point}, but there are only {n_points} design points."
                )

        blocks = []
        start = 0
        for dim, group in groupby(labels, key=lambda label: label.dim):
            points = tuple(label.point for label in group)
            blocks.append(Block(dim, points, start))
            start += len(points)

        if not blocks or blocks[0].dim is not None or blocks[0].points != tuple(
            range(n_points)
        ):
            raise DimensionMismatchError(
                f"Expected the first {n_points} observations to be the outputs at each "
                "design point, in design order."
            )

        dims = [block.dim for block in blocks[1:]]
        if None in dims or len(set(dims)) != len(dims):
            raise DimensionMismatchError(
                "Expected each derivative dimension to occupy a single contiguous block "
                "after the block of outputs."
            )

        for block in blocks[1:]:
            if len(set(block.points)) != len(block.points):
                raise ValueError(
                    f"Derivative block for dimension {block.dim} repeats a design point."
                )

        return tuple(blocks)

    @classmethod
    def from_directives(
        cls,
        n_points: int,
        derivative_dims: DerivativeDirectives = None,
        input_dim: Optional[int] = None,
    ) -> BlockMap:
        """Build the block map for a design of `n_points` points.

        Derivative blocks follow the block of outputs in increasing order of dimension.

        Parameters
        ----------
        n_points : int
            The number of design points.
        derivative_dims : DerivativeDirectives, optional
            (Default: None) The dimensions with derivative observations. A collection
            of dimensions adds a derivative at every design point in each; a mapping
            from dimension to a sequence of design point indices (or ``None``, meaning
            every point) allows a different count per dimension.
        input_dim : int, optional
            (Default: None) The dimension of the design points, used to check that the
            derivative dimensions are valid coordinate indices.

        Returns
        -------
        BlockMap
            The block map.
        """

        directives = cls._normalise_directives(derivative_dims, n_points)
        labels = [ObservationLabel(i) for i in range(n_points)]
        for dim in sorted(directives):
            check_int(
                dim, TypeError(f"Expected derivative dimensions to be ints, but received {dim!r}.")
            )
            if dim < 0 or (input_dim is not None and dim >= input_dim):
                raise DimensionMismatchError(
                    f"Derivative dimension {dim} is not a coordinate index for design "
                    f"points of dimension {input_dim}."
                )

            labels.extend(ObservationLabel(i, dim) for i in directives[dim])

        return cls(labels, n_points)

    @staticmethod
    def _normalise_directives(
        derivative_dims: DerivativeDirectives, n_points: int
    ) -> dict[int, tuple[int, ...]]:
        if derivative_dims is None:
            return {}

        if isinstance(derivative_dims, Mapping):
            directives = {}
            for dim, points in derivative_dims.items():
                if points is None:
                    directives[dim] = tuple(range(n_points))
                else:
                    points = tuple(points)
                    for point in points:
                        check_int(
                            point,
                            TypeError(
                                f"Expected design point indices to be ints, but received {point!r}."
                            ),
                        )
                    directives[dim] = points

            return directives

        dims = list(derivative_dims)
        if len(set(dims)) != len(dims):
            raise ValueError(f"Derivative dimensions {dims} contain duplicates.")

        return {dim: tuple(range(n_points)) for dim in dims}

    @property
    def blocks(self) -> tuple[Block, ...]:
        """(Read-only) The contiguous blocks, value block first."""

        return self._blocks

    @property
    def n_points(self) -> int:
        """(Read-only) The number of design points."""

        return self._n_points

    @property
    def derivative_dims(self) -> tuple[int, ...]:
        """(Read-only) The input dimensions with derivative observations."""

        return tuple(block.dim for block in self._blocks[1:])

    @property
    def size(self) -> int:
        """(Read-only) The length of the augmented observation vector."""

        return len(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def __getitem__(self, item):
        return self._labels[item]

    def __iter__(self) -> Iterator[ObservationLabel]:
        return iter(self._labels)

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, BlockMap)
            and self._n_points == other._n_points
            and self._labels == other._labels
        )

    def __repr__(self) -> str:
        dims = ", ".join(f"{block.dim}: {len(block)}" for block in self._blocks)
        return f"BlockMap({{{dims}}})"

    def prior_mean_vector(self, mean: Real) -> NDArray:
        """The prior expectation of the augmented observation vector: `mean` for
        outputs and zero for derivatives."""

        return np.array(
            [mean if label.dim is None else 0.0 for label in self._labels], dtype=float
        )

    def check_observations(self, observations: ArrayLike) -> NDArray:
        """Return a copy of the observations as a 1-dimensional float array, raising a
        DimensionMismatchError if their number differs from the size of this map."""

        observations = np.array(observations, dtype=float)
        if observations.ndim != 1 or len(observations) != self.size:
            raise DimensionMismatchError(
                f"Expected {self.size} observations ({self._n_points} outputs and "
                f"{self.size - self._n_points} derivatives), but received an array of "
                f"shape {observations.shape}."
            )

        if not np.all(np.isfinite(observations)):
            raise ValueError("Observations cannot contain NaN or non-finite values.")

        return observations


def resolve_block_map(
    derivative_dims: Union[DerivativeDirectives, BlockMap], points: NDArray
) -> BlockMap:
    """Return the block map for a design array, building it from derivative directives
    or checking that a supplied block map was built for this design."""

    n_points, input_dim = points.shape
    if n_points == 0:
        raise ValueError("Expected a design with at least one point.")

    if isinstance(derivative_dims, BlockMap):
        if derivative_dims.n_points != n_points:
            raise DimensionMismatchError(
                f"Block map was built for {derivative_dims.n_points} design points, but "
                f"the design has {n_points}."
            )
        if any(dim >= input_dim for dim in derivative_dims.derivative_dims):
            raise DimensionMismatchError(
                f"Block map has derivative dimensions {derivative_dims.derivative_dims} "
                f"but design points have dimension {input_dim}."
            )
        return derivative_dims

    return BlockMap.from_directives(n_points, derivative_dims, input_dim=input_dim)


def assemble(
    design: Any,
    derivative_dims: Union[DerivativeDirectives, BlockMap],
    hyperparameters: BayesLinearHyperparameters,
) -> tuple[NDArray, BlockMap]:
    """Assemble the covariance matrix of an augmented observation vector.

    The matrix is preallocated in full and filled block by block. For each pair of
    blocks ``(B_i, B_j)`` with ``i <= j`` the kernel covariance selected by the pair's
    derivative labels fills the corresponding slice, and its transpose fills
    ``(B_j, B_i)``. Diagonal blocks are filled from their upper triangle, so the
    result is exactly symmetric.

    Parameters
    ----------
    design :
        The design points, as a sequence of `Input` or an array of shape ``(n, d)``.
    derivative_dims : DerivativeDirectives or BlockMap
        The dimensions with derivative observations (see `BlockMap.from_directives`),
        or a block map already built for this design.
    hyperparameters : BayesLinearHyperparameters
        The prior hyperparameters.

    Returns
    -------
    tuple[numpy.ndarray, BlockMap]
        The ``(len(D), len(D))`` covariance matrix and the block map describing its
        rows and columns.

    Raises
    ------
    DimensionMismatchError
        If the design points differ in dimension, derivative dimensions are not
        coordinate indices, or a block map doesn't fit the design.
    """

    points = as_design_array(design)
    block_map = resolve_block_map(derivative_dims, points)
    kernel = SquaredExponential(hyperparameters)

    var_d = np.empty((block_map.size, block_map.size))
    blocks = block_map.blocks
    for i, row_block in enumerate(blocks):
        rows = points[list(row_block.points)]
        for j in range(i, len(blocks)):
            col_block = blocks[j]
            sub = kernel.matrix(
                rows, points[list(col_block.points)], row_block.dim, col_block.dim
            )
            if i == j:
                sub = np.triu(sub) + np.triu(sub, 1).T

            var_d[row_block.indices, col_block.indices] = sub
            var_d[col_block.indices, row_block.indices] = sub.T

    return var_d, block_map


def cross_covariance(
    x: ArrayLike,
    design: Any,
    block_map: BlockMap,
    hyperparameters: BayesLinearHyperparameters,
) -> NDArray:
    """The covariances between the simulator output at `x` and each entry of an
    augmented observation vector.

    The query point is treated as a single observation of the output (never a
    derivative), so entries in a derivative block for dimension ``k`` are derivatives
    of the kernel with respect to coordinate ``k`` of its second argument.

    Returns
    -------
    numpy.ndarray
        A 1-dimensional array of length ``block_map.size``, aligned with the block map.

    Raises
    ------
    DimensionMismatchError
        If `x` doesn't have the same dimension as the design points, or the block map
        doesn't fit the design.
    """

    points = as_design_array(design)
    block_map = resolve_block_map(block_map, points)
    x = np.asarray(x, dtype=float)
    if x.ndim != 1 or len(x) != points.shape[1]:
        raise DimensionMismatchError(
            f"Expected a query point of dimension {points.shape[1]}, but received one of "
            f"shape {x.shape}."
        )

    return _cross_covariance_row(
        x, points, block_map, SquaredExponential(hyperparameters)
    )


def _cross_covariance_row(
    x: NDArray, points: NDArray, block_map: BlockMap, kernel: SquaredExponential
) -> NDArray:
    row = np.empty(block_map.size)
    for block in block_map.blocks:
        row[block.indices] = kernel.matrix(
            x[np.newaxis, :], points[list(block.points)], None, block.dim
        )[0]

    return row


def stack_training_data(
    training_data: Sequence[TrainingDatum], derivative_dims: DerivativeDirectives = None
) -> tuple[tuple[Input, ...], NDArray, BlockMap]:
    """Build the design, augmented observation vector and block map from simulator runs.

    Parameters
    ----------
    training_data :
        The simulator runs, in design order.
    derivative_dims :
        (Default: None) The dimensions with derivative observations, as for
        `BlockMap.from_directives`. Every datum named by the directives must carry a
        derivative in the corresponding dimension.

    Returns
    -------
    tuple[tuple[Input, ...], numpy.ndarray, BlockMap]
        The design inputs, the augmented observation vector and its block map.

    Raises
    ------
    DimensionMismatchError
        If a datum lacks a requested derivative, or the inputs differ in dimension.
    """

    data = tuple(training_data)
    if not all(isinstance(datum, TrainingDatum) for datum in data):
        raise TypeError(
            "Expected 'training_data' to be a sequence of TrainingDatum, but one or more "
            "elements were of an unexpected type."
        )

    if not data:
        raise ValueError("Expected at least one training datum.")

    design = tuple(datum.input for datum in data)
    input_dim = as_design_array(design).shape[1]
    block_map = BlockMap.from_directives(len(data), derivative_dims, input_dim=input_dim)

    observations = []
    for label in block_map:
        datum = data[label.point]
        if label.dim is None:
            observations.append(datum.output)
            continue

        try:
            observations.append(datum.derivatives[label.dim])
        except KeyError:
            raise DimensionMismatchError(
                f"Training datum {label.point} at {datum.input} has no derivative in "
                f"dimension {label.dim}."
            ) from None

    return design, np.array(observations, dtype=float), block_map
