"""Basic objects for expressing emulation of simulators."""

from __future__ import annotations

import abc
import csv
import dataclasses
import math
from collections.abc import Mapping, Sequence
from numbers import Real
from os import PathLike
from typing import Any, Optional, Union

import numpy as np
from numpy.typing import NDArray

import dibl.utilities.validation as validation
from dibl.core.errors import (
    DimensionMismatchError,
    InvalidHyperparameterError,
    NegativeVarianceError,
)
from dibl.core.numerics import equal_within_tolerance

FilePath = Union[str, bytes, PathLike]
"""A type to represent filepaths."""


class Input(Sequence):
    """The input to a simulator or emulator.

    `Input` objects should be thought of as coordinate vectors. They implement the
    Sequence abstract base class from the ``collections.abc module``. Applying the
    ``len`` function to an `Input` object will return the number of coordinates in it.
    Individual coordinates can be extracted from an `Input` by using index
    subscripting (with indexing starting at ``0``).

    Emulators in this package expect inputs that have been mapped into the unit
    hypercube ``[0, 1]^d``; see `SimulatorDomain` for converting to and from physical
    coordinates.

    Parameters
    ----------
    *args : tuple of numbers.Real
        The coordinates of the input. Each coordinate must define a finite
        number that is not a missing value (i.e. not None or NaN).

    Attributes
    ----------
    value : tuple of numbers.Real, numbers.Real or None
        Represents the point as a tuple of real numbers (dim > 1), a single real
        number (dim = 1) or None (dim = 0).

    Examples
    --------
    >>> x = Input(0.25, 0.75)
    >>> x.value
    (0.25, 0.75)
    >>> len(x)
    2
    >>> x[1]
    0.75
    >>> x[:1]
    Input(0.25)
    """

    def __init__(self, *args: Real):
        self._value = self._validate_args(args)

    @classmethod
    def _validate_args(cls, args: tuple[Any, ...]) -> tuple[Real, ...]:
        """Check that all arguments define finite real numbers, returning the
        supplied tuple if so or raising an exception if not."""

        validation.check_entries_not_none(
            args, TypeError("Input coordinates must be real numbers, not None")
        )
        validation.check_entries_real(
            args, TypeError("Arguments must be instances of real numbers")
        )
        validation.check_entries_finite(
            args, ValueError("Cannot supply NaN or non-finite numbers as arguments")
        )

        return args

    @classmethod
    def from_array(cls, input: np.ndarray) -> Input:
        """Create an input from a 1-dimensional Numpy array of finite real numbers."""

        if not isinstance(input, np.ndarray):
            raise TypeError(
                f"Expected 'input' of type numpy.ndarray but received {type(input)}."
            )

        if not input.ndim == 1:
            raise ValueError(
                "Expected 'input' to be a 1-dimensional numpy.ndarray but received an "
                f"array with {input.ndim} dimensions."
            )

        return cls(*input.tolist())

    def to_array(self) -> NDArray:
        """The coordinates of this input as a 1-dimensional float array."""

        return np.array(self._value, dtype=float)

    def __str__(self) -> str:
        if len(self._value) == 1:
            return f"{self._value[0]}"

        return str(self._value)

    def __repr__(self) -> str:
        if len(self._value) == 1:
            return f"Input({repr(self._value[0])})"

        return f"Input{repr(self._value)}"

    def __eq__(self, other: Any) -> bool:
        """Returns ``True`` precisely when `other` is an `Input` with the same
        coordinates as this `Input`, up to the package float tolerance."""

        if not isinstance(other, type(self)):
            return False

        return equal_within_tolerance(self._value, other._value)

    def __hash__(self) -> int:
        return hash(len(self._value))

    def __len__(self) -> int:
        """Returns the number of coordinates in this input."""

        return len(self._value)

    def __getitem__(self, item: Union[int, slice]) -> Union[Input, Real]:
        """Gets the coordinate at the given index of this input, or returns a new
        `Input` built from the given slice of coordinate entries."""

        try:
            subseq = self._value[item]
            if isinstance(item, slice):
                return self.__class__(*subseq)

            return subseq

        except TypeError:
            raise TypeError(
                f"Subscript must be an 'int' or slice, but received {type(item)}."
            )

        except IndexError:
            raise IndexError(f"Input index {item} out of range.")

    @property
    def value(self) -> Union[tuple[Real, ...], Real, None]:
        """(Read-only) Gets the value of the input, as a tuple of real
        numbers (dim > 1), a single real number (dim = 1), or None (dim = 0)."""

        if not self._value:
            return None

        if len(self._value) == 1:
            return self._value[0]

        return self._value


def as_design_array(design: Any) -> NDArray:
    """Convert a design (a sequence of `Input` or an array-like of shape ``(n, d)``) to a
    2-dimensional float array, raising a DimensionMismatchError if the design points do
    not all have the same number of coordinates."""

    if isinstance(design, np.ndarray):
        points = design.astype(float)
        if points.ndim == 1:
            points = points[:, np.newaxis]
    else:
        rows = [tuple(x) for x in design]
        dims = {len(row) for row in rows}
        if len(dims) > 1:
            raise DimensionMismatchError(
                "Expected all design points to have the same dimension, but found points "
                f"of dimensions {sorted(dims)}."
            )

        points = np.array(rows, dtype=float).reshape(len(rows), dims.pop() if dims else 0)

    if points.ndim != 2:
        raise DimensionMismatchError(
            f"Expected a design of shape (n, d), but received an array with {points.ndim} "
            "dimensions."
        )

    if not np.all(np.isfinite(points)):
        raise ValueError("Design points cannot contain NaN or non-finite coordinates.")

    return points


@dataclasses.dataclass(frozen=True)
class TrainingDatum(object):
    """A simulator run used to adjust an emulator.

    A datum records an input ``x`` (in unit-hypercube coordinates), the simulator output
    ``f(x)`` and, optionally, partial derivatives of ``f`` at ``x`` with respect to some
    of the input coordinates. Derivatives must be expressed in the same normalised
    coordinates as the input.

    Parameters
    ----------
    input : Input
        An input to a simulator.
    output : numbers.Real
        The output of the simulator at the input. This must be a finite
        number that is not a missing value (i.e. not None or NaN).
    derivatives : Mapping[int, numbers.Real], optional
        (Default: None) Partial derivatives of the output at the input, keyed by the
        (0-based) index of the input coordinate they are taken with respect to.

    Attributes
    ----------
    input : Input
        (Read-only) An input to a simulator.
    output : numbers.Real
        (Read-only) The output of the simulator at the input.
    derivatives : dict[int, numbers.Real]
        (Read-only) The partial derivatives recorded for this datum (empty if none).
    """

    input: Input
    output: Real
    derivatives: Optional[Mapping[int, Real]] = None

    def __post_init__(self):
        self._validate_input(self.input)
        self._validate_output(self.output)
        object.__setattr__(
            self, "derivatives", self._validate_derivatives(self.derivatives, self.input)
        )

    @staticmethod
    def _validate_input(input: Any) -> None:
        if not isinstance(input, Input):
            raise TypeError("Argument 'input' must be of type Input")

    @staticmethod
    def _validate_output(observation: Any) -> None:
        validation.check_not_none(
            observation, TypeError("Argument 'output' cannot be None")
        )
        validation.check_real(
            observation, TypeError("Argument 'output' must define a real number")
        )
        validation.check_finite(
            observation, ValueError("Argument 'output' cannot be NaN or non-finite")
        )

    @staticmethod
    def _validate_derivatives(derivatives: Any, input: Input) -> dict[int, Real]:
        if derivatives is None:
            return {}

        if not isinstance(derivatives, Mapping):
            raise TypeError(
                "Expected 'derivatives' to be a mapping of input dimensions to real "
                f"numbers, but received {type(derivatives)}."
            )

        for dim, value in derivatives.items():
            validation.check_int(
                dim, TypeError(f"Derivative dimension {dim!r} must be an integer.")
            )
            if not 0 <= dim < len(input):
                raise DimensionMismatchError(
                    f"Derivative dimension {dim} is out of range for an input with "
                    f"{len(input)} coordinates."
                )

            validation.check_real(
                value, TypeError(f"Derivative in dimension {dim} must be a real number.")
            )
            validation.check_finite(
                value, ValueError(f"Derivative in dimension {dim} cannot be NaN or non-finite.")
            )

        return dict(sorted(derivatives.items()))

    @classmethod
    def list_from_arrays(
        cls,
        inputs: np.ndarray,
        outputs: np.ndarray,
        derivatives: Optional[Mapping[int, np.ndarray]] = None,
    ) -> list[TrainingDatum]:
        """Create a list of training data from Numpy arrays.

        Parameters
        ----------
        inputs : np.ndarray
            A 2-dimensional array of inputs of shape ``(n, d)``.
        outputs : np.ndarray
            A 1-dimensional array of ``n`` simulator outputs.
        derivatives : Mapping[int, np.ndarray], optional
            (Default: None) For each dimension with derivative information, a
            1-dimensional array of ``n`` partial derivatives aligned with `inputs`.

        Returns
        -------
        list[TrainingDatum]
            The training data, one datum per row of `inputs`.
        """

        derivatives = derivatives or {}
        for dim, values in derivatives.items():
            if len(values) != len(inputs):
                raise DimensionMismatchError(
                    f"Expected {len(inputs)} derivatives in dimension {dim}, but received "
                    f"{len(values)}."
                )

        return [
            cls(
                Input.from_array(np.asarray(input)),
                output,
                {dim: values[i] for dim, values in derivatives.items()},
            )
            for i, (input, output) in enumerate(zip(inputs, outputs))
        ]

    @classmethod
    def read_from_csv(
        cls,
        path: FilePath,
        output_col: int = -1,
        derivative_cols: Optional[Mapping[int, int]] = None,
        header: bool = False,
    ) -> tuple[TrainingDatum, ...]:
        """Read simulator runs from a csv file.

        There is one datum per (non-empty) row. The column `output_col` holds the
        simulator outputs and each entry ``dim: col`` of `derivative_cols` names a column
        holding partial derivatives with respect to input coordinate ``dim``. The
        remaining columns define the coordinates of the inputs, in the order in which
        they appear in the file.

        Parameters
        ----------
        path : str or os.PathLike
            The path to a csv file.
        output_col : int, optional
            (Default: -1) The (0-based) index of the column that defines the simulator
            outputs. Negative values count backwards from the end of the row.
        derivative_cols : Mapping[int, int], optional
            (Default: None) Columns of partial derivatives, keyed by input dimension.
        header : bool, optional
            (Default: False) Whether the csv contains a header row that should be skipped.

        Returns
        -------
        tuple[TrainingDatum, ...]
            The training data read from the csv file.

        Raises
        ------
        AssertionError
            If the file contains values that cannot be parsed as finite floats.
        ValueError
            If the output or derivative columns are invalid or coincide for some row.
        """

        derivative_cols = dict(derivative_cols or {})
        training_data = []
        with open(path, mode="r", newline="") as csvfile:
            reader = enumerate(csv.reader(csvfile))
            if header:
                try:
                    _ = next(reader)
                except StopIteration:
                    return tuple()

            for i, row in ((i, row) for i, row in reader if len(row) > 0):
                try:
                    parsed_row = cls._parse_csv_row(row)
                except AssertionError as e:
                    raise AssertionError(f"Could not read data from {path}: {e}.")

                columns = cls._resolve_columns(
                    len(parsed_row), [output_col, *derivative_cols.values()], i
                )
                output = parsed_row[columns[0]]
                derivatives = {
                    dim: parsed_row[col]
                    for dim, col in zip(derivative_cols.keys(), columns[1:])
                }
                coordinates = [
                    value for j, value in enumerate(parsed_row) if j not in columns
                ]
                try:
                    training_data.append(
                        TrainingDatum(Input(*coordinates), output, derivatives)
                    )
                except ValueError:
                    raise AssertionError(
                        f"Could not read data from {path}: infinite, NaN or out of range "
                        f"values found in row {i}."
                    )

        return tuple(training_data)

    @staticmethod
    def _resolve_columns(n_columns: int, columns: Sequence[int], row: int) -> list[int]:
        resolved = []
        for col in columns:
            if not -n_columns <= col < n_columns:
                raise ValueError(
                    f"Column index {col} is not valid for csv data with {n_columns} "
                    f"columns in row {row}."
                )
            resolved.append(col % n_columns)

        if len(set(resolved)) != len(resolved):
            raise ValueError(f"Output and derivative columns overlap in row {row}.")

        return resolved

    @classmethod
    def _parse_csv_row(cls, row: Sequence[str]) -> list[float]:
        try:
            return list(map(float, row))
        except ValueError:
            bad_data = next(s for s in row if not cls._is_float(s))
            raise AssertionError(f"unable to parse value '{bad_data}' as a float")

    @staticmethod
    def _is_float(s: str) -> bool:
        try:
            _ = float(s)
            return True
        except ValueError:
            return False

    def __str__(self) -> str:
        if self.derivatives:
            return f"({str(self.input)}, {str(self.output)}, {self.derivatives})"

        return f"({str(self.input)}, {str(self.output)})"


@dataclasses.dataclass(frozen=True)
class Prediction:
    """The adjusted expectation and variance of a simulator output at an input.

    Two predictions are considered equal if their estimates and variances agree to
    within the default tolerance of `dibl.core.numerics.equal_within_tolerance`.

    Parameters
    ----------
    estimate : numbers.Real
        The adjusted expectation.
    variance : numbers.Real
        The adjusted variance, which must be non-negative.

    Attributes
    ----------
    estimate : numbers.Real
        (Read-only) The adjusted expectation.
    variance : numbers.Real
        (Read-only) The adjusted variance.
    standard_deviation : numbers.Real
        (Read-only) The square root of the variance.

    Raises
    ------
    NegativeVarianceError
        If the variance is negative.
    """

    estimate: Real
    variance: Real
    standard_deviation: Real = dataclasses.field(default=None, init=False)

    def __post_init__(self):
        validation.check_real(
            self.estimate,
            TypeError(
                "Expected 'estimate' to define a real number, but received "
                f"{type(self.estimate)} instead."
            ),
        )
        validation.check_real(
            self.variance,
            TypeError(
                "Expected 'variance' to define a real number, but received "
                f"{type(self.variance)} instead."
            ),
        )
        if self.variance < 0:
            raise NegativeVarianceError(
                f"'variance' must be a non-negative real number, but received {self.variance}."
            )

        object.__setattr__(self, "standard_deviation", math.sqrt(self.variance))

    def __iter__(self):
        return iter((self.estimate, self.variance))

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return False

        return equal_within_tolerance(
            self.estimate, other.estimate
        ) and equal_within_tolerance(self.variance, other.variance)


@dataclasses.dataclass(frozen=True)
class BayesLinearHyperparameters:
    """The prior hyperparameters of a Bayes linear emulator.

    The prior for the simulator output ``f`` is a process with constant expectation
    `prior_mean` and squared exponential covariance
    ``sigma^2 * exp(-sum_k (x_k - x'_k)^2 / theta_k^2)``. Partial derivatives of ``f``
    have prior expectation zero.

    Equality is tested hyperparameter-wise up to the default numerical precision
    defined in ``dibl.core.numerics.FLOAT_TOLERANCE``.

    Parameters
    ----------
    corr_length_scales : numbers.Real or sequence of numbers.Real
        The correlation lengths ``theta``. A single number applies to every input
        dimension; otherwise there should be one per input dimension. All must be
        positive.
    sigma : numbers.Real
        The prior standard deviation, which must be positive.
    prior_mean : numbers.Real, optional
        (Default: 0) The prior expectation of the simulator output.

    Attributes
    ----------
    corr_length_scales : numbers.Real or tuple of numbers.Real
        (Read-only) The correlation lengths.
    sigma : numbers.Real
        (Read-only) The prior standard deviation.
    prior_mean : numbers.Real
        (Read-only) The prior expectation.
    process_var : float
        (Read-only) The prior variance ``sigma ** 2``.

    Raises
    ------
    InvalidHyperparameterError
        If a correlation length or `sigma` is not a positive finite number, or if
        `prior_mean` is not finite.
    """

    corr_length_scales: Union[Real, Sequence[Real]]
    sigma: Real
    prior_mean: Real = 0

    def __post_init__(self):
        theta = self.corr_length_scales
        if isinstance(theta, (Sequence, np.ndarray)):
            theta = tuple(theta)
            if not theta:
                raise InvalidHyperparameterError(
                    "Expected at least one correlation length scale."
                )
            for scale in theta:
                self._check_positive("corr_length_scales", scale)

            object.__setattr__(self, "corr_length_scales", theta)
        else:
            self._check_positive("corr_length_scales", theta)

        self._check_positive("sigma", self.sigma)

        validation.check_real(
            self.prior_mean,
            TypeError(
                "Expected 'prior_mean' to be a real number, but received "
                f"{type(self.prior_mean)}."
            ),
        )
        validation.check_finite(
            self.prior_mean,
            InvalidHyperparameterError(
                f"Expected 'prior_mean' to be finite, but received {self.prior_mean}."
            ),
        )

    @staticmethod
    def _check_positive(arg_name: str, value: Any) -> None:
        validation.check_real(
            value,
            TypeError(
                f"Expected '{arg_name}' to contain real numbers, but received {type(value)}."
            ),
        )
        validation.check_positive(
            value,
            InvalidHyperparameterError(
                f"Expected '{arg_name}' to be positive and finite, but received {value}."
            ),
        )

    @property
    def process_var(self) -> float:
        """(Read-only) The prior variance ``sigma ** 2``."""

        return float(self.sigma) ** 2

    def length_scales(self, dim: int) -> NDArray:
        """The correlation lengths for inputs of dimension `dim`, broadcasting a single
        length scale to every dimension.

        Raises
        ------
        DimensionMismatchError
            If a sequence of length scales was supplied whose length is not `dim`.
        """

        if isinstance(self.corr_length_scales, tuple):
            if len(self.corr_length_scales) == 1:
                return np.full(dim, float(self.corr_length_scales[0]))

            if len(self.corr_length_scales) != dim:
                raise DimensionMismatchError(
                    f"Expected {dim} correlation length scales for inputs of dimension "
                    f"{dim}, but {len(self.corr_length_scales)} were supplied."
                )

            return np.array(self.corr_length_scales, dtype=float)

        return np.full(dim, float(self.corr_length_scales))

    def __eq__(self, other) -> bool:
        if not isinstance(other, self.__class__):
            return False

        theta1, theta2 = self.corr_length_scales, other.corr_length_scales
        if isinstance(theta1, tuple) != isinstance(theta2, tuple):
            return False

        return all(
            [
                equal_within_tolerance(theta1, theta2),
                equal_within_tolerance(self.sigma, other.sigma),
                equal_within_tolerance(self.prior_mean, other.prior_mean),
            ]
        )

    def __hash__(self) -> int:
        return hash(type(self))


class SimulatorDomain(object):
    """
    Class representing the (rectangular) domain of a simulator in physical units.

    Emulators in this package work on inputs in the unit hypercube. A domain supplies
    the affine map between unit-hypercube coordinates and physical coordinates, and
    the chain-rule factors that convert partial derivatives computed in physical units
    into derivatives with respect to the normalised coordinates.

    Parameters
    ----------
    bounds : Sequence[tuple[Real, Real]]
        A sequence of tuples of real numbers ``((a_1, b_1), ..., (a_n, b_n))``, with each
        pair ``(a_i, b_i)`` representing the lower and upper bounds for the corresponding
        coordinate in the domain.

    Attributes
    ----------
    dim : int
        (Read-only) The dimension of this domain.
    bounds : tuple[tuple[Real, Real], ...]
        (Read-only) The bounds defining this domain.
    derivative_scales : tuple[float, ...]
        (Read-only) The widths ``b_i - a_i`` of the domain in each coordinate.

    Examples
    --------
    >>> domain = SimulatorDomain([(0.1, 0.5), (0.01, 0.21)])
    >>> domain.scale([0.5, 0.5])
    Input(0.3, 0.11)
    >>> Input(0.3, 0.11) in domain
    True
    """

    def __init__(self, bounds: Sequence[tuple[Real, Real]]):
        self._validate_bounds(bounds)
        self._bounds = tuple(bounds)
        self._dim = len(bounds)

    @staticmethod
    def _validate_bounds(bounds: Sequence[tuple[Real, Real]]) -> None:
        if bounds is None:
            raise TypeError("Bounds cannot be None. 'bounds' should be a sequence.")

        if not isinstance(bounds, Sequence):
            raise TypeError("Bounds should be a sequence.")

        if not bounds:
            raise ValueError("At least one pair of bounds must be provided.")

        for bound in bounds:
            if not isinstance(bound, tuple) or len(bound) != 2:
                raise ValueError("Each bound must be a tuple of two numbers.")

            low, high = bound
            if not (isinstance(low, Real) and isinstance(high, Real)):
                raise TypeError("Bounds must be real numbers.")

            if not low < high:
                raise ValueError("Lower bound must be strictly less than upper bound.")

    def __contains__(self, item: Any):
        """Returns ``True`` when `item` is an `Input` of the correct dimension and
        whose coordinates lie within the bounds defined by this domain."""
        return (
            isinstance(item, Input)
            and len(item) == self._dim
            and all(
                bound[0] <= item[i] <= bound[1] for i, bound in enumerate(self._bounds)
            )
        )

    @property
    def dim(self) -> int:
        """(Read-only) The dimension of this domain."""
        return self._dim

    @property
    def bounds(self) -> tuple[tuple[Real, Real], ...]:
        """(Read-only) The bounds defining this domain."""
        return self._bounds

    @property
    def derivative_scales(self) -> tuple[float, ...]:
        """(Read-only) The widths ``b_i - a_i`` of the domain. Multiplying a derivative
        with respect to physical coordinate ``i`` by the ``i``-th width gives the
        derivative with respect to the normalised coordinate."""
        return tuple(float(high - low) for low, high in self._bounds)

    def _check_dim(self, coordinates: Sequence[Real]) -> None:
        if not len(coordinates) == self.dim:
            raise DimensionMismatchError(
                f"Expected 'coordinates' to be a sequence of length {self.dim} but "
                f"received sequence of length {len(coordinates)}."
            )

    def scale(self, coordinates: Sequence[Real]) -> Input:
        """Scale coordinates from the unit hypercube into coordinates for this domain,
        via ``x_i -> a_i + x_i * (b_i - a_i)``.

        Raises
        ------
        DimensionMismatchError
            If the number of coordinates is not equal to the dimension of this domain.
        """

        self._check_dim(coordinates)
        return Input(
            *map(
                lambda x, bnds: bnds[0] + x * (bnds[1] - bnds[0]),
                coordinates,
                self._bounds,
            )
        )

    def unscale(self, coordinates: Sequence[Real]) -> Input:
        """Map coordinates of this domain back to the unit hypercube; the inverse of
        `scale`."""

        self._check_dim(coordinates)
        return Input(
            *map(
                lambda x, bnds: (x - bnds[0]) / (bnds[1] - bnds[0]),
                coordinates,
                self._bounds,
            )
        )


class AbstractSimulator(abc.ABC):
    """Represents an abstract simulator.

    Classes that inherit from this abstract base class define simulators, which
    typically represent programs for calculating the outputs of complex models
    for given inputs (for example the integration of a compartmental epidemic model
    up to a fixed time horizon).
    """

    @abc.abstractmethod
    def compute(self, x: Input) -> Real:
        """Compute the value of this simulator at an input given in physical units."""

        raise NotImplementedError


class AbstractAdjointSimulator(AbstractSimulator):
    """Represents a simulator that can also supply partial derivatives of its output,
    typically by integrating an adjoint (sensitivity) model alongside the primary
    state."""

    @abc.abstractmethod
    def compute_derivative(self, x: Input, dim: int) -> Real:
        """Compute the partial derivative of the simulator output at `x` with respect to
        the physical input coordinate `dim`."""

        raise NotImplementedError


class AbstractEmulator(abc.ABC):
    """Represents an abstract emulator for simulators."""

    @property
    @abc.abstractmethod
    def hyperparameters(self) -> Optional[BayesLinearHyperparameters]:
        """(Read-only) The prior hyperparameters used in the last fit, or ``None`` if the
        emulator has not been fitted."""
        raise NotImplementedError

    @abc.abstractmethod
    def predict(self, x: Input) -> Prediction:
        """Make a prediction of a simulator output for a given input."""

        raise NotImplementedError
