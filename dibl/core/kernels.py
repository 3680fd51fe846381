"""
The squared exponential covariance function and its analytic derivatives.

For inputs ``x`` and ``x'`` of dimension ``d``, correlation lengths ``theta`` and prior
standard deviation ``sigma``, the covariance between simulator outputs is

```
Cov(x, x') = sigma^2 * exp(-sum_k (x_k - x'_k)^2 / theta_k^2).
```

Writing ``r_k = x_k - x'_k`` and ``C = Cov(x, x')``, the covariances involving partial
derivatives of the simulator output are

```
d/dx_k  C            = -2 r_k / theta_k^2 * C
d/dx'_l C            =  2 r_l / theta_l^2 * C
d^2/dx_k dx'_l C     = (2 delta_kl / theta_k^2 - 4 r_k r_l / (theta_k^2 theta_l^2)) * C
```

where ``delta_kl`` is 1 if ``k == l`` and 0 otherwise. All forms are computed in
closed form.


[SquaredExponential][dibl.core.kernels.SquaredExponential]
---------------------------------------------------------------------------------------
[`covariance`][dibl.core.kernels.SquaredExponential.covariance]
Covariance between outputs at two inputs.

[`derivative`][dibl.core.kernels.SquaredExponential.derivative]
Covariance between a partial derivative at one input and the output at another.

[`second_derivative`][dibl.core.kernels.SquaredExponential.second_derivative]
Covariance between partial derivatives at two inputs.

[`evaluate`][dibl.core.kernels.SquaredExponential.evaluate]
Covariance selected by a pair of derivative labels.

[`matrix`][dibl.core.kernels.SquaredExponential.matrix]
Vectorised covariances between two collections of inputs.

"""

from __future__ import annotations

from collections.abc import Sequence
from numbers import Real
from typing import Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from dibl.core.errors import DimensionMismatchError
from dibl.core.modelling import BayesLinearHyperparameters, Input
from dibl.utilities.validation import check_int

Point = Union[Input, Sequence[Real], np.ndarray]


class SquaredExponential(object):
    """The anisotropic squared exponential covariance function, with covariances for
    first partial derivatives of the process.

    Derivative labels are either ``None``, standing for the value of the process, or
    the (0-based) index of the input coordinate a partial derivative is taken with
    respect to. The first label always refers to the first argument of the kernel and
    the second label to the second argument.

    Parameters
    ----------
    hyperparameters : BayesLinearHyperparameters
        Supplies the correlation lengths ``theta`` and standard deviation ``sigma``.

    Attributes
    ----------
    hyperparameters : BayesLinearHyperparameters
        (Read-only) The hyperparameters defining this kernel.

    Examples
    --------
    >>> kernel = SquaredExponential(BayesLinearHyperparameters(0.5, sigma=2))
    >>> kernel.covariance(Input(0, 0), Input(0, 0))
    4.0
    >>> kernel.second_derivative(Input(0, 0), Input(0, 0), 0, 0)
    32.0
    """

    def __init__(self, hyperparameters: BayesLinearHyperparameters):
        if not isinstance(hyperparameters, BayesLinearHyperparameters):
            raise TypeError(
                "Expected 'hyperparameters' to be of type "
                f"{BayesLinearHyperparameters.__name__}, but received "
                f"{type(hyperparameters)} instead."
            )

        self._hyperparameters = hyperparameters

    @property
    def hyperparameters(self) -> BayesLinearHyperparameters:
        """(Read-only) The hyperparameters defining this kernel."""

        return self._hyperparameters

    def covariance(self, x: Point, xdash: Point) -> float:
        """The covariance between the process values at `x` and `xdash`."""

        return self.evaluate(x, xdash)

    def derivative(self, x: Point, xdash: Point, dim: int, argument: int = 0) -> float:
        """The derivative of the covariance with respect to coordinate `dim` of one of
        its arguments.

        With ``argument=0`` this is the covariance between the partial derivative at `x`
        and the value at `xdash`; with ``argument=1`` it is the covariance between the
        value at `x` and the partial derivative at `xdash`, which is the negation of the
        former.
        """

        if argument == 0:
            return self.evaluate(x, xdash, dim1=dim)
        elif argument == 1:
            return self.evaluate(x, xdash, dim2=dim)
        else:
            raise ValueError(f"Expected 'argument' to be 0 or 1, but received {argument}.")

    def second_derivative(self, x: Point, xdash: Point, dim1: int, dim2: int) -> float:
        """The covariance between the partial derivative in coordinate `dim1` at `x`
        and the partial derivative in coordinate `dim2` at `xdash`."""

        return self.evaluate(x, xdash, dim1=dim1, dim2=dim2)

    def evaluate(
        self,
        x: Point,
        xdash: Point,
        dim1: Optional[int] = None,
        dim2: Optional[int] = None,
    ) -> float:
        """The covariance between two observations of the process, selected by their
        derivative labels.

        Parameters
        ----------
        x, xdash :
            The inputs at which the observations are made.
        dim1, dim2 :
            (Default: None) The derivative labels of the observations at `x` and `xdash`
            respectively: ``None`` for a process value, otherwise the index of the
            coordinate of a partial derivative.

        Returns
        -------
        float
            The covariance.

        Raises
        ------
        DimensionMismatchError
            If `x` and `xdash` have different numbers of coordinates, or the
            correlation lengths don't match that number.
        ValueError
            If a derivative label is not a coordinate index of the inputs.
        """

        x, xdash = np.asarray(x, dtype=float), np.asarray(xdash, dtype=float)
        if x.ndim != 1 or xdash.ndim != 1:
            raise DimensionMismatchError(
                "Expected 'x' and 'xdash' to be single points with 1-dimensional "
                "coordinate arrays."
            )

        if len(x) != len(xdash):
            raise DimensionMismatchError(
                f"Cannot compute a covariance between an input of dimension {len(x)} "
                f"and an input of dimension {len(xdash)}."
            )

        return float(self.matrix(x[np.newaxis, :], xdash[np.newaxis, :], dim1, dim2)[0, 0])

    def matrix(
        self,
        points1: ArrayLike,
        points2: ArrayLike,
        dim1: Optional[int] = None,
        dim2: Optional[int] = None,
    ) -> NDArray:
        """Covariances between observations at two collections of inputs.

        Every observation at `points1` carries the derivative label `dim1` and every
        observation at `points2` carries the label `dim2`.

        Parameters
        ----------
        points1, points2 :
            Arrays of shape ``(n1, d)`` and ``(n2, d)``.
        dim1, dim2 :
            (Default: None) The derivative labels, as in `evaluate`.

        Returns
        -------
        numpy.ndarray
            The ``(n1, n2)`` array whose ``[i, j]`` entry is the covariance between the
            observation at ``points1[i]`` and the observation at ``points2[j]``.
        """

        points1 = np.atleast_2d(np.asarray(points1, dtype=float))
        points2 = np.atleast_2d(np.asarray(points2, dtype=float))
        if points1.shape[1] != points2.shape[1]:
            raise DimensionMismatchError(
                f"Cannot compute covariances between inputs of dimension {points1.shape[1]} "
                f"and inputs of dimension {points2.shape[1]}."
            )

        dim = points1.shape[1]
        for label in (dim1, dim2):
            self._validate_label(label, dim)

        theta_sq = self._hyperparameters.length_scales(dim) ** 2
        diffs = points1[:, np.newaxis, :] - points2[np.newaxis, :, :]
        cov = self._hyperparameters.process_var * np.exp(
            -np.sum(diffs**2 / theta_sq, axis=-1)
        )

        if dim1 is None and dim2 is None:
            return cov

        # r_k / theta_k^2 for each pair of points
        scaled = diffs / theta_sq
        if dim2 is None:
            return -2 * scaled[..., dim1] * cov
        elif dim1 is None:
            return 2 * scaled[..., dim2] * cov

        same_dim = 2 / theta_sq[dim1] if dim1 == dim2 else 0.0
        return (same_dim - 4 * scaled[..., dim1] * scaled[..., dim2]) * cov

    @staticmethod
    def _validate_label(label: Optional[int], dim: int) -> None:
        if label is None:
            return None

        check_int(
            label,
            TypeError(f"Expected derivative label to be None or an int, but received {label!r}."),
        )
        if not 0 <= label < dim:
            raise ValueError(
                f"Derivative label {label} is not a coordinate index for inputs of "
                f"dimension {dim}."
            )
