"""
Bayes linear emulators adjusted by simulator outputs and partial derivatives.

For a query input ``x`` and an augmented observation vector ``D`` with prior
expectation ``E[D]`` and covariance matrix ``Var_D``, the adjusted moments of the
simulator output ``f(x)`` are

```
E_D[f(x)]   = E[f(x)] + Cov(f(x), D) Var_D^{-1} (D - E[D])
Var_D[f(x)] = Var[f(x)] - Cov(f(x), D) Var_D^{-1} Cov(D, f(x))
```

``Var_D`` is factorised once per fit and the factorisation is shared by every
prediction, so predicting over a grid only costs triangular solves per point.


[BayesLinearEmulator][dibl.core.emulators.BayesLinearEmulator]
---------------------------------------------------------------------------------------
[`fit`][dibl.core.emulators.BayesLinearEmulator.fit]
Adjust the emulator by design points and observations.

[`predict`][dibl.core.emulators.BayesLinearEmulator.predict]
Adjusted expectation and variance at a query input.

[`predict_grid`][dibl.core.emulators.BayesLinearEmulator.predict_grid]
Predictions at many query inputs, optionally in parallel.

[`standardised_error`][dibl.core.emulators.BayesLinearEmulator.standardised_error]
Standardised difference between an observed output and the prediction.


Functions
---------------------------------------------------------------------------------------
[`adjust`][dibl.core.emulators.adjust]
Adjusted expectation and variance at a single query input.

[`adjust_grid`][dibl.core.emulators.adjust_grid]
Adjusted expectation and variance at each of many query inputs.

"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from numbers import Real
from typing import Any, Optional, Union
from warnings import warn

import numpy as np
import scipy.linalg
import scipy.linalg.lapack
from numpy.typing import ArrayLike, NDArray

from dibl.core.assembly import (
    BlockMap,
    DerivativeDirectives,
    _cross_covariance_row,
    assemble,
    stack_training_data,
)
from dibl.core.errors import (
    DimensionMismatchError,
    IllConditionedWarning,
    NegativeVarianceError,
    SingularMatrixError,
)
from dibl.core.kernels import SquaredExponential
from dibl.core.modelling import (
    AbstractEmulator,
    BayesLinearHyperparameters,
    Input,
    Prediction,
    TrainingDatum,
    as_design_array,
)

CONDITION_WARNING_THRESHOLD = 1e10
"""Estimated 1-norm condition numbers of ``Var_D`` above this value trigger an
`IllConditionedWarning`."""

SINGULARITY_THRESHOLD = 1 / np.finfo(float).eps
"""Estimated 1-norm condition numbers of ``Var_D`` at or above this value are treated
as singular."""

VARIANCE_ROUNDOFF_TOLERANCE = 1e-8
"""Negative adjusted variances no smaller than ``-VARIANCE_ROUNDOFF_TOLERANCE * sigma^2``
are attributed to round-off and reported as zero."""


class BayesLinearEmulator(AbstractEmulator):
    """A Bayes linear emulator with a squared exponential covariance, adjusted by
    simulator outputs and, optionally, first partial derivatives of the outputs.

    The emulator is created unfitted; calling `fit` assembles and factorises the
    covariance matrix of the observations, after which `predict` can be called any
    number of times (including concurrently from several threads).

    Attributes
    ----------
    design : numpy.ndarray
        (Read-only) The design points of the last fit, as an array of shape
        ``(n, d)``, or an empty array if not fitted.
    observations : numpy.ndarray
        (Read-only) The augmented observation vector of the last fit.
    block_map : BlockMap or None
        (Read-only) The block map describing the observations.
    hyperparameters : BayesLinearHyperparameters or None
        (Read-only) The prior hyperparameters of the last fit.
    covariance : numpy.ndarray
        (Read-only) The covariance matrix ``Var_D`` of the observations.
    condition_number : float or None
        (Read-only) An estimate of the 1-norm condition number of ``Var_D``.

    The arrays returned by `design`, `observations` and `covariance` are not
    writeable.

    Examples
    --------
    >>> emulator = BayesLinearEmulator()
    >>> emulator.fit(
    ...     [Input(0.2, 0.2), Input(0.8, 0.5)],
    ...     [3.0, 5.0, 0.1, -0.4],
    ...     BayesLinearHyperparameters(0.25, sigma=2, prior_mean=4),
    ...     derivative_dims=[0],
    ... )
    >>> emulator.predict(Input(0.2, 0.2)).estimate  # doctest: +SKIP
    3.0
    """

    def __init__(self):
        self._design = np.array([])
        self._observations = np.array([])
        self._block_map = None
        self._hyperparameters = None
        self._kernel = None
        self._covariance = np.array([])
        self._condition = None
        self._cholesky = None
        self._weights = np.array([])

    @property
    def design(self) -> NDArray:
        """(Read-only) The design points of the last fit."""

        return self._design

    @property
    def observations(self) -> NDArray:
        """(Read-only) The augmented observation vector of the last fit."""

        return self._observations

    @property
    def block_map(self) -> Optional[BlockMap]:
        """(Read-only) The block map describing the observations, or ``None`` if the
        emulator has not been fitted."""

        return self._block_map

    @property
    def hyperparameters(self) -> Optional[BayesLinearHyperparameters]:
        """(Read-only) The prior hyperparameters of the last fit, or ``None`` if the
        emulator has not been fitted."""

        return self._hyperparameters

    @property
    def covariance(self) -> NDArray:
        """(Read-only) The covariance matrix of the observations, or an empty array if
        the emulator has not been fitted."""

        return self._covariance

    @property
    def condition_number(self) -> Optional[float]:
        """(Read-only) An estimate of the 1-norm condition number of the covariance
        matrix of the observations, or ``None`` if the emulator has not been fitted."""

        return self._condition

    def fit(
        self,
        design: Any,
        observations: ArrayLike,
        hyperparameters: BayesLinearHyperparameters,
        derivative_dims: Union[DerivativeDirectives, BlockMap] = None,
    ) -> None:
        """Adjust the emulator by observations at design points.

        Parameters
        ----------
        design :
            The design points, as a sequence of `Input` or an array of shape
            ``(n, d)``, in unit-hypercube coordinates.
        observations :
            The augmented observation vector: the ``n`` simulator outputs in design
            order, followed by the derivative blocks described by `derivative_dims`.
        hyperparameters :
            The prior hyperparameters.
        derivative_dims :
            (Default: None) The dimensions with derivative observations, or a block map
            built for this design. See ``dibl.core.assembly.BlockMap.from_directives``.

        Raises
        ------
        DimensionMismatchError
            If the design, observations, derivative dimensions or correlation lengths
            have inconsistent sizes.
        SingularMatrixError
            If the covariance matrix of the observations is singular or numerically
            not positive definite.
        """

        if not isinstance(hyperparameters, BayesLinearHyperparameters):
            raise TypeError(
                "Expected 'hyperparameters' to be of type "
                f"{BayesLinearHyperparameters.__name__}, but received "
                f"{type(hyperparameters)} instead."
            )

        points = as_design_array(design)
        covariance, block_map = assemble(points, derivative_dims, hyperparameters)
        observations = block_map.check_observations(observations)
        cholesky, condition = self._factorise(covariance)

        residuals = observations - block_map.prior_mean_vector(hyperparameters.prior_mean)
        weights = scipy.linalg.cho_solve(cholesky, residuals)
        if not np.all(np.isfinite(weights)):
            raise SingularMatrixError(
                "Solving with the covariance matrix of the observations produced "
                "non-finite values."
            )

        if len(points) < points.shape[1]:
            warn(
                f"Fewer design points ({len(points)}) than input dimensions "
                f"({points.shape[1]}). Adjusted moments will be poorly informed."
            )

        for array in (points, observations, covariance):
            array.setflags(write=False)

        self._design = points
        self._observations = observations
        self._block_map = block_map
        self._hyperparameters = hyperparameters
        self._kernel = SquaredExponential(hyperparameters)
        self._covariance = covariance
        self._condition = condition
        self._cholesky = cholesky
        self._weights = weights

        return None

    @classmethod
    def from_training_data(
        cls,
        training_data: Sequence[TrainingDatum],
        hyperparameters: BayesLinearHyperparameters,
        derivative_dims: DerivativeDirectives = None,
    ) -> BayesLinearEmulator:
        """Create an emulator fitted to simulator runs.

        The derivatives used are those named by `derivative_dims`, which every datum
        must carry (when `derivative_dims` is a mapping, only the listed design points
        must carry them).
        """

        design, observations, block_map = stack_training_data(
            training_data, derivative_dims
        )
        emulator = cls()
        emulator.fit(design, observations, hyperparameters, block_map)
        return emulator

    @staticmethod
    def _factorise(covariance: NDArray) -> tuple[tuple[NDArray, bool], float]:
        """Cholesky factorise the covariance matrix of the observations and estimate
        its 1-norm condition number from the factor, raising a SingularMatrixError if
        it is singular or not numerically positive definite."""

        try:
            cholesky = scipy.linalg.cho_factor(covariance, lower=True)
        except np.linalg.LinAlgError as e:
            raise SingularMatrixError(
                "Covariance matrix of the observations is not numerically positive "
                f"definite: {e}. Check for duplicated design points or reduce the "
                "correlation lengths."
            ) from e

        (pocon,) = scipy.linalg.lapack.get_lapack_funcs(("pocon",), (cholesky[0],))
        rcond, _ = pocon(cholesky[0], np.linalg.norm(covariance, 1), uplo="L")
        condition = math.inf if rcond == 0 else 1 / rcond
        if not math.isfinite(condition) or condition >= SINGULARITY_THRESHOLD:
            raise SingularMatrixError(
                f"Covariance matrix of the observations is singular (condition number "
                f"{condition:.3g}). Check for duplicated design points or reduce the "
                "correlation lengths."
            )

        if condition > CONDITION_WARNING_THRESHOLD:
            warn(
                f"Covariance matrix of the observations is badly conditioned (condition "
                f"number {condition:.3g}); adjusted moments may be inaccurate.",
                IllConditionedWarning,
            )

        return cholesky, float(condition)

    def predict(self, x: Union[Input, ArrayLike]) -> Prediction:
        """Compute the adjusted expectation and variance of the simulator output at an
        input.

        Parameters
        ----------
        x :
            A query input in unit-hypercube coordinates.

        Returns
        -------
        Prediction
            The adjusted expectation (``estimate``) and variance.

        Raises
        ------
        RuntimeError
            If the emulator has not been fitted.
        DimensionMismatchError
            If `x` does not have the dimension of the design points.
        SingularMatrixError
            If the adjusted moments are not finite.
        NegativeVarianceError
            If the adjusted variance is negative beyond round-off.
        """

        if self._cholesky is None:
            raise RuntimeError(
                "Cannot make prediction because emulator has not been fitted to any data."
            )

        x = self._parse_input(x)
        cov_row = _cross_covariance_row(x, self._design, self._block_map, self._kernel)

        estimate = self._hyperparameters.prior_mean + float(cov_row @ self._weights)
        whitened = scipy.linalg.solve_triangular(
            self._cholesky[0], cov_row, lower=True
        )
        process_var = self._hyperparameters.process_var
        variance = process_var - float(whitened @ whitened)

        if not (math.isfinite(estimate) and math.isfinite(variance)):
            raise SingularMatrixError(
                f"Adjusted moments at {x.tolist()} are not finite."
            )

        if variance < 0:
            if variance < -VARIANCE_ROUNDOFF_TOLERANCE * process_var:
                raise NegativeVarianceError(
                    f"Adjusted variance at {x.tolist()} is negative ({variance}), which "
                    "indicates an inconsistent or badly conditioned covariance matrix."
                )
            variance = 0.0

        return Prediction(estimate, variance)

    def _parse_input(self, x: Any) -> NDArray:
        try:
            x = np.asarray(x, dtype=float)
        except (TypeError, ValueError):
            raise TypeError(
                f"Expected 'x' to be an Input or sequence of real numbers, but received "
                f"{type(x)}."
            ) from None

        expected_dim = self._design.shape[1]
        if x.ndim != 1 or len(x) != expected_dim:
            raise DimensionMismatchError(
                f"Expected 'x' to be an input with {expected_dim} coordinates, but "
                f"received one of shape {x.shape}."
            )

        if not np.all(np.isfinite(x)):
            raise ValueError("Query inputs cannot contain NaN or non-finite coordinates.")

        return x

    def predict_grid(
        self, points: Iterable[Union[Input, ArrayLike]], max_workers: Optional[int] = None
    ) -> list[Prediction]:
        """Make predictions at each of a collection of query inputs.

        Every prediction reuses the factorisation computed in `fit`. Predictions are
        independent, so they may be computed on a pool of threads.

        Parameters
        ----------
        points :
            The query inputs.
        max_workers :
            (Default: None) The number of worker threads. If ``None`` the predictions are
            computed sequentially in the calling thread.

        Returns
        -------
        list[Prediction]
            The predictions, in the order of `points`.

        Raises
        ------
        Exception
            Whatever `predict` raises for the first failing point, re-raised with the
            index and coordinates of that point at the start of the message.
        """

        items = list(enumerate(points))
        if max_workers is None:
            return [self._predict_indexed(item) for item in items]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self._predict_indexed, items))

    def _predict_indexed(self, item: tuple[int, Any]) -> Prediction:
        i, x = item
        try:
            return self.predict(x)
        except (ArithmeticError, TypeError, ValueError) as e:
            e.args = (f"Prediction failed at query point {i} {x}: {e}",) + e.args[1:]
            raise

    def standardised_error(self, x: Union[Input, ArrayLike], observed_output: Real) -> float:
        """The difference between an observed output and the adjusted expectation at
        `x`, divided by the adjusted standard deviation.

        If the adjusted variance is zero the result is ``0`` when the observed output
        equals the adjusted expectation and signed infinity otherwise.
        """

        if not isinstance(observed_output, Real) or not math.isfinite(observed_output):
            raise ValueError(
                f"'observed_output' must be a finite real number, but received {observed_output}."
            )

        prediction = self.predict(x)
        error = observed_output - prediction.estimate
        if prediction.standard_deviation == 0:
            return 0.0 if error == 0 else math.copysign(math.inf, error)

        return float(error / prediction.standard_deviation)


def adjust(
    x: Union[Input, ArrayLike],
    design: Any,
    observations: ArrayLike,
    derivative_dims: Union[DerivativeDirectives, BlockMap],
    hyperparameters: BayesLinearHyperparameters,
) -> tuple[float, float]:
    """The Bayes linear adjusted expectation and variance of the simulator output at
    `x`.

    Parameters
    ----------
    x :
        The query input.
    design :
        The design points, as a sequence of `Input` or an array of shape ``(n, d)``.
    observations :
        The augmented observation vector aligned with `derivative_dims`.
    derivative_dims :
        The dimensions with derivative observations (empty or ``None`` for none), or a
        block map built for the design.
    hyperparameters :
        The prior hyperparameters.

    Returns
    -------
    tuple[float, float]
        The adjusted expectation and adjusted variance.
    """

    emulator = BayesLinearEmulator()
    emulator.fit(design, observations, hyperparameters, derivative_dims)
    prediction = emulator.predict(x)
    return prediction.estimate, prediction.variance


def adjust_grid(
    grid_points: Iterable[Union[Input, ArrayLike]],
    design: Any,
    observations: ArrayLike,
    derivative_dims: Union[DerivativeDirectives, BlockMap],
    hyperparameters: BayesLinearHyperparameters,
    max_workers: Optional[int] = None,
) -> list[tuple[float, float]]:
    """The adjusted expectation and variance at each of a collection of query inputs.

    The covariance matrix of the observations is factorised once and shared by all
    query inputs. See `adjust` for the other parameters; `max_workers` is passed to
    `BayesLinearEmulator.predict_grid`.
    """

    emulator = BayesLinearEmulator()
    emulator.fit(design, observations, hyperparameters, derivative_dims)
    return [
        (prediction.estimate, prediction.variance)
        for prediction in emulator.predict_grid(grid_points, max_workers=max_workers)
    ]
