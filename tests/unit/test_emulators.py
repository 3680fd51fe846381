import json
import math
import unittest
import unittest.mock

import numpy as np
import scipy.linalg

from dibl.core.designers import generate_design, unit_grid
from dibl.core.emulators import BayesLinearEmulator, adjust, adjust_grid
from dibl.core.errors import (
    DimensionMismatchError,
    IllConditionedWarning,
    NegativeVarianceError,
    SingularMatrixError,
)
from dibl.core.modelling import (
    BayesLinearHyperparameters,
    Input,
    Prediction,
    SimulatorDomain,
)
from dibl.core.simulators import run_design
from tests.unit.fakes import SineProductSimulator
from tests.utilities.utilities import DiblTestCase, exact


class TestBayesLinearEmulator(DiblTestCase):
    def setUp(self) -> None:
        self.design = generate_design(10, seed=3)
        self.observations = np.sin(3 * np.array([x[0] + x[1] for x in self.design]))
        self.hyperparameters = BayesLinearHyperparameters(0.4, sigma=1.5, prior_mean=0.2)
        self.emulator = BayesLinearEmulator()
        self.emulator.fit(self.design, self.observations, self.hyperparameters)

    def test_predict_before_fit_error(self):
        """Test that a RuntimeError is raised if a prediction is requested before the
        emulator has been fitted."""

        with self.assertRaisesRegex(
            RuntimeError,
            exact("Cannot make prediction because emulator has not been fitted to any data."),
        ):
            BayesLinearEmulator().predict(Input(0.5, 0.5))

    def test_unfitted_properties(self):
        """Test that an unfitted emulator has no hyperparameters, block map or data."""

        emulator = BayesLinearEmulator()
        self.assertIsNone(emulator.hyperparameters)
        self.assertIsNone(emulator.block_map)
        self.assertEqual(0, emulator.observations.size)
        self.assertIsNone(emulator.condition_number)

    def test_fit_hyperparameters_type_error(self):
        """Test that a TypeError is raised if the hyperparameters are of the wrong
        type."""

        with self.assertRaisesRegex(
            TypeError,
            exact(
                "Expected 'hyperparameters' to be of type BayesLinearHyperparameters, but "
                f"received {tuple} instead."
            ),
        ):
            BayesLinearEmulator().fit(self.design, self.observations, (0.4, 1.5))

    def test_fitted_properties(self):
        """Test that the design, observations, hyperparameters and covariance of the
        last fit are recorded."""

        self.assertEqual((10, 2), self.emulator.design.shape)
        self.assertTrue(np.array_equal(self.observations, self.emulator.observations))
        self.assertEqual(self.hyperparameters, self.emulator.hyperparameters)
        self.assertEqual(10, self.emulator.block_map.size)
        self.assertEqual((10, 10), self.emulator.covariance.shape)

    def test_wrong_number_of_observations_error(self):
        """Test that a DimensionMismatchError is raised if the observations don't match
        the design and derivative dimensions."""

        with self.assertRaises(DimensionMismatchError):
            BayesLinearEmulator().fit(
                self.design, self.observations, self.hyperparameters, derivative_dims=[0]
            )

    def test_wrong_number_of_length_scales_error(self):
        """Test that a DimensionMismatchError is raised if the correlation lengths don't
        match the input dimension."""

        with self.assertRaises(DimensionMismatchError):
            BayesLinearEmulator().fit(
                self.design,
                self.observations,
                BayesLinearHyperparameters([0.4, 0.4, 0.4], sigma=1),
            )

    def test_interpolates_design_points(self):
        """Test that at a design point the adjusted expectation is the observed output
        and the adjusted variance is zero."""

        for x, observed in zip(self.design, self.observations):
            with self.subTest(x=x):
                prediction = self.emulator.predict(x)
                self.assertEqualWithinTolerance(observed, prediction.estimate, abs_tol=1e-8)
                self.assertEqualWithinTolerance(0, prediction.variance, abs_tol=1e-8)

    def test_interpolates_design_points_with_derivatives(self):
        """Test that interpolation of outputs still holds when derivatives are also
        observed."""

        observations = np.concatenate(
            [self.observations, np.linspace(-1, 1, 10), np.linspace(2, 0, 10)]
        )
        emulator = BayesLinearEmulator()
        emulator.fit(self.design, observations, self.hyperparameters, derivative_dims=[0, 1])
        for x, observed in zip(self.design, self.observations):
            with self.subTest(x=x):
                prediction = emulator.predict(x)
                self.assertEqualWithinTolerance(observed, prediction.estimate, abs_tol=1e-6)
                self.assertEqualWithinTolerance(0, prediction.variance, abs_tol=1e-6)

    def test_adjustment_formulae(self):
        """Test that the prediction equals the Bayes linear adjusted expectation and
        variance computed with an explicit inverse."""

        x = Input(0.33, 0.71)
        var_d = self.emulator.covariance
        cov_row = np.array(
            [
                1.5**2 * math.exp(-((x[0] - p[0]) ** 2 + (x[1] - p[1]) ** 2) / 0.4**2)
                for p in self.design
            ]
        )
        inverse = np.linalg.inv(var_d)
        expected_estimate = 0.2 + cov_row @ inverse @ (self.observations - 0.2)
        expected_variance = 1.5**2 - cov_row @ inverse @ cov_row

        prediction = self.emulator.predict(x)
        self.assertEqualWithinTolerance(expected_estimate, prediction.estimate, rel_tol=1e-7)
        self.assertEqualWithinTolerance(expected_variance, prediction.variance, rel_tol=1e-7)

    def test_far_from_design_reverts_to_prior(self):
        """Test that far from the design the prediction reverts to the prior
        expectation and variance."""

        prediction = self.emulator.predict(Input(10.0, 10.0))
        self.assertEqual(Prediction(0.2, 1.5**2), prediction)

    def test_accepts_arrays_and_sequences(self):
        """Test that query points may be Inputs, sequences or arrays."""

        x = Input(0.25, 0.5)
        expected = self.emulator.predict(x)
        self.assertEqual(expected, self.emulator.predict([0.25, 0.5]))
        self.assertEqual(expected, self.emulator.predict(np.array([0.25, 0.5])))

    def test_query_point_errors(self):
        """Test that query points of the wrong dimension or with non-finite coordinates
        are rejected."""

        with self.assertRaisesRegex(
            DimensionMismatchError,
            exact(
                "Expected 'x' to be an input with 2 coordinates, but received one of shape "
                "(3,)."
            ),
        ):
            self.emulator.predict(Input(0.1, 0.2, 0.3))

        with self.assertRaisesRegex(
            ValueError, exact("Query inputs cannot contain NaN or non-finite coordinates.")
        ):
            self.emulator.predict([0.1, math.nan])

    def test_duplicate_design_points_singular_error(self):
        """Test that a SingularMatrixError is raised, and no nugget added, if the design
        contains duplicated points."""

        with self.assertRaises(SingularMatrixError):
            BayesLinearEmulator().fit(
                [Input(0.5, 0.5), Input(0.5, 0.5)],
                [1.0, 1.0],
                BayesLinearHyperparameters(0.25, sigma=1),
            )

    def test_singular_error_is_arithmetic_error(self):
        """Test that singular matrix errors can be caught as ArithmeticErrors."""

        self.assertTrue(issubclass(SingularMatrixError, ArithmeticError))

    def test_ill_conditioned_warning(self):
        """Test that a warning is issued if the covariance matrix is badly conditioned
        but can still be factorised."""

        with self.assertWarns(IllConditionedWarning):
            BayesLinearEmulator().fit(
                [Input(0.5, 0.5), Input(0.5, 0.5 + 1e-6)],
                [1.0, 1.0],
                BayesLinearHyperparameters(1.0, sigma=1),
            )

    def test_fewer_points_than_dimensions_warning(self):
        """Test that a warning is issued if there are fewer design points than input
        dimensions."""

        with self.assertWarnsRegex(
            UserWarning,
            exact(
                "Fewer design points (1) than input dimensions (2). Adjusted moments will "
                "be poorly informed."
            ),
        ):
            BayesLinearEmulator().fit([Input(0.5, 0.5)], [1.0], self.hyperparameters)

    def test_round_off_negative_variance_reported_as_zero(self):
        """Test that a negative variance within round-off of zero is reported as
        zero."""

        whitened = np.zeros(10)
        whitened[0] = 1.5 * (1 + 5e-11)
        with unittest.mock.patch.object(
            scipy.linalg, "solve_triangular", return_value=whitened
        ):
            prediction = self.emulator.predict(Input(0.5, 0.5))

        self.assertEqual(0, prediction.variance)

    def test_negative_variance_error(self):
        """Test that a NegativeVarianceError is raised if the adjusted variance is
        negative beyond round-off."""

        whitened = np.full(10, 1.5)
        with unittest.mock.patch.object(
            scipy.linalg, "solve_triangular", return_value=whitened
        ):
            with self.assertRaisesRegex(
                NegativeVarianceError, r"^Adjusted variance at \[0\.5, 0\.5\] is negative"
            ):
                self.emulator.predict(Input(0.5, 0.5))

    def test_predict_grid_order(self):
        """Test that grid predictions are made in the order of the query points."""

        grid = unit_grid(5)
        predictions = self.emulator.predict_grid(grid)
        self.assertEqual([self.emulator.predict(x) for x in grid], predictions)

    def test_predict_grid_parallel_equals_serial(self):
        """Test that predicting on a thread pool gives the same results as predicting
        sequentially."""

        grid = unit_grid(9)
        self.assertEqual(
            self.emulator.predict_grid(grid),
            self.emulator.predict_grid(grid, max_workers=4),
        )

    def test_predict_grid_error_names_query_point(self):
        """Test that a failure on the grid is re-raised with the index and coordinates
        of the failing query point."""

        grid = [Input(0.1, 0.2), Input(0.1, 0.2, 0.3)]
        for max_workers in [None, 2]:
            with self.subTest(max_workers=max_workers):
                with self.assertRaisesRegex(
                    DimensionMismatchError,
                    exact(
                        "Prediction failed at query point 1 (0.1, 0.2, 0.3): Expected 'x' "
                        "to be an input with 2 coordinates, but received one of shape (3,)."
                    ),
                ):
                    self.emulator.predict_grid(grid, max_workers=max_workers)

    def test_fitted_arrays_not_writeable(self):
        """Test that the design, observations and covariance of a fitted emulator
        cannot be modified, so predictions stay consistent with the factorisation."""

        x = self.design[0]
        expected = self.emulator.predict(x)
        for name, array in [
            ("design", self.emulator.design),
            ("observations", self.emulator.observations),
            ("covariance", self.emulator.covariance),
        ]:
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    array[0] = 0.9

        self.assertEqual(expected, self.emulator.predict(x))

    def test_fit_copies_design_and_observations(self):
        """Test that modifying the arrays passed to `fit` does not change the
        emulator."""

        design = np.array([x.to_array() for x in self.design])
        observations = self.observations.copy()
        emulator = BayesLinearEmulator()
        emulator.fit(design, observations, self.hyperparameters)
        x = self.design[0]
        expected = emulator.predict(x)

        design[0] = [0.9, 0.9]
        observations[0] = 100.0

        self.assertTrue(np.array_equal(self.observations, emulator.observations))
        self.assertEqual(expected, emulator.predict(x))

    def test_condition_number(self):
        """Test that the condition number estimated from the Cholesky factor is close
        to, and no larger than, the exact 1-norm condition number."""

        exact_condition = np.linalg.cond(self.emulator.covariance, 1)
        self.assertLessEqual(self.emulator.condition_number, exact_condition * (1 + 1e-8))
        self.assertGreaterEqual(self.emulator.condition_number, exact_condition / 10)

    def test_predict_grid_keeps_original_exception(self):
        """Test that an exception whose constructor takes several arguments is re-raised
        unchanged in type and attributes, with the query point named in its message."""

        error = json.JSONDecodeError("bad", "doc", 0)
        with unittest.mock.patch.object(self.emulator, "predict", side_effect=error):
            for max_workers in [None, 2]:
                with self.subTest(max_workers=max_workers):
                    with self.assertRaisesRegex(
                        json.JSONDecodeError,
                        r"^Prediction failed at query point 0 \(0\.5, 0\.5\): ",
                    ) as cm:
                        self.emulator.predict_grid([Input(0.5, 0.5)], max_workers=max_workers)

                    self.assertEqual("doc", cm.exception.doc)
                    self.assertEqual(0, cm.exception.pos)

    def test_standardised_error(self):
        """Test that the standardised error is the difference between the observed
        output and the adjusted expectation, in units of standard deviation."""

        x = Input(0.5, 0.45)
        prediction = self.emulator.predict(x)
        expected = (2.0 - prediction.estimate) / prediction.standard_deviation
        self.assertEqualWithinTolerance(expected, self.emulator.standardised_error(x, 2.0))

    def test_standardised_error_zero_variance(self):
        """Test that with zero variance the standardised error is zero for an exact
        match and signed infinity otherwise."""

        x = Input(0.5, 0.5)
        with unittest.mock.patch.object(
            self.emulator, "predict", return_value=Prediction(1.0, 0)
        ):
            self.assertEqual(0, self.emulator.standardised_error(x, 1.0))
            self.assertEqual(math.inf, self.emulator.standardised_error(x, 2.0))
            self.assertEqual(-math.inf, self.emulator.standardised_error(x, 0.0))

    def test_standardised_error_observed_output_error(self):
        """Test that a ValueError is raised if the observed output is not a finite real
        number."""

        with self.assertRaisesRegex(
            ValueError,
            exact("'observed_output' must be a finite real number, but received inf."),
        ):
            self.emulator.standardised_error(Input(0.5, 0.5), math.inf)


class TestConcreteScenario(DiblTestCase):
    """Sixteen design points from a seeded maximin design, with theta = 0.25,
    sigma = 250, prior mean 350 and outputs in [0, 1000]."""

    def setUp(self) -> None:
        self.design = generate_design(16, seed=15)
        self.observations = np.random.default_rng(15).uniform(0, 1000, size=16)
        self.hyperparameters = BayesLinearHyperparameters(0.25, sigma=250, prior_mean=350)

    def test_adjust_at_design_points(self):
        """Test that adjusting at each design point returns its own output with
        approximately zero variance."""

        for x, observed in zip(self.design, self.observations):
            with self.subTest(x=x):
                estimate, variance = adjust(
                    x, self.design, self.observations, [], self.hyperparameters
                )
                self.assertEqualWithinTolerance(observed, estimate, rel_tol=1e-8, abs_tol=1e-6)
                self.assertLessEqual(variance, 1e-8 * 250**2)
                self.assertGreaterEqual(variance, 0)

    def test_adjust_at_centroid(self):
        """Test that the adjusted expectation at the centroid of the design is finite
        and within three prior standard deviations of the prior mean."""

        centroid = np.mean([x.to_array() for x in self.design], axis=0)
        estimate, variance = adjust(
            centroid, self.design, self.observations, None, self.hyperparameters
        )
        self.assertTrue(math.isfinite(estimate))
        self.assertTrue(350 - 3 * 250 <= estimate <= 350 + 3 * 250)
        self.assertTrue(0 <= variance <= 250**2)

    def test_adjust_grid_matches_adjust(self):
        """Test that adjusting over a grid agrees with adjusting point by point."""

        grid = unit_grid(4)
        results = adjust_grid(
            grid, self.design, self.observations, [], self.hyperparameters, max_workers=2
        )
        self.assertEqual(len(grid), len(results))
        for x, (estimate, variance) in zip(grid, results):
            with self.subTest(x=x):
                expected = adjust(x, self.design, self.observations, [], self.hyperparameters)
                self.assertEqualWithinTolerance(expected[0], estimate)
                self.assertEqualWithinTolerance(expected[1], variance, abs_tol=1e-6)


class TestDerivativeAugmentation(DiblTestCase):
    def setUp(self) -> None:
        self.domain = SimulatorDomain([(0, 1), (0, 1)])
        self.simulator = SineProductSimulator()
        self.design = generate_design(10, seed=7)
        self.training_data = run_design(
            self.simulator, self.domain, self.design, derivative_dims=[0, 1]
        )
        self.hyperparameters = BayesLinearHyperparameters(0.5, sigma=1)
        self.grid = unit_grid(7)

    def test_derivatives_never_increase_variance(self):
        """Test that adding derivative blocks never increases the adjusted variance at
        any query point."""

        no_derivatives = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters
        )
        baseline = no_derivatives.predict_grid(self.grid)
        for derivative_dims in [[0], [1], [0, 1]]:
            emulator = BayesLinearEmulator.from_training_data(
                self.training_data, self.hyperparameters, derivative_dims
            )
            for x, base, prediction in zip(self.grid, baseline, emulator.predict_grid(self.grid)):
                with self.subTest(derivative_dims=derivative_dims, x=x):
                    self.assertLessEqual(prediction.variance, base.variance + 1e-10)

    def test_derivatives_change_expectation(self):
        """Test that derivative information changes the adjusted expectation away from
        the design points."""

        without = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters
        )
        with_derivatives = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters, [0, 1]
        )
        x = Input(0.37, 0.52)
        self.assertNotEqual(without.predict(x).estimate, with_derivatives.predict(x).estimate)

    def test_derivatives_improve_accuracy(self):
        """Test that derivative information reduces the mean squared error of the
        adjusted expectation against the simulator over a grid."""

        def mean_squared_error(emulator):
            errors = [
                emulator.predict(x).estimate - self.simulator.compute(x) for x in self.grid
            ]
            return np.mean(np.square(errors))

        without = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters
        )
        with_derivatives = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters, [0, 1]
        )
        self.assertLess(mean_squared_error(with_derivatives), mean_squared_error(without))

    def test_from_training_data_matches_fit(self):
        """Test that creating an emulator from training data is the same as fitting it
        to the stacked observations."""

        emulator = BayesLinearEmulator.from_training_data(
            self.training_data, self.hyperparameters, [1]
        )
        observations = [datum.output for datum in self.training_data] + [
            datum.derivatives[1] for datum in self.training_data
        ]
        fitted = BayesLinearEmulator()
        fitted.fit(self.design, observations, self.hyperparameters, derivative_dims=[1])
        for x in self.grid:
            with self.subTest(x=x):
                self.assertEqual(fitted.predict(x), emulator.predict(x))


if __name__ == "__main__":
    unittest.main()
