import itertools
import math
import unittest

import numpy as np

import dibl.core.numerics as numerics
from dibl.core.numerics import (
    FLOAT_TOLERANCE,
    equal_within_tolerance,
    is_symmetric,
    min_pairwise_distance,
    pairwise_distances,
    set_tolerance,
)
from tests.utilities.utilities import exact, make_window


class TestEqualWithinTolerance(unittest.TestCase):
    def setUp(self) -> None:
        self.non_finite_values = [-math.inf, math.nan, math.inf]

    def assertAgreeOnRange(self, func1, func2, _range):
        for x in _range:
            self.assertIs(func1(x), func2(x))

    def test_equal_to_math_isclose_relative_tolerances(self):
        """Test that whether two reals are equal up to a relative tolerance agrees with
        the calculation given by math.isclose."""

        for x, rel_tol in itertools.product([-1, 1], [1e-1, 1e-2, 1e-3]):
            with self.subTest(x=x, rel_tol=rel_tol):
                # abs_tol=0 forces the use of the relative tolerance
                self.assertAgreeOnRange(
                    lambda y: equal_within_tolerance(x, y, rel_tol=rel_tol, abs_tol=0),
                    lambda y: math.isclose(x, y, rel_tol=rel_tol, abs_tol=0),
                    _range=make_window(x, 2 * rel_tol, type="rel"),
                )

    def test_equal_to_math_isclose_absolute_tolerances(self):
        """Test that whether two reals are equal up to an absolute tolerance agrees with
        the calculation given by math.isclose."""

        for x, abs_tol in itertools.product([-0.1, 0, 0.1], [0.1, 0.05, 0.01]):
            with self.subTest(x=x, abs_tol=abs_tol):
                self.assertAgreeOnRange(
                    lambda y: equal_within_tolerance(x, y, rel_tol=0, abs_tol=abs_tol),
                    lambda y: math.isclose(x, y, rel_tol=0, abs_tol=abs_tol),
                    _range=make_window(x, 2 * abs_tol),
                )

    def test_default_tolerances(self):
        """Test that the default tolerance used for both relative and absolute tolerances
        is equal to the package's float tolerance constant."""

        for x in [-1, 1]:
            with self.subTest(x=x):
                self.assertAgreeOnRange(
                    lambda y: equal_within_tolerance(x, y),
                    lambda y: math.isclose(
                        x, y, rel_tol=FLOAT_TOLERANCE, abs_tol=FLOAT_TOLERANCE
                    ),
                    _range=make_window(x, 2 * FLOAT_TOLERANCE, type="rel"),
                )

    def test_zero_tolerances_require_exact_equality(self):
        """Test that tolerances of zero are used as given rather than replaced by the
        default tolerance."""

        self.assertFalse(equal_within_tolerance(1, 1 + 1e-12, rel_tol=0, abs_tol=0))
        self.assertTrue(equal_within_tolerance(1, 1, rel_tol=0, abs_tol=0))

    def test_non_finite_values(self):
        """Test that infinite and NaN values are considered not equal to any finite
        number, no matter the tolerances used."""

        tolerances = [0, 1, 1e-9]
        for x, rel_tol, abs_tol in itertools.product(
            self.non_finite_values, tolerances, tolerances
        ):
            with self.subTest(x=x):
                self.assertFalse(
                    equal_within_tolerance(x, 1.1, rel_tol=rel_tol, abs_tol=abs_tol)
                )

    def test_negative_tolerances_error(self):
        """Test that a ValueError is raised if one of the tolerances supplied is
        negative."""

        with self.assertRaises(ValueError):
            equal_within_tolerance(1, 1, rel_tol=-0.01)

        with self.assertRaises(ValueError):
            equal_within_tolerance(1, 1, abs_tol=-0.01)

    def test_sequences_and_arrays(self):
        """Sequences and Numpy arrays are considered equal if they have the same length
        and each corresponding element is equal within the specified tolerance."""

        for x in ([0, 10], np.array([0, 10])):
            with self.subTest(x=x):
                self.assertTrue(equal_within_tolerance(x, [0, 10 + 1e-11]))
                self.assertFalse(equal_within_tolerance(x, [0, 10.1]))
                self.assertFalse(equal_within_tolerance(x, [0, 10, 0]))

    def test_nested_sequences_can_be_compared(self):
        """Sequences of sequences (or arrays of arrays etc) can be compared."""

        x = [[1, 2], [3, 4]]
        self.assertTrue(equal_within_tolerance(x, np.array([[1, 2], [3, 4]])))
        self.assertFalse(equal_within_tolerance(x, (1, 2, 3, 4)))

    def test_type_error_for_non_numbers(self):
        """Test that a TypeError is raised if the arguments are not reals or sequences
        of reals."""

        with self.assertRaises(TypeError):
            equal_within_tolerance("a", 1)


class TestSetTolerance(unittest.TestCase):
    def tearDown(self) -> None:
        numerics.FLOAT_TOLERANCE = FLOAT_TOLERANCE

    def test_set_tolerance_tol_type_error(self):
        """Test that a TypeError is raised if a float is not passed."""

        tol = [1, 2]
        with self.assertRaisesRegex(
            TypeError,
            exact(f"Expected 'tol' to be of type float, but received {type(tol)} instead."),
        ):
            set_tolerance(tol)

    def test_set_tolerance_tol_negative_error(self):
        """Test that a ValueError is raised if a negative float is passed."""

        tol = -1.5
        with self.assertRaisesRegex(
            ValueError, exact(f"Expected 'tol' to be non-negative but received {tol}.")
        ):
            set_tolerance(tol)

    def test_set_tolerance_check(self):
        """Test that changing the global tolerance changes the default tolerance of
        equality checks."""

        x = [1, 2]
        y = [1, 2 + 1e-6]
        self.assertFalse(equal_within_tolerance(x, y))

        set_tolerance(1e-5)
        self.assertTrue(equal_within_tolerance(x, y))


class TestIsSymmetric(unittest.TestCase):
    def test_symmetric_matrices(self):
        """Test that symmetric matrices are recognised, exactly and up to a tolerance."""

        matrix = np.array([[1.0, 2.0], [2.0, 3.0]])
        self.assertTrue(is_symmetric(matrix, tol=0))

        matrix[0, 1] += 1e-12
        self.assertFalse(is_symmetric(matrix, tol=0))
        self.assertTrue(is_symmetric(matrix))

    def test_non_square_is_not_symmetric(self):
        """Test that non-square arrays are never symmetric."""

        self.assertFalse(is_symmetric(np.ones((2, 3))))
        self.assertFalse(is_symmetric(np.ones(3)))


class TestPairwiseDistances(unittest.TestCase):
    def test_distance_matrix(self):
        """Test that the distance matrix holds the Euclidean distances between points."""

        points = [[0, 0], [3, 4], [0, 1]]
        expected = np.array([[0, 5, 1], [5, 0, np.sqrt(18)], [1, np.sqrt(18), 0]])
        self.assertTrue(np.allclose(pairwise_distances(points), expected))

    def test_diagonal_replaced(self):
        """Test that a supplied value replaces the zero self-distances."""

        distances = pairwise_distances([[0, 0], [1, 0]], diagonal=np.inf)
        self.assertTrue(np.all(np.isinf(np.diag(distances))))
        self.assertEqual(1, distances[0, 1])

    def test_min_pairwise_distance(self):
        """Test that the smallest distance between distinct points is returned."""

        self.assertEqual(1, min_pairwise_distance([[0, 0], [3, 4], [0, 1]]))
        self.assertEqual(0, min_pairwise_distance([[0.5, 0.5], [0.5, 0.5]]))

    def test_min_pairwise_distance_too_few_points(self):
        """Test that a ValueError is raised if fewer than two points are supplied."""

        with self.assertRaisesRegex(
            ValueError,
            exact(
                "Expected at least 2 points to compute a pairwise distance, but received 1."
            ),
        ):
            min_pairwise_distance([[0.5, 0.5]])


if __name__ == "__main__":
    unittest.main()
