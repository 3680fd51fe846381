"""Exceptions and warnings raised while building and adjusting emulators.

Each kind of failure has its own class so that callers can tell, for example, a
badly-shaped design apart from a covariance matrix that cannot be inverted. All
exceptions derive from `EmulationError`.
"""


class EmulationError(Exception):
    """Base class for errors arising from the construction or adjustment of an
    emulator."""


class DimensionMismatchError(EmulationError, ValueError):
    """Raised when inputs, design points, correlation length scales or observation
    blocks have inconsistent dimensions or lengths."""


class InvalidHyperparameterError(EmulationError, ValueError):
    """Raised when a correlation length scale or prior standard deviation is not a
    positive finite number, or the prior mean is not finite."""


class SingularMatrixError(EmulationError, ArithmeticError):
    """Raised when the covariance matrix of the data cannot be factorised, or solving
    with it produces non-finite values.

    Typical causes are duplicated (or nearly duplicated) design points, or correlation
    length scales that are too large for the spacing of the design. The matrix is
    never regularised to work around this.
    """


class NegativeVarianceError(EmulationError, ArithmeticError):
    """Raised when an adjusted variance is negative beyond round-off, which indicates
    an inconsistent or badly conditioned covariance structure."""


class IllConditionedWarning(UserWarning):
    """Issued when the covariance matrix of the data can be factorised but is badly
    conditioned, so that adjusted moments may be inaccurate."""
