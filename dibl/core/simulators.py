"""
Collection of simulator outputs and partial derivatives over a design.

Designs are made in the unit hypercube, while simulators take inputs in physical units.
`run_design` scales each design point into the simulator's domain, runs the simulator
(and, where derivatives are requested, its adjoint) and records the results as
`TrainingDatum` objects in unit-hypercube coordinates. Partial derivatives returned by
an adjoint in physical units are converted to derivatives with respect to the
normalised coordinates by the chain rule, i.e. multiplied by the width of the domain
in the relevant coordinate.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from numbers import Real
from typing import Any, Optional

from dibl.core.assembly import BlockMap, DerivativeDirectives
from dibl.core.errors import DimensionMismatchError
from dibl.core.modelling import (
    AbstractAdjointSimulator,
    AbstractSimulator,
    Input,
    SimulatorDomain,
    TrainingDatum,
    as_design_array,
)


def run_design(
    simulator: AbstractSimulator,
    domain: SimulatorDomain,
    design: Sequence[Input],
    derivative_dims: DerivativeDirectives = None,
    max_workers: Optional[int] = None,
) -> tuple[TrainingDatum, ...]:
    """Run a simulator at each point of a design.

    Parameters
    ----------
    simulator : AbstractSimulator
        The simulator. This must be an `AbstractAdjointSimulator` if any derivatives
        are requested.
    domain : SimulatorDomain
        The physical domain of the simulator.
    design : Sequence[Input]
        The design points, in unit-hypercube coordinates.
    derivative_dims : DerivativeDirectives, optional
        (Default: None) The input dimensions in which to compute partial derivatives,
        as for ``dibl.core.assembly.BlockMap.from_directives``.
    max_workers : int, optional
        (Default: None) The number of worker threads to run the design points on. If
        ``None`` the design points are run sequentially in the calling thread.

    Returns
    -------
    tuple[TrainingDatum, ...]
        One datum per design point, in design order, with inputs and derivatives in
        unit-hypercube coordinates.

    Raises
    ------
    TypeError
        If derivatives are requested from a simulator without an adjoint.
    DimensionMismatchError
        If the design points do not have the dimension of the domain.
    """

    if not isinstance(simulator, AbstractSimulator):
        raise TypeError(
            "Expected 'simulator' to be of type AbstractSimulator, but received "
            f"{type(simulator)} instead."
        )

    if not isinstance(domain, SimulatorDomain):
        raise TypeError(
            "Expected 'domain' to be of type SimulatorDomain, but received "
            f"{type(domain)} instead."
        )

    design = tuple(design)
    points = as_design_array(design)
    if len(design) == 0:
        return tuple()

    if points.shape[1] != domain.dim:
        raise DimensionMismatchError(
            f"Expected design points of dimension {domain.dim} to match the domain, but "
            f"received points of dimension {points.shape[1]}."
        )

    block_map = BlockMap.from_directives(len(design), derivative_dims, input_dim=domain.dim)
    if block_map.derivative_dims and not isinstance(simulator, AbstractAdjointSimulator):
        raise TypeError(
            "Derivatives were requested but 'simulator' is not an "
            f"AbstractAdjointSimulator, received {type(simulator)} instead."
        )

    derivatives_at = [[] for _ in design]
    for label in block_map:
        if label.dim is not None:
            derivatives_at[label.point].append(label.dim)

    runs = [
        (i, Input.from_array(point), dims)
        for i, (point, dims) in enumerate(zip(points, derivatives_at))
    ]
    runner = _DesignRunner(simulator, domain)
    if max_workers is None:
        return tuple(runner.run(run) for run in runs)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return tuple(executor.map(runner.run, runs))


class _DesignRunner(object):
    """Runs a simulator at a single design point, converting between unit-hypercube
    and physical coordinates."""

    def __init__(self, simulator: AbstractSimulator, domain: SimulatorDomain):
        self._simulator = simulator
        self._domain = domain
        self._widths = domain.derivative_scales

    def run(self, run: tuple[int, Input, Sequence[int]]) -> TrainingDatum:
        i, x, dims = run
        physical_x = self._domain.scale(x)
        try:
            output = self._simulator.compute(physical_x)
            derivatives = {
                dim: self._rescale(self._simulator.compute_derivative(physical_x, dim), dim)
                for dim in dims
            }
            return TrainingDatum(x, output, derivatives)
        except (ArithmeticError, TypeError, ValueError) as e:
            message = f"Simulator run failed at design point {i} {physical_x}: {e}"
            e.args = (message,) + e.args[1:]
            raise

    def _rescale(self, derivative: Any, dim: int) -> Real:
        if not isinstance(derivative, Real):
            raise TypeError(
                f"Expected derivative in dimension {dim} to be a real number, but "
                f"received {type(derivative)}."
            )

        return derivative * self._widths[dim]
