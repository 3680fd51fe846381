import argparse
import csv
import pathlib
import sys
from collections.abc import Sequence
from importlib.metadata import PackageNotFoundError, version
from typing import Optional, TextIO

from dibl.core.designers import (
    MAXIMIN_ITERATIONS,
    MaximinLatinHypercubeDesigner,
    unit_grid,
)
from dibl.core.emulators import BayesLinearEmulator
from dibl.core.errors import EmulationError
from dibl.core.modelling import BayesLinearHyperparameters, Input, TrainingDatum

DEFAULT_GRID_POINTS = 21
"""The number of grid points per dimension to predict at when no query points are given."""


def get_version() -> str:
    """Retrieve the version of dibl currently installed."""

    try:
        return version("dibl")
    except PackageNotFoundError:
        return "Package not found."


def _parse_derivative_col(value: str) -> tuple[int, int]:
    """Parse a ``DIM=COL`` argument into a pair of integers."""

    try:
        dim, col = value.split("=")
        return int(dim), int(col)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected DIM=COL with integer DIM and COL, but received '{value}'"
        ) from None


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dibl",
        description="Create maximin designs and make predictions with derivative-informed "
        "Bayes linear emulators.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"dibl {get_version()}",
        help="show the current installed version of dibl and exit",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    design = subparsers.add_parser(
        "design", help="write a maximin Latin hypercube design in the unit hypercube as csv"
    )
    design.add_argument("size", type=int, help="the number of design points")
    design.add_argument("--dim", type=int, default=2, help="the input dimension (default: %(default)s)")
    design.add_argument("--seed", type=int, default=None, help="a random seed")
    design.add_argument(
        "--iterations",
        type=int,
        default=MAXIMIN_ITERATIONS,
        help="the number of local-search iterations (default: %(default)s)",
    )

    emulate = subparsers.add_parser(
        "emulate",
        help="fit an emulator to simulator runs in a csv file and write the adjusted "
        "expectation and variance at query points as csv",
    )
    emulate.add_argument("data", type=pathlib.Path, help="csv file of simulator runs")
    emulate.add_argument(
        "--theta",
        type=float,
        nargs="+",
        required=True,
        help="correlation length(s), one for all dimensions or one per dimension",
    )
    emulate.add_argument("--sigma", type=float, required=True, help="prior standard deviation")
    emulate.add_argument("--mean", type=float, default=0.0, help="prior expectation (default: %(default)s)")
    emulate.add_argument(
        "--output-col",
        type=int,
        default=-1,
        help="column of the simulator outputs (default: %(default)s)",
    )
    emulate.add_argument(
        "--derivative-col",
        type=_parse_derivative_col,
        action="append",
        default=[],
        metavar="DIM=COL",
        help="column COL holds partial derivatives in input dimension DIM; may be repeated",
    )
    emulate.add_argument("--header", action="store_true", help="skip a header row in DATA")
    points = emulate.add_mutually_exclusive_group()
    points.add_argument(
        "--grid",
        type=int,
        default=None,
        metavar="N",
        help="predict on a grid of N points per dimension over the unit hypercube "
        f"(default: {DEFAULT_GRID_POINTS})",
    )
    points.add_argument(
        "--points", type=pathlib.Path, default=None, help="csv file of query points"
    )
    emulate.add_argument(
        "--workers",
        type=int,
        default=None,
        help="number of threads to predict with (default: predict sequentially)",
    )

    return parser


def design_command(args: argparse.Namespace, out: TextIO) -> None:
    designer = MaximinLatinHypercubeDesigner(dim=args.dim, iterations=args.iterations)
    writer = csv.writer(out)
    for x in designer.make_design(args.size, seed=args.seed):
        writer.writerow(list(x))


def emulate_command(args: argparse.Namespace, out: TextIO) -> None:
    derivative_cols = dict(args.derivative_col)
    training_data = TrainingDatum.read_from_csv(
        args.data,
        output_col=args.output_col,
        derivative_cols=derivative_cols,
        header=args.header,
    )
    if not training_data:
        raise ValueError(f"No simulator runs found in {args.data}.")

    theta = args.theta[0] if len(args.theta) == 1 else args.theta
    hyperparameters = BayesLinearHyperparameters(theta, sigma=args.sigma, prior_mean=args.mean)
    emulator = BayesLinearEmulator.from_training_data(
        training_data, hyperparameters, derivative_dims=sorted(derivative_cols)
    )

    if args.points is not None:
        query_points = read_points(args.points)
    else:
        grid_size = args.grid if args.grid is not None else DEFAULT_GRID_POINTS
        query_points = unit_grid(grid_size, dim=len(training_data[0].input))

    predictions = emulator.predict_grid(query_points, max_workers=args.workers)
    writer = csv.writer(out)
    for x, prediction in zip(query_points, predictions):
        writer.writerow([*x, prediction.estimate, prediction.variance])


def read_points(path: pathlib.Path) -> list[Input]:
    """Read query points from a csv file with one point per (non-empty) row."""

    with open(path, mode="r", newline="") as csvfile:
        return [Input(*map(float, row)) for row in csv.reader(csvfile) if row]


def main(argv: Optional[Sequence[str]] = None):
    """The entry point into the dibl command line application."""

    parser = make_parser()
    args = parser.parse_args(argv)
    commands = {"design": design_command, "emulate": emulate_command}
    try:
        commands[args.command](args, sys.stdout)
    except (EmulationError, ArithmeticError, AssertionError, OSError, TypeError, ValueError) as e:
        print(f"dibl {args.command}: error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(print())  # Use of print ensures next shell prompt starts on new line


if __name__ == "__main__":
    main()
