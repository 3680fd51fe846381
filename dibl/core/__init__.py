"""
dibl.core
=========

-------------------------------------------------------------------------------------------
The dibl core package contains everything required to build derivative-informed
Bayes linear emulators of deterministic simulators, and to create the space-filling
designs on which such emulators are run.

-------------------------------------------------------------------------------------------
Modules
=========

[`assembly`][dibl.core.assembly]:
    Block maps relating observations to design points, and assembly of the data
    covariance matrix and cross-covariance rows.

[`designers`][dibl.core.designers]:
    Maximin Latin hypercube designs on the unit square.

[`emulators`][dibl.core.emulators]:
    The Bayes linear emulator and the `adjust` / `adjust_grid` entry points.

[`errors`][dibl.core.errors]:
    Exceptions and warnings raised during emulation.

[`kernels`][dibl.core.kernels]:
    The squared exponential covariance function and its analytic derivatives.

[`modelling`][dibl.core.modelling]:
    Inputs, training data, hyperparameters, predictions, simulator domains and the
    abstract simulator interfaces.

[`numerics`][dibl.core.numerics]:
    Numerical tolerance checks and distance computations.

[`simulators`][dibl.core.simulators]:
    Evaluation of simulators and adjoints over a design.


References
-------------------------------------------------------------------------------------------

Goldstein, M. and Wooff, D. (2007) "Bayes Linear Statistics: Theory and Methods".
Wiley. DOI: <https://doi.org/10.1002/9780470065662>

"""
