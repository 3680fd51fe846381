"""
Derivative-Informed Bayes Linear emulation (dibl)
=================================================

The `dibl` package provides Bayes linear emulators for expensive deterministic
simulators. An emulator is adjusted by a small number of simulator runs and,
optionally, by partial derivatives of the simulator output with respect to chosen
input coordinates (as produced by an adjoint model). For any input the emulator
returns an adjusted expectation and an adjusted variance of the simulator output,
without running the simulator again.

Key Features
============
- **Derivative augmentation**: Condition on function values and first partial
  derivatives in any subset of input dimensions, with an explicit block map relating
  each observation to its design point and derivative direction.
- **Analytic squared exponential covariance**: Closed-form first and second
  derivatives of the anisotropic squared exponential kernel.
- **Experimental design**: Maximin Latin hypercube designs on the unit square by
  randomised local search.
- **Grid prediction**: Factorise the data covariance matrix once and map predictions
  over many query points, optionally in parallel.

Subpackages
---------------------------------------------------------------------------------------
- [`core`][dibl.core]:
Kernels, covariance assembly, Bayes linear adjustment and experimental design.

- [`utilities`][dibl.utilities]:
Argument validation helpers.

"""
