"""Fixed-point (Picard) iteration with Anderson acceleration.

The package is split into:
- ``core``: dense LU solves, the rotating history buffer, Anderson mixing
  weights and convergence bookkeeping,
- ``solvers``: the iteration engine, its configuration, hooks and the
  interfaces to the external assembler and linear solver,
- ``utils``: norm helpers and convergence plots.
"""

from .core.convergence import ConvergenceState, ToleranceKind
from .exceptions import (
    ConfigurationError,
    ConvergenceFailure,
    LinearSolverError,
    NumericalError,
    SolverError,
)
from .solvers import DenseLinearization, PicardConfig, PicardSolver, SolverHooks, SolverState

__all__ = [
    "ConfigurationError",
    "ConvergenceFailure",
    "ConvergenceState",
    "DenseLinearization",
    "LinearSolverError",
    "NumericalError",
    "PicardConfig",
    "PicardSolver",
    "SolverError",
    "SolverHooks",
    "SolverState",
    "ToleranceKind",
    "core",
    "solvers",
    "utils",
]
