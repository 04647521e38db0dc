"""Numerical building blocks of the Picard iteration."""

from .anderson import anderson_coefficients, mix_history
from .convergence import ConvergenceState, ConvergenceTracker, ToleranceKind
from .dense import lu_back_substitute, lu_decompose, solve_dense
from .history import HistoryBuffer

__all__ = [
    "ConvergenceState",
    "ConvergenceTracker",
    "HistoryBuffer",
    "ToleranceKind",
    "anderson_coefficients",
    "lu_back_substitute",
    "lu_decompose",
    "mix_history",
    "solve_dense",
]
