"""Iteration engine and its collaborator interfaces."""

from .hooks import SolverHooks, SolverState, progress_hooks
from .linear_system import DenseLinearization, LinearSystemSolver, ResidualAssembler
from .picard import PicardConfig, PicardSolver

__all__ = [
    "DenseLinearization",
    "LinearSystemSolver",
    "PicardConfig",
    "PicardSolver",
    "ResidualAssembler",
    "SolverHooks",
    "SolverState",
    "progress_hooks",
]
