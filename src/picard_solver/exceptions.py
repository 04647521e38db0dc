"""Error taxonomy shared by the numerical core and the iteration engine."""

from __future__ import annotations

from typing import Any, Dict, Optional

from torch import Tensor


class SolverError(Exception):
    """Base class for every error raised by :mod:`picard_solver`."""


class ConfigurationError(SolverError, ValueError):
    """Invalid options detected before any iteration starts."""


class NumericalError(SolverError, ArithmeticError):
    """Singular dense systems or non-finite norms."""


class LinearSolverError(SolverError):
    """Failure reported by (or on behalf of) the external linear solver."""


class ConvergenceFailure(SolverError):
    """The iteration limit was reached without meeting the tolerance.

    The last iterate and the diagnostics dictionary are attached so callers
    can inspect how far the iteration got.
    """

    def __init__(
        self,
        message: str,
        *,
        iterate: Optional[Tensor] = None,
        info: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.iterate = iterate
        self.info = info or {}


__all__ = [
    "ConfigurationError",
    "ConvergenceFailure",
    "LinearSolverError",
    "NumericalError",
    "SolverError",
]
