"""Interfaces to the external assembler and linear solver.

The engine never builds matrices itself. It hands the current iterate to a
:class:`ResidualAssembler` and asks a :class:`LinearSystemSolver` for the
next iterate. :class:`DenseLinearization` implements both for small dense
Picard problems ``A(u) u = b(u)`` and doubles as a reference collaborator.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, runtime_checkable

import torch
from torch import Tensor

from ..exceptions import LinearSolverError
from ..utils.math_utils import is_finite


@runtime_checkable
class ResidualAssembler(Protocol):
    """Builds the linearised system at a given iterate."""

    dimension: int

    def assemble(self, iterate: Tensor, *, rebuild_jacobian: bool) -> None:
        """Assemble the right-hand side, and the matrix when ``rebuild_jacobian``."""


@runtime_checkable
class LinearSystemSolver(Protocol):
    """Solves the most recently assembled system."""

    def solve(self, initial_guess: Tensor) -> Any:
        """Return the solution vector; iterative solvers may start from ``initial_guess``."""

    def residual_norm(self) -> float:
        """Norm of the residual belonging to the last assembly."""


class DenseLinearization:
    """Dense Picard linearisation backed by :func:`torch.linalg.lu_factor_ex`.

    Parameters
    ----------
    matrix_fn:
        Maps an iterate ``u`` to the ``(dimension, dimension)`` matrix
        ``A(u)``.
    rhs_fn:
        Maps an iterate ``u`` to the right-hand side ``b(u)``. A constant
        tensor is accepted as well.
    dimension:
        Number of unknowns.
    dtype:
        Scalar type of the unknowns, used by the engine when no starting
        guess is supplied.
    """

    def __init__(
        self,
        matrix_fn: Callable[[Tensor], Any],
        rhs_fn: Callable[[Tensor], Any] | Tensor,
        *,
        dimension: int,
        dtype: Optional[torch.dtype] = None,
    ) -> None:
        self.matrix_fn = matrix_fn
        self.rhs_fn = rhs_fn
        self.dimension = dimension
        self.dtype = dtype or torch.get_default_dtype()
        self.num_assemblies = 0
        self.num_factorizations = 0
        self._matrix: Optional[Tensor] = None
        self._factors: Optional[Tensor] = None
        self._pivots: Optional[Tensor] = None
        self._rhs: Optional[Tensor] = None
        self._residual_norm = float("nan")

    def _evaluate_rhs(self, iterate: Tensor) -> Tensor:
        rhs = self.rhs_fn(iterate) if callable(self.rhs_fn) else self.rhs_fn
        return torch.as_tensor(rhs, dtype=iterate.dtype, device=iterate.device)

    def assemble(self, iterate: Tensor, *, rebuild_jacobian: bool = True) -> None:
        if rebuild_jacobian or self._factors is None:
            matrix = torch.as_tensor(self.matrix_fn(iterate), dtype=iterate.dtype, device=iterate.device)
            if matrix.shape != (self.dimension, self.dimension):
                raise LinearSolverError(
                    f"matrix of shape {tuple(matrix.shape)} does not match dimension {self.dimension}"
                )
            factors, pivots, info = torch.linalg.lu_factor_ex(matrix)
            if int(info) != 0:
                raise LinearSolverError(f"matrix is singular (LU info {int(info)})")
            self._matrix, self._factors, self._pivots = matrix, factors, pivots
            self.num_factorizations += 1
        self._rhs = self._evaluate_rhs(iterate)
        self._residual_norm = float(torch.linalg.vector_norm(self._matrix @ iterate - self._rhs))
        self.num_assemblies += 1

    def solve(self, initial_guess: Tensor) -> Tensor:
        if self._factors is None or self._rhs is None:
            raise LinearSolverError("solve() called before assemble()")
        solution = torch.linalg.lu_solve(self._factors, self._pivots, self._rhs.unsqueeze(-1))
        solution = solution.squeeze(-1)
        if not is_finite(solution):
            raise LinearSolverError("linear solve produced non-finite values")
        return solution

    def residual_norm(self) -> float:
        return self._residual_norm


__all__ = ["DenseLinearization", "LinearSystemSolver", "ResidualAssembler"]
