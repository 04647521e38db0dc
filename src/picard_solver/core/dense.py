"""LU factorisation with partial pivoting for small dense systems.

The systems solved here are the normal equations of the Anderson mixing
step, so ``n`` is at most ``history_length - 2``. Plain Python loops over
rows keep the routines readable and work unchanged for real and complex
tensors.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import torch
from torch import Tensor

from ..exceptions import NumericalError
from ..utils.math_utils import is_finite


def _as_floating(x: Tensor) -> Tensor:
    if x.is_floating_point() or x.is_complex():
        return x
    return x.to(torch.get_default_dtype())


def _check_system(matrix: Tensor, rhs: Tensor | None = None) -> None:
    if matrix.dim() != 2 or matrix.size(0) != matrix.size(1):
        raise ValueError(f"expected a square matrix, got shape {tuple(matrix.shape)}")
    if rhs is not None and (rhs.dim() != 1 or rhs.size(0) != matrix.size(0)):
        raise ValueError(
            f"right-hand side of shape {tuple(rhs.shape)} does not match a "
            f"{matrix.size(0)}x{matrix.size(0)} system"
        )


def lu_decompose(
    matrix: Tensor,
    *,
    overwrite: bool = False,
    scale: Optional[float] = None,
) -> Tuple[Tensor, List[int]]:
    """Factorise ``P @ matrix = L @ U`` with row partial pivoting.

    Parameters
    ----------
    matrix:
        Square real or complex tensor.
    overwrite:
        Store the factors in ``matrix`` itself instead of a copy. Only
        honoured for floating point input.
    scale:
        Magnitude the pivots are measured against when it exceeds the
        largest entry of ``matrix``. Callers whose matrix is formed from
        products of nearly cancelling vectors pass the size of those
        products, so that rounding noise is not taken for a pivot.

    Returns
    -------
    tuple
        ``(lu, permutation)`` where ``lu`` holds the unit lower triangle of
        ``L`` below the diagonal and ``U`` on and above it, and
        ``permutation[i]`` is the input row stored in row ``i``.

    Raises
    ------
    NumericalError
        If a pivot is zero to working precision after pivoting.
    """

    _check_system(matrix)
    lu = _as_floating(matrix)
    if lu is matrix and not overwrite:
        lu = matrix.clone()
    n = lu.size(0)
    permutation = list(range(n))
    if n == 0:
        return lu, permutation

    magnitudes = lu.abs()
    reference = float(magnitudes.max())
    if scale is not None:
        reference = max(reference, abs(float(scale)))
    threshold = torch.finfo(magnitudes.dtype).eps * n * reference
    for k in range(n):
        column = lu[k:, k].abs()
        pivot_row = k + int(torch.argmax(column))
        if float(column[pivot_row - k]) <= threshold:
            raise NumericalError(f"singular matrix: zero pivot in column {k} of {n}")
        if pivot_row != k:
            lu[[k, pivot_row]] = lu[[pivot_row, k]]
            permutation[k], permutation[pivot_row] = permutation[pivot_row], permutation[k]
        lu[k + 1 :, k] /= lu[k, k]
        lu[k + 1 :, k + 1 :] -= torch.outer(lu[k + 1 :, k], lu[k, k + 1 :])
    return lu, permutation


def lu_back_substitute(
    lu: Tensor,
    permutation: List[int],
    rhs: Tensor,
    *,
    overwrite: bool = False,
) -> Tensor:
    """Solve ``L @ U @ x = P @ rhs`` given the output of :func:`lu_decompose`."""

    _check_system(lu, rhs)
    x = rhs.to(lu.dtype)
    if x is rhs and not overwrite:
        x = rhs.clone()
    n = lu.size(0)
    if n:
        x.copy_(x[torch.as_tensor(permutation, device=x.device)])
    for i in range(n):
        x[i] -= torch.dot(lu[i, :i], x[:i])
    for i in reversed(range(n)):
        x[i] = (x[i] - torch.dot(lu[i, i + 1 :], x[i + 1 :])) / lu[i, i]
    if not is_finite(x):
        raise NumericalError("dense solve produced non-finite values")
    return x


def solve_dense(
    matrix: Tensor,
    rhs: Tensor,
    *,
    overwrite: bool = False,
    scale: Optional[float] = None,
) -> Tensor:
    """Solve ``matrix @ x = rhs``; with ``overwrite`` both inputs are reused as scratch."""

    _check_system(matrix, rhs)
    lu, permutation = lu_decompose(matrix, overwrite=overwrite, scale=scale)
    return lu_back_substitute(lu, permutation, rhs, overwrite=overwrite)
