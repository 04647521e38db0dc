"""Anderson mixing of the iterates stored in a :class:`HistoryBuffer`.

With ``K`` stored iterates ``h_0 .. h_{K-1}`` (oldest first) the successive
differences ``r_i = h_{i+1} - h_i`` act as residuals. The weights ``c``
minimise ``|| sum_i c_i r_i ||`` subject to ``sum_i c_i = 1``; eliminating
the last weight turns this into an ``(K-2) x (K-2)`` normal-equations
system which is solved with :func:`solve_dense`.
"""

from __future__ import annotations

import logging
from typing import Optional

import torch
from torch import Tensor

from ..exceptions import ConfigurationError, NumericalError
from .dense import solve_dense
from .history import HistoryBuffer

logger = logging.getLogger(__name__)


def anderson_coefficients(history: HistoryBuffer) -> Tensor:
    """Return the ``K - 1`` mixing weights for a full history buffer.

    The weights always sum to one. For ``K == 2`` there is a single
    residual and the weight is ``1``.

    Raises
    ------
    NumericalError
        If the residual differences are linearly dependent and the normal
        equations are singular.
    """

    if not history.is_full:
        raise ValueError("Anderson coefficients need a full history buffer")
    stacked = history.stacked()
    if history.capacity == 2:
        return torch.ones(1, dtype=stacked.dtype, device=stacked.device)

    n = history.capacity - 2
    residuals = stacked[1:] - stacked[:-1]
    reference = residuals[n]
    shifted = reference.unsqueeze(0) - residuals[:n]
    # Plain transpose: the products are not conjugated for complex fields.
    matrix = shifted @ shifted.transpose(0, 1)
    rhs = shifted @ reference
    # M holds differences of residuals; pivots are judged against ||r_n||^2.
    scale = float(torch.linalg.vector_norm(reference)) ** 2
    try:
        solved = solve_dense(matrix, rhs, overwrite=True, scale=scale)
    except NumericalError:
        logger.warning("Anderson normal equations are singular (history length %d)", history.capacity)
        raise

    coefficients = torch.empty(n + 1, dtype=solved.dtype, device=solved.device)
    coefficients[:n] = solved
    coefficients[n] = 1.0 - solved.sum()
    return coefficients


def mix_history(
    history: HistoryBuffer,
    coefficients: Tensor,
    beta: float = 1.0,
    *,
    out: Optional[Tensor] = None,
) -> Tensor:
    """Combine the stored iterates with damped Anderson weights.

    ``x = sum_{j=1}^{K-1} c_{j-1} * (h_j - (1 - beta) * (h_j - h_{j-1}))``

    ``beta = 1`` gives the undamped Anderson iterate; smaller values pull
    each term back towards the preceding, un-accelerated iterate. The
    history buffer is left untouched.
    """

    if not 0.0 < beta <= 1.0:
        raise ConfigurationError("anderson beta must lie in (0, 1]")
    if coefficients.shape != (history.capacity - 1,) or not history.is_full:
        raise ValueError("coefficients must match a full history buffer")
    stacked = history.stacked()
    damped = beta * stacked[1:] + (1.0 - beta) * stacked[:-1]
    mixed = coefficients.to(damped.dtype) @ damped
    if out is None:
        return mixed
    out.copy_(mixed)
    return out


__all__ = ["anderson_coefficients", "mix_history"]
