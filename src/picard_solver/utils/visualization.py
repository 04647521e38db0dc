"""Plotting utilities for convergence diagnostics."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np

from ..core.convergence import ConvergenceTracker

_SERIES = (
    ("solution_change_norms", "solution change"),
    ("residual_norms", "residual"),
    ("solution_norms", "solution"),
)


def _series_from(source: Union[ConvergenceTracker, Mapping[str, Any]]) -> dict[str, Sequence[float]]:
    if isinstance(source, ConvergenceTracker):
        return {key: getattr(source, key) for key, _ in _SERIES}
    return {key: source.get(key, []) for key, _ in _SERIES}


def plot_convergence_history(
    source: Union[ConvergenceTracker, Mapping[str, Any]],
    ax: Optional[plt.Axes] = None,
):
    """Plot the norm series of a solve on a logarithmic axis.

    ``source`` is either the ``info`` dictionary returned by
    :meth:`PicardSolver.solve` or a :class:`ConvergenceTracker`.
    """

    if ax is None:
        _, ax = plt.subplots()
    series = _series_from(source)
    for key, label in _SERIES:
        values = np.asarray(series[key], dtype=float)
        if values.size == 0:
            continue
        iterations = np.arange(1, values.size + 1)
        ax.semilogy(iterations, np.maximum(values, np.finfo(float).tiny), marker="o", label=label)
    ax.set_xlabel("Iteration")
    ax.set_ylabel("L2 norm")
    ax.set_title("Picard convergence")
    ax.legend()
    return ax
