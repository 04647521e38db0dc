"""Utility helpers for the Picard solver."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import-time hinting only
    from .math_utils import is_finite, l2_norm
    from .visualization import plot_convergence_history

__all__ = [
    "is_finite",
    "l2_norm",
    "plot_convergence_history",
]


def __getattr__(name: str):  # pragma: no cover - small wrapper
    if name == "plot_convergence_history":
        return getattr(import_module("picard_solver.utils.visualization"), name)
    if name in {"is_finite", "l2_norm"}:
        return getattr(import_module("picard_solver.utils.math_utils"), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
