"""Norm bookkeeping and stopping predicates for fixed-point iterations."""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, List, Optional

from torch import Tensor

from ..exceptions import ConfigurationError, NumericalError
from ..utils.math_utils import l2_norm


class ConvergenceState(str, Enum):
    """Outcome of evaluating the stopping predicate after an iteration."""

    NOT_CONVERGED = "not_converged"
    CONVERGED = "converged"
    ABOVE_MAX_ITERATIONS = "above_max_iterations"
    ERROR = "error"


class ToleranceKind(str, Enum):
    """Quantity compared against the tolerance."""

    SOLUTION_CHANGE_ABSOLUTE = "solution_change_absolute"
    SOLUTION_CHANGE_RELATIVE = "solution_change_relative"
    RESIDUAL_NORM_ABSOLUTE = "residual_norm_absolute"
    RESIDUAL_NORM_RELATIVE_TO_INITIAL = "residual_norm_relative_to_initial"

    @classmethod
    def parse(cls, value: "ToleranceKind | str") -> "ToleranceKind":
        try:
            return cls(value)
        except ValueError as exc:
            choices = ", ".join(kind.value for kind in cls)
            raise ConfigurationError(
                f"unknown tolerance kind {value!r}; expected one of {choices}"
            ) from exc


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0.0:
        return 0.0 if numerator == 0.0 else math.inf
    return numerator / denominator


class ConvergenceTracker:
    """Record solution, solution-change and residual norms per iteration.

    The three series grow by exactly one entry per completed iteration and
    are cleared by :meth:`reset` at the start of every solve.
    """

    def __init__(
        self,
        tolerance: float,
        kind: ToleranceKind | str = ToleranceKind.SOLUTION_CHANGE_RELATIVE,
        max_iterations: int = 50,
        min_iterations: int = 1,
    ) -> None:
        if not tolerance > 0 or not math.isfinite(tolerance):
            raise ConfigurationError("tolerance must be positive and finite")
        if max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")
        if not 1 <= min_iterations <= max_iterations:
            raise ConfigurationError("min_iterations must lie in [1, max_iterations]")
        self.tolerance = tolerance
        self.kind = ToleranceKind.parse(kind)
        self.max_iterations = max_iterations
        self.min_iterations = min_iterations
        self.initial_solution_norm: Optional[float] = None
        self.solution_norms: List[float] = []
        self.solution_change_norms: List[float] = []
        self.residual_norms: List[float] = []

    def reset(self, initial_solution_norm: Optional[float] = None) -> None:
        if initial_solution_norm is not None and not math.isfinite(initial_solution_norm):
            raise NumericalError("initial solution norm is not finite")
        self.initial_solution_norm = initial_solution_norm
        self.solution_norms = []
        self.solution_change_norms = []
        self.residual_norms = []

    def record(self, solution_norm: float, change_norm: float, residual_norm: float) -> None:
        """Append one entry to each series."""

        values = {
            "solution norm": float(solution_norm),
            "solution change norm": float(change_norm),
            "residual norm": float(residual_norm),
        }
        for name, value in values.items():
            if not math.isfinite(value):
                raise NumericalError(f"{name} is not finite ({value})")
        self.solution_norms.append(values["solution norm"])
        self.solution_change_norms.append(values["solution change norm"])
        self.residual_norms.append(values["residual norm"])

    def update(self, previous: Tensor, new: Tensor, residual_norm: float) -> None:
        """Record the norms of ``new`` and of its change from ``previous``."""

        self.record(l2_norm(new), l2_norm(previous - new), residual_norm)

    def relative_change(self) -> float:
        """Most recent solution change divided by the most recent solution norm."""

        return _ratio(self.solution_change_norms[-1], self.solution_norms[-1])

    def _predicate_value(self) -> float:
        if self.kind is ToleranceKind.SOLUTION_CHANGE_ABSOLUTE:
            return self.solution_change_norms[-1]
        if self.kind is ToleranceKind.SOLUTION_CHANGE_RELATIVE:
            return self.relative_change()
        if self.kind is ToleranceKind.RESIDUAL_NORM_ABSOLUTE:
            return self.residual_norms[-1]
        return _ratio(self.residual_norms[-1], self.residual_norms[0])

    def evaluate(self, iteration: int) -> ConvergenceState:
        """Classify the state after ``iteration`` completed iterations."""

        lengths = {len(self.solution_norms), len(self.solution_change_norms), len(self.residual_norms)}
        if len(lengths) != 1 or iteration <= 0 or lengths != {iteration}:
            return ConvergenceState.ERROR
        if iteration >= self.min_iterations and self._predicate_value() <= self.tolerance:
            return ConvergenceState.CONVERGED
        if iteration >= self.max_iterations:
            return ConvergenceState.ABOVE_MAX_ITERATIONS
        return ConvergenceState.NOT_CONVERGED

    def summary(self) -> Dict[str, float]:
        if not self.solution_norms:
            return {"iterations": 0}
        return {
            "iterations": len(self.solution_norms),
            "solution_norm": self.solution_norms[-1],
            "solution_change_norm": self.solution_change_norms[-1],
            "relative_change": self.relative_change(),
            "residual_norm": self.residual_norms[-1],
        }

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self.solution_norms)


__all__ = ["ConvergenceState", "ConvergenceTracker", "ToleranceKind"]
