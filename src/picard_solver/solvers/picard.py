"""Picard (fixed-point) iteration with optional Anderson acceleration."""

from __future__ import annotations

import logging
import math
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, Optional, Tuple

import torch
from torch import Tensor

from ..core.anderson import anderson_coefficients, mix_history
from ..core.convergence import ConvergenceState, ConvergenceTracker, ToleranceKind
from ..core.history import HistoryBuffer
from ..exceptions import ConfigurationError, ConvergenceFailure, LinearSolverError, SolverError
from ..utils.math_utils import l2_norm
from .hooks import SolverHooks, SolverState
from .linear_system import LinearSystemSolver, ResidualAssembler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PicardConfig:
    """Configuration parameters for :class:`PicardSolver`.

    Parameters
    ----------
    max_iterations:
        Iteration at which the solve gives up with
        :class:`ConvergenceFailure`.
    min_iterations:
        Convergence is not reported before this many iterations.
    tolerance, tolerance_kind:
        Stopping threshold and the quantity it is compared against.
    use_anderson:
        Enable Anderson mixing of the last ``history_length`` iterates.
    history_length:
        Number of stored iterates ``K``; only checked when Anderson is on.
    anderson_beta:
        Damping in ``(0, 1]``; ``1`` is undamped Anderson.
    constant_jacobian:
        The linearised matrix does not depend on the iterate, so it is
        assembled and factorised once and then reused.
    """

    max_iterations: int = 50
    min_iterations: int = 1
    tolerance: float = 1e-3
    tolerance_kind: ToleranceKind | str = ToleranceKind.SOLUTION_CHANGE_RELATIVE
    use_anderson: bool = False
    history_length: int = 3
    anderson_beta: float = 1.0
    constant_jacobian: bool = False

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")
        if not 1 <= self.min_iterations <= self.max_iterations:
            raise ConfigurationError("min_iterations must lie in [1, max_iterations]")
        if not self.tolerance > 0 or not math.isfinite(self.tolerance):
            raise ConfigurationError("tolerance must be positive and finite")
        self.tolerance_kind = ToleranceKind.parse(self.tolerance_kind)
        if self.use_anderson and self.history_length < 2:
            raise ConfigurationError("history_length must be at least 2 when Anderson mixing is enabled")
        if not 0.0 < self.anderson_beta <= 1.0:
            raise ConfigurationError("anderson_beta must lie in (0, 1]")


class PicardSolver:
    """Drive a linearised problem to a fixed point.

    Every iteration assembles the system at the working iterate, solves it
    and takes the solution as the next iterate. With Anderson mixing the
    last ``history_length`` solutions are combined with least-squares
    weights before the next iteration starts.

    Parameters
    ----------
    assembler:
        Builds the linear system for a given iterate.
    linear_solver:
        Solves the assembled system. Defaults to ``assembler`` for objects
        that implement both roles, such as :class:`DenseLinearization`.
    config:
        Solver options; copied and validated at the start of every solve.
    hooks:
        Callbacks fired at iteration boundaries.
    """

    def __init__(
        self,
        assembler: ResidualAssembler,
        linear_solver: Optional[LinearSystemSolver] = None,
        config: PicardConfig | None = None,
        *,
        hooks: SolverHooks | None = None,
    ) -> None:
        self.assembler = assembler
        self.linear_solver = linear_solver if linear_solver is not None else assembler
        if not callable(getattr(self.linear_solver, "solve", None)):
            raise ConfigurationError("linear_solver must provide solve() and residual_norm()")
        self.config = config or PicardConfig()
        self.hooks = hooks or SolverHooks()
        self.tracker: Optional[ConvergenceTracker] = None
        self.num_iterations = 0
        self.last_elapsed = 0.0
        self._jacobian_reusable = False
        self._completed = 0
        self._coefficients: Optional[Tensor] = None

    def invalidate_jacobian(self) -> None:
        """Force a full assembly on the next iteration."""

        self._jacobian_reusable = False

    def solve(self, initial_guess: Any = None) -> Tuple[Tensor, Dict[str, object]]:
        """Iterate from ``initial_guess`` (zeros when omitted) to a fixed point.

        Returns the final iterate and a diagnostics dictionary. Converged and
        hook-aborted solves return normally; hitting ``max_iterations``
        raises :class:`ConvergenceFailure` carrying the same pair.

        With Anderson mixing the convergence test runs on the raw solution
        of each linear solve, and mixing only prepares the next iteration.
        A converged or failed solve therefore returns the unmixed solution
        of its last iteration; a hook abort after a step returns the mixed
        iterate that would have been used next.
        """

        config = replace(self.config)
        working = self._initial_iterate(initial_guess)
        self.tracker = ConvergenceTracker(
            config.tolerance,
            config.tolerance_kind,
            max_iterations=config.max_iterations,
            min_iterations=config.min_iterations,
        )
        self.tracker.reset(l2_norm(working))
        self._completed = 0
        self._coefficients = None

        with self._solve_session(config, working) as history:
            state, aborted = self._iterate(config, working, history)

        info = self._info(state, aborted)
        if state is ConvergenceState.ABOVE_MAX_ITERATIONS:
            raise ConvergenceFailure(
                f"Picard: maximum number of iterations ({config.max_iterations}) exceeded",
                iterate=working,
                info=info,
            )
        if state is ConvergenceState.ERROR:
            raise SolverError("Picard: inconsistent convergence state")
        return working, info

    def _iterate(
        self,
        config: PicardConfig,
        working: Tensor,
        history: Optional[HistoryBuffer],
    ) -> Tuple[ConvergenceState, bool]:
        state = ConvergenceState.NOT_CONVERGED
        if history is not None:
            history.append(working)
        if not self.hooks.fire("before_initialization", self._snapshot(0, working)):
            logger.info("Picard: aborted before the first iteration.")
            return state, True

        iteration = 1
        while True:
            if iteration > 1 and not self.hooks.fire("before_step", self._snapshot(iteration, working)):
                logger.info("Picard: aborted.")
                return state, True

            new_iterate, residual_norm = self._linear_step(config, working)
            self.tracker.update(working, new_iterate, residual_norm)
            working.copy_(new_iterate)
            self._completed = iteration
            if history is not None:
                history.append(working)
            self._step_info(iteration)

            state = self.tracker.evaluate(iteration)
            if state is ConvergenceState.CONVERGED:
                logger.info("Picard: done after %d iteration(s).", iteration)
                return state, False
            if state is not ConvergenceState.NOT_CONVERGED:
                return state, False
            # Mixing only feeds the next iteration; a finished solve keeps the raw solution.
            if history is not None and history.is_full:
                self._mix(config, history, working)

            if not self.hooks.fire("after_step", self._snapshot(iteration, working)):
                logger.info("Picard: aborted.")
                return state, True
            iteration += 1

    def _linear_step(self, config: PicardConfig, working: Tensor) -> Tuple[Tensor, float]:
        rebuild = not (config.constant_jacobian and self._jacobian_reusable)
        try:
            self.assembler.assemble(working, rebuild_jacobian=rebuild)
            if rebuild:
                self._jacobian_reusable = True
            result = self.linear_solver.solve(working.clone())
            residual_norm = float(self.linear_solver.residual_norm())
        except SolverError:
            raise
        except Exception as exc:
            raise LinearSolverError(f"linear system could not be solved: {exc}") from exc
        new_iterate = torch.as_tensor(result, dtype=working.dtype, device=working.device)
        if new_iterate.shape != working.shape:
            raise LinearSolverError(
                f"linear solver returned shape {tuple(new_iterate.shape)}, expected {tuple(working.shape)}"
            )
        return new_iterate, residual_norm

    def _mix(self, config: PicardConfig, history: HistoryBuffer, working: Tensor) -> None:
        coefficients = anderson_coefficients(history)
        mix_history(history, coefficients, config.anderson_beta, out=working)
        self._coefficients = coefficients

    def _initial_iterate(self, initial_guess: Any) -> Tensor:
        dimension = getattr(self.assembler, "dimension", None)
        if initial_guess is None:
            if dimension is None:
                raise ConfigurationError("an initial guess is required when the assembler has no dimension")
            dtype = getattr(self.assembler, "dtype", None) or torch.get_default_dtype()
            return torch.zeros(dimension, dtype=dtype)
        guess = torch.as_tensor(initial_guess)
        if not (guess.is_floating_point() or guess.is_complex()):
            guess = guess.to(torch.get_default_dtype())
        if guess.dim() != 1 or (dimension is not None and guess.size(0) != dimension):
            raise ConfigurationError(
                f"initial guess of shape {tuple(guess.shape)} does not match dimension {dimension}"
            )
        return guess.detach().clone()

    @contextmanager
    def _solve_session(self, config: PicardConfig, working: Tensor) -> Iterator[Optional[HistoryBuffer]]:
        """Own the per-solve resources and finalise on every exit path."""

        history = None
        if config.use_anderson:
            history = HistoryBuffer(
                config.history_length,
                working.size(0),
                dtype=working.dtype,
                device=working.device,
            )
        start = time.perf_counter()
        try:
            yield history
        finally:
            self.last_elapsed = time.perf_counter() - start
            self.num_iterations = self._completed
            logger.info("Picard: solution duration: %f s.", self.last_elapsed)
            try:
                self.hooks.fire("after_finish", self._snapshot(self._completed, working))
            finally:
                if history is not None:
                    history.release()

    def _step_info(self, iteration: int) -> None:
        logger.debug(
            "Picard: iteration %d, solution change (L2 norm): %g (%g%%).",
            iteration,
            self.tracker.solution_change_norms[-1],
            100.0 * self.tracker.relative_change(),
        )

    def _snapshot(self, iteration: int, working: Tensor) -> SolverState:
        return SolverState(
            iteration=iteration,
            solution_norms=tuple(self.tracker.solution_norms),
            solution_change_norms=tuple(self.tracker.solution_change_norms),
            residual_norms=tuple(self.tracker.residual_norms),
            initial_solution_norm=self.tracker.initial_solution_norm,
            _iterate=working,
        )

    def _info(self, state: ConvergenceState, aborted: bool) -> Dict[str, object]:
        coefficients = self._coefficients
        return {
            "state": state.value,
            "converged": state is ConvergenceState.CONVERGED,
            "aborted": aborted,
            "iterations": self._completed,
            "elapsed": self.last_elapsed,
            "initial_solution_norm": self.tracker.initial_solution_norm,
            "solution_norms": list(self.tracker.solution_norms),
            "solution_change_norms": list(self.tracker.solution_change_norms),
            "residual_norms": list(self.tracker.residual_norms),
            "anderson_coefficients": None if coefficients is None else coefficients.tolist(),
        }


__all__ = ["PicardConfig", "PicardSolver"]
