"""Lifecycle hooks observed by :class:`PicardSolver`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from torch import Tensor
from tqdm.auto import tqdm


@dataclass(frozen=True)
class SolverState:
    """Read-only snapshot of the engine handed to every hook."""

    iteration: int
    solution_norms: Tuple[float, ...]
    solution_change_norms: Tuple[float, ...]
    residual_norms: Tuple[float, ...]
    initial_solution_norm: Optional[float]
    _iterate: Tensor = field(repr=False)

    @property
    def iterate(self) -> Tensor:
        """Copy of the current working iterate."""

        return self._iterate.clone()


Hook = Callable[[SolverState], Optional[bool]]


@dataclass
class SolverHooks:
    """Optional callbacks fired at the iteration boundaries.

    ``before_initialization``, ``before_step`` and ``after_step`` abort the
    solve by returning ``False``; any other return value continues.
    ``after_finish`` runs once on every exit path and its return value is
    ignored.
    """

    before_initialization: Optional[Hook] = None
    before_step: Optional[Hook] = None
    after_step: Optional[Hook] = None
    after_finish: Optional[Hook] = None

    def fire(self, name: str, state: SolverState) -> bool:
        """Invoke hook ``name`` and return ``True`` to continue."""

        hook = getattr(self, name)
        if hook is None:
            return True
        return hook(state) is not False


def progress_hooks(total: Optional[int] = None, **tqdm_kwargs: Any) -> SolverHooks:
    """Hooks that drive a tqdm progress bar, one tick per iteration.

    A fresh bar is opened when a solve starts and closed when it finishes,
    so the same hooks can be reused across solves.
    """

    bar = None

    def before_initialization(state: SolverState) -> bool:
        nonlocal bar
        if bar is not None:
            bar.close()
        bar = tqdm(total=total, unit="it", **tqdm_kwargs)
        return True

    def after_step(state: SolverState) -> bool:
        bar.update(state.iteration - bar.n)
        if state.solution_change_norms:
            bar.set_postfix(change=f"{state.solution_change_norms[-1]:.3e}")
        return True

    def after_finish(state: SolverState) -> None:
        nonlocal bar
        if bar is None:
            return
        bar.update(max(0, state.iteration - bar.n))
        bar.close()
        bar = None

    return SolverHooks(
        before_initialization=before_initialization,
        after_step=after_step,
        after_finish=after_finish,
    )


__all__ = ["Hook", "SolverHooks", "SolverState", "progress_hooks"]
