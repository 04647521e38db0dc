import math
import pathlib
import sys

import pytest

torch = pytest.importorskip("torch")

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1] / "src"))

from picard_solver.core.convergence import ConvergenceState, ConvergenceTracker, ToleranceKind
from picard_solver.exceptions import ConfigurationError, NumericalError


def _states(tracker: ConvergenceTracker, changes, solutions=None, residuals=None):
    solutions = solutions or [1.0] * len(changes)
    residuals = residuals or [1.0] * len(changes)
    states = []
    for iteration, (change, solution, residual) in enumerate(zip(changes, solutions, residuals), start=1):
        tracker.record(solution, change, residual)
        states.append(tracker.evaluate(iteration))
    return states


def test_relative_tolerance_converges_exactly_when_ratio_drops_below() -> None:
    tracker = ConvergenceTracker(1e-2, ToleranceKind.SOLUTION_CHANGE_RELATIVE, max_iterations=10)
    states = _states(
        tracker,
        changes=[5.0, 1.0, 0.5, 0.04, 0.001],
        solutions=[10.0, 10.0, 10.0, 8.0, 8.0],
    )
    assert states[:3] == [ConvergenceState.NOT_CONVERGED] * 3
    assert states[3] is ConvergenceState.CONVERGED


def test_absolute_tolerance_ignores_solution_size() -> None:
    tracker = ConvergenceTracker(1e-3, "solution_change_absolute", max_iterations=10)
    states = _states(tracker, changes=[1.0, 0.01, 1e-3], solutions=[1e6, 1e6, 1e6])
    assert states == [
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.CONVERGED,
    ]


def test_above_max_iterations_reported_at_the_limit() -> None:
    tracker = ConvergenceTracker(1e-6, max_iterations=5)
    states = _states(tracker, changes=[1.0] * 5)
    assert states[:4] == [ConvergenceState.NOT_CONVERGED] * 4
    assert states[4] is ConvergenceState.ABOVE_MAX_ITERATIONS


def test_convergence_on_the_last_allowed_iteration_wins() -> None:
    tracker = ConvergenceTracker(1e-3, max_iterations=3)
    states = _states(tracker, changes=[1.0, 1.0, 1e-4])
    assert states[-1] is ConvergenceState.CONVERGED


def test_min_iterations_delays_convergence() -> None:
    tracker = ConvergenceTracker(1e-3, max_iterations=10, min_iterations=3)
    states = _states(tracker, changes=[1e-6, 1e-6, 1e-6])
    assert states == [
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.CONVERGED,
    ]


def test_residual_tolerances() -> None:
    absolute = ConvergenceTracker(1e-2, ToleranceKind.RESIDUAL_NORM_ABSOLUTE)
    assert _states(absolute, changes=[1.0, 1.0], residuals=[0.5, 0.005])[-1] is ConvergenceState.CONVERGED

    relative = ConvergenceTracker(1e-2, ToleranceKind.RESIDUAL_NORM_RELATIVE_TO_INITIAL)
    states = _states(relative, changes=[1.0] * 3, residuals=[100.0, 2.0, 0.5])
    assert states == [
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.NOT_CONVERGED,
        ConvergenceState.CONVERGED,
    ]


def test_zero_solution_norm() -> None:
    tracker = ConvergenceTracker(1e-3)
    tracker.record(0.0, 0.0, 0.0)
    assert tracker.relative_change() == 0.0
    assert tracker.evaluate(1) is ConvergenceState.CONVERGED

    tracker.reset()
    tracker.record(0.0, 1e-12, 0.0)
    assert math.isinf(tracker.relative_change())
    assert tracker.evaluate(1) is ConvergenceState.NOT_CONVERGED


@pytest.mark.parametrize("values", [(float("nan"), 1.0, 1.0), (1.0, float("inf"), 1.0), (1.0, 1.0, float("nan"))])
def test_non_finite_norms_raise(values) -> None:
    tracker = ConvergenceTracker(1e-3)
    with pytest.raises(NumericalError):
        tracker.record(*values)
    assert tracker.solution_norms == []


def test_inconsistent_bookkeeping_is_an_error_state() -> None:
    tracker = ConvergenceTracker(1e-3)
    assert tracker.evaluate(1) is ConvergenceState.ERROR
    tracker.record(1.0, 1.0, 1.0)
    assert tracker.evaluate(2) is ConvergenceState.ERROR
    tracker.residual_norms.append(1.0)
    assert tracker.evaluate(1) is ConvergenceState.ERROR


def test_update_computes_l2_norms_for_complex_vectors() -> None:
    tracker = ConvergenceTracker(1e-3)
    previous = torch.tensor([0.0 + 0.0j, 1.0 + 0.0j], dtype=torch.complex128)
    new = torch.tensor([3.0 + 4.0j, 1.0 + 0.0j], dtype=torch.complex128)
    tracker.update(previous, new, residual_norm=2.0)
    assert tracker.solution_norms == [pytest.approx(math.sqrt(26.0))]
    assert tracker.solution_change_norms == [pytest.approx(5.0)]
    assert tracker.residual_norms == [2.0]


def test_reset_clears_series_and_summary() -> None:
    tracker = ConvergenceTracker(1e-3)
    tracker.reset(initial_solution_norm=2.0)
    tracker.record(4.0, 1.0, 0.5)
    summary = tracker.summary()
    assert summary["iterations"] == 1
    assert summary["relative_change"] == pytest.approx(0.25)
    tracker.reset()
    assert tracker.summary() == {"iterations": 0}
    assert tracker.initial_solution_norm is None


def test_invalid_configuration() -> None:
    with pytest.raises(ConfigurationError):
        ConvergenceTracker(1e-3, "residual_relative")
    with pytest.raises(ConfigurationError):
        ConvergenceTracker(0.0)
    with pytest.raises(ConfigurationError):
        ConvergenceTracker(1e-3, max_iterations=3, min_iterations=4)
