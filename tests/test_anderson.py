import pathlib
import sys

import pytest

torch = pytest.importorskip("torch")

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1] / "src"))

from picard_solver.core.anderson import anderson_coefficients, mix_history
from picard_solver.core.history import HistoryBuffer
from picard_solver.exceptions import ConfigurationError, NumericalError


def _history(vectors, dtype=torch.float64) -> HistoryBuffer:
    vectors = [torch.as_tensor(v, dtype=dtype) for v in vectors]
    buffer = HistoryBuffer(len(vectors), vectors[0].numel(), dtype=dtype)
    for vector in vectors:
        buffer.append(vector)
    return buffer


def _random_history(capacity: int, dimension: int = 6, seed: int = 0) -> HistoryBuffer:
    generator = torch.Generator().manual_seed(seed)
    return _history(
        [torch.randn(dimension, generator=generator, dtype=torch.float64) for _ in range(capacity)]
    )


def test_two_entries_give_unit_coefficient() -> None:
    history = _history([[0.0, 1.0], [2.0, 3.0]])
    coefficients = anderson_coefficients(history)
    assert coefficients.tolist() == [1.0]
    assert torch.equal(mix_history(history, coefficients, 1.0), history.at(1))


def test_two_entries_with_damping_relax_towards_previous() -> None:
    history = _history([[0.0, 1.0], [2.0, 3.0]])
    mixed = mix_history(history, anderson_coefficients(history), 0.25)
    assert torch.allclose(mixed, 0.25 * history.at(1) + 0.75 * history.at(0))


@pytest.mark.parametrize("capacity", [2, 3, 4, 5, 6])
@pytest.mark.parametrize("seed", [0, 1, 2])
def test_coefficients_sum_to_one(capacity: int, seed: int) -> None:
    coefficients = anderson_coefficients(_random_history(capacity, seed=seed))
    assert coefficients.shape == (capacity - 1,)
    assert float(coefficients.sum()) == pytest.approx(1.0, abs=1e-12)


def test_three_entries_match_closed_form() -> None:
    h0 = torch.tensor([0.0, 0.0, 0.0], dtype=torch.float64)
    h1 = torch.tensor([1.0, 2.0, 0.5], dtype=torch.float64)
    h2 = torch.tensor([1.5, 2.5, 1.5], dtype=torch.float64)
    r0, r1 = h1 - h0, h2 - h1
    c0 = torch.dot(r1, r1 - r0) / torch.dot(r1 - r0, r1 - r0)

    coefficients = anderson_coefficients(_history([h0, h1, h2]))
    assert torch.allclose(coefficients, torch.stack([c0, 1.0 - c0]))


def test_weights_minimise_the_combined_residual() -> None:
    history = _random_history(4, dimension=8, seed=5)
    stacked = history.stacked()
    residuals = stacked[1:] - stacked[:-1]
    coefficients = anderson_coefficients(history)
    best = torch.linalg.vector_norm(coefficients @ residuals)

    for direction in ([1.0, -1.0, 0.0], [0.0, 1.0, -1.0], [1.0, 0.0, -1.0]):
        step = 1e-3 * torch.tensor(direction, dtype=torch.float64)
        for sign in (1.0, -1.0):
            perturbed = torch.linalg.vector_norm((coefficients + sign * step) @ residuals)
            assert perturbed >= best


def test_damped_mix_matches_componentwise_formula() -> None:
    history = _random_history(5, dimension=4, seed=7)
    coefficients = anderson_coefficients(history)
    beta = 0.3
    expected = torch.zeros(4, dtype=torch.float64)
    for j in range(1, 5):
        current, previous = history.at(j), history.at(j - 1)
        expected += coefficients[j - 1] * current - (1.0 - beta) * coefficients[j - 1] * (current - previous)

    assert torch.allclose(mix_history(history, coefficients, beta), expected)


def test_mix_writes_into_out_and_keeps_history() -> None:
    history = _random_history(3, seed=11)
    before = history.stacked()
    out = torch.empty(6, dtype=torch.float64)
    result = mix_history(history, anderson_coefficients(history), 1.0, out=out)
    assert result is out
    assert torch.equal(history.stacked(), before)


def test_linearly_dependent_differences_raise_numerical_error() -> None:
    d = torch.tensor([1.0, -2.0, 0.5], dtype=torch.float64)
    history = _history([torch.zeros(3, dtype=torch.float64), d, 2 * d])
    with pytest.raises(NumericalError):
        anderson_coefficients(history)


@pytest.mark.parametrize("capacity", [3, 4])
def test_repeated_inexact_differences_raise_numerical_error(capacity: int) -> None:
    start = torch.tensor([0.1, 0.7, -0.2], dtype=torch.float64)
    shift = torch.tensor([0.3, -1.7, 2.9], dtype=torch.float64)
    vectors = [start]
    for _ in range(capacity - 1):
        vectors.append(vectors[-1] + shift)
    history = _history(vectors)
    with pytest.raises(NumericalError):
        anderson_coefficients(history)


def test_requires_full_history() -> None:
    buffer = HistoryBuffer(3, 2)
    buffer.append(torch.zeros(2))
    with pytest.raises(ValueError):
        anderson_coefficients(buffer)


@pytest.mark.parametrize("beta", [0.0, -0.5, 1.5])
def test_beta_outside_unit_interval_is_rejected(beta: float) -> None:
    history = _random_history(3)
    with pytest.raises(ConfigurationError):
        mix_history(history, anderson_coefficients(history), beta)


def test_complex_history_uses_unconjugated_products() -> None:
    h0 = torch.tensor([0.0 + 0.0j, 1.0 + 0.0j], dtype=torch.complex128)
    h1 = torch.tensor([1.0 + 1.0j, 0.5 - 1.0j], dtype=torch.complex128)
    h2 = torch.tensor([2.0 - 0.5j, 1.0 + 2.0j], dtype=torch.complex128)
    r0, r1 = h1 - h0, h2 - h1
    c0 = torch.sum(r1 * (r1 - r0)) / torch.sum((r1 - r0) * (r1 - r0))

    coefficients = anderson_coefficients(_history([h0, h1, h2], dtype=torch.complex128))
    assert coefficients.dtype == torch.complex128
    assert torch.allclose(coefficients, torch.stack([c0, 1.0 - c0]))
    assert complex(coefficients.sum()) == pytest.approx(1.0 + 0.0j)
