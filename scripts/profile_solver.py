#!/usr/bin/env python3
"""Profile plain and Anderson-accelerated Picard iteration on CPU."""
from __future__ import annotations

import argparse
import logging
import statistics
import time

import numpy as np
import torch

from picard_solver import ConvergenceFailure, DenseLinearization, PicardConfig, PicardSolver
from picard_solver.solvers import progress_hooks


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--runs", type=int, default=5, help="Number of solves to profile")
    parser.add_argument("--dimension", type=int, default=200, help="Number of unknowns")
    parser.add_argument("--history", type=int, default=4, help="Anderson history length")
    parser.add_argument("--beta", type=float, default=1.0, help="Anderson damping factor")
    parser.add_argument("--tol", type=float, default=1e-8, help="Relative solution-change tolerance")
    parser.add_argument("--max-iter", type=int, default=200, help="Maximum Picard iterations")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar per solve")
    parser.add_argument("--verbose", action="store_true", help="Log every iteration")
    return parser.parse_args()


def build_problem(dimension: int) -> DenseLinearization:
    """Finite differences for ``-(k(u) u')' = 1`` on (0, 1), ``k(u) = 1 + u^2``, zero ends."""

    h = 1.0 / (dimension + 1)
    rhs = torch.full((dimension,), h * h, dtype=torch.float64)

    def matrix_fn(u: torch.Tensor) -> torch.Tensor:
        padded = torch.cat([u.new_zeros(1), u, u.new_zeros(1)])
        k = 1.0 + (0.5 * (padded[1:] + padded[:-1])) ** 2
        matrix = torch.diag(k[:-1] + k[1:])
        matrix -= torch.diag(k[1:-1], 1) + torch.diag(k[1:-1], -1)
        return matrix

    return DenseLinearization(matrix_fn, rhs, dimension=dimension, dtype=torch.float64)


def profile(args: argparse.Namespace, use_anderson: bool) -> None:
    label = f"anderson(K={args.history}, beta={args.beta})" if use_anderson else "plain"
    durations: list[float] = []
    iterations: list[int] = []
    for _ in range(args.runs):
        config = PicardConfig(
            max_iterations=args.max_iter,
            tolerance=args.tol,
            use_anderson=use_anderson,
            history_length=args.history,
            anderson_beta=args.beta,
        )
        hooks = progress_hooks(args.max_iter, desc=label, leave=False) if args.progress else None
        solver = PicardSolver(build_problem(args.dimension), config=config, hooks=hooks)
        start = time.perf_counter()
        try:
            _, info = solver.solve()
        except ConvergenceFailure as failure:
            info = failure.info
        durations.append((time.perf_counter() - start) * 1_000)
        iterations.append(int(info["iterations"]))
    print(
        f"{label:>28s} time_ms={statistics.fmean(durations):8.2f} "
        f"iterations={int(np.median(iterations))} converged={info['converged']}"
    )


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    profile(args, use_anderson=False)
    profile(args, use_anderson=True)


if __name__ == "__main__":
    main()
