"""Mathematical helper utilities."""
from __future__ import annotations

import torch
from torch import Tensor


def l2_norm(x: Tensor) -> float:
    """Euclidean norm of a flat vector; the modulus is used for complex input."""

    return float(torch.linalg.vector_norm(x))


def is_finite(x: Tensor) -> bool:
    return bool(torch.isfinite(x).all())
