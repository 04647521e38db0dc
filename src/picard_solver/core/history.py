"""Fixed-capacity store of the most recent Picard iterates."""

from __future__ import annotations

from typing import Iterator, List, Optional

import torch
from torch import Tensor

from ..exceptions import ConfigurationError


class HistoryBuffer:
    """Rotating window over the last ``capacity`` iterates.

    The vectors live in a single preallocated arena of shape
    ``(capacity, dimension)``. Logical order (oldest to newest) is kept as a
    list of arena rows, so evicting the oldest entry only rotates that list
    and overwrites one row.

    Parameters
    ----------
    capacity:
        Number of iterates kept, the ``K`` of Anderson(K). Must be at
        least two.
    dimension:
        Length of every stored iterate.
    dtype, device:
        Storage type of the arena. Appended tensors are cast to it.
    """

    def __init__(
        self,
        capacity: int,
        dimension: int,
        *,
        dtype: Optional[torch.dtype] = None,
        device: Optional[torch.device | str] = None,
    ) -> None:
        if capacity < 2:
            raise ConfigurationError("history capacity must be at least 2")
        if dimension < 0:
            raise ConfigurationError("dimension must be non-negative")
        self.capacity = capacity
        self.dimension = dimension
        self._arena: Optional[Tensor] = torch.empty(
            (capacity, dimension), dtype=dtype, device=device
        )
        self._order: List[int] = list(range(capacity))
        self._size = 0

    @property
    def is_full(self) -> bool:
        return self._size == self.capacity

    @property
    def released(self) -> bool:
        return self._arena is None

    def append(self, iterate: Tensor) -> None:
        """Store a copy of ``iterate`` as the newest entry."""

        arena = self._require_arena()
        if iterate.shape != (self.dimension,):
            raise ValueError(
                f"expected an iterate of shape ({self.dimension},), got {tuple(iterate.shape)}"
            )
        if self._size < self.capacity:
            slot = self._order[self._size]
            self._size += 1
        else:
            slot = self._order.pop(0)
            self._order.append(slot)
        arena[slot].copy_(iterate)

    def at(self, index: int) -> Tensor:
        """Return a view of the ``index``-th entry, oldest first.

        The view aliases buffer storage and must be treated as read-only.
        """

        arena = self._require_arena()
        if not 0 <= index < self._size:
            raise IndexError(f"history index {index} out of range [0, {self._size})")
        return arena[self._order[index]]

    def stacked(self) -> Tensor:
        """Copy of the stored entries as a ``(len, dimension)`` tensor in logical order."""

        arena = self._require_arena()
        rows = torch.as_tensor(self._order[: self._size], device=arena.device)
        return arena.index_select(0, rows)

    def clear(self) -> None:
        """Forget all entries but keep the arena for reuse."""

        self._order = list(range(self.capacity))
        self._size = 0

    def release(self) -> None:
        """Drop the arena; the buffer cannot be used afterwards."""

        self._arena = None
        self.clear()

    def _require_arena(self) -> Tensor:
        if self._arena is None:
            raise RuntimeError("history buffer has been released")
        return self._arena

    def __iter__(self) -> Iterator[Tensor]:
        for index in range(self._size):
            yield self.at(index)

    def __len__(self) -> int:
        return self._size


__all__ = ["HistoryBuffer"]
