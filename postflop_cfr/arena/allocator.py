"""
Allocation strategies for the accumulator and traversal buffers.

The arena asks for its accumulators in one bulk request and the traversal
for its reach and value buffers in another. An allocator is passed
explicitly into both, never looked up from global state, so tests can
swap in a bounded or tracking allocator.

Usage:
    allocator = get_allocator('block')
    buffers = allocator.allocate([('regrets', 1000, np.float32), ...])
"""

import logging
from typing import Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np

from postflop_cfr.games.errors import ArenaAllocationError

logger = logging.getLogger(__name__)

AllocatorType = Literal['numpy', 'block']

# (name, number of elements, dtype)
Request = Tuple[str, int, np.dtype]

BLOCK_ALIGNMENT = 64


def request_bytes(requests: Sequence[Request]) -> int:
    return sum(int(count) * np.dtype(dtype).itemsize for _, count, dtype in requests)


class Allocator:
    """Base class: turns a bulk request into zero-filled 1-D arrays."""
    name = 'base'

    def allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        logger.debug("%s allocator: %d buffers, %d bytes",
                     self.name, len(requests), request_bytes(requests))
        try:
            return self._allocate(requests)
        except MemoryError as e:
            raise ArenaAllocationError(
                f"Could not allocate {request_bytes(requests)} bytes: {e}"
            ) from e

    def _allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        raise NotImplementedError


class NumpyAllocator(Allocator):
    """One np.zeros call per buffer."""
    name = 'numpy'

    def _allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        return {name: np.zeros(int(count), dtype=dtype) for name, count, dtype in requests}


class BlockAllocator(Allocator):
    """
    One contiguous block carved into aligned views.

    All buffers share a single allocation, which keeps large arenas from
    fragmenting and makes the footprint a single number.
    """
    name = 'block'

    def __init__(self, alignment: int = BLOCK_ALIGNMENT):
        self.alignment = alignment
        self.block: Optional[np.ndarray] = None

    def _offsets(self, requests: Sequence[Request]) -> Tuple[List[int], int]:
        offsets = []
        pos = 0
        for _, count, dtype in requests:
            pos = -(-pos // self.alignment) * self.alignment
            offsets.append(pos)
            pos += int(count) * np.dtype(dtype).itemsize
        return offsets, pos

    def _allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        offsets, total = self._offsets(requests)
        self.block = np.zeros(total, dtype=np.uint8)
        out = {}
        for (name, count, dtype), offset in zip(requests, offsets):
            nbytes = int(count) * np.dtype(dtype).itemsize
            out[name] = self.block[offset:offset + nbytes].view(dtype)
        return out


class TrackingAllocator(Allocator):
    """Records every request, then delegates."""
    name = 'tracking'

    def __init__(self, inner: Optional[Allocator] = None):
        self.inner = inner or NumpyAllocator()
        self.requests: List[List[Request]] = []

    @property
    def total_bytes(self) -> int:
        return sum(request_bytes(r) for r in self.requests)

    @property
    def num_calls(self) -> int:
        return len(self.requests)

    def _allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        self.requests.append(list(requests))
        return self.inner._allocate(requests)


class BoundedAllocator(Allocator):
    """Refuses any bulk request larger than limit_bytes."""
    name = 'bounded'

    def __init__(self, limit_bytes: int, inner: Optional[Allocator] = None):
        self.limit_bytes = limit_bytes
        self.inner = inner or NumpyAllocator()

    def _allocate(self, requests: Sequence[Request]) -> Dict[str, np.ndarray]:
        needed = request_bytes(requests)
        if needed > self.limit_bytes:
            raise ArenaAllocationError(
                f"Arena needs {needed} bytes, limit is {self.limit_bytes}"
            )
        return self.inner._allocate(requests)


def get_allocator(name: AllocatorType = 'numpy') -> Allocator:
    """
    Create an allocator by name.

    Args:
        name: 'numpy' for one array per buffer, 'block' for one shared block
    """
    if name == 'numpy':
        return NumpyAllocator()
    if name == 'block':
        return BlockAllocator()
    raise ValueError(f"Unknown allocator: {name}. Use 'numpy' or 'block'.")
