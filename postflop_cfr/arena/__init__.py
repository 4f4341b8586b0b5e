"""
Arena layer (Layer 2).

Flattens the action tree into index-addressed buffers and owns the
accumulator memory. It may only import from: postflop_cfr.games
"""

from postflop_cfr.arena.allocator import (
    Allocator,
    BlockAllocator,
    BoundedAllocator,
    NumpyAllocator,
    TrackingAllocator,
    get_allocator,
)
from postflop_cfr.arena.evaluator_cache import EvaluatorCache
from postflop_cfr.arena.layout import Arena

__all__ = [
    'Allocator',
    'BlockAllocator',
    'BoundedAllocator',
    'NumpyAllocator',
    'TrackingAllocator',
    'get_allocator',
    'EvaluatorCache',
    'Arena',
]
