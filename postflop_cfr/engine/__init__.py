"""
Compute engine layer (Layer 3).

Numba kernels for the forward, terminal and backward passes, the worker
pool that runs them, and the discount schedules. It may only import
from: postflop_cfr.games, postflop_cfr.arena
"""

from postflop_cfr.engine.discount import DiscountParams, DiscountSchedule, discount_params
from postflop_cfr.engine.kernels import MODE_BEST, MODE_CFR, MODE_EVAL
from postflop_cfr.engine.pool import WorkerPool, default_threads, hand_chunks, partition
from postflop_cfr.engine.traversal import Traversal, equity_payoffs

__all__ = [
    'DiscountParams',
    'DiscountSchedule',
    'discount_params',
    'MODE_BEST',
    'MODE_CFR',
    'MODE_EVAL',
    'WorkerPool',
    'default_threads',
    'hand_chunks',
    'partition',
    'Traversal',
    'equity_payoffs',
]
