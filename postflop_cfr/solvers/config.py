"""
Solver run configuration.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from postflop_cfr.arena.allocator import get_allocator
from postflop_cfr.engine.discount import DiscountSchedule
from postflop_cfr.games.errors import ConfigError


@dataclass
class SolverConfig:
    """
    Iteration budget and runtime options.

    Args:
        max_iterations: Hard cap on CFR iterations
        target_exploitability: Stop once exploitability (chips) is at or below this
        exploitability_every: Iterations between exploitability checks
        num_threads: Worker threads, None for one per CPU
        schedule: Regret and strategy discounting
        custom_allocator: Carve accumulators out of one aligned block
        allocator: Allocator name, overridden by custom_allocator
        time_limit: Wall-clock budget in seconds, checked between iterations
        group_hands: Share showdown evaluations between isomorphic hands
    """
    max_iterations: int = 1000
    target_exploitability: float = 0.0
    exploitability_every: int = 10
    num_threads: Optional[int] = None
    schedule: DiscountSchedule = DiscountSchedule.CFR_PLUS
    custom_allocator: bool = False
    allocator: str = 'numpy'
    time_limit: Optional[float] = None
    group_hands: bool = False

    def validate(self) -> None:
        if self.max_iterations <= 0:
            raise ConfigError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.exploitability_every <= 0:
            raise ConfigError(f"exploitability_every must be positive, got {self.exploitability_every}")
        if self.num_threads is not None and self.num_threads <= 0:
            raise ConfigError(f"num_threads must be positive, got {self.num_threads}")
        if not math.isfinite(self.target_exploitability) or self.target_exploitability < 0:
            raise ConfigError(f"target_exploitability must be >= 0, got {self.target_exploitability}")
        if self.time_limit is not None and self.time_limit <= 0:
            raise ConfigError(f"time_limit must be positive, got {self.time_limit}")
        try:
            self.schedule = DiscountSchedule(self.schedule)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        try:
            get_allocator(self.allocator_name)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @property
    def allocator_name(self) -> str:
        return 'block' if self.custom_allocator else self.allocator

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['schedule'] = DiscountSchedule(self.schedule).value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SolverConfig':
        d = dict(d)
        if 'schedule' in d:
            d['schedule'] = DiscountSchedule(d['schedule'])
        return cls(**d)
