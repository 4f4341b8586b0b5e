"""
Regret and strategy discount schedules.

Each schedule turns the iteration number t (1-indexed) into multipliers
applied to the accumulated values before this iteration's update:

    regret   = regret * (positive if regret > 0 else negative) + instant
    regret   = max(regret, 0)                      if clip
    strategy = strategy * strategy_mult + weight * reach * sigma

- VANILLA: plain CFR, no discounting
- CFR_PLUS: regrets floored at 0, linear averaging (weight t)
- LINEAR: LCFR, everything discounted by t / (t + 1)
- DISCOUNTED: DCFR with alpha = 1.5, beta = 0, gamma = 2

Reference: Brown & Sandholm, "Solving Imperfect-Information Games via
Discounted Regret Minimization" (AAAI 2019).
"""

from dataclasses import dataclass
from enum import Enum

DCFR_ALPHA = 1.5
DCFR_BETA = 0.0
DCFR_GAMMA = 2.0


class DiscountSchedule(str, Enum):
    VANILLA = 'vanilla'
    CFR_PLUS = 'cfr_plus'
    LINEAR = 'linear'
    DISCOUNTED = 'discounted'


@dataclass(frozen=True)
class DiscountParams:
    positive: float
    negative: float
    strategy: float
    weight: float
    clip: bool


def discount_params(schedule: DiscountSchedule, t: int) -> DiscountParams:
    """Multipliers for iteration t (1-indexed)."""
    schedule = DiscountSchedule(schedule)
    if schedule == DiscountSchedule.VANILLA:
        return DiscountParams(1.0, 1.0, 1.0, 1.0, False)
    if schedule == DiscountSchedule.CFR_PLUS:
        return DiscountParams(1.0, 1.0, 1.0, float(t), True)
    if schedule == DiscountSchedule.LINEAR:
        d = t / (t + 1.0)
        return DiscountParams(d, d, d, 1.0, False)

    pos = t ** DCFR_ALPHA
    neg = t ** DCFR_BETA
    return DiscountParams(
        positive=pos / (pos + 1.0),
        negative=neg / (neg + 1.0),
        strategy=(t / (t + 1.0)) ** DCFR_GAMMA,
        weight=1.0,
        clip=False,
    )
