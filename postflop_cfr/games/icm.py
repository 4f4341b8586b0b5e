"""
Independent Chip Model (ICM) for tournament spots.

Converts chip stacks into prize equity using the Malmuth-Harville model:
the chance of finishing first is proportional to stack size, and the
remaining places are distributed recursively among the other players.

Small fields are solved exactly with a bitmask-memoized recursion. Large
fields (more than 16 paid places or more than 64 players) fall back to a
seeded Monte-Carlo estimate, so results are reproducible.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .errors import ConfigError

logger = logging.getLogger(__name__)

EXACT_MAX_PAYOUTS = 16
EXACT_MAX_PLAYERS = 64
ESTIMATE_ITERATIONS = 80000  # per player
ESTIMATE_BATCH = 4096


class ICMCalculator:
    """
    Prize equity of two players (A and B) in a field of fixed other stacks.

    Parameters:
    - other_stacks: stacks of every player except A and B
    - payouts: prize for each place, first place first
    - seed: seed of the Monte-Carlo estimate for large fields
    """

    def __init__(self, other_stacks: Sequence[float], payouts: Sequence[float],
                 seed: int = 0, estimate_iterations: int = ESTIMATE_ITERATIONS):
        self.other_stacks = [float(s) for s in other_stacks]
        self.payouts = [float(p) for p in payouts]
        if any(s < 0 for s in self.other_stacks):
            raise ConfigError("ICM stacks must be non-negative")
        self.seed = seed
        self.estimate_iterations = estimate_iterations
        self._cache: Dict[Tuple[float, float], Tuple[float, float]] = {}

    @property
    def num_players(self) -> int:
        return len(self.other_stacks) + 2

    @property
    def is_exact(self) -> bool:
        return (len(self.payouts) <= EXACT_MAX_PAYOUTS
                and self.num_players <= EXACT_MAX_PLAYERS)

    def calculate(self, stack_a: float, stack_b: float) -> Tuple[float, float]:
        """Return the prize equity of A and B."""
        key = (float(stack_a), float(stack_b))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if not self.payouts:
            result = (0.0, 0.0)
        else:
            stacks = [key[0], key[1]] + self.other_stacks
            if self.is_exact:
                full_mask = (1 << len(stacks)) - 1
                equities = self._exact(stacks, full_mask, 0, {})
            else:
                equities = self._estimate(stacks)
            result = (float(equities[0]), float(equities[1]))

        self._cache[key] = result
        return result

    def equities(self, stacks: Sequence[float]) -> List[float]:
        """Equity of every player for an explicit list of stacks."""
        stacks = [float(s) for s in stacks]
        if not self.payouts:
            return [0.0] * len(stacks)
        if len(self.payouts) <= EXACT_MAX_PAYOUTS and len(stacks) <= EXACT_MAX_PLAYERS:
            return self._exact(stacks, (1 << len(stacks)) - 1, 0, {})
        return list(self._estimate(stacks))

    def _exact(self, stacks: List[float], player_mask: int, place: int,
               memo: Dict[Tuple[int, int], List[float]]) -> List[float]:
        """Equities of the players in player_mask, in bit order, from `place` on."""
        cached = memo.get((player_mask, place))
        if cached is not None:
            return cached

        active = [i for i in range(len(stacks)) if (player_mask >> i) & 1]
        equities = [0.0] * len(active)
        if place >= len(self.payouts) or not active:
            return equities

        total = sum(stacks[i] for i in active)
        if total == 0.0:
            return equities

        for k, winner in enumerate(active):
            p_win = stacks[winner] / total
            equities[k] += p_win * self.payouts[place]

            rest = player_mask & ~(1 << winner)
            if rest and place + 1 < len(self.payouts):
                sub = self._exact(stacks, rest, place + 1, memo)
                j = 0
                for m in range(len(active)):
                    if m == k:
                        continue
                    equities[m] += p_win * sub[j]
                    j += 1

        memo[(player_mask, place)] = equities
        return equities

    def _estimate(self, stacks: List[float]) -> np.ndarray:
        """Monte-Carlo finish order: rank players by u ** (avg / stack)."""
        stacks_arr = np.asarray(stacks, dtype=np.float64)
        n = len(stacks_arr)
        k = min(len(self.payouts), n)
        payouts = np.asarray(self.payouts[:k], dtype=np.float64)

        with np.errstate(divide='ignore'):
            exponents = stacks_arr.mean() / stacks_arr

        rng = np.random.default_rng(self.seed)
        total_iters = self.estimate_iterations * n
        equities = np.zeros(n, dtype=np.float64)
        done = 0
        while done < total_iters:
            batch = min(ESTIMATE_BATCH, total_iters - done)
            values = rng.random((batch, n)) ** exponents
            if k < n:
                top = np.argpartition(-values, k - 1, axis=1)[:, :k]
                top_values = np.take_along_axis(values, top, axis=1)
                order = np.argsort(-top_values, axis=1)
                places = np.take_along_axis(top, order, axis=1)
            else:
                places = np.argsort(-values, axis=1)
            np.add.at(equities, places, np.broadcast_to(payouts, places.shape))
            done += batch

        logger.debug("ICM estimate over %d players, %d samples", n, total_iters)
        return equities / total_iters


@dataclass
class IcmConfig:
    """
    Tournament context for a spot.

    oop_chips and ip_chips are each player's chips at the start of the
    hand, including their half of the starting pot.
    """
    oop_chips: float
    ip_chips: float
    other_stacks: List[float] = field(default_factory=list)
    payouts: List[float] = field(default_factory=list)

    def validate(self, starting_pot: int, effective_stack: int) -> None:
        if not self.payouts:
            raise ConfigError("ICM needs at least one payout")
        need = starting_pot / 2 + effective_stack
        if self.oop_chips < need or self.ip_chips < need:
            raise ConfigError(
                f"ICM chips ({self.oop_chips}, {self.ip_chips}) cannot cover "
                f"half the pot plus the effective stack ({need})"
            )

    def calculator(self) -> ICMCalculator:
        return ICMCalculator(self.other_stacks, self.payouts)

    def to_dict(self) -> dict:
        return {
            'oop_chips': self.oop_chips,
            'ip_chips': self.ip_chips,
            'other_stacks': list(self.other_stacks),
            'payouts': list(self.payouts),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'IcmConfig':
        return cls(
            oop_chips=float(data['oop_chips']),
            ip_chips=float(data['ip_chips']),
            other_stacks=[float(s) for s in data.get('other_stacks', [])],
            payouts=[float(p) for p in data.get('payouts', [])],
        )
