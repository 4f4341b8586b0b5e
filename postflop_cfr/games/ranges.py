"""
Weighted starting-hand ranges and their board-filtered hand sets.

A Range assigns a weight in [0, 1] to each of the 1326 two-card combos.
PrivateHands is the fixed, indexed set of combos a player can hold on a
given board: combos touching the board or with zero weight are dropped,
and the remaining weights are normalized to a probability mass.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .cards import NUM_CARDS, NUM_COMBOS, combo_index, combo_from_index, card_name
from .errors import EmptyRangeError, InvalidRangeError

logger = logging.getLogger(__name__)

Combo = Tuple[int, int]


def _check_combo(c1: int, c2: int) -> Combo:
    c1, c2 = int(c1), int(c2)
    if not (0 <= c1 < NUM_CARDS and 0 <= c2 < NUM_CARDS) or c1 == c2:
        raise InvalidRangeError(f"Invalid combo: ({c1}, {c2})")
    return (c1, c2) if c1 < c2 else (c2, c1)


class Range:
    """Weights over all 1326 combos, indexed by combo_index."""

    def __init__(self, weights: Optional[np.ndarray] = None):
        if weights is None:
            weights = np.zeros(NUM_COMBOS, dtype=np.float32)
        weights = np.asarray(weights, dtype=np.float32)
        if weights.shape != (NUM_COMBOS,):
            raise InvalidRangeError(f"Range needs {NUM_COMBOS} weights, got {weights.shape}")
        if np.any(weights < 0.0) or np.any(weights > 1.0) or not np.all(np.isfinite(weights)):
            raise InvalidRangeError("Range weights must lie in [0, 1]")
        self._weights = weights.copy()
        self._weights.flags.writeable = False

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[Combo, float]]) -> 'Range':
        """Build from ((card1, card2), weight) pairs; later pairs overwrite."""
        weights = np.zeros(NUM_COMBOS, dtype=np.float32)
        for (c1, c2), w in pairs:
            c1, c2 = _check_combo(c1, c2)
            w = float(w)
            if not 0.0 <= w <= 1.0:
                raise InvalidRangeError(f"Weight {w} for {card_name(c1)}{card_name(c2)} outside [0, 1]")
            weights[combo_index(c1, c2)] = w
        return cls(weights)

    @classmethod
    def from_dict(cls, mapping: Mapping[Combo, float]) -> 'Range':
        return cls.from_pairs(mapping.items())

    @classmethod
    def from_combos(cls, combos: Iterable[Combo], weight: float = 1.0) -> 'Range':
        return cls.from_pairs((combo, weight) for combo in combos)

    @classmethod
    def uniform(cls, weight: float = 1.0) -> 'Range':
        return cls(np.full(NUM_COMBOS, weight, dtype=np.float32))

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    def weight(self, c1: int, c2: int) -> float:
        c1, c2 = _check_combo(c1, c2)
        return float(self._weights[combo_index(c1, c2)])

    def combos(self) -> List[Tuple[Combo, float]]:
        """Non-zero combos in combo_index order."""
        return [(combo_from_index(i), float(self._weights[i]))
                for i in np.flatnonzero(self._weights)]

    def is_empty(self) -> bool:
        return not np.any(self._weights > 0)

    def to_pairs(self) -> List[List]:
        """JSON-friendly [[c1, c2, weight], ...] list."""
        return [[c1, c2, w] for (c1, c2), w in self.combos()]

    @classmethod
    def from_list(cls, items: Iterable[Iterable]) -> 'Range':
        return cls.from_pairs(((int(c1), int(c2)), float(w)) for c1, c2, w in items)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Range):
            return NotImplemented
        return np.array_equal(self._weights, other._weights)

    def __len__(self) -> int:
        return int(np.count_nonzero(self._weights))

    def __repr__(self) -> str:
        return f"Range({len(self)} combos)"


@dataclass(eq=False)
class PrivateHands:
    """Board-filtered hands of one player.

    cards[h] = (low card, high card); masks[h] = card mask; weights[h] is
    the normalized probability mass; raw_weights[h] is the range weight.
    """
    cards: np.ndarray        # (n, 2) int64
    masks: np.ndarray        # (n,) int64
    weights: np.ndarray      # (n,) float64, sums to 1
    raw_weights: np.ndarray  # (n,) float32

    @classmethod
    def from_range(cls, rng: Range, board_mask: int, player: int = 0) -> 'PrivateHands':
        """Apply card removal against the board and index the survivors."""
        cards = []
        raw = []
        for i in np.flatnonzero(rng.weights):
            c1, c2 = combo_from_index(int(i))
            if board_mask & ((1 << c1) | (1 << c2)):
                continue
            cards.append((c1, c2))
            raw.append(rng.weights[i])

        if not cards:
            raise EmptyRangeError(player)

        # combo_from_index order is by high card; re-sort by (low, high)
        order = sorted(range(len(cards)), key=lambda k: cards[k])
        cards_arr = np.array([cards[k] for k in order], dtype=np.int64)
        raw_arr = np.array([raw[k] for k in order], dtype=np.float32)
        masks = (np.int64(1) << cards_arr[:, 0]) | (np.int64(1) << cards_arr[:, 1])
        weights = raw_arr.astype(np.float64)
        weights /= weights.sum()

        removed = len(rng) - len(cards)
        logger.debug("Player %d: %d hands, %d removed by board", player, len(cards), removed)
        return cls(cards=cards_arr, masks=masks.astype(np.int64),
                   weights=weights, raw_weights=raw_arr)

    @property
    def num_hands(self) -> int:
        return self.cards.shape[0]

    def __len__(self) -> int:
        return self.num_hands

    def index_of(self, c1: int, c2: int) -> int:
        """Index of a combo, or -1 if the player cannot hold it."""
        c1, c2 = _check_combo(c1, c2)
        return self._index_map().get((c1, c2), -1)

    def _index_map(self) -> Dict[Combo, int]:
        cache = self.__dict__.get('_index_cache')
        if cache is None:
            cache = {(int(a), int(b)): h for h, (a, b) in enumerate(self.cards)}
            self.__dict__['_index_cache'] = cache
        return cache

    def names(self) -> List[str]:
        return [card_name(int(b)) + card_name(int(a)) for a, b in self.cards]

    def same_hand_table(self, other: 'PrivateHands') -> np.ndarray:
        """For each of our hands, the index of the identical hand in other (-1 if absent)."""
        table = np.full(self.num_hands, -1, dtype=np.int64)
        for h, (a, b) in enumerate(self.cards):
            table[h] = other.index_of(int(a), int(b))
        return table
