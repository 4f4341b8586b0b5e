"""
Fast 7-card poker hand evaluator.

Returns a hand value where higher = better.
Hand value encoding:
- Bits 20-23: Hand type (0-8, where 8=straight flush)
- Bits 0-19: Kickers/rank info for tie-breaking

Every lookup is keyed by a 13-bit rank pattern. The tables are built
once at import; the numba kernels below only do table reads and bit
operations, so an evaluation is constant-time and allocation-free.
"""

from typing import List, Sequence

import numpy as np
from numba import njit, prange

from .cards import (
    NUM_RANKS,
    HAND_HIGH_CARD, HAND_PAIR, HAND_TWO_PAIR, HAND_THREE_OF_A_KIND,
    HAND_STRAIGHT, HAND_FLUSH, HAND_FULL_HOUSE, HAND_FOUR_OF_A_KIND,
    HAND_STRAIGHT_FLUSH, HAND_NAMES,
)

NUM_PATTERNS = 1 << NUM_RANKS
_WHEEL = 0b1000000001111  # A, 2, 3, 4, 5


def _build_tables():
    """Lookup tables indexed by rank mask."""
    popcount = np.zeros(NUM_PATTERNS, dtype=np.int64)
    high_bit = np.full(NUM_PATTERNS, -1, dtype=np.int64)
    straight_high = np.full(NUM_PATTERNS, -1, dtype=np.int64)
    top_five = np.zeros(NUM_PATTERNS, dtype=np.int64)

    for mask in range(1, NUM_PATTERNS):
        popcount[mask] = popcount[mask >> 1] + (mask & 1)
        high_bit[mask] = mask.bit_length() - 1

        for high in range(12, 3, -1):
            run = 0b11111 << (high - 4)
            if mask & run == run:
                straight_high[mask] = high
                break
        else:
            if mask & _WHEEL == _WHEEL:
                straight_high[mask] = 3

        value = 0
        rest = mask
        for i in range(5):
            if rest == 0:
                break
            r = rest.bit_length() - 1
            value |= r << (16 - i * 4)
            rest &= ~(1 << r)
        top_five[mask] = value

    return popcount, high_bit, straight_high, top_five


POPCOUNT, HIGH_BIT, STRAIGHT_HIGH, TOP_FIVE = _build_tables()


@njit(cache=True, nogil=True)
def _top_ranks(mask: int, n: int, shift: int) -> int:
    """Encode the n highest ranks of mask, 4 bits each, starting at shift."""
    value = 0
    rest = mask
    for i in range(n):
        if rest == 0:
            break
        r = HIGH_BIT[rest]
        value |= r << (shift - i * 4)
        rest &= ~(np.int64(1) << r)
    return value


@njit(cache=True, nogil=True)
def _rank_value(seen1: int, seen2: int, seen3: int, seen4: int,
                s0: int, s1: int, s2: int, s3: int) -> int:
    """Hand value from per-multiplicity rank masks and per-suit rank masks.

    seenK has bit r set when rank r appears at least K times.
    """
    flush_mask = 0
    if POPCOUNT[s0] >= 5:
        flush_mask = s0
    elif POPCOUNT[s1] >= 5:
        flush_mask = s1
    elif POPCOUNT[s2] >= 5:
        flush_mask = s2
    elif POPCOUNT[s3] >= 5:
        flush_mask = s3

    if flush_mask != 0:
        high = STRAIGHT_HIGH[flush_mask]
        if high >= 0:
            return (HAND_STRAIGHT_FLUSH << 20) | high
        return (HAND_FLUSH << 20) | TOP_FIVE[flush_mask]

    if seen4 != 0:
        quads = HIGH_BIT[seen4]
        kicker = HIGH_BIT[seen1 & ~(np.int64(1) << quads)]
        return (HAND_FOUR_OF_A_KIND << 20) | (quads << 4) | kicker

    trips_mask = seen3
    if trips_mask != 0:
        trips = HIGH_BIT[trips_mask]
        pair_mask = seen2 & ~(np.int64(1) << trips)
        if pair_mask != 0:
            return (HAND_FULL_HOUSE << 20) | (trips << 4) | HIGH_BIT[pair_mask]

    high = STRAIGHT_HIGH[seen1]
    if high >= 0:
        return (HAND_STRAIGHT << 20) | high

    if trips_mask != 0:
        trips = HIGH_BIT[trips_mask]
        singles = seen1 & ~(np.int64(1) << trips)
        return (HAND_THREE_OF_A_KIND << 20) | (trips << 8) | _top_ranks(singles, 2, 4)

    if seen2 != 0:
        pair0 = HIGH_BIT[seen2]
        rest_pairs = seen2 & ~(np.int64(1) << pair0)
        if rest_pairs != 0:
            pair1 = HIGH_BIT[rest_pairs]
            kickers = seen1 & ~(np.int64(1) << pair0) & ~(np.int64(1) << pair1)
            return ((HAND_TWO_PAIR << 20) | (pair0 << 8) | (pair1 << 4)
                    | _top_ranks(kickers, 1, 0))
        singles = seen1 & ~(np.int64(1) << pair0)
        return (HAND_PAIR << 20) | (pair0 << 12) | _top_ranks(singles, 3, 8)

    return (HAND_HIGH_CARD << 20) | TOP_FIVE[seen1]


@njit(cache=True, nogil=True)
def evaluate_mask(mask: int) -> int:
    """Evaluate the cards in a 52-bit mask (5 to 7 cards)."""
    seen1 = 0
    seen2 = 0
    seen3 = 0
    seen4 = 0
    s0 = 0
    s1 = 0
    s2 = 0
    s3 = 0
    for c in range(52):
        if (mask >> c) & 1 == 0:
            continue
        bit = np.int64(1) << (c // 4)
        if seen3 & bit:
            seen4 |= bit
        elif seen2 & bit:
            seen3 |= bit
        elif seen1 & bit:
            seen2 |= bit
        else:
            seen1 |= bit
        suit = c % 4
        if suit == 0:
            s0 |= bit
        elif suit == 1:
            s1 |= bit
        elif suit == 2:
            s2 |= bit
        else:
            s3 |= bit
    return _rank_value(seen1, seen2, seen3, seen4, s0, s1, s2, s3)


@njit(cache=True, nogil=True)
def evaluate_7cards(cards: np.ndarray) -> int:
    """Evaluate 7-card hand, return hand value (higher = better)."""
    mask = 0
    for c in cards:
        mask |= np.int64(1) << c
    return evaluate_mask(mask)


def evaluate_hand(cards: Sequence[int]) -> int:
    """Evaluate a 5 to 7 card hand from a Python list."""
    return evaluate_7cards(np.array(cards, dtype=np.int64))


def hand_value_to_type(value: int) -> int:
    """Extract hand type from hand value."""
    return value >> 20


def hand_value_to_name(value: int) -> str:
    """Get hand type name from hand value."""
    return HAND_NAMES[hand_value_to_type(value)]


def compare_hands(cards1: List[int], cards2: List[int]) -> int:
    """Compare two 7-card hands. Returns 1 if hand1 wins, -1 if hand2 wins, 0 if tie."""
    v1 = evaluate_hand(cards1)
    v2 = evaluate_hand(cards2)
    if v1 > v2:
        return 1
    elif v2 > v1:
        return -1
    return 0


@njit(cache=True, parallel=True)
def evaluate_many_hands(hands: np.ndarray) -> np.ndarray:
    """Evaluate many 7-card hands.

    Args:
        hands: (N, 7) array of card indices

    Returns:
        (N,) array of hand values
    """
    n = hands.shape[0]
    values = np.zeros(n, dtype=np.int64)
    for i in prange(n):
        values[i] = evaluate_7cards(hands[i])
    return values


@njit(cache=True, nogil=True)
def evaluate_board_hands(board_mask: int, hand_masks: np.ndarray, out: np.ndarray) -> None:
    """Strength of every hand on a 5-card board; 0 for hands blocked by the board.

    Valid hands always score above 0 because the encoding of the weakest
    possible high card (7-5-4-3-2) is non-zero.
    """
    for h in range(hand_masks.shape[0]):
        hm = hand_masks[h]
        if hm & board_mask:
            out[h] = 0
        else:
            out[h] = evaluate_mask(board_mask | hm)
