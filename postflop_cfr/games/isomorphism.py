"""
Suit isomorphism.

Suits are interchangeable until the board distinguishes them. A suit
permutation that maps the board onto itself and leaves both ranges
unchanged maps the whole game onto itself, so a chance card that is the
image of an earlier card under such a permutation need not be expanded:
its values are the earlier card's values with hands permuted.

The evaluator cache uses the same idea to group hands into evaluation
classes that share a strength computation.
"""

from itertools import permutations
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .cards import NUM_CARDS, NUM_SUITS, card_rank, card_suit, combo_index, enumerate_deals, make_card
from .ranges import PrivateHands, Range

SuitPair = Tuple[int, int]
SuitPerm = Tuple[int, ...]

SUIT_PAIRS: List[SuitPair] = [(a, b) for a in range(NUM_SUITS) for b in range(a + 1, NUM_SUITS)]

# Index 0 is the identity.
SUIT_PERMUTATIONS: List[SuitPerm] = list(permutations(range(NUM_SUITS)))
IDENTITY = SUIT_PERMUTATIONS[0]


def pair_to_perm(pair: SuitPair) -> SuitPerm:
    perm = list(range(NUM_SUITS))
    perm[pair[0]], perm[pair[1]] = pair[1], pair[0]
    return tuple(perm)


def compose(outer: SuitPerm, inner: SuitPerm) -> SuitPerm:
    """outer after inner."""
    return tuple(outer[inner[s]] for s in range(NUM_SUITS))


def permute_card(card: int, perm: SuitPerm) -> int:
    return make_card(card_rank(card), perm[card_suit(card)])


def permute_mask(mask: int, perm: SuitPerm) -> int:
    mask = int(mask)
    out = 0
    while mask:
        low = mask & -mask
        out |= 1 << permute_card(low.bit_length() - 1, perm)
        mask ^= low
    return out


def suit_swap_card(card: int, pair: SuitPair) -> int:
    return permute_card(card, pair_to_perm(pair))


def suit_swap_mask(mask: int, pair: SuitPair) -> int:
    return permute_mask(mask, pair_to_perm(pair))


def suit_rank_sets(mask: int) -> List[int]:
    """13-bit rank mask per suit."""
    sets = [0] * NUM_SUITS
    for c in range(NUM_CARDS):
        if mask & (1 << c):
            sets[card_suit(c)] |= 1 << card_rank(c)
    return sets


def board_suit_permutations(board_mask: int) -> List[SuitPerm]:
    """All suit permutations mapping the board onto itself, identity first."""
    sets = suit_rank_sets(board_mask)
    return [perm for perm in SUIT_PERMUTATIONS
            if all(sets[s] == sets[perm[s]] for s in range(NUM_SUITS))]


def board_symmetric_swaps(board_mask: int) -> List[SuitPair]:
    """Suit pairs whose swap leaves the board unchanged."""
    sets = suit_rank_sets(board_mask)
    return [pair for pair in SUIT_PAIRS if sets[pair[0]] == sets[pair[1]]]


def range_is_invariant(rng: Range, perm: SuitPerm) -> bool:
    weights = rng.weights
    for (c1, c2), w in rng.combos():
        if weights[combo_index(permute_card(c1, perm), permute_card(c2, perm))] != w:
            return False
    return True


def range_symmetric_swaps(ranges: Sequence[Range]) -> List[SuitPair]:
    """Suit pairs under which every range is invariant."""
    return [pair for pair in SUIT_PAIRS
            if all(range_is_invariant(r, pair_to_perm(pair)) for r in ranges)]


def symmetric_permutations(board_mask: int, ranges: Sequence[Range]) -> List[SuitPerm]:
    """Permutations preserving the board and every range, identity first."""
    return [perm for perm in board_suit_permutations(board_mask)
            if perm == IDENTITY or all(range_is_invariant(r, perm) for r in ranges)]


def hand_permutation_table(hands: PrivateHands, perm: SuitPerm) -> np.ndarray:
    """Index of the permuted hand for every hand (-1 when absent)."""
    table = np.full(hands.num_hands, -1, dtype=np.int64)
    for h, (c1, c2) in enumerate(hands.cards):
        table[h] = hands.index_of(permute_card(int(c1), perm), permute_card(int(c2), perm))
    return table


def hand_swap_table(hands: PrivateHands, pair: SuitPair) -> np.ndarray:
    return hand_permutation_table(hands, pair_to_perm(pair))


def canonical_deals(board_mask: int, num_cards: int,
                    perms: Sequence[SuitPerm]) -> List[Tuple[int, int, SuitPerm]]:
    """Deals of num_cards cards with their canonical representative.

    Returns (deal mask, canonical mask, perm) per deal in enumeration
    order, where perm maps the deal onto the canonical mask. A deal is
    canonical when it is the first of its orbit; then perm is the identity.
    """
    seen: Dict[int, int] = {}
    out = []
    for deal in enumerate_deals(board_mask, num_cards):
        match = None
        for perm in perms:
            image = permute_mask(deal, perm)
            if image != deal and image in seen:
                match = (image, perm)
                break
        if match is None:
            seen[deal] = len(seen)
            out.append((deal, deal, IDENTITY))
        else:
            out.append((deal, match[0], match[1]))
    return out


def group_isomorphic_hands(hands: PrivateHands, board_mask: int) -> np.ndarray:
    """Evaluation class per hand.

    Hands mapped onto each other by a board-preserving suit permutation
    share a class. Class ids are assigned in hand order, so class k's
    first member is the lowest-indexed hand of that class.
    """
    perms = board_suit_permutations(board_mask)
    classes = np.full(hands.num_hands, -1, dtype=np.int64)
    canonical_to_class = {}
    for h, (c1, c2) in enumerate(hands.cards):
        key = min(combo_index(permute_card(int(c1), perm), permute_card(int(c2), perm))
                  for perm in perms)
        if key not in canonical_to_class:
            canonical_to_class[key] = len(canonical_to_class)
        classes[h] = canonical_to_class[key]
    return classes
