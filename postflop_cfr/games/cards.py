"""
52-card deck representation for Texas Hold'em.

Card encoding: card = rank * 4 + suit
- Ranks: 0=2, 1=3, ..., 8=T, 9=J, 10=Q, 11=K, 12=A
- Suits: 0=clubs, 1=diamonds, 2=hearts, 3=spades
- Card values: 0-51

Card sets are 52-bit masks stored in signed 64-bit integers so they mix
freely with other int64 arrays inside numba kernels.
"""

from itertools import combinations
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .errors import CardConflictError, InvalidBoardError

# Rank constants (0-indexed, 2 is lowest)
RANK_2 = 0
RANK_3 = 1
RANK_4 = 2
RANK_5 = 3
RANK_6 = 4
RANK_7 = 5
RANK_8 = 6
RANK_9 = 7
RANK_T = 8
RANK_J = 9
RANK_Q = 10
RANK_K = 11
RANK_A = 12

# Suit constants
CLUBS = 0
DIAMONDS = 1
HEARTS = 2
SPADES = 3

NUM_RANKS = 13
NUM_SUITS = 4
NUM_CARDS = 52
NUM_COMBOS = 1326

RANK_NAMES = ['2', '3', '4', '5', '6', '7', '8', '9', 'T', 'J', 'Q', 'K', 'A']
SUIT_NAMES = ['c', 'd', 'h', 's']

VALID_BOARD_LENGTHS = (0, 3, 4, 5)


def make_card(rank: int, suit: int) -> int:
    """Create card from rank and suit."""
    return rank * 4 + suit


def card_rank(card: int) -> int:
    """Get rank of card (0-12)."""
    return card // 4


def card_suit(card: int) -> int:
    """Get suit of card (0-3)."""
    return card % 4


def card_name(card: int) -> str:
    """Get human-readable card name like 'As', 'Kh', '2c'."""
    return RANK_NAMES[card_rank(card)] + SUIT_NAMES[card_suit(card)]


def card_from_name(name: str) -> int:
    """Parse card name like 'As', 'Kh', '2c'."""
    if len(name) != 2:
        raise ValueError(f"Invalid card name: {name!r}")
    rank = RANK_NAMES.index(name[0].upper())
    suit = SUIT_NAMES.index(name[1].lower())
    return make_card(rank, suit)


def cards_from_str(text: str) -> List[int]:
    """Parse a run of card names like 'AsKh7d'."""
    text = text.replace(' ', '')
    return [card_from_name(text[i:i + 2]) for i in range(0, len(text), 2)]


def cards_to_str(cards: Iterable[int]) -> str:
    """Convert list of cards to string."""
    return ' '.join(card_name(c) for c in cards)


def cards_to_mask(cards: Iterable[int]) -> int:
    """Convert card list to 64-bit mask."""
    mask = 0
    for c in cards:
        mask |= (1 << c)
    return mask


def mask_to_cards(mask: int) -> List[int]:
    """Convert 64-bit mask to card list."""
    return [c for c in range(NUM_CARDS) if mask & (1 << c)]


def combo_index(c1: int, c2: int) -> int:
    """Stable index 0..1325 of an unordered two-card combo."""
    lo, hi = (c1, c2) if c1 < c2 else (c2, c1)
    return hi * (hi - 1) // 2 + lo


def combo_from_index(index: int) -> Tuple[int, int]:
    """Inverse of combo_index, returns (low card, high card)."""
    hi = int((1 + np.sqrt(1 + 8 * index)) // 2)
    while hi * (hi - 1) // 2 > index:
        hi -= 1
    while (hi + 1) * hi // 2 <= index:
        hi += 1
    return index - hi * (hi - 1) // 2, hi


def all_combos() -> List[Tuple[int, int]]:
    """All 1326 combos ordered by combo_index."""
    return [combo_from_index(i) for i in range(NUM_COMBOS)]


def validate_board(board: Sequence[int]) -> Tuple[int, ...]:
    """Check board length and uniqueness, return it as a tuple."""
    board = tuple(int(c) for c in board)
    if len(board) not in VALID_BOARD_LENGTHS:
        raise InvalidBoardError(
            f"Board must have 0, 3, 4 or 5 cards, got {len(board)}"
        )
    for c in board:
        if not 0 <= c < NUM_CARDS:
            raise InvalidBoardError(f"Card out of range: {c}")
    if len(set(board)) != len(board):
        raise InvalidBoardError(f"Board repeats a card: {cards_to_str(board)}")
    return board


def check_card_conflicts(*groups: Iterable[int]) -> int:
    """Raise CardConflictError if any card appears twice across groups.

    Returns the mask of all cards.
    """
    mask = 0
    for group in groups:
        for c in group:
            bit = 1 << int(c)
            if mask & bit:
                raise CardConflictError(f"Card {card_name(int(c))} is used twice")
            mask |= bit
    return mask


def enumerate_deals(dead_mask: int, num_cards: int) -> List[int]:
    """All masks of num_cards cards avoiding dead_mask, in lexicographic card order."""
    remaining = [c for c in range(NUM_CARDS) if not dead_mask & (1 << c)]
    return [cards_to_mask(combo) for combo in combinations(remaining, num_cards)]


# Hand type constants (for hand evaluation)
HAND_HIGH_CARD = 0
HAND_PAIR = 1
HAND_TWO_PAIR = 2
HAND_THREE_OF_A_KIND = 3
HAND_STRAIGHT = 4
HAND_FLUSH = 5
HAND_FULL_HOUSE = 6
HAND_FOUR_OF_A_KIND = 7
HAND_STRAIGHT_FLUSH = 8

HAND_NAMES = [
    'High Card', 'Pair', 'Two Pair', 'Three of a Kind',
    'Straight', 'Flush', 'Full House', 'Four of a Kind', 'Straight Flush'
]
