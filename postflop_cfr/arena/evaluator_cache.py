"""
Showdown strength cache.

For every distinct five-card board reached by a showdown terminal, the
strength of each player's hands (0 when the board blocks the hand) and
the hands of that board sorted by ascending strength. Built once per
arena and read-only afterwards; the terminal kernel sweeps the sorted
order to resolve showdowns in linear time per node.
"""

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit

from postflop_cfr.games.hand_eval import evaluate_board_hands, evaluate_mask
from postflop_cfr.games.isomorphism import group_isomorphic_hands
from postflop_cfr.games.ranges import PrivateHands

logger = logging.getLogger(__name__)


@njit(cache=True, nogil=True)
def _sorted_valid(strength: np.ndarray, n: int, order_out: np.ndarray) -> int:
    """Write indices of non-blocked hands in ascending strength order, return their count."""
    order = np.argsort(strength[:n], kind='mergesort')
    count = 0
    for k in range(n):
        h = order[k]
        if strength[h] > 0:
            order_out[count] = h
            count += 1
    return count


@dataclass
class EvaluatorCache:
    """
    Arrays (B boards, H max hands):
    - board_masks: (B,)
    - strength: (B, 2, H) int64, 0 for blocked or padding hands
    - order: (B, 2, H) int64, first valid_count entries are sorted hand indices
    - valid_count: (B, 2)
    """
    board_masks: np.ndarray
    strength: np.ndarray
    order: np.ndarray
    valid_count: np.ndarray

    @classmethod
    def build(cls, board_masks: np.ndarray, hand_masks: np.ndarray, num_hands: np.ndarray,
              group_hands: bool = False, hand_cards: np.ndarray = None) -> 'EvaluatorCache':
        """
        Evaluate every hand on every board.

        With group_hands, hands in one suit-isomorphism class are evaluated
        once and share the result; hand_cards is then required.
        """
        num_boards = len(board_masks)
        h_max = hand_masks.shape[1]
        strength = np.zeros((num_boards, 2, h_max), dtype=np.int64)
        order = np.zeros((num_boards, 2, h_max), dtype=np.int64)
        valid_count = np.zeros((num_boards, 2), dtype=np.int64)

        for b, board in enumerate(board_masks):
            board = int(board)
            for p in range(2):
                n = int(num_hands[p])
                if group_hands:
                    _grouped_strength(board, hand_cards[p, :n], hand_masks[p, :n],
                                      strength[b, p, :n])
                else:
                    evaluate_board_hands(np.int64(board), hand_masks[p, :n], strength[b, p, :n])
                valid_count[b, p] = _sorted_valid(strength[b, p], n, order[b, p])

        logger.debug("Evaluator cache: %d boards, %d hands max", num_boards, h_max)
        return cls(np.asarray(board_masks, dtype=np.int64), strength, order, valid_count)

    @property
    def num_boards(self) -> int:
        return int(self.board_masks.shape[0])

    @property
    def nbytes(self) -> int:
        return int(self.strength.nbytes + self.order.nbytes + self.valid_count.nbytes)


def _grouped_strength(board: int, cards: np.ndarray, masks: np.ndarray, out: np.ndarray) -> None:
    hands = PrivateHands(cards=cards, masks=masks,
                         weights=np.ones(len(masks)), raw_weights=np.ones(len(masks), dtype=np.float32))
    classes = group_isomorphic_hands(hands, board)
    by_class = {}
    for h in range(len(masks)):
        hm = int(masks[h])
        if hm & board:
            out[h] = 0
            continue
        c = int(classes[h])
        if c not in by_class:
            by_class[c] = evaluate_mask(np.int64(board | hm))
        out[h] = by_class[c]
