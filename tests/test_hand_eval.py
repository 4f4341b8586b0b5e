"""
Tests for the 7-card hand evaluator.

Run with: pytest tests/test_hand_eval.py -v
"""

import numpy as np
import pytest

from postflop_cfr.games.cards import (
    HAND_FLUSH,
    HAND_FOUR_OF_A_KIND,
    HAND_FULL_HOUSE,
    HAND_HIGH_CARD,
    HAND_PAIR,
    HAND_STRAIGHT,
    HAND_STRAIGHT_FLUSH,
    HAND_THREE_OF_A_KIND,
    HAND_TWO_PAIR,
    cards_from_str,
    cards_to_mask,
)
from postflop_cfr.games.hand_eval import (
    compare_hands,
    evaluate_board_hands,
    evaluate_hand,
    evaluate_many_hands,
    evaluate_mask,
    hand_value_to_name,
    hand_value_to_type,
)


def value(text):
    return evaluate_hand(cards_from_str(text))


class TestCategories:

    @pytest.mark.parametrize("text,expected", [
        ("As Kd 9h 7c 4s 3d 2c", HAND_HIGH_CARD),
        ("As Ad 9h 7c 4s 3d 2c", HAND_PAIR),
        ("As Ad 9h 9c 4s 3d 2c", HAND_TWO_PAIR),
        ("As Ad Ah 7c 4s 3d 2c", HAND_THREE_OF_A_KIND),
        ("9s 8d 7h 6c 5s 3d 2c", HAND_STRAIGHT),
        ("As 2d 3h 4c 5s 9d Jc", HAND_STRAIGHT),
        ("As Ks 9s 7s 4s 3d 2c", HAND_FLUSH),
        ("As Ad Ah 7c 7s 3d 2c", HAND_FULL_HOUSE),
        ("As Ad Ah Ac 7s 3d 2c", HAND_FOUR_OF_A_KIND),
        ("9s 8s 7s 6s 5s 3d 2c", HAND_STRAIGHT_FLUSH),
    ])
    def test_category(self, text, expected):
        assert hand_value_to_type(value(text)) == expected

    def test_names(self):
        assert hand_value_to_name(value("As Ad Ah Ac 7s 3d 2c")) == 'Four of a Kind'

    def test_category_ordering(self):
        ladder = [
            "As Kd 9h 7c 4s 3d 2c",
            "As Ad 9h 7c 4s 3d 2c",
            "As Ad 9h 9c 4s 3d 2c",
            "As Ad Ah 7c 4s 3d 2c",
            "9s 8d 7h 6c 5s 3d 2c",
            "As Ks 9s 7s 4s 3d 2c",
            "As Ad Ah 7c 7s 3d 2c",
            "As Ad Ah Ac 7s 3d 2c",
            "9s 8s 7s 6s 5s 3d 2c",
        ]
        values = [value(t) for t in ladder]
        assert values == sorted(values)
        assert len(set(values)) == len(values)


class TestComparisons:

    def test_kicker(self):
        assert value("As Ad Kh 7c 4s 3d 2c") > value("As Ad Qh 7c 4s 3d 2c")

    def test_wheel_is_lowest_straight(self):
        assert value("As 2d 3h 4c 5s 9d Jc") < value("2s 3d 4h 5c 6s 9d Jc")

    def test_board_plays_is_a_tie(self):
        board = "As Ks Qs Js Ts"
        assert compare_hands(cards_from_str(board + " 2c 3d"), cards_from_str(board + " 4c 5d")) == 0

    def test_compare(self):
        board = "Ks Qd 7h 5c 3c"
        aces = cards_from_str(board + " Ah Ad")
        twos = cards_from_str(board + " 2h 2d")
        assert compare_hands(aces, twos) == 1
        assert compare_hands(twos, aces) == -1

    def test_mask_matches_list(self):
        cards = cards_from_str("As Ad 9h 9c 4s 3d 2c")
        assert evaluate_mask(np.int64(cards_to_mask(cards))) == evaluate_hand(cards)


class TestBatchEvaluation:

    def test_many_hands(self):
        hands = np.array([
            cards_from_str("As Kd 9h 7c 4s 3d 2c"),
            cards_from_str("9s 8s 7s 6s 5s 3d 2c"),
        ], dtype=np.int64)
        values = evaluate_many_hands(hands)
        assert values[0] == value("As Kd 9h 7c 4s 3d 2c")
        assert values[1] == value("9s 8s 7s 6s 5s 3d 2c")

    def test_board_hands_zero_when_blocked(self):
        board = cards_to_mask(cards_from_str("Ks Qd 7h 5c 3c"))
        hands = np.array([
            cards_to_mask(cards_from_str("Ah Ad")),
            cards_to_mask(cards_from_str("Ks 2d")),
        ], dtype=np.int64)
        out = np.zeros(2, dtype=np.int64)
        evaluate_board_hands(np.int64(board), hands, out)
        assert out[0] > 0
        assert out[1] == 0
