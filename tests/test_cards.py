"""
Tests for card encoding, masks and combo indexing.

Run with: pytest tests/test_cards.py -v
"""

import pytest

from postflop_cfr.games.cards import (
    NUM_COMBOS,
    all_combos,
    card_from_name,
    card_name,
    card_rank,
    card_suit,
    cards_from_str,
    cards_to_mask,
    check_card_conflicts,
    combo_from_index,
    combo_index,
    enumerate_deals,
    make_card,
    mask_to_cards,
    validate_board,
)
from postflop_cfr.games.errors import CardConflictError, ConfigError, InvalidBoardError


class TestCardEncoding:

    def test_card_layout(self):
        """card = rank * 4 + suit."""
        assert make_card(0, 0) == 0
        assert make_card(12, 3) == 51
        assert card_rank(card_from_name('As')) == 12
        assert card_suit(card_from_name('As')) == 3

    def test_name_round_trip(self):
        for card in range(52):
            assert card_from_name(card_name(card)) == card

    def test_parse_run(self):
        assert cards_from_str('AsKh 2c') == [51, 46, 0]

    def test_bad_name(self):
        with pytest.raises(ValueError):
            card_from_name('A')

    def test_mask_round_trip(self):
        cards = [0, 17, 51]
        assert mask_to_cards(cards_to_mask(cards)) == cards


class TestCombos:

    def test_index_is_order_free(self):
        assert combo_index(5, 9) == combo_index(9, 5)

    def test_index_covers_all_combos(self):
        indices = {combo_index(a, b) for a in range(52) for b in range(a + 1, 52)}
        assert indices == set(range(NUM_COMBOS))

    def test_inverse(self):
        for i in (0, 1, 2, 100, 1000, NUM_COMBOS - 1):
            lo, hi = combo_from_index(i)
            assert lo < hi
            assert combo_index(lo, hi) == i

    def test_all_combos(self):
        combos = all_combos()
        assert len(combos) == NUM_COMBOS
        assert combos[0] == (0, 1)
        assert combos[-1] == (50, 51)


class TestBoardValidation:

    @pytest.mark.parametrize("board", [(), (0, 1, 2), (0, 1, 2, 3), (0, 1, 2, 3, 4)])
    def test_valid_lengths(self, board):
        assert validate_board(board) == board

    @pytest.mark.parametrize("board", [(0,), (0, 1), (0, 1, 2, 3, 4, 5)])
    def test_invalid_lengths(self, board):
        with pytest.raises(InvalidBoardError):
            validate_board(board)

    def test_duplicate_card(self):
        with pytest.raises(InvalidBoardError):
            validate_board((0, 0, 1))

    def test_out_of_range(self):
        with pytest.raises(InvalidBoardError):
            validate_board((0, 1, 52))

    def test_board_errors_are_config_errors(self):
        with pytest.raises(ConfigError):
            validate_board((1, 1, 1))

    def test_card_conflicts(self):
        assert check_card_conflicts([0, 1], [2]) == 0b111
        with pytest.raises(CardConflictError):
            check_card_conflicts([0, 1], [1, 2])


class TestDeals:

    def test_turn_deals_avoid_board(self):
        board = cards_to_mask([0, 1, 2])
        deals = enumerate_deals(board, 1)
        assert len(deals) == 49
        assert all(d & board == 0 for d in deals)

    def test_flop_deal_count(self):
        assert len(enumerate_deals(0, 3)) == 22100

    def test_lexicographic_order(self):
        deals = enumerate_deals(cards_to_mask([0]), 1)
        assert mask_to_cards(deals[0]) == [1]
        assert mask_to_cards(deals[-1]) == [51]
