"""
Tests for navigating solved games.

Run with: pytest tests/test_results.py -v
"""

import numpy as np
import pytest

from postflop_cfr.games.cards import card_from_name, cards_from_str
from postflop_cfr.games.errors import CardConflictError, SolverStateError
from postflop_cfr.games.isomorphism import IDENTITY
from postflop_cfr.solvers import PostflopSolver, SolvedGame, SolverConfig


@pytest.fixture
def turn_solver(monotone_turn):
    solver = PostflopSolver(monotone_turn, SolverConfig(num_threads=2))
    solver.iterate(20)
    yield solver
    solver.close()


@pytest.fixture
def river_solver(aces_vs_deuces):
    solver = PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1))
    yield solver
    solver.close()


def checked_to_river(solver):
    game = SolvedGame(solver)
    game.play(0)
    game.play(0)
    return game


class TestNavigation:
    """Moving through the tree by action and deal."""

    def test_root(self, turn_solver):
        game = SolvedGame(turn_solver)
        assert game.current_player() == 0
        assert [a.name for a in game.available_actions()] == ['Check', 'Bet 50']
        assert not game.is_terminal()
        assert not game.is_chance()
        assert game.pot() == 100

    def test_play_to_chance(self, turn_solver):
        game = checked_to_river(turn_solver)
        assert game.is_chance()
        assert game.current_player() == -1
        assert game.available_actions() == []
        assert game.history == [0, 0]

    def test_play_at_chance_rejected(self, turn_solver):
        game = checked_to_river(turn_solver)
        with pytest.raises(SolverStateError):
            game.play(0)

    def test_deal_at_decision_rejected(self, turn_solver):
        game = SolvedGame(turn_solver)
        with pytest.raises(SolverStateError):
            game.deal(card_from_name('2c'))

    def test_action_out_of_range(self, turn_solver):
        game = SolvedGame(turn_solver)
        with pytest.raises(IndexError):
            game.play(2)

    def test_deal_board_card_rejected(self, turn_solver):
        game = checked_to_river(turn_solver)
        with pytest.raises(CardConflictError):
            game.deal(card_from_name('Ks'))

    def test_canonical_deal(self, turn_solver):
        game = checked_to_river(turn_solver)
        game.deal(card_from_name('2c'))
        assert game.frame == IDENTITY
        assert set(game.board()) == set(cards_from_str('KsQs7s2s2c'))
        assert game.current_player() == 0

    def test_isomorphic_deal(self, turn_solver):
        game = checked_to_river(turn_solver)
        game.deal(card_from_name('2d'))
        assert game.frame != IDENTITY
        assert set(game.board()) == set(cards_from_str('KsQs7s2s2d'))
        assert game.history[-1] == (card_from_name('2d'),)

    def test_back_to_root(self, turn_solver):
        game = checked_to_river(turn_solver)
        game.deal(card_from_name('2h'))
        game.back_to_root()
        assert game.node == 0
        assert game.frame == IDENTITY
        assert game.history == []

    def test_walk_to_terminal(self, river_solver):
        game = SolvedGame(river_solver)
        game.play(1)
        game.play(0)
        assert game.is_terminal()
        assert game.current_player() == -1


class TestResults:
    """Per-hand results at the current node."""

    def test_strategy_shape(self, turn_solver):
        game = SolvedGame(turn_solver)
        strategy = game.strategy()
        assert strategy.shape == (2, 6)
        np.testing.assert_allclose(strategy.sum(axis=0), 1.0)
        np.testing.assert_allclose(game.current_strategy().sum(axis=0), 1.0)

    def test_strategy_needs_decision(self, turn_solver):
        game = checked_to_river(turn_solver)
        with pytest.raises(SolverStateError):
            game.strategy()

    def test_uniform_expected_values(self, river_solver):
        game = SolvedGame(river_solver)
        np.testing.assert_allclose(game.expected_values(0), 75.0)
        np.testing.assert_allclose(game.expected_values(1), -75.0)

    def test_showdown_equity(self, river_solver):
        game = SolvedGame(river_solver)
        game.play(0)
        game.play(0)
        np.testing.assert_allclose(game.equity(0), 1.0)
        np.testing.assert_allclose(game.equity(1), 0.0)

    def test_root_weights(self, river_solver):
        game = SolvedGame(river_solver)
        np.testing.assert_allclose(game.weights(0), 1.0 / 6)
        np.testing.assert_allclose(game.normalized_weights(1).sum(), 1.0)

    @pytest.mark.parametrize("dealt", ['Ac', 'Ad', 'Ah'])
    def test_dealt_card_blocks_hands(self, turn_solver, dealt):
        """Whichever real card comes, the hands holding it drop out."""
        game = checked_to_river(turn_solver)
        card = card_from_name(dealt)
        game.deal(card)
        hands = turn_solver.hands[0]
        weights = game.weights(0)
        ev = game.expected_values(0)
        for h, (c1, c2) in enumerate(hands.cards):
            if card in (c1, c2):
                assert weights[h] == 0.0
                assert np.isnan(ev[h])
            else:
                assert weights[h] > 0.0
                assert np.isfinite(ev[h])

    def test_isomorphic_deals_agree(self, turn_solver):
        """Swapping clubs and diamonds maps one runout onto the other."""
        hands = turn_solver.hands[0]
        values = {}
        for dealt, held in (('Ac', 'Ad'), ('Ad', 'Ac')):
            game = checked_to_river(turn_solver)
            game.deal(card_from_name(dealt))
            h = hands.index_of(card_from_name(held), card_from_name('As'))
            values[dealt] = game.expected_values(0)[h]
        assert values['Ad'] == pytest.approx(values['Ac'], rel=1e-5, abs=1e-6)

    def test_summary(self, river_solver):
        summary = SolvedGame(river_solver).summary()
        assert summary['type'] == 'DECISION'
        assert summary['player'] == 0
        assert summary['actions'] == ['Check', 'AllIn 100']
        assert summary['frequencies'] == pytest.approx([0.5, 0.5])
        assert summary['ev_0'] == pytest.approx(75.0)
        assert summary['ev_1'] == pytest.approx(-75.0)
        assert set(summary['board'].split()) == {'Ks', 'Qd', '7h', '5c', '3c'}
