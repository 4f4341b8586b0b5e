"""
Shared spots for the solver tests.

All spots are small river, turn or flop trees so numba compilation dominates
the runtime, not the iterations.
"""

from itertools import combinations

import pytest

from postflop_cfr.games.bet_sizing import BetSizeOptions, PotRelative
from postflop_cfr.games import cards as cards_module
from postflop_cfr.games.cards import RANK_NAMES, cards_from_str, make_card
from postflop_cfr.games.ranges import Range
from postflop_cfr.games.tree import TreeConfig
from postflop_cfr.solvers.config import SolverConfig


def pair_combos(rank_name):
    """All six combos of a pocket pair, e.g. pair_combos('A')."""
    rank = RANK_NAMES.index(rank_name)
    cards = [make_card(rank, s) for s in range(4)]
    return list(combinations(cards, 2))


def pairs_range(*rank_names):
    combos = []
    for name in rank_names:
        combos.extend(pair_combos(name))
    return Range.from_combos(combos)


def pot_sizes(bet, raise_=()):
    """Same options for both players."""
    options = BetSizeOptions(bet=tuple(PotRelative(r) for r in bet),
                             raise_=tuple(PotRelative(r) for r in raise_))
    return (options, options)


def river_config(oop_range, ip_range, board='KsQd7h5c3c', pot=100, stack=100, **kwargs):
    kwargs.setdefault('river_bet_sizes', pot_sizes([1.0]))
    return TreeConfig(
        board=tuple(cards_from_str(board)),
        oop_range=oop_range,
        ip_range=ip_range,
        starting_pot=pot,
        effective_stack=stack,
        **kwargs,
    )


@pytest.fixture
def aces_vs_deuces():
    """OOP holds the nuts every time; IP never wins."""
    return river_config(pairs_range('A'), pairs_range('2'))


@pytest.fixture
def polar_vs_bluffcatcher():
    """OOP: aces plus eight-six air; IP: jacks that beat only the air."""
    air = Range.from_combos([(cards_from_str('8h')[0], cards_from_str('6h')[0]),
                             (cards_from_str('8d')[0], cards_from_str('6d')[0]),
                             (cards_from_str('8s')[0], cards_from_str('6s')[0])])
    oop = Range(pairs_range('A').weights + air.weights)
    return river_config(oop, pairs_range('J'))


@pytest.fixture
def board_plays():
    """Royal flush on board: every showdown is a tie."""
    rng = pairs_range('9', '8', '2')
    return river_config(rng, rng, board='AsKsQsJsTs')


@pytest.fixture
def monotone_turn():
    """Turn spot whose river deals fold by suit isomorphism."""
    sizes = pot_sizes([0.5])
    return TreeConfig(
        board=tuple(cards_from_str('KsQs7s2s')),
        oop_range=pairs_range('A'),
        ip_range=pairs_range('J'),
        starting_pot=100,
        effective_stack=100,
        turn_bet_sizes=sizes,
        river_bet_sizes=sizes,
        add_allin_threshold=0.0,
    )


@pytest.fixture
def monotone_flop():
    """Flop spot: bets on the flop only, the turn and river check down."""
    return TreeConfig(
        board=tuple(cards_from_str('KsQs7s')),
        oop_range=pairs_range('A', 'T'),
        ip_range=pairs_range('J', '9'),
        starting_pot=100,
        effective_stack=100,
        flop_bet_sizes=pot_sizes([0.5]),
        add_allin_threshold=0.0,
    )


@pytest.fixture
def short_deck(monkeypatch):
    """Deal from the eight deuces and treys only."""
    monkeypatch.setattr(cards_module, 'NUM_CARDS', 8)


@pytest.fixture
def empty_board(short_deck):
    """No board and no chips behind: flop, turn and river are dealt out."""
    return TreeConfig(
        board=(),
        oop_range=pairs_range('A'),
        ip_range=pairs_range('K'),
        starting_pot=100,
        effective_stack=0,
    )


@pytest.fixture
def fast_config():
    return SolverConfig(max_iterations=200, exploitability_every=10, num_threads=2)
