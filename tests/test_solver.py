"""
Tests for the post-flop solver driver.

Run with: pytest tests/test_solver.py -v
"""

import threading

import numpy as np
import pytest

from conftest import pairs_range, river_config
from postflop_cfr.arena.allocator import BlockAllocator, BoundedAllocator, TrackingAllocator
from postflop_cfr.engine.discount import DiscountSchedule
from postflop_cfr.games.cards import cards_from_str
from postflop_cfr.games.errors import ArenaAllocationError, CardConflictError, ConfigError, EmptyRangeError
from postflop_cfr.games.ranges import Range
from postflop_cfr.solvers import PostflopSolver, SolvedGame, SolverConfig, regret_matching


def node_after(solver, *actions):
    game = SolvedGame(solver)
    for a in actions:
        game.play(a)
    return game.node


class TestRegretMatching:
    """Strategy from a regret block."""

    def test_positive_part_normalized(self):
        block = np.array([[3.0, -1.0], [1.0, -2.0]])
        strategy = regret_matching(block)
        np.testing.assert_allclose(strategy[:, 0], [0.75, 0.25])
        np.testing.assert_allclose(strategy[:, 1], [0.5, 0.5])

    def test_columns_sum_to_one(self):
        rng = np.random.default_rng(0)
        strategy = regret_matching(rng.normal(size=(4, 30)))
        np.testing.assert_allclose(strategy.sum(axis=0), 1.0)


class TestSolverConfig:
    """Run configuration."""

    @pytest.mark.parametrize("kwargs", [
        {'max_iterations': 0},
        {'exploitability_every': 0},
        {'num_threads': 0},
        {'target_exploitability': -1.0},
        {'time_limit': 0.0},
        {'schedule': 'fictitious'},
        {'allocator': 'gpu'},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigError):
            SolverConfig(**kwargs).validate()

    def test_custom_allocator_selects_block(self):
        assert SolverConfig(custom_allocator=True).allocator_name == 'block'
        assert SolverConfig().allocator_name == 'numpy'

    def test_schedule_string_accepted(self):
        config = SolverConfig(schedule='discounted')
        config.validate()
        assert config.schedule == DiscountSchedule.DISCOUNTED

    def test_round_trip(self):
        config = SolverConfig(max_iterations=50, schedule=DiscountSchedule.LINEAR, time_limit=3.0)
        assert SolverConfig.from_dict(config.to_dict()) == config

    def test_default_schedule_is_cfr_plus(self):
        assert SolverConfig().schedule == DiscountSchedule.CFR_PLUS


class TestConstruction:
    """Solver setup."""

    def test_fresh_solver(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            assert solver.iteration == 0
            assert solver.num_hands == (6, 6)
            assert solver.tree.num_nodes == solver.arena.num_nodes == 9
            assert 'PostflopSolver' in repr(solver)

    def test_uniform_start(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            np.testing.assert_allclose(solver.average_strategy(0), 0.5)
            assert solver.exploitability() == pytest.approx(25.0)
            assert solver.exploitability_percent() == pytest.approx(25.0)

    def test_every_matchup_conflicts(self):
        ace = cards_from_str('Ah')[0]
        oop = Range.from_combos([(ace, cards_from_str('Ad')[0])])
        ip = Range.from_combos([(ace, cards_from_str('Kd')[0])])
        with pytest.raises(CardConflictError):
            PostflopSolver(river_config(oop, ip), SolverConfig(num_threads=1))

    def test_range_removed_by_board(self):
        kings = Range.from_combos([(cards_from_str('Ks')[0], cards_from_str('Kd')[0])])
        with pytest.raises(EmptyRangeError) as exc_info:
            PostflopSolver(river_config(kings, pairs_range('2')), SolverConfig(num_threads=1))
        assert exc_info.value.player == 0

    def test_custom_allocator(self, aces_vs_deuces):
        config = SolverConfig(num_threads=1, custom_allocator=True)
        with PostflopSolver(aces_vs_deuces, config) as solver:
            solver.iterate(5)
            assert solver.arena.regrets.base is not None

    def test_allocator_passed_explicitly(self, aces_vs_deuces):
        allocator = TrackingAllocator(BlockAllocator())
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1), allocator=allocator) as solver:
            assert allocator.num_calls == 2
            assert [name for name, _, _ in allocator.requests[1]] == ['reach', 'cfv']
            usage = solver.memory_usage()
            assert allocator.total_bytes == usage['accumulators'] + usage['traversal']
            # nine nodes, six hands: reach for both players plus values
            assert usage['traversal'] == 9 * 6 * 3 * 8

    def test_bounded_allocator_covers_traversal_buffers(self, aces_vs_deuces):
        allocator = BoundedAllocator(limit_bytes=48 * 4 * 2)
        with pytest.raises(ArenaAllocationError):
            PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1), allocator=allocator)

    def test_memory_usage(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            usage = solver.memory_usage()
            assert usage['accumulators'] == 48 * 4 * 2
            assert usage['total'] >= usage['accumulators'] + usage['traversal']


class TestConvergence:
    """Known equilibria on small river spots."""

    def test_deuces_fold_to_a_shove(self, aces_vs_deuces, fast_config):
        with PostflopSolver(aces_vs_deuces, fast_config) as solver:
            solver.solve()
            facing_shove = node_after(solver, 1)
            assert np.all(solver.average_strategy(facing_shove)[0] > 0.95)
            assert solver.exploitability_percent() < 1.0
            assert solver.expected_value(0) == pytest.approx(50.0, abs=1.0)
            assert solver.expected_value(1) == pytest.approx(-50.0, abs=1.0)

    def test_aces_call_a_shove(self, aces_vs_deuces, fast_config):
        with PostflopSolver(aces_vs_deuces, fast_config) as solver:
            solver.solve()
            facing_shove = node_after(solver, 0, 1)
            # aces stop checking after the first iteration, so read the current strategy
            assert np.all(solver.current_strategy(facing_shove)[1] > 0.95)

    def test_board_plays(self, board_plays):
        config = SolverConfig(max_iterations=300, num_threads=2)
        with PostflopSolver(board_plays, config) as solver:
            solver.solve()
            assert solver.exploitability_percent() < 1.0
            assert solver.expected_value(0) == pytest.approx(0.0, abs=0.5)
            assert solver.expected_value(1) == pytest.approx(0.0, abs=0.5)
            # a tie is always worth more than folding
            facing_shove = node_after(solver, 1)
            assert np.all(solver.average_strategy(facing_shove)[1] > 0.95)

    def test_polar_river(self, polar_vs_bluffcatcher):
        config = SolverConfig(max_iterations=500, exploitability_every=50, num_threads=2)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            solver.iterate(10)
            early = solver.exploitability()
            report = solver.solve()
            assert report.iterations == 500
            assert report.exploitability < early
            assert report.exploitability_percent < 1.0
            assert solver.expected_value(0) + solver.expected_value(1) == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.parametrize("schedule", list(DiscountSchedule))
    def test_every_schedule_improves(self, polar_vs_bluffcatcher, schedule):
        config = SolverConfig(max_iterations=300, num_threads=1, schedule=schedule)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            start = solver.exploitability()
            solver.solve()
            assert solver.exploitability() < start / 5

    def test_turn_spot_converges(self, monotone_turn):
        config = SolverConfig(max_iterations=100, exploitability_every=25, num_threads=2)
        with PostflopSolver(monotone_turn, config) as solver:
            start = solver.exploitability()
            report = solver.solve()
            assert report.exploitability < start / 5

    def test_flop_spot_converges(self, monotone_flop):
        config = SolverConfig(max_iterations=100, exploitability_every=25, num_threads=2)
        with PostflopSolver(monotone_flop, config) as solver:
            start = solver.exploitability()
            report = solver.solve()
            assert report.exploitability < start / 5
            for strategy in solver.strategies().values():
                np.testing.assert_allclose(strategy.sum(axis=0), 1.0, atol=1e-9)

    def test_flop_threads_agree(self, monotone_flop):
        regrets = []
        for threads in (1, 3):
            with PostflopSolver(monotone_flop, SolverConfig(num_threads=threads)) as solver:
                solver.iterate(3)
                regrets.append(solver.arena.regrets.copy())
        np.testing.assert_allclose(regrets[0], regrets[1], rtol=1e-4, atol=1e-4)

    def test_strategies_are_distributions(self, monotone_turn):
        with PostflopSolver(monotone_turn, SolverConfig(num_threads=2)) as solver:
            solver.iterate(5)
            for node, strategy in solver.strategies().items():
                np.testing.assert_allclose(strategy.sum(axis=0), 1.0, atol=1e-9)
                np.testing.assert_allclose(solver.current_strategy(node).sum(axis=0), 1.0, atol=1e-9)


class TestSolveStopping:
    """Stop conditions, all checked between iterations."""

    def test_max_iterations(self, polar_vs_bluffcatcher):
        config = SolverConfig(max_iterations=30, num_threads=1)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            report = solver.solve()
            assert report.iterations == 30
            assert report.stop_reason == 'max_iterations'

    def test_target(self, polar_vs_bluffcatcher):
        config = SolverConfig(max_iterations=1000, target_exploitability=1e9, num_threads=1)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            report = solver.solve()
            assert report.stop_reason == 'target'
            assert report.iterations == config.exploitability_every

    def test_stop_event(self, polar_vs_bluffcatcher):
        event = threading.Event()
        event.set()
        with PostflopSolver(polar_vs_bluffcatcher, SolverConfig(num_threads=1)) as solver:
            report = solver.solve(stop_event=event)
            assert report.stop_reason == 'stopped'
            assert report.iterations == 0

    def test_stop_from_callback(self, polar_vs_bluffcatcher):
        event = threading.Event()
        seen = []

        def callback(iteration, exploitability):
            seen.append((iteration, exploitability))
            event.set()

        with PostflopSolver(polar_vs_bluffcatcher, SolverConfig(num_threads=1)) as solver:
            report = solver.solve(stop_event=event, callback=callback)
            assert report.stop_reason == 'stopped'
            assert report.iterations == 10
            assert [it for it, _ in seen] == [10]

    def test_time_limit(self, polar_vs_bluffcatcher):
        config = SolverConfig(max_iterations=10 ** 6, time_limit=1e-9, num_threads=1)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            report = solver.solve()
            assert report.stop_reason == 'time_limit'
            assert report.iterations < 10 ** 6

    def test_resume_continues_counting(self, polar_vs_bluffcatcher):
        config = SolverConfig(max_iterations=20, num_threads=1)
        with PostflopSolver(polar_vs_bluffcatcher, config) as solver:
            solver.iterate(15)
            report = solver.solve()
            assert report.iterations == 20

    def test_reset(self, polar_vs_bluffcatcher):
        with PostflopSolver(polar_vs_bluffcatcher, SolverConfig(num_threads=1)) as solver:
            solver.iterate(5)
            solver.reset()
            assert solver.iteration == 0
            assert not solver.arena.regrets.any()


class TestStrategyLocking:
    """Locked nodes are fixed while everything else adapts."""

    def test_locked_calling_station(self, aces_vs_deuces, fast_config):
        with PostflopSolver(aces_vs_deuces, fast_config) as solver:
            facing_shove = node_after(solver, 1)
            always_call = np.zeros((2, 6))
            always_call[1] = 1.0
            solver.lock_strategy(facing_shove, always_call)
            solver.solve()

            np.testing.assert_allclose(solver.average_strategy(facing_shove), always_call)
            np.testing.assert_allclose(solver.current_strategy(facing_shove), always_call)
            # aces now shove every time and win the whole stack
            assert np.all(solver.average_strategy(0)[1] > 0.95)
            assert solver.expected_value(0) == pytest.approx(150.0, abs=2.0)

    def test_locked_slots_not_updated(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            solver.lock_strategy(0, np.full((2, 6), 0.5))
            solver.iterate(10)
            assert not solver.arena.regret_block(0).any()
            assert not solver.arena.strategy_block(0).any()

    def test_unlock(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            solver.lock_strategy(0, np.full((2, 6), 0.5))
            solver.unlock_strategy(0)
            solver.iterate(10)
            assert solver.arena.strategy_block(0).any()


class TestOutput:
    """Printing and naming."""

    def test_action_names(self, aces_vs_deuces):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            assert solver.action_name(0, 0) == 'Check'
            assert solver.action_name(0, 1) == 'AllIn 100'

    def test_print_strategy(self, aces_vs_deuces, capsys):
        with PostflopSolver(aces_vs_deuces, SolverConfig(num_threads=1)) as solver:
            solver.iterate(3)
            solver.print_strategy()
        out = capsys.readouterr().out
        assert 'after 3 iterations' in out
        assert 'AllIn 100=' in out
