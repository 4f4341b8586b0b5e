"""
Post-flop CFR solver.

Builds the action tree and arena for a TreeConfig and runs vectorized
CFR iterations over it with the numba kernels. The accumulators live in
the arena and are updated in place; strategies are derived on demand.

Usage:
    solver = PostflopSolver(tree_config, SolverConfig(max_iterations=500))
    report = solver.solve()
    strategy = solver.average_strategy(0)
    solver.save('spot.pfcf')
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from postflop_cfr.arena.allocator import Allocator, get_allocator
from postflop_cfr.arena.evaluator_cache import EvaluatorCache
from postflop_cfr.arena.layout import Arena
from postflop_cfr.engine.pool import WorkerPool
from postflop_cfr.engine.traversal import Traversal
from postflop_cfr.games.base import Action, ActionKind
from postflop_cfr.games.errors import CardConflictError, LoadError
from postflop_cfr.games.ranges import PrivateHands
from postflop_cfr.games.tree import ActionTree, TreeConfig
from postflop_cfr.solvers.config import SolverConfig
from postflop_cfr.storage import container
from postflop_cfr.storage.container import SavedState

logger = logging.getLogger(__name__)


def regret_matching(block: np.ndarray) -> np.ndarray:
    """Normalize the positive part of each column; uniform where nothing is positive."""
    pos = np.maximum(np.asarray(block, dtype=np.float64), 0.0)
    total = pos.sum(axis=0)
    uniform = np.full_like(pos, 1.0 / pos.shape[0])
    safe = np.where(total > 0.0, total, 1.0)
    return np.where(total > 0.0, pos / safe, uniform)


@dataclass
class SolveReport:
    iterations: int
    exploitability: float
    exploitability_percent: float
    elapsed: float
    stop_reason: str


class PostflopSolver:
    """
    Vectorized CFR solver for one post-flop spot.

    Args:
        tree_config: Board, ranges, stacks and bet sizing
        config: Iteration budget and runtime options
        allocator: Accumulator allocator, overriding config.allocator
    """

    def __init__(self, tree_config: TreeConfig, config: Optional[SolverConfig] = None,
                 allocator: Optional[Allocator] = None):
        self.config = config or SolverConfig()
        self.config.validate()
        self.tree_config = tree_config
        self._tree = ActionTree(tree_config)
        self.hands = self._private_hands(tree_config)
        self._allocator = allocator or get_allocator(self.config.allocator_name)
        self.pool = WorkerPool(self.config.num_threads)
        try:
            arena = Arena.from_tree(self._tree, self.hands, self._allocator)
            self._attach(*self._runtime(arena, self.config), iteration=0)
        except BaseException:
            self.pool.close()
            raise

    @staticmethod
    def _private_hands(tree_config: TreeConfig) -> Tuple[PrivateHands, PrivateHands]:
        board_mask = tree_config.board_mask
        return tuple(PrivateHands.from_range(rng, board_mask, player)
                     for player, rng in enumerate(tree_config.ranges))

    def _runtime(self, arena: Arena, config: SolverConfig) -> Tuple[Arena, EvaluatorCache, Traversal, float]:
        cache = EvaluatorCache.build(arena.board_masks, arena.hand_masks, arena.num_hands,
                                     group_hands=config.group_hands,
                                     hand_cards=arena.hand_cards)
        traversal = Traversal(arena, cache, self.pool, self._allocator)
        z = traversal.matchup_weight()
        if z <= 0.0:
            raise CardConflictError("Every OOP hand conflicts with every IP hand")
        return arena, cache, traversal, z

    def _attach(self, arena: Arena, cache: EvaluatorCache, traversal: Traversal,
                z: float, iteration: int) -> None:
        self.arena = arena
        self.cache = cache
        self.traversal = traversal
        self._matchup_weight = z
        self.iteration = iteration

    @property
    def tree(self) -> ActionTree:
        """Action tree; rebuilt from the config after a load."""
        if self._tree is None:
            self._tree = ActionTree(self.tree_config)
        return self._tree

    @property
    def num_hands(self) -> Tuple[int, int]:
        return (int(self.arena.num_hands[0]), int(self.arena.num_hands[1]))

    # -------------------------------------------------------------- iterating

    def iterate(self, num_iterations: int = 1) -> None:
        """
        Run CFR iterations.

        Args:
            num_iterations: Number of iterations to run
        """
        for _ in range(num_iterations):
            start = time.perf_counter()
            self.traversal.cfr_iteration(self.iteration + 1, self.config.schedule)
            self.iteration += 1
            logger.debug("Iteration %d took %.3fs", self.iteration, time.perf_counter() - start)

    def solve(self, stop_event: Optional[threading.Event] = None,
              callback: Optional[Callable[[int, float], None]] = None) -> SolveReport:
        """
        Iterate until the budget, the exploitability target, the time
        limit or the stop event ends the run. All checks happen between
        iterations.

        Args:
            stop_event: Set from another thread to stop after the current iteration
            callback: Called as callback(iteration, exploitability) at every check
        """
        cfg = self.config
        start = time.perf_counter()
        exploitability = None
        reason = 'max_iterations'
        logger.info("Solving: up to %d iterations, target %.4f, schedule %s",
                    cfg.max_iterations, cfg.target_exploitability, cfg.schedule.value)

        while self.iteration < cfg.max_iterations:
            if stop_event is not None and stop_event.is_set():
                reason = 'stopped'
                break
            if cfg.time_limit is not None and time.perf_counter() - start >= cfg.time_limit:
                reason = 'time_limit'
                break
            self.iterate(1)
            if self.iteration % cfg.exploitability_every == 0 or self.iteration == cfg.max_iterations:
                exploitability = self.exploitability()
                logger.info("Iteration %d: exploitability %.6f (%.3f%% of pot)", self.iteration,
                            exploitability, self._percent(exploitability))
                if callback is not None:
                    callback(self.iteration, exploitability)
                if exploitability <= cfg.target_exploitability:
                    reason = 'target'
                    break

        if exploitability is None:
            exploitability = self.exploitability()
        elapsed = time.perf_counter() - start
        logger.info("Stopped after %d iterations (%s), exploitability %.6f, %.2fs",
                    self.iteration, reason, exploitability, elapsed)
        return SolveReport(self.iteration, exploitability, self._percent(exploitability),
                           elapsed, reason)

    def reset(self) -> None:
        """Forget all progress; locks stay."""
        self.arena.reset()
        self.iteration = 0

    # ----------------------------------------------------------- measurement

    def exploitability(self) -> float:
        """Mean best-response gain against the average strategy, in chips."""
        return self.traversal.exploitability()

    def _percent(self, chips: float) -> float:
        return 100.0 * chips / self.tree_config.starting_pot

    def exploitability_percent(self) -> float:
        return self._percent(self.exploitability())

    def expected_value(self, player: int) -> float:
        """Average-strategy value of player at the root, per matchup."""
        return self.traversal.expected_value(player, self._matchup_weight)

    def hand_values(self, player: int, equity: bool = False) -> np.ndarray:
        """(num_nodes, num_hands) EV or equity per hand, NaN where a hand cannot be."""
        return self.traversal.hand_values(player, equity)

    def memory_usage(self) -> Dict[str, int]:
        usage = self.arena.memory_usage()
        usage['evaluator_cache'] = self.cache.nbytes
        usage['traversal'] = self.traversal.nbytes
        usage['total'] += usage['evaluator_cache'] + usage['traversal']
        return usage

    # ------------------------------------------------------------- strategies

    def average_strategy(self, node: int) -> np.ndarray:
        """(num_actions, num_hands) average strategy at a decision node."""
        if self.arena.is_locked(node):
            return self.arena.locked_strategies()[int(node)].astype(np.float64)
        return regret_matching(self.arena.strategy_block(node))

    def current_strategy(self, node: int) -> np.ndarray:
        """(num_actions, num_hands) regret-matched strategy at a decision node."""
        if self.arena.is_locked(node):
            return self.arena.locked_strategies()[int(node)].astype(np.float64)
        return regret_matching(self.arena.regret_block(node))

    def strategies(self) -> Dict[int, np.ndarray]:
        """Average strategy of every decision node."""
        return {int(n): self.average_strategy(int(n)) for n in self.arena.decision_nodes}

    def lock_strategy(self, node: int, strategy: np.ndarray) -> None:
        self.arena.lock_strategy(node, strategy)
        logger.info("Locked strategy at node %d", node)

    def unlock_strategy(self, node: int) -> None:
        self.arena.unlock_strategy(node)

    def print_strategy(self, max_nodes: int = 20) -> None:
        """Print aggregate action frequencies of the first decision nodes."""
        print(f"\nAverage strategy after {self.iteration} iterations:")
        print("-" * 50)
        for n in self.arena.decision_nodes[:max_nodes]:
            n = int(n)
            player = int(self.arena.node_player[n])
            weights = self.arena.hand_weights[player, :self.num_hands[player]]
            freq = self.average_strategy(n) @ weights / weights.sum()
            names = [self.action_name(n, a) for a in range(len(freq))]
            parts = ", ".join(f"{name}={p:.3f}" for name, p in zip(names, freq))
            print(f"P{player} node {n}: {parts}")

    def action_name(self, node: int, action_index: int) -> str:
        edge = int(self.arena.child_start[node]) + action_index
        return Action(ActionKind(int(self.arena.edge_kind[edge])),
                      int(self.arena.edge_amount[edge])).name

    # ------------------------------------------------------------ persistence

    def to_state(self) -> SavedState:
        return SavedState(
            tree_config=self.tree_config.to_dict(),
            solver_config=self.config.to_dict(),
            iteration=self.iteration,
            arrays=self.arena.state_arrays(),
        )

    def dumps(self, compress: bool = True) -> bytes:
        return container.dumps(self.to_state(), compress)

    def save(self, path, compress: bool = True) -> int:
        return container.save(path, self.to_state(), compress)

    def load_state(self, state: SavedState) -> None:
        """
        Replace this solver's state with a decoded container.

        Everything is rebuilt first; on any error the solver is unchanged.
        """
        try:
            tree_config = TreeConfig.from_dict(state.tree_config)
            config = SolverConfig.from_dict(state.solver_config) if state.solver_config else self.config
            config.num_threads = self.config.num_threads
            config.validate()
            hands = self._private_hands(tree_config)
            arena = Arena.from_arrays(state.arrays, self._allocator)
            if tuple(int(n) for n in arena.num_hands) != tuple(h.num_hands for h in hands):
                raise LoadError("Saved hand tables do not match the saved ranges")
            runtime = self._runtime(arena, config)
        except (KeyError, TypeError, ValueError) as e:
            raise LoadError(f"Saved state is inconsistent: {e}") from e

        self.tree_config = tree_config
        self.config = config
        self.hands = hands
        self._tree = None
        self._attach(*runtime, iteration=state.iteration)
        logger.info("Loaded solver state at iteration %d", self.iteration)

    def loads(self, data: bytes) -> None:
        """Restore from container bytes in place."""
        self.load_state(container.loads(data))

    def load(self, path) -> None:
        """Restore from a saved file in place."""
        self.load_state(container.load(path))

    @classmethod
    def from_state(cls, state: SavedState, num_threads: Optional[int] = None,
                   allocator: Optional[Allocator] = None) -> 'PostflopSolver':
        """New solver from a decoded container, without rebuilding the tree."""
        solver = cls.__new__(cls)
        try:
            config = SolverConfig.from_dict(state.solver_config)
        except (TypeError, ValueError) as e:
            raise LoadError(f"Saved solver config is invalid: {e}") from e
        if num_threads is not None:
            config.num_threads = num_threads
        solver.config = config
        solver._allocator = allocator or get_allocator(config.allocator_name)
        solver._tree = None
        solver.pool = WorkerPool(config.num_threads)
        try:
            solver.load_state(state)
        except BaseException:
            solver.pool.close()
            raise
        return solver

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs) -> 'PostflopSolver':
        return cls.from_state(container.loads(data), **kwargs)

    @classmethod
    def from_file(cls, path, **kwargs) -> 'PostflopSolver':
        return cls.from_state(container.load(path), **kwargs)

    # -------------------------------------------------------------- lifetime

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> 'PostflopSolver':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return (f"PostflopSolver({self.arena.num_nodes} nodes, hands={self.num_hands}, "
                f"iteration={self.iteration})")
