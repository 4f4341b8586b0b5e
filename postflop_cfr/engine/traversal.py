"""
CFR traversal over an Arena.

One iteration runs, for traverser 0 then 1:
1. forward pass: reach of both players under the current strategy,
   parallel over hand chunks
2. terminal pass: traverser values at fold and showdown nodes, parallel
   over terminal nodes
3. backward pass: values propagated to the root with regret and
   strategy-sum updates. Subtrees below the shallowest chance nodes are
   independent and run as separate tasks; the nodes above them then run
   in hand chunks.

The same passes with MODE_BEST or MODE_EVAL and the average strategy
give best-response values, expected values and equities.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from postflop_cfr.arena.allocator import Allocator, NumpyAllocator
from postflop_cfr.arena.evaluator_cache import EvaluatorCache
from postflop_cfr.arena.layout import Arena
from postflop_cfr.engine.discount import DiscountParams, DiscountSchedule, discount_params
from postflop_cfr.engine.kernels import (
    MODE_BEST,
    MODE_CFR,
    MODE_EVAL,
    NODE_CHANCE,
    NODE_FOLD,
    NODE_SHOWDOWN,
    backward_pass,
    compatible_mass,
    forward_pass,
    terminal_pass,
)
from postflop_cfr.engine.pool import WorkerPool, hand_chunks, partition

logger = logging.getLogger(__name__)

_NO_UPDATE = DiscountParams(1.0, 1.0, 1.0, 0.0, False)


def equity_payoffs(arena: Arena) -> np.ndarray:
    """Payoff table that scores a win 1, a loss 0 and a tie 0.5."""
    table = np.zeros_like(arena.payoffs)
    terminal = (arena.node_type == NODE_FOLD) | (arena.node_type == NODE_SHOWDOWN)
    table[terminal, :, 0] = 1.0
    table[arena.node_type == NODE_SHOWDOWN, :, 2] = 0.5
    return table


class Traversal:
    """
    Reach and value buffers plus the parallel schedule for one arena.

    The buffers come from the same kind of allocator as the accumulators,
    so a bounded allocator also caps them.
    """

    def __init__(self, arena: Arena, cache: EvaluatorCache, pool: Optional[WorkerPool] = None,
                 allocator: Optional[Allocator] = None):
        self.arena = arena
        self.cache = cache
        self.pool = pool or WorkerPool(1)
        n, h = arena.num_nodes, arena.max_hands
        buffers = (allocator or NumpyAllocator()).allocate([
            ('reach', 2 * n * h, np.float64),
            ('cfv', n * h, np.float64),
        ])
        self.reach = buffers['reach'].reshape(2, n, h)
        self.cfv = buffers['cfv'].reshape(n, h)
        self.equity_table = equity_payoffs(arena)
        self.subtree_tasks, self.top_nodes = self._schedule()
        threads = self.pool.num_threads
        self.chunks = hand_chunks(h, threads)
        self.terminal_parts = partition(arena.terminal_nodes, threads * 4)
        logger.debug("Traversal: %d subtree tasks, %d top nodes, %d hand chunks",
                     len(self.subtree_tasks), len(self.top_nodes), len(self.chunks))

    @property
    def nbytes(self) -> int:
        return int(self.reach.nbytes + self.cfv.nbytes)

    def _schedule(self) -> Tuple[List[np.ndarray], np.ndarray]:
        """Split nodes into independent subtrees and the nodes above them."""
        a = self.arena
        covered = np.zeros(a.num_nodes, dtype=bool)
        tasks = []
        n = 0
        while n < a.num_nodes:
            if a.node_type[n] != NODE_CHANCE:
                n += 1
                continue
            for c in a.children_of(n):
                c = int(c)
                end = int(a.subtree_end[c])
                tasks.append(np.arange(c, end, dtype=np.int64))
                covered[c:end] = True
            n = int(a.subtree_end[n])
        top = np.flatnonzero(~covered).astype(np.int64)
        return tasks, top

    # ------------------------------------------------------------------ passes

    def forward(self, strategy_buf: np.ndarray) -> None:
        a = self.arena
        self.pool.run(forward_pass, [
            (lo, hi, strategy_buf, a.node_type, a.node_player, a.child_start, a.child_count,
             a.children, a.edge_mask, a.acc_offset, a.num_actions, a.lock_offset, a.lock_values,
             a.hand_masks, a.hand_weights, a.num_hands, self.reach)
            for lo, hi in self.chunks
        ])

    def terminal(self, player: int, payoffs: Optional[np.ndarray] = None) -> None:
        a, c = self.arena, self.cache
        payoffs = a.payoffs if payoffs is None else payoffs
        self.pool.run(terminal_pass, [
            (part, player, payoffs, a.node_type, a.node_board_mask, a.node_board_id,
             a.fold_player, a.hand_cards, a.hand_masks, a.num_hands, a.same_hand,
             c.strength, c.order, c.valid_count, self.reach, self.cfv)
            for part in self.terminal_parts
        ])

    def backward(self, player: int, mode: int, params: DiscountParams = _NO_UPDATE) -> None:
        a = self.arena
        shared = (a.regrets, a.strategy_sum, params.positive, params.negative,
                  params.strategy, params.weight, params.clip,
                  a.node_type, a.node_player, a.child_start, a.child_count, a.children,
                  a.edge_mask, a.acc_offset, a.num_actions, a.lock_offset, a.lock_values,
                  a.chance_factor, a.iso_start, a.iso_count, a.iso_mask, a.iso_child,
                  a.iso_perm, a.hand_masks, a.num_hands, a.hand_perm, self.reach, self.cfv)
        h = a.max_hands
        self.pool.run(backward_pass, [
            (nodes, 0, h, player, mode) + shared for nodes in self.subtree_tasks
        ])
        self.pool.run(backward_pass, [
            (self.top_nodes, lo, hi, player, mode) + shared for lo, hi in self.chunks
        ])

    # -------------------------------------------------------------- iteration

    def cfr_iteration(self, t: int, schedule: DiscountSchedule = DiscountSchedule.CFR_PLUS) -> None:
        """One alternating-update iteration; t is 1-indexed."""
        params = discount_params(schedule, t)
        for player in (0, 1):
            self.forward(self.arena.regrets)
            self.terminal(player)
            self.backward(player, MODE_CFR, params)

    def evaluate(self, player: int, mode: int = MODE_EVAL,
                 payoffs: Optional[np.ndarray] = None) -> None:
        """Fill reach and cfv under the average strategy without updating."""
        self.forward(self.arena.strategy_sum)
        self.terminal(player, payoffs)
        self.backward(player, mode)

    # ----------------------------------------------------------------- values

    def compatible_reach(self, node: int, player: int) -> np.ndarray:
        """Opponent reach at node held in hands compatible with each of player's hands."""
        a = self.arena
        opp = 1 - player
        out = np.zeros(a.max_hands, dtype=np.float64)
        compatible_mass(self.reach[opp, node], a.hand_cards[opp], int(a.num_hands[opp]),
                        a.hand_cards[player], a.hand_masks[player],
                        int(a.node_board_mask[node]), int(a.num_hands[player]),
                        a.same_hand[player], out)
        return out[:a.num_hands[player]]

    def matchup_weight(self) -> float:
        """Total weight of compatible (OOP hand, IP hand) pairs at the root."""
        a = self.arena
        self.reach[1, 0, :] = a.hand_weights[1]
        nh = int(a.num_hands[0])
        return float(np.dot(a.hand_weights[0, :nh], self.compatible_reach(0, 0)))

    def root_value(self, player: int, z: float) -> float:
        nh = int(self.arena.num_hands[player])
        return float(np.dot(self.arena.hand_weights[player, :nh], self.cfv[0, :nh]) / z)

    def best_response_value(self, player: int, z: float) -> float:
        self.evaluate(player, MODE_BEST)
        return self.root_value(player, z)

    def expected_value(self, player: int, z: float) -> float:
        self.evaluate(player, MODE_EVAL)
        return self.root_value(player, z)

    def exploitability(self) -> float:
        """Mean gain of a best response over the average strategy, in chips."""
        z = self.matchup_weight()
        if z <= 0.0:
            return 0.0
        total = 0.0
        for player in (0, 1):
            total += self.best_response_value(player, z) - self.expected_value(player, z)
        return total / 2.0

    def hand_values(self, player: int, equity: bool = False) -> np.ndarray:
        """(N, nh) per-hand values of player at every node under the average strategy.

        Values are normalized by compatible opponent reach; NaN where that
        reach is zero.
        """
        a = self.arena
        self.evaluate(player, MODE_EVAL, self.equity_table if equity else None)
        nh = int(a.num_hands[player])
        out = np.full((a.num_nodes, nh), np.nan, dtype=np.float64)
        for n in range(a.num_nodes):
            mass = self.compatible_reach(n, player)
            ok = mass > 0.0
            out[n, ok] = self.cfv[n, :nh][ok] / mass[ok]
        return out

    def node_values(self, node: int, player: int, equity: bool = False) -> np.ndarray:
        """Per-hand values of player at one node, NaN where unreachable."""
        a = self.arena
        self.evaluate(player, MODE_EVAL, self.equity_table if equity else None)
        nh = int(a.num_hands[player])
        mass = self.compatible_reach(node, player)
        out = np.full(nh, np.nan, dtype=np.float64)
        ok = mass > 0.0
        out[ok] = self.cfv[node, :nh][ok] / mass[ok]
        return out

