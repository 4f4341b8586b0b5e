"""
Slow reference CFR over hand pairs.

Walks the ActionTree node dicts once per compatible (OOP hand, IP hand)
pair with plain Python recursion. It follows the same conventions as the
vectorized engine so the accumulators can be compared directly:

- values below a chance node are not scaled by the deal probability;
  the chance node applies 1 / C(remaining - 4, k) on the way up
- deals folded into a canonical child by suit isomorphism are valued
  through that child with permuted hands, without updating it
- one alternating-update iteration per call, traverser 0 then 1

Only meant for trees with a handful of hands.
"""

from math import comb
from typing import Dict, List, Tuple

import numpy as np

from postflop_cfr.engine.discount import DiscountSchedule, discount_params
from postflop_cfr.games.base import NodeType
from postflop_cfr.games.hand_eval import evaluate_mask
from postflop_cfr.games.isomorphism import SUIT_PERMUTATIONS, hand_permutation_table
from postflop_cfr.games.ranges import PrivateHands
from postflop_cfr.games.tree import ActionTree

WIN, LOSE, TIE = 0, 1, 2


def _matched(block: np.ndarray) -> np.ndarray:
    pos = np.maximum(block, 0.0)
    total = pos.sum(axis=0)
    out = np.full_like(pos, 1.0 / pos.shape[0])
    nz = total > 0
    out[:, nz] = pos[:, nz] / total[nz]
    return out


class ReferenceCFR:
    """Hand-pair CFR with float64 accumulators keyed by node index."""

    def __init__(self, tree: ActionTree, schedule: DiscountSchedule = DiscountSchedule.CFR_PLUS):
        self.tree = tree
        self.schedule = DiscountSchedule(schedule)
        cfg = tree.config
        self.hands = [PrivateHands.from_range(rng, cfg.board_mask, p)
                      for p, rng in enumerate(cfg.ranges)]
        self.regrets: Dict[int, np.ndarray] = {}
        self.strategy_sum: Dict[int, np.ndarray] = {}
        for n in tree.decision_nodes():
            node = tree.nodes[n]
            shape = (len(node['actions']), self.hands[node['player']].num_hands)
            self.regrets[n] = np.zeros(shape)
            self.strategy_sum[n] = np.zeros(shape)
        self._perm_tables = {}
        for perm in tree.permutations:
            k = SUIT_PERMUTATIONS.index(perm)
            self._perm_tables[k] = [hand_permutation_table(h, perm) for h in self.hands]
        self._strength: Dict[Tuple[int, int], int] = {}
        self.iteration = 0

    def _pairs(self) -> List[Tuple[int, int]]:
        m0, m1 = self.hands[0].masks, self.hands[1].masks
        return [(i, j) for i in range(len(m0)) for j in range(len(m1))
                if (int(m0[i]) & int(m1[j])) == 0]

    def iterate(self, num_iterations: int = 1) -> None:
        for _ in range(num_iterations):
            t = self.iteration + 1
            params = discount_params(self.schedule, t)
            for player in (0, 1):
                self._sigma = {n: _matched(r) for n, r in self.regrets.items()}
                instant = {n: np.zeros_like(r) for n, r in self.regrets.items()}
                own = {n: np.zeros_like(r) for n, r in self.regrets.items()}
                weights = self.hands[player].weights
                for h in range(self.hands[player].num_hands):
                    self._own_reach(0, player, h, float(weights[h]), own)
                opp_weights = self.hands[1 - player].weights
                for h0, h1 in self._pairs():
                    opp = h1 if player == 0 else h0
                    self._value(0, [h0, h1], player, float(opp_weights[opp]), instant, True)

                for n, r in self.regrets.items():
                    if self.tree.nodes[n]['player'] != player:
                        continue
                    r = np.where(r > 0, r * params.positive, r * params.negative) + instant[n]
                    if params.clip:
                        r = np.maximum(r, 0.0)
                    self.regrets[n] = r
                    self.strategy_sum[n] = (self.strategy_sum[n] * params.strategy
                                            + params.weight * own[n])
            self.iteration += 1

    def average_strategy(self, node: int) -> np.ndarray:
        return _matched(self.strategy_sum[node])

    def _own_reach(self, n: int, player: int, h: int, r: float, acc) -> None:
        node = self.tree.nodes[n]
        t = node['type']
        if t == NodeType.DECISION:
            if node['player'] == player:
                probs = self._sigma[n][:, h]
                acc[n][:, h] += r * probs
                for a, c in enumerate(node['children']):
                    self._own_reach(c, player, h, r * probs[a], acc)
            else:
                for c in node['children']:
                    self._own_reach(c, player, h, r, acc)
        elif t == NodeType.CHANCE:
            hm = int(self.hands[player].masks[h])
            for c in node['children']:
                if hm & self.tree.nodes[c]['edge_mask'] == 0:
                    self._own_reach(c, player, h, r, acc)

    def _showdown_sign(self, board: int, h0: int, h1: int) -> int:
        key0 = (board, int(self.hands[0].masks[h0]))
        key1 = (board, int(self.hands[1].masks[h1]))
        for key in (key0, key1):
            if key not in self._strength:
                self._strength[key] = int(evaluate_mask(np.int64(key[0] | key[1])))
        return (self._strength[key0] > self._strength[key1]) - (self._strength[key0] < self._strength[key1])

    def _value(self, n: int, hands: List[int], player: int, pi_opp: float,
               instant, update: bool) -> float:
        node = self.tree.nodes[n]
        t = node['type']

        if t == NodeType.FOLD:
            col = LOSE if node['fold_player'] == player else WIN
            return node['payoffs'][player][col]

        if t == NodeType.SHOWDOWN:
            sign = self._showdown_sign(node['board_mask'], hands[0], hands[1])
            if player == 1:
                sign = -sign
            col = WIN if sign > 0 else LOSE if sign < 0 else TIE
            return node['payoffs'][player][col]

        if t == NodeType.CHANCE:
            masks = int(self.hands[0].masks[hands[0]]) | int(self.hands[1].masks[hands[1]])
            total = 0.0
            for c in node['children']:
                if masks & self.tree.nodes[c]['edge_mask'] == 0:
                    total += self._value(c, hands, player, pi_opp, instant, update)
            for deal, position, k in node['iso']:
                if masks & deal:
                    continue
                tables = self._perm_tables[k]
                permuted = [int(tables[0][hands[0]]), int(tables[1][hands[1]])]
                total += self._value(node['children'][position], permuted, player, pi_opp,
                                     instant, False)
            undealt = 52 - bin(node['board_mask']).count('1') - 4
            return total / comb(undealt, node['deal_count'])

        acting = node['player']
        probs = self._sigma[n][:, hands[acting]]
        if acting != player:
            return sum(probs[a] * self._value(c, hands, player, pi_opp * probs[a], instant, update)
                       for a, c in enumerate(node['children']) if probs[a] > 0)

        values = np.array([self._value(c, hands, player, pi_opp, instant, update)
                           for c in node['children']])
        v = float(np.dot(probs, values))
        if update:
            instant[n][:, hands[player]] += pi_opp * (values - v)
        return v
