"""
Navigation over a solved game.

SolvedGame walks the arena from the root by action index and dealt
cards. Deals that were folded into a canonical child by suit
isomorphism are followed through that child; the walker then keeps a
suit permutation ("frame") mapping real cards onto tree cards and
translates hand indices on the way out, so callers always see values
for the hands they actually dealt.
"""

from typing import Any, Dict, List, Sequence, Union

import numpy as np

from postflop_cfr.games.base import Action, ActionKind, NodeType, Player
from postflop_cfr.games.cards import NUM_SUITS, cards_to_str, mask_to_cards
from postflop_cfr.games.errors import CardConflictError, SolverStateError
from postflop_cfr.games.isomorphism import (
    IDENTITY,
    SUIT_PERMUTATIONS,
    compose,
    hand_permutation_table,
    permute_card,
    permute_mask,
)
from postflop_cfr.solvers.postflop import PostflopSolver, regret_matching


def _inverse(perm) -> tuple:
    inv = [0] * NUM_SUITS
    for s in range(NUM_SUITS):
        inv[perm[s]] = s
    return tuple(inv)


class SolvedGame:
    """Cursor over a solver's tree with results for the current node."""

    def __init__(self, solver: PostflopSolver):
        self.solver = solver
        self.back_to_root()

    @property
    def arena(self):
        return self.solver.arena

    # ------------------------------------------------------------ navigation

    def back_to_root(self) -> None:
        self.node = 0
        self.frame = IDENTITY
        self.history: List[Union[int, tuple]] = []

    root = back_to_root

    def _node_type(self) -> NodeType:
        return NodeType(int(self.arena.node_type[self.node]))

    def is_terminal(self) -> bool:
        return self._node_type() in (NodeType.FOLD, NodeType.SHOWDOWN)

    def is_chance(self) -> bool:
        return self._node_type() == NodeType.CHANCE

    def current_player(self) -> int:
        """0 or 1 at decision nodes, Player.CHANCE elsewhere."""
        if self._node_type() != NodeType.DECISION:
            return int(Player.CHANCE)
        return int(self.arena.node_player[self.node])

    def available_actions(self) -> List[Action]:
        if self._node_type() != NodeType.DECISION:
            return []
        start = int(self.arena.child_start[self.node])
        count = int(self.arena.child_count[self.node])
        return [Action(ActionKind(int(self.arena.edge_kind[e])), int(self.arena.edge_amount[e]))
                for e in range(start, start + count)]

    def play(self, action_index: int) -> None:
        if self._node_type() != NodeType.DECISION:
            raise SolverStateError(f"Node {self.node} is not a decision node")
        count = int(self.arena.child_count[self.node])
        if not 0 <= action_index < count:
            raise IndexError(f"Action {action_index} out of range (node has {count})")
        self.node = int(self.arena.children[self.arena.child_start[self.node] + action_index])
        self.history.append(action_index)

    def deal(self, cards: Union[int, Sequence[int]]) -> None:
        """Deal the next street's card(s) at a chance node."""
        if not self.is_chance():
            raise SolverStateError(f"Node {self.node} is not a chance node")
        cards = (cards,) if isinstance(cards, (int, np.integer)) else tuple(cards)
        real_board = self.board()
        for c in cards:
            if c in real_board:
                raise CardConflictError(f"Card {cards_to_str([c])} is already on the board")
        mask = 0
        for c in cards:
            mask |= 1 << permute_card(int(c), self.frame)

        a = self.arena
        for child in a.children_of(self.node):
            if int(a.edge_mask[child]) == mask:
                self.node = int(child)
                self.history.append(cards)
                return
        start = int(a.iso_start[self.node])
        for k in range(start, start + int(a.iso_count[self.node])):
            if int(a.iso_mask[k]) == mask:
                perm = SUIT_PERMUTATIONS[int(a.iso_perm[k])]
                self.frame = compose(perm, self.frame)
                self.node = int(a.iso_child[k])
                self.history.append(cards)
                return
        raise CardConflictError(f"Cannot deal {cards_to_str(cards)} here")

    # --------------------------------------------------------------- results

    def board(self) -> tuple:
        """Board at the current node, in real cards."""
        inv = _inverse(self.frame)
        mask = permute_mask(int(self.arena.node_board_mask[self.node]), inv)
        return tuple(mask_to_cards(mask))

    def pot(self) -> int:
        return int(self.arena.node_pot[self.node])

    def _hand_map(self, player: int) -> np.ndarray:
        """Tree hand index for each real hand index."""
        return hand_permutation_table(self.solver.hands[player], self.frame)

    def strategy(self) -> np.ndarray:
        """(num_actions, num_hands) average strategy of the acting player."""
        if self._node_type() != NodeType.DECISION:
            raise SolverStateError(f"Node {self.node} is not a decision node")
        player = self.current_player()
        return self.solver.average_strategy(self.node)[:, self._hand_map(player)]

    def current_strategy(self) -> np.ndarray:
        player = self.current_player()
        if player < 0:
            raise SolverStateError(f"Node {self.node} is not a decision node")
        block = self.solver.arena.regret_block(self.node)
        return regret_matching(block)[:, self._hand_map(player)]

    def weights(self, player: int) -> np.ndarray:
        """Reach of each of player's hands at this node under the average strategy."""
        t = self.solver.traversal
        t.forward(self.arena.strategy_sum)
        nh = self.solver.num_hands[player]
        return t.reach[player, self.node, :nh][self._hand_map(player)].copy()

    def normalized_weights(self, player: int) -> np.ndarray:
        """Own reach times compatible opponent reach, summing to 1."""
        t = self.solver.traversal
        t.forward(self.arena.strategy_sum)
        nh = self.solver.num_hands[player]
        w = t.reach[player, self.node, :nh] * t.compatible_reach(self.node, player)
        total = w.sum()
        if total > 0:
            w = w / total
        return w[self._hand_map(player)]

    def expected_values(self, player: int) -> np.ndarray:
        """Per-hand EV in chips; NaN for hands that cannot be here."""
        values = self.solver.traversal.node_values(self.node, player)
        return values[self._hand_map(player)]

    def equity(self, player: int) -> np.ndarray:
        """Per-hand showdown equity in [0, 1]; NaN for hands that cannot be here."""
        values = self.solver.traversal.node_values(self.node, player, equity=True)
        return values[self._hand_map(player)]

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            'node': self.node,
            'type': self._node_type().name,
            'player': self.current_player(),
            'board': cards_to_str(self.board()),
            'pot': self.pot(),
            'history': list(self.history),
            'actions': [a.name for a in self.available_actions()],
        }
        if self._node_type() == NodeType.DECISION:
            player = self.current_player()
            w = self.normalized_weights(player)
            out['frequencies'] = [float(x) for x in self.strategy() @ w]
        for player in (0, 1):
            w = self.normalized_weights(player)
            ev = self.expected_values(player)
            eq = self.equity(player)
            ok = ~np.isnan(ev) & (w > 0)
            out[f'ev_{player}'] = float(np.dot(w[ok], ev[ok])) if ok.any() else float('nan')
            out[f'equity_{player}'] = float(np.dot(w[ok], eq[ok])) if ok.any() else float('nan')
        return out
