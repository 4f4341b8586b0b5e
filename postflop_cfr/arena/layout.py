"""
Flattened node and strategy arena.

The action tree is flattened into index-addressed int64/float64 arrays
so the numba kernels can switch on node_type directly. Per decision
node, cumulative regret and cumulative strategy live in one block of
shape (num_actions, num_hands[player]) at acc_offset[node] in two flat
float32 buffers. The shape is fixed at construction; only the buffer
contents change while solving.

Array reference (N nodes, E edges, I iso deals, B showdown boards):
- node_type, node_player, node_parent, node_action, node_depth: (N,)
- subtree_end: (N,) preorder subtree is [n, subtree_end[n])
- child_start, child_count: (N,) into children/edge_kind/edge_amount (E,)
- edge_mask: (N,) cards dealt on the edge into the node
- node_board_mask, node_pot: (N,)
- node_board_id: (N,) row in board_masks (B,) for showdowns, else -1
- payoffs: (N, 2, 3) [player][win, lose, tie] at terminals
- fold_player: (N,) -1 unless FOLD
- acc_offset, num_actions: (N,) -1 / 0 unless DECISION
- chance_factor: (N,) 1 / C(undealt - 4, k) at chance nodes
- iso_start, iso_count: (N,) into iso_mask/iso_child/iso_perm (I,)

Hand tables (H = max hands over both players):
- hand_cards (2, H, 2), hand_masks (2, H), hand_weights (2, H), num_hands (2,)
- same_hand (2, H): index of the identical combo in the other player's hands
- hand_perm (24, 2, H): hand index under each suit permutation, -1 if unused
"""

import logging
from math import comb
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from postflop_cfr.games.base import NodeType
from postflop_cfr.games.cards import NUM_CARDS
from postflop_cfr.games.errors import ConfigError, SolverStateError
from postflop_cfr.games.isomorphism import SUIT_PERMUTATIONS, hand_permutation_table
from postflop_cfr.games.ranges import PrivateHands
from postflop_cfr.games.tree import ActionTree
from postflop_cfr.arena.allocator import Allocator, NumpyAllocator

logger = logging.getLogger(__name__)

TOPOLOGY_FIELDS = (
    'node_type', 'node_player', 'node_parent', 'node_action', 'node_depth',
    'subtree_end', 'child_start', 'child_count', 'children', 'edge_kind',
    'edge_amount', 'edge_mask', 'node_board_mask', 'node_pot', 'node_board_id',
    'board_masks', 'payoffs', 'fold_player', 'acc_offset', 'num_actions',
    'chance_factor', 'iso_start', 'iso_count', 'iso_mask', 'iso_child', 'iso_perm',
)

HAND_FIELDS = (
    'hand_cards', 'hand_masks', 'hand_weights', 'num_hands', 'same_hand', 'hand_perm',
)

LOCK_FIELDS = ('lock_offset', 'lock_values')

ACCUMULATOR_FIELDS = ('regrets', 'strategy_sum')

LOCK_TOLERANCE = 1e-4


def _popcount(mask: int) -> int:
    return bin(int(mask)).count('1')


def _flatten_tree(tree: ActionTree, num_hands: Sequence[int]) -> Dict[str, np.ndarray]:
    nodes = tree.nodes
    n = len(nodes)
    arrays = {
        'node_type': np.zeros(n, dtype=np.int64),
        'node_player': np.full(n, -1, dtype=np.int64),
        'node_parent': np.full(n, -1, dtype=np.int64),
        'node_action': np.zeros(n, dtype=np.int64),
        'node_depth': np.zeros(n, dtype=np.int64),
        'subtree_end': np.zeros(n, dtype=np.int64),
        'child_start': np.zeros(n, dtype=np.int64),
        'child_count': np.zeros(n, dtype=np.int64),
        'edge_mask': np.zeros(n, dtype=np.int64),
        'node_board_mask': np.zeros(n, dtype=np.int64),
        'node_pot': np.zeros(n, dtype=np.int64),
        'node_board_id': np.full(n, -1, dtype=np.int64),
        'payoffs': np.zeros((n, 2, 3), dtype=np.float64),
        'fold_player': np.full(n, -1, dtype=np.int64),
        'acc_offset': np.full(n, -1, dtype=np.int64),
        'num_actions': np.zeros(n, dtype=np.int64),
        'chance_factor': np.zeros(n, dtype=np.float64),
        'iso_start': np.zeros(n, dtype=np.int64),
        'iso_count': np.zeros(n, dtype=np.int64),
    }
    children: List[int] = []
    edge_kind: List[int] = []
    edge_amount: List[int] = []
    iso_mask: List[int] = []
    iso_child: List[int] = []
    iso_perm: List[int] = []
    board_ids: Dict[int, int] = {}
    offset = 0

    for i, node in enumerate(nodes):
        node_type = node['type']
        arrays['node_type'][i] = node_type
        arrays['node_player'][i] = node['player']
        arrays['node_parent'][i] = node['parent']
        arrays['node_action'][i] = node['action_index']
        arrays['node_depth'][i] = node['depth']
        arrays['subtree_end'][i] = node['subtree_end']
        arrays['edge_mask'][i] = node['edge_mask']
        arrays['node_board_mask'][i] = node['board_mask']
        arrays['node_pot'][i] = node['pot']

        arrays['child_start'][i] = len(children)
        arrays['child_count'][i] = len(node['children'])
        children.extend(node['children'])
        if node_type == NodeType.DECISION:
            for action in node['actions']:
                edge_kind.append(int(action.kind))
                edge_amount.append(action.amount)
            na = len(node['actions'])
            arrays['acc_offset'][i] = offset
            arrays['num_actions'][i] = na
            offset += na * num_hands[node['player']]
        else:
            edge_kind.extend([-1] * len(node['children']))
            edge_amount.extend([0] * len(node['children']))

        if node_type == NodeType.CHANCE:
            undealt = NUM_CARDS - _popcount(node['board_mask'])
            arrays['chance_factor'][i] = 1.0 / comb(undealt - 4, node['deal_count'])
            arrays['iso_start'][i] = len(iso_mask)
            arrays['iso_count'][i] = len(node['iso'])
            for deal, position, perm_index in node['iso']:
                iso_mask.append(deal)
                iso_child.append(node['children'][position])
                iso_perm.append(perm_index)
        elif node_type in (NodeType.FOLD, NodeType.SHOWDOWN):
            arrays['payoffs'][i] = np.asarray(node['payoffs'], dtype=np.float64)
            if node_type == NodeType.FOLD:
                arrays['fold_player'][i] = node['fold_player']
            else:
                board = node['board_mask']
                if board not in board_ids:
                    board_ids[board] = len(board_ids)
                arrays['node_board_id'][i] = board_ids[board]

    arrays['children'] = np.array(children, dtype=np.int64)
    arrays['edge_kind'] = np.array(edge_kind, dtype=np.int64)
    arrays['edge_amount'] = np.array(edge_amount, dtype=np.int64)
    arrays['iso_mask'] = np.array(iso_mask, dtype=np.int64)
    arrays['iso_child'] = np.array(iso_child, dtype=np.int64)
    arrays['iso_perm'] = np.array(iso_perm, dtype=np.int64)
    arrays['board_masks'] = np.array(list(board_ids), dtype=np.int64)
    return arrays


def _hand_tables(hands: Sequence[PrivateHands], perms: Sequence[Tuple[int, ...]]) -> Dict[str, np.ndarray]:
    h_max = max(h.num_hands for h in hands)
    tables = {
        'hand_cards': np.zeros((2, h_max, 2), dtype=np.int64),
        'hand_masks': np.zeros((2, h_max), dtype=np.int64),
        'hand_weights': np.zeros((2, h_max), dtype=np.float64),
        'num_hands': np.array([h.num_hands for h in hands], dtype=np.int64),
        'same_hand': np.full((2, h_max), -1, dtype=np.int64),
        'hand_perm': np.full((len(SUIT_PERMUTATIONS), 2, h_max), -1, dtype=np.int64),
    }
    for p, ph in enumerate(hands):
        n = ph.num_hands
        tables['hand_cards'][p, :n] = ph.cards
        tables['hand_masks'][p, :n] = ph.masks
        tables['hand_weights'][p, :n] = ph.weights
        tables['same_hand'][p, :n] = ph.same_hand_table(hands[1 - p])
        for perm in perms:
            k = SUIT_PERMUTATIONS.index(perm)
            tables['hand_perm'][k, p, :n] = hand_permutation_table(ph, perm)
    return tables


class Arena:
    """
    Index-addressed tree plus accumulator buffers.

    Build with Arena.from_tree, or Arena.from_arrays when restoring saved
    buffers. Attributes are the arrays named in the module docstring.
    """

    def __init__(self, arrays: Dict[str, np.ndarray]):
        for name in TOPOLOGY_FIELDS + HAND_FIELDS + LOCK_FIELDS + ACCUMULATOR_FIELDS:
            setattr(self, name, arrays[name])
        self.num_nodes = int(self.node_type.shape[0])
        self.total_slots = int(self.regrets.shape[0])
        self.decision_nodes = np.flatnonzero(self.node_type == NodeType.DECISION)
        self.terminal_nodes = np.flatnonzero(
            (self.node_type == NodeType.FOLD) | (self.node_type == NodeType.SHOWDOWN))
        self.chance_nodes = np.flatnonzero(self.node_type == NodeType.CHANCE)

    @classmethod
    def from_tree(cls, tree: ActionTree, hands: Sequence[PrivateHands],
                  allocator: Optional[Allocator] = None) -> 'Arena':
        """Flatten the tree and allocate both accumulators in one request."""
        allocator = allocator or NumpyAllocator()
        num_hands = [h.num_hands for h in hands]
        arrays = _flatten_tree(tree, num_hands)
        arrays.update(_hand_tables(hands, tree.permutations))

        total = tree.num_slots(num_hands)
        arrays.update(allocator.allocate([
            ('regrets', total, np.float32),
            ('strategy_sum', total, np.float32),
        ]))
        arrays['lock_offset'] = np.full(tree.num_nodes, -1, dtype=np.int64)
        arrays['lock_values'] = np.zeros(0, dtype=np.float32)

        arena = cls(arrays)
        logger.info("Arena: %d nodes, %d slots, %.1f MB accumulators",
                    arena.num_nodes, total, arena.accumulator_bytes / 1e6)
        return arena

    @classmethod
    def from_arrays(cls, arrays: Dict[str, np.ndarray],
                    allocator: Optional[Allocator] = None) -> 'Arena':
        """Restore from saved buffers without rebuilding the tree."""
        allocator = allocator or NumpyAllocator()
        missing = [k for k in TOPOLOGY_FIELDS + HAND_FIELDS + LOCK_FIELDS + ACCUMULATOR_FIELDS
                   if k not in arrays]
        if missing:
            raise KeyError(f"Missing arena buffers: {missing}")
        total = int(arrays['regrets'].shape[0])
        buffers = allocator.allocate([
            ('regrets', total, np.float32),
            ('strategy_sum', total, np.float32),
        ])
        buffers['regrets'][:] = arrays['regrets']
        buffers['strategy_sum'][:] = arrays['strategy_sum']
        merged = dict(arrays)
        merged.update(buffers)
        return cls(merged)

    # ------------------------------------------------------------------ layout

    @property
    def max_hands(self) -> int:
        return int(self.hand_masks.shape[1])

    @property
    def accumulator_bytes(self) -> int:
        return int(self.regrets.nbytes + self.strategy_sum.nbytes)

    def memory_usage(self) -> Dict[str, int]:
        topology = sum(int(getattr(self, k).nbytes) for k in TOPOLOGY_FIELDS + HAND_FIELDS)
        locks = sum(int(getattr(self, k).nbytes) for k in LOCK_FIELDS)
        return {
            'topology': topology,
            'accumulators': self.accumulator_bytes,
            'locks': locks,
            'total': topology + self.accumulator_bytes + locks,
        }

    def slot(self, node: int) -> Tuple[int, int, int]:
        """(offset, num_actions, num_hands) of a decision node's block."""
        if self.node_type[node] != NodeType.DECISION:
            raise SolverStateError(f"Node {node} is not a decision node")
        player = self.node_player[node]
        return (int(self.acc_offset[node]), int(self.num_actions[node]),
                int(self.num_hands[player]))

    def regret_block(self, node: int) -> np.ndarray:
        offset, na, nh = self.slot(node)
        return self.regrets[offset:offset + na * nh].reshape(na, nh)

    def strategy_block(self, node: int) -> np.ndarray:
        offset, na, nh = self.slot(node)
        return self.strategy_sum[offset:offset + na * nh].reshape(na, nh)

    def children_of(self, node: int) -> np.ndarray:
        start = self.child_start[node]
        return self.children[start:start + self.child_count[node]]

    def topology_arrays(self) -> Dict[str, np.ndarray]:
        return {name: getattr(self, name) for name in TOPOLOGY_FIELDS}

    def hand_arrays(self) -> Dict[str, np.ndarray]:
        return {name: getattr(self, name) for name in HAND_FIELDS}

    def state_arrays(self) -> Dict[str, np.ndarray]:
        """Every buffer, in a fixed order."""
        out = self.topology_arrays()
        out.update(self.hand_arrays())
        for name in LOCK_FIELDS + ACCUMULATOR_FIELDS:
            out[name] = getattr(self, name)
        return out

    def reset(self) -> None:
        """Zero both accumulators; locks stay."""
        self.regrets[:] = 0.0
        self.strategy_sum[:] = 0.0

    # ----------------------------------------------------------------- locking

    def lock_strategy(self, node: int, strategy: np.ndarray) -> None:
        """Fix a decision node's strategy to a (num_actions, num_hands) matrix.

        Each column must be a probability distribution over actions.
        """
        offset, na, nh = self.slot(node)
        strategy = np.asarray(strategy, dtype=np.float32)
        if strategy.shape != (na, nh):
            raise ConfigError(f"Lock for node {node} must have shape {(na, nh)}, got {strategy.shape}")
        if np.any(strategy < 0.0) or np.any(np.abs(strategy.sum(axis=0) - 1.0) > LOCK_TOLERANCE):
            raise ConfigError(f"Lock for node {node} must hold a distribution per hand")
        self._set_locks({**self.locked_strategies(), int(node): strategy})

    def unlock_strategy(self, node: int) -> None:
        locks = self.locked_strategies()
        locks.pop(int(node), None)
        self._set_locks(locks)

    def is_locked(self, node: int) -> bool:
        return bool(self.lock_offset[node] >= 0)

    def locked_strategies(self) -> Dict[int, np.ndarray]:
        locks = {}
        for node in np.flatnonzero(self.lock_offset >= 0):
            offset, na, nh = self.slot(int(node))
            start = int(self.lock_offset[node])
            locks[int(node)] = self.lock_values[start:start + na * nh].reshape(na, nh).copy()
        return locks

    def _set_locks(self, locks: Dict[int, np.ndarray]) -> None:
        lock_offset = np.full(self.num_nodes, -1, dtype=np.int64)
        chunks = []
        pos = 0
        for node in sorted(locks):
            lock_offset[node] = pos
            chunks.append(locks[node].ravel())
            pos += locks[node].size
        self.lock_values = (np.concatenate(chunks).astype(np.float32)
                            if chunks else np.zeros(0, dtype=np.float32))
        self.lock_offset = lock_offset
