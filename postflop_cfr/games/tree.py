"""
Post-flop action tree.

The tree is built once per TreeConfig and is a pure function of it:
nodes are numbered in depth-first preorder, so the subtree of node n is
the contiguous index range [n, subtree_end). Nodes are plain dicts, like
the other game trees in this package; the arena flattens them into
index-addressed arrays.

Node types:
- DECISION: owned by player 0 (OOP) or 1 (IP), one child per action
- CHANCE: deals the next street's cards (three at once for a flop)
- FOLD: terminal, the folding player forfeits their contribution
- SHOWDOWN: terminal on a full five-card board

Chance nodes only expand one deal per suit-isomorphism orbit. The other
deals are recorded in node['iso'] as (dealt mask, canonical child
position, suit permutation index).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from .base import Action, ActionKind, NodeType, Player, Street
from .bet_sizing import AllIn, BetSize, BetSizeOptions, DonkSizeOptions
from .cards import cards_to_mask, validate_board
from .errors import ConfigError, InvalidBetSizeError, InvalidRangeError, NoLegalActionsError
from .icm import IcmConfig
from .isomorphism import (
    SUIT_PERMUTATIONS, board_suit_permutations, canonical_deals, symmetric_permutations,
)
from .ranges import Range

logger = logging.getLogger(__name__)

BYTES_PER_SLOT = 4  # float32
NUM_ACCUMULATORS = 2  # regrets and strategy sums

_NO_SIZES = (BetSizeOptions(), BetSizeOptions())


@dataclass
class TreeConfig:
    """
    Everything that determines the tree.

    Street sizes are given as (oop options, ip options). Donk sizes, when
    set, replace OOP's bet sizes on the turn/river after OOP called an
    IP bet on the previous street.

    add_allin_threshold: add ALLIN when the all-in is at most this many pots
    force_allin_threshold: replace a bet by ALLIN when the stack-to-pot
        ratio after a call would be at most this value
    merging_threshold: merge sizes whose pot ratios are this close
    """
    board: Tuple[int, ...]
    oop_range: Range
    ip_range: Range
    starting_pot: int
    effective_stack: int
    rake_rate: float = 0.0
    rake_cap: float = 0.0
    flop_bet_sizes: Tuple[BetSizeOptions, BetSizeOptions] = _NO_SIZES
    turn_bet_sizes: Tuple[BetSizeOptions, BetSizeOptions] = _NO_SIZES
    river_bet_sizes: Tuple[BetSizeOptions, BetSizeOptions] = _NO_SIZES
    turn_donk_sizes: Optional[DonkSizeOptions] = None
    river_donk_sizes: Optional[DonkSizeOptions] = None
    add_allin_threshold: float = 1.5
    force_allin_threshold: float = 0.15
    merging_threshold: float = 0.1
    icm: Optional[IcmConfig] = None

    def __post_init__(self):
        self.board = tuple(int(c) for c in self.board)

    @property
    def ranges(self) -> Tuple[Range, Range]:
        return (self.oop_range, self.ip_range)

    @property
    def board_mask(self) -> int:
        return cards_to_mask(self.board)

    def bet_sizes(self, street: int, player: int) -> BetSizeOptions:
        by_street = {
            Street.FLOP: self.flop_bet_sizes,
            Street.TURN: self.turn_bet_sizes,
            Street.RIVER: self.river_bet_sizes,
        }
        return by_street[Street(street)][player]

    def donk_sizes(self, street: int) -> Optional[DonkSizeOptions]:
        if street == Street.TURN:
            return self.turn_donk_sizes
        if street == Street.RIVER:
            return self.river_donk_sizes
        return None

    def validate(self) -> None:
        """Raise the matching ConfigError subclass for a bad configuration."""
        self.board = validate_board(self.board)
        for player, rng in enumerate(self.ranges):
            if not isinstance(rng, Range):
                raise InvalidRangeError(f"Range of player {player} is not a Range")
        if int(self.starting_pot) != self.starting_pot or self.starting_pot <= 0:
            raise ConfigError(f"Starting pot must be a positive integer, got {self.starting_pot}")
        if int(self.effective_stack) != self.effective_stack or self.effective_stack < 0:
            raise ConfigError(f"Effective stack must be a non-negative integer, got {self.effective_stack}")
        if not 0.0 <= self.rake_rate <= 1.0:
            raise ConfigError(f"Rake rate must lie in [0, 1], got {self.rake_rate}")
        if self.rake_cap < 0.0:
            raise ConfigError(f"Rake cap must be non-negative, got {self.rake_cap}")
        for name in ('flop_bet_sizes', 'turn_bet_sizes', 'river_bet_sizes'):
            options = getattr(self, name)
            if (not isinstance(options, tuple) or len(options) != 2
                    or not all(isinstance(o, BetSizeOptions) for o in options)):
                raise InvalidBetSizeError(f"{name} must be a pair of BetSizeOptions")
        for name in ('turn_donk_sizes', 'river_donk_sizes'):
            options = getattr(self, name)
            if options is not None and not isinstance(options, DonkSizeOptions):
                raise InvalidBetSizeError(f"{name} must be DonkSizeOptions or None")
        for name in ('add_allin_threshold', 'force_allin_threshold', 'merging_threshold'):
            if getattr(self, name) < 0.0:
                raise ConfigError(f"{name} must be non-negative")
        if self.icm is not None:
            self.icm.validate(self.starting_pot, self.effective_stack)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'board': list(self.board),
            'oop_range': self.oop_range.to_pairs(),
            'ip_range': self.ip_range.to_pairs(),
            'starting_pot': self.starting_pot,
            'effective_stack': self.effective_stack,
            'rake_rate': self.rake_rate,
            'rake_cap': self.rake_cap,
            'flop_bet_sizes': [o.to_dict() for o in self.flop_bet_sizes],
            'turn_bet_sizes': [o.to_dict() for o in self.turn_bet_sizes],
            'river_bet_sizes': [o.to_dict() for o in self.river_bet_sizes],
            'turn_donk_sizes': self.turn_donk_sizes.to_dict() if self.turn_donk_sizes else None,
            'river_donk_sizes': self.river_donk_sizes.to_dict() if self.river_donk_sizes else None,
            'add_allin_threshold': self.add_allin_threshold,
            'force_allin_threshold': self.force_allin_threshold,
            'merging_threshold': self.merging_threshold,
            'icm': self.icm.to_dict() if self.icm else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TreeConfig':
        def pair(key):
            return tuple(BetSizeOptions.from_dict(d) for d in data[key])

        def donk(key):
            return DonkSizeOptions.from_dict(data[key]) if data.get(key) else None

        return cls(
            board=tuple(data['board']),
            oop_range=Range.from_list(data['oop_range']),
            ip_range=Range.from_list(data['ip_range']),
            starting_pot=int(data['starting_pot']),
            effective_stack=int(data['effective_stack']),
            rake_rate=float(data['rake_rate']),
            rake_cap=float(data['rake_cap']),
            flop_bet_sizes=pair('flop_bet_sizes'),
            turn_bet_sizes=pair('turn_bet_sizes'),
            river_bet_sizes=pair('river_bet_sizes'),
            turn_donk_sizes=donk('turn_donk_sizes'),
            river_donk_sizes=donk('river_donk_sizes'),
            add_allin_threshold=float(data['add_allin_threshold']),
            force_allin_threshold=float(data['force_allin_threshold']),
            merging_threshold=float(data['merging_threshold']),
            icm=IcmConfig.from_dict(data['icm']) if data.get('icm') else None,
        )


class _State(NamedTuple):
    """Betting state while expanding the tree."""
    street: int                  # board cards after this street's deal
    board_mask: int
    player: int
    bets: Tuple[int, int]        # chips put in this hand, beyond the starting pot
    street_bets: Tuple[int, int]
    last_raise: int
    street_actions: int
    oop_called_bet: bool         # previous street ended with OOP calling IP
    runout: bool                 # a player is all-in, no more decisions


def _with(values: Tuple[int, int], player: int, value: int) -> Tuple[int, int]:
    return (value, values[1]) if player == 0 else (values[0], value)


class ActionTree:
    """
    Deterministic action tree for one TreeConfig.

    Attributes:
    - nodes: list of node dicts in preorder
    - permutations: suit permutations referenced by iso records
    """

    def __init__(self, config: TreeConfig):
        config.validate()
        self.config = config
        self.nodes: List[Dict[str, Any]] = []
        self.permutations: List[Tuple[int, ...]] = list(
            symmetric_permutations(config.board_mask, config.ranges))
        self._perm_index = {perm: SUIT_PERMUTATIONS.index(perm) for perm in self.permutations}
        self._icm = config.icm.calculator() if config.icm else None
        self._build()

    # ------------------------------------------------------------------ build

    def _build(self) -> None:
        cfg = self.config
        board_len = len(cfg.board)
        initial = _State(
            street=board_len,
            board_mask=cfg.board_mask,
            player=Player.OOP,
            bets=(0, 0),
            street_bets=(0, 0),
            last_raise=0,
            street_actions=0,
            oop_called_bet=False,
            runout=cfg.effective_stack == 0,
        )
        if board_len == 0:
            self._add_chance(initial, parent=-1, action_index=0, edge_mask=0, dealing_flop=True)
        elif initial.runout:
            self._close_street(initial, parent=-1, action_index=0, edge_mask=0)
        else:
            self._add_decision(initial, parent=-1, action_index=0, edge_mask=0)

        counts = self.node_counts()
        logger.info(
            "Built tree: %d nodes (%d decision, %d chance, %d terminal), %d iso deals",
            self.num_nodes, counts[NodeType.DECISION], counts[NodeType.CHANCE],
            counts[NodeType.FOLD] + counts[NodeType.SHOWDOWN], self.num_iso_deals,
        )

    def _new_node(self, node_type: NodeType, st: _State, parent: int,
                  action_index: int, edge_mask: int) -> int:
        idx = len(self.nodes)
        self.nodes.append({
            'type': node_type,
            'player': -1,
            'parent': parent,
            'action_index': action_index,
            'depth': 0 if parent < 0 else self.nodes[parent]['depth'] + 1,
            'street': st.street,
            'board_mask': st.board_mask,
            'edge_mask': edge_mask,
            'pot': self.config.starting_pot + st.bets[0] + st.bets[1],
            'bets': st.bets,
            'children': [],
            'subtree_end': idx + 1,
        })
        if parent >= 0:
            self.nodes[parent]['children'].append(idx)
        return idx

    def _finish(self, idx: int) -> None:
        self.nodes[idx]['subtree_end'] = len(self.nodes)

    def _add_decision(self, st: _State, parent: int, action_index: int, edge_mask: int) -> int:
        actions = self.legal_actions(st)
        if not actions:
            raise NoLegalActionsError(
                f"No legal actions for player {st.player} on street {st.street} "
                f"with bets {st.bets}"
            )
        idx = self._new_node(NodeType.DECISION, st, parent, action_index, edge_mask)
        node = self.nodes[idx]
        node['player'] = st.player
        node['actions'] = actions
        for a, action in enumerate(actions):
            self._apply(st, action, idx, a)
        self._finish(idx)
        return idx

    def _apply(self, st: _State, action: Action, parent: int, action_index: int) -> None:
        p = st.player
        o = 1 - p
        if action.kind == ActionKind.FOLD:
            self._add_fold(st, p, parent, action_index)
        elif action.kind == ActionKind.CHECK:
            if p == Player.OOP:
                self._add_decision(st._replace(player=o, street_actions=st.street_actions + 1),
                                   parent, action_index, 0)
            else:
                self._close_street(st._replace(oop_called_bet=False), parent, action_index, 0)
        elif action.kind == ActionKind.CALL:
            bets = _with(st.bets, p, st.bets[p] + action.amount)
            all_in = bets[p] >= self.config.effective_stack
            after = st._replace(bets=bets, street_bets=_with(st.street_bets, p, st.street_bets[o]),
                                oop_called_bet=p == Player.OOP, runout=all_in)
            self._close_street(after, parent, action_index, 0)
        else:
            # BET amount is street chips; RAISE and ALLIN are raise-to totals
            raise_to = action.amount
            added = raise_to - st.street_bets[p]
            after = st._replace(
                player=o,
                bets=_with(st.bets, p, st.bets[p] + added),
                street_bets=_with(st.street_bets, p, raise_to),
                last_raise=max(st.last_raise, raise_to - st.street_bets[o]),
                street_actions=st.street_actions + 1,
            )
            self._add_decision(after, parent, action_index, 0)

    def _close_street(self, st: _State, parent: int, action_index: int, edge_mask: int) -> None:
        if st.street == Street.RIVER:
            self._add_showdown(st, parent, action_index, edge_mask)
        else:
            self._add_chance(st, parent, action_index, edge_mask, dealing_flop=False)

    def _add_chance(self, st: _State, parent: int, action_index: int, edge_mask: int,
                    dealing_flop: bool) -> int:
        idx = self._new_node(NodeType.CHANCE, st, parent, action_index, edge_mask)
        node = self.nodes[idx]
        num_cards = 3 if dealing_flop else 1
        next_street = Street.FLOP if dealing_flop else st.street + 1
        node['deal_count'] = num_cards
        node['deals'] = []
        node['iso'] = []

        preserving = set(board_suit_permutations(st.board_mask))
        perms = [perm for perm in self.permutations if perm in preserving]
        positions = {}
        for deal, canonical, perm in canonical_deals(st.board_mask, num_cards, perms):
            if canonical != deal:
                node['iso'].append((deal, positions[canonical], self._perm_index[perm]))
                continue
            positions[deal] = len(node['deals'])
            node['deals'].append(deal)
            child = st._replace(
                street=next_street,
                board_mask=st.board_mask | deal,
                player=Player.OOP,
                street_bets=(0, 0),
                last_raise=0,
                street_actions=0,
            )
            if child.runout:
                self._close_street(child, idx, len(node['children']), deal)
            else:
                self._add_decision(child, idx, len(node['children']), deal)

        self._finish(idx)
        return idx

    def _add_fold(self, st: _State, folder: int, parent: int, action_index: int) -> int:
        idx = self._new_node(NodeType.FOLD, st, parent, action_index, 0)
        node = self.nodes[idx]
        node['fold_player'] = folder
        # the uncalled part of the last bet goes back to the bettor
        matched = self.config.starting_pot / 2 + st.bets[folder]
        node['payoffs'] = self._payoffs(matched)
        self._finish(idx)
        return idx

    def _add_showdown(self, st: _State, parent: int, action_index: int, edge_mask: int) -> int:
        idx = self._new_node(NodeType.SHOWDOWN, st, parent, action_index, edge_mask)
        matched = self.config.starting_pot / 2 + min(st.bets)
        self.nodes[idx]['payoffs'] = self._payoffs(matched)
        self._finish(idx)
        return idx

    def _payoffs(self, matched: float) -> List[List[float]]:
        """[player][win, lose, tie] net payoff given each player's matched contribution."""
        cfg = self.config
        rake = min(2.0 * matched * cfg.rake_rate, cfg.rake_cap)
        if self._icm is None:
            win = matched - rake
            lose = -matched
            tie = -rake / 2.0
            return [[win, lose, tie], [win, lose, tie]]

        icm = cfg.icm
        base0, base1 = self._icm.calculate(icm.oop_chips, icm.ip_chips)
        oop_wins = self._icm.calculate(icm.oop_chips + matched - rake, icm.ip_chips - matched)
        ip_wins = self._icm.calculate(icm.oop_chips - matched, icm.ip_chips + matched - rake)
        split = self._icm.calculate(icm.oop_chips - rake / 2.0, icm.ip_chips - rake / 2.0)
        return [
            [oop_wins[0] - base0, ip_wins[0] - base0, split[0] - base0],
            [ip_wins[1] - base1, oop_wins[1] - base1, split[1] - base1],
        ]

    # ---------------------------------------------------------------- actions

    def legal_actions(self, st: _State) -> List[Action]:
        """Actions for the player to act, in a fixed order.

        Not facing a bet: CHECK, BETs ascending, ALLIN.
        Facing a bet: FOLD, CALL, RAISEs ascending, ALLIN.
        """
        cfg = self.config
        p = st.player
        o = 1 - p
        stack = cfg.effective_stack - st.bets[p]
        opp_stack = cfg.effective_stack - st.bets[o]
        to_call = st.street_bets[o] - st.street_bets[p]
        pot = cfg.starting_pot + st.bets[0] + st.bets[1]
        max_to = st.street_bets[p] + stack
        streets_left = Street.RIVER - st.street + 1

        if to_call == 0:
            if stack <= 0:
                return []
            actions = [Action(ActionKind.CHECK)]
            allin = stack <= cfg.add_allin_threshold * pot
            amounts = []
            for size in self._opening_sizes(st):
                if isinstance(size, AllIn):
                    allin = True
                    continue
                to = st.street_bets[p] + size.bet_amount(pot, stack, streets_left)
                if to >= max_to or self._forces_allin(max_to - to, pot + 2 * to):
                    allin = True
                else:
                    amounts.append(to)
            for to in self._merge(amounts, 0, pot, max_to if allin else None):
                actions.append(Action(ActionKind.BET, to))
            if allin:
                actions.append(Action(ActionKind.ALLIN, max_to))
            return actions

        actions = [Action(ActionKind.FOLD), Action(ActionKind.CALL, min(to_call, stack))]
        if opp_stack <= 0 or stack <= to_call:
            return actions

        pot_after_call = pot + to_call
        min_to = st.street_bets[o] + max(st.last_raise, 1)
        allin = max_to - st.street_bets[o] <= cfg.add_allin_threshold * pot_after_call
        amounts = []
        for size in cfg.bet_sizes(st.street, p).raise_:
            if isinstance(size, AllIn):
                allin = True
                continue
            to = max(size.raise_to(pot, st.street_bets[o], to_call, max_to, streets_left), min_to)
            new_pot = pot + (to - st.street_bets[p]) + (to - st.street_bets[o])
            if to >= max_to or self._forces_allin(max_to - to, new_pot):
                allin = True
            else:
                amounts.append(to)
        for to in self._merge(amounts, st.street_bets[o], pot_after_call,
                              max_to if allin else None):
            actions.append(Action(ActionKind.RAISE, to))
        if allin:
            actions.append(Action(ActionKind.ALLIN, max_to))
        return actions

    def _opening_sizes(self, st: _State) -> Sequence[BetSize]:
        cfg = self.config
        donk = cfg.donk_sizes(st.street)
        if (donk is not None and st.player == Player.OOP and st.street_actions == 0
                and st.oop_called_bet):
            return donk.donk
        return cfg.bet_sizes(st.street, st.player).bet

    def _forces_allin(self, remaining: int, pot_after_call: int) -> bool:
        return remaining <= self.config.force_allin_threshold * pot_after_call

    def _merge(self, amounts: List[int], base: int, pot: int,
               allin_to: Optional[int]) -> List[int]:
        """Drop duplicate sizes and sizes too close to a larger kept size.

        Working down from the largest size (the all-in when present), a
        size y is dropped when (1 + x) / (1 + y) < 1 + threshold for the
        last kept size x, both as fractions of the pot.
        """
        threshold = self.config.merging_threshold
        kept = []
        last = None if allin_to is None else (allin_to - base) / pot
        for to in sorted(set(amounts), reverse=True):
            ratio = (to - base) / pot
            if last is not None and (1.0 + last) / (1.0 + ratio) < 1.0 + threshold:
                continue
            kept.append(to)
            last = ratio
        return sorted(kept)

    # ---------------------------------------------------------------- queries

    @property
    def num_nodes(self) -> int:
        return len(self.nodes)

    @property
    def num_iso_deals(self) -> int:
        return sum(len(n['iso']) for n in self.nodes if n['type'] == NodeType.CHANCE)

    def node_counts(self) -> Dict[NodeType, int]:
        counts = {t: 0 for t in NodeType}
        for node in self.nodes:
            counts[node['type']] += 1
        return counts

    def decision_nodes(self) -> List[int]:
        return [i for i, n in enumerate(self.nodes) if n['type'] == NodeType.DECISION]

    def terminal_nodes(self) -> List[int]:
        return [i for i, n in enumerate(self.nodes)
                if n['type'] in (NodeType.FOLD, NodeType.SHOWDOWN)]

    def num_slots(self, num_hands: Sequence[int]) -> int:
        """Accumulator slots per buffer: sum of actions x hands over decision nodes."""
        return sum(len(n['actions']) * num_hands[n['player']]
                   for n in self.nodes if n['type'] == NodeType.DECISION)

    def memory_usage(self, num_hands: Sequence[int]) -> int:
        """Bytes needed for the regret and strategy accumulators."""
        return self.num_slots(num_hands) * BYTES_PER_SLOT * NUM_ACCUMULATORS

    def action_path(self, idx: int) -> List[str]:
        """Action names from the root to a node; deals shown as card masks."""
        path = []
        while self.nodes[idx]['parent'] >= 0:
            node = self.nodes[idx]
            parent = self.nodes[node['parent']]
            if parent['type'] == NodeType.DECISION:
                path.append(parent['actions'][node['action_index']].name)
            else:
                path.append(f"Deal {node['edge_mask']:#x}")
            idx = node['parent']
        return path[::-1]

