"""
Shared identifiers for the post-flop game tree.

Node variants are a tagged union: every node carries a NodeType
discriminant that the traversal kernels switch on directly.
"""

from dataclasses import dataclass
from enum import IntEnum


class Player(IntEnum):
    """Player identifiers."""
    CHANCE = -1
    OOP = 0
    IP = 1


class NodeType(IntEnum):
    """Node discriminant stored in the flattened arena."""
    DECISION = 0
    CHANCE = 1
    FOLD = 2
    SHOWDOWN = 3


class Street(IntEnum):
    """Betting round, valued by the number of board cards."""
    PREFLOP = 0
    FLOP = 3
    TURN = 4
    RIVER = 5


class ActionKind(IntEnum):
    FOLD = 0
    CHECK = 1
    CALL = 2
    BET = 3
    RAISE = 4
    ALLIN = 5


@dataclass(frozen=True)
class Action:
    """An action at a decision node.

    BET amounts are chips put in on the current street. RAISE and ALLIN
    amounts are the raise-to total for the street. FOLD and CHECK carry 0;
    CALL carries the amount added to match the bet.
    """
    kind: ActionKind
    amount: int = 0

    @property
    def name(self) -> str:
        if self.kind in (ActionKind.FOLD, ActionKind.CHECK):
            return self.kind.name.capitalize()
        if self.kind == ActionKind.ALLIN:
            return f"AllIn {self.amount}"
        return f"{self.kind.name.capitalize()} {self.amount}"

    @property
    def is_aggressive(self) -> bool:
        return self.kind in (ActionKind.BET, ActionKind.RAISE, ActionKind.ALLIN)

    def __str__(self) -> str:
        return self.name
