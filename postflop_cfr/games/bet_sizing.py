"""
Bet-size abstraction.

Sizes arrive already parsed into these structured types; turning text
like "50%, 2.5x, a" into them is the front end's job. Amounts are whole
chips. Bet amounts are chips put in on the current street; raise
amounts are raise-to totals for the street, and max_to is the
raise-to total that puts the raiser all-in.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple, Union

from .errors import InvalidBetSizeError


def _chips(x: float) -> int:
    return max(1, int(round(x)))


@dataclass(frozen=True)
class PotRelative:
    """Fraction of the pot (for raises: of the pot after calling)."""
    ratio: float

    def __post_init__(self):
        if not self.ratio > 0:
            raise InvalidBetSizeError(f"Pot-relative size must be positive, got {self.ratio}")

    def bet_amount(self, pot: int, stack: int, streets_left: int) -> int:
        return _chips(self.ratio * pot)

    def raise_to(self, pot: int, prev_to: int, to_call: int, max_to: int, streets_left: int) -> int:
        return prev_to + _chips(self.ratio * (pot + to_call))


@dataclass(frozen=True)
class PrevBetRelative:
    """Multiple of the previous bet; only valid for raises."""
    ratio: float

    def __post_init__(self):
        if not self.ratio > 1.0:
            raise InvalidBetSizeError(
                f"Previous-bet multiple must exceed 1, got {self.ratio}"
            )

    def bet_amount(self, pot: int, stack: int, streets_left: int) -> int:
        raise InvalidBetSizeError("Previous-bet multiple cannot be used for an opening bet")

    def raise_to(self, pot: int, prev_to: int, to_call: int, max_to: int, streets_left: int) -> int:
        return _chips(self.ratio * prev_to)


@dataclass(frozen=True)
class Additive:
    """Fixed number of chips (for raises: added on top of the previous bet)."""
    chips: int

    def __post_init__(self):
        if not self.chips > 0:
            raise InvalidBetSizeError(f"Additive size must be positive, got {self.chips}")

    def bet_amount(self, pot: int, stack: int, streets_left: int) -> int:
        return int(self.chips)

    def raise_to(self, pot: int, prev_to: int, to_call: int, max_to: int, streets_left: int) -> int:
        return prev_to + int(self.chips)


@dataclass(frozen=True)
class Geometric:
    """Size that gets all-in by the river when bet and called every street.

    num_streets = 0 means "the streets left, counting this one".
    """
    num_streets: int = 0
    max_pot_ratio: float = float('inf')

    def __post_init__(self):
        if self.num_streets < 0:
            raise InvalidBetSizeError(f"Geometric street count must be >= 0, got {self.num_streets}")
        if not self.max_pot_ratio > 0:
            raise InvalidBetSizeError("Geometric cap must be positive")

    def _ratio(self, pot: int, stack: int, streets_left: int) -> float:
        n = self.num_streets or max(streets_left, 1)
        ratio = ((1.0 + 2.0 * stack / pot) ** (1.0 / n) - 1.0) / 2.0
        return min(ratio, self.max_pot_ratio)

    def bet_amount(self, pot: int, stack: int, streets_left: int) -> int:
        return _chips(self._ratio(pot, stack, streets_left) * pot)

    def raise_to(self, pot: int, prev_to: int, to_call: int, max_to: int, streets_left: int) -> int:
        pot_after_call = pot + to_call
        ratio = self._ratio(pot_after_call, max(max_to - prev_to, 0), streets_left)
        return prev_to + _chips(ratio * pot_after_call)


@dataclass(frozen=True)
class AllIn:
    """Shove the remaining stack."""

    def bet_amount(self, pot: int, stack: int, streets_left: int) -> int:
        return stack

    def raise_to(self, pot: int, prev_to: int, to_call: int, max_to: int, streets_left: int) -> int:
        return max_to


BetSize = Union[PotRelative, PrevBetRelative, Additive, Geometric, AllIn]

_KINDS = {
    'pot': PotRelative,
    'prev': PrevBetRelative,
    'add': Additive,
    'geo': Geometric,
    'allin': AllIn,
}


def size_to_dict(size: BetSize) -> Dict[str, Any]:
    for key, cls in _KINDS.items():
        if isinstance(size, cls):
            if cls is PotRelative or cls is PrevBetRelative:
                return {'kind': key, 'ratio': size.ratio}
            if cls is Additive:
                return {'kind': key, 'chips': size.chips}
            if cls is Geometric:
                cap = size.max_pot_ratio
                return {'kind': key, 'num_streets': size.num_streets,
                        'max_pot_ratio': None if cap == float('inf') else cap}
            return {'kind': key}
    raise InvalidBetSizeError(f"Unknown bet size: {size!r}")


def size_from_dict(data: Dict[str, Any]) -> BetSize:
    kind = data.get('kind')
    if kind not in _KINDS:
        raise InvalidBetSizeError(f"Unknown bet size kind: {kind!r}")
    if kind in ('pot', 'prev'):
        return _KINDS[kind](float(data['ratio']))
    if kind == 'add':
        return Additive(int(data['chips']))
    if kind == 'geo':
        cap = data.get('max_pot_ratio')
        return Geometric(int(data['num_streets']), float('inf') if cap is None else float(cap))
    return AllIn()


@dataclass(frozen=True)
class BetSizeOptions:
    """Sizes for opening bets and for raises on one street for one player."""
    bet: Tuple[BetSize, ...] = ()
    raise_: Tuple[BetSize, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'bet', tuple(self.bet))
        object.__setattr__(self, 'raise_', tuple(self.raise_))
        for size in self.bet:
            if isinstance(size, PrevBetRelative):
                raise InvalidBetSizeError("Previous-bet multiples are only valid for raises")
            if not isinstance(size, tuple(_KINDS.values())):
                raise InvalidBetSizeError(f"Unknown bet size: {size!r}")
        for size in self.raise_:
            if not isinstance(size, tuple(_KINDS.values())):
                raise InvalidBetSizeError(f"Unknown raise size: {size!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {'bet': [size_to_dict(s) for s in self.bet],
                'raise': [size_to_dict(s) for s in self.raise_]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BetSizeOptions':
        return cls(bet=tuple(size_from_dict(d) for d in data.get('bet', [])),
                   raise_=tuple(size_from_dict(d) for d in data.get('raise', [])))


@dataclass(frozen=True)
class DonkSizeOptions:
    """Sizes for OOP leading into the previous street's aggressor."""
    donk: Tuple[BetSize, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'donk', tuple(self.donk))
        for size in self.donk:
            if isinstance(size, PrevBetRelative):
                raise InvalidBetSizeError("Previous-bet multiples are only valid for raises")

    def to_dict(self) -> Dict[str, Any]:
        return {'donk': [size_to_dict(s) for s in self.donk]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DonkSizeOptions':
        return cls(donk=tuple(size_from_dict(d) for d in data.get('donk', [])))
