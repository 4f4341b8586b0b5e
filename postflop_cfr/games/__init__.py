"""
Game definition layer (Layer 1 - lowest).

Cards, hand evaluation, ranges, bet sizing, the action tree and ICM.
It has no internal dependencies.
"""

from postflop_cfr.games.base import Action, ActionKind, NodeType, Player, Street
from postflop_cfr.games.bet_sizing import (
    Additive,
    AllIn,
    BetSizeOptions,
    DonkSizeOptions,
    Geometric,
    PotRelative,
    PrevBetRelative,
)
from postflop_cfr.games.errors import (
    ArenaAllocationError,
    CardConflictError,
    ChecksumError,
    ConfigError,
    DecompressionError,
    EmptyRangeError,
    InvalidBetSizeError,
    InvalidBoardError,
    InvalidRangeError,
    LoadError,
    NoLegalActionsError,
    PostflopError,
    SolverStateError,
    TruncatedDataError,
    VersionMismatchError,
)
from postflop_cfr.games.icm import ICMCalculator, IcmConfig
from postflop_cfr.games.ranges import PrivateHands, Range
from postflop_cfr.games.tree import ActionTree, TreeConfig

__all__ = [
    'Action',
    'ActionKind',
    'NodeType',
    'Player',
    'Street',
    'Additive',
    'AllIn',
    'BetSizeOptions',
    'DonkSizeOptions',
    'Geometric',
    'PotRelative',
    'PrevBetRelative',
    'ArenaAllocationError',
    'CardConflictError',
    'ChecksumError',
    'ConfigError',
    'DecompressionError',
    'EmptyRangeError',
    'InvalidBetSizeError',
    'InvalidBoardError',
    'InvalidRangeError',
    'LoadError',
    'NoLegalActionsError',
    'PostflopError',
    'SolverStateError',
    'TruncatedDataError',
    'VersionMismatchError',
    'ICMCalculator',
    'IcmConfig',
    'PrivateHands',
    'Range',
    'ActionTree',
    'TreeConfig',
]
