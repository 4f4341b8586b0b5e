"""
Error types raised by the solver.

Configuration errors are detected before any iteration runs. Load errors
are raised while decoding a saved container and never touch existing
in-memory state.
"""


class PostflopError(Exception):
    """Base class for all solver errors."""


class ConfigError(PostflopError, ValueError):
    """Invalid solver or tree configuration."""


class InvalidBoardError(ConfigError):
    """Board has the wrong number of cards or repeats a card."""


class CardConflictError(ConfigError):
    """Two inputs claim the same card."""


class InvalidRangeError(ConfigError):
    """Range contains a malformed combo or a weight outside [0, 1]."""


class EmptyRangeError(ConfigError):
    """Range has no combos left after card removal."""

    def __init__(self, player: int):
        self.player = player
        super().__init__(f"Range of player {player} is empty after removing board cards")


class InvalidBetSizeError(ConfigError):
    """Bet size cannot produce a legal amount."""


class NoLegalActionsError(ConfigError):
    """Bet sizing left a decision node without any legal action."""


class ArenaAllocationError(PostflopError, MemoryError):
    """Accumulator buffers could not be allocated."""


class LoadError(PostflopError):
    """Saved solver state could not be decoded."""


class VersionMismatchError(LoadError):
    """Container was written with an unsupported format version."""


class ChecksumError(LoadError):
    """Stored checksum does not match the payload."""


class TruncatedDataError(LoadError):
    """Container ends before the declared payload."""


class DecompressionError(LoadError):
    """Compressed payload could not be inflated."""


class SolverStateError(PostflopError, RuntimeError):
    """Operation is not valid in the solver's current state."""
