"""
Test support (not used by the solver itself).

It may import from: postflop_cfr.games, postflop_cfr.engine
"""

from postflop_cfr.testing.reference import ReferenceCFR

__all__ = ['ReferenceCFR']
