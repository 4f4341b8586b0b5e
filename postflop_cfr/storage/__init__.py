"""
Storage layer (Layer 3).

Binary container for solver state. It may only import from:
postflop_cfr.games, postflop_cfr.arena
"""

from postflop_cfr.storage.container import (
    FORMAT_VERSION,
    MAGIC,
    SavedState,
    dumps,
    load,
    loads,
    save,
)

__all__ = [
    'FORMAT_VERSION',
    'MAGIC',
    'SavedState',
    'dumps',
    'load',
    'loads',
    'save',
]
