"""
Solver layer (Layer 4).

Iteration driver, run configuration and result navigation. It may import
from every lower layer.
"""

from postflop_cfr.solvers.config import SolverConfig
from postflop_cfr.solvers.postflop import PostflopSolver, SolveReport, regret_matching
from postflop_cfr.solvers.results import SolvedGame

__all__ = [
    'SolverConfig',
    'PostflopSolver',
    'SolveReport',
    'regret_matching',
    'SolvedGame',
]
