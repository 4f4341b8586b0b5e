"""
Post-flop CFR Solver

Computes near-equilibrium strategies for heads-up hold'em post-flop
subgames with vectorized counterfactual regret minimization over an
explicit, index-addressed game tree.
"""

__version__ = "0.1.0"
