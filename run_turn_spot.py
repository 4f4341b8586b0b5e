"""
Solve a small turn spot and walk the result:
- Board: Ks Qs 7s 2s
- OOP: AA, KK, 8s6s
- IP: JJ, TT, AsJh
- Pot: 100, Stack: 150
- Turn: bet 50% pot, raise 100%; River: bet 75% pot (all-in added by threshold)
"""

import logging
import time

from postflop_cfr.games.bet_sizing import BetSizeOptions, PotRelative
from postflop_cfr.games.cards import RANK_NAMES, card_name, cards_from_str, make_card
from postflop_cfr.games.ranges import Range
from postflop_cfr.games.tree import TreeConfig
from postflop_cfr.solvers import PostflopSolver, SolvedGame, SolverConfig


def pair(rank_name):
    rank = RANK_NAMES.index(rank_name)
    cards = [make_card(rank, s) for s in range(4)]
    return [(a, b) for i, a in enumerate(cards) for b in cards[i + 1:]]


def combo(text):
    c1, c2 = cards_from_str(text)
    return (c1, c2)


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    print("=" * 70)
    print("Turn Spot Solver")
    print("=" * 70)

    turn = BetSizeOptions(bet=(PotRelative(0.5),), raise_=(PotRelative(1.0),))
    river = BetSizeOptions(bet=(PotRelative(0.75),))
    config = TreeConfig(
        board=tuple(cards_from_str('KsQs7s2s')),
        oop_range=Range.from_combos(pair('A') + pair('K') + [combo('8s6s')]),
        ip_range=Range.from_combos(pair('J') + pair('T') + [combo('AsJh')]),
        starting_pot=100,
        effective_stack=150,
        turn_bet_sizes=(turn, turn),
        river_bet_sizes=(river, river),
    )

    with PostflopSolver(config, SolverConfig(max_iterations=500, target_exploitability=0.5,
                                             exploitability_every=25)) as solver:
        print("\nGame Setup:")
        print(f"  Board: {' '.join(card_name(c) for c in config.board)}")
        print(f"  Pot: {config.starting_pot}")
        print(f"  Stack: {config.effective_stack}")
        print(f"  OOP hands: {solver.num_hands[0]}")
        print(f"  IP hands: {solver.num_hands[1]}")
        print(f"  Nodes: {solver.tree.num_nodes}")
        print(f"  Isomorphic deals: {solver.tree.num_iso_deals}")
        print(f"  Accumulators: {solver.memory_usage()['accumulators'] / 1024:.1f} KiB")

        start = time.time()
        report = solver.solve()
        elapsed = time.time() - start
        print(f"\nDone in {elapsed:.2f}s: {report.iterations} iterations ({report.stop_reason}), "
              f"exploitability {report.exploitability_percent:.3f}% of pot")

        solver.print_strategy(max_nodes=8)

        game = SolvedGame(solver)
        print("\n--- OOP at the root ---")
        strategy = game.strategy()
        names = [a.name for a in game.available_actions()]
        print("Hand         | " + " | ".join(f"{name:8s}" for name in names) + " | EV")
        print("-" * 60)
        ev = game.expected_values(0)
        for h, name in enumerate(solver.hands[0].names()):
            freqs = " | ".join(f"{100 * strategy[a, h]:7.1f}%" for a in range(len(names)))
            print(f"{name:12s} | {freqs} | {ev[h]:7.2f}")


if __name__ == "__main__":
    main()
