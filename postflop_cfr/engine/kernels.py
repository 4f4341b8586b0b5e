"""
Numba kernels for the three CFR passes.

All kernels are compiled with nogil=True so the worker pool can run them
on threads in parallel. Each kernel works on an explicit slice of the
problem (a hand range, a list of terminal nodes, or a list of nodes) and
only writes rows or accumulator slots inside that slice.

Buffers:
- reach: (2, N, H) float64, reach of each player's hands at each node,
  including the hand's initial weight
- cfv: (N, H) float64, counterfactual value of the traverser's hands,
  already weighted by the opponent's reach
"""

import numpy as np
from numba import njit

from postflop_cfr.games.base import NodeType

# Node types
NODE_DECISION = int(NodeType.DECISION)
NODE_CHANCE = int(NodeType.CHANCE)
NODE_FOLD = int(NodeType.FOLD)
NODE_SHOWDOWN = int(NodeType.SHOWDOWN)

# Backward modes
MODE_CFR = 0    # regret-matched current strategy, update accumulators
MODE_BEST = 1   # best response: max over actions
MODE_EVAL = 2   # expectation under the average strategy

# Payoff columns
WIN = 0
LOSE = 1
TIE = 2


@njit(cache=True, nogil=True)
def fill_probs(buf: np.ndarray, offset: int, na: int, nh: int, h: int,
               lock_off: int, lock_values: np.ndarray, probs: np.ndarray) -> None:
    """Action distribution of hand h from a regret or strategy-sum block.

    Uniform when nothing is positive. Locked nodes read the lock instead.
    """
    if lock_off >= 0:
        for a in range(na):
            probs[a] = lock_values[lock_off + a * nh + h]
        return
    total = 0.0
    for a in range(na):
        x = buf[offset + a * nh + h]
        if x > 0.0:
            probs[a] = x
            total += x
        else:
            probs[a] = 0.0
    if total > 0.0:
        for a in range(na):
            probs[a] /= total
    else:
        u = 1.0 / na
        for a in range(na):
            probs[a] = u


@njit(cache=True, nogil=True)
def forward_pass(
    h_start: int,
    h_end: int,
    strategy_buf: np.ndarray,
    node_type: np.ndarray,
    node_player: np.ndarray,
    child_start: np.ndarray,
    child_count: np.ndarray,
    children: np.ndarray,
    edge_mask: np.ndarray,
    acc_offset: np.ndarray,
    num_actions: np.ndarray,
    lock_offset: np.ndarray,
    lock_values: np.ndarray,
    hand_masks: np.ndarray,
    hand_weights: np.ndarray,
    num_hands: np.ndarray,
    reach: np.ndarray,
) -> None:
    """Reach of both players for hands [h_start, h_end) at every node.

    Nodes are in preorder, so a parent is always done before its children.
    """
    n_nodes = node_type.shape[0]
    probs = np.empty(max(1, num_actions.max()), dtype=np.float64)

    for q in range(2):
        nh = num_hands[q]
        hi = min(h_end, nh)
        if h_start >= hi:
            continue
        for h in range(h_start, hi):
            reach[q, 0, h] = hand_weights[q, h]

        for n in range(n_nodes):
            t = node_type[n]
            cs = child_start[n]
            cc = child_count[n]
            if t == NODE_DECISION:
                if node_player[n] == q:
                    off = acc_offset[n]
                    na = num_actions[n]
                    for h in range(h_start, hi):
                        r = reach[q, n, h]
                        if r == 0.0:
                            for a in range(na):
                                reach[q, children[cs + a], h] = 0.0
                            continue
                        fill_probs(strategy_buf, off, na, nh, h, lock_offset[n], lock_values, probs)
                        for a in range(na):
                            reach[q, children[cs + a], h] = r * probs[a]
                else:
                    for a in range(cc):
                        c = children[cs + a]
                        for h in range(h_start, hi):
                            reach[q, c, h] = reach[q, n, h]
            elif t == NODE_CHANCE:
                for a in range(cc):
                    c = children[cs + a]
                    m = edge_mask[c]
                    for h in range(h_start, hi):
                        if (hand_masks[q, h] & m) != 0:
                            reach[q, c, h] = 0.0
                        else:
                            reach[q, c, h] = reach[q, n, h]


@njit(cache=True, nogil=True)
def terminal_pass(
    terms: np.ndarray,
    player: int,
    payoffs: np.ndarray,
    node_type: np.ndarray,
    node_board_mask: np.ndarray,
    node_board_id: np.ndarray,
    fold_player: np.ndarray,
    hand_cards: np.ndarray,
    hand_masks: np.ndarray,
    num_hands: np.ndarray,
    same_hand: np.ndarray,
    strength: np.ndarray,
    order: np.ndarray,
    valid_count: np.ndarray,
    reach: np.ndarray,
    cfv: np.ndarray,
) -> None:
    """Traverser values at the given terminal nodes.

    Opponent hands sharing a card with the traverser's hand are removed
    with per-card reach sums: total - sum[c1] - sum[c2] + reach[same hand].
    """
    opp = 1 - player
    nh_p = num_hands[player]
    nh_o = num_hands[opp]
    card_sum = np.zeros(52, dtype=np.float64)
    card_part = np.zeros(52, dtype=np.float64)

    for k in range(terms.shape[0]):
        n = terms[k]
        board = node_board_mask[n]
        card_sum[:] = 0.0

        if node_type[n] == NODE_FOLD:
            if fold_player[n] == player:
                value = payoffs[n, player, LOSE]
            else:
                value = payoffs[n, player, WIN]
            total = 0.0
            for j in range(nh_o):
                r = reach[opp, n, j]
                if r != 0.0:
                    total += r
                    card_sum[hand_cards[opp, j, 0]] += r
                    card_sum[hand_cards[opp, j, 1]] += r
            for i in range(nh_p):
                if (hand_masks[player, i] & board) != 0:
                    cfv[n, i] = 0.0
                    continue
                s = total - card_sum[hand_cards[player, i, 0]] - card_sum[hand_cards[player, i, 1]]
                j = same_hand[player, i]
                if j >= 0:
                    s += reach[opp, n, j]
                cfv[n, i] = value * s
            continue

        # showdown
        b = node_board_id[n]
        w_val = payoffs[n, player, WIN]
        l_val = payoffs[n, player, LOSE]
        t_val = payoffs[n, player, TIE]
        nv_p = valid_count[b, player]
        nv_o = valid_count[b, opp]

        total = 0.0
        for k2 in range(nv_o):
            j = order[b, opp, k2]
            r = reach[opp, n, j]
            total += r
            card_sum[hand_cards[opp, j, 0]] += r
            card_sum[hand_cards[opp, j, 1]] += r

        for i in range(nh_p):
            cfv[n, i] = 0.0

        # ascending sweep: opponent hands strictly weaker
        card_part[:] = 0.0
        cum = 0.0
        j_idx = 0
        for i_idx in range(nv_p):
            i = order[b, player, i_idx]
            s = strength[b, player, i]
            while j_idx < nv_o and strength[b, opp, order[b, opp, j_idx]] < s:
                j = order[b, opp, j_idx]
                r = reach[opp, n, j]
                cum += r
                card_part[hand_cards[opp, j, 0]] += r
                card_part[hand_cards[opp, j, 1]] += r
                j_idx += 1
            win = cum - card_part[hand_cards[player, i, 0]] - card_part[hand_cards[player, i, 1]]
            cfv[n, i] = (w_val - t_val) * win

        # descending sweep: opponent hands strictly stronger
        card_part[:] = 0.0
        cum = 0.0
        j_idx = nv_o - 1
        for i_idx in range(nv_p - 1, -1, -1):
            i = order[b, player, i_idx]
            s = strength[b, player, i]
            while j_idx >= 0 and strength[b, opp, order[b, opp, j_idx]] > s:
                j = order[b, opp, j_idx]
                r = reach[opp, n, j]
                cum += r
                card_part[hand_cards[opp, j, 0]] += r
                card_part[hand_cards[opp, j, 1]] += r
                j_idx -= 1
            c1 = hand_cards[player, i, 0]
            c2 = hand_cards[player, i, 1]
            lose = cum - card_part[c1] - card_part[c2]
            disjoint = total - card_sum[c1] - card_sum[c2]
            j = same_hand[player, i]
            if j >= 0:
                disjoint += reach[opp, n, j]
            cfv[n, i] += (l_val - t_val) * lose + t_val * disjoint


@njit(cache=True, nogil=True)
def backward_pass(
    nodes: np.ndarray,
    h_start: int,
    h_end: int,
    player: int,
    mode: int,
    regrets: np.ndarray,
    strategy_sum: np.ndarray,
    pos_mult: float,
    neg_mult: float,
    strat_mult: float,
    weight: float,
    clip: bool,
    node_type: np.ndarray,
    node_player: np.ndarray,
    child_start: np.ndarray,
    child_count: np.ndarray,
    children: np.ndarray,
    edge_mask: np.ndarray,
    acc_offset: np.ndarray,
    num_actions: np.ndarray,
    lock_offset: np.ndarray,
    lock_values: np.ndarray,
    chance_factor: np.ndarray,
    iso_start: np.ndarray,
    iso_count: np.ndarray,
    iso_mask: np.ndarray,
    iso_child: np.ndarray,
    iso_perm: np.ndarray,
    hand_masks: np.ndarray,
    num_hands: np.ndarray,
    hand_perm: np.ndarray,
    reach: np.ndarray,
    cfv: np.ndarray,
) -> None:
    """Propagate traverser values up through `nodes` (given in preorder).

    Terminal rows must already be filled. In MODE_CFR the traverser's
    regret and strategy-sum slots of hands [h_start, h_end) are updated.
    """
    nh = num_hands[player]
    hi = min(h_end, nh)
    if h_start >= hi:
        return
    probs = np.empty(max(1, num_actions.max()), dtype=np.float64)

    for k in range(nodes.shape[0] - 1, -1, -1):
        n = nodes[k]
        t = node_type[n]
        if t == NODE_FOLD or t == NODE_SHOWDOWN:
            continue
        cs = child_start[n]
        cc = child_count[n]

        if t == NODE_DECISION:
            if node_player[n] != player:
                for h in range(h_start, hi):
                    s = 0.0
                    for a in range(cc):
                        s += cfv[children[cs + a], h]
                    cfv[n, h] = s
                continue

            off = acc_offset[n]
            na = num_actions[n]
            lock_off = lock_offset[n]
            for h in range(h_start, hi):
                if mode == MODE_BEST:
                    best = cfv[children[cs], h]
                    for a in range(1, na):
                        v_a = cfv[children[cs + a], h]
                        if v_a > best:
                            best = v_a
                    cfv[n, h] = best
                    continue

                if mode == MODE_CFR:
                    fill_probs(regrets, off, na, nh, h, lock_off, lock_values, probs)
                else:
                    fill_probs(strategy_sum, off, na, nh, h, lock_off, lock_values, probs)
                v = 0.0
                for a in range(na):
                    v += probs[a] * cfv[children[cs + a], h]
                cfv[n, h] = v

                if mode != MODE_CFR or lock_off >= 0:
                    continue
                r = reach[player, n, h]
                for a in range(na):
                    idx = off + a * nh + h
                    old = regrets[idx]
                    if old > 0.0:
                        new = old * pos_mult
                    else:
                        new = old * neg_mult
                    new += cfv[children[cs + a], h] - v
                    if clip and new < 0.0:
                        new = 0.0
                    regrets[idx] = new
                    strategy_sum[idx] = strategy_sum[idx] * strat_mult + weight * r * probs[a]
        else:
            factor = chance_factor[n]
            i_start = iso_start[n]
            i_end = i_start + iso_count[n]
            for h in range(h_start, hi):
                hm = hand_masks[player, h]
                s = 0.0
                for a in range(cc):
                    c = children[cs + a]
                    if (hm & edge_mask[c]) == 0:
                        s += cfv[c, h]
                for k2 in range(i_start, i_end):
                    if (hm & iso_mask[k2]) == 0:
                        hp = hand_perm[iso_perm[k2], player, h]
                        if hp >= 0:
                            s += cfv[iso_child[k2], hp]
                cfv[n, h] = s * factor


@njit(cache=True, nogil=True)
def compatible_mass(
    opp_reach: np.ndarray,
    opp_cards: np.ndarray,
    nh_o: int,
    cards: np.ndarray,
    masks: np.ndarray,
    board: int,
    nh: int,
    same: np.ndarray,
    out: np.ndarray,
) -> None:
    """For each hand, the opponent reach held in hands not sharing a card with it."""
    card_sum = np.zeros(52, dtype=np.float64)
    total = 0.0
    for j in range(nh_o):
        r = opp_reach[j]
        total += r
        card_sum[opp_cards[j, 0]] += r
        card_sum[opp_cards[j, 1]] += r
    for i in range(nh):
        if (masks[i] & board) != 0:
            out[i] = 0.0
            continue
        s = total - card_sum[cards[i, 0]] - card_sum[cards[i, 1]]
        if same[i] >= 0:
            s += opp_reach[same[i]]
        out[i] = s
