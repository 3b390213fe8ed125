"""
Builder attribution (taint) analysis.

A position lifecycle starts when a coin's net size leaves zero and ends when
it returns to zero. A lifecycle is violated when any of its trades was not
routed through the target builder (trades with no builder count as violations).

Two policies consume the same lifecycle partition and intentionally disagree:

- RetroactiveTaintPolicy flags every trade of a violated lifecycle, including
  trades that happened before the violation. Aggregate PnL relies on this so
  that a lifecycle's realized PnL is either fully counted or fully excluded.
- ForwardOnlyTaintPolicy flags trades from the first violation onward and
  never rewrites earlier snapshots. Position history relies on this.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set, Tuple

from fillreplay.core.entities.trade import Trade
from fillreplay.core.utils.math import is_zero, signed_size


def is_attributed(trade: Trade, target_builder: str) -> bool:
    # Exact, case-sensitive match
    return trade.builder_id == target_builder


def assign_lifecycles(trades: List[Trade]) -> List[int]:
    """
    Returns the lifecycle id of every trade, scoped per coin.
    Trades must already be sorted by time_ms.
    """
    net_sizes: Dict[str, float] = {}
    lifecycle_ids: Dict[str, int] = {}
    result: List[int] = []

    for trade in trades:
        net_size = net_sizes.get(trade.coin, 0.0)
        lifecycle_id = lifecycle_ids.get(trade.coin, 0)

        if is_zero(net_size):
            lifecycle_id += 1
            lifecycle_ids[trade.coin] = lifecycle_id

        result.append(lifecycle_id)

        net_size += signed_size(trade)
        net_sizes[trade.coin] = 0.0 if is_zero(net_size) else net_size

    return result


class TaintPolicy(ABC):
    name: str = ""

    @abstractmethod
    def classify(self, trades: List[Trade], target_builder: str) -> List[bool]:
        """One taint flag per trade, same order as the (sorted) input."""
        pass


class RetroactiveTaintPolicy(TaintPolicy):
    name = "retroactive"

    def violated_lifecycles(
        self,
        trades: List[Trade],
        target_builder: str,
        lifecycles: Optional[List[int]] = None
    ) -> Set[Tuple[str, int]]:
        if lifecycles is None:
            lifecycles = assign_lifecycles(trades)
        return {
            (trade.coin, lifecycle_id)
            for trade, lifecycle_id in zip(trades, lifecycles)
            if not is_attributed(trade, target_builder)
        }

    def classify(self, trades: List[Trade], target_builder: str) -> List[bool]:
        lifecycles = assign_lifecycles(trades)
        violated = self.violated_lifecycles(trades, target_builder, lifecycles)
        return [(trade.coin, lifecycle_id) in violated for trade, lifecycle_id in zip(trades, lifecycles)]


class ForwardOnlyTaintPolicy(TaintPolicy):
    name = "forward-only"

    def classify(self, trades: List[Trade], target_builder: str) -> List[bool]:
        net_sizes: Dict[str, float] = {}
        tainted: Dict[str, bool] = {}
        flags: List[bool] = []

        for trade in trades:
            net_size = net_sizes.get(trade.coin, 0.0)

            # Lifecycle start: begin clean
            if is_zero(net_size):
                tainted[trade.coin] = False

            if not is_attributed(trade, target_builder):
                tainted[trade.coin] = True

            flags.append(tainted[trade.coin])

            net_size += signed_size(trade)
            net_sizes[trade.coin] = 0.0 if is_zero(net_size) else net_size

        return flags


def filter_builder_trades(
    trades: List[Trade],
    target_builder: str,
    policy: Optional[TaintPolicy] = None
) -> Tuple[List[Trade], bool]:
    """
    Keeps only clean, builder-attributed trades.
    Returns (kept_trades, tainted) where tainted is True if any trade was flagged.
    """
    policy = policy or RetroactiveTaintPolicy()
    ordered = sorted(trades, key=lambda t: t.time_ms)
    flags = policy.classify(ordered, target_builder)

    kept = [
        trade for trade, flagged in zip(ordered, flags)
        if not flagged and is_attributed(trade, target_builder)
    ]
    return kept, any(flags)
