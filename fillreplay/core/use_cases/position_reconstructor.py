from typing import Dict, List, Optional
from fillreplay.core.entities.trade import Trade
from fillreplay.core.entities.position import PositionState
from fillreplay.core.use_cases.taint_detector import ForwardOnlyTaintPolicy, TaintPolicy
from fillreplay.core.utils.math import is_zero, signed_size, weighted_average


class _CoinState:
    __slots__ = ("net_size", "avg_entry_px")

    def __init__(self):
        self.net_size = 0.0
        self.avg_entry_px = 0.0


class PositionReconstructor:
    @staticmethod
    def reconstruct(
        trades: List[Trade],
        builder_only: bool = False,
        target_builder: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        taint_policy: Optional[TaintPolicy] = None
    ) -> List[PositionState]:
        """
        Replays fills into per-coin position snapshots.

        State is path-dependent, so `trades` should start at the beginning of
        the account history; `from_ms`/`to_ms` only bound which snapshots are
        emitted (both inclusive).
        """
        # Chronological order is mandatory for replay
        sorted_trades = sorted(trades, key=lambda t: t.time_ms)

        if builder_only and target_builder:
            policy = taint_policy or ForwardOnlyTaintPolicy()
            taint_flags = policy.classify(sorted_trades, target_builder)
        else:
            taint_flags = [False] * len(sorted_trades)

        states: Dict[str, _CoinState] = {}
        history: List[PositionState] = []

        for trade, tainted in zip(sorted_trades, taint_flags):
            state = states.setdefault(trade.coin, _CoinState())
            signed_sz = signed_size(trade)

            # Only size-increasing trades move the entry price.
            # Uses the pre-trade net size as the existing weight.
            is_opening = (state.net_size >= 0 and signed_sz > 0) or (state.net_size <= 0 and signed_sz < 0)
            if is_opening:
                state.avg_entry_px = weighted_average(
                    state.avg_entry_px, abs(state.net_size), trade.px, abs(signed_sz)
                )

            state.net_size += signed_sz

            if is_zero(state.net_size):
                state.net_size = 0.0
                state.avg_entry_px = 0.0

            if (from_ms is None or trade.time_ms >= from_ms) and (to_ms is None or trade.time_ms <= to_ms):
                history.append(PositionState(
                    timeMs=trade.time_ms,
                    coin=trade.coin,
                    netSize=state.net_size,
                    avgEntryPx=state.avg_entry_px,
                    tainted=tainted if builder_only else None
                ))

        return history
