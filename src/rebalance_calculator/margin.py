"""Margin-aware desired amounts and the balancing strategy for excess margin"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from app_config import MarginTradingConfig
from .models import MarginDecision, MarginTarget
from .tickers import normalize_ticker


class MarginCalculator:
    """Turn target weights into desired amounts, flagging positions that need borrowed funds"""

    def __init__(self, config: MarginTradingConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def exposure(self, total_capital: float, multiplier: Optional[float] = None) -> float:
        """Total amount that may be invested: capital plus capped margin headroom"""
        if not self.config.enabled:
            return total_capital
        multiplier = self.config.multiplier if multiplier is None else multiplier
        leverable = max(0.0, total_capital - self.config.free_threshold)
        headroom = min(leverable * (multiplier - 1), self.config.max_margin_size)
        return total_capital + max(0.0, headroom)

    def apply_margin(self, target_weights: Dict[str, float], total_capital: float,
                     non_margin_instruments: Iterable[str] = (),
                     multiplier: Optional[float] = None) -> List[MarginTarget]:
        """
        Desired amount per ticker.

        Disabled margin: weight * capital / 100, nothing is a margin position.
        Enabled: weights apply to the levered exposure; capital is assigned to
        non-margin instruments first, then by descending weight, and a position
        whose cumulative amount exceeds capital is a margin position.
        """
        if not self.config.enabled:
            return [
                MarginTarget(ticker=ticker, weight=weight, desired_amount=total_capital * weight / 100)
                for ticker, weight in target_weights.items()
            ]

        exposure = self.exposure(total_capital, multiplier)
        self.logger.info(
            f"Margin exposure: {exposure:,.2f} on capital {total_capital:,.2f} "
            f"(multiplier {multiplier if multiplier is not None else self.config.multiplier}, "
            f"free threshold {self.config.free_threshold:,.2f}, max margin {self.config.max_margin_size:,.2f})"
        )

        non_margin = {normalize_ticker(t) for t in non_margin_instruments}
        ordered = sorted(
            target_weights.items(),
            key=lambda item: (0 if normalize_ticker(item[0]) in non_margin else 1, -item[1])
        )

        targets = []
        cumulative = 0.0
        for ticker, weight in ordered:
            desired = exposure * weight / 100
            cumulative += desired
            is_margin = desired > 0 and cumulative > total_capital + 1e-9
            targets.append(MarginTarget(ticker=ticker, weight=weight, desired_amount=desired, is_margin=is_margin))
        return targets

    @staticmethod
    def is_last_balance(now: datetime, market_close_time: str, balance_interval_seconds: float,
                        window_minutes: int = 15) -> bool:
        """True when this is the final iteration before the close, or the market already closed"""
        close_hour, close_minute = (int(part) for part in market_close_time.split(':'))
        minutes_now = now.hour * 60 + now.minute
        time_to_close = close_hour * 60 + close_minute - minutes_now
        if time_to_close <= 0:
            return True
        time_to_next_balance = balance_interval_seconds / 60
        return time_to_close < time_to_next_balance or time_to_close < window_minutes

    def decide_balancing(self, home_cash: float, is_last_balance: bool,
                         keep_if_small_threshold: Optional[float] = None) -> MarginDecision:
        margin_in_use = max(0.0, -home_cash)

        if not self.config.enabled:
            return MarginDecision(margin_in_use=margin_in_use, reason="Margin trading disabled")

        if not is_last_balance:
            return MarginDecision(
                margin_in_use=margin_in_use,
                reason="Not the last balance of the day, strategy not applied"
            )

        strategy = self.config.balancing_strategy
        match strategy:
            case 'remove':
                unwind = margin_in_use > 0
                reason = f"Strategy remove: margin in use {margin_in_use:,.2f}"
            case 'keep_if_small':
                threshold = keep_if_small_threshold if keep_if_small_threshold is not None else self.config.max_margin_size
                unwind = margin_in_use > threshold
                reason = (
                    f"Strategy keep_if_small: margin in use {margin_in_use:,.2f} "
                    f"{'>' if unwind else '<='} threshold {threshold:,.2f}"
                )
            case _:
                unwind = False
                reason = f"Strategy keep: margin in use {margin_in_use:,.2f} left as is"

        self.logger.info(reason)
        return MarginDecision(
            should_unwind=unwind,
            is_last_balance=True,
            margin_in_use=margin_in_use,
            reason=reason
        )
