"""Funding sells for instruments that may only be bought with unlevered cash"""

import logging
import math
from typing import Dict, List, Optional

from app_config import BuyRequiresTotalMarginalSellConfig
from broker_connector_base import OrderDirection, OrderIntent
from .calculator import calculate_position_profit
from .models import FundingPlan, FundingSell, Position
from .tickers import normalize_ticker


class MarginalSellPlanner:
    """Plan sells of other positions so that listed instruments are bought without margin"""

    def __init__(self, config: BuyRequiresTotalMarginalSellConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.instruments = {normalize_ticker(t) for t in config.instruments}

    def is_listed(self, ticker: str) -> bool:
        return normalize_ticker(ticker) in self.instruments

    def required_funds(self, positions: List[Position]) -> Dict[str, float]:
        """Planned buy amounts of listed instruments at or above min_buy_rebalance_percent of portfolio value"""
        if not self.config.enabled:
            return {}

        total_value = sum(p.current_value for p in positions)
        threshold = total_value * self.config.min_buy_rebalance_percent / 100
        required = {}
        for position in positions:
            if position.is_cash or not self.is_listed(position.ticker):
                continue
            if position.desired_percent <= 0 or position.to_buy_amount <= 0:
                continue
            if position.to_buy_amount >= threshold:
                required[position.ticker] = position.to_buy_amount
                self.logger.info(
                    f"{position.ticker}: needs {position.to_buy_amount:,.2f} of unlevered funds "
                    f"(threshold {threshold:,.2f})"
                )
            else:
                self.logger.debug(
                    f"{position.ticker}: buy of {position.to_buy_amount:,.2f} below threshold {threshold:,.2f}"
                )
        return required

    def sellable_positions(self, positions: List[Position]) -> List[Position]:
        mode = self.config.allow_to_sell_others_positions_to_buy_non_marginal_positions.mode
        candidates = [
            p for p in positions
            if not p.is_cash and p.amount > 0 and not self.is_listed(p.ticker)
        ]
        if mode == 'only_positive_positions_sell':
            profitable = []
            for position in candidates:
                profit = calculate_position_profit(position)
                if profit and profit.profit_amount > 0:
                    profitable.append((profit.profit_amount, position))
            profitable.sort(key=lambda item: item[0], reverse=True)
            return [position for _, position in profitable]
        if mode == 'equal_in_percents':
            return candidates
        return []

    def plan(self, positions: List[Position], home_cash: float) -> FundingPlan:
        required = self.required_funds(positions)
        purchases = sum(required.values())
        if home_cash < 0:
            funds_needed = abs(home_cash) + purchases
        else:
            funds_needed = max(0.0, purchases - home_cash)

        plan = FundingPlan(required_funds=required, funds_needed=funds_needed)
        if not required or funds_needed <= 0:
            return plan

        mode = self.config.allow_to_sell_others_positions_to_buy_non_marginal_positions.mode
        sellable = self.sellable_positions(positions)
        available = sum(p.current_value for p in sellable)
        if available < funds_needed:
            self.logger.warning(
                f"Sellable positions cover {available:,.2f} of {funds_needed:,.2f} needed for non-margin buys"
            )

        remaining = funds_needed
        if mode == 'only_positive_positions_sell':
            for position in sellable:
                if remaining <= 0:
                    break
                if position.lot_price <= 0:
                    continue
                held_lots = math.floor(position.current_lots)
                lots = min(math.ceil(remaining / position.lot_price), held_lots)
                if lots > 0:
                    amount = lots * position.lot_price
                    plan.sells.append(FundingSell(ticker=position.ticker, lots=lots, amount=amount))
                    remaining -= amount
        elif mode == 'equal_in_percents' and available > 0:
            for position in sellable:
                if remaining <= 0:
                    break
                if position.lot_price <= 0:
                    continue
                share = position.current_value / available
                target = min(share * funds_needed, position.current_value, remaining)
                lots = math.floor(target / position.lot_price)
                if lots > 0:
                    amount = lots * position.lot_price
                    plan.sells.append(FundingSell(ticker=position.ticker, lots=lots, amount=amount))
                    remaining -= amount

        plan.shortfall = max(0.0, remaining)
        for sell in plan.sells:
            self.logger.info(f"Funding sell: {sell.lots} lots of {sell.ticker} for {sell.amount:,.2f}")
        if plan.shortfall > 0:
            self.logger.warning(f"Funding shortfall after planned sells: {plan.shortfall:,.2f}")
        return plan

    @staticmethod
    def merge_funding_sells(intents: List[OrderIntent], plan: FundingPlan,
                            positions: List[Position]) -> List[OrderIntent]:
        """Fold funding sells into the intents; an existing sell keeps the larger lot count"""
        if not plan.sells:
            return intents

        position_map = {normalize_ticker(p.ticker): p for p in positions if not p.is_cash}
        merged = list(intents)
        for sell in plan.sells:
            key = normalize_ticker(sell.ticker)
            existing = next(
                (i for i, intent in enumerate(merged) if normalize_ticker(intent.ticker) == key),
                None
            )
            if existing is not None and merged[existing].direction == OrderDirection.SELL:
                if sell.lots > merged[existing].lots:
                    merged[existing] = merged[existing].model_copy(update={'lots': sell.lots})
                continue
            if existing is not None:
                # A planned buy of a funding instrument is replaced by the sell
                merged.pop(existing)
            position = position_map.get(key)
            if position is None or not position.figi:
                continue
            merged.insert(0, OrderIntent(
                ticker=position.ticker,
                figi=position.figi,
                direction=OrderDirection.SELL,
                lots=sell.lots,
                lot_price=position.lot_price,
                is_margin=position.is_margin
            ))
        return merged
