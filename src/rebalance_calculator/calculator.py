"""Position diffing and order intent construction"""

from typing import Dict, List, Optional, Tuple
import logging
import math
from broker_connector_base import OrderDirection, OrderIntent
from .models import MarginTarget, Position, ProfitInfo, is_finite_number
from .tickers import normalize_ticker


def calculate_position_profit(position: Position) -> Optional[ProfitInfo]:
    """Unrealized profit against the FIFO average price, else the plain average; None without cost data"""
    if position.is_cash or position.amount <= 0 or position.current_value <= 0:
        return None
    average_price = position.average_position_price_fifo or position.average_position_price
    if not average_price or average_price <= 0:
        return None
    cost = average_price * position.amount
    profit_amount = position.current_value - cost
    return ProfitInfo(profit_amount=profit_amount, profit_percent=profit_amount / cost * 100)


class RebalanceCalculator:
    """Diff current holdings against desired amounts and emit lot-rounded order intents"""

    def __init__(self, home_currency: str = 'RUB', logger: Optional[logging.Logger] = None):
        self.home_currency = home_currency.upper()
        self.logger = logger or logging.getLogger(__name__)

    def calculate_diff(self, positions: List[Position], targets: List[MarginTarget]) -> List[Position]:
        """
        Fill desired and to-buy fields of every security position.

        Held securities without a target are sold down to zero. Targets
        without a position are expected to have been added by the caller.
        """
        target_map = {normalize_ticker(t.ticker): t for t in targets}
        total_value = sum(p.current_value for p in positions)

        for position in positions:
            position.current_percent = (position.current_value / total_value * 100) if total_value > 0 else 0.0
            if position.is_cash:
                continue

            target = target_map.get(normalize_ticker(position.ticker))
            position.desired_percent = target.weight if target else 0.0
            position.desired_amount = target.desired_amount if target else 0.0
            position.is_margin = target.is_margin if target else False

            if not is_finite_number(position.lot_price) or position.lot_price <= 0:
                self.logger.warning(f"{position.ticker}: no valid lot price, position left unchanged")
                position.desired_lots = 0
                position.to_buy_lots = math.nan
                position.to_buy_amount = 0.0
                continue

            desired_lots = math.trunc(position.desired_amount / position.lot_price)
            position.desired_lots = desired_lots
            position.to_buy_lots = desired_lots - position.current_lots
            position.to_buy_amount = desired_lots * position.lot_price - position.current_value

            # At least one lot for every instrument with a positive target
            if position.desired_percent > 0 and position.current_lots < 1 and position.to_buy_lots < 1:
                self.logger.debug(f"{position.ticker}: raising order to the one-lot minimum")
                position.to_buy_lots = 1.0
                position.to_buy_amount = position.lot_price - position.current_value

        return positions

    def _is_home_cash(self, position: Position) -> bool:
        return position.is_cash or normalize_ticker(position.ticker) == self.home_currency

    def build_orders(self, positions: List[Position]) -> List[OrderIntent]:
        """
        Order intents in execution order: sells (largest sale first), then buys by lot price descending.

        Lots are floored toward zero; fractional remainders are not carried over.
        """
        sells: List[Tuple[Position, OrderIntent]] = []
        buys: List[Tuple[Position, OrderIntent]] = []

        for position in positions:
            if self._is_home_cash(position):
                continue
            to_buy_lots = position.to_buy_lots
            if not is_finite_number(to_buy_lots):
                self.logger.debug(f"{position.ticker}: to_buy_lots is not finite, skipped")
                continue
            if abs(to_buy_lots) < 1:
                continue
            if not position.figi:
                self.logger.warning(f"{position.ticker}: no FIGI, order skipped")
                continue

            lots = math.floor(abs(to_buy_lots))
            if lots < 1:
                continue
            direction = OrderDirection.BUY if to_buy_lots >= 1 else OrderDirection.SELL
            intent = OrderIntent(
                ticker=position.ticker,
                figi=position.figi,
                direction=direction,
                lots=lots,
                lot_price=position.lot_price,
                is_margin=position.is_margin
            )
            (buys if direction == OrderDirection.BUY else sells).append((position, intent))

        sells.sort(key=lambda item: item[0].to_buy_amount)
        buys.sort(key=lambda item: item[0].lot_price, reverse=True)
        return [intent for _, intent in sells] + [intent for _, intent in buys]

    def apply_min_profit_filter(self, intents: List[OrderIntent], positions: List[Position],
                                min_profit_percent: Optional[float]) -> Tuple[List[OrderIntent], List[str]]:
        """Drop sells of positions whose profit percent is below the threshold"""
        if min_profit_percent is None:
            return intents, []

        position_map = {normalize_ticker(p.ticker): p for p in positions if not p.is_cash}
        kept, dropped = [], []
        for intent in intents:
            if intent.direction != OrderDirection.SELL:
                kept.append(intent)
                continue
            position = position_map.get(normalize_ticker(intent.ticker))
            profit = calculate_position_profit(position) if position else None
            if profit is None or profit.profit_percent >= min_profit_percent:
                kept.append(intent)
                continue
            self.logger.info(
                f"Skipping sell of {intent.ticker}: profit {profit.profit_percent:.2f}% "
                f"below minimum {min_profit_percent:.2f}%"
            )
            dropped.append(intent.ticker)
        return kept, dropped

    @staticmethod
    def portfolio_shares(positions: List[Position]) -> Dict[str, float]:
        """Percent of security value per ticker, cash excluded"""
        securities = [p for p in positions if not p.is_cash]
        total = sum(p.current_value for p in securities)
        if total <= 0:
            return {}
        shares: Dict[str, float] = {}
        for position in securities:
            if position.current_value:
                ticker = normalize_ticker(position.ticker)
                shares[ticker] = shares.get(ticker, 0.0) + position.current_value / total * 100
        return shares

    @staticmethod
    def simulate_after_shares(positions: List[Position], intents: List[OrderIntent]) -> Dict[str, float]:
        """Security shares after the planned intents fill at current prices"""
        planned: Dict[str, int] = {}
        for intent in intents:
            signed = intent.lots if intent.direction == OrderDirection.BUY else -intent.lots
            key = normalize_ticker(intent.ticker)
            planned[key] = planned.get(key, 0) + signed

        final_values: Dict[str, float] = {}
        for position in positions:
            if position.is_cash:
                continue
            ticker = normalize_ticker(position.ticker)
            final_lots = position.current_lots + planned.get(ticker, 0)
            value = max(0.0, final_lots * position.lot_size * position.price)
            final_values[ticker] = final_values.get(ticker, 0.0) + value

        total = sum(final_values.values())
        if total <= 0:
            return {}
        return {ticker: value / total * 100 for ticker, value in final_values.items()}
