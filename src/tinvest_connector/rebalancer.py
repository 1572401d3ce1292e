"""One rebalancing iteration per account against T-Invest"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from app_config import AccountConfig, get_config
from broker_connector_base import (
    BaseRebalancer,
    IterationResult,
    IterationSnapshotStore,
    OrderDirection,
    OrderIntent,
    PortfolioSnapshot,
)
from rebalance_calculator import (
    DesiredMode,
    MarginalSellPlanner,
    MarginCalculator,
    OrderPlan,
    Position,
    RebalanceCalculator,
    compute_target_weights,
    decide_closure,
    normalize_ticker,
    normalize_wallet,
    parse_closure_mode,
    split_into_phases,
)
from .accounts import resolve_account_id
from .aum import AumScraper
from .context import InstrumentContext
from .exchange import is_exchange_open_now
from .market_data import MarketDataResolver
from .sequencer import OrderSequencer


class TInvestRebalancer(BaseRebalancer):
    """Rebalance a T-Invest account toward its desired wallet"""

    def __init__(self, broker_client, logger: Optional[logging.Logger] = None,
                 snapshot_store: Optional[IterationSnapshotStore] = None,
                 aum_scraper: Optional[AumScraper] = None,
                 now_provider: Optional[Callable[[], datetime]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = get_config()
        super().__init__(broker_client, logger, snapshot_store)
        self.aum_scraper = aum_scraper or AumScraper(self.config.aum, self.logger)
        self._now = now_provider or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    async def run_iteration(self, account: AccountConfig) -> IterationResult:
        """Check the exchange, apply the closure policy, plan and submit orders"""
        self.logger.info(f"Starting iteration for account {account.id}")

        try:
            closure = account.exchange_closure_behavior
            mode = parse_closure_mode(closure.mode, self.logger)
            exchange_open = await is_exchange_open_now(self.broker, account.exchange, now=self._now(), log=self.logger)
            decision = decide_closure(mode, exchange_open, closure.update_iteration_result)
            if decision.reason:
                self.logger.info(decision.reason)

            if not decision.calculate:
                return IterationResult(
                    account_id=account.id,
                    skipped=True,
                    reason=decision.reason,
                    exchange_open=exchange_open
                )

            account_id, plan, result = await self._plan(account)
            result.exchange_open = exchange_open
            result.reason = decision.reason

            if decision.submit:
                self._log_planned_orders(plan.intents)
                sequencer = OrderSequencer(
                    self.broker,
                    account_id,
                    account.sleep_between_orders_seconds,
                    broker_config=self.config.broker,
                    logger=self.logger,
                    sleep=self._sleep
                )
                outcome = await sequencer.execute(plan.phases)
                result.orders_submitted = outcome.submitted
                result.failed_orders = outcome.failed
                for phase in outcome.timed_out_phases:
                    result.warnings.append(f"Phase {phase} did not complete within the order timeout")
            else:
                self._log_planned_orders(plan.intents, is_preview=True)
                result.dry_run = True

            self._log_balancing_result(result)

            if decision.record_result:
                self.snapshot_store.record(result)

            self.logger.info(
                f"Iteration finished for account {account.id}: "
                f"{len(result.orders_submitted)} submitted, {len(result.failed_orders)} failed"
                f"{', dry run' if result.dry_run else ''}"
            )
            return result

        except Exception as e:
            self.logger.error(f"Iteration failed for account {account.id}: {e}")
            return IterationResult(account_id=account.id, success=False, error=str(e))

    async def calculate_rebalance(self, account: AccountConfig) -> IterationResult:
        """Calculate the order plan without submitting (preview)"""
        self.logger.info(f"Calculating rebalance for account {account.id}")
        _, plan, result = await self._plan(account)
        result.dry_run = True
        self._log_planned_orders(plan.intents, is_preview=True)
        self._log_balancing_result(result)
        return result

    async def _plan(self, account: AccountConfig) -> Tuple[str, OrderPlan, IterationResult]:
        home_currency = self.config.trading.home_currency
        account_id = await resolve_account_id(self.broker, account.account_id, self.logger)

        context = await InstrumentContext.load(self.broker, logger=self.logger)
        resolver = MarketDataResolver(self.broker, context, home_currency, self.aum_scraper, self.logger)

        # Target weights
        mode = DesiredMode(account.desired_mode)
        desired = normalize_wallet(account.desired_wallet)
        metrics = {}
        if mode not in (DesiredMode.MANUAL, DesiredMode.DEFAULT):
            metrics = await resolver.collect_metrics(mode, desired.keys())
        weights = compute_target_weights(mode, desired, metrics, account.decorrelation_strength, self.logger)
        self._log_target_allocations(weights)

        # Current wallet
        portfolio = await self.broker.get_portfolio(account_id)
        positions, warnings = await self._assemble_wallet(portfolio, context, resolver, weights)
        total_capital = sum(p.current_value for p in positions)
        home_cash = sum(p.current_value for p in positions if p.is_cash and p.ticker == home_currency)
        self._log_wallet(account_id, positions, total_capital)

        # Margin
        buy_requires = account.buy_requires_total_marginal_sell
        non_margin = buy_requires.instruments if buy_requires.enabled else []
        margin_calculator = MarginCalculator(account.margin_trading, self.logger)
        multiplier = None
        if account.margin_trading.enabled:
            local_now = self._now().astimezone(ZoneInfo(self.config.trading.timezone))
            is_last = MarginCalculator.is_last_balance(
                local_now,
                self.config.trading.market_close_time,
                account.balance_interval_seconds,
                self.config.trading.last_balance_window_minutes
            )
            margin_decision = margin_calculator.decide_balancing(
                home_cash, is_last, self.config.trading.keep_if_small_threshold
            )
            if margin_decision.should_unwind:
                multiplier = 1.0
                warnings.append(f"Unwinding margin: {margin_decision.reason}")
        targets = margin_calculator.apply_margin(weights, total_capital, non_margin, multiplier)

        # Orders
        calculator = RebalanceCalculator(home_currency, self.logger)
        calculator.calculate_diff(positions, targets)
        intents = calculator.build_orders(positions)
        intents, dropped = calculator.apply_min_profit_filter(
            intents, positions, account.min_profit_percent_for_close_position
        )

        funding = None
        if buy_requires.enabled:
            planner = MarginalSellPlanner(buy_requires, self.logger)
            funding = planner.plan(positions, home_cash)
            intents = planner.merge_funding_sells(intents, funding, positions)
            if funding.shortfall > 0:
                warnings.append(f"Non-margin purchases short of {funding.shortfall:,.2f} {home_currency}")

        phases = split_into_phases(intents, non_margin, phased=buy_requires.enabled)
        plan = OrderPlan(
            positions=positions,
            intents=intents,
            phases=phases,
            dropped_by_profit_filter=dropped,
            funding=funding,
            warnings=warnings
        )

        positive = {t: w for t, w in weights.items() if w > 0}
        weight_total = sum(positive.values())
        result = IterationResult(
            account_id=account.id,
            planned_orders=intents,
            target_weights=weights,
            before_shares=calculator.portfolio_shares(positions),
            after_shares=calculator.simulate_after_shares(positions, intents),
            target_shares={t: w / weight_total * 100 for t, w in positive.items()} if weight_total > 0 else {},
            total_capital=total_capital,
            cash_balance=home_cash,
            warnings=warnings
        )
        return account_id, plan, result

    async def _assemble_wallet(self, portfolio: PortfolioSnapshot, context: InstrumentContext,
                               resolver: MarketDataResolver,
                               weights: Dict[str, float]) -> Tuple[List[Position], List[str]]:
        """Cash balances, held securities and zero-holding lines for desired tickers, valued in home currency"""
        positions: List[Position] = []
        warnings: List[str] = []

        for money in portfolio.money:
            currency = money.currency.upper()
            rate = await resolver.get_fx_rate(currency)
            if rate <= 0:
                message = f"Cash in {currency} excluded: no exchange rate to {resolver.home_currency}"
                self.logger.warning(message)
                warnings.append(message)
                continue
            positions.append(Position(
                ticker=currency,
                currency=currency,
                is_cash=True,
                amount=money.amount,
                price=rate,
                lot_price=rate,
                current_value=money.amount * rate
            ))

        for held in portfolio.positions:
            instrument = context.find_by_figi(held.figi)
            if instrument is None:
                self.logger.warning(f"Instrument {held.figi} not found in listings, position skipped")
                continue
            price = await resolver.get_last_price(instrument.figi) or held.current_price
            rate = await resolver.get_fx_rate(instrument.currency)
            if not price or rate <= 0:
                message = f"{instrument.ticker}: no price in {resolver.home_currency}, position skipped"
                self.logger.warning(message)
                warnings.append(message)
                continue
            price_home = price * rate
            positions.append(Position(
                ticker=normalize_ticker(instrument.ticker),
                figi=instrument.figi,
                currency=instrument.currency,
                amount=held.quantity,
                lot_size=instrument.lot,
                price=price_home,
                lot_price=price_home * instrument.lot,
                current_value=held.quantity * price_home,
                average_position_price=held.average_position_price * rate if held.average_position_price else None,
                average_position_price_fifo=(
                    held.average_position_price_fifo * rate if held.average_position_price_fifo else None
                )
            ))

        held_tickers = {p.ticker for p in positions if not p.is_cash}
        for ticker in weights:
            if ticker in held_tickers:
                continue
            instrument = context.find_by_ticker(ticker)
            if instrument is None:
                self.logger.info(f"{ticker}: not found in instrument listings, not added to wallet")
                continue
            price_home = await resolver.get_price_in_home_currency(instrument)
            if price_home is None:
                self.logger.info(f"{ticker}: no last price, not added to wallet")
                continue
            positions.append(Position(
                ticker=ticker,
                figi=instrument.figi,
                currency=instrument.currency,
                amount=0.0,
                lot_size=instrument.lot,
                price=price_home,
                lot_price=price_home * instrument.lot,
                current_value=0.0
            ))

        return positions, warnings

    def _log_target_allocations(self, weights: Dict[str, float]):
        """Log target allocation percentages"""
        self.logger.info(f"====== TARGET ALLOCATIONS ({len(weights)}) ======")
        for ticker in sorted(weights):
            self.logger.info(f"  {ticker}: {weights[ticker]:.2f}%")
        self.logger.info(f"Total Allocation: {sum(weights.values()):.2f}%")
        self.logger.info("=" * 35)

    def _log_wallet(self, account_id: str, positions: List[Position], total_value: float):
        """Log the wallet the plan is computed from"""
        home = self.config.trading.home_currency
        self.logger.info("====== CURRENT WALLET ======")
        self.logger.info(f"Account ID: {account_id}")
        self.logger.info(f"Total Value: {total_value:,.2f} {home}")
        securities = sorted((p for p in positions if not p.is_cash), key=lambda p: p.ticker)
        if securities:
            for p in securities:
                percent = (p.current_value / total_value * 100) if total_value > 0 else 0
                self.logger.info(
                    f"  {p.ticker}: {p.current_lots:,.2f} lots x {p.lot_size} @ {p.price:,.4f} "
                    f"= {p.current_value:,.2f} ({percent:.2f}%)"
                )
        else:
            self.logger.info("No positions held")
        for p in positions:
            if p.is_cash:
                self.logger.info(f"Cash {p.ticker}: {p.amount:,.2f} ({p.current_value:,.2f} {home})")
        self.logger.info("=" * 28)

    def _log_planned_orders(self, intents: List[OrderIntent], is_preview: bool = False):
        """Log planned orders"""
        stage = "PROPOSED ORDERS (DRY RUN)" if is_preview else "PLANNED ORDERS"
        self.logger.info(f"====== {stage} ======")

        if not intents:
            self.logger.info("No orders required - portfolio is already balanced")
            self.logger.info("=" * (len(stage) + 14))
            return

        sells = [i for i in intents if i.direction == OrderDirection.SELL]
        buys = [i for i in intents if i.direction == OrderDirection.BUY]
        self.logger.info(f"Total Orders: {len(intents)} ({len(sells)} sells, {len(buys)} buys)")
        self.logger.info(f"Total Sell Value: {sum(i.estimated_value for i in sells):,.2f}")
        self.logger.info(f"Total Buy Value: {sum(i.estimated_value for i in buys):,.2f}")

        for intent in intents:
            margin = " [margin]" if intent.is_margin else ""
            self.logger.info(
                f"  {intent.direction.value.upper()} {intent.lots:,} lots of {intent.ticker} "
                f"@ {intent.lot_price:,.2f} = {intent.estimated_value:,.2f}{margin}"
            )
        self.logger.info("=" * (len(stage) + 14))

    def _log_balancing_result(self, result: IterationResult):
        """Log before/after/target shares per ticker"""
        self.logger.info("====== BALANCING RESULT ======")
        self.logger.info("Format: TICKER: diff: before% -> after% (target%)")
        tickers = sorted(
            set(result.after_shares) | set(result.target_shares),
            key=lambda t: result.after_shares.get(t, 0),
            reverse=True
        )
        for ticker in tickers:
            before = result.before_shares.get(ticker, 0.0)
            after = result.after_shares.get(ticker, 0.0)
            target = result.target_shares.get(ticker, 0.0)
            diff = after - before
            diff_text = "0%" if diff == 0 else f"{diff:+.2f}%"
            self.logger.info(f"{ticker}: {diff_text}: {before:.2f}% -> {after:.2f}% ({target:.2f}%)")
        if result.cash_balance is not None:
            self.logger.info(f"{self.config.trading.home_currency}: {result.cash_balance:,.2f}")
        self.logger.info("=" * 30)
