"""
Balancer Service - entry point

Runs one rebalancing iteration per configured account, either once or on a
per-account interval driven by APScheduler.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app_config import AccountConfig, AppConfig, load_config
from balancer_service.context import clear_current_account, set_current_account
from balancer_service.logger import AppLogger, configure_root_logger
from broker_connector_base import IterationResult, IterationSnapshotStore
from tinvest_connector import TInvestClient, TInvestRebalancer

app_logger = AppLogger(__name__)


class BalancerApp:
    """Drive rebalancing iterations for the configured accounts"""

    def __init__(self, config: AppConfig, account_ids: Optional[List[str]] = None, preview: bool = False):
        self.config = config
        self.preview = preview
        self.snapshot_store = IterationSnapshotStore()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._stop_event: Optional[asyncio.Event] = None

        if account_ids:
            unknown = [
                a for a in account_ids
                if config.get_account(a) is None and a not in config.invalid_accounts
            ]
            if unknown:
                raise ValueError(f"Unknown account ids: {', '.join(unknown)}")
            for account_id in account_ids:
                if account_id in config.invalid_accounts:
                    app_logger.log_error(f"Account {account_id} skipped: invalid configuration")
            self.accounts = [config.get_account(a) for a in account_ids if a not in config.invalid_accounts]
        else:
            self.accounts = list(config.accounts)

    async def run_account(self, account: AccountConfig) -> Optional[IterationResult]:
        """One iteration for one account; never raises"""
        set_current_account(account.id)
        try:
            token = account.resolve_token()
            if not token:
                app_logger.log_error(f"No API token available for account {account.id}, skipping")
                return None

            async with TInvestClient(token, self.config.broker) as client:
                rebalancer = TInvestRebalancer(
                    client,
                    logger=logging.getLogger(f"tinvest_connector.rebalancer.{account.id}"),
                    snapshot_store=self.snapshot_store
                )
                if self.preview:
                    return await rebalancer.calculate_rebalance(account)
                return await rebalancer.run_iteration(account)

        except Exception as e:
            app_logger.log_error(f"Account {account.id} iteration crashed: {e}")
            return IterationResult(account_id=account.id, success=False, error=str(e))
        finally:
            clear_current_account()

    async def run_once(self) -> List[Optional[IterationResult]]:
        """Run every selected account once, concurrently across accounts"""
        app_logger.log_info(f"Running a single iteration for {len(self.accounts)} accounts")
        results = await asyncio.gather(*(self.run_account(account) for account in self.accounts))

        for account, result in zip(self.accounts, results):
            if result is None:
                app_logger.log_warning(f"Account {account.id}: not run")
            elif not result.success:
                app_logger.log_error(f"Account {account.id}: failed - {result.error}")
            elif result.skipped:
                app_logger.log_info(f"Account {account.id}: skipped - {result.reason}")
            else:
                app_logger.log_info(
                    f"Account {account.id}: {len(result.orders_submitted)} submitted, "
                    f"{len(result.failed_orders)} failed, {len(result.planned_orders)} planned"
                )
        return results

    async def start(self):
        """Schedule every account on its own interval and run until stopped"""
        timezone = ZoneInfo(self.config.trading.timezone)
        self._stop_event = asyncio.Event()
        self.scheduler = AsyncIOScheduler(timezone=timezone)

        for account in self.accounts:
            self.scheduler.add_job(
                self.run_account,
                IntervalTrigger(seconds=account.balance_interval_seconds, timezone=timezone),
                args=[account],
                id=f"rebalance_{account.id}",
                name=f"Rebalance {account.id}",
                next_run_time=datetime.now(timezone),
                max_instances=1,
                coalesce=True
            )
            app_logger.log_info(f"Scheduled account {account.id} every {account.balance_interval_seconds:g}s")

        self.scheduler.start()
        app_logger.log_info("Balancer service started")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._stop_event.set)

        await self._stop_event.wait()
        await self.stop()

    async def stop(self):
        """Stop the scheduler gracefully"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            app_logger.log_info("Balancer service stopped")
        if self._stop_event is not None:
            self._stop_event.set()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tinvest-rebalancer",
        description="Rebalance T-Invest accounts toward their desired wallets"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config.yaml"),
        help="Path to config.yaml (default: $CONFIG_PATH or ./config.yaml)"
    )
    parser.add_argument(
        "--account",
        action="append",
        dest="accounts",
        help="Account id from the config to run; repeatable, defaults to all accounts"
    )
    parser.add_argument("--once", action="store_true", help="Run a single iteration and exit")
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Calculate and log the order plan without submitting (implies --once)"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # Minimal logging until the configured format is known
    configure_root_logger()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        app_logger.log_error(f"Failed to load configuration: {e}")
        return 1

    configure_root_logger(config.logging)

    try:
        app = BalancerApp(config, args.accounts, preview=args.preview)
    except ValueError as e:
        app_logger.log_error(str(e))
        return 1

    if not app.accounts:
        app_logger.log_error("No valid accounts to run")
        return 1

    if args.once or args.preview:
        results = asyncio.run(app.run_once())
        return 0 if all(r is not None and r.success for r in results) else 1

    asyncio.run(app.start())
    return 0


if __name__ == "__main__":
    sys.exit(main())
