"""Exchange-closure policy and phase splitting of order intents"""

import logging
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel
from broker_connector_base import OrderDirection, OrderIntent
from .models import ExecutionPhase
from .tickers import normalize_ticker

logger = logging.getLogger(__name__)


class ExchangeClosureMode(str, Enum):
    SKIP_ITERATION = 'skip_iteration'
    FORCE_ORDERS = 'force_orders'
    DRY_RUN = 'dry_run'


def parse_closure_mode(value, log: Optional[logging.Logger] = None) -> ExchangeClosureMode:
    """Unknown or malformed values fall back to skip_iteration with a warning"""
    try:
        return ExchangeClosureMode(str(value).strip().lower())
    except ValueError:
        (log or logger).warning(f"Unknown exchange closure mode {value!r}, using skip_iteration")
        return ExchangeClosureMode.SKIP_ITERATION


class ClosureDecision(BaseModel):
    calculate: bool
    submit: bool
    record_result: bool
    reason: Optional[str] = None


def decide_closure(mode: ExchangeClosureMode, exchange_open: bool,
                   update_iteration_result: bool = False) -> ClosureDecision:
    if exchange_open:
        return ClosureDecision(calculate=True, submit=True, record_result=True)

    match mode:
        case ExchangeClosureMode.FORCE_ORDERS:
            return ClosureDecision(
                calculate=True, submit=True, record_result=True,
                reason="Exchange closed, submitting orders anyway (force_orders)"
            )
        case ExchangeClosureMode.DRY_RUN:
            return ClosureDecision(
                calculate=True, submit=False, record_result=update_iteration_result,
                reason="Exchange closed, dry run only"
            )
        case _:
            return ClosureDecision(
                calculate=False, submit=False, record_result=False,
                reason="Exchange closed, iteration skipped"
            )


def split_into_phases(intents: List[OrderIntent], non_margin_instruments: Iterable[str] = (),
                      phased: bool = False) -> List[ExecutionPhase]:
    """
    Group intents into execution phases, preserving their relative order.

    Without phasing everything runs as one sequence. With phasing: all sells,
    then buys of non-margin instruments, then every remaining order. The first
    two phases wait for their orders to complete before the next one starts.
    """
    if not phased:
        return [ExecutionPhase(name='all', intents=list(intents))] if intents else []

    listed = {normalize_ticker(t) for t in non_margin_instruments}
    sells = [i for i in intents if i.direction == OrderDirection.SELL]
    non_margin_buys = [
        i for i in intents
        if i.direction == OrderDirection.BUY and normalize_ticker(i.ticker) in listed
    ]
    taken = {id(i) for i in sells} | {id(i) for i in non_margin_buys}
    remaining = [i for i in intents if id(i) not in taken]

    phases = [
        ExecutionPhase(name='sells', intents=sells, wait_for_completion=True),
        ExecutionPhase(name='non_margin_buys', intents=non_margin_buys, wait_for_completion=True),
        ExecutionPhase(name='remaining', intents=remaining),
    ]
    return [phase for phase in phases if phase.intents]
