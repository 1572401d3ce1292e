"""Sequential order submission with pacing and per-order failure isolation"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from app_config import BrokerConfig, get_config
from broker_connector_base import (
    BrokerClient,
    FailedOrder,
    OrderIntent,
    OrderStatus,
)
from rebalance_calculator import ExecutionPhase


class SequencerResult(BaseModel):
    submitted: List[OrderIntent] = Field(default_factory=list)
    failed: List[FailedOrder] = Field(default_factory=list)
    timed_out_phases: List[str] = Field(default_factory=list)


class OrderSequencer:
    """
    Submit phases strictly one order at a time.

    A failing order is logged and recorded; the remaining orders still run.
    Phases flagged wait_for_completion are polled until every submitted order
    is terminal or the order timeout expires before the next phase starts.
    """

    def __init__(self, client: BrokerClient, account_id: str, sleep_between_orders_seconds: float = 0.0,
                 broker_config: Optional[BrokerConfig] = None, logger: Optional[logging.Logger] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self.account_id = account_id
        self.sleep_between_orders_seconds = sleep_between_orders_seconds
        self.config = broker_config or get_config().broker
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(self, phases: List[ExecutionPhase]) -> SequencerResult:
        result = SequencerResult()
        first_order = True

        for index, phase in enumerate(phases, start=1):
            if not phase.intents:
                continue
            self.logger.info(f"Phase {index} ({phase.name}): submitting {len(phase.intents)} orders")
            phase_submitted: List[OrderIntent] = []

            for intent in phase.intents:
                if not first_order and self.sleep_between_orders_seconds > 0:
                    await self._sleep(self.sleep_between_orders_seconds)
                first_order = False

                submitted = await self._submit(intent, result)
                if submitted is not None:
                    phase_submitted.append(submitted)

            if phase.wait_for_completion and phase_submitted:
                completed = await self._wait_for_orders_complete(phase_submitted, result)
                if not completed:
                    result.timed_out_phases.append(phase.name)

        self.logger.info(
            f"Order submission finished: {len(result.submitted)} submitted, {len(result.failed)} failed"
        )
        return result

    async def _submit(self, intent: OrderIntent, result: SequencerResult) -> Optional[OrderIntent]:
        order_id = str(uuid.uuid4())
        try:
            self.logger.info(
                f"Placing {intent.direction.value.upper()} {intent.lots} lots of {intent.ticker} "
                f"({intent.figi}) order_id={order_id}"
            )
            order_result = await self.client.post_order(
                account_id=self.account_id,
                figi=intent.figi,
                lots=intent.lots,
                direction=intent.direction,
                order_id=order_id
            )
        except Exception as e:
            self.logger.error(f"Order for {intent.ticker} x{intent.lots} failed: {e}")
            result.failed.append(FailedOrder(intent=intent, error=str(e)))
            return None

        if order_result.status in OrderStatus.FAILED:
            message = f"Order for {intent.ticker} x{intent.lots} was {order_result.status.lower()}"
            self.logger.error(message)
            result.failed.append(FailedOrder(intent=intent, error=message))
            return None

        submitted = intent.model_copy(update={'order_id': order_result.order_id})
        result.submitted.append(submitted)
        return submitted

    async def _wait_for_orders_complete(self, orders: List[OrderIntent], result: SequencerResult,
                                        timeout: Optional[int] = None) -> bool:
        """Wait for orders to complete or fail; False on timeout"""
        if timeout is None:
            timeout = self.config.order_timeout_seconds

        self.logger.info(f"Waiting for {len(orders)} orders to complete")
        start_time = datetime.now()
        pending = list(orders)

        while (datetime.now() - start_time).total_seconds() < timeout:
            still_pending = []
            for order in pending:
                try:
                    status = await self.client.get_order_state(self.account_id, order.order_id)
                except Exception as e:
                    self.logger.warning(f"Could not get state of order {order.order_id}: {e}")
                    still_pending.append(order)
                    continue
                self.logger.debug(f"Order {order.order_id} ({order.ticker} x{order.lots}) status: '{status}'")

                if status in OrderStatus.FAILED:
                    message = f"Order for {order.ticker} x{order.lots} ended {status.lower()}"
                    self.logger.error(message)
                    result.failed.append(FailedOrder(intent=order, error=message))
                elif status not in OrderStatus.TERMINAL:
                    still_pending.append(order)

            pending = still_pending
            if not pending:
                self.logger.info("All orders of the phase completed")
                await self._sleep(self.config.post_completion_delay_seconds)
                return True

            await self._sleep(self.config.order_status_check_interval_seconds)

        pending_details = ", ".join(f"{o.ticker} x{o.lots}" for o in pending)
        self.logger.error(f"Orders still pending after {timeout} seconds: {pending_details}")
        return False
