"""Exchange trading status from the broker's trading schedule"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from broker_connector_base import BrokerClient

logger = logging.getLogger(__name__)


def _within(now: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    return start is not None and end is not None and start <= now <= end


async def is_exchange_open_now(client: BrokerClient, exchange: str = 'MOEX',
                               now: Optional[datetime] = None,
                               log: Optional[logging.Logger] = None) -> bool:
    """
    True when now falls inside the main or evening session of a trading day.

    Fails open: any error while fetching or reading the schedule returns True,
    since each order is still validated by the broker on submission.
    """
    log = log or logger
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    try:
        days = await client.get_trading_schedule(exchange, now, now + timedelta(days=1))
        for day in days:
            if not day.is_trading_day:
                continue
            if _within(now, day.start_time, day.end_time):
                log.debug(f"{exchange}: within main trading session")
                return True
            if _within(now, day.evening_start_time, day.evening_end_time):
                log.debug(f"{exchange}: within evening trading session")
                return True
    except Exception as e:
        log.warning(f"Could not check {exchange} trading schedule, assuming open: {e}")
        return True

    log.info(f"{exchange}: outside all trading sessions")
    return False
