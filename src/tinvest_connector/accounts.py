"""Resolve configured account selectors to broker account ids"""

import logging
import re
from typing import Optional

from broker_connector_base import BrokerAPIError, BrokerClient

ACCOUNT_TYPE_SELECTORS = {
    'BROKER': 1,
    'ISS': 2,
}

_INDEX_RE = re.compile(r'^(INDEX:)?(\d+)$')


async def resolve_account_id(client: BrokerClient, selector: str,
                             logger: Optional[logging.Logger] = None) -> str:
    """
    Accepted selectors: a literal account id, an index into the account
    list ('3' or 'INDEX:3'), or an account type ('BROKER', 'ISS').

    A bare number beyond the account list is matched against account ids,
    since T-Invest account ids are numeric too.
    """
    logger = logger or logging.getLogger(__name__)
    selector = selector.strip()
    index_match = _INDEX_RE.match(selector)

    if index_match is None and selector not in ACCOUNT_TYPE_SELECTORS:
        return selector

    accounts = await client.get_accounts()

    if index_match is not None:
        explicit, index = index_match.group(1) is not None, int(index_match.group(2))
        if index < len(accounts):
            account = accounts[index]
            logger.info(f"Selected account {account.id} ({account.name}) by index {index}")
            return account.id
        if not explicit and any(account.id == selector for account in accounts):
            return selector
        raise BrokerAPIError(f"Account index {index} out of range, token sees {len(accounts)} accounts")

    wanted_type = ACCOUNT_TYPE_SELECTORS[selector]
    for account in accounts:
        if account.type == wanted_type:
            logger.info(f"Selected account {account.id} ({account.name}) by type {selector}")
            return account.id
    raise BrokerAPIError(f"No {selector} account visible to the token")
