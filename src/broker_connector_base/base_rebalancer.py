from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging
from .base_client import BrokerClient
from .models import IterationResult

class IterationSnapshotStore:
    """Last recorded iteration result per account, kept for the lifetime of the driver"""

    def __init__(self):
        self._results: Dict[str, IterationResult] = {}

    def record(self, result: IterationResult):
        self._results[result.account_id] = result

    def get(self, account_id: str) -> Optional[IterationResult]:
        return self._results.get(account_id)

    def clear(self):
        self._results.clear()


class BaseRebalancer(ABC):
    """Base rebalancer class with common functionality"""

    def __init__(self, broker_client: BrokerClient, logger: Optional[logging.Logger] = None,
                 snapshot_store: Optional[IterationSnapshotStore] = None):
        self.broker = broker_client
        self.logger = logger or logging.getLogger(__name__)
        self.snapshot_store = snapshot_store if snapshot_store is not None else IterationSnapshotStore()

    @abstractmethod
    async def run_iteration(self, account_config) -> IterationResult:
        """Run one rebalancing iteration for account, never raises"""
        pass

    @abstractmethod
    async def calculate_rebalance(self, account_config) -> IterationResult:
        """Calculate the order plan without submitting anything"""
        pass
