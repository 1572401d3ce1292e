"""Application configuration management for the T-Invest rebalancer."""

from .models import (
    AppConfig,
    BrokerConfig,
    TradingConfig,
    AumConfig,
    LoggingConfig,
    AccountConfig,
    MarginTradingConfig,
    ExchangeClosureBehaviorConfig,
    BuyRequiresTotalMarginalSellConfig,
    SellOthersConfig,
    EXCHANGE_CLOSURE_MODES,
)
from .loader import load_config, get_config, set_config

__all__ = [
    "AppConfig",
    "BrokerConfig",
    "TradingConfig",
    "AumConfig",
    "LoggingConfig",
    "AccountConfig",
    "MarginTradingConfig",
    "ExchangeClosureBehaviorConfig",
    "BuyRequiresTotalMarginalSellConfig",
    "SellOthersConfig",
    "EXCHANGE_CLOSURE_MODES",
    "load_config",
    "get_config",
    "set_config",
]
