"""Configuration loader with validation and singleton access."""

import logging
import yaml
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import AccountConfig, AppConfig

logger = logging.getLogger(__name__)

# Global config singleton
_config: Optional[AppConfig] = None


def load_config(config_path: str | Path) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to config.yaml file

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config validation fails
        yaml.YAMLError: If YAML parsing fails
    """
    global _config

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ValueError("Invalid configuration: top level must be a mapping")

    raw_accounts = raw_config.pop('accounts', None) or []
    if not isinstance(raw_accounts, list):
        raise ValueError("Invalid configuration: 'accounts' must be a list")

    # A broken account entry is fatal for that account only
    accounts, invalid = _validate_accounts(raw_accounts)

    if raw_accounts and not accounts:
        logger.error("Configuration validation failed: no valid accounts")
        raise ValueError(
            "Invalid configuration: no valid accounts ("
            + "; ".join(f"{account_id}: {error}" for account_id, error in invalid.items())
            + ")"
        )

    try:
        _config = AppConfig(**raw_config, accounts=accounts, invalid_accounts=invalid)
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e

    # Log loaded configuration for audit trail
    logger.info("Configuration loaded successfully:")
    logger.info(f"  Broker gateway: {_config.broker.base_url}")
    logger.info(f"  Request timeout: {_config.broker.request_timeout_seconds}s")
    logger.info(f"  Order timeout: {_config.broker.order_timeout_seconds}s")
    logger.info(f"  Home currency: {_config.trading.home_currency}")
    logger.info(f"  Market close: {_config.trading.market_close_time} ({_config.trading.timezone})")
    logger.info(f"  AUM source: {_config.aum.statistics_url}")
    logger.info(f"  Accounts: {len(_config.accounts)} valid, {len(_config.invalid_accounts)} invalid")
    for account in _config.accounts:
        margin = account.margin_trading
        logger.info(
            f"  Account {account.id}: mode={account.desired_mode}, "
            f"interval={account.balance_interval_seconds}s, "
            f"closure={account.exchange_closure_behavior.mode}, "
            f"margin={'x' + str(margin.multiplier) + '/' + margin.balancing_strategy if margin.enabled else 'off'}, "
            f"token={'env' if account.is_token_from_env() else 'inline'}"
        )
        if margin.enabled and margin.balancing_strategy == 'keep_if_small':
            threshold = _config.trading.keep_if_small_threshold
            if threshold is None:
                threshold = margin.max_margin_size
            if threshold <= 0:
                logger.warning(
                    f"  Account {account.id}: keep_if_small has no positive threshold "
                    f"(trading.keep_if_small_threshold / max_margin_size), it will behave like remove"
                )

    return _config


def _validate_accounts(raw_accounts: list) -> tuple[list[AccountConfig], dict[str, str]]:
    """Validate each account entry on its own; invalid entries are logged and dropped"""
    accounts = []
    invalid = {}
    for index, raw in enumerate(raw_accounts):
        account_id = raw.get('id') if isinstance(raw, dict) else None
        account_id = str(account_id) if account_id else f"accounts[{index}]"
        try:
            accounts.append(AccountConfig.model_validate(raw))
        except ValidationError as e:
            logger.error(f"Account {account_id} has an invalid configuration and will not run: {e}")
            invalid[account_id] = str(e)
    return accounts, invalid


def set_config(config: AppConfig) -> AppConfig:
    """Install an already-built configuration (tests and embedded use)."""
    global _config
    _config = config
    return _config


def get_config() -> AppConfig:
    """
    Get the current loaded configuration.

    Returns:
        Current AppConfig instance

    Raises:
        RuntimeError: If config hasn't been loaded yet
    """
    if _config is None:
        raise RuntimeError(
            "Configuration not loaded. Call load_config() first."
        )
    return _config
