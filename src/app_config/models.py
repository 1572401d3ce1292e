"""Pydantic models for rebalancer configuration with validation."""

import logging
import math
import os
import re
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

EXCHANGE_CLOSURE_MODES = ("skip_iteration", "force_orders", "dry_run")

_TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
_ENV_REFERENCE = re.compile(r'^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$')


class BrokerConfig(BaseModel):
    """T-Invest REST gateway settings."""

    base_url: str = Field(
        default="https://invest-public-api.tinkoff.ru/rest",
        description="Base URL of the T-Invest REST gateway"
    )
    app_name: str = Field(
        default="tinvest-rebalancer",
        description="Value sent in the x-app-name header"
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        ge=1.0,
        le=120.0,
        description="Timeout for a single broker API request"
    )
    order_status_check_interval_seconds: float = Field(
        default=1.0,
        ge=0.2,
        le=10.0,
        description="Delay between order state polls while waiting for a phase to complete"
    )
    order_timeout_seconds: int = Field(
        default=60,
        ge=5,
        le=600,
        description="Maximum time to wait for a phase's orders to reach a terminal state"
    )
    post_completion_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Wait after a phase completes before starting the next one"
    )


class TradingConfig(BaseModel):
    """Exchange calendar and margin timing parameters."""

    home_currency: str = Field(
        default="RUB",
        min_length=3,
        max_length=3,
        description="Currency all amounts are expressed in"
    )
    market_close_time: str = Field(
        default="18:45",
        description="Close of the main session in HH:MM (exchange timezone)"
    )
    timezone: str = Field(
        default="Europe/Moscow",
        description="Exchange timezone used for market_close_time"
    )
    last_balance_window_minutes: int = Field(
        default=15,
        ge=0,
        le=240,
        description="Iterations this close to market close count as the last balance of the day"
    )
    keep_if_small_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Materiality threshold for keep_if_small; defaults to the account's max_margin_size"
    )

    @field_validator("home_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("market_close_time")
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        """Validate time format is HH:MM where HH is 00-23 and MM is 00-59."""
        if not _TIME_PATTERN.match(v):
            raise ValueError(
                f"Invalid time format '{v}'. Must be HH:MM where HH is 00-23 and MM is 00-59"
            )
        return v


class AumConfig(BaseModel):
    """Fund statistics page used for AUM lookups."""

    statistics_url: str = Field(
        default="https://t-capital-funds.ru/statistics/",
        description="HTML page with the per-fund net asset value table"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Timeout for the statistics page request"
    )
    user_agent: str = Field(
        default="Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/126.0 Safari/537.36",
        description="User-Agent header for the statistics page"
    )


class LoggingConfig(BaseModel):
    """Logging output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["text", "json"] = "text"
    file_path: Optional[str] = Field(
        default=None,
        description="Optional log file; rotated daily and gzip-compressed"
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class MarginTradingConfig(BaseModel):
    """Per-account margin settings."""

    enabled: bool = False
    multiplier: float = Field(
        default=1.0,
        ge=1.0,
        le=4.0,
        description="Portfolio exposure multiplier"
    )
    free_threshold: float = Field(
        default=0.0,
        ge=0.0,
        description="Capital kept unlevered before margin is applied"
    )
    max_margin_size: float = Field(
        default=0.0,
        ge=0.0,
        description="Cap on borrowed exposure in home currency"
    )
    balancing_strategy: Literal["remove", "keep", "keep_if_small"] = "keep"


class ExchangeClosureBehaviorConfig(BaseModel):
    """What an iteration does when the exchange is closed."""

    mode: str = Field(
        default="skip_iteration",
        description="One of skip_iteration, force_orders, dry_run"
    )
    update_iteration_result: bool = False

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in EXCHANGE_CLOSURE_MODES:
            raise ValueError(
                f"exchange_closure_behavior.mode must be one of: {', '.join(EXCHANGE_CLOSURE_MODES)}. Got: {v}"
            )
        return v


class SellOthersConfig(BaseModel):
    mode: Literal["only_positive_positions_sell", "equal_in_percents", "none"] = "only_positive_positions_sell"


class BuyRequiresTotalMarginalSellConfig(BaseModel):
    """Instruments that may only be bought with unlevered cash."""

    enabled: bool = False
    instruments: List[str] = Field(default_factory=list)
    allow_to_sell_others_positions_to_buy_non_marginal_positions: SellOthersConfig = Field(
        default_factory=SellOthersConfig
    )
    min_buy_rebalance_percent: float = Field(
        default=0.5,
        ge=0.0,
        le=100.0,
        description="Buys of listed instruments below this share of portfolio value are ignored"
    )

    @model_validator(mode="after")
    def require_instruments_when_enabled(self):
        if self.enabled and not self.instruments:
            raise ValueError("buy_requires_total_marginal_sell.instruments must not be empty when enabled")
        return self


class AccountConfig(BaseModel):
    """Rebalancing settings for one brokerage account."""

    id: str = Field(min_length=1)
    name: str = ""
    t_invest_token: str = Field(min_length=1)
    account_id: str = Field(min_length=1)
    desired_wallet: Dict[str, float]
    desired_mode: Literal["manual", "default", "marketcap", "aum", "marketcap_aum", "decorrelation"] = "manual"
    balance_interval_seconds: float = Field(default=3600.0, gt=0.0)
    sleep_between_orders_seconds: float = Field(default=3.0, ge=0.0, le=60.0)
    exchange: str = "MOEX"
    margin_trading: MarginTradingConfig = Field(default_factory=MarginTradingConfig)
    exchange_closure_behavior: ExchangeClosureBehaviorConfig = Field(
        default_factory=ExchangeClosureBehaviorConfig
    )
    buy_requires_total_marginal_sell: BuyRequiresTotalMarginalSellConfig = Field(
        default_factory=BuyRequiresTotalMarginalSellConfig
    )
    min_profit_percent_for_close_position: Optional[float] = Field(
        default=None,
        description="Sell only positions whose profit percent is at least this value"
    )
    decorrelation_strength: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="How strongly the market cap / AUM premium shifts baseline weights"
    )

    @field_validator("desired_wallet")
    @classmethod
    def validate_desired_wallet(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v:
            raise ValueError("desired_wallet must not be empty")
        for ticker, weight in v.items():
            if weight is None or not math.isfinite(weight) or weight < 0:
                raise ValueError(f"desired_wallet weight for {ticker} must be a non-negative number, got {weight}")
        total = sum(v.values())
        if abs(total - 100) > 1:
            logger.warning(f"Sum of desired_wallet weights is {total:.2f}%, not 100%")
        return v

    @field_validator("min_profit_percent_for_close_position")
    @classmethod
    def validate_min_profit(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return v
        if not math.isfinite(v):
            raise ValueError("min_profit_percent_for_close_position must be a finite number")
        if v < -100 or v > 1000:
            raise ValueError("min_profit_percent_for_close_position must be between -100 and 1000")
        return v

    def resolve_token(self) -> Optional[str]:
        """Return the API token, expanding a ${VARIABLE_NAME} reference from the environment."""
        match = _ENV_REFERENCE.match(self.t_invest_token)
        if match:
            return os.getenv(match.group(1))
        return self.t_invest_token

    def is_token_from_env(self) -> bool:
        return bool(_ENV_REFERENCE.match(self.t_invest_token))


class AppConfig(BaseModel):
    """Root application configuration."""

    broker: BrokerConfig = Field(
        default_factory=BrokerConfig,
        description="Broker gateway settings"
    )
    trading: TradingConfig = Field(
        default_factory=TradingConfig,
        description="Exchange calendar and margin timing"
    )
    aum: AumConfig = Field(
        default_factory=AumConfig,
        description="AUM statistics source"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging output"
    )
    accounts: List[AccountConfig] = Field(
        default_factory=list,
        description="Accounts to rebalance"
    )
    invalid_accounts: Dict[str, str] = Field(
        default_factory=dict,
        description="Account entries dropped at load time, id -> validation error"
    )

    @model_validator(mode="after")
    def unique_account_ids(self):
        seen = set()
        for account in self.accounts:
            if account.id in seen:
                raise ValueError(f"Duplicate account id: {account.id}")
            seen.add(account.id)
        return self

    def get_account(self, account_id: str) -> Optional[AccountConfig]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None
