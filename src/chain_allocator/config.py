"""Engine configuration models."""

import os
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field


class AggregatorConfig(BaseModel):
    """
    Portfolio aggregation settings.

    Attributes
    ----------
    dust_threshold : Decimal
        Formatted balances below this are skipped
    token_batch_size : int
        Number of token balance reads issued concurrently per chain
    request_timeout : float
        Per-request RPC timeout in seconds

    """

    dust_threshold: Decimal = Decimal("0.000001")
    token_batch_size: int = 16
    request_timeout: float = 10.0


class RoutingConfig(BaseModel):
    """
    Routing service access settings.

    Attributes
    ----------
    base_url : str
        Routing API base URL
    api_key : str | None
        Service credential; raises the call budget considerably
    integrator : str
        Integrator tag sent with every quote
    min_interval_with_key : float
        Spacing between quote requests when a credential is present
    min_interval_without_key : float
        Spacing between quote requests without a credential
    max_attempts : int
        Total attempts per quote, including the first
    base_delay : float
        First backoff delay in seconds
    max_delay : float
        Backoff ceiling in seconds
    quote_cache_ttl : int
        TTL for cached quote answers; 0 disables caching
    default_slippage : Decimal
        Slippage tolerance as a fraction (0.01 == 1%)

    """

    base_url: str = "https://li.quest/v1"
    api_key: str | None = None
    integrator: str = "chain-allocator"
    min_interval_with_key: float = 1.0
    min_interval_without_key: float = 36.0
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    quote_cache_ttl: int = 0
    default_slippage: Decimal = Decimal("0.01")
    request_timeout: float = 30.0

    @property
    def effective_min_interval(self) -> float:
        """Minimum spacing between outbound quote requests."""
        return self.min_interval_with_key if self.api_key else self.min_interval_without_key


class PlannerConfig(BaseModel):
    """Thresholds shared by the rebalance, yield and arbitrage planners."""

    rebalance_threshold: Decimal = Decimal("5")
    min_trade_usd: Decimal = Decimal("10")
    preferred_buy_chain: int = 42161
    quote_token: str = "USDC"
    yield_min_improvement: Decimal = Decimal("2")
    yield_min_tvl: Decimal = Decimal("1000000")
    yield_max_apy: Decimal = Decimal("100")
    yield_min_apy: Decimal = Decimal("0.1")
    arbitrage_min_percent: Decimal = Decimal("0.5")
    arbitrage_fee_percent: Decimal = Decimal("0.4")
    arbitrage_trade_usd: Decimal = Decimal("1000")
    price_timeout: float = 5.0


class RiskConfig(BaseModel):
    """Risk scoring thresholds."""

    max_step_slippage: Decimal = Decimal("0.05")
    max_gas_eth: Decimal = Decimal("0.1")
    max_steps: int = 3
    max_bridges: int = 2
    gas_warning_ratio: Decimal = Decimal("0.05")
    slippage_warning_percent: Decimal = Decimal("1")


class ExecutionConfig(BaseModel):
    """Quote freshness and deposit limits applied before signing."""

    quote_max_age: float = 30.0
    requote_tolerance: Decimal = Decimal("0.005")
    deposit_min_usdc: Decimal = Decimal("10")
    deposit_chain_id: int = 42161
    deposit_gas_limit: int = 350000
    status_poll_interval: float = 10.0
    approval_timeout: float = 120.0
    approval_poll_interval: float = 2.0


class PhrasingConfig(BaseModel):
    """Optional text-generation service settings."""

    api_key: str | None = None
    model: str = "gemini-2.0-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    max_calls_per_minute: int = 10
    cache_ttl: int = 180


class StorageConfig(BaseModel):
    """Local key/value state location."""

    state_path: Path = Field(default_factory=lambda: Path.home() / ".chain-allocator" / "state.json")
    max_history_records: int = 500


class NotificationConfig(BaseModel):
    """Notification delivery settings."""

    webhook_url: str | None = None


class Settings(BaseModel):
    """
    Top-level engine settings.

    Every section has usable defaults; ``from_env`` layers credentials and paths
    from environment variables on top.

    """

    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    phrasing: PhrasingConfig = Field(default_factory=PhrasingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Reads ``LIFI_API_KEY``, ``LIFI_INTEGRATOR``, ``GEMINI_API_KEY``,
        ``CHAIN_ALLOCATOR_STATE_PATH`` and ``CHAIN_ALLOCATOR_WEBHOOK_URL``.

        Returns
        -------
        Settings
            Settings with environment overrides applied

        """
        settings = cls()
        if api_key := os.environ.get("LIFI_API_KEY"):
            settings.routing.api_key = api_key
        if integrator := os.environ.get("LIFI_INTEGRATOR"):
            settings.routing.integrator = integrator
        if gemini_key := os.environ.get("GEMINI_API_KEY"):
            settings.phrasing.api_key = gemini_key
        if state_path := os.environ.get("CHAIN_ALLOCATOR_STATE_PATH"):
            settings.storage.state_path = Path(state_path)
        if webhook := os.environ.get("CHAIN_ALLOCATOR_WEBHOOK_URL"):
            settings.notifications.webhook_url = webhook
        return settings
