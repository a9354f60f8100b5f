"""Data models for portfolios, proposals, quotes and execution."""

from datetime import UTC, datetime
from decimal import ROUND_DOWN, Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# Readiness gate limits for execution plans
READY_RISK_LIMIT = 50
MAX_WARNINGS = 3


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ChainStatus(StrEnum):
    """Outcome of reading one chain."""

    OK = "ok"
    UNAVAILABLE = "unavailable"


class ActionKind(StrEnum):
    """Kind of proposed capital movement."""

    SELL = "sell"
    BUY = "buy"
    YIELD_ROTATE = "yield_rotate"
    ARBITRAGE = "arbitrage"


class Role(StrEnum):
    """Computation roles that take part in a workflow."""

    ROUTE_STRATEGIST = "route_strategist"
    ARBITRAGE_HUNTER = "arbitrage_hunter"
    PORTFOLIO_GUARDIAN = "portfolio_guardian"
    YIELD_SEEKER = "yield_seeker"
    RISK_SENTINEL = "risk_sentinel"
    REBALANCER = "rebalancer"
    ROUTE_EXECUTOR = "route_executor"


class IntentType(StrEnum):
    """Workflow categories recognised by the intent classifier."""

    BALANCE_CHECK = "balance_check"
    CLARIFICATION = "clarification"
    HEDGE = "hedge"
    BORROW = "borrow"
    STAGED_DEPOSIT = "staged_deposit"
    VAULT_DEPOSIT = "vault_deposit"
    SWAP_BRIDGE = "swap_bridge"
    EXECUTE = "execute"
    MONITOR = "monitor"
    YIELD = "yield"
    ARBITRAGE = "arbitrage"
    REBALANCE = "rebalance"
    GENERAL = "general"


class ExecutionStatus(StrEnum):
    """Lifecycle of a submitted route. Transitions only move forward."""

    PENDING = "pending"
    CONFIRMING = "confirming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)

    @property
    def rank(self) -> int:
        return {"pending": 0, "confirming": 1, "completed": 2, "failed": 2}[self.value]


class TransactionType(StrEnum):
    """Kinds of recorded transactions."""

    YIELD_ROTATION = "yield_rotation"
    ARBITRAGE = "arbitrage"
    REBALANCE = "rebalance"
    BRIDGE = "bridge"
    SWAP = "swap"
    APPROVAL = "approval"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class Confidence(StrEnum):
    """Confidence label for an arbitrage opportunity."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(StrEnum):
    """Coarse risk label for a yield pool."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TokenPosition(BaseModel):
    """
    Balance of one token on one chain at snapshot time.

    Attributes
    ----------
    chain_id : int
        Network the balance lives on
    token_address : str
        Token contract, or the native placeholder address
    symbol : str
        Token symbol
    decimals : int
        Token decimals
    raw_balance : int
        Balance in smallest units
    formatted_balance : Decimal
        Balance in whole tokens
    price_usd : Decimal
        Unit price used for valuation
    value_usd : Decimal
        ``formatted_balance * price_usd``
    price_source : str
        ``primary``, ``fallback`` or ``none``

    """

    model_config = ConfigDict(frozen=True)

    chain_id: int
    token_address: str
    symbol: str
    decimals: int
    raw_balance: int
    formatted_balance: Decimal
    price_usd: Decimal
    value_usd: Decimal
    price_source: str = "primary"


class ChainBalanceResult(BaseModel):
    """
    Tagged per-chain read outcome.

    ``status == ok`` with no positions means the chain was read and is confirmed
    empty; ``unavailable`` means nothing is known about it.

    """

    model_config = ConfigDict(frozen=True)

    chain_id: int
    chain_name: str
    status: ChainStatus
    positions: list[TokenPosition] = Field(default_factory=list)
    reason: str | None = None
    failed_tokens: list[str] = Field(default_factory=list)


class PortfolioSnapshot(BaseModel):
    """
    Point-in-time valuation of a wallet across chains.

    Attributes
    ----------
    address : str
        Wallet address
    positions : list[TokenPosition]
        Non-dust positions on every reachable chain
    total_value_usd : Decimal
        Sum of ``positions[].value_usd``
    chains : frozenset[str]
        Names of chains holding at least one position
    chain_results : list[ChainBalanceResult]
        Per-chain outcomes including unreachable chains
    taken_at : datetime
        Snapshot time
    pnl_usd : Decimal | None
        Value change since the previously stored snapshot
    pnl_percent : Decimal | None
        Relative value change since the previously stored snapshot

    """

    model_config = ConfigDict(frozen=True)

    address: str
    positions: list[TokenPosition]
    total_value_usd: Decimal
    chains: frozenset[str] = Field(default_factory=frozenset)
    chain_results: list[ChainBalanceResult] = Field(default_factory=list)
    taken_at: datetime = Field(default_factory=utc_now)
    pnl_usd: Decimal | None = None
    pnl_percent: Decimal | None = None

    @classmethod
    def build(
        cls,
        address: str,
        chain_results: list[ChainBalanceResult],
        taken_at: datetime | None = None,
    ) -> "PortfolioSnapshot":
        """Assemble a snapshot whose total is derived from its positions."""
        positions = [p for result in chain_results for p in result.positions]
        total = sum((p.value_usd for p in positions), Decimal("0"))
        chains = frozenset(r.chain_name for r in chain_results if r.positions)
        return cls(
            address=address,
            positions=positions,
            total_value_usd=total,
            chains=chains,
            chain_results=chain_results,
            taken_at=taken_at or utc_now(),
        )

    @property
    def unavailable_chains(self) -> list[int]:
        return [r.chain_id for r in self.chain_results if r.status == ChainStatus.UNAVAILABLE]

    @property
    def is_complete(self) -> bool:
        """True when every requested chain was read successfully."""
        return not self.unavailable_chains

    def positions_by_chain(self) -> dict[int, list[TokenPosition]]:
        grouped: dict[int, list[TokenPosition]] = {}
        for position in self.positions:
            grouped.setdefault(position.chain_id, []).append(position)
        return grouped

    def positions_by_token(self) -> dict[str, list[TokenPosition]]:
        grouped: dict[str, list[TokenPosition]] = {}
        for position in self.positions:
            grouped.setdefault(position.symbol.upper(), []).append(position)
        return grouped


class AllocationTarget(BaseModel):
    """Desired share of the portfolio for one token symbol."""

    token_symbol: str
    target_percent: Decimal = Field(ge=0, le=100)


class DriftReport(BaseModel):
    """
    Current versus target allocation for one token.

    Attributes
    ----------
    drift_percent : Decimal
        ``current_percent - target_percent``
    adjustment_usd : Decimal
        ``target_value_usd - current_value_usd``; negative means sell

    """

    model_config = ConfigDict(frozen=True)

    token_symbol: str
    current_percent: Decimal
    target_percent: Decimal
    drift_percent: Decimal
    current_value_usd: Decimal
    target_value_usd: Decimal
    adjustment_usd: Decimal


class DriftAnalysis(BaseModel):
    """Summary across all drift reports of one plan."""

    reports: list[DriftReport]
    average_drift: Decimal
    needs_rebalancing: bool
    recommendations: list[str] = Field(default_factory=list)


class ProposedAction(BaseModel):
    """
    A capital movement proposed by a planner.

    Attributes
    ----------
    kind : ActionKind
        Tag distinguishing rebalance, yield and arbitrage variants
    token : str
        Symbol of the asset being moved
    from_chain : int
        Source chain id
    to_chain : int
        Destination chain id
    amount_usd : Decimal
        Size of the move in USD
    amount_token : Decimal
        Size of the move in whole ``from_token`` units
    from_token : str
        Source token address
    to_token : str
        Destination token address
    from_token_decimals : int
        Decimals of ``from_token``
    reason : str
        Human-readable explanation
    priority : int
        Higher runs first
    source_role : Role | None
        Role that produced the proposal

    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    token: str
    from_chain: int
    to_chain: int
    amount_usd: Decimal
    amount_token: Decimal
    from_token: str
    to_token: str
    from_token_decimals: int = 18
    reason: str = ""
    priority: int = 0
    source_role: Role | None = None

    @property
    def raw_amount(self) -> str:
        """``amount_token`` in smallest units as a decimal string."""
        scaled = (self.amount_token * (Decimal(10) ** self.from_token_decimals)).quantize(
            Decimal("1"), rounding=ROUND_DOWN
        )
        return str(int(scaled))


class IntentEntities(BaseModel):
    """Quantities and names extracted from free text."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal | None = None
    tokens: list[str] = Field(default_factory=list)
    chains: list[str] = Field(default_factory=list)


class IntentAnalysis(BaseModel):
    """
    Result of classifying one message.

    Attributes
    ----------
    intent_type : IntentType
        Workflow category
    required_roles : list[Role]
        Roles that should take part
    role_graph : list[tuple[Role, Role]]
        Directed hand-offs between roles
    description : str
        Plain-language workflow description
    needs_clarification : bool
        True when the message must be clarified before anything runs

    """

    model_config = ConfigDict(frozen=True)

    intent_type: IntentType
    required_roles: list[Role] = Field(default_factory=list)
    role_graph: list[tuple[Role, Role]] = Field(default_factory=list)
    description: str
    needs_clarification: bool = False
    entities: IntentEntities = Field(default_factory=IntentEntities)


class QuoteRequest(BaseModel):
    """
    Request for a cross-chain route.

    ``from_amount`` is an integer string in the source token's smallest unit.
    """

    model_config = ConfigDict(frozen=True)

    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: str
    from_address: str
    to_address: str | None = None
    slippage: Decimal | None = None

    @field_validator("from_amount")
    @classmethod
    def _check_amount(cls, value: str) -> str:
        if not value.isdigit() or int(value) <= 0:
            msg = f"from_amount must be a positive integer string, got {value!r}"
            raise ValueError(msg)
        return value


class ContractCall(BaseModel):
    """Destination-chain contract call executed with the bridged funds."""

    model_config = ConfigDict(frozen=True)

    from_amount: str
    from_token_address: str
    to_contract_address: str
    to_contract_call_data: str
    to_contract_gas_limit: str
    to_approval_address: str | None = None
    contract_outputs_token: str | None = None


class ContractCallsQuoteRequest(BaseModel):
    """Request for a route that ends in a destination contract call."""

    model_config = ConfigDict(frozen=True)

    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    to_amount: str
    from_address: str
    contract_calls: list[ContractCall]


class FeeCost(BaseModel):
    """One fee line of a quote."""

    model_config = ConfigDict(frozen=True)

    name: str
    amount_usd: Decimal = Decimal("0")
    percentage: Decimal | None = None
    included: bool = True


class GasCost(BaseModel):
    """One gas line of a quote, in USD and in native units."""

    model_config = ConfigDict(frozen=True)

    amount_usd: Decimal = Decimal("0")
    amount_native: Decimal = Decimal("0")
    token_symbol: str = "ETH"


class RouteStep(BaseModel):
    """One swap or bridge hop of a route."""

    model_config = ConfigDict(frozen=True)

    type: str
    tool: str
    from_chain: int
    to_chain: int
    from_amount: str = "0"
    to_amount: str = "0"
    slippage: Decimal = Decimal("0")
    execution_duration: int = 0
    gas_costs: list[GasCost] = Field(default_factory=list)
    fee_costs: list[FeeCost] = Field(default_factory=list)

    @property
    def is_bridge(self) -> bool:
        return self.type == "cross" or self.from_chain != self.to_chain


class HubRouteInfo(BaseModel):
    """
    Liquidity-hub (native burn/mint) metadata attached to a quote.

    ``eligible`` says the hub could serve the transfer; ``used`` says the
    chosen route actually goes through it.
    """

    model_config = ConfigDict(frozen=True)

    eligible: bool = False
    used: bool = False
    mechanism: str | None = None
    source_domain: int | None = None
    destination_domain: int | None = None
    estimated_time_seconds: int | None = None


class TransactionRequest(BaseModel):
    """Transaction to be signed and submitted by the wallet."""

    model_config = ConfigDict(frozen=True)

    to: str
    data: str = "0x"
    value: str = "0x0"
    chain_id: int
    from_address: str | None = None
    gas_limit: str | None = None
    gas_price: str | None = None


class Quote(BaseModel):
    """
    Routing service answer for a request. Time-bound: see ``is_stale``.

    Attributes
    ----------
    to_amount : str
        Estimated output in smallest destination units
    to_amount_min : str
        Minimum output after slippage
    included_steps : list[RouteStep]
        Ordered hops of the route
    routing_metadata : HubRouteInfo
        Liquidity-hub eligibility and usage
    obtained_at : datetime
        When the answer was received
    raw : dict
        Original service payload, kept for status and step-transaction calls

    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    tool: str = ""
    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_token_symbol: str = ""
    to_token_symbol: str = ""
    from_amount: str
    to_amount: str
    to_amount_min: str = "0"
    to_token_decimals: int = 18
    from_amount_usd: Decimal = Decimal("0")
    to_amount_usd: Decimal = Decimal("0")
    execution_duration: int = 0
    included_steps: list[RouteStep] = Field(default_factory=list)
    fee_costs: list[FeeCost] = Field(default_factory=list)
    gas_costs: list[GasCost] = Field(default_factory=list)
    transaction_request: TransactionRequest | None = None
    approval_address: str | None = None
    routing_metadata: HubRouteInfo = Field(default_factory=HubRouteInfo)
    obtained_at: datetime = Field(default_factory=utc_now)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def estimated_output(self) -> Decimal:
        """Estimated output in whole destination tokens."""
        return Decimal(self.to_amount) / (Decimal(10) ** self.to_token_decimals)

    @property
    def gas_cost_usd(self) -> Decimal:
        return sum((g.amount_usd for g in self.gas_costs), Decimal("0"))

    @property
    def gas_cost_native(self) -> Decimal:
        return sum((g.amount_native for g in self.gas_costs), Decimal("0"))

    @property
    def fee_cost_usd(self) -> Decimal:
        return sum((f.amount_usd for f in self.fee_costs), Decimal("0"))

    @property
    def tools(self) -> list[str]:
        return [step.tool for step in self.included_steps] or ([self.tool] if self.tool else [])

    def age(self, now: datetime | None = None) -> float:
        """Seconds elapsed since the quote was obtained."""
        return ((now or utc_now()) - self.obtained_at).total_seconds()

    def is_stale(self, max_age: float, now: datetime | None = None) -> bool:
        return self.age(now) > max_age


class ExecutionStep(BaseModel):
    """Human-facing breakdown of one route hop."""

    model_config = ConfigDict(frozen=True)

    step_number: int
    type: str
    from_chain: str
    to_chain: str
    tool: str
    estimated_time: int
    gas_cost_usd: Decimal


class ExecutionPlan(BaseModel):
    """
    Concrete quote plus risk verdict for one proposed action.

    ``ready_to_execute`` is always derived from the score, the warnings and the
    reconfirmation flag; it is never stored independently.

    """

    model_config = ConfigDict(frozen=True)

    quote: Quote
    action: ProposedAction | None = None
    risk_score: int = Field(ge=0, le=100)
    steps: list[ExecutionStep] = Field(default_factory=list)
    estimated_output_usd: Decimal = Decimal("0")
    gas_cost_usd: Decimal = Decimal("0")
    net_value_usd: Decimal = Decimal("0")
    warnings: list[str] = Field(default_factory=list)
    requires_reconfirmation: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ready_to_execute(self) -> bool:
        return (
            self.risk_score < READY_RISK_LIMIT
            and len(self.warnings) < MAX_WARNINGS
            and not self.requires_reconfirmation
        )


class ExecutionResult(BaseModel):
    """Outcome of submitting a route."""

    model_config = ConfigDict(frozen=True)

    status: ExecutionStatus
    tx_hash: str | None = None
    tx_hashes: list[str] = Field(default_factory=list)
    error: str | None = None
    record_id: str | None = None


class TransactionRecord(BaseModel):
    """
    Entry of the append-only transaction history.

    Attributes
    ----------
    id : str
        Opaque record identifier
    wallet : str
        Originating wallet address (lower-cased)
    status : ExecutionStatus
        Current lifecycle state
    gas_cost_usd : Decimal | None
        Cost annotation, may arrive after the record is terminal
    profit_usd : Decimal | None
        Profit annotation, may arrive after the record is terminal

    """

    id: str
    wallet: str
    type: TransactionType
    status: ExecutionStatus = ExecutionStatus.PENDING
    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: str
    to_amount: str | None = None
    tool: str | None = None
    tx_hash: str | None = None
    error: str | None = None
    gas_cost_usd: Decimal | None = None
    profit_usd: Decimal | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TransactionStats(BaseModel):
    """Aggregate figures over a wallet's history."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    total_gas_usd: Decimal = Decimal("0")
    total_profit_usd: Decimal = Decimal("0")


class YieldOpportunity(BaseModel):
    """A lending or liquidity pool from the yield feed."""

    model_config = ConfigDict(frozen=True)

    pool_id: str
    protocol: str
    chain_id: int
    chain_name: str
    symbol: str
    apy: Decimal
    apy_base: Decimal | None = None
    apy_reward: Decimal | None = None
    tvl_usd: Decimal
    risk: RiskLevel = RiskLevel.MEDIUM


class CurrentYield(BaseModel):
    """Where capital currently earns, used as the rotation baseline."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    chain_id: int
    protocol: str | None = None
    apy: Decimal = Decimal("0")
    balance: Decimal
    value_usd: Decimal
    token_address: str
    decimals: int = 6


class YieldRotationPlan(BaseModel):
    """
    A proposed move from the current yield position to a better pool.

    Attributes
    ----------
    action : ProposedAction
        The capital movement
    current : CurrentYield
        Position being moved
    target : YieldOpportunity
        Destination pool
    apy_improvement : Decimal
        Target APY minus current APY, in percentage points
    estimated_annual_gain_usd : Decimal
        ``value_usd * apy_improvement / 100``
    move_cost_usd : Decimal
        Estimated gas and fees of the move
    net_benefit_usd : Decimal
        First-year gain minus the move cost
    break_even_days : Decimal
        Days of extra yield needed to recover the move cost; 0 when free

    """

    model_config = ConfigDict(frozen=True)

    action: ProposedAction
    current: CurrentYield
    target: YieldOpportunity
    apy_improvement: Decimal
    estimated_annual_gain_usd: Decimal
    move_cost_usd: Decimal = Decimal("0")
    net_benefit_usd: Decimal
    break_even_days: Decimal = Decimal("0")


class PricePoint(BaseModel):
    """Price of a token on one chain."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    symbol: str
    price_usd: Decimal
    source: str = "defillama"
    fetched_at: datetime = Field(default_factory=utc_now)


class ArbitrageOpportunity(BaseModel):
    """
    Cross-chain price gap for one token.

    Buy on ``buy_chain`` (cheaper), sell on ``sell_chain`` (more expensive).
    """

    model_config = ConfigDict(frozen=True)

    token: str
    buy_chain: int
    sell_chain: int
    buy_price: Decimal
    sell_price: Decimal
    price_diff_percent: Decimal
    gross_profit_usd: Decimal
    fees_usd: Decimal
    net_profit_usd: Decimal
    confidence: Confidence


class StagedStep(BaseModel):
    """One dated tranche of a staged deposit plan."""

    model_config = ConfigDict(frozen=True)

    step_number: int
    amount: Decimal
    raw_amount: str
    day_offset: int
    scheduled_for: datetime


class StagedPlan(BaseModel):
    """Total amount split into dated tranches."""

    model_config = ConfigDict(frozen=True)

    token: str
    chain_id: int
    total_amount: Decimal
    days: int
    steps: list[StagedStep]


class NotificationEvent(BaseModel):
    """Event emitted for delivery by an external notification service."""

    model_config = ConfigDict(frozen=True)

    kind: str
    title: str
    body: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
