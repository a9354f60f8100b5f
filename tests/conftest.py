"""Shared fixtures and fakes for chain-allocator tests."""

from datetime import datetime
from decimal import Decimal

import pytest

from chain_allocator.core.models import (
    ActionKind,
    ChainBalanceResult,
    ChainStatus,
    GasCost,
    PortfolioSnapshot,
    ProposedAction,
    Quote,
    Role,
    RouteStep,
    TokenPosition,
    TransactionRequest,
    utc_now,
)
from chain_allocator.data import get_chain_name, get_native_token, get_token_address, get_token_decimals

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
ROUTER = "0x1111111111111111111111111111111111111111"
SPENDER = "0x2222222222222222222222222222222222222222"

ETHEREUM = 1
ARBITRUM = 42161
BASE = 8453


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeQuoteSource:
    """Routing client double: records requests, raises queued errors, then answers."""

    def __init__(self, quote: Quote, errors: list[Exception] | None = None, clock: FakeClock | None = None) -> None:
        self.quote = quote
        self.errors = list(errors or [])
        self.clock = clock
        self.requests: list = []
        self.starts: list[float] = []

    async def _answer(self, request) -> Quote:
        self.requests.append(request)
        if self.clock is not None:
            self.starts.append(self.clock())
        if self.errors:
            raise self.errors.pop(0)
        return self.quote

    async def get_quote(self, request) -> Quote:
        return await self._answer(request)

    async def get_contract_calls_quote(self, request) -> Quote:
        return await self._answer(request)


class FakeSigner:
    """Wallet double implementing the signer protocol."""

    def __init__(
        self,
        address: str = WALLET,
        chain_id: int = ARBITRUM,
        refuse_switch: bool = False,
        fail_with: Exception | None = None,
    ) -> None:
        self.address = address
        self.chain_id = chain_id
        self.refuse_switch = refuse_switch
        self.fail_with = fail_with
        self.sent: list[TransactionRequest] = []
        self.switches: list[int] = []

    async def get_address(self) -> str:
        return self.address

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def sign_message(self, message: bytes) -> str:
        return "0x" + message.hex()

    async def send_transaction(self, tx: TransactionRequest) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(tx)
        return f"0x{len(self.sent):064x}"

    async def switch_chain(self, chain_id: int) -> None:
        self.switches.append(chain_id)
        if self.refuse_switch:
            raise RuntimeError("User rejected the request")
        self.chain_id = chain_id


def make_position(symbol: str, value_usd: str | Decimal, chain_id: int = ETHEREUM, price: str | None = None) -> TokenPosition:
    """Position worth ``value_usd`` priced with a realistic unit price."""
    value = Decimal(value_usd)
    unit = Decimal(price) if price is not None else (Decimal("2500") if symbol in ("ETH", "WETH") else Decimal("1"))
    native = get_native_token(chain_id)
    address = native["address"] if symbol == native["symbol"] else get_token_address(chain_id, symbol)
    decimals = get_token_decimals(chain_id, symbol)
    balance = value / unit
    return TokenPosition(
        chain_id=chain_id,
        token_address=address,
        symbol=symbol,
        decimals=decimals,
        raw_balance=int(balance * Decimal(10) ** decimals),
        formatted_balance=balance,
        price_usd=unit,
        value_usd=value,
    )


def make_snapshot(positions: list[TokenPosition], unavailable: tuple[int, ...] = ()) -> PortfolioSnapshot:
    """Snapshot grouping ``positions`` per chain, plus unreachable chains."""
    by_chain: dict[int, list[TokenPosition]] = {}
    for position in positions:
        by_chain.setdefault(position.chain_id, []).append(position)
    results = [
        ChainBalanceResult(chain_id=cid, chain_name=get_chain_name(cid), status=ChainStatus.OK, positions=items)
        for cid, items in by_chain.items()
    ]
    results += [
        ChainBalanceResult(
            chain_id=cid,
            chain_name=get_chain_name(cid),
            status=ChainStatus.UNAVAILABLE,
            reason="All RPC endpoints failed",
        )
        for cid in unavailable
    ]
    return PortfolioSnapshot.build(WALLET, results)


def make_quote(obtained_at: datetime | None = None, **overrides) -> Quote:
    """USDC Arbitrum -> Base quote over a single burn/mint step."""
    fields = {
        "id": "quote-1",
        "tool": "cctp",
        "from_chain": ARBITRUM,
        "to_chain": BASE,
        "from_token": get_token_address(ARBITRUM, "USDC"),
        "to_token": get_token_address(BASE, "USDC"),
        "from_token_symbol": "USDC",
        "to_token_symbol": "USDC",
        "from_amount": "1000000000",
        "to_amount": "999000000",
        "to_amount_min": "994000000",
        "to_token_decimals": 6,
        "from_amount_usd": Decimal("1000"),
        "to_amount_usd": Decimal("999"),
        "included_steps": [
            RouteStep(
                type="cross",
                tool="cctp",
                from_chain=ARBITRUM,
                to_chain=BASE,
                slippage=Decimal("0.005"),
                execution_duration=900,
                gas_costs=[GasCost(amount_usd=Decimal("0.5"), amount_native=Decimal("0.0002"))],
            )
        ],
        "gas_costs": [GasCost(amount_usd=Decimal("0.5"), amount_native=Decimal("0.0002"))],
        "transaction_request": TransactionRequest(to=ROUTER, data="0xabcdef", chain_id=ARBITRUM),
        "approval_address": SPENDER,
        "obtained_at": obtained_at or utc_now(),
    }
    fields.update(overrides)
    return Quote(**fields)


def make_action(kind: ActionKind = ActionKind.YIELD_ROTATE, priority: int = 1, **overrides) -> ProposedAction:
    """1000 USDC moving from Arbitrum to Base."""
    fields = {
        "kind": kind,
        "token": "USDC",
        "from_chain": ARBITRUM,
        "to_chain": BASE,
        "amount_usd": Decimal("1000"),
        "amount_token": Decimal("1000"),
        "from_token": get_token_address(ARBITRUM, "USDC"),
        "to_token": get_token_address(BASE, "USDC"),
        "from_token_decimals": 6,
        "reason": "test",
        "priority": priority,
        "source_role": Role.YIELD_SEEKER,
    }
    fields.update(overrides)
    return ProposedAction(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def quote() -> Quote:
    return make_quote()
