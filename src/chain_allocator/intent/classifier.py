"""Keyword intent classifier mapping free text to a workflow and its roles."""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from chain_allocator.core.models import IntentAnalysis, IntentEntities, IntentType, Role

A0 = Role.ROUTE_STRATEGIST
A1 = Role.ARBITRAGE_HUNTER
A2 = Role.PORTFOLIO_GUARDIAN
A3 = Role.YIELD_SEEKER
A4 = Role.RISK_SENTINEL
A5 = Role.REBALANCER
A6 = Role.ROUTE_EXECUTOR

TOKEN_SYMBOLS = ("USDC.E", "USDC", "USDT", "DAI", "WETH", "ETH", "MATIC", "AVAX")

CHAIN_ALIASES = {
    "ethereum": "ethereum",
    "mainnet": "ethereum",
    "arbitrum": "arbitrum",
    "optimism": "optimism",
    "polygon": "polygon",
    "base": "base",
    "avalanche": "avalanche",
}

QUANTITY_WORDS = ("all", "half", "everything", "max", "entire")

_AMOUNT = re.compile(r"\$?\s?(\d+(?:,\d{3})*(?:\.\d+)?)\s*(k\b)?")
_WORD = re.compile(r"[a-z0-9][a-z0-9.]*")


@dataclass(frozen=True)
class Message:
    """Normalised view of the text being classified."""

    text: str
    words: frozenset[str]
    entities: IntentEntities

    def has(self, *phrases: str) -> bool:
        """True if any phrase occurs as a substring."""
        return any(p in self.text for p in phrases)

    def has_word(self, *words: str) -> bool:
        """True if any word occurs as a whole word."""
        return any(w in self.words for w in words)

    @property
    def has_quantity(self) -> bool:
        return self.entities.amount is not None or self.has_word(*QUANTITY_WORDS)


def extract_entities(text: str) -> IntentEntities:
    """
    Pull the first amount, every token symbol and every chain name out of ``text``.

    Parameters
    ----------
    text : str
        Raw message

    Returns
    -------
    IntentEntities
        Extracted amount (``k`` suffix multiplies by 1000), token symbols and
        chain registry names, each in order of appearance

    """
    lower = text.lower()
    amount = None
    if match := _AMOUNT.search(lower):
        try:
            amount = Decimal(match.group(1).replace(",", ""))
            if match.group(2):
                amount *= 1000
        except InvalidOperation:
            amount = None

    words = _WORD.findall(lower)
    tokens: list[str] = []
    chains: list[str] = []
    for word in words:
        word = word.rstrip(".")
        upper = word.upper()
        if upper in TOKEN_SYMBOLS and upper not in tokens:
            tokens.append(upper)
        chain = CHAIN_ALIASES.get(word)
        if chain and chain not in chains:
            chains.append(chain)
    return IntentEntities(amount=amount, tokens=tokens, chains=chains)


def _is_balance_check(m: Message) -> bool:
    if m.has("rebalanc", "allocation"):
        return False
    return m.has_word("balance", "balances", "holdings") or m.has(
        "check my portfolio",
        "show my portfolio",
        "in my portfolio",
        "portfolio value",
        "how much do i have",
        "net worth",
    )


def _swap_verb(m: Message) -> bool:
    return m.has_word("swap", "exchange", "convert")


def _bridge_verb(m: Message) -> bool:
    return m.has_word("bridge", "transfer") or m.has("move funds", "send to")


def _is_vague_swap(m: Message) -> bool:
    if _swap_verb(m) and (not m.has_quantity or not m.entities.tokens):
        return True
    if _bridge_verb(m) and (not m.has_quantity or not m.entities.tokens or not m.entities.chains):
        return True
    return False


def _is_hedge(m: Message) -> bool:
    return m.has_word("hedge", "derisk", "de-risk") or m.has("reduce exposure", "reduce my exposure", "protect against")


def _is_borrow(m: Message) -> bool:
    return m.has_word("borrow", "loan", "leverage")


_STAGED = re.compile(
    r"\b\d+\s+(?:steps|tranches|parts|installments)\b"
    r"|\bover\s+(?:\d+|a|one|two|three|four)\s+(?:days?|weeks?|months?)\b"
)


def _is_staged(m: Message) -> bool:
    return m.has_word("dca", "staged", "gradually") or m.has("dollar cost") or bool(_STAGED.search(m.text))


def _is_vault_deposit(m: Message) -> bool:
    return m.has_word("deposit", "vault", "supply", "lend") or m.has("into aave")


def _is_swap_bridge(m: Message) -> bool:
    return _swap_verb(m) or _bridge_verb(m)


def _is_execute(m: Message) -> bool:
    return m.has_word("execute", "confirm", "proceed", "approve") or m.has("go ahead", "do it")


def _is_monitor(m: Message) -> bool:
    return m.has_word("monitor", "track", "watch", "alert", "alerts") or m.has("keep an eye")


def _is_yield(m: Message) -> bool:
    return (
        m.has_word("yield", "yields", "apy", "apr", "earn", "earns", "earning", "interest")
        or m.has("best yield", "higher yield")
        or (m.has_word("deploy") and m.has_word("higher", "better"))
    )


def _is_arbitrage(m: Message) -> bool:
    return m.has("arbitrage", "price difference", "price gap", "profitable trade", "spread")


def _is_rebalance(m: Message) -> bool:
    return m.has("rebalanc", "allocation", "maintain target", "target ratio", "drift", "balanced")


@dataclass(frozen=True)
class IntentRule:
    """One row of the priority table: if ``predicate`` matches, the rest applies."""

    intent_type: IntentType
    predicate: Callable[[Message], bool]
    description: str
    roles: tuple[Role, ...] = ()
    graph: tuple[tuple[Role, Role], ...] = ()
    needs_clarification: bool = False


GENERAL_RULE = IntentRule(
    IntentType.GENERAL,
    lambda m: True,
    "Activating the full cross-chain orchestration workflow; every role cooperates to optimise capital across chains.",
    roles=(A0, A1, A2, A3, A4, A5, A6),
    graph=((A0, A1), (A0, A2), (A0, A3), (A1, A4), (A3, A4), (A2, A5), (A4, A6), (A5, A6), (A0, A6)),
)

# Evaluated top to bottom; the first matching predicate wins.
INTENT_RULES: list[IntentRule] = [
    IntentRule(
        IntentType.BALANCE_CHECK,
        _is_balance_check,
        "Reading balances across all supported chains.",
        roles=(A0, A2),
        graph=((A0, A2),),
    ),
    IntentRule(
        IntentType.CLARIFICATION,
        _is_vague_swap,
        "Need more detail: say how much, which token, and (for a bridge) which chains, "
        "e.g. 'swap 100 USDC to ETH on Arbitrum'.",
        needs_clarification=True,
    ),
    IntentRule(
        IntentType.HEDGE,
        _is_hedge,
        "Hedging volatile exposure by moving part of it into stablecoins.",
        roles=(A0, A2, A4, A6),
        graph=((A0, A2), (A2, A4), (A4, A6)),
    ),
    IntentRule(
        IntentType.BORROW,
        _is_borrow,
        "Evaluating a collateralised borrow and its liquidation risk.",
        roles=(A0, A4, A6),
        graph=((A0, A4), (A4, A6)),
    ),
    IntentRule(
        IntentType.STAGED_DEPOSIT,
        _is_staged,
        "Building a staged deposit plan split into dated tranches.",
        roles=(A0, A3, A4, A6),
        graph=((A0, A3), (A3, A4), (A4, A6)),
    ),
    IntentRule(
        IntentType.VAULT_DEPOSIT,
        _is_vault_deposit,
        "Bridging funds and depositing them into a lending vault in one confirmation.",
        roles=(A0, A3, A4, A6),
        graph=((A0, A3), (A3, A4), (A4, A6), (A0, A6)),
    ),
    IntentRule(
        IntentType.SWAP_BRIDGE,
        _is_swap_bridge,
        "Quoting the best swap or bridge route and checking its risk before execution.",
        roles=(A0, A4, A6),
        graph=((A0, A4), (A4, A6), (A0, A6)),
    ),
    IntentRule(
        IntentType.EXECUTE,
        _is_execute,
        "Executing the most recently prepared plan after a final risk check.",
        roles=(A4, A6),
        graph=((A4, A6),),
    ),
    IntentRule(
        IntentType.MONITOR,
        _is_monitor,
        "Tracking positions, prices and opportunities across all chains.",
        roles=(A0, A1, A2),
        graph=((A0, A1), (A0, A2)),
    ),
    IntentRule(
        IntentType.YIELD,
        _is_yield,
        "Monitoring yields across chains and proposing moves to higher-APY opportunities.",
        roles=(A0, A3, A4, A6),
        graph=((A0, A3), (A3, A4), (A4, A6), (A0, A6)),
    ),
    IntentRule(
        IntentType.ARBITRAGE,
        _is_arbitrage,
        "Scanning for cross-chain price gaps that stay profitable after fees.",
        roles=(A0, A1, A4, A6),
        graph=((A0, A1), (A1, A4), (A4, A6), (A0, A6)),
    ),
    IntentRule(
        IntentType.REBALANCE,
        _is_rebalance,
        "Watching allocation drift and rebalancing across chains to hold target ratios.",
        roles=(A0, A2, A5, A6),
        graph=((A0, A2), (A2, A5), (A5, A6), (A0, A6)),
    ),
    GENERAL_RULE,
]


@dataclass
class IntentClassifier:
    """
    First-match-wins classifier over an ordered rule table.

    Parameters
    ----------
    rules : list[IntentRule]
        Priority-ordered rules; the general rule is appended if missing

    """

    rules: list[IntentRule] = field(default_factory=lambda: list(INTENT_RULES))

    def __post_init__(self) -> None:
        if not self.rules or self.rules[-1].intent_type != IntentType.GENERAL:
            self.rules.append(GENERAL_RULE)

    def match(self, text: str) -> IntentRule:
        """Return the first rule whose predicate accepts ``text``."""
        return self._first(_normalise(text))

    def _first(self, message: Message) -> IntentRule:
        return next(rule for rule in self.rules if rule.predicate(message))

    def classify(self, text: str) -> IntentAnalysis:
        """
        Classify free text into a workflow.

        Pure and deterministic: no I/O, and the same text always yields an equal result.

        Parameters
        ----------
        text : str
            User message

        Returns
        -------
        IntentAnalysis
            Workflow type, roles, role graph and description

        """
        message = _normalise(text)
        rule = self._first(message)
        return IntentAnalysis(
            intent_type=rule.intent_type,
            required_roles=list(rule.roles),
            role_graph=list(rule.graph),
            description=rule.description,
            needs_clarification=rule.needs_clarification,
            entities=message.entities,
        )


def _normalise(text: str) -> Message:
    lower = " ".join(text.lower().split())
    words = frozenset(w.rstrip(".?!,") for w in re.findall(r"[a-z0-9][a-z0-9.\-]*", lower))
    return Message(text=lower, words=words, entities=extract_entities(text))


_default = IntentClassifier()


def classify(text: str) -> IntentAnalysis:
    """Classify ``text`` with the default rule table."""
    return _default.classify(text)
