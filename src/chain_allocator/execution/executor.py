"""Route submission and settlement tracking."""

import asyncio
import logging
import math
import weakref
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from chain_allocator.config import ExecutionConfig
from chain_allocator.core.models import (
    ActionKind,
    ExecutionPlan,
    ExecutionResult,
    ExecutionStatus,
    Quote,
    TransactionRecord,
    TransactionRequest,
    TransactionType,
    utc_now,
)
from chain_allocator.data import get_chain_name, is_native_address
from chain_allocator.errors import (
    ChainAllocatorError,
    ExecutionFailedError,
    ExecutionRefusedError,
    QuoteExpiredError,
)
from chain_allocator.execution.signer import SignerAdapter, WalletSigner
from chain_allocator.routing import TransferState, TransferStatus
from chain_allocator.rpc import JsonRpcProvider, RpcError
from chain_allocator.rpc.abi import ERC20_APPROVE, encode_function_call
from chain_allocator.rpc.retry import Sleep
from chain_allocator.storage import TransactionHistory

logger = logging.getLogger(__name__)

TRANSACTION_TYPES: dict[ActionKind, TransactionType] = {
    ActionKind.SELL: TransactionType.REBALANCE,
    ActionKind.BUY: TransactionType.REBALANCE,
    ActionKind.YIELD_ROTATE: TransactionType.YIELD_ROTATION,
    ActionKind.ARBITRAGE: TransactionType.ARBITRAGE,
}


class RouteSource(Protocol):
    """Fills in the transaction request of a quote that only describes a route."""

    async def get_step_transaction(self, quote: Quote) -> Quote: ...


class StatusSource(Protocol):
    async def get_status(
        self,
        tx_hash: str,
        bridge: str | None = None,
        from_chain: int | None = None,
        to_chain: int | None = None,
    ) -> TransferStatus: ...


def transaction_type_for(plan: ExecutionPlan) -> TransactionType:
    """History category for a plan; plain transfers are bridges or swaps."""
    if plan.action is not None:
        return TRANSACTION_TYPES[plan.action.kind]
    return TransactionType.BRIDGE if plan.quote.from_chain != plan.quote.to_chain else TransactionType.SWAP


class RouteExecutor:
    """
    Submits ready plans through a wallet signer.

    Submissions are single-flight per signer address: a second call for the same
    wallet waits until the first has been handed to the wallet, leaving nonce
    ordering to the wallet itself. When an ERC-20 approval is needed, the route
    is sent only after the approval has been mined.

    Parameters
    ----------
    router : RouteSource
        Converts bare quotes into full routes
    providers : dict[int, JsonRpcProvider]
        RPC providers used for allowance checks, keyed by chain id
    history : TransactionHistory | None
        Where submissions are recorded
    config : ExecutionConfig | None
        Staleness window and approval wait
    clock : Callable[[], datetime]
        Wall-clock source, injectable for tests
    sleep : Sleep
        Awaitable sleep between receipt polls, injectable for tests

    """

    def __init__(
        self,
        router: RouteSource,
        providers: dict[int, JsonRpcProvider] | None = None,
        history: TransactionHistory | None = None,
        config: ExecutionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.router = router
        self.providers = providers or {}
        self.history = history
        self.config = config or ExecutionConfig()
        self._clock = clock
        self._sleep = sleep
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, address: str) -> asyncio.Lock:
        # Entries vanish once no submission for the address holds the lock
        lock = self._locks.get(address.lower())
        if lock is None:
            lock = asyncio.Lock()
            self._locks[address.lower()] = lock
        return lock

    async def execute(self, plan: ExecutionPlan, signer: WalletSigner | SignerAdapter | None) -> ExecutionResult:
        """
        Submit a plan's route.

        Parameters
        ----------
        plan : ExecutionPlan
            Plan that passed the readiness gate
        signer : WalletSigner | SignerAdapter | None
            Wallet to sign with

        Returns
        -------
        ExecutionResult
            ``pending`` with the first observed transaction hash

        Raises
        ------
        ExecutionRefusedError
            If the plan is not ready to execute
        QuoteExpiredError
            If the quote is older than the staleness window
        WalletNotConnectedError
            If no signer is available
        ChainMismatchError
            If the wallet cannot be moved to the route's source chain
        ExecutionFailedError
            If the wallet rejects or fails the submission; ``reason`` is verbatim

        """
        if not plan.ready_to_execute:
            msg = f"Plan is not ready to execute (risk {plan.risk_score}, {len(plan.warnings)} warning(s))"
            hint = "confirm the refreshed quote first" if plan.requires_reconfirmation else "review the route risks"
            raise ExecutionRefusedError(msg, hint=hint)
        now = self._clock()
        if plan.quote.is_stale(self.config.quote_max_age, now):
            msg = f"Quote is {plan.quote.age(now):.0f}s old"
            raise QuoteExpiredError(msg, hint="refresh the plan to obtain a new quote")

        adapter = signer if isinstance(signer, SignerAdapter) else SignerAdapter(signer)
        address = await adapter.get_address()

        async with self._lock_for(address):
            quote = plan.quote
            if quote.transaction_request is None:
                quote = await self.router.get_step_transaction(quote)
            if quote.transaction_request is None:
                msg = "Route has no transaction to submit"
                raise ExecutionFailedError(msg, reason="missing transactionRequest")

            await adapter.ensure_chain(quote.from_chain)

            hashes: list[str] = []
            try:
                approval = await self._approve_if_needed(adapter, quote, address)
                if approval:
                    hashes.append(approval)
                tx_hash = await adapter.send_transaction(quote.transaction_request)
            except ExecutionFailedError as e:
                failed = self._record(plan, quote, address, None)
                if failed is not None and self.history is not None:
                    self.history.update_status(address, failed.id, ExecutionStatus.FAILED, error=e.reason or e.message)
                raise

            hashes.append(tx_hash)
            record = self._record(plan, quote, address, tx_hash)
            logger.info("Submitted route on %s: %s", get_chain_name(quote.from_chain), tx_hash)
            return ExecutionResult(
                status=ExecutionStatus.PENDING,
                tx_hash=tx_hash,
                tx_hashes=hashes,
                record_id=record.id if record else None,
            )

    async def _approve_if_needed(self, adapter: SignerAdapter, quote: Quote, owner: str) -> str | None:
        """Send an ERC-20 approval when the router's allowance is short. Returns its hash."""
        spender = quote.approval_address
        if not spender or is_native_address(quote.from_token):
            return None
        provider = self.providers.get(quote.from_chain)
        if provider is None:
            logger.warning("No provider for %s; skipping allowance check", get_chain_name(quote.from_chain))
            return None

        needed = int(quote.from_amount)
        allowance = await provider.erc20_allowance(quote.from_token, owner, spender)
        if allowance >= needed:
            return None

        logger.info("Allowance %d < %d; requesting approval for %s", allowance, needed, spender)
        approve = TransactionRequest(
            to=quote.from_token,
            data=encode_function_call(ERC20_APPROVE, [spender, needed]),
            chain_id=quote.from_chain,
            from_address=owner,
        )
        approval_hash = await adapter.send_transaction(approve)
        await self._wait_for_approval(provider, approval_hash)
        return approval_hash

    async def _wait_for_approval(self, provider: JsonRpcProvider, tx_hash: str) -> None:
        """
        Block until the approval is mined so the route does not race it.

        Raises
        ------
        ExecutionFailedError
            If the approval reverts or is not mined within ``approval_timeout``
        """
        attempts = max(1, math.ceil(self.config.approval_timeout / self.config.approval_poll_interval))
        for attempt in range(attempts):
            try:
                receipt = await provider.get_transaction_receipt(tx_hash)
            except (ChainAllocatorError, RpcError) as e:
                logger.debug("Receipt lookup for %s failed: %s", tx_hash, e)
                receipt = None
            if receipt is not None:
                if int(str(receipt.get("status", "0x1")), 16) == 0:
                    msg = "Token approval reverted"
                    raise ExecutionFailedError(msg, hint="check the token and try again", reason="approval reverted")
                return
            if attempt + 1 < attempts:
                await self._sleep(self.config.approval_poll_interval)
        msg = f"Token approval {tx_hash} was not mined in time"
        raise ExecutionFailedError(msg, hint="wait for the approval to confirm, then retry", reason="approval timeout")

    def _record(self, plan: ExecutionPlan, quote: Quote, wallet: str, tx_hash: str | None) -> TransactionRecord | None:
        if self.history is None:
            return None
        return self.history.record(
            wallet,
            transaction_type_for(plan),
            from_chain=quote.from_chain,
            to_chain=quote.to_chain,
            from_token=quote.from_token_symbol or quote.from_token,
            to_token=quote.to_token_symbol or quote.to_token,
            from_amount=quote.from_amount,
            tool=quote.tool or None,
            tx_hash=tx_hash,
        )


STATUS_MAP: dict[TransferState, ExecutionStatus] = {
    TransferState.NOT_FOUND: ExecutionStatus.PENDING,
    TransferState.PENDING: ExecutionStatus.CONFIRMING,
    TransferState.DONE: ExecutionStatus.COMPLETED,
    TransferState.FAILED: ExecutionStatus.FAILED,
}


class StatusPoller:
    """
    Drives submitted transactions to a terminal state.

    Parameters
    ----------
    source : StatusSource
        Status API client
    history : TransactionHistory
        Records to advance
    interval : float
        Seconds between polls
    sleep : Sleep
        Awaitable sleep, injectable for tests

    """

    def __init__(
        self,
        source: StatusSource,
        history: TransactionHistory,
        interval: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.source = source
        self.history = history
        self.interval = interval
        self._sleep = sleep

    async def poll_once(self, wallet: str, record_id: str) -> ExecutionStatus:
        """Query the status API once and move the record forward."""
        record = self.history.get(wallet, record_id)
        if record is None or record.tx_hash is None:
            msg = f"No submitted transaction {record_id} for {wallet}"
            raise ExecutionFailedError(msg)
        if record.status.is_terminal:
            return record.status

        status = await self.source.get_status(
            record.tx_hash,
            bridge=record.tool,
            from_chain=record.from_chain,
            to_chain=record.to_chain,
        )
        new_status = STATUS_MAP[status.state]
        if new_status.rank < record.status.rank:
            return record.status
        error = status.substatus if new_status == ExecutionStatus.FAILED else None
        updated = self.history.update_status(
            wallet,
            record_id,
            new_status,
            to_amount=status.receiving_amount,
            error=error,
        )
        return updated.status

    async def wait(self, wallet: str, record_id: str, max_polls: int = 60) -> ExecutionStatus:
        """
        Poll until the record is terminal or ``max_polls`` is reached.

        Returns
        -------
        ExecutionStatus
            Last observed status
        """
        status = ExecutionStatus.PENDING
        for attempt in range(max_polls):
            status = await self.poll_once(wallet, record_id)
            if status.is_terminal:
                return status
            if attempt < max_polls - 1:
                await self._sleep(self.interval)
        logger.warning("Transaction %s still %s after %d polls", record_id, status.value, max_polls)
        return status
