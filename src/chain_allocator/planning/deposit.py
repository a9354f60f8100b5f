"""Bridge-then-deposit into Aave V3 in a single confirmation."""

import logging
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from chain_allocator.config import ExecutionConfig
from chain_allocator.core.models import ContractCall, ContractCallsQuoteRequest, Quote
from chain_allocator.data import get_chain_name, get_hub_usdc, get_protocol_addresses
from chain_allocator.errors import InsufficientAmountError, InvalidRequestError
from chain_allocator.routing import QuoteGateway
from chain_allocator.rpc.abi import AAVE_V3_SUPPLY, encode_function_call

logger = logging.getLogger(__name__)

USDC_DECIMALS = 6


class VaultDepositQuote(BaseModel):
    """Contract-call quote for a vault deposit plus a one-line summary."""

    model_config = ConfigDict(frozen=True)

    quote: Quote
    summary: str


def build_deposit_request(
    from_chain: int,
    from_amount: int,
    from_address: str,
    config: ExecutionConfig | None = None,
) -> ContractCallsQuoteRequest:
    """
    Build the contract-call request for a cross-chain USDC deposit.

    Parameters
    ----------
    from_chain : int
        Chain holding the USDC
    from_amount : int
        Amount in USDC smallest units (6 decimals)
    from_address : str
        Depositor; also receives the aTokens
    config : ExecutionConfig | None
        Deposit chain, minimum and gas limit

    Returns
    -------
    ContractCallsQuoteRequest
        Request ending in ``Pool.supply`` on the deposit chain

    Raises
    ------
    InsufficientAmountError
        If the amount is below the deposit minimum
    InvalidRequestError
        If the source chain or the vault contracts are not in the registry

    """
    config = config or ExecutionConfig()
    amount = Decimal(from_amount) / Decimal(10) ** USDC_DECIMALS
    if amount < config.deposit_min_usdc:
        msg = f"Deposit of {amount} USDC is below the {config.deposit_min_usdc} USDC minimum"
        raise InsufficientAmountError(msg, hint=f"resubmit with at least {config.deposit_min_usdc} USDC")

    source_usdc = get_hub_usdc(from_chain)
    if source_usdc is None:
        msg = f"USDC deposits are not supported from chain {from_chain}"
        raise InvalidRequestError(msg, hint="bridge from a supported chain")

    target_chain = config.deposit_chain_id
    vault = get_protocol_addresses(target_chain, "aave_v3")
    target_usdc = get_hub_usdc(target_chain)
    if not vault.get("pool") or not vault.get("a_usdc") or target_usdc is None:
        msg = f"Aave V3 contracts are not configured on {get_chain_name(target_chain)}"
        raise InvalidRequestError(msg)

    call_data = encode_function_call(AAVE_V3_SUPPLY, [target_usdc, from_amount, from_address, 0])
    return ContractCallsQuoteRequest(
        from_chain=from_chain,
        to_chain=target_chain,
        from_token=source_usdc,
        to_token=target_usdc,
        to_amount=str(from_amount),
        from_address=from_address,
        contract_calls=[
            ContractCall(
                from_amount=str(from_amount),
                from_token_address=target_usdc,
                to_contract_address=vault["pool"],
                to_contract_call_data=call_data,
                to_contract_gas_limit=str(config.deposit_gas_limit),
                to_approval_address=vault["pool"],
                contract_outputs_token=vault["a_usdc"],
            )
        ],
    )


async def quote_vault_deposit(
    gateway: QuoteGateway,
    from_chain: int,
    from_amount: int,
    from_address: str,
    config: ExecutionConfig | None = None,
) -> VaultDepositQuote:
    """
    Quote bridging USDC from ``from_chain`` and supplying it to Aave V3.

    Validation happens before the gateway is touched, so a rejected amount never
    consumes routing budget.
    """
    config = config or ExecutionConfig()
    request = build_deposit_request(from_chain, from_amount, from_address, config)
    quote = await gateway.get_contract_calls_quote(request)

    amount = Decimal(from_amount) / Decimal(10) ** USDC_DECIMALS
    summary = (
        f"Bridge {amount:.2f} USDC from {get_chain_name(from_chain)} and deposit into "
        f"Aave V3 on {get_chain_name(config.deposit_chain_id)}. One transaction."
    )
    logger.info(summary)
    return VaultDepositQuote(quote=quote, summary=summary)
