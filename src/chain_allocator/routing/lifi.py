"""LI.FI routing API client."""

import logging
from decimal import Decimal
from enum import StrEnum
from typing import Any

import httpx
from pydantic import BaseModel

from chain_allocator.config import RoutingConfig
from chain_allocator.core.models import (
    ContractCallsQuoteRequest,
    FeeCost,
    GasCost,
    Quote,
    QuoteRequest,
    RouteStep,
    TransactionRequest,
    utc_now,
)
from chain_allocator.errors import (
    InsufficientAmountError,
    InvalidRequestError,
    NoRouteFoundError,
    RateLimitedError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

MINIMUM_AMOUNT_MARKERS = ("minimum", "too low", "too small", "below")
NO_ROUTE_MARKERS = ("no available quotes", "no route", "none of the available routes")


class TransferState(StrEnum):
    """Settlement state reported by the status API."""

    NOT_FOUND = "not_found"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class TransferStatus(BaseModel):
    """Status API answer for one submitted transaction."""

    state: TransferState
    substatus: str | None = None
    sending_tx_hash: str | None = None
    receiving_tx_hash: str | None = None
    receiving_amount: str | None = None
    tool: str | None = None


def _dec(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    return Decimal(str(value))


def _parse_gas_costs(items: list[dict[str, Any]] | None) -> list[GasCost]:
    costs = []
    for item in items or []:
        token = item.get("token") or {}
        decimals = int(token.get("decimals", 18))
        costs.append(
            GasCost(
                amount_usd=_dec(item.get("amountUSD")),
                amount_native=_dec(item.get("amount")) / (Decimal(10) ** decimals),
                token_symbol=token.get("symbol", "ETH"),
            )
        )
    return costs


def _parse_fee_costs(items: list[dict[str, Any]] | None) -> list[FeeCost]:
    return [
        FeeCost(
            name=item.get("name", "fee"),
            amount_usd=_dec(item.get("amountUSD")),
            percentage=_dec(item["percentage"]) if item.get("percentage") is not None else None,
            included=bool(item.get("included", True)),
        )
        for item in items or []
    ]


def _parse_step(step: dict[str, Any]) -> RouteStep:
    action = step.get("action") or {}
    estimate = step.get("estimate") or {}
    slippage = estimate.get("slippage", action.get("slippage"))
    return RouteStep(
        type=step.get("type", "swap"),
        tool=(step.get("toolDetails") or {}).get("name") or step.get("tool", "unknown"),
        from_chain=int(action.get("fromChainId", 0)),
        to_chain=int(action.get("toChainId", action.get("fromChainId", 0))),
        from_amount=str(action.get("fromAmount", estimate.get("fromAmount", "0"))),
        to_amount=str(estimate.get("toAmount", "0")),
        slippage=_dec(slippage),
        execution_duration=int(estimate.get("executionDuration", 0) or 0),
        gas_costs=_parse_gas_costs(estimate.get("gasCosts")),
        fee_costs=_parse_fee_costs(estimate.get("feeCosts")),
    )


def parse_quote(payload: dict[str, Any]) -> Quote:
    """
    Convert a routing-service step payload into a ``Quote``.

    Parameters
    ----------
    payload : dict[str, Any]
        JSON body of a quote or contract-calls quote response

    Returns
    -------
    Quote
        Parsed quote stamped with the current time; the raw payload is kept

    """
    action = payload.get("action") or {}
    estimate = payload.get("estimate") or {}
    from_token = action.get("fromToken") or {}
    to_token = action.get("toToken") or {}
    steps = [_parse_step(s) for s in payload.get("includedSteps") or []] or [_parse_step(payload)]

    tx = payload.get("transactionRequest")
    transaction_request = None
    if tx:
        transaction_request = TransactionRequest(
            to=tx["to"],
            data=tx.get("data", "0x"),
            value=str(tx.get("value", "0x0")),
            chain_id=int(tx.get("chainId", action.get("fromChainId", 0))),
            from_address=tx.get("from"),
            gas_limit=tx.get("gasLimit"),
            gas_price=tx.get("gasPrice"),
        )

    return Quote(
        id=str(payload.get("id", "")),
        tool=(payload.get("toolDetails") or {}).get("name") or payload.get("tool", ""),
        from_chain=int(action.get("fromChainId", 0)),
        to_chain=int(action.get("toChainId", 0)),
        from_token=from_token.get("address", ""),
        to_token=to_token.get("address", ""),
        from_token_symbol=from_token.get("symbol", ""),
        to_token_symbol=to_token.get("symbol", ""),
        from_amount=str(action.get("fromAmount", estimate.get("fromAmount", "0"))),
        to_amount=str(estimate.get("toAmount", "0")),
        to_amount_min=str(estimate.get("toAmountMin", "0")),
        to_token_decimals=int(to_token.get("decimals", 18)),
        from_amount_usd=_dec(estimate.get("fromAmountUSD")),
        to_amount_usd=_dec(estimate.get("toAmountUSD")),
        execution_duration=int(estimate.get("executionDuration", 0) or 0),
        included_steps=steps,
        fee_costs=_parse_fee_costs(estimate.get("feeCosts")),
        gas_costs=_parse_gas_costs(estimate.get("gasCosts")),
        transaction_request=transaction_request,
        approval_address=estimate.get("approvalAddress"),
        obtained_at=utc_now(),
        raw=payload,
    )


class LiFiClient:
    """
    Thin async client for the LI.FI REST API.

    Every HTTP failure is translated into the engine's error taxonomy with a
    plain-language hint. No retry or throttling happens here; that is the
    quote gateway's job.

    Parameters
    ----------
    config : RoutingConfig | None
        Base URL, credential and integrator tag
    client : httpx.AsyncClient | None
        HTTP client; one is created (and owned) if None

    """

    def __init__(self, config: RoutingConfig | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or RoutingConfig()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.request_timeout)

    @property
    def headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.config.api_key:
            headers["x-lifi-api-key"] = self.config.api_key
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.config.base_url}{path}"
        try:
            response = await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.TransportError as e:
            msg = f"Routing service unreachable: {e}"
            raise UpstreamUnavailableError(msg, hint="check your connection and try again") from e

        if response.status_code >= 400:
            self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as e:
            msg = "Routing service returned a malformed response"
            raise UpstreamUnavailableError(msg, hint="try again shortly") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            message = str(response.json().get("message", response.text))
        except ValueError:
            message = response.text
        lowered = message.lower()
        status = response.status_code

        if status == 429:
            hint = (
                "slow down or wait before requesting another quote"
                if self.config.api_key
                else "likely rate limited; add a LIFI_API_KEY credential for a higher call budget"
            )
            raise RateLimitedError(f"Routing service rate limit reached: {message}", hint=hint)
        if status >= 500:
            raise UpstreamUnavailableError(f"Routing service error {status}: {message}", hint="try again shortly")
        if any(marker in lowered for marker in MINIMUM_AMOUNT_MARKERS):
            raise InsufficientAmountError(
                f"Amount rejected by the routing service: {message}",
                hint="amount below typical bridge minimum; resubmit with a larger amount",
            )
        if status == 404 or any(marker in lowered for marker in NO_ROUTE_MARKERS):
            raise NoRouteFoundError(
                f"No route found: {message}",
                hint="try a different token pair, another chain, or a larger amount",
            )
        raise InvalidRequestError(
            f"Routing request rejected ({status}): {message}",
            hint="check tokens, chains and amount",
        )

    async def get_quote(self, request: QuoteRequest) -> Quote:
        """
        Request the best route for a transfer.

        Parameters
        ----------
        request : QuoteRequest
            Transfer description

        Returns
        -------
        Quote
            Parsed quote

        Raises
        ------
        RoutingError
            Subclass matching the failure (rate limit, no route, minimum, ...)

        """
        params: dict[str, Any] = {
            "fromChain": request.from_chain,
            "toChain": request.to_chain,
            "fromToken": request.from_token,
            "toToken": request.to_token,
            "fromAmount": request.from_amount,
            "fromAddress": request.from_address,
            "integrator": self.config.integrator,
            "slippage": str(request.slippage if request.slippage is not None else self.config.default_slippage),
        }
        if request.to_address:
            params["toAddress"] = request.to_address
        return parse_quote(await self._request("GET", "/quote", params=params))

    async def get_contract_calls_quote(self, request: ContractCallsQuoteRequest) -> Quote:
        """Request a route that finishes with destination contract calls."""
        body = {
            "fromChain": request.from_chain,
            "toChain": request.to_chain,
            "fromToken": request.from_token,
            "toToken": request.to_token,
            "toAmount": request.to_amount,
            "fromAddress": request.from_address,
            "integrator": self.config.integrator,
            "contractCalls": [
                {
                    "fromAmount": call.from_amount,
                    "fromTokenAddress": call.from_token_address,
                    "toContractAddress": call.to_contract_address,
                    "toContractCallData": call.to_contract_call_data,
                    "toContractGasLimit": call.to_contract_gas_limit,
                    "toApprovalAddress": call.to_approval_address,
                    "contractOutputsToken": call.contract_outputs_token,
                }
                for call in request.contract_calls
            ],
        }
        return parse_quote(await self._request("POST", "/quote/contractCalls", json=body))

    async def get_step_transaction(self, quote: Quote) -> Quote:
        """Populate the transaction request of a quote that lacks one."""
        return parse_quote(await self._request("POST", "/advanced/stepTransaction", json=quote.raw))

    async def get_status(
        self,
        tx_hash: str,
        bridge: str | None = None,
        from_chain: int | None = None,
        to_chain: int | None = None,
    ) -> TransferStatus:
        """
        Settlement status of a submitted transaction.

        Returns
        -------
        TransferStatus
            ``not_found`` while the service has not indexed the transaction yet

        """
        params: dict[str, Any] = {"txHash": tx_hash}
        if bridge:
            params["bridge"] = bridge
        if from_chain is not None:
            params["fromChain"] = from_chain
        if to_chain is not None:
            params["toChain"] = to_chain
        try:
            data = await self._request("GET", "/status", params=params)
        except NoRouteFoundError:
            return TransferStatus(state=TransferState.NOT_FOUND)

        raw_state = str(data.get("status", "NOT_FOUND")).lower()
        state = TransferState(raw_state) if raw_state in TransferState._value2member_map_ else TransferState.PENDING
        sending = data.get("sending") or {}
        receiving = data.get("receiving") or {}
        return TransferStatus(
            state=state,
            substatus=data.get("substatus"),
            sending_tx_hash=sending.get("txHash"),
            receiving_tx_hash=receiving.get("txHash"),
            receiving_amount=receiving.get("amount"),
            tool=data.get("tool"),
        )

    async def close(self) -> None:
        """Close HTTP client if owned."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "LiFiClient":
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        await self.close()
