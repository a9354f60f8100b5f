"""Async JSON-RPC provider with endpoint fallback."""

import asyncio
import itertools
import logging
from typing import Any

import httpx

from chain_allocator.data import get_rpc_endpoints
from chain_allocator.errors import UpstreamUnavailableError
from chain_allocator.rpc.abi import ERC20_ALLOWANCE, ERC20_BALANCE_OF, decode_uint256, encode_function_call
from chain_allocator.rpc.retry import RetryConfig, Sleep

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Exception raised when a node answers with a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class JsonRpcProvider:
    """
    JSON-RPC provider for one chain over an ordered list of endpoints.

    A transport failure or HTTP error rotates to the next endpoint and retries
    with exponential backoff. A JSON-RPC error object is a real answer from the
    node and is raised immediately.

    Parameters
    ----------
    chain_id : int
        Chain served by the endpoints
    endpoints : list[str]
        RPC URLs, primary first
    client : httpx.AsyncClient | None
        Shared HTTP client; one is created (and owned) if None
    retry_config : RetryConfig | None
        Retry configuration; defaults to one attempt per endpoint
    sleep : Sleep
        Awaitable sleep, injectable for tests

    """

    def __init__(
        self,
        chain_id: int,
        endpoints: list[str],
        client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        timeout: float = 10.0,
    ) -> None:
        if not endpoints:
            msg = f"No RPC endpoints configured for chain {chain_id}"
            raise ValueError(msg)
        self.chain_id = chain_id
        self.endpoints = list(endpoints)
        self._endpoint_index = 0
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.retry_config = retry_config or RetryConfig(
            max_attempts=len(self.endpoints),
            base_delay=0.5,
            max_delay=5.0,
        )
        self._sleep = sleep
        self._ids = itertools.count(1)

    @property
    def current_endpoint(self) -> str:
        return self.endpoints[self._endpoint_index]

    def rotate_endpoint(self) -> None:
        """Move to the next endpoint in the list, wrapping around."""
        self._endpoint_index = (self._endpoint_index + 1) % len(self.endpoints)

    async def make_request(self, method: str, params: list[Any]) -> Any:
        """
        Make an RPC request with endpoint rotation and exponential backoff.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call', 'eth_getBalance')
        params : list[Any]
            Method parameters

        Returns
        -------
        Any
            ``result`` field of the RPC response

        Raises
        ------
        RpcError
            If the node answered with an error object
        UpstreamUnavailableError
            If every attempt failed at the transport or HTTP level

        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        last_exception: Exception | None = None

        for attempt in range(self.retry_config.max_attempts):
            endpoint = self.current_endpoint
            try:
                response = await self.client.post(endpoint, json=payload)
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_exception = e
                logger.debug(
                    "RPC %s on chain %d via %s failed (attempt %d/%d): %s",
                    method,
                    self.chain_id,
                    endpoint,
                    attempt + 1,
                    self.retry_config.max_attempts,
                    e,
                )
                self.rotate_endpoint()
                if attempt < self.retry_config.max_attempts - 1:
                    await self._sleep(self.retry_config.get_delay(attempt))
                continue

            if "error" in body and body["error"]:
                error = body["error"]
                raise RpcError(error.get("code", -1), error.get("message", "unknown error"))
            return body.get("result")

        msg = f"All RPC endpoints failed for chain {self.chain_id}"
        raise UpstreamUnavailableError(msg, hint="the network may be congested; try again shortly") from last_exception

    async def get_balance(self, address: str) -> int:
        """Native balance of ``address`` in wei."""
        result = await self.make_request("eth_getBalance", [address, "latest"])
        return int(result, 16)

    async def get_chain_id(self) -> int:
        result = await self.make_request("eth_chainId", [])
        return int(result, 16)

    async def eth_call(self, to: str, data: str) -> str:
        """Execute a read-only call against ``to``."""
        return await self.make_request("eth_call", [{"to": to, "data": data}, "latest"])

    async def erc20_balance_of(self, token: str, owner: str) -> int:
        """
        Read an ERC-20 balance.

        Parameters
        ----------
        token : str
            Token contract address
        owner : str
            Holder address

        Returns
        -------
        int
            Balance in smallest units

        """
        data = encode_function_call(ERC20_BALANCE_OF, [owner])
        return decode_uint256(await self.eth_call(token, data))

    async def erc20_allowance(self, token: str, owner: str, spender: str) -> int:
        """Amount ``spender`` may pull from ``owner`` for ``token``."""
        data = encode_function_call(ERC20_ALLOWANCE, [owner, spender])
        return decode_uint256(await self.eth_call(token, data))

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Receipt of a mined transaction, or None while it is still pending."""
        return await self.make_request("eth_getTransactionReceipt", [tx_hash])

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "JsonRpcProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.close()


def build_providers(
    chain_ids: list[int],
    client: httpx.AsyncClient,
    retry_config: RetryConfig | None = None,
) -> dict[int, JsonRpcProvider]:
    """
    Build one provider per chain from the registry's endpoint lists.

    Parameters
    ----------
    chain_ids : list[int]
        Chains to serve
    client : httpx.AsyncClient
        HTTP client shared by every provider
    retry_config : RetryConfig | None
        Retry configuration applied to each provider

    Returns
    -------
    dict[int, JsonRpcProvider]
        Providers keyed by chain id

    """
    return {
        chain_id: JsonRpcProvider(chain_id, get_rpc_endpoints(chain_id), client=client, retry_config=retry_config)
        for chain_id in chain_ids
    }
