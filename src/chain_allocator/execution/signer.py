"""Wallet signer capability interface and the adapter the executor talks to."""

import logging
from typing import Protocol, runtime_checkable

from chain_allocator.core.models import TransactionRequest
from chain_allocator.data import get_chain_name
from chain_allocator.errors import ChainMismatchError, ExecutionFailedError, WalletNotConnectedError

logger = logging.getLogger(__name__)


@runtime_checkable
class WalletSigner(Protocol):
    """
    Capabilities a wallet must offer.

    ``send_transaction`` returns the transaction hash. ``switch_chain`` asks the
    wallet to change network out of band; the user may refuse.
    """

    async def get_address(self) -> str: ...

    async def get_chain_id(self) -> int: ...

    async def sign_message(self, message: bytes) -> str: ...

    async def send_transaction(self, tx: TransactionRequest) -> str: ...

    async def switch_chain(self, chain_id: int) -> None: ...


class SignerAdapter:
    """
    Fixed interface over a caller-supplied signer.

    Translates wallet failures into the engine's error taxonomy, keeping the
    wallet's own message verbatim in ``reason``.

    Parameters
    ----------
    signer : WalletSigner | None
        Wallet to drive

    Raises
    ------
    WalletNotConnectedError
        If no signer is given

    """

    def __init__(self, signer: WalletSigner | None) -> None:
        if signer is None:
            msg = "No wallet connected"
            raise WalletNotConnectedError(msg, hint="connect a wallet before executing")
        self.signer = signer
        self._address: str | None = None

    async def get_address(self) -> str:
        if self._address is None:
            try:
                self._address = await self.signer.get_address()
            except Exception as e:
                msg = "Wallet did not return an address"
                raise WalletNotConnectedError(msg, hint="reconnect the wallet") from e
        return self._address

    async def get_chain_id(self) -> int:
        try:
            return await self.signer.get_chain_id()
        except Exception as e:
            msg = "Wallet did not report its network"
            raise WalletNotConnectedError(msg, hint="reconnect the wallet") from e

    async def sign_message(self, message: bytes) -> str:
        try:
            return await self.signer.sign_message(message)
        except Exception as e:
            msg = "Message signing failed"
            raise ExecutionFailedError(msg, reason=str(e)) from e

    async def ensure_chain(self, chain_id: int) -> None:
        """
        Make sure the wallet is on ``chain_id``, requesting a switch if needed.

        Raises
        ------
        WalletNotConnectedError
            If the wallet cannot report its network
        ChainMismatchError
            If the wallet refuses or fails to switch

        """
        current = await self.get_chain_id()
        if current == chain_id:
            return
        logger.info("Switching wallet from %s to %s", get_chain_name(current), get_chain_name(chain_id))
        try:
            await self.signer.switch_chain(chain_id)
        except Exception as e:
            msg = f"Wallet is on {get_chain_name(current)} but the route starts on {get_chain_name(chain_id)}"
            raise ChainMismatchError(msg, hint=f"switch the wallet to {get_chain_name(chain_id)}") from e
        if await self.get_chain_id() != chain_id:
            msg = f"Wallet did not switch to {get_chain_name(chain_id)}"
            raise ChainMismatchError(msg, hint=f"switch the wallet to {get_chain_name(chain_id)}")

    async def send_transaction(self, tx: TransactionRequest) -> str:
        try:
            tx_hash = await self.signer.send_transaction(tx)
        except Exception as e:
            msg = "Transaction submission failed"
            raise ExecutionFailedError(msg, hint="check the wallet and try again", reason=str(e)) from e
        if not tx_hash:
            msg = "Wallet returned no transaction hash"
            raise ExecutionFailedError(msg, reason="empty hash")
        return tx_hash
