"""
Wallet providers
The signer the payment flow talks to, injected rather than looked up globally
"""

from typing import Callable, Optional, Protocol, runtime_checkable

import structlog
from solders.keypair import Keypair
from solders.transaction import Transaction

from src.payments.errors import WalletError, WalletRejectedError, WalletUnavailableError

logger = structlog.get_logger()


@runtime_checkable
class WalletProvider(Protocol):
    """
    Signer contract consumed by the payment state machine.

    Implementations raise WalletUnavailableError when the signer cannot be
    reached, WalletRejectedError when the user declines a prompt, and
    WalletError for anything else.
    """

    @property
    def is_connected(self) -> bool:
        ...

    @property
    def public_key(self) -> Optional[str]:
        ...

    async def connect(self) -> str:
        """Connect and return the wallet address"""
        ...

    async def disconnect(self) -> None:
        ...

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        ...


class KeypairWallet:
    """
    Wallet backed by a local keypair.

    `approve` is called with the unsigned transaction before signing and
    stands in for the wallet's confirmation prompt; returning False rejects.
    """

    def __init__(
        self,
        secret_key: str,
        approve: Optional[Callable[[Transaction], bool]] = None,
    ):
        if not secret_key:
            raise WalletUnavailableError("No wallet secret key configured")
        try:
            self._keypair = Keypair.from_base58_string(secret_key)
        except ValueError as e:
            raise WalletUnavailableError("Wallet secret key is not a valid base58 keypair") from e
        self._approve = approve
        self._connected = False

    @classmethod
    def generate(cls, approve: Optional[Callable[[Transaction], bool]] = None) -> "KeypairWallet":
        """Create a wallet around a fresh random keypair"""
        return cls(str(Keypair()), approve=approve)

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def public_key(self) -> Optional[str]:
        if not self._connected:
            return None
        return str(self._keypair.pubkey())

    async def connect(self) -> str:
        self._connected = True
        address = str(self._keypair.pubkey())
        logger.info("wallet_connected", address=address)
        return address

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("wallet_disconnected")

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        if not self._connected:
            raise WalletError("Wallet is not connected")

        if self._approve is not None and not self._approve(tx):
            logger.info("wallet_signature_rejected")
            raise WalletRejectedError("User rejected the request")

        tx.sign([self._keypair], tx.message.recent_blockhash)
        logger.info("wallet_transaction_signed", signature=str(tx.signatures[0])[:8])
        return tx
