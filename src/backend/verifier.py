"""
On-chain verification of submitted purchases
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional

import structlog

from src.ledger.rpc import SolanaRpcClient
from src.payments.models import PurchaseRequest, sol_to_lamports

logger = structlog.get_logger()


class VerificationError(Exception):
    """The submitted transaction does not prove the claimed payment"""


def _iter_instructions(tx: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    message = (tx.get("transaction") or {}).get("message") or {}
    yield from message.get("instructions") or []
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        yield from inner.get("instructions") or []


class TransactionVerifier:
    """
    Checks that a signature is a successful system transfer of at least the
    plan price from the payer to the treasury.

    The transaction is looked up at `commitment`, which must not be stricter
    than the commitment the client waits for before recording. A signature the
    node does not know yet is retried up to `attempts` times, `retry_delay`
    seconds apart, so the total wait stays bounded.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        treasury_address: str,
        commitment: str = "confirmed",
        attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.rpc = rpc
        self.treasury_address = treasury_address
        self.commitment = commitment
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay

    async def _fetch(self, signature: str) -> Optional[Dict[str, Any]]:
        for attempt in range(1, self.attempts + 1):
            tx = await self.rpc.get_transaction(signature, commitment=self.commitment)
            if tx is not None:
                return tx
            if attempt < self.attempts:
                logger.debug(
                    "transaction_not_visible_yet",
                    transaction_hash=signature[:8],
                    attempt=attempt,
                    commitment=self.commitment
                )
                await asyncio.sleep(self.retry_delay)
        return None

    async def verify(self, purchase: PurchaseRequest, price: Optional[Decimal] = None) -> None:
        """
        Args:
            purchase: Submitted purchase
            price: Amount in SOL the transfer must cover, defaults to `purchase.sol`

        Raises:
            VerificationError: If the transaction is missing, failed or does not match
            RpcError: If the ledger could not be queried
        """
        tx = await self._fetch(purchase.transaction_hash)
        if tx is None:
            raise VerificationError(f"Transaction not found at {self.commitment} commitment")

        if not isinstance(tx, dict):
            raise VerificationError("Transaction could not be parsed")

        if (tx.get("meta") or {}).get("err") is not None:
            raise VerificationError("Transaction failed on-chain")

        amount = purchase.sol if price is None else price
        required = sol_to_lamports(amount)
        for instruction in _iter_instructions(tx):
            if instruction.get("program") != "system":
                continue
            parsed = instruction.get("parsed") or {}
            if parsed.get("type") != "transfer":
                continue
            info = parsed.get("info") or {}
            if (
                info.get("source") == purchase.wallet_address
                and info.get("destination") == self.treasury_address
                and int(info.get("lamports", 0)) >= required
            ):
                logger.info(
                    "transaction_verified",
                    transaction_hash=purchase.transaction_hash[:8],
                    lamports=int(info["lamports"])
                )
                return

        raise VerificationError(
            f"Transaction does not transfer {amount} SOL from {purchase.wallet_address} to the treasury"
        )

    async def aclose(self):
        await self.rpc.aclose()
