"""
Solana JSON-RPC client
Thin async wrapper over the handful of RPC methods the payment flow needs
"""

import asyncio
import base64
import itertools
from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog

from src.payments.errors import RpcError, RpcTimeoutError
from src.payments.models import ConfirmationResult

logger = structlog.get_logger()

# Ordered from weakest to strongest
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


def commitment_reached(current: Optional[str], target: str) -> bool:
    """True if a status at `current` satisfies the `target` commitment"""
    if current not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(current) >= COMMITMENT_LEVELS.index(target)


class LedgerClient(Protocol):
    """Ledger RPC contract consumed by the payment flow"""

    url: str

    async def get_balance(self, address: str, commitment: str = "confirmed") -> int:
        ...

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> str:
        ...

    async def send_raw_transaction(self, raw: bytes, commitment: str = "confirmed") -> str:
        ...

    async def confirm_transaction(
        self,
        signature: str,
        commitment: str = "confirmed",
        poll_interval: float = 1.0,
    ) -> ConfirmationResult:
        ...


class SolanaRpcClient:
    """
    JSON-RPC 2.0 client for a single Solana endpoint.

    Errors never leak as httpx exceptions: JSON-RPC error objects and HTTP
    failures become RpcError, timeouts become RpcTimeoutError.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"SolanaRpcClient({self.url!r})"

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = await self.client.post(self.url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise RpcTimeoutError(f"{method} timed out", endpoint=self.url) from e
        except httpx.HTTPStatusError as e:
            raise RpcError(
                f"{method} failed with HTTP {e.response.status_code}",
                code=e.response.status_code,
                endpoint=self.url,
            ) from e
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}", endpoint=self.url) from e
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON", endpoint=self.url) from e

        if not isinstance(body, dict):
            raise RpcError(f"{method} returned a malformed response", endpoint=self.url)

        if body.get("error"):
            error = body["error"]
            if not isinstance(error, dict):
                raise RpcError(str(error), endpoint=self.url)
            raise RpcError(
                error.get("message", "Unknown RPC error"),
                code=error.get("code"),
                endpoint=self.url,
            )

        if "result" not in body:
            raise RpcError(f"{method} response has neither result nor error", endpoint=self.url)

        return body["result"]

    def _value(self, method: str, result: Any) -> Any:
        """Unwrap the `value` of a context-wrapped result"""
        if not isinstance(result, dict) or "value" not in result:
            raise RpcError(f"{method} returned an unexpected result", endpoint=self.url)
        return result["value"]

    async def get_balance(self, address: str, commitment: str = "confirmed") -> int:
        """Balance of `address` in lamports"""
        result = await self._call("getBalance", [address, {"commitment": commitment}])
        value = self._value("getBalance", result)
        if not isinstance(value, int):
            raise RpcError("getBalance returned a non-integer balance", endpoint=self.url)
        return value

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": commitment}])
        value = self._value("getLatestBlockhash", result)
        if not isinstance(value, dict) or not isinstance(value.get("blockhash"), str):
            raise RpcError("getLatestBlockhash returned no blockhash", endpoint=self.url)
        return value["blockhash"]

    async def send_raw_transaction(self, raw: bytes, commitment: str = "confirmed") -> str:
        """Submit a signed, serialized transaction and return its signature"""
        encoded = base64.b64encode(raw).decode()
        signature = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": commitment}],
        )
        if not isinstance(signature, str) or not signature:
            raise RpcError("sendTransaction returned no signature", endpoint=self.url)
        return signature

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = self._value("getSignatureStatuses", result)
        if not isinstance(statuses, list):
            raise RpcError("getSignatureStatuses returned an unexpected result", endpoint=self.url)
        status = statuses[0] if statuses else None
        if status is not None and not isinstance(status, dict):
            raise RpcError("getSignatureStatuses returned an unexpected status", endpoint=self.url)
        return status

    async def confirm_transaction(
        self,
        signature: str,
        commitment: str = "confirmed",
        poll_interval: float = 1.0,
    ) -> ConfirmationResult:
        """
        Poll until `signature` reaches `commitment` or reports an error.

        Does not time out on its own; callers are expected to bound the wait.
        """
        while True:
            status = await self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    return ConfirmationResult(signature=signature, err=status["err"], slot=status.get("slot"))
                if commitment_reached(status.get("confirmationStatus"), commitment):
                    return ConfirmationResult(signature=signature, slot=status.get("slot"))
            logger.debug("confirmation_pending", signature=signature[:8], endpoint=self.url)
            await asyncio.sleep(poll_interval)

    async def get_transaction(self, signature: str, commitment: str = "finalized") -> Optional[Dict[str, Any]]:
        """Fetch a transaction with parsed instructions, or None if not found"""
        return await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def aclose(self):
        """Close the HTTP client if this instance created it"""
        if self._owns_client:
            await self.client.aclose()
