"""
RPC endpoint resolver
Ordered failover across configured endpoints using a liveness probe
"""

import asyncio
from typing import List, Optional, Sequence

import httpx
import structlog

from src.ledger.rpc import LedgerClient, SolanaRpcClient
from src.payments.errors import NoEndpointAvailableError, RpcError

logger = structlog.get_logger()


class EndpointResolver:
    """
    Picks the first healthy endpoint from an ordered candidate list.

    Each candidate is probed at most once per resolve() call by fetching a
    recent blockhash under a per-candidate timeout. A candidate that fails
    its probe is skipped for the rest of that call.
    """

    def __init__(
        self,
        endpoints: Sequence[LedgerClient],
        probe_timeout: float = 5.0,
        commitment: str = "confirmed",
    ):
        if not endpoints:
            raise ValueError("EndpointResolver needs at least one endpoint")
        self.endpoints: List[LedgerClient] = list(endpoints)
        self.probe_timeout = probe_timeout
        self.commitment = commitment
        self._owned_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_urls(
        cls,
        urls: Sequence[str],
        probe_timeout: float = 5.0,
        request_timeout: float = 30.0,
        commitment: str = "confirmed",
    ) -> "EndpointResolver":
        """Build a resolver over SolanaRpcClients sharing one HTTP client"""
        client = httpx.AsyncClient(timeout=request_timeout)
        resolver = cls(
            [SolanaRpcClient(url, client=client) for url in urls],
            probe_timeout=probe_timeout,
            commitment=commitment,
        )
        resolver._owned_client = client
        return resolver

    async def probe(self, endpoint: LedgerClient) -> bool:
        """Return True if `endpoint` answers a blockhash request in time"""
        try:
            await asyncio.wait_for(
                endpoint.get_latest_blockhash(self.commitment),
                timeout=self.probe_timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning("rpc_endpoint_probe_timeout", endpoint=endpoint.url, timeout=self.probe_timeout)
        except RpcError as e:
            logger.warning("rpc_endpoint_probe_failed", endpoint=endpoint.url, error=str(e))
        return False

    async def resolve(self) -> LedgerClient:
        """
        Return the first endpoint that passes its probe.

        Raises:
            NoEndpointAvailableError: If every candidate fails
        """
        tried = []
        for endpoint in self.endpoints:
            tried.append(endpoint.url)
            if await self.probe(endpoint):
                logger.info("rpc_endpoint_selected", endpoint=endpoint.url, attempts=len(tried))
                return endpoint

        logger.error("rpc_no_endpoint_available", tried=tried)
        raise NoEndpointAvailableError(tried)

    async def aclose(self):
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None
