"""
Backend recorder client
Posts a completed on-chain purchase to the recording backend
"""

from typing import Optional

import httpx
import structlog

from src.payments.errors import RecorderError
from src.payments.models import PurchaseReceipt, PurchaseRequest

logger = structlog.get_logger()

RECORD_PATH = "/api/process-payment"


class BackendRecorder:
    """HTTP client for POST /api/process-payment"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def record(self, purchase: PurchaseRequest) -> PurchaseReceipt:
        """
        Record a purchase.

        Raises:
            RecorderError: On non-2xx responses, unreadable bodies or transport failures
        """
        try:
            response = await self.client.post(
                f"{self.base_url}{RECORD_PATH}",
                json=purchase.model_dump(mode="json", by_alias=True),
            )
        except httpx.HTTPError as e:
            logger.error("purchase_record_request_failed", error=str(e))
            raise RecorderError(f"Backend unreachable: {e}") from e

        if not response.is_success:
            try:
                detail = response.json().get("error", response.text)
            except ValueError:
                detail = response.text
            logger.error(
                "purchase_record_rejected",
                status_code=response.status_code,
                error=detail
            )
            raise RecorderError(
                f"Backend returned HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            receipt = PurchaseReceipt.model_validate(response.json())
        except ValueError as e:
            raise RecorderError(f"Backend returned an invalid receipt: {e}", status_code=response.status_code) from e

        if not receipt.success:
            raise RecorderError("Backend reported failure", status_code=response.status_code)

        logger.info("purchase_recorded", purchase_id=receipt.purchase_id)
        return receipt

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()
