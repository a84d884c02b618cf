import asyncio
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.config import get_backend_config
from src.backend.dependencies import (
    limiter,
    logger,
    purchases_db,
    get_rate_limit,
    get_verifier,
    find_purchase_by_signature,
    truncate,
)
from src.backend.verifier import TransactionVerifier, VerificationError
from src.payments.errors import RpcError
from src.payments.models import Purchase, PurchaseReceipt, PurchaseRequest, PurchaseStatus, plan_for_hours

router = APIRouter(prefix="/api", tags=["Payments"])

PROCESSING_FAILED = "Payment processing failed"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/process-payment")
@limiter.limit(get_rate_limit)
async def process_payment(
    request: Request,
    verifier: Optional[TransactionVerifier] = Depends(get_verifier),
):
    """
    Record a plan purchase paid by an on-chain SOL transfer
    Called by the payment flow once the transfer is confirmed
    """
    config = get_backend_config()

    try:
        purchase = PurchaseRequest.model_validate(await request.json())
    except ValueError as e:
        logger.error("payment_processing_error", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)

    logger.info(
        "processing_payment",
        hours=purchase.hours,
        sol=float(purchase.sol),
        wallet_address=truncate(purchase.wallet_address),
        transaction_hash=truncate(purchase.transaction_hash)
    )

    plan = plan_for_hours(purchase.hours)
    if plan is None or purchase.sol != plan.price:
        logger.warning(
            "payment_plan_mismatch",
            hours=purchase.hours,
            sol=float(purchase.sol),
            transaction_hash=truncate(purchase.transaction_hash)
        )
        return _error(status.HTTP_400_BAD_REQUEST, "Amount does not match any plan")

    if find_purchase_by_signature(purchase.transaction_hash):
        logger.warning("payment_already_recorded", transaction_hash=truncate(purchase.transaction_hash))
        return _error(status.HTTP_409_CONFLICT, "Transaction already recorded")

    purchase_status = PurchaseStatus.PENDING
    if verifier is not None:
        try:
            await verifier.verify(purchase, plan.price)
        except VerificationError as e:
            logger.warning(
                "payment_verification_failed",
                transaction_hash=truncate(purchase.transaction_hash),
                error=str(e)
            )
            return _error(status.HTTP_400_BAD_REQUEST, str(e))
        except RpcError as e:
            logger.error("payment_verification_unavailable", error=str(e), endpoint=e.endpoint)
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Could not verify transaction, try again later")
        purchase_status = PurchaseStatus.CONFIRMED

    try:
        await asyncio.sleep(config.processing_delay_seconds)

        # Checked again after the await so concurrent submissions cannot both land
        if find_purchase_by_signature(purchase.transaction_hash):
            return _error(status.HTTP_409_CONFLICT, "Transaction already recorded")

        purchase_id = f"purchase_{uuid.uuid4().hex[:12]}"
        purchases_db[purchase_id] = Purchase(
            purchase_id=purchase_id,
            hours=plan.hours,
            sol_amount=plan.price,
            wallet_address=purchase.wallet_address,
            transaction_signature=purchase.transaction_hash,
            status=purchase_status,
        )
    except Exception as e:
        logger.error("payment_processing_error", error=str(e))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)

    logger.info("payment_recorded", purchase_id=purchase_id, status=purchase_status.value)

    receipt = PurchaseReceipt(
        success=True,
        message=f"Successfully purchased {purchase.hours} hours of trading time",
        transaction_hash=purchase.transaction_hash,
        purchase_id=purchase_id,
    )
    return receipt.model_dump(by_alias=True)


@router.get("/purchases/{purchase_id}", response_model=Purchase)
async def get_purchase(purchase_id: str):
    """Get a recorded purchase"""
    if purchase_id not in purchases_db:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Purchase {purchase_id} not found"
        )
    return purchases_db[purchase_id]


@router.get("/purchases", response_model=List[Purchase])
async def list_purchases(wallet_address: Optional[str] = None):
    """List recorded purchases, optionally for one wallet"""
    purchases = list(purchases_db.values())

    if wallet_address:
        purchases = [p for p in purchases if p.wallet_address == wallet_address]

    # Most recent first
    purchases.sort(key=lambda p: p.created_at, reverse=True)

    return purchases
