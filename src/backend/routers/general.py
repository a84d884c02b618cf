from datetime import datetime
from typing import List

from fastapi import APIRouter

from src.config import get_backend_config
from src.backend.dependencies import purchases_db
from src.payments.models import PlanListing, list_plans

router = APIRouter(tags=["General"])


@router.get("/", tags=["Health"])
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "MK Volume Bot Backend",
        "version": "0.1.0",
        "status": "operational",
        "plans": "/api/plans"
    }


@router.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    config = get_backend_config()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "verification": "enabled" if config.verify_transactions else "disabled",
        "purchases_recorded": len(purchases_db)
    }


@router.get("/api/plans", response_model=List[PlanListing], tags=["Payments"])
async def get_plans():
    """Purchasable trading-time plans"""
    return list_plans()
