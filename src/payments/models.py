"""
Payment models for MK Volume Bot
Plans, payment intents, status notifications and the purchase record wire format
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer

LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(amount: Decimal) -> int:
    """Convert a SOL amount to lamports, truncating sub-lamport dust"""
    return int(Decimal(amount) * LAMPORTS_PER_SOL)


def lamports_to_sol(lamports: int) -> Decimal:
    """Convert lamports to SOL"""
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


class Plan(BaseModel):
    """A purchasable block of trading time"""
    model_config = ConfigDict(frozen=True)

    hours: int = Field(gt=0, description="Trading hours granted")
    price: Decimal = Field(gt=0, description="Price in SOL")
    label: str


PLANS: Dict[str, Plan] = {
    "starter": Plan(hours=24, price=Decimal("0.1"), label="Starter Plan - 24 Hours"),
    "weekly": Plan(hours=168, price=Decimal("0.5"), label="Weekly Plan - 7 Days"),
    "monthly": Plan(hours=720, price=Decimal("1.5"), label="Monthly Plan - 30 Days"),
}


def plan_for_hours(hours: int) -> Optional[Plan]:
    """Plan granting exactly `hours`, if any"""
    for plan in PLANS.values():
        if plan.hours == hours:
            return plan
    return None


class PaymentStatus(str, Enum):
    """Status of a payment intent"""
    IDLE = "idle"
    WALLET_CONNECTING = "wallet_connecting"
    WALLET_CONNECTED = "wallet_connected"
    SUBMITTING = "submitting"
    AWAITING_SIGNATURE = "awaiting_signature"
    BROADCASTING = "broadcasting"
    CONFIRMING = "confirming"
    RECORDING = "recording"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    PaymentStatus.SUCCEEDED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
})

# Statuses where the signed transfer has (or may have) reached the chain
POST_BROADCAST_STATUSES = frozenset({
    PaymentStatus.BROADCASTING,
    PaymentStatus.CONFIRMING,
    PaymentStatus.RECORDING,
    PaymentStatus.SUCCEEDED,
})


class FailureKind(str, Enum):
    """Closed set of user-facing failure categories"""
    WALLET_UNAVAILABLE = "wallet_unavailable"
    WALLET_CONNECTION_FAILED = "wallet_connection_failed"
    USER_REJECTED = "user_rejected"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NO_ENDPOINT_AVAILABLE = "no_endpoint_available"
    BROADCAST_FAILED = "broadcast_failed"
    ON_CHAIN_ERROR = "on_chain_error"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    RECORDING_FAILED = "recording_failed"
    UNKNOWN_ERROR = "unknown_error"


class FailureReason(BaseModel):
    """Classified failure attached to a failed intent"""
    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str
    transaction_signature: Optional[str] = None


class PaymentIntent(BaseModel):
    """One attempted purchase, tracked from plan selection to a terminal state"""
    intent_id: str = Field(default_factory=lambda: f"intent_{uuid.uuid4().hex[:12]}")
    plan: Plan
    payer_address: Optional[str] = None
    payer_balance: Optional[Decimal] = Field(default=None, description="Balance snapshot in SOL")
    status: PaymentStatus = Field(default=PaymentStatus.IDLE)
    transaction_signature: Optional[str] = None
    failure: Optional[FailureReason] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatusUpdate(BaseModel):
    """Notification emitted on every state transition"""
    intent_id: str
    status: PaymentStatus
    message: str
    failure: Optional[FailureReason] = None
    transaction_signature: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConfirmationResult(BaseModel):
    """Outcome of waiting for a signature to reach a commitment level"""
    signature: str
    err: Optional[Any] = None
    slot: Optional[int] = None


class PurchaseRequest(BaseModel):
    """Body of POST /api/process-payment"""
    model_config = ConfigDict(populate_by_name=True)

    hours: int = Field(gt=0)
    sol: Decimal = Field(gt=0)
    wallet_address: str = Field(alias="walletAddress", min_length=1)
    transaction_hash: str = Field(alias="transactionHash", min_length=1)

    @field_serializer("sol")
    def serialize_sol(self, sol: Decimal) -> float:
        return float(sol)


class PurchaseReceipt(BaseModel):
    """Successful response of POST /api/process-payment"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    transaction_hash: str = Field(alias="transactionHash")
    purchase_id: str = Field(alias="purchaseId")


class PurchaseStatus(str, Enum):
    """Status of a recorded purchase"""
    PENDING = "pending"  # recorded without on-chain verification
    CONFIRMED = "confirmed"


class Purchase(BaseModel):
    """A recorded plan purchase"""
    purchase_id: str
    hours: int
    sol_amount: Decimal
    wallet_address: str
    transaction_signature: str
    status: PurchaseStatus = Field(default=PurchaseStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_serializer("sol_amount")
    def serialize_sol_amount(self, sol_amount: Decimal) -> float:
        return float(sol_amount)


class PlanListing(BaseModel):
    """Plan catalogue entry returned by GET /api/plans"""
    key: str
    hours: int
    sol: Decimal
    label: str

    @field_serializer("sol")
    def serialize_sol(self, sol: Decimal) -> float:
        return float(sol)


def list_plans() -> List[PlanListing]:
    """Return the plan catalogue in display order"""
    return [
        PlanListing(key=key, hours=plan.hours, sol=plan.price, label=plan.label)
        for key, plan in PLANS.items()
    ]
