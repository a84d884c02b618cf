"""
MK Volume Bot Payment Module
SOL plan purchases: wallet connection, transfer submission and purchase recording
"""

from src.payments.models import (
    Plan,
    PLANS,
    PaymentIntent,
    PaymentStatus,
    FailureKind,
    FailureReason,
    StatusUpdate,
    PurchaseRequest,
    PurchaseReceipt,
    LAMPORTS_PER_SOL,
    sol_to_lamports,
    lamports_to_sol,
)
from src.payments.errors import (
    ErrorKind,
    PaymentError,
    InvalidTransition,
    CollaboratorError,
    WalletError,
    WalletUnavailableError,
    WalletRejectedError,
    RpcError,
    RpcTimeoutError,
    NoEndpointAvailableError,
    RecorderError,
)
from src.payments.recorder import BackendRecorder
from src.payments.state_machine import PaymentStateMachine, classify

__all__ = [
    "Plan",
    "PLANS",
    "PaymentIntent",
    "PaymentStatus",
    "FailureKind",
    "FailureReason",
    "StatusUpdate",
    "PurchaseRequest",
    "PurchaseReceipt",
    "LAMPORTS_PER_SOL",
    "sol_to_lamports",
    "lamports_to_sol",
    "ErrorKind",
    "PaymentError",
    "InvalidTransition",
    "CollaboratorError",
    "WalletError",
    "WalletUnavailableError",
    "WalletRejectedError",
    "RpcError",
    "RpcTimeoutError",
    "NoEndpointAvailableError",
    "RecorderError",
    "BackendRecorder",
    "PaymentStateMachine",
    "classify",
]
