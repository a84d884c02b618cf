"""
Typed errors raised by payment collaborators

Each collaborator failure carries an ErrorKind so the state machine can
classify it without inspecting message text.
"""

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """What kind of collaborator call failed"""
    WALLET_UNAVAILABLE = "wallet_unavailable"
    WALLET_REJECTED = "wallet_rejected"
    WALLET_ERROR = "wallet_error"
    RPC_ERROR = "rpc_error"
    RPC_TIMEOUT = "rpc_timeout"
    NO_ENDPOINT = "no_endpoint"
    RECORDER_ERROR = "recorder_error"


class PaymentError(Exception):
    """Base class for payment flow errors"""


class InvalidTransition(PaymentError):
    """Raised when an operation is not legal in the intent's current status"""


class CollaboratorError(PaymentError):
    """Failure reported by the wallet, the ledger RPC or the backend recorder"""
    kind: ErrorKind = ErrorKind.WALLET_ERROR

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class WalletError(CollaboratorError):
    kind = ErrorKind.WALLET_ERROR


class WalletUnavailableError(WalletError):
    kind = ErrorKind.WALLET_UNAVAILABLE


class WalletRejectedError(WalletError):
    kind = ErrorKind.WALLET_REJECTED


class RpcError(CollaboratorError):
    """JSON-RPC or transport failure talking to a ledger endpoint"""
    kind = ErrorKind.RPC_ERROR

    def __init__(self, message: str, code: Optional[int] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.endpoint = endpoint


class RpcTimeoutError(RpcError):
    kind = ErrorKind.RPC_TIMEOUT


class NoEndpointAvailableError(CollaboratorError):
    """Every configured RPC endpoint failed its liveness probe"""
    kind = ErrorKind.NO_ENDPOINT

    def __init__(self, tried: Sequence[str]):
        self.tried = list(tried)
        super().__init__(f"No RPC endpoint available (tried {len(self.tried)}: {', '.join(self.tried)})")


class RecorderError(CollaboratorError):
    """Backend recorder rejected the purchase or could not be reached"""
    kind = ErrorKind.RECORDER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
