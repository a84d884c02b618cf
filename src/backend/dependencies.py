from typing import Dict, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
import structlog

from src.config import get_backend_config
from src.backend.verifier import TransactionVerifier
from src.ledger.rpc import SolanaRpcClient
from src.payments.models import Purchase

logger = structlog.get_logger()

# In-memory purchase store keyed by purchase_id
purchases_db: Dict[str, Purchase] = {}

_verifier: Optional[TransactionVerifier] = None


def get_client_key(request: Request) -> str:
    """Get client identifier for rate limiting - uses IP address"""
    return get_remote_address(request)


def get_rate_limit() -> str:
    return get_backend_config().rate_limit


def get_verifier() -> Optional[TransactionVerifier]:
    """Shared on-chain verifier, or None when verification is disabled"""
    global _verifier
    config = get_backend_config()
    if not config.verify_transactions:
        return None
    if _verifier is None:
        _verifier = TransactionVerifier(
            SolanaRpcClient(config.rpc_url, timeout=config.rpc_request_timeout),
            config.treasury_address,
            commitment=config.verify_commitment,
            attempts=config.verify_attempts,
            retry_delay=config.verify_retry_delay,
        )
    return _verifier


async def close_verifier():
    global _verifier
    if _verifier is not None:
        await _verifier.aclose()
        _verifier = None


def find_purchase_by_signature(signature: str) -> Optional[Purchase]:
    for purchase in purchases_db.values():
        if purchase.transaction_signature == signature:
            return purchase
    return None


def truncate(value: str, keep: int = 8) -> str:
    """Shorten addresses and signatures for logs"""
    return f"{value[:keep]}..." if value else value


limiter = Limiter(key_func=get_client_key)
