"""
Ledger access for MK Volume Bot
Solana JSON-RPC client, endpoint failover and transfer construction
"""

from src.ledger.rpc import (
    LedgerClient,
    SolanaRpcClient,
    COMMITMENT_LEVELS,
    commitment_reached,
)
from src.ledger.resolver import EndpointResolver
from src.ledger.transactions import build_transfer_transaction, serialize_transaction

__all__ = [
    "LedgerClient",
    "SolanaRpcClient",
    "COMMITMENT_LEVELS",
    "commitment_reached",
    "EndpointResolver",
    "build_transfer_transaction",
    "serialize_transaction",
]
