"""
Transfer transaction construction
"""

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction


def build_transfer_transaction(
    payer: str,
    recipient: str,
    lamports: int,
    blockhash: str,
) -> Transaction:
    """
    Build an unsigned system-program transfer.

    Args:
        payer: Base58 address paying the lamports and the fee
        recipient: Base58 destination address
        lamports: Amount to transfer
        blockhash: Recent blockhash the transaction is bound to

    Returns:
        Unsigned Transaction ready for the wallet to sign
    """
    if lamports <= 0:
        raise ValueError(f"Transfer amount must be positive, got {lamports}")

    payer_key = Pubkey.from_string(payer)
    instruction = transfer(
        TransferParams(
            from_pubkey=payer_key,
            to_pubkey=Pubkey.from_string(recipient),
            lamports=lamports,
        )
    )
    message = Message.new_with_blockhash([instruction], payer_key, Hash.from_string(blockhash))
    return Transaction.new_unsigned(message)


def serialize_transaction(tx: Transaction) -> bytes:
    """Wire bytes of a (signed) transaction"""
    return bytes(tx)
