"""
Wallet module for MK Volume Bot
"""

from src.wallet.provider import WalletProvider, KeypairWallet

__all__ = ["WalletProvider", "KeypairWallet"]
