"""
Descriptor wallet: coin selection, transaction building, fee bumping and signing.
"""

from walletcore.wallet.fee_bump import BumpFeeTxBuilder
from walletcore.wallet.service import Wallet
from walletcore.wallet.state import MemoryWalletState, WalletState
from walletcore.wallet.tx_builder import TxBuilder

__all__ = [
    "BumpFeeTxBuilder",
    "MemoryWalletState",
    "TxBuilder",
    "Wallet",
    "WalletState",
]
