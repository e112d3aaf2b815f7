"""
Blockchain backend interface used to estimate fees and broadcast transactions.
"""

from walletcore.backends.base import BlockchainBackend, broadcast_psbt, estimate_fee_policy

__all__ = ["BlockchainBackend", "broadcast_psbt", "estimate_fee_policy"]
