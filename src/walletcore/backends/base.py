"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from walletcore.errors import GenericError
from walletcore.models import FeeRate
from walletcore.psbt import Psbt


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.

    The wallet core never talks to the network itself; callers use a backend to
    obtain fee estimates and to broadcast finished transactions.
    """

    @abstractmethod
    async def get_height(self) -> int:
        """Get current blockchain height"""

    @abstractmethod
    async def get_block_hash(self, height: int) -> str:
        """Get block hash for given height"""

    @abstractmethod
    async def estimate_fee(self, target_blocks: int) -> float:
        """Estimate fee in sat/vbyte for target confirmation blocks"""

    @abstractmethod
    async def broadcast(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


async def estimate_fee_policy(
    backend: BlockchainBackend, target_blocks: int, floor: float = 1.0
) -> FeeRate:
    """Fee rate for confirmation within `target_blocks`, never below `floor` sat/vB."""
    try:
        rate = await backend.estimate_fee(target_blocks)
    except Exception as e:
        raise GenericError(f"Fee estimation failed: {e}") from e

    if rate < floor:
        logger.debug(f"Fee estimate {rate} sat/vB below floor, using {floor}")
        rate = floor
    logger.debug(f"Fee estimate for {target_blocks} blocks: {rate} sat/vB")
    return FeeRate(sat_per_vb=rate)


async def broadcast_psbt(backend: BlockchainBackend, psbt: Psbt) -> str:
    """Extract the finalized transaction from `psbt` and broadcast it."""
    tx = psbt.extract_tx()
    txid = await backend.broadcast(tx.serialize().hex())
    if txid != tx.txid:
        logger.warning(f"Backend reported txid {txid}, expected {tx.txid}")
    logger.info(f"Broadcast transaction {tx.txid}")
    return txid
