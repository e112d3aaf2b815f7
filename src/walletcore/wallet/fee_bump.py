"""
Replace-by-fee transaction builder.

Rebuilds an unconfirmed wallet transaction at a higher fee rate, keeping its
inputs and recipients and either re-deriving change or shrinking one output.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from loguru import logger

from walletcore.bitcoin.address import Address
from walletcore.bitcoin.transaction import Transaction
from walletcore.constants import WITNESS_SCALE_FACTOR
from walletcore.errors import (
    FeeRateTooLowError,
    IrreplaceableTransactionError,
    TransactionNotFoundError,
    ValidationError,
)
from walletcore.models import (
    KeychainKind,
    RbfDefault,
    RbfSequence,
    TransactionDetails,
    TxBuilderResult,
    TxOrdering,
)
from walletcore.wallet.coin_selection import estimate_weight
from walletcore.wallet.tx_builder import TxBuilder

if TYPE_CHECKING:
    from walletcore.wallet.service import Wallet


class BumpFeeTxBuilder:
    """
    Builds a replacement for wallet transaction `txid`.

    The original change output is dropped and recomputed. With allow_shrinking the
    named output absorbs the extra fee instead and no inputs are added.
    """

    def __init__(self, wallet: Wallet, txid: str):
        self.wallet = wallet
        self.txid = txid
        self._fee_rate: float | None = None
        self._shrink: bytes | Address | None = None
        self._rbf: RbfDefault | RbfSequence | None = RbfDefault()

    def fee_rate(self, sat_per_vb: float) -> BumpFeeTxBuilder:
        self._fee_rate = sat_per_vb
        return self

    def allow_shrinking(self, script_pubkey: bytes | Address) -> BumpFeeTxBuilder:
        self._shrink = script_pubkey
        return self

    def enable_rbf(self) -> BumpFeeTxBuilder:
        self._rbf = RbfDefault()
        return self

    def enable_rbf_with_sequence(self, sequence: int) -> BumpFeeTxBuilder:
        try:
            self._rbf = RbfSequence(sequence=sequence)
        except ValueError as e:
            raise ValidationError(f"Invalid sequence: {e}", field="sequence", value=sequence) from e
        return self

    def disable_rbf(self) -> BumpFeeTxBuilder:
        """Make the replacement final; it can then no longer be bumped."""
        self._rbf = None
        return self

    def _original(self) -> tuple[TransactionDetails, Transaction]:
        details = self.wallet.state.get_tx(self.txid)
        if details is None:
            raise TransactionNotFoundError(self.txid)
        if details.is_confirmed:
            raise IrreplaceableTransactionError(self.txid, "already confirmed")
        if details.transaction is None:
            raise IrreplaceableTransactionError(self.txid, "raw transaction unavailable")
        tx = details.transaction
        if not tx.is_explicitly_rbf():
            raise IrreplaceableTransactionError(self.txid, "does not signal replaceability")
        return details, tx

    def _original_fee_and_vsize(self, details: TransactionDetails, tx: Transaction) -> tuple[int, int]:
        utxos = []
        for txin in tx.inputs:
            utxo = self.wallet.state.get_utxo(txin.previous_output)
            if utxo is None:
                raise IrreplaceableTransactionError(
                    self.txid, f"input {txin.previous_output} is not a wallet output"
                )
            utxos.append(utxo)

        fee = details.fee
        if fee is None:
            fee = sum(u.value for u in utxos) - sum(out.value for out in tx.outputs)

        if all(txin.script_sig or txin.witness for txin in tx.inputs):
            vsize = tx.vsize()
        else:
            weight = estimate_weight(
                [self.wallet.weighted_utxo(u) for u in utxos], list(tx.outputs)
            )
            vsize = -(-weight // WITNESS_SCALE_FACTOR)
        return fee, vsize

    def finish(self) -> TxBuilderResult:
        if self._fee_rate is None:
            raise ValidationError("Fee bump requires a fee rate", field="fee_rate")

        wallet = self.wallet
        settings = wallet.settings
        with wallet.lock:
            details, tx = self._original()
            original_fee, original_vsize = self._original_fee_and_vsize(details, tx)
            original_rate = original_fee / original_vsize

            required_rate = original_rate + settings.min_relay_increment
            if not self._fee_rate > required_rate:
                raise FeeRateTooLowError(
                    f"Replacement fee rate {self._fee_rate} sat/vB must exceed "
                    f"{required_rate:.3f} sat/vB",
                    required=required_rate,
                    value=self._fee_rate,
                )

            builder = TxBuilder(wallet)
            builder._replacing = self.txid
            builder._min_fee = original_fee + math.ceil(
                settings.min_relay_increment * original_vsize
            )
            builder.fee_rate(self._fee_rate)
            builder.rbf(self._rbf)
            builder.ordering(TxOrdering.UNTOUCHED)
            builder.version(tx.version)
            if tx.locktime:
                builder.nlocktime(tx.locktime)
            builder.add_utxos([txin.previous_output for txin in tx.inputs])

            shrink_script = None
            if self._shrink is not None:
                shrink_script = builder._script(self._shrink)
                if not any(out.script_pubkey == shrink_script for out in tx.outputs):
                    raise ValidationError(
                        "allow_shrinking output is not part of the original transaction",
                        field="allow_shrinking",
                        value=shrink_script.hex(),
                    )
                builder.manually_selected_only()

            for out in tx.outputs:
                if shrink_script is not None and out.script_pubkey == shrink_script:
                    builder.drain_to(out.script_pubkey)
                    continue
                derivation = wallet.derivation_of_script(out.script_pubkey)
                is_change = derivation is not None and derivation[0] == KeychainKind.INTERNAL
                if is_change and shrink_script is None:
                    builder.drain_to(out.script_pubkey)
                    continue
                builder.add_recipient(out.script_pubkey, out.value)

            if self._rbf is None:
                logger.warning(
                    f"Replacement for {self.txid} does not signal RBF; it cannot be bumped again"
                )
            result = builder.finish()

        logger.info(
            f"Bumped {self.txid} ({original_rate:.2f} sat/vB) -> {result.details.txid} "
            f"at {self._fee_rate} sat/vB, fee={result.details.fee} sats"
        )
        return result
