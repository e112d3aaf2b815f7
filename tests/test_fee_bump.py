"""
Tests for replace-by-fee transaction building.
"""

import pytest
from conftest import FOREIGN_SCRIPT

from walletcore.bitcoin.script import p2wpkh_script
from walletcore.constants import SEQUENCE_FINAL, SEQUENCE_RBF_DEFAULT
from walletcore.errors import (
    FeeRateTooLowError,
    IrreplaceableTransactionError,
    TransactionNotFoundError,
    ValidationError,
)
from walletcore.models import BlockTime, TransactionDetails


def broadcast(wallet, result, confirmed: bool = False, with_fee: bool = True) -> str:
    """Sign a built transaction and record it in wallet history as sent."""
    tx = wallet.sign(result.psbt).psbt.extract_tx()
    wallet.state.insert_tx(
        TransactionDetails(
            txid=tx.txid,
            received=result.details.received,
            sent=result.details.sent,
            fee=result.details.fee if with_fee else None,
            confirmation_time=BlockTime(200, 1_700_000_600) if confirmed else None,
            transaction=tx,
        )
    )
    for txin in tx.inputs:
        wallet.state.spend(txin.previous_output)
    return tx.txid


@pytest.fixture
def payment(wallet, fund):
    """Original RBF payment of 50k at 1 sat/vB (fee 141) from a 100k UTXO."""
    fund(100_000)
    return (
        wallet.build_tx()
        .add_recipient(FOREIGN_SCRIPT, 50_000)
        .fee_rate(1.0)
        .enable_rbf()
        .finish()
    )


class TestFeeBump:
    def test_bump_recomputes_change(self, wallet, payment):
        txid = broadcast(wallet, payment)
        result = wallet.build_fee_bump(txid).fee_rate(5.0).finish()

        tx = result.psbt.unsigned_tx
        assert result.details.fee == 705
        assert result.details.txid != txid
        assert [txin.previous_output for txin in tx.inputs] == [
            txin.previous_output for txin in payment.psbt.unsigned_tx.inputs
        ]
        values = {out.script_pubkey: out.value for out in tx.outputs}
        change_script = wallet.change_descriptor.script_pubkey(0)
        assert values == {FOREIGN_SCRIPT: 50_000, change_script: 49_295}
        assert all(txin.sequence == SEQUENCE_RBF_DEFAULT for txin in tx.inputs)

    def test_fee_computed_from_inputs_when_unknown(self, wallet, payment):
        txid = broadcast(wallet, payment, with_fee=False)
        assert wallet.build_fee_bump(txid).fee_rate(5.0).finish().details.fee == 705

    def test_replacement_can_be_signed(self, wallet, payment):
        txid = broadcast(wallet, payment)
        result = wallet.build_fee_bump(txid).fee_rate(5.0).finish()
        signed = wallet.sign(result.psbt)
        assert signed.fully_signed
        assert signed.psbt.extract_tx().txid == result.details.txid

    @pytest.mark.parametrize("rate", [1.5, 2.0])
    def test_rate_must_exceed_increment(self, wallet, payment, rate):
        txid = broadcast(wallet, payment)
        with pytest.raises(FeeRateTooLowError) as exc_info:
            wallet.build_fee_bump(txid).fee_rate(rate).finish()
        assert exc_info.value.required == pytest.approx(2.0, abs=0.01)

    def test_requires_fee_rate(self, wallet, payment):
        txid = broadcast(wallet, payment)
        with pytest.raises(ValidationError):
            wallet.build_fee_bump(txid).finish()

    def test_unknown_transaction(self, wallet):
        with pytest.raises(TransactionNotFoundError):
            wallet.build_fee_bump("ab" * 32).fee_rate(5.0).finish()

    def test_confirmed_transaction(self, wallet, payment):
        txid = broadcast(wallet, payment, confirmed=True)
        with pytest.raises(IrreplaceableTransactionError, match="confirmed"):
            wallet.build_fee_bump(txid).fee_rate(5.0).finish()

    def test_non_rbf_transaction(self, wallet, fund):
        fund(100_000)
        result = wallet.build_tx().add_recipient(FOREIGN_SCRIPT, 50_000).finish()
        txid = broadcast(wallet, result)
        with pytest.raises(IrreplaceableTransactionError, match="replaceability"):
            wallet.build_fee_bump(txid).fee_rate(5.0).finish()

    def test_disable_rbf(self, wallet, payment):
        txid = broadcast(wallet, payment)
        result = wallet.build_fee_bump(txid).fee_rate(5.0).disable_rbf().finish()
        assert all(txin.sequence == SEQUENCE_FINAL for txin in result.psbt.unsigned_tx.inputs)

    def test_custom_sequence(self, wallet, payment):
        txid = broadcast(wallet, payment)
        result = wallet.build_fee_bump(txid).fee_rate(5.0).enable_rbf_with_sequence(7).finish()
        assert result.psbt.unsigned_tx.inputs[0].sequence == 7

    def test_invalid_sequence(self, wallet):
        with pytest.raises(ValidationError):
            wallet.build_fee_bump("ab" * 32).enable_rbf_with_sequence(SEQUENCE_FINAL)


class TestAllowShrinking:
    def test_shrink_drain_output(self, wallet, fund):
        fund(100_000)
        drain = (
            wallet.build_tx()
            .drain_wallet()
            .drain_to(FOREIGN_SCRIPT)
            .fee_rate(1.0)
            .enable_rbf()
            .finish()
        )
        assert drain.details.fee == 110
        txid = broadcast(wallet, drain)

        result = wallet.build_fee_bump(txid).fee_rate(5.0).allow_shrinking(FOREIGN_SCRIPT).finish()
        tx = result.psbt.unsigned_tx
        assert len(tx.inputs) == 1
        assert result.details.fee == 550
        assert [(out.script_pubkey, out.value) for out in tx.outputs] == [
            (FOREIGN_SCRIPT, 99_450)
        ]

    def test_shrink_target_must_be_an_output(self, wallet, payment):
        txid = broadcast(wallet, payment)
        with pytest.raises(ValidationError, match="allow_shrinking"):
            (
                wallet.build_fee_bump(txid)
                .fee_rate(5.0)
                .allow_shrinking(p2wpkh_script(b"\x44" * 20))
                .finish()
            )
