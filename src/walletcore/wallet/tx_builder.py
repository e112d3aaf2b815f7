"""
Transaction builder.

Collects recipients, input constraints, fee policy, RBF and data options, then
runs coin selection against the wallet's UTXO set and returns an unsigned PSBT.
"""

from __future__ import annotations

import copy
import random
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from walletcore.bitcoin.address import Address
from walletcore.bitcoin.script import (
    ScriptType,
    classify_script,
    dust_value,
    estimate_satisfaction_weight,
    is_witness_script,
    null_data_script,
)
from walletcore.bitcoin.transaction import OutPoint, Transaction, TxIn, TxOut
from walletcore.constants import (
    DEFAULT_TX_VERSION,
    SEQUENCE_FINAL,
    SEQUENCE_LOCKTIME_NO_RBF,
    SIGHASH_ALL,
)
from walletcore.errors import NoRecipientsError, UnknownUtxoError, ValidationError
from walletcore.models import (
    AbsoluteFee,
    ChangeSpendPolicy,
    FeeRate,
    ForeignUtxo,
    Recipient,
    RbfDefault,
    RbfSequence,
    TransactionDetails,
    TxBuilderResult,
    TxOrdering,
    sequence_for_rbf,
)
from walletcore.psbt import Psbt, PsbtInput
from walletcore.wallet.coin_selection import CoinSelectionResult, WeightedUtxo, select_coins

if TYPE_CHECKING:
    from walletcore.wallet.service import Wallet


def _validated(model: type, field_name: str, **values):
    """Construct a pydantic model, reporting failures as a wallet ValidationError."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        value = next(iter(values.values()), None)
        raise ValidationError(f"Invalid {field_name}: {e}", field=field_name, value=value) from e


class TxBuilder:
    """
    Builds an unsigned transaction for a wallet.

    Setters return the builder so calls can be chained:

        result = (
            wallet.build_tx()
            .add_recipient(address.script_pubkey, 50_000)
            .fee_rate(2.0)
            .enable_rbf()
            .finish()
        )
    """

    def __init__(self, wallet: Wallet):
        self.wallet = wallet
        self._recipients: list[tuple[bytes | Address, int]] = []
        self._utxos: list[OutPoint] = []
        self._foreign_utxos: list[ForeignUtxo] = []
        self._unspendable: set[OutPoint] = set()
        self._manually_selected_only = False
        self._change_policy = ChangeSpendPolicy.CHANGE_ALLOWED
        self._fee_policy: FeeRate | AbsoluteFee | None = None
        self._drain_wallet = False
        self._drain_to: bytes | Address | None = None
        self._rbf: RbfDefault | RbfSequence | None = None
        self._data: bytes | None = None
        self._ordering = TxOrdering.SHUFFLE
        self._sighash: int | None = None
        self._only_witness_utxo = False
        self._locktime: int | None = None
        self._version = DEFAULT_TX_VERSION
        # Fee bump support: minimum absolute fee and the txid being replaced
        self._min_fee = 0
        self._replacing: str | None = None

    # Recipients and data

    def add_recipient(self, script_pubkey: bytes | Address, amount: int) -> TxBuilder:
        self._recipients.append((script_pubkey, amount))
        return self

    def set_recipients(self, recipients: list[tuple[bytes | Address, int]]) -> TxBuilder:
        self._recipients = list(recipients)
        return self

    def add_data(self, data: bytes) -> TxBuilder:
        """Embed `data` in a zero-value OP_RETURN output."""
        self._data = data
        return self

    # Inputs

    def add_utxo(self, outpoint: OutPoint) -> TxBuilder:
        """Spend `outpoint` regardless of what selection would pick."""
        if outpoint not in self._utxos:
            self._utxos.append(outpoint)
        return self

    def add_utxos(self, outpoints: list[OutPoint]) -> TxBuilder:
        for outpoint in outpoints:
            self.add_utxo(outpoint)
        return self

    def add_foreign_utxo(
        self, outpoint: OutPoint, psbt_input: PsbtInput, satisfaction_weight: int
    ) -> TxBuilder:
        """Spend an output owned by another co-signer."""
        self._foreign_utxos.append(ForeignUtxo(outpoint, psbt_input, satisfaction_weight))
        return self

    def add_unspendable(self, outpoint: OutPoint) -> TxBuilder:
        self._unspendable.add(outpoint)
        return self

    def unspendable(self, outpoints: list[OutPoint]) -> TxBuilder:
        self._unspendable = set(outpoints)
        return self

    def manually_selected_only(self) -> TxBuilder:
        """Only spend the UTXOs added with add_utxo / add_foreign_utxo."""
        self._manually_selected_only = True
        return self

    def change_policy(self, policy: ChangeSpendPolicy) -> TxBuilder:
        self._change_policy = policy
        return self

    def do_not_spend_change(self) -> TxBuilder:
        return self.change_policy(ChangeSpendPolicy.CHANGE_FORBIDDEN)

    def only_spend_change(self) -> TxBuilder:
        return self.change_policy(ChangeSpendPolicy.ONLY_CHANGE)

    # Fees

    def fee_rate(self, sat_per_vb: float) -> TxBuilder:
        if isinstance(self._fee_policy, AbsoluteFee):
            raise ValidationError(
                "Fee rate and absolute fee are mutually exclusive", field="fee_rate", value=sat_per_vb
            )
        self._fee_policy = _validated(FeeRate, "fee_rate", sat_per_vb=sat_per_vb)
        return self

    def fee_absolute(self, amount: int) -> TxBuilder:
        if isinstance(self._fee_policy, FeeRate):
            raise ValidationError(
                "Fee rate and absolute fee are mutually exclusive", field="fee_absolute", value=amount
            )
        self._fee_policy = _validated(AbsoluteFee, "fee_absolute", amount=amount)
        return self

    # Drain

    def drain_wallet(self) -> TxBuilder:
        """Spend every eligible UTXO."""
        self._drain_wallet = True
        return self

    def drain_to(self, script_pubkey: bytes | Address) -> TxBuilder:
        """Send whatever is left after recipients and fee to `script_pubkey`."""
        self._drain_to = script_pubkey
        return self

    # RBF and transaction fields

    def enable_rbf(self) -> TxBuilder:
        self._rbf = RbfDefault()
        return self

    def enable_rbf_with_sequence(self, sequence: int) -> TxBuilder:
        self._rbf = _validated(RbfSequence, "sequence", sequence=sequence)
        return self

    def rbf(self, value: RbfDefault | RbfSequence | None) -> TxBuilder:
        self._rbf = value
        return self

    def ordering(self, ordering: TxOrdering) -> TxBuilder:
        self._ordering = ordering
        return self

    def sighash(self, sighash_type: int) -> TxBuilder:
        """Request `sighash_type` on every wallet input of the new PSBT."""
        self._sighash = sighash_type
        return self

    def only_witness_utxo(self) -> TxBuilder:
        """Leave out non_witness_utxo on segwit inputs."""
        self._only_witness_utxo = True
        return self

    def nlocktime(self, locktime: int) -> TxBuilder:
        self._locktime = locktime
        return self

    def version(self, version: int) -> TxBuilder:
        if version < 1:
            raise ValidationError(f"Invalid transaction version {version}", field="version", value=version)
        self._version = version
        return self

    # Building

    def _script(self, target: bytes | Address) -> bytes:
        if isinstance(target, Address):
            target.require_network(self.wallet.network)
            return target.script_pubkey
        return target

    def _validate_outputs(self) -> list[TxOut]:
        settings = self.wallet.settings
        outputs = []
        for target, amount in self._recipients:
            recipient = _validated(
                Recipient, "recipients", amount=amount, script_pubkey=self._script(target)
            )
            if recipient.amount == 0:
                is_data = classify_script(recipient.script_pubkey) == ScriptType.NULL_DATA
                if self._data is None and not is_data:
                    raise ValidationError(
                        "Zero-value recipient requires an embedded data output",
                        field="amount",
                        value=0,
                    )
            elif recipient.amount < dust_value(recipient.script_pubkey, settings.dust_relay_fee):
                raise ValidationError(
                    f"Recipient amount {recipient.amount} is below the dust limit",
                    field="amount",
                    value=recipient.amount,
                )
            outputs.append(TxOut(recipient.amount, recipient.script_pubkey))

        if self._data is not None:
            if len(self._data) > settings.max_data_size:
                raise ValidationError(
                    f"Data output of {len(self._data)} bytes exceeds {settings.max_data_size}",
                    field="data",
                    value=len(self._data),
                )
            outputs.append(TxOut(0, null_data_script(self._data)))
        return outputs

    def _weigh_foreign(self, foreign: ForeignUtxo) -> WeightedUtxo:
        psbt_input = foreign.psbt_input
        outpoint = foreign.outpoint
        prev_tx = psbt_input.non_witness_utxo
        if prev_tx is not None:
            if prev_tx.txid != outpoint.txid or outpoint.vout >= len(prev_tx.outputs):
                raise ValidationError(
                    f"non_witness_utxo does not match foreign outpoint {outpoint}",
                    field="foreign_utxo",
                    value=str(outpoint),
                )
            if (
                psbt_input.witness_utxo is not None
                and psbt_input.witness_utxo != prev_tx.outputs[outpoint.vout]
            ):
                raise ValidationError(
                    f"witness_utxo and non_witness_utxo disagree for {outpoint}",
                    field="foreign_utxo",
                    value=str(outpoint),
                )
        txout = psbt_input.utxo(outpoint)
        if txout is None:
            raise ValidationError(
                f"Foreign UTXO {outpoint} has no witness_utxo or non_witness_utxo",
                field="foreign_utxo",
                value=str(outpoint),
            )

        script = txout.script_pubkey
        is_segwit = is_witness_script(script) or (
            classify_script(script) == ScriptType.P2SH
            and psbt_input.redeem_script is not None
            and is_witness_script(psbt_input.redeem_script)
        )
        if not is_segwit and prev_tx is None:
            raise ValidationError(
                f"Legacy foreign UTXO {outpoint} requires non_witness_utxo",
                field="foreign_utxo",
                value=str(outpoint),
            )
        if foreign.satisfaction_weight <= 0:
            estimate = estimate_satisfaction_weight(
                script, psbt_input.redeem_script or b"", psbt_input.witness_script or b""
            )
            if estimate is None:
                raise ValidationError(
                    f"Satisfaction weight required for foreign UTXO {outpoint}",
                    field="satisfaction_weight",
                    value=foreign.satisfaction_weight,
                )
            foreign.satisfaction_weight = estimate[0]
        return WeightedUtxo(outpoint, txout, foreign.satisfaction_weight, is_segwit)

    def _gather_inputs(self) -> tuple[list[WeightedUtxo], list[WeightedUtxo]]:
        wallet = self.wallet
        must_use: list[WeightedUtxo] = []
        for outpoint in self._utxos:
            local = wallet.state.get_utxo(outpoint)
            if local is None or (local.is_spent and self._replacing is None):
                raise UnknownUtxoError(
                    f"Unknown or spent UTXO {outpoint}", field="utxos", value=str(outpoint)
                )
            must_use.append(wallet.weighted_utxo(local))
        for foreign in self._foreign_utxos:
            must_use.append(self._weigh_foreign(foreign))

        chosen = {utxo.outpoint for utxo in must_use}
        candidates = [
            wallet.weighted_utxo(local)
            for local in wallet.state.list_utxos()
            if local.outpoint not in chosen
            and local.outpoint not in self._unspendable
            and not wallet.is_reserved(local.outpoint)
            and local.outpoint.txid != self._replacing
            and self._change_policy.is_satisfied_by(local)
        ]

        if self._manually_selected_only:
            return must_use, []
        if self._drain_wallet:
            return must_use + candidates, []
        return must_use, candidates

    def _sequence(self) -> int:
        if self._rbf is not None:
            return sequence_for_rbf(self._rbf)
        if self._locktime is not None:
            # nLockTime is only enforced when some input is non-final
            return SEQUENCE_LOCKTIME_NO_RBF
        return SEQUENCE_FINAL

    def _order(self, inputs: list[WeightedUtxo], outputs: list[TxOut]) -> None:
        if self._ordering == TxOrdering.SHUFFLE:
            rng = random.SystemRandom()
            rng.shuffle(inputs)
            rng.shuffle(outputs)
        elif self._ordering == TxOrdering.BIP69_LEXICOGRAPHIC:
            inputs.sort(key=lambda u: (u.outpoint.txid, u.outpoint.vout))
            outputs.sort(key=lambda o: (o.value, o.script_pubkey))

    def finish(self) -> TxBuilderResult:
        wallet = self.wallet
        with wallet.lock:
            if not self._recipients and self._drain_to is None:
                raise NoRecipientsError()

            outputs = self._validate_outputs()
            fee_policy = self._fee_policy or FeeRate(sat_per_vb=wallet.settings.default_fee_rate)
            must_use, may_use = self._gather_inputs()

            change_index: int | None = None
            if self._drain_to is not None:
                drain_script = self._script(self._drain_to)
            else:
                change_index, drain_script = wallet.peek_change_script()

            selection = select_coins(
                must_use,
                may_use,
                outputs,
                drain_script,
                fee_policy,
                drain_required=not self._recipients,
                min_fee=self._min_fee,
                dust_relay_fee=wallet.settings.dust_relay_fee,
                max_iterations=wallet.settings.max_fee_iterations,
            )

            if selection.has_drain_output:
                outputs.append(TxOut(selection.drain_value, drain_script))
                if change_index is not None:
                    wallet.reveal_change_index(change_index)

            psbt = self._build_psbt(selection, outputs)
            details = self._details(psbt, selection)
            wallet.reserve([utxo.outpoint for utxo in selection.selected if not utxo.is_foreign])

        logger.info(
            f"Built transaction {details.txid}: {len(psbt.inputs)} inputs, "
            f"{len(psbt.outputs)} outputs, fee={selection.fee} sats"
        )
        return TxBuilderResult(psbt, details)

    def _build_psbt(self, selection: CoinSelectionResult, outputs: list[TxOut]) -> Psbt:
        inputs = list(selection.selected)
        self._order(inputs, outputs)

        sequence = self._sequence()
        tx = Transaction(
            version=self._version,
            inputs=[TxIn(utxo.outpoint, sequence=sequence) for utxo in inputs],
            outputs=outputs,
            locktime=self._locktime or 0,
        )
        psbt = Psbt.from_unsigned_tx(tx)

        foreign = {f.outpoint: f for f in self._foreign_utxos}
        for i, utxo in enumerate(inputs):
            if utxo.local is not None:
                psbt.inputs[i] = self.wallet.get_psbt_input(
                    utxo.local, self._only_witness_utxo, self._sighash
                )
            else:
                psbt_input = copy.deepcopy(foreign[utxo.outpoint].psbt_input)
                if self._sighash is not None and self._sighash != SIGHASH_ALL:
                    psbt_input.sighash_type = self._sighash
                psbt.inputs[i] = psbt_input

        for i, out in enumerate(outputs):
            psbt.outputs[i] = self.wallet.get_psbt_output(out.script_pubkey)
        return psbt

    def _details(self, psbt: Psbt, selection: CoinSelectionResult) -> TransactionDetails:
        sent = sum(utxo.value for utxo in selection.selected if not utxo.is_foreign)
        received = sum(
            out.value for out in psbt.unsigned_tx.outputs if self.wallet.is_mine(out.script_pubkey)
        )
        return TransactionDetails(
            txid=psbt.txid,
            received=received,
            sent=sent,
            fee=selection.fee,
            confirmation_time=None,
            transaction=psbt.unsigned_tx,
        )
