"""
Descriptor wallet service.

Binds an external (and optionally a change) descriptor to a wallet-state
collaborator and exposes address handout, balance, transaction building,
fee bumping and signing. One re-entrant lock per wallet serializes everything
that reads-then-updates derivation indexes or input reservations.
"""

from __future__ import annotations

import threading

from loguru import logger

from walletcore.bitcoin.transaction import OutPoint, Transaction
from walletcore.config import WalletSettings, get_settings
from walletcore.errors import MismatchedNetworkError, ValidationError
from walletcore.keys.descriptor import Descriptor
from walletcore.keys.descriptor_key import DescriptorSecretKey
from walletcore.models import (
    AddressIndex,
    AddressInfo,
    Balance,
    KeychainKind,
    LocalUtxo,
    NetworkType,
    SignOptions,
    SignResult,
    TransactionDetails,
)
from walletcore.psbt import KeySource, Psbt, PsbtInput, PsbtOutput
from walletcore.wallet.coin_selection import WeightedUtxo
from walletcore.wallet.fee_bump import BumpFeeTxBuilder
from walletcore.wallet.signer import sign_psbt
from walletcore.wallet.state import MemoryWalletState, WalletState
from walletcore.wallet.tx_builder import TxBuilder


class Wallet:
    """
    Descriptor wallet.

    Without a change descriptor, change is sent to the external descriptor.
    """

    def __init__(
        self,
        descriptor: Descriptor | str,
        change_descriptor: Descriptor | str | None,
        network: NetworkType,
        state: WalletState | None = None,
        settings: WalletSettings | None = None,
    ):
        self.network = network
        self.settings = settings or get_settings()
        self.state = state if state is not None else MemoryWalletState()

        self.descriptor = self._load(descriptor, KeychainKind.EXTERNAL)
        self.change_descriptor = (
            self._load(change_descriptor, KeychainKind.INTERNAL)
            if change_descriptor is not None
            else None
        )

        self.lock = threading.RLock()
        self._reserved: set[OutPoint] = set()
        self._script_cache: dict[bytes, tuple[KeychainKind, int]] = {}
        self._cached_upto: dict[KeychainKind, int] = {}

        logger.info(
            f"Initialized {self.descriptor.template.value} wallet on {network.value}"
            f"{' with change descriptor' if self.change_descriptor else ''}"
        )

    def _load(self, descriptor: Descriptor | str, keychain: KeychainKind) -> Descriptor:
        if isinstance(descriptor, str):
            return Descriptor.parse(descriptor, self.network, keychain)
        if descriptor.network != self.network:
            raise MismatchedNetworkError(self.network.value, descriptor.network.value)
        descriptor.keychain = keychain
        return descriptor

    # Descriptors and scripts

    def get_descriptor_for_keychain(self, keychain: KeychainKind) -> Descriptor:
        if keychain == KeychainKind.INTERNAL and self.change_descriptor is not None:
            return self.change_descriptor
        return self.descriptor

    @property
    def change_keychain(self) -> KeychainKind:
        return KeychainKind.INTERNAL if self.change_descriptor is not None else KeychainKind.EXTERNAL

    def _keychains(self) -> list[KeychainKind]:
        if self.change_descriptor is None:
            return [KeychainKind.EXTERNAL]
        return [KeychainKind.EXTERNAL, KeychainKind.INTERNAL]

    def _ensure_cached(self, keychain: KeychainKind, upto: int) -> None:
        descriptor = self.get_descriptor_for_keychain(keychain)
        if not descriptor.is_ranged:
            upto = 0
        start = self._cached_upto.get(keychain, -1) + 1
        for index in range(start, upto + 1):
            self._script_cache[descriptor.script_pubkey(index)] = (keychain, index)
        self._cached_upto[keychain] = max(upto, start - 1)

    def derivation_of_script(self, script_pubkey: bytes) -> tuple[KeychainKind, int] | None:
        """(keychain, index) of a wallet script within the lookahead window."""
        with self.lock:
            for keychain in self._keychains():
                upto = self.state.next_index(keychain) + self.settings.lookahead - 1
                self._ensure_cached(keychain, upto)
            return self._script_cache.get(script_pubkey)

    def is_mine(self, script_pubkey: bytes) -> bool:
        return self.derivation_of_script(script_pubkey) is not None

    # Addresses

    def _address(self, keychain: KeychainKind, address_index: AddressIndex) -> AddressInfo:
        descriptor = self.get_descriptor_for_keychain(keychain)
        with self.lock:
            if address_index.kind == "peek":
                index = address_index.index
            else:
                last = self.state.last_revealed_index(keychain)
                if (
                    address_index.kind == "last_unused"
                    and last is not None
                    and not self.state.is_used(keychain, last)
                ):
                    index = last
                else:
                    index = self.state.next_index(keychain)
                    if not descriptor.is_ranged and index > 0:
                        index = 0
                    self.state.reveal_index(keychain, index)

        return AddressInfo(index, str(descriptor.address(index)), keychain)

    def get_address(self, address_index: AddressIndex | None = None) -> AddressInfo:
        return self._address(KeychainKind.EXTERNAL, address_index or AddressIndex.new())

    def get_internal_address(self, address_index: AddressIndex | None = None) -> AddressInfo:
        return self._address(self.change_keychain, address_index or AddressIndex.new())

    def peek_change_script(self) -> tuple[int, bytes]:
        """Next fresh change index and its script; the index is not yet revealed."""
        keychain = self.change_keychain
        descriptor = self.get_descriptor_for_keychain(keychain)
        index = self.state.next_index(keychain) if descriptor.is_ranged else 0
        return index, descriptor.script_pubkey(index)

    def reveal_change_index(self, index: int) -> None:
        self.state.reveal_index(self.change_keychain, index)

    # Balance and history

    def get_balance(self) -> Balance:
        balance = Balance()
        for utxo in self.state.list_utxos():
            if utxo.confirmations > 0:
                balance.confirmed += utxo.value
            elif utxo.keychain == KeychainKind.INTERNAL:
                balance.trusted_pending += utxo.value
            else:
                balance.untrusted_pending += utxo.value
        return balance

    def list_unspent(self) -> list[LocalUtxo]:
        return self.state.list_utxos()

    def list_transactions(self) -> list[TransactionDetails]:
        return self.state.list_transactions()

    # Input reservations

    def is_reserved(self, outpoint: OutPoint) -> bool:
        return outpoint in self._reserved

    def reserve(self, outpoints: list[OutPoint]) -> None:
        with self.lock:
            self._reserved.update(outpoints)

    def cancel_tx(self, tx: Transaction) -> None:
        """Release the inputs of a built transaction that will not be broadcast."""
        with self.lock:
            for txin in tx.inputs:
                self._reserved.discard(txin.previous_output)
        logger.debug(f"Released reservations for {tx.txid}")

    # PSBT metadata

    def weighted_utxo(self, utxo: LocalUtxo) -> WeightedUtxo:
        descriptor = self.get_descriptor_for_keychain(utxo.keychain)
        return WeightedUtxo(
            utxo.outpoint,
            utxo.txout,
            descriptor.max_satisfaction_weight(),
            descriptor.is_segwit,
            local=utxo,
        )

    def _fill_script_metadata(
        self, target: PsbtInput | PsbtOutput, keychain: KeychainKind, index: int
    ) -> None:
        descriptor = self.get_descriptor_for_keychain(keychain)
        scripts = descriptor.derive_scripts(index)
        if scripts.redeem_script and target.redeem_script is None:
            target.redeem_script = scripts.redeem_script
        if scripts.witness_script and target.witness_script is None:
            target.witness_script = scripts.witness_script
        for source in descriptor.derive_keys(index):
            target.bip32_derivation.setdefault(
                source.pubkey, KeySource(source.fingerprint, source.path)
            )

    def get_psbt_input(
        self,
        utxo: LocalUtxo,
        only_witness_utxo: bool = False,
        sighash_type: int | None = None,
    ) -> PsbtInput:
        derivation = self.derivation_of_script(utxo.script_pubkey)
        if derivation is None:
            raise ValidationError(
                f"UTXO {utxo.outpoint} does not belong to this wallet",
                field="utxo",
                value=str(utxo.outpoint),
            )
        keychain, index = derivation
        descriptor = self.get_descriptor_for_keychain(keychain)

        inp = PsbtInput(sighash_type=sighash_type)
        if descriptor.is_segwit:
            inp.witness_utxo = utxo.txout

        details = self.state.get_tx(utxo.outpoint.txid)
        prev_tx = details.transaction if details is not None else None
        if prev_tx is not None and not (descriptor.is_segwit and only_witness_utxo):
            inp.non_witness_utxo = prev_tx
        elif not descriptor.is_segwit:
            raise ValidationError(
                f"Previous transaction of legacy UTXO {utxo.outpoint} is unknown",
                field="non_witness_utxo",
                value=str(utxo.outpoint),
            )

        self._fill_script_metadata(inp, keychain, index)
        return inp

    def get_psbt_output(self, script_pubkey: bytes) -> PsbtOutput:
        out = PsbtOutput()
        derivation = self.derivation_of_script(script_pubkey)
        if derivation is not None:
            self._fill_script_metadata(out, *derivation)
        return out

    # Building

    def build_tx(self) -> TxBuilder:
        return TxBuilder(self)

    def build_fee_bump(self, txid: str) -> BumpFeeTxBuilder:
        return BumpFeeTxBuilder(self, txid)

    # Signing

    @property
    def secret_keys(self) -> list[DescriptorSecretKey]:
        keys = list(self.descriptor.secret_keys)
        if self.change_descriptor is not None:
            keys.extend(self.change_descriptor.secret_keys)
        return keys

    def sign(self, psbt: Psbt, options: SignOptions | None = None) -> SignResult:
        """
        Sign every input this wallet's keys can satisfy.

        Inputs paying to wallet scripts get their derivation hints and scripts
        filled in first, so PSBTs from other software can be signed too.
        """
        options = options or SignOptions()
        with self.lock:
            prepared = Psbt.from_bytes(psbt.serialize())
            for i, inp in enumerate(prepared.inputs):
                if inp.is_finalized and not options.sign_finalized:
                    continue
                utxo = prepared.input_utxo(i)
                if utxo is None:
                    continue
                derivation = self.derivation_of_script(utxo.script_pubkey)
                if derivation is None:
                    continue
                if inp.is_finalized:
                    # Re-signing starts again from an unsigned input
                    inp.final_script_sig = None
                    inp.final_script_witness = None
                self._fill_script_metadata(inp, *derivation)
            result = sign_psbt(prepared, self.secret_keys, options)

        logger.info(
            f"Signed PSBT {psbt.txid}: {result.signatures_added} signatures added, "
            f"fully_signed={result.fully_signed}"
        )
        return result
