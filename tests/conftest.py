"""
Test configuration for walletcore tests.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable

import pytest

from walletcore.bitcoin.script import p2wpkh_script
from walletcore.bitcoin.transaction import OutPoint, Transaction, TxIn, TxOut
from walletcore.config import WalletSettings
from walletcore.keys.descriptor import Descriptor
from walletcore.keys.descriptor_key import DescriptorSecretKey
from walletcore.keys.mnemonic import Mnemonic
from walletcore.models import BlockTime, KeychainKind, LocalUtxo, NetworkType, TransactionDetails
from walletcore.wallet.service import Wallet
from walletcore.wallet.state import MemoryWalletState

# Outputs paying here are never recognized as wallet outputs
FOREIGN_SCRIPT = p2wpkh_script(bytes.fromhex("11" * 20))

_funding_counter = itertools.count(1)


@pytest.fixture
def sample_mnemonic() -> str:
    """Test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def settings() -> WalletSettings:
    return WalletSettings(network=NetworkType.TESTNET)


@pytest.fixture
def wallet(sample_mnemonic: str, settings: WalletSettings) -> Wallet:
    """BIP84 testnet wallet with separate change keychain."""
    network = NetworkType.TESTNET
    key = DescriptorSecretKey.generate(network, Mnemonic(sample_mnemonic))
    return Wallet(
        Descriptor.new_bip84(key, KeychainKind.EXTERNAL, network),
        Descriptor.new_bip84(key, KeychainKind.INTERNAL, network),
        network,
        state=MemoryWalletState(),
        settings=settings,
    )


def funding_tx(script_pubkey: bytes, value: int) -> Transaction:
    """A transaction from nowhere paying `value` to `script_pubkey` at vout 0."""
    prev = OutPoint(f"{next(_funding_counter):064x}", 0)
    return Transaction(inputs=[TxIn(prev)], outputs=[TxOut(value, script_pubkey)])


def fund_state(
    state: MemoryWalletState,
    script_pubkey: bytes,
    value: int,
    keychain: KeychainKind = KeychainKind.EXTERNAL,
    confirmations: int = 6,
) -> LocalUtxo:
    tx = funding_tx(script_pubkey, value)
    utxo = LocalUtxo(OutPoint(tx.txid, 0), tx.outputs[0], keychain, confirmations=confirmations)
    state.insert_utxo(utxo)
    state.insert_tx(
        TransactionDetails(
            txid=tx.txid,
            received=value,
            sent=0,
            fee=None,
            confirmation_time=BlockTime(100, 1_700_000_000) if confirmations else None,
            transaction=tx,
        )
    )
    return utxo


@pytest.fixture
def fund(wallet: Wallet) -> Callable[..., LocalUtxo]:
    """Credit the wallet with a UTXO at a derivation index."""

    def _fund(
        value: int,
        index: int = 0,
        keychain: KeychainKind = KeychainKind.EXTERNAL,
        confirmations: int = 6,
    ) -> LocalUtxo:
        script = wallet.get_descriptor_for_keychain(keychain).script_pubkey(index)
        return fund_state(wallet.state, script, value, keychain, confirmations)

    return _fund
