"""
walletcore - Descriptor-based Bitcoin wallet core

Provides BIP32/BIP39 key handling, output descriptors, coin selection,
transaction building with RBF fee bumping, and PSBT co-signing.
"""

__version__ = "0.1.0"

from walletcore.errors import (
    FeeEstimationFailedError,
    FeeRateTooLowError,
    GenericError,
    IncompletePsbtError,
    InsufficientFundsError,
    IrreplaceableTransactionError,
    MismatchedNetworkError,
    NoRecipientsError,
    TransactionNotFoundError,
    UnexpectedUnsignedTxError,
    UnknownUtxoError,
    ValidationError,
    WalletError,
)
from walletcore.keys import DerivationPath, Descriptor, DescriptorPublicKey, DescriptorSecretKey, Mnemonic
from walletcore.models import (
    AddressIndex,
    Balance,
    KeychainKind,
    NetworkType,
    SignOptions,
    SignResult,
    TxOrdering,
)
from walletcore.psbt import Psbt
from walletcore.wallet import MemoryWalletState, Wallet

__all__ = [
    "AddressIndex",
    "Balance",
    "DerivationPath",
    "Descriptor",
    "DescriptorPublicKey",
    "DescriptorSecretKey",
    "FeeEstimationFailedError",
    "FeeRateTooLowError",
    "GenericError",
    "IncompletePsbtError",
    "InsufficientFundsError",
    "IrreplaceableTransactionError",
    "KeychainKind",
    "MemoryWalletState",
    "Mnemonic",
    "MismatchedNetworkError",
    "NetworkType",
    "NoRecipientsError",
    "Psbt",
    "SignOptions",
    "SignResult",
    "TransactionNotFoundError",
    "TxOrdering",
    "UnexpectedUnsignedTxError",
    "UnknownUtxoError",
    "ValidationError",
    "Wallet",
    "WalletError",
]
