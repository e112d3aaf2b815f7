"""
Core data models.

Caller-facing inputs (recipients, fee policy, RBF choice, sign options) are Pydantic
models so they are validated on construction; wallet-internal records are dataclasses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from walletcore.bitcoin.transaction import OutPoint, Transaction, TxOut
from walletcore.constants import SEQUENCE_FINAL, SEQUENCE_LOCKTIME_NO_RBF, SEQUENCE_RBF_DEFAULT

if TYPE_CHECKING:
    from walletcore.psbt import Psbt, PsbtInput


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def is_mainnet(self) -> bool:
        return self == NetworkType.MAINNET

    @property
    def coin_type(self) -> int:
        """BIP44 coin type: 0 for mainnet, 1 for every test network."""
        return 0 if self.is_mainnet else 1

    @property
    def bech32_hrp(self) -> str:
        return {
            NetworkType.MAINNET: "bc",
            NetworkType.TESTNET: "tb",
            NetworkType.SIGNET: "tb",
            NetworkType.REGTEST: "bcrt",
        }[self]


class KeychainKind(str, Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"

    @property
    def branch(self) -> int:
        """Change index used by BIP44/49/84 paths."""
        return 0 if self == KeychainKind.EXTERNAL else 1


class ChangeSpendPolicy(str, Enum):
    CHANGE_ALLOWED = "change_allowed"
    ONLY_CHANGE = "only_change"
    CHANGE_FORBIDDEN = "change_forbidden"

    def is_satisfied_by(self, utxo: LocalUtxo) -> bool:
        if self == ChangeSpendPolicy.CHANGE_FORBIDDEN:
            return utxo.keychain == KeychainKind.EXTERNAL
        if self == ChangeSpendPolicy.ONLY_CHANGE:
            return utxo.keychain == KeychainKind.INTERNAL
        return True


class TxOrdering(str, Enum):
    SHUFFLE = "shuffle"
    UNTOUCHED = "untouched"
    BIP69_LEXICOGRAPHIC = "bip69"


class Recipient(BaseModel):
    """A destination script and amount in satoshis."""

    script_pubkey: bytes
    amount: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("script_pubkey")
    @classmethod
    def validate_script(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("Recipient script must not be empty")
        return v


class FeeRate(BaseModel):
    """Fee rate in sat/vbyte."""

    kind: Literal["rate"] = "rate"
    sat_per_vb: float = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    def fee_vb(self, vbytes: int) -> int:
        return math.ceil(self.sat_per_vb * vbytes)

    def fee_wu(self, weight: int) -> int:
        return self.fee_vb(math.ceil(weight / 4))


class AbsoluteFee(BaseModel):
    """Exact fee in satoshis, independent of transaction size."""

    kind: Literal["absolute"] = "absolute"
    amount: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


FeePolicy = Annotated[FeeRate | AbsoluteFee, Field(discriminator="kind")]


class RbfDefault(BaseModel):
    """Signal replaceability with the default sequence 0xFFFFFFFD."""

    kind: Literal["default"] = "default"

    model_config = ConfigDict(frozen=True)

    @property
    def sequence(self) -> int:
        return SEQUENCE_RBF_DEFAULT


class RbfSequence(BaseModel):
    """Signal replaceability with an explicit nSequence value."""

    kind: Literal["sequence"] = "sequence"
    sequence: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("sequence")
    @classmethod
    def validate_replaceable(cls, v: int) -> int:
        if v >= SEQUENCE_LOCKTIME_NO_RBF:
            raise ValueError(f"Sequence {v:#x} does not signal RBF (must be < 0xFFFFFFFE)")
        return v


RbfValue = Annotated[RbfDefault | RbfSequence, Field(discriminator="kind")]


def sequence_for_rbf(rbf: RbfDefault | RbfSequence | None) -> int:
    """nSequence for every input: replaceable when RBF is set, final otherwise."""
    if rbf is None:
        return SEQUENCE_FINAL
    return rbf.sequence


class AddressIndex(BaseModel):
    """
    Which address to hand out.

    new: the next unrevealed index, which is then marked revealed.
    last_unused: the most recent index if still unused, else a new one.
    peek: a specific index, state untouched.
    """

    kind: Literal["new", "last_unused", "peek"] = "new"
    index: int | None = Field(default=None, ge=0, lt=0x80000000)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def new(cls) -> AddressIndex:
        return cls(kind="new")

    @classmethod
    def last_unused(cls) -> AddressIndex:
        return cls(kind="last_unused")

    @classmethod
    def peek(cls, index: int) -> AddressIndex:
        return cls(kind="peek", index=index)

    @model_validator(mode="after")
    def validate_index(self) -> AddressIndex:
        if self.kind == "peek" and self.index is None:
            raise ValueError("peek requires an index")
        return self


class SignOptions(BaseModel):
    """Controls how a wallet signs a PSBT."""

    # Sign segwit inputs that only carry witness_utxo (trusting the caller on value)
    trust_witness_utxo: bool = False
    # Allow sighash types other than SIGHASH_ALL
    allow_all_sighashes: bool = False
    # Re-sign inputs that are already finalized
    sign_finalized: bool = False
    try_finalize: bool = True
    remove_partial_sigs: bool = True


@dataclass
class LocalUtxo:
    """A wallet-owned output as reported by the wallet-state collaborator."""

    outpoint: OutPoint
    txout: TxOut
    keychain: KeychainKind
    is_spent: bool = False
    confirmations: int = 0

    @property
    def value(self) -> int:
        return self.txout.value

    @property
    def script_pubkey(self) -> bytes:
        return self.txout.script_pubkey


@dataclass
class BlockTime:
    height: int
    timestamp: int


@dataclass
class TransactionDetails:
    txid: str
    received: int
    sent: int
    fee: int | None = None
    confirmation_time: BlockTime | None = None
    transaction: Transaction | None = None

    @property
    def net_value(self) -> int:
        """Change in wallet balance caused by this transaction."""
        return self.received - self.sent

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_time is not None


@dataclass
class Balance:
    confirmed: int = 0
    trusted_pending: int = 0
    untrusted_pending: int = 0

    @property
    def spendable(self) -> int:
        return self.confirmed + self.trusted_pending

    @property
    def total(self) -> int:
        return self.confirmed + self.trusted_pending + self.untrusted_pending


@dataclass
class AddressInfo:
    index: int
    address: str
    keychain: KeychainKind


@dataclass
class ForeignUtxo:
    """
    An input owned by another co-signer.

    psbt_input must carry witness_utxo and/or non_witness_utxo. satisfaction_weight
    is the weight the signed input adds over a bare input.
    """

    outpoint: OutPoint
    psbt_input: PsbtInput
    satisfaction_weight: int


@dataclass
class TxBuilderResult:
    psbt: Psbt
    details: TransactionDetails


@dataclass
class SignResult:
    """
    Outcome of a signing pass.

    fully_signed is True only when every input is finalized; a multisig input that
    gained some but not all of its signatures leaves it False.
    """

    psbt: Psbt
    fully_signed: bool
    signatures_added: int = 0
    finalized_inputs: list[int] = field(default_factory=list)
