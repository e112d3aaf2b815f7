"""
Partially Signed Bitcoin Transactions (BIP174, version 0).

Parsing, canonical serialization, combination, finalization and extraction.
Unknown key-value pairs are carried through untouched so PSBTs can round-trip
between wallets.
"""

from __future__ import annotations

import base64
import binascii
import copy
import json
import struct
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from walletcore.bitcoin.script import (
    ScriptType,
    classify_script,
    estimate_satisfaction_weight,
    hash160,
    parse_multisig_script,
    push_data,
    script_payload,
)
from walletcore.bitcoin.transaction import (
    OutPoint,
    Transaction,
    TxOut,
    encode_varint,
    read_bytes,
    read_varint,
    serialize_bytes,
    serialize_witness,
)
from walletcore.constants import WITNESS_SCALE_FACTOR
from walletcore.errors import IncompletePsbtError, UnexpectedUnsignedTxError, ValidationError
from walletcore.keys.bip32 import DerivationPath
from walletcore.models import FeeRate

PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_GLOBAL_XPUB = 0x01
PSBT_GLOBAL_VERSION = 0xFB

PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_BIP32_DERIVATION = 0x06
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08

PSBT_OUT_REDEEM_SCRIPT = 0x00
PSBT_OUT_WITNESS_SCRIPT = 0x01
PSBT_OUT_BIP32_DERIVATION = 0x02

XPUB_SERIALIZED_SIZE = 78


@dataclass(frozen=True)
class KeySource:
    """Master fingerprint and derivation path of a key, as stored in BIP32 fields."""

    fingerprint: bytes
    path: DerivationPath

    def serialize(self) -> bytes:
        return self.fingerprint + b"".join(struct.pack("<I", i) for i in self.path.to_raw())

    @classmethod
    def from_bytes(cls, data: bytes) -> KeySource:
        if len(data) < 4 or len(data) % 4 != 0:
            raise ValidationError(
                f"Invalid key source length {len(data)}", field="bip32_derivation"
            )
        indexes = [struct.unpack("<I", data[i : i + 4])[0] for i in range(4, len(data), 4)]
        return cls(data[:4], DerivationPath.from_raw(indexes))

    def to_dict(self) -> dict[str, str]:
        return {"fingerprint": self.fingerprint.hex(), "path": str(self.path)}


def _read_map(data: bytes, offset: int, section: str) -> tuple[list[tuple[bytes, bytes]], int]:
    """Read one key-value map up to its 0x00 separator."""
    entries: list[tuple[bytes, bytes]] = []
    seen: set[bytes] = set()
    while True:
        key_len, offset = read_varint(data, offset)
        if key_len == 0:
            return entries, offset
        key = read_bytes(data, offset, key_len)
        offset += key_len
        value_len, offset = read_varint(data, offset)
        value = read_bytes(data, offset, value_len)
        offset += value_len
        if key in seen:
            raise ValidationError(f"Duplicate key {key.hex()} in {section} map", field=section)
        seen.add(key)
        entries.append((key, value))


def _key_type(key: bytes) -> tuple[int, bytes]:
    key_type, offset = read_varint(key, 0)
    return key_type, key[offset:]


def _write_pair(key_type: int, key_data: bytes, value: bytes) -> bytes:
    return serialize_bytes(encode_varint(key_type) + key_data) + serialize_bytes(value)


def _expect_no_key_data(key_data: bytes, section: str, key_type: int) -> None:
    if key_data:
        raise ValidationError(f"Unexpected key data for {section} type {key_type:#x}", field=section)


def _check_pubkey(pubkey: bytes, section: str) -> None:
    if len(pubkey) not in (33, 65):
        raise ValidationError(f"Invalid public key length {len(pubkey)}", field=section)


def _parse_witness_stack(value: bytes) -> list[bytes]:
    count, offset = read_varint(value, 0)
    stack = []
    for _ in range(count):
        item_len, offset = read_varint(value, offset)
        stack.append(read_bytes(value, offset, item_len))
        offset += item_len
    if offset != len(value):
        raise ValidationError("Trailing bytes in final witness", field="final_script_witness")
    return stack


@dataclass
class PsbtInput:
    non_witness_utxo: Transaction | None = None
    witness_utxo: TxOut | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, KeySource] = field(default_factory=dict)
    final_script_sig: bytes | None = None
    final_script_witness: list[bytes] | None = None
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.final_script_sig is not None or self.final_script_witness is not None

    def utxo(self, outpoint: OutPoint) -> TxOut | None:
        """The output being spent, from witness_utxo or the full previous tx."""
        if self.witness_utxo is not None:
            return self.witness_utxo
        if self.non_witness_utxo is not None and outpoint.vout < len(self.non_witness_utxo.outputs):
            return self.non_witness_utxo.outputs[outpoint.vout]
        return None

    def merge(self, other: PsbtInput) -> None:
        if self.non_witness_utxo is None:
            self.non_witness_utxo = other.non_witness_utxo
        if self.witness_utxo is None:
            self.witness_utxo = other.witness_utxo
        if self.sighash_type is None:
            self.sighash_type = other.sighash_type
        if self.redeem_script is None:
            self.redeem_script = other.redeem_script
        if self.witness_script is None:
            self.witness_script = other.witness_script
        if self.final_script_sig is None:
            self.final_script_sig = other.final_script_sig
        if self.final_script_witness is None:
            self.final_script_witness = other.final_script_witness
        for pubkey, sig in other.partial_sigs.items():
            self.partial_sigs.setdefault(pubkey, sig)
        for pubkey, source in other.bip32_derivation.items():
            self.bip32_derivation.setdefault(pubkey, source)
        for key, value in other.unknown.items():
            self.unknown.setdefault(key, value)

    def clear_signing_data(self) -> None:
        """Drop the fields a finalizer no longer needs."""
        self.partial_sigs = {}
        self.sighash_type = None
        self.redeem_script = None
        self.witness_script = None
        self.bip32_derivation = {}

    @classmethod
    def parse(cls, entries: list[tuple[bytes, bytes]]) -> PsbtInput:
        inp = cls()
        for key, value in entries:
            key_type, key_data = _key_type(key)
            if key_type == PSBT_IN_NON_WITNESS_UTXO:
                _expect_no_key_data(key_data, "input", key_type)
                inp.non_witness_utxo = Transaction.from_bytes(value)
            elif key_type == PSBT_IN_WITNESS_UTXO:
                _expect_no_key_data(key_data, "input", key_type)
                inp.witness_utxo = TxOut.from_bytes(value)
            elif key_type == PSBT_IN_PARTIAL_SIG:
                _check_pubkey(key_data, "partial_sigs")
                inp.partial_sigs[key_data] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE:
                _expect_no_key_data(key_data, "input", key_type)
                if len(value) != 4:
                    raise ValidationError("Invalid sighash type length", field="sighash_type")
                inp.sighash_type = struct.unpack("<I", value)[0]
            elif key_type == PSBT_IN_REDEEM_SCRIPT:
                _expect_no_key_data(key_data, "input", key_type)
                inp.redeem_script = value
            elif key_type == PSBT_IN_WITNESS_SCRIPT:
                _expect_no_key_data(key_data, "input", key_type)
                inp.witness_script = value
            elif key_type == PSBT_IN_BIP32_DERIVATION:
                _check_pubkey(key_data, "bip32_derivation")
                inp.bip32_derivation[key_data] = KeySource.from_bytes(value)
            elif key_type == PSBT_IN_FINAL_SCRIPTSIG:
                _expect_no_key_data(key_data, "input", key_type)
                inp.final_script_sig = value
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS:
                _expect_no_key_data(key_data, "input", key_type)
                inp.final_script_witness = _parse_witness_stack(value)
            else:
                inp.unknown[key] = value
        return inp

    def serialize(self) -> bytes:
        r = b""
        if self.non_witness_utxo is not None:
            r += _write_pair(PSBT_IN_NON_WITNESS_UTXO, b"", self.non_witness_utxo.serialize())
        if self.witness_utxo is not None:
            r += _write_pair(PSBT_IN_WITNESS_UTXO, b"", self.witness_utxo.serialize())
        for pubkey in sorted(self.partial_sigs):
            r += _write_pair(PSBT_IN_PARTIAL_SIG, pubkey, self.partial_sigs[pubkey])
        if self.sighash_type is not None:
            r += _write_pair(PSBT_IN_SIGHASH_TYPE, b"", struct.pack("<I", self.sighash_type))
        if self.redeem_script is not None:
            r += _write_pair(PSBT_IN_REDEEM_SCRIPT, b"", self.redeem_script)
        if self.witness_script is not None:
            r += _write_pair(PSBT_IN_WITNESS_SCRIPT, b"", self.witness_script)
        for pubkey in sorted(self.bip32_derivation):
            r += _write_pair(
                PSBT_IN_BIP32_DERIVATION, pubkey, self.bip32_derivation[pubkey].serialize()
            )
        if self.final_script_sig is not None:
            r += _write_pair(PSBT_IN_FINAL_SCRIPTSIG, b"", self.final_script_sig)
        if self.final_script_witness is not None:
            r += _write_pair(
                PSBT_IN_FINAL_SCRIPTWITNESS, b"", serialize_witness(self.final_script_witness)
            )
        for key in sorted(self.unknown):
            r += serialize_bytes(key) + serialize_bytes(self.unknown[key])
        return r + b"\x00"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.non_witness_utxo is not None:
            data["non_witness_utxo"] = self.non_witness_utxo.txid
        if self.witness_utxo is not None:
            data["witness_utxo"] = {
                "value": self.witness_utxo.value,
                "script_pubkey": self.witness_utxo.script_pubkey.hex(),
            }
        if self.partial_sigs:
            data["partial_sigs"] = {pk.hex(): sig.hex() for pk, sig in self.partial_sigs.items()}
        if self.sighash_type is not None:
            data["sighash_type"] = self.sighash_type
        if self.redeem_script is not None:
            data["redeem_script"] = self.redeem_script.hex()
        if self.witness_script is not None:
            data["witness_script"] = self.witness_script.hex()
        if self.bip32_derivation:
            data["bip32_derivation"] = {
                pk.hex(): source.to_dict() for pk, source in self.bip32_derivation.items()
            }
        if self.final_script_sig is not None:
            data["final_script_sig"] = self.final_script_sig.hex()
        if self.final_script_witness is not None:
            data["final_script_witness"] = [item.hex() for item in self.final_script_witness]
        if self.unknown:
            data["unknown"] = {k.hex(): v.hex() for k, v in self.unknown.items()}
        return data


@dataclass
class PsbtOutput:
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    bip32_derivation: dict[bytes, KeySource] = field(default_factory=dict)
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def merge(self, other: PsbtOutput) -> None:
        if self.redeem_script is None:
            self.redeem_script = other.redeem_script
        if self.witness_script is None:
            self.witness_script = other.witness_script
        for pubkey, source in other.bip32_derivation.items():
            self.bip32_derivation.setdefault(pubkey, source)
        for key, value in other.unknown.items():
            self.unknown.setdefault(key, value)

    @classmethod
    def parse(cls, entries: list[tuple[bytes, bytes]]) -> PsbtOutput:
        out = cls()
        for key, value in entries:
            key_type, key_data = _key_type(key)
            if key_type == PSBT_OUT_REDEEM_SCRIPT:
                _expect_no_key_data(key_data, "output", key_type)
                out.redeem_script = value
            elif key_type == PSBT_OUT_WITNESS_SCRIPT:
                _expect_no_key_data(key_data, "output", key_type)
                out.witness_script = value
            elif key_type == PSBT_OUT_BIP32_DERIVATION:
                _check_pubkey(key_data, "bip32_derivation")
                out.bip32_derivation[key_data] = KeySource.from_bytes(value)
            else:
                out.unknown[key] = value
        return out

    def serialize(self) -> bytes:
        r = b""
        if self.redeem_script is not None:
            r += _write_pair(PSBT_OUT_REDEEM_SCRIPT, b"", self.redeem_script)
        if self.witness_script is not None:
            r += _write_pair(PSBT_OUT_WITNESS_SCRIPT, b"", self.witness_script)
        for pubkey in sorted(self.bip32_derivation):
            r += _write_pair(
                PSBT_OUT_BIP32_DERIVATION, pubkey, self.bip32_derivation[pubkey].serialize()
            )
        for key in sorted(self.unknown):
            r += serialize_bytes(key) + serialize_bytes(self.unknown[key])
        return r + b"\x00"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.redeem_script is not None:
            data["redeem_script"] = self.redeem_script.hex()
        if self.witness_script is not None:
            data["witness_script"] = self.witness_script.hex()
        if self.bip32_derivation:
            data["bip32_derivation"] = {
                pk.hex(): source.to_dict() for pk, source in self.bip32_derivation.items()
            }
        if self.unknown:
            data["unknown"] = {k.hex(): v.hex() for k, v in self.unknown.items()}
        return data


@dataclass
class Psbt:
    unsigned_tx: Transaction
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    xpubs: dict[bytes, KeySource] = field(default_factory=dict)
    version: int | None = None
    unknown: dict[bytes, bytes] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for inp in self.unsigned_tx.inputs:
            if inp.script_sig or inp.witness:
                raise ValidationError(
                    "Unsigned transaction must have empty scriptSigs and witnesses",
                    field="unsigned_tx",
                )
        if not self.inputs:
            self.inputs = [PsbtInput() for _ in self.unsigned_tx.inputs]
        if not self.outputs:
            self.outputs = [PsbtOutput() for _ in self.unsigned_tx.outputs]
        if len(self.inputs) != len(self.unsigned_tx.inputs):
            raise ValidationError("Input map count does not match transaction", field="inputs")
        if len(self.outputs) != len(self.unsigned_tx.outputs):
            raise ValidationError("Output map count does not match transaction", field="outputs")

    @classmethod
    def from_unsigned_tx(cls, tx: Transaction) -> Psbt:
        return cls(tx.unsigned_copy())

    # Parsing and serialization

    @classmethod
    def from_bytes(cls, data: bytes) -> Psbt:
        if not data.startswith(PSBT_MAGIC):
            raise ValidationError("Invalid PSBT magic bytes", field="psbt")
        try:
            psbt, offset = cls._parse(data, len(PSBT_MAGIC))
        except (IndexError, ValueError, struct.error) as e:
            raise ValidationError(f"Failed to parse PSBT: {e}", field="psbt") from e
        if offset != len(data):
            raise ValidationError(
                f"Trailing data after PSBT ({len(data) - offset} bytes)", field="psbt"
            )
        return psbt

    @classmethod
    def from_base64(cls, text: str) -> Psbt:
        try:
            raw = base64.b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Invalid PSBT base64: {e}", field="psbt") from e
        return cls.from_bytes(raw)

    @classmethod
    def _parse(cls, data: bytes, offset: int) -> tuple[Psbt, int]:
        global_entries, offset = _read_map(data, offset, "global")

        unsigned_tx: Transaction | None = None
        xpubs: dict[bytes, KeySource] = {}
        version = None
        unknown: dict[bytes, bytes] = {}
        for key, value in global_entries:
            key_type, key_data = _key_type(key)
            if key_type == PSBT_GLOBAL_UNSIGNED_TX:
                _expect_no_key_data(key_data, "global", key_type)
                unsigned_tx = Transaction.from_bytes(value)
            elif key_type == PSBT_GLOBAL_XPUB:
                if len(key_data) != XPUB_SERIALIZED_SIZE:
                    raise ValidationError("Invalid global xpub length", field="xpubs")
                xpubs[key_data] = KeySource.from_bytes(value)
            elif key_type == PSBT_GLOBAL_VERSION:
                _expect_no_key_data(key_data, "global", key_type)
                version = struct.unpack("<I", read_bytes(value, 0, 4))[0]
                if version != 0:
                    raise ValidationError(f"Unsupported PSBT version {version}", field="version")
            else:
                unknown[key] = value

        if unsigned_tx is None:
            raise ValidationError("PSBT has no unsigned transaction", field="unsigned_tx")

        inputs = []
        for txin in unsigned_tx.inputs:
            entries, offset = _read_map(data, offset, "input")
            inp = PsbtInput.parse(entries)
            if (
                inp.non_witness_utxo is not None
                and inp.non_witness_utxo.txid != txin.previous_output.txid
            ):
                raise ValidationError(
                    f"non_witness_utxo does not match input {txin.previous_output}",
                    field="non_witness_utxo",
                    value=inp.non_witness_utxo.txid,
                )
            inputs.append(inp)

        outputs = []
        for _ in unsigned_tx.outputs:
            entries, offset = _read_map(data, offset, "output")
            outputs.append(PsbtOutput.parse(entries))

        return cls(unsigned_tx, inputs, outputs, xpubs, version, unknown), offset

    def serialize(self) -> bytes:
        r = PSBT_MAGIC
        r += _write_pair(PSBT_GLOBAL_UNSIGNED_TX, b"", self.unsigned_tx.serialize(include_witness=False))
        for xpub in sorted(self.xpubs):
            r += _write_pair(PSBT_GLOBAL_XPUB, xpub, self.xpubs[xpub].serialize())
        if self.version is not None:
            r += _write_pair(PSBT_GLOBAL_VERSION, b"", struct.pack("<I", self.version))
        for key in sorted(self.unknown):
            r += serialize_bytes(key) + serialize_bytes(self.unknown[key])
        r += b"\x00"
        for inp in self.inputs:
            r += inp.serialize()
        for out in self.outputs:
            r += out.serialize()
        return r

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")

    def __str__(self) -> str:
        return self.to_base64()

    @property
    def txid(self) -> str:
        """Id of the unsigned transaction (unchanged by signing)."""
        return self.unsigned_tx.txid

    # Combination

    def combine(self, other: Psbt) -> Psbt:
        """Union of both PSBTs' data; both must describe the same unsigned transaction."""
        if self.txid != other.txid:
            raise UnexpectedUnsignedTxError(self.txid, other.txid)

        combined = copy.deepcopy(self)
        for mine, theirs in zip(combined.inputs, other.inputs):
            mine.merge(theirs)
        for mine, theirs in zip(combined.outputs, other.outputs):
            mine.merge(theirs)
        for xpub, source in other.xpubs.items():
            combined.xpubs.setdefault(xpub, source)
        for key, value in other.unknown.items():
            combined.unknown.setdefault(key, value)
        if combined.version is None:
            combined.version = other.version

        logger.debug(f"Combined PSBTs for {self.txid}")
        return combined

    # Fees

    def input_utxo(self, index: int) -> TxOut | None:
        return self.inputs[index].utxo(self.unsigned_tx.inputs[index].previous_output)

    def fee_amount(self) -> int | None:
        """Sum of input values minus outputs, or None when an input value is unknown."""
        total_in = 0
        for i in range(len(self.inputs)):
            utxo = self.input_utxo(i)
            if utxo is None:
                return None
            total_in += utxo.value
        return total_in - sum(out.value for out in self.unsigned_tx.outputs)

    def estimated_weight(self) -> int:
        """Weight after finalization; finalized inputs count at their real size."""
        satisfactions = []
        for i, inp in enumerate(self.inputs):
            if inp.is_finalized:
                script_sig = inp.final_script_sig or b""
                witness = inp.final_script_witness or []
                sig_weight = (len(serialize_bytes(script_sig)) - 1) * WITNESS_SCALE_FACTOR
                witness_weight = len(serialize_witness(witness)) if witness else 0
                satisfactions.append((sig_weight + witness_weight, bool(witness)))
                continue
            utxo = self.input_utxo(i)
            estimate = None
            if utxo is not None:
                estimate = estimate_satisfaction_weight(
                    utxo.script_pubkey, inp.redeem_script or b"", inp.witness_script or b""
                )
            satisfactions.append(estimate if estimate is not None else (0, False))
        return self.unsigned_tx.estimate_weight(satisfactions)

    def fee_rate(self) -> FeeRate | None:
        fee = self.fee_amount()
        if fee is None:
            return None
        if fee < 0:
            raise ValidationError(f"Outputs exceed inputs by {-fee} sats", field="outputs")
        vsize = -(-self.estimated_weight() // WITNESS_SCALE_FACTOR)
        return FeeRate(sat_per_vb=fee / vsize)

    # Finalization

    @property
    def is_finalized(self) -> bool:
        return all(inp.is_finalized for inp in self.inputs)

    def _satisfy(self, index: int) -> tuple[bytes, list[bytes]]:
        """Build (scriptSig, witness) for input `index` from its partial signatures."""
        inp = self.inputs[index]
        utxo = self.input_utxo(index)
        if utxo is None:
            raise IncompletePsbtError(index, "previous output unknown")

        script_type = classify_script(utxo.script_pubkey)
        if script_type in (ScriptType.P2WPKH, ScriptType.P2PKH):
            pubkey_hash = script_payload(utxo.script_pubkey).data
            pubkey, sig = self._sig_for_hash(inp, pubkey_hash, index)
            if script_type == ScriptType.P2WPKH:
                return b"", [sig, pubkey]
            return push_data(sig) + push_data(pubkey), []

        if script_type == ScriptType.P2SH:
            redeem = inp.redeem_script
            if redeem is None or hash160(redeem) != script_payload(utxo.script_pubkey).data:
                raise IncompletePsbtError(index, "missing or mismatched redeem script")
            if classify_script(redeem) != ScriptType.P2WPKH:
                raise IncompletePsbtError(index, "unsupported redeem script")
            pubkey, sig = self._sig_for_hash(inp, script_payload(redeem).data, index)
            return push_data(redeem), [sig, pubkey]

        if script_type == ScriptType.P2WSH:
            witness_script = inp.witness_script
            multisig = parse_multisig_script(witness_script) if witness_script else None
            if multisig is None:
                raise IncompletePsbtError(index, "missing or unsupported witness script")
            threshold, pubkeys = multisig
            sigs = [inp.partial_sigs[pk] for pk in pubkeys if pk in inp.partial_sigs]
            if len(sigs) < threshold:
                raise IncompletePsbtError(
                    index, f"{len(sigs)} of {threshold} required signatures"
                )
            # CHECKMULTISIG dummy, then signatures in key order
            return b"", [b""] + sigs[:threshold] + [witness_script]

        raise IncompletePsbtError(index, f"unsupported script type {script_type.value}")

    @staticmethod
    def _sig_for_hash(inp: PsbtInput, pubkey_hash: bytes, index: int) -> tuple[bytes, bytes]:
        for pubkey, sig in inp.partial_sigs.items():
            if hash160(pubkey) == pubkey_hash:
                return pubkey, sig
        raise IncompletePsbtError(index, "missing signature")

    def finalize_input(self, index: int, remove_partial_sigs: bool = True) -> bool:
        inp = self.inputs[index]
        if inp.is_finalized:
            return True
        try:
            script_sig, witness = self._satisfy(index)
        except IncompletePsbtError as e:
            logger.debug(f"Input {index} not finalized: {e.message}")
            return False

        inp.final_script_sig = script_sig if script_sig else None
        inp.final_script_witness = witness if witness else None
        if inp.final_script_sig is None and inp.final_script_witness is None:
            inp.final_script_sig = b""
        if remove_partial_sigs:
            inp.clear_signing_data()
        return True

    def finalize(self, remove_partial_sigs: bool = True) -> list[int]:
        """Finalize every satisfiable input; returns the finalized indexes."""
        return [
            i
            for i in range(len(self.inputs))
            if self.finalize_input(i, remove_partial_sigs=remove_partial_sigs)
        ]

    def extract_tx(self) -> Transaction:
        """Fully signed network transaction; this PSBT is left unchanged."""
        finalized = copy.deepcopy(self)
        tx = finalized.unsigned_tx.unsigned_copy()
        for i, (txin, inp) in enumerate(zip(tx.inputs, finalized.inputs)):
            if not inp.is_finalized:
                script_sig, witness = finalized._satisfy(i)
                inp.final_script_sig, inp.final_script_witness = script_sig, witness
            txin.script_sig = inp.final_script_sig or b""
            txin.witness = list(inp.final_script_witness or [])
        return tx

    # Inspection

    def to_dict(self) -> dict[str, Any]:
        return {
            "unsigned_tx": self.unsigned_tx.to_dict(),
            "xpubs": {xpub.hex(): source.to_dict() for xpub, source in self.xpubs.items()},
            "version": self.version,
            "unknown": {k.hex(): v.hex() for k, v in self.unknown.items()},
            "inputs": [inp.to_dict() for inp in self.inputs],
            "outputs": [out.to_dict() for out in self.outputs],
            "fee": self.fee_amount(),
        }

    def json_serialize(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
