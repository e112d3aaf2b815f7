"""
Bitcoin transaction model and (de)serialization.
Supports legacy and BIP144 segwit encodings.
"""

from __future__ import annotations

import copy
import hashlib
import struct
from dataclasses import dataclass, field

from walletcore.constants import SEQUENCE_FINAL, SEQUENCE_LOCKTIME_NO_RBF, WITNESS_SCALE_FACTOR
from walletcore.errors import ValidationError


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        width = 2
    elif first == 0xFE:
        width = 4
    else:
        width = 8
    return int.from_bytes(read_bytes(data, offset, width), "little"), offset + width


def read_bytes(data: bytes, offset: int, length: int) -> bytes:
    """Slice exactly `length` bytes or fail on truncated input."""
    if length < 0 or offset + length > len(data):
        raise ValueError(f"Unexpected end of data at offset {offset} (need {length} bytes)")
    return data[offset : offset + length]


def serialize_bytes(data: bytes) -> bytes:
    """Length-prefixed byte string."""
    return encode_varint(len(data)) + data


@dataclass(frozen=True, order=True)
class OutPoint:
    """Reference to a transaction output (txid in RPC byte order)."""

    txid: str
    vout: int

    @classmethod
    def from_string(cls, text: str) -> OutPoint:
        try:
            txid, vout = text.split(":")
            if len(bytes.fromhex(txid)) != 32:
                raise ValueError("txid must be 32 bytes")
            return cls(txid.lower(), int(vout))
        except ValueError as e:
            raise ValidationError(f"Invalid outpoint '{text}': {e}", field="outpoint", value=text) from e

    def serialize(self) -> bytes:
        # txid is in RPC format (big-endian), need to reverse for raw tx
        return bytes.fromhex(self.txid)[::-1] + struct.pack("<I", self.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + serialize_bytes(self.script_pubkey)

    @classmethod
    def from_bytes(cls, data: bytes) -> TxOut:
        try:
            out, offset = _read_output(data, 0)
        except (IndexError, ValueError, struct.error) as e:
            raise ValidationError(f"Failed to parse output: {e}", field="txout") from e
        if offset != len(data):
            raise ValidationError("Trailing bytes after output", field="txout")
        return out


@dataclass
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.previous_output.serialize()
            + serialize_bytes(self.script_sig)
            + struct.pack("<I", self.sequence)
        )


def serialize_witness(witness: list[bytes]) -> bytes:
    return encode_varint(len(witness)) + b"".join(serialize_bytes(item) for item in witness)


def _read_output(data: bytes, offset: int) -> tuple[TxOut, int]:
    value = struct.unpack("<Q", read_bytes(data, offset, 8))[0]
    offset += 8
    script_len, offset = read_varint(data, offset)
    script = read_bytes(data, offset, script_len)
    return TxOut(value, script), offset + script_len


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if with_witness:
            # Marker and flag for SegWit
            result += b"\x00\x01"

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += serialize_witness(inp.witness)

        result += struct.pack("<I", self.locktime)
        return result

    @classmethod
    def from_bytes(cls, tx_bytes: bytes) -> Transaction:
        try:
            tx, offset = cls._parse(tx_bytes)
        except (IndexError, ValueError, struct.error) as e:
            raise ValidationError(f"Failed to parse transaction: {e}", field="transaction") from e
        if offset != len(tx_bytes):
            raise ValidationError(
                f"Trailing data after transaction ({len(tx_bytes) - offset} bytes)",
                field="transaction",
            )
        return tx

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            raw = bytes.fromhex(tx_hex)
        except ValueError as e:
            raise ValidationError(f"Invalid transaction hex: {e}", field="transaction") from e
        return cls.from_bytes(raw)

    @classmethod
    def _parse(cls, tx_bytes: bytes) -> tuple[Transaction, int]:
        offset = 0
        version = struct.unpack("<i", read_bytes(tx_bytes, offset, 4))[0]
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxIn] = []
        for _ in range(input_count):
            txid = read_bytes(tx_bytes, offset, 32)[::-1].hex()
            offset += 32
            vout = struct.unpack("<I", read_bytes(tx_bytes, offset, 4))[0]
            offset += 4
            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = read_bytes(tx_bytes, offset, script_len)
            offset += script_len
            sequence = struct.unpack("<I", read_bytes(tx_bytes, offset, 4))[0]
            offset += 4
            inputs.append(TxIn(OutPoint(txid, vout), script_sig, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOut] = []
        for _ in range(output_count):
            out, offset = _read_output(tx_bytes, offset)
            outputs.append(out)

        if has_witness:
            for inp in inputs:
                stack_count, offset = read_varint(tx_bytes, offset)
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    inp.witness.append(read_bytes(tx_bytes, offset, item_len))
                    offset += item_len

        locktime = struct.unpack("<I", read_bytes(tx_bytes, offset, 4))[0]
        offset += 4
        return cls(version, inputs, outputs, locktime), offset

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization, in RPC byte order."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    def size(self) -> int:
        return len(self.serialize())

    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        return base_size * (WITNESS_SCALE_FACTOR - 1) + self.size()

    def vsize(self) -> int:
        return (self.weight() + WITNESS_SCALE_FACTOR - 1) // WITNESS_SCALE_FACTOR

    def is_coinbase(self) -> bool:
        return (
            len(self.inputs) == 1
            and self.inputs[0].previous_output.txid == "00" * 32
            and self.inputs[0].previous_output.vout == 0xFFFFFFFF
        )

    def is_explicitly_rbf(self) -> bool:
        """BIP125 opt-in signaling by any input."""
        return any(inp.sequence < SEQUENCE_LOCKTIME_NO_RBF for inp in self.inputs)

    def is_lock_time_enabled(self) -> bool:
        return any(inp.sequence != SEQUENCE_FINAL for inp in self.inputs)

    def unsigned_copy(self) -> Transaction:
        """Copy with every scriptSig and witness stripped."""
        tx = copy.deepcopy(self)
        for inp in tx.inputs:
            inp.script_sig = b""
            inp.witness = []
        return tx

    def estimate_weight(self, satisfactions: list[tuple[int, bool]]) -> int:
        """
        Weight of this transaction once every input is signed.

        satisfactions holds (satisfaction weight, is_segwit) per input, measured over
        a bare input with empty scriptSig and witness.
        """
        base_size = len(self.unsigned_copy().serialize(include_witness=False))
        weight = base_size * WITNESS_SCALE_FACTOR + sum(w for w, _ in satisfactions)
        if any(segwit for _, segwit in satisfactions):
            # marker + flag, and an empty stack count for each non-witness input
            weight += 2 + sum(1 for _, segwit in satisfactions if not segwit)
        return weight

    def to_dict(self) -> dict:
        return {
            "txid": self.txid,
            "version": self.version,
            "locktime": self.locktime,
            "inputs": [
                {
                    "previous_output": str(inp.previous_output),
                    "script_sig": inp.script_sig.hex(),
                    "sequence": inp.sequence,
                    "witness": [item.hex() for item in inp.witness],
                }
                for inp in self.inputs
            ],
            "outputs": [
                {"value": out.value, "script_pubkey": out.script_pubkey.hex()}
                for out in self.outputs
            ],
        }
