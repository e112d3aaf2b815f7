"""
Script construction and classification utilities.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

from walletcore.bitcoin.transaction import encode_varint
from walletcore.constants import (
    COMPRESSED_PUBKEY_SIZE,
    DUST_RELAY_FEE,
    MAX_SIGNATURE_SIZE,
    WITNESS_SCALE_FACTOR,
)
from walletcore.errors import ValidationError

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1 = 0x51
OP_16 = 0x60
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
OP_CHECKMULTISIG = 0xAE


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def push_data(data: bytes) -> bytes:
    """Minimal push of `data` onto the stack."""
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    raise ValidationError(f"Push too large: {length} bytes", field="data", value=length)


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    # OP_DUP OP_HASH160 PUSH20 <pkh> OP_EQUALVERIFY OP_CHECKSIG
    return bytes([OP_DUP, OP_HASH160, 0x14]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    return bytes([OP_HASH160, 0x14]) + script_hash + bytes([OP_EQUAL])


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    """P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return bytes([OP_0, 0x14]) + pubkey_hash


def p2wsh_script(witness_script: bytes) -> bytes:
    """P2WSH scriptPubKey (OP_0 <32-byte-sha256>)"""
    return bytes([OP_0, 0x20]) + hashlib.sha256(witness_script).digest()


def witness_program_script(version: int, program: bytes) -> bytes:
    op = OP_0 if version == 0 else OP_1 + version - 1
    return bytes([op, len(program)]) + program


def null_data_script(data: bytes) -> bytes:
    """Unspendable OP_RETURN output carrying `data`."""
    return bytes([OP_RETURN]) + push_data(data)


def multisig_script(threshold: int, pubkeys: list[bytes]) -> bytes:
    """OP_k <pubkey>... OP_n OP_CHECKMULTISIG"""
    if not 1 <= threshold <= len(pubkeys) <= 16:
        raise ValidationError(
            f"Invalid multisig threshold {threshold} of {len(pubkeys)}",
            field="threshold",
            value=threshold,
        )
    script = bytes([OP_1 + threshold - 1])
    for pubkey in pubkeys:
        script += push_data(pubkey)
    return script + bytes([OP_1 + len(pubkeys) - 1, OP_CHECKMULTISIG])


def parse_multisig_script(script: bytes) -> tuple[int, list[bytes]] | None:
    """Return (threshold, pubkeys) for a bare k-of-n CHECKMULTISIG script."""
    if len(script) < 3 or script[-1] != OP_CHECKMULTISIG:
        return None
    if not OP_1 <= script[0] <= OP_16 or not OP_1 <= script[-2] <= OP_16:
        return None
    threshold = script[0] - OP_1 + 1
    count = script[-2] - OP_1 + 1

    pubkeys = []
    offset = 1
    while offset < len(script) - 2:
        length = script[offset]
        if length not in (33, 65):
            return None
        pubkeys.append(script[offset + 1 : offset + 1 + length])
        offset += 1 + length

    if offset != len(script) - 2 or len(pubkeys) != count or threshold > count:
        return None
    return threshold, pubkeys


class ScriptType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    WITNESS_UNKNOWN = "witness_unknown"
    NULL_DATA = "null_data"
    NONSTANDARD = "nonstandard"


@dataclass(frozen=True)
class Payload:
    """
    What an output script commits to.

    kind is one of "pubkey_hash", "script_hash", "witness_program" or "bare".
    """

    kind: str
    data: bytes
    witness_version: int | None = None


def _witness_program(script: bytes) -> tuple[int, bytes] | None:
    if len(script) < 4 or len(script) > 42:
        return None
    if script[0] != OP_0 and not OP_1 <= script[0] <= OP_16:
        return None
    if script[1] != len(script) - 2:
        return None
    version = 0 if script[0] == OP_0 else script[0] - OP_1 + 1
    return version, script[2:]


def classify_script(script: bytes) -> ScriptType:
    if len(script) == 25 and script[:3] == bytes([OP_DUP, OP_HASH160, 0x14]) and script[23:] == bytes(
        [OP_EQUALVERIFY, OP_CHECKSIG]
    ):
        return ScriptType.P2PKH
    if len(script) == 23 and script[:2] == bytes([OP_HASH160, 0x14]) and script[22] == OP_EQUAL:
        return ScriptType.P2SH
    if script[:1] == bytes([OP_RETURN]):
        return ScriptType.NULL_DATA

    program = _witness_program(script)
    if program is not None:
        version, data = program
        if version == 0 and len(data) == 20:
            return ScriptType.P2WPKH
        if version == 0 and len(data) == 32:
            return ScriptType.P2WSH
        if version == 1 and len(data) == 32:
            return ScriptType.P2TR
        return ScriptType.WITNESS_UNKNOWN

    return ScriptType.NONSTANDARD


def script_payload(script: bytes) -> Payload:
    script_type = classify_script(script)
    if script_type == ScriptType.P2PKH:
        return Payload("pubkey_hash", script[3:23])
    if script_type == ScriptType.P2SH:
        return Payload("script_hash", script[2:22])
    program = _witness_program(script)
    if program is not None:
        return Payload("witness_program", program[1], witness_version=program[0])
    return Payload("bare", script)


def is_witness_script(script: bytes) -> bool:
    return _witness_program(script) is not None


def dust_value(script: bytes, dust_relay_fee: float = DUST_RELAY_FEE) -> int:
    """
    Smallest non-dust value for an output paying to `script`.

    Mirrors Bitcoin Core's GetDustThreshold: the cost of creating and later spending
    the output at the dust relay fee.
    """
    if classify_script(script) == ScriptType.NULL_DATA:
        return 0

    output_size = 8 + len(encode_varint(len(script))) + len(script)
    if is_witness_script(script):
        # outpoint + scriptSig len + sequence + witness discounted by 4
        spend_size = 32 + 4 + 1 + (107 // WITNESS_SCALE_FACTOR) + 4
    else:
        spend_size = 32 + 4 + 1 + 107 + 4
    return int((output_size + spend_size) * dust_relay_fee)


# Satisfaction weights are the weight units a fully signed input adds on top of a
# bare input (empty scriptSig, empty witness).

# witness: count + <sig> + <pubkey>
P2WPKH_SATISFACTION_WEIGHT = 1 + (1 + MAX_SIGNATURE_SIZE) + (1 + COMPRESSED_PUBKEY_SIZE)

# scriptSig: <0014{20-byte-hash}>, witness as P2WPKH
P2SH_P2WPKH_SATISFACTION_WEIGHT = 23 * WITNESS_SCALE_FACTOR + P2WPKH_SATISFACTION_WEIGHT

# scriptSig: <sig> <pubkey>
P2PKH_SATISFACTION_WEIGHT = (
    (1 + MAX_SIGNATURE_SIZE) + (1 + COMPRESSED_PUBKEY_SIZE)
) * WITNESS_SCALE_FACTOR


def multisig_witness_script_size(key_count: int) -> int:
    return 3 + key_count * (1 + COMPRESSED_PUBKEY_SIZE)


def p2wsh_multisig_satisfaction_weight(threshold: int, key_count: int) -> int:
    """witness: count + OP_0 dummy + k signatures + witness script"""
    script_size = multisig_witness_script_size(key_count)
    return (
        1
        + 1
        + threshold * (1 + MAX_SIGNATURE_SIZE)
        + len(encode_varint(script_size))
        + script_size
    )


def estimate_satisfaction_weight(
    script_pubkey: bytes,
    redeem_script: bytes = b"",
    witness_script: bytes = b"",
) -> tuple[int, bool] | None:
    """
    Estimate (satisfaction weight, is_segwit) for spending `script_pubkey`.

    Returns None for script types this wallet cannot satisfy.
    """
    script_type = classify_script(script_pubkey)
    if script_type == ScriptType.P2WPKH:
        return P2WPKH_SATISFACTION_WEIGHT, True
    if script_type == ScriptType.P2PKH:
        return P2PKH_SATISFACTION_WEIGHT, False
    if script_type == ScriptType.P2SH and classify_script(redeem_script) == ScriptType.P2WPKH:
        return P2SH_P2WPKH_SATISFACTION_WEIGHT, True
    if script_type == ScriptType.P2WSH and witness_script:
        multisig = parse_multisig_script(witness_script)
        if multisig is not None:
            threshold, pubkeys = multisig
            return p2wsh_multisig_satisfaction_weight(threshold, len(pubkeys)), True
    return None
