"""
Signature hashing and ECDSA signing for transaction inputs.

Legacy (pre-segwit) and BIP143 (segwit v0) digests; the ECDSA primitive itself is
coincurve's libsecp256k1 binding.
"""

from __future__ import annotations

from coincurve import PrivateKey, PublicKey

from walletcore.bitcoin.script import p2pkh_script
from walletcore.bitcoin.transaction import (
    Transaction,
    TxIn,
    TxOut,
    encode_varint,
    hash256,
)
from walletcore.constants import SIGHASH_ALL, SIGHASH_ANYONECANPAY, SIGHASH_NONE, SIGHASH_SINGLE
from walletcore.errors import GenericError, ValidationError

# SIGHASH_SINGLE with no matching output signs the value 1 (consensus bug)
_SIGHASH_SINGLE_BUG = (1).to_bytes(32, "little")


def _check_index(tx: Transaction, input_index: int) -> None:
    if not 0 <= input_index < len(tx.inputs):
        raise ValidationError(
            f"Input index {input_index} out of range", field="input_index", value=input_index
        )


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash for a segwit v0 input."""
    _check_index(tx, input_index)

    base_type = sighash_type & 0x1F
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)
    zero = b"\x00" * 32

    hash_prevouts = zero
    if not anyone_can_pay:
        hash_prevouts = hash256(b"".join(inp.previous_output.serialize() for inp in tx.inputs))

    hash_sequence = zero
    if not anyone_can_pay and base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))

    if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))
    elif base_type == SIGHASH_SINGLE and input_index < len(tx.outputs):
        hash_outputs = hash256(tx.outputs[input_index].serialize())
    else:
        hash_outputs = zero

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little", signed=True)
        + hash_prevouts
        + hash_sequence
        + target_input.previous_output.serialize()
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target_input.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Original transaction digest for non-segwit inputs."""
    _check_index(tx, input_index)

    base_type = sighash_type & 0x1F
    if base_type == SIGHASH_SINGLE and input_index >= len(tx.outputs):
        return _SIGHASH_SINGLE_BUG

    inputs = []
    for i, inp in enumerate(tx.inputs):
        sequence = inp.sequence
        if i != input_index and base_type in (SIGHASH_NONE, SIGHASH_SINGLE):
            sequence = 0
        script = script_code if i == input_index else b""
        inputs.append(TxIn(inp.previous_output, script, sequence))

    if sighash_type & SIGHASH_ANYONECANPAY:
        inputs = [inputs[input_index]]

    outputs = list(tx.outputs)
    if base_type == SIGHASH_NONE:
        outputs = []
    elif base_type == SIGHASH_SINGLE:
        blank = TxOut(0xFFFFFFFFFFFFFFFF, b"")
        outputs = [blank] * input_index + [tx.outputs[input_index]]

    stripped = Transaction(tx.version, inputs, outputs, tx.locktime)
    return hash256(stripped.serialize(include_witness=False) + sighash_type.to_bytes(4, "little"))


def create_p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """
    scriptCode for P2WPKH signing (BIP143): the P2PKH script of the key hash.

    Returns 25 bytes (without length prefix - the preimage serialization adds that).
    """
    return p2pkh_script(pubkey_hash)


def sign_digest(private_key: PrivateKey, digest: bytes, sighash_type: int = SIGHASH_ALL) -> bytes:
    """
    Sign a precomputed sighash.

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    try:
        # The sighash is already SHA256d; hasher=None skips hashing
        signature = private_key.sign(digest, hasher=None)
    except ValueError as e:
        raise GenericError(f"ECDSA signing failed: {e}") from e
    return signature + bytes([sighash_type])


def verify_signature(pubkey: bytes, digest: bytes, signature: bytes) -> bool:
    """Check a DER signature (sighash byte stripped) against `digest`."""
    try:
        return PublicKey(pubkey).verify(signature, digest, hasher=None)
    except (ValueError, TypeError):
        return False
