"""
PSBT signing with descriptor secret keys.

Keys are located through each input's BIP32 derivation hints, so a signer only
needs its own secret keys, never the other co-signers' descriptors.
"""

from __future__ import annotations

import copy
import hashlib

from coincurve import PrivateKey
from loguru import logger

from walletcore.bitcoin.script import (
    ScriptType,
    classify_script,
    hash160,
    p2pkh_script,
    parse_multisig_script,
    script_payload,
)
from walletcore.bitcoin.sighash import (
    compute_sighash_legacy,
    compute_sighash_segwit,
    create_p2wpkh_script_code,
    sign_digest,
)
from walletcore.constants import SIGHASH_ALL
from walletcore.errors import ValidationError
from walletcore.keys.descriptor_key import DescriptorSecretKey
from walletcore.models import SignOptions, SignResult
from walletcore.psbt import KeySource, Psbt, PsbtInput


class InputSigningPlan:
    """What has to be hashed to sign one input."""

    def __init__(self, script_code: bytes, is_segwit: bool, allowed_pubkeys: set[bytes] | None):
        self.script_code = script_code
        self.is_segwit = is_segwit
        # None: any key matching the pubkey hash; otherwise the multisig key set
        self.allowed_pubkeys = allowed_pubkeys


def _signing_plan(inp: PsbtInput, script_pubkey: bytes) -> InputSigningPlan | None:
    script_type = classify_script(script_pubkey)

    if script_type == ScriptType.P2WPKH:
        return InputSigningPlan(
            create_p2wpkh_script_code(script_payload(script_pubkey).data), True, None
        )
    if script_type == ScriptType.P2PKH:
        return InputSigningPlan(script_pubkey, False, None)

    if script_type == ScriptType.P2SH:
        redeem = inp.redeem_script
        if redeem is None or hash160(redeem) != script_payload(script_pubkey).data:
            return None
        if classify_script(redeem) == ScriptType.P2WPKH:
            return InputSigningPlan(p2pkh_script(script_payload(redeem).data), True, None)
        return None

    if script_type == ScriptType.P2WSH:
        witness_script = inp.witness_script
        if witness_script is None:
            return None
        if hashlib.sha256(witness_script).digest() != script_payload(script_pubkey).data:
            return None
        multisig = parse_multisig_script(witness_script)
        if multisig is None:
            return None
        return InputSigningPlan(witness_script, True, set(multisig[1]))

    return None


def private_key_for(
    key: DescriptorSecretKey, pubkey: bytes, source: KeySource
) -> PrivateKey | None:
    """Derive the private key for `pubkey` from `key`, if the hint points below it."""
    if (
        key.origin is not None
        and source.fingerprint == key.origin.fingerprint
        and source.path.starts_with(key.origin.path)
    ):
        remainder = source.path.suffix_after(key.origin.path)
    elif source.fingerprint == key.xkey.fingerprint:
        remainder = source.path
    else:
        return None

    derived = key.xkey.derive_path(remainder)
    if derived.get_public_key_bytes() != pubkey:
        return None
    return derived.private_key


def _pubkey_fits(plan: InputSigningPlan, pubkey: bytes, script_pubkey: bytes, inp: PsbtInput) -> bool:
    if plan.allowed_pubkeys is not None:
        return pubkey in plan.allowed_pubkeys
    script_type = classify_script(script_pubkey)
    if script_type == ScriptType.P2SH:
        return hash160(pubkey) == script_payload(inp.redeem_script or b"").data
    return hash160(pubkey) == script_payload(script_pubkey).data


def check_sign_options(psbt: Psbt, options: SignOptions) -> None:
    """Reject PSBTs the options do not allow signing at all."""
    for i, inp in enumerate(psbt.inputs):
        if inp.is_finalized and not options.sign_finalized:
            continue
        if not options.trust_witness_utxo and inp.non_witness_utxo is None:
            raise ValidationError(
                f"Input {i} has no non_witness_utxo; set trust_witness_utxo to sign it",
                field="non_witness_utxo",
                value=i,
            )
        sighash = inp.sighash_type if inp.sighash_type is not None else SIGHASH_ALL
        if sighash != SIGHASH_ALL and not options.allow_all_sighashes:
            raise ValidationError(
                f"Input {i} requests sighash {sighash:#x}; set allow_all_sighashes to sign it",
                field="sighash_type",
                value=sighash,
            )


def sign_psbt(
    psbt: Psbt, secret_keys: list[DescriptorSecretKey], options: SignOptions | None = None
) -> SignResult:
    """
    Add signatures from `secret_keys` to every input they can satisfy.

    The input PSBT is not modified; the signed copy is returned in the result.
    """
    options = options or SignOptions()
    check_sign_options(psbt, options)

    signed = copy.deepcopy(psbt)
    tx = signed.unsigned_tx
    signatures_added = 0

    for i, inp in enumerate(signed.inputs):
        if inp.is_finalized and not options.sign_finalized:
            logger.debug(f"Input {i} already finalized, skipping")
            continue

        utxo = signed.input_utxo(i)
        if utxo is None:
            logger.warning(f"Input {i} has no previous output data, cannot sign")
            continue

        plan = _signing_plan(inp, utxo.script_pubkey)
        if plan is None:
            logger.debug(f"Input {i}: unsupported or incomplete script, skipping")
            continue

        if not plan.is_segwit and inp.non_witness_utxo is None:
            raise ValidationError(
                f"Legacy input {i} requires non_witness_utxo", field="non_witness_utxo", value=i
            )

        sighash_type = inp.sighash_type if inp.sighash_type is not None else SIGHASH_ALL
        digest: bytes | None = None

        for pubkey, source in inp.bip32_derivation.items():
            if pubkey in inp.partial_sigs:
                continue
            if not _pubkey_fits(plan, pubkey, utxo.script_pubkey, inp):
                continue
            private_key = None
            for key in secret_keys:
                private_key = private_key_for(key, pubkey, source)
                if private_key is not None:
                    break
            if private_key is None:
                continue

            if digest is None:
                if plan.is_segwit:
                    digest = compute_sighash_segwit(
                        tx, i, plan.script_code, utxo.value, sighash_type
                    )
                else:
                    digest = compute_sighash_legacy(tx, i, plan.script_code, sighash_type)

            inp.partial_sigs[pubkey] = sign_digest(private_key, digest, sighash_type)
            signatures_added += 1
            logger.debug(f"Signed input {i} with key {pubkey.hex()[:16]}...")

    finalized_inputs: list[int] = []
    if options.try_finalize:
        finalized_inputs = signed.finalize(remove_partial_sigs=options.remove_partial_sigs)

    fully_signed = signed.is_finalized
    logger.debug(
        f"Signing pass added {signatures_added} signatures, "
        f"{len(finalized_inputs)}/{len(signed.inputs)} inputs finalized"
    )
    return SignResult(
        psbt=signed,
        fully_signed=fully_signed,
        signatures_added=signatures_added,
        finalized_inputs=finalized_inputs,
    )
