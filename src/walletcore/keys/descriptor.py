"""
Output script descriptors.

Supports pkh(), wpkh(), sh(wpkh()), wsh(multi()) and wsh(sortedmulti()) over
extended keys, plus the BIP44/49/84 templates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from walletcore.bitcoin.address import Address
from walletcore.bitcoin.script import (
    P2PKH_SATISFACTION_WEIGHT,
    P2SH_P2WPKH_SATISFACTION_WEIGHT,
    P2WPKH_SATISFACTION_WEIGHT,
    hash160,
    multisig_script,
    p2pkh_script,
    p2sh_script,
    p2wpkh_script,
    p2wsh_multisig_satisfaction_weight,
    p2wsh_script,
)
from walletcore.constants import BIP44_PURPOSE, BIP49_PURPOSE, BIP84_PURPOSE
from walletcore.errors import MismatchedNetworkError, ValidationError
from walletcore.keys.bip32 import DerivationPath
from walletcore.keys.descriptor_key import (
    DerivedKeySource,
    DescriptorKey,
    DescriptorPublicKey,
    DescriptorSecretKey,
    KeyOrigin,
    parse_descriptor_key,
)
from walletcore.models import KeychainKind, NetworkType

INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}"
    "IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~"
    'ijklmnopqrstuvwxyzABCDEFGH`#"\\ '
)
CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


def _polymod(c: int, val: int) -> int:
    c0 = c >> 35
    c = ((c & 0x7FFFFFFFF) << 5) ^ val
    if c0 & 1:
        c ^= 0xF5DEE51989
    if c0 & 2:
        c ^= 0xA9FDCA3312
    if c0 & 4:
        c ^= 0x1BAB10E32D
    if c0 & 8:
        c ^= 0x3706B1677A
    if c0 & 16:
        c ^= 0x644D626FFD
    return c


def descriptor_checksum(desc: str) -> str:
    """8-character checksum from Bitcoin Core's descriptor.cpp."""
    c = 1
    cls = 0
    clscount = 0
    for ch in desc:
        pos = INPUT_CHARSET.find(ch)
        if pos == -1:
            raise ValidationError(f"Invalid character in descriptor: {ch!r}", field="descriptor")
        c = _polymod(c, pos & 31)
        cls = cls * 3 + (pos >> 5)
        clscount += 1
        if clscount == 3:
            c = _polymod(c, cls)
            cls = 0
            clscount = 0
    if clscount > 0:
        c = _polymod(c, cls)
    for _ in range(8):
        c = _polymod(c, 0)
    c ^= 1
    return "".join(CHECKSUM_CHARSET[(c >> (5 * (7 - j))) & 31] for j in range(8))


def add_checksum(desc: str) -> str:
    return f"{desc}#{descriptor_checksum(desc)}"


class ScriptTemplate(str, Enum):
    P2PKH = "pkh"
    P2SH_P2WPKH = "sh(wpkh)"
    P2WPKH = "wpkh"
    P2WSH_MULTI = "wsh(multi)"
    P2WSH_SORTEDMULTI = "wsh(sortedmulti)"

    @property
    def is_multisig(self) -> bool:
        return self in (ScriptTemplate.P2WSH_MULTI, ScriptTemplate.P2WSH_SORTEDMULTI)


_SINGLE_KEY = {
    "pkh": ScriptTemplate.P2PKH,
    "wpkh": ScriptTemplate.P2WPKH,
    "sh(wpkh": ScriptTemplate.P2SH_P2WPKH,
}
_SINGLE_PATTERN = re.compile(r"^(pkh|wpkh|sh\(wpkh)\(([^()]+)\)\)?$")
_MULTI_PATTERN = re.compile(r"^wsh\((multi|sortedmulti)\((\d+),([^()]+)\)\)$")


@dataclass(frozen=True)
class DerivedScripts:
    script_pubkey: bytes
    redeem_script: bytes = b""
    witness_script: bytes = b""


class Descriptor:
    """
    A wallet descriptor bound to a network.

    keychain records the role (external or change) once a wallet or BIP template
    assigns one.
    """

    def __init__(
        self,
        template: ScriptTemplate,
        keys: list[DescriptorKey],
        network: NetworkType,
        threshold: int | None = None,
        keychain: KeychainKind | None = None,
    ):
        if not keys:
            raise ValidationError("Descriptor needs at least one key", field="descriptor")
        if template.is_multisig:
            if threshold is None or not 1 <= threshold <= len(keys) <= 16:
                raise ValidationError(
                    f"Invalid multisig threshold {threshold} of {len(keys)}",
                    field="threshold",
                    value=threshold,
                )
        elif len(keys) != 1:
            raise ValidationError("Single-key template takes one key", field="descriptor")

        for key in keys:
            if not key.xkey.is_network(network):
                raise MismatchedNetworkError(network.value, key.network.value, value=str(key))

        self.template = template
        self.keys = list(keys)
        self.network = network
        self.threshold = threshold
        self.keychain = keychain

    @classmethod
    def parse(
        cls, text: str, network: NetworkType, keychain: KeychainKind | None = None
    ) -> Descriptor:
        """Parse descriptor text, validating the checksum when one is present."""
        body, sep, checksum = text.strip().partition("#")
        if sep:
            expected = descriptor_checksum(body)
            if checksum != expected:
                raise ValidationError(
                    f"Invalid descriptor checksum '{checksum}', expected '{expected}'",
                    field="checksum",
                    value=checksum,
                )

        single = _SINGLE_PATTERN.match(body)
        if single is not None:
            name, key_text = single.groups()
            # sh(wpkh(...)) needs both closing parens, the others exactly one
            if (name == "sh(wpkh") != body.endswith("))"):
                raise ValidationError(f"Unsupported descriptor '{body}'", field="descriptor")
            key = parse_descriptor_key(key_text)
            return cls(_SINGLE_KEY[name], [key], network, keychain=keychain)

        multi = _MULTI_PATTERN.match(body)
        if multi is not None:
            kind, threshold, keys_text = multi.groups()
            keys = [parse_descriptor_key(part) for part in keys_text.split(",")]
            template = (
                ScriptTemplate.P2WSH_MULTI if kind == "multi" else ScriptTemplate.P2WSH_SORTEDMULTI
            )
            return cls(template, keys, network, int(threshold), keychain)

        raise ValidationError(f"Unsupported descriptor '{body}'", field="descriptor", value=body)

    # BIP44/49/84 templates

    @classmethod
    def _bip_secret(
        cls,
        purpose: int,
        template: ScriptTemplate,
        secret_key: DescriptorSecretKey,
        keychain: KeychainKind,
        network: NetworkType,
    ) -> Descriptor:
        account_path = DerivationPath.parse(f"m/{purpose}'/{network.coin_type}'/0'")
        account = secret_key.xkey.derive_path(account_path)
        key = DescriptorSecretKey(
            account,
            KeyOrigin(secret_key.xkey.fingerprint, account_path),
            DerivationPath.master().child(keychain.branch),
            wildcard=True,
        )
        return cls(template, [key], network, keychain=keychain)

    @classmethod
    def _bip_public(
        cls,
        purpose: int,
        template: ScriptTemplate,
        public_key: DescriptorPublicKey,
        fingerprint: str,
        keychain: KeychainKind,
        network: NetworkType,
    ) -> Descriptor:
        try:
            fp = bytes.fromhex(fingerprint)
        except ValueError as e:
            raise ValidationError(
                f"Invalid fingerprint '{fingerprint}'", field="fingerprint", value=fingerprint
            ) from e
        account_path = DerivationPath.parse(f"m/{purpose}'/{network.coin_type}'/0'")
        key = DescriptorPublicKey(
            public_key.xkey,
            KeyOrigin(fp, account_path),
            DerivationPath.master().child(keychain.branch),
            wildcard=True,
        )
        return cls(template, [key], network, keychain=keychain)

    @classmethod
    def new_bip44(
        cls, secret_key: DescriptorSecretKey, keychain: KeychainKind, network: NetworkType
    ) -> Descriptor:
        return cls._bip_secret(BIP44_PURPOSE, ScriptTemplate.P2PKH, secret_key, keychain, network)

    @classmethod
    def new_bip44_public(
        cls,
        public_key: DescriptorPublicKey,
        fingerprint: str,
        keychain: KeychainKind,
        network: NetworkType,
    ) -> Descriptor:
        return cls._bip_public(
            BIP44_PURPOSE, ScriptTemplate.P2PKH, public_key, fingerprint, keychain, network
        )

    @classmethod
    def new_bip49(
        cls, secret_key: DescriptorSecretKey, keychain: KeychainKind, network: NetworkType
    ) -> Descriptor:
        return cls._bip_secret(
            BIP49_PURPOSE, ScriptTemplate.P2SH_P2WPKH, secret_key, keychain, network
        )

    @classmethod
    def new_bip49_public(
        cls,
        public_key: DescriptorPublicKey,
        fingerprint: str,
        keychain: KeychainKind,
        network: NetworkType,
    ) -> Descriptor:
        return cls._bip_public(
            BIP49_PURPOSE, ScriptTemplate.P2SH_P2WPKH, public_key, fingerprint, keychain, network
        )

    @classmethod
    def new_bip84(
        cls, secret_key: DescriptorSecretKey, keychain: KeychainKind, network: NetworkType
    ) -> Descriptor:
        return cls._bip_secret(BIP84_PURPOSE, ScriptTemplate.P2WPKH, secret_key, keychain, network)

    @classmethod
    def new_bip84_public(
        cls,
        public_key: DescriptorPublicKey,
        fingerprint: str,
        keychain: KeychainKind,
        network: NetworkType,
    ) -> Descriptor:
        return cls._bip_public(
            BIP84_PURPOSE, ScriptTemplate.P2WPKH, public_key, fingerprint, keychain, network
        )

    # Text forms

    def _body(self, private: bool) -> str:
        parts = []
        for key in self.keys:
            if isinstance(key, DescriptorSecretKey) and not private:
                key = key.as_public()
            parts.append(key.as_string())

        if self.template == ScriptTemplate.P2PKH:
            return f"pkh({parts[0]})"
        if self.template == ScriptTemplate.P2WPKH:
            return f"wpkh({parts[0]})"
        if self.template == ScriptTemplate.P2SH_P2WPKH:
            return f"sh(wpkh({parts[0]}))"
        name = "multi" if self.template == ScriptTemplate.P2WSH_MULTI else "sortedmulti"
        return f"wsh({name}({self.threshold},{','.join(parts)}))"

    def as_string(self) -> str:
        """Public form with checksum; safe to share with co-signers."""
        return add_checksum(self._body(private=False))

    def as_string_private(self) -> str:
        return add_checksum(self._body(private=True))

    def __str__(self) -> str:
        return self.as_string()

    def __repr__(self) -> str:
        return f"Descriptor({self.as_string()})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Descriptor):
            return NotImplemented
        return self.as_string_private() == other.as_string_private()

    def __hash__(self) -> int:
        return hash(self.as_string())

    # Derivation

    @property
    def is_ranged(self) -> bool:
        return any(key.wildcard for key in self.keys)

    @property
    def secret_keys(self) -> list[DescriptorSecretKey]:
        return [key for key in self.keys if isinstance(key, DescriptorSecretKey)]

    @property
    def has_secret(self) -> bool:
        return bool(self.secret_keys)

    def to_public(self) -> Descriptor:
        keys: list[DescriptorKey] = [
            key.as_public() if isinstance(key, DescriptorSecretKey) else key for key in self.keys
        ]
        return Descriptor(self.template, keys, self.network, self.threshold, self.keychain)

    def derive_keys(self, index: int = 0) -> list[DerivedKeySource]:
        """Child public keys at `index` with their (fingerprint, path) sources."""
        sources = [key.key_source(index if key.wildcard else None) for key in self.keys]
        if self.template == ScriptTemplate.P2WSH_SORTEDMULTI:
            sources.sort(key=lambda source: source.pubkey)
        return sources

    def derive_scripts(self, index: int = 0) -> DerivedScripts:
        sources = self.derive_keys(index)
        if self.template == ScriptTemplate.P2PKH:
            return DerivedScripts(p2pkh_script(hash160(sources[0].pubkey)))
        if self.template == ScriptTemplate.P2WPKH:
            return DerivedScripts(p2wpkh_script(hash160(sources[0].pubkey)))
        if self.template == ScriptTemplate.P2SH_P2WPKH:
            redeem = p2wpkh_script(hash160(sources[0].pubkey))
            return DerivedScripts(p2sh_script(hash160(redeem)), redeem_script=redeem)
        witness_script = multisig_script(self.threshold, [source.pubkey for source in sources])
        return DerivedScripts(p2wsh_script(witness_script), witness_script=witness_script)

    def script_pubkey(self, index: int = 0) -> bytes:
        return self.derive_scripts(index).script_pubkey

    def address(self, index: int = 0) -> Address:
        return Address.from_script(self.script_pubkey(index), self.network)

    def max_satisfaction_weight(self) -> int:
        """Weight units a fully signed input of this descriptor adds over a bare input."""
        if self.template == ScriptTemplate.P2PKH:
            return P2PKH_SATISFACTION_WEIGHT
        if self.template == ScriptTemplate.P2WPKH:
            return P2WPKH_SATISFACTION_WEIGHT
        if self.template == ScriptTemplate.P2SH_P2WPKH:
            return P2SH_P2WPKH_SATISFACTION_WEIGHT
        return p2wsh_multisig_satisfaction_weight(self.threshold, len(self.keys))

    @property
    def is_segwit(self) -> bool:
        return self.template != ScriptTemplate.P2PKH
