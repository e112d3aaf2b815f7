"""
Descriptor key expressions: [fingerprint/origin]xkey/path/*

A descriptor key is an extended key plus the metadata needed to place it in a
descriptor: where it came from (origin) and which path to walk below it.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from walletcore.errors import ValidationError
from walletcore.keys.bip32 import DerivationPath, ExtendedKey
from walletcore.keys.mnemonic import Mnemonic
from walletcore.models import NetworkType

_PATH_STEPS = r"(?:/\d+['hH]?)*"
_KEY_EXPRESSION = re.compile(
    r"^(?:\[(?P<fingerprint>[0-9a-fA-F]{8})(?P<origin>" + _PATH_STEPS + r")\])?"
    r"(?P<xkey>[1-9A-HJ-NP-Za-km-z]+)"
    r"(?P<path>" + _PATH_STEPS + r")"
    r"(?P<wildcard>/\*['hH]?)?$"
)


def _parse_steps(steps: str) -> DerivationPath:
    return DerivationPath.parse("m" + steps)


@dataclass(frozen=True)
class KeyOrigin:
    """Master fingerprint and the path from the master to the key."""

    fingerprint: bytes
    path: DerivationPath

    def __post_init__(self) -> None:
        if len(self.fingerprint) != 4:
            raise ValidationError(
                "Fingerprint must be 4 bytes", field="fingerprint", value=self.fingerprint.hex()
            )

    @classmethod
    def from_string(cls, text: str) -> KeyOrigin:
        fingerprint, _, steps = text.partition("/")
        try:
            fp = bytes.fromhex(fingerprint)
        except ValueError as e:
            raise ValidationError(f"Invalid fingerprint '{fingerprint}'", field="fingerprint") from e
        return cls(fp, _parse_steps(f"/{steps}" if steps else ""))

    def extend(self, path: DerivationPath) -> KeyOrigin:
        return KeyOrigin(self.fingerprint, self.path.extend(path))

    def __str__(self) -> str:
        return self.fingerprint.hex() + self.path.suffix_string()


@dataclass(frozen=True)
class DerivedKeySource:
    """Where a concrete child public key comes from, as recorded in PSBT hints."""

    pubkey: bytes
    fingerprint: bytes
    path: DerivationPath


class _DescriptorKey(ABC):
    def __init__(
        self,
        xkey: ExtendedKey,
        origin: KeyOrigin | None = None,
        derivation_path: DerivationPath | None = None,
        wildcard: bool = False,
    ):
        self.xkey = xkey
        self.origin = origin
        self.derivation_path = derivation_path or DerivationPath.master()
        self.wildcard = wildcard

    @property
    def network(self) -> NetworkType:
        return self.xkey.network

    @property
    def master_fingerprint(self) -> bytes:
        """Fingerprint recorded in PSBT derivation hints for keys below this one."""
        if self.origin is not None:
            return self.origin.fingerprint
        return self.xkey.fingerprint

    def full_path(self, index: int | None = None) -> DerivationPath:
        """Path from the xkey to the child key for `index`."""
        path = self.derivation_path
        if self.wildcard:
            if index is None:
                raise ValidationError("Wildcard key needs a child index", field="index")
            path = path.child(index)
        return path

    def key_source(self, index: int | None = None) -> DerivedKeySource:
        path = self.full_path(index)
        child = self.xkey.derive_path(path)
        origin_path = self.origin.path.extend(path) if self.origin is not None else path
        return DerivedKeySource(child.get_public_key_bytes(), self.master_fingerprint, origin_path)

    def _format(self, xkey_text: str) -> str:
        text = f"[{self.origin}]" if self.origin is not None else ""
        text += xkey_text + self.derivation_path.suffix_string()
        if self.wildcard:
            text += "/*"
        return text

    def _extended_path(self, path: DerivationPath | str) -> DerivationPath:
        if isinstance(path, str):
            path = DerivationPath.parse(path)
        return path

    def _derive_parts(self, path: DerivationPath | str) -> tuple[ExtendedKey, KeyOrigin]:
        full = self.derivation_path.extend(self._extended_path(path))
        derived = self.xkey.derive_path(full)
        if self.origin is not None:
            origin = self.origin.extend(full)
        else:
            origin = KeyOrigin(self.xkey.fingerprint, full)
        return derived, origin

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _DescriptorKey):
            return NotImplemented
        return type(self) is type(other) and self.as_string() == other.as_string()

    def __hash__(self) -> int:
        return hash(self.as_string())

    @abstractmethod
    def as_string(self) -> str:
        """Key expression text."""


class DescriptorPublicKey(_DescriptorKey):
    """Public key expression; only non-hardened steps can be derived."""

    def __init__(
        self,
        xkey: ExtendedKey,
        origin: KeyOrigin | None = None,
        derivation_path: DerivationPath | None = None,
        wildcard: bool = False,
    ):
        if xkey.is_private:
            xkey = xkey.neutered()
        super().__init__(xkey, origin, derivation_path, wildcard)
        if self.derivation_path.has_hardened:
            raise ValidationError(
                "Hardened derivation below a public key",
                field="path",
                value=str(self.derivation_path),
            )

    @classmethod
    def from_string(cls, text: str) -> DescriptorPublicKey:
        key = parse_descriptor_key(text)
        if isinstance(key, DescriptorSecretKey):
            raise ValidationError("Expected a public key expression", field="key")
        return key

    def extend(self, path: DerivationPath | str) -> DescriptorPublicKey:
        """Append `path` to the derivation path; the key stays the same."""
        extension = self._extended_path(path)
        return DescriptorPublicKey(
            self.xkey, self.origin, self.derivation_path.extend(extension), self.wildcard
        )

    def derive(self, path: DerivationPath | str) -> DescriptorPublicKey:
        """Walk `path` now, recording it in the origin."""
        derived, origin = self._derive_parts(path)
        return DescriptorPublicKey(derived, origin, None, self.wildcard)

    def as_string(self) -> str:
        return self._format(self.xkey.to_string())

    def __str__(self) -> str:
        return self.as_string()

    def __repr__(self) -> str:
        return f"DescriptorPublicKey({self.as_string()})"


class DescriptorSecretKey(_DescriptorKey):
    """Secret key expression; formats as xprv/tprv text."""

    def __init__(
        self,
        xkey: ExtendedKey,
        origin: KeyOrigin | None = None,
        derivation_path: DerivationPath | None = None,
        wildcard: bool = False,
    ):
        if not xkey.is_private:
            raise ValidationError("Secret descriptor key needs a private xkey", field="key")
        super().__init__(xkey, origin, derivation_path, wildcard)

    @classmethod
    def generate(
        cls, network: NetworkType, mnemonic: Mnemonic, password: str | None = None
    ) -> DescriptorSecretKey:
        """Master key for `mnemonic`, as a ranged xprv/* expression."""
        seed = mnemonic.to_seed(password or "")
        return cls(ExtendedKey.from_seed(seed, network), wildcard=True)

    @classmethod
    def from_string(cls, text: str) -> DescriptorSecretKey:
        key = parse_descriptor_key(text)
        if not isinstance(key, DescriptorSecretKey):
            raise ValidationError("Expected a secret key expression", field="key")
        return key

    def extend(self, path: DerivationPath | str) -> DescriptorSecretKey:
        """Append `path` to the derivation path; the key stays the same."""
        extension = self._extended_path(path)
        return DescriptorSecretKey(
            self.xkey, self.origin, self.derivation_path.extend(extension), self.wildcard
        )

    def derive(self, path: DerivationPath | str) -> DescriptorSecretKey:
        """Walk `path` now, recording it in the origin."""
        derived, origin = self._derive_parts(path)
        return DescriptorSecretKey(derived, origin, None, self.wildcard)

    def as_public(self) -> DescriptorPublicKey:
        """
        Public counterpart of this expression.

        Hardened steps in the derivation path are walked here, since an xpub cannot
        walk them later.
        """
        steps = self.derivation_path.steps
        last_hardened = max((i for i, step in enumerate(steps) if step.hardened), default=-1)
        if last_hardened < 0:
            return DescriptorPublicKey(
                self.xkey.neutered(), self.origin, self.derivation_path, self.wildcard
            )

        hardened_part = DerivationPath(steps[: last_hardened + 1])
        derived = self.xkey.derive_path(hardened_part)
        if self.origin is not None:
            origin = self.origin.extend(hardened_part)
        else:
            origin = KeyOrigin(self.xkey.fingerprint, hardened_part)
        return DescriptorPublicKey(
            derived.neutered(), origin, DerivationPath(steps[last_hardened + 1 :]), self.wildcard
        )

    def secret_bytes(self) -> bytes:
        return self.xkey.get_private_key_bytes()

    def as_string(self) -> str:
        return self._format(self.xkey.to_string())

    def __str__(self) -> str:
        return self.as_string()

    def __repr__(self) -> str:
        return f"DescriptorSecretKey([{self.master_fingerprint.hex()}] private)"


DescriptorKey = DescriptorSecretKey | DescriptorPublicKey


def parse_descriptor_key(text: str) -> DescriptorKey:
    """Parse a key expression; the xkey prefix decides secret vs public."""
    match = _KEY_EXPRESSION.match(text.strip())
    if match is None:
        raise ValidationError(f"Invalid key expression '{text}'", field="key", value=text)

    wildcard = match.group("wildcard")
    if wildcard is not None and wildcard != "/*":
        raise ValidationError("Hardened wildcards are not supported", field="key", value=text)

    origin = None
    if match.group("fingerprint") is not None:
        origin = KeyOrigin(
            bytes.fromhex(match.group("fingerprint")), _parse_steps(match.group("origin"))
        )

    xkey = ExtendedKey.from_string(match.group("xkey"))
    path = _parse_steps(match.group("path"))
    if xkey.is_private:
        return DescriptorSecretKey(xkey, origin, path, wildcard is not None)
    return DescriptorPublicKey(xkey, origin, path, wildcard is not None)
