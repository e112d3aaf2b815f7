"""
BIP32 HD key derivation.
Extended keys, derivation paths and their textual/base58 forms.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass

import base58
from coincurve import PrivateKey, PublicKey

from walletcore.bitcoin.script import hash160
from walletcore.constants import HARDENED_OFFSET
from walletcore.errors import GenericError, MismatchedNetworkError, ValidationError
from walletcore.models import NetworkType

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

# Serialization version bytes: (private, public)
MAINNET_VERSIONS = (bytes.fromhex("0488ade4"), bytes.fromhex("0488b21e"))
TESTNET_VERSIONS = (bytes.fromhex("04358394"), bytes.fromhex("043587cf"))


@dataclass(frozen=True, order=True)
class ChildNumber:
    index: int
    hardened: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.index < HARDENED_OFFSET:
            raise ValidationError(
                f"Child index {self.index} out of range", field="index", value=self.index
            )

    @classmethod
    def from_raw(cls, raw: int) -> ChildNumber:
        if not 0 <= raw <= 0xFFFFFFFF:
            raise ValidationError(f"Child number {raw} out of range", field="index", value=raw)
        if raw >= HARDENED_OFFSET:
            return cls(raw - HARDENED_OFFSET, hardened=True)
        return cls(raw)

    @classmethod
    def from_string(cls, part: str) -> ChildNumber:
        hardened = part.endswith(("'", "h", "H"))
        digits = part[:-1] if hardened else part
        if not digits.isdigit():
            raise ValidationError(f"Invalid path segment '{part}'", field="path", value=part)
        return cls(int(digits), hardened)

    @property
    def raw(self) -> int:
        return self.index + HARDENED_OFFSET if self.hardened else self.index

    def __str__(self) -> str:
        return f"{self.index}'" if self.hardened else str(self.index)


@dataclass(frozen=True)
class DerivationPath:
    """
    Ordered child numbers, written "m/84'/0'/0'".

    ' (or h) marks hardened derivation.
    """

    steps: tuple[ChildNumber, ...] = ()

    @classmethod
    def parse(cls, path: str) -> DerivationPath:
        if not isinstance(path, str):
            raise ValidationError("Path must be a string", field="path", value=path)
        parts = path.strip().split("/")
        if parts[0] != "m":
            raise ValidationError("Path must start with 'm'", field="path", value=path)
        if len(parts) > 1 and parts[-1] == "":
            raise ValidationError("Path must not end with '/'", field="path", value=path)
        return cls(tuple(ChildNumber.from_string(part) for part in parts[1:]))

    @classmethod
    def from_raw(cls, indexes: list[int]) -> DerivationPath:
        return cls(tuple(ChildNumber.from_raw(i) for i in indexes))

    @classmethod
    def master(cls) -> DerivationPath:
        return cls()

    def extend(self, other: DerivationPath) -> DerivationPath:
        return DerivationPath(self.steps + other.steps)

    def child(self, index: int, hardened: bool = False) -> DerivationPath:
        return DerivationPath(self.steps + (ChildNumber(index, hardened),))

    def starts_with(self, prefix: DerivationPath) -> bool:
        return self.steps[: len(prefix.steps)] == prefix.steps

    def suffix_after(self, prefix: DerivationPath) -> DerivationPath:
        return DerivationPath(self.steps[len(prefix.steps) :])

    @property
    def has_hardened(self) -> bool:
        return any(step.hardened for step in self.steps)

    def to_raw(self) -> list[int]:
        return [step.raw for step in self.steps]

    def __len__(self) -> int:
        return len(self.steps)

    def __str__(self) -> str:
        return "/".join(["m"] + [str(step) for step in self.steps])

    def suffix_string(self) -> str:
        """Path without the leading "m", e.g. "/0/1" (empty for the master path)."""
        return "".join(f"/{step}" for step in self.steps)


class ExtendedKey:
    """
    Hierarchical Deterministic key (BIP32), secret or public.

    A secret key always carries its public key; a public key has no private part and
    can only derive non-hardened children.
    """

    def __init__(
        self,
        chain_code: bytes,
        network: NetworkType,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        depth: int = 0,
        parent_fingerprint: bytes = b"\x00\x00\x00\x00",
        child_number: int = 0,
    ):
        if private_key is None and public_key is None:
            raise ValueError("Extended key needs a private or public key")
        self._private_key = private_key
        self._public_key = public_key if public_key is not None else private_key.public_key
        self.chain_code = chain_code
        self.network = network
        self.depth = depth
        self.parent_fingerprint = parent_fingerprint
        self.child_number = child_number

    @property
    def is_private(self) -> bool:
        return self._private_key is not None

    @property
    def private_key(self) -> PrivateKey:
        """Return the coincurve PrivateKey instance."""
        if self._private_key is None:
            raise GenericError("Extended public key has no private key")
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @classmethod
    def from_seed(cls, seed: bytes, network: NetworkType = NetworkType.MAINNET) -> ExtendedKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise ValidationError(f"Invalid seed length: {len(seed)}", field="seed", value=len(seed))
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        try:
            private_key = PrivateKey(key_bytes)
        except ValueError as e:
            raise GenericError(f"Invalid master key: {e}") from e

        return cls(chain_code, network, private_key=private_key)

    @classmethod
    def from_string(cls, text: str) -> ExtendedKey:
        """Parse an xprv/xpub/tprv/tpub string."""
        try:
            data = base58.b58decode_check(text)
        except ValueError as e:
            raise ValidationError(f"Invalid extended key checksum: {e}", field="key", value=text) from e
        if len(data) != 78:
            raise ValidationError(
                f"Invalid extended key length: {len(data)}", field="key", value=text
            )

        version = data[:4]
        if version in MAINNET_VERSIONS:
            network = NetworkType.MAINNET
        elif version in TESTNET_VERSIONS:
            network = NetworkType.TESTNET
        else:
            raise ValidationError(f"Unknown extended key version {version.hex()}", field="key", value=text)

        depth = data[4]
        parent_fingerprint = data[5:9]
        child_number = struct.unpack(">I", data[9:13])[0]
        chain_code = data[13:45]
        key_data = data[45:78]

        try:
            if version in (MAINNET_VERSIONS[0], TESTNET_VERSIONS[0]):
                if key_data[0] != 0:
                    raise ValidationError("Invalid private key prefix", field="key", value=text)
                return cls(
                    chain_code,
                    network,
                    private_key=PrivateKey(key_data[1:]),
                    depth=depth,
                    parent_fingerprint=parent_fingerprint,
                    child_number=child_number,
                )
            return cls(
                chain_code,
                network,
                public_key=PublicKey(key_data),
                depth=depth,
                parent_fingerprint=parent_fingerprint,
                child_number=child_number,
            )
        except ValueError as e:
            raise ValidationError(f"Invalid extended key material: {e}", field="key", value=text) from e

    def to_string(self) -> str:
        versions = MAINNET_VERSIONS if self.network.is_mainnet else TESTNET_VERSIONS
        if self.is_private:
            version = versions[0]
            key_data = b"\x00" + self._private_key.secret
        else:
            version = versions[1]
            key_data = self.get_public_key_bytes()
        payload = (
            version
            + bytes([self.depth])
            + self.parent_fingerprint
            + struct.pack(">I", self.child_number)
            + self.chain_code
            + key_data
        )
        return base58.b58encode_check(payload).decode("ascii")

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        kind = "private" if self.is_private else "public"
        return f"ExtendedKey({kind}, depth={self.depth}, fingerprint={self.fingerprint.hex()})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExtendedKey):
            return NotImplemented
        return self.to_string() == other.to_string()

    def __hash__(self) -> int:
        return hash(self.to_string())

    @property
    def fingerprint(self) -> bytes:
        """First 4 bytes of HASH160 of the public key."""
        return hash160(self.get_public_key_bytes())[:4]

    def neutered(self) -> ExtendedKey:
        """Public-only copy of this key."""
        return ExtendedKey(
            self.chain_code,
            self.network,
            public_key=self._public_key,
            depth=self.depth,
            parent_fingerprint=self.parent_fingerprint,
            child_number=self.child_number,
        )

    def is_network(self, network: NetworkType) -> bool:
        return self.network.is_mainnet == network.is_mainnet

    def require_network(self, network: NetworkType) -> None:
        if not self.is_network(network):
            raise MismatchedNetworkError(network.value, self.network.value)

    def derive_path(self, path: DerivationPath | str) -> ExtendedKey:
        """
        Derive child key from a path (e.g., "m/84'/0'/0'/0/0")
        ' indicates hardened derivation
        """
        if isinstance(path, str):
            path = DerivationPath.parse(path)

        key = self
        for step in path.steps:
            key = key.derive_child(step.raw)
        return key

    def derive_child(self, index: int) -> ExtendedKey:
        """Derive a child key at the given raw index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            if self._private_key is None:
                raise GenericError(
                    f"Cannot derive hardened child {index - HARDENED_OFFSET}' from a public key",
                    field="path",
                    value=index,
                )
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.get_public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        offset_int = int.from_bytes(key_offset, "big")
        if offset_int >= SECP256K1_N:
            raise GenericError(f"Invalid child key at index {index}")

        if self._private_key is not None:
            parent_key_int = int.from_bytes(self._private_key.secret, "big")
            child_key_int = (parent_key_int + offset_int) % SECP256K1_N

            if child_key_int == 0:
                raise GenericError(f"Invalid child key at index {index}")

            child = PrivateKey(child_key_int.to_bytes(32, "big"))
            return ExtendedKey(
                child_chain,
                self.network,
                private_key=child,
                depth=self.depth + 1,
                parent_fingerprint=self.fingerprint,
                child_number=index,
            )

        try:
            child_public = self._public_key.add(key_offset)
        except ValueError as e:
            raise GenericError(f"Invalid child key at index {index}: {e}") from e
        return ExtendedKey(
            child_chain,
            self.network,
            public_key=child_public,
            depth=self.depth + 1,
            parent_fingerprint=self.fingerprint,
            child_number=index,
        )

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        return self.private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)
