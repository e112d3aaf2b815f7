"""
Bitcoin address parsing and encoding.

Supports:
- P2PKH / P2SH (base58check)
- SegWit v0 and v1+ witness programs (bech32 / bech32m)
"""

from __future__ import annotations

from dataclasses import dataclass

import base58
from embit import bech32

from walletcore.bitcoin.script import (
    Payload,
    ScriptType,
    classify_script,
    p2pkh_script,
    p2sh_script,
    script_payload,
    witness_program_script,
)
from walletcore.errors import MismatchedNetworkError, ValidationError
from walletcore.models import NetworkType

P2PKH_VERSIONS = {0x00: NetworkType.MAINNET, 0x6F: NetworkType.TESTNET}
P2SH_VERSIONS = {0x05: NetworkType.MAINNET, 0xC4: NetworkType.TESTNET}


def _networks_compatible(address_network: NetworkType, network: NetworkType) -> bool:
    """
    Whether an address parsed as `address_network` is valid on `network`.

    Base58 test prefixes and the "tb" HRP are shared by testnet, signet and (for
    base58) regtest, so a TESTNET parse result stands for the whole family.
    """
    if address_network == network:
        return True
    if address_network == NetworkType.TESTNET:
        return network == NetworkType.SIGNET
    return False


@dataclass(frozen=True)
class Address:
    """A network-bound output destination."""

    script_pubkey: bytes
    network: NetworkType
    text: str

    @classmethod
    def from_string(cls, address: str, network: NetworkType | None = None) -> Address:
        """
        Parse `address`; when `network` is given, reject addresses for another network.
        """
        parsed = cls._parse(address.strip())
        if network is not None:
            parsed.require_network(network)
        return parsed

    @classmethod
    def _parse(cls, address: str) -> Address:
        lowered = address.lower()
        for hrp, net in (("bcrt", NetworkType.REGTEST), ("bc", NetworkType.MAINNET), ("tb", NetworkType.TESTNET)):
            if lowered.startswith(hrp + "1"):
                try:
                    witver, witprog = bech32.decode(hrp, lowered)
                except ValueError as e:
                    raise ValidationError(
                        f"Invalid bech32 address: {address}", field="address", value=address
                    ) from e
                if witver is None or witprog is None:
                    raise ValidationError(f"Invalid bech32 address: {address}", field="address", value=address)
                script = witness_program_script(witver, bytes(witprog))
                return cls(script, net, lowered)

        try:
            decoded = base58.b58decode_check(address)
        except ValueError as e:
            raise ValidationError(f"Invalid base58 address: {address}", field="address", value=address) from e

        if len(decoded) != 21:
            raise ValidationError(
                f"Invalid address payload length: {len(decoded)}", field="address", value=address
            )
        version, payload = decoded[0], decoded[1:]
        if version in P2PKH_VERSIONS:
            return cls(p2pkh_script(payload), P2PKH_VERSIONS[version], address)
        if version in P2SH_VERSIONS:
            return cls(p2sh_script(payload), P2SH_VERSIONS[version], address)
        raise ValidationError(f"Unknown address version: {version}", field="address", value=address)

    @classmethod
    def from_script(cls, script_pubkey: bytes, network: NetworkType) -> Address:
        script_type = classify_script(script_pubkey)
        payload = script_payload(script_pubkey)

        if script_type == ScriptType.P2PKH:
            prefix = 0x00 if network.is_mainnet else 0x6F
            text = base58.b58encode_check(bytes([prefix]) + payload.data).decode("ascii")
        elif script_type == ScriptType.P2SH:
            prefix = 0x05 if network.is_mainnet else 0xC4
            text = base58.b58encode_check(bytes([prefix]) + payload.data).decode("ascii")
        elif payload.kind == "witness_program":
            encoded = bech32.encode(network.bech32_hrp, payload.witness_version, payload.data)
            if encoded is None:
                raise ValidationError(
                    f"Failed to encode witness program: {script_pubkey.hex()}",
                    field="script_pubkey",
                    value=script_pubkey.hex(),
                )
            text = encoded
        else:
            raise ValidationError(
                f"Script has no address form: {script_pubkey.hex()}",
                field="script_pubkey",
                value=script_pubkey.hex(),
            )
        return cls(script_pubkey, network, text)

    def is_valid_for_network(self, network: NetworkType) -> bool:
        if _networks_compatible(self.network, network):
            return True
        # base58 test prefixes are also used on regtest
        return (
            self.network == NetworkType.TESTNET
            and network == NetworkType.REGTEST
            and self.script_type in (ScriptType.P2PKH, ScriptType.P2SH)
        )

    def require_network(self, network: NetworkType) -> None:
        if not self.is_valid_for_network(network):
            raise MismatchedNetworkError(network.value, self.network.value, value=self.text)

    @property
    def script_type(self) -> ScriptType:
        return classify_script(self.script_pubkey)

    @property
    def payload(self) -> Payload:
        return script_payload(self.script_pubkey)

    def __str__(self) -> str:
        return self.text
