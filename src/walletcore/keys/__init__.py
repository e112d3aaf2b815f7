"""
Key management: BIP39 mnemonics, BIP32 extended keys and output descriptors.
"""

from walletcore.keys.bip32 import ChildNumber, DerivationPath, ExtendedKey
from walletcore.keys.descriptor import Descriptor, ScriptTemplate, descriptor_checksum
from walletcore.keys.descriptor_key import (
    DescriptorPublicKey,
    DescriptorSecretKey,
    KeyOrigin,
    parse_descriptor_key,
)
from walletcore.keys.mnemonic import Mnemonic, WordCount

__all__ = [
    "ChildNumber",
    "DerivationPath",
    "Descriptor",
    "DescriptorPublicKey",
    "DescriptorSecretKey",
    "ExtendedKey",
    "KeyOrigin",
    "Mnemonic",
    "ScriptTemplate",
    "WordCount",
    "descriptor_checksum",
    "parse_descriptor_key",
]
