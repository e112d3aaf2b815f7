"""
Tests for BIP32 key derivation and derivation paths.
"""

import pytest

from walletcore.errors import GenericError, MismatchedNetworkError, ValidationError
from walletcore.keys.bip32 import ChildNumber, DerivationPath, ExtendedKey
from walletcore.keys.mnemonic import Mnemonic
from walletcore.models import NetworkType

# BIP32 test vector 1
VECTOR1_SEED = bytes.fromhex("000102030405060708090a0b0c0d0e0f")
VECTOR1_MASTER_XPRV = (
    "xprv9s21ZrQH143K3QTDL4LXw2F7HEK3wJUD2nW2nRk4stbPy6cq3jPPqjiChkVvvNKmPGJxWUtg6LnF5kejMRNNU3TGtRBeJgk33yuGBxrMPHi"
)
VECTOR1_MASTER_XPUB = (
    "xpub661MyMwAqRbcFtXgS5sYJABqqG9YLmC4Q1Rdap9gSE8NqtwybGhePY2gZ29ESFjqJoCu1Rupje8YtGqsefD265TMg7usUDFdp6W1EGMcet8"
)
VECTOR1_CHILD0H_XPUB = (
    "xpub68Gmy5EdvgibQVfPdqkBBCHxA5htiqg55crXYuXoQRKfDBFA1WEjWgP6LHhwBZeNK1VTsfTFUHCdrfp1bgwQ9xv5ski8PX9rL2dZXvgGDnw"
)


class TestDerivationPath:
    def test_parse_and_format(self):
        path = DerivationPath.parse("m/84'/0'/0'/0/1")
        assert len(path) == 5
        assert str(path) == "m/84'/0'/0'/0/1"
        assert path.has_hardened

    def test_h_notation(self):
        assert str(DerivationPath.parse("m/84h/1H/0'")) == "m/84'/1'/0'"

    def test_master(self):
        path = DerivationPath.parse("m")
        assert path == DerivationPath.master()
        assert str(path) == "m"
        assert path.suffix_string() == ""

    def test_raw_indexes(self):
        path = DerivationPath.parse("m/44'/1")
        assert path.to_raw() == [0x8000002C, 1]
        assert DerivationPath.from_raw([0x8000002C, 1]) == path

    @pytest.mark.parametrize("bad", ["84'/0'", "m/0/", "m/abc", "m/2147483648", "m//1"])
    def test_invalid_paths(self, bad):
        with pytest.raises(ValidationError):
            DerivationPath.parse(bad)

    def test_prefix_helpers(self):
        full = DerivationPath.parse("m/48'/1'/0'/2'/0/7")
        prefix = DerivationPath.parse("m/48'/1'/0'/2'")
        assert full.starts_with(prefix)
        assert str(full.suffix_after(prefix)) == "m/0/7"
        assert prefix.extend(DerivationPath.parse("m/0")).child(7) == full


class TestChildNumber:
    def test_from_raw_hardened(self):
        child = ChildNumber.from_raw(0x80000005)
        assert child.hardened
        assert child.index == 5
        assert str(child) == "5'"

    def test_out_of_range(self):
        with pytest.raises(ValidationError):
            ChildNumber(0x80000000)


class TestExtendedKey:
    def test_vector1_master(self):
        master = ExtendedKey.from_seed(VECTOR1_SEED)
        assert master.to_string() == VECTOR1_MASTER_XPRV
        assert master.neutered().to_string() == VECTOR1_MASTER_XPUB

    def test_vector1_hardened_child(self):
        master = ExtendedKey.from_seed(VECTOR1_SEED)
        child = master.derive_path("m/0'")
        assert child.neutered().to_string() == VECTOR1_CHILD0H_XPUB
        assert child.depth == 1
        assert child.parent_fingerprint == master.fingerprint

    def test_string_roundtrip(self):
        key = ExtendedKey.from_string(VECTOR1_MASTER_XPRV)
        assert key.is_private
        assert key.network == NetworkType.MAINNET
        assert str(key) == VECTOR1_MASTER_XPRV

        public = ExtendedKey.from_string(VECTOR1_MASTER_XPUB)
        assert not public.is_private
        with pytest.raises(GenericError):
            _ = public.private_key

    def test_public_derivation_matches_private(self):
        master = ExtendedKey.from_seed(VECTOR1_SEED)
        via_private = master.derive_path("m/1/2").neutered()
        via_public = master.neutered().derive_path("m/1/2")
        assert via_private == via_public

    def test_hardened_from_public_fails(self):
        public = ExtendedKey.from_string(VECTOR1_MASTER_XPUB)
        with pytest.raises(GenericError, match="hardened"):
            public.derive_path("m/0'")

    def test_bad_checksum(self):
        corrupted = VECTOR1_MASTER_XPUB[:-1] + ("9" if VECTOR1_MASTER_XPUB[-1] != "9" else "8")
        with pytest.raises(ValidationError):
            ExtendedKey.from_string(corrupted)

    def test_invalid_seed_length(self):
        with pytest.raises(ValidationError):
            ExtendedKey.from_seed(b"\x01" * 8)

    def test_testnet_prefixes(self):
        master = ExtendedKey.from_seed(VECTOR1_SEED, NetworkType.TESTNET)
        assert master.to_string().startswith("tprv")
        assert master.neutered().to_string().startswith("tpub")
        assert ExtendedKey.from_string(master.to_string()).network == NetworkType.TESTNET

    def test_network_check(self):
        master = ExtendedKey.from_seed(VECTOR1_SEED, NetworkType.TESTNET)
        assert master.is_network(NetworkType.REGTEST)
        assert master.is_network(NetworkType.SIGNET)
        with pytest.raises(MismatchedNetworkError):
            master.require_network(NetworkType.MAINNET)

    def test_mnemonic_master_fingerprint(self, sample_mnemonic):
        seed = Mnemonic(sample_mnemonic).to_seed()
        master = ExtendedKey.from_seed(seed)
        assert master.fingerprint.hex() == "73c5da0a"
