"""
Tests for descriptor keys, descriptor parsing and BIP44/49/84 templates.
"""

import pytest

from walletcore.errors import GenericError, MismatchedNetworkError, ValidationError
from walletcore.keys.bip32 import DerivationPath
from walletcore.keys.descriptor import Descriptor, ScriptTemplate, descriptor_checksum
from walletcore.keys.descriptor_key import (
    DescriptorPublicKey,
    DescriptorSecretKey,
    KeyOrigin,
    _DescriptorKey,
    parse_descriptor_key,
)
from walletcore.keys.mnemonic import Mnemonic
from walletcore.models import KeychainKind, NetworkType

XPUB = (
    "xpub6BsJ4SAX3CYhcZVV9bFVvmGJ7cyboy4LJqbRJJEziPvm9Pq7v7cWkBAa1LixG9vJybxHDuWcHTtq3K4tsaKG1jMJcpZmkiacFuc7LkzUCWu"
)

MULTI_5_OF_5 = (
    "wsh(multi(5,"
    "tpubD6NzVbkrYhZ4YgUwLbJjHAo4khrBPHJfZ1nzeeWxaTpYHzvM7SaEFLnuWjcRt8aM3LicBzeqVcN4fKsbTzHSkUJn388HSc5Xxpd1tPSmDYQ/*,"
    "tpubD6NzVbkrYhZ4X9w1pgeFqiDm7o4dkvEku1ibW6frK5n3vWsSGjxoo3DESgwwZW5N8eN72vCywJzmbezhQQHMbpUytZcxYYTAEaQzUntBEtP/*,"
    "tpubD6NzVbkrYhZ4X2M619JZbwnPoQ65e5qzosWPtXYMnMtevcQTwVHq6HFbu5whCAp4PpynzrE65MXk2kgqUb22aE2V5NPZJautw8vXDmVMGuz/*,"
    "tpubD6NzVbkrYhZ4YNHo23GAaYnfs8xzyhxpaWZsHJ72a9RPwiQd36BtyHnpRSQFYAJMLK2tWb6i7QJcjNuko4b4V3kGyhe6Z4TxZGXJfEvTU12/*,"
    "tpubD6NzVbkrYhZ4YdMUbJuBi6mhtYAC53MevdrFtpQicPavbnYDni6YsAD62NUhQxHYYJpAniVk4Ba9Q2GiptSZPz8ugbo3zgecm2aXQRFny4a/*"
    "))#339j7vh3"
)
MULTI_5_OF_5_KEYS_AT_0 = [
    ("7fba6fe6", "02cc24adfed5a481b000192042b2399087437d8eb16095c3dda1d45a4fbf868017"),
    ("d7724f76", "039b2b68caf451ba88afe617cb57f2e9840511bedb0ac8ffa2dc2b25d4ea84adf1"),
    ("0c39ed43", "03f7c1d37ff5dfd5a8b5326533810cef71f7f724fd53d2a88f49e3c63edc5f9688"),
    ("e69af179", "0296209843f0f4dd7b1f3a072e72e7b4edd2e3ff416afc862a7a7aa0b9d40d2de6"),
    ("e42852b6", "03427930b60ba45aeb5c7e03fc3b6b7b22637bec5d355c55204678d7dd8a029981"),
]

DEPOSIT = (
    "wsh(multi(5,"
    "tpubD6NzVbkrYhZ4Yb5yyh2qqUnfGzyakvyzYei3qf2roEMuP7DFB47CDhcUW93YjFGGpwXgUbjeFfoapYyXyyUD2cT1tTzdBCMAhsNTmEJxLM2/*,"
    "tpubD6NzVbkrYhZ4Wn1byYeaSwqq6aHni5hQmzHmha8WUgQFH7H5mQ4NZXM8dTs52kqsaxFuau7edrm27ZXNbyp6V5vRJxLZ9oxB92F1dVVAnTn/*,"
    "tpubD6NzVbkrYhZ4XLQ56KtSZs1ezkUfD2f1QsUPRvVRqmoo1xsJ9DM6Yao4XKqkEDxGHenroWaooEbpjDTzr7W2LB5CYVPn83eacD1swW38W5G/*,"
    "tpubD6NzVbkrYhZ4Ys7ii3MvAhZVowvQRPHwT9uctEnxEmnXR7KtBqyEofT6LmvXov5tpMLDcMhNCC3pi4NrLq1vG51rPcsFGtP5MDHq2F9Bj5Z/*,"
    "tpubD6NzVbkrYhZ4WmzxsFZByU1tKop9SWd5YHH81b2gbT5ycGAkZfthcwNAcQZmxswzTvpjBaswKgbcEKksbkGW65wbQsA4DEaCq9c7SqUZ9oi/*"
    "))"
)


@pytest.fixture
def master_key(sample_mnemonic) -> DescriptorSecretKey:
    return DescriptorSecretKey.generate(NetworkType.MAINNET, Mnemonic(sample_mnemonic))


class TestChecksum:
    def test_known_checksum(self):
        assert descriptor_checksum(f"wpkh([00aabbcc/1]{XPUB})") == "2h49p59p"

    def test_invalid_character(self):
        with pytest.raises(ValidationError):
            descriptor_checksum("wpkh(é)")

    def test_parse_rejects_wrong_checksum(self):
        with pytest.raises(ValidationError, match="checksum"):
            Descriptor.parse(f"wpkh([00aabbcc/1]{XPUB})#2h49p5pp", NetworkType.MAINNET)


class TestDescriptorKey:
    def test_base_key_is_abstract(self):
        with pytest.raises(TypeError):
            _DescriptorKey(None)

    def test_parse_full_expression(self):
        key = parse_descriptor_key(f"[00aabbcc/84'/0'/0']{XPUB}/0/*")
        assert isinstance(key, DescriptorPublicKey)
        assert key.origin == KeyOrigin(bytes.fromhex("00aabbcc"), DerivationPath.parse("m/84'/0'/0'"))
        assert str(key.derivation_path) == "m/0"
        assert key.wildcard
        assert key.as_string() == f"[00aabbcc/84'/0'/0']{XPUB}/0/*"

    def test_hardened_wildcard_rejected(self):
        with pytest.raises(ValidationError):
            parse_descriptor_key(f"{XPUB}/0/*'")

    def test_hardened_step_below_public_key_rejected(self):
        with pytest.raises(ValidationError):
            parse_descriptor_key(f"{XPUB}/0'/*")

    def test_generate_is_ranged_master(self, master_key):
        assert master_key.wildcard
        assert master_key.origin is None
        assert master_key.as_string().startswith("xprv")
        assert master_key.as_string().endswith("/*")
        assert master_key.master_fingerprint.hex() == "73c5da0a"

    def test_derive_records_origin(self, master_key):
        account = master_key.derive("m/84'/0'/0'")
        assert account.origin == KeyOrigin(
            bytes.fromhex("73c5da0a"), DerivationPath.parse("m/84'/0'/0'")
        )
        assert account.as_public().as_string().startswith("[73c5da0a/84'/0'/0']xpub")

    def test_extend_keeps_key(self, master_key):
        extended = master_key.extend("m/84'/0'/0'")
        assert extended.xkey == master_key.xkey
        assert str(extended.derivation_path) == "m/84'/0'/0'"

    def test_as_public_walks_hardened_prefix(self, master_key):
        derived = master_key.derive("m/84'/0'/0'")
        via_extend = master_key.extend("m/84'/0'/0'").as_public()
        assert via_extend.xkey == derived.as_public().xkey
        assert via_extend.origin == derived.origin

    def test_public_derive_hardened_fails(self, master_key):
        public = master_key.derive("m/84'/0'/0'").as_public()
        with pytest.raises(GenericError):
            public.derive("m/0'")

    def test_public_and_secret_derive_agree(self, master_key):
        account = master_key.derive("m/84'/0'/0'")
        secret_child = account.derive("m/0/3").as_public()
        public_child = account.as_public().derive("m/0/3")
        assert secret_child.as_string() == public_child.as_string()

    def test_secret_bytes(self, master_key):
        assert len(master_key.secret_bytes()) == 32

    def test_secret_repr_hides_key(self, master_key):
        assert "xprv" not in repr(master_key)


class TestBipTemplates:
    def test_bip84_vectors(self, master_key):
        external = Descriptor.new_bip84(master_key, KeychainKind.EXTERNAL, NetworkType.MAINNET)
        internal = Descriptor.new_bip84(master_key, KeychainKind.INTERNAL, NetworkType.MAINNET)
        assert str(external.address(0)) == "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
        assert str(external.address(1)) == "bc1qnjg0jd8228aq7egyzacy8cys3knf9xvrerkf9g"
        assert str(internal.address(0)) == "bc1q8c6fshw2dlwun7ekn9qwf37cu2rn755upcp6el"

    def test_bip44_vector(self, master_key):
        external = Descriptor.new_bip44(master_key, KeychainKind.EXTERNAL, NetworkType.MAINNET)
        assert external.template == ScriptTemplate.P2PKH
        assert str(external.address(0)) == "1LqBGSKuX5yYUonjxT5qGfpUsXKYYWeabA"

    def test_bip49_testnet_vector(self, sample_mnemonic):
        key = DescriptorSecretKey.generate(NetworkType.TESTNET, Mnemonic(sample_mnemonic))
        external = Descriptor.new_bip49(key, KeychainKind.EXTERNAL, NetworkType.TESTNET)
        assert str(external.address(0)) == "2Mww8dCYPUpKHofjgcXcBCEGmniw9CoaiD2"

    def test_keychains_differ_only_in_branch(self, master_key):
        external = Descriptor.new_bip44(master_key, KeychainKind.EXTERNAL, NetworkType.MAINNET)
        internal = Descriptor.new_bip44(master_key, KeychainKind.INTERNAL, NetworkType.MAINNET)
        ext_body = external.as_string().split("#")[0]
        int_body = internal.as_string().split("#")[0]
        assert ext_body.endswith("/0/*)")
        assert ext_body[: -len("/0/*)")] + "/1/*)" == int_body

    def test_public_template_matches_secret(self, master_key):
        account = master_key.derive("m/84'/0'/0'").as_public()
        public = Descriptor.new_bip84_public(
            account, "73c5da0a", KeychainKind.EXTERNAL, NetworkType.MAINNET
        )
        secret = Descriptor.new_bip84(master_key, KeychainKind.EXTERNAL, NetworkType.MAINNET)
        assert public.as_string() == secret.as_string()
        assert not public.has_secret

    def test_public_template_bad_fingerprint(self, master_key):
        account = master_key.derive("m/84'/0'/0'").as_public()
        with pytest.raises(ValidationError):
            Descriptor.new_bip84_public(account, "xyz", KeychainKind.EXTERNAL, NetworkType.MAINNET)

    def test_network_mismatch(self, master_key):
        with pytest.raises(MismatchedNetworkError):
            Descriptor.new_bip84(master_key, KeychainKind.EXTERNAL, NetworkType.TESTNET)


class TestDescriptorParsing:
    def test_public_string_roundtrip(self, master_key):
        desc = Descriptor.new_bip84(master_key, KeychainKind.EXTERNAL, NetworkType.MAINNET)
        parsed = Descriptor.parse(desc.as_string(), NetworkType.MAINNET)
        assert parsed.as_string() == desc.as_string()
        assert parsed.script_pubkey(5) == desc.script_pubkey(5)
        assert not parsed.has_secret

    def test_private_string_keeps_secrets(self, master_key):
        desc = Descriptor.new_bip49(master_key, KeychainKind.INTERNAL, NetworkType.MAINNET)
        parsed = Descriptor.parse(desc.as_string_private(), NetworkType.MAINNET)
        assert parsed.has_secret
        assert parsed == desc
        assert "xprv" not in desc.as_string()

    def test_multisig_roundtrip_and_keys(self):
        desc = Descriptor.parse(MULTI_5_OF_5, NetworkType.TESTNET)
        assert desc.as_string() == MULTI_5_OF_5
        assert desc.template == ScriptTemplate.P2WSH_MULTI
        assert desc.threshold == 5
        sources = desc.derive_keys(0)
        assert [(s.fingerprint.hex(), s.pubkey.hex()) for s in sources] == MULTI_5_OF_5_KEYS_AT_0
        assert all(str(s.path) == "m/0" for s in sources)

    def test_multisig_scripts(self):
        desc = Descriptor.parse(DEPOSIT, NetworkType.TESTNET)
        scripts = desc.derive_scripts(0)
        assert scripts.script_pubkey.hex() == (
            "002076fb586cb821ac94fbe094e012b93d82cc42925bcf543415416f42aa3ba1822c"
        )
        assert scripts.witness_script.hex() == (
            "552102de76d54f7e28d731f403f5d1fad4da1df208e1d6e00dbe6dfbadd804461c2743"
            "2102f65c2812d2a8d1da479d0cf32d4ca717263bcdadd4b3f11a014b8cc27f73ec44"
            "21024bf97e1bfc4b5c1de90172d50d92fe072da40a8ccd0f89cd5e858b9dc1226623"
            "21023bdc599713ea7b982dc3f439aad24f6c6c8b1a4617f339ba976a48d9067a7d67"
            "210245cca25b3ecea1a82157bc98b9c35caa53d0f65b9ecb5bfdbb80749d22357c45"
            "55ae"
        )
        assert desc.script_pubkey(1) != desc.script_pubkey(0)

    def test_sortedmulti_orders_keys(self):
        body = MULTI_5_OF_5.split("#")[0].replace("multi(", "sortedmulti(")
        desc = Descriptor.parse(body, NetworkType.TESTNET)
        pubkeys = [s.pubkey for s in desc.derive_keys(0)]
        assert pubkeys == sorted(pubkeys)

    def test_testnet_keys_rejected_on_mainnet(self):
        with pytest.raises(MismatchedNetworkError):
            Descriptor.parse(MULTI_5_OF_5, NetworkType.MAINNET)

    @pytest.mark.parametrize(
        "text",
        [
            f"tr({XPUB})",
            f"wpkh({XPUB}))",
            f"sh(wpkh({XPUB})",
            f"wsh(multi(6,{XPUB}))",
            "wpkh(notakey)",
        ],
    )
    def test_unsupported_or_malformed(self, text):
        with pytest.raises(ValidationError):
            Descriptor.parse(text, NetworkType.MAINNET)

    def test_satisfaction_weight(self):
        desc = Descriptor.parse(MULTI_5_OF_5, NetworkType.TESTNET)
        # count + dummy + 5 sigs + len + 5-key script
        assert desc.max_satisfaction_weight() == 1 + 1 + 5 * 73 + 1 + (3 + 5 * 34)
        assert desc.is_segwit
