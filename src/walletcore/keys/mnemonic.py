"""
BIP39 mnemonic phrases, backed by the python-mnemonic library.
"""

from __future__ import annotations

from enum import IntEnum

from mnemonic import Mnemonic as _Bip39

from walletcore.errors import ValidationError

_ENGLISH = _Bip39("english")


class WordCount(IntEnum):
    WORDS12 = 12
    WORDS15 = 15
    WORDS18 = 18
    WORDS21 = 21
    WORDS24 = 24

    @property
    def strength(self) -> int:
        """Entropy bits: 32 per 3 words."""
        return self.value * 32 // 3


class Mnemonic:
    """A checksummed BIP39 english phrase."""

    def __init__(self, phrase: str):
        normalized = " ".join(phrase.lower().split())
        if not _ENGLISH.check(normalized):
            raise ValidationError("Invalid BIP39 mnemonic", field="mnemonic")
        self._phrase = normalized

    @classmethod
    def generate(cls, word_count: WordCount | int = WordCount.WORDS24) -> Mnemonic:
        try:
            count = WordCount(word_count)
        except ValueError as e:
            raise ValidationError(
                f"Unsupported word count {word_count}", field="word_count", value=word_count
            ) from e
        return cls(_ENGLISH.generate(strength=count.strength))

    @classmethod
    def from_string(cls, phrase: str) -> Mnemonic:
        return cls(phrase)

    @classmethod
    def from_entropy(cls, entropy: bytes) -> Mnemonic:
        if len(entropy) not in (16, 20, 24, 28, 32):
            raise ValidationError(
                f"Invalid entropy length {len(entropy)}", field="entropy", value=len(entropy)
            )
        return cls(_ENGLISH.to_mnemonic(entropy))

    @property
    def words(self) -> list[str]:
        return self._phrase.split(" ")

    def to_seed(self, passphrase: str = "") -> bytes:
        """64-byte BIP39 seed (PBKDF2-HMAC-SHA512, 2048 rounds)."""
        return _Bip39.to_seed(self._phrase, passphrase)

    def as_string(self) -> str:
        return self._phrase

    def __str__(self) -> str:
        return self._phrase

    def __repr__(self) -> str:
        # never echo the phrase itself
        return f"Mnemonic({len(self.words)} words)"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mnemonic):
            return NotImplemented
        return self._phrase == other._phrase

    def __hash__(self) -> int:
        return hash(self._phrase)
