"""
Mnemonic Service - BIP39 phrase lifecycle.

Generates phrases from OS entropy, validates user-supplied phrases with a
precise failure reason, and stretches a phrase into the 64-byte seed.
Phrases and seeds only ever live in SecretBytes containers.
"""

import logging
import os
import unicodedata
from typing import Callable

import mnemonic as bip39

from ..exceptions import (
    EntropyError,
    WrongWordCount,
    UnknownWord,
    ChecksumMismatch,
)
from .secure import SecretBytes

logger = logging.getLogger(__name__)

# Word count -> entropy bytes (128 or 256 bits)
ENTROPY_BYTES = {12: 16, 24: 32}
ALLOWED_WORD_COUNTS = tuple(ENTROPY_BYTES)
SEED_BYTES = 64


class Mnemonic(SecretBytes):
    """A validated BIP39 phrase held in wipeable memory."""

    __slots__ = ()

    def phrase(self) -> str:
        """The space-separated phrase. Sensitive: display only for backup."""
        return self.reveal_str()

    def words(self) -> list[str]:
        return self.phrase().split(" ")

    @property
    def word_count(self) -> int:
        return len(self.words())


class Seed(SecretBytes):
    """64-byte BIP39 seed held in wipeable memory."""

    __slots__ = ()


def normalize_phrase(phrase: str) -> list[str]:
    """NFKD-normalise, lowercase and split on any whitespace."""
    return unicodedata.normalize("NFKD", phrase).lower().split()


class MnemonicService:
    """
    BIP39 generation, validation and seed derivation (English wordlist).

    Usage:
        service = MnemonicService()
        mnemonic = service.generate(12)
        checked = service.validate(mnemonic.phrase())
        with service.to_seed(checked) as seed:
            ...
    """

    def __init__(self, entropy_source: Callable[[int], bytes] = os.urandom,
                 language: str = "english"):
        self._entropy_source = entropy_source
        self._bip39 = bip39.Mnemonic(language)
        self._wordset = frozenset(self._bip39.wordlist)

    @property
    def wordlist(self) -> list[str]:
        return list(self._bip39.wordlist)

    def generate(self, word_count: int = 12) -> Mnemonic:
        """
        Generate a fresh mnemonic from OS entropy.

        Args:
            word_count: 12 (128-bit) or 24 (256-bit)

        Raises:
            ValueError: word_count is not 12 or 24
            EntropyError: the OS random source is unavailable
        """
        if word_count not in ENTROPY_BYTES:
            raise ValueError("word_count must be 12 or 24")

        try:
            entropy = self._entropy_source(ENTROPY_BYTES[word_count])
        except (NotImplementedError, OSError) as e:
            logger.critical("OS random source unavailable")
            raise EntropyError("Secure random source unavailable") from e

        if not entropy or len(entropy) != ENTROPY_BYTES[word_count]:
            raise EntropyError("Random source returned short entropy")

        entropy_buf = SecretBytes(entropy)
        try:
            phrase = self._bip39.to_mnemonic(entropy_buf.reveal())
        finally:
            entropy_buf.wipe()

        logger.debug(f"Generated {word_count}-word mnemonic")
        return Mnemonic.from_str(phrase)

    def validate(self, phrase: str) -> Mnemonic:
        """
        Validate a user-supplied phrase.

        Checks run in order so the user gets the most useful message:
        word count, wordlist membership, then checksum.

        Raises:
            WrongWordCount, UnknownWord, ChecksumMismatch (all InvalidMnemonic)
        """
        if not isinstance(phrase, str):
            raise TypeError("phrase must be a string")

        words = normalize_phrase(phrase)
        if len(words) not in ALLOWED_WORD_COUNTS:
            raise WrongWordCount(len(words), ALLOWED_WORD_COUNTS)

        for position, word in enumerate(words):
            if word not in self._wordset:
                raise UnknownWord(position)

        normalized = " ".join(words)
        if not self._bip39.check(normalized):
            raise ChecksumMismatch()

        return Mnemonic.from_str(normalized)

    def is_valid(self, phrase: str) -> bool:
        """True if validate() would succeed."""
        try:
            self.validate(phrase)
        except (WrongWordCount, UnknownWord, ChecksumMismatch):
            return False
        return True

    def to_seed(self, mnemonic: Mnemonic, passphrase: str = "") -> Seed:
        """
        Stretch a mnemonic into its 64-byte seed (PBKDF2-HMAC-SHA512, 2048 rounds).

        Deterministic: identical (mnemonic, passphrase) always give the same seed.
        """
        seed = bip39.Mnemonic.to_seed(mnemonic.phrase(), passphrase=passphrase)
        return Seed(seed)
