"""Key vault exceptions hierarchy.

Error payloads only ever carry an error kind and safe metadata (wallet ids,
chain names, counts). Passwords, phrases, seeds and key bytes never appear in
a message or in ``data``.
"""

from typing import Any, Optional

__all__ = [
    "KeyVaultError",
    "ConfigError",
    "EntropyError",
    "InvalidMnemonic",
    "WrongWordCount",
    "UnknownWord",
    "ChecksumMismatch",
    "DecryptionError",
    "InvalidPasswordOrCorrupted",
    "UnsupportedEnvelope",
    "TooManyAttempts",
    "SessionExpired",
    "UnsupportedCurve",
    "UnsupportedChain",
    "DerivationFailed",
    "StorageError",
    "WalletNotFound",
    "WalletExists",
]


class KeyVaultError(Exception):
    """Base exception for all key vault errors."""

    kind = "keyvault_error"

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Optional[Any] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigError(KeyVaultError):
    """Raised when configuration values are invalid."""
    kind = "config_error"


class EntropyError(KeyVaultError):
    """Raised when the OS random source is unavailable. Fatal."""
    kind = "entropy_error"


# ============================================
# Mnemonic validation
# ============================================

class InvalidMnemonic(KeyVaultError):
    """Raised when a user-supplied phrase fails BIP39 validation."""
    kind = "invalid_mnemonic"


class WrongWordCount(InvalidMnemonic):
    """Phrase does not have an accepted number of words."""

    kind = "wrong_word_count"

    def __init__(self, word_count: int, allowed: tuple = (12, 24)) -> None:
        allowed_str = " or ".join(str(n) for n in allowed)
        super().__init__(
            f"Mnemonic must have {allowed_str} words, got {word_count}",
            data={"word_count": word_count},
        )
        self.word_count = word_count


class UnknownWord(InvalidMnemonic):
    """Phrase contains a word outside the BIP39 wordlist."""

    kind = "unknown_word"

    def __init__(self, position: int) -> None:
        # Only the position is reported; the word itself may be a typo of a real one
        super().__init__(
            f"Word #{position + 1} is not in the BIP39 wordlist",
            data={"position": position},
        )
        self.position = position


class ChecksumMismatch(InvalidMnemonic):
    """All words are valid but the BIP39 checksum does not match."""
    kind = "checksum_mismatch"

    def __init__(self) -> None:
        super().__init__("Mnemonic checksum does not match")


# ============================================
# Decryption
# ============================================

class DecryptionError(KeyVaultError):
    """Raised when an encrypted mnemonic cannot be opened."""
    kind = "decryption_error"


class InvalidPasswordOrCorrupted(DecryptionError):
    """Wrong password or tampered ciphertext. The two are indistinguishable."""

    kind = "invalid_password_or_corrupted"

    def __init__(self) -> None:
        super().__init__("Invalid password or corrupted data")


class UnsupportedEnvelope(DecryptionError):
    """Envelope schema version or algorithm tag is not recognised."""
    kind = "unsupported_envelope"


class TooManyAttempts(DecryptionError):
    """Raised when a wallet is throttled after repeated failed passwords."""

    kind = "too_many_attempts"

    def __init__(self, retry_after: float) -> None:
        super().__init__(
            f"Too many failed attempts, retry in {retry_after:.0f}s",
            data={"retry_after": retry_after},
        )
        self.retry_after = retry_after


# ============================================
# Sessions and derivation
# ============================================

class SessionExpired(KeyVaultError):
    """Raised when an operation needs an unlocked session and none is active."""

    kind = "session_expired"

    def __init__(self, wallet_id: str) -> None:
        super().__init__(f"Session for wallet {wallet_id} is locked or expired",
                         data={"wallet_id": wallet_id})
        self.wallet_id = wallet_id


class UnsupportedCurve(KeyVaultError):
    """Raised when a chain names a curve family the engine cannot derive."""
    kind = "unsupported_curve"


class UnsupportedChain(KeyVaultError):
    """Raised when a chain identifier is not in the registry."""
    kind = "unsupported_chain"


class DerivationFailed(KeyVaultError):
    """Raised on malformed paths or invalid derived keys."""
    kind = "derivation_failed"


# ============================================
# Storage
# ============================================

class StorageError(KeyVaultError):
    """Raised when persisting or reading wallet records fails."""
    kind = "storage_error"


class WalletNotFound(StorageError):
    """Raised when no record exists for a wallet id."""

    kind = "wallet_not_found"

    def __init__(self, wallet_id: str) -> None:
        super().__init__(f"Wallet not found: {wallet_id}", data={"wallet_id": wallet_id})
        self.wallet_id = wallet_id


class WalletExists(StorageError):
    """Raised when creating a record for a wallet id that is already stored."""

    kind = "wallet_exists"

    def __init__(self, wallet_id: str) -> None:
        super().__init__(f"Wallet already exists: {wallet_id}", data={"wallet_id": wallet_id})
        self.wallet_id = wallet_id
