"""
Wallet Crypto - Password-based encryption of the mnemonic.

Industry-standard security:
- Argon2id key derivation (memory-hard)
- AES-256-GCM authenticated encryption
- Fresh 32-byte salt and 12-byte nonce per envelope
- Derived keys wiped immediately after use

Envelopes written by the first generation of the wallet (PBKDF2-HMAC-SHA256)
still decrypt; anything not on the current generation reports needs_upgrade().
"""

import asyncio
import functools
import logging
import os

# Cryptography
from argon2.exceptions import HashingError
from argon2.low_level import hash_secret_raw, Type
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import KdfSettings
from ..exceptions import (
    ConfigError,
    EntropyError,
    InvalidPasswordOrCorrupted,
    UnsupportedEnvelope,
)
from ..models.envelope import (
    EncryptedMnemonic,
    KdfParams,
    CIPHER_AES_256_GCM,
    CURRENT_VERSION,
    KDF_ARGON2ID,
    KDF_PBKDF2_SHA256,
    VERSION_ARGON2ID,
    VERSION_PBKDF2,
)
from .mnemonic import Mnemonic
from .secure import SecretBytes

logger = logging.getLogger(__name__)


# AES-GCM constants
AES_KEY_SIZE = 32
AES_IV_SIZE = 12  # 96 bits (recommended for GCM)
AES_TAG_SIZE = 16
SALT_SIZE = 32

# Legacy generation (schema version 1)
PBKDF2_ITERATIONS = 600_000  # OWASP 2023


# ============================================
# Key Derivation
# ============================================

def derive_key(password: str, salt: bytes, kdf: KdfParams) -> SecretBytes:
    """
    Derive a 32-byte encryption key from a password.

    Argon2id is memory-hard, making brute-force attacks expensive. With
    production parameters each guess costs ~64MB RAM and a few hundred ms.
    """
    if kdf.algorithm == KDF_ARGON2ID:
        key = hash_secret_raw(
            secret=password.encode('utf-8'),
            salt=salt,
            time_cost=kdf.iterations,
            memory_cost=kdf.memory_cost,
            parallelism=kdf.parallelism,
            hash_len=AES_KEY_SIZE,
            type=Type.ID
        )
        return SecretBytes(key)

    if kdf.algorithm == KDF_PBKDF2_SHA256:
        pbkdf2 = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=AES_KEY_SIZE,
            salt=salt,
            iterations=kdf.iterations,
        )
        return SecretBytes(pbkdf2.derive(password.encode('utf-8')))

    raise UnsupportedEnvelope(f"Unsupported KDF: {kdf.algorithm}", data={"kdf": kdf.algorithm})


def _random_bytes(n: int) -> bytes:
    try:
        return os.urandom(n)
    except (NotImplementedError, OSError) as e:
        raise EntropyError("Secure random source unavailable") from e


# ============================================
# Encryption Service
# ============================================

class EncryptionService:
    """
    Encrypt and decrypt mnemonics under a password.

    Usage:
        service = EncryptionService()
        payload = service.encrypt(mnemonic, "password")
        mnemonic = service.decrypt(payload, "password")

        # From async code, the KDF runs on the default executor
        payload = await service.encrypt_async(mnemonic, "password")
    """

    def __init__(self, kdf: KdfSettings | None = None, allow_weak_kdf: bool = False):
        kdf = kdf or KdfSettings()
        if not kdf.is_production_strength and not allow_weak_kdf:
            raise ConfigError("Argon2id parameters below production floor")
        if not kdf.is_production_strength:
            logger.warning("EncryptionService running with weak KDF parameters (test profile)")
        self._kdf = kdf

    @property
    def current_params(self) -> KdfParams:
        """KDF parameters stamped on every new envelope."""
        return KdfParams(
            algorithm=KDF_ARGON2ID,
            iterations=self._kdf.time_cost,
            memory_cost=self._kdf.memory_cost,
            parallelism=self._kdf.parallelism,
        )

    def encrypt(self, mnemonic: Mnemonic, password: str) -> EncryptedMnemonic:
        """
        Encrypt a mnemonic with a password using current-generation parameters.

        Raises:
            ValueError: empty password
            EntropyError: salt/nonce could not be generated
        """
        return self._seal(mnemonic, password, VERSION_ARGON2ID, self.current_params)

    def encrypt_legacy(self, mnemonic: Mnemonic, password: str,
                       iterations: int = PBKDF2_ITERATIONS) -> EncryptedMnemonic:
        """Produce a version-1 (PBKDF2) envelope. Migration tooling and tests only."""
        kdf = KdfParams(algorithm=KDF_PBKDF2_SHA256, iterations=iterations)
        return self._seal(mnemonic, password, VERSION_PBKDF2, kdf)

    def decrypt(self, payload: EncryptedMnemonic, password: str) -> Mnemonic:
        """
        Decrypt an envelope, honouring the KDF parameters recorded in it.

        Raises:
            InvalidPasswordOrCorrupted: wrong password or tampered data
            UnsupportedEnvelope: unknown schema version or algorithm
        """
        self._check_envelope(payload)

        try:
            key = derive_key(password, payload.salt, payload.kdf)
        except (HashingError, ValueError):
            # Out-of-range parameters in a tampered header
            raise InvalidPasswordOrCorrupted() from None
        try:
            plaintext = AESGCM(key.reveal()).decrypt(
                payload.nonce, payload.ciphertext, payload.associated_data
            )
        except (InvalidTag, ValueError):
            # Wrong password and corrupted ciphertext must look identical
            raise InvalidPasswordOrCorrupted() from None
        finally:
            key.wipe()

        secret = SecretBytes(bytearray(plaintext))
        del plaintext
        try:
            return Mnemonic.from_str(secret.reveal_str())
        except UnicodeDecodeError:
            raise InvalidPasswordOrCorrupted() from None
        finally:
            secret.wipe()

    def needs_upgrade(self, payload: EncryptedMnemonic) -> bool:
        """True if the envelope was written with older-generation parameters."""
        return payload.version != CURRENT_VERSION or payload.kdf != self.current_params

    async def encrypt_async(self, mnemonic: Mnemonic, password: str) -> EncryptedMnemonic:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.encrypt, mnemonic, password))

    async def decrypt_async(self, payload: EncryptedMnemonic, password: str) -> Mnemonic:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.decrypt, payload, password))

    # ============================================
    # Internals
    # ============================================

    def _seal(self, mnemonic: Mnemonic, password: str, version: int,
              kdf: KdfParams) -> EncryptedMnemonic:
        if not password:
            raise ValueError("Password must not be empty")

        salt = _random_bytes(SALT_SIZE)
        nonce = _random_bytes(AES_IV_SIZE)
        # Header is bound as associated data; build it before encrypting
        header = EncryptedMnemonic(
            ciphertext=b"", salt=salt, nonce=nonce, kdf=kdf,
            algorithm=CIPHER_AES_256_GCM, version=version,
        )

        key = derive_key(password, salt, kdf)
        try:
            ciphertext_and_tag = AESGCM(key.reveal()).encrypt(
                nonce, mnemonic.reveal(), header.associated_data
            )
        finally:
            key.wipe()

        return EncryptedMnemonic(
            ciphertext=ciphertext_and_tag, salt=salt, nonce=nonce, kdf=kdf,
            algorithm=CIPHER_AES_256_GCM, version=version,
        )

    def _check_envelope(self, payload: EncryptedMnemonic) -> None:
        if not isinstance(payload, EncryptedMnemonic):
            raise TypeError("payload must be an EncryptedMnemonic")
        if payload.algorithm != CIPHER_AES_256_GCM:
            raise UnsupportedEnvelope(f"Unsupported cipher: {payload.algorithm}")

        expected_kdf = {VERSION_PBKDF2: KDF_PBKDF2_SHA256, VERSION_ARGON2ID: KDF_ARGON2ID}
        if payload.version not in expected_kdf:
            raise UnsupportedEnvelope(f"Unsupported envelope version: {payload.version}",
                                      data={"version": payload.version})
        if payload.kdf.algorithm != expected_kdf[payload.version]:
            raise UnsupportedEnvelope(
                f"Envelope v{payload.version} cannot use {payload.kdf.algorithm}"
            )

        # Structurally broken envelopes are reported like a failed tag check
        if (len(payload.nonce) != AES_IV_SIZE or len(payload.ciphertext) < AES_TAG_SIZE
                or len(payload.salt) < 16):
            raise InvalidPasswordOrCorrupted()
