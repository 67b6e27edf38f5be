"""
Encrypted mnemonic envelope.

The sole persisted representation of a mnemonic: ciphertext plus everything
needed to re-derive the key (salt, nonce, KDF parameters) and the schema
version that tells the decryptor which generation of parameters to expect.

Schema versions:
- 1: PBKDF2-HMAC-SHA256 (600k iterations) + AES-256-GCM (legacy)
- 2: Argon2id (t=3, m=64 MiB, p=4) + AES-256-GCM (current)
"""

from dataclasses import dataclass, asdict
from typing import Optional

# Envelope schema versions
VERSION_PBKDF2 = 1
VERSION_ARGON2ID = 2
CURRENT_VERSION = VERSION_ARGON2ID

# Algorithm tags
CIPHER_AES_256_GCM = "AES-256-GCM"
KDF_ARGON2ID = "argon2id"
KDF_PBKDF2_SHA256 = "pbkdf2-sha256"


@dataclass(frozen=True)
class KdfParams:
    """Key-derivation parameters recorded alongside the ciphertext."""
    algorithm: str                 # argon2id | pbkdf2-sha256
    iterations: int                # Argon2 time cost or PBKDF2 rounds
    memory_cost: int = 0           # KiB, Argon2 only
    parallelism: int = 1           # Argon2 lanes

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "KdfParams":
        return cls(
            algorithm=data["algorithm"],
            iterations=int(data["iterations"]),
            memory_cost=int(data.get("memory_cost", 0)),
            parallelism=int(data.get("parallelism", 1)),
        )


@dataclass(frozen=True)
class EncryptedMnemonic:
    """Password-encrypted mnemonic phrase (AES-256-GCM, tag appended)."""
    ciphertext: bytes              # ciphertext || 16-byte tag
    salt: bytes                    # 32 bytes
    nonce: bytes                   # 12 bytes
    kdf: KdfParams
    algorithm: str = CIPHER_AES_256_GCM
    version: int = CURRENT_VERSION

    @property
    def associated_data(self) -> bytes:
        """Header bound into the GCM tag so version/algorithm can't be swapped."""
        return f"{self.algorithm}|v{self.version}|{self.kdf.algorithm}".encode("ascii")

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "algorithm": self.algorithm,
            "kdf": self.kdf.to_dict(),
            "salt": self.salt.hex(),
            "nonce": self.nonce.hex(),
            "ciphertext": self.ciphertext.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedMnemonic":
        return cls(
            ciphertext=bytes.fromhex(data["ciphertext"]),
            salt=bytes.fromhex(data["salt"]),
            nonce=bytes.fromhex(data["nonce"]),
            kdf=KdfParams.from_dict(data["kdf"]),
            algorithm=data.get("algorithm", CIPHER_AES_256_GCM),
            version=int(data["version"]),
        )

    def __repr__(self) -> str:
        return (f"EncryptedMnemonic(version={self.version}, algorithm={self.algorithm!r}, "
                f"kdf={self.kdf.algorithm}, ciphertext={len(self.ciphertext)} bytes)")


def describe(payload: Optional[EncryptedMnemonic]) -> dict:
    """Non-sensitive summary of an envelope, safe for logs and audit metadata."""
    if payload is None:
        return {}
    return {
        "version": payload.version,
        "algorithm": payload.algorithm,
        "kdf": payload.kdf.algorithm,
    }
