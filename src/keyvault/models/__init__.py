"""
Models package - Persisted and public data types.

Contains:
- DerivedAccount: per-chain address + public key
- EncryptedMnemonic, KdfParams: the encrypted mnemonic envelope
- WalletRecord, WalletSummary: per-wallet storage layout
- AuditEvent: append-only security log entry
"""

from .account import DerivedAccount
from .envelope import (
    EncryptedMnemonic,
    KdfParams,
    CURRENT_VERSION,
    VERSION_ARGON2ID,
    VERSION_PBKDF2,
)
from .record import WalletRecord, WalletSummary
from .audit import (
    AuditEvent,
    OUTCOME_SUCCESS,
    OUTCOME_FAILURE,
    SEVERITY_INFO,
    SEVERITY_ELEVATED,
)

__all__ = [
    "DerivedAccount",
    "EncryptedMnemonic",
    "KdfParams",
    "CURRENT_VERSION",
    "VERSION_ARGON2ID",
    "VERSION_PBKDF2",
    "WalletRecord",
    "WalletSummary",
    "AuditEvent",
    "OUTCOME_SUCCESS",
    "OUTCOME_FAILURE",
    "SEVERITY_INFO",
    "SEVERITY_ELEVATED",
]
