"""
Secure Storage - Local persistence of encrypted wallet records.

One JSON file per wallet in the wallet directory. Only the encrypted
mnemonic envelope and public metadata (name, derived accounts, timestamps)
are ever written; save() refuses anything else.

Writes are atomic (temp file + replace) and files are owner-only (0600).
delete() overwrites the file contents before unlinking it.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional

from ..exceptions import StorageError, WalletNotFound, WalletExists
from ..models import DerivedAccount, EncryptedMnemonic, WalletRecord, WalletSummary
from ..utils import set_secure_permissions, utc_now_iso, SECURE_DIR_MODE
from .secure import SecretBytes

logger = logging.getLogger(__name__)

WALLET_FILE_PREFIX = "wallet_"
WALLET_FILE_SUFFIX = ".json"
_WALLET_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class SecureStorage:
    """Per-wallet JSON records keyed by wallet id."""

    def __init__(self, wallet_dir: Path):
        self.wallet_dir = Path(wallet_dir)
        try:
            self.wallet_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create wallet directory: {self.wallet_dir}") from e
        set_secure_permissions(self.wallet_dir, SECURE_DIR_MODE)

    def _path(self, wallet_id: str) -> Path:
        if not isinstance(wallet_id, str) or not _WALLET_ID_RE.match(wallet_id):
            raise StorageError(f"Invalid wallet id: {wallet_id!r}")
        return self.wallet_dir / f"{WALLET_FILE_PREFIX}{wallet_id}{WALLET_FILE_SUFFIX}"

    def exists(self, wallet_id: str) -> bool:
        """Check if a record exists for a wallet."""
        return self._path(wallet_id).exists()

    # ============================================
    # Write
    # ============================================

    def save(
        self,
        wallet_id: str,
        encrypted_mnemonic: EncryptedMnemonic,
        accounts: list[DerivedAccount],
        name: str = "",
        created_at: Optional[str] = None,
        overwrite: bool = True,
    ) -> WalletRecord:
        """
        Persist a wallet's envelope and public accounts.

        Raises:
            TypeError: plaintext secrets or foreign types were passed in
            WalletExists: overwrite=False and a record is already stored
            StorageError: the record could not be written
        """
        _guard_public(encrypted_mnemonic, accounts)

        path = self._path(wallet_id)
        existing = self._read(path) if path.exists() else None
        if existing is not None and not overwrite:
            raise WalletExists(wallet_id)

        record = WalletRecord(
            wallet_id=wallet_id,
            name=name or (existing.name if existing else ""),
            encrypted_mnemonic=encrypted_mnemonic,
            accounts=list(accounts),
            created_at=created_at or (existing.created_at if existing else utc_now_iso()),
            updated_at=utc_now_iso() if existing else None,
        )
        self._write(path, record.to_dict())
        logger.info(f"Saved wallet {wallet_id} ({len(record.accounts)} account(s))")
        return record

    def delete(self, wallet_id: str) -> None:
        """
        Irreversibly remove a wallet record.

        The file is overwritten with random bytes and flushed before unlinking.

        Raises:
            WalletNotFound: no record for wallet_id
            StorageError: the file could not be removed
        """
        path = self._path(wallet_id)
        if not path.exists():
            raise WalletNotFound(wallet_id)

        try:
            size = path.stat().st_size
            with open(path, "r+b") as f:
                f.write(os.urandom(max(size, 1)))
                f.flush()
                os.fsync(f.fileno())
            path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete wallet {wallet_id}") from e

        logger.info(f"Deleted wallet {wallet_id}")

    # ============================================
    # Read
    # ============================================

    def load(self, wallet_id: str) -> tuple[EncryptedMnemonic, list[DerivedAccount]]:
        """Load a wallet's envelope and accounts."""
        record = self.load_record(wallet_id)
        return record.encrypted_mnemonic, record.accounts

    def load_record(self, wallet_id: str) -> WalletRecord:
        """
        Load the full wallet record.

        Raises:
            WalletNotFound: no record for wallet_id
            StorageError: the file is unreadable or corrupted
        """
        path = self._path(wallet_id)
        if not path.exists():
            raise WalletNotFound(wallet_id)
        return self._read(path)

    def list_wallets(self) -> list[WalletSummary]:
        """Public summaries of every stored wallet, oldest first."""
        summaries = []
        for path in sorted(self.wallet_dir.glob(f"{WALLET_FILE_PREFIX}*{WALLET_FILE_SUFFIX}")):
            try:
                record = self._read(path)
            except StorageError as e:
                logger.warning(f"Skipping unreadable wallet file {path.name}: {e}")
                continue
            summaries.append(WalletSummary(
                wallet_id=record.wallet_id,
                name=record.name,
                addresses=record.addresses,
                created_at=record.created_at,
            ))
        return sorted(summaries, key=lambda s: (s.created_at, s.wallet_id))

    # ============================================
    # File Operations
    # ============================================

    def _read(self, path: Path) -> WalletRecord:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return WalletRecord.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupted or unreadable wallet file: {path.name}") from e

    def _write(self, path: Path, data: dict) -> None:
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            set_secure_permissions(temp_path)
            temp_path.replace(path)
        except OSError as e:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise StorageError(f"Failed to write wallet file: {path.name}") from e
        set_secure_permissions(path)


def _guard_public(encrypted_mnemonic, accounts) -> None:
    """Reject anything that isn't ciphertext or public metadata."""
    if isinstance(encrypted_mnemonic, SecretBytes):
        raise TypeError("Refusing to persist plaintext secret material")
    if not isinstance(encrypted_mnemonic, EncryptedMnemonic):
        raise TypeError("encrypted_mnemonic must be an EncryptedMnemonic")
    for account in accounts:
        if isinstance(account, SecretBytes):
            raise TypeError("Refusing to persist plaintext secret material")
        if not isinstance(account, DerivedAccount):
            raise TypeError("accounts must contain DerivedAccount records only")
